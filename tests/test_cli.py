"""Tests for the tripsplit command line."""

import json

import pytest
from typer.testing import CliRunner

from tripsplit.cli import app

runner = CliRunner()


@pytest.fixture(autouse=True)
def isolated_env(monkeypatch, tmp_path):
    """Run each test away from any local .env file."""
    monkeypatch.chdir(tmp_path)


def write_json(path, data) -> str:
    path.write_text(json.dumps(data))
    return str(path)


@pytest.fixture
def trip_file(tmp_path):
    return write_json(
        tmp_path / "trip.json",
        {
            "trip_id": "lisbon",
            "base_currency": "USD",
            "participants": ["alice", "bob"],
            "categories": [{"id": "food", "name": "Food"}],
            "expenses": [
                {
                    "split_type": "equal",
                    "id": "e1",
                    "payer_user_id": "alice",
                    "currency": "USD",
                    "amount": "100.00",
                    "participants": {"alice": "1", "bob": "1"},
                    "category_id": "food",
                }
            ],
        },
    )


@pytest.fixture
def receipt_file(tmp_path):
    return write_json(
        tmp_path / "receipt.json",
        {
            "payer_user_id": "alice",
            "currency": "USD",
            "participants": ["alice", "bob"],
            "items": [
                {
                    "id": "i1",
                    "name": "Entree",
                    "unit_price": "20.00",
                    "assignment": {"mode": "even", "users": ["alice", "bob"]},
                }
            ],
            "extras": {
                "tax": {"type": "percent", "value": "10"},
                "tip": {"type": "percent", "value": "20", "base": "post_tax_subtotals"},
            },
        },
    )


class TestSettleCommand:
    """Test `tripsplit settle`."""

    def test_table_output(self, trip_file):
        result = runner.invoke(app, ["settle", trip_file])

        assert result.exit_code == 0
        assert "Balances" in result.stdout
        assert "50.00" in result.stdout

    def test_json_output(self, trip_file):
        result = runner.invoke(app, ["settle", trip_file, "--json"])

        assert result.exit_code == 0
        data = json.loads(result.stdout)
        assert data["transfers"][0]["from_user_id"] == "bob"
        assert data["transfers"][0]["to_user_id"] == "alice"
        assert data["transfers"][0]["amount_base"] == "50.00"
        assert data["category_spending"] is None

    def test_categories(self, trip_file):
        result = runner.invoke(app, ["settle", trip_file, "--categories", "--json"])

        data = json.loads(result.stdout)
        assert data["category_spending"]["bob"]["category_breakdown"][0]["category_name"] == "Food"

    def test_explain_transfers(self, trip_file):
        result = runner.invoke(app, ["settle", trip_file, "--explain"])

        assert result.exit_code == 0
        assert "bob -> alice: 50.00" in result.stdout
        assert "e1" in result.stdout

    def test_greedy_strategy(self, trip_file):
        result = runner.invoke(app, ["settle", trip_file, "--strategy", "greedy", "--json"])

        assert result.exit_code == 0
        assert json.loads(result.stdout)["strategy"] == "greedy"

    def test_unknown_strategy_fails(self, trip_file):
        result = runner.invoke(app, ["settle", trip_file, "--strategy", "optimal"])

        assert result.exit_code == 1
        assert "Unknown transfer strategy" in result.stdout

    def test_invalid_file_fails(self, tmp_path):
        path = write_json(tmp_path / "bad.json", {"trip_id": "x", "expenses": [{"id": 1}]})

        result = runner.invoke(app, ["settle", path])

        assert result.exit_code == 1
        assert "Invalid input file" in result.stdout

    def test_blocking_issue_exit_code(self, tmp_path):
        path = write_json(
            tmp_path / "trip.json",
            {
                "trip_id": "tokyo",
                "base_currency": "USD",
                "expenses": [
                    {
                        "split_type": "equal",
                        "id": "e1",
                        "payer_user_id": "alice",
                        "currency": "JPY",
                        "amount": "5000",
                        "participants": {"alice": "1", "bob": "1"},
                    }
                ],
            },
        )

        result = runner.invoke(app, ["settle", path])

        assert result.exit_code == 1
        assert "currency_mismatch" in result.stdout


class TestItemizeCommand:
    """Test `tripsplit itemize`."""

    def test_json_output(self, receipt_file):
        result = runner.invoke(app, ["itemize", receipt_file, "--json"])

        assert result.exit_code == 0
        data = json.loads(result.stdout)
        assert data["participant_amounts"] == {"alice": "13.20", "bob": "13.20"}
        assert data["grand_total"] == "26.40"

    def test_table_output(self, receipt_file):
        result = runner.invoke(app, ["itemize", receipt_file])

        assert result.exit_code == 0
        assert "Receipt Split" in result.stdout
        assert "26.40" in result.stdout

    def test_unassigned_item_fails(self, tmp_path):
        path = write_json(
            tmp_path / "receipt.json",
            {
                "payer_user_id": "alice",
                "participants": ["alice"],
                "items": [{"id": "i1", "name": "Mystery", "unit_price": "5.00"}],
            },
        )

        result = runner.invoke(app, ["itemize", path])

        assert result.exit_code == 1
        assert "unassigned_item" in result.stdout

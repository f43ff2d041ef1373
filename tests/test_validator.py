"""Tests for settlement consistency checks."""

from datetime import datetime, timezone
from decimal import Decimal

from tripsplit import validator
from tripsplit.models import IssueCode, MinimalTransfer, PersonSummary
from tripsplit.transfers import make_transfer

COMPUTED_AT = datetime(2025, 6, 1, 12, 0, tzinfo=timezone.utc)


def summaries(**nets: str) -> dict[str, PersonSummary]:
    return {
        user_id: PersonSummary(user_id=user_id, net_base=Decimal(net))
        for user_id, net in nets.items()
    }


def transfer(from_user: str, to_user: str, amount: str) -> MinimalTransfer:
    return make_transfer("trip-1", from_user, to_user, Decimal(amount), "USD", COMPUTED_AT)


class TestValidate:
    """Test the full validation."""

    def test_consistent_settlement(self):
        balances = summaries(alice="30.00", bob="-10.00", carol="-20.00")
        transfers = [transfer("carol", "alice", "20.00"), transfer("bob", "alice", "10.00")]

        assert validator.validate(balances, transfers, "USD") == []

    def test_conservation_violation(self):
        balances = summaries(alice="30.00", bob="-29.00")
        transfers = [transfer("bob", "alice", "29.00")]

        codes = [i.code for i in validator.validate(balances, transfers, "USD")]

        assert IssueCode.BALANCE_CONSERVATION_VIOLATION in codes

    def test_unknown_parties(self):
        balances = summaries(alice="10.00", bob="-10.00")
        transfers = [transfer("bob", "alice", "10.00"), transfer("zoe", "alice", "1.00")]

        issues = validator.check_transfers(balances, transfers, "USD")

        assert any("unknown payer zoe" in i.message for i in issues)
        assert all(i.code == IssueCode.TRANSFER_INCONSISTENCY for i in issues)

    def test_self_transfer(self):
        balances = summaries(alice="0", bob="0")
        transfers = [transfer("alice", "alice", "5.00")]

        issues = validator.check_transfers(balances, transfers, "USD")

        assert any("same payer and receiver" in i.message for i in issues)

    def test_duplicate_pair(self):
        balances = summaries(alice="10.00", bob="-10.00")
        transfers = [transfer("bob", "alice", "5.00"), transfer("bob", "alice", "5.00")]

        issues = validator.check_transfers(balances, transfers, "USD")

        assert [i.message for i in issues] == [
            "Duplicate transfers from bob to alice: 2 found"
        ]

    def test_balance_mismatch(self):
        balances = summaries(alice="10.00", bob="-10.00")
        transfers = [transfer("bob", "alice", "8.00")]

        issues = validator.check_transfers(balances, transfers, "USD")

        assert {i.user_id for i in issues} == {"alice", "bob"}

    def test_non_positive_amount(self):
        balances = summaries(alice="0", bob="0")
        bad = MinimalTransfer.model_construct(
            id="t1",
            trip_id="trip-1",
            from_user_id="bob",
            to_user_id="alice",
            amount_base=Decimal("0"),
            currency="USD",
            computed_at=COMPUTED_AT,
            is_settled=False,
            settled_at=None,
        )

        issues = validator.check_transfers(balances, [bad], "USD")

        assert any("non-positive amount" in i.message for i in issues)


class TestQuickValidate:
    """Test the conservation-only check."""

    def test_balanced(self):
        assert validator.quick_validate(summaries(alice="5.00", bob="-5.00"), "USD")

    def test_unbalanced(self):
        assert not validator.quick_validate(summaries(alice="5.00", bob="-4.00"), "USD")

    def test_zero_decimal_tolerance(self):
        """Sub-unit drift is tolerated in VND."""
        assert validator.quick_validate(summaries(alice="1000", bob="-999.5"), "VND")

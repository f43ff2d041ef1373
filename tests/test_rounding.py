"""Rounding and remainder distribution tests."""

import logging
from decimal import Decimal

import pytest

from tripsplit.models import RemainderPolicy, RoundingConfig, RoundingMode
from tripsplit.rounding import (
    distribute_remainder,
    round_amount,
    round_amounts,
    select_recipient,
)


def d(value: str) -> Decimal:
    return Decimal(value)


class TestRoundAmount:
    """Test rounding a single amount to a precision."""

    def test_half_up_rounds_ties_away_from_zero(self):
        """2.345 -> 2.35 and -2.345 -> -2.35."""
        assert round_amount(d("2.345"), d("0.01"), RoundingMode.ROUND_HALF_UP) == d("2.35")
        assert round_amount(d("-2.345"), d("0.01"), RoundingMode.ROUND_HALF_UP) == d("-2.35")

    def test_half_even_rounds_ties_to_even(self):
        """Banker's rounding: 2.345 -> 2.34, 2.355 -> 2.36."""
        assert round_amount(d("2.345"), d("0.01"), RoundingMode.ROUND_HALF_EVEN) == d("2.34")
        assert round_amount(d("2.355"), d("0.01"), RoundingMode.ROUND_HALF_EVEN) == d("2.36")

    def test_floor_rounds_toward_negative_infinity(self):
        assert round_amount(d("1.009"), d("0.01"), RoundingMode.FLOOR) == d("1.00")
        assert round_amount(d("-1.001"), d("0.01"), RoundingMode.FLOOR) == d("-1.01")

    def test_ceil_rounds_toward_positive_infinity(self):
        assert round_amount(d("1.001"), d("0.01"), RoundingMode.CEIL) == d("1.01")
        assert round_amount(d("-1.009"), d("0.01"), RoundingMode.CEIL) == d("-1.00")

    def test_nickel_precision(self):
        """Precision 0.05 rounds to the nearest five cents."""
        assert round_amount(d("1.02"), d("0.05")) == d("1.00")
        assert round_amount(d("1.03"), d("0.05")) == d("1.05")
        assert round_amount(d("1.075"), d("0.05")) == d("1.10")

    def test_zero_decimal_precision(self):
        """Precision 1 for currencies like VND."""
        assert round_amount(d("333.5"), d("1")) == d("334")
        assert round_amount(d("333.49"), d("1")) == d("333")

    def test_result_is_quantized_to_precision(self):
        """Results carry the precision's exponent."""
        result = round_amount(d("5"), d("0.01"))
        assert str(result) == "5.00"

    def test_non_positive_precision_rejected(self):
        with pytest.raises(ValueError, match="Precision must be positive"):
            round_amount(d("1.00"), d("0"))

    def test_amount_beyond_default_context_precision(self):
        """Quotients wider than 28 digits still round exactly."""
        assert round_amount(d("5E+26"), d("0.01")) == d("5E+26")
        assert str(round_amount(d("123456789012345678901234567.895"), d("0.01"))) == (
            "123456789012345678901234567.90"
        )


class TestSelectRecipient:
    """Test remainder recipient selection per policy."""

    def test_largest_share_uses_raw_amounts(self):
        """Largest pre-rounding amount wins even if rounded amounts tie."""
        amounts = {"alice": d("3.33"), "bob": d("3.33"), "carol": d("3.33")}
        raw = {"alice": d("3.331"), "bob": d("3.334"), "carol": d("3.332")}

        assert select_recipient(amounts, RemainderPolicy.LARGEST_SHARE, raw_amounts=raw) == "bob"

    def test_largest_share_tie_goes_to_first_listed(self):
        amounts = {"carol": d("5.00"), "alice": d("5.00")}

        assert select_recipient(amounts, RemainderPolicy.LARGEST_SHARE) == "carol"

    def test_payer_policy(self):
        amounts = {"alice": d("1"), "bob": d("9")}

        assert select_recipient(amounts, RemainderPolicy.PAYER, payer_id="alice") == "alice"

    def test_payer_missing_falls_back_to_largest(self, caplog):
        """A payer outside the participants logs a warning and uses the largest share."""
        amounts = {"alice": d("1"), "bob": d("9")}

        with caplog.at_level(logging.WARNING):
            recipient = select_recipient(amounts, RemainderPolicy.PAYER, payer_id="zoe")

        assert recipient == "bob"
        assert "not among the participants" in caplog.text

    def test_first_listed(self):
        amounts = {"bob": d("1"), "alice": d("9")}

        assert select_recipient(amounts, RemainderPolicy.FIRST_LISTED) == "bob"

    def test_deterministic_is_reproducible(self):
        """Same participants and seed always give the same recipient."""
        amounts = {u: d("1") for u in ["alice", "bob", "carol", "dave"]}

        first = select_recipient(amounts, RemainderPolicy.DETERMINISTIC, seed=42)
        second = select_recipient(amounts, RemainderPolicy.DETERMINISTIC, seed=42)
        unseeded_a = select_recipient(amounts, RemainderPolicy.DETERMINISTIC)
        unseeded_b = select_recipient(amounts, RemainderPolicy.DETERMINISTIC)

        assert first == second
        assert unseeded_a == unseeded_b
        assert first in amounts

    def test_no_participants(self):
        assert select_recipient({}, RemainderPolicy.FIRST_LISTED) is None


class TestDistributeRemainder:
    """Test applying a remainder to a single participant."""

    def test_whole_remainder_to_one_participant(self):
        amounts = {"alice": d("3.33"), "bob": d("3.33"), "carol": d("3.33")}

        result = distribute_remainder(amounts, d("0.01"), RemainderPolicy.FIRST_LISTED)

        assert result == {"alice": d("3.34"), "bob": d("3.33"), "carol": d("3.33")}
        assert sum(result.values()) == d("10.00")

    def test_input_not_mutated(self):
        amounts = {"alice": d("3.33"), "bob": d("3.33")}

        distribute_remainder(amounts, d("0.01"), RemainderPolicy.FIRST_LISTED)

        assert amounts == {"alice": d("3.33"), "bob": d("3.33")}

    def test_zero_remainder_is_noop(self):
        amounts = {"alice": d("5.00"), "bob": d("5.00")}

        assert distribute_remainder(amounts, d("0"), RemainderPolicy.PAYER) == amounts

    def test_negative_remainder(self):
        """Rounding up too far takes the excess back from one participant."""
        amounts = {"alice": d("3.34"), "bob": d("3.34"), "carol": d("3.34")}

        result = distribute_remainder(amounts, d("-0.02"), RemainderPolicy.FIRST_LISTED)

        assert result["alice"] == d("3.32")
        assert sum(result.values()) == d("10.00")


class TestRoundAmounts:
    """Test rounding a set of amounts to an exact total."""

    def test_vnd_three_way_split(self):
        """1000 VND over three people: 334, 333, 333."""
        raw = {u: d("1000") / 3 for u in ["alice", "bob", "carol"]}

        result = round_amounts(raw, RoundingConfig.for_currency("VND"))

        assert result.amounts == {"alice": d("334"), "bob": d("333"), "carol": d("333")}
        assert result.remainder == d("1")
        assert result.recipient == "alice"

    def test_explicit_target_total(self):
        raw = {"alice": d("5"), "bob": d("5")}

        result = round_amounts(raw, RoundingConfig(), target_total=d("10.01"))

        assert sum(result.amounts.values()) == d("10.01")
        assert result.remainder == d("0.01")

    def test_no_remainder_has_no_recipient(self):
        raw = {"alice": d("13.20"), "bob": d("13.20")}

        result = round_amounts(raw, RoundingConfig())

        assert result.remainder == 0
        assert result.recipient is None

    def test_only_recipient_differs_from_independent_rounding(self):
        raw = {u: d("10") / 3 for u in ["alice", "bob", "carol"]}
        config = RoundingConfig(remainder_policy=RemainderPolicy.PAYER)

        result = round_amounts(raw, config, payer_id="bob")

        changed = [u for u, amount in result.amounts.items() if amount != round_amount(raw[u])]
        assert changed == ["bob"]
        assert result.recipient == "bob"
        assert sum(result.amounts.values()) == d("10.00")

    def test_adjustment_is_logged(self, caplog):
        raw = {u: d("10") / 3 for u in ["alice", "bob", "carol"]}

        with caplog.at_level(logging.INFO, logger="tripsplit.rounding"):
            round_amounts(raw, RoundingConfig())

        assert "Applied rounding adjustment: 0.01 to alice" in caplog.text

    def test_remainder_bounded_by_participant_count(self):
        """Remainder never exceeds one precision step per participant."""
        raw = {f"user{i}": d("100") / 7 for i in range(7)}
        config = RoundingConfig(precision=d("0.01"), mode=RoundingMode.FLOOR)

        result = round_amounts(raw, config)

        assert abs(result.remainder) <= config.precision * len(raw)
        assert sum(result.amounts.values()) == d("100.00")

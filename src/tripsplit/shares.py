"""Canonical per-participant shares of a single expense."""

import logging
from decimal import Decimal

from pydantic import Field

from .calculator import ItemizedCalculator
from .currency import is_within_unit
from .models import (
    EqualExpense,
    Expense,
    FrozenModel,
    IssueCode,
    ItemizedExpense,
    RemainderPolicy,
    RoundingConfig,
    ValidationIssue,
    WeightedExpense,
)
from .rounding import round_amounts

logger = logging.getLogger(__name__)


class SharesResult(FrozenModel):
    """Shares of one expense, or the issues that prevented computing them."""

    shares: dict[str, Decimal] = Field(default_factory=dict)
    issues: list[ValidationIssue] = Field(default_factory=list)

    @property
    def is_valid(self) -> bool:
        return not any(issue.blocking for issue in self.issues)


def _invalid(expense: Expense, message: str) -> SharesResult:
    return SharesResult(
        issues=[
            ValidationIssue(
                code=IssueCode.INVALID_EXPENSE,
                message=f"Expense {expense.id}: {message}",
                expense_id=expense.id,
            )
        ]
    )


def _equal_shares(expense: EqualExpense) -> SharesResult:
    if not expense.participants:
        return _invalid(expense, "equal split has no participants")

    share = expense.amount / len(expense.participants)
    config = RoundingConfig.for_currency(
        expense.currency, remainder_policy=RemainderPolicy.FIRST_LISTED
    )
    rounded = round_amounts(
        {user_id: share for user_id in expense.participants},
        config,
        target_total=expense.amount,
    )
    return SharesResult(shares=rounded.amounts)


def _weighted_shares(expense: WeightedExpense) -> SharesResult:
    weights = expense.participants
    if not weights:
        return _invalid(expense, "weighted split has no participants")
    if any(weight < 0 for weight in weights.values()):
        return _invalid(expense, "weights must be non-negative")
    total_weight = sum(weights.values(), Decimal("0"))
    if total_weight == 0:
        return _invalid(expense, "total weight is zero")

    config = RoundingConfig.for_currency(
        expense.currency, remainder_policy=RemainderPolicy.LARGEST_SHARE
    )
    rounded = round_amounts(
        {
            user_id: expense.amount * weight / total_weight
            for user_id, weight in weights.items()
        },
        config,
        target_total=expense.amount,
    )
    return SharesResult(shares=rounded.amounts)


def _itemized_shares(
    expense: ItemizedExpense, calculator: ItemizedCalculator | None
) -> SharesResult:
    if expense.participant_amounts is not None:
        # Stored calculator output is ground truth
        return SharesResult(shares=dict(expense.participant_amounts))

    calculator = calculator or ItemizedCalculator()
    result = calculator.calculate(
        items=expense.items,
        extras=expense.extras,
        allocation=expense.allocation,
        participants=list(expense.participants),
        payer_id=expense.payer_user_id,
        currency=expense.currency,
    )
    issues = [
        issue.model_copy(update={"expense_id": expense.id}) for issue in result.issues
    ]
    return SharesResult(shares=result.participant_amounts, issues=issues)


def expense_shares(
    expense: Expense, calculator: ItemizedCalculator | None = None
) -> SharesResult:
    """
    Compute what each participant owes for one expense.

    Equal and weighted shares are rounded to the currency's precision and
    the remainder goes to one participant, so shares sum exactly to the
    expense amount. Itemized expenses use their stored participant_amounts
    verbatim; only when absent are they computed from items and extras.

    Args:
        expense: Expense of any split type
        calculator: Calculator for itemized expenses without stored amounts

    Returns:
        SharesResult with shares keyed by user id and any issues
    """
    if isinstance(expense, EqualExpense):
        result = _equal_shares(expense)
    elif isinstance(expense, WeightedExpense):
        result = _weighted_shares(expense)
    else:
        result = _itemized_shares(expense, calculator)

    if not result.is_valid:
        return result

    total = sum(result.shares.values(), Decimal("0"))
    if not is_within_unit(total, expense.amount, expense.currency):
        logger.warning(
            f"Shares of expense {expense.id} sum to {total}, expected {expense.amount}"
        )
        mismatch = ValidationIssue(
            code=IssueCode.COMPUTATION_MISMATCH,
            message=(
                f"Expense {expense.id}: shares sum to {total} "
                f"but amount is {expense.amount}"
            ),
            expense_id=expense.id,
        )
        return SharesResult(shares=result.shares, issues=[*result.issues, mismatch])

    logger.debug(f"Expense {expense.id} ({expense.split_type}) shares: {result.shares}")
    return result

"""Pairwise debt accumulation and netting.

Every non-payer participant of an expense owes the payer their share.
Debts in both directions between the same two people are then offset,
leaving at most one debt per pair.
"""

import logging
from datetime import datetime
from decimal import Decimal

from .currency import smallest_unit
from .models import Expense, PairwiseDebt, ValidationIssue
from .shares import expense_shares

logger = logging.getLogger(__name__)

DebtLedger = dict[tuple[str, str], Decimal]  # (debtor, creditor) -> amount


def accumulate(expenses: list[Expense]) -> tuple[DebtLedger, list[ValidationIssue]]:
    """
    Build the directed debt ledger for a list of expenses.

    Expenses whose shares cannot be computed are skipped and their issues
    returned.

    Returns:
        Tuple of (debts keyed by (debtor, creditor), issues)
    """
    debts: DebtLedger = {}
    issues: list[ValidationIssue] = []

    for expense in expenses:
        result = expense_shares(expense)
        issues.extend(result.issues)
        if not result.is_valid:
            logger.warning(f"Skipping expense {expense.id} in netting")
            continue

        payer = expense.payer_user_id
        for user_id, share in result.shares.items():
            if user_id == payer or share == 0:
                continue
            key = (user_id, payer)
            debts[key] = debts.get(key, Decimal("0")) + share

    return debts, issues


def net(
    debts: DebtLedger,
    epsilon: Decimal,
    trip_id: str,
    computed_at: datetime,
) -> list[PairwiseDebt]:
    """
    Offset opposing debts for each unordered pair.

    A debt is emitted in the net debtor's direction only when the net
    amount is at least epsilon. Output follows the order in which each
    pair first appears in the ledger.
    """
    netted: list[PairwiseDebt] = []
    seen: set[frozenset[str]] = set()

    for debtor, creditor in debts:
        pair = frozenset((debtor, creditor))
        if pair in seen:
            continue
        seen.add(pair)

        amount = debts[(debtor, creditor)] - debts.get((creditor, debtor), Decimal("0"))
        if abs(amount) < epsilon:
            logger.debug(f"Debts between {debtor} and {creditor} cancel out")
            continue

        if amount < 0:
            debtor, creditor, amount = creditor, debtor, -amount

        netted.append(
            PairwiseDebt(
                trip_id=trip_id,
                from_user_id=debtor,
                to_user_id=creditor,
                netted_base=amount,
                computed_at=computed_at,
            )
        )

    return netted


def compute(
    trip_id: str,
    expenses: list[Expense],
    currency: str,
    computed_at: datetime,
) -> tuple[list[PairwiseDebt], list[ValidationIssue]]:
    """Accumulate and net a trip's debts in one call."""
    debts, issues = accumulate(expenses)
    netted = net(debts, smallest_unit(currency), trip_id, computed_at)
    logger.info(f"Netted {len(debts)} directed debts into {len(netted)} pairwise debts")
    return netted, issues

"""Explain a pairwise transfer in terms of the expenses behind it."""

import logging
from decimal import Decimal

from .models import Expense, ExpenseBreakdown, TransferBreakdown
from .shares import expense_shares

logger = logging.getLogger(__name__)


def direct_contribution(
    payer_user_id: str,
    from_user_id: str,
    to_user_id: str,
    from_owes: Decimal,
    to_owes: Decimal,
) -> Decimal:
    """
    Direct debt between two people created by one expense.

    Positive when the receiver paid (the sender owes their share), negative
    when the sender paid, zero when someone else paid.
    """
    if payer_user_id == to_user_id:
        return from_owes
    if payer_user_id == from_user_id:
        return -to_owes
    return Decimal("0")


def calculate(
    from_user_id: str,
    to_user_id: str,
    transfer_amount: Decimal,
    expenses: list[Expense],
) -> TransferBreakdown:
    """
    Break a transfer down into per-expense contributions.

    Args:
        from_user_id: Person sending the transfer
        to_user_id: Person receiving the transfer
        transfer_amount: Netted transfer amount
        expenses: Expenses of the trip

    Returns:
        TransferBreakdown with one entry per expense whose shares are valid
    """
    breakdowns = []
    for expense in expenses:
        result = expense_shares(expense)
        if not result.is_valid:
            logger.debug(f"Expense {expense.id} has no valid shares, not explained")
            continue

        zero = Decimal("0")
        from_owes = result.shares.get(from_user_id, zero)
        to_owes = result.shares.get(to_user_id, zero)
        payer = expense.payer_user_id

        breakdowns.append(
            ExpenseBreakdown(
                expense_id=expense.id,
                description=expense.description,
                from_paid=expense.amount if payer == from_user_id else zero,
                from_owes=from_owes,
                to_paid=expense.amount if payer == to_user_id else zero,
                to_owes=to_owes,
                net_contribution=direct_contribution(
                    payer, from_user_id, to_user_id, from_owes, to_owes
                ),
            )
        )

    return TransferBreakdown(
        from_user_id=from_user_id,
        to_user_id=to_user_id,
        total_amount=transfer_amount,
        expense_breakdowns=breakdowns,
    )

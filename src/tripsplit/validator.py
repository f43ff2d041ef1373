"""Consistency checks for a computed settlement."""

import logging
from collections import defaultdict
from decimal import Decimal

from .currency import smallest_unit
from .models import IssueCode, MinimalTransfer, PersonSummary, ValidationIssue

logger = logging.getLogger(__name__)


def _net_sum(summaries: dict[str, PersonSummary]) -> Decimal:
    return sum((s.net_base for s in summaries.values()), Decimal("0"))


def check_conservation(
    summaries: dict[str, PersonSummary], currency: str
) -> list[ValidationIssue]:
    """Net balances must sum to zero within one currency unit."""
    total = _net_sum(summaries)
    epsilon = smallest_unit(currency)
    if abs(total) < epsilon:
        return []

    logger.warning(f"Conservation of money violated: balances sum to {total}")
    return [
        ValidationIssue(
            code=IssueCode.BALANCE_CONSERVATION_VIOLATION,
            message=(
                f"Net balances sum to {total} {currency} "
                f"(must be within {epsilon} of zero)"
            ),
        )
    ]


def check_transfers(
    summaries: dict[str, PersonSummary],
    transfers: list[MinimalTransfer],
    currency: str,
) -> list[ValidationIssue]:
    """
    Check a transfer list against the person summaries it should settle.

    Flags unknown parties, self transfers, duplicate pairs, non-positive
    amounts and people whose incoming minus outgoing transfers do not match
    their net balance.
    """
    issues: list[ValidationIssue] = []

    def inconsistency(message: str, user_id: str | None = None) -> None:
        issues.append(
            ValidationIssue(
                code=IssueCode.TRANSFER_INCONSISTENCY, message=message, user_id=user_id
            )
        )

    seen_pairs: dict[tuple[str, str], int] = defaultdict(int)
    for transfer in transfers:
        if transfer.from_user_id not in summaries:
            inconsistency(
                f"Transfer {transfer.id} has unknown payer {transfer.from_user_id}",
                transfer.from_user_id,
            )
        if transfer.to_user_id not in summaries:
            inconsistency(
                f"Transfer {transfer.id} has unknown receiver {transfer.to_user_id}",
                transfer.to_user_id,
            )
        if transfer.from_user_id == transfer.to_user_id:
            inconsistency(
                f"Transfer {transfer.id} has the same payer and receiver",
                transfer.from_user_id,
            )
        if transfer.amount_base <= 0:
            inconsistency(
                f"Transfer {transfer.id} has non-positive amount {transfer.amount_base}"
            )
        seen_pairs[(transfer.from_user_id, transfer.to_user_id)] += 1

    for (from_user_id, to_user_id), count in seen_pairs.items():
        if count > 1:
            inconsistency(
                f"Duplicate transfers from {from_user_id} to {to_user_id}: {count} found"
            )

    unit = smallest_unit(currency)
    for user_id, summary in summaries.items():
        incoming = Decimal("0")
        outgoing = Decimal("0")
        touching = 0
        for transfer in transfers:
            if transfer.to_user_id == user_id:
                incoming += transfer.amount_base
                touching += 1
            if transfer.from_user_id == user_id:
                outgoing += transfer.amount_base
                touching += 1

        difference = abs(incoming - outgoing - summary.net_base)
        tolerance = unit * max(touching, 1)
        if difference >= tolerance:
            inconsistency(
                f"Balance mismatch for {user_id}: transfers net "
                f"{incoming - outgoing} but balance is {summary.net_base}",
                user_id,
            )

    return issues


def validate(
    summaries: dict[str, PersonSummary],
    transfers: list[MinimalTransfer],
    currency: str,
) -> list[ValidationIssue]:
    """Run every settlement check; an empty list means the settlement is valid."""
    return check_conservation(summaries, currency) + check_transfers(
        summaries, transfers, currency
    )


def quick_validate(summaries: dict[str, PersonSummary], currency: str) -> bool:
    """Conservation-only check."""
    return abs(_net_sum(summaries)) < smallest_unit(currency)

"""Transfer strategies turning a trip's balances into payment instructions.

Two strategies are available behind one interface:

- ``pairwise`` (default): one transfer per netted pair of participants.
  Every transfer can be traced back to shared expenses.
- ``greedy`` (legacy): matches the largest creditor with the largest
  debtor until everyone is settled. Produces few transfers but may route
  money between people who never shared an expense.
"""

import hashlib
import logging
from abc import ABC, abstractmethod
from datetime import datetime
from decimal import Decimal

from pydantic import Field

from . import netting
from .currency import smallest_unit
from .exceptions import ConfigurationError
from .models import (
    Expense,
    FrozenModel,
    MinimalTransfer,
    PairwiseDebt,
    PersonSummary,
    ValidationIssue,
)

logger = logging.getLogger(__name__)


class TransferPlan(FrozenModel):
    """Transfers produced by a strategy, plus supporting detail."""

    transfers: list[MinimalTransfer] = Field(default_factory=list)
    pairwise_debts: list[PairwiseDebt] = Field(default_factory=list)
    issues: list[ValidationIssue] = Field(default_factory=list)


def compute_transfer_id(
    trip_id: str, from_user_id: str, to_user_id: str, amount: Decimal
) -> str:
    """
    Compute a deterministic transfer ID.

    The same trip, parties and amount always give the same ID, so
    recomputing a settlement yields identical transfers.

    Returns:
        SHA256 hash as hex string
    """
    combined = f"{trip_id}|{from_user_id}|{to_user_id}|{amount}"
    return hashlib.sha256(combined.encode()).hexdigest()


def make_transfer(
    trip_id: str,
    from_user_id: str,
    to_user_id: str,
    amount: Decimal,
    currency: str,
    computed_at: datetime,
) -> MinimalTransfer:
    return MinimalTransfer(
        id=compute_transfer_id(trip_id, from_user_id, to_user_id, amount),
        trip_id=trip_id,
        from_user_id=from_user_id,
        to_user_id=to_user_id,
        amount_base=amount,
        currency=currency,
        computed_at=computed_at,
    )


class TransferStrategy(ABC):
    """Interface for settlement transfer strategies."""

    name: str

    @abstractmethod
    def compute(
        self,
        trip_id: str,
        expenses: list[Expense],
        person_summaries: dict[str, PersonSummary],
        currency: str,
        computed_at: datetime,
    ) -> TransferPlan:
        """Compute the transfers that settle a trip."""


class PairwiseNetTransferStrategy(TransferStrategy):
    """One transfer per netted pair of participants."""

    name = "pairwise"

    def compute(
        self,
        trip_id: str,
        expenses: list[Expense],
        person_summaries: dict[str, PersonSummary],
        currency: str,
        computed_at: datetime,
    ) -> TransferPlan:
        debts, issues = netting.compute(trip_id, expenses, currency, computed_at)
        transfers = [
            make_transfer(
                trip_id,
                debt.from_user_id,
                debt.to_user_id,
                debt.netted_base,
                currency,
                computed_at,
            )
            for debt in debts
        ]
        return TransferPlan(transfers=transfers, pairwise_debts=debts, issues=issues)


class GreedyMinimalTransferStrategy(TransferStrategy):
    """
    Legacy greedy matching of creditors and debtors.

    Creditors and debtors are sorted once by amount, largest first, with
    ties broken by user id. The first creditor and first debtor settle
    min(credit, debt) and anyone left under one currency unit drops out.
    """

    name = "greedy"

    def compute(
        self,
        trip_id: str,
        expenses: list[Expense],
        person_summaries: dict[str, PersonSummary],
        currency: str,
        computed_at: datetime,
    ) -> TransferPlan:
        logger.debug("Using legacy greedy transfer strategy")
        epsilon = smallest_unit(currency)

        creditors = sorted(
            ([s.user_id, s.net_base] for s in person_summaries.values() if s.net_base > 0),
            key=lambda b: (-b[1], b[0]),
        )
        debtors = sorted(
            ([s.user_id, -s.net_base] for s in person_summaries.values() if s.net_base < 0),
            key=lambda b: (-b[1], b[0]),
        )

        transfers: list[MinimalTransfer] = []
        c = d = 0
        while c < len(creditors) and d < len(debtors):
            creditor, debtor = creditors[c], debtors[d]
            amount = min(creditor[1], debtor[1])

            if amount >= epsilon:
                transfers.append(
                    make_transfer(
                        trip_id, debtor[0], creditor[0], amount, currency, computed_at
                    )
                )
                logger.debug(f"{debtor[0]} pays {creditor[0]} {amount}")

            creditor[1] -= amount
            debtor[1] -= amount
            if creditor[1] < epsilon:
                c += 1
            if debtor[1] < epsilon:
                d += 1

        return TransferPlan(transfers=transfers)


_STRATEGIES: dict[str, type[TransferStrategy]] = {
    PairwiseNetTransferStrategy.name: PairwiseNetTransferStrategy,
    GreedyMinimalTransferStrategy.name: GreedyMinimalTransferStrategy,
}


def available_strategies() -> list[str]:
    return sorted(_STRATEGIES)


def get_strategy(name: str) -> TransferStrategy:
    """
    Look up a transfer strategy by name.

    Raises:
        ConfigurationError: If no strategy has that name
    """
    try:
        return _STRATEGIES[name.lower()]()
    except KeyError:
        raise ConfigurationError(
            f"Unknown transfer strategy '{name}'. "
            f"Available: {', '.join(available_strategies())}"
        ) from None

"""Trip settlement aggregation.

Folds a trip's expenses into per-person totals in a single pass, checks
that money is conserved, and asks a transfer strategy for the payments
that settle everyone up.
"""

import logging
from datetime import datetime, timezone
from decimal import Decimal

from pydantic import Field

from . import validator
from .calculator import ItemizedCalculator
from .config import Settings
from .currency import normalize_code
from .models import (
    UNCATEGORIZED_ID,
    UNCATEGORIZED_NAME,
    Category,
    CategorySpending,
    Expense,
    FrozenModel,
    IssueCode,
    ItemizedExpense,
    PersonCategorySpending,
    PersonSummary,
    SettlementResult,
    ValidationIssue,
)
from .shares import expense_shares
from .transfers import get_strategy

logger = logging.getLogger(__name__)

ZERO = Decimal("0")


class _LedgerBuilder:
    """
    Accumulates paid and owed totals during one pass over a trip's expenses.

    build() finalizes the ledger exactly once; the builder rejects further
    use afterwards so partial state never escapes.
    """

    def __init__(
        self,
        participants: list[str] | None = None,
        categories: list[Category] | None = None,
    ):
        self._paid: dict[str, Decimal] = {}
        self._owed: dict[str, Decimal] = {}
        self._track_categories = categories is not None
        self._categories = {c.id: c for c in categories or []}
        self._by_category: dict[str, dict[str, Decimal]] = {}
        self._finalized = False
        for user_id in participants or []:
            self._touch(user_id)

    def _touch(self, user_id: str) -> None:
        self._paid.setdefault(user_id, ZERO)
        self._owed.setdefault(user_id, ZERO)
        if self._track_categories:
            self._by_category.setdefault(user_id, {})

    def add(self, expense: Expense, shares: dict[str, Decimal]) -> None:
        if self._finalized:
            raise RuntimeError("Ledger already finalized")

        self._touch(expense.payer_user_id)
        self._paid[expense.payer_user_id] += expense.amount

        category_id = expense.category_id or UNCATEGORIZED_ID
        for user_id, share in shares.items():
            self._touch(user_id)
            self._owed[user_id] += share
            if self._track_categories:
                buckets = self._by_category[user_id]
                buckets[category_id] = buckets.get(category_id, ZERO) + share

    def build(
        self,
    ) -> tuple[dict[str, PersonSummary], dict[str, PersonCategorySpending] | None]:
        if self._finalized:
            raise RuntimeError("Ledger already finalized")
        self._finalized = True

        summaries = {
            user_id: PersonSummary(
                user_id=user_id,
                total_paid_base=self._paid[user_id],
                total_owed_base=self._owed[user_id],
                net_base=self._paid[user_id] - self._owed[user_id],
            )
            for user_id in self._paid
        }
        if not self._track_categories:
            return summaries, None

        spending = {
            user_id: PersonCategorySpending(
                user_id=user_id,
                total_paid_base=summary.total_paid_base,
                total_owed_base=summary.total_owed_base,
                net_base=summary.net_base,
                category_breakdown=sorted(
                    (
                        self._category_spending(category_id, amount)
                        for category_id, amount in self._by_category[user_id].items()
                    ),
                    key=lambda c: c.amount,
                    reverse=True,
                ),
            )
            for user_id, summary in summaries.items()
        }
        return summaries, spending

    def _category_spending(self, category_id: str, amount: Decimal) -> CategorySpending:
        category = self._categories.get(category_id)
        if category is None:
            name = UNCATEGORIZED_NAME if category_id == UNCATEGORIZED_ID else category_id
            return CategorySpending(category_id=category_id, category_name=name, amount=amount)
        return CategorySpending(
            category_id=category_id,
            category_name=category.name,
            amount=amount,
            color=category.color,
            icon=category.icon,
        )


class _Ledger(FrozenModel):
    """Outcome of the single aggregation pass."""

    summaries: dict[str, PersonSummary]
    category_spending: dict[str, PersonCategorySpending] | None = None
    expenses: list[Expense] = Field(default_factory=list)  # included, shares resolved
    issues: list[ValidationIssue] = Field(default_factory=list)


def validate_balances(
    summaries: dict[str, PersonSummary], currency: str
) -> list[ValidationIssue]:
    """Net balances must sum to zero within the currency's smallest unit."""
    return validator.check_conservation(summaries, currency)


class SettlementAggregator:
    """Computes balances and transfers for a trip."""

    def __init__(
        self,
        settings: Settings | None = None,
        calculator: ItemizedCalculator | None = None,
    ):
        """Initialize the aggregator."""
        self.settings = settings or Settings()
        self.calculator = calculator or ItemizedCalculator(self.settings)

    def _aggregate(
        self,
        expenses: list[Expense],
        base_currency: str,
        participants: list[str] | None = None,
        categories: list[Category] | None = None,
    ) -> _Ledger:
        base_currency = normalize_code(base_currency)
        builder = _LedgerBuilder(participants, categories)
        included: list[Expense] = []
        issues: list[ValidationIssue] = []
        known = set(participants or [])

        for expense in expenses:
            if expense.currency != base_currency:
                logger.warning(
                    f"Excluding expense {expense.id}: currency {expense.currency} "
                    f"differs from trip currency {base_currency}"
                )
                issues.append(
                    ValidationIssue(
                        code=IssueCode.CURRENCY_MISMATCH,
                        message=(
                            f"Expense {expense.id} is in {expense.currency}, "
                            f"trip settles in {base_currency}"
                        ),
                        expense_id=expense.id,
                    )
                )
                continue

            result = expense_shares(expense, self.calculator)
            issues.extend(result.issues)
            if not result.is_valid:
                logger.warning(f"Excluding expense {expense.id}: shares are invalid")
                continue

            if known and expense.payer_user_id not in known:
                issues.append(
                    ValidationIssue(
                        code=IssueCode.PAYER_NOT_PARTICIPANT,
                        message=(
                            f"Payer {expense.payer_user_id} of expense {expense.id} "
                            f"is not a trip participant"
                        ),
                        blocking=False,
                        user_id=expense.payer_user_id,
                        expense_id=expense.id,
                    )
                )

            if isinstance(expense, ItemizedExpense) and expense.participant_amounts is None:
                # Keep the computed amounts so later stages never recompute them
                expense = expense.model_copy(
                    update={"participant_amounts": result.shares}
                )

            logger.debug(f"Expense {expense.id}: {expense.payer_user_id} paid {expense.amount}")
            builder.add(expense, result.shares)
            included.append(expense)

        summaries, category_spending = builder.build()
        return _Ledger(
            summaries=summaries,
            category_spending=category_spending,
            expenses=included,
            issues=issues,
        )

    def compute_person_summaries(
        self,
        expenses: list[Expense],
        base_currency: str,
        participants: list[str] | None = None,
    ) -> tuple[dict[str, PersonSummary], list[ValidationIssue]]:
        """
        Per-person paid, owed and net totals.

        Returns:
            Tuple of (summaries keyed by user id, issues)
        """
        ledger = self._aggregate(expenses, base_currency, participants)
        issues = ledger.issues + validate_balances(ledger.summaries, base_currency)
        return ledger.summaries, issues

    def compute_category_spending(
        self,
        expenses: list[Expense],
        base_currency: str,
        categories: list[Category] | None = None,
        participants: list[str] | None = None,
    ) -> dict[str, PersonCategorySpending]:
        """Per-person owed amounts broken down by category."""
        ledger = self._aggregate(expenses, base_currency, participants, categories or [])
        return ledger.category_spending or {}

    def compute(
        self,
        trip_id: str,
        expenses: list[Expense],
        base_currency: str,
        participants: list[str] | None = None,
        categories: list[Category] | None = None,
        strategy: str | None = None,
        computed_at: datetime | None = None,
    ) -> SettlementResult:
        """
        Compute a trip's complete settlement.

        Args:
            trip_id: Trip identifier
            expenses: All expenses of the trip
            base_currency: Currency the trip settles in
            participants: Trip members (members with no expenses get zero balances)
            categories: Category metadata; when given, spending per category is computed
            strategy: Transfer strategy name (defaults from settings)
            computed_at: Timestamp stamped on results (defaults to now, UTC)

        Returns:
            SettlementResult. Blocking issues are reported in result.issues;
            call raise_for_errors() to turn them into exceptions.

        Raises:
            ConfigurationError: If the strategy name is unknown
        """
        transfer_strategy = get_strategy(strategy or self.settings.transfer_strategy)
        base_currency = normalize_code(base_currency)
        computed_at = computed_at or datetime.now(timezone.utc)

        ledger = self._aggregate(expenses, base_currency, participants, categories)
        issues = ledger.issues + validate_balances(ledger.summaries, base_currency)

        plan = transfer_strategy.compute(
            trip_id, ledger.expenses, ledger.summaries, base_currency, computed_at
        )
        issues += plan.issues
        issues += validator.check_transfers(ledger.summaries, plan.transfers, base_currency)

        logger.info(
            f"Settled trip {trip_id}: {len(ledger.expenses)} expenses, "
            f"{len(ledger.summaries)} people, {len(plan.transfers)} transfers "
            f"({transfer_strategy.name})"
        )

        return SettlementResult(
            trip_id=trip_id,
            base_currency=base_currency,
            strategy=transfer_strategy.name,
            person_summaries=ledger.summaries,
            pairwise_debts=plan.pairwise_debts,
            transfers=plan.transfers,
            category_spending=ledger.category_spending,
            issues=issues,
            computed_at=computed_at,
        )

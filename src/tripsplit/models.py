"""Pydantic domain models for tripsplit.

All records are frozen: every computation builds fresh values and nothing
is mutated in place. Decimal fields serialize to exact decimal strings in
JSON mode.
"""

from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Annotated, Literal

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from .currency import normalize_code, smallest_unit
from .exceptions import BalanceConservationError, ComputationError

SHARE_SUM_TOLERANCE = Decimal("0.0001")
UNCATEGORIZED_ID = "uncategorized"
UNCATEGORIZED_NAME = "Uncategorized"


class FrozenModel(BaseModel):
    """Base class for immutable value records."""

    model_config = ConfigDict(frozen=True)


# ============================================================================
# Enumerations
# ============================================================================


class RoundingMode(str, Enum):
    """How an amount is rounded to a multiple of the precision."""

    ROUND_HALF_UP = "round_half_up"  # ties away from zero
    ROUND_HALF_EVEN = "round_half_even"  # banker's rounding
    FLOOR = "floor"
    CEIL = "ceil"


class RemainderPolicy(str, Enum):
    """Who receives the rounding remainder."""

    LARGEST_SHARE = "largest_share"
    PAYER = "payer"
    FIRST_LISTED = "first_listed"
    DETERMINISTIC = "deterministic"  # seeded pseudorandom


class PercentBase(str, Enum):
    """Subtotal a percentage-based extra is computed against."""

    PRE_TAX_ITEM_SUBTOTALS = "pre_tax_item_subtotals"
    TAXABLE_ITEM_SUBTOTALS_ONLY = "taxable_item_subtotals_only"
    POST_DISCOUNT_ITEM_SUBTOTALS = "post_discount_item_subtotals"
    POST_TAX_SUBTOTALS = "post_tax_subtotals"
    POST_FEES_SUBTOTALS = "post_fees_subtotals"


class AbsoluteSplitMode(str, Enum):
    """How an absolute-value extra is split among participants."""

    PROPORTIONAL_TO_ITEMS_SUBTOTAL = "proportional_to_items_subtotal"
    EVEN_ACROSS_ASSIGNED_PEOPLE = "even_across_assigned_people"


class ExtraType(str, Enum):
    """Whether an extra is a percentage or an absolute amount."""

    PERCENT = "percent"
    AMOUNT = "amount"


class SplitType(str, Enum):
    """Strategy used to divide an expense among participants."""

    EQUAL = "equal"
    WEIGHTED = "weighted"
    ITEMIZED = "itemized"


class IssueCode(str, Enum):
    """Error and warning taxonomy returned by the calculators."""

    UNASSIGNED_ITEM = "unassigned_item"
    SHARES_DO_NOT_SUM_TO_ONE = "shares_do_not_sum_to_one"
    NEGATIVE_TOTAL = "negative_total"
    COMPUTATION_MISMATCH = "computation_mismatch"
    EXTREME_PERCENTAGE = "extreme_percentage"
    BALANCE_CONSERVATION_VIOLATION = "balance_conservation_violation"
    INVALID_EXPENSE = "invalid_expense"
    CURRENCY_MISMATCH = "currency_mismatch"
    PAYER_NOT_PARTICIPANT = "payer_not_participant"
    TRANSFER_INCONSISTENCY = "transfer_inconsistency"


# ============================================================================
# Validation Issues
# ============================================================================


class ValidationIssue(FrozenModel):
    """A blocking error or an advisory warning produced by a computation."""

    code: IssueCode
    message: str
    blocking: bool = True
    item_id: str | None = None
    user_id: str | None = None
    expense_id: str | None = None


class IssueCollection(FrozenModel):
    """Mixin for results that carry a list of validation issues."""

    issues: list[ValidationIssue] = Field(default_factory=list)

    @property
    def errors(self) -> list[ValidationIssue]:
        """Blocking issues only."""
        return [issue for issue in self.issues if issue.blocking]

    @property
    def warnings(self) -> list[ValidationIssue]:
        """Non-blocking issues only."""
        return [issue for issue in self.issues if not issue.blocking]

    @property
    def is_valid(self) -> bool:
        """True if the result can be accepted by the caller."""
        return not self.errors


# ============================================================================
# Itemized Receipt Models
# ============================================================================


class EvenAssignment(FrozenModel):
    """Item split evenly across the assigned users."""

    mode: Literal["even"] = "even"
    users: list[str] = Field(default_factory=list)


class CustomAssignment(FrozenModel):
    """Item split by explicit proportional shares that sum to 1."""

    mode: Literal["custom"] = "custom"
    users: list[str] = Field(default_factory=list)
    shares: dict[str, Decimal] = Field(default_factory=dict)

    def shares_error(self) -> str | None:
        """
        Check the share invariants.

        Returns:
            Error message if the shares are invalid, None otherwise
        """
        if set(self.shares) != set(self.users):
            return (
                f"Share keys {sorted(self.shares)} do not match "
                f"assigned users {sorted(self.users)}"
            )
        if any(share < 0 for share in self.shares.values()):
            return "Shares must be non-negative"
        total = sum(self.shares.values(), Decimal("0"))
        if abs(total - Decimal("1")) > SHARE_SUM_TOLERANCE:
            return f"Shares must sum to 1.0 (current sum: {total})"
        return None


ItemAssignment = Annotated[
    EvenAssignment | CustomAssignment, Field(discriminator="mode")
]


class LineItem(FrozenModel):
    """A single line on a receipt."""

    id: str
    name: str
    quantity: Decimal = Field(default=Decimal("1"), gt=0)
    unit_price: Decimal = Field(ge=0)
    taxable: bool = True
    service_chargeable: bool = True
    assignment: ItemAssignment = Field(default_factory=EvenAssignment)

    @property
    def item_total(self) -> Decimal:
        """quantity * unit_price."""
        return self.quantity * self.unit_price


class _Extra(FrozenModel):
    """Common shape of tax, tip, fee and discount extras."""

    type: ExtraType
    value: Decimal
    base: PercentBase | None = None  # percent only; None uses the rule's base

    @model_validator(mode="after")
    def _check_base(self):
        if self.type == ExtraType.AMOUNT and self.base is not None:
            raise ValueError("Amount-based extras cannot have a percent base")
        return self

    @property
    def is_percent(self) -> bool:
        return self.type == ExtraType.PERCENT


class TaxExtra(_Extra):
    """Tax, e.g. 8.875 percent on taxable items or a flat amount."""

    value: Decimal = Field(gt=0)


class TipExtra(_Extra):
    """Tip; zero is allowed (no tip)."""

    value: Decimal = Field(ge=0)


class FeeExtra(_Extra):
    """Additional charge such as a delivery fee or service charge."""

    id: str
    name: str
    value: Decimal = Field(gt=0)


class DiscountExtra(_Extra):
    """Coupon or promotion reducing subtotals before tax."""

    id: str
    name: str
    value: Decimal = Field(gt=0)


class Extras(FrozenModel):
    """Tax, tip, fees and discounts attached to an itemized expense."""

    tax: TaxExtra | None = None
    tip: TipExtra | None = None
    fees: list[FeeExtra] = Field(default_factory=list)
    discounts: list[DiscountExtra] = Field(default_factory=list)


class RoundingConfig(FrozenModel):
    """Rounding precision, mode and remainder policy."""

    precision: Decimal = Field(default=Decimal("0.01"), gt=0)
    mode: RoundingMode = RoundingMode.ROUND_HALF_UP
    remainder_policy: RemainderPolicy = RemainderPolicy.LARGEST_SHARE

    @classmethod
    def for_currency(
        cls,
        currency: str,
        mode: RoundingMode = RoundingMode.ROUND_HALF_UP,
        remainder_policy: RemainderPolicy = RemainderPolicy.LARGEST_SHARE,
    ) -> "RoundingConfig":
        """Build a config whose precision is the currency's smallest unit."""
        return cls(
            precision=smallest_unit(currency),
            mode=mode,
            remainder_policy=remainder_policy,
        )


class AllocationRule(FrozenModel):
    """How extras are allocated and how totals are rounded."""

    percent_base: PercentBase = PercentBase.PRE_TAX_ITEM_SUBTOTALS
    absolute_split_mode: AbsoluteSplitMode = (
        AbsoluteSplitMode.PROPORTIONAL_TO_ITEMS_SUBTOTAL
    )
    rounding: RoundingConfig = Field(default_factory=RoundingConfig)


class ItemContribution(FrozenModel):
    """Audit record of one item's contribution to one participant."""

    item_id: str
    item_name: str
    quantity: Decimal
    unit_price: Decimal
    assigned_share: Decimal  # 0.0 to 1.0
    contribution_amount: Decimal


class ParticipantBreakdown(FrozenModel):
    """
    Complete per-person audit trail for an itemized expense.

    total == items_subtotal - discounts + tax + fees + tip + rounding_adjustment
    """

    user_id: str
    items_subtotal: Decimal
    discounts: Decimal = Decimal("0")
    tax: Decimal = Decimal("0")
    fees: Decimal = Decimal("0")
    tip: Decimal = Decimal("0")
    extras_allocated: dict[str, Decimal] = Field(default_factory=dict)
    unrounded_total: Decimal
    rounding_adjustment: Decimal
    total: Decimal
    items: list[ItemContribution] = Field(default_factory=list)


class ItemizedResult(IssueCollection):
    """Output of the itemized calculator."""

    participant_amounts: dict[str, Decimal] = Field(default_factory=dict)
    participant_breakdown: dict[str, ParticipantBreakdown] = Field(
        default_factory=dict
    )
    grand_total: Decimal = Decimal("0")
    remainder: Decimal = Decimal("0")
    remainder_recipient: str | None = None


# ============================================================================
# Expense Models
# ============================================================================


class _ExpenseBase(FrozenModel):
    """Fields shared by every split type."""

    id: str
    trip_id: str | None = None
    payer_user_id: str
    currency: str = "USD"
    amount: Decimal = Field(ge=0)
    participants: dict[str, Decimal] = Field(default_factory=dict)  # user -> weight
    category_id: str | None = None
    description: str | None = None

    @field_validator("currency")
    @classmethod
    def _normalize_currency(cls, value: str) -> str:
        return normalize_code(value)


class EqualExpense(_ExpenseBase):
    """Expense divided evenly among participants."""

    split_type: Literal["equal"] = SplitType.EQUAL.value


class WeightedExpense(_ExpenseBase):
    """Expense divided proportionally to participant weights."""

    split_type: Literal["weighted"] = SplitType.WEIGHTED.value


class ItemizedExpense(_ExpenseBase):
    """
    Expense derived from assigned receipt line items plus extras.

    participant_amounts is the calculator's canonical output. When present
    it is ground truth and is never recomputed downstream.
    """

    split_type: Literal["itemized"] = SplitType.ITEMIZED.value
    items: list[LineItem] = Field(default_factory=list)
    extras: Extras = Field(default_factory=Extras)
    allocation: AllocationRule | None = None
    participant_amounts: dict[str, Decimal] | None = None


Expense = Annotated[
    EqualExpense | WeightedExpense | ItemizedExpense,
    Field(discriminator="split_type"),
]


class Category(FrozenModel):
    """Display metadata for an expense category."""

    id: str
    name: str
    color: str | None = None
    icon: str | None = None


# ============================================================================
# Settlement Models
# ============================================================================


class PersonSummary(FrozenModel):
    """A participant's totals across a trip, in base currency."""

    user_id: str
    total_paid_base: Decimal = Decimal("0")
    total_owed_base: Decimal = Decimal("0")
    net_base: Decimal = Decimal("0")  # paid - owed; positive means owed money


class PairwiseDebt(FrozenModel):
    """Net amount one participant owes another after netting."""

    trip_id: str
    from_user_id: str
    to_user_id: str
    netted_base: Decimal = Field(gt=0)
    computed_at: datetime


class MinimalTransfer(FrozenModel):
    """A concrete payment instruction."""

    id: str
    trip_id: str
    from_user_id: str
    to_user_id: str
    amount_base: Decimal = Field(gt=0)
    currency: str | None = None
    computed_at: datetime
    is_settled: bool = False
    settled_at: datetime | None = None

    def mark_settled(self, settled_at: datetime) -> "MinimalTransfer":
        """Return a copy of this transfer marked as settled."""
        return self.model_copy(update={"is_settled": True, "settled_at": settled_at})


class CategorySpending(FrozenModel):
    """Amount a person owes within one category."""

    category_id: str
    category_name: str
    amount: Decimal
    color: str | None = None
    icon: str | None = None


class PersonCategorySpending(FrozenModel):
    """Per-person totals plus spending broken down by category."""

    user_id: str
    total_paid_base: Decimal
    total_owed_base: Decimal
    net_base: Decimal
    category_breakdown: list[CategorySpending] = Field(default_factory=list)

    @property
    def total_category_spending(self) -> Decimal:
        return sum((c.amount for c in self.category_breakdown), Decimal("0"))

    def spending_for(self, category_id: str) -> Decimal:
        """Amount spent in one category (zero if absent)."""
        for category in self.category_breakdown:
            if category.category_id == category_id:
                return category.amount
        return Decimal("0")


class SettlementResult(IssueCollection):
    """Everything the settlement aggregator computes for one trip."""

    trip_id: str
    base_currency: str
    strategy: str
    person_summaries: dict[str, PersonSummary] = Field(default_factory=dict)
    pairwise_debts: list[PairwiseDebt] = Field(default_factory=list)
    transfers: list[MinimalTransfer] = Field(default_factory=list)
    category_spending: dict[str, PersonCategorySpending] | None = None
    computed_at: datetime

    def raise_for_errors(self) -> None:
        """
        Raise if the settlement carries blocking issues.

        Raises:
            BalanceConservationError: If net balances do not sum to zero
            ComputationError: For any other blocking issue
        """
        errors = self.errors
        if not errors:
            return
        if any(
            issue.code == IssueCode.BALANCE_CONSERVATION_VIOLATION for issue in errors
        ):
            raise BalanceConservationError(errors)
        raise ComputationError(errors)


# ============================================================================
# Transfer Breakdown Models
# ============================================================================


class ExpenseBreakdown(FrozenModel):
    """How one expense contributes to the debt between two people."""

    expense_id: str
    description: str | None = None
    from_paid: Decimal
    from_owes: Decimal
    to_paid: Decimal
    to_owes: Decimal
    net_contribution: Decimal  # positive: from owes to; negative: to owes from

    @property
    def explanation(self) -> str:
        if self.net_contribution > 0:
            return f"Contributes {abs(self.net_contribution)} to transfer"
        if self.net_contribution < 0:
            return f"Reduces transfer by {abs(self.net_contribution)}"
        return "No net effect on transfer"


class TransferBreakdown(FrozenModel):
    """Per-expense explanation of a pairwise transfer."""

    from_user_id: str
    to_user_id: str
    total_amount: Decimal
    expense_breakdowns: list[ExpenseBreakdown] = Field(default_factory=list)

    @property
    def relevant_breakdowns(self) -> list[ExpenseBreakdown]:
        return [b for b in self.expense_breakdowns if b.net_contribution != 0]

    @property
    def total_positive_contributions(self) -> Decimal:
        return sum(
            (b.net_contribution for b in self.expense_breakdowns if b.net_contribution > 0),
            Decimal("0"),
        )

    @property
    def total_negative_contributions(self) -> Decimal:
        return sum(
            (-b.net_contribution for b in self.expense_breakdowns if b.net_contribution < 0),
            Decimal("0"),
        )

    @property
    def net_contribution(self) -> Decimal:
        """Positive minus negative contributions; equals total_amount."""
        return self.total_positive_contributions - self.total_negative_contributions


# ============================================================================
# Input File Models
# ============================================================================


class TripInput(FrozenModel):
    """A trip's expenses as read from a JSON file."""

    trip_id: str
    base_currency: str = "USD"
    participants: list[str] = Field(default_factory=list)
    expenses: list[Expense] = Field(default_factory=list)
    categories: list[Category] = Field(default_factory=list)

    @field_validator("base_currency")
    @classmethod
    def _normalize_currency(cls, value: str) -> str:
        return normalize_code(value)


class ReceiptInput(FrozenModel):
    """A single itemized receipt as read from a JSON file."""

    items: list[LineItem]
    extras: Extras = Field(default_factory=Extras)
    allocation: AllocationRule | None = None
    participants: list[str] = Field(default_factory=list)
    payer_user_id: str
    currency: str = "USD"
    seed: int | None = None

    @field_validator("currency")
    @classmethod
    def _normalize_currency(cls, value: str) -> str:
        return normalize_code(value)

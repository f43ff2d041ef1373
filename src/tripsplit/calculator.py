"""Itemized receipt allocation.

Distributes a receipt's line items, discounts, tax, fees and tip across
participants in a fixed order, then rounds each participant's total and
assigns the rounding remainder to a single participant.

Order of operations:
1. Item shares (even or custom)
2. Discounts
3. Tax
4. Fees
5. Tip
6. Totals, rounding and remainder
7. Validation
"""

import logging
from decimal import Decimal

from .config import Settings
from .models import (
    AbsoluteSplitMode,
    AllocationRule,
    CustomAssignment,
    Extras,
    IssueCode,
    ItemContribution,
    ItemizedResult,
    LineItem,
    ParticipantBreakdown,
    PercentBase,
    RemainderPolicy,
    ValidationIssue,
)
from .rounding import round_amount, round_amounts

logger = logging.getLogger(__name__)

ZERO = Decimal("0")
HUNDRED = Decimal("100")

# Stages at which a percent base is resolved
_DISCOUNT_STAGE = 0
_TAX_STAGE = 1
_FEE_STAGE = 2
_TIP_STAGE = 3

_ITEM_DERIVED_BASES = frozenset(
    {
        PercentBase.PRE_TAX_ITEM_SUBTOTALS,
        PercentBase.TAXABLE_ITEM_SUBTOTALS_ONLY,
        PercentBase.POST_DISCOUNT_ITEM_SUBTOTALS,
    }
)


class _Subtotals:
    """Running per-user subtotals, filled stage by stage during one calculation."""

    def __init__(self, users: list[str]):
        self.items = {u: ZERO for u in users}
        self.taxable = {u: ZERO for u in users}
        self.service = {u: ZERO for u in users}
        self.taxable_service = {u: ZERO for u in users}
        self.discounts = {u: ZERO for u in users}
        self.tax = {u: ZERO for u in users}
        self.fees = {u: ZERO for u in users}
        self.tip = {u: ZERO for u in users}
        self.extras_allocated: dict[str, dict[str, Decimal]] = {u: {} for u in users}

    def add_item(self, user_id: str, item: LineItem, amount: Decimal) -> None:
        self.items[user_id] += amount
        if item.taxable:
            self.taxable[user_id] += amount
        if item.service_chargeable:
            self.service[user_id] += amount
            if item.taxable:
                self.taxable_service[user_id] += amount

    def base(
        self,
        user_id: str,
        percent_base: PercentBase,
        stage: int,
        service_only: bool = False,
    ) -> Decimal:
        """
        Subtotal a percentage applies to at the given stage.

        A base that names a later stage resolves to the running subtotal
        available now. With service_only, item-derived bases count only
        service-chargeable items.
        """
        items = self.service[user_id] if service_only else self.items[user_id]
        if percent_base == PercentBase.PRE_TAX_ITEM_SUBTOTALS:
            return items
        if percent_base == PercentBase.TAXABLE_ITEM_SUBTOTALS_ONLY:
            return self.taxable_service[user_id] if service_only else self.taxable[user_id]

        discount = self.discounts[user_id] if stage > _DISCOUNT_STAGE else ZERO
        if service_only and discount:
            # Discounts are not tracked per item; scale to the chargeable share
            all_items = self.items[user_id]
            discount = discount * items / all_items if all_items else ZERO
        post_discount = items - discount
        if percent_base == PercentBase.POST_DISCOUNT_ITEM_SUBTOTALS:
            return post_discount

        post_tax = post_discount + (self.tax[user_id] if stage > _TAX_STAGE else ZERO)
        if percent_base == PercentBase.POST_TAX_SUBTOTALS:
            return post_tax

        return post_tax + (self.fees[user_id] if stage > _FEE_STAGE else ZERO)

    def allocate(
        self, target: dict[str, Decimal], key: str, amounts: dict[str, Decimal]
    ) -> None:
        for user_id, amount in amounts.items():
            target[user_id] += amount
            allocated = self.extras_allocated[user_id]
            allocated[key] = allocated.get(key, ZERO) + amount

    def raw_total(self, user_id: str) -> Decimal:
        return (
            self.items[user_id]
            - self.discounts[user_id]
            + self.tax[user_id]
            + self.fees[user_id]
            + self.tip[user_id]
        )


class ItemizedCalculator:
    """Allocates an itemized receipt across participants."""

    def __init__(self, settings: Settings | None = None):
        """Initialize the calculator with optional settings."""
        self.settings = settings or Settings()

    def calculate(
        self,
        items: list[LineItem],
        extras: Extras,
        allocation: AllocationRule | None,
        participants: list[str],
        payer_id: str | None,
        currency: str,
        seed: int | None = None,
    ) -> ItemizedResult:
        """
        Compute each participant's amount for an itemized receipt.

        Args:
            items: Receipt line items with assignments
            extras: Tax, tip, fees and discounts
            allocation: Allocation rule (defaults from settings when None)
            participants: Participant ids in display order
            payer_id: Payer, used by the PAYER remainder policy
            currency: ISO 4217 code of the receipt
            seed: Seed for the DETERMINISTIC remainder policy

        Returns:
            ItemizedResult. participant_amounts is empty when any blocking
            issue was found; breakdowns are kept for diagnostics.
        """
        if allocation is None:
            allocation = self.settings.default_allocation_rule(currency)
        rounding = allocation.rounding

        issues: list[ValidationIssue] = []
        users = _ordered_users(items, participants)
        subtotals = _Subtotals(users)
        contributions: dict[str, list[ItemContribution]] = {u: [] for u in users}

        # Step 1: Item shares
        for item in items:
            assignment = item.assignment
            if not assignment.users:
                issues.append(
                    ValidationIssue(
                        code=IssueCode.UNASSIGNED_ITEM,
                        message=f"Item '{item.name}' is not assigned to anyone",
                        item_id=item.id,
                    )
                )
                continue

            if isinstance(assignment, CustomAssignment):
                error = assignment.shares_error()
                if error:
                    issues.append(
                        ValidationIssue(
                            code=IssueCode.SHARES_DO_NOT_SUM_TO_ONE,
                            message=f"Item '{item.name}': {error}",
                            item_id=item.id,
                        )
                    )
                    continue
                splits = {
                    u: (assignment.shares[u], item.item_total * assignment.shares[u])
                    for u in assignment.users
                }
            else:
                count = len(assignment.users)
                splits = {
                    u: (Decimal("1") / count, item.item_total / count)
                    for u in assignment.users
                }

            for user_id, (fraction, amount) in splits.items():
                subtotals.add_item(user_id, item, amount)
                contributions[user_id].append(
                    ItemContribution(
                        item_id=item.id,
                        item_name=item.name,
                        quantity=item.quantity,
                        unit_price=item.unit_price,
                        assigned_share=fraction,
                        contribution_amount=amount,
                    )
                )

        with_items = [u for u in users if contributions[u]]
        split_targets = with_items or users

        def split_absolute(amount: Decimal) -> dict[str, Decimal]:
            return _split_absolute(
                amount, allocation.absolute_split_mode, split_targets, subtotals.items
            )

        def percent_of(
            percent: Decimal, base: PercentBase, stage: int, service_only: bool = False
        ) -> dict[str, Decimal]:
            return {
                u: subtotals.base(u, base, stage, service_only) * percent / HUNDRED
                for u in users
            }

        # Step 2: Discounts
        for discount in extras.discounts:
            if discount.is_percent:
                base = discount.base or allocation.percent_base
                amounts = percent_of(discount.value, base, _DISCOUNT_STAGE)
            else:
                amounts = split_absolute(discount.value)
            subtotals.allocate(subtotals.discounts, f"discount:{discount.name}", amounts)

        # Step 3: Tax
        if extras.tax is not None:
            tax = extras.tax
            if tax.is_percent:
                issues.extend(self._check_percentage("Tax", tax.value))
                amounts = percent_of(
                    tax.value, tax.base or allocation.percent_base, _TAX_STAGE
                )
            else:
                amounts = split_absolute(tax.value)
            subtotals.allocate(subtotals.tax, "tax", amounts)

        # Step 4: Fees
        for fee in extras.fees:
            if fee.is_percent:
                base = fee.base or allocation.percent_base
                amounts = percent_of(
                    fee.value, base, _FEE_STAGE, service_only=base in _ITEM_DERIVED_BASES
                )
            else:
                amounts = split_absolute(fee.value)
            subtotals.allocate(subtotals.fees, f"fee:{fee.name}", amounts)

        # Step 5: Tip
        if extras.tip is not None:
            tip = extras.tip
            if tip.is_percent:
                issues.extend(self._check_percentage("Tip", tip.value))
                amounts = percent_of(
                    tip.value, tip.base or allocation.percent_base, _TIP_STAGE
                )
            else:
                amounts = split_absolute(tip.value)
            subtotals.allocate(subtotals.tip, "tip", amounts)

        # Step 6: Totals, rounding and remainder
        raw_totals = {u: subtotals.raw_total(u) for u in users}
        raw_sum = sum(raw_totals.values(), ZERO)
        grand_total = round_amount(raw_sum, rounding.precision, rounding.mode)

        # Only participants carrying an amount, or the payer under the PAYER
        # policy, may absorb the remainder
        keep_payer = rounding.remainder_policy == RemainderPolicy.PAYER
        candidates = {
            u: t
            for u, t in raw_totals.items()
            if t != 0 or (keep_payer and u == payer_id)
        } or raw_totals
        rounded = round_amounts(
            candidates, rounding, payer_id=payer_id, target_total=grand_total, seed=seed
        )
        zero = round_amount(ZERO, rounding.precision, rounding.mode)
        final_totals = {u: rounded.amounts.get(u, zero) for u in users}

        breakdowns = {
            u: ParticipantBreakdown(
                user_id=u,
                items_subtotal=subtotals.items[u],
                discounts=subtotals.discounts[u],
                tax=subtotals.tax[u],
                fees=subtotals.fees[u],
                tip=subtotals.tip[u],
                extras_allocated=subtotals.extras_allocated[u],
                unrounded_total=raw_totals[u],
                rounding_adjustment=final_totals[u] - raw_totals[u],
                total=final_totals[u],
                items=contributions[u],
            )
            for u in users
        }

        # Step 7: Validation
        for user_id, total in final_totals.items():
            if total < 0:
                issues.append(
                    ValidationIssue(
                        code=IssueCode.NEGATIVE_TOTAL,
                        message=f"Participant {user_id} has a negative total: {total}",
                        user_id=user_id,
                    )
                )

        final_sum = sum(final_totals.values(), ZERO)
        if abs(final_sum - raw_sum) >= rounding.precision:
            issues.append(
                ValidationIssue(
                    code=IssueCode.COMPUTATION_MISMATCH,
                    message=(
                        f"Rounded totals sum to {final_sum} but unrounded "
                        f"totals sum to {raw_sum}"
                    ),
                )
            )

        has_errors = any(issue.blocking for issue in issues)
        if has_errors:
            logger.warning(
                f"Itemized calculation produced {len(issues)} issue(s), "
                f"no participant amounts returned"
            )
        else:
            logger.info(
                f"Itemized {len(items)} items across {len(users)} participants, "
                f"grand total {grand_total} {currency}"
            )

        return ItemizedResult(
            participant_amounts={} if has_errors else final_totals,
            participant_breakdown=breakdowns,
            grand_total=grand_total,
            remainder=rounded.remainder,
            remainder_recipient=rounded.recipient,
            issues=issues,
        )

    def _check_percentage(self, label: str, value: Decimal) -> list[ValidationIssue]:
        threshold = self.settings.extreme_percentage_threshold
        if value <= threshold:
            return []
        return [
            ValidationIssue(
                code=IssueCode.EXTREME_PERCENTAGE,
                message=f"{label} of {value}% exceeds {threshold}%",
                blocking=False,
            )
        ]


def _ordered_users(items: list[LineItem], participants: list[str]) -> list[str]:
    """Listed participants first, then assigned users missing from the list."""
    users = list(dict.fromkeys(participants))
    seen = set(users)
    for item in items:
        for user_id in item.assignment.users:
            if user_id not in seen:
                seen.add(user_id)
                users.append(user_id)
    return users


def _split_absolute(
    amount: Decimal,
    mode: AbsoluteSplitMode,
    targets: list[str],
    item_subtotals: dict[str, Decimal],
) -> dict[str, Decimal]:
    """Split an absolute extra among target users (unrounded)."""
    if not targets:
        return {}

    if mode == AbsoluteSplitMode.PROPORTIONAL_TO_ITEMS_SUBTOTAL:
        total = sum((item_subtotals[u] for u in targets), ZERO)
        if total != 0:
            return {u: amount * item_subtotals[u] / total for u in targets}
        logger.debug("No item subtotal to weight by, splitting absolute extra evenly")

    share = amount / len(targets)
    return {u: share for u in targets}

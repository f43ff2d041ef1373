"""Rounding and remainder distribution.

Amounts are rounded independently, the residual against the expected total
is computed, and the whole residual is assigned to exactly one recipient
chosen by a RemainderPolicy. The rounded amounts then sum to the expected
total exactly.
"""

import hashlib
import logging
import random
from decimal import (
    ROUND_CEILING,
    ROUND_FLOOR,
    ROUND_HALF_EVEN,
    ROUND_HALF_UP,
    Decimal,
    getcontext,
    localcontext,
)

from pydantic import Field

from .models import FrozenModel, RemainderPolicy, RoundingConfig, RoundingMode

logger = logging.getLogger(__name__)

_DECIMAL_ROUNDING = {
    RoundingMode.ROUND_HALF_UP: ROUND_HALF_UP,
    RoundingMode.ROUND_HALF_EVEN: ROUND_HALF_EVEN,
    RoundingMode.FLOOR: ROUND_FLOOR,
    RoundingMode.CEIL: ROUND_CEILING,
}


class RoundedAllocation(FrozenModel):
    """Rounded amounts plus the remainder that was applied to reach the target."""

    amounts: dict[str, Decimal] = Field(default_factory=dict)
    remainder: Decimal = Decimal("0")
    recipient: str | None = None


def _quantum(precision: Decimal) -> Decimal:
    """Exponent template for results at a given precision (0.05 -> 0.01)."""
    exponent = precision.normalize().as_tuple().exponent
    if not isinstance(exponent, int) or exponent > 0:
        exponent = 0
    return Decimal(1).scaleb(exponent)


def round_amount(
    amount: Decimal,
    precision: Decimal = Decimal("0.01"),
    mode: RoundingMode = RoundingMode.ROUND_HALF_UP,
) -> Decimal:
    """
    Round an amount to the nearest multiple of precision.

    Precision can be any positive step: 0.01 for cents, 0.05 for
    nickel rounding, 1 for zero-decimal currencies.

    Args:
        amount: Unrounded amount
        precision: Rounding step (must be positive)
        mode: Tie-breaking and direction rule

    Returns:
        Rounded amount, quantized to the precision's exponent

    Raises:
        ValueError: If precision is not positive
    """
    if precision <= 0:
        raise ValueError(f"Precision must be positive, got {precision}")

    # Room for every integer digit of the quotient on top of the usual precision
    with localcontext() as ctx:
        ctx.prec = max(
            getcontext().prec,
            amount.adjusted() - precision.adjusted() + getcontext().prec,
        )
        steps = (amount / precision).quantize(Decimal("1"), rounding=_DECIMAL_ROUNDING[mode])
        return (steps * precision).quantize(_quantum(precision))


def _deterministic_seed(candidates: list[str]) -> int:
    """Seed derived from the sorted participant ids."""
    digest = hashlib.sha256("|".join(sorted(candidates)).encode()).hexdigest()
    return int(digest[:16], 16)


def _largest(candidates: list[str], values: dict[str, Decimal]) -> str:
    # Strictly greater keeps the first listed on ties
    best = candidates[0]
    for user_id in candidates[1:]:
        if values.get(user_id, Decimal("0")) > values.get(best, Decimal("0")):
            best = user_id
    return best


def select_recipient(
    amounts: dict[str, Decimal],
    policy: RemainderPolicy,
    payer_id: str | None = None,
    raw_amounts: dict[str, Decimal] | None = None,
    seed: int | None = None,
) -> str | None:
    """
    Choose who receives a rounding remainder.

    Args:
        amounts: Participant amounts, in listed order
        policy: Remainder policy
        payer_id: Payer, used by the PAYER policy
        raw_amounts: Pre-rounding amounts, used by LARGEST_SHARE
        seed: Seed for the DETERMINISTIC policy (derived from ids if None)

    Returns:
        Recipient user id, or None when there are no participants
    """
    candidates = list(amounts)
    if not candidates:
        return None

    if policy == RemainderPolicy.PAYER:
        if payer_id in amounts:
            return payer_id
        logger.warning(
            f"Payer {payer_id} is not among the participants, "
            f"assigning remainder to the largest share instead"
        )
        policy = RemainderPolicy.LARGEST_SHARE

    if policy == RemainderPolicy.LARGEST_SHARE:
        return _largest(candidates, raw_amounts if raw_amounts is not None else amounts)

    if policy == RemainderPolicy.FIRST_LISTED:
        return candidates[0]

    if seed is None:
        seed = _deterministic_seed(candidates)
    return random.Random(seed).choice(candidates)


def distribute_remainder(
    amounts: dict[str, Decimal],
    remainder: Decimal,
    policy: RemainderPolicy,
    payer_id: str | None = None,
    raw_amounts: dict[str, Decimal] | None = None,
    seed: int | None = None,
) -> dict[str, Decimal]:
    """
    Add the whole remainder to exactly one participant.

    The remainder is never split. Returns a new dict; the input is untouched.
    """
    result = dict(amounts)
    if remainder == 0 or not result:
        return result

    recipient = select_recipient(result, policy, payer_id, raw_amounts, seed)
    result[recipient] += remainder
    return result


def round_amounts(
    amounts: dict[str, Decimal],
    config: RoundingConfig,
    payer_id: str | None = None,
    target_total: Decimal | None = None,
    seed: int | None = None,
) -> RoundedAllocation:
    """
    Round a set of amounts so they sum exactly to a target total.

    Steps:
    1. Round each amount independently
    2. Compute remainder = target_total - sum(rounded)
    3. Give the whole remainder to one recipient per the remainder policy

    Args:
        amounts: Unrounded amounts keyed by user id, in listed order
        config: Precision, mode and remainder policy
        payer_id: Payer, used by the PAYER policy
        target_total: Total to reach (defaults to the rounded raw total)
        seed: Seed for the DETERMINISTIC policy

    Returns:
        RoundedAllocation with final amounts, remainder and recipient
    """
    rounded = {
        user_id: round_amount(amount, config.precision, config.mode)
        for user_id, amount in amounts.items()
    }
    if target_total is None:
        target_total = round_amount(
            sum(amounts.values(), Decimal("0")), config.precision, config.mode
        )

    remainder = target_total - sum(rounded.values(), Decimal("0"))
    if remainder == 0 or not rounded:
        return RoundedAllocation(amounts=rounded, remainder=remainder)

    # Rounding each of n amounts can drift by at most n steps
    if abs(remainder) > config.precision * len(rounded):
        logger.warning(
            f"Remainder {remainder} exceeds {len(rounded)} rounding steps "
            f"of {config.precision}; target total may not match the amounts"
        )

    adjusted = distribute_remainder(
        rounded, remainder, config.remainder_policy, payer_id, raw_amounts=amounts, seed=seed
    )
    recipient = next(u for u in adjusted if adjusted[u] != rounded[u])

    logger.info(f"Applied rounding adjustment: {remainder} to {recipient}")

    return RoundedAllocation(amounts=adjusted, remainder=remainder, recipient=recipient)

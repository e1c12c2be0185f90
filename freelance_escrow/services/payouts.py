"""Milestone payout allocation.

Front-loaded split for short engagements, uniform split beyond three
milestones:

    1 milestone   100%
    2 milestones  30% / 70%
    3 milestones  30% / 30% / 40%
    n > 3         final amount / n each

Shares are quantized to the currency minor unit with ROUND_HALF_EVEN. The
last milestone takes whatever remains, so a fully released schedule always
sums to exactly the final project amount.
"""

from decimal import ROUND_DOWN, ROUND_HALF_EVEN, Decimal

from freelance_escrow.config import settings

_FRONT_LOADED: dict[int, tuple[Decimal, ...]] = {
    1: (Decimal("1"),),
    2: (Decimal("0.30"), Decimal("0.70")),
    3: (Decimal("0.30"), Decimal("0.30"), Decimal("0.40")),
}


def _quantize(value: Decimal) -> Decimal:
    return value.quantize(settings.currency_minor_unit, rounding=ROUND_HALF_EVEN)


def allocate(milestone_count: int, final_project_amount: Decimal) -> list[Decimal]:
    """Return the payout for every milestone position, in order."""
    if milestone_count < 1:
        raise ValueError("milestone_count must be at least 1")
    if final_project_amount is None or final_project_amount <= 0:
        raise ValueError("final_project_amount must be positive")

    total = _quantize(Decimal(final_project_amount))
    weights = _FRONT_LOADED.get(milestone_count)
    if weights is None:
        share = _quantize(total / milestone_count)
        if share * (milestone_count - 1) > total:
            # Tiny amounts over many milestones: rounding up would leave the
            # last milestone negative, so truncate instead.
            share = (total / milestone_count).quantize(
                settings.currency_minor_unit, rounding=ROUND_DOWN
            )
        shares = [share] * (milestone_count - 1)
    else:
        shares = [_quantize(total * w) for w in weights[:-1]]

    shares.append(total - sum(shares, Decimal("0")))
    return shares


def amount_for(
    milestone_index: int, milestone_count: int, final_project_amount: Decimal
) -> Decimal:
    """Amount releasable for the milestone at ``milestone_index`` (0-based)."""
    if not 0 <= milestone_index < milestone_count:
        raise ValueError(
            f"milestone_index {milestone_index} out of range for {milestone_count} milestones"
        )
    return allocate(milestone_count, final_project_amount)[milestone_index]

"""
OpsGuard - Markup Solver

Margin, financing and policy are quoted as fractions of the *sale price*,
not of cost, so the price cannot be found by multiplying cost up. It has to
be solved:

    sale_price = base_cost + sale_price x (margin + financing + policy)
    sale_price = base_cost / (1 - (margin + financing + policy))

When the rates approach 100% the denominator collapses. Past the safety
floor the quote is priced at cost and flagged instead of failing.
"""

import logging
from dataclasses import dataclass
from decimal import Decimal
from typing import Optional

from app.services.calculation_warnings import DegenerateMarkupWarning
from app.services.payroll_engine.rate import ONE, Number, Rate, RateLike, to_decimal
from app.utils.error_handling import InvalidAmountException

logger = logging.getLogger(__name__)

DEFAULT_SAFETY_FLOOR = Rate(Decimal("0.99"))


@dataclass(frozen=True)
class MarkupSolution:
    base_cost: Decimal
    sale_price: Decimal
    margin: Rate
    financing: Rate
    policy: Rate
    degenerate: bool = False
    warning: Optional[DegenerateMarkupWarning] = None

    @property
    def rates_total(self) -> Rate:
        return self.margin + self.financing + self.policy

    @property
    def markup(self) -> Decimal:
        return self.sale_price - self.base_cost

    @property
    def financing_cost(self) -> Decimal:
        return self.financing.apply(self.sale_price)


def solve_sale_price(
    base_cost: Number,
    margin: RateLike,
    financing: RateLike = None,
    policy: RateLike = None,
    safety_floor: RateLike = DEFAULT_SAFETY_FLOOR,
) -> MarkupSolution:
    """
    Solve the sale price for a base cost.

    Every rate goes through `Rate.of`, so 20 and 0.20 price identically.
    Returns an unrounded price; callers round once when presenting it.
    """
    cost = to_decimal(base_cost)
    if cost < 0:
        raise InvalidAmountException(base_cost, field="base_cost")

    margin_rate = Rate.of(margin)
    financing_rate = Rate.of(financing)
    policy_rate = Rate.of(policy)
    floor = Rate.of(safety_floor)
    total = margin_rate + financing_rate + policy_rate

    if total.fraction < floor.fraction:
        sale_price = cost / (ONE - total.fraction)
        return MarkupSolution(
            base_cost=cost,
            sale_price=sale_price,
            margin=margin_rate,
            financing=financing_rate,
            policy=policy_rate,
        )

    warning = DegenerateMarkupWarning(
        message=(
            f"Sale-price rates add up to {total}, at or above the {floor} "
            f"safety floor; priced at cost"
        ),
        field="parameters",
        details={
            "margin": str(margin_rate.fraction),
            "financing": str(financing_rate.fraction),
            "policy": str(policy_rate.fraction),
            "rates_total": str(total.fraction),
        },
    )
    logger.warning(warning.message)
    return MarkupSolution(
        base_cost=cost,
        sale_price=cost,
        margin=margin_rate,
        financing=financing_rate,
        policy=policy_rate,
        degenerate=True,
        warning=warning,
    )

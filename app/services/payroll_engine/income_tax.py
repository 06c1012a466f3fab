"""
OpsGuard - Income Tax Calculator

Impuesto Único de Segunda Categoría, monthly schedule.

Each bracket carries a marginal factor and a cumulative rebate, so the tax
for a base that falls in bracket i is simply:

    tax = base x factor_i - rebate_i

The first bracket has factor 0, which makes every base below the statutory
floor tax-free.
"""

from dataclasses import dataclass
from decimal import Decimal
from typing import Any, Dict, List, Sequence

from app.services.payroll_engine.rate import ZERO, round_clp, to_decimal
from app.services.payroll_engine.rate_tables import TaxBracket


@dataclass(frozen=True)
class IncomeTaxResult:
    """Tax computed for one taxable base."""
    base_clp: int
    bracket_index: int
    factor: Decimal
    rebate_clp: Decimal
    amount: int

    def to_dict(self) -> Dict[str, Any]:
        return {
            "base_clp": self.base_clp,
            "bracket_index": self.bracket_index,
            "factor": float(self.factor),
            "rebate_clp": float(self.rebate_clp),
            "amount": self.amount,
        }


class IncomeTaxCalculator:
    """Progressive bracket lookup over a rate-table tax schedule."""

    def __init__(self, brackets: Sequence[TaxBracket]):
        if not brackets:
            raise ValueError("At least one tax bracket is required")
        self.brackets: List[TaxBracket] = sorted(brackets, key=lambda b: b.from_clp)

    def find_bracket_index(self, taxable_base: Decimal) -> int:
        """
        Index of the bracket that applies to a base.

        Published schedules leave cent-sized gaps between brackets
        (939,748.50 / 939,748.51); a base inside a gap belongs to the lower
        bracket, so the lookup is "last bracket starting at or below base".
        """
        base = to_decimal(taxable_base)
        index = 0
        for i, bracket in enumerate(self.brackets):
            if bracket.from_clp <= base:
                index = i
            else:
                break
        return index

    def calculate_tax(self, taxable_base: Decimal) -> Decimal:
        """Unrounded tax for a base. Negative bases pay nothing."""
        base = to_decimal(taxable_base)
        if base <= ZERO:
            return ZERO
        bracket = self.brackets[self.find_bracket_index(base)]
        tax = bracket.factor.apply(base) - bracket.rebate_clp
        return max(ZERO, tax)

    def calculate(self, taxable_base: Decimal) -> IncomeTaxResult:
        base = max(ZERO, to_decimal(taxable_base))
        index = self.find_bracket_index(base)
        bracket = self.brackets[index]
        return IncomeTaxResult(
            base_clp=round_clp(base),
            bracket_index=index,
            factor=bracket.factor.fraction,
            rebate_clp=bracket.rebate_clp,
            amount=round_clp(self.calculate_tax(base)),
        )

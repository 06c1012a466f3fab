"""
OpsGuard - Calculation Warnings

Conditions the engine reports instead of raising. A computation either
fails with one named exception or returns a full result; anything between
those two is a warning embedded in the result.
"""

from dataclasses import dataclass, field as dataclass_field
from typing import Any, ClassVar, Dict, Optional


@dataclass(frozen=True)
class CalculationWarning:
    """Base warning embedded in payslip and quote results."""

    code: ClassVar[str] = "CALCULATION_WARNING"

    message: str
    field: Optional[str] = None
    details: Dict[str, Any] = dataclass_field(default_factory=dict, compare=False, hash=False)

    def to_dict(self) -> Dict[str, Any]:
        result = {"code": self.code, "message": self.message}
        if self.field:
            result["field"] = self.field
        if self.details:
            result["details"] = dict(self.details)
        return result


@dataclass(frozen=True)
class CustomGratificationWarning(CalculationWarning):
    """A negotiated gratification larger than the pay it is derived from."""

    code: ClassVar[str] = "CUSTOM_GRATIFICATION_EXCEEDS_BASE"


@dataclass(frozen=True)
class DegenerateMarkupWarning(CalculationWarning):
    """Sale-price rates add up to (almost) 100%; priced at cost instead."""

    code: ClassVar[str] = "DEGENERATE_MARKUP"


@dataclass(frozen=True)
class MissingCatalogPriceWarning(CalculationWarning):
    """A quote line had no resolvable price and was costed at zero."""

    code: ClassVar[str] = "MISSING_CATALOG_PRICE"

"""
OpsGuard - CPQ Package

Quote costing and pricing.

Modules:
- markup_solver: sale price from base cost with rates on revenue
- quote_costs: monthly cost summary of a quote
"""

from app.services.cpq.markup_solver import MarkupSolution, solve_sale_price
from app.services.cpq.quote_costs import (
    CalcMode,
    CatalogItem,
    CostItem,
    ExamItem,
    InfrastructureUnit,
    MealPlan,
    PositionLine,
    QuoteCostSummary,
    QuoteInput,
    QuoteParameters,
    UniformItem,
    Vehicle,
    compute_hourly_cost,
    compute_quote_costs,
    normalize_unit_price,
)

__all__ = [
    "MarkupSolution",
    "solve_sale_price",
    "CalcMode",
    "CatalogItem",
    "CostItem",
    "ExamItem",
    "InfrastructureUnit",
    "MealPlan",
    "PositionLine",
    "QuoteCostSummary",
    "QuoteInput",
    "QuoteParameters",
    "UniformItem",
    "Vehicle",
    "compute_hourly_cost",
    "compute_quote_costs",
    "normalize_unit_price",
]

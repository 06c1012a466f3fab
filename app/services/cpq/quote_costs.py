"""
OpsGuard - Quote Cost Aggregator

Turns a fully materialized quote into its monthly cost summary:

    positions + holiday adjustment + uniforms + exams + meals
    + vehicles + infrastructure + cost items          = base cost
    base cost -> markup solve                         = sale price
    sale price x financing                            = financing cost
    sale price amortized over the policy contract     = policy cost
    base cost + financing + policy                    = monthly total

`monthly_total` tracks cost; `sale_price` tracks revenue. The summary is
always recomputed from the whole input, never patched.

Irregular costs (uniform changes, entry exams) are levelized into an even
monthly run rate over the guards on the quote.
"""

import logging
from dataclasses import dataclass, field, replace
from decimal import Decimal
from enum import Enum
from typing import List, Optional, Tuple

from app.services.calculation_warnings import CalculationWarning, MissingCatalogPriceWarning
from app.services.cpq.markup_solver import DEFAULT_SAFETY_FLOOR, solve_sale_price
from app.services.payroll_engine.rate import ZERO, Number, Rate, round_clp, to_decimal
from app.utils.error_handling import InvalidAmountException

logger = logging.getLogger(__name__)


# ===========================================
# CONSTANTS
# ===========================================

MONTHS_PER_YEAR = Decimal("12")
DAYS_PER_MONTH = Decimal("30")
HOLIDAY_PREMIUM = Decimal("0.5")   # a holiday shift is paid at 1.5x
DEFAULT_MONTHLY_HOURS = 180

# Priced by the markup solve, never summed into cost items
EXCLUDED_COST_ITEM_TYPES = frozenset({"financial", "policy"})

# Catalog types merged into every quote as per-month cost items when flagged default
DEFAULT_COST_ITEM_TYPES = frozenset({
    "phone", "radio", "flashlight", "infrastructure",
    "fuel", "transport", "system", "financial", "policy",
})


class CalcMode(str, Enum):
    PER_MONTH = "per_month"
    PER_GUARD = "per_guard"


def normalize_unit_price(price: Number, unit: Optional[str] = None) -> Decimal:
    """Bring a catalog price to a monthly basis (annual /12, semiannual /6)."""
    value = to_decimal(price)
    if not unit:
        return value
    unit = unit.lower()
    if "año" in unit or "year" in unit or "anual" in unit:
        return value / 12
    if "semestre" in unit or "semester" in unit:
        return value / 6
    return value


def compute_hourly_cost(monthly_cost: Number, monthly_hours: int = DEFAULT_MONTHLY_HOURS) -> Decimal:
    if not monthly_hours:
        return ZERO
    return to_decimal(monthly_cost) / monthly_hours


def _check_non_negative(obj, *names: str) -> None:
    for name in names:
        value = getattr(obj, name)
        if value is not None and value < 0:
            raise InvalidAmountException(value, field=name)


# ===========================================
# INPUT RECORDS
# ===========================================

@dataclass(frozen=True)
class CatalogItem:
    """Catalog entry as returned by the catalog lookup."""

    item_id: str
    name: str
    type: str
    base_price: Optional[Decimal] = None
    unit: Optional[str] = None
    is_default: bool = False
    active: bool = True


@dataclass(frozen=True)
class CatalogLine:
    """A quote line priced from the catalog, optionally overridden."""

    catalog_item: Optional[CatalogItem]
    unit_price_override: Optional[Decimal] = None
    active: bool = True

    def __post_init__(self):
        _check_non_negative(self, "unit_price_override")

    @property
    def label(self) -> str:
        return self.catalog_item.name if self.catalog_item else "<unknown item>"

    def unit_price(self) -> Optional[Decimal]:
        """Monthly unit price, or None when nothing can be resolved."""
        unit = self.catalog_item.unit if self.catalog_item else None
        if self.unit_price_override:
            return normalize_unit_price(self.unit_price_override, unit)
        if self.catalog_item is None or self.catalog_item.base_price is None:
            return None
        return normalize_unit_price(self.catalog_item.base_price, unit)


@dataclass(frozen=True)
class UniformItem(CatalogLine):
    pass


@dataclass(frozen=True)
class ExamItem(CatalogLine):
    pass


@dataclass(frozen=True)
class CostItem(CatalogLine):
    calc_mode: CalcMode = CalcMode.PER_MONTH
    quantity: Decimal = Decimal("1")

    def __post_init__(self):
        super().__post_init__()
        object.__setattr__(self, "calc_mode", CalcMode(self.calc_mode))
        _check_non_negative(self, "quantity")

    @property
    def is_financial(self) -> bool:
        return bool(self.catalog_item) and self.catalog_item.type in EXCLUDED_COST_ITEM_TYPES


@dataclass(frozen=True)
class PositionLine:
    """A staffed role; cost is the snapshotted employer cost per guard."""

    position_id: str
    num_guards: int
    employer_cost: int
    name: str = ""

    def __post_init__(self):
        _check_non_negative(self, "num_guards", "employer_cost")

    @property
    def monthly_cost(self) -> int:
        return self.employer_cost * self.num_guards


@dataclass(frozen=True)
class MealPlan:
    meal_type: str
    meals_per_day: int
    days_of_service: int
    price_override: Optional[Decimal] = None
    enabled: bool = True

    def __post_init__(self):
        _check_non_negative(self, "meals_per_day", "days_of_service", "price_override")


@dataclass(frozen=True)
class Vehicle:
    rent_monthly: Decimal = ZERO
    maintenance_monthly: Decimal = ZERO
    km_per_day: Decimal = ZERO
    days_per_month: Decimal = ZERO
    km_per_liter: Decimal = ZERO
    fuel_price: Decimal = ZERO
    count: int = 1
    enabled: bool = True

    def __post_init__(self):
        _check_non_negative(
            self, "rent_monthly", "maintenance_monthly", "km_per_day",
            "days_per_month", "km_per_liter", "fuel_price", "count",
        )

    def monthly_cost(self) -> Decimal:
        liters = ZERO
        if self.km_per_liter > 0:
            liters = to_decimal(self.km_per_day) * to_decimal(self.days_per_month) / to_decimal(self.km_per_liter)
        fuel = liters * to_decimal(self.fuel_price)
        unit = to_decimal(self.rent_monthly) + to_decimal(self.maintenance_monthly) + fuel
        return unit * self.count


@dataclass(frozen=True)
class InfrastructureUnit:
    rent_monthly: Decimal = ZERO
    has_fuel: bool = False
    fuel_liters_per_hour: Decimal = ZERO
    fuel_hours_per_day: Decimal = ZERO
    fuel_days_per_month: Decimal = ZERO
    fuel_price: Decimal = ZERO
    quantity: int = 1
    enabled: bool = True

    def __post_init__(self):
        _check_non_negative(
            self, "rent_monthly", "fuel_liters_per_hour", "fuel_hours_per_day",
            "fuel_days_per_month", "fuel_price", "quantity",
        )

    def monthly_cost(self) -> Decimal:
        fuel = ZERO
        if self.has_fuel:
            liters = (
                to_decimal(self.fuel_liters_per_hour)
                * to_decimal(self.fuel_hours_per_day)
                * to_decimal(self.fuel_days_per_month)
            )
            fuel = liters * to_decimal(self.fuel_price)
        return (to_decimal(self.rent_monthly) + fuel) * self.quantity


@dataclass(frozen=True)
class QuoteParameters:
    """Commercial parameters. Percentages accept 20 or 0.20."""

    margin: Rate = Rate(Decimal("0.13"))
    financing: Rate = Rate(Decimal("0.025"))
    policy_rate: Rate = Rate(ZERO)
    policy_coverage: Rate = Rate(Decimal("0.20"))
    contract_months: int = 12
    policy_contract_months: int = 12
    uniform_changes_per_year: Decimal = Decimal("3")
    avg_tenure_months: Decimal = Decimal("4")
    monthly_hours_standard: int = DEFAULT_MONTHLY_HOURS
    sale_price_base: Optional[int] = None
    holiday_annual_count: Decimal = ZERO
    holiday_buffer: Rate = Rate(Decimal("0.10"))
    safety_floor: Rate = DEFAULT_SAFETY_FLOOR

    def __post_init__(self):
        for name in ("margin", "financing", "policy_rate", "policy_coverage", "holiday_buffer", "safety_floor"):
            object.__setattr__(self, name, Rate.of(getattr(self, name)))
        _check_non_negative(
            self, "contract_months", "policy_contract_months", "uniform_changes_per_year",
            "avg_tenure_months", "monthly_hours_standard", "sale_price_base", "holiday_annual_count",
        )

    @property
    def policy_share(self) -> Rate:
        """Monthly policy premium as a fraction of the sale price."""
        if not self.contract_months:
            return Rate.zero()
        fraction = (
            Decimal(self.policy_contract_months)
            * self.policy_coverage.fraction
            * self.policy_rate.fraction
            / Decimal(self.contract_months)
        )
        return Rate(fraction)

    @property
    def exam_entries_per_year(self) -> Decimal:
        tenure = to_decimal(self.avg_tenure_months)
        if tenure <= 0:
            return ZERO
        return MONTHS_PER_YEAR / tenure


@dataclass(frozen=True)
class QuoteInput:
    """Everything needed to cost a quote, read in one snapshot."""

    quote_id: str
    parameters: QuoteParameters = QuoteParameters()
    positions: Tuple[PositionLine, ...] = ()
    uniforms: Tuple[UniformItem, ...] = ()
    exams: Tuple[ExamItem, ...] = ()
    cost_items: Tuple[CostItem, ...] = ()
    meals: Tuple[MealPlan, ...] = ()
    vehicles: Tuple[Vehicle, ...] = ()
    infrastructure: Tuple[InfrastructureUnit, ...] = ()
    catalog: Tuple[CatalogItem, ...] = ()

    def __post_init__(self):
        for name in ("positions", "uniforms", "exams", "cost_items", "meals", "vehicles", "infrastructure", "catalog"):
            object.__setattr__(self, name, tuple(getattr(self, name)))

    @property
    def total_guards(self) -> int:
        return sum(p.num_guards for p in self.positions)


# ===========================================
# SUMMARY
# ===========================================

@dataclass(frozen=True)
class QuoteCostSummary:
    """Monthly costs of a quote. Monetary fields are whole CLP."""

    total_guards: int
    monthly_positions: int
    monthly_holiday_adjustment: int
    monthly_uniforms: int
    monthly_exams: int
    monthly_meals: int
    monthly_vehicles: int
    monthly_infrastructure: int
    monthly_cost_items: int
    base_cost: int
    sale_price: int
    monthly_financial: int
    monthly_policy: int
    monthly_extras: int
    monthly_total: int
    hourly_cost: int
    margin_rate: Decimal
    financial_rate: Decimal
    policy_rate: Decimal
    degenerate_markup: bool = False
    sale_price_overridden: bool = False
    warnings: Tuple[CalculationWarning, ...] = field(default_factory=tuple)


# ===========================================
# AGGREGATION
# ===========================================

def merge_default_catalog_items(quote: QuoteInput) -> QuoteInput:
    """
    Add default catalog items the quote does not already carry.

    Uniforms and exams are added as active lines; the remaining default
    types become per-month cost items with quantity 1.
    """
    defaults = [item for item in quote.catalog if item.is_default and item.active]
    if not defaults:
        return quote

    def present(lines):
        return {line.catalog_item.item_id for line in lines if line.catalog_item}

    uniform_ids = present(quote.uniforms)
    exam_ids = present(quote.exams)
    cost_ids = present(quote.cost_items)

    uniforms = list(quote.uniforms)
    exams = list(quote.exams)
    cost_items = list(quote.cost_items)
    for item in defaults:
        if item.type == "uniform" and item.item_id not in uniform_ids:
            uniforms.append(UniformItem(catalog_item=item))
        elif item.type == "exam" and item.item_id not in exam_ids:
            exams.append(ExamItem(catalog_item=item))
        elif item.type in DEFAULT_COST_ITEM_TYPES and item.item_id not in cost_ids:
            cost_items.append(CostItem(catalog_item=item))

    return replace(quote, uniforms=tuple(uniforms), exams=tuple(exams), cost_items=tuple(cost_items))


def _set_price(lines, section: str, warnings: List[CalculationWarning]) -> Decimal:
    """Price of one full set (one of each active line)."""
    total = ZERO
    for line in lines:
        if not line.active:
            continue
        price = line.unit_price()
        if price is None:
            warnings.append(_missing_price(section, line.label))
            continue
        total += price
    return total


def _missing_price(section: str, label: str) -> MissingCatalogPriceWarning:
    warning = MissingCatalogPriceWarning(
        message=f"No price for {section} item '{label}'; costed at zero",
        field=section,
        details={"item": label},
    )
    logger.warning(warning.message)
    return warning


def _levelize(set_price: Decimal, events_per_year: Decimal, total_guards: int) -> Decimal:
    if total_guards <= 0:
        return ZERO
    return set_price * to_decimal(events_per_year) / MONTHS_PER_YEAR * total_guards


def _cost_items(quote: QuoteInput, total_guards: int, warnings: List[CalculationWarning]) -> Decimal:
    total = ZERO
    for item in quote.cost_items:
        if not item.active or item.is_financial:
            continue
        price = item.unit_price()
        if price is None:
            warnings.append(_missing_price("cost_items", item.label))
            continue
        amount = price * to_decimal(item.quantity)
        if item.calc_mode is CalcMode.PER_GUARD:
            amount *= total_guards
        total += amount
    return total


def _meals(quote: QuoteInput, warnings: List[CalculationWarning]) -> Decimal:
    catalog = {item.name.lower(): item for item in quote.catalog if item.type == "meal"}
    total = ZERO
    for meal in quote.meals:
        if not meal.enabled:
            continue
        catalog_item = catalog.get(meal.meal_type.lower())
        unit = catalog_item.unit if catalog_item else None
        if meal.price_override:
            price = normalize_unit_price(meal.price_override, unit)
        elif catalog_item is not None and catalog_item.base_price is not None:
            price = normalize_unit_price(catalog_item.base_price, unit)
        else:
            if meal.meals_per_day and meal.days_of_service:
                warnings.append(_missing_price("meals", meal.meal_type))
            continue
        total += price * meal.meals_per_day * meal.days_of_service
    return total


def compute_quote_costs(quote: QuoteInput) -> QuoteCostSummary:
    """
    Cost summary for a quote.

    Pure: identical input gives an identical summary. Every component is
    rounded to whole CLP as it is computed, and the totals are sums of the
    rounded components.
    """
    quote = merge_default_catalog_items(quote)
    params = quote.parameters
    warnings: List[CalculationWarning] = []

    # ── 1. POSITIONS ───────────────────────────────────
    total_guards = quote.total_guards
    monthly_positions = sum(p.monthly_cost for p in quote.positions)

    holiday = (
        Decimal(monthly_positions) / DAYS_PER_MONTH
        * HOLIDAY_PREMIUM
        * to_decimal(params.holiday_annual_count) / MONTHS_PER_YEAR
        * (1 + params.holiday_buffer.fraction)
    )
    monthly_holiday_adjustment = round_clp(holiday)

    # ── 2-3. UNIFORMS & EXAMS (levelized) ──────────────
    uniform_set = _set_price(quote.uniforms, "uniforms", warnings)
    monthly_uniforms = round_clp(_levelize(uniform_set, params.uniform_changes_per_year, total_guards))

    exam_set = _set_price(quote.exams, "exams", warnings)
    monthly_exams = round_clp(_levelize(exam_set, params.exam_entries_per_year, total_guards))

    # ── 4-7. MEALS, VEHICLES, INFRASTRUCTURE, ITEMS ────
    monthly_meals = round_clp(_meals(quote, warnings))
    monthly_vehicles = round_clp(sum((v.monthly_cost() for v in quote.vehicles if v.enabled), ZERO))
    monthly_infrastructure = round_clp(
        sum((i.monthly_cost() for i in quote.infrastructure if i.enabled), ZERO)
    )
    monthly_cost_items = round_clp(_cost_items(quote, total_guards, warnings))

    # ── 8. BASE COST ───────────────────────────────────
    base_cost = (
        monthly_positions
        + monthly_holiday_adjustment
        + monthly_uniforms
        + monthly_exams
        + monthly_meals
        + monthly_vehicles
        + monthly_infrastructure
        + monthly_cost_items
    )

    # ── 9. MARKUP SOLVE ────────────────────────────────
    solution = solve_sale_price(
        base_cost,
        margin=params.margin,
        financing=params.financing,
        policy=params.policy_share,
        safety_floor=params.safety_floor,
    )
    if solution.warning is not None:
        warnings.append(solution.warning)

    sale_price = round_clp(solution.sale_price)
    overridden = bool(params.sale_price_base)
    if overridden:
        sale_price = params.sale_price_base

    monthly_financial = round_clp(params.financing.apply(sale_price))

    # ── 10. POLICY AMORTIZATION ────────────────────────
    monthly_policy = round_clp(params.policy_share.apply(sale_price))

    # ── 11. TOTAL ──────────────────────────────────────
    monthly_total = base_cost + monthly_financial + monthly_policy

    logger.debug(
        f"Quote {quote.quote_id} costed: guards={total_guards} base={base_cost} "
        f"sale={sale_price} total={monthly_total} warnings={len(warnings)}"
    )

    return QuoteCostSummary(
        total_guards=total_guards,
        monthly_positions=monthly_positions,
        monthly_holiday_adjustment=monthly_holiday_adjustment,
        monthly_uniforms=monthly_uniforms,
        monthly_exams=monthly_exams,
        monthly_meals=monthly_meals,
        monthly_vehicles=monthly_vehicles,
        monthly_infrastructure=monthly_infrastructure,
        monthly_cost_items=monthly_cost_items,
        base_cost=base_cost,
        sale_price=sale_price,
        monthly_financial=monthly_financial,
        monthly_policy=monthly_policy,
        monthly_extras=monthly_financial + monthly_policy,
        monthly_total=monthly_total,
        hourly_cost=round_clp(compute_hourly_cost(monthly_total, params.monthly_hours_standard)),
        margin_rate=params.margin.fraction,
        financial_rate=params.financing.fraction,
        policy_rate=params.policy_rate.fraction,
        degenerate_markup=solution.degenerate,
        sale_price_overridden=overridden,
        warnings=tuple(warnings),
    )

"""
OpsGuard - Quote Cost Aggregator Tests

Unit tests for the monthly cost summary of a quote.
"""

from dataclasses import replace
from decimal import Decimal

import pytest

from app.services.calculation_warnings import DegenerateMarkupWarning, MissingCatalogPriceWarning
from app.services.cpq.quote_costs import (
    CalcMode,
    CatalogItem,
    CostItem,
    ExamItem,
    InfrastructureUnit,
    MealPlan,
    PositionLine,
    QuoteInput,
    QuoteParameters,
    UniformItem,
    Vehicle,
    compute_hourly_cost,
    compute_quote_costs,
    merge_default_catalog_items,
    normalize_unit_price,
)
from app.utils.error_handling import InvalidAmountException


NO_FINANCING = QuoteParameters(margin=20, financing=0)


def ten_guards(parameters=NO_FINANCING, **kwargs) -> QuoteInput:
    return QuoteInput(
        quote_id="q-1",
        parameters=parameters,
        positions=(PositionLine(position_id="p-1", num_guards=10, employer_cost=900000),),
        **kwargs,
    )


def catalog_item(item_id, type_, price, unit="mes", is_default=False, name=None):
    return CatalogItem(
        item_id=item_id,
        name=name or item_id,
        type=type_,
        base_price=Decimal(price) if price is not None else None,
        unit=unit,
        is_default=is_default,
    )


class TestPositionsAndMarkup:
    """Base cost and sale price."""

    def test_ten_guards_at_twenty_percent(self):
        summary = compute_quote_costs(ten_guards())
        assert summary.total_guards == 10
        assert summary.monthly_positions == 9000000
        assert summary.base_cost == 9000000
        assert summary.sale_price == 11250000
        assert summary.monthly_financial == 0
        assert summary.monthly_policy == 0
        assert summary.monthly_total == 9000000
        assert summary.hourly_cost == 50000

    def test_financing_on_sale_price(self):
        summary = compute_quote_costs(ten_guards(QuoteParameters(margin=13, financing=2.5)))
        # 9,000,000 / (1 - 0.155) = 10,650,887.57
        assert summary.sale_price == 10650888
        assert summary.monthly_financial == 266272
        assert summary.monthly_extras == 266272
        assert summary.monthly_total == 9266272

    def test_total_is_cost_plus_extras(self):
        params = QuoteParameters(margin=15, financing=2, policy_rate=1, policy_coverage=20)
        summary = compute_quote_costs(ten_guards(params))
        assert summary.monthly_total == summary.base_cost + summary.monthly_financial + summary.monthly_policy
        assert summary.monthly_extras == summary.monthly_financial + summary.monthly_policy

    def test_policy_amortized_over_contract(self):
        params = QuoteParameters(
            margin=20, financing=0, policy_rate=10, policy_coverage=20,
            contract_months=24, policy_contract_months=12,
        )
        # policy share = 12 x 0.20 x 0.10 / 24 = 1%
        assert params.policy_share.fraction == Decimal("0.01")
        summary = compute_quote_costs(ten_guards(params))
        # 9,000,000 / (1 - 0.21) = 11,392,405.06
        assert summary.sale_price == 11392405
        assert summary.monthly_policy == 113924

    def test_sale_price_override(self):
        params = QuoteParameters(margin=20, financing=10, sale_price_base=12000000)
        summary = compute_quote_costs(ten_guards(params))
        assert summary.sale_price_overridden
        assert summary.sale_price == 12000000
        assert summary.monthly_financial == 1200000

    def test_degenerate_markup(self):
        summary = compute_quote_costs(ten_guards(QuoteParameters(margin=90, financing=10)))
        assert summary.degenerate_markup
        assert summary.sale_price == summary.base_cost
        assert any(isinstance(w, DegenerateMarkupWarning) for w in summary.warnings)

    def test_empty_quote(self):
        summary = compute_quote_costs(QuoteInput(quote_id="empty"))
        assert summary.total_guards == 0
        assert summary.base_cost == 0
        assert summary.sale_price == 0
        assert summary.monthly_total == 0

    def test_rates_reported_as_fractions(self):
        summary = compute_quote_costs(ten_guards(QuoteParameters(margin=13, financing=2.5)))
        assert summary.margin_rate == Decimal("0.13")
        assert summary.financial_rate == Decimal("0.025")

    def test_aggregation_is_pure(self):
        quote = ten_guards()
        assert compute_quote_costs(quote) == compute_quote_costs(quote)

    def test_percent_and_fraction_parameters_agree(self):
        percents = QuoteParameters(margin=20, financing=2, policy_rate=1.5, policy_coverage=20)
        fractions = QuoteParameters(
            margin=Decimal("0.20"),
            financing=Decimal("0.02"),
            policy_rate=Decimal("0.015"),
            policy_coverage=Decimal("0.20"),
        )
        summary = compute_quote_costs(ten_guards(percents))
        assert summary == compute_quote_costs(ten_guards(fractions))
        assert summary.margin_rate == Decimal("0.20")
        assert summary.policy_rate == Decimal("0.015")


class TestLevelizedCosts:
    """Uniforms and exams spread over the year."""

    def test_uniforms(self):
        uniforms = (
            UniformItem(catalog_item=catalog_item("shirt", "uniform", "20000")),
            UniformItem(catalog_item=catalog_item("shoes", "uniform", "40000")),
        )
        summary = compute_quote_costs(ten_guards(uniforms=uniforms))
        # 60,000 x 3 changes / 12 x 10 guards
        assert summary.monthly_uniforms == 150000
        assert summary.base_cost == 9150000

    def test_uniform_cost_scales_with_guards(self):
        uniforms = (UniformItem(catalog_item=catalog_item("shirt", "uniform", "24000")),)
        five = QuoteInput(
            quote_id="q-5",
            parameters=NO_FINANCING,
            positions=(PositionLine(position_id="p", num_guards=5, employer_cost=900000),),
            uniforms=uniforms,
        )
        ten = ten_guards(uniforms=uniforms)
        assert compute_quote_costs(ten).monthly_uniforms == 2 * compute_quote_costs(five).monthly_uniforms

    def test_uniform_cost_linear_in_changes_per_year(self):
        uniforms = (UniformItem(catalog_item=catalog_item("shirt", "uniform", "24000")),)
        three = QuoteParameters(margin=20, financing=0, uniform_changes_per_year=Decimal("3"))
        six = replace(three, uniform_changes_per_year=Decimal("6"))
        # 24,000 x 3 / 12 x 10 guards
        assert compute_quote_costs(ten_guards(three, uniforms=uniforms)).monthly_uniforms == 60000
        assert compute_quote_costs(ten_guards(six, uniforms=uniforms)).monthly_uniforms == 120000

    def test_exams_follow_tenure(self):
        exams = (ExamItem(catalog_item=catalog_item("entry", "exam", "36000")),)
        summary = compute_quote_costs(ten_guards(exams=exams))
        # 36,000 x (12 / 4) / 12 x 10 guards
        assert summary.monthly_exams == 90000

    def test_inactive_line_ignored(self):
        uniforms = (UniformItem(catalog_item=catalog_item("shirt", "uniform", "20000"), active=False),)
        assert compute_quote_costs(ten_guards(uniforms=uniforms)).monthly_uniforms == 0

    def test_price_override(self):
        uniforms = (
            UniformItem(catalog_item=catalog_item("shirt", "uniform", "20000"), unit_price_override=Decimal("8000")),
        )
        # 8,000 x 3 / 12 x 10
        assert compute_quote_costs(ten_guards(uniforms=uniforms)).monthly_uniforms == 20000

    def test_missing_price_warns(self):
        uniforms = (UniformItem(catalog_item=catalog_item("shirt", "uniform", None)),)
        summary = compute_quote_costs(ten_guards(uniforms=uniforms))
        assert summary.monthly_uniforms == 0
        assert any(isinstance(w, MissingCatalogPriceWarning) for w in summary.warnings)


class TestOtherCosts:
    """Meals, vehicles, infrastructure and cost items."""

    def test_meals(self):
        catalog = (catalog_item("m", "meal", "3500", name="Almuerzo"),)
        meals = (MealPlan(meal_type="almuerzo", meals_per_day=10, days_of_service=30),)
        summary = compute_quote_costs(ten_guards(meals=meals, catalog=catalog))
        assert summary.monthly_meals == 1050000

    def test_meal_price_override(self):
        meals = (MealPlan(meal_type="Cena", meals_per_day=2, days_of_service=30, price_override=Decimal("4000")),)
        assert compute_quote_costs(ten_guards(meals=meals)).monthly_meals == 240000

    def test_vehicles(self):
        vehicle = Vehicle(
            rent_monthly=Decimal("500000"),
            maintenance_monthly=Decimal("50000"),
            km_per_day=Decimal("100"),
            days_per_month=Decimal("30"),
            km_per_liter=Decimal("10"),
            fuel_price=Decimal("1200"),
            count=2,
        )
        # (500,000 + 50,000 + 300 l x 1,200) x 2
        assert compute_quote_costs(ten_guards(vehicles=(vehicle,))).monthly_vehicles == 1820000

    def test_disabled_vehicle(self):
        vehicle = Vehicle(rent_monthly=Decimal("500000"), enabled=False)
        assert compute_quote_costs(ten_guards(vehicles=(vehicle,))).monthly_vehicles == 0

    def test_infrastructure_with_generator(self):
        unit = InfrastructureUnit(
            rent_monthly=Decimal("90000"),
            has_fuel=True,
            fuel_liters_per_hour=Decimal("2"),
            fuel_hours_per_day=Decimal("10"),
            fuel_days_per_month=Decimal("30"),
            fuel_price=Decimal("1000"),
        )
        assert compute_quote_costs(ten_guards(infrastructure=(unit,))).monthly_infrastructure == 690000

    def test_cost_items_per_month_and_per_guard(self):
        items = (
            CostItem(catalog_item=catalog_item("radio", "radio", "12000"), calc_mode=CalcMode.PER_GUARD),
            CostItem(catalog_item=catalog_item("system", "system", "60000", unit="semestre")),
            CostItem(catalog_item=catalog_item("phone", "phone", "15000"), quantity=Decimal("2")),
        )
        summary = compute_quote_costs(ten_guards(cost_items=items))
        # 120,000 + 10,000 + 30,000
        assert summary.monthly_cost_items == 160000

    def test_financial_items_never_summed(self):
        items = (
            CostItem(catalog_item=catalog_item("fin", "financial", "999999")),
            CostItem(catalog_item=catalog_item("pol", "policy", "999999")),
        )
        assert compute_quote_costs(ten_guards(cost_items=items)).monthly_cost_items == 0

    def test_holiday_adjustment(self):
        params = QuoteParameters(margin=20, financing=0, holiday_annual_count=Decimal("12"), holiday_buffer=10)
        summary = compute_quote_costs(ten_guards(params))
        # 9,000,000 / 30 x 0.5 x 12 / 12 x 1.10
        assert summary.monthly_holiday_adjustment == 165000
        assert summary.base_cost == 9165000

    def test_negative_quantity_rejected(self):
        with pytest.raises(InvalidAmountException):
            CostItem(catalog_item=None, quantity=Decimal("-1"))


class TestDefaultCatalogItems:
    """Default catalog items merged into every quote."""

    def test_defaults_added(self):
        catalog = (
            catalog_item("uni", "uniform", "30000", is_default=True),
            catalog_item("exam", "exam", "24000", is_default=True),
            catalog_item("radio", "radio", "12000", is_default=True),
            catalog_item("fin", "financial", None, is_default=True),
            catalog_item("extra", "uniform", "99999"),
        )
        merged = merge_default_catalog_items(ten_guards(catalog=catalog))
        assert [u.catalog_item.item_id for u in merged.uniforms] == ["uni"]
        assert [e.catalog_item.item_id for e in merged.exams] == ["exam"]
        assert {c.catalog_item.item_id for c in merged.cost_items} == {"radio", "fin"}

    def test_existing_line_not_duplicated(self):
        uni = catalog_item("uni", "uniform", "30000", is_default=True)
        quote = ten_guards(catalog=(uni,), uniforms=(UniformItem(catalog_item=uni, unit_price_override=Decimal("1")),))
        merged = merge_default_catalog_items(quote)
        assert len(merged.uniforms) == 1
        assert merged.uniforms[0].unit_price_override == Decimal("1")

    def test_defaults_priced(self):
        catalog = (
            catalog_item("uni", "uniform", "30000", is_default=True),
            catalog_item("radio", "radio", "12000", is_default=True),
        )
        summary = compute_quote_costs(ten_guards(catalog=catalog))
        assert summary.monthly_uniforms == 75000
        assert summary.monthly_cost_items == 12000

    def test_inactive_default_skipped(self):
        inactive = replace(catalog_item("uni", "uniform", "30000", is_default=True), active=False)
        assert merge_default_catalog_items(ten_guards(catalog=(inactive,))).uniforms == ()


class TestHelpers:
    """Unit normalization and hourly cost."""

    @pytest.mark.parametrize("unit,expected", [
        ("mes", Decimal("12000")),
        (None, Decimal("12000")),
        ("año", Decimal("1000")),
        ("Anual", Decimal("1000")),
        ("per year", Decimal("1000")),
        ("semestre", Decimal("2000")),
    ])
    def test_normalize_unit_price(self, unit, expected):
        assert normalize_unit_price(Decimal("12000"), unit) == expected

    def test_hourly_cost(self):
        assert compute_hourly_cost(9000000, 180) == Decimal("50000")
        assert compute_hourly_cost(9000000, 0) == 0

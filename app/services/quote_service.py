"""
OpsGuard - Quote Service

Boundary between quote rows and the cost aggregator:
1. Read the quote, its children and the catalog once
2. Materialize frozen engine records (`QuoteInput`)
3. Run `compute_quote_costs`
4. Store the cached totals on the quote

Positions snapshot their compensation package when they are added; a
recalculation re-prices every snapshot against the current rate tables but
never re-resolves the package, so changes to post or installation defaults
do not silently reprice an existing quote.
"""

import logging
import uuid
from dataclasses import asdict
from datetime import date
from decimal import Decimal
from typing import Any, Dict, List, Optional, Tuple

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.config import get_settings
from app.models.cpq import (
    CatalogItem, Quote, QuotePosition, QuoteParameters as QuoteParametersRow,
)
from app.schemas.cpq import PositionCreateRequest, PositionPackageIn, QuoteCostSummaryOut
from app.services.cpq import quote_costs as engine
from app.services.payroll_engine.payslip_simulator import (
    CompensationPackage, PayslipBreakdown, simulate,
)
from app.services.payroll_engine.rate import Rate
from app.services.payroll_engine.rate_tables import RateTables
from app.services.payroll_service import (
    PayrollService, allowances_from_request, bonus_lines_from_request,
    default_assumptions, gratification_from_amount, optional_rate,
)
from app.services.rate_table_service import RateTableService
from app.utils.error_handling import PositionNotFoundException, QuoteNotFoundException

logger = logging.getLogger(__name__)
settings = get_settings()


# ===========================================
# ORM -> ENGINE RECORDS
# ===========================================

def catalog_record(row: Optional[CatalogItem]) -> Optional[engine.CatalogItem]:
    if row is None:
        return None
    return engine.CatalogItem(
        item_id=str(row.id),
        name=row.name,
        type=row.type,
        base_price=row.base_price,
        unit=row.unit,
        is_default=row.is_default,
        active=row.active,
    )


def parameters_record(row: Optional[QuoteParametersRow]) -> engine.QuoteParameters:
    """Commercial parameters, falling back to configured defaults."""
    common = dict(
        holiday_annual_count=Decimal(settings.holiday_annual_count),
        holiday_buffer=Rate.of(settings.holiday_commercial_buffer_pct),
        safety_floor=Rate.of(settings.markup_safety_floor),
    )
    if row is None:
        return engine.QuoteParameters(
            margin=Rate.of(settings.default_margin_pct),
            financing=Rate.of(settings.default_financing_pct),
            policy_rate=Rate.of(settings.default_policy_rate_pct),
            policy_coverage=Rate.of(settings.default_policy_coverage_pct),
            contract_months=settings.default_contract_months,
            policy_contract_months=settings.default_policy_contract_months,
            uniform_changes_per_year=Decimal(settings.default_uniform_changes_per_year),
            avg_tenure_months=Decimal(settings.default_avg_tenure_months),
            monthly_hours_standard=settings.monthly_hours_standard,
            **common,
        )
    return engine.QuoteParameters(
        margin=Rate.of(row.margin_pct),
        financing=Rate.of(row.financial_rate_pct),
        policy_rate=Rate.of(row.policy_rate_pct),
        policy_coverage=Rate.of(row.policy_coverage_pct),
        contract_months=row.contract_months,
        policy_contract_months=row.policy_contract_months,
        uniform_changes_per_year=Decimal(row.uniform_changes_per_year),
        avg_tenure_months=Decimal(row.avg_tenure_months),
        monthly_hours_standard=row.monthly_hours_standard,
        sale_price_base=row.sale_price_base,
        **common,
    )


def quote_input(quote: Quote, catalog: List[CatalogItem]) -> engine.QuoteInput:
    """Freeze a loaded quote into the aggregator's input."""
    return engine.QuoteInput(
        quote_id=str(quote.id),
        parameters=parameters_record(quote.parameters),
        positions=tuple(
            engine.PositionLine(
                position_id=str(p.id),
                num_guards=p.num_guards,
                employer_cost=p.employer_cost,
                name=p.name,
            )
            for p in quote.positions
        ),
        uniforms=tuple(
            engine.UniformItem(
                catalog_item=catalog_record(u.catalog_item),
                unit_price_override=u.unit_price_override,
                active=u.active,
            )
            for u in quote.uniform_items
        ),
        exams=tuple(
            engine.ExamItem(
                catalog_item=catalog_record(e.catalog_item),
                unit_price_override=e.unit_price_override,
                active=e.active,
            )
            for e in quote.exam_items
        ),
        cost_items=tuple(
            engine.CostItem(
                catalog_item=catalog_record(c.catalog_item),
                unit_price_override=c.unit_price_override,
                active=c.is_enabled,
                calc_mode=c.calc_mode,
                quantity=c.quantity,
            )
            for c in quote.cost_items
        ),
        meals=tuple(
            engine.MealPlan(
                meal_type=m.meal_type,
                meals_per_day=m.meals_per_day,
                days_of_service=m.days_of_service,
                price_override=m.price_override,
                enabled=m.is_enabled,
            )
            for m in quote.meals
        ),
        vehicles=tuple(
            engine.Vehicle(
                rent_monthly=v.rent_monthly,
                maintenance_monthly=v.maintenance_monthly,
                km_per_day=v.km_per_day,
                days_per_month=v.days_per_month,
                km_per_liter=v.km_per_liter,
                fuel_price=v.fuel_price,
                count=v.vehicles_count,
                enabled=v.is_enabled,
            )
            for v in quote.vehicles
        ),
        infrastructure=tuple(
            engine.InfrastructureUnit(
                rent_monthly=i.rent_monthly,
                has_fuel=i.has_fuel,
                fuel_liters_per_hour=i.fuel_liters_per_hour,
                fuel_hours_per_day=i.fuel_hours_per_day,
                fuel_days_per_month=i.fuel_days_per_month,
                fuel_price=i.fuel_price,
                quantity=i.quantity,
                enabled=i.is_enabled,
            )
            for i in quote.infrastructure
        ),
        catalog=tuple(catalog_record(c) for c in catalog),
    )


def package_from_position_request(data: PositionPackageIn) -> CompensationPackage:
    return CompensationPackage(
        base_salary=data.base_salary,
        afp_name=data.afp_name,
        health_system=data.health_system,
        contract_type=data.contract_type,
        gratification=gratification_from_amount(data.gratification_clp),
        non_taxable=allowances_from_request(data.non_taxable_allowances),
        bonuses=bonus_lines_from_request(data.bonuses),
        health_plan_rate=Rate.of(data.health_plan_pct) if data.health_plan_pct is not None else None,
    )


def summary_to_dict(summary: engine.QuoteCostSummary) -> Dict[str, Any]:
    """JSON form stored on the quote."""
    data = asdict(summary)
    data["warnings"] = [w.to_dict() for w in summary.warnings]
    for key in ("margin_rate", "financial_rate", "policy_rate"):
        data[key] = str(data[key])
    return data


def summary_response(quote_id: uuid.UUID, summary: engine.QuoteCostSummary) -> QuoteCostSummaryOut:
    return QuoteCostSummaryOut(
        quote_id=quote_id,
        total_guards=summary.total_guards,
        monthly_positions=summary.monthly_positions,
        monthly_holiday_adjustment=summary.monthly_holiday_adjustment,
        monthly_uniforms=summary.monthly_uniforms,
        monthly_exams=summary.monthly_exams,
        monthly_meals=summary.monthly_meals,
        monthly_vehicles=summary.monthly_vehicles,
        monthly_infrastructure=summary.monthly_infrastructure,
        monthly_cost_items=summary.monthly_cost_items,
        base_cost=summary.base_cost,
        sale_price=summary.sale_price,
        monthly_financial=summary.monthly_financial,
        monthly_policy=summary.monthly_policy,
        monthly_extras=summary.monthly_extras,
        monthly_total=summary.monthly_total,
        hourly_cost=summary.hourly_cost,
        margin_pct=float(summary.margin_rate * 100),
        financial_rate_pct=float(summary.financial_rate * 100),
        policy_rate_pct=float(summary.policy_rate * 100),
        degenerate_markup=summary.degenerate_markup,
        sale_price_overridden=summary.sale_price_overridden,
        warnings=[w.to_dict() for w in summary.warnings],
    )


class QuoteService:
    """Quote costing, position pricing and recalculation."""

    def __init__(self, db: AsyncSession, rate_tables: Optional[RateTableService] = None):
        self.db = db
        self.rate_tables = rate_tables or RateTableService(db)

    async def get_quote(self, quote_id: uuid.UUID) -> Quote:
        quote = await self.db.get(Quote, quote_id)
        if quote is None:
            raise QuoteNotFoundException(quote_id)
        return quote

    async def load_catalog(self) -> List[CatalogItem]:
        result = await self.db.execute(
            select(CatalogItem).where(CatalogItem.active == True)  # noqa: E712
        )
        return list(result.scalars().all())

    # ===========================================
    # COSTING
    # ===========================================

    async def compute_costs(self, quote_id: uuid.UUID) -> engine.QuoteCostSummary:
        """Summary from the positions as last priced; nothing is written."""
        quote = await self.get_quote(quote_id)
        catalog = await self.load_catalog()
        return engine.compute_quote_costs(quote_input(quote, catalog))

    async def recalculate(self, quote_id: uuid.UUID, on_date: Optional[date] = None) -> engine.QuoteCostSummary:
        """Re-price every position against the current rate tables, then re-cost the quote."""
        quote = await self.get_quote(quote_id)
        tables = await self.rate_tables.get_rate_tables(on_date)
        for position in quote.positions:
            self.price_position(position, tables)
        return await self._store_summary(quote)

    async def _store_summary(self, quote: Quote) -> engine.QuoteCostSummary:
        catalog = await self.load_catalog()
        summary = engine.compute_quote_costs(quote_input(quote, catalog))
        quote.total_guards = summary.total_guards
        quote.monthly_cost = summary.monthly_total
        quote.sale_price = summary.sale_price
        quote.cost_summary = summary_to_dict(summary)
        await self.db.commit()
        logger.info(
            f"Quote {quote.code} recalculated: guards={summary.total_guards} "
            f"total={summary.monthly_total} sale={summary.sale_price}"
        )
        return summary

    # ===========================================
    # POSITIONS
    # ===========================================

    def price_position(self, position: QuotePosition, tables: RateTables) -> PayslipBreakdown:
        """Simulate the snapshotted package and store the per-guard cost."""
        package = CompensationPackage.from_dict(position.package_snapshot)
        assumptions = default_assumptions(
            include_vacation_provision=position.include_vacation_provision,
            include_severance_provision=position.include_severance_provision,
            work_injury_rate=optional_rate(position.work_injury_rate),
            work_injury_risk=position.work_injury_risk,
        )
        breakdown = simulate(package, tables, assumptions)
        position.employer_cost = breakdown.monthly_employer_cost
        position.net_salary = breakdown.net_salary
        position.monthly_position_cost = breakdown.monthly_employer_cost * position.num_guards
        position.rate_table_version = tables.version_id
        return breakdown

    async def add_position(
        self,
        quote_id: uuid.UUID,
        data: PositionCreateRequest,
    ) -> Tuple[QuotePosition, Optional[str], engine.QuoteCostSummary]:
        """
        Add a position and re-cost the quote.

        Returns the position, the salary source it was resolved from (None
        for an explicit package) and the new summary.
        """
        quote = await self.get_quote(quote_id)
        tables = await self.rate_tables.get_rate_tables()

        source = None
        work_injury_rate, work_injury_risk = None, data.work_injury_risk
        if data.guard_id is not None:
            payroll = PayrollService(self.db, rate_tables=self.rate_tables)
            resolved, installation = await payroll.resolve_salary_at_site(data.guard_id)
            package = resolved.package
            source = resolved.source.value
            if installation is not None:
                # The site's mutual rate is snapshotted with the package
                work_injury_rate = installation.work_injury_rate
                work_injury_risk = work_injury_risk or installation.work_injury_risk
        else:
            package = package_from_position_request(data.package)

        position = QuotePosition(
            quote_id=quote.id,
            name=data.name,
            num_guards=data.num_guards,
            post_id=data.post_id,
            package_snapshot=package.to_dict(),
            include_vacation_provision=data.include_vacation_provision,
            include_severance_provision=data.include_severance_provision,
            work_injury_rate=work_injury_rate,
            work_injury_risk=work_injury_risk,
        )
        self.price_position(position, tables)
        quote.positions.append(position)
        self.db.add(position)

        summary = await self._store_summary(quote)
        return position, source, summary

    async def remove_position(self, quote_id: uuid.UUID, position_id: uuid.UUID) -> engine.QuoteCostSummary:
        quote = await self.get_quote(quote_id)
        position = next((p for p in quote.positions if p.id == position_id), None)
        if position is None:
            raise PositionNotFoundException(position_id)
        quote.positions.remove(position)
        await self.db.delete(position)
        return await self._store_summary(quote)

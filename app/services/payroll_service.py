"""
OpsGuard - Payroll Service

Boundary between the database and the payroll engine:
- Payslip simulation from an API request
- Loading a guard's staffing hierarchy into a `GuardSalaryContext`
- RUT override create/update/remove (each one drops the cached estimate)
- Net-pay display estimates, cached in Redis

All reads for one computation happen before the engine is called; the
engine itself never touches the session.
"""

import logging
import uuid
from datetime import date
from typing import Any, Dict, List, Optional, Tuple

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.config import get_settings
from app.models.payroll import (
    Guard, GuardAssignment, Installation, Post, SalaryStructure,
)
from app.schemas.payroll import (
    BonusLineIn, NonTaxableAllowancesIn, PayslipAssumptionsIn,
    PayslipSimulationRequest, PayslipSimulationResponse, ResolvedSalaryResponse,
    SalaryOverrideRequest,
)
from app.services.cache_service import CacheService, cached_net_pay_estimate
from app.services.payroll_engine.payslip_simulator import (
    AdditionalDeductions, BonusLine, CompensationPackage, GratificationMode, GratificationPolicy,
    NonTaxableAllowances, PayPeriod, PayslipAssumptions, PayslipBreakdown, simulate,
)
from app.services.payroll_engine.rate import Rate
from app.services.payroll_engine.salary_resolver import (
    GuardProfile, GuardSalaryContext, InstallationRecord, PostDefault, PostRecord,
    ResolvedSalary, SalaryStructure as StructureRecord, resolve,
)
from app.services.rate_table_service import RateTableService
from app.utils.error_handling import GuardNotFoundException, NotFoundException

logger = logging.getLogger(__name__)
settings = get_settings()


# ===========================================
# REQUEST -> ENGINE
# ===========================================

def gratification_from_amount(amount: Optional[int]) -> GratificationPolicy:
    """An explicit amount means a negotiated gratification, otherwise the 25% regime."""
    if amount is None:
        return GratificationPolicy.auto()
    return GratificationPolicy.custom(amount)


def bonus_lines_from_request(bonuses: List[BonusLineIn], other_taxable: Optional[int] = None) -> tuple:
    lines = [
        BonusLine(
            code=b.code,
            name=b.name,
            kind=b.kind,
            amount=b.amount,
            percentage=Rate.of(b.percentage),
            taxable=b.taxable,
        )
        for b in bonuses
    ]
    if other_taxable:
        lines.append(BonusLine(code="other_taxable", name="Other taxable allowances", amount=other_taxable))
    return tuple(lines)


def allowances_from_request(allowances: Optional[NonTaxableAllowancesIn]) -> NonTaxableAllowances:
    if allowances is None:
        return NonTaxableAllowances()
    return NonTaxableAllowances(meal=allowances.meal, transport=allowances.transport, other=allowances.other)


def package_from_request(request: PayslipSimulationRequest) -> CompensationPackage:
    return CompensationPackage(
        base_salary=request.base_salary_clp,
        afp_name=request.afp_name,
        health_system=request.health_system,
        contract_type=request.contract_type,
        gratification=gratification_from_amount(request.gratification_clp),
        non_taxable=allowances_from_request(request.non_taxable_allowances),
        bonuses=bonus_lines_from_request(request.bonuses, request.other_taxable_allowances),
        health_plan_rate=Rate.of(request.health_plan_pct) if request.health_plan_pct is not None else None,
        num_dependents=request.num_dependents,
    )


def period_from_request(request: PayslipSimulationRequest) -> PayPeriod:
    absences = request.absence_days
    deductions = request.additional_deductions
    return PayPeriod(
        total_days_month=request.total_days_month,
        worked_days=request.worked_days,
        unpaid_leave_days=absences.unpaid_leave if absences else 0,
        sick_leave_days=absences.sick_leave if absences else 0,
        vacation_days=absences.vacation if absences else 0,
        holiday_hours=request.holiday_hours_worked,
        overtime_hours_50=request.overtime_hours_50,
        overtime_hours_100=request.overtime_hours_100,
        commissions=request.commissions,
        deductions=AdditionalDeductions(**deductions.model_dump()) if deductions else AdditionalDeductions(),
    )


def default_assumptions(**overrides) -> PayslipAssumptions:
    """Assumptions with the configured provision rates and risk level."""
    values = dict(
        vacation_provision_rate=Rate.of(settings.vacation_provision_pct),
        severance_provision_rate=Rate.of(settings.severance_provision_pct),
        work_injury_risk=settings.work_injury_risk_level,
    )
    values.update({k: v for k, v in overrides.items() if v is not None})
    return PayslipAssumptions(**values)


def assumptions_from_request(assumptions: Optional[PayslipAssumptionsIn]) -> PayslipAssumptions:
    if assumptions is None:
        return default_assumptions()
    return default_assumptions(
        include_vacation_provision=assumptions.include_vacation_provision,
        include_severance_provision=assumptions.include_severance_provision,
        vacation_provision_rate=optional_rate(assumptions.vacation_provision_pct),
        severance_provision_rate=optional_rate(assumptions.severance_provision_pct),
        work_injury_rate=optional_rate(assumptions.work_injury_rate_pct),
        work_injury_risk=assumptions.work_injury_risk,
        has_maternal_allowance=assumptions.has_maternal_allowance,
    )


def optional_rate(value) -> Optional[Rate]:
    return Rate.of(value) if value is not None else None


# ===========================================
# ENGINE -> RESPONSE
# ===========================================

def payslip_response(breakdown: PayslipBreakdown) -> PayslipSimulationResponse:
    afc_total = breakdown.afc_employer_total + breakdown.afc_worker_amount
    return PayslipSimulationResponse(
        breakdown={
            "base_salary": breakdown.base_salary,
            "gratification": breakdown.gratification,
            "contract_base_salary": breakdown.contract_base_salary,
            "worked_days": breakdown.worked_days,
            "holiday_surcharge": breakdown.holiday_surcharge,
            "overtime_50": breakdown.overtime_50,
            "overtime_100": breakdown.overtime_100,
            "commissions": breakdown.commissions,
            "taxable_bonuses": breakdown.taxable_bonuses,
            "total_taxable_income": breakdown.total_taxable_income,
            "non_taxable_income": breakdown.total_non_taxable_income,
            "family_allowance": breakdown.family_allowance,
            "sis_employer": breakdown.sis_employer,
            "afc_employer": {
                "total": afc_total,
                "employer_share": breakdown.afc_employer_total,
                "worker_share": breakdown.afc_worker_amount,
                "cic": breakdown.afc_employer_cic,
                "fcs": breakdown.afc_employer_fcs,
            },
            "work_injury_employer": {
                "amount": breakdown.work_injury_employer,
                "rate": float(breakdown.work_injury_rate),
            },
            "employer_contributions_total": breakdown.employer_contributions_total,
            "vacation_provision": breakdown.vacation_provision,
            "severance_provision": breakdown.severance_provision,
        },
        monthly_employer_cost_clp=breakdown.monthly_employer_cost,
        worker_net_salary_estimate=breakdown.net_salary,
        worker_breakdown_estimate={
            "afp": {
                "amount": breakdown.afp_amount,
                "base_rate": float(breakdown.afp_base_rate),
                "commission_rate": float(breakdown.afp_commission_rate),
                "total_rate": float(breakdown.afp_total_rate),
            },
            "health": breakdown.health_amount,
            "afc": breakdown.afc_worker_amount,
            "tax": breakdown.tax.amount,
            "apv": breakdown.apv_amount,
            "additional_deductions": breakdown.additional_deductions,
            "total_deductions": breakdown.total_deductions,
        },
        cost_to_net_ratio=float(breakdown.cost_to_net_ratio),
        parameters_version=breakdown.rate_tables_version,
        warnings=[w.to_dict() for w in breakdown.warnings],
    )


def resolved_salary_response(guard_id: uuid.UUID, resolved: ResolvedSalary) -> ResolvedSalaryResponse:
    match = resolved.match
    return ResolvedSalaryResponse(
        guard_id=guard_id,
        source=resolved.source.value,
        structure_id=resolved.structure_id,
        legacy_post_salary=isinstance(match, PostDefault) and match.legacy,
        has_override=resolved.has_override,
        package=resolved.package.to_dict(),
    )


# ===========================================
# ORM -> ENGINE RECORDS
# ===========================================

def structure_record(row: Optional[SalaryStructure]) -> Optional[StructureRecord]:
    if row is None:
        return None
    bonuses = []
    for item in row.bonuses:
        catalog = item.bonus
        if not item.is_active or not catalog.is_active:
            continue
        amount = item.override_amount if item.override_amount is not None else catalog.default_amount
        percentage = item.override_percentage if item.override_percentage is not None else catalog.default_percentage
        bonuses.append(BonusLine(
            code=catalog.code,
            name=catalog.name,
            kind=catalog.bonus_kind,
            amount=amount or 0,
            percentage=Rate.of(percentage),
            taxable=catalog.is_taxable,
        ))
    if row.gratification_mode == GratificationMode.CUSTOM:
        gratification = GratificationPolicy.custom(row.gratification_custom_amount)
    else:
        gratification = GratificationPolicy.auto()
    return StructureRecord(
        structure_id=str(row.id),
        base_salary=row.base_salary,
        meal_allowance=row.meal_allowance,
        transport_allowance=row.transport_allowance,
        gratification=gratification,
        bonuses=tuple(bonuses),
        is_active=row.is_active,
        effective_from=row.effective_from,
        effective_until=row.effective_until,
    )


def guard_profile(guard: Guard) -> GuardProfile:
    return GuardProfile(
        guard_id=str(guard.id),
        afp_name=guard.afp_name,
        health_system=guard.health_system,
        contract_type=guard.contract_type,
        health_plan_rate=Rate.of(guard.health_plan_pct) if guard.health_plan_pct is not None else None,
        num_dependents=guard.num_dependents,
    )


def post_record(post: Optional[Post]) -> Optional[PostRecord]:
    if post is None:
        return None
    return PostRecord(
        post_id=str(post.id),
        name=post.name,
        structure=structure_record(post.salary_structure),
        legacy_base_salary=post.base_salary or 0,
    )


def installation_record(installation: Optional[Installation]) -> Optional[InstallationRecord]:
    if installation is None:
        return None
    return InstallationRecord(
        installation_id=str(installation.id),
        name=installation.name,
        default_structure=structure_record(installation.default_salary_structure),
    )


def installation_assumptions(installation: Optional[Installation]) -> PayslipAssumptions:
    """Work-injury settings of the site the guard works at."""
    if installation is None:
        return default_assumptions()
    return default_assumptions(
        work_injury_rate=optional_rate(installation.work_injury_rate),
        work_injury_risk=installation.work_injury_risk,
    )


class PayrollService:
    """
    Payroll boundary service for simulation, salary resolution and overrides.
    """

    def __init__(
        self,
        db: AsyncSession,
        cache: Optional[CacheService] = None,
        rate_tables: Optional[RateTableService] = None,
    ):
        self.db = db
        self.cache = cache
        self.rate_tables = rate_tables or RateTableService(db, cache)

    # ===========================================
    # SIMULATION
    # ===========================================

    async def simulate_payslip(self, request: PayslipSimulationRequest) -> PayslipSimulationResponse:
        package = package_from_request(request)
        assumptions = assumptions_from_request(request.assumptions)
        tables = await self.rate_tables.get_rate_tables(request.parameters_date)
        breakdown = simulate(package, tables, assumptions, period_from_request(request))
        return payslip_response(breakdown)

    # ===========================================
    # SALARY RESOLUTION
    # ===========================================

    async def get_guard(self, guard_id: uuid.UUID) -> Guard:
        guard = await self.db.get(Guard, guard_id)
        if guard is None:
            raise GuardNotFoundException(guard_id)
        return guard

    async def get_current_post(self, guard_id: uuid.UUID, on_date: date) -> Optional[Post]:
        """Post of the most recent assignment covering the date."""
        result = await self.db.execute(
            select(GuardAssignment)
            .where(
                GuardAssignment.guard_id == guard_id,
                GuardAssignment.is_active == True,  # noqa: E712
                GuardAssignment.start_date <= on_date,
            )
            .order_by(GuardAssignment.start_date.desc())
        )
        for assignment in result.scalars().all():
            if assignment.end_date is None or assignment.end_date >= on_date:
                return assignment.post
        return None

    def salary_context(self, guard: Guard, post: Optional[Post]) -> GuardSalaryContext:
        return GuardSalaryContext(
            profile=guard_profile(guard),
            rut_override=structure_record(guard.rut_salary_structure),
            post=post_record(post),
            installation=installation_record(post.installation if post else None),
        )

    async def resolve_salary(self, guard_id: uuid.UUID, on_date: Optional[date] = None) -> ResolvedSalary:
        resolved, _ = await self.resolve_salary_at_site(guard_id, on_date)
        return resolved

    async def resolve_salary_at_site(
        self,
        guard_id: uuid.UUID,
        on_date: Optional[date] = None,
    ) -> Tuple[ResolvedSalary, Optional[Installation]]:
        """Resolved salary plus the installation of the guard's current post."""
        on_date = on_date or date.today()
        guard = await self.get_guard(guard_id)
        post = await self.get_current_post(guard.id, on_date)
        context = self.salary_context(guard, post)
        resolved = resolve(context, on_date)
        logger.debug(f"Guard {guard_id} salary resolved from {resolved.source.value}")
        return resolved, (post.installation if post else None)

    # ===========================================
    # RUT OVERRIDE MUTATIONS
    # ===========================================

    async def set_salary_override(
        self,
        guard_id: uuid.UUID,
        data: SalaryOverrideRequest,
        actor: Optional[str] = None,
    ) -> ResolvedSalary:
        """Create or update a guard's individually negotiated pay."""
        guard = await self.get_guard(guard_id)
        structure = guard.rut_salary_structure
        if structure is None:
            structure = SalaryStructure(
                name=data.name or f"RUT override {guard.rut}",
                base_salary=data.base_salary,
                bonuses=[],
                created_by=actor,
            )
            self.db.add(structure)
            guard.rut_salary_structure = structure
            action = "created"
        else:
            action = "updated"

        if data.name:
            structure.name = data.name
        structure.base_salary = data.base_salary
        structure.meal_allowance = data.meal_allowance
        structure.transport_allowance = data.transport_allowance
        structure.gratification_mode = GratificationMode(data.gratification_mode)
        structure.gratification_custom_amount = (
            data.gratification_custom_amount if data.gratification_mode == GratificationMode.CUSTOM.value else 0
        )
        structure.effective_from = data.effective_from
        structure.effective_until = data.effective_until
        structure.is_active = data.is_active
        structure.updated_by = actor

        await self.db.commit()
        await self._invalidate_estimate(guard_id)
        logger.info(f"RUT override {action} for guard {guard_id}")
        return await self.resolve_salary(guard_id)

    async def remove_salary_override(self, guard_id: uuid.UUID) -> None:
        """Remove the override; post and installation structures are untouched."""
        guard = await self.get_guard(guard_id)
        structure = guard.rut_salary_structure
        if structure is None:
            raise NotFoundException("SalaryOverride", guard_id)

        guard.rut_salary_structure = None
        await self.db.delete(structure)
        await self.db.commit()
        await self._invalidate_estimate(guard_id)
        logger.info(f"RUT override removed for guard {guard_id}")

    async def _invalidate_estimate(self, guard_id: uuid.UUID) -> None:
        if self.cache is not None:
            await self.cache.invalidate_net_pay(str(guard_id))

    # ===========================================
    # NET-PAY ESTIMATE
    # ===========================================

    @cached_net_pay_estimate()
    async def get_net_pay_estimate(self, guard_id: uuid.UUID) -> Dict[str, Any]:
        """Display estimate of what the guard takes home this month."""
        on_date = date.today()
        guard = await self.get_guard(guard_id)
        post = await self.get_current_post(guard.id, on_date)
        resolved = resolve(self.salary_context(guard, post), on_date)
        tables = await self.rate_tables.get_rate_tables(on_date)
        breakdown = simulate(
            resolved.package,
            tables,
            installation_assumptions(post.installation if post else None),
        )
        return {
            "guard_id": str(guard_id),
            "source": resolved.source.value,
            "monthly_employer_cost_clp": breakdown.monthly_employer_cost,
            "worker_net_salary_estimate": breakdown.net_salary,
            "cost_to_net_ratio": float(breakdown.cost_to_net_ratio),
            "parameters_version": breakdown.rate_tables_version,
            "cached": False,
        }

"""
OpsGuard - Service Layer Tests

Tests for PayrollService and QuoteService with a mocked session. ORM rows
are stood in for by simple namespaces carrying the attributes each service
reads.
"""

import uuid
from datetime import date
from types import SimpleNamespace
from unittest.mock import AsyncMock

import pytest

from app.models.cpq import Quote
from app.models.payroll import Guard
from app.schemas.cpq import PositionCreateRequest, PositionPackageIn
from app.schemas.payroll import PayslipSimulationRequest, SalaryOverrideRequest
from app.services.payroll_engine.payslip_simulator import CompensationPackage
from app.services.payroll_engine.salary_resolver import SalarySource
from app.services.payroll_service import default_assumptions, structure_record
from app.services.quote_service import parameters_record, summary_to_dict
from app.utils.error_handling import (
    GuardNotFoundException,
    NotFoundException,
    PositionNotFoundException,
    QuoteNotFoundException,
    SalaryStructureNotFoundError,
)
from tests.conftest import (
    make_guard,
    make_installation,
    make_post,
    make_structure,
    scalars_result,
)


def assignment(post, end_date=None) -> SimpleNamespace:
    return SimpleNamespace(post=post, end_date=end_date)


def make_quote(positions=None, parameters=None) -> SimpleNamespace:
    return SimpleNamespace(
        id=uuid.uuid4(),
        code="COT-0001",
        parameters=parameters,
        positions=list(positions or []),
        uniform_items=[],
        exam_items=[],
        cost_items=[],
        meals=[],
        vehicles=[],
        infrastructure=[],
        total_guards=0,
        monthly_cost=0,
        sale_price=0,
        cost_summary=None,
    )


def make_position(num_guards: int, base_salary: int = 500000) -> SimpleNamespace:
    package = CompensationPackage(base_salary=base_salary, afp_name="habitat")
    return SimpleNamespace(
        id=uuid.uuid4(),
        name="Portería",
        num_guards=num_guards,
        package_snapshot=package.to_dict(),
        include_vacation_provision=False,
        include_severance_provision=False,
        work_injury_rate=None,
        work_injury_risk=None,
        employer_cost=0,
        net_salary=0,
        monthly_position_cost=0,
        rate_table_version=None,
    )


# ===========================================
# PAYROLL SERVICE
# ===========================================

class TestPayrollSimulation:
    """Request -> engine -> response."""

    @pytest.mark.asyncio
    async def test_simulate_reference_case(self, payroll_service, fake_rate_table_service):
        request = PayslipSimulationRequest(base_salary_clp=500000, afp_name="habitat")
        response = await payroll_service.simulate_payslip(request)
        assert response.monthly_employer_cost_clp == 655438
        assert response.worker_net_salary_estimate == 507063
        assert response.breakdown.afc_employer.total == 18750
        assert response.worker_breakdown_estimate.afp.amount == 70437
        assert response.parameters_version == "cl-2026-02"
        fake_rate_table_service.get_rate_tables.assert_awaited_once_with(None)

    @pytest.mark.asyncio
    async def test_gratification_amount_means_custom(self, payroll_service):
        request = PayslipSimulationRequest(base_salary_clp=500000, afp_name="habitat", gratification_clp=0)
        response = await payroll_service.simulate_payslip(request)
        assert response.breakdown.gratification == 0

    @pytest.mark.asyncio
    async def test_other_taxable_allowances_are_taxable(self, payroll_service):
        request = PayslipSimulationRequest(
            base_salary_clp=500000, afp_name="habitat", other_taxable_allowances=40000,
        )
        response = await payroll_service.simulate_payslip(request)
        assert response.breakdown.taxable_bonuses == 40000
        assert response.breakdown.gratification == 135000


class TestSalaryResolution:
    """Loading the staffing hierarchy."""

    @pytest.mark.asyncio
    async def test_guard_not_found(self, payroll_service):
        with pytest.raises(GuardNotFoundException):
            await payroll_service.resolve_salary(uuid.uuid4())

    @pytest.mark.asyncio
    async def test_post_structure(self, payroll_service, mock_db):
        guard = make_guard()
        post = make_post(structure=make_structure(560000))
        mock_db.get.return_value = guard
        mock_db.execute.return_value = scalars_result([assignment(post)])

        resolved = await payroll_service.resolve_salary(guard.id, date(2026, 3, 1))
        assert resolved.source is SalarySource.POST_DEFAULT
        assert resolved.package.base_salary == 560000

    @pytest.mark.asyncio
    async def test_ended_assignment_ignored(self, payroll_service, mock_db):
        installation = make_installation(default_structure=make_structure(520000))
        guard = make_guard()
        old_post = make_post(structure=make_structure(560000), installation=installation)
        mock_db.get.return_value = guard
        mock_db.execute.return_value = scalars_result([assignment(old_post, end_date=date(2026, 1, 31))])

        with pytest.raises(SalaryStructureNotFoundError):
            await payroll_service.resolve_salary(guard.id, date(2026, 3, 1))

    @pytest.mark.asyncio
    async def test_override_beats_post(self, payroll_service, mock_db):
        guard = make_guard(rut_salary_structure=make_structure(700000))
        mock_db.get.return_value = guard
        mock_db.execute.return_value = scalars_result([assignment(make_post(legacy_base_salary=480000))])

        resolved = await payroll_service.resolve_salary(guard.id)
        assert resolved.source is SalarySource.RUT_OVERRIDE
        assert resolved.has_override

    def test_structure_record_skips_inactive_bonuses(self):
        catalog = SimpleNamespace(
            code="TURNO", name="Bono de turno", bonus_kind="flat",
            default_amount=35000, default_percentage=None, is_taxable=True, is_active=True,
        )
        row = make_structure(500000, bonuses=[
            SimpleNamespace(bonus=catalog, is_active=True, override_amount=None, override_percentage=None),
            SimpleNamespace(bonus=catalog, is_active=False, override_amount=99999, override_percentage=None),
        ])
        record = structure_record(row)
        assert len(record.bonuses) == 1
        assert record.bonuses[0].amount == 35000

    def test_structure_record_custom_gratification(self):
        row = make_structure(500000, gratification_mode="custom", gratification_custom_amount=60000)
        assert structure_record(row).gratification.custom_amount == 60000


class TestSalaryOverride:
    """RUT override mutations."""

    @pytest.mark.asyncio
    async def test_update_existing_override(self, payroll_service, mock_db, mock_cache):
        structure = make_structure(600000)
        guard = make_guard(rut_salary_structure=structure)
        mock_db.get.return_value = guard

        resolved = await payroll_service.set_salary_override(
            guard.id, SalaryOverrideRequest(base_salary=720000, meal_allowance=25000),
        )
        assert structure.base_salary == 720000
        assert resolved.source is SalarySource.RUT_OVERRIDE
        assert resolved.package.non_taxable.meal == 25000
        mock_db.commit.assert_awaited()
        mock_cache.invalidate_net_pay.assert_awaited_once_with(str(guard.id))

    @pytest.mark.asyncio
    async def test_create_override(self, payroll_service, mock_db):
        guard = make_guard()
        mock_db.get.return_value = guard

        resolved = await payroll_service.set_salary_override(
            guard.id,
            SalaryOverrideRequest(base_salary=800000, gratification_mode="custom", gratification_custom_amount=90000),
        )
        mock_db.add.assert_called_once()
        assert guard.rut_salary_structure is not None
        assert resolved.package.base_salary == 800000
        assert resolved.package.gratification.custom_amount == 90000

    @pytest.mark.asyncio
    async def test_remove_override(self, payroll_service, mock_db, mock_cache):
        structure = make_structure(600000)
        guard = make_guard(rut_salary_structure=structure)
        mock_db.get.return_value = guard

        await payroll_service.remove_salary_override(guard.id)
        assert guard.rut_salary_structure is None
        mock_db.delete.assert_awaited_once_with(structure)
        mock_cache.invalidate_net_pay.assert_awaited_once_with(str(guard.id))

    @pytest.mark.asyncio
    async def test_remove_missing_override(self, payroll_service, mock_db):
        mock_db.get.return_value = make_guard()
        with pytest.raises(NotFoundException):
            await payroll_service.remove_salary_override(uuid.uuid4())


class TestNetPayEstimate:
    """Cached display estimate."""

    @pytest.mark.asyncio
    async def test_cache_miss_computes_and_stores(self, payroll_service, mock_db, mock_cache):
        guard = make_guard()
        mock_db.get.return_value = guard
        mock_db.execute.return_value = scalars_result([assignment(make_post(legacy_base_salary=500000))])

        result = await payroll_service.get_net_pay_estimate(guard.id)
        assert result["worker_net_salary_estimate"] == 507063
        assert result["source"] == "post_default"
        assert result["cached"] is False
        mock_cache.set_net_pay_estimate.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_cache_hit_skips_database(self, payroll_service, mock_db, mock_cache):
        mock_cache.get_net_pay_estimate.return_value = {"worker_net_salary_estimate": 1}
        result = await payroll_service.get_net_pay_estimate(uuid.uuid4())
        assert result["cached"] is True
        mock_db.get.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_installation_work_injury_rate(self, payroll_service, mock_db):
        installation = make_installation(work_injury_rate=2)
        guard = make_guard()
        mock_db.get.return_value = guard
        mock_db.execute.return_value = scalars_result([
            assignment(make_post(legacy_base_salary=500000, installation=installation)),
        ])

        result = await payroll_service.get_net_pay_estimate(guard.id)
        # 655,438 - 5,813 (0.93%) + 12,500 (2%)
        assert result["monthly_employer_cost_clp"] == 662125


# ===========================================
# QUOTE SERVICE
# ===========================================

class TestQuoteCosting:
    """Summaries from stored positions."""

    @pytest.mark.asyncio
    async def test_quote_not_found(self, quote_service):
        with pytest.raises(QuoteNotFoundException):
            await quote_service.compute_costs(uuid.uuid4())

    @pytest.mark.asyncio
    async def test_compute_costs_writes_nothing(self, quote_service, mock_db):
        position = make_position(10)
        position.employer_cost = 900000
        mock_db.get.return_value = make_quote([position])

        summary = await quote_service.compute_costs(uuid.uuid4())
        assert summary.base_cost == 9000000
        mock_db.commit.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_recalculate_reprices_positions(self, quote_service, mock_db):
        position = make_position(2)
        quote = make_quote([position])
        mock_db.get.return_value = quote

        summary = await quote_service.recalculate(quote.id)
        assert position.employer_cost == 655438
        assert position.monthly_position_cost == 1310876
        assert position.rate_table_version == "cl-2026-02"
        assert quote.total_guards == 2
        assert quote.monthly_cost == summary.monthly_total
        assert quote.sale_price == summary.sale_price
        assert quote.cost_summary["base_cost"] == 1310876
        assert quote.cost_summary["margin_rate"] == "0.13"
        mock_db.commit.assert_awaited_once()

    def test_parameters_default_to_settings(self):
        params = parameters_record(None)
        assert str(params.margin.fraction) == "0.13"
        assert str(params.financing.fraction) == "0.025"
        assert params.contract_months == 12

    @pytest.mark.asyncio
    async def test_summary_dict_is_json_safe(self, quote_service, mock_db):
        mock_db.get.return_value = make_quote([make_position(1)])
        summary = await quote_service.compute_costs(uuid.uuid4())
        data = summary_to_dict(summary)
        assert data["warnings"] == []
        assert isinstance(data["financial_rate"], str)


class TestQuotePositions:
    """Adding and removing positions."""

    @pytest.mark.asyncio
    async def test_add_explicit_package(self, quote_service, mock_db):
        quote = make_quote()
        mock_db.get.return_value = quote
        request = PositionCreateRequest(
            name="Guardia diurno",
            num_guards=3,
            package=PositionPackageIn(base_salary=500000, afp_name="habitat"),
        )

        position, source, summary = await quote_service.add_position(quote.id, request)
        assert source is None
        assert position.employer_cost == 655438
        assert position.net_salary == 507063
        assert position.package_snapshot["base_salary"] == 500000
        assert summary.monthly_positions == 3 * 655438
        assert quote.total_guards == 3
        mock_db.add.assert_called_once_with(position)

    @pytest.mark.asyncio
    async def test_add_from_guard_snapshots_resolved_package(self, quote_service, mock_db):
        quote = make_quote()
        guard = make_guard(rut_salary_structure=make_structure(650000))
        rows = {Quote: quote, Guard: guard}
        mock_db.get = AsyncMock(side_effect=lambda model, key: rows[model])

        request = PositionCreateRequest(name="Supervisor", num_guards=1, guard_id=guard.id)
        position, source, summary = await quote_service.add_position(quote.id, request)
        assert source == "rut_override"
        assert position.package_snapshot["base_salary"] == 650000
        assert summary.total_guards == 1

    @pytest.mark.asyncio
    async def test_add_from_guard_uses_installation_work_injury_rate(
        self, quote_service, payroll_service, mock_db,
    ):
        quote = make_quote()
        installation = make_installation(work_injury_rate=2, work_injury_risk="high")
        guard = make_guard()
        rows = {Quote: quote, Guard: guard}
        mock_db.get = AsyncMock(side_effect=lambda model, key: rows[model])
        mock_db.execute.return_value = scalars_result([
            assignment(make_post(legacy_base_salary=500000, installation=installation)),
        ])

        request = PositionCreateRequest(name="Guardia", num_guards=2, guard_id=guard.id)
        position, source, _ = await quote_service.add_position(quote.id, request)
        assert source == "post_default"
        assert position.work_injury_rate == 2
        assert position.work_injury_risk == "high"
        assert position.employer_cost == 662125

        estimate = await payroll_service.get_net_pay_estimate(guard.id)
        assert estimate["monthly_employer_cost_clp"] == position.employer_cost

        # Recalculation keeps the snapshotted rate
        quote_service.price_position(position, await quote_service.rate_tables.get_rate_tables())
        assert position.employer_cost == 662125

    @pytest.mark.asyncio
    async def test_request_risk_beats_installation_risk(self, quote_service, mock_db):
        quote = make_quote()
        installation = make_installation(work_injury_risk="high")
        guard = make_guard()
        rows = {Quote: quote, Guard: guard}
        mock_db.get = AsyncMock(side_effect=lambda model, key: rows[model])
        mock_db.execute.return_value = scalars_result([
            assignment(make_post(legacy_base_salary=500000, installation=installation)),
        ])

        request = PositionCreateRequest(
            name="Guardia", num_guards=1, guard_id=guard.id, work_injury_risk="security_industry",
        )
        position, _, _ = await quote_service.add_position(quote.id, request)
        assert position.work_injury_rate is None
        assert position.work_injury_risk == "security_industry"

    @pytest.mark.asyncio
    async def test_provisions_raise_position_cost(self, quote_service, mock_db):
        quote = make_quote()
        mock_db.get.return_value = quote
        request = PositionCreateRequest(
            name="Guardia",
            num_guards=1,
            package=PositionPackageIn(base_salary=500000, afp_name="habitat"),
            include_vacation_provision=True,
        )
        position, _, _ = await quote_service.add_position(quote.id, request)
        # 625,000 x 8.33%
        assert position.employer_cost == 655438 + 52063

    @pytest.mark.asyncio
    async def test_remove_position(self, quote_service, mock_db):
        keep, drop = make_position(2), make_position(1)
        quote = make_quote([keep, drop])
        mock_db.get.return_value = quote

        await quote_service.remove_position(quote.id, drop.id)
        assert quote.positions == [keep]
        mock_db.delete.assert_awaited_once_with(drop)

    @pytest.mark.asyncio
    async def test_remove_unknown_position(self, quote_service, mock_db):
        mock_db.get.return_value = make_quote()
        with pytest.raises(PositionNotFoundException):
            await quote_service.remove_position(uuid.uuid4(), uuid.uuid4())


class TestDefaultAssumptions:
    """Configured provision rates."""

    def test_configured_rates(self):
        assumptions = default_assumptions()
        assert str(assumptions.vacation_provision_rate.fraction) == "0.0833"
        assert not assumptions.include_vacation_provision

    def test_none_overrides_ignored(self):
        assumptions = default_assumptions(work_injury_rate=None, include_severance_provision=True)
        assert assumptions.work_injury_rate is None
        assert assumptions.include_severance_provision

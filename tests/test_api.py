"""
OpsGuard - API Tests

Endpoint tests through the ASGI app. Services run against a mocked
session and the built-in rate tables.
"""

import copy
import uuid
from types import SimpleNamespace

import pytest
from httpx import AsyncClient

from app.dependencies import get_rate_table_service
from app.services.payroll_engine.payslip_simulator import CompensationPackage
from app.services.payroll_engine.rate_tables import CHILE_2026_02_PARAMETERS
from app.services.rate_table_service import RateTableService
from main import app
from tests.conftest import make_guard, make_post, scalars_result


class TestRootEndpoints:
    """Test root API endpoints."""

    @pytest.mark.asyncio
    async def test_api_v1_root(self, client: AsyncClient):
        """Test API v1 root endpoint."""
        response = await client.get("/api/v1")
        assert response.status_code == 200
        data = response.json()
        assert data["endpoints"]["payroll"] == "/api/v1/payroll"
        assert data["endpoints"]["cpq"] == "/api/v1/cpq"


class TestPayslipSimulationEndpoint:
    """POST /api/v1/payroll/simulate"""

    @pytest.mark.asyncio
    async def test_simulate(self, client: AsyncClient):
        response = await client.post(
            "/api/v1/payroll/simulate",
            json={"base_salary_clp": 500000, "afp_name": "habitat"},
        )
        assert response.status_code == 200
        data = response.json()
        assert data["monthly_employer_cost_clp"] == 655438
        assert data["worker_net_salary_estimate"] == 507063
        assert data["breakdown"]["total_taxable_income"] == 625000
        assert data["breakdown"]["afc_employer"]["employer_share"] == 15000
        assert data["breakdown"]["afc_employer"]["worker_share"] == 3750
        assert data["worker_breakdown_estimate"]["afp"]["amount"] == 70437
        assert data["worker_breakdown_estimate"]["tax"] == 0
        assert data["parameters_version"] == "cl-2026-02"
        assert data["warnings"] == []

    @pytest.mark.asyncio
    async def test_simulate_with_allowances_and_provisions(self, client: AsyncClient):
        response = await client.post(
            "/api/v1/payroll/simulate",
            json={
                "base_salary_clp": 500000,
                "afp_name": "habitat",
                "non_taxable_allowances": {"meal": 50000, "transport": 40000},
                "assumptions": {"include_vacation_provision": True},
            },
        )
        assert response.status_code == 200
        data = response.json()
        assert data["breakdown"]["non_taxable_income"] == 90000
        assert data["breakdown"]["vacation_provision"] == 52063
        assert data["monthly_employer_cost_clp"] == 655438 + 90000 + 52063
        assert data["worker_net_salary_estimate"] == 507063 + 90000

    @pytest.mark.asyncio
    async def test_custom_gratification_warning(self, client: AsyncClient):
        response = await client.post(
            "/api/v1/payroll/simulate",
            json={"base_salary_clp": 100000, "afp_name": "habitat", "gratification_clp": 150000},
        )
        assert response.status_code == 200
        warnings = response.json()["warnings"]
        assert warnings[0]["code"] == "CUSTOM_GRATIFICATION_EXCEEDS_BASE"

    @pytest.mark.asyncio
    async def test_simulate_month_variables(self, client: AsyncClient):
        response = await client.post(
            "/api/v1/payroll/simulate",
            json={
                "base_salary_clp": 500000,
                "afp_name": "habitat",
                "absence_days": {"unpaid_leave": 3, "sick_leave": 2},
                "overtime_hours_50": 10,
                "commissions": 20000,
                "additional_deductions": {"loan": 15000},
            },
        )
        assert response.status_code == 200
        data = response.json()
        breakdown = data["breakdown"]
        assert breakdown["contract_base_salary"] == 500000
        assert breakdown["worked_days"] == 27
        assert breakdown["base_salary"] == 450000
        assert breakdown["overtime_50"] == 31250
        assert breakdown["commissions"] == 20000
        assert breakdown["total_taxable_income"] == 450000 + 112500 + 31250 + 20000
        assert data["worker_breakdown_estimate"]["additional_deductions"] == 15000
        assert data["worker_breakdown_estimate"]["apv"] == 0

    @pytest.mark.asyncio
    async def test_worked_days_beyond_month_rejected(self, client: AsyncClient):
        response = await client.post(
            "/api/v1/payroll/simulate",
            json={"base_salary_clp": 500000, "afp_name": "habitat", "worked_days": 31, "total_days_month": 30},
        )
        assert response.status_code == 422
        assert response.json()["detail"]["code"] == "VALIDATION_ERROR"

    @pytest.mark.asyncio
    async def test_unknown_afp_is_configuration_error(self, client: AsyncClient):
        response = await client.post(
            "/api/v1/payroll/simulate",
            json={"base_salary_clp": 500000, "afp_name": "nonexistent"},
        )
        assert response.status_code == 422
        detail = response.json()["detail"]
        assert detail["code"] == "CONFIGURATION_ERROR"
        assert detail["field"] == "afp_name"

    @pytest.mark.asyncio
    async def test_unknown_contract_type(self, client: AsyncClient):
        response = await client.post(
            "/api/v1/payroll/simulate",
            json={"base_salary_clp": 500000, "afp_name": "habitat", "contract_type": "hourly"},
        )
        assert response.status_code == 422
        assert response.json()["detail"]["field"] == "contract_type"

    @pytest.mark.asyncio
    async def test_negative_salary_rejected(self, client: AsyncClient):
        response = await client.post(
            "/api/v1/payroll/simulate",
            json={"base_salary_clp": -1, "afp_name": "habitat"},
        )
        assert response.status_code == 422
        assert response.json()["detail"]["code"] == "VALIDATION_ERROR"


class TestGuardSalaryEndpoints:
    """Salary resolution, overrides and net-pay estimates."""

    @pytest.mark.asyncio
    async def test_resolve_salary(self, client: AsyncClient, mock_db):
        guard = make_guard()
        mock_db.get.return_value = guard
        mock_db.execute.return_value = scalars_result([
            SimpleNamespace(post=make_post(legacy_base_salary=480000), end_date=None),
        ])

        response = await client.get(f"/api/v1/payroll/guards/{guard.id}/salary")
        assert response.status_code == 200
        data = response.json()
        assert data["source"] == "post_default"
        assert data["legacy_post_salary"] is True
        assert data["has_override"] is False
        assert data["package"]["base_salary"] == 480000

    @pytest.mark.asyncio
    async def test_guard_not_found(self, client: AsyncClient):
        response = await client.get(f"/api/v1/payroll/guards/{uuid.uuid4()}/salary")
        assert response.status_code == 404
        assert response.json()["detail"]["code"] == "GUARD_NOT_FOUND"

    @pytest.mark.asyncio
    async def test_no_salary_structure(self, client: AsyncClient, mock_db):
        mock_db.get.return_value = make_guard()
        response = await client.get(f"/api/v1/payroll/guards/{uuid.uuid4()}/salary")
        assert response.status_code == 404
        assert response.json()["detail"]["code"] == "SALARY_STRUCTURE_NOT_FOUND"

    @pytest.mark.asyncio
    async def test_set_override(self, client: AsyncClient, mock_db):
        guard = make_guard()
        mock_db.get.return_value = guard

        response = await client.put(
            f"/api/v1/payroll/guards/{guard.id}/salary-override",
            json={"base_salary": 750000, "meal_allowance": 20000},
        )
        assert response.status_code == 200
        data = response.json()
        assert data["source"] == "rut_override"
        assert data["has_override"] is True
        assert data["package"]["base_salary"] == 750000

    @pytest.mark.asyncio
    async def test_override_dates_validated(self, client: AsyncClient):
        response = await client.put(
            f"/api/v1/payroll/guards/{uuid.uuid4()}/salary-override",
            json={"base_salary": 750000, "effective_from": "2026-06-01", "effective_until": "2026-01-01"},
        )
        assert response.status_code == 422

    @pytest.mark.asyncio
    async def test_remove_missing_override(self, client: AsyncClient, mock_db):
        mock_db.get.return_value = make_guard()
        response = await client.delete(f"/api/v1/payroll/guards/{uuid.uuid4()}/salary-override")
        assert response.status_code == 404
        assert response.json()["detail"]["code"] == "NOT_FOUND"

    @pytest.mark.asyncio
    async def test_net_pay_estimate(self, client: AsyncClient, mock_db, mock_cache):
        guard = make_guard()
        mock_db.get.return_value = guard
        mock_db.execute.return_value = scalars_result([
            SimpleNamespace(post=make_post(legacy_base_salary=500000), end_date=None),
        ])

        response = await client.get(f"/api/v1/payroll/guards/{guard.id}/net-pay-estimate")
        assert response.status_code == 200
        data = response.json()
        assert data["worker_net_salary_estimate"] == 507063
        assert data["cached"] is False
        mock_cache.set_net_pay_estimate.assert_awaited_once()


class TestParameterEndpoints:
    """Rate-table versions."""

    @pytest.mark.asyncio
    async def test_list_versions(self, client: AsyncClient, fake_rate_table_service):
        response = await client.get("/api/v1/payroll/parameters?active_only=true")
        assert response.status_code == 200
        assert response.json() == {"items": [], "current_version_id": None}
        fake_rate_table_service.list_versions.assert_awaited_once_with(active_only=True)

    @pytest.mark.asyncio
    async def test_publish_requires_payload(self, client: AsyncClient):
        response = await client.post(
            "/api/v1/payroll/parameters",
            json={"name": "Marzo 2026", "effective_from": "2026-03-01"},
        )
        assert response.status_code == 422

    async def _publish(self, client: AsyncClient, payload: dict):
        return await client.post(
            "/api/v1/payroll/parameters",
            json={"name": "Marzo 2026", "effective_from": "2026-03-01", "payload": payload},
        )

    @pytest.mark.asyncio
    async def test_publish_payload_missing_section(self, client: AsyncClient, mock_db, mock_cache):
        app.dependency_overrides[get_rate_table_service] = lambda: RateTableService(mock_db, mock_cache)
        payload = copy.deepcopy(CHILE_2026_02_PARAMETERS)
        del payload["afp"]

        response = await self._publish(client, payload)
        assert response.status_code == 422
        detail = response.json()["detail"]
        assert detail["code"] == "VALIDATION_ERROR"
        assert detail["field"] == "payload"
        assert detail["details"]["missing"] == "afp"
        mock_db.commit.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_publish_payload_negative_rate(self, client: AsyncClient, mock_db, mock_cache):
        app.dependency_overrides[get_rate_table_service] = lambda: RateTableService(mock_db, mock_cache)
        payload = copy.deepcopy(CHILE_2026_02_PARAMETERS)
        payload["sis"]["employer_rate"] = "-0.01"

        response = await self._publish(client, payload)
        assert response.status_code == 422
        assert response.json()["detail"]["code"] == "INVALID_AMOUNT"
        mock_db.commit.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_publish_payload_unparseable_value(self, client: AsyncClient, mock_db, mock_cache):
        app.dependency_overrides[get_rate_table_service] = lambda: RateTableService(mock_db, mock_cache)
        payload = copy.deepcopy(CHILE_2026_02_PARAMETERS)
        payload["caps"]["pension_uf"] = "not-a-number"

        response = await self._publish(client, payload)
        assert response.status_code == 422
        detail = response.json()["detail"]
        assert detail["code"] == "VALIDATION_ERROR"
        assert detail["details"]["error"] == "InvalidOperation"


class TestQuoteEndpoints:
    """CPQ costing endpoints."""

    def _quote(self, num_guards=10, employer_cost=900000):
        position = SimpleNamespace(
            id=uuid.uuid4(), name="Guardia", num_guards=num_guards, employer_cost=employer_cost,
        )
        return SimpleNamespace(
            id=uuid.uuid4(),
            code="COT-0001",
            parameters=None,
            positions=[position],
            uniform_items=[],
            exam_items=[],
            cost_items=[],
            meals=[],
            vehicles=[],
            infrastructure=[],
        )

    @pytest.mark.asyncio
    async def test_costs_use_camel_case(self, client: AsyncClient, mock_db):
        quote = self._quote()
        mock_db.get.return_value = quote

        response = await client.get(f"/api/v1/cpq/quotes/{quote.id}/costs")
        assert response.status_code == 200
        data = response.json()
        assert data["quoteId"] == str(quote.id)
        assert data["totalGuards"] == 10
        assert data["monthlyPositions"] == 9000000
        assert data["baseCost"] == 9000000
        # 9,000,000 / (1 - 0.13 - 0.025)
        assert data["salePrice"] == 10650888
        assert data["monthlyFinancial"] == 266272
        assert data["monthlyTotal"] == data["baseCost"] + data["monthlyExtras"]
        assert data["marginPct"] == 13.0
        assert data["degenerateMarkup"] is False

    @pytest.mark.asyncio
    async def test_client_price_hides_costs(self, client: AsyncClient, mock_db):
        quote = self._quote()
        mock_db.get.return_value = quote

        response = await client.get(f"/api/v1/cpq/quotes/{quote.id}/price")
        assert response.status_code == 200
        data = response.json()
        assert set(data) == {"quoteId", "salePrice", "monthlyTotal"}

    @pytest.mark.asyncio
    async def test_quote_not_found(self, client: AsyncClient):
        response = await client.get(f"/api/v1/cpq/quotes/{uuid.uuid4()}/costs")
        assert response.status_code == 404
        assert response.json()["detail"]["code"] == "QUOTE_NOT_FOUND"

    @pytest.mark.asyncio
    async def test_invalid_quote_id(self, client: AsyncClient):
        response = await client.get("/api/v1/cpq/quotes/not-a-uuid/costs")
        assert response.status_code == 422

    @pytest.mark.asyncio
    async def test_position_needs_one_package_source(self, client: AsyncClient, mock_db):
        mock_db.get.return_value = self._quote()
        response = await client.post(
            f"/api/v1/cpq/quotes/{uuid.uuid4()}/positions",
            json={"name": "Guardia", "num_guards": 2},
        )
        assert response.status_code == 422
        assert response.json()["detail"]["code"] == "VALIDATION_ERROR"

    @pytest.mark.asyncio
    async def test_remove_unknown_position(self, client: AsyncClient, mock_db):
        mock_db.get.return_value = self._quote()
        response = await client.delete(f"/api/v1/cpq/quotes/{uuid.uuid4()}/positions/{uuid.uuid4()}")
        assert response.status_code == 404
        assert response.json()["detail"]["code"] == "POSITION_NOT_FOUND"

    @pytest.mark.asyncio
    async def test_recalculate_stores_totals(self, client: AsyncClient, mock_db):
        quote = self._quote(num_guards=4, employer_cost=0)
        position = quote.positions[0]
        position.package_snapshot = CompensationPackage(base_salary=500000, afp_name="habitat").to_dict()
        position.include_vacation_provision = False
        position.include_severance_provision = False
        position.work_injury_rate = None
        position.work_injury_risk = None
        mock_db.get.return_value = quote

        response = await client.post(f"/api/v1/cpq/quotes/{quote.id}/recalculate")
        assert response.status_code == 200
        data = response.json()
        assert data["monthlyPositions"] == 4 * 655438
        assert quote.total_guards == 4
        assert quote.monthly_cost == data["monthlyTotal"]
        assert quote.sale_price == data["salePrice"]
        mock_db.commit.assert_awaited_once()

"""
OpsGuard - Test Configuration

Pytest fixtures and configuration.

Engine tests run against the built-in February 2026 rate tables. API tests
replace the database session with a mock; nothing here needs Postgres or
Redis.
"""

from types import SimpleNamespace
from typing import AsyncGenerator
from unittest.mock import AsyncMock, MagicMock
from uuid import uuid4

import pytest
import pytest_asyncio
from httpx import AsyncClient, ASGITransport

from app.dependencies import get_cache, get_payroll_service, get_quote_service, get_rate_table_service
from app.services.payroll_engine import (
    CompensationPackage,
    GuardProfile,
    RateTables,
    default_rate_tables,
)
from app.services.payroll_service import PayrollService
from app.services.quote_service import QuoteService
from main import app


# ===========================================
# ENGINE FIXTURES
# ===========================================

@pytest.fixture(scope="session")
def rate_tables() -> RateTables:
    """February 2026 statutory parameters."""
    return default_rate_tables()


@pytest.fixture
def base_package() -> CompensationPackage:
    """Minimum-wage guard on AFP Habitat, Fonasa, indefinite contract."""
    return CompensationPackage(base_salary=500000, afp_name="habitat")


@pytest.fixture
def guard_profile() -> GuardProfile:
    return GuardProfile(guard_id="guard-1", afp_name="modelo")


# ===========================================
# SERVICE FIXTURES
# ===========================================

def scalars_result(rows) -> MagicMock:
    """Mimic `(await db.execute(...)).scalars().all()`."""
    result = MagicMock()
    result.scalars.return_value.all.return_value = list(rows)
    result.first.return_value = rows[0] if rows else None
    return result


@pytest.fixture
def mock_db() -> MagicMock:
    """AsyncSession stand-in: nothing found, nothing listed."""
    db = MagicMock()
    db.get = AsyncMock(return_value=None)
    db.execute = AsyncMock(return_value=scalars_result([]))
    db.commit = AsyncMock()
    db.refresh = AsyncMock()
    db.delete = AsyncMock()
    db.rollback = AsyncMock()
    return db


@pytest.fixture
def fake_rate_table_service(rate_tables) -> MagicMock:
    service = MagicMock()
    service.get_rate_tables = AsyncMock(return_value=rate_tables)
    service.list_versions = AsyncMock(return_value=[])
    service.current_version_id = AsyncMock(return_value=None)
    return service


@pytest.fixture
def mock_cache() -> MagicMock:
    cache = MagicMock()
    cache.get_net_pay_estimate = AsyncMock(return_value=None)
    cache.set_net_pay_estimate = AsyncMock(return_value=True)
    cache.invalidate_net_pay = AsyncMock(return_value=1)
    return cache


@pytest.fixture
def payroll_service(mock_db, mock_cache, fake_rate_table_service) -> PayrollService:
    return PayrollService(mock_db, cache=mock_cache, rate_tables=fake_rate_table_service)


@pytest.fixture
def quote_service(mock_db, fake_rate_table_service) -> QuoteService:
    return QuoteService(mock_db, rate_tables=fake_rate_table_service)


@pytest_asyncio.fixture
async def client(
    payroll_service,
    quote_service,
    fake_rate_table_service,
    mock_cache,
) -> AsyncGenerator[AsyncClient, None]:
    """Test client with every service dependency overridden."""
    app.dependency_overrides[get_cache] = lambda: mock_cache
    app.dependency_overrides[get_payroll_service] = lambda: payroll_service
    app.dependency_overrides[get_quote_service] = lambda: quote_service
    app.dependency_overrides[get_rate_table_service] = lambda: fake_rate_table_service

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac

    app.dependency_overrides.clear()


# ===========================================
# ORM STAND-INS
# ===========================================

def make_structure(base_salary: int, **kwargs) -> SimpleNamespace:
    """A salary_structures row as the payroll service reads it."""
    values = dict(
        id=uuid4(),
        name="Structure",
        base_salary=base_salary,
        meal_allowance=0,
        transport_allowance=0,
        gratification_mode="auto_pct",
        gratification_custom_amount=0,
        is_active=True,
        effective_from=None,
        effective_until=None,
        bonuses=[],
    )
    values.update(kwargs)
    return SimpleNamespace(**values)


def make_guard(**kwargs) -> SimpleNamespace:
    values = dict(
        id=uuid4(),
        rut="12.345.678-5",
        first_name="Juan",
        last_name="Pérez",
        afp_name="habitat",
        health_system="fonasa",
        health_plan_pct=None,
        contract_type="indefinite",
        num_dependents=0,
        rut_salary_structure=None,
    )
    values.update(kwargs)
    return SimpleNamespace(**values)


def make_post(structure=None, legacy_base_salary: int = 0, installation=None) -> SimpleNamespace:
    return SimpleNamespace(
        id=uuid4(),
        name="Portería",
        salary_structure=structure,
        base_salary=legacy_base_salary,
        installation=installation,
    )


def make_installation(default_structure=None, **kwargs) -> SimpleNamespace:
    values = dict(
        id=uuid4(),
        name="Mall Plaza Norte",
        default_salary_structure=default_structure,
        work_injury_rate=None,
        work_injury_risk=None,
    )
    values.update(kwargs)
    return SimpleNamespace(**values)

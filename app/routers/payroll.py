"""
OpsGuard - Payroll Router

API endpoints for payslip simulation, guard salary resolution, RUT
overrides and payroll parameter versions.
"""

import uuid

from fastapi import APIRouter, Depends, Query, Response, status

from app.dependencies import get_payroll_service, get_rate_table_service
from app.schemas.payroll import (
    NetPayEstimateResponse,
    ParameterVersionCreate,
    ParameterVersionListResponse,
    ParameterVersionOut,
    PayslipSimulationRequest,
    PayslipSimulationResponse,
    ResolvedSalaryResponse,
    SalaryOverrideRequest,
)
from app.services.payroll_service import PayrollService, resolved_salary_response
from app.services.rate_table_service import RateTableService


router = APIRouter()


# ===========================================
# SIMULATION
# ===========================================

@router.post(
    "/simulate",
    response_model=PayslipSimulationResponse,
    summary="Simulate a payslip",
    description="Monthly employer cost and worker net pay for a compensation package.",
)
async def simulate_payslip(
    data: PayslipSimulationRequest,
    service: PayrollService = Depends(get_payroll_service),
):
    """Simulate one month of pay. Nothing is stored."""
    return await service.simulate_payslip(data)


# ===========================================
# GUARD SALARY
# ===========================================

@router.get(
    "/guards/{guard_id}/salary",
    response_model=ResolvedSalaryResponse,
    summary="Resolve a guard's salary structure",
)
async def get_guard_salary(
    guard_id: uuid.UUID,
    service: PayrollService = Depends(get_payroll_service),
):
    """Effective package and the source it came from (RUT, post or installation)."""
    resolved = await service.resolve_salary(guard_id)
    return resolved_salary_response(guard_id, resolved)


@router.put(
    "/guards/{guard_id}/salary-override",
    response_model=ResolvedSalaryResponse,
    summary="Create or update a RUT override",
)
async def set_salary_override(
    guard_id: uuid.UUID,
    data: SalaryOverrideRequest,
    service: PayrollService = Depends(get_payroll_service),
):
    resolved = await service.set_salary_override(guard_id, data)
    return resolved_salary_response(guard_id, resolved)


@router.delete(
    "/guards/{guard_id}/salary-override",
    status_code=status.HTTP_204_NO_CONTENT,
    summary="Remove a RUT override",
)
async def remove_salary_override(
    guard_id: uuid.UUID,
    service: PayrollService = Depends(get_payroll_service),
):
    await service.remove_salary_override(guard_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.get(
    "/guards/{guard_id}/net-pay-estimate",
    response_model=NetPayEstimateResponse,
    summary="Display estimate of a guard's net pay",
)
async def get_net_pay_estimate(
    guard_id: uuid.UUID,
    service: PayrollService = Depends(get_payroll_service),
):
    return await service.get_net_pay_estimate(guard_id)


# ===========================================
# PARAMETER VERSIONS
# ===========================================

@router.get(
    "/parameters",
    response_model=ParameterVersionListResponse,
    summary="List payroll parameter versions",
)
async def list_parameter_versions(
    active_only: bool = Query(False, description="Only versions that can be selected"),
    service: RateTableService = Depends(get_rate_table_service),
):
    versions = await service.list_versions(active_only=active_only)
    return ParameterVersionListResponse(
        items=[ParameterVersionOut.model_validate(v) for v in versions],
        current_version_id=await service.current_version_id(),
    )


@router.post(
    "/parameters",
    response_model=ParameterVersionOut,
    status_code=status.HTTP_201_CREATED,
    summary="Publish a payroll parameter version",
    description="Validates the rate tables before storing them. Cached net-pay estimates are dropped.",
)
async def publish_parameter_version(
    data: ParameterVersionCreate,
    service: RateTableService = Depends(get_rate_table_service),
):
    return await service.publish_version(
        name=data.name,
        payload=data.payload,
        effective_from=data.effective_from,
        effective_until=data.effective_until,
        description=data.description,
    )

"""
OpsGuard - Payroll Schemas

Pydantic schemas for payslip simulation, salary resolution and rate-table
listing. Negative amounts are rejected here, before the engine sees them.

`contract_type`, `health_system` and `afp_name` are plain strings on
purpose: the rate tables decide which values exist and answer unknown ones
with a CONFIGURATION_ERROR naming the field.
"""

from datetime import date, datetime
from decimal import Decimal
from typing import Optional, List, Dict, Any, Literal
from uuid import UUID

from pydantic import BaseModel, Field, model_validator


# ===========================================
# SHARED
# ===========================================

class CalculationWarningOut(BaseModel):
    code: str
    message: str
    field: Optional[str] = None
    details: Optional[Dict[str, Any]] = None


BonusKindEnum = Literal["flat", "percent"]


class BonusLineIn(BaseModel):
    """A bonus on top of base salary."""
    code: str = Field(..., min_length=1, max_length=50)
    name: str = ""
    kind: BonusKindEnum = "flat"
    amount: int = Field(default=0, ge=0)
    percentage: Decimal = Field(default=Decimal("0"), ge=0, description="Percent of base (20 or 0.20)")
    taxable: bool = True


# ===========================================
# PAYSLIP SIMULATION
# ===========================================

class NonTaxableAllowancesIn(BaseModel):
    transport: int = Field(default=0, ge=0)
    meal: int = Field(default=0, ge=0)
    other: int = Field(default=0, ge=0)


class AbsenceDaysIn(BaseModel):
    """Only unpaid leave shortens the paid month."""
    sick_leave: int = Field(default=0, ge=0)
    unpaid_leave: int = Field(default=0, ge=0)
    vacation: int = Field(default=0, ge=0)


class AdditionalDeductionsIn(BaseModel):
    apv: int = Field(default=0, ge=0, description="Voluntary pension saving (regime B), lowers the tax base")
    alimony: int = Field(default=0, ge=0)
    loan: int = Field(default=0, ge=0)
    advance: int = Field(default=0, ge=0)
    caja_loan: int = Field(default=0, ge=0)
    other: int = Field(default=0, ge=0)


class PayslipAssumptionsIn(BaseModel):
    include_vacation_provision: bool = False
    include_severance_provision: bool = False
    vacation_provision_pct: Optional[Decimal] = Field(default=None, ge=0)
    severance_provision_pct: Optional[Decimal] = Field(default=None, ge=0)
    work_injury_rate_pct: Optional[Decimal] = Field(default=None, ge=0)
    work_injury_risk: Optional[str] = None
    has_maternal_allowance: bool = False


class PayslipSimulationRequest(BaseModel):
    """Gross compensation to simulate. A gratification amount switches to custom mode."""
    base_salary_clp: int = Field(..., ge=0)
    gratification_clp: Optional[int] = Field(default=None, ge=0)
    contract_type: str = "indefinite"
    afp_name: str = Field(..., min_length=1)
    health_system: str = "fonasa"
    health_plan_pct: Optional[Decimal] = Field(default=None, ge=0)
    other_taxable_allowances: Optional[int] = Field(default=None, ge=0)
    non_taxable_allowances: Optional[NonTaxableAllowancesIn] = None
    bonuses: List[BonusLineIn] = Field(default_factory=list)
    num_dependents: int = Field(default=0, ge=0)
    # Month variables
    worked_days: Optional[int] = Field(default=None, ge=0, le=31)
    total_days_month: int = Field(default=30, ge=1, le=31)
    absence_days: Optional[AbsenceDaysIn] = None
    holiday_hours_worked: Decimal = Field(default=Decimal("0"), ge=0)
    overtime_hours_50: Decimal = Field(default=Decimal("0"), ge=0)
    overtime_hours_100: Decimal = Field(default=Decimal("0"), ge=0)
    commissions: int = Field(default=0, ge=0)
    additional_deductions: Optional[AdditionalDeductionsIn] = None
    assumptions: Optional[PayslipAssumptionsIn] = None
    parameters_date: Optional[date] = Field(
        default=None,
        description="Date used to select the rate-table version (defaults to today)",
    )

    @model_validator(mode="after")
    def check_days(self):
        if self.worked_days is not None and self.worked_days > self.total_days_month:
            raise ValueError("worked_days cannot exceed total_days_month")
        if self.absence_days and self.absence_days.unpaid_leave > self.total_days_month:
            raise ValueError("unpaid leave cannot exceed total_days_month")
        return self


class AfcEmployerOut(BaseModel):
    total: int
    employer_share: int
    worker_share: int
    cic: int
    fcs: int


class WorkInjuryOut(BaseModel):
    amount: int
    rate: float


class PayslipBreakdownOut(BaseModel):
    base_salary: int
    gratification: int
    contract_base_salary: int
    worked_days: int
    holiday_surcharge: int
    overtime_50: int
    overtime_100: int
    commissions: int
    taxable_bonuses: int
    total_taxable_income: int
    non_taxable_income: int
    family_allowance: int
    sis_employer: int
    afc_employer: AfcEmployerOut
    work_injury_employer: WorkInjuryOut
    employer_contributions_total: int
    vacation_provision: int
    severance_provision: int


class AfpDeductionOut(BaseModel):
    amount: int
    base_rate: float
    commission_rate: float
    total_rate: float


class WorkerBreakdownOut(BaseModel):
    afp: AfpDeductionOut
    health: int
    afc: int
    tax: int
    apv: int = 0
    additional_deductions: int = 0
    total_deductions: int


class PayslipSimulationResponse(BaseModel):
    """Employer cost and net pay for one worker."""
    breakdown: PayslipBreakdownOut
    monthly_employer_cost_clp: int
    worker_net_salary_estimate: int
    worker_breakdown_estimate: WorkerBreakdownOut
    cost_to_net_ratio: float
    parameters_version: str
    warnings: List[CalculationWarningOut] = Field(default_factory=list)


# ===========================================
# SALARY RESOLUTION
# ===========================================

SalarySourceEnum = Literal["rut_override", "post_default", "installation_default"]


class ResolvedPackageOut(BaseModel):
    base_salary: int
    afp_name: str
    health_system: str
    contract_type: str
    gratification: Dict[str, Any]
    non_taxable: Dict[str, int]
    bonuses: List[Dict[str, Any]]
    health_plan_rate: Optional[str] = None
    num_dependents: int = 0


class ResolvedSalaryResponse(BaseModel):
    guard_id: UUID
    source: SalarySourceEnum
    structure_id: Optional[str] = None
    legacy_post_salary: bool = False
    has_override: bool
    package: ResolvedPackageOut


class SalaryOverrideRequest(BaseModel):
    """Individually negotiated pay for one guard (RUT override)."""
    name: Optional[str] = Field(default=None, max_length=200)
    base_salary: int = Field(..., ge=0)
    meal_allowance: int = Field(default=0, ge=0)
    transport_allowance: int = Field(default=0, ge=0)
    gratification_mode: Literal["auto_pct", "custom"] = "auto_pct"
    gratification_custom_amount: int = Field(default=0, ge=0)
    effective_from: Optional[date] = None
    effective_until: Optional[date] = None
    is_active: bool = True

    @model_validator(mode="after")
    def check_dates(self):
        if self.effective_from and self.effective_until and self.effective_until < self.effective_from:
            raise ValueError("effective_until must not be before effective_from")
        return self


class NetPayEstimateResponse(BaseModel):
    guard_id: UUID
    source: SalarySourceEnum
    monthly_employer_cost_clp: int
    worker_net_salary_estimate: int
    cost_to_net_ratio: float
    parameters_version: str
    cached: bool = False


# ===========================================
# RATE TABLES
# ===========================================

class ParameterVersionOut(BaseModel):
    id: UUID
    name: str
    effective_from: date
    effective_until: Optional[date] = None
    is_active: bool
    created_at: Optional[datetime] = None

    model_config = {"from_attributes": True}


class ParameterVersionListResponse(BaseModel):
    items: List[ParameterVersionOut]
    current_version_id: Optional[UUID] = None


class ParameterVersionCreate(BaseModel):
    """A new rate-table version. The payload uses the seed document layout."""
    name: str = Field(..., min_length=1, max_length=100)
    description: Optional[str] = None
    effective_from: date
    effective_until: Optional[date] = None
    payload: Dict[str, Any]

    @model_validator(mode="after")
    def check_dates(self):
        if self.effective_until and self.effective_until < self.effective_from:
            raise ValueError("effective_until must not be before effective_from")
        return self

"""
OpsGuard - CPQ Schemas

Pydantic schemas for quote costing. The cost summary is serialized with
camelCase names (totalGuards, monthlyPositions, ... monthlyTotal).
"""

from decimal import Decimal
from typing import Optional, List
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field, model_validator
from pydantic.alias_generators import to_camel

from app.schemas.payroll import BonusLineIn, CalculationWarningOut, NonTaxableAllowancesIn


class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


# ===========================================
# COST SUMMARY
# ===========================================

class QuoteCostSummaryOut(CamelModel):
    """Full breakdown, for the internal proposal editor."""
    quote_id: UUID
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
    margin_pct: float
    financial_rate_pct: float
    policy_rate_pct: float
    degenerate_markup: bool = False
    sale_price_overridden: bool = False
    warnings: List[CalculationWarningOut] = Field(default_factory=list)


class QuoteClientPriceOut(CamelModel):
    """What a client may see: the price, never the cost breakdown."""
    quote_id: UUID
    sale_price: int
    monthly_total: int


# ===========================================
# POSITIONS
# ===========================================

class PositionPackageIn(BaseModel):
    """Compensation for a position that is not tied to an existing guard."""
    base_salary: int = Field(..., ge=0)
    afp_name: str = Field(..., min_length=1)
    health_system: str = "fonasa"
    health_plan_pct: Optional[Decimal] = Field(default=None, ge=0)
    contract_type: str = "indefinite"
    gratification_clp: Optional[int] = Field(default=None, ge=0)
    non_taxable_allowances: Optional[NonTaxableAllowancesIn] = None
    bonuses: List[BonusLineIn] = Field(default_factory=list)


class PositionCreateRequest(BaseModel):
    """
    Add a staffed role. The package comes from a guard (resolved through
    the salary-structure priority) or is given explicitly.
    """
    name: str = Field(..., min_length=1, max_length=200)
    num_guards: int = Field(..., ge=1)
    guard_id: Optional[UUID] = None
    post_id: Optional[UUID] = None
    package: Optional[PositionPackageIn] = None
    include_vacation_provision: bool = False
    include_severance_provision: bool = False
    work_injury_risk: Optional[str] = None

    @model_validator(mode="after")
    def check_package_source(self):
        if (self.guard_id is None) == (self.package is None):
            raise ValueError("Provide exactly one of guard_id or package")
        return self


class PositionOut(BaseModel):
    id: UUID
    quote_id: UUID
    name: str
    num_guards: int
    employer_cost: int
    net_salary: int
    monthly_position_cost: int
    rate_table_version: Optional[str] = None
    salary_source: Optional[str] = None

    model_config = ConfigDict(from_attributes=True)


class PositionCreateResponse(BaseModel):
    position: PositionOut
    summary: QuoteCostSummaryOut

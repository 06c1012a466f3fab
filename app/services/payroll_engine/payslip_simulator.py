"""
OpsGuard - Payslip Simulator

Simulates a full Chilean payslip (haberes, descuentos, líquido) and the
employer cost for one worker.

Legal calculation order:
    1. Taxable pay (prorated sueldo base, recargo feriado, gratificación,
       horas extra, comisiones, taxable bonuses)
    2. Non-taxable pay (colación, movilización, other, asignación familiar)
    3. Employer contributions (SIS, AFC employer, Mutual)
    4. Optional provisions (vacaciones, indemnización)
    5. Worker social-security deductions (AFP, Salud, AFC worker)
    6. Impuesto Único on taxable pay net of social security and APV
    7. Voluntary and court-ordered deductions, then net pay

Contribution bases are capped independently: AFP, SIS and Mutual use the
pension cap, Salud uses the health cap and AFC its own (higher) cap.

`simulate` is pure: it reads only its arguments and returns a new frozen
`PayslipBreakdown` every call.
"""

import logging
from dataclasses import dataclass, field
from decimal import Decimal
from enum import Enum
from typing import Any, Dict, Optional, Tuple, Union

from app.services.calculation_warnings import CalculationWarning, CustomGratificationWarning
from app.services.payroll_engine.income_tax import IncomeTaxCalculator, IncomeTaxResult
from app.services.payroll_engine.rate import Rate, ZERO, floor_clp, round_clp, to_decimal
from app.services.payroll_engine.rate_tables import ContractType, HealthSystem, RateTables
from app.utils.error_handling import InvalidAmountException, ValidationException

logger = logging.getLogger(__name__)


# ===========================================
# CONSTANTS
# ===========================================

DEFAULT_VACATION_PROVISION_RATE = Rate(Decimal("0.0833"))   # 15 working days a year
DEFAULT_SEVERANCE_PROVISION_RATE = Rate(Decimal("0.04166"))  # 1 month per year of service

DAYS_PER_MONTH = 30
# Art. 32 CT hour value: base / 30 days / 8 hours
HOUR_VALUE_DIVISOR = Decimal(30 * 8)
HOLIDAY_SURCHARGE_FACTOR = Decimal("2")   # Art. 38 CT, double pay
OVERTIME_50_FACTOR = Decimal("1.5")
OVERTIME_100_FACTOR = Decimal("2")


# ===========================================
# PACKAGE
# ===========================================

class GratificationMode(str, Enum):
    """How the legal gratification is paid."""
    AUTO_PCT = "auto_pct"
    CUSTOM = "custom"


class BonusKind(str, Enum):
    FLAT = "flat"
    PERCENT = "percent"


@dataclass(frozen=True)
class GratificationPolicy:
    """Either the capped 25% regime or a negotiated fixed amount, never both."""

    mode: GratificationMode = GratificationMode.AUTO_PCT
    custom_amount: int = 0

    def __post_init__(self):
        object.__setattr__(self, "mode", GratificationMode(self.mode))
        if self.custom_amount < 0:
            raise InvalidAmountException(self.custom_amount, field="gratification.custom_amount")
        if self.mode is GratificationMode.AUTO_PCT and self.custom_amount:
            raise ValidationException(
                "A custom gratification amount requires mode 'custom'",
                field="gratification",
            )

    @classmethod
    def auto(cls) -> "GratificationPolicy":
        return cls()

    @classmethod
    def custom(cls, amount: int) -> "GratificationPolicy":
        return cls(mode=GratificationMode.CUSTOM, custom_amount=amount)


@dataclass(frozen=True)
class NonTaxableAllowances:
    """Flat allowances outside the contribution and tax base."""

    meal: int = 0
    transport: int = 0
    other: int = 0

    def __post_init__(self):
        for name in ("meal", "transport", "other"):
            if getattr(self, name) < 0:
                raise InvalidAmountException(getattr(self, name), field=f"non_taxable_allowances.{name}")

    @property
    def total(self) -> int:
        return self.meal + self.transport + self.other


@dataclass(frozen=True)
class BonusLine:
    """A bonus paid on top of base salary."""

    code: str
    name: str = ""
    kind: BonusKind = BonusKind.FLAT
    amount: int = 0
    percentage: Rate = Rate(ZERO)
    taxable: bool = True

    def __post_init__(self):
        object.__setattr__(self, "kind", BonusKind(self.kind))
        object.__setattr__(self, "percentage", Rate.of(self.percentage))
        if self.amount < 0:
            raise InvalidAmountException(self.amount, field=f"bonuses.{self.code}")

    def amount_for(self, base_salary: int) -> int:
        if self.kind is BonusKind.PERCENT:
            return round_clp(self.percentage.apply(base_salary))
        return self.amount


@dataclass(frozen=True)
class CompensationPackage:
    """
    Everything needed to price one worker's month.

    `health_system` and `contract_type` are kept as given and checked
    against the rate tables at simulation time, so an unknown value fails
    with a ConfigurationError naming the field.
    """

    base_salary: int
    afp_name: str
    health_system: Union[HealthSystem, str] = HealthSystem.FONASA
    contract_type: Union[ContractType, str] = ContractType.INDEFINITE
    gratification: GratificationPolicy = GratificationPolicy()
    non_taxable: NonTaxableAllowances = NonTaxableAllowances()
    bonuses: Tuple[BonusLine, ...] = ()
    health_plan_rate: Optional[Rate] = None
    num_dependents: int = 0

    def __post_init__(self):
        if self.base_salary < 0:
            raise InvalidAmountException(self.base_salary, field="base_salary")
        if self.num_dependents < 0:
            raise InvalidAmountException(self.num_dependents, field="num_dependents")
        object.__setattr__(self, "bonuses", tuple(self.bonuses))
        if self.health_plan_rate is not None:
            object.__setattr__(self, "health_plan_rate", Rate.of(self.health_plan_rate))

    def to_dict(self) -> Dict[str, Any]:
        """Plain JSON form, used to snapshot a package into a quote position."""
        return {
            "base_salary": self.base_salary,
            "afp_name": self.afp_name,
            "health_system": _enum_value(self.health_system),
            "contract_type": _enum_value(self.contract_type),
            "gratification": {
                "mode": self.gratification.mode.value,
                "custom_amount": self.gratification.custom_amount,
            },
            "non_taxable": {
                "meal": self.non_taxable.meal,
                "transport": self.non_taxable.transport,
                "other": self.non_taxable.other,
            },
            "bonuses": [
                {
                    "code": b.code,
                    "name": b.name,
                    "kind": b.kind.value,
                    "amount": b.amount,
                    "percentage": str(b.percentage.fraction),
                    "taxable": b.taxable,
                }
                for b in self.bonuses
            ],
            "health_plan_rate": str(self.health_plan_rate.fraction) if self.health_plan_rate is not None else None,
            "num_dependents": self.num_dependents,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "CompensationPackage":
        gratification = data.get("gratification") or {}
        non_taxable = data.get("non_taxable") or {}
        plan_rate = data.get("health_plan_rate")
        return cls(
            base_salary=int(data["base_salary"]),
            afp_name=data["afp_name"],
            health_system=data.get("health_system", HealthSystem.FONASA.value),
            contract_type=data.get("contract_type", ContractType.INDEFINITE.value),
            gratification=GratificationPolicy(
                mode=gratification.get("mode", GratificationMode.AUTO_PCT.value),
                custom_amount=int(gratification.get("custom_amount", 0)),
            ),
            non_taxable=NonTaxableAllowances(
                meal=int(non_taxable.get("meal", 0)),
                transport=int(non_taxable.get("transport", 0)),
                other=int(non_taxable.get("other", 0)),
            ),
            bonuses=tuple(
                BonusLine(
                    code=b["code"],
                    name=b.get("name", ""),
                    kind=b.get("kind", BonusKind.FLAT.value),
                    amount=int(b.get("amount", 0)),
                    percentage=Rate(to_decimal(b.get("percentage", 0))),
                    taxable=bool(b.get("taxable", True)),
                )
                for b in data.get("bonuses", [])
            ),
            health_plan_rate=Rate(to_decimal(plan_rate)) if plan_rate is not None else None,
            num_dependents=int(data.get("num_dependents", 0)),
        )


@dataclass(frozen=True)
class PayslipAssumptions:
    """Costing assumptions that are not part of the worker's contract."""

    include_vacation_provision: bool = False
    include_severance_provision: bool = False
    vacation_provision_rate: Rate = DEFAULT_VACATION_PROVISION_RATE
    severance_provision_rate: Rate = DEFAULT_SEVERANCE_PROVISION_RATE
    # Installation-specific Mutual rate (accident history); wins over risk level
    work_injury_rate: Optional[Rate] = None
    work_injury_risk: Optional[str] = None
    has_maternal_allowance: bool = False

    def __post_init__(self):
        object.__setattr__(self, "vacation_provision_rate", Rate.of(self.vacation_provision_rate))
        object.__setattr__(self, "severance_provision_rate", Rate.of(self.severance_provision_rate))
        if self.work_injury_rate is not None:
            object.__setattr__(self, "work_injury_rate", Rate.of(self.work_injury_rate))


@dataclass(frozen=True)
class AdditionalDeductions:
    """
    Deductions beyond AFP, health and AFC for the month.

    `apv` (voluntary pension saving, regime B) is a legal deduction that
    lowers the income-tax base. The rest are voluntary or court-ordered and
    only reduce net pay.
    """

    apv: int = 0
    alimony: int = 0
    loan: int = 0
    advance: int = 0
    caja_loan: int = 0
    other: int = 0

    def __post_init__(self):
        for name in ("apv", "alimony", "loan", "advance", "caja_loan", "other"):
            if getattr(self, name) < 0:
                raise InvalidAmountException(getattr(self, name), field=f"additional_deductions.{name}")

    @property
    def non_legal_total(self) -> int:
        return self.alimony + self.loan + self.advance + self.caja_loan + self.other


@dataclass(frozen=True)
class PayPeriod:
    """
    What happened in the month being paid.

    Only unpaid leave shortens the paid month; sick leave and vacation days
    are recorded but paid in full. An explicit `worked_days` wins over the
    absence count. Hours may be fractional.
    """

    total_days_month: int = DAYS_PER_MONTH
    worked_days: Optional[int] = None
    unpaid_leave_days: int = 0
    sick_leave_days: int = 0
    vacation_days: int = 0
    holiday_hours: Decimal = ZERO
    overtime_hours_50: Decimal = ZERO
    overtime_hours_100: Decimal = ZERO
    commissions: int = 0
    deductions: AdditionalDeductions = AdditionalDeductions()

    def __post_init__(self):
        for name in ("holiday_hours", "overtime_hours_50", "overtime_hours_100"):
            object.__setattr__(self, name, to_decimal(getattr(self, name)))
        for name in (
            "unpaid_leave_days", "sick_leave_days", "vacation_days", "commissions",
            "holiday_hours", "overtime_hours_50", "overtime_hours_100",
        ):
            if getattr(self, name) < 0:
                raise InvalidAmountException(getattr(self, name), field=name)
        if self.total_days_month <= 0:
            raise ValidationException("total_days_month must be positive", field="total_days_month")
        if self.worked_days is not None and not 0 <= self.worked_days <= self.total_days_month:
            raise ValidationException(
                f"worked_days must be between 0 and {self.total_days_month}",
                field="worked_days",
            )
        if self.unpaid_leave_days > self.total_days_month:
            raise ValidationException(
                f"unpaid_leave_days cannot exceed {self.total_days_month}",
                field="absence_days.unpaid_leave",
            )

    @property
    def effective_worked_days(self) -> int:
        if self.worked_days is not None:
            return self.worked_days
        return self.total_days_month - self.unpaid_leave_days

    @property
    def is_full_month(self) -> bool:
        return self.effective_worked_days == self.total_days_month


# ===========================================
# BREAKDOWN
# ===========================================

@dataclass(frozen=True)
class PayslipBreakdown:
    """Result of one simulation. All amounts are whole CLP."""

    # Taxable pay
    base_salary: int
    gratification: int
    taxable_bonuses: int
    total_taxable_income: int

    # Non-taxable pay
    meal_allowance: int
    transport_allowance: int
    other_non_taxable: int
    non_taxable_bonuses: int
    family_allowance: int
    total_non_taxable_income: int

    # Capped contribution bases
    pension_base: int
    health_base: int
    afc_base: int

    # Employer contributions
    sis_rate: Decimal
    sis_employer: int
    afc_employer_cic: int
    afc_employer_fcs: int
    afc_employer_total: int
    work_injury_rate: Decimal
    work_injury_employer: int
    employer_contributions_total: int

    # Provisions (forward liability)
    vacation_provision: int
    severance_provision: int

    monthly_employer_cost: int

    # Worker deductions
    afp_base_rate: Decimal
    afp_commission_rate: Decimal
    afp_amount: int
    health_rate: Decimal
    health_amount: int
    afc_worker_rate: Decimal
    afc_worker_amount: int
    tax: IncomeTaxResult
    total_deductions: int

    net_salary: int

    rate_tables_version: str

    # Month variables; `base_salary` above is already prorated
    contract_base_salary: int = 0
    worked_days: int = DAYS_PER_MONTH
    total_days_month: int = DAYS_PER_MONTH
    holiday_surcharge: int = 0
    overtime_50: int = 0
    overtime_100: int = 0
    commissions: int = 0
    apv_amount: int = 0
    additional_deductions: int = 0

    warnings: Tuple[CalculationWarning, ...] = field(default_factory=tuple)

    @property
    def afp_total_rate(self) -> Decimal:
        return self.afp_base_rate + self.afp_commission_rate

    @property
    def provisions_total(self) -> int:
        return self.vacation_provision + self.severance_provision

    @property
    def cost_to_net_ratio(self) -> Decimal:
        if self.net_salary <= 0:
            return ZERO
        return (Decimal(self.monthly_employer_cost) / Decimal(self.net_salary)).quantize(Decimal("0.01"))


# ===========================================
# SIMULATION
# ===========================================

def simulate(
    package: CompensationPackage,
    rate_tables: RateTables,
    assumptions: Optional[PayslipAssumptions] = None,
    period: Optional[PayPeriod] = None,
) -> PayslipBreakdown:
    """
    Gross-to-net simulation for one worker.

    `period` carries the month's variables (days worked, holiday hours,
    overtime, commissions, extra deductions); omitted, it is a plain full
    month, which is what quotes and display estimates price.

    Raises ConfigurationError when the package names an AFP, health system
    or contract type (or the assumptions a risk level) the rate tables do
    not define.
    """
    assumptions = assumptions or PayslipAssumptions()
    period = period or PayPeriod()

    # Resolve every rate first: an unknown setting fails before any arithmetic
    afp_commission = rate_tables.pension_commission(package.afp_name)
    health_rate = rate_tables.health_rate(package.health_system, package.health_plan_rate)
    afc_rates = rate_tables.afc_rates(package.contract_type)
    if assumptions.work_injury_rate is not None:
        work_injury_rate = assumptions.work_injury_rate
    else:
        work_injury_rate = rate_tables.work_injury_rate(assumptions.work_injury_risk)

    warnings = []

    # ── 1. TAXABLE PAY ─────────────────────────────────
    contract_base = package.base_salary
    if period.is_full_month:
        base_salary = contract_base
    else:
        base_salary = round_clp(
            Decimal(contract_base) * period.effective_worked_days / period.total_days_month
        )

    # Hour value is always taken on the full contract base
    hour_value = Decimal(contract_base) / HOUR_VALUE_DIVISOR
    holiday_surcharge = round_clp(period.holiday_hours * hour_value * HOLIDAY_SURCHARGE_FACTOR)
    overtime_50 = round_clp(period.overtime_hours_50 * hour_value * OVERTIME_50_FACTOR)
    overtime_100 = round_clp(period.overtime_hours_100 * hour_value * OVERTIME_100_FACTOR)

    # Percent bonuses follow the contract base, not the prorated one
    taxable_bonuses = sum(b.amount_for(contract_base) for b in package.bonuses if b.taxable)
    non_taxable_bonuses = sum(b.amount_for(contract_base) for b in package.bonuses if not b.taxable)

    # The holiday surcharge is remuneration for the gratification base (Art. 41 CT)
    gratification = _gratification(
        package, rate_tables, base_salary + taxable_bonuses + holiday_surcharge, warnings
    )
    total_taxable = (
        base_salary
        + holiday_surcharge
        + gratification
        + overtime_50
        + overtime_100
        + period.commissions
        + taxable_bonuses
    )

    # ── 2. NON-TAXABLE PAY ─────────────────────────────
    family_allowance = round_clp(
        rate_tables.family_allowance_for(
            Decimal(total_taxable),
            package.num_dependents,
            assumptions.has_maternal_allowance,
        )
    )
    total_non_taxable = package.non_taxable.total + non_taxable_bonuses + family_allowance

    # ── 3. CAPPED BASES ────────────────────────────────
    pension_base = min(Decimal(total_taxable), rate_tables.pension_cap_clp)
    health_base = min(Decimal(total_taxable), rate_tables.health_cap_clp)
    afc_base = min(Decimal(total_taxable), rate_tables.afc_cap_clp)

    # ── 4. EMPLOYER CONTRIBUTIONS ──────────────────────
    sis_employer = round_clp(rate_tables.sis_rate.apply(pension_base))
    afc_employer_cic = round_clp(afc_rates.employer_cic.apply(afc_base))
    afc_employer_fcs = round_clp(afc_rates.employer_fcs.apply(afc_base))
    afc_employer_total = afc_employer_cic + afc_employer_fcs
    work_injury_employer = round_clp(work_injury_rate.apply(pension_base))
    employer_contributions = sis_employer + afc_employer_total + work_injury_employer

    # ── 5. PROVISIONS ──────────────────────────────────
    vacation_provision = 0
    severance_provision = 0
    if assumptions.include_vacation_provision:
        vacation_provision = round_clp(assumptions.vacation_provision_rate.apply(total_taxable))
    if assumptions.include_severance_provision:
        severance_provision = round_clp(assumptions.severance_provision_rate.apply(total_taxable))

    monthly_employer_cost = (
        total_taxable
        + employer_contributions
        + vacation_provision
        + severance_provision
        + total_non_taxable
    )

    # ── 6. WORKER DEDUCTIONS ───────────────────────────
    afp_total_rate = rate_tables.pension_base_rate + afp_commission
    afp_amount = floor_clp(afp_total_rate.apply(pension_base))
    health_amount = floor_clp(health_rate.apply(health_base))
    afc_worker_amount = floor_clp(afc_rates.worker.apply(afc_base))

    # ── 7. INCOME TAX ──────────────────────────────────
    # APV (regime B) comes off the tax base; the base never goes below zero
    apv_amount = period.deductions.apv
    taxable_base = max(
        ZERO,
        Decimal(total_taxable - afp_amount - health_amount - afc_worker_amount - apv_amount),
    )
    tax = IncomeTaxCalculator(rate_tables.tax_brackets).calculate(taxable_base)

    additional_deductions = period.deductions.non_legal_total
    total_deductions = (
        afp_amount + health_amount + afc_worker_amount + apv_amount + tax.amount + additional_deductions
    )

    # ── 8. NET PAY ─────────────────────────────────────
    net_salary = total_taxable - total_deductions + total_non_taxable

    logger.debug(
        f"Payslip simulated: taxable={total_taxable} employer_cost={monthly_employer_cost} "
        f"net={net_salary} params={rate_tables.version_id}"
    )

    return PayslipBreakdown(
        base_salary=base_salary,
        gratification=gratification,
        taxable_bonuses=taxable_bonuses,
        total_taxable_income=total_taxable,
        meal_allowance=package.non_taxable.meal,
        transport_allowance=package.non_taxable.transport,
        other_non_taxable=package.non_taxable.other,
        non_taxable_bonuses=non_taxable_bonuses,
        family_allowance=family_allowance,
        total_non_taxable_income=total_non_taxable,
        pension_base=round_clp(pension_base),
        health_base=round_clp(health_base),
        afc_base=round_clp(afc_base),
        sis_rate=rate_tables.sis_rate.fraction,
        sis_employer=sis_employer,
        afc_employer_cic=afc_employer_cic,
        afc_employer_fcs=afc_employer_fcs,
        afc_employer_total=afc_employer_total,
        work_injury_rate=work_injury_rate.fraction,
        work_injury_employer=work_injury_employer,
        employer_contributions_total=employer_contributions,
        vacation_provision=vacation_provision,
        severance_provision=severance_provision,
        monthly_employer_cost=monthly_employer_cost,
        afp_base_rate=rate_tables.pension_base_rate.fraction,
        afp_commission_rate=afp_commission.fraction,
        afp_amount=afp_amount,
        health_rate=health_rate.fraction,
        health_amount=health_amount,
        afc_worker_rate=afc_rates.worker.fraction,
        afc_worker_amount=afc_worker_amount,
        tax=tax,
        total_deductions=total_deductions,
        net_salary=net_salary,
        rate_tables_version=rate_tables.version_id,
        contract_base_salary=contract_base,
        worked_days=period.effective_worked_days,
        total_days_month=period.total_days_month,
        holiday_surcharge=holiday_surcharge,
        overtime_50=overtime_50,
        overtime_100=overtime_100,
        commissions=period.commissions,
        apv_amount=apv_amount,
        additional_deductions=additional_deductions,
        warnings=tuple(warnings),
    )


def _gratification(
    package: CompensationPackage,
    rate_tables: RateTables,
    remuneration: int,
    warnings: list,
) -> int:
    """Art. 50 CT gratification on the month's remuneration."""
    if package.gratification.mode is GratificationMode.CUSTOM:
        amount = package.gratification.custom_amount
        if amount > remuneration:
            warning = CustomGratificationWarning(
                message=(
                    f"Custom gratification {amount} exceeds the remuneration "
                    f"it is paid on ({remuneration})"
                ),
                field="gratification.custom_amount",
                details={"custom_amount": amount, "remuneration": remuneration},
            )
            logger.warning(warning.message)
            warnings.append(warning)
        return amount

    monthly = rate_tables.gratification_rate.apply(remuneration)
    return round_clp(min(monthly, rate_tables.gratification_monthly_cap_clp))


def _enum_value(value: Any) -> str:
    return value.value if isinstance(value, Enum) else str(value)

"""
OpsGuard - Payroll Engine Package

Chilean gross-to-net payroll for security guards.

Modules:
- rate: Rate value type (percent/fraction normalization) and CLP rounding
- rate_tables: versioned statutory snapshots (AFP, SIS, health, AFC, tax)
- income_tax: Impuesto Único bracket lookup
- payslip_simulator: employer cost and net pay for one worker
- salary_resolver: RUT override -> post -> installation fallback
"""

from datetime import date
from typing import Optional

from app.services.payroll_engine.rate import Rate, round_clp, floor_clp
from app.services.payroll_engine.rate_tables import (
    ContractType,
    HealthSystem,
    RateTables,
    default_rate_tables,
    select_rate_tables,
)
from app.services.payroll_engine.income_tax import IncomeTaxCalculator, IncomeTaxResult
from app.services.payroll_engine.payslip_simulator import (
    AdditionalDeductions,
    BonusKind,
    BonusLine,
    CompensationPackage,
    GratificationMode,
    GratificationPolicy,
    NonTaxableAllowances,
    PayPeriod,
    PayslipAssumptions,
    PayslipBreakdown,
    simulate,
)
from app.services.payroll_engine.salary_resolver import (
    GuardProfile,
    GuardSalaryContext,
    InstallationDefault,
    InstallationRecord,
    PostDefault,
    PostRecord,
    ResolvedSalary,
    RutOverride,
    SalarySource,
    SalaryStructure,
    resolve,
)


# ===========================================
# CONVENIENCE FUNCTIONS
# ===========================================

def estimate_net_pay(
    context: GuardSalaryContext,
    rate_tables: RateTables,
    on_date: Optional[date] = None,
) -> PayslipBreakdown:
    """
    Resolve a guard's package and simulate it.

    Used for the display estimate shown next to a guard; provisions are
    never included.
    """
    resolved = resolve(context, on_date)
    return simulate(resolved.package, rate_tables)


def monthly_employer_cost(package: CompensationPackage, rate_tables: RateTables) -> int:
    """Employer cost of one guard without provisions."""
    return simulate(package, rate_tables).monthly_employer_cost


__all__ = [
    "Rate",
    "round_clp",
    "floor_clp",
    "ContractType",
    "HealthSystem",
    "RateTables",
    "default_rate_tables",
    "select_rate_tables",
    "IncomeTaxCalculator",
    "IncomeTaxResult",
    "AdditionalDeductions",
    "BonusKind",
    "BonusLine",
    "CompensationPackage",
    "GratificationMode",
    "GratificationPolicy",
    "NonTaxableAllowances",
    "PayPeriod",
    "PayslipAssumptions",
    "PayslipBreakdown",
    "simulate",
    "GuardProfile",
    "GuardSalaryContext",
    "InstallationDefault",
    "InstallationRecord",
    "PostDefault",
    "PostRecord",
    "ResolvedSalary",
    "RutOverride",
    "SalarySource",
    "SalaryStructure",
    "resolve",
    "estimate_net_pay",
    "monthly_employer_cost",
]

"""
OpsGuard - Salary Structure Resolver

Decides which pay structure applies to a guard.

Priority (first match wins):
    1. RUT override      - individually negotiated pay, active and in date
    2. Post default      - structure on the guard's current post
                           (legacy: the post's bare base salary)
    3. Installation default

A higher source only takes precedence; it never removes the data below it,
so ending an override falls straight back to the post structure.

The resolver works on fully loaded records (`GuardSalaryContext`); loading
them is the job of `app.services.payroll_service`.
"""

from dataclasses import dataclass
from datetime import date
from enum import Enum
from typing import Callable, ClassVar, Optional, Sequence, Tuple, Union

from app.services.payroll_engine.payslip_simulator import (
    BonusLine,
    CompensationPackage,
    GratificationPolicy,
    NonTaxableAllowances,
)
from app.services.payroll_engine.rate import Rate
from app.services.payroll_engine.rate_tables import ContractType, HealthSystem
from app.utils.error_handling import SalaryStructureNotFoundError


class SalarySource(str, Enum):
    RUT_OVERRIDE = "rut_override"
    POST_DEFAULT = "post_default"
    INSTALLATION_DEFAULT = "installation_default"


# ===========================================
# INPUT RECORDS
# ===========================================

@dataclass(frozen=True)
class SalaryStructure:
    """Pay terms shared by whoever the structure is attached to."""

    structure_id: Optional[str]
    base_salary: int
    meal_allowance: int = 0
    transport_allowance: int = 0
    gratification: GratificationPolicy = GratificationPolicy()
    bonuses: Tuple[BonusLine, ...] = ()
    is_active: bool = True
    effective_from: Optional[date] = None
    effective_until: Optional[date] = None

    def is_effective_on(self, on_date: date) -> bool:
        if not self.is_active:
            return False
        if self.effective_from and self.effective_from > on_date:
            return False
        if self.effective_until and self.effective_until < on_date:
            return False
        return True


@dataclass(frozen=True)
class GuardProfile:
    """Social-security choices that belong to the person, not the post."""

    guard_id: str
    afp_name: str
    health_system: Union[HealthSystem, str] = HealthSystem.FONASA
    contract_type: Union[ContractType, str] = ContractType.INDEFINITE
    health_plan_rate: Optional[Rate] = None
    num_dependents: int = 0


@dataclass(frozen=True)
class PostRecord:
    post_id: str
    name: str
    structure: Optional[SalaryStructure] = None
    legacy_base_salary: int = 0


@dataclass(frozen=True)
class InstallationRecord:
    installation_id: str
    name: str
    default_structure: Optional[SalaryStructure] = None


@dataclass(frozen=True)
class GuardSalaryContext:
    """Everything the resolver may look at for one guard."""

    profile: GuardProfile
    rut_override: Optional[SalaryStructure] = None
    post: Optional[PostRecord] = None
    installation: Optional[InstallationRecord] = None


# ===========================================
# SOURCES (tagged union)
# ===========================================

@dataclass(frozen=True)
class RutOverride:
    source: ClassVar[SalarySource] = SalarySource.RUT_OVERRIDE
    structure: SalaryStructure


@dataclass(frozen=True)
class PostDefault:
    source: ClassVar[SalarySource] = SalarySource.POST_DEFAULT
    structure: SalaryStructure
    post: PostRecord
    legacy: bool = False


@dataclass(frozen=True)
class InstallationDefault:
    source: ClassVar[SalarySource] = SalarySource.INSTALLATION_DEFAULT
    structure: SalaryStructure
    installation: InstallationRecord


SalaryMatch = Union[RutOverride, PostDefault, InstallationDefault]


@dataclass(frozen=True)
class ResolvedSalary:
    """Resolved package (a snapshot) and where it came from."""

    package: CompensationPackage
    match: SalaryMatch
    has_override: bool

    @property
    def source(self) -> SalarySource:
        return self.match.source

    @property
    def structure_id(self) -> Optional[str]:
        return self.match.structure.structure_id


def _rut_override(context: GuardSalaryContext, on_date: date) -> Optional[RutOverride]:
    structure = context.rut_override
    if structure is not None and structure.is_effective_on(on_date):
        return RutOverride(structure=structure)
    return None


def _post_default(context: GuardSalaryContext, on_date: date) -> Optional[PostDefault]:
    post = context.post
    if post is None:
        return None
    if post.structure is not None and post.structure.is_effective_on(on_date):
        return PostDefault(structure=post.structure, post=post)
    if post.legacy_base_salary > 0:
        # Posts created before salary structures existed only carry a base salary
        legacy = SalaryStructure(structure_id=None, base_salary=post.legacy_base_salary)
        return PostDefault(structure=legacy, post=post, legacy=True)
    return None


def _installation_default(context: GuardSalaryContext, on_date: date) -> Optional[InstallationDefault]:
    installation = context.installation
    if installation is None or installation.default_structure is None:
        return None
    if not installation.default_structure.is_effective_on(on_date):
        return None
    return InstallationDefault(structure=installation.default_structure, installation=installation)


SourceResolver = Callable[[GuardSalaryContext, date], Optional[SalaryMatch]]

SALARY_SOURCE_PRIORITY: Sequence[SourceResolver] = (
    _rut_override,
    _post_default,
    _installation_default,
)


def build_package(structure: SalaryStructure, profile: GuardProfile) -> CompensationPackage:
    """Combine pay terms with the guard's own social-security profile."""
    return CompensationPackage(
        base_salary=structure.base_salary,
        afp_name=profile.afp_name,
        health_system=profile.health_system,
        contract_type=profile.contract_type,
        gratification=structure.gratification,
        non_taxable=NonTaxableAllowances(
            meal=structure.meal_allowance,
            transport=structure.transport_allowance,
        ),
        bonuses=structure.bonuses,
        health_plan_rate=profile.health_plan_rate,
        num_dependents=profile.num_dependents,
    )


def resolve(
    context: GuardSalaryContext,
    on_date: Optional[date] = None,
    priority: Sequence[SourceResolver] = SALARY_SOURCE_PRIORITY,
) -> ResolvedSalary:
    """
    Resolve the package that applies to a guard on a date.

    `has_override` reports whether an override record exists at all, even
    when it is inactive or out of date and therefore not the source.

    Raises SalaryStructureNotFoundError when no source applies.
    """
    on_date = on_date or date.today()
    for resolver in priority:
        match = resolver(context, on_date)
        if match is not None:
            return ResolvedSalary(
                package=build_package(match.structure, context.profile),
                match=match,
                has_override=context.rut_override is not None,
            )
    raise SalaryStructureNotFoundError(context.profile.guard_id)

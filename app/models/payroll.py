"""
OpsGuard - Payroll Models

Guards, the places they work and the pay structures that apply to them:
- PayrollParameterVersion: statutory rate tables, one row per version
- SalaryStructure / SalaryStructureBonus / BonusCatalog: pay terms
- Installation -> Post -> GuardAssignment -> Guard: the staffing hierarchy

A salary structure can hang off an installation (default), a post, or a
single guard (RUT override). Which one applies is decided by
`app.services.payroll_engine.salary_resolver`, never here.
"""

import uuid
from datetime import date
from decimal import Decimal
from typing import Any, Dict, List, Optional

from sqlalchemy import (
    Boolean, Date, ForeignKey, Integer, Numeric, String, Text,
    Enum as SQLEnum, JSON, CheckConstraint,
)
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.models.base import BaseModel, AuditMixin
from app.services.payroll_engine.payslip_simulator import BonusKind, GratificationMode
from app.services.payroll_engine.rate_tables import ContractType, HealthSystem


# ===========================================
# RATE TABLES
# ===========================================

class PayrollParameterVersion(BaseModel, AuditMixin):
    """
    One immutable version of the statutory payroll parameters.

    The payload holds the full rate-table JSON; a statutory change is a new
    row with a later `effective_from`, never an update.
    """

    __tablename__ = "payroll_parameter_versions"

    name: Mapped[str] = mapped_column(String(200), nullable=False)
    description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    effective_from: Mapped[date] = mapped_column(Date, nullable=False, index=True)
    effective_until: Mapped[Optional[date]] = mapped_column(Date, nullable=True)
    payload: Mapped[Dict[str, Any]] = mapped_column(JSON, nullable=False)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)


# ===========================================
# SALARY STRUCTURES
# ===========================================

class BonusCatalog(BaseModel):
    """Reusable bonus definition (bono de turno, bono nocturno, ...)."""

    __tablename__ = "bonus_catalog"

    code: Mapped[str] = mapped_column(String(50), nullable=False, unique=True)
    name: Mapped[str] = mapped_column(String(200), nullable=False)
    bonus_kind: Mapped[BonusKind] = mapped_column(
        SQLEnum(BonusKind), nullable=False, default=BonusKind.FLAT,
    )
    default_amount: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    default_percentage: Mapped[Optional[Decimal]] = mapped_column(
        Numeric(7, 4), nullable=True,
        comment="Percent of base salary (20 or 0.20)",
    )
    is_taxable: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)


class SalaryStructure(BaseModel, AuditMixin):
    """Pay terms attached to an installation, a post or a single guard."""

    __tablename__ = "salary_structures"
    __table_args__ = (
        CheckConstraint("base_salary >= 0", name="base_salary_non_negative"),
        CheckConstraint("gratification_custom_amount >= 0", name="gratification_non_negative"),
    )

    name: Mapped[str] = mapped_column(String(200), nullable=False)
    base_salary: Mapped[int] = mapped_column(Integer, nullable=False)
    meal_allowance: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    transport_allowance: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    gratification_mode: Mapped[GratificationMode] = mapped_column(
        SQLEnum(GratificationMode), nullable=False, default=GratificationMode.AUTO_PCT,
    )
    gratification_custom_amount: Mapped[int] = mapped_column(Integer, default=0, nullable=False)

    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    effective_from: Mapped[Optional[date]] = mapped_column(Date, nullable=True)
    effective_until: Mapped[Optional[date]] = mapped_column(Date, nullable=True)

    bonuses: Mapped[List["SalaryStructureBonus"]] = relationship(
        "SalaryStructureBonus",
        back_populates="structure",
        cascade="all, delete-orphan",
        lazy="selectin",
    )


class SalaryStructureBonus(BaseModel):
    """A catalog bonus on a structure, optionally with its own amount."""

    __tablename__ = "salary_structure_bonuses"

    structure_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("salary_structures.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    bonus_catalog_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("bonus_catalog.id", ondelete="RESTRICT"),
        nullable=False,
    )
    override_amount: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    override_percentage: Mapped[Optional[Decimal]] = mapped_column(Numeric(7, 4), nullable=True)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)

    structure: Mapped["SalaryStructure"] = relationship("SalaryStructure", back_populates="bonuses")
    bonus: Mapped["BonusCatalog"] = relationship("BonusCatalog", lazy="joined")


# ===========================================
# STAFFING HIERARCHY
# ===========================================

class Installation(BaseModel):
    """A client site. Carries the default structure and its accident rate."""

    __tablename__ = "installations"

    name: Mapped[str] = mapped_column(String(200), nullable=False)
    client_name: Mapped[Optional[str]] = mapped_column(String(200), nullable=True)
    address: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    default_salary_structure_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("salary_structures.id", ondelete="SET NULL"),
        nullable=True,
    )
    work_injury_rate: Mapped[Optional[Decimal]] = mapped_column(
        Numeric(7, 4), nullable=True,
        comment="Mutual rate adjusted for accident history; overrides the risk level",
    )
    work_injury_risk: Mapped[Optional[str]] = mapped_column(String(50), nullable=True)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)

    default_salary_structure: Mapped[Optional["SalaryStructure"]] = relationship(
        "SalaryStructure", lazy="selectin",
    )
    posts: Mapped[List["Post"]] = relationship(
        "Post", back_populates="installation", cascade="all, delete-orphan",
    )


class Post(BaseModel):
    """A guard post (puesto) at an installation."""

    __tablename__ = "posts"

    installation_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("installations.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    name: Mapped[str] = mapped_column(String(200), nullable=False)
    salary_structure_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("salary_structures.id", ondelete="SET NULL"),
        nullable=True,
    )
    base_salary: Mapped[int] = mapped_column(
        Integer, default=0, nullable=False,
        comment="Legacy pay for posts created before salary structures",
    )
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)

    installation: Mapped["Installation"] = relationship(
        "Installation", back_populates="posts", lazy="selectin",
    )
    salary_structure: Mapped[Optional["SalaryStructure"]] = relationship(
        "SalaryStructure", lazy="selectin",
    )


class Guard(BaseModel):
    """A security guard and their social-security choices."""

    __tablename__ = "guards"

    rut: Mapped[str] = mapped_column(
        String(12), nullable=False, unique=True,
        comment="Chilean national ID (RUT)",
    )
    first_name: Mapped[str] = mapped_column(String(100), nullable=False)
    last_name: Mapped[str] = mapped_column(String(100), nullable=False)

    afp_name: Mapped[str] = mapped_column(String(50), nullable=False)
    health_system: Mapped[HealthSystem] = mapped_column(
        SQLEnum(HealthSystem), nullable=False, default=HealthSystem.FONASA,
    )
    health_plan_pct: Mapped[Optional[Decimal]] = mapped_column(
        Numeric(7, 4), nullable=True,
        comment="Isapre contracted rate (7 or 0.07)",
    )
    contract_type: Mapped[ContractType] = mapped_column(
        SQLEnum(ContractType), nullable=False, default=ContractType.INDEFINITE,
    )
    num_dependents: Mapped[int] = mapped_column(Integer, default=0, nullable=False)

    rut_salary_structure_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("salary_structures.id", ondelete="SET NULL"),
        nullable=True,
    )
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)

    rut_salary_structure: Mapped[Optional["SalaryStructure"]] = relationship(
        "SalaryStructure", lazy="selectin",
    )
    assignments: Mapped[List["GuardAssignment"]] = relationship(
        "GuardAssignment", back_populates="guard", cascade="all, delete-orphan",
    )

    @property
    def full_name(self) -> str:
        return f"{self.first_name} {self.last_name}"


class GuardAssignment(BaseModel):
    """A guard's assignment to a post over a period."""

    __tablename__ = "guard_assignments"

    guard_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("guards.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    post_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("posts.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    start_date: Mapped[date] = mapped_column(Date, nullable=False)
    end_date: Mapped[Optional[date]] = mapped_column(Date, nullable=True)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)

    guard: Mapped["Guard"] = relationship("Guard", back_populates="assignments")
    post: Mapped["Post"] = relationship("Post", lazy="selectin")

"""
OpsGuard - CPQ Models

Quotes and everything a quote owns:
- Quote + QuoteParameters (commercial terms)
- QuotePosition (staffed role with a snapshotted compensation package)
- Uniform, exam and cost lines priced from CatalogItem
- Meal plans, vehicles and infrastructure units

Every child row is cascade-deleted with its quote.
"""

import uuid
from decimal import Decimal
from typing import Any, Dict, List, Optional

from sqlalchemy import (
    Boolean, ForeignKey, Integer, Numeric, String, Text,
    Enum as SQLEnum, JSON, CheckConstraint,
)
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.models.base import BaseModel, AuditMixin
from app.services.cpq.quote_costs import CalcMode


# ===========================================
# CATALOG
# ===========================================

class CatalogItem(BaseModel):
    """
    Priced catalog entry.

    `type` is one of uniform, exam, meal, phone, radio, flashlight,
    infrastructure, fuel, transport, system, financial, policy. `unit`
    tells the aggregator how to bring the price to a monthly basis
    ("mes", "año", "semestre").
    """

    __tablename__ = "catalog_items"

    name: Mapped[str] = mapped_column(String(200), nullable=False)
    type: Mapped[str] = mapped_column(String(50), nullable=False, index=True)
    base_price: Mapped[Optional[Decimal]] = mapped_column(Numeric(14, 2), nullable=True)
    unit: Mapped[Optional[str]] = mapped_column(String(50), nullable=True)
    is_default: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)


# ===========================================
# QUOTE
# ===========================================

class Quote(BaseModel, AuditMixin):
    """A proposal. Cached totals are refreshed on every recalculation."""

    __tablename__ = "quotes"

    code: Mapped[str] = mapped_column(String(50), nullable=False, unique=True)
    client_name: Mapped[Optional[str]] = mapped_column(String(200), nullable=True)
    status: Mapped[str] = mapped_column(String(30), default="draft", nullable=False)
    notes: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    # Cached results of the last recalculation
    total_guards: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    monthly_cost: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    sale_price: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    cost_summary: Mapped[Optional[Dict[str, Any]]] = mapped_column(JSON, nullable=True)

    parameters: Mapped[Optional["QuoteParameters"]] = relationship(
        "QuoteParameters", back_populates="quote", uselist=False,
        cascade="all, delete-orphan", lazy="selectin",
    )
    positions: Mapped[List["QuotePosition"]] = relationship(
        "QuotePosition", back_populates="quote",
        cascade="all, delete-orphan", lazy="selectin",
    )
    uniform_items: Mapped[List["QuoteUniformItem"]] = relationship(
        "QuoteUniformItem", cascade="all, delete-orphan", lazy="selectin",
    )
    exam_items: Mapped[List["QuoteExamItem"]] = relationship(
        "QuoteExamItem", cascade="all, delete-orphan", lazy="selectin",
    )
    cost_items: Mapped[List["QuoteCostItem"]] = relationship(
        "QuoteCostItem", cascade="all, delete-orphan", lazy="selectin",
    )
    meals: Mapped[List["QuoteMeal"]] = relationship(
        "QuoteMeal", cascade="all, delete-orphan", lazy="selectin",
    )
    vehicles: Mapped[List["QuoteVehicle"]] = relationship(
        "QuoteVehicle", cascade="all, delete-orphan", lazy="selectin",
    )
    infrastructure: Mapped[List["QuoteInfrastructure"]] = relationship(
        "QuoteInfrastructure", cascade="all, delete-orphan", lazy="selectin",
    )


def _quote_fk() -> Mapped[uuid.UUID]:
    return mapped_column(
        UUID(as_uuid=True),
        ForeignKey("quotes.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )


def _catalog_fk() -> Mapped[Optional[uuid.UUID]]:
    return mapped_column(
        UUID(as_uuid=True),
        ForeignKey("catalog_items.id", ondelete="SET NULL"),
        nullable=True,
    )


class QuoteParameters(BaseModel):
    """Commercial terms. Percent columns accept 20 or 0.20."""

    __tablename__ = "quote_parameters"

    quote_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("quotes.id", ondelete="CASCADE"),
        nullable=False,
        unique=True,
    )
    margin_pct: Mapped[Decimal] = mapped_column(Numeric(7, 4), nullable=False)
    financial_rate_pct: Mapped[Decimal] = mapped_column(Numeric(7, 4), nullable=False)
    policy_rate_pct: Mapped[Decimal] = mapped_column(Numeric(7, 4), default=Decimal("0"), nullable=False)
    policy_coverage_pct: Mapped[Decimal] = mapped_column(Numeric(7, 4), nullable=False)
    contract_months: Mapped[int] = mapped_column(Integer, default=12, nullable=False)
    policy_contract_months: Mapped[int] = mapped_column(Integer, default=12, nullable=False)
    uniform_changes_per_year: Mapped[int] = mapped_column(Integer, default=3, nullable=False)
    avg_tenure_months: Mapped[int] = mapped_column(Integer, default=4, nullable=False)
    monthly_hours_standard: Mapped[int] = mapped_column(Integer, default=180, nullable=False)
    sale_price_base: Mapped[Optional[int]] = mapped_column(
        Integer, nullable=True,
        comment="Negotiated sale price; replaces the solved price when set",
    )

    quote: Mapped["Quote"] = relationship("Quote", back_populates="parameters")


class QuotePosition(BaseModel):
    """
    A staffed role on a quote.

    The compensation package, the site's work-injury rate and the
    rate-table version are snapshotted when the position is priced, so later
    changes to defaults never reprice it silently.
    """

    __tablename__ = "quote_positions"
    __table_args__ = (
        CheckConstraint("num_guards >= 0", name="num_guards_non_negative"),
    )

    quote_id: Mapped[uuid.UUID] = _quote_fk()
    name: Mapped[str] = mapped_column(String(200), nullable=False)
    num_guards: Mapped[int] = mapped_column(Integer, nullable=False)
    post_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("posts.id", ondelete="SET NULL"),
        nullable=True,
    )
    package_snapshot: Mapped[Dict[str, Any]] = mapped_column(JSON, nullable=False)
    include_vacation_provision: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    include_severance_provision: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    work_injury_rate: Mapped[Optional[Decimal]] = mapped_column(Numeric(7, 4), nullable=True)
    work_injury_risk: Mapped[Optional[str]] = mapped_column(String(50), nullable=True)
    rate_table_version: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    employer_cost: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    net_salary: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    monthly_position_cost: Mapped[int] = mapped_column(Integer, default=0, nullable=False)

    quote: Mapped["Quote"] = relationship("Quote", back_populates="positions")


class QuoteUniformItem(BaseModel):
    __tablename__ = "quote_uniform_items"

    quote_id: Mapped[uuid.UUID] = _quote_fk()
    catalog_item_id: Mapped[Optional[uuid.UUID]] = _catalog_fk()
    unit_price_override: Mapped[Optional[Decimal]] = mapped_column(Numeric(14, 2), nullable=True)
    active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)

    catalog_item: Mapped[Optional["CatalogItem"]] = relationship("CatalogItem", lazy="selectin")


class QuoteExamItem(BaseModel):
    __tablename__ = "quote_exam_items"

    quote_id: Mapped[uuid.UUID] = _quote_fk()
    catalog_item_id: Mapped[Optional[uuid.UUID]] = _catalog_fk()
    unit_price_override: Mapped[Optional[Decimal]] = mapped_column(Numeric(14, 2), nullable=True)
    active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)

    catalog_item: Mapped[Optional["CatalogItem"]] = relationship("CatalogItem", lazy="selectin")


class QuoteCostItem(BaseModel):
    """Flat cost line, charged per month or per guard."""

    __tablename__ = "quote_cost_items"

    quote_id: Mapped[uuid.UUID] = _quote_fk()
    catalog_item_id: Mapped[Optional[uuid.UUID]] = _catalog_fk()
    calc_mode: Mapped[CalcMode] = mapped_column(
        SQLEnum(CalcMode), nullable=False, default=CalcMode.PER_MONTH,
    )
    quantity: Mapped[Decimal] = mapped_column(Numeric(10, 2), default=Decimal("1"), nullable=False)
    unit_price_override: Mapped[Optional[Decimal]] = mapped_column(Numeric(14, 2), nullable=True)
    is_enabled: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)

    catalog_item: Mapped[Optional["CatalogItem"]] = relationship("CatalogItem", lazy="selectin")


class QuoteMeal(BaseModel):
    __tablename__ = "quote_meals"

    quote_id: Mapped[uuid.UUID] = _quote_fk()
    meal_type: Mapped[str] = mapped_column(String(100), nullable=False)
    meals_per_day: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    days_of_service: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    price_override: Mapped[Optional[Decimal]] = mapped_column(Numeric(14, 2), nullable=True)
    is_enabled: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)


class QuoteVehicle(BaseModel):
    __tablename__ = "quote_vehicles"

    quote_id: Mapped[uuid.UUID] = _quote_fk()
    rent_monthly: Mapped[Decimal] = mapped_column(Numeric(14, 2), default=Decimal("0"), nullable=False)
    maintenance_monthly: Mapped[Decimal] = mapped_column(Numeric(14, 2), default=Decimal("0"), nullable=False)
    km_per_day: Mapped[Decimal] = mapped_column(Numeric(10, 2), default=Decimal("0"), nullable=False)
    days_per_month: Mapped[Decimal] = mapped_column(Numeric(5, 2), default=Decimal("0"), nullable=False)
    km_per_liter: Mapped[Decimal] = mapped_column(Numeric(8, 2), default=Decimal("0"), nullable=False)
    fuel_price: Mapped[Decimal] = mapped_column(Numeric(10, 2), default=Decimal("0"), nullable=False)
    vehicles_count: Mapped[int] = mapped_column(Integer, default=1, nullable=False)
    is_enabled: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)


class QuoteInfrastructure(BaseModel):
    __tablename__ = "quote_infrastructure"

    quote_id: Mapped[uuid.UUID] = _quote_fk()
    name: Mapped[Optional[str]] = mapped_column(String(200), nullable=True)
    rent_monthly: Mapped[Decimal] = mapped_column(Numeric(14, 2), default=Decimal("0"), nullable=False)
    has_fuel: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    fuel_liters_per_hour: Mapped[Decimal] = mapped_column(Numeric(8, 2), default=Decimal("0"), nullable=False)
    fuel_hours_per_day: Mapped[Decimal] = mapped_column(Numeric(5, 2), default=Decimal("0"), nullable=False)
    fuel_days_per_month: Mapped[Decimal] = mapped_column(Numeric(5, 2), default=Decimal("0"), nullable=False)
    fuel_price: Mapped[Decimal] = mapped_column(Numeric(10, 2), default=Decimal("0"), nullable=False)
    quantity: Mapped[int] = mapped_column(Integer, default=1, nullable=False)
    is_enabled: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)

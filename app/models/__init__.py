"""
OpsGuard - SQLAlchemy Models Package

This package contains all database models for the application.
"""

from app.models.base import BaseModel, TimestampMixin, AuditMixin
from app.models.payroll import (
    PayrollParameterVersion,
    BonusCatalog,
    SalaryStructure,
    SalaryStructureBonus,
    Installation,
    Post,
    Guard,
    GuardAssignment,
)
from app.models.cpq import (
    CatalogItem,
    Quote,
    QuoteParameters,
    QuotePosition,
    QuoteUniformItem,
    QuoteExamItem,
    QuoteCostItem,
    QuoteMeal,
    QuoteVehicle,
    QuoteInfrastructure,
)

__all__ = [
    "BaseModel",
    "TimestampMixin",
    "AuditMixin",
    "PayrollParameterVersion",
    "BonusCatalog",
    "SalaryStructure",
    "SalaryStructureBonus",
    "Installation",
    "Post",
    "Guard",
    "GuardAssignment",
    "CatalogItem",
    "Quote",
    "QuoteParameters",
    "QuotePosition",
    "QuoteUniformItem",
    "QuoteExamItem",
    "QuoteCostItem",
    "QuoteMeal",
    "QuoteVehicle",
    "QuoteInfrastructure",
]

"""
OpsGuard - Routers Package

FastAPI route handlers.

Routers:
- payroll: Payslip simulation, salary resolution, RUT overrides, parameter versions
- cpq: Quote costing, positions and client price
"""

from app.routers import payroll, cpq

__all__ = ["payroll", "cpq"]

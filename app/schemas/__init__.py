"""
OpsGuard - Schemas Package

Pydantic schemas for request/response validation.

- payroll: payslip simulation, salary resolution and parameter versions
- cpq: quote costing (camelCase responses)
"""

"""
OpsGuard - Services Package

Business logic services. The pure engines live in `payroll_engine` and
`cpq`; the service modules here bind them to the database and the cache.

Nothing is imported at package level: the models import engine enums from
this package, and the service modules import the models.
"""

"""
Seed Script: Payroll Parameters and CPQ Catalog
===============================================
Populates the reference data a fresh database needs before any payslip
or quote can be computed.

This script creates:
- The February 2026 Chilean payroll parameter version
- Common guard bonuses (shift, night, attendance)
- Default CPQ catalog items (uniform, exam, equipment, financial, policy)

Run after `alembic upgrade head`. Safe to re-run: existing rows are kept.
"""

import asyncio
from datetime import date
from decimal import Decimal

# Add project root to path
import sys
from pathlib import Path
sys.path.insert(0, str(Path(__file__).parent.parent))

from sqlalchemy import select

from app.database import async_session_maker
from app.models.cpq import CatalogItem
from app.models.payroll import BonusCatalog
from app.services.payroll_engine.payslip_simulator import BonusKind
from app.services.payroll_engine.rate_tables import CHILE_2026_02_PARAMETERS
from app.services.rate_table_service import RateTableService
from app.utils.error_handling import ConflictException


# =============================================================================
# CONSTANTS
# =============================================================================

BONUSES = [
    # (code, name, kind, amount, percentage, taxable)
    ("TURNO", "Bono de turno", BonusKind.FLAT, 35000, None, True),
    ("NOCHE", "Bono nocturno", BonusKind.PERCENT, 0, Decimal("10"), True),
    ("ASISTENCIA", "Bono de asistencia", BonusKind.FLAT, 20000, None, True),
    ("HERRAMIENTAS", "Asignación de herramientas", BonusKind.FLAT, 10000, None, False),
]

CATALOG = [
    # (name, type, base_price, unit, is_default)
    ("Uniforme completo", "uniform", Decimal("45000"), "mes", True),
    ("Zapatos de seguridad", "uniform", Decimal("30000"), "mes", True),
    ("Examen preocupacional", "exam", Decimal("35000"), "mes", True),
    ("Examen psicológico OS-10", "exam", Decimal("25000"), "mes", False),
    ("Colación", "meal", Decimal("3500"), "mes", False),
    ("Teléfono móvil", "phone", Decimal("15000"), "mes", True),
    ("Radio portátil", "radio", Decimal("12000"), "mes", True),
    ("Linterna", "flashlight", Decimal("24000"), "año", True),
    ("Caseta de guardia", "infrastructure", Decimal("90000"), "mes", False),
    ("Sistema de control de rondas", "system", Decimal("60000"), "semestre", False),
    ("Costo financiero", "financial", None, "mes", True),
    ("Póliza de garantía", "policy", None, "mes", True),
]


# =============================================================================
# SEED FUNCTIONS
# =============================================================================

async def seed_parameters(db) -> None:
    metadata = CHILE_2026_02_PARAMETERS["version_metadata"]
    service = RateTableService(db)
    try:
        row = await service.publish_version(
            name=metadata["name"],
            payload=CHILE_2026_02_PARAMETERS,
            effective_from=date.fromisoformat(metadata["effective_from"]),
            description=metadata.get("source"),
            created_by="seed",
        )
        print(f"  ✓ Parameter version '{row.name}' ({row.id})")
    except ConflictException as e:
        await db.rollback()
        print(f"  - Parameter version skipped: {e.message}")


async def seed_bonuses(db) -> None:
    result = await db.execute(select(BonusCatalog.code))
    existing = set(result.scalars().all())
    for code, name, kind, amount, percentage, taxable in BONUSES:
        if code in existing:
            print(f"  - Bonus {code} exists")
            continue
        db.add(BonusCatalog(
            code=code,
            name=name,
            bonus_kind=kind,
            default_amount=amount,
            default_percentage=percentage,
            is_taxable=taxable,
        ))
        print(f"  ✓ Bonus {code}")
    await db.commit()


async def seed_catalog(db) -> None:
    result = await db.execute(select(CatalogItem.name))
    existing = set(result.scalars().all())
    for name, item_type, price, unit, is_default in CATALOG:
        if name in existing:
            print(f"  - Catalog item '{name}' exists")
            continue
        db.add(CatalogItem(
            name=name,
            type=item_type,
            base_price=price,
            unit=unit,
            is_default=is_default,
        ))
        print(f"  ✓ Catalog item '{name}' ({item_type})")
    await db.commit()


async def main():
    async with async_session_maker() as db:
        print("Seeding payroll parameters...")
        await seed_parameters(db)
        print("Seeding bonus catalog...")
        await seed_bonuses(db)
        print("Seeding CPQ catalog...")
        await seed_catalog(db)
    print("Done!")


if __name__ == "__main__":
    asyncio.run(main())

"""
OpsGuard - Rate Table Service

Loads payroll parameter versions from the database and turns them into
immutable `RateTables` snapshots. A caller reads the snapshot once, before
computing, so an administrative update mid-request cannot mix old and new
rates in one result.
"""

import logging
from datetime import date
from decimal import InvalidOperation
from typing import List, Optional
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.models.payroll import PayrollParameterVersion
from app.services.cache_service import CacheService
from app.services.payroll_engine.rate_tables import RateTables, select_rate_tables
from app.utils.error_handling import ConflictException, RateTablesNotFoundError, ValidationException

logger = logging.getLogger(__name__)


def to_rate_tables(row: PayrollParameterVersion) -> RateTables:
    """Snapshot one stored version. Row dates win over the payload metadata."""
    return RateTables.from_dict(
        row.payload,
        version_id=str(row.id),
        effective_from=row.effective_from,
        effective_until=row.effective_until,
    )


def parse_payload(
    payload: dict,
    effective_from: date,
    effective_until: Optional[date] = None,
) -> RateTables:
    """
    Validate a submitted payload by building the tables it describes.

    Unknown settings and negative rates keep their own error codes; a
    missing key or an unparseable value becomes a VALIDATION_ERROR on
    `payload`.
    """
    try:
        return RateTables.from_dict(
            payload,
            version_id="pending",
            effective_from=effective_from,
            effective_until=effective_until,
        )
    except KeyError as e:
        raise ValidationException(
            f"Rate-table payload is missing {e}",
            field="payload",
            details={"missing": str(e).strip("'")},
        )
    except (TypeError, ValueError, InvalidOperation) as e:
        raise ValidationException(
            "Rate-table payload has a malformed value",
            field="payload",
            details={"error": type(e).__name__, "reason": str(e)},
        )


class RateTableService:
    """Read and publish payroll parameter versions."""

    def __init__(self, db: AsyncSession, cache: Optional[CacheService] = None):
        self.db = db
        self.cache = cache

    async def list_versions(self, active_only: bool = False) -> List[PayrollParameterVersion]:
        query = select(PayrollParameterVersion).order_by(PayrollParameterVersion.effective_from.desc())
        if active_only:
            query = query.where(PayrollParameterVersion.is_active == True)  # noqa: E712
        result = await self.db.execute(query)
        return list(result.scalars().all())

    async def get_rate_tables(self, on_date: Optional[date] = None) -> RateTables:
        """Snapshot of the version in effect on a date (today by default)."""
        on_date = on_date or date.today()
        result = await self.db.execute(
            select(PayrollParameterVersion).where(
                PayrollParameterVersion.is_active == True,  # noqa: E712
                PayrollParameterVersion.effective_from <= on_date,
            )
        )
        rows = result.scalars().all()
        tables = select_rate_tables([to_rate_tables(row) for row in rows], on_date)
        logger.debug(f"Rate tables {tables.version_id} selected for {on_date.isoformat()}")
        return tables

    async def get_version(self, version_id: UUID) -> RateTables:
        row = await self.db.get(PayrollParameterVersion, version_id)
        if row is None:
            raise RateTablesNotFoundError(version_id=str(version_id))
        return to_rate_tables(row)

    async def current_version_id(self, on_date: Optional[date] = None) -> Optional[UUID]:
        try:
            tables = await self.get_rate_tables(on_date)
        except RateTablesNotFoundError:
            return None
        return UUID(tables.version_id)

    async def publish_version(
        self,
        name: str,
        payload: dict,
        effective_from: date,
        effective_until: Optional[date] = None,
        description: Optional[str] = None,
        created_by: Optional[str] = None,
    ) -> PayrollParameterVersion:
        """
        Store a new version.

        The payload is parsed before anything is written, so a malformed
        version never reaches the table. Two active versions may not start
        on the same day. Cached net-pay estimates are dropped
        because every guard may be affected.
        """
        parse_payload(payload, effective_from, effective_until)

        existing = await self.db.execute(
            select(PayrollParameterVersion.id).where(
                PayrollParameterVersion.is_active == True,  # noqa: E712
                PayrollParameterVersion.effective_from == effective_from,
            )
        )
        if existing.first() is not None:
            raise ConflictException(
                f"An active parameter version already starts on {effective_from.isoformat()}",
                details={"effective_from": effective_from.isoformat()},
            )

        row = PayrollParameterVersion(
            name=name,
            description=description,
            effective_from=effective_from,
            effective_until=effective_until,
            payload=payload,
            is_active=True,
            created_by=created_by,
        )
        self.db.add(row)
        await self.db.commit()
        await self.db.refresh(row)
        logger.info(f"Published payroll parameter version '{name}' effective {effective_from.isoformat()}")

        if self.cache is not None:
            await self.cache.invalidate_net_pay()
        return row

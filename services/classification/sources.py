"""
Upstream Data Sources
=====================

Read-only access to data owned by other modules: time entries, engagements
and the contractor registry. The engine never writes these tables.

Each source is declared as a Protocol with a PostgreSQL implementation.
Driver and connection failures surface as UpstreamDataError.

Version: 0.1.0
"""

import asyncio
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from dataclasses import dataclass
from datetime import date
from typing import Protocol

from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from services.classification.errors import Stage, UpstreamDataError


ACTIVE_STATUS = "active"


@dataclass(frozen=True)
class TimeEntry:
    """One time-tracking record."""

    contractor_id: str
    engagement_id: str
    entry_date: date
    hours: float


@dataclass(frozen=True)
class ContractorRecord:
    """Contractor registry entry."""

    id: str
    organization_id: str
    name: str
    status: str

    @property
    def is_active(self) -> bool:
        return self.status == ACTIVE_STATUS


class TimeTrackingSource(Protocol):
    """Time entries keyed by contractor and date."""

    async def entries(
        self,
        db: AsyncSession,
        contractor_id: str,
        start: date,
        end: date,
    ) -> list[TimeEntry]: ...

    async def weekly_hours(
        self,
        db: AsyncSession,
        contractor_ids: list[str],
        start: date,
        end: date,
    ) -> dict[str, dict[date, float]]: ...


class EngagementRegistry(Protocol):
    """Active engagement counts."""

    async def active_count(self, db: AsyncSession, contractor_id: str) -> int: ...

    async def active_counts(
        self,
        db: AsyncSession,
        contractor_ids: list[str],
    ) -> dict[str, int]: ...


class ContractorRegistry(Protocol):
    """Contractor status lookups."""

    async def get(self, db: AsyncSession, contractor_id: str) -> ContractorRecord | None: ...

    async def list_active(
        self,
        db: AsyncSession,
        organization_id: str | None = None,
    ) -> list[ContractorRecord]: ...


@asynccontextmanager
async def _upstream_read(
    source: str,
    stage: Stage,
    contractor_id: str | None = None,
) -> AsyncIterator[None]:
    try:
        yield
    except (SQLAlchemyError, OSError, asyncio.TimeoutError) as e:
        raise UpstreamDataError(
            f"{source} read failed: {e}",
            source=source,
            contractor_id=contractor_id,
            stage=stage,
        ) from e


# =============================================================================
# PostgreSQL Implementations
# =============================================================================


class SqlTimeTrackingSource:
    """Time entries from core.time_entries."""

    name = "time_tracking"

    async def entries(
        self,
        db: AsyncSession,
        contractor_id: str,
        start: date,
        end: date,
    ) -> list[TimeEntry]:
        query = text("""
            SELECT contractor_id, engagement_id, entry_date, hours
            FROM core.time_entries
            WHERE contractor_id = :contractor_id
              AND entry_date >= :start
              AND entry_date <= :end
            ORDER BY entry_date
        """)

        async with _upstream_read(self.name, Stage.DERIVATION, contractor_id):
            result = await db.execute(
                query,
                {"contractor_id": contractor_id, "start": start, "end": end},
            )
            rows = result.fetchall()

        return [
            TimeEntry(
                contractor_id=str(row.contractor_id),
                engagement_id=str(row.engagement_id),
                entry_date=row.entry_date,
                hours=float(row.hours),
            )
            for row in rows
        ]

    async def weekly_hours(
        self,
        db: AsyncSession,
        contractor_ids: list[str],
        start: date,
        end: date,
    ) -> dict[str, dict[date, float]]:
        """Hours per contractor per week (weeks start on Monday)."""
        if not contractor_ids:
            return {}

        query = text("""
            SELECT
                contractor_id,
                date_trunc('week', entry_date)::date AS week_start,
                SUM(hours) AS hours
            FROM core.time_entries
            WHERE contractor_id = ANY(:contractor_ids)
              AND entry_date >= :start
              AND entry_date <= :end
            GROUP BY contractor_id, date_trunc('week', entry_date)
        """)

        async with _upstream_read(self.name, Stage.AGGREGATE):
            result = await db.execute(
                query,
                {"contractor_ids": contractor_ids, "start": start, "end": end},
            )
            rows = result.fetchall()

        weekly: dict[str, dict[date, float]] = {}
        for row in rows:
            weekly.setdefault(str(row.contractor_id), {})[row.week_start] = float(row.hours)
        return weekly


class SqlEngagementRegistry:
    """Active engagements from core.engagements."""

    name = "engagements"

    async def active_count(self, db: AsyncSession, contractor_id: str) -> int:
        query = text("""
            SELECT COUNT(*) AS engagement_count
            FROM core.engagements
            WHERE contractor_id = :contractor_id AND status = :status
        """)

        async with _upstream_read(self.name, Stage.DERIVATION, contractor_id):
            result = await db.execute(
                query,
                {"contractor_id": contractor_id, "status": ACTIVE_STATUS},
            )
            count = result.scalar()

        return int(count or 0)

    async def active_counts(
        self,
        db: AsyncSession,
        contractor_ids: list[str],
    ) -> dict[str, int]:
        if not contractor_ids:
            return {}

        query = text("""
            SELECT contractor_id, COUNT(*) AS engagement_count
            FROM core.engagements
            WHERE contractor_id = ANY(:contractor_ids) AND status = :status
            GROUP BY contractor_id
        """)

        async with _upstream_read(self.name, Stage.AGGREGATE):
            result = await db.execute(
                query,
                {"contractor_ids": contractor_ids, "status": ACTIVE_STATUS},
            )
            rows = result.fetchall()

        return {str(row.contractor_id): int(row.engagement_count) for row in rows}


class SqlContractorRegistry:
    """Contractor status from core.contractors."""

    name = "contractors"

    async def get(self, db: AsyncSession, contractor_id: str) -> ContractorRecord | None:
        query = text("""
            SELECT id, organization_id, first_name || ' ' || last_name AS name, status
            FROM core.contractors
            WHERE id = :contractor_id
        """)

        async with _upstream_read(self.name, Stage.ELIGIBILITY, contractor_id):
            result = await db.execute(query, {"contractor_id": contractor_id})
            row = result.fetchone()

        return _contractor_from_row(row) if row else None

    async def list_active(
        self,
        db: AsyncSession,
        organization_id: str | None = None,
    ) -> list[ContractorRecord]:
        query = text("""
            SELECT id, organization_id, first_name || ' ' || last_name AS name, status
            FROM core.contractors
            WHERE status = :status
              AND (CAST(:organization_id AS uuid) IS NULL OR organization_id = CAST(:organization_id AS uuid))
            ORDER BY organization_id, id
        """)

        async with _upstream_read(self.name, Stage.ELIGIBILITY):
            result = await db.execute(
                query,
                {"status": ACTIVE_STATUS, "organization_id": organization_id},
            )
            rows = result.fetchall()

        return [_contractor_from_row(row) for row in rows]


def _contractor_from_row(row: object) -> ContractorRecord:
    return ContractorRecord(
        id=str(row.id),  # type: ignore[attr-defined]
        organization_id=str(row.organization_id),  # type: ignore[attr-defined]
        name=row.name,  # type: ignore[attr-defined]
        status=str(row.status),  # type: ignore[attr-defined]
    )

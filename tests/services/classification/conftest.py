"""
Classification Test Fixtures
============================

In-memory stand-ins for the repository and upstream sources, plus
fully wired classification services.

Version: 0.1.0
"""

from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from datetime import UTC, date, datetime, timedelta
from unittest.mock import AsyncMock

import pytest

from services.classification.models import FactorCategory, FactorSource
from services.classification.schemas import Assessment, Factor
from services.classification.services import (
    AggregateViewBuilder,
    AssessmentRecorder,
    FactorDeriver,
    FactorStore,
    MemorySnapshotStore,
)
from services.classification.sources import ContractorRecord, TimeEntry
from shared.config import ClassificationSettings


ORG_ID = "org-1"
NOW = datetime(2024, 6, 14, 12, 0, tzinfo=UTC)  # a Friday


# =============================================================================
# Fakes
# =============================================================================


class FakeRepository:
    """Append-only in-memory repository."""

    def __init__(self) -> None:
        self.factors: list[Factor] = []
        self.assessments: list[Assessment] = []

    async def insert_factor(self, db, factor: Factor) -> Factor:
        self.factors.append(factor)
        return factor

    async def find_factors(
        self,
        db,
        contractor_id: str,
        *,
        category: FactorCategory | None = None,
        source: FactorSource | None = None,
        overlapping: tuple[date, date] | None = None,
    ) -> list[Factor]:
        found = [
            f
            for f in self.factors
            if f.contractor_id == contractor_id
            and (category is None or f.category == category)
            and (source is None or f.source == source)
            and (
                overlapping is None
                or (f.period_start <= overlapping[1] and f.period_end >= overlapping[0])
            )
        ]
        return sorted(found, key=lambda f: (f.period_end, f.created_at), reverse=True)

    async def insert_assessment(self, db, assessment: Assessment) -> Assessment:
        self.assessments.append(assessment)
        return assessment

    async def assessment_history(self, db, contractor_id: str, limit: int) -> list[Assessment]:
        history = [a for a in self.assessments if a.contractor_id == contractor_id]
        return sorted(history, key=lambda a: a.assessed_at, reverse=True)[:limit]

    async def latest_assessment(self, db, contractor_id: str) -> Assessment | None:
        history = await self.assessment_history(db, contractor_id, 1)
        return history[0] if history else None

    async def latest_assessments(self, db, contractor_ids: list[str]) -> dict[str, Assessment]:
        latest = {}
        for contractor_id in contractor_ids:
            assessment = await self.latest_assessment(db, contractor_id)
            if assessment is not None:
                latest[contractor_id] = assessment
        return latest


class FakeTimeTracking:
    """Time entries keyed by contractor."""

    def __init__(self) -> None:
        self.by_contractor: dict[str, list[TimeEntry]] = {}
        self.error: Exception | None = None

    def add(self, contractor_id: str, engagement_id: str, day: date, hours: float) -> None:
        self.by_contractor.setdefault(contractor_id, []).append(
            TimeEntry(contractor_id, engagement_id, day, hours)
        )

    async def entries(self, db, contractor_id: str, start: date, end: date) -> list[TimeEntry]:
        if self.error:
            raise self.error
        return [
            e for e in self.by_contractor.get(contractor_id, []) if start <= e.entry_date <= end
        ]

    async def weekly_hours(self, db, contractor_ids, start, end) -> dict[str, dict[date, float]]:
        if self.error:
            raise self.error
        weekly: dict[str, dict[date, float]] = {}
        for contractor_id in contractor_ids:
            for entry in await self.entries(db, contractor_id, start, end):
                week = entry.entry_date - timedelta(days=entry.entry_date.weekday())
                totals = weekly.setdefault(contractor_id, {})
                totals[week] = totals.get(week, 0.0) + entry.hours
        return weekly


class FakeEngagements:
    """Active engagement counts keyed by contractor."""

    def __init__(self) -> None:
        self.counts: dict[str, int] = {}

    async def active_count(self, db, contractor_id: str) -> int:
        return self.counts.get(contractor_id, 0)

    async def active_counts(self, db, contractor_ids: list[str]) -> dict[str, int]:
        return {c: self.counts[c] for c in contractor_ids if c in self.counts}


class FakeContractors:
    """Contractor registry keyed by id."""

    def __init__(self) -> None:
        self.records: dict[str, ContractorRecord] = {}

    def add(
        self,
        contractor_id: str,
        status: str = "active",
        organization_id: str = ORG_ID,
        name: str | None = None,
    ) -> ContractorRecord:
        record = ContractorRecord(
            id=contractor_id,
            organization_id=organization_id,
            name=name or f"Contractor {contractor_id}",
            status=status,
        )
        self.records[contractor_id] = record
        return record

    async def get(self, db, contractor_id: str) -> ContractorRecord | None:
        return self.records.get(contractor_id)

    async def list_active(self, db, organization_id: str | None = None) -> list[ContractorRecord]:
        return [
            r
            for r in self.records.values()
            if r.is_active and (organization_id is None or r.organization_id == organization_id)
        ]


class FrozenClock:
    """Callable clock that only moves when told to."""

    def __init__(self, now: datetime = NOW) -> None:
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs: float) -> None:
        self.now += timedelta(**kwargs)


# =============================================================================
# Fixtures
# =============================================================================


@pytest.fixture
def db() -> AsyncMock:
    """Database session; the fakes never touch it."""
    return AsyncMock()


@pytest.fixture
def config() -> ClassificationSettings:
    return ClassificationSettings()


@pytest.fixture
def clock() -> FrozenClock:
    return FrozenClock()


@pytest.fixture
def repository() -> FakeRepository:
    return FakeRepository()


@pytest.fixture
def time_tracking() -> FakeTimeTracking:
    return FakeTimeTracking()


@pytest.fixture
def engagements() -> FakeEngagements:
    return FakeEngagements()


@pytest.fixture
def contractors() -> FakeContractors:
    return FakeContractors()


@pytest.fixture
def factor_store(repository: FakeRepository) -> FactorStore:
    return FactorStore(repository)


@pytest.fixture
def deriver(
    factor_store: FactorStore,
    time_tracking: FakeTimeTracking,
    engagements: FakeEngagements,
) -> FactorDeriver:
    return FactorDeriver(factor_store, time_tracking, engagements)


@pytest.fixture
def recorder(
    factor_store: FactorStore,
    deriver: FactorDeriver,
    contractors: FakeContractors,
    repository: FakeRepository,
    config: ClassificationSettings,
    clock: FrozenClock,
) -> AssessmentRecorder:
    return AssessmentRecorder(
        factor_store,
        deriver,
        contractors,
        repository=repository,
        config=config,
        clock=clock,
    )


@pytest.fixture
def snapshot_store() -> MemorySnapshotStore:
    return MemorySnapshotStore()


@pytest.fixture
def builder(
    contractors: FakeContractors,
    time_tracking: FakeTimeTracking,
    engagements: FakeEngagements,
    snapshot_store: MemorySnapshotStore,
    repository: FakeRepository,
    config: ClassificationSettings,
    clock: FrozenClock,
) -> AggregateViewBuilder:
    return AggregateViewBuilder(
        contractors,
        time_tracking,
        engagements,
        store=snapshot_store,
        repository=repository,
        config=config,
        clock=clock,
    )


@pytest.fixture
def session_factory(db: AsyncMock):
    """Session factory yielding the shared mock session."""

    @asynccontextmanager
    async def factory() -> AsyncIterator[AsyncMock]:
        yield db

    return factory

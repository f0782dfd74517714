"""
Aggregate View Builder
======================

Builds the contractor risk summary used by dashboards. A rebuild assembles
a complete snapshot off to the side and then publishes it in one step, so
readers see either the previous snapshot or the new one, never a mix.

Snapshot stores:
- MemorySnapshotStore: reference swap inside the process
- RedisSnapshotStore: versioned key plus a pointer, switched in MULTI/EXEC

Version: 0.1.0
"""

from collections.abc import Callable
from datetime import UTC, datetime
from typing import Protocol

from redis.asyncio import Redis
from redis.exceptions import RedisError, WatchError
from sqlalchemy.ext.asyncio import AsyncSession

from services.classification.errors import (
    AggregateRebuildError,
    ClassificationError,
    Stage,
    StorageError,
)
from services.classification.models import RiskLevel
from services.classification.repository import ClassificationRepository
from services.classification.schemas import AggregateSnapshot, RiskDashboard, RiskSummaryEntry
from services.classification.services.assessment import trailing_window
from services.classification.services.deriver import WeeklyRollup
from services.classification.sources import (
    ContractorRegistry,
    EngagementRegistry,
    TimeTrackingSource,
)
from shared.config import ClassificationSettings, SnapshotBackend, get_settings
from shared.database.redis import RedisClient
from shared.logging import get_logger


logger = get_logger(__name__)

SORTABLE_FIELDS = frozenset(
    {
        "overall_score",
        "irs_score",
        "dol_score",
        "abc_score",
        "assessed_at",
        "avg_weekly_hours",
        "weeks_active",
        "engagement_count",
        "contractor_name",
    }
)


# =============================================================================
# Snapshot Stores
# =============================================================================


class SnapshotStore(Protocol):
    """Holds the currently published snapshot."""

    async def next_version(self) -> int: ...

    async def publish(self, snapshot: AggregateSnapshot) -> None: ...

    async def current(self) -> AggregateSnapshot | None: ...


def _superseded(version: int, published: int) -> AggregateRebuildError:
    return AggregateRebuildError(
        f"Snapshot v{version} is older than published v{published}",
        stage=Stage.AGGREGATE,
    )


class MemorySnapshotStore:
    """
    In-process snapshot store.

    Publishing replaces a single reference; data is lost on restart. A
    snapshot older than the published one is rejected.
    """

    def __init__(self) -> None:
        self._version = 0
        self._current: AggregateSnapshot | None = None

    async def next_version(self) -> int:
        self._version += 1
        return self._version

    async def publish(self, snapshot: AggregateSnapshot) -> None:
        if self._current is not None and self._current.version >= snapshot.version:
            raise _superseded(snapshot.version, self._current.version)
        self._current = snapshot

    async def current(self) -> AggregateSnapshot | None:
        return self._current


class RedisSnapshotStore:
    """
    Redis-backed snapshot store.

    Keys:
    - {prefix}:seq          version counter
    - {prefix}:current      published version number
    - {prefix}:v{version}   snapshot JSON

    The new snapshot key and the pointer are written in one transaction.
    The superseded version expires after the grace period so readers that
    already resolved the old pointer can finish. The pointer only moves
    forward: publishing a version at or below the current one is rejected
    and leaves every key untouched.
    """

    def __init__(
        self,
        client: Redis,  # type: ignore[type-arg]
        key_prefix: str,
        grace_seconds: int,
    ) -> None:
        self.client = client
        self.key_prefix = key_prefix
        self.grace_seconds = grace_seconds

    @property
    def pointer_key(self) -> str:
        return f"{self.key_prefix}:current"

    def version_key(self, version: int | str) -> str:
        return f"{self.key_prefix}:v{version}"

    async def next_version(self) -> int:
        try:
            return int(await self.client.incr(f"{self.key_prefix}:seq"))
        except RedisError as e:
            raise AggregateRebuildError(
                f"Failed to allocate snapshot version: {e}",
                stage=Stage.AGGREGATE,
            ) from e

    async def publish(self, snapshot: AggregateSnapshot) -> None:
        payload = snapshot.model_dump_json()

        try:
            async with self.client.pipeline(transaction=True) as pipe:
                await pipe.watch(self.pointer_key)
                previous = await pipe.get(self.pointer_key)
                if previous is not None and int(previous) >= snapshot.version:
                    raise _superseded(snapshot.version, int(previous))

                pipe.multi()
                pipe.set(self.version_key(snapshot.version), payload)
                pipe.set(self.pointer_key, snapshot.version)
                if previous is not None:
                    pipe.expire(self.version_key(previous), self.grace_seconds)
                await pipe.execute()
        except WatchError as e:
            raise AggregateRebuildError(
                f"Snapshot v{snapshot.version} lost a concurrent publish",
                stage=Stage.AGGREGATE,
            ) from e
        except RedisError as e:
            raise AggregateRebuildError(
                f"Failed to publish snapshot v{snapshot.version}: {e}",
                stage=Stage.AGGREGATE,
            ) from e

    async def current(self) -> AggregateSnapshot | None:
        try:
            version = await self.client.get(self.pointer_key)
            if version is None:
                return None
            payload = await self.client.get(self.version_key(version))
        except RedisError as e:
            raise StorageError(
                f"Failed to read published snapshot: {e}",
                stage=Stage.AGGREGATE,
            ) from e

        if payload is None:
            logger.warning("snapshot_missing", version=version)
            return None

        return AggregateSnapshot.model_validate_json(payload)


def get_snapshot_store(
    config: ClassificationSettings | None = None,
    *,
    shared: bool = False,
) -> SnapshotStore:
    """
    Create the snapshot store selected by configuration.

    Args:
        config: Classification settings
        shared: The snapshot must be visible to other processes

    Raises:
        ValueError: If shared is requested with the memory backend
    """
    config = config or get_settings().classification

    if shared and config.snapshot_backend == SnapshotBackend.MEMORY:
        raise ValueError(
            "memory snapshot backend is process-local; "
            "set CLASSIFICATION_SNAPSHOT_BACKEND=redis"
        )

    if config.snapshot_backend == SnapshotBackend.REDIS:
        return RedisSnapshotStore(
            RedisClient.get_client(),
            key_prefix=config.snapshot_key_prefix,
            grace_seconds=config.snapshot_grace_seconds,
        )
    return MemorySnapshotStore()


# =============================================================================
# Builder
# =============================================================================


def _ranked(entries: list[RiskSummaryEntry], *keys: tuple[str, bool]) -> list[RiskSummaryEntry]:
    """
    Sort by several (field, descending) keys, most significant first.

    Entries are ordered by contractor_id before applying the keys, so equal
    keys keep a stable order. Missing values sort last in either direction.
    """
    ordered = sorted(entries, key=lambda e: e.contractor_id)
    for field_name, descending in reversed(keys):
        present = [e for e in ordered if getattr(e, field_name) is not None]
        missing = [e for e in ordered if getattr(e, field_name) is None]
        present.sort(key=lambda e: getattr(e, field_name), reverse=descending)
        ordered = present + missing
    return ordered


class AggregateViewBuilder:
    """Rebuilds and serves the contractor risk summary."""

    def __init__(
        self,
        contractors: ContractorRegistry,
        time_tracking: TimeTrackingSource,
        engagements: EngagementRegistry,
        store: SnapshotStore,
        repository: ClassificationRepository | None = None,
        config: ClassificationSettings | None = None,
        clock: Callable[[], datetime] = lambda: datetime.now(UTC),
    ) -> None:
        self.contractors = contractors
        self.time_tracking = time_tracking
        self.engagements = engagements
        self.store = store
        self.repository = repository or ClassificationRepository()
        self.config = config or get_settings().classification
        self.clock = clock

    async def rebuild(self, db: AsyncSession) -> AggregateSnapshot:
        """
        Build a full snapshot and publish it.

        Raises:
            AggregateRebuildError: If any read or the publish fails; the
                previously published snapshot stays visible
        """
        built_at = self.clock()
        window = trailing_window(built_at, self.config.trailing_window_days)

        try:
            active = await self.contractors.list_active(db)
            ids = [c.id for c in active]

            latest = await self.repository.latest_assessments(db, ids)
            weekly = await self.time_tracking.weekly_hours(db, ids, window.start, window.end)
            engagement_counts = await self.engagements.active_counts(db, ids)

            entries = []
            for contractor in active:
                assessment = latest.get(contractor.id)
                rollup = WeeklyRollup.from_weekly_totals(weekly.get(contractor.id, {}))
                entries.append(
                    RiskSummaryEntry(
                        contractor_id=contractor.id,
                        organization_id=contractor.organization_id,
                        contractor_name=contractor.name,
                        overall_risk=assessment.overall_risk if assessment else None,
                        overall_score=assessment.overall_score if assessment else None,
                        irs_score=assessment.irs_score if assessment else None,
                        dol_score=assessment.dol_score if assessment else None,
                        abc_score=assessment.abc_score if assessment else None,
                        assessed_at=assessment.assessed_at if assessment else None,
                        avg_weekly_hours=rollup.avg_weekly_hours,
                        weeks_active=rollup.weeks_active,
                        engagement_count=engagement_counts.get(contractor.id, 0),
                    )
                )

            snapshot = AggregateSnapshot(
                version=await self.store.next_version(),
                built_at=built_at,
                window_start=window.start,
                entries=entries,
            )
            await self.store.publish(snapshot)

        except AggregateRebuildError:
            raise
        except ClassificationError as e:
            logger.error("aggregate_rebuild_failed", **e.to_dict())
            raise AggregateRebuildError(
                f"Aggregate rebuild failed: {e.message}",
                contractor_id=e.contractor_id,
                stage=Stage.AGGREGATE,
            ) from e

        logger.info(
            "aggregate_published",
            version=snapshot.version,
            contractors=len(entries),
            assessed=sum(1 for e in entries if e.is_assessed),
        )
        return snapshot

    async def lookup(self, contractor_id: str) -> RiskSummaryEntry | None:
        """Summary row for one contractor from the published snapshot."""
        snapshot = await self.store.current()
        return snapshot.get(contractor_id) if snapshot else None

    async def query(
        self,
        organization_id: str | None = None,
        risk_levels: list[RiskLevel] | None = None,
        min_score: float | None = None,
        sort_by: str = "overall_score",
        descending: bool = True,
        limit: int | None = None,
    ) -> list[RiskSummaryEntry]:
        """
        Filter and sort the published snapshot.

        Filtering on risk level or score excludes unassessed contractors.

        Raises:
            ValueError: Unknown sort field or limit below 1
        """
        if sort_by not in SORTABLE_FIELDS:
            raise ValueError(f"Cannot sort by {sort_by!r}; choose from {sorted(SORTABLE_FIELDS)}")
        if limit is not None and limit < 1:
            raise ValueError(f"limit must be at least 1, got {limit}")

        snapshot = await self.store.current()
        if snapshot is None:
            return []

        entries = snapshot.entries
        if organization_id is not None:
            entries = snapshot.for_organization(organization_id)
        if risk_levels:
            entries = [e for e in entries if e.overall_risk in risk_levels]
        if min_score is not None:
            entries = [
                e for e in entries if e.overall_score is not None and e.overall_score >= min_score
            ]

        ranked = _ranked(entries, (sort_by, descending))
        return ranked[:limit] if limit is not None else ranked

    async def dashboard(self, organization_id: str) -> RiskDashboard:
        """Risk overview for an organization."""
        snapshot = await self.store.current()
        entries = snapshot.for_organization(organization_id) if snapshot else []

        counts = {level: 0 for level in RiskLevel}
        for entry in entries:
            if entry.overall_risk is not None:
                counts[entry.overall_risk] += 1

        assessed = [e for e in entries if e.is_assessed]
        top = _ranked(assessed, ("overall_score", True), ("assessed_at", True))

        return RiskDashboard(
            organization_id=organization_id,
            counts_by_risk_level=counts,
            total=len(entries),
            unassessed=len(entries) - len(assessed),
            top_risk_contractors=top[: self.config.top_risk_limit],
            snapshot_version=snapshot.version if snapshot else None,
            built_at=snapshot.built_at if snapshot else None,
        )

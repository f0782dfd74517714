"""
Aggregate View Tests
====================

Tests for the risk summary rebuild, queries, dashboard and snapshot stores.

Version: 0.1.0
"""

from datetime import UTC, date, datetime, timedelta
from unittest.mock import AsyncMock, MagicMock, patch

import pytest
from redis.exceptions import ConnectionError as RedisConnectionError
from redis.exceptions import WatchError

from services.classification.errors import (
    AggregateRebuildError,
    Stage,
    StorageError,
    UpstreamDataError,
)
from services.classification.models import RiskLevel
from services.classification.schemas import AggregateSnapshot, Assessment
from services.classification.services.aggregate import (
    AggregateViewBuilder,
    MemorySnapshotStore,
    RedisSnapshotStore,
    get_snapshot_store,
)
from services.classification.services.classifier import classify
from shared.config import ClassificationSettings, SnapshotBackend


NOW = datetime(2024, 6, 14, 12, 0, tzinfo=UTC)


def make_assessment(contractor_id: str, score: float, assessed_at: datetime) -> Assessment:
    return Assessment(
        id=f"a-{contractor_id}-{assessed_at.isoformat()}",
        contractor_id=contractor_id,
        organization_id="org-1",
        assessed_at=assessed_at,
        overall_risk=classify(score),
        overall_score=score,
        irs_score=score,
        irs_factors=[],
        dol_score=score,
        dol_factors=[],
        abc_score=score,
        abc_factors=[],
        created_at=assessed_at,
    )


@pytest.fixture
def population(contractors, repository, time_tracking, engagements) -> None:
    """Three active contractors in org-1, one in org-2 and one offboarded."""
    contractors.add("c-1", name="Ada")
    contractors.add("c-2", name="Grace")
    contractors.add("c-3", name="Linus")
    contractors.add("c-4", name="Ken", organization_id="org-2")
    contractors.add("c-5", status="offboarded")

    repository.assessments.extend(
        [
            make_assessment("c-1", 20.0, NOW - timedelta(days=30)),
            make_assessment("c-1", 80.0, NOW - timedelta(days=2)),
            make_assessment("c-2", 80.0, NOW - timedelta(days=1)),
            make_assessment("c-4", 55.0, NOW - timedelta(days=1)),
            make_assessment("c-5", 90.0, NOW - timedelta(days=1)),
        ]
    )

    time_tracking.add("c-1", "e-1", date(2024, 6, 3), 30.0)
    time_tracking.add("c-1", "e-2", date(2024, 6, 10), 10.0)
    time_tracking.add("c-1", "e-1", date(2023, 12, 1), 99.0)
    engagements.counts.update({"c-1": 2, "c-2": 1})


# =============================================================================
# Rebuild
# =============================================================================


class TestRebuild:
    """Tests for AggregateViewBuilder.rebuild."""

    @pytest.mark.asyncio
    async def test_active_contractors_only(self, builder: AggregateViewBuilder, population, db) -> None:
        snapshot = await builder.rebuild(db)

        assert sorted(e.contractor_id for e in snapshot.entries) == ["c-1", "c-2", "c-3", "c-4"]
        assert snapshot.version == 1
        assert snapshot.built_at == NOW
        assert snapshot.window_start == date(2024, 3, 16)

    @pytest.mark.asyncio
    async def test_entry_uses_latest_assessment(
        self,
        builder: AggregateViewBuilder,
        population,
        db,
    ) -> None:
        snapshot = await builder.rebuild(db)
        entry = snapshot.get("c-1")

        assert entry.contractor_name == "Ada"
        assert entry.overall_score == 80.0
        assert entry.overall_risk == RiskLevel.CRITICAL
        assert entry.assessed_at == NOW - timedelta(days=2)

    @pytest.mark.asyncio
    async def test_entry_rollup(self, builder: AggregateViewBuilder, population, db) -> None:
        snapshot = await builder.rebuild(db)
        entry = snapshot.get("c-1")

        assert entry.avg_weekly_hours == 20.0
        assert entry.weeks_active == 2
        assert entry.engagement_count == 2

    @pytest.mark.asyncio
    async def test_unassessed_entry_has_nulls(
        self,
        builder: AggregateViewBuilder,
        population,
        db,
    ) -> None:
        snapshot = await builder.rebuild(db)
        entry = snapshot.get("c-3")

        assert not entry.is_assessed
        assert entry.overall_risk is None
        assert entry.avg_weekly_hours == 0.0
        assert entry.weeks_active == 0
        assert entry.engagement_count == 0

    @pytest.mark.asyncio
    async def test_versions_increase(self, builder: AggregateViewBuilder, population, db) -> None:
        first = await builder.rebuild(db)
        second = await builder.rebuild(db)

        assert second.version == first.version + 1
        assert (await builder.store.current()).version == second.version

    @pytest.mark.asyncio
    async def test_failure_keeps_previous_snapshot(
        self,
        builder: AggregateViewBuilder,
        population,
        time_tracking,
        db,
    ) -> None:
        published = await builder.rebuild(db)
        time_tracking.error = UpstreamDataError(
            "time_tracking read failed",
            source="time_tracking",
            stage=Stage.AGGREGATE,
        )

        with pytest.raises(AggregateRebuildError) as exc_info:
            await builder.rebuild(db)

        assert exc_info.value.retryable is True
        assert exc_info.value.stage == Stage.AGGREGATE
        assert isinstance(exc_info.value.__cause__, UpstreamDataError)
        assert (await builder.store.current()) is published


# =============================================================================
# Reads
# =============================================================================


class TestReads:
    """Tests for lookup, query and dashboard."""

    @pytest.mark.asyncio
    async def test_reads_before_first_rebuild(self, builder: AggregateViewBuilder) -> None:
        dashboard = await builder.dashboard("org-1")

        assert await builder.lookup("c-1") is None
        assert await builder.query() == []
        assert dashboard.total == 0
        assert dashboard.snapshot_version is None
        assert set(dashboard.counts_by_risk_level.values()) == {0}

    @pytest.mark.asyncio
    async def test_lookup(self, builder: AggregateViewBuilder, population, db) -> None:
        await builder.rebuild(db)

        assert (await builder.lookup("c-2")).overall_score == 80.0
        assert await builder.lookup("c-5") is None

    @pytest.mark.asyncio
    async def test_dashboard(self, builder: AggregateViewBuilder, population, db) -> None:
        await builder.rebuild(db)

        dashboard = await builder.dashboard("org-1")

        assert dashboard.total == 3
        assert dashboard.unassessed == 1
        assert dashboard.counts_by_risk_level == {
            RiskLevel.LOW: 0,
            RiskLevel.MEDIUM: 0,
            RiskLevel.HIGH: 0,
            RiskLevel.CRITICAL: 2,
        }
        assert dashboard.snapshot_version == 1

    @pytest.mark.asyncio
    async def test_dashboard_ties_prefer_latest_assessment(
        self,
        builder: AggregateViewBuilder,
        population,
        db,
    ) -> None:
        await builder.rebuild(db)

        dashboard = await builder.dashboard("org-1")

        # c-1 and c-2 both score 80; c-2 was assessed more recently
        assert [e.contractor_id for e in dashboard.top_risk_contractors] == ["c-2", "c-1"]

    @pytest.mark.asyncio
    async def test_dashboard_ties_fall_back_to_id(
        self,
        builder: AggregateViewBuilder,
        contractors,
        repository,
        db,
    ) -> None:
        for contractor_id in ("c-b", "c-a", "c-c"):
            contractors.add(contractor_id)
            repository.assessments.append(make_assessment(contractor_id, 50.0, NOW))
        await builder.rebuild(db)

        dashboard = await builder.dashboard("org-1")

        assert [e.contractor_id for e in dashboard.top_risk_contractors] == ["c-a", "c-b", "c-c"]

    @pytest.mark.asyncio
    async def test_dashboard_top_limit(
        self,
        contractors,
        time_tracking,
        engagements,
        snapshot_store,
        repository,
        population,
        clock,
        db,
    ) -> None:
        builder = AggregateViewBuilder(
            contractors,
            time_tracking,
            engagements,
            store=snapshot_store,
            repository=repository,
            config=ClassificationSettings(top_risk_limit=1),
            clock=clock,
        )
        await builder.rebuild(db)

        dashboard = await builder.dashboard("org-1")

        assert [e.contractor_id for e in dashboard.top_risk_contractors] == ["c-2"]
        assert dashboard.total == 3

    @pytest.mark.asyncio
    async def test_query_filters(self, builder: AggregateViewBuilder, population, db) -> None:
        await builder.rebuild(db)

        critical = await builder.query(risk_levels=[RiskLevel.CRITICAL])
        above_60 = await builder.query(min_score=60.0)
        org_2 = await builder.query(organization_id="org-2")

        assert {e.contractor_id for e in critical} == {"c-1", "c-2"}
        assert {e.contractor_id for e in above_60} == {"c-1", "c-2"}
        assert [e.contractor_id for e in org_2] == ["c-4"]

    @pytest.mark.asyncio
    async def test_query_sorting(self, builder: AggregateViewBuilder, population, db) -> None:
        await builder.rebuild(db)

        by_score = await builder.query(organization_id="org-1")
        by_name = await builder.query(sort_by="contractor_name", descending=False)
        ascending = await builder.query(organization_id="org-1", descending=False, limit=2)

        # Unassessed contractors sort last in either direction
        assert [e.contractor_id for e in by_score] == ["c-1", "c-2", "c-3"]
        assert [e.contractor_name for e in by_name] == ["Ada", "Grace", "Ken", "Linus"]
        assert [e.contractor_id for e in ascending] == ["c-1", "c-2"]

    @pytest.mark.asyncio
    @pytest.mark.parametrize("kwargs", [{"sort_by": "tax_id"}, {"limit": 0}])
    async def test_query_rejects_bad_arguments(self, builder: AggregateViewBuilder, kwargs) -> None:
        with pytest.raises(ValueError):
            await builder.query(**kwargs)


# =============================================================================
# Snapshot Stores
# =============================================================================


@pytest.fixture
def snapshot() -> AggregateSnapshot:
    return AggregateSnapshot(version=3, built_at=NOW, window_start=date(2024, 3, 16))


@pytest.fixture
def redis_pipeline() -> MagicMock:
    """Transaction pipeline that reports v2 as the current snapshot."""
    pipe = MagicMock()
    pipe.__aenter__.return_value = pipe
    pipe.__aexit__.return_value = False
    pipe.watch = AsyncMock()
    pipe.get = AsyncMock(return_value="2")
    pipe.execute = AsyncMock(return_value=[True, True, True])
    return pipe


@pytest.fixture
def redis_client(redis_pipeline: MagicMock) -> MagicMock:
    client = MagicMock()
    client.pipeline = MagicMock(return_value=redis_pipeline)
    client.incr = AsyncMock(return_value=3)
    client.get = AsyncMock()
    return client


class TestSnapshotStores:
    """Tests for memory and Redis snapshot stores."""

    @pytest.mark.asyncio
    async def test_memory_store(self, snapshot: AggregateSnapshot) -> None:
        store = MemorySnapshotStore()

        assert await store.current() is None
        assert await store.next_version() == 1
        assert await store.next_version() == 2

        await store.publish(snapshot)
        assert await store.current() is snapshot

    @pytest.mark.asyncio
    async def test_memory_store_rejects_older_snapshot(self) -> None:
        store = MemorySnapshotStore()
        window_start = date(2024, 3, 16)
        slow = AggregateSnapshot(
            version=await store.next_version(), built_at=NOW, window_start=window_start
        )
        fast = AggregateSnapshot(
            version=await store.next_version(), built_at=NOW, window_start=window_start
        )

        await store.publish(fast)
        with pytest.raises(AggregateRebuildError):
            await store.publish(slow)

        assert (await store.current()).version == 2

    @pytest.mark.asyncio
    async def test_redis_publish_switches_pointer(
        self,
        redis_client: MagicMock,
        redis_pipeline: MagicMock,
        snapshot: AggregateSnapshot,
    ) -> None:
        store = RedisSnapshotStore(redis_client, key_prefix="risk", grace_seconds=300)

        await store.publish(snapshot)

        redis_client.pipeline.assert_called_once_with(transaction=True)
        redis_pipeline.watch.assert_awaited_once_with("risk:current")
        redis_pipeline.multi.assert_called_once()
        redis_pipeline.set.assert_any_call("risk:v3", snapshot.model_dump_json())
        redis_pipeline.set.assert_any_call("risk:current", 3)
        redis_pipeline.expire.assert_called_once_with("risk:v2", 300)
        redis_pipeline.execute.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_redis_first_publish_expires_nothing(
        self,
        redis_client: MagicMock,
        redis_pipeline: MagicMock,
        snapshot: AggregateSnapshot,
    ) -> None:
        redis_pipeline.get.return_value = None
        store = RedisSnapshotStore(redis_client, key_prefix="risk", grace_seconds=300)

        await store.publish(snapshot)

        redis_pipeline.expire.assert_not_called()

    @pytest.mark.asyncio
    @pytest.mark.parametrize("published", ["3", "4"])
    async def test_redis_publish_never_moves_pointer_back(
        self,
        redis_client: MagicMock,
        redis_pipeline: MagicMock,
        snapshot: AggregateSnapshot,
        published: str,
    ) -> None:
        redis_pipeline.get.return_value = published
        store = RedisSnapshotStore(redis_client, key_prefix="risk", grace_seconds=300)

        with pytest.raises(AggregateRebuildError) as exc_info:
            await store.publish(snapshot)

        assert exc_info.value.stage == Stage.AGGREGATE
        redis_pipeline.multi.assert_not_called()
        redis_pipeline.set.assert_not_called()
        redis_pipeline.expire.assert_not_called()
        redis_pipeline.execute.assert_not_awaited()

    @pytest.mark.asyncio
    @pytest.mark.parametrize("error", [WatchError(), RedisConnectionError("refused")])
    async def test_redis_publish_failure(
        self,
        redis_client: MagicMock,
        redis_pipeline: MagicMock,
        snapshot: AggregateSnapshot,
        error: Exception,
    ) -> None:
        redis_pipeline.execute.side_effect = error
        store = RedisSnapshotStore(redis_client, key_prefix="risk", grace_seconds=300)

        with pytest.raises(AggregateRebuildError):
            await store.publish(snapshot)

    @pytest.mark.asyncio
    async def test_redis_current(self, redis_client: MagicMock, snapshot: AggregateSnapshot) -> None:
        redis_client.get.side_effect = ["3", snapshot.model_dump_json()]
        store = RedisSnapshotStore(redis_client, key_prefix="risk", grace_seconds=300)

        current = await store.current()

        assert current == snapshot
        assert redis_client.get.await_args_list[1].args == ("risk:v3",)

    @pytest.mark.asyncio
    async def test_redis_current_without_pointer(self, redis_client: MagicMock) -> None:
        redis_client.get.return_value = None
        store = RedisSnapshotStore(redis_client, key_prefix="risk", grace_seconds=300)

        assert await store.current() is None

    @pytest.mark.asyncio
    async def test_redis_current_failure(self, redis_client: MagicMock) -> None:
        redis_client.get.side_effect = RedisConnectionError("refused")
        store = RedisSnapshotStore(redis_client, key_prefix="risk", grace_seconds=300)

        with pytest.raises(StorageError) as exc_info:
            await store.current()

        assert exc_info.value.stage == Stage.AGGREGATE
        assert exc_info.value.retryable is True

    @pytest.mark.asyncio
    async def test_redis_next_version(self, redis_client: MagicMock) -> None:
        store = RedisSnapshotStore(redis_client, key_prefix="risk", grace_seconds=300)

        assert await store.next_version() == 3
        redis_client.incr.assert_awaited_once_with("risk:seq")

    def test_factory_selects_backend(self) -> None:
        memory = get_snapshot_store(ClassificationSettings(snapshot_backend=SnapshotBackend.MEMORY))

        with patch("services.classification.services.aggregate.RedisClient") as mock_redis:
            redis = get_snapshot_store(
                ClassificationSettings(snapshot_backend=SnapshotBackend.REDIS)
            )

        assert isinstance(memory, MemorySnapshotStore)
        assert isinstance(redis, RedisSnapshotStore)
        assert redis.client is mock_redis.get_client.return_value

    def test_factory_shared_requires_redis(self) -> None:
        with pytest.raises(ValueError, match="process-local"):
            get_snapshot_store(
                ClassificationSettings(snapshot_backend=SnapshotBackend.MEMORY),
                shared=True,
            )

        with patch("services.classification.services.aggregate.RedisClient"):
            store = get_snapshot_store(
                ClassificationSettings(snapshot_backend=SnapshotBackend.REDIS),
                shared=True,
            )

        assert isinstance(store, RedisSnapshotStore)

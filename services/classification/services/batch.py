"""
Batch Reassessment
==================

Scheduled reassessment of every active contractor, followed by an
aggregate rebuild.

- Bounded concurrency via a semaphore
- One database session per contractor
- Per-contractor failure isolation
- Overall time budget; unfinished work is cancelled and reported as timed out
- The aggregate rebuild gets what is left of the budget, but never less
  than the configured minimum

Version: 0.1.0
"""

import asyncio
import time
from collections.abc import Callable
from contextlib import AbstractAsyncContextManager
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any

from sqlalchemy.ext.asyncio import AsyncSession

from services.classification.errors import AggregateRebuildError, ClassificationError
from services.classification.models import RiskLevel
from services.classification.schemas import AggregateSnapshot, Assessment
from services.classification.services.aggregate import AggregateViewBuilder
from services.classification.services.assessment import AssessmentRecorder
from services.classification.sources import ContractorRegistry
from shared.config import ClassificationSettings, get_settings
from shared.database.postgres import postgres_session
from shared.logging import bind_context, get_logger


logger = get_logger(__name__)

SessionFactory = Callable[[], AbstractAsyncContextManager[AsyncSession]]


@dataclass
class BatchResult:
    """Result of a batch reassessment."""

    # Counts
    contractors_total: int = 0
    succeeded: int = 0
    failed: int = 0
    timed_out: int = 0

    counts_by_risk_level: dict[RiskLevel, int] = field(
        default_factory=lambda: {level: 0 for level in RiskLevel}
    )

    # Per-contractor failures
    failures: list[dict[str, Any]] = field(default_factory=list)

    # Aggregate
    snapshot_version: int | None = None
    aggregate_error: str | None = None

    # Timing
    started_at: datetime = field(default_factory=lambda: datetime.now(UTC))
    completed_at: datetime | None = None
    duration_seconds: float = 0.0

    @property
    def success_rate(self) -> float:
        """Share of contractors assessed successfully."""
        if self.contractors_total == 0:
            return 0.0
        return self.succeeded / self.contractors_total


class BatchReassessor:
    """Reassesses all active contractors."""

    def __init__(
        self,
        recorder: AssessmentRecorder,
        builder: AggregateViewBuilder,
        contractors: ContractorRegistry,
        session_factory: SessionFactory = postgres_session,
        config: ClassificationSettings | None = None,
        max_concurrent: int | None = None,
        time_budget_seconds: float | None = None,
        rebuild_min_seconds: float | None = None,
    ) -> None:
        config = config or get_settings().classification
        self.recorder = recorder
        self.builder = builder
        self.contractors = contractors
        self.session_factory = session_factory
        self.max_concurrent = max_concurrent or config.batch_max_concurrent
        self.time_budget_seconds = time_budget_seconds or config.batch_time_budget_seconds
        self.rebuild_min_seconds = rebuild_min_seconds or config.batch_rebuild_min_seconds
        self._semaphore = asyncio.Semaphore(self.max_concurrent)

    async def run(self, organization_id: str | None = None) -> BatchResult:
        """
        Reassess active contractors and rebuild the aggregate.

        Args:
            organization_id: Restrict to one organization

        Returns:
            BatchResult with counts, failures and the published snapshot version

        Raises:
            UpstreamDataError: If the active contractor list cannot be read
        """
        result = BatchResult()
        started = time.monotonic()

        async with self.session_factory() as db:
            active = await self.contractors.list_active(db, organization_id)
        result.contractors_total = len(active)

        logger.info(
            "batch_reassessment_started",
            contractors=len(active),
            max_concurrent=self.max_concurrent,
            time_budget_seconds=self.time_budget_seconds,
        )

        tasks = [asyncio.create_task(self._assess_with_semaphore(c.id)) for c in active]
        pending: set[asyncio.Task[Assessment]] = set()
        if tasks:
            _, pending = await asyncio.wait(tasks, timeout=self.time_budget_seconds)
            for task in pending:
                task.cancel()
            await asyncio.gather(*pending, return_exceptions=True)

        for contractor, task in zip(active, tasks):
            # A task can finish between the timeout and its cancellation
            if task.cancelled():
                result.timed_out += 1
                result.failures.append({
                    "contractor_id": contractor.id,
                    "error": "time budget exhausted",
                    "timed_out": True,
                    "retryable": True,
                })
                continue

            error = task.exception()
            if error is None:
                assessment = task.result()
                result.succeeded += 1
                result.counts_by_risk_level[assessment.overall_risk] += 1
                continue

            result.failed += 1
            if isinstance(error, ClassificationError):
                failure = error.to_dict()
            else:
                failure = {"error": type(error).__name__, "message": str(error), "retryable": False}
            result.failures.append({**failure, "contractor_id": contractor.id, "timed_out": False})
            logger.warning(
                "contractor_reassessment_failed",
                contractor_id=contractor.id,
                error=str(error),
            )

        remaining = self.time_budget_seconds - (time.monotonic() - started)
        rebuild_timeout = max(remaining, self.rebuild_min_seconds)
        try:
            snapshot = await asyncio.wait_for(self._rebuild(), timeout=rebuild_timeout)
            result.snapshot_version = snapshot.version
        except AggregateRebuildError as e:
            result.aggregate_error = e.message
            logger.error("batch_aggregate_rebuild_failed", **e.to_dict())
        except TimeoutError:
            result.aggregate_error = f"aggregate rebuild exceeded {rebuild_timeout:.1f}s"
            logger.error("batch_aggregate_rebuild_timed_out", timeout_seconds=rebuild_timeout)

        result.completed_at = datetime.now(UTC)
        result.duration_seconds = (result.completed_at - result.started_at).total_seconds()

        logger.info(
            "batch_reassessment_complete",
            contractors=result.contractors_total,
            succeeded=result.succeeded,
            failed=result.failed,
            timed_out=result.timed_out,
            snapshot_version=result.snapshot_version,
            duration=f"{result.duration_seconds:.2f}s",
        )
        return result

    async def _assess_with_semaphore(self, contractor_id: str) -> Assessment:
        """Assess one contractor in its own session under the semaphore."""
        bind_context(contractor_id=contractor_id, batch_stage="reassessment")
        async with self._semaphore:
            async with self.session_factory() as db:
                return await self.recorder.assess(db, contractor_id)

    async def _rebuild(self) -> AggregateSnapshot:
        async with self.session_factory() as db:
            return await self.builder.rebuild(db)

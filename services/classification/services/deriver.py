"""
Factor Deriver
==============

Computes factors from time-tracking and engagement data and appends them
to the factor store as `computed` rows.

Derived categories:
- hours_per_week: mean of weekly hour totals over weeks with entries
- engagement_duration_weeks: number of distinct weeks with entries
- exclusivity_ratio: largest single-engagement share of tracked hours,
  only when more than one engagement is active
- multiple_clients: more than one active engagement

Weeks start on Monday.

Version: 0.1.0
"""

from collections import defaultdict
from dataclasses import dataclass
from datetime import date, timedelta

from sqlalchemy.ext.asyncio import AsyncSession

from services.classification.errors import FactorValidationError, Stage, UpstreamDataError
from services.classification.models import FactorCategory, FactorSource
from services.classification.schemas import Factor, FactorValue, Period
from services.classification.services.factors import FactorStore
from services.classification.sources import EngagementRegistry, TimeEntry, TimeTrackingSource
from shared.logging import get_logger


logger = get_logger(__name__)


def week_start(day: date) -> date:
    """Monday of the week containing `day`."""
    return day - timedelta(days=day.weekday())


def weekly_totals(entries: list[TimeEntry]) -> dict[date, float]:
    """Sum hours per Monday-start week."""
    totals: dict[date, float] = defaultdict(float)
    for entry in entries:
        totals[week_start(entry.entry_date)] += entry.hours
    return dict(totals)


@dataclass(frozen=True)
class WeeklyRollup:
    """Weekly hour statistics over a window."""

    avg_weekly_hours: float = 0.0
    weeks_active: int = 0
    total_hours: float = 0.0

    @classmethod
    def from_weekly_totals(cls, totals: dict[date, float]) -> "WeeklyRollup":
        if not totals:
            return cls()
        total = sum(totals.values())
        return cls(
            avg_weekly_hours=round(total / len(totals), 2),
            weeks_active=len(totals),
            total_hours=round(total, 2),
        )


def compute_time_factors(
    entries: list[TimeEntry],
    engagement_count: int,
) -> dict[FactorCategory, FactorValue]:
    """
    Derive factor values from time entries and the active engagement count.

    Args:
        entries: Time entries inside the derivation period
        engagement_count: Number of active engagements

    Returns:
        Value per derived category; categories without evidence are omitted
    """
    rollup = WeeklyRollup.from_weekly_totals(weekly_totals(entries))

    values: dict[FactorCategory, FactorValue] = {
        FactorCategory.HOURS_PER_WEEK: rollup.avg_weekly_hours,
        FactorCategory.ENGAGEMENT_DURATION_WEEKS: float(rollup.weeks_active),
    }

    if engagement_count > 1 and rollup.total_hours > 0:
        by_engagement: dict[str, float] = defaultdict(float)
        for entry in entries:
            by_engagement[entry.engagement_id] += entry.hours
        largest = max(by_engagement.values())
        values[FactorCategory.EXCLUSIVITY_RATIO] = round(largest / sum(by_engagement.values()), 2)

    if engagement_count >= 1:
        values[FactorCategory.MULTIPLE_CLIENTS] = engagement_count > 1

    return values


class FactorDeriver:
    """Appends computed factors derived from upstream data."""

    def __init__(
        self,
        factor_store: FactorStore,
        time_tracking: TimeTrackingSource,
        engagements: EngagementRegistry,
    ) -> None:
        self.factor_store = factor_store
        self.time_tracking = time_tracking
        self.engagements = engagements

    async def derive(
        self,
        db: AsyncSession,
        contractor_id: str,
        period: Period,
    ) -> list[Factor]:
        """
        Derive and append computed factors for a period.

        Re-running appends equivalent rows; existing rows are never changed.

        Raises:
            UpstreamDataError: If upstream data cannot be read or is implausible
            StorageError: If a factor cannot be written
        """
        entries = await self.time_tracking.entries(db, contractor_id, period.start, period.end)
        engagement_count = await self.engagements.active_count(db, contractor_id)

        values = compute_time_factors(
            [e for e in entries if period.start <= e.entry_date <= period.end],
            engagement_count,
        )

        factors = []
        for category, value in values.items():
            try:
                factor = await self.factor_store.submit_factor(
                    db,
                    contractor_id,
                    category,
                    value,
                    period,
                    source=FactorSource.COMPUTED,
                )
            except FactorValidationError as e:
                raise UpstreamDataError(
                    f"Time entries produce an invalid {category.value}: {e.message}",
                    source="time_tracking",
                    contractor_id=contractor_id,
                    stage=Stage.DERIVATION,
                ) from e
            factors.append(factor)

        logger.info(
            "factors_derived",
            contractor_id=contractor_id,
            entries=len(entries),
            engagement_count=engagement_count,
            categories=[c.value for c in values],
        )
        return factors

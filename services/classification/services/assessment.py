"""
Assessment Recorder
===================

Runs a classification for one contractor and appends the result to the
assessment history.

Pipeline:
1. Eligibility: contractor must exist and be active
2. Derivation: computed factors for the trailing window
3. Effective factors: one value per category
4. Scoring and classification
5. Append-only persistence

Version: 0.1.0
"""

import uuid
from collections.abc import Callable
from datetime import UTC, datetime, timedelta

from sqlalchemy.ext.asyncio import AsyncSession

from services.classification.errors import ContractorNotEligibleError, Stage
from services.classification.repository import ClassificationRepository
from services.classification.schemas import Assessment, ClassificationInput, Period
from services.classification.services.deriver import FactorDeriver
from services.classification.services.factors import FactorStore
from services.classification.services.scoring import CombinationWeights, score_all
from services.classification.sources import ContractorRegistry
from shared.config import ClassificationSettings, get_settings
from shared.logging import get_logger


logger = get_logger(__name__)

Clock = Callable[[], datetime]


def _utcnow() -> datetime:
    return datetime.now(UTC)


def trailing_window(now: datetime, days: int) -> Period:
    """
    Window ending on the date of `now` and starting `days` days earlier.

    Both ends are inclusive, so the window covers `days + 1` calendar dates,
    the same span as `entry_date >= CURRENT_DATE - days`.
    """
    end = now.date()
    return Period(start=end - timedelta(days=days), end=end)


class AssessmentRecorder:
    """
    Produces and stores classification assessments.

    Assessments are immutable. Per contractor, assessed_at is strictly
    increasing: when the clock has not moved past the previous assessment,
    the new one is stamped one microsecond later.
    """

    def __init__(
        self,
        factor_store: FactorStore,
        deriver: FactorDeriver,
        contractors: ContractorRegistry,
        repository: ClassificationRepository | None = None,
        config: ClassificationSettings | None = None,
        clock: Clock = _utcnow,
    ) -> None:
        self.factor_store = factor_store
        self.deriver = deriver
        self.contractors = contractors
        self.repository = repository or factor_store.repository
        self.config = config or get_settings().classification
        self.weights = CombinationWeights.from_settings(self.config)
        self.clock = clock

    async def assess(self, db: AsyncSession, contractor_id: str) -> Assessment:
        """
        Assess a contractor and append the result.

        Args:
            db: Database session
            contractor_id: Contractor to assess

        Returns:
            The stored assessment

        Raises:
            ContractorNotEligibleError: Unknown or inactive contractor
            UpstreamDataError: Time-tracking, engagement or contractor data unavailable
            StorageError: Factors or the assessment could not be read or written
        """
        contractor = await self.contractors.get(db, contractor_id)
        if contractor is None:
            raise ContractorNotEligibleError(
                f"Contractor {contractor_id} not found",
                contractor_id=contractor_id,
                stage=Stage.ELIGIBILITY,
            )
        if not contractor.is_active:
            raise ContractorNotEligibleError(
                f"Contractor {contractor_id} is {contractor.status}, not active",
                contractor_id=contractor_id,
                stage=Stage.ELIGIBILITY,
            )

        now = self.clock()
        window = trailing_window(now, self.config.trailing_window_days)

        await self.deriver.derive(db, contractor_id, window)
        effective = await self.factor_store.effective_factors(db, contractor_id, window)
        vector = score_all(ClassificationInput.from_effective(effective), self.weights)

        previous = await self.repository.latest_assessment(db, contractor_id)
        assessed_at = now
        if previous is not None and assessed_at <= previous.assessed_at:
            assessed_at = previous.assessed_at + timedelta(microseconds=1)

        assessment = Assessment(
            id=str(uuid.uuid4()),
            contractor_id=contractor_id,
            organization_id=contractor.organization_id,
            assessed_at=assessed_at,
            overall_risk=vector.overall_risk,
            overall_score=vector.overall_score,
            irs_score=vector.irs.score,
            irs_factors=vector.irs.factors,
            dol_score=vector.dol.score,
            dol_factors=vector.dol.factors,
            abc_score=vector.abc.score,
            abc_factors=vector.abc.factors,
            input_data=effective,
            created_at=now,
        )
        await self.repository.insert_assessment(db, assessment)

        logger.info(
            "assessment_recorded",
            contractor_id=contractor_id,
            assessment_id=assessment.id,
            overall_risk=assessment.overall_risk.value,
            overall_score=assessment.overall_score,
            factors_observed=len(effective),
        )

        if previous is not None and previous.overall_risk != assessment.overall_risk:
            logger.warning(
                "classification_risk_changed",
                contractor_id=contractor_id,
                organization_id=contractor.organization_id,
                previous_risk=previous.overall_risk.value,
                new_risk=assessment.overall_risk.value,
                overall_score=assessment.overall_score,
            )

        return assessment

    async def history(
        self,
        db: AsyncSession,
        contractor_id: str,
        limit: int | None = None,
    ) -> list[Assessment]:
        """
        Assessments for a contractor, newest first.

        Args:
            db: Database session
            contractor_id: Contractor to read
            limit: Maximum entries; defaults to the configured default and is
                capped at the configured maximum

        Raises:
            ValueError: If limit is below 1
        """
        if limit is None:
            limit = self.config.history_default_limit
        if limit < 1:
            raise ValueError(f"limit must be at least 1, got {limit}")
        limit = min(limit, self.config.history_max_limit)

        return await self.repository.assessment_history(db, contractor_id, limit)

    async def latest(self, db: AsyncSession, contractor_id: str) -> Assessment | None:
        """Most recent assessment, or None if the contractor was never assessed."""
        return await self.repository.latest_assessment(db, contractor_id)

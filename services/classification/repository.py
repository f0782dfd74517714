"""
Classification Repository
=========================

SQL access to core.classification_factors and
core.classification_assessments. Both tables are append-only.

Version: 0.1.0
"""

from datetime import date
from typing import Any

from pydantic import TypeAdapter
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from services.classification.errors import Stage, StorageError
from services.classification.models import FactorCategory, FactorSource, RiskLevel
from services.classification.schemas import (
    Assessment,
    EffectiveFactor,
    Factor,
    FactorContribution,
)
from shared.logging import get_logger


logger = get_logger(__name__)

_contributions = TypeAdapter(list[FactorContribution])
_input_data = TypeAdapter(dict[FactorCategory, EffectiveFactor])

_ASSESSMENT_COLUMNS = """
    id, contractor_id, organization_id, assessed_at,
    overall_risk, overall_score,
    irs_score, irs_factors, dol_score, dol_factors, abc_score, abc_factors,
    input_data, created_at
"""


def _load(adapter: TypeAdapter, value: Any) -> Any:
    """Decode a JSON column that may arrive as text or as parsed data."""
    if isinstance(value, (str, bytes)):
        return adapter.validate_json(value)
    return adapter.validate_python(value)


def _dump(adapter: TypeAdapter, value: Any) -> str:
    return adapter.dump_json(value).decode()


def _factor_from_row(row: Any) -> Factor:
    return Factor(
        id=str(row.id),
        contractor_id=str(row.contractor_id),
        category=FactorCategory(row.category),
        numeric_value=float(row.numeric_value) if row.numeric_value is not None else None,
        boolean_value=row.boolean_value,
        text_value=row.text_value,
        period_start=row.period_start,
        period_end=row.period_end,
        source=FactorSource(row.source),
        created_at=row.created_at,
    )


def _assessment_from_row(row: Any) -> Assessment:
    return Assessment(
        id=str(row.id),
        contractor_id=str(row.contractor_id),
        organization_id=str(row.organization_id),
        assessed_at=row.assessed_at,
        overall_risk=RiskLevel(row.overall_risk),
        overall_score=float(row.overall_score),
        irs_score=float(row.irs_score),
        irs_factors=_load(_contributions, row.irs_factors),
        dol_score=float(row.dol_score),
        dol_factors=_load(_contributions, row.dol_factors),
        abc_score=float(row.abc_score),
        abc_factors=_load(_contributions, row.abc_factors),
        input_data=_load(_input_data, row.input_data),
        created_at=row.created_at,
    )


class ClassificationRepository:
    """Persistence for factors and assessments."""

    # =========================================================================
    # Factors
    # =========================================================================

    async def insert_factor(self, db: AsyncSession, factor: Factor) -> Factor:
        query = text("""
            INSERT INTO core.classification_factors (
                id, contractor_id, category,
                numeric_value, boolean_value, text_value,
                period_start, period_end, source, created_at
            ) VALUES (
                :id, :contractor_id, :category,
                :numeric_value, :boolean_value, :text_value,
                :period_start, :period_end, :source, :created_at
            )
        """)

        try:
            await db.execute(
                query,
                {
                    "id": factor.id,
                    "contractor_id": factor.contractor_id,
                    "category": factor.category.value,
                    "numeric_value": factor.numeric_value,
                    "boolean_value": factor.boolean_value,
                    "text_value": factor.text_value,
                    "period_start": factor.period_start,
                    "period_end": factor.period_end,
                    "source": factor.source.value,
                    "created_at": factor.created_at,
                },
            )
            await db.commit()
        except SQLAlchemyError as e:
            await db.rollback()
            raise StorageError(
                f"Failed to store factor {factor.category.value}: {e}",
                contractor_id=factor.contractor_id,
                stage=Stage.PERSISTENCE,
            ) from e

        return factor

    async def find_factors(
        self,
        db: AsyncSession,
        contractor_id: str,
        *,
        category: FactorCategory | None = None,
        source: FactorSource | None = None,
        overlapping: tuple[date, date] | None = None,
    ) -> list[Factor]:
        """
        Load factors for a contractor, newest period first.

        Args:
            db: Database session
            contractor_id: Contractor to load
            category: Restrict to one category
            source: Restrict to one source
            overlapping: Restrict to factors whose period overlaps [start, end]
        """
        conditions = ["contractor_id = :contractor_id"]
        params: dict[str, Any] = {"contractor_id": contractor_id}

        if category is not None:
            conditions.append("category = :category")
            params["category"] = category.value
        if source is not None:
            conditions.append("source = :source")
            params["source"] = source.value
        if overlapping is not None:
            conditions.append("period_start <= :window_end AND period_end >= :window_start")
            params["window_start"], params["window_end"] = overlapping

        query = text(f"""
            SELECT id, contractor_id, category,
                   numeric_value, boolean_value, text_value,
                   period_start, period_end, source, created_at
            FROM core.classification_factors
            WHERE {" AND ".join(conditions)}
            ORDER BY period_end DESC, created_at DESC
        """)

        try:
            result = await db.execute(query, params)
            rows = result.fetchall()
        except SQLAlchemyError as e:
            raise StorageError(
                f"Failed to read factors: {e}",
                contractor_id=contractor_id,
                stage=Stage.FACTOR_READ,
            ) from e

        return [_factor_from_row(row) for row in rows]

    # =========================================================================
    # Assessments
    # =========================================================================

    async def insert_assessment(self, db: AsyncSession, assessment: Assessment) -> Assessment:
        query = text(f"""
            INSERT INTO core.classification_assessments ({_ASSESSMENT_COLUMNS})
            VALUES (
                :id, :contractor_id, :organization_id, :assessed_at,
                :overall_risk, :overall_score,
                :irs_score, :irs_factors, :dol_score, :dol_factors,
                :abc_score, :abc_factors,
                :input_data, :created_at
            )
        """)

        try:
            await db.execute(
                query,
                {
                    "id": assessment.id,
                    "contractor_id": assessment.contractor_id,
                    "organization_id": assessment.organization_id,
                    "assessed_at": assessment.assessed_at,
                    "overall_risk": assessment.overall_risk.value,
                    "overall_score": assessment.overall_score,
                    "irs_score": assessment.irs_score,
                    "irs_factors": _dump(_contributions, assessment.irs_factors),
                    "dol_score": assessment.dol_score,
                    "dol_factors": _dump(_contributions, assessment.dol_factors),
                    "abc_score": assessment.abc_score,
                    "abc_factors": _dump(_contributions, assessment.abc_factors),
                    "input_data": _dump(_input_data, assessment.input_data),
                    "created_at": assessment.created_at,
                },
            )
            await db.commit()
        except SQLAlchemyError as e:
            await db.rollback()
            raise StorageError(
                f"Failed to store assessment: {e}",
                contractor_id=assessment.contractor_id,
                stage=Stage.PERSISTENCE,
            ) from e

        logger.debug(
            "assessment_stored",
            assessment_id=assessment.id,
            contractor_id=assessment.contractor_id,
        )
        return assessment

    async def assessment_history(
        self,
        db: AsyncSession,
        contractor_id: str,
        limit: int,
    ) -> list[Assessment]:
        query = text(f"""
            SELECT {_ASSESSMENT_COLUMNS}
            FROM core.classification_assessments
            WHERE contractor_id = :contractor_id
            ORDER BY assessed_at DESC
            LIMIT :limit
        """)

        try:
            result = await db.execute(query, {"contractor_id": contractor_id, "limit": limit})
            rows = result.fetchall()
        except SQLAlchemyError as e:
            raise StorageError(
                f"Failed to read assessment history: {e}",
                contractor_id=contractor_id,
                stage=Stage.HISTORY,
            ) from e

        return [_assessment_from_row(row) for row in rows]

    async def latest_assessment(self, db: AsyncSession, contractor_id: str) -> Assessment | None:
        history = await self.assessment_history(db, contractor_id, limit=1)
        return history[0] if history else None

    async def latest_assessments(
        self,
        db: AsyncSession,
        contractor_ids: list[str],
    ) -> dict[str, Assessment]:
        """Most recent assessment per contractor."""
        if not contractor_ids:
            return {}

        query = text(f"""
            SELECT DISTINCT ON (contractor_id) {_ASSESSMENT_COLUMNS}
            FROM core.classification_assessments
            WHERE contractor_id = ANY(:contractor_ids)
            ORDER BY contractor_id, assessed_at DESC
        """)

        try:
            result = await db.execute(query, {"contractor_ids": contractor_ids})
            rows = result.fetchall()
        except SQLAlchemyError as e:
            raise StorageError(
                f"Failed to read latest assessments: {e}",
                stage=Stage.AGGREGATE,
            ) from e

        latest = {}
        for row in rows:
            assessment = _assessment_from_row(row)
            latest[assessment.contractor_id] = assessment
        return latest

"""
Factor Store
============

Validates and records factor observations and resolves the effective value
per category for an assessment window.

Precedence when several rows for a category overlap the window:
1. Source: manual > time_entry > computed
2. Latest period_end
3. Latest created_at

Version: 0.1.0
"""

import math
import uuid
from datetime import UTC, date, datetime
from enum import Enum

from sqlalchemy.ext.asyncio import AsyncSession

from services.classification.errors import FactorValidationError
from services.classification.models import (
    CATEGORY_SPECS,
    SOURCE_PRECEDENCE,
    FactorCategory,
    FactorSource,
    ValueKind,
)
from services.classification.repository import ClassificationRepository
from services.classification.schemas import EffectiveFactor, Factor, FactorValue, Period
from shared.logging import get_logger


logger = get_logger(__name__)


def validate_factor_value(
    contractor_id: str,
    category: FactorCategory,
    value: FactorValue,
) -> dict[str, FactorValue]:
    """
    Check a value against its category's contract.

    Values are never coerced: a bool is not accepted for a numeric category
    and a number is not accepted for a boolean one.

    Returns:
        The value column to populate, e.g. {"numeric_value": 40.0}

    Raises:
        FactorValidationError: If the value does not fit the category
    """
    spec = CATEGORY_SPECS[category]

    def reject(reason: str) -> FactorValidationError:
        return FactorValidationError(
            f"Invalid value {value!r} for {category.value}: {reason}",
            contractor_id=contractor_id,
            category=category.value,
        )

    if spec.kind == ValueKind.NUMERIC:
        if isinstance(value, bool) or not isinstance(value, (int, float)):
            raise reject("expected a number")
        if not math.isfinite(value):
            raise reject("expected a finite number")
        if spec.minimum is not None and value < spec.minimum:
            raise reject(f"below minimum {spec.minimum:g}")
        if spec.maximum is not None and value > spec.maximum:
            raise reject(f"above maximum {spec.maximum:g}")
        return {"numeric_value": float(value)}

    if spec.kind == ValueKind.BOOLEAN:
        if not isinstance(value, bool):
            raise reject("expected true or false")
        return {"boolean_value": value}

    if not isinstance(value, str):
        raise reject("expected text")
    if isinstance(value, Enum):
        value = value.value
    if spec.allowed is not None and value not in spec.allowed:
        raise reject(f"expected one of {sorted(spec.allowed)}")
    return {"text_value": value}


def select_effective(
    factors: list[Factor],
    window: Period,
) -> dict[FactorCategory, EffectiveFactor]:
    """
    Pick one effective factor per category.

    Only factors whose period overlaps the window are considered. Categories
    without any such factor are absent from the result.
    """
    best: dict[FactorCategory, Factor] = {}

    for factor in factors:
        if not window.overlaps(factor.period_start, factor.period_end):
            continue
        current = best.get(factor.category)
        if current is None or _rank(factor) > _rank(current):
            best[factor.category] = factor

    return {category: EffectiveFactor.from_factor(f) for category, f in best.items()}


def _rank(factor: Factor) -> tuple[int, date, datetime]:
    return (SOURCE_PRECEDENCE[factor.source], factor.period_end, factor.created_at)


class FactorStore:
    """Append-only factor storage."""

    def __init__(self, repository: ClassificationRepository | None = None) -> None:
        self.repository = repository or ClassificationRepository()

    async def submit_factor(
        self,
        db: AsyncSession,
        contractor_id: str,
        category: FactorCategory,
        value: FactorValue,
        period: Period,
        source: FactorSource = FactorSource.MANUAL,
    ) -> Factor:
        """
        Record a factor observation.

        Args:
            db: Database session
            contractor_id: Contractor the factor describes
            category: Factor category
            value: Observed value, matching the category's kind
            period: Date range the observation covers
            source: Where the observation came from

        Returns:
            The stored factor

        Raises:
            FactorValidationError: If the value does not fit the category
            StorageError: If the row cannot be written
        """
        columns = validate_factor_value(contractor_id, category, value)

        factor = Factor(
            id=str(uuid.uuid4()),
            contractor_id=contractor_id,
            category=category,
            period_start=period.start,
            period_end=period.end,
            source=source,
            created_at=datetime.now(UTC),
            **columns,
        )
        await self.repository.insert_factor(db, factor)

        logger.info(
            "factor_submitted",
            contractor_id=contractor_id,
            category=category.value,
            source=source.value,
        )
        return factor

    async def list_factors(
        self,
        db: AsyncSession,
        contractor_id: str,
        category: FactorCategory | None = None,
        source: FactorSource | None = None,
    ) -> list[Factor]:
        """List stored factors, newest period first."""
        return await self.repository.find_factors(
            db,
            contractor_id,
            category=category,
            source=source,
        )

    async def effective_factors(
        self,
        db: AsyncSession,
        contractor_id: str,
        window: Period,
    ) -> dict[FactorCategory, EffectiveFactor]:
        """Resolve the effective value per category for an assessment window."""
        factors = await self.repository.find_factors(
            db,
            contractor_id,
            overlapping=(window.start, window.end),
        )
        return select_effective(factors, window)

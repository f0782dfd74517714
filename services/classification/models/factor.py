"""
Classification Factor Database Model
====================================

SQLAlchemy ORM model for append-only factor observations, plus the closed
category set and the per-category value specification.

Version: 0.1.0
"""

import uuid
from dataclasses import dataclass
from datetime import UTC, datetime
from enum import Enum

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    Column,
    Date,
    DateTime,
    Enum as SQLEnum,
    Index,
    Numeric,
    String,
)
from sqlalchemy.dialects.postgresql import UUID

from shared.database.postgres import Base


class FactorCategory(str, Enum):
    """Observed factors feeding the classification tests."""

    HOURS_PER_WEEK = "hours_per_week"
    ENGAGEMENT_DURATION_WEEKS = "engagement_duration_weeks"
    EXCLUSIVITY_RATIO = "exclusivity_ratio"
    SET_SCHEDULE = "set_schedule"
    TOOLS_PROVIDED = "tools_provided"
    TRAINING_PROVIDED = "training_provided"
    SUPERVISION_LEVEL = "supervision_level"
    INTEGRATION_LEVEL = "integration_level"
    MULTIPLE_CLIENTS = "multiple_clients"
    PROFIT_LOSS_OPPORTUNITY = "profit_loss_opportunity"
    SIGNIFICANT_INVESTMENT = "significant_investment"


class FactorSource(str, Enum):
    """Where a factor observation came from."""

    COMPUTED = "computed"  # Factor deriver
    MANUAL = "manual"  # Submitted by an administrator
    TIME_ENTRY = "time_entry"  # Imported from time-tracking records


class ValueKind(str, Enum):
    """Which value column a category populates."""

    NUMERIC = "numeric"
    BOOLEAN = "boolean"
    TEXT = "text"


class Level(str, Enum):
    """Allowed values for the text categories."""

    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


# Higher rank wins when several rows cover the same category
SOURCE_PRECEDENCE: dict[FactorSource, int] = {
    FactorSource.MANUAL: 3,
    FactorSource.TIME_ENTRY: 2,
    FactorSource.COMPUTED: 1,
}


@dataclass(frozen=True)
class CategorySpec:
    """Value contract for one factor category."""

    kind: ValueKind
    description: str
    minimum: float | None = None
    maximum: float | None = None
    allowed: frozenset[str] | None = None


_LEVELS = frozenset(level.value for level in Level)

# A missing category contributes nothing to any test
CATEGORY_SPECS: dict[FactorCategory, CategorySpec] = {
    FactorCategory.HOURS_PER_WEEK: CategorySpec(
        ValueKind.NUMERIC, "Average hours worked per week", minimum=0, maximum=168
    ),
    FactorCategory.ENGAGEMENT_DURATION_WEEKS: CategorySpec(
        ValueKind.NUMERIC, "Weeks the working relationship has been active", minimum=0
    ),
    FactorCategory.EXCLUSIVITY_RATIO: CategorySpec(
        ValueKind.NUMERIC,
        "Share of tracked hours going to a single engagement",
        minimum=0,
        maximum=1,
    ),
    FactorCategory.SET_SCHEDULE: CategorySpec(
        ValueKind.BOOLEAN, "Hiring entity sets the working schedule"
    ),
    FactorCategory.TOOLS_PROVIDED: CategorySpec(
        ValueKind.BOOLEAN, "Hiring entity provides tools and equipment"
    ),
    FactorCategory.TRAINING_PROVIDED: CategorySpec(
        ValueKind.BOOLEAN, "Hiring entity trains the worker in its methods"
    ),
    FactorCategory.SUPERVISION_LEVEL: CategorySpec(
        ValueKind.TEXT, "Degree of day-to-day supervision", allowed=_LEVELS
    ),
    FactorCategory.INTEGRATION_LEVEL: CategorySpec(
        ValueKind.TEXT, "How integrated the work is in the core business", allowed=_LEVELS
    ),
    FactorCategory.MULTIPLE_CLIENTS: CategorySpec(
        ValueKind.BOOLEAN, "Worker serves more than one client"
    ),
    FactorCategory.PROFIT_LOSS_OPPORTUNITY: CategorySpec(
        ValueKind.BOOLEAN, "Worker can realize a profit or suffer a loss"
    ),
    FactorCategory.SIGNIFICANT_INVESTMENT: CategorySpec(
        ValueKind.BOOLEAN, "Worker has made a significant investment in their business"
    ),
}

if set(CATEGORY_SPECS) != set(FactorCategory):
    raise RuntimeError(
        "CATEGORY_SPECS is missing categories: "
        f"{sorted(c.value for c in set(FactorCategory) - set(CATEGORY_SPECS))}"
    )

if set(SOURCE_PRECEDENCE) != set(FactorSource):
    raise RuntimeError("SOURCE_PRECEDENCE must rank every FactorSource")


class ClassificationFactorModel(Base):
    """
    SQLAlchemy model for classification factors.

    Rows are never updated; a changed observation for the same
    category/period is a new row.
    """

    __tablename__ = "classification_factors"
    __table_args__ = (
        Index("ix_classification_factors_contractor", "contractor_id"),
        Index(
            "ix_classification_factors_period",
            "contractor_id",
            "period_start",
            "period_end",
        ),
        CheckConstraint("period_end >= period_start", name="check_factor_period"),
        CheckConstraint(
            "(numeric_value IS NOT NULL)::int + (boolean_value IS NOT NULL)::int"
            " + (text_value IS NOT NULL)::int = 1",
            name="check_factor_single_value",
        ),
        {"schema": "core"},
    )

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    contractor_id = Column(UUID(as_uuid=True), nullable=False)

    category = Column(
        SQLEnum(FactorCategory, name="factor_category", values_callable=lambda e: [m.value for m in e]),
        nullable=False,
    )

    # Exactly one populated
    numeric_value = Column(Numeric(10, 2))
    boolean_value = Column(Boolean)
    text_value = Column(String(255))

    period_start = Column(Date, nullable=False)
    period_end = Column(Date, nullable=False)

    source = Column(
        SQLEnum(FactorSource, name="factor_source", values_callable=lambda e: [m.value for m in e]),
        nullable=False,
        default=FactorSource.MANUAL,
    )

    created_at = Column(DateTime(timezone=True), nullable=False, default=lambda: datetime.now(UTC))

    def __repr__(self) -> str:
        return f"<ClassificationFactor {self.id}: {self.contractor_id} {self.category}>"


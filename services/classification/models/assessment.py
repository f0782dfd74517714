"""
Classification Assessment Database Model
========================================

SQLAlchemy ORM model for immutable classification assessments.

Version: 0.1.0
"""

import uuid
from datetime import UTC, datetime
from enum import Enum

from sqlalchemy import (
    JSON,
    CheckConstraint,
    Column,
    DateTime,
    Enum as SQLEnum,
    Index,
    Numeric,
)
from sqlalchemy.dialects.postgresql import UUID

from shared.database.postgres import Base


class RiskLevel(str, Enum):
    """Misclassification risk levels."""

    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


class LegalTest(str, Enum):
    """Worker-classification tests the engine applies."""

    IRS = "irs"  # IRS common-law test
    DOL = "dol"  # DOL economic-realities test
    ABC = "abc"  # California ABC test


def _score_check(column: str) -> CheckConstraint:
    return CheckConstraint(f"{column} >= 0 AND {column} <= 100", name=f"check_{column}_range")


class ClassificationAssessmentModel(Base):
    """
    SQLAlchemy model for classification assessments.

    One row per scoring run. Rows are never updated or deleted; history is
    read newest first by (contractor_id, assessed_at).
    """

    __tablename__ = "classification_assessments"
    __table_args__ = (
        Index("ix_classification_assessments_contractor", "contractor_id"),
        Index("ix_classification_assessments_org_risk", "organization_id", "overall_risk"),
        Index("ix_classification_assessments_latest", "contractor_id", "assessed_at"),
        _score_check("overall_score"),
        _score_check("irs_score"),
        _score_check("dol_score"),
        _score_check("abc_score"),
        {"schema": "core"},
    )

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    contractor_id = Column(UUID(as_uuid=True), nullable=False)
    organization_id = Column(UUID(as_uuid=True), nullable=False)

    assessed_at = Column(DateTime(timezone=True), nullable=False)

    # Results
    overall_risk = Column(
        SQLEnum(RiskLevel, name="risk_level", values_callable=lambda e: [m.value for m in e]),
        nullable=False,
    )
    overall_score = Column(Numeric(5, 2), nullable=False)

    irs_score = Column(Numeric(5, 2), nullable=False)
    irs_factors = Column(JSON, nullable=False)
    dol_score = Column(Numeric(5, 2), nullable=False)
    dol_factors = Column(JSON, nullable=False)
    abc_score = Column(Numeric(5, 2), nullable=False)
    abc_factors = Column(JSON, nullable=False)

    # Effective factor values and their provenance
    input_data = Column(JSON, nullable=False)

    created_at = Column(DateTime(timezone=True), nullable=False, default=lambda: datetime.now(UTC))

    def __repr__(self) -> str:
        return f"<ClassificationAssessment {self.id}: {self.contractor_id} {self.overall_risk}>"

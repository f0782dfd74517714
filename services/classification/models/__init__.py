"""
Classification Database Models
==============================

SQLAlchemy ORM models and closed enumerations for the classification engine.

Tables:
- classification_factors: Append-only factor observations
- classification_assessments: Immutable scoring results

Version: 0.1.0
"""

from services.classification.models.assessment import (
    ClassificationAssessmentModel,
    LegalTest,
    RiskLevel,
)
from services.classification.models.factor import (
    CATEGORY_SPECS,
    SOURCE_PRECEDENCE,
    CategorySpec,
    ClassificationFactorModel,
    FactorCategory,
    FactorSource,
    Level,
    ValueKind,
)

__all__ = [
    # Factor
    "ClassificationFactorModel",
    "FactorCategory",
    "FactorSource",
    "ValueKind",
    "Level",
    "CategorySpec",
    "CATEGORY_SPECS",
    "SOURCE_PRECEDENCE",
    # Assessment
    "ClassificationAssessmentModel",
    "RiskLevel",
    "LegalTest",
]

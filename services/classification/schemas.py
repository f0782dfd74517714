"""
Classification Schemas
======================

Pydantic models exchanged between the factor store, the scoring engine,
the assessment recorder and the aggregate view.

Version: 0.1.0
"""

from datetime import UTC, date, datetime
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, PrivateAttr, model_validator

from services.classification.models import (
    CATEGORY_SPECS,
    FactorCategory,
    FactorSource,
    LegalTest,
    Level,
    RiskLevel,
    ValueKind,
)


FactorValue = bool | float | str


class Period(BaseModel):
    """Closed date range [start, end]."""

    model_config = ConfigDict(frozen=True)

    start: date
    end: date

    @model_validator(mode="after")
    def check_order(self) -> "Period":
        if self.end < self.start:
            raise ValueError(f"period end {self.end} is before start {self.start}")
        return self

    def overlaps(self, start: date, end: date) -> bool:
        """Check whether [start, end] shares at least one day with this period."""
        return start <= self.end and end >= self.start


# =============================================================================
# Factors
# =============================================================================


class Factor(BaseModel):
    """A single immutable factor observation."""

    model_config = ConfigDict(frozen=True, from_attributes=True)

    id: str
    contractor_id: str
    category: FactorCategory
    numeric_value: float | None = None
    boolean_value: bool | None = None
    text_value: str | None = None
    period_start: date
    period_end: date
    source: FactorSource
    created_at: datetime = Field(default_factory=lambda: datetime.now(UTC))

    @model_validator(mode="after")
    def check_single_value(self) -> "Factor":
        populated = [
            kind
            for kind, value in (
                (ValueKind.NUMERIC, self.numeric_value),
                (ValueKind.BOOLEAN, self.boolean_value),
                (ValueKind.TEXT, self.text_value),
            )
            if value is not None
        ]
        expected = CATEGORY_SPECS[self.category].kind
        if populated != [expected]:
            raise ValueError(
                f"{self.category.value} must populate exactly the {expected.value} value"
            )
        if self.period_end < self.period_start:
            raise ValueError("period_end must not precede period_start")
        return self

    @property
    def value(self) -> FactorValue:
        """The populated value."""
        kind = CATEGORY_SPECS[self.category].kind
        if kind == ValueKind.NUMERIC:
            return self.numeric_value  # type: ignore[return-value]
        if kind == ValueKind.BOOLEAN:
            return self.boolean_value  # type: ignore[return-value]
        return self.text_value  # type: ignore[return-value]


class EffectiveFactor(BaseModel):
    """Value selected for a category at assessment time, with provenance."""

    model_config = ConfigDict(frozen=True)

    value: FactorValue
    source: FactorSource
    factor_id: str
    period_start: date
    period_end: date

    @classmethod
    def from_factor(cls, factor: Factor) -> "EffectiveFactor":
        return cls(
            value=factor.value,
            source=factor.source,
            factor_id=factor.id,
            period_start=factor.period_start,
            period_end=factor.period_end,
        )


class ClassificationInput(BaseModel):
    """
    Effective factor values handed to the scoring engine.

    One optional field per FactorCategory; None means not observed.
    """

    model_config = ConfigDict(frozen=True)

    hours_per_week: float | None = None
    engagement_duration_weeks: float | None = None
    exclusivity_ratio: float | None = None
    set_schedule: bool | None = None
    tools_provided: bool | None = None
    training_provided: bool | None = None
    supervision_level: Level | None = None
    integration_level: Level | None = None
    multiple_clients: bool | None = None
    profit_loss_opportunity: bool | None = None
    significant_investment: bool | None = None

    @classmethod
    def from_effective(
        cls,
        effective: dict[FactorCategory, EffectiveFactor],
    ) -> "ClassificationInput":
        return cls(**{category.value: item.value for category, item in effective.items()})


if set(ClassificationInput.model_fields) != {c.value for c in FactorCategory}:
    raise RuntimeError("ClassificationInput must declare one field per FactorCategory")


# =============================================================================
# Scoring Results
# =============================================================================


class FactorContribution(BaseModel):
    """How one input factor contributed to a test's score."""

    model_config = ConfigDict(frozen=True)

    key: str
    label: str
    group: str | None = None
    value: FactorValue | None = None
    observed: bool
    degree: float = Field(..., ge=0, le=1, description="0 contractor-like, 1 employee-like")
    weight: float
    score: float
    notes: str | None = None


class LegalTestResult(BaseModel):
    """Score and breakdown for one legal test."""

    model_config = ConfigDict(frozen=True)

    test: LegalTest
    score: float = Field(..., ge=0, le=100)
    max_score: float
    factors: list[FactorContribution]

    def group_scores(self) -> dict[str, float]:
        """Sum contributions by group (IRS control groups)."""
        totals: dict[str, float] = {}
        for factor in self.factors:
            if factor.group is None:
                continue
            totals[factor.group] = round(totals.get(factor.group, 0.0) + factor.score, 2)
        return totals


class ScoreVector(BaseModel):
    """Combined scoring output before persistence."""

    model_config = ConfigDict(frozen=True)

    irs: LegalTestResult
    dol: LegalTestResult
    abc: LegalTestResult
    overall_score: float = Field(..., ge=0, le=100)
    overall_risk: RiskLevel


# =============================================================================
# Assessments
# =============================================================================


class Assessment(BaseModel):
    """Immutable classification assessment."""

    model_config = ConfigDict(frozen=True)

    id: str
    contractor_id: str
    organization_id: str
    assessed_at: datetime

    overall_risk: RiskLevel
    overall_score: float = Field(..., ge=0, le=100)

    irs_score: float = Field(..., ge=0, le=100)
    irs_factors: list[FactorContribution]
    dol_score: float = Field(..., ge=0, le=100)
    dol_factors: list[FactorContribution]
    abc_score: float = Field(..., ge=0, le=100)
    abc_factors: list[FactorContribution]

    input_data: dict[FactorCategory, EffectiveFactor] = Field(default_factory=dict)

    created_at: datetime = Field(default_factory=lambda: datetime.now(UTC))

    @property
    def score_vector(self) -> tuple[float, float, float, float]:
        """(irs, dol, abc, overall) for comparing runs."""
        return (self.irs_score, self.dol_score, self.abc_score, self.overall_score)


# =============================================================================
# Aggregate View
# =============================================================================


class RiskSummaryEntry(BaseModel):
    """Dashboard row for one active contractor."""

    model_config = ConfigDict(frozen=True)

    contractor_id: str
    organization_id: str
    contractor_name: str

    overall_risk: RiskLevel | None = None
    overall_score: float | None = None
    irs_score: float | None = None
    dol_score: float | None = None
    abc_score: float | None = None
    assessed_at: datetime | None = None

    avg_weekly_hours: float = 0.0
    weeks_active: int = 0
    engagement_count: int = 0

    @property
    def is_assessed(self) -> bool:
        return self.overall_score is not None


class AggregateSnapshot(BaseModel):
    """A fully built, immutable version of the risk summary."""

    model_config = ConfigDict(frozen=True)

    version: int
    built_at: datetime
    window_start: date
    entries: list[RiskSummaryEntry] = Field(default_factory=list)

    _by_contractor: dict[str, RiskSummaryEntry] = PrivateAttr(default_factory=dict)

    def model_post_init(self, __context: Any) -> None:
        self._by_contractor = {entry.contractor_id: entry for entry in self.entries}

    def get(self, contractor_id: str) -> RiskSummaryEntry | None:
        return self._by_contractor.get(contractor_id)

    def for_organization(self, organization_id: str) -> list[RiskSummaryEntry]:
        return [e for e in self.entries if e.organization_id == organization_id]


class RiskDashboard(BaseModel):
    """Organization-wide risk overview."""

    organization_id: str
    counts_by_risk_level: dict[RiskLevel, int]
    total: int
    unassessed: int
    top_risk_contractors: list[RiskSummaryEntry]
    snapshot_version: int | None = None
    built_at: datetime | None = None

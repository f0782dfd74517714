"""
Classification Scoring Engine
=============================

Pure scoring functions for the three worker-classification tests and the
step combining them into an overall score.

Every function is deterministic over a ClassificationInput. A factor that
was not observed contributes zero (the contractor-like default), so an empty
input scores 0 on every test.

Tests:
- IRS common-law: 10 binary factors in three groups (40/30/30)
- DOL economic-realities: 6 graded factors (17/17/17/17/16/16)
- California ABC: 3 pass/fail prongs (34/33/33)

Overall score: weighted mean of the three sub-scores (default 0.4 IRS,
0.3 DOL, 0.3 ABC), rounded to two decimals.

Version: 0.1.0
"""

from dataclasses import dataclass

from services.classification.models import Level, LegalTest
from services.classification.schemas import (
    ClassificationInput,
    FactorContribution,
    FactorValue,
    LegalTestResult,
    ScoreVector,
)
from services.classification.services.classifier import classify
from shared.config import ClassificationSettings


# =============================================================================
# Weights and Thresholds
# =============================================================================


@dataclass(frozen=True)
class WeightedFactor:
    """A scored factor and its maximum contribution."""

    key: str
    label: str
    weight: float
    group: str | None = None


# IRS common-law test
BEHAVIORAL_CONTROL = "behavioral_control"
FINANCIAL_CONTROL = "financial_control"
RELATIONSHIP_TYPE = "relationship_type"

IRS_INSTRUCTIONS = WeightedFactor("instructions_given", "Instructions Given", 10, BEHAVIORAL_CONTROL)
IRS_TRAINING = WeightedFactor("training_provided", "Training Provided", 10, BEHAVIORAL_CONTROL)
IRS_SET_HOURS = WeightedFactor("set_work_hours", "Set Work Hours", 10, BEHAVIORAL_CONTROL)
IRS_TOOLS = WeightedFactor("tools_provided", "Tools Provided", 10, BEHAVIORAL_CONTROL)
IRS_INVESTMENT = WeightedFactor(
    "significant_investment", "Significant Investment", 10, FINANCIAL_CONTROL
)
IRS_EXPENSES = WeightedFactor(
    "unreimbursed_expenses", "Unreimbursed Expenses", 10, FINANCIAL_CONTROL
)
IRS_PROFIT_LOSS = WeightedFactor(
    "opportunity_profit_loss", "Opportunity for Profit/Loss", 10, FINANCIAL_CONTROL
)
IRS_CONTRACT = WeightedFactor(
    "written_contract_type", "Written Contract Type", 10, RELATIONSHIP_TYPE
)
IRS_BENEFITS = WeightedFactor("benefits_provided", "Benefits Provided", 10, RELATIONSHIP_TYPE)
IRS_PERMANENCY = WeightedFactor("permanency", "Permanency of Relationship", 10, RELATIONSHIP_TYPE)

IRS_FACTORS = (
    IRS_INSTRUCTIONS,
    IRS_TRAINING,
    IRS_SET_HOURS,
    IRS_TOOLS,
    IRS_INVESTMENT,
    IRS_EXPENSES,
    IRS_PROFIT_LOSS,
    IRS_CONTRACT,
    IRS_BENEFITS,
    IRS_PERMANENCY,
)
IRS_GROUP_MAX = {BEHAVIORAL_CONTROL: 40, FINANCIAL_CONTROL: 30, RELATIONSHIP_TYPE: 30}

# DOL economic-realities test
DOL_PROFIT_LOSS = WeightedFactor("opportunity_profit_loss", "Opportunity for Profit or Loss", 17)
DOL_INVESTMENT = WeightedFactor("investment", "Worker's Investment", 17)
DOL_PERMANENCE = WeightedFactor("permanence", "Permanence of Relationship", 17)
DOL_CONTROL = WeightedFactor("employer_control", "Nature and Degree of Control", 17)
DOL_INTEGRAL = WeightedFactor("integral_to_business", "Integral to Business", 16)
DOL_SKILL = WeightedFactor("skill_initiative", "Skill and Initiative", 16)

DOL_FACTORS = (
    DOL_PROFIT_LOSS,
    DOL_INVESTMENT,
    DOL_PERMANENCE,
    DOL_CONTROL,
    DOL_INTEGRAL,
    DOL_SKILL,
)

# California ABC test
ABC_PRONG_A = WeightedFactor("prong_a", "Free from Control", 34)
ABC_PRONG_B = WeightedFactor("prong_b", "Outside Usual Course", 33)
ABC_PRONG_C = WeightedFactor("prong_c", "Independently Established", 33)

ABC_FACTORS = (ABC_PRONG_A, ABC_PRONG_B, ABC_PRONG_C)

TEST_MAX_SCORE = 100.0

for _name, _factors in (("IRS", IRS_FACTORS), ("DOL", DOL_FACTORS), ("ABC", ABC_FACTORS)):
    if sum(f.weight for f in _factors) != TEST_MAX_SCORE:
        raise RuntimeError(f"{_name} factor weights must sum to {TEST_MAX_SCORE}")

for _group, _max in IRS_GROUP_MAX.items():
    if sum(f.weight for f in IRS_FACTORS if f.group == _group) != _max:
        raise RuntimeError(f"IRS group {_group} weights must sum to {_max}")

# Employee-like thresholds
SET_HOURS_THRESHOLD = 35.0  # hours/week above which hours count as set
IRS_PERMANENCY_WEEKS = 26.0  # weeks above which the relationship is long term
EXCLUSIVITY_THRESHOLD = 0.8  # share of hours at or above which work is exclusive

# (weeks exceeded, degree), descending
PERMANENCE_DEGREES: tuple[tuple[float, float], ...] = (
    (52.0, 1.0),
    (26.0, 0.7),
    (12.0, 0.35),
)

INTEGRATION_DEGREES: dict[Level, float] = {
    Level.HIGH: 1.0,
    Level.MEDIUM: 0.5,
    Level.LOW: 0.0,
}


@dataclass(frozen=True)
class CombinationWeights:
    """Weights combining the three sub-scores into the overall score."""

    irs: float = 0.4
    dol: float = 0.3
    abc: float = 0.3

    def __post_init__(self) -> None:
        if min(self.irs, self.dol, self.abc) < 0:
            raise ValueError("combination weights must be non-negative")
        if abs(self.irs + self.dol + self.abc - 1.0) > 1e-9:
            raise ValueError("combination weights must sum to 1.0")

    @classmethod
    def from_settings(cls, config: ClassificationSettings) -> "CombinationWeights":
        return cls(irs=config.irs_weight, dol=config.dol_weight, abc=config.abc_weight)


# =============================================================================
# Helpers
# =============================================================================


def _contribution(
    factor: WeightedFactor,
    *,
    degree: float,
    observed: bool,
    value: FactorValue | None = None,
    notes: str | None = None,
) -> FactorContribution:
    return FactorContribution(
        key=factor.key,
        label=factor.label,
        group=factor.group,
        value=value,
        observed=observed,
        degree=degree,
        weight=factor.weight,
        score=round(factor.weight * degree, 2),
        notes=notes,
    )


def _binary(
    factor: WeightedFactor,
    *,
    employee_like: bool,
    observed: bool,
    value: FactorValue | None = None,
    notes: str | None = None,
) -> FactorContribution:
    """Full weight when employee-like, zero otherwise."""
    return _contribution(
        factor,
        degree=1.0 if employee_like else 0.0,
        observed=observed,
        value=value,
        notes=notes,
    )


def _share(indicators: list[bool]) -> float:
    return sum(indicators) / len(indicators)


def _total(contributions: list[FactorContribution]) -> float:
    return min(TEST_MAX_SCORE, max(0.0, round(sum(c.score for c in contributions), 2)))


def _is_exclusive(data: ClassificationInput) -> bool:
    return data.exclusivity_ratio is not None and data.exclusivity_ratio >= EXCLUSIVITY_THRESHOLD


def _observed(*values: object) -> bool:
    return any(v is not None for v in values)


# =============================================================================
# IRS Common-Law Test
# =============================================================================


def score_irs(data: ClassificationInput) -> LegalTestResult:
    """
    Score the IRS common-law test.

    Employee-like conditions, each worth 10 points:

    Behavioral control
    - instructions_given: training is provided or supervision is high
    - training_provided: training is provided
    - set_work_hours: more than 35 hours/week or a set schedule
    - tools_provided: the hiring entity provides tools

    Financial control
    - significant_investment: the worker has no significant investment
    - unreimbursed_expenses: tools are provided, so the worker carries no
      unreimbursed expenses
    - opportunity_profit_loss: the worker has no profit/loss opportunity

    Relationship type
    - written_contract_type: integration level is high
    - benefits_provided: integration level is high
    - permanency: engagement has lasted more than 26 weeks
    """
    instructed = data.training_provided is True or data.supervision_level == Level.HIGH
    long_hours = data.hours_per_week is not None and data.hours_per_week > SET_HOURS_THRESHOLD
    set_hours = long_hours or data.set_schedule is True
    integrated = data.integration_level == Level.HIGH
    duration = data.engagement_duration_weeks

    factors = [
        _binary(
            IRS_INSTRUCTIONS,
            employee_like=instructed,
            observed=_observed(data.training_provided, data.supervision_level),
            value=instructed if _observed(data.training_provided, data.supervision_level) else None,
        ),
        _binary(
            IRS_TRAINING,
            employee_like=data.training_provided is True,
            observed=_observed(data.training_provided),
            value=data.training_provided,
        ),
        _binary(
            IRS_SET_HOURS,
            employee_like=set_hours,
            observed=_observed(data.hours_per_week, data.set_schedule),
            value=set_hours if _observed(data.hours_per_week, data.set_schedule) else None,
            notes=f"{data.hours_per_week:g} hours/week" if data.hours_per_week is not None else None,
        ),
        _binary(
            IRS_TOOLS,
            employee_like=data.tools_provided is True,
            observed=_observed(data.tools_provided),
            value=data.tools_provided,
        ),
        _binary(
            IRS_INVESTMENT,
            employee_like=data.significant_investment is False,
            observed=_observed(data.significant_investment),
            value=data.significant_investment,
        ),
        _binary(
            IRS_EXPENSES,
            employee_like=data.tools_provided is True,
            observed=_observed(data.tools_provided),
            value=data.tools_provided,
            notes="Hiring entity bears tool costs" if data.tools_provided else None,
        ),
        _binary(
            IRS_PROFIT_LOSS,
            employee_like=data.profit_loss_opportunity is False,
            observed=_observed(data.profit_loss_opportunity),
            value=data.profit_loss_opportunity,
        ),
        _binary(
            IRS_CONTRACT,
            employee_like=integrated,
            observed=_observed(data.integration_level),
            value=data.integration_level.value if data.integration_level else None,
        ),
        _binary(
            IRS_BENEFITS,
            employee_like=integrated,
            observed=_observed(data.integration_level),
            value=data.integration_level.value if data.integration_level else None,
        ),
        _binary(
            IRS_PERMANENCY,
            employee_like=duration is not None and duration > IRS_PERMANENCY_WEEKS,
            observed=_observed(duration),
            value=duration,
        ),
    ]

    return LegalTestResult(
        test=LegalTest.IRS,
        score=_total(factors),
        max_score=TEST_MAX_SCORE,
        factors=factors,
    )


# =============================================================================
# DOL Economic-Realities Test
# =============================================================================


def _permanence_degree(weeks: float | None) -> float:
    if weeks is None:
        return 0.0
    for threshold, degree in PERMANENCE_DEGREES:
        if weeks > threshold:
            return degree
    return 0.0


def score_dol(data: ClassificationInput) -> LegalTestResult:
    """
    Score the DOL economic-realities test.

    Each factor contributes weight x degree, degree in [0, 1]:
    - opportunity_profit_loss: 1 when there is no profit/loss opportunity
    - investment: 1 when there is no significant investment
    - permanence: >52 weeks 1.0, >26 weeks 0.7, >12 weeks 0.35
    - employer_control: share of {set schedule, tools provided,
      high supervision} that hold
    - integral_to_business: integration high 1.0, medium 0.5
    - skill_initiative: share of {no other clients, no significant
      investment, exclusivity >= 0.8} that hold
    """
    control_observed = _observed(data.set_schedule, data.tools_provided, data.supervision_level)
    control = _share(
        [
            data.set_schedule is True,
            data.tools_provided is True,
            data.supervision_level == Level.HIGH,
        ]
    )

    skill_observed = _observed(
        data.multiple_clients, data.significant_investment, data.exclusivity_ratio
    )
    dependence = _share(
        [
            data.multiple_clients is False,
            data.significant_investment is False,
            _is_exclusive(data),
        ]
    )

    integration = data.integration_level
    factors = [
        _contribution(
            DOL_PROFIT_LOSS,
            degree=1.0 if data.profit_loss_opportunity is False else 0.0,
            observed=_observed(data.profit_loss_opportunity),
            value=data.profit_loss_opportunity,
        ),
        _contribution(
            DOL_INVESTMENT,
            degree=1.0 if data.significant_investment is False else 0.0,
            observed=_observed(data.significant_investment),
            value=data.significant_investment,
        ),
        _contribution(
            DOL_PERMANENCE,
            degree=_permanence_degree(data.engagement_duration_weeks),
            observed=_observed(data.engagement_duration_weeks),
            value=data.engagement_duration_weeks,
        ),
        _contribution(
            DOL_CONTROL,
            degree=control,
            observed=control_observed,
            value=control > 0 if control_observed else None,
        ),
        _contribution(
            DOL_INTEGRAL,
            degree=INTEGRATION_DEGREES[integration] if integration else 0.0,
            observed=_observed(integration),
            value=integration.value if integration else None,
        ),
        _contribution(
            DOL_SKILL,
            degree=dependence,
            observed=skill_observed,
            value=dependence > 0 if skill_observed else None,
        ),
    ]

    return LegalTestResult(
        test=LegalTest.DOL,
        score=_total(factors),
        max_score=TEST_MAX_SCORE,
        factors=factors,
    )


# =============================================================================
# California ABC Test
# =============================================================================


def _prong(
    factor: WeightedFactor,
    issues: list[str],
    observed: bool,
    passed_note: str,
) -> FactorContribution:
    """A prong fails only on affirmative employee-like evidence."""
    failed = bool(issues)
    if failed:
        notes = "; ".join(issues)
    elif observed:
        notes = passed_note
    else:
        notes = "No evidence recorded"
    return _binary(factor, employee_like=failed, observed=observed, value=not failed, notes=notes)


def score_abc(data: ClassificationInput) -> LegalTestResult:
    """
    Score the California ABC test.

    The factor value records whether the prong passed; a failed prong
    contributes its full weight.

    - A fails on a set schedule, provided tools or high supervision
    - B fails when the work is medium or highly integrated in the business
    - C fails when the worker has no other clients, no significant
      investment, or works exclusively (>= 0.8 of hours) for one engagement
    """
    control_issues = []
    if data.set_schedule is True:
        control_issues.append("set schedule")
    if data.tools_provided is True:
        control_issues.append("tools provided")
    if data.supervision_level == Level.HIGH:
        control_issues.append("high supervision")

    course_issues = []
    if data.integration_level in (Level.MEDIUM, Level.HIGH):
        course_issues.append(f"{data.integration_level.value} integration with core business")

    independence_issues = []
    if data.multiple_clients is False:
        independence_issues.append("no other clients")
    if data.significant_investment is False:
        independence_issues.append("no significant investment")
    if _is_exclusive(data):
        independence_issues.append(f"exclusivity ratio {data.exclusivity_ratio:.2f}")

    factors = [
        _prong(
            ABC_PRONG_A,
            control_issues,
            _observed(data.set_schedule, data.tools_provided, data.supervision_level),
            "Worker is free from control and direction",
        ),
        _prong(
            ABC_PRONG_B,
            course_issues,
            _observed(data.integration_level),
            "Work is outside the usual course of business",
        ),
        _prong(
            ABC_PRONG_C,
            independence_issues,
            _observed(data.multiple_clients, data.significant_investment, data.exclusivity_ratio),
            "Worker has an independently established trade",
        ),
    ]

    return LegalTestResult(
        test=LegalTest.ABC,
        score=_total(factors),
        max_score=TEST_MAX_SCORE,
        factors=factors,
    )


# =============================================================================
# Combination
# =============================================================================


def combine_scores(
    irs_score: float,
    dol_score: float,
    abc_score: float,
    weights: CombinationWeights | None = None,
) -> float:
    """Weighted mean of the sub-scores, rounded to two decimals and kept in [0, 100]."""
    weights = weights or CombinationWeights()
    raw = irs_score * weights.irs + dol_score * weights.dol + abc_score * weights.abc
    return min(TEST_MAX_SCORE, max(0.0, round(raw, 2)))


def score_all(
    data: ClassificationInput,
    weights: CombinationWeights | None = None,
) -> ScoreVector:
    """Run all three tests, combine and classify."""
    irs = score_irs(data)
    dol = score_dol(data)
    abc = score_abc(data)
    overall = combine_scores(irs.score, dol.score, abc.score, weights)

    return ScoreVector(
        irs=irs,
        dol=dol,
        abc=abc,
        overall_score=overall,
        overall_risk=classify(overall),
    )

"""
Classification Services
=======================

Business logic for worker-classification risk scoring.

Services:
- FactorStore: Factor submission and effective-value selection
- FactorDeriver: Factors computed from time entries and engagements
- Scoring: IRS, DOL and ABC tests plus combination
- AssessmentRecorder: Assessment workflow and history
- AggregateViewBuilder: Dashboard read model
- BatchReassessor: Scheduled reassessment

Version: 0.1.0
"""

from services.classification.services.aggregate import (
    AggregateViewBuilder,
    MemorySnapshotStore,
    RedisSnapshotStore,
    SnapshotStore,
    get_snapshot_store,
)
from services.classification.services.assessment import AssessmentRecorder
from services.classification.services.batch import BatchReassessor, BatchResult
from services.classification.services.classifier import RISK_BANDS, classify
from services.classification.services.deriver import (
    FactorDeriver,
    WeeklyRollup,
    compute_time_factors,
    weekly_totals,
)
from services.classification.services.factors import FactorStore, select_effective
from services.classification.services.scoring import (
    CombinationWeights,
    combine_scores,
    score_abc,
    score_all,
    score_dol,
    score_irs,
)


__all__ = [
    # Factors
    "FactorStore",
    "select_effective",
    "FactorDeriver",
    "WeeklyRollup",
    "compute_time_factors",
    "weekly_totals",
    # Scoring
    "CombinationWeights",
    "score_irs",
    "score_dol",
    "score_abc",
    "combine_scores",
    "score_all",
    "classify",
    "RISK_BANDS",
    # Assessments
    "AssessmentRecorder",
    # Aggregate
    "AggregateViewBuilder",
    "SnapshotStore",
    "MemorySnapshotStore",
    "RedisSnapshotStore",
    "get_snapshot_store",
    # Batch
    "BatchReassessor",
    "BatchResult",
]

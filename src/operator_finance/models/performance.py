"""Performance models: metric sets, scores, and tier qualifications.

Scores are plain floats on a 0-100 scale, rounded to two decimals.
Money never appears in this module.

Invariants enforced by the scoring pipeline:
- 0 <= total_score <= 100
- Each category score is bounded by its category cap
- A PerformanceScore with is_final=True is never replaced
"""

from __future__ import annotations

import enum
from dataclasses import dataclass, field, replace
from datetime import date, datetime
from typing import Dict, Mapping, Optional, Tuple


class ScoringFrequency(str, enum.Enum):
    """How often an operator is scored; selects the period format."""
    DAILY = "daily"
    WEEKLY = "weekly"
    MONTHLY = "monthly"


class MetricCategory(str, enum.Enum):
    """The four scoring categories."""
    VEHICLE_UTILIZATION = "vehicle_utilization"
    DRIVER_MANAGEMENT = "driver_management"
    COMPLIANCE_SAFETY = "compliance_safety"
    PLATFORM_CONTRIBUTION = "platform_contribution"


class MetricScale(str, enum.Enum):
    """Declared range of a metric value.

    FRACTION:      [0, 1], higher is better.
    RATING:        [0, 5], higher is better.
    INVERTED_RATE: [0, 1], lower is better.
    """
    FRACTION = "fraction"
    RATING = "rating"
    INVERTED_RATE = "inverted_rate"

    @property
    def upper_bound(self) -> float:
        return 5.0 if self is MetricScale.RATING else 1.0


class CommissionTier(str, enum.Enum):
    """Commission tier. Ordered: tier_1 < tier_2 < tier_3."""
    TIER_1 = "tier_1"
    TIER_2 = "tier_2"
    TIER_3 = "tier_3"

    @property
    def rank(self) -> int:
        return int(self.value.rsplit("_", 1)[1])

    def __lt__(self, other: object) -> bool:
        if not isinstance(other, CommissionTier):
            return NotImplemented
        return self.rank < other.rank

    def __le__(self, other: object) -> bool:
        if not isinstance(other, CommissionTier):
            return NotImplemented
        return self.rank <= other.rank

    def __gt__(self, other: object) -> bool:
        if not isinstance(other, CommissionTier):
            return NotImplemented
        return self.rank > other.rank

    def __ge__(self, other: object) -> bool:
        if not isinstance(other, CommissionTier):
            return NotImplemented
        return self.rank >= other.rank


class QualificationStatus(str, enum.Enum):
    """Outcome of a tier evaluation.

    QUALIFIED:     all requirements of the target tier hold.
    UNDER_REVIEW:  borderline; falls back to tier_1 until re-evaluated.
    PROBATIONARY:  unresolved recent violation; tier_1 until probation ends.
    DISQUALIFIED:  tenure or payment consistency clearly unmet.
    """
    QUALIFIED = "qualified"
    UNDER_REVIEW = "under_review"
    PROBATIONARY = "probationary"
    DISQUALIFIED = "disqualified"


class Requirement(str, enum.Enum):
    """The four gating requirements of a commission tier."""
    SCORE = "score"
    TENURE = "tenure"
    PAYMENT_CONSISTENCY = "payment_consistency"
    UTILIZATION = "utilization"


@dataclass(frozen=True)
class MetricDefinition:
    """A named metric, its category and its declared range."""
    name: str
    category: MetricCategory
    scale: MetricScale


@dataclass(frozen=True)
class MetricSet:
    """One operator's raw metrics for one period.

    Created by the ingestion collaborator and consumed once by scoring.
    """
    operator_id: str
    period: str
    frequency: ScoringFrequency
    values: Mapping[str, float]


@dataclass(frozen=True)
class AppliedAdjustment:
    """A post-calculation score adjustment and the delta it applied."""
    name: str
    delta: float


@dataclass(frozen=True)
class PerformanceScore:
    """Scored performance for one (operator, period, frequency)."""
    operator_id: str
    period: str
    frequency: ScoringFrequency
    vehicle_utilization_score: float
    driver_management_score: float
    compliance_safety_score: float
    platform_contribution_score: float
    total_score: float
    tier: CommissionTier
    qualification_status: QualificationStatus
    metric_snapshot: Dict[str, float]
    calculated_at: datetime
    is_final: bool = False
    base_total_score: Optional[float] = None
    adjustments: Tuple[AppliedAdjustment, ...] = ()

    @property
    def key(self) -> Tuple[str, str, ScoringFrequency]:
        return (self.operator_id, self.period, self.frequency)

    @property
    def category_scores(self) -> Dict[MetricCategory, float]:
        return {
            MetricCategory.VEHICLE_UTILIZATION: self.vehicle_utilization_score,
            MetricCategory.DRIVER_MANAGEMENT: self.driver_management_score,
            MetricCategory.COMPLIANCE_SAFETY: self.compliance_safety_score,
            MetricCategory.PLATFORM_CONTRIBUTION: self.platform_contribution_score,
        }

    def finalize(self) -> PerformanceScore:
        return replace(self, is_final=True)


@dataclass(frozen=True)
class ViolationRecord:
    """A compliance or safety violation reported against an operator."""
    violation_date: date
    violation_type: str
    severity: str = "medium"
    resolved: bool = False


@dataclass(frozen=True)
class TierInputs:
    """Facts the tier evaluator needs besides the score.

    payment_consistency and utilization_percentile are fractions in [0, 1];
    utilization_percentile is higher-is-better (0.85 = top 15%).
    """
    total_score: float
    tenure_months: int
    payment_consistency: float
    utilization_percentile: float
    evaluation_date: date
    violations: Tuple[ViolationRecord, ...] = ()


@dataclass(frozen=True)
class TierFacts:
    """Operator facts supplied by collaborators for a tier evaluation.

    tenure_months may be left out; it is then derived from the
    operator's partnership start date.
    """
    payment_consistency: float
    utilization_percentile: float
    violations: Tuple[ViolationRecord, ...] = ()
    tenure_months: Optional[int] = None


@dataclass(frozen=True)
class TierQualification:
    """Decision artifact of a tier evaluation. Not the source of truth for tier."""
    operator_id: str
    target_tier: CommissionTier
    status: QualificationStatus
    evaluation_date: date
    score_requirement: float
    current_score: float
    score_qualified: bool
    tenure_requirement: int
    current_tenure: int
    tenure_qualified: bool
    payment_consistency_requirement: float
    current_payment_consistency: float
    payment_qualified: bool
    utilization_requirement: Optional[float]
    current_utilization_percentile: float
    utilization_qualified: bool
    failed_requirements: Tuple[Requirement, ...] = ()
    probation_end_date: Optional[date] = None
    notes: Tuple[str, ...] = field(default_factory=tuple)

    @property
    def effective_tier(self) -> CommissionTier:
        """The tier commissions are paid at as a result of this evaluation."""
        if self.status == QualificationStatus.QUALIFIED:
            return self.target_tier
        return CommissionTier.TIER_1

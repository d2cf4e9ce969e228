"""Score calculator — converts validated metrics into a 0-100 performance score.

Scoring model:
  category_score = min(cap, Σ (cap / n) × normalized(metric))   for its n metrics
  total_score    = clamp(Σ category_score, 0, 100)

Normalization by declared scale:
  fraction       value
  rating (0-5)   value / 5
  inverted rate  1 - value

Caps: vehicle utilization 30, driver management 25, compliance & safety 25,
platform contribution 20. An all-best metric set scores exactly 100 and an
all-worst set scores 0. The calculator holds no state between calls.
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Mapping, Optional

from operator_finance.models.performance import (
    CommissionTier,
    MetricCategory,
    MetricDefinition,
    MetricScale,
    MetricSet,
    PerformanceScore,
    QualificationStatus,
)
from operator_finance.policy.resolver import PolicyResolver
from operator_finance.scoring.validator import MetricValidator


def normalize(definition: MetricDefinition, value: float) -> float:
    """Map a raw metric value onto [0, 1], higher is better."""
    bound = definition.scale.upper_bound
    clamped = max(0.0, min(bound, float(value)))
    if definition.scale == MetricScale.RATING:
        return clamped / bound
    if definition.scale == MetricScale.INVERTED_RATE:
        return 1.0 - clamped
    return clamped


class ScoreCalculator:
    """Computes category and total performance scores.

    Usage:
        calculator = ScoreCalculator(resolver)
        score = calculator.calculate(metric_set)
        score.total_score   # 0.0 .. 100.0
    """

    def __init__(self, resolver: PolicyResolver) -> None:
        self._caps = resolver.category_caps()
        self._thresholds = resolver.tier_score_thresholds()
        self._validator = MetricValidator(resolver)
        self._by_category: dict[MetricCategory, list[MetricDefinition]] = {}
        for definition in resolver.metric_definitions():
            self._by_category.setdefault(definition.category, []).append(definition)

    @property
    def validator(self) -> MetricValidator:
        return self._validator

    def category_score(
        self,
        category: MetricCategory,
        values: Mapping[str, float],
    ) -> float:
        """Score one category, clamped to its cap.

        Missing metrics earn no points. This does not gate on validity so
        it can serve exploratory queries over partial data; calculate()
        is the gated path.
        """
        cap = self._caps[category]
        definitions = self._by_category.get(category, [])
        if not definitions:
            return 0.0
        earned = sum(
            normalize(d, values[d.name]) for d in definitions if d.name in values
        )
        raw = cap * earned / len(definitions)
        return round(max(0.0, min(cap, raw)), 2)

    def total_score(self, values: Mapping[str, float]) -> float:
        raw = sum(self.category_score(category, values) for category in self._caps)
        return round(max(0.0, min(100.0, raw)), 2)

    def base_tier(self, total_score: float) -> CommissionTier:
        """Tier implied by score alone: >=90 tier_3, >=80 tier_2, else tier_1."""
        for tier, threshold in self._thresholds:
            if total_score >= threshold:
                return tier
        return CommissionTier.TIER_1

    def calculate(
        self,
        metric_set: MetricSet,
        tier: Optional[CommissionTier] = None,
        status: QualificationStatus = QualificationStatus.UNDER_REVIEW,
        now: Optional[datetime] = None,
    ) -> PerformanceScore:
        """Validate and score a metric set.

        Args:
            metric_set: The period's raw metrics.
            tier: Tier to record on the score (defaults to the base tier).
            status: Qualification status to record on the score.
            now: Calculation time (defaults to UTC now).

        Raises:
            InvalidMetricsError: if any metric is missing or out of range.
        """
        self._validator.validate(metric_set)
        if now is None:
            now = datetime.now(timezone.utc)

        values = metric_set.values
        categories = {c: self.category_score(c, values) for c in self._caps}
        total = round(max(0.0, min(100.0, sum(categories.values()))), 2)

        return PerformanceScore(
            operator_id=metric_set.operator_id,
            period=metric_set.period,
            frequency=metric_set.frequency,
            vehicle_utilization_score=categories[MetricCategory.VEHICLE_UTILIZATION],
            driver_management_score=categories[MetricCategory.DRIVER_MANAGEMENT],
            compliance_safety_score=categories[MetricCategory.COMPLIANCE_SAFETY],
            platform_contribution_score=categories[MetricCategory.PLATFORM_CONTRIBUTION],
            total_score=total,
            tier=tier if tier is not None else self.base_tier(total),
            qualification_status=status,
            metric_snapshot={name: float(v) for name, v in values.items()},
            calculated_at=now,
            base_total_score=total,
        )

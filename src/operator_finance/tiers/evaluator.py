"""Tier evaluator — decides which commission tier an operator qualifies for.

Evaluation order:
1. An unresolved violation inside the lookback window puts the operator
   on probation at tier_1 until latest violation + cooling-off days.
2. The score alone picks a base tier (>=90 tier_3, >=80 tier_2).
3. Walking down from the base tier to tier_2, the first tier whose four
   requirements all hold is granted.
4. Otherwise the operator falls back to tier_1 with a status that says
   why: disqualified (tenure or payment consistency unmet), under review
   (utilization unmet, or a score just below the tier_2 cutoff with
   another tier_2 requirement unmet) or qualified (tier_1 requirements
   hold).

The evaluator is stateless. A higher score with all else equal never
yields a lower effective tier.
"""

from __future__ import annotations

import logging
from datetime import date, timedelta
from typing import List, Optional

from operator_finance.errors import OperatorNotEligibleError
from operator_finance.models.finance import CommissionRateConfig
from operator_finance.models.performance import (
    CommissionTier,
    QualificationStatus,
    Requirement,
    TierInputs,
    TierQualification,
    ViolationRecord,
)
from operator_finance.policy.resolver import PolicyResolver

logger = logging.getLogger(__name__)


def tenure_months(start: date, on: date) -> int:
    """Whole months of partnership between start and on (never negative)."""
    months = (on.year - start.year) * 12 + (on.month - start.month)
    if on.day < start.day:
        months -= 1
    return max(0, months)


def is_demotion(previous: CommissionTier, qualification: TierQualification) -> bool:
    """Whether applying this qualification would lower the operator's tier."""
    return qualification.effective_tier < previous


class TierEvaluator:
    """Evaluates tier qualification from a score and operator facts.

    Usage:
        evaluator = TierEvaluator(resolver)
        result = evaluator.evaluate("OP-001", TierInputs(
            total_score=87.5, tenure_months=12,
            payment_consistency=0.95, utilization_percentile=0.85,
            evaluation_date=date(2024, 2, 1),
        ))
        result.status          # QualificationStatus.QUALIFIED
        result.effective_tier  # CommissionTier.TIER_2
    """

    def __init__(self, resolver: PolicyResolver) -> None:
        self._resolver = resolver
        self._thresholds = resolver.tier_score_thresholds()
        self._review_band = resolver.tier_review_band()
        probation = resolver.probation_params()
        self._lookback_days = probation["violation_lookback_days"]
        self._cooling_off_days = probation["cooling_off_days"]

    def base_tier(self, total_score: float) -> CommissionTier:
        for tier, threshold in self._thresholds:
            if total_score >= threshold:
                return tier
        return CommissionTier.TIER_1

    def evaluate(self, operator_id: str, inputs: TierInputs) -> TierQualification:
        """Evaluate one operator.

        Raises:
            OperatorNotEligibleError: if no tier_1 rate config is in force
                on the evaluation date.
        """
        on = inputs.evaluation_date
        tier_1_config = self._config(CommissionTier.TIER_1, on)
        if tier_1_config is None:
            raise OperatorNotEligibleError(
                f"No active tier_1 rate config on {on.isoformat()}"
            )

        recent = self._recent_violations(inputs.violations, on)
        if recent:
            latest = max(v.violation_date for v in recent)
            end = latest + timedelta(days=self._cooling_off_days)
            result = self._build(
                operator_id, tier_1_config, inputs, QualificationStatus.PROBATIONARY,
                probation_end_date=end,
                notes=(f"{len(recent)} unresolved violation(s); probation until {end.isoformat()}",),
            )
            logger.info("Operator %s probationary until %s", operator_id, end)
            return result

        base = self.base_tier(inputs.total_score)

        tier = base
        while tier > CommissionTier.TIER_1:
            config = self._config(tier, on)
            if config is not None and not self._failed(config, inputs):
                return self._build(operator_id, config, inputs, QualificationStatus.QUALIFIED)
            tier = _lower(tier)

        if base > CommissionTier.TIER_1:
            base_config = self._config(base, on)
            if base_config is not None:
                failed = self._failed(base_config, inputs)
                if Requirement.TENURE in failed or Requirement.PAYMENT_CONSISTENCY in failed:
                    return self._build(
                        operator_id, base_config, inputs, QualificationStatus.DISQUALIFIED,
                        notes=(f"{base.value} requirements unmet; paid at tier_1",),
                    )
                return self._build(
                    operator_id, tier_1_config, inputs, QualificationStatus.UNDER_REVIEW,
                    notes=(f"{base.value} utilization unmet; paid at tier_1 pending review",),
                )

        if self._borderline_shortfall(inputs):
            return self._build(
                operator_id, tier_1_config, inputs, QualificationStatus.UNDER_REVIEW,
                notes=(f"Score {inputs.total_score:.2f} borderline for tier_2",),
            )

        if not self._failed(tier_1_config, inputs):
            return self._build(operator_id, tier_1_config, inputs, QualificationStatus.QUALIFIED)
        return self._build(operator_id, tier_1_config, inputs, QualificationStatus.DISQUALIFIED)

    # ------------------------------------------------------------------
    # Internal
    # ------------------------------------------------------------------

    def _config(self, tier: CommissionTier, on: date) -> Optional[CommissionRateConfig]:
        return self._resolver.active_rate_config(tier, on)

    def _borderline_shortfall(self, inputs: TierInputs) -> bool:
        """Score just below the tier_2 cutoff while another tier_2 requirement fails."""
        cutoff = dict(self._thresholds).get(CommissionTier.TIER_2)
        config = self._config(CommissionTier.TIER_2, inputs.evaluation_date)
        if cutoff is None or config is None:
            return False
        if not cutoff - self._review_band <= inputs.total_score < cutoff:
            return False
        return any(r != Requirement.SCORE for r in self._failed(config, inputs))

    def _recent_violations(
        self, violations: tuple[ViolationRecord, ...], on: date,
    ) -> List[ViolationRecord]:
        cutoff = on - timedelta(days=self._lookback_days)
        return [
            v for v in violations
            if not v.resolved and cutoff <= v.violation_date <= on
        ]

    @staticmethod
    def _failed(config: CommissionRateConfig, inputs: TierInputs) -> List[Requirement]:
        failed = []
        if inputs.total_score < config.min_performance_score:
            failed.append(Requirement.SCORE)
        if inputs.tenure_months < config.min_tenure_months:
            failed.append(Requirement.TENURE)
        if inputs.payment_consistency < config.min_payment_consistency:
            failed.append(Requirement.PAYMENT_CONSISTENCY)
        if (
            config.min_utilization_percentile is not None
            and inputs.utilization_percentile < config.min_utilization_percentile
        ):
            failed.append(Requirement.UTILIZATION)
        return failed

    def _build(
        self,
        operator_id: str,
        config: CommissionRateConfig,
        inputs: TierInputs,
        status: QualificationStatus,
        probation_end_date: Optional[date] = None,
        notes: tuple[str, ...] = (),
    ) -> TierQualification:
        failed = self._failed(config, inputs)
        return TierQualification(
            operator_id=operator_id,
            target_tier=config.tier,
            status=status,
            evaluation_date=inputs.evaluation_date,
            score_requirement=config.min_performance_score,
            current_score=inputs.total_score,
            score_qualified=Requirement.SCORE not in failed,
            tenure_requirement=config.min_tenure_months,
            current_tenure=inputs.tenure_months,
            tenure_qualified=Requirement.TENURE not in failed,
            payment_consistency_requirement=config.min_payment_consistency,
            current_payment_consistency=inputs.payment_consistency,
            payment_qualified=Requirement.PAYMENT_CONSISTENCY not in failed,
            utilization_requirement=config.min_utilization_percentile,
            current_utilization_percentile=inputs.utilization_percentile,
            utilization_qualified=Requirement.UTILIZATION not in failed,
            failed_requirements=tuple(failed),
            probation_end_date=probation_end_date,
            notes=notes,
        )


def _lower(tier: CommissionTier) -> CommissionTier:
    return {
        CommissionTier.TIER_3: CommissionTier.TIER_2,
        CommissionTier.TIER_2: CommissionTier.TIER_1,
    }.get(tier, CommissionTier.TIER_1)

"""Invariant checks over the policy files.

Run before deploying a config change; the CLI's check-config command and
tools/check_policy.py both call check_policy().
"""

from __future__ import annotations

import math
from decimal import Decimal
from typing import List

from operator_finance.models.performance import CommissionTier
from operator_finance.policy.resolver import PolicyResolver

_EXPECTED_METRICS_PER_CATEGORY = 3


def check_policy(resolver: PolicyResolver) -> List[str]:
    """Return every violated invariant; an empty list means the policy is sound."""
    errors: List[str] = []

    # --- Scoring ---
    caps = resolver.category_caps()
    if not math.isclose(sum(caps.values()), 100.0, abs_tol=1e-9):
        errors.append(f"Category caps must sum to 100, got {sum(caps.values())}")
    for category, cap in caps.items():
        if cap <= 0:
            errors.append(f"Category cap for {category.value} must be > 0")

    per_category: dict = {}
    for definition in resolver.metric_definitions():
        per_category.setdefault(definition.category, []).append(definition)
    for category in caps:
        count = len(per_category.get(category, []))
        if count != _EXPECTED_METRICS_PER_CATEGORY:
            errors.append(
                f"{category.value} must have {_EXPECTED_METRICS_PER_CATEGORY} metrics, got {count}"
            )

    thresholds = dict(resolver.tier_score_thresholds())
    tier_2 = thresholds.get(CommissionTier.TIER_2)
    tier_3 = thresholds.get(CommissionTier.TIER_3)
    if tier_2 is None or tier_3 is None:
        errors.append("tier_score_thresholds must define tier_2 and tier_3")
    elif not 0 < tier_2 < tier_3 <= 100:
        errors.append("tier_score_thresholds must satisfy 0 < tier_2 < tier_3 <= 100")
    if resolver.tier_review_band() < 0:
        errors.append("tier_review_band must be >= 0")

    probation = resolver.probation_params()
    for name, days in probation.items():
        if days < 0:
            errors.append(f"probation.{name} must be >= 0")

    # --- Commission ---
    configs = [c for c in resolver.commission_rate_configs() if c.is_active]
    by_tier = {c.tier: c for c in sorted(configs, key=lambda c: c.effective_from)}
    for tier in CommissionTier:
        if tier not in by_tier:
            errors.append(f"No active rate config for {tier.value}")
    ordered = [by_tier[t] for t in CommissionTier if t in by_tier]
    for lower, higher in zip(ordered, ordered[1:]):
        if higher.rate_percentage <= lower.rate_percentage:
            errors.append(
                f"Rate for {higher.tier.value} must exceed {lower.tier.value}"
            )
        if higher.min_performance_score < lower.min_performance_score:
            errors.append(
                f"min_performance_score must not decrease from {lower.tier.value} "
                f"to {higher.tier.value}"
            )
        if higher.min_tenure_months < lower.min_tenure_months:
            errors.append(
                f"min_tenure_months must not decrease from {lower.tier.value} "
                f"to {higher.tier.value}"
            )
    for config in configs:
        if not Decimal("0") < config.rate_percentage <= Decimal("100"):
            errors.append(f"Rate for {config.tier.value} must be in (0, 100]")
        if config.effective_until is not None and config.effective_until < config.effective_from:
            errors.append(f"Rate config for {config.tier.value} ends before it starts")
    if resolver.minimum_commission_amount() < 0:
        errors.append("minimum_commission_amount must be >= 0")

    # --- Finance ---
    boundary = resolver.boundary_fee_params()
    share = boundary["default_revenue_share_percentage"]
    if not Decimal("0") <= share <= Decimal("100"):
        errors.append("default_revenue_share_percentage must be in [0, 100]")
    bands = boundary["performance_adjustment_bands"]
    if not bands or bands[-1][0] > 0:
        errors.append("performance_adjustment_bands must cover scores down to 0")
    adjustments = [adjustment for _, adjustment in bands]
    if adjustments != sorted(adjustments, reverse=True):
        errors.append("performance_adjustment_bands must not reward lower scores more")

    for kind, rate in resolver.withholding_tax_rates().items():
        if not Decimal("0") <= rate <= Decimal("100"):
            errors.append(f"withholding tax for {kind.value} must be in [0, 100]")
    if resolver.payout_params()["max_concurrent_executions"] < 1:
        errors.append("payout.max_concurrent_executions must be >= 1")
    if resolver.large_transaction_threshold() <= 0:
        errors.append("large_transaction_threshold must be > 0")

    return errors

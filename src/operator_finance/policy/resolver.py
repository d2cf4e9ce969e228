"""Policy resolver — typed access to the JSON policy files.

Three files make up the policy, all under one config directory:

    scoring_policy.json     metric catalogue, category caps, tier cutoffs
    commission_policy.json  per-tier rate configs, minimum commission
    finance_policy.json     boundary-fee bands, withholding tax, payouts

Every component receives a resolver at construction time. Nothing in
the package reads configuration from ambient global state.
"""

from __future__ import annotations

import copy
import json
from datetime import date
from decimal import Decimal
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple

from operator_finance.models.finance import CommissionRateConfig, OperatorType
from operator_finance.models.performance import (
    CommissionTier,
    MetricCategory,
    MetricDefinition,
    MetricScale,
)

POLICY_FILES = {
    "scoring": "scoring_policy.json",
    "commission": "commission_policy.json",
    "finance": "finance_policy.json",
}


class PolicyResolver:
    """Resolves policy values from loaded configuration.

    Usage:
        resolver = PolicyResolver.from_config_dir(Path("config"))
        caps = resolver.category_caps()
        configs = resolver.commission_rate_configs()

        # Tests and callers tuning one value:
        no_floor = resolver.with_overrides(
            "commission", minimum_commission_amount="0.00",
        )
    """

    def __init__(self, params: Dict[str, Dict[str, Any]]) -> None:
        missing = [name for name in POLICY_FILES if name not in params]
        if missing:
            raise ValueError(f"Missing policy sections: {', '.join(missing)}")
        self._params = params

    @classmethod
    def from_config_dir(cls, config_dir: Path) -> PolicyResolver:
        """Load all policy files from a directory."""
        params: Dict[str, Dict[str, Any]] = {}
        for section, filename in POLICY_FILES.items():
            path = Path(config_dir) / filename
            with path.open("r", encoding="utf-8") as handle:
                params[section] = json.load(handle)
        return cls(params)

    def with_overrides(self, section: str, **values: Any) -> PolicyResolver:
        """Return a new resolver with top-level keys of one section replaced."""
        if section not in self._params:
            raise ValueError(f"Unknown policy section: {section}")
        params = copy.deepcopy(self._params)
        params[section].update(values)
        return PolicyResolver(params)

    def raw(self, section: str) -> Dict[str, Any]:
        return copy.deepcopy(self._params[section])

    # ------------------------------------------------------------------
    # Scoring
    # ------------------------------------------------------------------

    def metric_definitions(self) -> List[MetricDefinition]:
        """All scored metrics, in category order."""
        definitions = []
        for cat_name, cat in self._params["scoring"]["categories"].items():
            category = MetricCategory(cat_name)
            for metric_name, scale in cat["metrics"].items():
                definitions.append(
                    MetricDefinition(metric_name, category, MetricScale(scale))
                )
        return definitions

    def category_caps(self) -> Dict[MetricCategory, float]:
        return {
            MetricCategory(name): float(cat["cap"])
            for name, cat in self._params["scoring"]["categories"].items()
        }

    def tier_score_thresholds(self) -> List[Tuple[CommissionTier, float]]:
        """Base-tier cutoffs, highest tier first."""
        thresholds = [
            (CommissionTier(tier), float(score))
            for tier, score in self._params["scoring"]["tier_score_thresholds"].items()
        ]
        return sorted(thresholds, key=lambda item: item[0].rank, reverse=True)

    def tier_review_band(self) -> float:
        return float(self._params["scoring"]["tier_review_band"])

    def probation_params(self) -> Dict[str, int]:
        probation = self._params["scoring"]["probation"]
        return {
            "violation_lookback_days": int(probation["violation_lookback_days"]),
            "cooling_off_days": int(probation["cooling_off_days"]),
        }

    def batch_scoring_workers(self) -> int:
        return int(self._params["scoring"].get("batch_scoring_workers", 4))

    # ------------------------------------------------------------------
    # Commission
    # ------------------------------------------------------------------

    def commission_rate_configs(self) -> List[CommissionRateConfig]:
        configs = []
        for raw in self._params["commission"]["rate_configs"]:
            utilization = raw.get("min_utilization_percentile")
            until = raw.get("effective_until")
            configs.append(CommissionRateConfig(
                tier=CommissionTier(raw["tier"]),
                rate_percentage=Decimal(str(raw["rate_percentage"])),
                min_performance_score=float(raw["min_performance_score"]),
                min_tenure_months=int(raw["min_tenure_months"]),
                min_payment_consistency=float(raw["min_payment_consistency"]),
                min_utilization_percentile=(
                    float(utilization) if utilization is not None else None
                ),
                effective_from=date.fromisoformat(raw["effective_from"]),
                effective_until=date.fromisoformat(until) if until else None,
                is_active=bool(raw.get("is_active", True)),
            ))
        return configs

    def active_rate_config(
        self, tier: CommissionTier, on: date,
    ) -> Optional[CommissionRateConfig]:
        """The config in force for a tier on a date: latest effective_from wins."""
        candidates = [
            c for c in self.commission_rate_configs()
            if c.tier == tier and c.is_effective(on)
        ]
        if not candidates:
            return None
        return max(candidates, key=lambda c: c.effective_from)

    def minimum_commission_amount(self) -> Decimal:
        return Decimal(str(self._params["commission"]["minimum_commission_amount"]))

    def commission_params(self) -> Dict[str, Decimal]:
        """Minimum commission and the rounding quantum for money."""
        return {
            "minimum_commission_amount": self.minimum_commission_amount(),
            "rounding_quantum": Decimal(
                str(self._params["commission"].get("rounding_quantum", "0.01"))
            ),
        }

    # ------------------------------------------------------------------
    # Finance
    # ------------------------------------------------------------------

    def boundary_fee_params(self) -> Dict[str, Any]:
        boundary = self._params["finance"]["boundary_fee"]
        bands = sorted(
            (
                (float(band["min_score"]), Decimal(str(band["adjustment"])))
                for band in boundary["performance_adjustment_bands"]
            ),
            key=lambda band: band[0],
            reverse=True,
        )
        return {
            "default_revenue_share_percentage": Decimal(
                str(boundary["default_revenue_share_percentage"])
            ),
            "performance_adjustment_bands": bands,
        }

    def withholding_tax_rates(self) -> Dict[OperatorType, Decimal]:
        return {
            OperatorType(kind): Decimal(str(rate))
            for kind, rate in self._params["finance"]["withholding_tax_percentage"].items()
        }

    def payout_params(self) -> Dict[str, int]:
        payout = self._params["finance"]["payout"]
        return {
            "max_concurrent_executions": int(payout["max_concurrent_executions"]),
            "batch_scoring_workers": self.batch_scoring_workers(),
        }

    def large_transaction_threshold(self) -> Decimal:
        return Decimal(
            str(self._params["finance"]["compliance"]["large_transaction_threshold"])
        )

    def compliance_params(self) -> Dict[str, Decimal]:
        return {"large_transaction_threshold": self.large_transaction_threshold()}

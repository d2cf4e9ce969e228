"""Commission tier qualification."""

from operator_finance.tiers.evaluator import TierEvaluator, is_demotion, tenure_months

__all__ = ["TierEvaluator", "is_demotion", "tenure_months"]

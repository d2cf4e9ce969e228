"""Performance scoring: period parsing, validation, calculation, adjustments."""

from operator_finance.scoring.adjustments import (
    ScoreAdjustment,
    StaticAdjustment,
    apply_adjustments,
)
from operator_finance.scoring.calculator import ScoreCalculator, normalize
from operator_finance.scoring.periods import period_bounds, period_for
from operator_finance.scoring.validator import MetricValidator, in_bounds

__all__ = [
    "MetricValidator",
    "ScoreAdjustment",
    "ScoreCalculator",
    "StaticAdjustment",
    "apply_adjustments",
    "in_bounds",
    "normalize",
    "period_bounds",
    "period_for",
]

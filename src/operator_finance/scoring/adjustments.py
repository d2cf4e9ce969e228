"""Post-calculation score adjustments.

Regional and seasonal corrections are policy decisions owned by the
caller. This module defines the hook they plug into and applies it:
every adjustment returns a delta, deltas are summed onto the base total,
and the result is clamped back into [0, 100]. The base total and each
applied delta are kept on the score for audit.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, replace
from typing import Any, Callable, Mapping, Optional, Protocol, Sequence, runtime_checkable

from operator_finance.models.performance import AppliedAdjustment, PerformanceScore

logger = logging.getLogger(__name__)


@runtime_checkable
class ScoreAdjustment(Protocol):
    """A named correction applied after the base score is computed."""

    name: str

    def adjust(self, score: PerformanceScore, context: Mapping[str, Any]) -> float:
        """Return the delta to add to score.total_score (0 for no change)."""
        ...


@dataclass(frozen=True)
class StaticAdjustment:
    """Fixed delta, optionally gated by a predicate on the score and context.

    Usage:
        rainy_season = StaticAdjustment(
            "rainy_season", 2.0,
            predicate=lambda score, ctx: ctx.get("season") == "rainy",
        )
    """
    name: str
    delta: float
    predicate: Optional[Callable[[PerformanceScore, Mapping[str, Any]], bool]] = None

    def adjust(self, score: PerformanceScore, context: Mapping[str, Any]) -> float:
        if self.predicate is not None and not self.predicate(score, context):
            return 0.0
        return self.delta


def apply_adjustments(
    score: PerformanceScore,
    adjustments: Sequence[ScoreAdjustment],
    context: Optional[Mapping[str, Any]] = None,
) -> PerformanceScore:
    """Apply adjustments in order and return the adjusted score.

    Zero deltas are not recorded. The base total is preserved in
    base_total_score; the adjusted total is clamped to [0, 100].
    """
    if not adjustments:
        return score
    context = context or {}
    base = score.base_total_score if score.base_total_score is not None else score.total_score

    applied = []
    for adjustment in adjustments:
        delta = float(adjustment.adjust(score, context))
        if delta:
            applied.append(AppliedAdjustment(adjustment.name, round(delta, 2)))

    if not applied:
        return score

    total = base + sum(a.delta for a in applied)
    total = round(max(0.0, min(100.0, total)), 2)
    logger.debug(
        "Adjusted score for %s %s: %.2f -> %.2f (%s)",
        score.operator_id, score.period, base, total,
        ", ".join(a.name for a in applied),
    )
    return replace(
        score,
        total_score=total,
        base_total_score=base,
        adjustments=tuple(applied),
    )

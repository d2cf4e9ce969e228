"""Metric validator — range checks before scoring.

A metric set must carry exactly the configured metrics. Any missing,
unknown or out-of-range value fails validation; nothing is defaulted
or clamped. The caller must not score a set that failed validation.
"""

from __future__ import annotations

import math
from decimal import Decimal
from numbers import Real
from typing import Mapping

from operator_finance.errors import InvalidMetricsError
from operator_finance.models.performance import MetricDefinition, MetricSet
from operator_finance.policy.resolver import PolicyResolver


def in_bounds(definition: MetricDefinition, value: object) -> bool:
    """Whether a raw value is a finite number inside the metric's declared range."""
    if isinstance(value, bool) or not isinstance(value, (Real, Decimal)):
        return False
    number = float(value)
    if math.isnan(number) or math.isinf(number):
        return False
    return 0.0 <= number <= definition.scale.upper_bound


class MetricValidator:
    """Validates raw metric values against their declared ranges.

    Usage:
        validator = MetricValidator(resolver)
        validator.validate(metric_set)          # raises InvalidMetricsError
        ok = validator.is_valid({"daily_vehicle_utilization": 0.8})  # False
    """

    def __init__(self, resolver: PolicyResolver) -> None:
        self._definitions = {d.name: d for d in resolver.metric_definitions()}

    @property
    def required_metrics(self) -> frozenset[str]:
        return frozenset(self._definitions)

    def errors(self, values: Mapping[str, object]) -> InvalidMetricsError | None:
        """Return the validation error for a set of values, or None if valid."""
        missing = [name for name in self._definitions if name not in values]
        unknown = [name for name in values if name not in self._definitions]
        out_of_range = [
            name for name, definition in self._definitions.items()
            if name in values and not in_bounds(definition, values[name])
        ]
        if missing or unknown or out_of_range:
            return InvalidMetricsError(missing, out_of_range, unknown)
        return None

    def validate(self, metric_set: MetricSet) -> None:
        """Raise InvalidMetricsError naming every offending field."""
        error = self.errors(metric_set.values)
        if error is not None:
            raise error

    def is_valid(self, values: Mapping[str, object]) -> bool:
        return self.errors(values) is None

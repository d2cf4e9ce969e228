"""Scoring period parsing.

Period formats by frequency:
    monthly  YYYY-MM       e.g. 2024-01
    weekly   YYYY-Www      ISO week, e.g. 2024-W03
    daily    YYYY-MM-DD    e.g. 2024-01-15
"""

from __future__ import annotations

import calendar
import re
from datetime import date, timedelta

from operator_finance.errors import InvalidPeriodError
from operator_finance.models.performance import ScoringFrequency

_MONTHLY = re.compile(r"^(\d{4})-(\d{2})$")
_WEEKLY = re.compile(r"^(\d{4})-W(\d{2})$")
_DAILY = re.compile(r"^(\d{4})-(\d{2})-(\d{2})$")


def period_bounds(period: str, frequency: ScoringFrequency) -> tuple[date, date]:
    """Return the inclusive (start, end) dates of a period.

    Raises InvalidPeriodError if the period does not match the frequency's
    format or names a date that does not exist.
    """
    if frequency == ScoringFrequency.MONTHLY:
        match = _MONTHLY.match(period)
        if not match:
            raise InvalidPeriodError(f"Expected YYYY-MM for monthly period, got {period!r}")
        year, month = int(match.group(1)), int(match.group(2))
        if not 1 <= month <= 12:
            raise InvalidPeriodError(f"Invalid month in period {period!r}")
        last_day = calendar.monthrange(year, month)[1]
        return date(year, month, 1), date(year, month, last_day)

    if frequency == ScoringFrequency.WEEKLY:
        match = _WEEKLY.match(period)
        if not match:
            raise InvalidPeriodError(f"Expected YYYY-Www for weekly period, got {period!r}")
        year, week = int(match.group(1)), int(match.group(2))
        try:
            start = date.fromisocalendar(year, week, 1)
        except ValueError as exc:
            raise InvalidPeriodError(f"Invalid ISO week in period {period!r}") from exc
        return start, start + timedelta(days=6)

    match = _DAILY.match(period)
    if not match:
        raise InvalidPeriodError(f"Expected YYYY-MM-DD for daily period, got {period!r}")
    try:
        day = date(int(match.group(1)), int(match.group(2)), int(match.group(3)))
    except ValueError as exc:
        raise InvalidPeriodError(f"Invalid date in period {period!r}") from exc
    return day, day


def period_for(frequency: ScoringFrequency, on: date) -> str:
    """Format the period of the given frequency that contains a date."""
    if frequency == ScoringFrequency.MONTHLY:
        return f"{on.year:04d}-{on.month:02d}"
    if frequency == ScoringFrequency.WEEKLY:
        iso_year, iso_week, _ = on.isocalendar()
        return f"{iso_year:04d}-W{iso_week:02d}"
    return on.isoformat()

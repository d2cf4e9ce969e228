"""Tests for metric validation and score calculation — proves score bounds hold."""

import pytest
from datetime import date, datetime, timezone
from pathlib import Path

from operator_finance.errors import InvalidMetricsError, InvalidPeriodError
from operator_finance.models.performance import (
    CommissionTier,
    MetricCategory,
    MetricSet,
    ScoringFrequency,
)
from operator_finance.policy.resolver import PolicyResolver
from operator_finance.scoring.adjustments import StaticAdjustment, apply_adjustments
from operator_finance.scoring.calculator import ScoreCalculator
from operator_finance.scoring.periods import period_bounds, period_for
from operator_finance.scoring.validator import MetricValidator


CONFIG_DIR = Path(__file__).resolve().parents[1] / "config"


@pytest.fixture
def resolver() -> PolicyResolver:
    return PolicyResolver.from_config_dir(CONFIG_DIR)


@pytest.fixture
def calculator(resolver: PolicyResolver) -> ScoreCalculator:
    return ScoreCalculator(resolver)


@pytest.fixture
def validator(resolver: PolicyResolver) -> MetricValidator:
    return MetricValidator(resolver)


def _now() -> datetime:
    return datetime(2024, 2, 1, 9, 0, 0, tzinfo=timezone.utc)


def _perfect_values() -> dict:
    return {
        "daily_vehicle_utilization": 1.0,
        "peak_hour_availability": 1.0,
        "fleet_efficiency_ratio": 1.0,
        "driver_retention_rate": 1.0,
        "driver_performance_avg": 1.0,
        "training_completion_rate": 1.0,
        "safety_incident_rate": 0.0,
        "regulatory_compliance": 1.0,
        "vehicle_maintenance_score": 1.0,
        "customer_satisfaction": 5.0,
        "service_area_coverage": 1.0,
        "technology_adoption": 1.0,
    }


def _worst_values() -> dict:
    values = {name: 0.0 for name in _perfect_values()}
    values["safety_incident_rate"] = 1.0
    return values


def _typical_values() -> dict:
    return {
        "daily_vehicle_utilization": 0.85,
        "peak_hour_availability": 0.90,
        "fleet_efficiency_ratio": 0.80,
        "driver_retention_rate": 0.88,
        "driver_performance_avg": 0.92,
        "training_completion_rate": 0.95,
        "safety_incident_rate": 0.02,
        "regulatory_compliance": 0.98,
        "vehicle_maintenance_score": 0.90,
        "customer_satisfaction": 4.6,
        "service_area_coverage": 0.75,
        "technology_adoption": 0.85,
    }


def _metric_set(values: dict, period: str = "2024-01") -> MetricSet:
    return MetricSet("OP-001", period, ScoringFrequency.MONTHLY, values)


class TestValidation:
    def test_complete_set_is_valid(self, validator: MetricValidator) -> None:
        assert validator.is_valid(_typical_values())
        validator.validate(_metric_set(_typical_values()))

    def test_twelve_required_metrics(self, validator: MetricValidator) -> None:
        assert len(validator.required_metrics) == 12

    def test_missing_metric_named(self, validator: MetricValidator) -> None:
        values = _typical_values()
        del values["technology_adoption"]
        with pytest.raises(InvalidMetricsError) as exc_info:
            validator.validate(_metric_set(values))
        assert exc_info.value.missing == ["technology_adoption"]
        assert exc_info.value.out_of_range == []

    def test_out_of_range_fraction(self, validator: MetricValidator) -> None:
        values = _typical_values()
        values["daily_vehicle_utilization"] = 1.2
        with pytest.raises(InvalidMetricsError) as exc_info:
            validator.validate(_metric_set(values))
        assert "daily_vehicle_utilization" in exc_info.value.out_of_range

    def test_rating_above_five_rejected(self, validator: MetricValidator) -> None:
        values = _typical_values()
        values["customer_satisfaction"] = 5.5
        assert not validator.is_valid(values)

    def test_rating_of_five_accepted(self, validator: MetricValidator) -> None:
        values = _typical_values()
        values["customer_satisfaction"] = 5
        assert validator.is_valid(values)

    def test_negative_rate_rejected(self, validator: MetricValidator) -> None:
        values = _typical_values()
        values["safety_incident_rate"] = -0.01
        assert not validator.is_valid(values)

    def test_non_numeric_values_rejected(self, validator: MetricValidator) -> None:
        for bad in (float("nan"), float("inf"), True, "0.5", None):
            values = _typical_values()
            values["regulatory_compliance"] = bad
            assert not validator.is_valid(values), bad

    def test_unknown_metric_rejected(self, validator: MetricValidator) -> None:
        values = _typical_values()
        values["surge_multiplier"] = 0.5
        with pytest.raises(InvalidMetricsError) as exc_info:
            validator.validate(_metric_set(values))
        assert exc_info.value.unknown == ["surge_multiplier"]

    def test_every_offending_field_reported(self, validator: MetricValidator) -> None:
        values = _typical_values()
        del values["driver_retention_rate"]
        values["fleet_efficiency_ratio"] = 2.0
        error = validator.errors(values)
        assert error is not None
        assert set(error.fields) == {"driver_retention_rate", "fleet_efficiency_ratio"}

    def test_is_valid_never_raises(self, validator: MetricValidator) -> None:
        assert validator.is_valid({}) is False


class TestCalculation:
    def test_perfect_metrics_score_100(self, calculator: ScoreCalculator) -> None:
        score = calculator.calculate(_metric_set(_perfect_values()), now=_now())
        assert score.total_score == 100.0
        assert score.vehicle_utilization_score == 30.0
        assert score.driver_management_score == 25.0
        assert score.compliance_safety_score == 25.0
        assert score.platform_contribution_score == 20.0

    def test_worst_metrics_score_zero(self, calculator: ScoreCalculator) -> None:
        score = calculator.calculate(_metric_set(_worst_values()), now=_now())
        assert score.total_score == 0.0
        assert all(v == 0.0 for v in score.category_scores.values())

    def test_typical_metrics_within_bounds(self, calculator: ScoreCalculator) -> None:
        score = calculator.calculate(_metric_set(_typical_values()), now=_now())
        assert 0.0 <= score.total_score <= 100.0
        caps = {
            MetricCategory.VEHICLE_UTILIZATION: 30.0,
            MetricCategory.DRIVER_MANAGEMENT: 25.0,
            MetricCategory.COMPLIANCE_SAFETY: 25.0,
            MetricCategory.PLATFORM_CONTRIBUTION: 20.0,
        }
        for category, value in score.category_scores.items():
            assert 0.0 <= value <= caps[category]

    def test_total_is_sum_of_categories(self, calculator: ScoreCalculator) -> None:
        score = calculator.calculate(_metric_set(_typical_values()), now=_now())
        assert score.total_score == pytest.approx(sum(score.category_scores.values()), abs=0.01)

    def test_vehicle_category_value(self, calculator: ScoreCalculator) -> None:
        score = calculator.calculate(_metric_set(_typical_values()), now=_now())
        # 30 × (0.85 + 0.90 + 0.80) / 3
        assert score.vehicle_utilization_score == pytest.approx(25.5)

    def test_safety_rate_is_inverted(self, calculator: ScoreCalculator) -> None:
        low = _perfect_values()
        high = _perfect_values()
        high["safety_incident_rate"] = 0.5
        low_score = calculator.calculate(_metric_set(low), now=_now())
        high_score = calculator.calculate(_metric_set(high), now=_now())
        assert high_score.compliance_safety_score < low_score.compliance_safety_score

    def test_rating_normalized_by_five(self, calculator: ScoreCalculator) -> None:
        values = _perfect_values()
        values["customer_satisfaction"] = 2.5
        score = calculator.calculate(_metric_set(values), now=_now())
        # 20/3 × 0.5 lost
        assert score.platform_contribution_score == pytest.approx(16.67, abs=0.01)

    def test_invalid_metrics_never_scored(self, calculator: ScoreCalculator) -> None:
        values = _typical_values()
        values["peak_hour_availability"] = 1.5
        with pytest.raises(InvalidMetricsError):
            calculator.calculate(_metric_set(values), now=_now())

    def test_deterministic(self, calculator: ScoreCalculator) -> None:
        first = calculator.calculate(_metric_set(_typical_values()), now=_now())
        second = calculator.calculate(_metric_set(_typical_values()), now=_now())
        assert first == second

    def test_snapshot_recorded(self, calculator: ScoreCalculator) -> None:
        score = calculator.calculate(_metric_set(_typical_values()), now=_now())
        assert score.metric_snapshot["customer_satisfaction"] == 4.6
        assert score.calculated_at == _now()
        assert score.is_final is False

    def test_scores_rounded_to_two_places(self, calculator: ScoreCalculator) -> None:
        values = _perfect_values()
        values["customer_satisfaction"] = 4.1
        score = calculator.calculate(_metric_set(values), now=_now())
        assert score.total_score == round(score.total_score, 2)

    def test_category_score_partial_data(self, calculator: ScoreCalculator) -> None:
        partial = {"daily_vehicle_utilization": 0.9}
        assert calculator.category_score(
            MetricCategory.VEHICLE_UTILIZATION, partial,
        ) == pytest.approx(9.0)
        assert calculator.category_score(MetricCategory.DRIVER_MANAGEMENT, partial) == 0.0


class TestBaseTier:
    @pytest.mark.parametrize("score,tier", [
        (100.0, CommissionTier.TIER_3),
        (90.0, CommissionTier.TIER_3),
        (89.99, CommissionTier.TIER_2),
        (80.0, CommissionTier.TIER_2),
        (79.99, CommissionTier.TIER_1),
        (0.0, CommissionTier.TIER_1),
    ])
    def test_cutoffs(self, calculator: ScoreCalculator, score: float, tier: CommissionTier) -> None:
        assert calculator.base_tier(score) == tier

    def test_score_carries_base_tier(self, calculator: ScoreCalculator) -> None:
        score = calculator.calculate(_metric_set(_perfect_values()), now=_now())
        assert score.tier == CommissionTier.TIER_3


class TestAdjustments:
    def test_adjustment_applied_and_recorded(self, calculator: ScoreCalculator) -> None:
        score = calculator.calculate(_metric_set(_typical_values()), now=_now())
        adjusted = apply_adjustments(score, [StaticAdjustment("regional", -3.0)])
        assert adjusted.total_score == pytest.approx(score.total_score - 3.0, abs=0.01)
        assert adjusted.base_total_score == score.total_score
        assert [a.name for a in adjusted.adjustments] == ["regional"]

    def test_adjusted_total_clamped(self, calculator: ScoreCalculator) -> None:
        perfect = calculator.calculate(_metric_set(_perfect_values()), now=_now())
        worst = calculator.calculate(_metric_set(_worst_values()), now=_now())
        assert apply_adjustments(perfect, [StaticAdjustment("bonus", 10.0)]).total_score == 100.0
        assert apply_adjustments(worst, [StaticAdjustment("malus", -10.0)]).total_score == 0.0

    def test_predicate_gates_adjustment(self, calculator: ScoreCalculator) -> None:
        score = calculator.calculate(_metric_set(_typical_values()), now=_now())
        rainy = StaticAdjustment(
            "rainy_season", 2.0,
            predicate=lambda s, ctx: ctx.get("season") == "rainy",
        )
        assert apply_adjustments(score, [rainy], {"season": "dry"}) == score
        adjusted = apply_adjustments(score, [rainy], {"season": "rainy"})
        assert adjusted.total_score == pytest.approx(score.total_score + 2.0, abs=0.01)

    def test_no_adjustments_is_identity(self, calculator: ScoreCalculator) -> None:
        score = calculator.calculate(_metric_set(_typical_values()), now=_now())
        assert apply_adjustments(score, []) is score


class TestPeriods:
    def test_monthly(self) -> None:
        assert period_bounds("2024-01", ScoringFrequency.MONTHLY) == (
            date(2024, 1, 1), date(2024, 1, 31),
        )

    def test_leap_february(self) -> None:
        _, end = period_bounds("2024-02", ScoringFrequency.MONTHLY)
        assert end == date(2024, 2, 29)

    def test_weekly_iso(self) -> None:
        assert period_bounds("2024-W03", ScoringFrequency.WEEKLY) == (
            date(2024, 1, 15), date(2024, 1, 21),
        )

    def test_week_53_only_in_long_years(self) -> None:
        period_bounds("2020-W53", ScoringFrequency.WEEKLY)
        with pytest.raises(InvalidPeriodError):
            period_bounds("2021-W53", ScoringFrequency.WEEKLY)

    def test_daily(self) -> None:
        assert period_bounds("2024-01-15", ScoringFrequency.DAILY) == (
            date(2024, 1, 15), date(2024, 1, 15),
        )

    @pytest.mark.parametrize("period,frequency", [
        ("2024-13", ScoringFrequency.MONTHLY),
        ("2024-1", ScoringFrequency.MONTHLY),
        ("2024-01", ScoringFrequency.WEEKLY),
        ("2024-W00", ScoringFrequency.WEEKLY),
        ("2024-02-30", ScoringFrequency.DAILY),
        ("January", ScoringFrequency.DAILY),
    ])
    def test_malformed(self, period: str, frequency: ScoringFrequency) -> None:
        with pytest.raises(InvalidPeriodError):
            period_bounds(period, frequency)

    def test_period_for(self) -> None:
        day = date(2024, 1, 15)
        assert period_for(ScoringFrequency.MONTHLY, day) == "2024-01"
        assert period_for(ScoringFrequency.WEEKLY, day) == "2024-W03"
        assert period_for(ScoringFrequency.DAILY, day) == "2024-01-15"

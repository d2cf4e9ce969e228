"""Tests for OperatorFinanceService — proves the facade orchestrates correctly."""

import logging
import pytest
from datetime import date, datetime, timezone
from decimal import Decimal
from pathlib import Path

from operator_finance.compensation.payment_rail import (
    InMemoryDestination,
    PaymentDestinationRegistry,
)
from operator_finance.errors import (
    InvalidBoundaryFeeDataError,
    InvalidMetricsError,
    InvalidPeriodError,
    InvalidStateError,
    OperatorNotEligibleError,
)
from operator_finance.models.finance import (
    OperatorProfile,
    OperatorType,
    PayoutState,
    TransactionType,
)
from operator_finance.models.performance import (
    CommissionTier,
    MetricSet,
    QualificationStatus,
    ScoringFrequency,
    TierFacts,
    ViolationRecord,
)
from operator_finance.persistence.ledger_store import LedgerStore
from operator_finance.compensation.ledger import TransactionLedger
from operator_finance.policy.resolver import PolicyResolver
from operator_finance.scoring.adjustments import StaticAdjustment
from operator_finance.service import OperatorFinanceService


CONFIG_DIR = Path(__file__).resolve().parents[1] / "config"

NOW = datetime(2024, 2, 1, 12, 0, 0, tzinfo=timezone.utc)
FEB_START = datetime(2024, 2, 1, tzinfo=timezone.utc)
FEB_END = datetime(2024, 2, 29, 23, 59, 59, tzinfo=timezone.utc)


@pytest.fixture
def resolver() -> PolicyResolver:
    return PolicyResolver.from_config_dir(CONFIG_DIR)


@pytest.fixture
def gcash() -> InMemoryDestination:
    return InMemoryDestination("gcash")


@pytest.fixture
def service(resolver: PolicyResolver, gcash: InMemoryDestination) -> OperatorFinanceService:
    svc = OperatorFinanceService(
        resolver,
        registry=PaymentDestinationRegistry([gcash]),
        clock=lambda: NOW,
    )
    svc.register_operator(_profile())
    return svc


def _profile(
    operator_id: str = "OP-001",
    tier: CommissionTier = CommissionTier.TIER_1,
) -> OperatorProfile:
    return OperatorProfile(
        operator_id=operator_id,
        operator_type=OperatorType.TNVS,
        region="NCR",
        partnership_start_date=date(2022, 6, 1),
        commission_tier=tier,
    )


def _values() -> dict:
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


def _good_facts() -> TierFacts:
    return TierFacts(payment_consistency=0.95, utilization_percentile=0.85)


class TestOperators:
    def test_unknown_operator_rejected(self, service: OperatorFinanceService) -> None:
        with pytest.raises(OperatorNotEligibleError):
            service.get_operator("OP-404")
        with pytest.raises(OperatorNotEligibleError):
            service.record_booking_completion("OP-404", "BK-1", Decimal("500.00"))

    def test_register_refreshes_record(self, service: OperatorFinanceService) -> None:
        service.register_operator(_profile(tier=CommissionTier.TIER_2))
        assert service.get_operator("OP-001").commission_tier == CommissionTier.TIER_2


class TestScoring:
    def test_submit_without_facts_uses_base_tier(self, service: OperatorFinanceService) -> None:
        score = service.submit_metrics("OP-001", "2024-01", ScoringFrequency.MONTHLY, _values())
        assert score.total_score == pytest.approx(89.05, abs=0.01)
        assert score.tier == CommissionTier.TIER_2
        assert score.qualification_status == QualificationStatus.UNDER_REVIEW
        assert score.calculated_at == NOW
        assert service.current_score("OP-001") == score

    def test_submit_with_facts_evaluates_tier(self, service: OperatorFinanceService) -> None:
        score = service.submit_metrics(
            "OP-001", "2024-01", ScoringFrequency.MONTHLY, _values(), facts=_good_facts(),
        )
        assert score.tier == CommissionTier.TIER_2
        assert score.qualification_status == QualificationStatus.QUALIFIED
        qualification = service.current_qualification("OP-001")
        # Tenure derived from the 2022-06-01 partnership start
        assert qualification.current_tenure == 20

    def test_adjustment_lifts_tier(self, resolver: PolicyResolver) -> None:
        service = OperatorFinanceService(
            resolver,
            adjustments=[StaticAdjustment(
                "rainy_season", 2.0,
                predicate=lambda score, ctx: ctx.get("season") == "rainy",
            )],
            clock=lambda: NOW,
        )
        service.register_operator(_profile())
        score = service.submit_metrics(
            "OP-001", "2024-01", ScoringFrequency.MONTHLY, _values(),
            facts=_good_facts(), context={"season": "rainy"},
        )
        assert score.total_score == pytest.approx(91.05, abs=0.01)
        assert score.base_total_score == pytest.approx(89.05, abs=0.01)
        assert score.tier == CommissionTier.TIER_3

    def test_invalid_metrics_not_stored(self, service: OperatorFinanceService) -> None:
        values = _values()
        values["customer_satisfaction"] = 7.0
        with pytest.raises(InvalidMetricsError):
            service.submit_metrics("OP-001", "2024-01", ScoringFrequency.MONTHLY, values)
        assert service.current_score("OP-001") is None

    def test_invalid_period_rejected(self, service: OperatorFinanceService) -> None:
        with pytest.raises(InvalidPeriodError):
            service.submit_metrics("OP-001", "2024-13", ScoringFrequency.MONTHLY, _values())

    def test_resubmission_replaces_until_final(self, service: OperatorFinanceService) -> None:
        service.submit_metrics("OP-001", "2024-01", ScoringFrequency.MONTHLY, _values())
        values = _values()
        values["technology_adoption"] = 0.10
        lower = service.submit_metrics("OP-001", "2024-01", ScoringFrequency.MONTHLY, values)
        assert service.current_score("OP-001") == lower
        assert len(service.performance_history("OP-001")) == 1

        final = service.finalize_score("OP-001", "2024-01", ScoringFrequency.MONTHLY)
        assert final.is_final
        with pytest.raises(InvalidStateError):
            service.submit_metrics("OP-001", "2024-01", ScoringFrequency.MONTHLY, _values())
        assert service.current_score("OP-001").total_score == lower.total_score

    def test_rejected_final_resubmission_keeps_qualification(
        self, service: OperatorFinanceService,
    ) -> None:
        service.submit_metrics(
            "OP-001", "2024-01", ScoringFrequency.MONTHLY, _values(), facts=_good_facts(),
        )
        before = service.current_qualification("OP-001")
        service.finalize_score("OP-001", "2024-01", ScoringFrequency.MONTHLY)

        weak = TierFacts(payment_consistency=0.50, utilization_percentile=0.10)
        with pytest.raises(InvalidStateError):
            service.submit_metrics(
                "OP-001", "2024-01", ScoringFrequency.MONTHLY, _values(), facts=weak,
            )
        assert service.current_qualification("OP-001") is before
        assert before.status == QualificationStatus.QUALIFIED

    def test_finalize_unknown_score(self, service: OperatorFinanceService) -> None:
        with pytest.raises(KeyError):
            service.finalize_score("OP-001", "2024-01", ScoringFrequency.MONTHLY)

    def test_history_most_recent_first(self, service: OperatorFinanceService) -> None:
        for period in ("2023-11", "2023-12", "2024-01"):
            service.submit_metrics("OP-001", period, ScoringFrequency.MONTHLY, _values())
        history = service.performance_history("OP-001", limit=2)
        assert [s.period for s in history] == ["2024-01", "2023-12"]

    def test_batch_isolates_failures(self, service: OperatorFinanceService) -> None:
        service.register_operator(_profile("OP-002"))
        bad = _values()
        del bad["fleet_efficiency_ratio"]
        result = service.score_operators_batch([
            MetricSet("OP-001", "2024-01", ScoringFrequency.MONTHLY, _values()),
            MetricSet("OP-002", "2024-01", ScoringFrequency.MONTHLY, bad),
            MetricSet("OP-404", "2024-01", ScoringFrequency.MONTHLY, _values()),
        ])
        assert not result.success
        assert [s.operator_id for s in result.scores] == ["OP-001"]
        assert set(result.errors) == {"OP-002:2024-01", "OP-404:2024-01"}
        assert "fleet_efficiency_ratio" in result.errors["OP-002:2024-01"]


class TestTiers:
    def test_evaluate_without_score_rejected(self, service: OperatorFinanceService) -> None:
        with pytest.raises(InvalidStateError):
            service.evaluate_tier("OP-001", _good_facts())

    def test_apply_promotes(self, service: OperatorFinanceService) -> None:
        service.submit_metrics("OP-001", "2024-01", ScoringFrequency.MONTHLY, _values())
        qualification = service.evaluate_tier("OP-001", _good_facts())
        assert qualification.status == QualificationStatus.QUALIFIED
        profile = service.apply_tier("OP-001")
        assert profile.commission_tier == CommissionTier.TIER_2
        assert service.get_operator("OP-001").commission_tier == CommissionTier.TIER_2

    def test_demotion_logged(
        self, service: OperatorFinanceService, caplog: pytest.LogCaptureFixture,
    ) -> None:
        service.register_operator(_profile(tier=CommissionTier.TIER_3))
        facts = TierFacts(
            payment_consistency=0.95,
            utilization_percentile=0.85,
            violations=(ViolationRecord(date(2024, 1, 20), "unregistered_vehicle"),),
        )
        qualification = service.evaluate_tier("OP-001", facts, total_score=95.0)
        assert qualification.status == QualificationStatus.PROBATIONARY

        with caplog.at_level(logging.WARNING, logger="operator_finance.service"):
            profile = service.apply_tier("OP-001", qualification)
        assert profile.commission_tier == CommissionTier.TIER_1
        assert "demoted from tier_3 to tier_1" in caplog.text

    def test_apply_without_qualification_rejected(
        self, service: OperatorFinanceService,
    ) -> None:
        with pytest.raises(InvalidStateError):
            service.apply_tier("OP-001")

    def test_commission_follows_applied_tier(self, service: OperatorFinanceService) -> None:
        service.submit_metrics(
            "OP-001", "2024-01", ScoringFrequency.MONTHLY, _values(), facts=_good_facts(),
        )
        service.apply_tier("OP-001")
        tx = service.record_booking_completion("OP-001", "BK-1", Decimal("500.00"))
        assert tx.amount == Decimal("10.00")
        assert tx.tier == CommissionTier.TIER_2


class TestEarningsAndPayouts:
    def test_full_flow(
        self, service: OperatorFinanceService, gcash: InMemoryDestination,
    ) -> None:
        service.register_operator(_profile(tier=CommissionTier.TIER_2))
        first = service.record_booking_completion("OP-001", "BK-1", Decimal("500.00"))
        again = service.record_booking_completion("OP-001", "BK-1", Decimal("500.00"))
        assert again.transaction_id == first.transaction_id

        service.record_incentive_bonus("OP-001", Decimal("800.00"), reference="PROMO-FEB")
        service.record_penalty("OP-001", Decimal("100.00"), reason="late remittance")
        assert service.wallet_balance("OP-001") == Decimal("710.00")

        payout = service.request_payout("OP-001", FEB_START, FEB_END, "gcash")
        # gross 810.00, tax 1.5% = 12.15
        assert payout.tax_withheld == Decimal("12.15")
        assert payout.payout_amount == Decimal("697.85")
        assert service.payout_status(payout.payout_id) == PayoutState.PENDING

        service.approve_payout(payout.payout_id, "finance_admin")
        result = service.process_payouts()
        assert result.completed == [payout.payout_id]
        assert service.payout_status(payout.payout_id) == PayoutState.COMPLETED
        assert service.wallet_balance("OP-001") == Decimal("12.15")
        assert gcash.executed == [payout.payout_id]
        assert service.payouts("OP-001", PayoutState.COMPLETED) == [payout]

    def test_penalty_stored_negative(self, service: OperatorFinanceService) -> None:
        tx = service.record_penalty("OP-001", Decimal("75.00"))
        assert tx.amount == Decimal("-75.00")
        assert tx.transaction_type == TransactionType.PENALTY_DEDUCTION

    def test_bonus_must_be_positive(self, service: OperatorFinanceService) -> None:
        with pytest.raises(ValueError):
            service.record_incentive_bonus("OP-001", Decimal("0"))

    def test_adjustment_signed(self, service: OperatorFinanceService) -> None:
        service.record_adjustment("OP-001", Decimal("-20.00"), reason="fare dispute")
        assert service.wallet_balance("OP-001") == Decimal("-20.00")
        with pytest.raises(ValueError):
            service.record_adjustment("OP-001", Decimal("0.00"))

    def test_duplicate_reference_returns_existing(self, service: OperatorFinanceService) -> None:
        first = service.record_incentive_bonus("OP-001", Decimal("50.00"), reference="PROMO-1")
        second = service.record_incentive_bonus("OP-001", Decimal("50.00"), reference="PROMO-1")
        assert second.transaction_id == first.transaction_id
        assert service.wallet_balance("OP-001") == Decimal("50.00")

    def test_large_transaction_flagged(
        self, service: OperatorFinanceService, caplog: pytest.LogCaptureFixture,
    ) -> None:
        with caplog.at_level(logging.WARNING, logger="operator_finance.service"):
            service.record_incentive_bonus("OP-001", Decimal("600000.00"))
        assert "exceeds large-transaction threshold" in caplog.text

    def test_boundary_fee_and_summary(self, service: OperatorFinanceService) -> None:
        service.record_booking_completion("OP-001", "BK-1", Decimal("1000.00"))
        fee = service.submit_boundary_fee(
            "OP-001", "DRV-001", "2024-02-01",
            {"base_fee": "1000.00", "fuel_subsidy": "200.00", "maintenance_allowance": "150.00"},
            driver_score=95.0,
        )
        assert fee.total_amount == Decimal("1400.00")
        assert service.boundary_fees("OP-001") == [fee]

        summary = service.financial_summary("OP-001", FEB_START, FEB_END)
        assert summary.total_commissions_earned == Decimal("10.00")
        assert summary.total_boundary_fees_collected == Decimal("1400.00")
        assert summary.net_revenue == Decimal("1410.00")
        assert summary.transaction_count == 2

    def test_transaction_history_by_type(self, service: OperatorFinanceService) -> None:
        service.record_booking_completion("OP-001", "BK-1", Decimal("1000.00"))
        service.record_penalty("OP-001", Decimal("5.00"))
        commissions = service.transaction_history(
            "OP-001", types=[TransactionType.COMMISSION_EARNED],
        )
        assert [tx.booking_id for tx in commissions] == ["BK-1"]


class TestPersistence:
    def test_durable_ledger_survives_restart(
        self, resolver: PolicyResolver, tmp_path: Path,
    ) -> None:
        path = tmp_path / "ledger.jsonl"
        service = OperatorFinanceService(
            resolver, ledger=TransactionLedger(store=LedgerStore(path)), clock=lambda: NOW,
        )
        service.register_operator(_profile(tier=CommissionTier.TIER_2))
        service.record_booking_completion("OP-001", "BK-1", Decimal("500.00"))

        restarted = OperatorFinanceService(
            resolver, ledger=TransactionLedger(store=LedgerStore(path)), clock=lambda: NOW,
        )
        restarted.register_operator(_profile(tier=CommissionTier.TIER_2))
        assert restarted.wallet_balance("OP-001") == Decimal("10.00")
        replay = restarted.record_booking_completion("OP-001", "BK-1", Decimal("500.00"))
        assert restarted.ledger.count == 1
        assert replay.amount == Decimal("10.00")

    def test_boundary_fee_not_recredited_after_restart(
        self, resolver: PolicyResolver, tmp_path: Path,
    ) -> None:
        path = tmp_path / "ledger.jsonl"
        service = OperatorFinanceService(
            resolver, ledger=TransactionLedger(store=LedgerStore(path)), clock=lambda: NOW,
        )
        service.register_operator(_profile())
        service.submit_boundary_fee("OP-001", "DRV-001", "2024-01-31", {"base_fee": "1000"})

        restarted = OperatorFinanceService(
            resolver, ledger=TransactionLedger(store=LedgerStore(path)), clock=lambda: NOW,
        )
        restarted.register_operator(_profile())
        with pytest.raises(InvalidBoundaryFeeDataError):
            restarted.submit_boundary_fee(
                "OP-001", "DRV-001", "2024-01-31", {"base_fee": "1000"},
            )
        assert restarted.wallet_balance("OP-001") == Decimal("1000.00")
        assert restarted.ledger.count == 1

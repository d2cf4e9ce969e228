"""Operator finance service — unified facade for the finance core.

This is the primary interface for programmatic access. It wires the
subsystems together around one injected resolver, ledger and clock:
- Performance scoring (validate, score, adjust, store per period)
- Tier qualification (evaluate, apply, demotion notices)
- Commission crediting for completed bookings
- Boundary fees, bonuses, penalties and adjustments
- Payout requests, approval and batch processing
- Read-side queries (history, balance, summaries)

Operator records are supplied by the registration collaborator through
register_operator(); the service never creates them on its own. Errors
are raised as the typed exceptions in operator_finance.errors.
"""

from __future__ import annotations

import logging
import threading
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from decimal import Decimal
from typing import Any, Callable, Dict, Iterable, List, Mapping, Optional, Sequence, Tuple

from operator_finance.compensation.boundary import BoundaryFeeProcessor
from operator_finance.compensation.commission import CommissionCalculator
from operator_finance.compensation.ledger import TransactionLedger, new_transaction_id
from operator_finance.compensation.payment_rail import PaymentDestinationRegistry
from operator_finance.compensation.payout import PayoutEngine
from operator_finance.compensation.reporting import exceeds_reporting_threshold, summarize
from operator_finance.compensation.tax import WithholdingTaxRule
from operator_finance.errors import (
    DuplicateTransactionError,
    InvalidStateError,
    OperatorFinanceError,
    OperatorNotEligibleError,
)
from operator_finance.models.finance import (
    ZERO,
    BoundaryFee,
    FinancialSummary,
    FinancialTransaction,
    OperatorProfile,
    Payout,
    PayoutBatchResult,
    PayoutState,
    TransactionType,
    to_money,
)
from operator_finance.models.performance import (
    CommissionTier,
    MetricSet,
    PerformanceScore,
    ScoringFrequency,
    TierFacts,
    TierInputs,
    TierQualification,
)
from operator_finance.policy.resolver import PolicyResolver
from operator_finance.scoring.adjustments import ScoreAdjustment, apply_adjustments
from operator_finance.scoring.calculator import ScoreCalculator
from operator_finance.scoring.periods import period_bounds
from operator_finance.tiers.evaluator import TierEvaluator, is_demotion, tenure_months

logger = logging.getLogger(__name__)

_ScoreKey = Tuple[str, str, ScoringFrequency]


@dataclass(frozen=True)
class BatchScoringResult:
    """Outcome of scoring many operators. Failures never abort the batch."""
    scores: List[PerformanceScore] = field(default_factory=list)
    errors: Dict[str, str] = field(default_factory=dict)

    @property
    def success(self) -> bool:
        return not self.errors


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


class OperatorFinanceService:
    """Finance core facade.

    Usage:
        resolver = PolicyResolver.from_config_dir(config_dir)
        service = OperatorFinanceService(resolver)
        service.register_operator(profile)

        score = service.submit_metrics("OP-001", "2024-01", ScoringFrequency.MONTHLY, values)
        tx = service.record_booking_completion("OP-001", "BK-1", Decimal("500.00"))
        payout = service.request_payout("OP-001", start, end, "gcash")

    Persistence (optional):
        ledger = TransactionLedger(store=LedgerStore(data_dir / "ledger.jsonl"))
        service = OperatorFinanceService(resolver, ledger=ledger)
    """

    def __init__(
        self,
        resolver: PolicyResolver,
        ledger: Optional[TransactionLedger] = None,
        registry: Optional[PaymentDestinationRegistry] = None,
        adjustments: Sequence[ScoreAdjustment] = (),
        clock: Callable[[], datetime] = _utc_now,
    ) -> None:
        self._resolver = resolver
        self._ledger = ledger if ledger is not None else TransactionLedger()
        self._registry = registry if registry is not None else PaymentDestinationRegistry()
        self._adjustments = tuple(adjustments)
        self._clock = clock

        self._calculator = ScoreCalculator(resolver)
        self._evaluator = TierEvaluator(resolver)
        self._commission = CommissionCalculator(resolver, self._ledger)
        self._boundary = BoundaryFeeProcessor(resolver, self._ledger)
        self._tax_rule = WithholdingTaxRule(resolver)
        self._payouts = PayoutEngine(resolver, self._ledger, self._registry, self._tax_rule)
        self._batch_workers = resolver.batch_scoring_workers()
        self._large_threshold = resolver.large_transaction_threshold()

        self._lock = threading.Lock()
        self._operators: Dict[str, OperatorProfile] = {}
        self._scores: Dict[_ScoreKey, PerformanceScore] = {}
        self._history: Dict[str, List[_ScoreKey]] = {}
        self._qualifications: Dict[str, TierQualification] = {}

    @property
    def ledger(self) -> TransactionLedger:
        return self._ledger

    @property
    def registry(self) -> PaymentDestinationRegistry:
        return self._registry

    # ------------------------------------------------------------------
    # Operators
    # ------------------------------------------------------------------

    def register_operator(self, profile: OperatorProfile) -> OperatorProfile:
        """Register or refresh an operator record."""
        with self._lock:
            self._operators[profile.operator_id] = profile
        logger.info(
            "Registered operator %s (%s, %s)",
            profile.operator_id, profile.operator_type.value, profile.region,
        )
        return profile

    def get_operator(self, operator_id: str) -> OperatorProfile:
        """Raises OperatorNotEligibleError for an unknown operator."""
        with self._lock:
            profile = self._operators.get(operator_id)
        if profile is None:
            raise OperatorNotEligibleError(f"Unknown operator: {operator_id}")
        return profile

    # ------------------------------------------------------------------
    # Performance scoring
    # ------------------------------------------------------------------

    def submit_metrics(
        self,
        operator_id: str,
        period: str,
        frequency: ScoringFrequency,
        values: Mapping[str, float],
        facts: Optional[TierFacts] = None,
        context: Optional[Mapping[str, Any]] = None,
    ) -> PerformanceScore:
        """Validate, score and store one period's metrics.

        With facts, the tier is evaluated and the score carries the
        effective tier and qualification status. Without them, the score
        carries its base tier and status under_review.

        Raises:
            OperatorNotEligibleError: unknown operator.
            InvalidPeriodError: malformed period for the frequency.
            InvalidMetricsError: missing or out-of-range metrics.
            InvalidStateError: a final score already exists for the period.
        """
        profile = self.get_operator(operator_id)
        period_bounds(period, frequency)
        now = self._clock()
        metric_set = MetricSet(operator_id, period, frequency, dict(values))

        score = self._calculator.calculate(metric_set, now=now)
        score = apply_adjustments(score, self._adjustments, context)

        qualification = None
        if facts is not None:
            qualification = self._evaluate(profile, score.total_score, facts)
            score = replace(
                score,
                tier=qualification.effective_tier,
                qualification_status=qualification.status,
            )
        else:
            score = replace(score, tier=self._calculator.base_tier(score.total_score))

        self._store_score(score, qualification)
        logger.info(
            "Scored %s for %s %s: %.2f (%s, %s)",
            operator_id, frequency.value, period, score.total_score,
            score.tier.value, score.qualification_status.value,
        )
        return score

    def finalize_score(
        self,
        operator_id: str,
        period: str,
        frequency: ScoringFrequency,
    ) -> PerformanceScore:
        """Mark a stored score final. Final scores are never replaced."""
        key = (operator_id, period, frequency)
        with self._lock:
            score = self._scores.get(key)
            if score is None:
                raise KeyError(f"No score for {operator_id} {frequency.value} {period}")
            if not score.is_final:
                score = score.finalize()
                self._scores[key] = score
        return score

    def score_operators_batch(
        self,
        metric_sets: Iterable[MetricSet],
        facts: Optional[Mapping[str, TierFacts]] = None,
    ) -> BatchScoringResult:
        """Score many operators concurrently on a bounded pool.

        Each submission succeeds or fails on its own; failures are
        collected by "operator_id:period".
        """
        submissions = list(metric_sets)
        if not submissions:
            return BatchScoringResult()
        facts = facts or {}

        def _score(metric_set: MetricSet) -> PerformanceScore:
            return self.submit_metrics(
                metric_set.operator_id, metric_set.period, metric_set.frequency,
                metric_set.values, facts.get(metric_set.operator_id),
            )

        workers = max(1, min(self._batch_workers, len(submissions)))
        scores: List[PerformanceScore] = []
        errors: Dict[str, str] = {}
        with ThreadPoolExecutor(max_workers=workers) as pool:
            futures = [(m, pool.submit(_score, m)) for m in submissions]
            for metric_set, future in futures:
                try:
                    scores.append(future.result())
                except (OperatorFinanceError, KeyError) as exc:
                    errors[f"{metric_set.operator_id}:{metric_set.period}"] = str(exc)
                    logger.warning(
                        "Batch scoring failed for %s %s: %s",
                        metric_set.operator_id, metric_set.period, exc,
                    )
        return BatchScoringResult(scores=scores, errors=errors)

    def current_score(self, operator_id: str) -> Optional[PerformanceScore]:
        history = self.performance_history(operator_id, limit=1)
        return history[0] if history else None

    def performance_history(self, operator_id: str, limit: int = 12) -> List[PerformanceScore]:
        """Most recently submitted scores first."""
        with self._lock:
            keys = list(reversed(self._history.get(operator_id, [])))
            return [self._scores[k] for k in keys[:limit]]

    # ------------------------------------------------------------------
    # Tier qualification
    # ------------------------------------------------------------------

    def evaluate_tier(
        self,
        operator_id: str,
        facts: TierFacts,
        total_score: Optional[float] = None,
    ) -> TierQualification:
        """Evaluate the operator's tier from the latest score (or a given one).

        Raises InvalidStateError if no score is given and none is stored.
        """
        profile = self.get_operator(operator_id)
        if total_score is None:
            current = self.current_score(operator_id)
            if current is None:
                raise InvalidStateError(f"No performance score for {operator_id}")
            total_score = current.total_score
        qualification = self._evaluate(profile, total_score, facts)
        with self._lock:
            self._qualifications[operator_id] = qualification
        return qualification

    def apply_tier(
        self,
        operator_id: str,
        qualification: Optional[TierQualification] = None,
    ) -> OperatorProfile:
        """Set the operator's commission tier to the qualification's effective tier."""
        profile = self.get_operator(operator_id)
        if qualification is None:
            qualification = self.current_qualification(operator_id)
            if qualification is None:
                raise InvalidStateError(f"No tier qualification for {operator_id}")
        previous = profile.commission_tier or CommissionTier.TIER_1
        if is_demotion(previous, qualification):
            logger.warning(
                "Operator %s demoted from %s to %s (%s)",
                operator_id, previous.value, qualification.effective_tier.value,
                qualification.status.value,
            )
        updated = replace(profile, commission_tier=qualification.effective_tier)
        with self._lock:
            self._operators[operator_id] = updated
        return updated

    def current_qualification(self, operator_id: str) -> Optional[TierQualification]:
        with self._lock:
            return self._qualifications.get(operator_id)

    # ------------------------------------------------------------------
    # Earnings
    # ------------------------------------------------------------------

    def record_booking_completion(
        self,
        operator_id: str,
        booking_id: str,
        base_fare: Decimal,
        bonus_percentage: Optional[Decimal] = None,
    ) -> FinancialTransaction:
        """Credit the commission for a completed booking (idempotent on booking id)."""
        profile = self.get_operator(operator_id)
        tx = self._commission.credit_booking(
            profile, booking_id, base_fare, bonus_percentage, now=self._clock(),
        )
        self._flag_large(tx)
        return tx

    def submit_boundary_fee(
        self,
        operator_id: str,
        driver_id: str,
        fee_date: Any,
        fields: Mapping[str, Any],
        driver_score: Optional[float] = None,
    ) -> BoundaryFee:
        self.get_operator(operator_id)
        return self._boundary.process(
            operator_id, driver_id, fee_date, fields,
            driver_score=driver_score, now=self._clock(),
        )

    def record_incentive_bonus(
        self,
        operator_id: str,
        amount: Decimal,
        reference: Optional[str] = None,
        description: str = "",
    ) -> FinancialTransaction:
        amount = to_money(amount)
        if amount <= ZERO:
            raise ValueError("Incentive bonus must be positive")
        return self._record(
            operator_id, TransactionType.INCENTIVE_BONUS, amount, reference, description,
        )

    def record_penalty(
        self,
        operator_id: str,
        amount: Decimal,
        reference: Optional[str] = None,
        reason: str = "",
    ) -> FinancialTransaction:
        """Record a penalty. Stored as a negative amount."""
        amount = to_money(amount)
        if amount == ZERO:
            raise ValueError("Penalty must not be zero")
        return self._record(
            operator_id, TransactionType.PENALTY_DEDUCTION, -abs(amount), reference, reason,
        )

    def record_adjustment(
        self,
        operator_id: str,
        amount: Decimal,
        reference: Optional[str] = None,
        reason: str = "",
    ) -> FinancialTransaction:
        """Record a signed manual adjustment."""
        amount = to_money(amount)
        if amount == ZERO:
            raise ValueError("Adjustment must not be zero")
        return self._record(operator_id, TransactionType.ADJUSTMENT, amount, reference, reason)

    # ------------------------------------------------------------------
    # Payouts
    # ------------------------------------------------------------------

    def request_payout(
        self,
        operator_id: str,
        period_start: datetime,
        period_end: datetime,
        payment_method: str,
        destination_details: Optional[Mapping[str, str]] = None,
        other_deductions: Decimal = ZERO,
    ) -> Payout:
        profile = self.get_operator(operator_id)
        return self._payouts.request_payout(
            profile, period_start, period_end, payment_method,
            destination_details, other_deductions, now=self._clock(),
        )

    def approve_payout(self, payout_id: str, approver: str) -> Payout:
        return self._payouts.approve_payout(payout_id, approver, now=self._clock())

    def process_payouts(self) -> PayoutBatchResult:
        return self._payouts.process_payouts(now=self._clock())

    def get_payout(self, payout_id: str) -> Optional[Payout]:
        return self._payouts.get_payout(payout_id)

    def payout_status(self, payout_id: str) -> Optional[PayoutState]:
        payout = self._payouts.get_payout(payout_id)
        return payout.state if payout is not None else None

    def payouts(
        self,
        operator_id: str,
        state: Optional[PayoutState] = None,
    ) -> List[Payout]:
        return self._payouts.payouts_for(operator_id, state)

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def wallet_balance(self, operator_id: str) -> Decimal:
        return self._ledger.balance(operator_id)

    def transaction_history(
        self,
        operator_id: str,
        start: Optional[datetime] = None,
        end: Optional[datetime] = None,
        types: Optional[Iterable[TransactionType]] = None,
    ) -> List[FinancialTransaction]:
        return self._ledger.transactions(operator_id, start, end, types)

    def boundary_fees(self, operator_id: str) -> List[BoundaryFee]:
        return self._boundary.fees(operator_id)

    def financial_summary(
        self,
        operator_id: str,
        period_start: datetime,
        period_end: datetime,
    ) -> FinancialSummary:
        return summarize(
            self._ledger, operator_id, period_start, period_end,
            boundary_fees=self._boundary.fees(operator_id),
        )

    # ------------------------------------------------------------------
    # Internal
    # ------------------------------------------------------------------

    def _evaluate(
        self,
        profile: OperatorProfile,
        total_score: float,
        facts: TierFacts,
    ) -> TierQualification:
        today = self._clock().date()
        tenure = facts.tenure_months
        if tenure is None:
            tenure = tenure_months(profile.partnership_start_date, today)
        return self._evaluator.evaluate(profile.operator_id, TierInputs(
            total_score=total_score,
            tenure_months=tenure,
            payment_consistency=facts.payment_consistency,
            utilization_percentile=facts.utilization_percentile,
            evaluation_date=today,
            violations=tuple(facts.violations),
        ))

    def _store_score(
        self,
        score: PerformanceScore,
        qualification: Optional[TierQualification] = None,
    ) -> None:
        """Store a score and its qualification together, or neither."""
        key = score.key
        with self._lock:
            existing = self._scores.get(key)
            if existing is not None and existing.is_final:
                raise InvalidStateError(
                    f"Score for {score.operator_id} {score.frequency.value} "
                    f"{score.period} is final"
                )
            self._scores[key] = score
            if qualification is not None:
                self._qualifications[score.operator_id] = qualification
            history = self._history.setdefault(score.operator_id, [])
            if key in history:
                history.remove(key)
            history.append(key)

    def _record(
        self,
        operator_id: str,
        transaction_type: TransactionType,
        amount: Decimal,
        reference: Optional[str],
        description: str,
    ) -> FinancialTransaction:
        self.get_operator(operator_id)
        tx = FinancialTransaction(
            transaction_id=new_transaction_id(),
            operator_id=operator_id,
            transaction_type=transaction_type,
            amount=amount,
            transaction_date=self._clock(),
            idempotency_key=reference,
            description=description,
        )
        try:
            self._ledger.append(tx)
        except DuplicateTransactionError as exc:
            logger.warning(
                "Duplicate %s for %s with reference %s",
                transaction_type.value, operator_id, reference,
            )
            return exc.existing
        logger.info("Recorded %s %s for %s", transaction_type.value, amount, operator_id)
        self._flag_large(tx)
        return tx

    def _flag_large(self, tx: FinancialTransaction) -> None:
        if exceeds_reporting_threshold(tx, self._large_threshold):
            logger.warning(
                "Transaction %s for %s exceeds large-transaction threshold: %s",
                tx.transaction_id, tx.operator_id, tx.amount,
            )

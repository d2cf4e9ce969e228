"""Payout engine — aggregation, approval and batch execution of payouts.

A payout withdraws an operator's earnings for a period:

    gross          = commissions + bonuses + adjustments
    tax_withheld   = withholding(gross, operator_type)
    payout_amount  = gross - penalties - tax_withheld - other_deductions

State machine:
    PENDING → APPROVED      (approve_payout)
    APPROVED → PROCESSING   (picked up by process_payouts)
    PROCESSING → COMPLETED  (transfer succeeded, ledger debited)
    PROCESSING → FAILED     (transfer rejected; terminal)

The wallet is debited exactly once, when the payout completes, by a
payout transaction of -payout_amount keyed by the payout id. The
balance is re-checked under the operator lock at that point.
"""

from __future__ import annotations

import logging
from concurrent.futures import ThreadPoolExecutor
from datetime import datetime, timezone
from decimal import Decimal
from typing import Dict, Iterator, List, Mapping, Optional, Tuple
from uuid import uuid4

from operator_finance.compensation.ledger import TransactionLedger, new_transaction_id
from operator_finance.compensation.payment_rail import PaymentDestinationRegistry
from operator_finance.compensation.tax import WithholdingTaxRule
from operator_finance.errors import (
    InsufficientBalanceError,
    InvalidPeriodError,
    InvalidStateError,
    OperatorFinanceError,
    PayoutExecutionError,
)
from operator_finance.models.finance import (
    ZERO,
    FinancialTransaction,
    OperatorProfile,
    Payout,
    PayoutBatchResult,
    PayoutState,
    TransactionStatus,
    TransactionType,
    to_money,
)
from operator_finance.policy.resolver import PolicyResolver

logger = logging.getLogger(__name__)

_OPEN_STATES = frozenset({PayoutState.PENDING, PayoutState.APPROVED, PayoutState.PROCESSING})


class PayoutEngine:
    """Creates, approves and executes operator payouts.

    Usage:
        engine = PayoutEngine(resolver, ledger, registry)
        payout = engine.request_payout(operator, start, end, "gcash")
        engine.approve_payout(payout.payout_id, "finance_admin")
        result = engine.process_payouts()
    """

    def __init__(
        self,
        resolver: PolicyResolver,
        ledger: TransactionLedger,
        registry: PaymentDestinationRegistry,
        tax_rule: Optional[WithholdingTaxRule] = None,
    ) -> None:
        self._ledger = ledger
        self._registry = registry
        self._tax_rule = tax_rule if tax_rule is not None else WithholdingTaxRule(resolver)
        self._max_workers = resolver.payout_params()["max_concurrent_executions"]
        self._payouts: Dict[str, Payout] = {}

    def aggregate(
        self,
        operator_id: str,
        period_start: datetime,
        period_end: datetime,
    ) -> Tuple[Decimal, Decimal, Decimal, Decimal]:
        """Sum (commissions, bonuses, adjustments, penalties) over a period.

        Penalties are returned as a positive amount to deduct.
        """
        totals = {
            TransactionType.COMMISSION_EARNED: ZERO,
            TransactionType.INCENTIVE_BONUS: ZERO,
            TransactionType.ADJUSTMENT: ZERO,
            TransactionType.PENALTY_DEDUCTION: ZERO,
        }
        for tx in self._ledger.transactions(
            operator_id, period_start, period_end, types=totals.keys(),
        ):
            if tx.status == TransactionStatus.REVERSED:
                continue
            totals[tx.transaction_type] += tx.amount
        return (
            totals[TransactionType.COMMISSION_EARNED],
            totals[TransactionType.INCENTIVE_BONUS],
            totals[TransactionType.ADJUSTMENT],
            abs(totals[TransactionType.PENALTY_DEDUCTION]),
        )

    def request_payout(
        self,
        operator: OperatorProfile,
        period_start: datetime,
        period_end: datetime,
        payment_method: str,
        destination_details: Optional[Mapping[str, str]] = None,
        other_deductions: Decimal = ZERO,
        now: Optional[datetime] = None,
    ) -> Payout:
        """Create a PENDING payout for an operator's period earnings.

        Raises:
            InvalidPeriodError: if period_start is after period_end.
            ValueError: for an unregistered payment method or negative
                other_deductions.
            InvalidStateError: if the period overlaps a payout that has not
                failed, whether still open or already completed.
            InsufficientBalanceError: if the payout amount is not positive
                or exceeds the balance not already reserved by open payouts.
        """
        if period_start > period_end:
            raise InvalidPeriodError(
                f"Payout period starts after it ends: {period_start} > {period_end}"
            )
        if not self._registry.supports(payment_method):
            raise ValueError(f"Unsupported payment method: {payment_method}")
        other_deductions = to_money(other_deductions)
        if other_deductions < ZERO:
            raise ValueError("other_deductions must not be negative")
        if now is None:
            now = datetime.now(timezone.utc)

        operator_id = operator.operator_id
        with self._ledger.operator_lock(operator_id):
            for payout_id, start, end in self._claimed_periods(operator_id):
                if start <= period_end and period_start <= end:
                    raise InvalidStateError(
                        f"Payout {payout_id} already covers {start} to {end}"
                    )

            commissions, bonuses, adjustments, penalties = self.aggregate(
                operator_id, period_start, period_end,
            )
            gross = commissions + bonuses + adjustments
            tax = self._tax_rule.compute(gross, operator.operator_type)
            amount = to_money(gross - penalties - tax - other_deductions)

            available = self._available(operator_id)
            if amount <= ZERO or amount > available:
                raise InsufficientBalanceError(amount, available)

            payout = Payout(
                payout_id=f"payout_{uuid4().hex[:12]}",
                operator_id=operator_id,
                period_start=period_start,
                period_end=period_end,
                commissions_amount=to_money(commissions),
                bonuses_amount=to_money(bonuses),
                adjustments_amount=to_money(adjustments),
                penalties_deducted=to_money(penalties),
                tax_withheld=tax,
                other_deductions=other_deductions,
                payout_amount=amount,
                payment_method=payment_method,
                destination_details=dict(destination_details or {}),
                requested_utc=now,
            )
            self._payouts[payout.payout_id] = payout

        logger.info(
            "Payout %s requested for %s: %s via %s",
            payout.payout_id, operator_id, amount, payment_method,
        )
        return payout

    def approve_payout(
        self,
        payout_id: str,
        approver: str,
        now: Optional[datetime] = None,
    ) -> Payout:
        """Approve a pending payout.

        Transitions: PENDING → APPROVED. Any other state raises
        InvalidStateError.
        """
        payout = self._get(payout_id)
        if now is None:
            now = datetime.now(timezone.utc)
        with self._ledger.operator_lock(payout.operator_id):
            payout.transition_to(PayoutState.APPROVED)
            payout.approved_utc = now
            payout.approved_by = approver
        logger.info("Payout %s approved by %s", payout_id, approver)
        return payout

    def process_payouts(self, now: Optional[datetime] = None) -> PayoutBatchResult:
        """Execute every approved payout on a bounded worker pool.

        Each payout succeeds or fails on its own; one rejected transfer
        never affects the others in the batch.
        """
        if now is None:
            now = datetime.now(timezone.utc)

        batch: List[Payout] = []
        skipped: List[str] = []
        for payout in list(self._payouts.values()):
            if payout.state == PayoutState.PENDING:
                skipped.append(payout.payout_id)
                continue
            if payout.state != PayoutState.APPROVED:
                continue
            with self._ledger.operator_lock(payout.operator_id):
                if payout.state == PayoutState.APPROVED:
                    payout.transition_to(PayoutState.PROCESSING)
                    payout.processing_utc = now
                    batch.append(payout)

        if not batch:
            return PayoutBatchResult(skipped=skipped)

        workers = max(1, min(self._max_workers, len(batch)))
        with ThreadPoolExecutor(max_workers=workers) as pool:
            outcomes = list(pool.map(lambda p: self._execute(p, now), batch))

        completed = [p.payout_id for p, ok in zip(batch, outcomes) if ok]
        failed = [p.payout_id for p, ok in zip(batch, outcomes) if not ok]
        reasons = {
            p.payout_id: p.failure_reason or ""
            for p in batch if p.state == PayoutState.FAILED
        }
        logger.info(
            "Payout batch processed: %d completed, %d failed", len(completed), len(failed),
        )
        return PayoutBatchResult(
            completed=completed, failed=failed, skipped=skipped, failure_reasons=reasons,
        )

    def get_payout(self, payout_id: str) -> Optional[Payout]:
        return self._payouts.get(payout_id)

    def payouts_for(
        self,
        operator_id: str,
        state: Optional[PayoutState] = None,
    ) -> List[Payout]:
        """Payouts of one operator in request order, optionally by state."""
        return [
            p for p in self._payouts.values()
            if p.operator_id == operator_id and (state is None or p.state == state)
        ]

    # ------------------------------------------------------------------
    # Internal
    # ------------------------------------------------------------------

    def _get(self, payout_id: str) -> Payout:
        payout = self._payouts.get(payout_id)
        if payout is None:
            raise KeyError(f"Payout not found: {payout_id}")
        return payout

    def _claimed_periods(self, operator_id: str) -> Iterator[Tuple[str, datetime, datetime]]:
        """Periods held by non-failed payouts, including completed debits in the ledger."""
        seen = set()
        for payout in self.payouts_for(operator_id):
            if payout.state != PayoutState.FAILED:
                seen.add(payout.payout_id)
                yield payout.payout_id, payout.period_start, payout.period_end
        for tx in self._ledger.transactions(operator_id, types=[TransactionType.PAYOUT]):
            details = tx.calculation_details
            if tx.idempotency_key in seen or "period_start" not in details:
                continue
            yield (
                tx.idempotency_key or tx.transaction_id,
                datetime.fromisoformat(details["period_start"]),
                datetime.fromisoformat(details["period_end"]),
            )

    def _available(self, operator_id: str) -> Decimal:
        reserved = sum(
            (p.payout_amount for p in self.payouts_for(operator_id) if p.state in _OPEN_STATES),
            ZERO,
        )
        return self._ledger.balance(operator_id) - reserved

    def _execute(self, payout: Payout, now: datetime) -> bool:
        with self._ledger.operator_lock(payout.operator_id):
            try:
                balance = self._ledger.balance(payout.operator_id)
                if payout.payout_amount > balance:
                    raise InsufficientBalanceError(payout.payout_amount, balance)
                destination = self._registry.get(payout.payment_method)
                try:
                    reference = destination.execute(payout)
                except OperatorFinanceError:
                    raise
                except Exception as exc:
                    raise PayoutExecutionError(
                        f"Transfer via {payout.payment_method} errored: {exc!r}"
                    ) from exc
                self._ledger.append(FinancialTransaction(
                    transaction_id=new_transaction_id(),
                    operator_id=payout.operator_id,
                    transaction_type=TransactionType.PAYOUT,
                    amount=-payout.payout_amount,
                    transaction_date=now,
                    idempotency_key=payout.payout_id,
                    calculation_details={
                        "transfer_reference": reference,
                        "period_start": payout.period_start.isoformat(),
                        "period_end": payout.period_end.isoformat(),
                    },
                    description=f"Payout {payout.payout_id} via {payout.payment_method}",
                ))
            except OperatorFinanceError as exc:
                payout.transition_to(PayoutState.FAILED)
                payout.failed_utc = now
                payout.failure_reason = str(exc)
                logger.warning("Payout %s failed: %s", payout.payout_id, exc)
                return False

            payout.transition_to(PayoutState.COMPLETED)
            payout.completed_utc = now
            payout.transfer_reference = reference
        logger.info(
            "Payout %s completed: %s debited from %s",
            payout.payout_id, payout.payout_amount, payout.operator_id,
        )
        return True

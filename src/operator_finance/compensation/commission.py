"""Commission calculator — tier rate applied to a completed booking's fare.

    rate       = active config rate for the operator's tier
    commission = fare × rate / 100 + fare × bonus / 100
    commission = max(round_half_up(commission, 2), minimum_commission)

The base and bonus parts are summed before rounding, so a booking is
rounded once. Crediting is idempotent on booking id: the ledger holds
at most one commission_earned transaction per (operator, booking).
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import date, datetime, timezone
from decimal import Decimal
from typing import Optional

from operator_finance.compensation.ledger import TransactionLedger, new_transaction_id
from operator_finance.errors import DuplicateTransactionError, OperatorNotEligibleError
from operator_finance.models.finance import (
    ZERO,
    FinancialTransaction,
    OperatorProfile,
    TransactionType,
    to_money,
)
from operator_finance.models.performance import CommissionTier
from operator_finance.policy.resolver import PolicyResolver

logger = logging.getLogger(__name__)

_HUNDRED = Decimal("100")


@dataclass(frozen=True)
class CommissionQuote:
    """Breakdown of one commission computation."""
    tier: CommissionTier
    base_fare: Decimal
    rate_percentage: Decimal
    bonus_percentage: Decimal
    base_commission: Decimal
    bonus_amount: Decimal
    commission_amount: Decimal
    minimum_applied: bool

    def details(self) -> dict:
        return {
            "base_fare": str(self.base_fare),
            "rate_percentage": str(self.rate_percentage),
            "bonus_percentage": str(self.bonus_percentage),
            "base_commission": str(self.base_commission),
            "bonus_amount": str(self.bonus_amount),
            "minimum_applied": self.minimum_applied,
        }


class CommissionCalculator:
    """Computes and credits booking commissions.

    Usage:
        calculator = CommissionCalculator(resolver, ledger)
        quote = calculator.calculate(CommissionTier.TIER_2, Decimal("500.00"))
        quote.commission_amount   # Decimal("10.00")

        tx = calculator.credit_booking(operator, "BK-001", Decimal("500.00"))
    """

    def __init__(
        self,
        resolver: PolicyResolver,
        ledger: Optional[TransactionLedger] = None,
    ) -> None:
        self._resolver = resolver
        self._ledger = ledger if ledger is not None else TransactionLedger()

    def calculate(
        self,
        tier: CommissionTier,
        fare: Decimal,
        bonus_percentage: Optional[Decimal] = None,
        on: Optional[date] = None,
    ) -> CommissionQuote:
        """Quote the commission for a fare at a tier.

        Args:
            tier: The operator's commission tier.
            fare: Base fare of the completed booking. Must be positive.
            bonus_percentage: Extra percentage on top of the tier rate.
            on: Date whose rate config applies (defaults to today, UTC).

        Raises:
            ValueError: if the fare is not positive or the bonus negative.
            OperatorNotEligibleError: if the tier has no active config.
        """
        fare = Decimal(str(fare))
        if fare <= ZERO:
            raise ValueError(f"Fare must be positive, got {fare}")
        bonus = Decimal(str(bonus_percentage)) if bonus_percentage is not None else ZERO
        if bonus < ZERO:
            raise ValueError(f"Bonus percentage must not be negative, got {bonus}")
        if on is None:
            on = datetime.now(timezone.utc).date()

        config = self._resolver.active_rate_config(tier, on)
        if config is None:
            raise OperatorNotEligibleError(
                f"No active rate config for {tier.value} on {on.isoformat()}"
            )

        base_raw = fare * config.rate_percentage / _HUNDRED
        bonus_raw = fare * bonus / _HUNDRED
        amount = to_money(base_raw + bonus_raw)
        minimum = self._resolver.minimum_commission_amount()
        minimum_applied = amount < minimum
        if minimum_applied:
            amount = to_money(minimum)

        return CommissionQuote(
            tier=tier,
            base_fare=fare,
            rate_percentage=config.rate_percentage,
            bonus_percentage=bonus,
            base_commission=to_money(base_raw),
            bonus_amount=to_money(bonus_raw),
            commission_amount=amount,
            minimum_applied=minimum_applied,
        )

    def credit_booking(
        self,
        operator: OperatorProfile,
        booking_id: str,
        fare: Decimal,
        bonus_percentage: Optional[Decimal] = None,
        now: Optional[datetime] = None,
    ) -> FinancialTransaction:
        """Credit the commission for a completed booking exactly once.

        A repeated booking id returns the transaction recorded the first
        time; nothing new is written.

        Raises:
            OperatorNotEligibleError: if the operator is deactivated or
                has no tier.
        """
        if not operator.is_active or operator.commission_tier is None:
            raise OperatorNotEligibleError(
                f"Operator {operator.operator_id} is not eligible for commission"
            )
        if now is None:
            now = datetime.now(timezone.utc)

        with self._ledger.operator_lock(operator.operator_id):
            existing = self._ledger.find_by_key(
                operator.operator_id, TransactionType.COMMISSION_EARNED, booking_id,
            )
            if existing is not None:
                self._log_duplicate(existing, fare)
                return existing

            quote = self.calculate(
                operator.commission_tier, fare, bonus_percentage, on=now.date(),
            )
            tx = FinancialTransaction(
                transaction_id=new_transaction_id(),
                operator_id=operator.operator_id,
                transaction_type=TransactionType.COMMISSION_EARNED,
                amount=quote.commission_amount,
                transaction_date=now,
                booking_id=booking_id,
                idempotency_key=booking_id,
                commission_rate=quote.rate_percentage,
                tier=quote.tier,
                calculation_details=quote.details(),
                description=f"Commission for booking {booking_id}",
            )
            try:
                self._ledger.append(tx)
            except DuplicateTransactionError as exc:
                self._log_duplicate(exc.existing, fare)
                return exc.existing

        logger.info(
            "Credited commission %s to %s for booking %s (%s @ %s%%)",
            quote.commission_amount, operator.operator_id, booking_id,
            quote.base_fare, quote.rate_percentage,
        )
        return tx

    @staticmethod
    def _log_duplicate(existing: FinancialTransaction, fare: Decimal) -> None:
        recorded_fare = existing.calculation_details.get("base_fare")
        if recorded_fare is not None and Decimal(str(recorded_fare)) != Decimal(str(fare)):
            logger.warning(
                "Booking %s already credited with fare %s; ignoring fare %s",
                existing.booking_id, recorded_fare, fare,
            )
        else:
            logger.warning("Booking %s already credited; returning prior transaction",
                           existing.booking_id)

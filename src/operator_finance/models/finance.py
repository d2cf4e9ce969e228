"""Finance models: rate configs, ledger transactions, boundary fees, payouts.

All monetary values use Decimal for exact arithmetic, in Philippine Peso,
quantized to two decimals. Percentages are whole-number percent: 2.0
means 2%.

Invariants enforced by these models:
- Financial transactions are append-only; only the reconciled flag changes
- One boundary fee per (operator, driver, date)
- Payout lifecycle is a strict state machine (no skipped states)
"""

from __future__ import annotations

import enum
from dataclasses import dataclass, field
from datetime import date, datetime
from decimal import Decimal, ROUND_HALF_UP
from typing import Any, Dict, List, Optional

from operator_finance.errors import InvalidStateError
from operator_finance.models.performance import CommissionTier

CURRENCY = "PHP"
CENTS = Decimal("0.01")
ZERO = Decimal("0.00")


def to_money(value: Any) -> Decimal:
    """Convert to a Decimal rounded half-up to centavos."""
    if not isinstance(value, Decimal):
        value = Decimal(str(value))
    return value.quantize(CENTS, rounding=ROUND_HALF_UP)


class OperatorType(str, enum.Enum):
    """Regulatory classification of an operator; keys the withholding rule."""
    TNVS = "tnvs"
    GENERAL = "general"
    FLEET = "fleet"


class TransactionType(str, enum.Enum):
    """Classification of ledger transactions."""
    COMMISSION_EARNED = "commission_earned"
    INCENTIVE_BONUS = "incentive_bonus"
    PENALTY_DEDUCTION = "penalty_deduction"
    BOUNDARY_FEE = "boundary_fee"
    ADJUSTMENT = "adjustment"
    PAYOUT = "payout"


class TransactionStatus(str, enum.Enum):
    COMPLETED = "completed"
    REVERSED = "reversed"


class BoundaryFeeModel(str, enum.Enum):
    """Which settlement model produced a boundary fee."""
    FIXED_FEE = "fixed_fee"
    REVENUE_SHARE = "revenue_share"


class PayoutState(str, enum.Enum):
    """Lifecycle state of a payout.

    State machine:
        PENDING → APPROVED → PROCESSING → COMPLETED
        PENDING → APPROVED → PROCESSING → FAILED
    """
    PENDING = "pending"
    APPROVED = "approved"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"


# Valid payout state transitions
PAYOUT_TRANSITIONS: Dict[PayoutState, frozenset] = {
    PayoutState.PENDING: frozenset({PayoutState.APPROVED}),
    PayoutState.APPROVED: frozenset({PayoutState.PROCESSING}),
    PayoutState.PROCESSING: frozenset({
        PayoutState.COMPLETED,
        PayoutState.FAILED,
    }),
    PayoutState.COMPLETED: frozenset(),
    PayoutState.FAILED: frozenset(),
}


@dataclass(frozen=True)
class CommissionRateConfig:
    """Rate and qualification requirements for one tier.

    Several configs may exist for a tier over time; only the active one
    effective on the evaluation date is used.
    """
    tier: CommissionTier
    rate_percentage: Decimal
    min_performance_score: float
    min_tenure_months: int
    min_payment_consistency: float
    min_utilization_percentile: Optional[float]
    effective_from: date
    effective_until: Optional[date] = None
    is_active: bool = True

    def is_effective(self, on: date) -> bool:
        if not self.is_active or self.effective_from > on:
            return False
        return self.effective_until is None or self.effective_until >= on


@dataclass(frozen=True)
class OperatorProfile:
    """Operator identity record supplied by the registration collaborator."""
    operator_id: str
    operator_type: OperatorType
    region: str
    partnership_start_date: date
    commission_tier: Optional[CommissionTier] = CommissionTier.TIER_1
    is_active: bool = True


@dataclass(frozen=True)
class FinancialTransaction:
    """A single ledger entry. Credits are positive, payout debits negative.

    idempotency_key is the natural key of the event that produced the
    transaction: the booking id for commissions, the fee id for boundary
    fees, the payout id for payout debits.
    """
    transaction_id: str
    operator_id: str
    transaction_type: TransactionType
    amount: Decimal
    transaction_date: datetime
    currency: str = CURRENCY
    booking_id: Optional[str] = None
    idempotency_key: Optional[str] = None
    commission_rate: Optional[Decimal] = None
    tier: Optional[CommissionTier] = None
    calculation_details: Dict[str, Any] = field(default_factory=dict)
    status: TransactionStatus = TransactionStatus.COMPLETED
    description: str = ""
    reconciled: bool = False


@dataclass(frozen=True)
class BoundaryFee:
    """A driver's daily settlement to the operator. Immutable once created."""
    fee_id: str
    operator_id: str
    driver_id: str
    fee_date: date
    model: BoundaryFeeModel
    base_fee: Decimal
    fuel_subsidy: Decimal
    maintenance_allowance: Decimal
    other_adjustments: Decimal
    performance_adjustment: Decimal
    driver_performance_score: Optional[float]
    revenue_share_percentage: Decimal
    revenue_share_amount: Decimal
    total_amount: Decimal
    trips_completed: int
    hours_worked: Decimal
    distance_km: Decimal
    driver_gross_earnings: Decimal
    created_utc: Optional[datetime] = None
    vehicle_plate_number: str = ""


@dataclass
class Payout:
    """An operator-initiated withdrawal of accumulated wallet balance.

    Mutable: state transitions happen during the payout lifecycle.
    All transitions are validated against the PAYOUT_TRANSITIONS map.
    """
    payout_id: str
    operator_id: str
    period_start: datetime
    period_end: datetime
    commissions_amount: Decimal
    bonuses_amount: Decimal
    adjustments_amount: Decimal
    penalties_deducted: Decimal
    tax_withheld: Decimal
    other_deductions: Decimal
    payout_amount: Decimal
    payment_method: str
    destination_details: Dict[str, str] = field(default_factory=dict)
    state: PayoutState = PayoutState.PENDING
    currency: str = CURRENCY
    requested_utc: Optional[datetime] = None
    approved_utc: Optional[datetime] = None
    approved_by: Optional[str] = None
    processing_utc: Optional[datetime] = None
    completed_utc: Optional[datetime] = None
    failed_utc: Optional[datetime] = None
    failure_reason: Optional[str] = None
    transfer_reference: Optional[str] = None

    def transition_to(self, new_state: PayoutState) -> None:
        """Transition to a new state, validating the transition is legal."""
        allowed = PAYOUT_TRANSITIONS.get(self.state, frozenset())
        if new_state not in allowed:
            raise InvalidStateError(
                f"Invalid payout transition for {self.payout_id}: "
                f"{self.state.value} → {new_state.value}. "
                f"Allowed: {', '.join(s.value for s in allowed) or 'none'}"
            )
        self.state = new_state


@dataclass(frozen=True)
class PayoutBatchResult:
    """Outcome of one processing batch. Failures are per payout.

    skipped lists payouts still awaiting approval when the batch ran.
    """
    completed: List[str] = field(default_factory=list)
    failed: List[str] = field(default_factory=list)
    skipped: List[str] = field(default_factory=list)
    failure_reasons: Dict[str, str] = field(default_factory=dict)

    @property
    def attempted(self) -> int:
        return len(self.completed) + len(self.failed)


@dataclass(frozen=True)
class FinancialSummary:
    """Period totals for one operator."""
    operator_id: str
    period_start: datetime
    period_end: datetime
    total_commissions_earned: Decimal
    total_incentive_bonuses: Decimal
    total_penalties_deducted: Decimal
    total_adjustments: Decimal
    total_boundary_fees_collected: Decimal
    total_payouts: Decimal
    net_revenue: Decimal
    transaction_count: int

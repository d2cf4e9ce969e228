"""Boundary fee processor — daily driver settlements to operators.

Two settlement models, selected by the submitted base fee:

Fixed fee (base_fee > 0):
    total = base_fee + fuel_subsidy + maintenance_allowance
            + other_adjustments + performance_adjustment

Revenue share (base_fee zero or absent):
    revenue_share_amount = driver_gross_earnings × share% / 100
    total = revenue_share_amount

The performance adjustment comes from the configured score bands
(>=90 +50, >=80 +25, >=70 0, >=60 -50, else -100); a driver with no
score gets no adjustment.

One fee per (operator, driver, date). The ledger entry is keyed on driver
and date, so a second submission is rejected even after a restart.
"""

from __future__ import annotations

import logging
import uuid
from datetime import date, datetime, timezone
from decimal import Decimal, InvalidOperation
from typing import Any, Dict, List, Mapping, Optional, Tuple

from operator_finance.compensation.ledger import TransactionLedger, new_transaction_id
from operator_finance.errors import DuplicateTransactionError, InvalidBoundaryFeeDataError
from operator_finance.models.finance import (
    ZERO,
    BoundaryFee,
    BoundaryFeeModel,
    FinancialTransaction,
    TransactionType,
    to_money,
)
from operator_finance.policy.resolver import PolicyResolver

logger = logging.getLogger(__name__)

# Amounts that must be >= 0 when present
_NON_NEGATIVE_AMOUNTS = (
    "base_fee",
    "fuel_subsidy",
    "maintenance_allowance",
    "hours_worked",
    "distance_covered_km",
    "driver_gross_earnings",
)


def fee_key(driver_id: str, day: date) -> str:
    """Ledger idempotency key for one driver's fee on one day."""
    return f"{driver_id}:{day.isoformat()}"


def _parse_date(value: Any) -> Optional[date]:
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    if isinstance(value, str):
        try:
            return date.fromisoformat(value)
        except ValueError:
            return None
    return None


def _parse_decimal(value: Any) -> Optional[Decimal]:
    if isinstance(value, bool):
        return None
    try:
        number = Decimal(str(value))
    except (InvalidOperation, ValueError):
        return None
    if not number.is_finite():
        return None
    return number


class BoundaryFeeProcessor:
    """Validates boundary-fee submissions and credits operators.

    Usage:
        processor = BoundaryFeeProcessor(resolver, ledger)
        fee = processor.process(
            "OP-001", "DRV-007", "2024-01-15",
            {"base_fee": "1000", "fuel_subsidy": "200",
             "maintenance_allowance": "150", "trips_completed": 18},
            driver_score=85.0,
        )
        fee.total_amount   # Decimal("1375.00")
    """

    def __init__(self, resolver: PolicyResolver, ledger: TransactionLedger) -> None:
        params = resolver.boundary_fee_params()
        self._bands: List[Tuple[float, Decimal]] = params["performance_adjustment_bands"]
        self._default_share = params["default_revenue_share_percentage"]
        self._ledger = ledger
        self._fees: Dict[Tuple[str, str, date], BoundaryFee] = {}

    def performance_adjustment(self, driver_score: Optional[float]) -> Decimal:
        """Band adjustment for a driver score; no score means no adjustment."""
        if driver_score is None:
            return ZERO
        for min_score, adjustment in self._bands:
            if driver_score >= min_score:
                return to_money(adjustment)
        return ZERO

    def process(
        self,
        operator_id: str,
        driver_id: str,
        fee_date: Any,
        submission: Mapping[str, Any],
        driver_score: Optional[float] = None,
        adjustment_override: Optional[Decimal] = None,
        now: Optional[datetime] = None,
    ) -> BoundaryFee:
        """Validate a submission, record the fee and credit the operator.

        Raises:
            InvalidBoundaryFeeDataError: on any invalid field, a negative
                total, or a second fee for the same driver and date.
        """
        if now is None:
            now = datetime.now(timezone.utc)

        day, values = self._validate(fee_date, submission)
        key = (operator_id, driver_id, day)

        base_fee = values["base_fee"]
        fuel = values["fuel_subsidy"]
        maintenance = values["maintenance_allowance"]
        other = values["other_adjustments"]
        gross = values["driver_gross_earnings"]

        if base_fee > ZERO:
            model = BoundaryFeeModel.FIXED_FEE
            if adjustment_override is not None:
                performance = to_money(adjustment_override)
            else:
                performance = self.performance_adjustment(driver_score)
            share_pct = ZERO
            share_amount = ZERO
            total = to_money(base_fee + fuel + maintenance + other + performance)
        else:
            model = BoundaryFeeModel.REVENUE_SHARE
            performance = ZERO
            share_pct = values["revenue_share_percentage"]
            share_amount = to_money(gross * share_pct / Decimal("100"))
            total = share_amount

        if total < ZERO:
            raise InvalidBoundaryFeeDataError(
                ["total_amount"], f"computed total {total} is negative",
            )

        fee = BoundaryFee(
            fee_id=f"bf_{uuid.uuid4().hex[:12]}",
            operator_id=operator_id,
            driver_id=driver_id,
            fee_date=day,
            model=model,
            base_fee=to_money(base_fee),
            fuel_subsidy=to_money(fuel),
            maintenance_allowance=to_money(maintenance),
            other_adjustments=to_money(other),
            performance_adjustment=performance,
            driver_performance_score=driver_score,
            revenue_share_percentage=share_pct,
            revenue_share_amount=share_amount,
            total_amount=total,
            trips_completed=values["trips_completed"],
            hours_worked=values["hours_worked"],
            distance_km=values["distance_covered_km"],
            driver_gross_earnings=to_money(gross),
            created_utc=now,
            vehicle_plate_number=str(submission.get("vehicle_plate_number", "")),
        )

        with self._ledger.operator_lock(operator_id):
            if key in self._fees:
                logger.warning(
                    "Rejected duplicate boundary fee for %s driver %s on %s",
                    operator_id, driver_id, day,
                )
                raise InvalidBoundaryFeeDataError(
                    ["driver_id", "fee_date"],
                    f"fee already recorded for driver {driver_id} on {day.isoformat()}",
                )
            try:
                self._ledger.append(FinancialTransaction(
                    transaction_id=new_transaction_id(),
                    operator_id=operator_id,
                    transaction_type=TransactionType.BOUNDARY_FEE,
                    amount=total,
                    transaction_date=now,
                    idempotency_key=fee_key(driver_id, day),
                    calculation_details={
                        "fee_id": fee.fee_id,
                        "model": model.value,
                        "driver_id": driver_id,
                        "fee_date": day.isoformat(),
                        "performance_adjustment": str(performance),
                    },
                    description=f"Boundary fee from {driver_id} for {day.isoformat()}",
                ))
            except DuplicateTransactionError as exc:
                logger.warning(
                    "Rejected boundary fee for %s driver %s on %s: already in ledger",
                    operator_id, driver_id, day,
                )
                raise InvalidBoundaryFeeDataError(
                    ["driver_id", "fee_date"],
                    f"fee already recorded for driver {driver_id} on {day.isoformat()}",
                ) from exc
            self._fees[key] = fee

        logger.info(
            "Recorded %s boundary fee %s for %s from %s on %s",
            model.value, total, operator_id, driver_id, day,
        )
        return fee

    def fees(
        self,
        operator_id: Optional[str] = None,
        start: Optional[date] = None,
        end: Optional[date] = None,
    ) -> List[BoundaryFee]:
        """Recorded fees, filtered by operator and inclusive date range."""
        return [
            fee for fee in self._fees.values()
            if (operator_id is None or fee.operator_id == operator_id)
            and (start is None or fee.fee_date >= start)
            and (end is None or fee.fee_date <= end)
        ]

    def _validate(
        self, fee_date: Any, submission: Mapping[str, Any],
    ) -> Tuple[date, Dict[str, Any]]:
        invalid: List[str] = []

        day = _parse_date(fee_date)
        if day is None:
            invalid.append("fee_date")

        values: Dict[str, Any] = {}
        for name in _NON_NEGATIVE_AMOUNTS:
            number = _parse_decimal(submission.get(name, 0))
            if number is None or number < ZERO:
                invalid.append(name)
            values[name] = number

        other = _parse_decimal(submission.get("other_adjustments", 0))
        if other is None:
            invalid.append("other_adjustments")
        values["other_adjustments"] = other

        trips = submission.get("trips_completed", 0)
        if isinstance(trips, bool) or not isinstance(trips, int) or trips < 0:
            invalid.append("trips_completed")
        values["trips_completed"] = trips

        share = submission.get("revenue_share_percentage")
        if share is None:
            values["revenue_share_percentage"] = self._default_share
        else:
            number = _parse_decimal(share)
            if number is None or not ZERO <= number <= Decimal("100"):
                invalid.append("revenue_share_percentage")
            values["revenue_share_percentage"] = number

        if invalid:
            raise InvalidBoundaryFeeDataError(invalid)
        return day, values

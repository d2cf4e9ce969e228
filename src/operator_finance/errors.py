"""Error taxonomy for the operator finance core.

Validation and state errors are raised before any mutation, so a caller
that catches one can assume nothing was written. Execution errors raised
while a payout batch runs are captured on the individual payout and never
propagate to sibling payouts.
"""

from __future__ import annotations

from decimal import Decimal
from typing import Any, Iterable, Optional


class OperatorFinanceError(Exception):
    """Base class for every error raised by this package."""


class InvalidMetricsError(OperatorFinanceError):
    """A metric set is incomplete or has values outside their bounds."""

    def __init__(
        self,
        missing: Iterable[str] = (),
        out_of_range: Iterable[str] = (),
        unknown: Iterable[str] = (),
    ) -> None:
        self.missing = sorted(missing)
        self.out_of_range = sorted(out_of_range)
        self.unknown = sorted(unknown)
        parts = []
        if self.missing:
            parts.append(f"missing: {', '.join(self.missing)}")
        if self.out_of_range:
            parts.append(f"out of range: {', '.join(self.out_of_range)}")
        if self.unknown:
            parts.append(f"unknown: {', '.join(self.unknown)}")
        super().__init__("Invalid metrics (" + "; ".join(parts) + ")")

    @property
    def fields(self) -> list[str]:
        return self.missing + self.out_of_range + self.unknown


class InvalidPeriodError(OperatorFinanceError):
    """A scoring or payout period is malformed or inverted."""


class OperatorNotEligibleError(OperatorFinanceError):
    """The operator has no resolvable tier or no active rate config."""


class DuplicateTransactionError(OperatorFinanceError):
    """An idempotency key was reused.

    Carries the transaction that already holds the key so the caller can
    return it instead of failing.
    """

    def __init__(self, key: str, existing: Any) -> None:
        self.key = key
        self.existing = existing
        super().__init__(f"Transaction already recorded for key: {key}")


class InsufficientBalanceError(OperatorFinanceError):
    """A payout would exceed the operator's wallet balance."""

    def __init__(self, requested: Decimal, available: Decimal) -> None:
        self.requested = requested
        self.available = available
        super().__init__(
            f"Insufficient balance for payout: requested {requested}, "
            f"available {available}"
        )


class InvalidBoundaryFeeDataError(OperatorFinanceError):
    """A boundary-fee submission failed validation."""

    def __init__(self, fields: Iterable[str], detail: Optional[str] = None) -> None:
        self.fields = sorted(fields)
        message = "Invalid boundary fee data"
        if self.fields:
            message += f": {', '.join(self.fields)}"
        if detail:
            message += f" ({detail})"
        super().__init__(message)


class InvalidStateError(OperatorFinanceError):
    """An illegal state transition was attempted."""


class PayoutExecutionError(OperatorFinanceError):
    """The payment destination rejected a payout."""

"""Payment destinations — where approved payouts are sent.

The payout engine never talks to a bank or e-wallet directly. It looks
up the destination registered for the payout's payment method and calls
execute(). Adding a payment method means implementing PaymentDestination
and registering it; nothing in the payout state machine changes.
"""

from __future__ import annotations

import logging
import threading
import uuid
from typing import Dict, Iterable, List, Optional, Protocol, runtime_checkable

from operator_finance.errors import PayoutExecutionError
from operator_finance.models.finance import Payout

logger = logging.getLogger(__name__)


@runtime_checkable
class PaymentDestination(Protocol):
    """Contract for a payout transfer backend (bank transfer, GCash, ...)."""

    @property
    def method(self) -> str:
        """Payment method this destination serves, e.g. 'gcash'."""
        ...

    def execute(self, payout: Payout) -> str:
        """Send the payout and return the transfer reference.

        Raises PayoutExecutionError if the transfer is rejected. Any other
        exception is recorded on the payout as a PayoutExecutionError.
        """
        ...


class PaymentDestinationRegistry:
    """Maps payment methods to destinations.

    Usage:
        registry = PaymentDestinationRegistry()
        registry.register(InMemoryDestination("gcash"))
        registry.get("gcash").execute(payout)
    """

    def __init__(self, destinations: Iterable[PaymentDestination] = ()) -> None:
        self._destinations: Dict[str, PaymentDestination] = {}
        for destination in destinations:
            self.register(destination)

    def register(self, destination: PaymentDestination) -> None:
        """Register a destination.

        Raises TypeError for an object that is not a PaymentDestination
        and ValueError if the method already has one.
        """
        if not isinstance(destination, PaymentDestination):
            raise TypeError(
                f"Destination must implement PaymentDestination, got {type(destination)}",
            )
        if destination.method in self._destinations:
            raise ValueError(f"Payment method already registered: {destination.method}")
        self._destinations[destination.method] = destination

    def supports(self, method: str) -> bool:
        return method in self._destinations

    def get(self, method: str) -> PaymentDestination:
        if method not in self._destinations:
            raise PayoutExecutionError(f"No destination for payment method: {method}")
        return self._destinations[method]

    def methods(self) -> List[str]:
        return list(self._destinations)


class InMemoryDestination:
    """Destination that records transfers in memory.

    Payouts whose id or operator is listed in fail_payouts/fail_operators
    are rejected with PayoutExecutionError.
    """

    def __init__(
        self,
        method: str,
        fail_payouts: Optional[Iterable[str]] = None,
        fail_operators: Optional[Iterable[str]] = None,
    ) -> None:
        self._method = method
        self._fail_payouts = set(fail_payouts or ())
        self._fail_operators = set(fail_operators or ())
        self._lock = threading.Lock()
        self._executed: List[str] = []

    @property
    def method(self) -> str:
        return self._method

    @property
    def executed(self) -> List[str]:
        with self._lock:
            return list(self._executed)

    def fail_payout(self, payout_id: str) -> None:
        self._fail_payouts.add(payout_id)

    def execute(self, payout: Payout) -> str:
        if payout.payout_id in self._fail_payouts or payout.operator_id in self._fail_operators:
            raise PayoutExecutionError(
                f"{self._method} rejected payout {payout.payout_id}"
            )
        reference = f"{self._method}-{uuid.uuid4().hex[:10]}"
        with self._lock:
            self._executed.append(payout.payout_id)
        logger.debug("Transferred %s via %s (%s)", payout.payout_amount, self._method, reference)
        return reference

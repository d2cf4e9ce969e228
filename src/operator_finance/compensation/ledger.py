"""Transaction ledger — append-only record of operator earnings and payouts.

The ledger is the single source of truth for an operator's wallet. The
balance is never stored; it is recomputed from the transactions every
time it is asked for:

    balance = Σ amount of non-reversed transactions

Credits (commissions, bonuses, boundary fees, positive adjustments) are
positive. Penalties and completed payout debits are negative.

Idempotency: a transaction may carry a natural key (booking id, fee id,
payout id). A second transaction with the same (operator, type, key)
is rejected with DuplicateTransactionError carrying the first one.

Concurrency: every ledger-affecting operation for one operator runs
under that operator's re-entrant lock from operator_lock(). Different
operators never contend.
"""

from __future__ import annotations

import logging
import threading
import uuid
from dataclasses import replace
from datetime import datetime
from decimal import Decimal
from typing import Dict, Iterable, List, Optional, Tuple

from operator_finance.errors import DuplicateTransactionError
from operator_finance.models.finance import (
    ZERO,
    FinancialTransaction,
    TransactionStatus,
    TransactionType,
)
from operator_finance.persistence.ledger_store import LedgerStore

logger = logging.getLogger(__name__)

_KeyIndex = Tuple[str, TransactionType, str]


def new_transaction_id() -> str:
    return f"txn_{uuid.uuid4().hex[:16]}"


class TransactionLedger:
    """In-memory append-only ledger with an optional durable store.

    Usage:
        ledger = TransactionLedger()
        with ledger.operator_lock("OP-001"):
            ledger.append(transaction)
        ledger.balance("OP-001")

        # Durable: replays and verifies the JSONL file at start-up
        ledger = TransactionLedger(store=LedgerStore(path))
    """

    def __init__(self, store: Optional[LedgerStore] = None) -> None:
        self._transactions: List[FinancialTransaction] = []
        self._positions: Dict[str, int] = {}
        self._keys: Dict[_KeyIndex, str] = {}
        self._store = store
        self._state_lock = threading.Lock()
        self._registry_lock = threading.Lock()
        self._operator_locks: Dict[str, threading.RLock] = {}

        if store is not None:
            for tx in store.load():
                self._index(tx)
            if self._transactions:
                logger.info(
                    "Loaded %d transactions from %s",
                    len(self._transactions), store.path,
                )

    def operator_lock(self, operator_id: str) -> threading.RLock:
        """The lock serializing ledger-affecting work for one operator."""
        with self._registry_lock:
            lock = self._operator_locks.get(operator_id)
            if lock is None:
                lock = threading.RLock()
                self._operator_locks[operator_id] = lock
            return lock

    def append(self, tx: FinancialTransaction) -> FinancialTransaction:
        """Append a transaction.

        Raises:
            DuplicateTransactionError: if the transaction id, or its
                (operator, type, idempotency key), is already recorded.
        """
        with self.operator_lock(tx.operator_id):
            with self._state_lock:
                if tx.transaction_id in self._positions:
                    existing = self._transactions[self._positions[tx.transaction_id]]
                    raise DuplicateTransactionError(tx.transaction_id, existing)
                if tx.idempotency_key is not None:
                    key = (tx.operator_id, tx.transaction_type, tx.idempotency_key)
                    if key in self._keys:
                        existing = self._transactions[self._positions[self._keys[key]]]
                        raise DuplicateTransactionError(tx.idempotency_key, existing)
                if self._store is not None:
                    self._store.append(tx)
                self._index(tx)
        logger.debug(
            "Appended %s %s %s for %s",
            tx.transaction_id, tx.transaction_type.value, tx.amount, tx.operator_id,
        )
        return tx

    def get(self, transaction_id: str) -> Optional[FinancialTransaction]:
        with self._state_lock:
            position = self._positions.get(transaction_id)
            return self._transactions[position] if position is not None else None

    def find_by_key(
        self,
        operator_id: str,
        transaction_type: TransactionType,
        key: str,
    ) -> Optional[FinancialTransaction]:
        """The transaction holding an idempotency key, if any."""
        with self._state_lock:
            tx_id = self._keys.get((operator_id, transaction_type, key))
            if tx_id is None:
                return None
            return self._transactions[self._positions[tx_id]]

    def transactions(
        self,
        operator_id: Optional[str] = None,
        start: Optional[datetime] = None,
        end: Optional[datetime] = None,
        types: Optional[Iterable[TransactionType]] = None,
    ) -> List[FinancialTransaction]:
        """Transactions in append order, filtered. start and end are inclusive."""
        wanted = frozenset(types) if types is not None else None
        with self._state_lock:
            snapshot = list(self._transactions)
        return [
            tx for tx in snapshot
            if (operator_id is None or tx.operator_id == operator_id)
            and (start is None or tx.transaction_date >= start)
            and (end is None or tx.transaction_date <= end)
            and (wanted is None or tx.transaction_type in wanted)
        ]

    def balance(self, operator_id: str) -> Decimal:
        """Current wallet balance, recomputed from the records."""
        return sum(
            (
                tx.amount for tx in self.transactions(operator_id)
                if tx.status != TransactionStatus.REVERSED
            ),
            ZERO,
        )

    def mark_reconciled(self, transaction_id: str) -> FinancialTransaction:
        """Flag a transaction as reconciled. The only permitted change.

        Raises KeyError for an unknown transaction id.
        """
        with self._state_lock:
            if transaction_id not in self._positions:
                raise KeyError(f"Unknown transaction: {transaction_id}")
            position = self._positions[transaction_id]
            current = self._transactions[position]
            if current.reconciled:
                return current
            updated = replace(current, reconciled=True)
            if self._store is not None:
                self._store.append_reconciled(transaction_id)
            self._transactions[position] = updated
            return updated

    @property
    def count(self) -> int:
        return len(self._transactions)

    def _index(self, tx: FinancialTransaction) -> None:
        self._positions[tx.transaction_id] = len(self._transactions)
        self._transactions.append(tx)
        if tx.idempotency_key is not None:
            key = (tx.operator_id, tx.transaction_type, tx.idempotency_key)
            self._keys[key] = tx.transaction_id

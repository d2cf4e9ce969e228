"""Append-only ledger store — durable JSONL record of financial transactions.

Each line holds one transaction plus a SHA-256 hash of its canonical
JSON form. On load every line is re-hashed; a mismatch or a repeated
transaction id fails the load rather than producing a silently wrong
wallet balance.

Reconciliation is the one permitted change to a stored transaction. It
is written as a separate marker line, so earlier lines are never
rewritten.
"""

from __future__ import annotations

import enum
import hashlib
import json
from dataclasses import replace
from datetime import datetime
from decimal import Decimal
from pathlib import Path
from typing import Any, Dict, List

from operator_finance.models.finance import (
    FinancialTransaction,
    TransactionStatus,
    TransactionType,
)
from operator_finance.models.performance import CommissionTier

RECORD_TRANSACTION = "transaction"
RECORD_RECONCILED = "reconciled"


def _canonical_hash(body: Dict[str, Any]) -> str:
    canonical = json.dumps(body, sort_keys=True, ensure_ascii=False).encode("utf-8")
    return f"sha256:{hashlib.sha256(canonical).hexdigest()}"


def _json_safe(value: Any) -> Any:
    if isinstance(value, Decimal):
        return str(value)
    if isinstance(value, datetime):
        return value.isoformat()
    if isinstance(value, dict):
        return {str(k): _json_safe(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [_json_safe(v) for v in value]
    if isinstance(value, enum.Enum):
        return value.value
    return value


def transaction_to_record(tx: FinancialTransaction) -> Dict[str, Any]:
    """Serialize a transaction to a JSON-safe dict."""
    return {
        "transaction_id": tx.transaction_id,
        "operator_id": tx.operator_id,
        "transaction_type": tx.transaction_type.value,
        "amount": str(tx.amount),
        "transaction_date": tx.transaction_date.isoformat(),
        "currency": tx.currency,
        "booking_id": tx.booking_id,
        "idempotency_key": tx.idempotency_key,
        "commission_rate": str(tx.commission_rate) if tx.commission_rate is not None else None,
        "tier": tx.tier.value if tx.tier is not None else None,
        "calculation_details": _json_safe(tx.calculation_details),
        "status": tx.status.value,
        "description": tx.description,
    }


def transaction_from_record(data: Dict[str, Any]) -> FinancialTransaction:
    rate = data.get("commission_rate")
    tier = data.get("tier")
    return FinancialTransaction(
        transaction_id=data["transaction_id"],
        operator_id=data["operator_id"],
        transaction_type=TransactionType(data["transaction_type"]),
        amount=Decimal(data["amount"]),
        transaction_date=datetime.fromisoformat(data["transaction_date"]),
        currency=data["currency"],
        booking_id=data.get("booking_id"),
        idempotency_key=data.get("idempotency_key"),
        commission_rate=Decimal(rate) if rate is not None else None,
        tier=CommissionTier(tier) if tier is not None else None,
        calculation_details=data.get("calculation_details") or {},
        status=TransactionStatus(data["status"]),
        description=data.get("description", ""),
    )


class LedgerStore:
    """JSONL file backing a TransactionLedger.

    Usage:
        store = LedgerStore(Path("data/ledger.jsonl"))
        ledger = TransactionLedger(store=store)   # replays existing lines
    """

    def __init__(self, path: Path) -> None:
        self._path = Path(path)

    @property
    def path(self) -> Path:
        return self._path

    def append(self, tx: FinancialTransaction) -> None:
        body = {"record": RECORD_TRANSACTION, "transaction": transaction_to_record(tx)}
        self._write(body)

    def append_reconciled(self, transaction_id: str) -> None:
        self._write({"record": RECORD_RECONCILED, "transaction_id": transaction_id})

    def load(self) -> List[FinancialTransaction]:
        """Read and verify every stored transaction, in append order.

        Raises ValueError on a hash mismatch, a duplicate transaction id,
        or a reconciliation marker for an unknown transaction.
        """
        if not self._path.exists():
            return []

        transactions: List[FinancialTransaction] = []
        index: Dict[str, int] = {}
        with self._path.open("r", encoding="utf-8") as f:
            for line_num, line in enumerate(f, 1):
                line = line.strip()
                if not line:
                    continue
                data = json.loads(line)
                stored_hash = data.pop("record_hash", None)
                expected = _canonical_hash(data)
                if stored_hash != expected:
                    raise ValueError(
                        f"Integrity check failed (line {line_num}): "
                        f"stored hash {stored_hash} != computed {expected}"
                    )

                if data["record"] == RECORD_RECONCILED:
                    tx_id = data["transaction_id"]
                    if tx_id not in index:
                        raise ValueError(
                            f"Reconciliation of unknown transaction (line {line_num}): {tx_id}"
                        )
                    position = index[tx_id]
                    transactions[position] = replace(transactions[position], reconciled=True)
                    continue

                tx = transaction_from_record(data["transaction"])
                if tx.transaction_id in index:
                    raise ValueError(
                        f"Duplicate transaction ID on recovery (line {line_num}): "
                        f"{tx.transaction_id}"
                    )
                index[tx.transaction_id] = len(transactions)
                transactions.append(tx)
        return transactions

    def _write(self, body: Dict[str, Any]) -> None:
        self._path.parent.mkdir(parents=True, exist_ok=True)
        record = dict(body)
        record["record_hash"] = _canonical_hash(body)
        with self._path.open("a", encoding="utf-8") as f:
            f.write(json.dumps(record, sort_keys=True, ensure_ascii=False) + "\n")

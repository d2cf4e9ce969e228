"""Durable storage for the transaction ledger."""

from operator_finance.persistence.ledger_store import LedgerStore

__all__ = ["LedgerStore"]

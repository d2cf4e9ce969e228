"""Compensation subsystem — commissions, boundary fees, ledger, payouts."""

from operator_finance.compensation.boundary import BoundaryFeeProcessor
from operator_finance.compensation.commission import CommissionCalculator, CommissionQuote
from operator_finance.compensation.ledger import TransactionLedger
from operator_finance.compensation.payment_rail import (
    InMemoryDestination,
    PaymentDestination,
    PaymentDestinationRegistry,
)
from operator_finance.compensation.payout import PayoutEngine
from operator_finance.compensation.tax import WithholdingTaxRule

__all__ = [
    "BoundaryFeeProcessor",
    "CommissionCalculator",
    "CommissionQuote",
    "InMemoryDestination",
    "PaymentDestination",
    "PaymentDestinationRegistry",
    "PayoutEngine",
    "TransactionLedger",
    "WithholdingTaxRule",
]

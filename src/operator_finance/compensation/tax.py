"""Withholding tax on operator payouts.

Rates are whole-number percentages keyed by operator type. A type with
no configured rate falls back to the general rate.
"""

from __future__ import annotations

from decimal import Decimal
from typing import Union

from operator_finance.models.finance import ZERO, OperatorType, to_money
from operator_finance.policy.resolver import PolicyResolver


class WithholdingTaxRule:
    """Computes the amount withheld from a gross payout.

    Usage:
        rule = WithholdingTaxRule(resolver)
        rule.compute(Decimal("10000.00"), OperatorType.TNVS)   # Decimal("150.00")
    """

    def __init__(self, resolver: PolicyResolver) -> None:
        self._rates = resolver.withholding_tax_rates()

    def rate_for(self, operator_type: Union[OperatorType, str]) -> Decimal:
        try:
            kind = OperatorType(operator_type)
        except ValueError:
            kind = OperatorType.GENERAL
        return self._rates.get(kind, self._rates[OperatorType.GENERAL])

    def compute(self, gross: Decimal, operator_type: Union[OperatorType, str]) -> Decimal:
        """Withheld amount, rounded half-up. Zero for a non-positive gross."""
        gross = Decimal(str(gross))
        if gross <= ZERO:
            return ZERO
        return to_money(gross * self.rate_for(operator_type) / Decimal("100"))

"""Financial reporting over the ledger.

net_revenue = commissions + bonuses - penalties + boundary fees collected

Adjustments and payouts are reported separately and do not enter net
revenue.
"""

from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import Iterable, Optional, Union

from operator_finance.compensation.ledger import TransactionLedger
from operator_finance.models.finance import (
    ZERO,
    BoundaryFee,
    FinancialSummary,
    FinancialTransaction,
    TransactionStatus,
    TransactionType,
    to_money,
)

# BSP covered-transaction reporting threshold, in pesos
DEFAULT_LARGE_TRANSACTION_THRESHOLD = Decimal("500000.00")


def summarize(
    ledger: TransactionLedger,
    operator_id: str,
    period_start: datetime,
    period_end: datetime,
    boundary_fees: Optional[Iterable[BoundaryFee]] = None,
) -> FinancialSummary:
    """Period totals for one operator.

    When boundary_fees is given, fees dated inside the period are summed
    from it; otherwise the ledger's boundary_fee transactions are used.
    """
    totals = {t: ZERO for t in TransactionType}
    count = 0
    for tx in ledger.transactions(operator_id, period_start, period_end):
        count += 1
        if tx.status == TransactionStatus.REVERSED:
            continue
        totals[tx.transaction_type] += tx.amount

    if boundary_fees is not None:
        start, end = period_start.date(), period_end.date()
        collected = sum(
            (
                fee.total_amount for fee in boundary_fees
                if fee.operator_id == operator_id and start <= fee.fee_date <= end
            ),
            ZERO,
        )
    else:
        collected = totals[TransactionType.BOUNDARY_FEE]

    commissions = totals[TransactionType.COMMISSION_EARNED]
    bonuses = totals[TransactionType.INCENTIVE_BONUS]
    penalties = abs(totals[TransactionType.PENALTY_DEDUCTION])

    return FinancialSummary(
        operator_id=operator_id,
        period_start=period_start,
        period_end=period_end,
        total_commissions_earned=to_money(commissions),
        total_incentive_bonuses=to_money(bonuses),
        total_penalties_deducted=to_money(penalties),
        total_adjustments=to_money(totals[TransactionType.ADJUSTMENT]),
        total_boundary_fees_collected=to_money(collected),
        total_payouts=to_money(abs(totals[TransactionType.PAYOUT])),
        net_revenue=to_money(commissions + bonuses - penalties + collected),
        transaction_count=count,
    )


def profit_margin(gross: Decimal, costs: Decimal) -> Decimal:
    """(gross - costs) / gross as a percentage; zero when gross is not positive."""
    gross = Decimal(str(gross))
    if gross <= ZERO:
        return ZERO
    return to_money((gross - Decimal(str(costs))) / gross * Decimal("100"))


def exceeds_reporting_threshold(
    transaction: Union[FinancialTransaction, Decimal],
    threshold: Decimal = DEFAULT_LARGE_TRANSACTION_THRESHOLD,
) -> bool:
    """Whether a transaction must be reported as a large transaction."""
    amount = transaction.amount if isinstance(transaction, FinancialTransaction) else transaction
    return abs(Decimal(str(amount))) > threshold

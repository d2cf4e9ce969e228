"""Core data models for the operator finance core."""

from operator_finance.models.finance import (
    BoundaryFee,
    BoundaryFeeModel,
    CommissionRateConfig,
    FinancialSummary,
    FinancialTransaction,
    OperatorProfile,
    OperatorType,
    Payout,
    PayoutBatchResult,
    PayoutState,
    TransactionStatus,
    TransactionType,
)
from operator_finance.models.performance import (
    AppliedAdjustment,
    CommissionTier,
    MetricCategory,
    MetricDefinition,
    MetricScale,
    MetricSet,
    PerformanceScore,
    QualificationStatus,
    Requirement,
    ScoringFrequency,
    TierFacts,
    TierInputs,
    TierQualification,
    ViolationRecord,
)

__all__ = [
    "AppliedAdjustment",
    "BoundaryFee",
    "BoundaryFeeModel",
    "CommissionRateConfig",
    "CommissionTier",
    "FinancialSummary",
    "FinancialTransaction",
    "MetricCategory",
    "MetricDefinition",
    "MetricScale",
    "MetricSet",
    "OperatorProfile",
    "OperatorType",
    "Payout",
    "PayoutBatchResult",
    "PayoutState",
    "PerformanceScore",
    "QualificationStatus",
    "Requirement",
    "ScoringFrequency",
    "TierFacts",
    "TierInputs",
    "TierQualification",
    "TransactionStatus",
    "TransactionType",
    "ViolationRecord",
]

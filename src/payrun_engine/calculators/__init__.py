"""Pure calculation pipeline: line calculator, anomaly detector, aggregator."""

from payrun_engine.calculators.aggregator import aggregate
from payrun_engine.calculators.anomaly_detector import (
    Anomaly,
    AnomalyDetector,
    AnomalySeverity,
    AnomalyType,
)
from payrun_engine.calculators.line_calculator import LineCalculator
from payrun_engine.calculators.tax_rules import RuleTable, TaxBracket, TaxRuleSpec
from payrun_engine.calculators.types import (
    AdjustmentInput,
    CompensationTerms,
    DeductionBasis,
    DeductionInput,
    EarningInput,
    PayrollLineResult,
    PayType,
    PeriodInfo,
    PersonRecord,
    PersonType,
    RunTotals,
    TaxAssessment,
    TaxItem,
)

__all__ = [
    "AdjustmentInput",
    "Anomaly",
    "AnomalyDetector",
    "AnomalySeverity",
    "AnomalyType",
    "CompensationTerms",
    "DeductionBasis",
    "DeductionInput",
    "EarningInput",
    "LineCalculator",
    "PayType",
    "PayrollLineResult",
    "PeriodInfo",
    "PersonRecord",
    "PersonType",
    "RuleTable",
    "RunTotals",
    "TaxAssessment",
    "TaxBracket",
    "TaxItem",
    "TaxRuleSpec",
    "aggregate",
]

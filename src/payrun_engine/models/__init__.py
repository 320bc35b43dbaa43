"""ORM models."""

from payrun_engine.models.base import Base, JSONType, Money, TimestampMixin
from payrun_engine.models.compensation import (
    CompensationProfile,
    JurisdictionTaxRule,
    PayAdjustment,
    PeriodHours,
    Person,
)
from payrun_engine.models.gl import GLAccountMapping, JournalEntry, JournalLine
from payrun_engine.models.payroll import (
    RUN_TYPES,
    AnomalyLog,
    PayPeriod,
    PayrollLine,
    PayrollRun,
    PayrollRunAudit,
)

__all__ = [
    "AnomalyLog",
    "Base",
    "CompensationProfile",
    "GLAccountMapping",
    "JSONType",
    "JournalEntry",
    "JournalLine",
    "JurisdictionTaxRule",
    "Money",
    "PayAdjustment",
    "PayPeriod",
    "PayrollLine",
    "PayrollRun",
    "PayrollRunAudit",
    "PeriodHours",
    "Person",
    "RUN_TYPES",
    "TimestampMixin",
]

"""Collaborator ports and their SQL implementations."""

from payrun_engine.sources.base import (
    AccountingLedger,
    CompensationSource,
    EngineSources,
    JurisdictionRuleSource,
    PayHistorySource,
    PayPeriodSource,
    PersonSource,
)
from payrun_engine.sources.sql import (
    SqlAccountingLedger,
    SqlCompensationSource,
    SqlJurisdictionRuleSource,
    SqlPayHistorySource,
    SqlPayPeriodSource,
    SqlPersonSource,
    sql_sources,
)

__all__ = [
    "AccountingLedger",
    "CompensationSource",
    "EngineSources",
    "JurisdictionRuleSource",
    "PayHistorySource",
    "PayPeriodSource",
    "PersonSource",
    "SqlAccountingLedger",
    "SqlCompensationSource",
    "SqlJurisdictionRuleSource",
    "SqlPayHistorySource",
    "SqlPayPeriodSource",
    "SqlPersonSource",
    "sql_sources",
]

"""Collaborator interfaces the engine reads from and writes to."""

from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal
from typing import TYPE_CHECKING, Protocol
from uuid import UUID

from payrun_engine.calculators.types import (
    AdjustmentInput,
    CompensationTerms,
    JurisdictionRules,
    PeriodInfo,
    PersonRecord,
)

if TYPE_CHECKING:
    from payrun_engine.services.ledger_poster import JournalEntryDraft


class PayPeriodSource(Protocol):
    async def get_period(self, period_id: UUID) -> PeriodInfo | None: ...


class PersonSource(Protocol):
    async def list_compensable(self, period: PeriodInfo) -> list[PersonRecord]:
        """Persons to calculate, in a stable order."""
        ...


class CompensationSource(Protocol):
    async def get_active_profile(
        self, person_id: UUID, period: PeriodInfo
    ) -> CompensationTerms | None: ...

    async def get_adjustments(
        self, person_id: UUID, period: PeriodInfo
    ) -> list[AdjustmentInput]: ...

    async def get_hours(self, person_id: UUID, period: PeriodInfo) -> Decimal | None: ...


class JurisdictionRuleSource(Protocol):
    async def rules_for(
        self, jurisdiction: str | None, period: PeriodInfo
    ) -> JurisdictionRules | None:
        """Rules in effect on the pay date, or None when none are configured.

        Implementations signal an unusable source by raising
        ``JurisdictionRulesUnavailableError``.
        """
        ...


class PayHistorySource(Protocol):
    async def previous_net_pay(
        self, person_id: UUID, period: PeriodInfo, exclude_run_id: UUID
    ) -> Decimal | None:
        """Net pay from the latest posted run of another period paid on or before this one."""
        ...


class AccountingLedger(Protocol):
    async def account_overrides(self) -> dict[str, str]: ...

    async def record_entry(self, entry: JournalEntryDraft, posted_by: str | None) -> UUID:
        """Write the entry inside the caller's transaction and return its id."""
        ...


@dataclass
class EngineSources:
    """Everything the orchestrator needs from the outside world."""

    periods: PayPeriodSource
    persons: PersonSource
    compensation: CompensationSource
    rules: JurisdictionRuleSource
    history: PayHistorySource
    ledger: AccountingLedger

"""SQL-backed collaborator implementations sharing the request session."""

from __future__ import annotations

from decimal import Decimal
from typing import Any
from uuid import UUID

from sqlalchemy import and_, or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from payrun_engine.calculators.money import to_decimal
from payrun_engine.calculators.tax_rules import RuleTable, TaxBracket, TaxRuleSpec
from payrun_engine.calculators.types import (
    ZERO,
    AdjustmentInput,
    CompensationTerms,
    DeductionBasis,
    DeductionInput,
    EarningInput,
    PayType,
    PeriodInfo,
    PersonRecord,
    PersonType,
)
from payrun_engine.exceptions import InvalidTaxRuleError, PersonCalculationError
from payrun_engine.models import (
    CompensationProfile,
    GLAccountMapping,
    JournalEntry,
    JournalLine,
    JurisdictionTaxRule,
    PayAdjustment,
    PayPeriod,
    PayrollLine,
    PayrollRun,
    PeriodHours,
    Person,
)
from payrun_engine.sources.base import EngineSources

POSTED_STATUSES = ("posted", "paid")


def period_info(period: PayPeriod) -> PeriodInfo:
    return PeriodInfo(
        id=period.id,
        start_date=period.start_date,
        end_date=period.end_date,
        pay_date=period.pay_date,
    )


class SqlPayPeriodSource:
    def __init__(self, session: AsyncSession):
        self.session = session

    async def get_period(self, period_id: UUID) -> PeriodInfo | None:
        period = await self.session.get(PayPeriod, period_id)
        return period_info(period) if period else None


class SqlPersonSource:
    """Active persons on the period's schedule (or on no schedule)."""

    def __init__(self, session: AsyncSession):
        self.session = session

    async def list_compensable(self, period: PeriodInfo) -> list[PersonRecord]:
        schedule_id = await self.session.scalar(
            select(PayPeriod.schedule_id).where(PayPeriod.id == period.id)
        )
        result = await self.session.execute(
            select(Person)
            .where(
                Person.is_active.is_(True),
                or_(Person.schedule_id.is_(None), Person.schedule_id == schedule_id),
            )
            .order_by(Person.full_name, Person.id)
        )
        return [
            PersonRecord(
                id=person.id,
                full_name=person.full_name,
                person_type=PersonType(person.person_type),
                jurisdiction=person.jurisdiction,
                tax_exemptions=person.tax_exemptions,
            )
            for person in result.scalars().all()
        ]


def _earning(raw: dict[str, Any]) -> EarningInput:
    return EarningInput(
        name=str(raw["name"]),
        amount=to_decimal(raw.get("amount")),
        percent=to_decimal(raw.get("percent")),
    )


def _deduction(raw: dict[str, Any]) -> DeductionInput:
    return DeductionInput(
        name=str(raw["name"]),
        amount=to_decimal(raw.get("amount")),
        percent=to_decimal(raw.get("percent")),
        basis=DeductionBasis(raw.get("basis", DeductionBasis.GROSS.value)),
        annual_limit=to_decimal(raw.get("annual_limit")),
        ytd_amount=to_decimal(raw.get("ytd_amount"), ZERO),
        employer_match_percent=to_decimal(raw.get("employer_match_percent")),
        employer_match_max_percent=to_decimal(raw.get("employer_match_max_percent")),
    )


def compensation_terms(profile: CompensationProfile) -> CompensationTerms:
    """Convert a stored profile; raises ValueError/KeyError on bad JSON."""
    return CompensationTerms(
        pay_type=PayType(profile.pay_type),
        pay_rate=profile.pay_rate,
        pay_frequency=profile.pay_frequency,
        standard_weekly_hours=profile.standard_weekly_hours,
        effective_from=profile.effective_from,
        effective_to=profile.effective_to,
        recurring_earnings=tuple(_earning(e) for e in profile.recurring_earnings or []),
        deductions=tuple(_deduction(d) for d in profile.deductions or []),
        employer_contributions=tuple(
            _deduction(c) for c in profile.employer_contributions or []
        ),
    )


class SqlCompensationSource:
    def __init__(self, session: AsyncSession):
        self.session = session

    async def get_active_profile(
        self, person_id: UUID, period: PeriodInfo
    ) -> CompensationTerms | None:
        result = await self.session.execute(
            select(CompensationProfile)
            .where(
                CompensationProfile.person_id == person_id,
                CompensationProfile.effective_from <= period.end_date,
                or_(
                    CompensationProfile.effective_to.is_(None),
                    CompensationProfile.effective_to >= period.start_date,
                ),
            )
            .order_by(CompensationProfile.effective_from.desc())
            .limit(1)
        )
        profile = result.scalar_one_or_none()
        if profile is None:
            return None
        try:
            return compensation_terms(profile)
        except (KeyError, ValueError) as exc:
            raise PersonCalculationError(
                person_id, f"Invalid compensation profile: {exc}"
            ) from exc

    async def get_adjustments(
        self, person_id: UUID, period: PeriodInfo
    ) -> list[AdjustmentInput]:
        result = await self.session.execute(
            select(PayAdjustment).where(
                PayAdjustment.person_id == person_id,
                PayAdjustment.period_id == period.id,
            )
        )
        return [
            AdjustmentInput(name=adj.name, amount=adj.amount)
            for adj in result.scalars().all()
        ]

    async def get_hours(self, person_id: UUID, period: PeriodInfo) -> Decimal | None:
        return await self.session.scalar(
            select(PeriodHours.hours).where(
                PeriodHours.person_id == person_id,
                PeriodHours.period_id == period.id,
            )
        )


def _bracket(raw: dict[str, Any]) -> TaxBracket:
    return TaxBracket(
        min_amount=to_decimal(raw.get("min"), ZERO),
        max_amount=to_decimal(raw.get("max")),
        rate=to_decimal(raw.get("rate"), ZERO),
        flat_amount=to_decimal(raw.get("flat"), ZERO),
    )


def rule_spec(rule: JurisdictionTaxRule) -> TaxRuleSpec:
    """Convert a stored rule; raises InvalidTaxRuleError on unusable data."""
    try:
        return TaxRuleSpec(
            name=rule.name,
            side=rule.side,
            method=rule.method,
            rate=to_decimal(rule.rate),
            brackets=tuple(_bracket(b) for b in rule.brackets or []),
            wage_cap=to_decimal(rule.wage_cap),
            category=rule.category,
        )
    except (KeyError, TypeError, ValueError, AttributeError) as exc:
        raise InvalidTaxRuleError(rule.jurisdiction, rule.name, str(exc)) from exc


class SqlJurisdictionRuleSource:
    """Rules effective on the pay date, cached per jurisdiction."""

    def __init__(self, session: AsyncSession):
        self.session = session
        self._cache: dict[tuple[str, Any], RuleTable | None] = {}

    async def rules_for(
        self, jurisdiction: str | None, period: PeriodInfo
    ) -> RuleTable | None:
        if not jurisdiction:
            return None
        cache_key = (jurisdiction, period.pay_date)
        if cache_key in self._cache:
            return self._cache[cache_key]

        result = await self.session.execute(
            select(JurisdictionTaxRule)
            .where(
                JurisdictionTaxRule.jurisdiction == jurisdiction,
                JurisdictionTaxRule.effective_from <= period.pay_date,
                or_(
                    JurisdictionTaxRule.effective_to.is_(None),
                    JurisdictionTaxRule.effective_to >= period.pay_date,
                ),
            )
            .order_by(
                JurisdictionTaxRule.side,
                JurisdictionTaxRule.name,
                JurisdictionTaxRule.effective_from.desc(),
            )
        )

        specs: list[TaxRuleSpec] = []
        seen: set[tuple[str, str]] = set()
        for rule in result.scalars().all():
            # Latest effective version of each (side, name) wins
            if (rule.side, rule.name) in seen:
                continue
            seen.add((rule.side, rule.name))
            specs.append(rule_spec(rule))

        table = RuleTable(jurisdiction=jurisdiction, rules=tuple(specs)) if specs else None
        self._cache[cache_key] = table
        return table


class SqlPayHistorySource:
    def __init__(self, session: AsyncSession):
        self.session = session

    async def previous_net_pay(
        self, person_id: UUID, period: PeriodInfo, exclude_run_id: UUID
    ) -> Decimal | None:
        result = await self.session.execute(
            select(PayrollLine.net_pay)
            .join(PayrollRun, PayrollRun.id == PayrollLine.run_id)
            .join(PayPeriod, PayPeriod.id == PayrollRun.period_id)
            .where(
                and_(
                    PayrollLine.person_id == person_id,
                    PayrollLine.is_included.is_(True),
                    PayrollRun.status.in_(POSTED_STATUSES),
                    PayrollRun.id != exclude_run_id,
                    PayPeriod.id != period.id,
                    PayPeriod.pay_date <= period.pay_date,
                )
            )
            .order_by(PayPeriod.pay_date.desc(), PayrollRun.posted_at.desc())
            .limit(1)
        )
        return result.scalar_one_or_none()


class SqlAccountingLedger:
    """Journal tables in the same database; writes join the caller's transaction."""

    def __init__(self, session: AsyncSession):
        self.session = session

    async def account_overrides(self) -> dict[str, str]:
        result = await self.session.execute(
            select(GLAccountMapping.mapping_type, GLAccountMapping.account_code).where(
                GLAccountMapping.is_active.is_(True)
            )
        )
        return {mapping_type: code for mapping_type, code in result.all()}

    async def record_entry(self, entry: Any, posted_by: str | None) -> UUID:
        journal = JournalEntry(
            source=entry.source,
            source_id=entry.source_id,
            posting_date=entry.posting_date,
            memo=entry.memo,
            total_debits=entry.total_debits,
            total_credits=entry.total_credits,
            posted_by=posted_by,
        )
        self.session.add(journal)
        await self.session.flush()

        for line_no, line in enumerate(entry.lines, start=1):
            self.session.add(
                JournalLine(
                    entry_id=journal.id,
                    line_no=line_no,
                    account_code=line.account_code,
                    debit=line.debit,
                    credit=line.credit,
                    description=line.description,
                )
            )
        await self.session.flush()
        return journal.id


def sql_sources(session: AsyncSession) -> EngineSources:
    """Wire every collaborator to the given session."""
    return EngineSources(
        periods=SqlPayPeriodSource(session),
        persons=SqlPersonSource(session),
        compensation=SqlCompensationSource(session),
        rules=SqlJurisdictionRuleSource(session),
        history=SqlPayHistorySource(session),
        ledger=SqlAccountingLedger(session),
    )

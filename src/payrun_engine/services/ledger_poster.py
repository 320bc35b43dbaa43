"""Translation of run totals into a balanced journal entry."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import date
from decimal import Decimal
from enum import Enum
from typing import TYPE_CHECKING
from uuid import UUID

from sqlalchemy.exc import SQLAlchemyError

from payrun_engine.calculators.types import ZERO, PeriodInfo, RunTotals
from payrun_engine.config import DEFAULT_GL_ACCOUNTS
from payrun_engine.exceptions import LedgerUnavailableError, UnbalancedEntryError

if TYPE_CHECKING:
    from payrun_engine.models import PayrollRun
    from payrun_engine.sources.base import AccountingLedger

logger = logging.getLogger(__name__)

JOURNAL_SOURCE = "payroll_run"


class PostingRole(str, Enum):
    """Account roles; values match ``gl_account_mapping.mapping_type``."""

    WAGES_EXPENSE = "wages_expense"
    EMPLOYER_TAX_EXPENSE = "employer_tax_expense"
    EMPLOYER_CONTRIBUTION_EXPENSE = "employer_contribution_expense"
    NET_PAY_PAYABLE = "net_pay_payable"
    EMPLOYEE_TAX_PAYABLE = "employee_tax_payable"
    EMPLOYEE_DEDUCTION_PAYABLE = "employee_deduction_payable"
    EMPLOYER_TAX_PAYABLE = "employer_tax_payable"
    EMPLOYER_CONTRIBUTION_PAYABLE = "employer_contribution_payable"


@dataclass(frozen=True)
class JournalLineDraft:
    role: PostingRole
    account_code: str
    debit: Decimal = ZERO
    credit: Decimal = ZERO
    description: str | None = None


@dataclass(frozen=True)
class JournalEntryDraft:
    """An entry ready for the ledger; nothing is written yet."""

    source: str
    source_id: UUID
    posting_date: date
    memo: str
    lines: tuple[JournalLineDraft, ...] = field(default_factory=tuple)

    @property
    def total_debits(self) -> Decimal:
        return sum((line.debit for line in self.lines), ZERO)

    @property
    def total_credits(self) -> Decimal:
        return sum((line.credit for line in self.lines), ZERO)

    @property
    def is_balanced(self) -> bool:
        return self.total_debits == self.total_credits


def totals_from_run(run: PayrollRun) -> RunTotals:
    """Read the persisted totals of a calculated run."""
    return RunTotals(
        total_gross_pay=run.total_gross_pay or ZERO,
        total_net_pay=run.total_net_pay or ZERO,
        total_employee_taxes=run.total_employee_taxes or ZERO,
        total_employee_deductions=run.total_employee_deductions or ZERO,
        total_employer_taxes=run.total_employer_taxes or ZERO,
        total_employer_contributions=run.total_employer_contributions or ZERO,
        employee_count=run.employee_count or 0,
    )


class LedgerPoster:
    """Builds the payroll journal entry and hands it to the ledger.

    Debits: wages expense (gross), employer tax expense, employer
    contribution expense. Credits: net pay, employee tax, employee deduction,
    employer tax and employer contribution payables. Zero amounts are
    omitted; a negative amount moves to the opposite side.

    The poster never commits. The caller owns the transaction that also
    flips the run to posted.
    """

    def __init__(self, ledger: AccountingLedger, default_accounts: dict[str, str] | None = None):
        self.ledger = ledger
        self.default_accounts = dict(default_accounts or DEFAULT_GL_ACCOUNTS)

    async def resolve_accounts(self) -> dict[str, str]:
        accounts = dict(self.default_accounts)
        accounts.update(await self.ledger.account_overrides())
        return accounts

    def build_entry(
        self,
        run_id: UUID,
        totals: RunTotals,
        posting_date: date,
        accounts: dict[str, str],
        memo: str | None = None,
    ) -> JournalEntryDraft:
        debits = [
            (PostingRole.WAGES_EXPENSE, totals.total_gross_pay, "Gross wages"),
            (PostingRole.EMPLOYER_TAX_EXPENSE, totals.total_employer_taxes, "Employer taxes"),
            (
                PostingRole.EMPLOYER_CONTRIBUTION_EXPENSE,
                totals.total_employer_contributions,
                "Employer contributions",
            ),
        ]
        credits = [
            (PostingRole.NET_PAY_PAYABLE, totals.total_net_pay, "Net pay payable"),
            (PostingRole.EMPLOYEE_TAX_PAYABLE, totals.total_employee_taxes, "Employee taxes withheld"),
            (
                PostingRole.EMPLOYEE_DEDUCTION_PAYABLE,
                totals.total_employee_deductions,
                "Employee deductions withheld",
            ),
            (PostingRole.EMPLOYER_TAX_PAYABLE, totals.total_employer_taxes, "Employer taxes payable"),
            (
                PostingRole.EMPLOYER_CONTRIBUTION_PAYABLE,
                totals.total_employer_contributions,
                "Employer contributions payable",
            ),
        ]

        lines: list[JournalLineDraft] = []
        for role, amount, description in debits:
            lines.extend(self._line(role, amount, accounts, description, is_debit=True))
        for role, amount, description in credits:
            lines.extend(self._line(role, amount, accounts, description, is_debit=False))

        return JournalEntryDraft(
            source=JOURNAL_SOURCE,
            source_id=run_id,
            posting_date=posting_date,
            memo=memo or f"Payroll run {run_id}",
            lines=tuple(lines),
        )

    def _line(
        self,
        role: PostingRole,
        amount: Decimal,
        accounts: dict[str, str],
        description: str,
        is_debit: bool,
    ) -> list[JournalLineDraft]:
        if amount == ZERO:
            return []
        if amount < ZERO:
            is_debit = not is_debit
            amount = -amount
        account = accounts[role.value]
        if is_debit:
            return [JournalLineDraft(role, account, debit=amount, description=description)]
        return [JournalLineDraft(role, account, credit=amount, description=description)]

    @staticmethod
    def verify_balanced(entry: JournalEntryDraft) -> None:
        if not entry.is_balanced:
            raise UnbalancedEntryError(entry.total_debits, entry.total_credits)

    async def post(
        self,
        run: PayrollRun,
        totals: RunTotals,
        period: PeriodInfo,
        posted_by: str | None = None,
    ) -> UUID:
        """Write a balanced entry for the run and return its id."""
        try:
            accounts = await self.resolve_accounts()
            entry = self.build_entry(run.id, totals, period.pay_date, accounts)
            self.verify_balanced(entry)
            entry_id = await self.ledger.record_entry(entry, posted_by)
        except UnbalancedEntryError:
            logger.error(
                "Refusing to post unbalanced entry",
                extra={"run_id": str(run.id)},
            )
            raise
        except SQLAlchemyError as exc:
            raise LedgerUnavailableError(
                f"Ledger write failed: {exc.__class__.__name__}",
                {"run_id": str(run.id)},
            ) from exc

        logger.info(
            "Journal entry recorded",
            extra={
                "run_id": str(run.id),
                "journal_entry_id": str(entry_id),
                "total_debits": entry.total_debits,
            },
        )
        return entry_id

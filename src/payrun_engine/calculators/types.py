"""Type definitions for the calculation pipeline."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date
from decimal import Decimal
from enum import Enum
from typing import AbstractSet, Any, Protocol
from uuid import UUID

ZERO = Decimal("0")


class PersonType(str, Enum):
    """Kinds of compensable person."""

    EMPLOYEE = "employee"
    CONTRACTOR = "contractor"


class PayType(str, Enum):
    """How base pay is derived from the pay rate."""

    SALARY = "salary"
    HOURLY = "hourly"
    COMMISSION = "commission"


class DeductionBasis(str, Enum):
    """Amount a percent deduction or contribution is taken from."""

    GROSS = "gross"
    BASE = "base"


# ===== Inputs =====


@dataclass(frozen=True)
class PeriodInfo:
    """The slice of a pay period the calculator reads."""

    id: UUID
    start_date: date
    end_date: date
    pay_date: date


@dataclass(frozen=True)
class PersonRecord:
    """A compensable person as supplied by the person source."""

    id: UUID
    full_name: str
    person_type: PersonType = PersonType.EMPLOYEE
    jurisdiction: str | None = None
    # Rule categories (federal, state, fica) the person is exempt from
    tax_exemptions: frozenset[str] = frozenset()


@dataclass(frozen=True)
class EarningInput:
    """Recurring earning: fixed ``amount`` or ``percent`` of base pay."""

    name: str
    amount: Decimal | None = None
    percent: Decimal | None = None


@dataclass(frozen=True)
class AdjustmentInput:
    """One-off earning for the period."""

    name: str
    amount: Decimal


@dataclass(frozen=True)
class DeductionInput:
    """Employee deduction or employer contribution.

    Percent items are taken from gross pay unless ``basis`` is ``base``.
    When ``annual_limit`` is set the amount is capped at what remains of it
    after ``ytd_amount``.

    A deduction with ``employer_match_percent`` also produces an employer
    contribution: the employee amount, but no more than
    ``employer_match_max_percent`` (default: the match percent) of gross.
    """

    name: str
    amount: Decimal | None = None
    percent: Decimal | None = None
    basis: DeductionBasis = DeductionBasis.GROSS
    annual_limit: Decimal | None = None
    ytd_amount: Decimal = ZERO
    employer_match_percent: Decimal | None = None
    employer_match_max_percent: Decimal | None = None

    @property
    def match_cap_percent(self) -> Decimal | None:
        if not self.employer_match_percent:
            return None
        if self.employer_match_max_percent is not None:
            return self.employer_match_max_percent
        return self.employer_match_percent


@dataclass(frozen=True)
class CompensationTerms:
    """A person's active compensation profile for a period."""

    pay_type: PayType
    pay_rate: Decimal | None
    pay_frequency: str = "semimonthly"
    standard_weekly_hours: Decimal = Decimal("40")
    effective_from: date | None = None
    effective_to: date | None = None
    recurring_earnings: tuple[EarningInput, ...] = ()
    deductions: tuple[DeductionInput, ...] = ()
    employer_contributions: tuple[DeductionInput, ...] = ()

    def covers(self, start: date, end: date) -> bool:
        if self.effective_from is not None and self.effective_from > end:
            return False
        return self.effective_to is None or self.effective_to >= start


@dataclass(frozen=True)
class TaxItem:
    """One tax amount returned by jurisdiction rules (unrounded)."""

    name: str
    amount: Decimal


@dataclass(frozen=True)
class TaxAssessment:
    """Employee withholding and employer tax for one gross figure."""

    employee_items: tuple[TaxItem, ...] = ()
    employer_items: tuple[TaxItem, ...] = ()


class JurisdictionRules(Protocol):
    """Opaque tax-table lookup for one jurisdiction."""

    jurisdiction: str

    def assess(
        self, gross_pay: Decimal, exemptions: AbstractSet[str] = frozenset()
    ) -> TaxAssessment: ...


# ===== Outputs =====


@dataclass(frozen=True)
class EarningLine:
    name: str
    amount: Decimal
    percent: Decimal | None = None
    source: str = "recurring"

    def to_dict(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "amount": str(self.amount),
            "percent": str(self.percent) if self.percent is not None else None,
            "source": self.source,
        }


@dataclass(frozen=True)
class DeductionLine:
    name: str
    amount: Decimal
    percent: Decimal | None = None
    basis: str = DeductionBasis.GROSS.value

    def to_dict(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "amount": str(self.amount),
            "percent": str(self.percent) if self.percent is not None else None,
            "basis": self.basis,
        }


@dataclass(frozen=True)
class TaxLine:
    name: str
    amount: Decimal

    def to_dict(self) -> dict[str, Any]:
        return {"name": self.name, "amount": str(self.amount)}


def _total(items: list[Any]) -> Decimal:
    return sum((item.amount for item in items), ZERO)


@dataclass
class PayrollLineResult:
    """A computed line before persistence.

    Every stored component is already rounded; the derived figures are exact
    sums of them, so ``gross_pay == base_pay + sum(earnings)`` and
    ``net_pay == gross_pay - total_taxes - total_deductions`` always hold.
    """

    person_id: UUID
    full_name: str
    person_type: str = PersonType.EMPLOYEE.value
    jurisdiction: str | None = None
    is_included: bool = True
    exclude_reason: str | None = None
    pay_type: str | None = None
    pay_rate: Decimal | None = None
    hours: Decimal | None = None
    base_pay: Decimal = ZERO
    earnings: list[EarningLine] = field(default_factory=list)
    employee_taxes: list[TaxLine] = field(default_factory=list)
    deductions: list[DeductionLine] = field(default_factory=list)
    employer_tax_items: list[TaxLine] = field(default_factory=list)
    employer_contribution_items: list[DeductionLine] = field(default_factory=list)
    row_notes: str | None = None

    @property
    def gross_pay(self) -> Decimal:
        return self.base_pay + _total(self.earnings)

    @property
    def total_taxes(self) -> Decimal:
        return _total(self.employee_taxes)

    @property
    def total_deductions(self) -> Decimal:
        return _total(self.deductions)

    @property
    def net_pay(self) -> Decimal:
        return self.gross_pay - self.total_taxes - self.total_deductions

    @property
    def employer_taxes(self) -> Decimal:
        return _total(self.employer_tax_items)

    @property
    def employer_contributions(self) -> Decimal:
        return _total(self.employer_contribution_items)

    @property
    def total_employer_cost(self) -> Decimal:
        return self.gross_pay + self.employer_taxes + self.employer_contributions

    def to_canonical_dict(self) -> dict[str, Any]:
        """Return canonical dict for comparison (deterministic ordering)."""
        return {
            "person_id": str(self.person_id),
            "full_name": self.full_name,
            "person_type": self.person_type,
            "jurisdiction": self.jurisdiction,
            "is_included": self.is_included,
            "exclude_reason": self.exclude_reason,
            "pay_type": self.pay_type,
            "pay_rate": str(self.pay_rate) if self.pay_rate is not None else None,
            "hours": str(self.hours) if self.hours is not None else None,
            "base_pay": str(self.base_pay),
            "earnings": [e.to_dict() for e in self.earnings],
            "employee_taxes": [t.to_dict() for t in self.employee_taxes],
            "deductions": [d.to_dict() for d in self.deductions],
            "employer_tax_items": [t.to_dict() for t in self.employer_tax_items],
            "employer_contribution_items": [
                c.to_dict() for c in self.employer_contribution_items
            ],
            "gross_pay": str(self.gross_pay),
            "total_taxes": str(self.total_taxes),
            "total_deductions": str(self.total_deductions),
            "net_pay": str(self.net_pay),
            "employer_taxes": str(self.employer_taxes),
            "employer_contributions": str(self.employer_contributions),
            "total_employer_cost": str(self.total_employer_cost),
            "row_notes": self.row_notes,
        }


@dataclass(frozen=True)
class RunTotals:
    """Run-level sums over included lines."""

    total_gross_pay: Decimal = ZERO
    total_net_pay: Decimal = ZERO
    total_employee_taxes: Decimal = ZERO
    total_employee_deductions: Decimal = ZERO
    total_employer_taxes: Decimal = ZERO
    total_employer_contributions: Decimal = ZERO
    employee_count: int = 0

    @property
    def total_employer_cost(self) -> Decimal:
        return (
            self.total_gross_pay
            + self.total_employer_taxes
            + self.total_employer_contributions
        )

"""Per-person pay line calculation."""

from __future__ import annotations

import logging
from decimal import Decimal
from enum import Enum
from typing import Iterable

from payrun_engine.calculators.money import CENT, round_money
from payrun_engine.calculators.types import (
    ZERO,
    AdjustmentInput,
    CompensationTerms,
    DeductionBasis,
    DeductionInput,
    DeductionLine,
    EarningLine,
    JurisdictionRules,
    PayrollLineResult,
    PayType,
    PeriodInfo,
    PersonRecord,
    PersonType,
    TaxLine,
)
from payrun_engine.exceptions import (
    JurisdictionRulesUnavailableError,
    MissingCompensationProfileError,
    PersonCalculationError,
)

logger = logging.getLogger(__name__)


def _value(member: Enum | str) -> str:
    return member.value if isinstance(member, Enum) else member


HUNDRED = Decimal("100")
HOURS_PRECISION = Decimal("0.0001")

PERIODS_PER_YEAR: dict[str, int] = {
    "weekly": 52,
    "biweekly": 26,
    "semimonthly": 24,
    "monthly": 12,
}

WEEKS_PER_PERIOD: dict[str, Decimal] = {
    "weekly": Decimal("1"),
    "biweekly": Decimal("2"),
    "semimonthly": Decimal("52") / Decimal("24"),
    "monthly": Decimal("52") / Decimal("12"),
}


class LineCalculator:
    """Computes one person's line for a period.

    Calculation order (stable per person):
    1) Base pay from pay type and rate
    2) Recurring earnings in declared order
    3) One-off adjustments, ordered by (name, amount)
    4) Gross pay is final; taxes are assessed on it by the jurisdiction rules
    5) Deductions, then employer contributions, against gross (or base)

    Each stored component is rounded exactly once, half-up to the minor unit.
    Derived totals are sums of those rounded components, never re-rounded.
    The calculator is pure: no I/O, no clock.
    """

    def __init__(self, minor_unit: Decimal = CENT):
        self.minor_unit = minor_unit

    def round(self, amount: Decimal) -> Decimal:
        return round_money(amount, self.minor_unit)

    def calculate(
        self,
        person: PersonRecord,
        profile: CompensationTerms | None,
        period: PeriodInfo,
        rules: JurisdictionRules | None,
        adjustments: Iterable[AdjustmentInput] = (),
        hours: Decimal | None = None,
    ) -> PayrollLineResult:
        """Calculate a line; per-person failures become an excluded line."""
        try:
            if profile is None or not profile.covers(period.start_date, period.end_date):
                raise MissingCompensationProfileError(person.id)
            return self._calculate(person, profile, rules, adjustments, hours)
        except PersonCalculationError as exc:
            logger.info(
                "Excluding person from run: %s",
                exc.reason,
                extra={"person_id": str(person.id), "error_code": exc.code},
            )
            return self.exclude(person, exc.reason, profile)

    def exclude(
        self,
        person: PersonRecord,
        reason: str,
        profile: CompensationTerms | None = None,
    ) -> PayrollLineResult:
        """Build an excluded line carrying the reason."""
        return PayrollLineResult(
            person_id=person.id,
            full_name=person.full_name,
            person_type=_value(person.person_type),
            jurisdiction=person.jurisdiction,
            is_included=False,
            exclude_reason=reason,
            pay_type=_value(profile.pay_type) if profile else None,
            pay_rate=profile.pay_rate if profile else None,
        )

    def _calculate(
        self,
        person: PersonRecord,
        profile: CompensationTerms,
        rules: JurisdictionRules | None,
        adjustments: Iterable[AdjustmentInput],
        hours: Decimal | None,
    ) -> PayrollLineResult:
        try:
            pay_type = PayType(profile.pay_type)
        except ValueError:
            raise PersonCalculationError(
                person.id, f"Unsupported pay type '{_value(profile.pay_type)}'"
            ) from None
        person_type = PersonType(person.person_type)
        notes: list[str] = []

        worked_hours = None
        if pay_type == PayType.HOURLY:
            worked_hours = hours
            if worked_hours is None:
                worked_hours = self._standard_hours(person, profile)
                notes.append("No hours recorded; standard hours applied")

        base_pay = self.round(self._base_pay(person, profile, pay_type, worked_hours))

        line = PayrollLineResult(
            person_id=person.id,
            full_name=person.full_name,
            person_type=person_type.value,
            jurisdiction=person.jurisdiction,
            pay_type=pay_type.value,
            pay_rate=profile.pay_rate,
            hours=worked_hours,
            base_pay=base_pay,
        )

        for earning in profile.recurring_earnings:
            if earning.percent is not None:
                amount = base_pay * earning.percent / HUNDRED
            else:
                amount = earning.amount or ZERO
            line.earnings.append(
                EarningLine(
                    name=earning.name,
                    amount=self.round(amount),
                    percent=earning.percent,
                    source="recurring",
                )
            )

        for adjustment in sorted(adjustments, key=lambda a: (a.name, a.amount)):
            line.earnings.append(
                EarningLine(
                    name=adjustment.name,
                    amount=self.round(adjustment.amount),
                    source="adjustment",
                )
            )

        gross_pay = line.gross_pay

        if person_type == PersonType.CONTRACTOR:
            notes.append("Contractor: no withholding")
        else:
            if rules is None:
                raise JurisdictionRulesUnavailableError(person.id, person.jurisdiction)
            try:
                assessment = rules.assess(gross_pay, person.tax_exemptions)
            except (ArithmeticError, ValueError, TypeError) as exc:
                raise JurisdictionRulesUnavailableError(
                    person.id, person.jurisdiction, f"rule evaluation failed: {exc}"
                ) from exc
            if person.tax_exemptions:
                notes.append("Exempt from " + ", ".join(sorted(person.tax_exemptions)) + " tax")
            line.employee_taxes = [
                TaxLine(item.name, self.round(item.amount))
                for item in assessment.employee_items
            ]
            line.employer_tax_items = [
                TaxLine(item.name, self.round(item.amount))
                for item in assessment.employer_items
            ]

        line.deductions = [
            self._charge(item, gross_pay, base_pay) for item in profile.deductions
        ]
        line.employer_contribution_items = [
            self._charge(item, gross_pay, base_pay)
            for item in profile.employer_contributions
        ]
        # Matches follow the configured contributions, in deduction order
        for item, deduction in zip(profile.deductions, line.deductions):
            match = self._employer_match(item, deduction, gross_pay)
            if match is not None:
                line.employer_contribution_items.append(match)

        line.row_notes = "; ".join(notes) or None
        return line

    def _standard_hours(self, person: PersonRecord, profile: CompensationTerms) -> Decimal:
        weeks = WEEKS_PER_PERIOD.get(profile.pay_frequency)
        if weeks is None:
            raise PersonCalculationError(
                person.id, f"Unsupported pay frequency '{profile.pay_frequency}'"
            )
        return (profile.standard_weekly_hours * weeks).quantize(HOURS_PRECISION)

    def _base_pay(
        self,
        person: PersonRecord,
        profile: CompensationTerms,
        pay_type: PayType,
        hours: Decimal | None,
    ) -> Decimal:
        rate = profile.pay_rate
        if not rate:
            return ZERO

        if pay_type == PayType.SALARY:
            periods = PERIODS_PER_YEAR.get(profile.pay_frequency)
            if periods is None:
                raise PersonCalculationError(
                    person.id, f"Unsupported pay frequency '{profile.pay_frequency}'"
                )
            return rate / periods

        if pay_type == PayType.HOURLY:
            return rate * (hours or ZERO)

        # Commission: the rate is the period amount
        return rate

    def _charge(
        self, item: DeductionInput, gross_pay: Decimal, base_pay: Decimal
    ) -> DeductionLine:
        """Compute a deduction or employer contribution, honouring its annual limit."""
        basis = DeductionBasis(item.basis)
        if item.percent is not None:
            reference = base_pay if basis == DeductionBasis.BASE else gross_pay
            amount = reference * item.percent / HUNDRED
        else:
            amount = item.amount or ZERO

        if item.annual_limit is not None:
            remaining = max(item.annual_limit - item.ytd_amount, ZERO)
            amount = min(amount, remaining)

        return DeductionLine(
            name=item.name,
            amount=self.round(amount),
            percent=item.percent,
            basis=basis.value,
        )

    def _employer_match(
        self, item: DeductionInput, deduction: DeductionLine, gross_pay: Decimal
    ) -> DeductionLine | None:
        """Employer match of an employee deduction, capped at a percent of gross."""
        cap = item.match_cap_percent
        if cap is None or gross_pay <= 0:
            return None
        amount = min(deduction.amount, gross_pay * cap / HUNDRED)
        return DeductionLine(
            name=f"{item.name}_match",
            amount=self.round(amount),
            percent=cap,
            basis=DeductionBasis.GROSS.value,
        )

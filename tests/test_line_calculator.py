"""Tests for the per-person line calculator."""

from datetime import date
from decimal import Decimal, InvalidOperation
from uuid import uuid4

import pytest

from payrun_engine.calculators.line_calculator import LineCalculator
from payrun_engine.calculators.tax_rules import RuleTable, TaxRuleSpec
from payrun_engine.calculators.types import (
    AdjustmentInput,
    CompensationTerms,
    DeductionBasis,
    DeductionInput,
    EarningInput,
    PayType,
    PeriodInfo,
    PersonRecord,
    PersonType,
    TaxAssessment,
    TaxItem,
)

PERIOD = PeriodInfo(
    id=uuid4(),
    start_date=date(2024, 1, 1),
    end_date=date(2024, 1, 15),
    pay_date=date(2024, 1, 20),
)

RULES = RuleTable(
    jurisdiction="CA",
    rules=(
        TaxRuleSpec(name="withholding", side="employee", rate=Decimal("0.20")),
        TaxRuleSpec(name="unemployment", side="employer", rate=Decimal("0.01")),
    ),
)


def person(name="Ada Lovelace", person_type=PersonType.EMPLOYEE, jurisdiction="CA"):
    return PersonRecord(id=uuid4(), full_name=name, person_type=person_type, jurisdiction=jurisdiction)


def salary(rate="48000", **kwargs):
    return CompensationTerms(pay_type=PayType.SALARY, pay_rate=Decimal(rate), **kwargs)


@pytest.fixture
def calculator() -> LineCalculator:
    return LineCalculator()


class TestBasePay:
    """Base pay by pay type."""

    def test_salary_semimonthly(self, calculator):
        """Annual salary is divided by 24 for semimonthly pay."""
        line = calculator.calculate(person(), salary("48000"), PERIOD, RULES)

        assert line.is_included is True
        assert line.base_pay == Decimal("2000.00")
        assert line.gross_pay == Decimal("2000.00")

    @pytest.mark.parametrize(
        "frequency,expected",
        [
            ("weekly", Decimal("1000.00")),
            ("biweekly", Decimal("2000.00")),
            ("monthly", Decimal("4333.33")),
        ],
    )
    def test_salary_frequencies(self, calculator, frequency, expected):
        """Salary divides by the number of periods per year."""
        line = calculator.calculate(
            person(), salary("52000", pay_frequency=frequency), PERIOD, RULES
        )
        assert line.base_pay == expected

    def test_hourly_uses_recorded_hours(self, calculator):
        """Hourly base pay is rate times recorded hours."""
        terms = CompensationTerms(pay_type=PayType.HOURLY, pay_rate=Decimal("25.50"))
        line = calculator.calculate(person(), terms, PERIOD, RULES, hours=Decimal("80"))

        assert line.hours == Decimal("80")
        assert line.base_pay == Decimal("2040.00")
        assert line.row_notes is None

    def test_hourly_without_hours_uses_standard_hours(self, calculator):
        """Missing hours fall back to standard weekly hours for the period."""
        terms = CompensationTerms(
            pay_type=PayType.HOURLY,
            pay_rate=Decimal("20"),
            pay_frequency="biweekly",
        )
        line = calculator.calculate(person(), terms, PERIOD, RULES)

        assert line.hours == Decimal("80.0000")
        assert line.base_pay == Decimal("1600.00")
        assert "standard hours" in line.row_notes

    def test_commission_rate_is_period_amount(self, calculator):
        terms = CompensationTerms(pay_type=PayType.COMMISSION, pay_rate=Decimal("1234.565"))
        line = calculator.calculate(person(), terms, PERIOD, RULES)

        assert line.base_pay == Decimal("1234.57")

    def test_missing_rate_gives_zero_base(self, calculator):
        """A profile with no rate still produces an included line."""
        terms = CompensationTerms(pay_type=PayType.SALARY, pay_rate=None)
        line = calculator.calculate(person(), terms, PERIOD, RULES)

        assert line.is_included is True
        assert line.base_pay == Decimal("0.00")


class TestEarningsAndDeductions:
    """Earnings, adjustments, deductions and employer contributions."""

    def test_recurring_earnings_and_adjustments(self, calculator):
        """Fixed and percent earnings, then adjustments sorted by name."""
        terms = salary(
            "48000",
            recurring_earnings=(
                EarningInput(name="stipend", amount=Decimal("100")),
                EarningInput(name="shift_premium", percent=Decimal("10")),
            ),
        )
        adjustments = [
            AdjustmentInput(name="retro", amount=Decimal("50.005")),
            AdjustmentInput(name="bonus", amount=Decimal("500")),
        ]
        line = calculator.calculate(person(), terms, PERIOD, RULES, adjustments)

        assert [e.name for e in line.earnings] == ["stipend", "shift_premium", "bonus", "retro"]
        assert [e.amount for e in line.earnings] == [
            Decimal("100.00"),
            Decimal("200.00"),
            Decimal("500.00"),
            Decimal("50.01"),
        ]
        assert line.gross_pay == Decimal("2850.01")
        assert line.gross_pay == line.base_pay + sum(e.amount for e in line.earnings)

    def test_deductions_on_gross_and_base(self, calculator):
        """Percent deductions use gross unless the basis is base pay."""
        terms = salary(
            "48000",
            recurring_earnings=(EarningInput(name="stipend", amount=Decimal("1000")),),
            deductions=(
                DeductionInput(name="401k", percent=Decimal("5")),
                DeductionInput(name="pension", percent=Decimal("5"), basis=DeductionBasis.BASE),
                DeductionInput(name="parking", amount=Decimal("75")),
            ),
        )
        line = calculator.calculate(person(), terms, PERIOD, RULES)

        amounts = {d.name: d.amount for d in line.deductions}
        assert amounts == {
            "401k": Decimal("150.00"),
            "pension": Decimal("100.00"),
            "parking": Decimal("75.00"),
        }
        assert line.total_deductions == Decimal("325.00")

    def test_annual_limit_caps_deduction(self, calculator):
        """A deduction never exceeds what remains of its annual limit."""
        terms = salary(
            "48000",
            deductions=(
                DeductionInput(
                    name="401k",
                    percent=Decimal("10"),
                    annual_limit=Decimal("23000"),
                    ytd_amount=Decimal("22950"),
                ),
                DeductionInput(
                    name="hsa",
                    amount=Decimal("100"),
                    annual_limit=Decimal("4150"),
                    ytd_amount=Decimal("4150"),
                ),
            ),
        )
        line = calculator.calculate(person(), terms, PERIOD, RULES)

        amounts = {d.name: d.amount for d in line.deductions}
        assert amounts["401k"] == Decimal("50.00")
        assert amounts["hsa"] == Decimal("0.00")

    def test_employer_contributions_do_not_reduce_net(self, calculator):
        terms = salary(
            "48000",
            employer_contributions=(DeductionInput(name="401k_match", percent=Decimal("4")),),
        )
        line = calculator.calculate(person(), terms, PERIOD, RULES)

        assert line.employer_contributions == Decimal("80.00")
        assert line.net_pay == Decimal("1600.00")
        assert line.total_employer_cost == Decimal("2100.00")

    def test_employer_match_capped_at_percent_of_gross(self, calculator):
        """A 6% deferral is matched only up to 4% of gross."""
        terms = salary(
            "48000",
            deductions=(
                DeductionInput(
                    name="401k",
                    percent=Decimal("6"),
                    employer_match_percent=Decimal("4"),
                ),
            ),
        )
        line = calculator.calculate(person(), terms, PERIOD, RULES)

        assert line.deductions[0].amount == Decimal("120.00")
        assert [(c.name, c.amount) for c in line.employer_contribution_items] == [
            ("401k_match", Decimal("80.00"))
        ]
        assert line.net_pay == Decimal("1480.00")
        assert line.total_employer_cost == Decimal("2000.00") + Decimal("20.00") + Decimal("80.00")

    def test_employer_match_below_cap_equals_deduction(self, calculator):
        terms = salary(
            "48000",
            deductions=(
                DeductionInput(
                    name="401k",
                    percent=Decimal("3"),
                    employer_match_percent=Decimal("3"),
                    employer_match_max_percent=Decimal("4"),
                ),
                DeductionInput(name="parking", amount=Decimal("75")),
            ),
            employer_contributions=(DeductionInput(name="hsa", amount=Decimal("50")),),
        )
        line = calculator.calculate(person(), terms, PERIOD, RULES)

        assert [(c.name, c.amount) for c in line.employer_contribution_items] == [
            ("hsa", Decimal("50.00")),
            ("401k_match", Decimal("60.00")),
        ]
        assert line.employer_contributions == Decimal("110.00")

    def test_match_follows_annual_limited_deduction(self, calculator):
        """The match never exceeds what the employee actually deferred."""
        terms = salary(
            "48000",
            deductions=(
                DeductionInput(
                    name="401k",
                    percent=Decimal("6"),
                    annual_limit=Decimal("23000"),
                    ytd_amount=Decimal("22990"),
                    employer_match_percent=Decimal("4"),
                ),
            ),
        )
        line = calculator.calculate(person(), terms, PERIOD, RULES)

        assert line.deductions[0].amount == Decimal("10.00")
        assert line.employer_contribution_items[0].amount == Decimal("10.00")

    def test_no_match_without_match_percent(self, calculator):
        terms = salary(
            "48000",
            deductions=(
                DeductionInput(
                    name="401k",
                    percent=Decimal("6"),
                    employer_match_max_percent=Decimal("4"),
                ),
            ),
        )
        line = calculator.calculate(person(), terms, PERIOD, RULES)

        assert line.employer_contribution_items == []


class TestTaxes:
    """Tax assessment through jurisdiction rules."""

    def test_taxes_from_rules(self, calculator):
        line = calculator.calculate(person(), salary("48000"), PERIOD, RULES)

        assert line.total_taxes == Decimal("400.00")
        assert line.employer_taxes == Decimal("20.00")
        assert line.net_pay == Decimal("1600.00")

    def test_each_tax_item_rounded_once(self, calculator):
        """Items are rounded individually and summed without re-rounding."""

        class HalfCentRules:
            jurisdiction = "XX"

            def assess(self, gross_pay, exemptions=frozenset()):
                return TaxAssessment(
                    employee_items=(
                        TaxItem("a", Decimal("10.005")),
                        TaxItem("b", Decimal("10.005")),
                    )
                )

        line = calculator.calculate(person(), salary("48000"), PERIOD, HalfCentRules())

        assert [t.amount for t in line.employee_taxes] == [Decimal("10.01"), Decimal("10.01")]
        assert line.total_taxes == Decimal("20.02")

    def test_contractor_has_no_withholding(self, calculator):
        """Contractors are paid gross and need no rules."""
        contractor = person("Linus Contract", person_type=PersonType.CONTRACTOR)
        line = calculator.calculate(contractor, salary("48000"), PERIOD, None)

        assert line.is_included is True
        assert line.employee_taxes == []
        assert line.employer_tax_items == []
        assert line.net_pay == line.gross_pay
        assert "Contractor" in line.row_notes

    def test_exempt_categories_are_not_withheld(self, calculator):
        rules = RuleTable(
            jurisdiction="US",
            rules=(
                TaxRuleSpec(name="federal", side="employee", rate=Decimal("0.10"), category="federal"),
                TaxRuleSpec(name="social_security", side="employee", rate=Decimal("0.062"), category="fica"),
                TaxRuleSpec(name="social_security_er", side="employer", rate=Decimal("0.062"), category="fica"),
            ),
        )
        exempt = PersonRecord(
            id=uuid4(),
            full_name="Fay Exempt",
            jurisdiction="US",
            tax_exemptions=frozenset({"fica"}),
        )
        line = calculator.calculate(exempt, salary("48000"), PERIOD, rules)

        assert [(t.name, t.amount) for t in line.employee_taxes] == [("federal", Decimal("200.00"))]
        assert line.employer_tax_items == []
        assert line.net_pay == Decimal("1800.00")
        assert "Exempt from fica tax" in line.row_notes

    def test_failing_rule_evaluation_excludes_person(self, calculator):
        """Arithmetic errors inside the rules exclude only this person."""

        class RaisingRules:
            jurisdiction = "XX"

            def assess(self, gross_pay, exemptions=frozenset()):
                raise InvalidOperation("bad bracket")

        line = calculator.calculate(person(jurisdiction="XX"), salary("48000"), PERIOD, RaisingRules())

        assert line.is_included is False
        assert "XX" in line.exclude_reason
        assert "bad bracket" in line.exclude_reason


class TestExclusions:
    """Per-person failures become excluded lines."""

    def test_missing_profile_excludes(self, calculator):
        line = calculator.calculate(person(), None, PERIOD, RULES)

        assert line.is_included is False
        assert "compensation profile" in line.exclude_reason
        assert line.gross_pay == Decimal("0")

    def test_profile_not_covering_period_excludes(self, calculator):
        terms = salary("48000", effective_from=date(2024, 2, 1))
        line = calculator.calculate(person(), terms, PERIOD, RULES)

        assert line.is_included is False

    def test_missing_rules_excludes_employee(self, calculator):
        line = calculator.calculate(person(jurisdiction="ZZ"), salary("48000"), PERIOD, None)

        assert line.is_included is False
        assert "ZZ" in line.exclude_reason
        assert line.pay_type == "salary"

    def test_unsupported_frequency_excludes(self, calculator):
        line = calculator.calculate(
            person(), salary("48000", pay_frequency="fortnightly-ish"), PERIOD, RULES
        )

        assert line.is_included is False
        assert "pay frequency" in line.exclude_reason


class TestLineInvariants:
    """Properties that hold for every computed line."""

    def test_net_equals_gross_minus_taxes_and_deductions(self, calculator):
        terms = salary(
            "61234.57",
            recurring_earnings=(EarningInput(name="premium", percent=Decimal("3.3")),),
            deductions=(DeductionInput(name="401k", percent=Decimal("6.5")),),
        )
        line = calculator.calculate(
            person(), terms, PERIOD, RULES, [AdjustmentInput("bonus", Decimal("333.333"))]
        )

        assert line.net_pay == line.gross_pay - line.total_taxes - line.total_deductions
        for amount in [line.base_pay, line.net_pay, *(e.amount for e in line.earnings)]:
            assert amount == amount.quantize(Decimal("0.01"))

    def test_deterministic(self, calculator):
        """Same inputs give the same canonical line."""
        who = person()
        terms = salary(
            "50000",
            deductions=(DeductionInput(name="401k", percent=Decimal("5")),),
        )
        first = calculator.calculate(who, terms, PERIOD, RULES).to_canonical_dict()
        second = calculator.calculate(who, terms, PERIOD, RULES).to_canonical_dict()

        assert first == second

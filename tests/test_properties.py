"""Property-based tests for line and run arithmetic.

Uses hypothesis to generate compensation terms and adjustments and checks
the invariants every calculation must satisfy.
"""

from datetime import date
from decimal import Decimal
from uuid import UUID

from hypothesis import given, settings
from hypothesis import strategies as st

from payrun_engine.calculators.aggregator import aggregate
from payrun_engine.calculators.line_calculator import LineCalculator
from payrun_engine.calculators.tax_rules import RuleTable, TaxRuleSpec
from payrun_engine.calculators.types import (
    AdjustmentInput,
    CompensationTerms,
    DeductionInput,
    EarningInput,
    PayType,
    PeriodInfo,
    PersonRecord,
    PersonType,
)

CENT = Decimal("0.01")

PERIOD = PeriodInfo(
    id=UUID("00000000-0000-0000-0000-000000000001"),
    start_date=date(2024, 1, 1),
    end_date=date(2024, 1, 15),
    pay_date=date(2024, 1, 20),
)

RULES = RuleTable(
    jurisdiction="CA",
    rules=(
        TaxRuleSpec(name="withholding", side="employee", rate=Decimal("0.2175")),
        TaxRuleSpec(name="unemployment", side="employer", rate=Decimal("0.0133")),
    ),
)

amounts = st.decimals(
    min_value=Decimal("0"), max_value=Decimal("50000"), places=3, allow_nan=False
)
percents = st.decimals(
    min_value=Decimal("0"), max_value=Decimal("15"), places=2, allow_nan=False
)


@st.composite
def compensation(draw):
    return CompensationTerms(
        pay_type=PayType.SALARY,
        pay_rate=draw(st.decimals(min_value=Decimal("1000"), max_value=Decimal("500000"), places=2)),
        pay_frequency=draw(st.sampled_from(["weekly", "biweekly", "semimonthly", "monthly"])),
        recurring_earnings=tuple(
            EarningInput(name=f"earning_{i}", percent=p)
            for i, p in enumerate(draw(st.lists(percents, max_size=2)))
        ),
        deductions=tuple(
            DeductionInput(name=f"deduction_{i}", percent=p)
            for i, p in enumerate(draw(st.lists(percents, max_size=3)))
        ),
    )


@st.composite
def adjustments(draw):
    return [
        AdjustmentInput(name=f"adj_{i}", amount=amount)
        for i, amount in enumerate(draw(st.lists(amounts, max_size=3)))
    ]


def person(n: int) -> PersonRecord:
    return PersonRecord(
        id=UUID(int=n + 1),
        full_name=f"Person {n}",
        person_type=PersonType.EMPLOYEE,
        jurisdiction="CA",
    )


@settings(max_examples=75, deadline=None)
@given(terms=compensation(), extra=adjustments())
def test_line_arithmetic_holds(terms, extra):
    line = LineCalculator().calculate(person(0), terms, PERIOD, RULES, extra)

    assert line.is_included
    assert line.net_pay == line.gross_pay - line.total_taxes - line.total_deductions
    assert line.gross_pay == line.base_pay + sum(e.amount for e in line.earnings)
    for value in [
        line.base_pay,
        *(e.amount for e in line.earnings),
        *(d.amount for d in line.deductions),
        *(t.amount for t in line.employee_taxes),
    ]:
        assert value == value.quantize(CENT)


@settings(max_examples=50, deadline=None)
@given(terms=st.lists(compensation(), min_size=1, max_size=5))
def test_totals_are_sums_of_lines(terms):
    calculator = LineCalculator()
    lines = [calculator.calculate(person(i), t, PERIOD, RULES) for i, t in enumerate(terms)]

    totals = aggregate(lines)

    assert totals.employee_count == len(lines)
    assert totals.total_gross_pay == sum(line.gross_pay for line in lines)
    assert totals.total_net_pay == sum(line.net_pay for line in lines)
    assert totals.total_net_pay == (
        totals.total_gross_pay
        - totals.total_employee_taxes
        - totals.total_employee_deductions
    )


@settings(max_examples=30, deadline=None)
@given(terms=compensation(), extra=adjustments())
def test_same_inputs_same_line(terms, extra):
    calculator = LineCalculator()
    first = calculator.calculate(person(0), terms, PERIOD, RULES, extra)
    second = calculator.calculate(person(0), terms, PERIOD, RULES, list(reversed(extra)))

    assert first.to_canonical_dict() == second.to_canonical_dict()

"""Evaluation of jurisdiction withholding tables.

The line calculator never derives tax itself: it hands gross pay to a
``JurisdictionRules`` object and sums what comes back. ``RuleTable`` is the
table-driven implementation used with rules stored in
``jurisdiction_tax_rule``. Amounts are returned unrounded; the calculator
applies the single rounding step.

A rule may carry a ``category`` (``federal``, ``state`` or ``fica``). A
person exempt from a category gets neither the employee nor the employer
side of rules in it.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from decimal import Decimal
from typing import AbstractSet

from payrun_engine.calculators.types import ZERO, TaxAssessment, TaxItem

TAX_METHODS = ("flat", "bracket")
TAX_SIDES = ("employee", "employer")
TAX_CATEGORIES = ("federal", "state", "fica")


@dataclass(frozen=True)
class TaxBracket:
    """Row of a percentage-method table."""

    min_amount: Decimal
    max_amount: Decimal | None  # None = no upper limit
    rate: Decimal  # As decimal, e.g., 0.22 for 22%
    flat_amount: Decimal = ZERO  # Tax owed on wages up to min_amount


@dataclass(frozen=True)
class TaxRuleSpec:
    """One withholding rule for a jurisdiction."""

    name: str
    side: str = "employee"
    method: str = "flat"
    rate: Decimal | None = None
    brackets: tuple[TaxBracket, ...] = field(default_factory=tuple)
    wage_cap: Decimal | None = None
    category: str | None = None

    def __post_init__(self) -> None:
        if self.method not in TAX_METHODS:
            raise ValueError(f"Unknown tax method '{self.method}'")
        if self.side not in TAX_SIDES:
            raise ValueError(f"Unknown tax side '{self.side}'")
        if self.category is not None and self.category not in TAX_CATEGORIES:
            raise ValueError(f"Unknown tax category '{self.category}'")

    def taxable_wages(self, gross_pay: Decimal) -> Decimal:
        if gross_pay <= 0:
            return ZERO
        if self.wage_cap is not None:
            return min(gross_pay, self.wage_cap)
        return gross_pay

    def evaluate(self, gross_pay: Decimal) -> Decimal:
        wages = self.taxable_wages(gross_pay)
        if wages <= 0:
            return ZERO
        if self.method == "bracket":
            return calculate_bracket_tax(wages, self.brackets)
        return calculate_flat_tax(wages, self.rate)


def calculate_flat_tax(wages: Decimal, rate: Decimal | None) -> Decimal:
    """Calculate flat-rate tax."""
    if wages <= 0 or not rate:
        return ZERO
    return wages * rate


def calculate_bracket_tax(wages: Decimal, brackets: tuple[TaxBracket, ...]) -> Decimal:
    """Percentage method: flat amount of the bracket plus rate on the excess."""
    if wages <= 0 or not brackets:
        return ZERO

    applicable = None
    for bracket in sorted(brackets, key=lambda b: b.min_amount):
        if wages < bracket.min_amount:
            break
        applicable = bracket

    if applicable is None:
        return ZERO
    return applicable.flat_amount + (wages - applicable.min_amount) * applicable.rate


@dataclass(frozen=True)
class RuleTable:
    """All rules in effect for one jurisdiction on one pay date."""

    jurisdiction: str
    rules: tuple[TaxRuleSpec, ...] = ()

    def assess(
        self, gross_pay: Decimal, exemptions: AbstractSet[str] = frozenset()
    ) -> TaxAssessment:
        employee: list[TaxItem] = []
        employer: list[TaxItem] = []
        for rule in self.rules:
            if rule.category in exemptions:
                continue
            item = TaxItem(name=rule.name, amount=rule.evaluate(gross_pay))
            if rule.side == "employer":
                employer.append(item)
            else:
                employee.append(item)
        return TaxAssessment(employee_items=tuple(employee), employer_items=tuple(employer))

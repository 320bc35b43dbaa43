"""Run-level totals."""

from __future__ import annotations

from typing import Any, Iterable

from payrun_engine.calculators.types import ZERO, RunTotals


def aggregate(lines: Iterable[Any]) -> RunTotals:
    """Sum included lines into run totals.

    Lines are already rounded, so totals are plain sums and reconcile
    exactly against the visible line list. Excluded lines contribute nothing.
    """
    gross = net = taxes = deductions = employer_taxes = employer_contributions = ZERO
    count = 0

    for line in lines:
        if not line.is_included:
            continue
        gross += line.gross_pay
        net += line.net_pay
        taxes += line.total_taxes
        deductions += line.total_deductions
        employer_taxes += line.employer_taxes
        employer_contributions += line.employer_contributions
        count += 1

    return RunTotals(
        total_gross_pay=gross,
        total_net_pay=net,
        total_employee_taxes=taxes,
        total_employee_deductions=deductions,
        total_employer_taxes=employer_taxes,
        total_employer_contributions=employer_contributions,
        employee_count=count,
    )

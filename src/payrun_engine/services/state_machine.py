"""Payroll run state machine with transition validation."""

from __future__ import annotations

from enum import Enum
from typing import TYPE_CHECKING

from payrun_engine.exceptions import InvalidTransitionError, status_value

if TYPE_CHECKING:
    from payrun_engine.models import PayrollRun


class RunStatus(str, Enum):
    """Payroll run status values."""

    DRAFT = "draft"
    CALCULATING = "calculating"
    CALCULATED = "calculated"
    REVIEWING = "reviewing"
    APPROVED = "approved"
    POSTING = "posting"
    POSTED = "posted"
    PAID = "paid"
    VOID = "void"


class RunStateMachine:
    """State machine for payroll run status transitions.

    Allowed transitions:
    - draft → calculating, void
    - calculating → calculated, draft (failed first calculation), void
    - calculated → calculating (recalculate), reviewing, approved, void
    - reviewing → approved, void
    - approved → posting, void
    - posting → posted, approved (failed posting)
    - posted → paid
    """

    VALID_TRANSITIONS: dict[str, list[str]] = {
        RunStatus.DRAFT: [RunStatus.CALCULATING, RunStatus.VOID],
        RunStatus.CALCULATING: [RunStatus.CALCULATED, RunStatus.DRAFT, RunStatus.VOID],
        RunStatus.CALCULATED: [
            RunStatus.CALCULATING,
            RunStatus.REVIEWING,
            RunStatus.APPROVED,
            RunStatus.VOID,
        ],
        RunStatus.REVIEWING: [RunStatus.APPROVED, RunStatus.VOID],
        RunStatus.APPROVED: [RunStatus.POSTING, RunStatus.VOID],
        RunStatus.POSTING: [RunStatus.POSTED, RunStatus.APPROVED],
        RunStatus.POSTED: [RunStatus.PAID],
        RunStatus.PAID: [],  # Terminal state
        RunStatus.VOID: [],  # Terminal state
    }

    # Statuses a calculate call may start from
    CALCULATION_ALLOWED = {
        RunStatus.DRAFT,
        RunStatus.CALCULATED,
    }

    APPROVAL_ALLOWED = {
        RunStatus.CALCULATED,
        RunStatus.REVIEWING,
    }

    # Statuses whose lines and totals are immutable
    RESULTS_IMMUTABLE = {
        RunStatus.APPROVED,
        RunStatus.POSTING,
        RunStatus.POSTED,
        RunStatus.PAID,
        RunStatus.VOID,
    }

    # Ledger-backed statuses; a void is no longer possible
    POSTED_STATUSES = {
        RunStatus.POSTED,
        RunStatus.PAID,
    }

    @classmethod
    def can_transition(cls, from_status: str, to_status: str) -> bool:
        """Check if a transition is valid."""
        allowed = cls.VALID_TRANSITIONS.get(from_status, [])
        return to_status in allowed

    @classmethod
    def validate_transition(cls, from_status: str, to_status: str) -> None:
        """Validate a transition, raising InvalidTransitionError if invalid."""
        if not cls.can_transition(from_status, to_status):
            raise InvalidTransitionError(from_status, to_status)

    @classmethod
    def can_calculate(cls, status: str) -> bool:
        return status in cls.CALCULATION_ALLOWED

    @classmethod
    def can_approve(cls, status: str) -> bool:
        return status in cls.APPROVAL_ALLOWED

    @classmethod
    def are_results_immutable(cls, status: str) -> bool:
        return status in cls.RESULTS_IMMUTABLE

    @classmethod
    def is_posted(cls, status: str) -> bool:
        return status in cls.POSTED_STATUSES

    @classmethod
    def get_next_statuses(cls, current_status: str) -> list[str]:
        """Get list of valid next statuses from current status."""
        return cls.VALID_TRANSITIONS.get(current_status, [])

    @classmethod
    def validate_run_for_transition(
        cls, run: PayrollRun, to_status: str
    ) -> list[str]:
        """Validate a run for a specific transition, returning any errors.

        Returns list of error messages (empty if valid).
        """
        errors: list[str] = []
        from_status = run.status

        # Basic transition check
        if not cls.can_transition(from_status, to_status):
            errors.append(
                f"Cannot transition from '{status_value(from_status)}' "
                f"to '{status_value(to_status)}'"
            )
            return errors

        if to_status == RunStatus.CALCULATING:
            if not cls.can_calculate(from_status):
                errors.append(f"Cannot calculate a run in status '{from_status}'")

        elif to_status == RunStatus.APPROVED and from_status != RunStatus.POSTING:
            if not run.has_totals:
                errors.append("Run has not been calculated")
            elif not run.employee_count:
                errors.append("Run has no included employees")

        elif to_status == RunStatus.POSTING:
            if not run.has_totals:
                errors.append("Run has no totals to post")

        return errors

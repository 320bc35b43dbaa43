"""Tests for payroll run state machine."""

from decimal import Decimal
from types import SimpleNamespace

import pytest

from payrun_engine.exceptions import InvalidTransitionError
from payrun_engine.services.state_machine import RunStateMachine, RunStatus


def run(status, totals=True, employee_count=2):
    return SimpleNamespace(
        status=status,
        has_totals=totals,
        employee_count=employee_count,
        total_gross_pay=Decimal("3500.00") if totals else None,
    )


class TestRunStateMachine:
    """Test state machine transitions."""

    def test_valid_transitions(self):
        """Test that valid transitions are allowed."""
        assert RunStateMachine.can_transition("draft", "calculating") is True
        assert RunStateMachine.can_transition("calculating", "calculated") is True
        # recalculation
        assert RunStateMachine.can_transition("calculated", "calculating") is True
        assert RunStateMachine.can_transition("calculated", "reviewing") is True
        assert RunStateMachine.can_transition("calculated", "approved") is True
        assert RunStateMachine.can_transition("reviewing", "approved") is True
        assert RunStateMachine.can_transition("approved", "posting") is True
        assert RunStateMachine.can_transition("posting", "posted") is True
        assert RunStateMachine.can_transition("posted", "paid") is True

    def test_failure_paths(self):
        """A failed calculation or posting falls back."""
        assert RunStateMachine.can_transition("calculating", "draft") is True
        assert RunStateMachine.can_transition("posting", "approved") is True

    def test_invalid_transitions(self):
        """Test that invalid transitions are blocked."""
        assert RunStateMachine.can_transition("draft", "approved") is False
        assert RunStateMachine.can_transition("reviewing", "calculating") is False
        assert RunStateMachine.can_transition("approved", "calculating") is False
        assert RunStateMachine.can_transition("approved", "posted") is False
        assert RunStateMachine.can_transition("posted", "void") is False
        assert RunStateMachine.can_transition("paid", "void") is False

        # Terminal states
        assert RunStateMachine.get_next_statuses("void") == []
        assert RunStateMachine.get_next_statuses("paid") == []

    @pytest.mark.parametrize(
        "status", ["draft", "calculating", "calculated", "reviewing", "approved"]
    )
    def test_void_before_posting(self, status):
        assert RunStateMachine.can_transition(status, "void") is True

    def test_enum_and_string_are_interchangeable(self):
        assert RunStateMachine.can_transition(RunStatus.DRAFT, "calculating") is True
        assert RunStateMachine.can_transition("approved", RunStatus.POSTING) is True

    def test_validate_transition_raises(self):
        """Test that validate_transition raises for invalid transitions."""
        with pytest.raises(InvalidTransitionError) as exc_info:
            RunStateMachine.validate_transition("draft", RunStatus.POSTED)

        assert exc_info.value.from_status == "draft"
        assert exc_info.value.to_status == "posted"
        assert exc_info.value.code == "INVALID_TRANSITION"
        assert "RunStatus" not in str(exc_info.value)

    def test_can_calculate(self):
        """Test calculation allowed statuses."""
        assert RunStateMachine.can_calculate("draft") is True
        assert RunStateMachine.can_calculate("calculated") is True
        assert RunStateMachine.can_calculate("reviewing") is False
        assert RunStateMachine.can_calculate("approved") is False
        assert RunStateMachine.can_calculate("posted") is False

    def test_results_immutable(self):
        assert RunStateMachine.are_results_immutable("calculated") is False
        assert RunStateMachine.are_results_immutable("approved") is True
        assert RunStateMachine.are_results_immutable("posted") is True
        assert RunStateMachine.is_posted("paid") is True
        assert RunStateMachine.is_posted("approved") is False


class TestValidateRunForTransition:
    """Run-level checks on top of the transition table."""

    def test_approve_requires_totals(self):
        errors = RunStateMachine.validate_run_for_transition(
            run("calculated", totals=False), RunStatus.APPROVED
        )
        assert errors == ["Run has not been calculated"]

    def test_approve_requires_included_employees(self):
        errors = RunStateMachine.validate_run_for_transition(
            run("calculated", employee_count=0), RunStatus.APPROVED
        )
        assert errors == ["Run has no included employees"]

    def test_approve_ok(self):
        assert RunStateMachine.validate_run_for_transition(run("reviewing"), RunStatus.APPROVED) == []

    def test_invalid_transition_reported(self):
        errors = RunStateMachine.validate_run_for_transition(run("posted"), RunStatus.APPROVED)
        assert errors == ["Cannot transition from 'posted' to 'approved'"]

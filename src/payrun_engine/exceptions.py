"""Typed exception hierarchy for the payroll run engine.

Every error carries a machine-readable ``code``, the ``reason`` a caller can
show to a user, and a ``context`` dict of structured data. The API layer
serializes these verbatim, so callers never need to parse messages.

    PayrollEngineError
    +-- RunValidationError
    +-- NotFoundError
    |   +-- RunNotFoundError
    |   +-- PeriodNotFoundError
    +-- RunPreconditionError
    |   +-- InvalidTransitionError
    |   +-- AnomalyAcknowledgementRequiredError
    |   +-- PeriodAlreadyPostedError
    +-- PersonCalculationError          (recovered as an excluded line)
    |   +-- MissingCompensationProfileError
    |   +-- JurisdictionRulesUnavailableError
    +-- InvalidTaxRuleError             (excludes the persons it applies to)
    +-- PostingError
    |   +-- UnbalancedEntryError
    |   +-- LedgerUnavailableError
    +-- ConcurrencyConflictError        (retryable)
        +-- RecalculationInProgressError
        +-- StaleRunStateError
"""

from __future__ import annotations

from decimal import Decimal
from typing import Any


def status_value(status: Any) -> str:
    """Plain string for a status given as enum member or string."""
    return str(getattr(status, "value", status))


class PayrollEngineError(Exception):
    """Base class for all engine errors."""

    code: str = "PAYROLL_ENGINE_ERROR"
    http_status: int = 500
    retryable: bool = False

    def __init__(self, reason: str, context: dict[str, Any] | None = None):
        self.reason = reason
        self.context = context or {}
        super().__init__(reason)

    def to_dict(self) -> dict[str, Any]:
        return {
            "detail": str(self),
            "code": self.code,
            "reason": self.reason,
            "context": self.context,
            "retryable": self.retryable,
        }


# ===== Validation =====


class RunValidationError(PayrollEngineError):
    """Malformed input rejected before anything is written."""

    code = "VALIDATION_ERROR"
    http_status = 400


class NotFoundError(PayrollEngineError):
    code = "NOT_FOUND"
    http_status = 404


class RunNotFoundError(NotFoundError):
    code = "RUN_NOT_FOUND"

    def __init__(self, run_id: Any):
        self.run_id = run_id
        super().__init__(f"Payroll run {run_id} not found", {"run_id": str(run_id)})


class PeriodNotFoundError(NotFoundError):
    code = "PERIOD_NOT_FOUND"

    def __init__(self, period_id: Any):
        self.period_id = period_id
        super().__init__(
            f"Pay period {period_id} not found", {"period_id": str(period_id)}
        )


# ===== Preconditions =====


class RunPreconditionError(PayrollEngineError):
    """The run is not in a state that allows the requested operation."""

    code = "PRECONDITION_FAILED"
    http_status = 409


class InvalidTransitionError(RunPreconditionError):
    """Raised when an invalid state transition is attempted."""

    code = "INVALID_TRANSITION"

    def __init__(self, from_status: str, to_status: str, reason: str | None = None):
        self.from_status = status_value(from_status)
        self.to_status = status_value(to_status)
        msg = f"Invalid transition from '{self.from_status}' to '{self.to_status}'"
        if reason:
            msg += f": {reason}"
        super().__init__(
            msg,
            {"from_status": self.from_status, "to_status": self.to_status},
        )
        self.reason = reason or msg


class AnomalyAcknowledgementRequiredError(RunPreconditionError):
    code = "ANOMALY_ACKNOWLEDGEMENT_REQUIRED"

    def __init__(self, anomaly_count: int):
        self.anomaly_count = anomaly_count
        super().__init__(
            f"Run has {anomaly_count} anomaly(ies); approval requires acknowledge_anomalies=true",
            {"anomaly_count": anomaly_count},
        )


class PeriodAlreadyPostedError(RunPreconditionError):
    code = "PERIOD_ALREADY_POSTED"

    def __init__(self, period_id: Any, posted_run_id: Any):
        super().__init__(
            f"Pay period {period_id} already has posted run {posted_run_id}",
            {"period_id": str(period_id), "posted_run_id": str(posted_run_id)},
        )


# ===== Per-person calculation =====


class PersonCalculationError(PayrollEngineError):
    """A single person's line cannot be computed; becomes an exclusion."""

    code = "PERSON_CALCULATION_ERROR"
    http_status = 422

    def __init__(self, person_id: Any, reason: str):
        self.person_id = person_id
        super().__init__(reason, {"person_id": str(person_id)})


class MissingCompensationProfileError(PersonCalculationError):
    code = "MISSING_COMPENSATION_PROFILE"

    def __init__(self, person_id: Any):
        super().__init__(person_id, "No active compensation profile covers the period")


class JurisdictionRulesUnavailableError(PersonCalculationError):
    code = "JURISDICTION_RULES_UNAVAILABLE"

    def __init__(self, person_id: Any, jurisdiction: str | None, detail: str = ""):
        self.jurisdiction = jurisdiction
        reason = f"Tax rules unavailable for jurisdiction '{jurisdiction}'"
        if detail:
            reason += f": {detail}"
        super().__init__(person_id, reason)
        self.context["jurisdiction"] = jurisdiction


class InvalidTaxRuleError(PayrollEngineError):
    """A stored jurisdiction rule cannot be evaluated."""

    code = "INVALID_TAX_RULE"
    http_status = 422

    def __init__(self, jurisdiction: str, rule_name: str, detail: str):
        self.jurisdiction = jurisdiction
        self.rule_name = rule_name
        super().__init__(
            f"Tax rule '{rule_name}' for '{jurisdiction}' is invalid: {detail}",
            {"jurisdiction": jurisdiction, "rule": rule_name},
        )


# ===== Posting =====


class PostingError(PayrollEngineError):
    """Posting failed; the run stays approved and may be posted again."""

    code = "POSTING_ERROR"
    http_status = 422


class UnbalancedEntryError(PostingError):
    code = "UNBALANCED_ENTRY"

    def __init__(self, total_debits: Decimal, total_credits: Decimal):
        self.total_debits = total_debits
        self.total_credits = total_credits
        super().__init__(
            f"Journal entry is unbalanced: debits {total_debits} != credits {total_credits}",
            {"total_debits": str(total_debits), "total_credits": str(total_credits)},
        )


class LedgerUnavailableError(PostingError):
    code = "LEDGER_UNAVAILABLE"
    http_status = 503
    retryable = True


# ===== Concurrency =====


class ConcurrencyConflictError(PayrollEngineError):
    """Lost a race with another writer; safe to retry."""

    code = "CONCURRENCY_CONFLICT"
    http_status = 409
    retryable = True


class RecalculationInProgressError(ConcurrencyConflictError):
    code = "RECALCULATION_IN_PROGRESS"

    def __init__(self, run_id: Any):
        super().__init__(
            f"Payroll run {run_id} is already being calculated",
            {"run_id": str(run_id)},
        )


class StaleRunStateError(ConcurrencyConflictError):
    code = "STALE_RUN_STATE"

    def __init__(
        self,
        run_id: Any,
        expected: str,
        actual: str | None = None,
        reason: str | None = None,
    ):
        msg = reason or f"Payroll run {run_id} is no longer '{status_value(expected)}'"
        if actual and not reason:
            msg += f" (now '{actual}')"
        super().__init__(
            msg,
            {"run_id": str(run_id), "expected_status": status_value(expected), "actual_status": actual},
        )

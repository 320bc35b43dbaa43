"""Payroll run services."""

from payrun_engine.services.ledger_poster import LedgerPoster
from payrun_engine.services.locking_service import RunLockRegistry, lock_run_row, run_locks
from payrun_engine.services.payroll_run_service import CalculationOutcome, PayrollRunService
from payrun_engine.services.run_queries import RunQueryService
from payrun_engine.services.state_machine import RunStateMachine, RunStatus

__all__ = [
    "CalculationOutcome",
    "LedgerPoster",
    "PayrollRunService",
    "RunLockRegistry",
    "RunQueryService",
    "RunStateMachine",
    "RunStatus",
    "lock_run_row",
    "run_locks",
]

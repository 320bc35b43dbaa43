"""Payroll run service - orchestrates the run lifecycle.

Each public operation is one unit of work on the service's session: it
commits on success and rolls back on any error, so a rejected operation
never leaves partial state behind.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any
from uuid import UUID

from sqlalchemy import delete, func, select, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from payrun_engine.calculators.aggregator import aggregate
from payrun_engine.calculators.anomaly_detector import Anomaly, AnomalyDetector
from payrun_engine.calculators.line_calculator import LineCalculator
from payrun_engine.calculators.types import (
    JurisdictionRules,
    PayrollLineResult,
    PayType,
    PeriodInfo,
    PersonRecord,
    PersonType,
    RunTotals,
)
from payrun_engine.config import Settings, get_settings
from payrun_engine.exceptions import (
    AnomalyAcknowledgementRequiredError,
    ConcurrencyConflictError,
    InvalidTaxRuleError,
    InvalidTransitionError,
    JurisdictionRulesUnavailableError,
    PeriodAlreadyPostedError,
    PeriodNotFoundError,
    PersonCalculationError,
    PostingError,
    RunNotFoundError,
    RunPreconditionError,
    RunValidationError,
    StaleRunStateError,
)
from payrun_engine.models import (
    RUN_TYPES,
    AnomalyLog,
    PayrollLine,
    PayrollRun,
    PayrollRunAudit,
)
from payrun_engine.services.ledger_poster import LedgerPoster, totals_from_run
from payrun_engine.services.locking_service import RunLockRegistry, lock_run_row, run_locks
from payrun_engine.services.state_machine import RunStateMachine, RunStatus
from payrun_engine.sources.base import EngineSources
from payrun_engine.sources.sql import sql_sources

logger = logging.getLogger(__name__)


def _now() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class CalculationOutcome:
    """What a calculate call returns to its caller."""

    run: PayrollRun
    lines: list[PayrollLine]
    totals: RunTotals
    anomalies: list[Anomaly] = field(default_factory=list)


class PayrollRunService:
    """Service for managing the payroll run lifecycle.

    Operations:
    - create_run: new draft run for a period (idempotent on its number)
    - calculate_run: compute lines, anomalies and totals
    - start_review: calculated → reviewing
    - approve_run: lock results, with anomaly acknowledgement
    - post_run: write the journal entry and flip to posted atomically
    - mark_paid: posted → paid
    - void_run: abandon a run that has not been posted
    """

    def __init__(
        self,
        session: AsyncSession,
        sources: EngineSources | None = None,
        settings: Settings | None = None,
        locks: RunLockRegistry | None = None,
    ):
        self.session = session
        self.settings = settings or get_settings()
        self.sources = sources or sql_sources(session)
        self.locks = locks or run_locks
        self.calculator = LineCalculator(self.settings.currency_minor_unit)
        self.detector = AnomalyDetector(self.settings.anomaly_large_delta_percent)
        self.poster = LedgerPoster(self.sources.ledger, self.settings.gl_accounts)

    # ------------------------------------------------------------------
    # Loading
    # ------------------------------------------------------------------

    async def get_run(self, run_id: UUID, load_lines: bool = False) -> PayrollRun:
        """Load the current state of a run or raise RunNotFoundError."""
        query = (
            select(PayrollRun)
            .where(PayrollRun.id == run_id)
            .execution_options(populate_existing=True)
        )
        if load_lines:
            query = query.options(selectinload(PayrollRun.lines))
        result = await self.session.execute(query)
        run = result.scalar_one_or_none()
        if run is None:
            raise RunNotFoundError(run_id)
        return run

    async def _get_period(self, period_id: UUID) -> PeriodInfo:
        period = await self.sources.periods.get_period(period_id)
        if period is None:
            raise PeriodNotFoundError(period_id)
        return period

    # ------------------------------------------------------------------
    # Create
    # ------------------------------------------------------------------

    async def create_run(
        self,
        period_id: UUID,
        run_type: str = "regular",
        run_number: int | None = None,
        actor_id: str | None = None,
        notes: str | None = None,
    ) -> tuple[PayrollRun, bool]:
        """Create a draft run, or return the open run holding the same number.

        Returns ``(run, created)``. Without ``run_number`` the next number in
        the period for that run type is used.
        """
        if run_type not in RUN_TYPES:
            raise RunValidationError(
                f"Unknown run type '{run_type}'", {"allowed": list(RUN_TYPES)}
            )
        if run_number is not None and run_number < 1:
            raise RunValidationError("run_number must be >= 1", {"run_number": run_number})
        explicit_number = run_number is not None

        try:
            await self._get_period(period_id)

            if explicit_number:
                existing = await self._find_open_run(period_id, run_type, run_number)
                if existing is not None:
                    self._ensure_not_posted(existing)
                    await self.session.commit()
                    return existing, False
            else:
                run_number = await self._next_run_number(period_id, run_type)

            run = PayrollRun(
                period_id=period_id,
                run_type=run_type,
                run_number=run_number,
                status=RunStatus.DRAFT.value,
                notes=notes,
                created_by=actor_id,
            )
            self.session.add(run)
            await self.session.flush()
            self._record_audit(run.id, "created", actor_id, {"run_number": run_number})
            await self.session.commit()
        except IntegrityError:
            # Lost a race for the same (period, type, number)
            await self.session.rollback()
            existing = None
            if explicit_number:
                existing = await self._find_open_run(period_id, run_type, run_number)
            if existing is None:
                raise ConcurrencyConflictError(
                    "Run number was taken concurrently; retry",
                    {"period_id": str(period_id), "run_number": run_number},
                ) from None
            self._ensure_not_posted(existing)
            return existing, False
        except Exception:
            await self.session.rollback()
            raise

        logger.info(
            "Payroll run created",
            extra={"run_id": str(run.id), "period_id": str(period_id), "actor_id": actor_id},
        )
        return run, True

    async def _find_open_run(
        self, period_id: UUID, run_type: str, run_number: int
    ) -> PayrollRun | None:
        result = await self.session.execute(
            select(PayrollRun).where(
                PayrollRun.period_id == period_id,
                PayrollRun.run_type == run_type,
                PayrollRun.run_number == run_number,
                PayrollRun.status != RunStatus.VOID.value,
            )
        )
        return result.scalar_one_or_none()

    async def _next_run_number(self, period_id: UUID, run_type: str) -> int:
        current = await self.session.scalar(
            select(func.max(PayrollRun.run_number)).where(
                PayrollRun.period_id == period_id,
                PayrollRun.run_type == run_type,
            )
        )
        return (current or 0) + 1

    @staticmethod
    def _ensure_not_posted(run: PayrollRun) -> None:
        if RunStateMachine.is_posted(run.status):
            raise RunPreconditionError(
                f"Run {run.run_type} #{run.run_number} for this period is already {run.status}",
                {"run_id": str(run.id), "status": run.status},
            )

    # ------------------------------------------------------------------
    # Calculate
    # ------------------------------------------------------------------

    async def calculate_run(self, run_id: UUID, actor_id: str | None = None) -> CalculationOutcome:
        """Recompute every line, anomaly and total for the run.

        Holds the run lock for the whole call. Old lines are deleted and the
        new set inserted in the same transaction as the totals and status,
        so readers see either the previous result or the new one.
        """
        nowait = self.settings.fail_fast_on_lock
        async with self.locks.hold(run_id, nowait=nowait):
            try:
                outcome = await self._calculate_locked(run_id, actor_id, nowait)
                await self.session.commit()
            except Exception:
                await self.session.rollback()
                raise

        logger.info(
            "Payroll run calculated",
            extra={
                "run_id": str(run_id),
                "actor_id": actor_id,
                "employee_count": outcome.totals.employee_count,
                "anomaly_count": len(outcome.anomalies),
                "calculation_version": outcome.run.calculation_version,
            },
        )
        return outcome

    async def _calculate_locked(
        self, run_id: UUID, actor_id: str | None, nowait: bool
    ) -> CalculationOutcome:
        run = await lock_run_row(self.session, run_id, nowait=nowait)
        from_status = run.status

        if not RunStateMachine.can_calculate(from_status):
            raise InvalidTransitionError(
                from_status,
                RunStatus.CALCULATING,
                "Run can only be calculated from draft or calculated",
            )
        RunStateMachine.validate_transition(from_status, RunStatus.CALCULATING)
        run.status = RunStatus.CALCULATING.value

        period = await self._get_period(run.period_id)
        persons = await self.sources.persons.list_compensable(period)

        results: list[PayrollLineResult] = []
        anomalies: list[Anomaly] = []
        rules_cache: dict[str | None, JurisdictionRules] = {}
        for person in persons:
            line = await self._calculate_person(person, period, rules_cache)
            previous_net = None
            if line.is_included:
                previous_net = await self.sources.history.previous_net_pay(
                    person.id, period, run.id
                )
            anomalies.extend(self.detector.detect(line, previous_net))
            results.append(line)

        totals = aggregate(results)

        await self.session.execute(delete(PayrollLine).where(PayrollLine.run_id == run.id))
        lines = [
            self._to_model(run.id, position, result)
            for position, result in enumerate(results)
        ]
        self.session.add_all(lines)

        RunStateMachine.validate_transition(RunStatus.CALCULATING, RunStatus.CALCULATED)
        now = _now()
        run.status = RunStatus.CALCULATED.value
        run.total_gross_pay = totals.total_gross_pay
        run.total_net_pay = totals.total_net_pay
        run.total_employee_taxes = totals.total_employee_taxes
        run.total_employee_deductions = totals.total_employee_deductions
        run.total_employer_taxes = totals.total_employer_taxes
        run.total_employer_contributions = totals.total_employer_contributions
        run.employee_count = totals.employee_count
        run.anomaly_count = len(anomalies)
        run.anomalies_acknowledged = False
        run.calculation_version += 1
        run.calculated_at = now
        run.calculated_by = actor_id

        self._record_audit(
            run.id,
            f"status_change:{from_status}:{RunStatus.CALCULATED.value}",
            actor_id,
            {
                "calculation_version": run.calculation_version,
                "employee_count": totals.employee_count,
                "excluded_count": len(results) - totals.employee_count,
                "anomaly_count": len(anomalies),
            },
        )
        if self.settings.anomaly_history_enabled:
            for anomaly in anomalies:
                self.session.add(
                    AnomalyLog(
                        run_id=run.id,
                        person_id=anomaly.employee_id,
                        detected_at=now,
                        calculation_version=run.calculation_version,
                        anomaly_type=anomaly.type.value,
                        severity=anomaly.severity.value,
                        message=anomaly.message,
                    )
                )

        await self.session.flush()
        return CalculationOutcome(run=run, lines=lines, totals=totals, anomalies=anomalies)

    async def _calculate_person(
        self,
        person: PersonRecord,
        period: PeriodInfo,
        rules_cache: dict[str | None, JurisdictionRules],
    ) -> PayrollLineResult:
        """Gather one person's inputs and run the calculator.

        Failures that belong to this person alone become an excluded line.
        """
        profile = None
        try:
            profile = await self.sources.compensation.get_active_profile(person.id, period)
            if profile is None:
                return self.calculator.calculate(person, None, period, None)

            adjustments = await self.sources.compensation.get_adjustments(person.id, period)
            hours = None
            if profile.pay_type == PayType.HOURLY:
                hours = await self.sources.compensation.get_hours(person.id, period)

            rules = None
            if person.person_type != PersonType.CONTRACTOR:
                rules = await self._load_rules(person, period, rules_cache)
        except PersonCalculationError as exc:
            logger.warning(
                "Excluding person from run: %s",
                exc.reason,
                extra={"person_id": str(person.id), "error_code": exc.code},
            )
            return self.calculator.exclude(person, exc.reason, profile)

        return self.calculator.calculate(person, profile, period, rules, adjustments, hours)

    async def _load_rules(
        self,
        person: PersonRecord,
        period: PeriodInfo,
        rules_cache: dict[str | None, JurisdictionRules],
    ) -> JurisdictionRules:
        if person.jurisdiction in rules_cache:
            return rules_cache[person.jurisdiction]

        try:
            rules = await asyncio.wait_for(
                self.sources.rules.rules_for(person.jurisdiction, period),
                timeout=self.settings.rule_lookup_timeout_seconds,
            )
        except asyncio.TimeoutError:
            raise JurisdictionRulesUnavailableError(
                person.id, person.jurisdiction, "lookup timed out"
            ) from None
        except InvalidTaxRuleError as exc:
            raise JurisdictionRulesUnavailableError(
                person.id, person.jurisdiction, exc.reason
            ) from exc

        if rules is None:
            raise JurisdictionRulesUnavailableError(person.id, person.jurisdiction)
        rules_cache[person.jurisdiction] = rules
        return rules

    @staticmethod
    def _to_model(run_id: UUID, position: int, result: PayrollLineResult) -> PayrollLine:
        return PayrollLine(
            run_id=run_id,
            position=position,
            person_id=result.person_id,
            full_name=result.full_name,
            person_type=result.person_type,
            jurisdiction=result.jurisdiction,
            is_included=result.is_included,
            exclude_reason=result.exclude_reason,
            pay_type=result.pay_type,
            pay_rate=result.pay_rate,
            hours=result.hours,
            base_pay=result.base_pay,
            earnings=[e.to_dict() for e in result.earnings],
            employee_taxes=[t.to_dict() for t in result.employee_taxes],
            deductions=[d.to_dict() for d in result.deductions],
            employer_tax_items=[t.to_dict() for t in result.employer_tax_items],
            employer_contribution_items=[
                c.to_dict() for c in result.employer_contribution_items
            ],
            gross_pay=result.gross_pay,
            total_taxes=result.total_taxes,
            total_deductions=result.total_deductions,
            net_pay=result.net_pay,
            employer_taxes=result.employer_taxes,
            employer_contributions=result.employer_contributions,
            total_employer_cost=result.total_employer_cost,
            row_notes=result.row_notes,
        )

    # ------------------------------------------------------------------
    # Review / approve
    # ------------------------------------------------------------------

    async def start_review(self, run_id: UUID, actor_id: str | None = None) -> PayrollRun:
        """Move a calculated run into review."""
        try:
            run = await self.get_run(run_id)
            RunStateMachine.validate_transition(run.status, RunStatus.REVIEWING)
            await self._transition(run, RunStatus.REVIEWING, actor_id)
            await self.session.commit()
        except Exception:
            await self.session.rollback()
            raise
        return run

    async def approve_run(
        self,
        run_id: UUID,
        actor_id: str | None = None,
        acknowledge_anomalies: bool = False,
        comment: str | None = None,
        expected_calculation_version: int | None = None,
    ) -> PayrollRun:
        """Approve a calculated or reviewed run.

        A run with anomalies needs ``acknowledge_anomalies=True``. Passing
        ``expected_calculation_version`` rejects the approval if the run was
        recalculated since the caller looked at it.
        """
        try:
            run = await self.get_run(run_id)

            if not RunStateMachine.can_approve(run.status):
                raise InvalidTransitionError(
                    run.status,
                    RunStatus.APPROVED,
                    "Run must be calculated or in review to approve",
                )
            errors = RunStateMachine.validate_run_for_transition(run, RunStatus.APPROVED)
            if errors:
                raise InvalidTransitionError(run.status, RunStatus.APPROVED, "; ".join(errors))

            if run.anomaly_count > 0 and not acknowledge_anomalies:
                raise AnomalyAcknowledgementRequiredError(run.anomaly_count)
            if (
                expected_calculation_version is not None
                and expected_calculation_version != run.calculation_version
            ):
                raise StaleRunStateError(
                    run.id,
                    run.status,
                    reason=(
                        f"Run was recalculated (version {run.calculation_version}, "
                        f"expected {expected_calculation_version})"
                    ),
                )

            values: dict[str, Any] = {
                "approved_at": _now(),
                "approved_by": actor_id,
                "anomalies_acknowledged": run.anomaly_count > 0,
            }
            if comment:
                values["notes"] = f"{run.notes}\n{comment}" if run.notes else comment

            await self._transition(
                run,
                RunStatus.APPROVED,
                actor_id,
                values,
                details={"comment": comment, "anomaly_count": run.anomaly_count},
                # Only the calculation checked above may be approved
                expected_calculation_version=run.calculation_version,
            )
            await self.session.commit()
        except Exception:
            await self.session.rollback()
            raise

        logger.info("Payroll run approved", extra={"run_id": str(run_id), "actor_id": actor_id})
        return run

    # ------------------------------------------------------------------
    # Post
    # ------------------------------------------------------------------

    async def post_run(self, run_id: UUID, actor_id: str | None = None) -> PayrollRun:
        """Post an approved run to the ledger.

        The journal entry, ``journal_entry_id`` and the posted status are
        committed together. On any failure everything rolls back and the run
        is still approved.
        """
        try:
            run = await self.get_run(run_id)

            if run.status != RunStatus.APPROVED:
                raise InvalidTransitionError(
                    run.status,
                    RunStatus.POSTING,
                    f"Run must be approved to post (current: {run.status})",
                )
            errors = RunStateMachine.validate_run_for_transition(run, RunStatus.POSTING)
            if errors:
                raise InvalidTransitionError(run.status, RunStatus.POSTING, "; ".join(errors))

            period = await self._get_period(run.period_id)
            posted_run_id = await self.session.scalar(
                select(PayrollRun.id).where(
                    PayrollRun.period_id == run.period_id,
                    PayrollRun.id != run.id,
                    PayrollRun.status.in_([s.value for s in RunStateMachine.POSTED_STATUSES]),
                )
            )
            if posted_run_id is not None:
                raise PeriodAlreadyPostedError(run.period_id, posted_run_id)

            await self._transition(run, RunStatus.POSTING, actor_id, record=False)
            entry_id = await self.poster.post(run, totals_from_run(run), period, actor_id)
            await self._transition(
                run,
                RunStatus.POSTED,
                actor_id,
                {"journal_entry_id": entry_id, "posted_at": _now(), "posted_by": actor_id},
                details={"journal_entry_id": str(entry_id)},
                audit_from=RunStatus.APPROVED,
            )
            await self.session.commit()
        except IntegrityError as exc:
            await self.session.rollback()
            await self._record_failure(run_id, "post_failed", actor_id, "integrity_conflict")
            raise ConcurrencyConflictError(
                "Another run in this period was posted concurrently",
                {"run_id": str(run_id)},
            ) from exc
        except PostingError as exc:
            await self.session.rollback()
            logger.error(
                "Posting failed; run remains approved",
                extra={"run_id": str(run_id), "error_code": exc.code},
            )
            await self._record_failure(run_id, "post_failed", actor_id, exc.code)
            raise
        except Exception:
            await self.session.rollback()
            raise

        logger.info(
            "Payroll run posted",
            extra={"run_id": str(run_id), "journal_entry_id": str(entry_id), "actor_id": actor_id},
        )
        return run

    # ------------------------------------------------------------------
    # Paid / void
    # ------------------------------------------------------------------

    async def mark_paid(self, run_id: UUID, actor_id: str | None = None) -> PayrollRun:
        """Record that a posted run has been paid out."""
        try:
            run = await self.get_run(run_id)
            RunStateMachine.validate_transition(run.status, RunStatus.PAID)
            await self._transition(
                run, RunStatus.PAID, actor_id, {"paid_at": _now(), "paid_by": actor_id}
            )
            await self.session.commit()
        except Exception:
            await self.session.rollback()
            raise
        return run

    async def void_run(
        self, run_id: UUID, reason: str, actor_id: str | None = None
    ) -> PayrollRun:
        """Void a run that has not been posted."""
        if not reason or not reason.strip():
            raise RunValidationError("Void requires a reason")

        try:
            run = await self.get_run(run_id)
            if RunStateMachine.is_posted(run.status):
                raise InvalidTransitionError(
                    run.status, RunStatus.VOID, "Posted runs cannot be voided"
                )
            RunStateMachine.validate_transition(run.status, RunStatus.VOID)
            await self._transition(
                run,
                RunStatus.VOID,
                actor_id,
                {"voided_at": _now(), "voided_by": actor_id, "void_reason": reason.strip()},
                details={"reason": reason.strip()},
            )
            await self.session.commit()
        except Exception:
            await self.session.rollback()
            raise

        logger.info("Payroll run voided", extra={"run_id": str(run_id), "actor_id": actor_id})
        return run

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    async def _transition(
        self,
        run: PayrollRun,
        to_status: RunStatus,
        actor_id: str | None,
        values: dict[str, Any] | None = None,
        details: dict[str, Any] | None = None,
        expected_calculation_version: int | None = None,
        record: bool = True,
        audit_from: RunStatus | None = None,
    ) -> None:
        """Conditional status update: applies only if the status is unchanged.

        Zero affected rows means another writer got there first.
        """
        from_status = run.status
        values = dict(values or {})

        conditions = [PayrollRun.id == run.id, PayrollRun.status == from_status]
        if expected_calculation_version is not None:
            conditions.append(PayrollRun.calculation_version == expected_calculation_version)

        result = await self.session.execute(
            update(PayrollRun)
            .where(*conditions)
            .values(status=to_status.value, **values)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount == 0:
            current = (
                await self.session.execute(
                    select(PayrollRun.status, PayrollRun.calculation_version).where(
                        PayrollRun.id == run.id
                    )
                )
            ).one_or_none()
            actual = current.status if current else None
            if (
                current is not None
                and actual == from_status
                and expected_calculation_version is not None
            ):
                raise StaleRunStateError(
                    run.id,
                    from_status,
                    actual,
                    reason=(
                        f"Run was recalculated (version {current.calculation_version}, "
                        f"expected {expected_calculation_version})"
                    ),
                )
            raise StaleRunStateError(run.id, from_status, actual)

        await self.session.refresh(run)

        if record:
            audit_from_status = audit_from.value if audit_from else from_status
            self._record_audit(
                run.id,
                f"status_change:{audit_from_status}:{to_status.value}",
                actor_id,
                details,
            )

    def _record_audit(
        self,
        run_id: UUID,
        action: str,
        actor_id: str | None = None,
        details: dict[str, Any] | None = None,
    ) -> None:
        """Record an audit event for a run action."""
        self.session.add(
            PayrollRunAudit(run_id=run_id, action=action, actor_id=actor_id, details=details)
        )

    async def _record_failure(
        self, run_id: UUID, action: str, actor_id: str | None, code: str
    ) -> None:
        """Persist a failure marker in its own short transaction."""
        try:
            self._record_audit(run_id, action, actor_id, {"code": code})
            await self.session.commit()
        except SQLAlchemyError:
            await self.session.rollback()
            logger.exception("Could not record failure audit", extra={"run_id": str(run_id)})

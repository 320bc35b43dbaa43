"""Run-level locking for calculation.

Two layers guard a calculation:
1. A process-local ``asyncio.Lock`` per run, so coroutines in one worker
   serialize (or fail fast) before touching the database.
2. ``SELECT ... FOR UPDATE`` on the run row, so workers in other processes
   block on (or, with NOWAIT, are refused) the same row until commit.
"""

from __future__ import annotations

import asyncio
import logging
from contextlib import asynccontextmanager
from typing import AsyncIterator
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.exc import DBAPIError
from sqlalchemy.ext.asyncio import AsyncSession

from payrun_engine.exceptions import RecalculationInProgressError, RunNotFoundError
from payrun_engine.models import PayrollRun

logger = logging.getLogger(__name__)

# PostgreSQL lock_not_available
LOCK_NOT_AVAILABLE = "55P03"


class RunLockRegistry:
    """Per-run asyncio locks, dropped once nobody holds or waits on them."""

    def __init__(self) -> None:
        self._locks: dict[UUID, asyncio.Lock] = {}
        self._users: dict[UUID, int] = {}

    def is_locked(self, run_id: UUID) -> bool:
        lock = self._locks.get(run_id)
        return lock is not None and lock.locked()

    @asynccontextmanager
    async def hold(self, run_id: UUID, nowait: bool = False) -> AsyncIterator[None]:
        """Hold the run's lock; with ``nowait`` a contended lock raises."""
        if nowait and self.is_locked(run_id):
            raise RecalculationInProgressError(run_id)

        lock = self._locks.setdefault(run_id, asyncio.Lock())
        self._users[run_id] = self._users.get(run_id, 0) + 1
        try:
            async with lock:
                yield
        finally:
            self._users[run_id] -= 1
            if self._users[run_id] == 0:
                del self._users[run_id]
                del self._locks[run_id]


# Shared by every service instance in the process
run_locks = RunLockRegistry()


def _is_lock_not_available(exc: DBAPIError) -> bool:
    orig = exc.orig
    code = getattr(orig, "sqlstate", None) or getattr(orig, "pgcode", None)
    return code == LOCK_NOT_AVAILABLE


async def lock_run_row(
    session: AsyncSession, run_id: UUID, nowait: bool = False
) -> PayrollRun:
    """Load the run with a row lock held until the transaction ends.

    SQLite has no row locks; the clause is omitted there and the
    process-local lock is the only guard.
    """
    try:
        result = await session.execute(
            select(PayrollRun)
            .where(PayrollRun.id == run_id)
            .with_for_update(nowait=nowait)
            .execution_options(populate_existing=True)
        )
    except DBAPIError as exc:
        if _is_lock_not_available(exc):
            logger.info("Run row is locked by another calculation", extra={"run_id": str(run_id)})
            raise RecalculationInProgressError(run_id) from exc
        raise

    run = result.scalar_one_or_none()
    if run is None:
        raise RunNotFoundError(run_id)
    return run

"""Read-only queries over payroll runs and their lines."""

from __future__ import annotations

from uuid import UUID

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from payrun_engine.exceptions import RunNotFoundError, RunValidationError
from payrun_engine.models import PayrollLine, PayrollRun
from payrun_engine.services.state_machine import RunStatus

MAX_PAGE_SIZE = 100


class RunQueryService:
    """List and detail lookups; never writes."""

    def __init__(self, session: AsyncSession):
        self.session = session

    async def list_runs(
        self,
        status: str | None = None,
        period_id: UUID | None = None,
        limit: int = 20,
        offset: int = 0,
    ) -> tuple[list[PayrollRun], int]:
        """Return one page of runs (newest first) and the unpaged total."""
        if status is not None and status not in {s.value for s in RunStatus}:
            raise RunValidationError(
                f"Unknown status '{status}'", {"allowed": [s.value for s in RunStatus]}
            )
        if not 1 <= limit <= MAX_PAGE_SIZE:
            raise RunValidationError(
                f"limit must be between 1 and {MAX_PAGE_SIZE}", {"limit": limit}
            )

        query = select(PayrollRun)
        if status:
            query = query.where(PayrollRun.status == status)
        if period_id:
            query = query.where(PayrollRun.period_id == period_id)

        total = await self.session.scalar(
            select(func.count()).select_from(query.subquery())
        ) or 0

        query = query.order_by(
            PayrollRun.created_at.desc(), PayrollRun.run_number.desc()
        ).offset(offset).limit(limit)
        result = await self.session.execute(query)
        return list(result.scalars().all()), total

    async def get_run_detail(self, run_id: UUID) -> PayrollRun:
        """Run with its lines loaded, in calculation order."""
        result = await self.session.execute(
            select(PayrollRun)
            .where(PayrollRun.id == run_id)
            .options(selectinload(PayrollRun.lines))
        )
        run = result.scalar_one_or_none()
        if run is None:
            raise RunNotFoundError(run_id)
        return run

    async def get_lines(
        self, run_id: UUID, included_only: bool = False
    ) -> list[PayrollLine]:
        exists = await self.session.scalar(
            select(PayrollRun.id).where(PayrollRun.id == run_id)
        )
        if exists is None:
            raise RunNotFoundError(run_id)

        query = select(PayrollLine).where(PayrollLine.run_id == run_id)
        if included_only:
            query = query.where(PayrollLine.is_included.is_(True))
        result = await self.session.execute(query.order_by(PayrollLine.position))
        return list(result.scalars().all())

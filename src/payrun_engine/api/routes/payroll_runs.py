"""Payroll run API endpoints.

Handlers stay thin: the services raise typed engine errors, which the app's
exception handler turns into structured error bodies.
"""

from typing import Annotated
from uuid import UUID

from fastapi import APIRouter, Path, Query, Response, status

from payrun_engine.api.dependencies import ActorId, DbSession
from payrun_engine.api.schemas import (
    AnomalyResponse,
    ApproveRequest,
    CalculationResponse,
    ErrorResponse,
    LineListResponse,
    LineResponse,
    RunCreate,
    RunDetailResponse,
    RunListResponse,
    RunResponse,
    VoidRequest,
)
from payrun_engine.services.payroll_run_service import PayrollRunService
from payrun_engine.services.run_queries import RunQueryService

router = APIRouter(prefix="/payroll-runs", tags=["payroll-runs"])

RunIdPath = Annotated[UUID, Path()]

_ERRORS = {
    400: {"model": ErrorResponse},
    404: {"model": ErrorResponse},
    409: {"model": ErrorResponse},
}


# ============================================================================
# Payroll run CRUD
# ============================================================================


@router.post(
    "",
    response_model=RunResponse,
    status_code=status.HTTP_201_CREATED,
    responses={200: {"model": RunResponse}, **_ERRORS},
)
async def create_payroll_run(
    db: DbSession,
    actor_id: ActorId,
    payload: RunCreate,
    response: Response,
) -> RunResponse:
    """Create a draft run. Returns 200 with the existing run on a repeat."""
    service = PayrollRunService(db)
    run, created = await service.create_run(
        payload.period_id,
        run_type=payload.run_type,
        run_number=payload.run_number,
        actor_id=actor_id,
        notes=payload.notes,
    )
    if not created:
        response.status_code = status.HTTP_200_OK
    return RunResponse.model_validate(run)


@router.get(
    "",
    response_model=RunListResponse,
    responses={400: {"model": ErrorResponse}},
)
async def list_payroll_runs(
    db: DbSession,
    status_filter: Annotated[str | None, Query(alias="status")] = None,
    period_id: UUID | None = None,
    limit: Annotated[int, Query(ge=1, le=100)] = 20,
    offset: Annotated[int, Query(ge=0)] = 0,
) -> RunListResponse:
    """List payroll runs with optional filters."""
    runs, total = await RunQueryService(db).list_runs(
        status=status_filter, period_id=period_id, limit=limit, offset=offset
    )
    return RunListResponse(
        items=[RunResponse.model_validate(run) for run in runs],
        total=total,
        limit=limit,
        offset=offset,
    )


@router.get(
    "/{run_id}",
    response_model=RunDetailResponse,
    responses={404: {"model": ErrorResponse}},
)
async def get_payroll_run(db: DbSession, run_id: RunIdPath) -> RunDetailResponse:
    """Get a run with its lines."""
    run = await RunQueryService(db).get_run_detail(run_id)
    return RunDetailResponse.model_validate(run)


@router.get(
    "/{run_id}/lines",
    response_model=LineListResponse,
    responses={404: {"model": ErrorResponse}},
)
async def list_payroll_run_lines(
    db: DbSession,
    run_id: RunIdPath,
    included_only: bool = False,
) -> LineListResponse:
    lines = await RunQueryService(db).get_lines(run_id, included_only=included_only)
    return LineListResponse(
        items=[LineResponse.model_validate(line) for line in lines],
        total=len(lines),
    )


# ============================================================================
# Payroll run state transitions
# ============================================================================


@router.post(
    "/{run_id}/calculate",
    response_model=CalculationResponse,
    responses=_ERRORS,
)
async def calculate_payroll_run(
    db: DbSession,
    actor_id: ActorId,
    run_id: RunIdPath,
) -> CalculationResponse:
    """Compute lines, anomalies and totals. Repeatable until approval."""
    outcome = await PayrollRunService(db).calculate_run(run_id, actor_id=actor_id)
    return CalculationResponse(
        run=RunResponse.model_validate(outcome.run),
        anomalies=[AnomalyResponse.model_validate(a.to_dict()) for a in outcome.anomalies],
        lines=[LineResponse.model_validate(line) for line in outcome.lines],
    )


@router.post("/{run_id}/review", response_model=RunResponse, responses=_ERRORS)
async def review_payroll_run(
    db: DbSession,
    actor_id: ActorId,
    run_id: RunIdPath,
) -> RunResponse:
    run = await PayrollRunService(db).start_review(run_id, actor_id=actor_id)
    return RunResponse.model_validate(run)


@router.post("/{run_id}/approve", response_model=RunResponse, responses=_ERRORS)
async def approve_payroll_run(
    db: DbSession,
    actor_id: ActorId,
    run_id: RunIdPath,
    payload: ApproveRequest | None = None,
) -> RunResponse:
    """Approve a calculated run; anomalies need acknowledge_anomalies=true."""
    payload = payload or ApproveRequest()
    run = await PayrollRunService(db).approve_run(
        run_id,
        actor_id=actor_id,
        acknowledge_anomalies=payload.acknowledge_anomalies,
        comment=payload.comment,
        expected_calculation_version=payload.expected_calculation_version,
    )
    return RunResponse.model_validate(run)


@router.post(
    "/{run_id}/post",
    response_model=RunResponse,
    responses={**_ERRORS, 422: {"model": ErrorResponse}, 503: {"model": ErrorResponse}},
)
async def post_payroll_run(
    db: DbSession,
    actor_id: ActorId,
    run_id: RunIdPath,
) -> RunResponse:
    """Post an approved run to the ledger. One-way."""
    run = await PayrollRunService(db).post_run(run_id, actor_id=actor_id)
    return RunResponse.model_validate(run)


@router.post("/{run_id}/mark-paid", response_model=RunResponse, responses=_ERRORS)
async def mark_payroll_run_paid(
    db: DbSession,
    actor_id: ActorId,
    run_id: RunIdPath,
) -> RunResponse:
    run = await PayrollRunService(db).mark_paid(run_id, actor_id=actor_id)
    return RunResponse.model_validate(run)


@router.post("/{run_id}/void", response_model=RunResponse, responses=_ERRORS)
async def void_payroll_run(
    db: DbSession,
    actor_id: ActorId,
    run_id: RunIdPath,
    payload: VoidRequest,
) -> RunResponse:
    """Void a run that has not been posted."""
    run = await PayrollRunService(db).void_run(run_id, payload.reason, actor_id=actor_id)
    return RunResponse.model_validate(run)

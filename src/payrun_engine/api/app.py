"""FastAPI application factory."""

import logging
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from payrun_engine import __version__
from payrun_engine.api.routes import health_router, payroll_runs_router
from payrun_engine.config import get_settings
from payrun_engine.database import dispose_db, init_db
from payrun_engine.exceptions import PayrollEngineError
from payrun_engine.logging_config import configure_logging

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Application lifespan handler."""
    settings = get_settings()
    configure_logging(settings.log_level, settings.log_format)
    init_db(settings.database_url)
    logger.info("Payroll run engine started", extra={"engine_version": settings.engine_version})
    yield
    await dispose_db()


def create_app() -> FastAPI:
    """Create and configure the FastAPI application."""
    app = FastAPI(
        title="Payroll Run Engine API",
        description="Payroll run calculation, approval and ledger posting",
        version=__version__,
        lifespan=lifespan,
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.exception_handler(PayrollEngineError)
    async def engine_error_handler(
        request: Request, exc: PayrollEngineError
    ) -> JSONResponse:
        """Serialize typed engine errors with their code and context."""
        if exc.http_status >= 500:
            logger.error(
                "Engine error on %s %s: %s",
                request.method,
                request.url.path,
                exc.reason,
                extra={"error_code": exc.code},
            )
        return JSONResponse(status_code=exc.http_status, content=exc.to_dict())

    @app.exception_handler(Exception)
    async def general_exception_handler(
        request: Request, exc: Exception
    ) -> JSONResponse:
        """Handle unexpected exceptions."""
        logger.exception("Unhandled error on %s %s", request.method, request.url.path)
        return JSONResponse(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            content={
                "detail": "An unexpected error occurred",
                "code": "INTERNAL_ERROR",
            },
        )

    app.include_router(health_router)
    app.include_router(payroll_runs_router, prefix="/api/v1")

    return app


# Default app instance for uvicorn
app = create_app()

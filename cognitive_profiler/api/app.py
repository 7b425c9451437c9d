"""
Main FastAPI application for the Cognitive Profiler service.

Sets up the web server, middleware, routes, and error handling.
"""

from datetime import datetime, timezone
from contextlib import asynccontextmanager
from typing import Optional
import asyncio
import time

from fastapi import FastAPI, Request, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.middleware.trustedhost import TrustedHostMiddleware
from fastapi.responses import JSONResponse
import structlog

from cognitive_profiler.adapters import build_adapters
from cognitive_profiler.core import (
    CreditLedger,
    Orchestrator,
    PreviewGenerator,
    ResultAggregator,
)
from cognitive_profiler.exceptions import InvalidAmountError, LedgerError, LedgerUnavailableError
from cognitive_profiler.logging_config import configure_logging
from cognitive_profiler.schemas import ErrorResponse
from cognitive_profiler.settings import settings

# Configure structured logging
logger = structlog.get_logger(__name__)


def _error_response(status_code: int, error: str, message: str) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content=ErrorResponse(
            error=error,
            message=message,
            timestamp=datetime.now(timezone.utc)
        ).model_dump(mode="json")
    )


def build_orchestrator() -> Orchestrator:
    """Wire the ledger, adapters and cost schedule from settings."""
    ledger = CreditLedger(settings.database_url, pool_size=settings.database_pool_size)
    ledger.create_schema()
    adapters = build_adapters(settings)
    logger.info("Configured providers", providers=[p.value for p in adapters])
    return Orchestrator.from_settings(
        adapters,
        ledger,
        settings,
        aggregator=ResultAggregator(PreviewGenerator(max_words=settings.preview_max_words)),
    )


async def sweep_stale_holds(orchestrator: Orchestrator) -> int:
    """Release reservations orphaned by failed settlements or a previous crash."""
    age = orchestrator.stale_hold_age(settings.stale_hold_seconds)
    try:
        return await asyncio.to_thread(orchestrator.ledger.release_stale, age)
    except LedgerError as e:
        logger.error("Stale reservation sweep failed", error=str(e))
        return 0


async def run_stale_hold_sweeper(orchestrator: Orchestrator, interval: float) -> None:
    while True:
        await asyncio.sleep(interval)
        await sweep_stale_holds(orchestrator)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Manage application lifespan events."""
    from cognitive_profiler.api.routes.analysis import cancel_active_runs

    # Startup
    app.state.started_at = time.time()
    configure_logging(settings.log_level, settings.log_format)
    logger.info("Starting Cognitive Profiler service", version=settings.app_version)

    owns_orchestrator = app.state.orchestrator is None
    if owns_orchestrator:
        app.state.orchestrator = build_orchestrator()

    await sweep_stale_holds(app.state.orchestrator)
    sweeper = None
    if settings.stale_hold_sweep_seconds > 0:
        sweeper = asyncio.create_task(
            run_stale_hold_sweeper(app.state.orchestrator, settings.stale_hold_sweep_seconds)
        )

    yield

    # Shutdown
    logger.info("Shutting down Cognitive Profiler service")
    if sweeper is not None:
        sweeper.cancel()
        await asyncio.gather(sweeper, return_exceptions=True)
    await cancel_active_runs(app)
    if owns_orchestrator:
        app.state.orchestrator.ledger.close()
        app.state.orchestrator = None


def create_app(orchestrator: Optional[Orchestrator] = None) -> FastAPI:
    """
    Create and configure the FastAPI application.

    Args:
        orchestrator: Pre-built orchestrator; built from settings at startup
            when omitted
    """

    app = FastAPI(
        title="Cognitive Profiler API",
        description="Multi-provider text analysis with per-provider credit metering",
        version=settings.app_version,
        docs_url="/docs" if settings.debug else None,
        redoc_url="/redoc" if settings.debug else None,
        lifespan=lifespan,
    )
    app.state.orchestrator = orchestrator
    app.state.runs = {}
    app.state.started_at = time.time()

    # Add middleware
    allow_origins = settings.allowed_origins if not settings.debug else ["*"]
    allow_credentials = False if allow_origins == ["*"] else True
    app.add_middleware(
        CORSMiddleware,
        allow_origins=allow_origins,
        allow_credentials=allow_credentials,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    if not settings.debug:
        app.add_middleware(
            TrustedHostMiddleware,
            allowed_hosts=["*"]
        )

    @app.exception_handler(LedgerUnavailableError)
    async def ledger_unavailable_handler(request: Request, exc: LedgerUnavailableError):
        logger.error("Credit ledger unavailable", path=request.url.path, error=str(exc))
        return _error_response(
            status.HTTP_503_SERVICE_UNAVAILABLE,
            "ledger_unavailable",
            "Credit ledger is unavailable, no credits were charged",
        )

    @app.exception_handler(InvalidAmountError)
    async def invalid_amount_handler(request: Request, exc: InvalidAmountError):
        return _error_response(status.HTTP_400_BAD_REQUEST, "invalid_amount", str(exc))

    # Global exception handler
    @app.exception_handler(Exception)
    async def global_exception_handler(request: Request, exc: Exception):
        logger.error(
            "Unhandled exception",
            path=request.url.path,
            method=request.method,
            error=str(exc),
            exc_info=True
        )
        return _error_response(
            status.HTTP_500_INTERNAL_SERVER_ERROR,
            "internal_server_error",
            "An unexpected error occurred",
        )

    # Include API routes
    from cognitive_profiler.api.routes import analysis, credits, health

    app.include_router(
        health.router,
        prefix=settings.api_prefix,
        tags=["health"]
    )

    app.include_router(
        analysis.router,
        prefix=settings.api_prefix,
        tags=["analysis"]
    )

    app.include_router(
        credits.router,
        prefix=settings.api_prefix,
        tags=["credits"]
    )

    return app


# Create the app instance
app = create_app()

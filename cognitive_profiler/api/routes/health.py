"""
Health check endpoints for monitoring service status.
"""

from datetime import datetime, timezone
import asyncio
import time
from typing import Dict

from fastapi import APIRouter, Request, status
from fastapi.responses import JSONResponse
import structlog

from cognitive_profiler.exceptions import LedgerUnavailableError
from cognitive_profiler.settings import settings
from cognitive_profiler.schemas import HealthCheck

logger = structlog.get_logger(__name__)
router = APIRouter()


@router.get("/health", response_model=HealthCheck)
async def health_check(request: Request) -> HealthCheck:
    """
    Check the health status of the service.

    Returns:
        HealthCheck: Service health information
    """
    uptime = time.time() - request.app.state.started_at
    orchestrator = request.app.state.orchestrator

    dependencies: Dict[str, str] = {}
    if orchestrator is not None:
        for provider in orchestrator.configured_providers:
            dependencies[f"provider:{provider.value}"] = "configured"

    return HealthCheck(
        status="healthy",
        timestamp=datetime.now(timezone.utc),
        version=settings.app_version,
        uptime_seconds=uptime,
        dependencies=dependencies
    )


@router.get("/ready")
async def readiness_check(request: Request):
    """
    Check if the service is ready to accept requests.

    Ready means the credit ledger answers a round-trip query.
    """
    orchestrator = request.app.state.orchestrator
    timestamp = datetime.now(timezone.utc).isoformat()
    if orchestrator is None:
        return JSONResponse(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            content={"status": "starting", "timestamp": timestamp},
        )

    try:
        await asyncio.to_thread(orchestrator.ledger.ping)
    except LedgerUnavailableError as e:
        logger.warning("Readiness check failed", error=str(e))
        return JSONResponse(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            content={"status": "unavailable", "database": "unreachable", "timestamp": timestamp},
        )

    return {"status": "ready", "database": "healthy", "timestamp": timestamp}

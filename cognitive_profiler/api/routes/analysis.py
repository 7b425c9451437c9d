"""
Analysis API routes.

Provides endpoints for running multi-provider analyses synchronously or as
background runs with polling, Server-Sent Events streaming and cancellation.
"""

import uuid
import asyncio
import json
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List
from fastapi import APIRouter, Depends, HTTPException, Request
from fastapi.responses import JSONResponse, StreamingResponse
import structlog

from cognitive_profiler.core import CREDIT_PACKAGES, Orchestrator, ProgressTracker
from cognitive_profiler.exceptions import LedgerUnavailableError
from cognitive_profiler.models.contracts import AnalysisRequest, ProviderId
from cognitive_profiler.schemas import (
    PROVIDER_DISPLAY_NAMES,
    AnalysisResponse,
    AnalyzeRequest,
    CostsResponse,
    CreditPackage,
    ProviderInfo,
    RunStatus,
    RunStatusResponse,
)
from cognitive_profiler.settings import settings

logger = structlog.get_logger(__name__)

router = APIRouter()

FINISHED = (RunStatus.COMPLETED, RunStatus.FAILED, RunStatus.CANCELLED)


def get_orchestrator(request: Request) -> Orchestrator:
    orchestrator = request.app.state.orchestrator
    if orchestrator is None:
        raise HTTPException(status_code=503, detail="Service is starting up")
    return orchestrator


def get_run_store(request: Request) -> Dict[str, Dict[str, Any]]:
    return request.app.state.runs


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def prune_runs(run_store: Dict[str, Dict[str, Any]]) -> int:
    """Drop finished runs older than the retention window."""
    cutoff = _utcnow() - timedelta(seconds=settings.run_retention_seconds)
    expired = [
        run_id for run_id, run in run_store.items()
        if run["status"] in FINISHED and run["completed_at"] and run["completed_at"] < cutoff
    ]
    for run_id in expired:
        del run_store[run_id]
    if expired:
        logger.debug("Pruned finished runs", count=len(expired))
    return len(expired)


def new_run(run_store: Dict[str, Dict[str, Any]], request: AnalysisRequest) -> Dict[str, Any]:
    prune_runs(run_store)
    run_id = str(uuid.uuid4())
    run = {
        "run_id": run_id,
        "status": RunStatus.PENDING,
        "request": request,
        "tracker": ProgressTracker(request.providers),
        "task": None,
        "result": None,
        "error": None,
        "created_at": _utcnow(),
        "completed_at": None,
    }
    run_store[run_id] = run
    return run


def run_status(run: Dict[str, Any]) -> RunStatusResponse:
    return RunStatusResponse(
        run_id=run["run_id"],
        status=run["status"],
        progress=run["tracker"].snapshot(),
        result=run["result"],
        error=run["error"],
        created_at=run["created_at"],
        completed_at=run["completed_at"],
    )


def get_run(run_id: str, run_store: Dict[str, Dict[str, Any]]) -> Dict[str, Any]:
    if run_id not in run_store:
        raise HTTPException(status_code=404, detail="Run not found")
    return run_store[run_id]


async def process_run(run: Dict[str, Any], orchestrator: Orchestrator) -> None:
    """
    Background task executing one run and recording its result.

    Cancellation is recorded by ``_finalize_run`` since a task cancelled
    before it starts never enters this coroutine.
    """
    run_id = run["run_id"]
    logger.info("Starting analysis run", run_id=run_id)
    run["status"] = RunStatus.RUNNING

    try:
        result = await orchestrator.run(run["request"], run["tracker"], run_id=run_id)
    except LedgerUnavailableError as e:
        logger.error("Analysis run aborted", run_id=run_id, error=str(e))
        run["status"] = RunStatus.FAILED
        run["error"] = "Credit ledger is unavailable, no credits were charged"
    except Exception as e:
        logger.error("Analysis run failed", run_id=run_id, error=str(e), exc_info=True)
        run["status"] = RunStatus.FAILED
        run["error"] = str(e)
    else:
        run["status"] = RunStatus.COMPLETED
        run["result"] = result
        logger.info("Analysis run completed", run_id=run_id, partial_success=result.is_partial_success)


def _finalize_run(run: Dict[str, Any], task: asyncio.Task) -> None:
    tracker = run["tracker"]
    if task.cancelled():
        run["status"] = RunStatus.CANCELLED
        for provider in tracker.pending_providers():
            tracker.mark_errored(provider)
        logger.info("Analysis run cancelled", run_id=run["run_id"])
    tracker.close()
    run["completed_at"] = _utcnow()


async def cancel_active_runs(app) -> None:
    """Cancel every unfinished run, waiting for held credits to be released."""
    tasks: List[asyncio.Task] = [
        run["task"] for run in app.state.runs.values()
        if run["task"] is not None and not run["task"].done()
    ]
    for task in tasks:
        task.cancel()
    if tasks:
        logger.info("Cancelling active runs", count=len(tasks))
        await asyncio.gather(*tasks, return_exceptions=True)


@router.post("/analyze", response_model=AnalysisResponse)
async def analyze(
    body: AnalyzeRequest,
    orchestrator: Orchestrator = Depends(get_orchestrator),
    run_store: Dict[str, Dict[str, Any]] = Depends(get_run_store),
) -> AnalysisResponse:
    """
    Run an analysis and wait for every provider to finish.

    Providers the account cannot pay for come back as previews; provider
    failures are reported per provider and never fail the request.
    """
    request = body.to_analysis_request()
    run = new_run(run_store, request)

    logger.info(
        "Received analysis request",
        run_id=run["run_id"],
        account_id=request.account_id,
        kind=request.kind.value,
        providers=[p.value for p in request.providers],
    )

    run["status"] = RunStatus.RUNNING
    try:
        result = await orchestrator.run(request, run["tracker"], run_id=run["run_id"])
    except LedgerUnavailableError:
        run["status"] = RunStatus.FAILED
        run["error"] = "Credit ledger is unavailable, no credits were charged"
        raise
    except asyncio.CancelledError:
        run["status"] = RunStatus.CANCELLED
        raise
    finally:
        run["tracker"].close()
        run["completed_at"] = _utcnow()

    run["status"] = RunStatus.COMPLETED
    run["result"] = result

    return AnalysisResponse(
        run_id=run["run_id"],
        status=RunStatus.COMPLETED,
        partial_success=result.is_partial_success,
        result=result,
    )


@router.post("/runs", response_model=RunStatusResponse, status_code=202)
async def start_run(
    body: AnalyzeRequest,
    orchestrator: Orchestrator = Depends(get_orchestrator),
    run_store: Dict[str, Dict[str, Any]] = Depends(get_run_store),
) -> RunStatusResponse:
    """Start an analysis in the background and return its run id."""
    request = body.to_analysis_request()
    run = new_run(run_store, request)

    task = asyncio.create_task(process_run(run, orchestrator), name=f"run-{run['run_id']}")
    task.add_done_callback(lambda t: _finalize_run(run, t))
    run["task"] = task

    logger.info("Queued analysis run", run_id=run["run_id"], account_id=request.account_id)
    return run_status(run)


@router.get("/runs/{run_id}", response_model=RunStatusResponse)
async def get_run_status(
    run_id: str,
    run_store: Dict[str, Dict[str, Any]] = Depends(get_run_store),
) -> RunStatusResponse:
    """
    Poll a run.

    Args:
        run_id: Run identifier

    Returns:
        Status, live progress snapshot and, once finished, the result
    """
    return run_status(get_run(run_id, run_store))


@router.delete("/runs/{run_id}")
async def cancel_run(
    run_id: str,
    run_store: Dict[str, Dict[str, Any]] = Depends(get_run_store),
) -> JSONResponse:
    """
    Cancel a running analysis.

    In-flight provider calls are abandoned and their held credits released.
    """
    run = get_run(run_id, run_store)

    if run["status"] in FINISHED:
        return JSONResponse(
            content={"message": f"Run {run_id} already {run['status'].value}", "status": run["status"].value},
            status_code=200
        )

    task = run["task"]
    if task is None:
        # Synchronous runs end with their request
        raise HTTPException(status_code=409, detail="Run cannot be cancelled")

    task.cancel()
    await asyncio.gather(task, return_exceptions=True)

    logger.info("Run cancelled", run_id=run_id)

    return JSONResponse(
        content={"message": f"Run {run_id} cancelled", "status": run["status"].value},
        status_code=200
    )


@router.get("/runs/{run_id}/stream")
async def stream_run_progress(
    run_id: str,
    run_store: Dict[str, Dict[str, Any]] = Depends(get_run_store),
):
    """
    Stream progress snapshots for a run using Server-Sent Events.

    Emits one ``progress`` event per snapshot, in version order, then a
    ``completion`` event carrying the result.
    """
    run = get_run(run_id, run_store)

    async def event_generator():
        async for snapshot in run["tracker"].subscribe():
            progress_data = {
                "type": "progress",
                "run_id": run_id,
                "snapshot": snapshot.model_dump(mode="json"),
            }
            yield f"data: {json.dumps(progress_data)}\n\n"

        task = run["task"]
        if task is not None and not task.done():
            await asyncio.wait([task])

        completion_data = {
            "type": "completion",
            "run_id": run_id,
            "status": run["status"].value,
            "result": run["result"].model_dump(mode="json") if run["result"] is not None else None,
            "error": run["error"],
            "timestamp": _utcnow().isoformat(),
        }
        yield f"data: {json.dumps(completion_data)}\n\n"

    return StreamingResponse(
        event_generator(),
        media_type="text/event-stream",
        headers={
            "Cache-Control": "no-cache",
            "Connection": "keep-alive",
        }
    )


@router.get("/providers", response_model=List[ProviderInfo])
async def list_providers(orchestrator: Orchestrator = Depends(get_orchestrator)) -> List[ProviderInfo]:
    """List every provider and whether it can be called."""
    configured = set(orchestrator.configured_providers)
    return [
        ProviderInfo(
            provider=provider,
            display_name=PROVIDER_DISPLAY_NAMES[provider],
            configured=provider in configured,
            timeout_seconds=orchestrator.timeout_for(provider),
        )
        for provider in ProviderId
    ]


@router.get("/costs", response_model=CostsResponse)
async def get_costs(orchestrator: Orchestrator = Depends(get_orchestrator)) -> CostsResponse:
    """Credit cost per analysis kind and provider."""
    return CostsResponse(costs=orchestrator.costs.as_dict())


@router.get("/credit-packages", response_model=List[CreditPackage])
async def list_credit_packages() -> List[CreditPackage]:
    """Purchasable credit packages."""
    return [CreditPackage(**package) for package in CREDIT_PACKAGES]

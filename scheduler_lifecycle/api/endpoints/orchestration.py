"""
Orchestration run endpoints: queue a run, report its lifecycle transitions and
inspect run history.

The worker that executes a run reports back through the transition endpoints:
start (Queued -> Running), progress, complete and fail. A transition that the
current status does not allow returns 409; an unknown request id returns 404.
"""
from fastapi import APIRouter, HTTPException, Query, status
from typing import Optional
import logging

from scheduler_lifecycle.schemas.orchestration import (
    OrchestrationRunCreate,
    OrchestrationRunFailure,
    OrchestrationRunListResponse,
    OrchestrationRunProgressUpdate,
    OrchestrationRunResponse,
    OrchestrationRunResults,
)
from scheduler_lifecycle.services.orchestration_run_service import (
    InvalidRunTransitionError,
    RunAlreadyActiveError,
    RunNotFoundError,
    orchestration_run_service,
)

router = APIRouter()
logger = logging.getLogger(__name__)


@router.post("/runs", response_model=OrchestrationRunResponse, status_code=status.HTTP_201_CREATED)
async def request_orchestration_run(request: Optional[OrchestrationRunCreate] = None):
    """
    Queue a new orchestration run.

    Returns 409 while another run is Queued or Running.
    """
    try:
        requested_by = request.requested_by if request else None
        run = await orchestration_run_service.request_run(requested_by=requested_by)
        return OrchestrationRunResponse(**run)

    except RunAlreadyActiveError as e:
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail=str(e)
        )
    except HTTPException:
        raise
    except Exception as e:
        logger.error(f"Failed to queue orchestration run: {e}", exc_info=True)
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail=f"Failed to queue orchestration run: {str(e)}"
        )


@router.get("/runs", response_model=OrchestrationRunListResponse)
async def list_orchestration_runs(limit: int = Query(20, ge=1, le=100)):
    """List the most recent orchestration runs, newest first."""
    try:
        runs = await orchestration_run_service.get_recent_runs(limit)
        return OrchestrationRunListResponse(
            runs=[OrchestrationRunResponse(**run) for run in runs],
            total=len(runs),
        )

    except Exception as e:
        logger.error(f"Failed to list orchestration runs: {e}", exc_info=True)
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail=f"Failed to list orchestration runs: {str(e)}"
        )


@router.get("/runs/{request_id}", response_model=OrchestrationRunResponse)
async def get_orchestration_run(request_id: str):
    """Get a single orchestration run by request id."""
    try:
        run = await orchestration_run_service.get_run(request_id)
        if not run:
            raise HTTPException(
                status_code=status.HTTP_404_NOT_FOUND,
                detail=f"Orchestration run {request_id} not found"
            )
        return OrchestrationRunResponse(**run)

    except HTTPException:
        raise
    except Exception as e:
        logger.error(f"Failed to get orchestration run {request_id}: {e}", exc_info=True)
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail=f"Failed to get orchestration run: {str(e)}"
        )


def _transition_http_error(error: ValueError) -> HTTPException:
    if isinstance(error, RunNotFoundError):
        return HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(error))
    return HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(error))


@router.post("/runs/{request_id}/start", response_model=OrchestrationRunResponse)
async def start_orchestration_run(request_id: str):
    """Move a Queued run to Running."""
    try:
        run = await orchestration_run_service.start_run(request_id)
        return OrchestrationRunResponse(**run)

    except (RunNotFoundError, InvalidRunTransitionError) as e:
        raise _transition_http_error(e)
    except HTTPException:
        raise
    except Exception as e:
        logger.error(f"Failed to start orchestration run {request_id}: {e}", exc_info=True)
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail=f"Failed to start orchestration run: {str(e)}"
        )


@router.post("/runs/{request_id}/progress", response_model=OrchestrationRunResponse)
async def update_orchestration_run_progress(request_id: str, update: OrchestrationRunProgressUpdate):
    """
    Record progress for a Running run.

    current_progress defaults to "processed/total" when both counts are sent.
    """
    try:
        run = await orchestration_run_service.update_progress(
            request_id,
            current_step=update.current_step,
            current_progress=update.current_progress,
            total_items=update.total_items,
            processed_items=update.processed_items,
        )
        return OrchestrationRunResponse(**run)

    except (RunNotFoundError, InvalidRunTransitionError) as e:
        raise _transition_http_error(e)
    except HTTPException:
        raise
    except Exception as e:
        logger.error(f"Failed to update orchestration run {request_id}: {e}", exc_info=True)
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail=f"Failed to update orchestration run: {str(e)}"
        )


@router.post("/runs/{request_id}/complete", response_model=OrchestrationRunResponse)
async def complete_orchestration_run(request_id: str, results: Optional[OrchestrationRunResults] = None):
    """Move a Running run to Completed and store its result counters."""
    try:
        run = await orchestration_run_service.complete_run(request_id, results)
        return OrchestrationRunResponse(**run)

    except (RunNotFoundError, InvalidRunTransitionError) as e:
        raise _transition_http_error(e)
    except HTTPException:
        raise
    except Exception as e:
        logger.error(f"Failed to complete orchestration run {request_id}: {e}", exc_info=True)
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail=f"Failed to complete orchestration run: {str(e)}"
        )


@router.post("/runs/{request_id}/fail", response_model=OrchestrationRunResponse)
async def fail_orchestration_run(request_id: str, failure: OrchestrationRunFailure):
    """Move a Queued or Running run to Failed."""
    try:
        results = OrchestrationRunResults(**failure.model_dump(exclude={"error_message"}))
        run = await orchestration_run_service.fail_run(request_id, failure.error_message, results)
        return OrchestrationRunResponse(**run)

    except (RunNotFoundError, InvalidRunTransitionError) as e:
        raise _transition_http_error(e)
    except HTTPException:
        raise
    except Exception as e:
        logger.error(f"Failed to fail orchestration run {request_id}: {e}", exc_info=True)
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail=f"Failed to mark orchestration run failed: {str(e)}"
        )

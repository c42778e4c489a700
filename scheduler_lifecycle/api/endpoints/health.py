"""
Health check endpoints for service and orchestrator status monitoring.
"""
from fastapi import APIRouter, Query
from fastapi.responses import JSONResponse
from datetime import datetime, timezone
from typing import Dict, Any
import logging

from scheduler_lifecycle.core.config import settings
from scheduler_lifecycle.services.database import db_service
from scheduler_lifecycle.services.orchestration_run_service import orchestration_run_service

logger = logging.getLogger(__name__)

router = APIRouter()


@router.get("")
async def health_check() -> JSONResponse:
    """
    Service health check.

    Status codes:
        - 200: Database reachable
        - 503: Database unreachable
    """
    checks: Dict[str, Any] = {
        "status": "healthy",
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "services": {}
    }

    try:
        await db_service.ping()
        checks["services"]["database"] = {"status": "healthy"}
    except Exception as e:
        error_msg = str(e)
        logger.error(f"Database health check failed: {error_msg}")
        checks["services"]["database"] = {
            "status": "unhealthy",
            "error": error_msg
        }
        checks["status"] = "unhealthy"

    status_code = 200 if checks["status"] == "healthy" else 503
    return JSONResponse(content=checks, status_code=status_code)


@router.get("/orchestrator")
async def orchestrator_health(
    max_hours_since_last_run: int = Query(settings.ORCHESTRATOR_HEALTH_MAX_HOURS, ge=1, le=24 * 30)
) -> JSONResponse:
    """
    Orchestrator freshness check.

    Healthy when a run is in progress, or when the most recent completed run
    finished within `max_hours_since_last_run` hours.

    Status codes:
        - 200: Healthy
        - 503: Unhealthy (no completed run, stale, or health check failed)
    """
    health = await orchestration_run_service.get_health(max_hours_since_last_run)
    status_code = 200 if health.is_healthy else 503
    return JSONResponse(content=health.model_dump(mode="json"), status_code=status_code)

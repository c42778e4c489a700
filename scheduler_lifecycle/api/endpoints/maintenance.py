"""
Data Maintenance API Endpoints

Operator access to the data-lifecycle engine: trigger a maintenance pass,
read and change the retention configuration, preview what a pass would do,
and inspect the daily scheduler.

Related:
- Service: scheduler_lifecycle/services/maintenance_service.py
- Scheduler: scheduler_lifecycle/services/background_jobs/maintenance_job.py
- Config: scheduler_lifecycle/core/config.py (retention defaults)
"""

from fastapi import APIRouter, HTTPException, status
import logging

from scheduler_lifecycle.schemas.maintenance import (
    MaintenanceConfigResponse,
    MaintenancePreviewResponse,
    MaintenanceRunResponse,
    MaintenanceSchedulerStatus,
    UpdateMaintenanceConfigRequest,
)
from scheduler_lifecycle.services.background_jobs import (
    get_maintenance_scheduler_status,
    trigger_maintenance,
)
from scheduler_lifecycle.services.maintenance_config_service import (
    MaintenanceConfigurationError,
    maintenance_config_service,
)
from scheduler_lifecycle.services.maintenance_service import maintenance_service

router = APIRouter()
logger = logging.getLogger(__name__)


@router.post("/run", response_model=MaintenanceRunResponse)
async def run_maintenance():
    """
    Run a maintenance pass now.

    Always returns 200 with the run result; check `success` and `errors` for
    partial failures. A pass that finds another one in progress returns
    success=false without touching any data.
    """
    try:
        result = await trigger_maintenance()
        return MaintenanceRunResponse.from_result(result)

    except HTTPException:
        raise
    except Exception as e:
        logger.error(f"Failed to run maintenance: {e}", exc_info=True)
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail=f"Failed to run maintenance: {str(e)}"
        )


@router.get("/config", response_model=MaintenanceConfigResponse)
async def get_maintenance_config():
    """
    Get the effective retention configuration.

    Values come from the stored configuration row, falling back to the
    system defaults when none exists.
    """
    try:
        config = await maintenance_config_service.get_configuration()
        return MaintenanceConfigResponse(**config)

    except HTTPException:
        raise
    except Exception as e:
        logger.error(f"Failed to get maintenance configuration: {e}", exc_info=True)
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail=f"Failed to get maintenance configuration: {str(e)}"
        )


@router.put("/config", response_model=MaintenanceConfigResponse)
async def update_maintenance_config(request: UpdateMaintenanceConfigRequest):
    """
    Update the retention configuration (partial update).

    The merged configuration must still keep archives longer than every
    operational retention; otherwise the request is rejected with 400.
    """
    try:
        changes = request.model_dump(exclude_none=True)
        if not changes:
            raise HTTPException(
                status_code=status.HTTP_400_BAD_REQUEST,
                detail="At least one field must be provided for update"
            )

        config = await maintenance_config_service.update_configuration(changes)
        logger.info(f"Maintenance configuration updated: {changes}")
        return MaintenanceConfigResponse(**config)

    except HTTPException:
        raise
    except MaintenanceConfigurationError as e:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=str(e)
        )
    except Exception as e:
        logger.error(f"Failed to update maintenance configuration: {e}", exc_info=True)
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail=f"Failed to update maintenance configuration: {str(e)}"
        )


@router.get("/preview", response_model=MaintenancePreviewResponse)
async def preview_maintenance():
    """
    Count the rows a maintenance pass would archive and purge right now,
    without changing anything.
    """
    try:
        preview = await maintenance_service.get_preview()
        return MaintenancePreviewResponse(**preview)

    except HTTPException:
        raise
    except MaintenanceConfigurationError as e:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=str(e)
        )
    except Exception as e:
        logger.error(f"Failed to preview maintenance: {e}", exc_info=True)
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail=f"Failed to preview maintenance: {str(e)}"
        )


@router.get("/scheduler", response_model=MaintenanceSchedulerStatus)
async def get_scheduler_status():
    """Get the status of the daily maintenance scheduler."""
    scheduler_status = await get_maintenance_scheduler_status()
    return MaintenanceSchedulerStatus(**scheduler_status)

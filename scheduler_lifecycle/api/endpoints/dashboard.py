from fastapi import APIRouter, HTTPException, Query, status
from typing import Optional
import logging

from scheduler_lifecycle.schemas.dashboard import ConcurrencySummaryResponse
from scheduler_lifecycle.services.concurrency_service import TieBreak, concurrency_service

router = APIRouter()
logger = logging.getLogger(__name__)


@router.get("/concurrency", response_model=ConcurrencySummaryResponse)
async def get_concurrency(
    hours: int = Query(24, ge=1, le=24 * 31),
    client_id: Optional[int] = Query(None),
    tie_break: TieBreak = Query(TieBreak.END_FIRST),
):
    """
    Peak concurrent executions and hourly execution trends over the last `hours`.
    """
    try:
        summary = await concurrency_service.get_concurrency_summary(
            hours=hours,
            client_id=client_id,
            tie_break=tie_break,
        )
        return ConcurrencySummaryResponse(**summary)

    except Exception as e:
        logger.error(f"Failed to get concurrency summary: {e}", exc_info=True)
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail=f"Failed to get concurrency summary: {str(e)}"
        )

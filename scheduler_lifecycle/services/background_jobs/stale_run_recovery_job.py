"""
Stale Run Recovery Job

Background job that closes out orchestration runs left Queued or Running longer
than ORCHESTRATION_STALE_RUN_HOURS. It runs once at startup and then every
STALE_RUN_RECOVERY_INTERVAL_SECONDS, so a run orphaned by a crashed worker is
failed without waiting for the next restart.

Usage:
    # Start the recovery loop (called in main.py on startup)
    start_stale_run_recovery()

    # Stop the recovery loop (called in main.py on shutdown)
    await stop_stale_run_recovery()
"""
import asyncio
import logging
from typing import Optional, Dict, Any

from scheduler_lifecycle.core.config import settings
from scheduler_lifecycle.services.orchestration_run_service import orchestration_run_service

logger = logging.getLogger(__name__)

# Global flags to control the recovery loop
_recovery_running = False
_recovery_task: Optional[asyncio.Task] = None
_recovery_stop_event: Optional[asyncio.Event] = None
_last_recovered: Optional[int] = None


async def run_stale_run_recovery() -> Dict[str, int]:
    """Run one recovery pass and remember how many runs it failed"""
    global _last_recovered

    recovery = await orchestration_run_service.recover_stale_runs(settings.ORCHESTRATION_STALE_RUN_HOURS)
    _last_recovered = recovery["recovered"]
    return recovery


async def _stale_run_recovery_loop(stop_event: asyncio.Event):
    logger.info(
        f"Stale run recovery started (every {settings.STALE_RUN_RECOVERY_INTERVAL_SECONDS}s, "
        f"threshold {settings.ORCHESTRATION_STALE_RUN_HOURS}h)"
    )

    while _recovery_running and not stop_event.is_set():
        try:
            recovery = await run_stale_run_recovery()
            if recovery["recovered"]:
                logger.info(f"Stale run recovery marked {recovery['recovered']} runs failed")
        except Exception as e:
            logger.error(f"Error recovering stale orchestration runs: {e}", exc_info=True)

        try:
            await asyncio.wait_for(stop_event.wait(), timeout=settings.STALE_RUN_RECOVERY_INTERVAL_SECONDS)
        except asyncio.TimeoutError:
            pass

    logger.info("Stale run recovery stopped")


def start_stale_run_recovery():
    """
    Start the stale run recovery loop.

    Called during application startup. The first pass runs immediately.
    """
    global _recovery_running, _recovery_task, _recovery_stop_event

    if _recovery_running:
        logger.warning("Stale run recovery already running")
        return

    _recovery_running = True
    _recovery_stop_event = asyncio.Event()
    _recovery_task = asyncio.create_task(_stale_run_recovery_loop(_recovery_stop_event))
    logger.info("Stale run recovery task created and started")


async def stop_stale_run_recovery():
    """Stop the recovery loop, letting a pass in progress finish."""
    global _recovery_running, _recovery_task, _recovery_stop_event

    if not _recovery_running:
        logger.info("Stale run recovery not running")
        return

    _recovery_running = False
    if _recovery_stop_event is not None:
        _recovery_stop_event.set()

    if _recovery_task:
        await _recovery_task
        _recovery_task = None

    _recovery_stop_event = None


def get_stale_run_recovery_status() -> Dict[str, Any]:
    return {
        "running": _recovery_running,
        "enabled": settings.STALE_RUN_RECOVERY_ENABLED,
        "interval_seconds": settings.STALE_RUN_RECOVERY_INTERVAL_SECONDS,
        "threshold_hours": settings.ORCHESTRATION_STALE_RUN_HOURS,
        "last_recovered": _last_recovered,
    }

"""
Maintenance Job Scheduler

Background job that runs the data-lifecycle maintenance pass once a day
(default 2 AM UTC, off-peak). The loop wakes every
MAINTENANCE_CHECK_INTERVAL_SECONDS and runs the job when the scheduled hour has
arrived and it has not already run that day.

Only one maintenance pass runs at a time across all processes; the maintenance
lease taken inside maintenance_service makes a concurrent trigger return a
skipped result instead of running twice.

Usage:
    # Start the scheduler (called in main.py on startup)
    start_maintenance_scheduler()

    # Stop the scheduler (called in main.py on shutdown)
    await stop_maintenance_scheduler()

    # Manually trigger a maintenance pass
    result = await trigger_maintenance()
"""
import asyncio
import logging
from datetime import datetime, timezone
from typing import Optional, Dict, Any

from scheduler_lifecycle.core.config import settings
from scheduler_lifecycle.schemas.maintenance import MaintenanceResult
from scheduler_lifecycle.services.maintenance_service import maintenance_service

logger = logging.getLogger(__name__)

# Global flags to control scheduler
_maintenance_scheduler_running = False
_maintenance_scheduler_task: Optional[asyncio.Task] = None
_maintenance_cancel_event: Optional[asyncio.Event] = None
_last_run_at: Optional[datetime] = None
_last_run_success: Optional[bool] = None


async def trigger_maintenance() -> MaintenanceResult:
    """
    Run a maintenance pass now, outside the daily schedule.

    Returns:
        MaintenanceResult of the pass (a skipped result when another pass holds the lease)
    """
    logger.info("Manually triggering maintenance run")
    return await _run_maintenance_job()


async def _run_maintenance_job() -> MaintenanceResult:
    global _last_run_at, _last_run_success

    result = await maintenance_service.run_maintenance(cancel_event=_maintenance_cancel_event)
    _last_run_at = result.completed_at
    _last_run_success = result.success

    logger.info(
        f"Maintenance job completed:\n"
        f"  - Archived: {result.total_archived} records {result.archived}\n"
        f"  - Purged: {result.total_purged} archive records {result.purged}\n"
        f"  - Log files deleted: {result.log_files_deleted} ({result.log_files_bytes_freed} bytes)\n"
        f"  - Errors: {len(result.errors)}\n"
        f"  - Duration: {result.duration_seconds:.2f}s"
    )
    return result


def should_run_maintenance(last_run_date: Optional[datetime], now: Optional[datetime] = None) -> bool:
    """
    Check if it's time to run the daily maintenance job.

    The job runs when the current hour is the configured hour and it has not
    already run on the current UTC date.
    """
    now = now or datetime.now(timezone.utc)

    if now.hour != settings.MAINTENANCE_JOB_HOUR_UTC:
        return False

    if last_run_date is None:
        logger.info("Maintenance job has never run - scheduling first run")
        return True

    last_run_date_utc = last_run_date.astimezone(timezone.utc)
    if last_run_date_utc.date() < now.date():
        logger.info(
            f"Maintenance job last ran on {last_run_date_utc.date()}, "
            f"current date is {now.date()} - scheduling run"
        )
        return True

    return False


async def _wait_for_next_check(stop_event: asyncio.Event) -> None:
    """Sleep until the next check, returning early when the scheduler is stopped."""
    try:
        await asyncio.wait_for(stop_event.wait(), timeout=settings.MAINTENANCE_CHECK_INTERVAL_SECONDS)
    except asyncio.TimeoutError:
        pass


async def _maintenance_scheduler_loop(stop_event: asyncio.Event):
    """Check periodically whether the daily maintenance job is due and run it."""
    global _maintenance_scheduler_running

    logger.info(
        f"Maintenance scheduler started - will run daily at "
        f"{settings.MAINTENANCE_JOB_HOUR_UTC:02d}:00 UTC"
    )

    last_run_date: Optional[datetime] = None

    if settings.MAINTENANCE_RUN_ON_STARTUP:
        logger.info("Running maintenance job on startup (MAINTENANCE_RUN_ON_STARTUP=True)")
        try:
            await _run_maintenance_job()
            last_run_date = datetime.now(timezone.utc)
        except Exception as e:
            logger.error(f"Error running maintenance job on startup: {e}", exc_info=True)

    while _maintenance_scheduler_running and not stop_event.is_set():
        try:
            if should_run_maintenance(last_run_date):
                logger.info("Triggering scheduled maintenance job")
                try:
                    await _run_maintenance_job()
                    last_run_date = datetime.now(timezone.utc)
                except Exception as e:
                    logger.error(f"Error running scheduled maintenance job: {e}", exc_info=True)

        except Exception as e:
            logger.error(f"Error in maintenance scheduler loop: {e}", exc_info=True)

        await _wait_for_next_check(stop_event)

    logger.info("Maintenance scheduler stopped")


def start_maintenance_scheduler():
    """
    Start the maintenance scheduler.

    Called during application startup. Creates an asyncio task running the
    scheduler loop in the background.
    """
    global _maintenance_scheduler_running, _maintenance_scheduler_task, _maintenance_cancel_event

    if _maintenance_scheduler_running:
        logger.warning("Maintenance scheduler already running")
        return

    _maintenance_scheduler_running = True
    _maintenance_cancel_event = asyncio.Event()
    _maintenance_scheduler_task = asyncio.create_task(_maintenance_scheduler_loop(_maintenance_cancel_event))
    logger.info("Maintenance scheduler task created and started")


async def stop_maintenance_scheduler():
    """
    Stop the maintenance scheduler.

    Called during application shutdown. A pass in progress is asked to stop at
    its next batch boundary and given MAINTENANCE_SHUTDOWN_TIMEOUT_SECONDS to get
    there; the task is only cancelled outright when that grace period runs out.
    """
    global _maintenance_scheduler_running, _maintenance_scheduler_task, _maintenance_cancel_event

    if not _maintenance_scheduler_running:
        logger.info("Maintenance scheduler not running")
        return

    logger.info("Stopping maintenance scheduler...")
    _maintenance_scheduler_running = False

    if _maintenance_cancel_event is not None:
        _maintenance_cancel_event.set()

    if _maintenance_scheduler_task:
        try:
            await asyncio.wait_for(
                asyncio.shield(_maintenance_scheduler_task),
                timeout=settings.MAINTENANCE_SHUTDOWN_TIMEOUT_SECONDS,
            )
        except asyncio.TimeoutError:
            logger.warning(
                f"Maintenance run did not reach a batch boundary within "
                f"{settings.MAINTENANCE_SHUTDOWN_TIMEOUT_SECONDS}s; cancelling it"
            )
            _maintenance_scheduler_task.cancel()
            try:
                await _maintenance_scheduler_task
            except asyncio.CancelledError:
                logger.info("Maintenance scheduler task cancelled successfully")
        _maintenance_scheduler_task = None

    _maintenance_cancel_event = None
    logger.info("Maintenance scheduler stopped")


async def get_maintenance_scheduler_status() -> Dict[str, Any]:
    """
    Get the current status of the maintenance scheduler.

    Returns:
        Dictionary with running/enabled flags, the scheduled hour, the check
        interval and the outcome of the most recent pass.
    """
    return {
        "running": _maintenance_scheduler_running,
        "enabled": settings.MAINTENANCE_SCHEDULER_ENABLED,
        "next_run_hour_utc": settings.MAINTENANCE_JOB_HOUR_UTC,
        "check_interval_seconds": settings.MAINTENANCE_CHECK_INTERVAL_SECONDS,
        "last_run_at": _last_run_at,
        "last_run_success": _last_run_success,
    }

"""
Background Jobs Package

Contains scheduled background jobs for system maintenance.

Available Jobs:
- maintenance_job: Daily archival, archive purge and log file cleanup
- stale_run_recovery_job: Periodic failing of orphaned orchestration runs
"""

from scheduler_lifecycle.services.background_jobs.maintenance_job import (
    start_maintenance_scheduler,
    stop_maintenance_scheduler,
    trigger_maintenance,
    get_maintenance_scheduler_status,
)
from scheduler_lifecycle.services.background_jobs.stale_run_recovery_job import (
    start_stale_run_recovery,
    stop_stale_run_recovery,
    get_stale_run_recovery_status,
)

__all__ = [
    "start_maintenance_scheduler",
    "stop_maintenance_scheduler",
    "trigger_maintenance",
    "get_maintenance_scheduler_status",
    "start_stale_run_recovery",
    "stop_stale_run_recovery",
    "get_stale_run_recovery_status",
]

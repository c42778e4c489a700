"""
Orchestration run service - lifecycle and health of orchestrator runs.

A run moves Queued -> Running -> Completed | Failed (Queued may also fail
directly). Every transition is a compare-and-set on the current status in the
store, so two callers can never both move the same run, and terminal runs are
never changed again. At most one run is Queued or Running at any time.
"""
import logging
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Optional, Sequence, Union
from uuid import uuid4

from dateutil import parser as date_parser

from scheduler_lifecycle.core.config import settings
from scheduler_lifecycle.schemas.orchestration import (
    ACTIVE_STATUSES,
    LastRunStats,
    OrchestrationRunResults,
    OrchestratorHealth,
    RunStatus,
)
from scheduler_lifecycle.services.database import db_service

logger = logging.getLogger(__name__)


class RunNotFoundError(ValueError):
    def __init__(self, request_id: str):
        super().__init__(f"Orchestration run {request_id} not found")
        self.request_id = request_id


class InvalidRunTransitionError(ValueError):
    def __init__(self, request_id: str, current_status: Optional[str], action: str):
        super().__init__(f"Cannot {action} orchestration run {request_id} in status {current_status}")
        self.request_id = request_id
        self.current_status = current_status


class RunAlreadyActiveError(ValueError):
    def __init__(self, active_request_id: Optional[str]):
        super().__init__(f"An orchestration run is already active ({active_request_id})")
        self.active_request_id = active_request_id


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


def _parse_timestamp(value: Any) -> Optional[datetime]:
    if value is None:
        return None
    parsed = value if isinstance(value, datetime) else date_parser.isoparse(str(value))
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def _result_counters(results: Union[OrchestrationRunResults, Dict[str, Any], None]) -> Dict[str, int]:
    if results is None:
        return {}
    if isinstance(results, dict):
        results = OrchestrationRunResults(**results)
    return results.model_dump()


def _status_values(statuses: Sequence[RunStatus]) -> List[str]:
    return [status.value for status in statuses]


class OrchestrationRunService:
    """Service for orchestration run state transitions and health reporting"""

    async def request_run(self, requested_by: Optional[str] = None) -> Dict[str, Any]:
        """
        Queue a new orchestration run.

        Raises:
            RunAlreadyActiveError: If a run is already Queued or Running
        """
        active = await db_service.get_active_orchestration_run()
        if active:
            raise RunAlreadyActiveError(active.get("request_id"))

        run_data = {
            "request_id": str(uuid4()),
            "requested_by": requested_by,
            "status": RunStatus.QUEUED.value,
            "requested_at": _utc_now().isoformat(),
        }

        try:
            run = await db_service.create_orchestration_run(run_data)
        except Exception:
            # The partial unique index rejects a second active run inserted concurrently
            active = await db_service.get_active_orchestration_run()
            if active:
                raise RunAlreadyActiveError(active.get("request_id"))
            raise

        logger.info(f"Queued orchestration run {run['request_id']} (requested_by={requested_by})")
        return run

    async def start_run(self, request_id: str) -> Dict[str, Any]:
        """Move a run from Queued to Running"""
        run = await db_service.transition_orchestration_run(
            request_id,
            _status_values([RunStatus.QUEUED]),
            {"status": RunStatus.RUNNING.value, "started_at": _utc_now().isoformat()},
        )
        if run is None:
            await self._raise_transition_error(request_id, "start")

        logger.info(f"Orchestration run {request_id} started")
        return run

    async def update_progress(
        self,
        request_id: str,
        current_step: Optional[str] = None,
        current_progress: Optional[str] = None,
        total_items: Optional[int] = None,
        processed_items: Optional[int] = None,
    ) -> Dict[str, Any]:
        """
        Record progress for a Running run.

        current_progress defaults to "processed/total" when both counts are given.
        """
        update_data: Dict[str, Any] = {}
        if current_step is not None:
            update_data["current_step"] = current_step
        if total_items is not None:
            update_data["total_items"] = total_items
        if processed_items is not None:
            update_data["processed_items"] = processed_items
        if current_progress is None and total_items is not None and processed_items is not None:
            current_progress = f"{processed_items}/{total_items}"
        if current_progress is not None:
            update_data["current_progress"] = current_progress

        if not update_data:
            run = await self.get_run(request_id)
            if run is None:
                raise RunNotFoundError(request_id)
            if run.get("status") != RunStatus.RUNNING.value:
                raise InvalidRunTransitionError(request_id, run.get("status"), "update progress of")
            return run

        run = await db_service.transition_orchestration_run(
            request_id,
            _status_values([RunStatus.RUNNING]),
            update_data,
        )
        if run is None:
            await self._raise_transition_error(request_id, "update progress of")
        return run

    async def complete_run(
        self,
        request_id: str,
        results: Union[OrchestrationRunResults, Dict[str, Any], None] = None,
    ) -> Dict[str, Any]:
        """Move a Running run to Completed and store its result counters"""
        update_data: Dict[str, Any] = {
            "status": RunStatus.COMPLETED.value,
            "completed_at": _utc_now().isoformat(),
            "current_step": None,
            **_result_counters(results),
        }
        run = await db_service.transition_orchestration_run(
            request_id,
            _status_values([RunStatus.RUNNING]),
            update_data,
        )
        if run is None:
            await self._raise_transition_error(request_id, "complete")

        logger.info(f"Orchestration run {request_id} marked as completed")
        return run

    async def fail_run(
        self,
        request_id: str,
        error_message: str,
        results: Union[OrchestrationRunResults, Dict[str, Any], None] = None,
    ) -> Dict[str, Any]:
        """Move a Queued or Running run to Failed"""
        update_data: Dict[str, Any] = {
            "status": RunStatus.FAILED.value,
            "completed_at": _utc_now().isoformat(),
            "error_message": error_message,
            **_result_counters(results),
        }
        run = await db_service.transition_orchestration_run(
            request_id,
            _status_values(ACTIVE_STATUSES),
            update_data,
        )
        if run is None:
            await self._raise_transition_error(request_id, "fail")

        logger.error(f"Orchestration run {request_id} marked as failed: {error_message}")
        return run

    async def get_run(self, request_id: str) -> Optional[Dict[str, Any]]:
        return await db_service.get_orchestration_run(request_id)

    async def get_recent_runs(self, limit: int = 20) -> List[Dict[str, Any]]:
        return await db_service.get_recent_orchestration_runs(limit)

    async def recover_stale_runs(self, max_runtime_hours: Optional[int] = None) -> Dict[str, int]:
        """
        Fail runs left Queued or Running longer than max_runtime_hours.

        Called on startup to close out runs orphaned by a crash or restart.

        Returns:
            Dictionary with the number of runs recovered
        """
        max_runtime_hours = max_runtime_hours or settings.ORCHESTRATION_STALE_RUN_HOURS
        cutoff = _utc_now() - timedelta(hours=max_runtime_hours)

        stale_runs = await db_service.get_stale_orchestration_runs(cutoff.isoformat())
        recovered = 0

        for run in stale_runs:
            request_id = run.get("request_id")
            try:
                updated = await db_service.transition_orchestration_run(
                    request_id,
                    _status_values(ACTIVE_STATUSES),
                    {
                        "status": RunStatus.FAILED.value,
                        "completed_at": _utc_now().isoformat(),
                        "error_message": (
                            f"Run did not finish within {max_runtime_hours} hours "
                            f"and was marked failed during recovery"
                        ),
                    },
                )
                if updated:
                    recovered += 1
                    logger.warning(f"Recovered stale orchestration run {request_id} (was {run.get('status')})")
            except Exception as e:
                logger.error(f"Failed to recover orchestration run {request_id}: {str(e)}")

        if recovered:
            logger.info(f"Recovered {recovered} stale orchestration runs")
        return {"recovered": recovered}

    async def get_health(
        self,
        max_hours_since_last_run: Optional[int] = None,
        now: Optional[datetime] = None,
    ) -> OrchestratorHealth:
        """
        Report whether the orchestrator has completed a run recently enough.

        - A Queued or Running latest run is healthy (work is in progress).
        - Otherwise the most recent Completed run must have finished at or after
          now - max_hours_since_last_run.
        - No Completed run at all is unhealthy.

        Store failures produce an unhealthy report instead of raising.
        """
        threshold = max_hours_since_last_run or settings.ORCHESTRATOR_HEALTH_MAX_HOURS
        now = now or _utc_now()
        if now.tzinfo is None:
            now = now.replace(tzinfo=timezone.utc)
        cutoff = now - timedelta(hours=threshold)

        base = {"checked_at": now, "threshold_hours": threshold, "cutoff_time": cutoff}

        try:
            latest = await db_service.get_latest_orchestration_run()
            last_completed = await db_service.get_latest_completed_orchestration_run()
        except Exception as e:
            logger.error(f"Orchestrator health check failed: {str(e)}", exc_info=True)
            return OrchestratorHealth(
                status="unhealthy",
                is_healthy=False,
                message=f"Health check failed: {str(e)}",
                **base,
            )

        if latest:
            base.update({
                "last_run_request_id": latest.get("request_id"),
                "last_run_status": latest.get("status"),
            })
            if latest.get("status") == RunStatus.FAILED.value:
                base["last_run_error_message"] = latest.get("error_message")

        if last_completed:
            last_success = _parse_timestamp(last_completed.get("completed_at"))
            base.update({
                "last_successful_run_time": last_success,
                "hours_since_last_success": (
                    round((now - last_success).total_seconds() / 3600, 2) if last_success else None
                ),
                "last_run_stats": LastRunStats(
                    accounts_synced=last_completed.get("sync_accounts_total") or 0,
                    jobs_created=last_completed.get("jobs_created") or 0,
                    credentials_verified=last_completed.get("credentials_verified") or 0,
                    scraping_requested=last_completed.get("scraping_requested") or 0,
                    statuses_checked=last_completed.get("statuses_checked") or 0,
                ),
            })
        else:
            last_success = None

        if latest and latest.get("status") in _status_values(ACTIVE_STATUSES):
            return OrchestratorHealth(
                status="healthy",
                is_healthy=True,
                message=f"Orchestrator run {latest.get('request_id')} is {latest.get('status').lower()}",
                is_currently_running=True,
                current_run_request_id=latest.get("request_id"),
                current_step=latest.get("current_step"),
                current_progress=latest.get("current_progress"),
                **base,
            )

        if last_success is None:
            return OrchestratorHealth(
                status="unhealthy",
                is_healthy=False,
                message="No successful orchestrator run found",
                **base,
            )

        if last_success >= cutoff:
            return OrchestratorHealth(
                status="healthy",
                is_healthy=True,
                message=f"Last successful run completed {base['hours_since_last_success']} hours ago",
                **base,
            )

        return OrchestratorHealth(
            status="unhealthy",
            is_healthy=False,
            message=(
                f"Last successful run completed {base['hours_since_last_success']} hours ago, "
                f"exceeding the {threshold} hour threshold"
            ),
            **base,
        )

    async def _raise_transition_error(self, request_id: str, action: str) -> None:
        run = await db_service.get_orchestration_run(request_id)
        if run is None:
            raise RunNotFoundError(request_id)
        raise InvalidRunTransitionError(request_id, run.get("status"), action)


orchestration_run_service = OrchestrationRunService()

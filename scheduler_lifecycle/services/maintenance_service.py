"""
Maintenance Service - Runs one full data-lifecycle pass.

A run holds the maintenance lease for its whole duration and performs, in order:

1. Load the retention policy from the stored configuration (never cached).
2. Archive aged rows for every entity kind (skipped when archival is disabled).
3. Purge archive rows past the archive horizon (skipped when archival is disabled).
4. Reap old log files.

A failing kind is recorded and the run moves on to the next kind and phase. The
run only stops early when it is cancelled, when the lease is held elsewhere or
lost, or when the configuration is invalid. run_maintenance() never raises.

Usage:
    result = await maintenance_service.run_maintenance()
    if not result.success:
        logger.warning(result.error_message)
"""
import asyncio
import logging
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from scheduler_lifecycle.core.config import settings
from scheduler_lifecycle.core.entity_kinds import MAINTENANCE_ORDER
from scheduler_lifecycle.core.retention_policy import RetentionPolicy
from scheduler_lifecycle.schemas.maintenance import MaintenanceResult
from scheduler_lifecycle.services.archival_service import archival_service
from scheduler_lifecycle.services.archive_purge_service import archive_purge_service
from scheduler_lifecycle.services.log_reaper_service import log_reaper_service
from scheduler_lifecycle.services.maintenance_config_service import (
    MaintenanceConfigurationError,
    maintenance_config_service,
)
from scheduler_lifecycle.services.maintenance_lock_service import MaintenanceLease, maintenance_lock_service

logger = logging.getLogger(__name__)


class _RunAccumulator:
    """Mutable state collected while a run progresses"""

    def __init__(self):
        self.archived: Dict[str, int] = {}
        self.purged: Dict[str, int] = {}
        self.log_files_deleted = 0
        self.log_files_bytes_freed = 0
        self.errors: List[str] = []
        self.cancelled = False
        self.archival_enabled = True

    def record_error(self, message: str) -> None:
        self.errors.append(message)

    def to_result(self, started_at: datetime, completed_at: datetime) -> MaintenanceResult:
        return MaintenanceResult(
            archived=self.archived,
            purged=self.purged,
            log_files_deleted=self.log_files_deleted,
            log_files_bytes_freed=self.log_files_bytes_freed,
            success=not self.errors,
            error_message="; ".join(self.errors) if self.errors else None,
            errors=self.errors,
            cancelled=self.cancelled,
            archival_enabled=self.archival_enabled,
            started_at=started_at,
            completed_at=completed_at,
            duration_seconds=(completed_at - started_at).total_seconds(),
        )


def _is_cancelled(cancel_event: Optional[asyncio.Event]) -> bool:
    return cancel_event is not None and cancel_event.is_set()


async def _keep_lease(state: _RunAccumulator, lease: MaintenanceLease) -> bool:
    """Renew the lease before the next step; records an error when it was lost"""
    if await lease.renew():
        return True
    logger.error("Maintenance lease was lost; stopping the run")
    state.record_error("Maintenance lease was lost before the run finished; remaining steps were skipped")
    return False


class MaintenanceService:
    """Drives archival, purge and log reaping for one maintenance run"""

    async def run_maintenance(
        self,
        cancel_event: Optional[asyncio.Event] = None,
        now: Optional[datetime] = None,
    ) -> MaintenanceResult:
        """
        Run a complete maintenance pass.

        Args:
            cancel_event: Set it to stop the run at the next batch, kind or phase boundary
            now: Reference instant for every cutoff (defaults to the current time)

        Returns:
            MaintenanceResult; success is False when any step failed
        """
        started_at = datetime.now(timezone.utc)
        now = now or started_at
        if now.tzinfo is None:
            now = now.replace(tzinfo=timezone.utc)

        state = _RunAccumulator()
        logger.info(f"Starting maintenance run (reference time {now.isoformat()})")

        try:
            async with maintenance_lock_service.acquire_maintenance_lock() as lease:
                if lease:
                    await self._run_locked(state, now, cancel_event, lease)
                else:
                    state.record_error("Maintenance is already running elsewhere; this run was skipped")
        except Exception as e:
            logger.error(f"Unexpected error during maintenance run: {e}", exc_info=True)
            state.record_error(f"Unexpected maintenance failure: {e}")

        result = state.to_result(started_at, datetime.now(timezone.utc))

        logger.info(
            f"Maintenance run finished: archived {result.total_archived} records "
            f"({result.archived}), purged {result.total_purged} archive records "
            f"({result.purged}), deleted {result.log_files_deleted} log files "
            f"({result.log_files_bytes_freed} bytes) in {result.duration_seconds:.2f}s "
            f"(success={result.success}, cancelled={result.cancelled})"
        )
        if result.errors:
            logger.warning(f"Maintenance run completed with {len(result.errors)} errors: {result.error_message}")

        return result

    async def _run_locked(
        self,
        state: _RunAccumulator,
        now: datetime,
        cancel_event: Optional[asyncio.Event],
        lease: MaintenanceLease,
    ) -> None:
        try:
            policy = await maintenance_config_service.load_retention_policy()
        except MaintenanceConfigurationError as e:
            logger.error(f"Maintenance run aborted: {e}")
            state.record_error(str(e))
            return

        state.archival_enabled = policy.archival_enabled

        if policy.archival_enabled:
            if not await self._archive_phase(state, policy, now, cancel_event, lease):
                return
            if not await self._purge_phase(state, policy, now, cancel_event, lease):
                return
        else:
            logger.info("Archival is disabled; skipping archive and purge phases")

        if _is_cancelled(cancel_event):
            state.cancelled = True
            return

        if not await _keep_lease(state, lease):
            return

        await self._log_phase(state, policy, now, cancel_event)

    async def _archive_phase(
        self,
        state: _RunAccumulator,
        policy: RetentionPolicy,
        now: datetime,
        cancel_event: Optional[asyncio.Event],
        lease: MaintenanceLease,
    ) -> bool:
        """Archive every kind; returns False when the run was cancelled or lost its lease"""
        for kind in MAINTENANCE_ORDER:
            if _is_cancelled(cancel_event):
                state.cancelled = True
                return False
            if not await _keep_lease(state, lease):
                return False

            try:
                outcome = await archival_service.archive(
                    kind,
                    policy.cutoff_for(kind, now),
                    batch_size=policy.batch_size,
                    cancel_event=cancel_event,
                    archived_at=now,
                )
            except Exception as e:
                logger.error(f"Archival of {kind.value} records failed: {e}", exc_info=True)
                state.record_error(f"{kind.value} archival failed: {e}")
                continue

            state.archived[kind.value] = outcome.archived_count
            if outcome.error:
                state.record_error(f"{kind.value} archival failed: {outcome.error}")
            if outcome.cancelled:
                state.cancelled = True
                return False

        return True

    async def _purge_phase(
        self,
        state: _RunAccumulator,
        policy: RetentionPolicy,
        now: datetime,
        cancel_event: Optional[asyncio.Event],
        lease: MaintenanceLease,
    ) -> bool:
        """Purge every archive kind; returns False when the run was cancelled or lost its lease"""
        cutoff = policy.archive_cutoff(now)

        for kind in MAINTENANCE_ORDER:
            if _is_cancelled(cancel_event):
                state.cancelled = True
                return False
            if not await _keep_lease(state, lease):
                return False

            try:
                outcome = await archive_purge_service.purge(
                    kind,
                    cutoff,
                    batch_size=policy.batch_size,
                    cancel_event=cancel_event,
                )
            except Exception as e:
                logger.error(f"Purge of {kind.value} archives failed: {e}", exc_info=True)
                state.record_error(f"{kind.value} archive purge failed: {e}")
                continue

            state.purged[kind.value] = outcome.purged_count
            if outcome.error:
                state.record_error(f"{kind.value} archive purge failed: {outcome.error}")
            if outcome.cancelled:
                state.cancelled = True
                return False

        return True

    async def _log_phase(
        self,
        state: _RunAccumulator,
        policy: RetentionPolicy,
        now: datetime,
        cancel_event: Optional[asyncio.Event],
    ) -> None:
        try:
            outcome = await log_reaper_service.reap_all(
                settings.MAINTENANCE_LOG_DIRECTORIES,
                policy.log_cutoff(now),
                settings.MAINTENANCE_LOG_PATTERNS,
                cancel_event,
            )
        except Exception as e:
            logger.error(f"Log file cleanup failed: {e}", exc_info=True)
            state.record_error(f"Log file cleanup failed: {e}")
            return

        state.log_files_deleted = outcome.deleted_count
        state.log_files_bytes_freed = outcome.bytes_freed
        if outcome.errors:
            logger.warning(f"Skipped {len(outcome.errors)} log files that could not be deleted")
        if outcome.cancelled:
            state.cancelled = True

    async def get_preview(self, now: Optional[datetime] = None) -> Dict[str, Any]:
        """
        Count what a maintenance run at `now` would archive and purge.

        Raises:
            MaintenanceConfigurationError: If the stored configuration is invalid
        """
        now = now or datetime.now(timezone.utc)
        if now.tzinfo is None:
            now = now.replace(tzinfo=timezone.utc)

        policy = await maintenance_config_service.load_retention_policy()
        purge_cutoff = policy.archive_cutoff(now)

        entities = []
        for kind in MAINTENANCE_ORDER:
            archive_cutoff = policy.cutoff_for(kind, now)
            entities.append({
                "kind": kind.value,
                "archive_cutoff": archive_cutoff,
                "eligible_for_archive": await archival_service.preview(kind, archive_cutoff),
                "purge_cutoff": purge_cutoff,
                "eligible_for_purge": await archive_purge_service.preview(kind, purge_cutoff),
            })

        return {
            "generated_at": now,
            "archival_enabled": policy.archival_enabled,
            "entities": entities,
            "log_cutoff": policy.log_cutoff(now),
            "total_eligible_for_archive": sum(e["eligible_for_archive"] for e in entities),
            "total_eligible_for_purge": sum(e["eligible_for_purge"] for e in entities),
        }


maintenance_service = MaintenanceService()

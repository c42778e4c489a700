"""
Archive Purge Service - Permanently deletes archive rows past the archive horizon.

Deletion is irreversible. Archive rows are selected oldest first by archived_at and
deleted by id, with the cutoff re-applied in the delete statement so a row can
never be removed if it is younger than the horizon.
"""
import asyncio
import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Optional

from scheduler_lifecycle.core.config import settings
from scheduler_lifecycle.core.entity_kinds import EntityKind, get_archival_target
from scheduler_lifecycle.services.archival_service import retry_store_call, to_iso, validate_batch_size
from scheduler_lifecycle.services.database import db_service

logger = logging.getLogger(__name__)


@dataclass
class PurgeOutcome:
    """Result of purging one archive kind."""
    kind: EntityKind
    purged_count: int = 0
    batches: int = 0
    error: Optional[str] = None
    cancelled: bool = False

    @property
    def succeeded(self) -> bool:
        return self.error is None


class ArchivePurgeService:
    """Batched permanent deletion of expired archive rows"""

    def __init__(
        self,
        batch_size: Optional[int] = None,
        max_attempts: Optional[int] = None,
        retry_delay_seconds: Optional[float] = None,
    ):
        self.batch_size = validate_batch_size(
            batch_size if batch_size is not None else settings.ARCHIVAL_BATCH_SIZE
        )
        self.max_attempts = max(1, max_attempts if max_attempts is not None else settings.ARCHIVAL_BATCH_MAX_ATTEMPTS)
        self.retry_delay_seconds = (
            retry_delay_seconds if retry_delay_seconds is not None else settings.ARCHIVAL_RETRY_DELAY_SECONDS
        )

    async def purge(
        self,
        kind: EntityKind,
        cutoff: datetime,
        batch_size: Optional[int] = None,
        cancel_event: Optional[asyncio.Event] = None,
    ) -> PurgeOutcome:
        """
        Delete archive rows of `kind` archived strictly before `cutoff`.

        Args:
            kind: Entity kind whose archive table is purged
            cutoff: Archive rows older than this are deleted
            batch_size: Rows per delete request (defaults to the service batch size)
            cancel_event: Optional cooperative cancellation signal

        Returns:
            PurgeOutcome with the number of archive rows deleted
        """
        target = get_archival_target(kind)
        batch_size = validate_batch_size(batch_size if batch_size is not None else self.batch_size)
        cutoff_iso = to_iso(cutoff)
        outcome = PurgeOutcome(kind=target.kind)

        logger.info(f"Purging {target.archive_table} rows archived before {cutoff_iso}")

        while True:
            if cancel_event is not None and cancel_event.is_set():
                outcome.cancelled = True
                logger.info(f"Purge of {target.archive_table} cancelled after {outcome.purged_count} rows")
                break

            batch_number = outcome.batches + 1

            try:
                ids = await retry_store_call(
                    f"Selecting expired {target.label} archives (batch {batch_number})",
                    db_service.select_expired_archive_ids, target, cutoff_iso, batch_size,
                    max_attempts=self.max_attempts,
                    retry_delay_seconds=self.retry_delay_seconds,
                )
                if not ids:
                    break

                deleted = await retry_store_call(
                    f"Deleting expired {target.label} archives (batch {batch_number})",
                    db_service.delete_archive_records, target, ids, cutoff_iso,
                    max_attempts=self.max_attempts,
                    retry_delay_seconds=self.retry_delay_seconds,
                )
            except Exception as e:
                outcome.error = f"Failed to purge {target.archive_table} batch {batch_number}: {e}"
                logger.error(outcome.error, exc_info=True)
                break

            if deleted == 0:
                logger.warning(
                    f"Selected {len(ids)} expired {target.label} archives but none were deleted; stopping"
                )
                break

            outcome.batches += 1
            outcome.purged_count += deleted
            logger.info(f"Purged {deleted} {target.label} archive rows (total: {outcome.purged_count})")

            if len(ids) < batch_size:
                break

        return outcome

    async def preview(self, kind: EntityKind, cutoff: datetime) -> int:
        """Count archive rows that purge() with this cutoff would delete"""
        target = get_archival_target(kind)
        return await db_service.count_expired_archive_records(target, to_iso(cutoff))


# Global singleton instance
archive_purge_service = ArchivePurgeService()

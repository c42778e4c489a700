"""
Archival Service - Moves aged operational rows into archive tables.

One generic batcher serves every entity kind; the table layout comes from
ARCHIVAL_TARGETS. Each batch follows a two-phase protocol:

1. Stage: upsert archive copies in one request and verify the acknowledged count.
2. Commit: delete the same ids from the operational table in one request.

A failed stage leaves the operational table untouched. A failed commit leaves
archive copies behind; they are keyed by source id, so the next run upserts over
them instead of duplicating. Rows are never deleted before their copy is acknowledged.

Usage:
    outcome = await archival_service.archive(EntityKind.AUDIT_LOG, cutoff)
    print(f"Archived {outcome.archived_count} audit logs")
"""
import asyncio
import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable, Dict, List, Optional

from scheduler_lifecycle.core.config import settings
from scheduler_lifecycle.core.entity_kinds import ArchivalTarget, EntityKind, get_archival_target
from scheduler_lifecycle.services.database import db_service

logger = logging.getLogger(__name__)

ARCHIVED_BY = "System Archival"
MAX_RETRY_DELAY_SECONDS = 10.0


class ArchiveCopyError(Exception):
    """The archive store did not acknowledge every row of a staged batch."""


@dataclass
class ArchiveOutcome:
    """Result of archiving one entity kind."""
    kind: EntityKind
    archived_count: int = 0
    batches: int = 0
    error: Optional[str] = None
    cancelled: bool = False

    @property
    def succeeded(self) -> bool:
        return self.error is None


def validate_batch_size(batch_size: int) -> int:
    if isinstance(batch_size, bool) or not isinstance(batch_size, int) or batch_size <= 0:
        raise ValueError(f"batch_size must be a positive integer, got {batch_size!r}")
    return batch_size


def to_iso(value: datetime) -> str:
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.isoformat()


async def retry_store_call(
    description: str,
    func: Callable[..., Awaitable[Any]],
    *args: Any,
    max_attempts: int = 1,
    retry_delay_seconds: float = 0.0,
) -> Any:
    """
    Await a store call, retrying with exponential backoff.

    The last exception is re-raised once max_attempts is exhausted.
    """
    attempt = 1
    delay = retry_delay_seconds
    while True:
        try:
            return await func(*args)
        except Exception as e:
            if attempt >= max_attempts:
                raise
            logger.warning(
                f"{description} failed (attempt {attempt}/{max_attempts}): {e}. "
                f"Retrying in {delay:.2f}s"
            )
            await asyncio.sleep(delay)
            delay = min(delay * 2, MAX_RETRY_DELAY_SECONDS)
            attempt += 1


class ArchivalService:
    """Batched copy-then-delete archival for one entity kind at a time."""

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

    async def archive(
        self,
        kind: EntityKind,
        cutoff: datetime,
        batch_size: Optional[int] = None,
        cancel_event: Optional[asyncio.Event] = None,
        archived_at: Optional[datetime] = None,
    ) -> ArchiveOutcome:
        """
        Archive every row of `kind` whose age timestamp is strictly older than `cutoff`.

        Batches are processed oldest first. The loop stops at the first batch that
        fails irrecoverably and reports the partial count together with the error.
        A set cancel_event is honoured between batches, never inside one.

        Args:
            kind: Entity kind to archive
            cutoff: Rows older than this are eligible
            batch_size: Rows per batch (defaults to the service batch size)
            cancel_event: Optional cooperative cancellation signal
            archived_at: Timestamp written to archive rows (defaults to now)

        Returns:
            ArchiveOutcome with the number of rows moved
        """
        target = get_archival_target(kind)
        batch_size = validate_batch_size(batch_size if batch_size is not None else self.batch_size)
        cutoff_iso = to_iso(cutoff)
        archived_at_iso = to_iso(archived_at or datetime.now(timezone.utc))
        outcome = ArchiveOutcome(kind=target.kind)

        logger.info(
            f"Archiving {target.label} records older than {cutoff_iso} "
            f"from {target.operational_table} to {target.archive_table} (batch_size={batch_size})"
        )

        while True:
            if cancel_event is not None and cancel_event.is_set():
                outcome.cancelled = True
                logger.info(
                    f"Archival of {target.label} records cancelled after "
                    f"{outcome.batches} batches ({outcome.archived_count} records)"
                )
                break

            batch_number = outcome.batches + 1

            try:
                batch = await self._retry(
                    f"Reading {target.label} batch {batch_number}",
                    db_service.query_aged_records, target, cutoff_iso, batch_size
                )
            except Exception as e:
                outcome.error = f"Failed to read {target.label} batch {batch_number}: {e}"
                logger.error(outcome.error, exc_info=True)
                break

            if not batch:
                break

            ids = [row[target.id_column] for row in batch]

            # Stage: nothing is deleted unless every copy is acknowledged
            try:
                archive_rows = [self._to_archive_row(target, row, archived_at_iso) for row in batch]
                await self._retry(
                    f"Copying {target.label} batch {batch_number}",
                    self._stage_batch, target, archive_rows
                )
            except Exception as e:
                outcome.error = (
                    f"Archive copy failed for {target.label} batch {batch_number}: {e}. "
                    f"Operational rows were left untouched"
                )
                logger.error(outcome.error, exc_info=True)
                break

            # Commit
            try:
                deleted = await self._retry(
                    f"Deleting {target.label} batch {batch_number}",
                    db_service.delete_operational_records, target, ids
                )
            except Exception as e:
                outcome.error = (
                    f"Delete failed for {target.label} batch {batch_number} after archive copy: {e}. "
                    f"{len(ids)} archive copies were kept and will be deduplicated on the next run"
                )
                logger.error(outcome.error, exc_info=True)
                break

            if deleted == 0:
                outcome.error = (
                    f"No {target.label} rows were deleted for batch {batch_number} "
                    f"after archive copy; stopping to avoid re-copying the same rows"
                )
                logger.error(outcome.error)
                break
            if deleted != len(ids):
                logger.warning(
                    f"Expected to delete {len(ids)} {target.label} rows in batch {batch_number}, "
                    f"store reported {deleted}"
                )

            outcome.batches += 1
            outcome.archived_count += deleted
            logger.info(
                f"Archived {deleted} {target.label} records (total: {outcome.archived_count})"
            )

            if len(batch) < batch_size:
                break

        return outcome

    async def preview(self, kind: EntityKind, cutoff: datetime) -> int:
        """Count rows that an archive() call with this cutoff would move"""
        target = get_archival_target(kind)
        return await db_service.count_aged_records(target, to_iso(cutoff))

    async def _stage_batch(self, target: ArchivalTarget, archive_rows: List[Dict[str, Any]]) -> int:
        acknowledged = await db_service.upsert_archive_records(target, archive_rows)
        if acknowledged != len(archive_rows):
            raise ArchiveCopyError(
                f"archive store acknowledged {acknowledged} of {len(archive_rows)} rows"
            )
        return acknowledged

    async def _retry(self, description: str, func: Callable[..., Awaitable[Any]], *args: Any) -> Any:
        return await retry_store_call(
            description,
            func,
            *args,
            max_attempts=self.max_attempts,
            retry_delay_seconds=self.retry_delay_seconds,
        )

    @staticmethod
    def _to_archive_row(target: ArchivalTarget, row: Dict[str, Any], archived_at_iso: str) -> Dict[str, Any]:
        archive_row = {key: value for key, value in row.items() if key != target.id_column}
        archive_row[target.source_id_column] = row[target.id_column]
        archive_row[target.archived_at_column] = archived_at_iso
        archive_row["archived_by"] = ARCHIVED_BY
        return archive_row


# Global singleton instance
archival_service = ArchivalService()

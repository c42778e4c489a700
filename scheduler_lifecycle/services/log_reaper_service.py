"""
Log Reaper Service - Deletes rotated log files older than the log retention.

Only the top level of each directory is scanned. A missing directory counts as
zero files. Files that cannot be inspected or removed are logged and skipped.
"""
import asyncio
import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Iterable, List, Optional, Sequence, Union

logger = logging.getLogger(__name__)

DEFAULT_LOG_PATTERNS = ("*.txt", "*.log")


@dataclass
class LogReapOutcome:
    deleted_count: int = 0
    bytes_freed: int = 0
    errors: List[str] = field(default_factory=list)
    cancelled: bool = False

    def merge(self, other: "LogReapOutcome") -> "LogReapOutcome":
        self.deleted_count += other.deleted_count
        self.bytes_freed += other.bytes_freed
        self.errors.extend(other.errors)
        self.cancelled = self.cancelled or other.cancelled
        return self


class LogReaperService:
    """Removes log files whose modification time is older than a cutoff"""

    async def reap(
        self,
        directory: Union[str, Path],
        cutoff: datetime,
        patterns: Sequence[str] = DEFAULT_LOG_PATTERNS,
        cancel_event: Optional[asyncio.Event] = None,
    ) -> LogReapOutcome:
        """
        Delete files in `directory` matching `patterns` with mtime strictly before `cutoff`.

        Args:
            directory: Directory to scan (not recursive)
            cutoff: Files last modified before this instant are removed
            patterns: Glob patterns for candidate files
            cancel_event: Optional cooperative cancellation signal

        Returns:
            LogReapOutcome with deleted count, bytes freed and per-file errors
        """
        outcome = LogReapOutcome()
        path = Path(directory)
        if cutoff.tzinfo is None:
            cutoff = cutoff.replace(tzinfo=timezone.utc)

        if not path.is_dir():
            logger.debug(f"Log directory {path} does not exist, nothing to reap")
            return outcome

        for candidate in self._candidates(path, patterns):
            if cancel_event is not None and cancel_event.is_set():
                outcome.cancelled = True
                break

            try:
                stat = candidate.stat()
                modified_at = datetime.fromtimestamp(stat.st_mtime, tz=timezone.utc)
                if modified_at >= cutoff:
                    continue

                candidate.unlink()
                outcome.deleted_count += 1
                outcome.bytes_freed += stat.st_size
                logger.debug(f"Deleted log file {candidate} ({stat.st_size} bytes, modified {modified_at.isoformat()})")
            except FileNotFoundError:
                # Removed by someone else between listing and deleting
                continue
            except OSError as e:
                message = f"Failed to delete log file {candidate}: {e}"
                outcome.errors.append(message)
                logger.warning(message)

        if outcome.deleted_count:
            logger.info(
                f"Deleted {outcome.deleted_count} log files from {path} "
                f"({outcome.bytes_freed} bytes freed)"
            )
        return outcome

    async def reap_all(
        self,
        directories: Iterable[Union[str, Path]],
        cutoff: datetime,
        patterns: Sequence[str] = DEFAULT_LOG_PATTERNS,
        cancel_event: Optional[asyncio.Event] = None,
    ) -> LogReapOutcome:
        """Reap every directory and sum the outcomes"""
        total = LogReapOutcome()
        for directory in directories:
            if cancel_event is not None and cancel_event.is_set():
                total.cancelled = True
                break
            total.merge(await self.reap(directory, cutoff, patterns, cancel_event))
        return total

    @staticmethod
    def _candidates(path: Path, patterns: Sequence[str]) -> List[Path]:
        seen = set()
        files = []
        for pattern in patterns:
            for candidate in sorted(path.glob(pattern)):
                if candidate in seen or not candidate.is_file():
                    continue
                seen.add(candidate)
                files.append(candidate)
        return files


# Global singleton instance
log_reaper_service = LogReaperService()

"""
Concurrency Service - Peak simultaneous executions and hourly execution trends.

peak_concurrent() is a sweep line over +1 (start) / -1 (end) events. Executions
that are still running have no end event. When a start and an end share a
timestamp, TieBreak decides the order:

- END_FIRST (default): the end is processed first, so an execution finishing
  exactly when another starts is not counted as overlapping.
- START_FIRST: the start is processed first, so back-to-back executions overlap.

Everything here is read-only.
"""
import logging
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Any, Dict, Iterable, List, Optional, Tuple, Union

from dateutil import parser as date_parser

from scheduler_lifecycle.services.database import db_service

logger = logging.getLogger(__name__)

DEFAULT_BUCKET = timedelta(hours=1)


class TieBreak(str, Enum):
    END_FIRST = "end_first"
    START_FIRST = "start_first"


@dataclass(frozen=True)
class ExecutionInterval:
    start_time: Any
    end_time: Optional[Any] = None
    status: Optional[str] = None

    @property
    def is_open(self) -> bool:
        return self.end_time is None

    @property
    def duration_seconds(self) -> Optional[float]:
        if self.end_time is None:
            return None
        delta = self.end_time - self.start_time
        return delta.total_seconds() if isinstance(delta, timedelta) else float(delta)

    @classmethod
    def from_row(cls, row: Dict[str, Any]) -> Optional["ExecutionInterval"]:
        start = _parse_timestamp(row.get("start_time"))
        if start is None:
            return None
        return cls(
            start_time=start,
            end_time=_parse_timestamp(row.get("end_time")),
            status=row.get("status"),
        )


IntervalLike = Union[ExecutionInterval, Tuple[Any, Optional[Any]]]


def _parse_timestamp(value: Any) -> Optional[datetime]:
    if value is None or value == "":
        return None
    parsed = value if isinstance(value, datetime) else date_parser.isoparse(str(value))
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def _bounds(interval: IntervalLike) -> Tuple[Any, Optional[Any]]:
    if isinstance(interval, ExecutionInterval):
        return interval.start_time, interval.end_time
    start, end = interval
    return start, end


def peak_concurrent(intervals: Iterable[IntervalLike], tie_break: TieBreak = TieBreak.END_FIRST) -> int:
    """
    Maximum number of executions active at the same instant.

    Accepts ExecutionInterval objects or (start, end) pairs of any comparable
    type; end may be None for an execution that is still running.
    """
    tie_break = TieBreak(tie_break)
    # Sort rank per event at an equal timestamp. Under END_FIRST every end precedes
    # every start, so a zero-length execution never raises the peak.
    if tie_break == TieBreak.END_FIRST:
        end_rank, start_rank = 0, 1
    else:
        start_rank, end_rank = 0, 1

    events = []
    for interval in intervals:
        start, end = _bounds(interval)
        if end is not None and end < start:
            logger.debug(f"Skipping execution interval that ends before it starts ({start} > {end})")
            continue
        events.append((start, start_rank, 1))
        if end is not None:
            events.append((end, end_rank, -1))

    events.sort(key=lambda event: (event[0], event[1]))

    current = 0
    peak = 0
    for _, _, delta in events:
        current += delta
        peak = max(peak, current)
    return peak


def execution_trends(
    intervals: Iterable[IntervalLike],
    window_start: datetime,
    window_end: datetime,
    bucket: timedelta = DEFAULT_BUCKET,
    tie_break: TieBreak = TieBreak.END_FIRST,
) -> List[Dict[str, Any]]:
    """
    Per-bucket execution count, average duration and peak concurrency.

    - execution_count: executions that started inside the bucket
    - average_duration_seconds: mean duration of those that have finished (None if none)
    - peak_concurrency: peak of all executions overlapping the bucket, clipped to it;
      running executions extend to window_end
    """
    if bucket <= timedelta(0):
        raise ValueError("bucket must be a positive duration")

    bounds = [_bounds(interval) for interval in intervals]
    trends = []

    bucket_start = window_start
    while bucket_start < window_end:
        bucket_end = min(bucket_start + bucket, window_end)

        started = [(start, end) for start, end in bounds if bucket_start <= start < bucket_end]
        durations = [(end - start).total_seconds() for start, end in started if end is not None]

        clipped = []
        for start, end in bounds:
            effective_end = end if end is not None else window_end
            if start < bucket_end and effective_end > bucket_start:
                clipped.append((max(start, bucket_start), min(effective_end, bucket_end)))

        trends.append({
            "bucket_start": bucket_start,
            "bucket_end": bucket_end,
            "execution_count": len(started),
            "average_duration_seconds": round(sum(durations) / len(durations), 2) if durations else None,
            "peak_concurrency": peak_concurrent(clipped, tie_break),
        })
        bucket_start = bucket_end

    return trends


class ConcurrencyService:
    """Dashboard queries over the execution history"""

    async def get_concurrency_summary(
        self,
        hours: int = 24,
        client_id: Optional[int] = None,
        now: Optional[datetime] = None,
        tie_break: TieBreak = TieBreak.END_FIRST,
    ) -> Dict[str, Any]:
        """
        Load executions overlapping the last `hours` and compute peak and hourly trends.

        Args:
            hours: Size of the observation window
            client_id: Restrict to one client's schedules
            now: End of the observation window (defaults to the current time)
            tie_break: Ordering of simultaneous start/end events

        Returns:
            Dictionary with window bounds, totals, peak_concurrency and trends
        """
        window_end = now or datetime.now(timezone.utc)
        if window_end.tzinfo is None:
            window_end = window_end.replace(tzinfo=timezone.utc)
        window_start = window_end - timedelta(hours=hours)

        rows = await db_service.get_execution_intervals(window_start.isoformat(), client_id)
        intervals = [interval for interval in (ExecutionInterval.from_row(row) for row in rows) if interval]

        in_window = [
            (max(i.start_time, window_start), min(i.end_time or window_end, window_end))
            for i in intervals
            if i.start_time < window_end and (i.end_time is None or i.end_time > window_start)
        ]

        logger.debug(f"Computing concurrency over {len(in_window)} executions (hours={hours}, client_id={client_id})")

        return {
            "window_start": window_start,
            "window_end": window_end,
            "hours": hours,
            "client_id": client_id,
            "total_executions": sum(1 for i in intervals if window_start <= i.start_time < window_end),
            "running_executions": sum(1 for i in intervals if i.is_open),
            "peak_concurrency": peak_concurrent(in_window, tie_break),
            "tie_break": TieBreak(tie_break).value,
            "trends": execution_trends(intervals, window_start, window_end, DEFAULT_BUCKET, tie_break),
        }


concurrency_service = ConcurrencyService()

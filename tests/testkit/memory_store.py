"""
In-memory stand-in for DatabaseService.

Implements the maintenance, orchestration-run, lease and execution-history
methods with the same filtering and ordering rules as the PostgREST queries,
plus failure injection so tests can break a specific call on a specific table.
"""
from collections import defaultdict
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Tuple

from dateutil import parser as date_parser

from scheduler_lifecycle.core.entity_kinds import ArchivalTarget

ACTIVE_RUN_STATUSES = ("Queued", "Running")


class StoreFailure(Exception):
    """Raised by an injected failure."""


def _ts(value: Any) -> datetime:
    parsed = value if isinstance(value, datetime) else date_parser.isoparse(str(value))
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


class InMemoryLifecycleStore:
    """Dict-backed tables keyed by table name."""

    def __init__(self):
        self.tables: Dict[str, List[Dict[str, Any]]] = defaultdict(list)
        self.config: Optional[Dict[str, Any]] = None
        self.locks: Dict[str, Dict[str, Any]] = {}
        self.calls: List[Tuple[str, Optional[str]]] = []
        self._failures: Dict[Tuple[str, Optional[str]], Optional[int]] = {}
        self._short_acks: Dict[str, int] = {}
        self._next_archive_id = 1

    # ------------------------------------------------------------------
    # Test helpers
    # ------------------------------------------------------------------

    def fail(self, method: str, table: Optional[str] = None, times: Optional[int] = None) -> None:
        """Make `method` raise (for `table` only, if given). times=None fails forever."""
        self._failures[(method, table)] = times

    def short_ack(self, archive_table: str, missing: int = 1) -> None:
        """Make upserts into archive_table acknowledge `missing` fewer rows than sent."""
        self._short_acks[archive_table] = missing

    def seed(self, table: str, rows: List[Dict[str, Any]]) -> None:
        self.tables[table].extend(dict(row) for row in rows)

    def rows(self, table: str) -> List[Dict[str, Any]]:
        return list(self.tables[table])

    def calls_to(self, method: str) -> List[Optional[str]]:
        return [table for name, table in self.calls if name == method]

    def _record(self, method: str, table: Optional[str] = None) -> None:
        self.calls.append((method, table))
        for key in ((method, table), (method, None)):
            if key in self._failures:
                remaining = self._failures[key]
                if remaining is not None:
                    if remaining <= 0:
                        continue
                    self._failures[key] = remaining - 1
                raise StoreFailure(f"injected failure in {method} ({table})")

    # ------------------------------------------------------------------
    # Maintenance configuration
    # ------------------------------------------------------------------

    async def get_maintenance_configuration(self) -> Optional[Dict[str, Any]]:
        self._record("get_maintenance_configuration")
        return dict(self.config) if self.config else None

    async def upsert_maintenance_configuration(self, config_data: Dict[str, Any]) -> Dict[str, Any]:
        self._record("upsert_maintenance_configuration")
        self.config = {"config_key": "default", "is_deleted": False, **(self.config or {}), **config_data}
        return dict(self.config)

    # ------------------------------------------------------------------
    # Operational and archive stores
    # ------------------------------------------------------------------

    def _aged(self, target: ArchivalTarget, cutoff_iso: str) -> List[Dict[str, Any]]:
        cutoff = _ts(cutoff_iso)
        rows = [
            row for row in self.tables[target.operational_table]
            if _ts(row[target.age_column]) < cutoff
            and not (target.soft_delete_column and row.get(target.soft_delete_column))
        ]
        return sorted(rows, key=lambda row: (_ts(row[target.age_column]), row[target.id_column]))

    async def query_aged_records(self, target, cutoff_iso, limit, offset=0):
        self._record("query_aged_records", target.operational_table)
        return [dict(row) for row in self._aged(target, cutoff_iso)[offset:offset + limit]]

    async def count_aged_records(self, target, cutoff_iso):
        self._record("count_aged_records", target.operational_table)
        return len(self._aged(target, cutoff_iso))

    async def delete_operational_records(self, target, ids):
        self._record("delete_operational_records", target.operational_table)
        wanted = set(ids)
        before = self.tables[target.operational_table]
        kept = [row for row in before if row[target.id_column] not in wanted]
        self.tables[target.operational_table] = kept
        return len(before) - len(kept)

    async def upsert_archive_records(self, target, records):
        self._record("upsert_archive_records", target.archive_table)
        archive = self.tables[target.archive_table]
        by_source = {row[target.source_id_column]: row for row in archive}
        for record in records:
            existing = by_source.get(record[target.source_id_column])
            if existing is not None:
                existing.update(record)
            else:
                row = {target.archive_id_column: self._next_archive_id, **record}
                self._next_archive_id += 1
                archive.append(row)
                by_source[row[target.source_id_column]] = row
        return max(0, len(records) - self._short_acks.get(target.archive_table, 0))

    def _expired(self, target: ArchivalTarget, cutoff_iso: str) -> List[Dict[str, Any]]:
        cutoff = _ts(cutoff_iso)
        rows = [row for row in self.tables[target.archive_table] if _ts(row[target.archived_at_column]) < cutoff]
        return sorted(rows, key=lambda row: (_ts(row[target.archived_at_column]), row[target.archive_id_column]))

    async def select_expired_archive_ids(self, target, cutoff_iso, limit):
        self._record("select_expired_archive_ids", target.archive_table)
        return [row[target.archive_id_column] for row in self._expired(target, cutoff_iso)[:limit]]

    async def delete_archive_records(self, target, ids, cutoff_iso):
        self._record("delete_archive_records", target.archive_table)
        cutoff = _ts(cutoff_iso)
        wanted = set(ids)
        before = self.tables[target.archive_table]
        kept = [
            row for row in before
            if not (row[target.archive_id_column] in wanted and _ts(row[target.archived_at_column]) < cutoff)
        ]
        self.tables[target.archive_table] = kept
        return len(before) - len(kept)

    async def count_expired_archive_records(self, target, cutoff_iso):
        self._record("count_expired_archive_records", target.archive_table)
        return len(self._expired(target, cutoff_iso))

    # ------------------------------------------------------------------
    # Orchestration runs
    # ------------------------------------------------------------------

    @property
    def runs(self) -> List[Dict[str, Any]]:
        return self.tables["orchestration_runs"]

    async def create_orchestration_run(self, run_data):
        self._record("create_orchestration_run", "orchestration_runs")
        if run_data.get("status") in ACTIVE_RUN_STATUSES and any(
            run["status"] in ACTIVE_RUN_STATUSES for run in self.runs
        ):
            raise StoreFailure("duplicate key value violates unique constraint ux_orchestration_runs_single_active")
        row = {"completed_at": None, "started_at": None, "error_message": None, **run_data}
        self.runs.append(row)
        return dict(row)

    async def get_orchestration_run(self, request_id):
        self._record("get_orchestration_run", "orchestration_runs")
        for run in self.runs:
            if run["request_id"] == request_id:
                return dict(run)
        return None

    async def get_active_orchestration_run(self):
        self._record("get_active_orchestration_run", "orchestration_runs")
        active = [run for run in self.runs if run["status"] in ACTIVE_RUN_STATUSES]
        active.sort(key=lambda run: _ts(run["requested_at"]), reverse=True)
        return dict(active[0]) if active else None

    async def get_latest_orchestration_run(self):
        self._record("get_latest_orchestration_run", "orchestration_runs")
        runs = sorted(self.runs, key=lambda run: _ts(run["requested_at"]), reverse=True)
        return dict(runs[0]) if runs else None

    async def get_latest_completed_orchestration_run(self):
        self._record("get_latest_completed_orchestration_run", "orchestration_runs")
        runs = [run for run in self.runs if run["status"] == "Completed"]
        runs.sort(key=lambda run: _ts(run["completed_at"]), reverse=True)
        return dict(runs[0]) if runs else None

    async def get_recent_orchestration_runs(self, limit=20):
        self._record("get_recent_orchestration_runs", "orchestration_runs")
        runs = sorted(self.runs, key=lambda run: _ts(run["requested_at"]), reverse=True)
        return [dict(run) for run in runs[:limit]]

    async def transition_orchestration_run(self, request_id, from_statuses, update_data):
        self._record("transition_orchestration_run", "orchestration_runs")
        for run in self.runs:
            if run["request_id"] == request_id and run["status"] in from_statuses:
                run.update(update_data)
                return dict(run)
        return None

    async def get_stale_orchestration_runs(self, cutoff_iso):
        self._record("get_stale_orchestration_runs", "orchestration_runs")
        cutoff = _ts(cutoff_iso)
        return [
            dict(run) for run in self.runs
            if run["status"] in ACTIVE_RUN_STATUSES and _ts(run["requested_at"]) < cutoff
        ]

    # ------------------------------------------------------------------
    # Maintenance lease
    # ------------------------------------------------------------------

    async def delete_expired_maintenance_lock(self, lock_name, now_iso):
        self._record("delete_expired_maintenance_lock", "maintenance_locks")
        lock = self.locks.get(lock_name)
        if lock and _ts(lock["expires_at"]) < _ts(now_iso):
            del self.locks[lock_name]
            return 1
        return 0

    async def insert_maintenance_lock(self, lock_data):
        self._record("insert_maintenance_lock", "maintenance_locks")
        if lock_data["lock_name"] in self.locks:
            raise StoreFailure("duplicate key value violates unique constraint maintenance_locks_pkey")
        self.locks[lock_data["lock_name"]] = dict(lock_data)
        return dict(lock_data)

    async def extend_maintenance_lock(self, lock_name, holder_id, expires_at_iso):
        self._record("extend_maintenance_lock", "maintenance_locks")
        lock = self.locks.get(lock_name)
        if lock and lock["holder_id"] == holder_id:
            lock["expires_at"] = expires_at_iso
            return True
        return False

    async def delete_maintenance_lock(self, lock_name, holder_id):
        self._record("delete_maintenance_lock", "maintenance_locks")
        lock = self.locks.get(lock_name)
        if lock and lock["holder_id"] == holder_id:
            del self.locks[lock_name]
            return True
        return False

    # ------------------------------------------------------------------
    # Execution history
    # ------------------------------------------------------------------

    async def get_execution_intervals(self, since_iso, client_id=None):
        self._record("get_execution_intervals", "job_executions")
        since = _ts(since_iso)
        rows = []
        for row in self.tables["job_executions"]:
            if row.get("is_deleted"):
                continue
            if client_id is not None and row.get("client_id") != client_id:
                continue
            end = row.get("end_time")
            if _ts(row["start_time"]) >= since or end is None or _ts(end) >= since:
                rows.append(dict(row))
        return sorted(rows, key=lambda row: _ts(row["start_time"]))

    async def ping(self):
        self._record("ping")

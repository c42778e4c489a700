import logging
from supabase import create_client, Client
from scheduler_lifecycle.core.config import settings
from scheduler_lifecycle.core.entity_kinds import ArchivalTarget
from typing import List, Dict, Any, Optional

logger = logging.getLogger(__name__)

ACTIVE_RUN_STATUSES = ["Queued", "Running"]
EXECUTION_INTERVAL_PAGE_SIZE = 1000


class DatabaseService:
    """Service for interacting with Supabase database"""

    def __init__(self):
        self._client: Optional[Client] = None

    @property
    def client(self) -> Client:
        if self._client is None:
            self._client = create_client(
                settings.SUPABASE_URL,
                settings.SUPABASE_SERVICE_KEY
            )
        return self._client

    # Maintenance configuration operations
    async def get_maintenance_configuration(self) -> Optional[Dict[str, Any]]:
        """Get the active maintenance configuration row, if one exists"""
        response = (
            self.client.table("maintenance_configuration")
            .select("*")
            .eq("is_deleted", False)
            .order("updated_at", desc=True)
            .limit(1)
            .execute()
        )
        return response.data[0] if response.data else None

    async def upsert_maintenance_configuration(self, config_data: Dict[str, Any]) -> Dict[str, Any]:
        """Create or update the maintenance configuration row"""
        data = {"config_key": "default", "is_deleted": False, **config_data}
        response = (
            self.client.table("maintenance_configuration")
            .upsert(data, on_conflict="config_key")
            .execute()
        )
        return response.data[0] if response.data else data

    # Operational store operations (archival source)
    async def query_aged_records(
        self,
        target: ArchivalTarget,
        cutoff_iso: str,
        limit: int,
        offset: int = 0
    ) -> List[Dict[str, Any]]:
        """Get operational rows strictly older than the cutoff, oldest first"""
        query = (
            self.client.table(target.operational_table)
            .select("*")
            .lt(target.age_column, cutoff_iso)
        )
        if target.soft_delete_column:
            query = query.eq(target.soft_delete_column, False)

        response = (
            query.order(target.age_column)
            .order(target.id_column)
            .range(offset, offset + limit - 1)
            .execute()
        )
        return response.data or []

    async def count_aged_records(self, target: ArchivalTarget, cutoff_iso: str) -> int:
        """Count operational rows strictly older than the cutoff"""
        query = (
            self.client.table(target.operational_table)
            .select(target.id_column, count="exact")
            .lt(target.age_column, cutoff_iso)
        )
        if target.soft_delete_column:
            query = query.eq(target.soft_delete_column, False)
        response = query.execute()
        return response.count or 0

    async def delete_operational_records(self, target: ArchivalTarget, ids: List[Any]) -> int:
        """Delete operational rows by id; returns the number of rows removed"""
        if not ids:
            return 0
        response = (
            self.client.table(target.operational_table)
            .delete()
            .in_(target.id_column, ids)
            .execute()
        )
        return len(response.data or [])

    # Archive store operations
    async def upsert_archive_records(self, target: ArchivalTarget, records: List[Dict[str, Any]]) -> int:
        """
        Write archive copies in a single request.

        Upserts on the source id column so a row copied twice (after a failed
        delete) stays a single archive row. Returns the acknowledged row count.
        """
        if not records:
            return 0
        response = (
            self.client.table(target.archive_table)
            .upsert(records, on_conflict=target.source_id_column)
            .execute()
        )
        return len(response.data or [])

    async def select_expired_archive_ids(
        self,
        target: ArchivalTarget,
        cutoff_iso: str,
        limit: int
    ) -> List[Any]:
        """Get ids of archive rows archived strictly before the cutoff, oldest first"""
        response = (
            self.client.table(target.archive_table)
            .select(target.archive_id_column)
            .lt(target.archived_at_column, cutoff_iso)
            .order(target.archived_at_column)
            .order(target.archive_id_column)
            .limit(limit)
            .execute()
        )
        return [row[target.archive_id_column] for row in (response.data or [])]

    async def delete_archive_records(
        self,
        target: ArchivalTarget,
        ids: List[Any],
        cutoff_iso: str
    ) -> int:
        """Delete archive rows by id, re-checking the cutoff in the same statement"""
        if not ids:
            return 0
        response = (
            self.client.table(target.archive_table)
            .delete()
            .in_(target.archive_id_column, ids)
            .lt(target.archived_at_column, cutoff_iso)
            .execute()
        )
        return len(response.data or [])

    async def count_expired_archive_records(self, target: ArchivalTarget, cutoff_iso: str) -> int:
        """Count archive rows archived strictly before the cutoff"""
        response = (
            self.client.table(target.archive_table)
            .select(target.archive_id_column, count="exact")
            .lt(target.archived_at_column, cutoff_iso)
            .execute()
        )
        return response.count or 0

    # Orchestration run operations
    async def create_orchestration_run(self, run_data: Dict[str, Any]) -> Dict[str, Any]:
        """Create a new orchestration run"""
        response = self.client.table("orchestration_runs").insert(run_data).execute()
        return response.data[0]

    async def get_orchestration_run(self, request_id: str) -> Optional[Dict[str, Any]]:
        """Get an orchestration run by request id"""
        response = (
            self.client.table("orchestration_runs")
            .select("*")
            .eq("request_id", request_id)
            .limit(1)
            .execute()
        )
        return response.data[0] if response.data else None

    async def get_active_orchestration_run(self) -> Optional[Dict[str, Any]]:
        """Get the run currently Queued or Running, if any"""
        response = (
            self.client.table("orchestration_runs")
            .select("*")
            .in_("status", ACTIVE_RUN_STATUSES)
            .order("requested_at", desc=True)
            .limit(1)
            .execute()
        )
        return response.data[0] if response.data else None

    async def get_latest_orchestration_run(self) -> Optional[Dict[str, Any]]:
        """Get the most recently requested run"""
        response = (
            self.client.table("orchestration_runs")
            .select("*")
            .order("requested_at", desc=True)
            .limit(1)
            .execute()
        )
        return response.data[0] if response.data else None

    async def get_latest_completed_orchestration_run(self) -> Optional[Dict[str, Any]]:
        """Get the most recently completed run"""
        response = (
            self.client.table("orchestration_runs")
            .select("*")
            .eq("status", "Completed")
            .order("completed_at", desc=True)
            .limit(1)
            .execute()
        )
        return response.data[0] if response.data else None

    async def get_recent_orchestration_runs(self, limit: int = 20) -> List[Dict[str, Any]]:
        """Get recent runs, newest first"""
        response = (
            self.client.table("orchestration_runs")
            .select("*")
            .order("requested_at", desc=True)
            .limit(limit)
            .execute()
        )
        return response.data or []

    async def transition_orchestration_run(
        self,
        request_id: str,
        from_statuses: List[str],
        update_data: Dict[str, Any]
    ) -> Optional[Dict[str, Any]]:
        """
        Compare-and-set update: only applies while the run is in one of from_statuses.
        Returns the updated row, or None when the run was not in an allowed status.
        """
        response = (
            self.client.table("orchestration_runs")
            .update(update_data)
            .eq("request_id", request_id)
            .in_("status", from_statuses)
            .execute()
        )
        return response.data[0] if response.data else None

    async def get_stale_orchestration_runs(self, cutoff_iso: str) -> List[Dict[str, Any]]:
        """Get Queued/Running runs requested before the cutoff"""
        response = (
            self.client.table("orchestration_runs")
            .select("*")
            .in_("status", ACTIVE_RUN_STATUSES)
            .lt("requested_at", cutoff_iso)
            .execute()
        )
        return response.data or []

    # Maintenance lock operations
    async def delete_expired_maintenance_lock(self, lock_name: str, now_iso: str) -> int:
        """Remove a lease whose holder let it expire"""
        response = (
            self.client.table("maintenance_locks")
            .delete()
            .eq("lock_name", lock_name)
            .lt("expires_at", now_iso)
            .execute()
        )
        return len(response.data or [])

    async def insert_maintenance_lock(self, lock_data: Dict[str, Any]) -> Dict[str, Any]:
        """Insert a lease row; raises when the lock name is already held"""
        response = self.client.table("maintenance_locks").insert(lock_data).execute()
        return response.data[0]

    async def extend_maintenance_lock(self, lock_name: str, holder_id: str, expires_at_iso: str) -> bool:
        """Push out the expiry of a lease still held by holder_id"""
        response = (
            self.client.table("maintenance_locks")
            .update({"expires_at": expires_at_iso})
            .eq("lock_name", lock_name)
            .eq("holder_id", holder_id)
            .execute()
        )
        return bool(response.data)

    async def delete_maintenance_lock(self, lock_name: str, holder_id: str) -> bool:
        """Release a lease held by holder_id"""
        response = (
            self.client.table("maintenance_locks")
            .delete()
            .eq("lock_name", lock_name)
            .eq("holder_id", holder_id)
            .execute()
        )
        return bool(response.data)

    # Execution history operations
    async def get_execution_intervals(
        self,
        since_iso: str,
        client_id: Optional[int] = None
    ) -> List[Dict[str, Any]]:
        """
        Get schedule executions that overlap the window starting at since_iso.

        PostgREST caps a single response at its max-rows setting, so the window
        is read in EXECUTION_INTERVAL_PAGE_SIZE pages until a short page comes back.
        """
        columns = "id, start_time, end_time, status"
        if client_id is not None:
            columns += ", schedules!inner(client_id)"

        rows: List[Dict[str, Any]] = []
        offset = 0
        while True:
            query = (
                self.client.table("job_executions")
                .select(columns)
                .eq("is_deleted", False)
                .or_(f"start_time.gte.{since_iso},end_time.gte.{since_iso},end_time.is.null")
            )
            if client_id is not None:
                query = query.eq("schedules.client_id", client_id)

            response = (
                query.order("start_time")
                .order("id")
                .range(offset, offset + EXECUTION_INTERVAL_PAGE_SIZE - 1)
                .execute()
            )
            page = response.data or []
            rows.extend(page)
            if len(page) < EXECUTION_INTERVAL_PAGE_SIZE:
                return rows
            offset += EXECUTION_INTERVAL_PAGE_SIZE

    async def ping(self) -> None:
        """Cheap connectivity check used by the health endpoint"""
        self.client.table("orchestration_runs").select("request_id").limit(1).execute()


db_service = DatabaseService()

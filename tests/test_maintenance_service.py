"""
Unit tests for the maintenance orchestrator.

Runs full maintenance passes against the in-memory store to check:
- every kind is archived, then purged, then log files are reaped
- disabled archival still reaps log files
- one failing kind does not block the others
- the lease prevents concurrent runs
- invalid configuration stops the run before any data is touched
- cancellation produces a partial result
"""
import asyncio
import os
import pytest
from datetime import datetime, timedelta, timezone

from scheduler_lifecycle.core.entity_kinds import EntityKind
from scheduler_lifecycle.services.maintenance_lock_service import (
    MAINTENANCE_LOCK_NAME,
    MaintenanceLockService,
    maintenance_lock_service,
)
from scheduler_lifecycle.services.maintenance_config_service import MaintenanceConfigService
from scheduler_lifecycle.services.maintenance_service import MaintenanceService
from tests.testkit import StoreFailure


NOW = datetime(2026, 6, 15, 12, 0, 0, tzinfo=timezone.utc)
ARCHIVE_AND_PURGE_CALLS = (
    "query_aged_records",
    "upsert_archive_records",
    "delete_operational_records",
    "select_expired_archive_ids",
    "delete_archive_records",
)


def _seed_aged_rows(store, factory):
    store.seed("adr_jobs", [factory.operational_row(EntityKind.JOB, NOW - timedelta(days=400))])
    store.seed("adr_job_executions", [
        factory.operational_row(EntityKind.JOB_EXECUTION, NOW - timedelta(days=400)),
        factory.operational_row(EntityKind.JOB_EXECUTION, NOW - timedelta(days=10)),
    ])
    store.seed("audit_logs", [factory.operational_row(EntityKind.AUDIT_LOG, NOW - timedelta(days=91))])
    store.seed("job_executions", [factory.operational_row(EntityKind.SCHEDULE_EXECUTION, NOW - timedelta(days=366))])
    store.seed("adr_job_archives", [factory.archive_row(EntityKind.JOB, NOW - timedelta(days=365 * 8))])


def _old_log(directory, name="old.log", size=64):
    path = directory / name
    path.write_bytes(b"x" * size)
    timestamp = (NOW - timedelta(days=45)).timestamp()
    os.utime(path, (timestamp, timestamp))
    return path


class TestMaintenanceRun:

    @pytest.mark.asyncio
    async def test_full_run_archives_purges_and_reaps(self, store, factory, isolated_log_directory):
        """
        GIVEN aged rows for every kind, an expired archive row and an old log file
        WHEN a maintenance run executes
        THEN each phase reports its counts and the run succeeds
        """
        _seed_aged_rows(store, factory)
        log_file = _old_log(isolated_log_directory)

        result = await MaintenanceService().run_maintenance(now=NOW)

        assert result.success
        assert result.error_message is None
        assert result.archived == {
            "job": 1,
            "job_execution": 1,
            "audit_log": 1,
            "schedule_execution": 1,
        }
        assert result.total_archived == 4
        assert result.purged["job"] == 1
        assert result.total_purged == 1
        assert result.log_files_deleted == 1
        assert result.log_files_bytes_freed == 64
        assert not log_file.exists()
        assert len(store.rows("adr_job_executions")) == 1

    @pytest.mark.asyncio
    async def test_phases_run_in_order(self, store, factory):
        _seed_aged_rows(store, factory)

        await MaintenanceService().run_maintenance(now=NOW)

        names = [name for name, _ in store.calls]
        last_archive = max(i for i, name in enumerate(names) if name == "delete_operational_records")
        first_purge = min(i for i, name in enumerate(names) if name == "select_expired_archive_ids")
        assert last_archive < first_purge

    @pytest.mark.asyncio
    async def test_archival_disabled_still_reaps_logs(self, store, factory, isolated_log_directory):
        """
        GIVEN archival is disabled in the stored configuration
        WHEN a maintenance run executes
        THEN no archive or purge call reaches the store but log files are still reaped
        """
        _seed_aged_rows(store, factory)
        store.config = {"archival_enabled": False}
        log_file = _old_log(isolated_log_directory)

        result = await MaintenanceService().run_maintenance(now=NOW)

        assert result.success
        assert result.archival_enabled is False
        assert result.archived == {}
        assert result.purged == {}
        assert result.log_files_deleted == 1
        assert not log_file.exists()
        assert not [name for name, _ in store.calls if name in ARCHIVE_AND_PURGE_CALLS]

    @pytest.mark.asyncio
    async def test_audit_log_failure_does_not_block_other_kinds(self, store, factory):
        """
        GIVEN the audit log archive store is unavailable
        WHEN a maintenance run executes
        THEN the other kinds are still archived and the run reports a partial failure
        """
        _seed_aged_rows(store, factory)
        store.fail("upsert_archive_records", "audit_log_archives")

        result = await MaintenanceService().run_maintenance(now=NOW)

        assert not result.success
        assert result.archived["job_execution"] == 1
        assert result.archived["schedule_execution"] == 1
        assert result.archived["audit_log"] == 0
        assert len(result.errors) == 1
        assert "audit_log archival failed" in result.error_message
        assert len(store.rows("audit_logs")) == 1
        assert result.purged["job"] == 1

    @pytest.mark.asyncio
    async def test_rerun_is_idempotent(self, store, factory):
        _seed_aged_rows(store, factory)
        service = MaintenanceService()

        await service.run_maintenance(now=NOW)
        second = await service.run_maintenance(now=NOW)

        assert second.success
        assert second.total_archived == 0
        assert second.total_purged == 0

    @pytest.mark.asyncio
    async def test_stored_configuration_overrides_defaults(self, store, factory):
        store.seed("audit_logs", [factory.operational_row(EntityKind.AUDIT_LOG, NOW - timedelta(days=20))])
        store.config = {"audit_log_retention_days": 14}

        result = await MaintenanceService().run_maintenance(now=NOW)

        assert result.archived["audit_log"] == 1


class TestMaintenanceGuards:

    @pytest.mark.asyncio
    async def test_lease_held_elsewhere_skips_run(self, store, factory):
        """
        GIVEN another process holds an unexpired maintenance lease
        WHEN a maintenance run starts
        THEN it returns success=False without touching any data
        """
        _seed_aged_rows(store, factory)
        store.locks[MAINTENANCE_LOCK_NAME] = {
            "lock_name": MAINTENANCE_LOCK_NAME,
            "holder_id": "other-process",
            "acquired_at": datetime.now(timezone.utc).isoformat(),
            "expires_at": (datetime.now(timezone.utc) + timedelta(hours=1)).isoformat(),
        }

        result = await MaintenanceService().run_maintenance(now=NOW)

        assert not result.success
        assert "already running" in result.error_message
        assert result.total_archived == 0
        assert len(store.rows("adr_jobs")) == 1
        assert store.locks[MAINTENANCE_LOCK_NAME]["holder_id"] == "other-process"

    @pytest.mark.asyncio
    async def test_expired_lease_is_taken_over_and_released(self, store, factory):
        store.locks[MAINTENANCE_LOCK_NAME] = {
            "lock_name": MAINTENANCE_LOCK_NAME,
            "holder_id": "crashed-process",
            "acquired_at": (datetime.now(timezone.utc) - timedelta(hours=5)).isoformat(),
            "expires_at": (datetime.now(timezone.utc) - timedelta(hours=3)).isoformat(),
        }

        result = await MaintenanceService().run_maintenance(now=NOW)

        assert result.success
        assert MAINTENANCE_LOCK_NAME not in store.locks

    @pytest.mark.asyncio
    async def test_run_is_skipped_while_lease_is_held_in_process(self, store, factory):
        _seed_aged_rows(store, factory)

        async with maintenance_lock_service.acquire_maintenance_lock() as locked:
            assert locked
            skipped = await MaintenanceService().run_maintenance(now=NOW)

        assert not skipped.success
        assert skipped.total_archived == 0

        after_release = await MaintenanceService().run_maintenance(now=NOW)

        assert after_release.success
        assert after_release.total_archived == 4

    @pytest.mark.asyncio
    async def test_run_that_outlives_its_ttl_keeps_the_lease(self, store, factory):
        """
        GIVEN a run whose lease has already passed its original expiry after the first kind
        WHEN another process tries to take the lease while a later kind is archived
        THEN the lease was renewed between kinds and the other process is refused
        """
        _seed_aged_rows(store, factory)
        original_delete = store.delete_operational_records
        original_query = store.query_aged_records
        other_attempts = []

        async def delete_then_age_lease(target, ids):
            deleted = await original_delete(target, ids)
            if target.operational_table == "adr_jobs":
                lease = store.locks[MAINTENANCE_LOCK_NAME]
                lease["expires_at"] = (datetime.now(timezone.utc) - timedelta(minutes=1)).isoformat()
            return deleted

        async def query_with_competing_holder(target, cutoff_iso, limit, offset=0):
            if target.operational_table == "audit_logs" and not other_attempts:
                async with MaintenanceLockService().acquire_maintenance_lock() as other:
                    other_attempts.append(bool(other))
            return await original_query(target, cutoff_iso, limit, offset)

        store.delete_operational_records = delete_then_age_lease
        store.query_aged_records = query_with_competing_holder

        result = await MaintenanceService().run_maintenance(now=NOW)

        assert other_attempts == [False]
        assert result.success
        assert result.total_archived == 4
        assert "extend_maintenance_lock" in [name for name, _ in store.calls]
        assert MAINTENANCE_LOCK_NAME not in store.locks

    @pytest.mark.asyncio
    async def test_lost_lease_stops_the_run(self, store, factory):
        _seed_aged_rows(store, factory)
        original_delete = store.delete_operational_records

        async def delete_then_lose_lease(target, ids):
            deleted = await original_delete(target, ids)
            if target.operational_table == "adr_jobs":
                store.locks[MAINTENANCE_LOCK_NAME]["holder_id"] = "other-process"
            return deleted

        store.delete_operational_records = delete_then_lose_lease

        result = await MaintenanceService().run_maintenance(now=NOW)

        assert not result.success
        assert "lease was lost" in result.error_message
        assert result.archived == {"job": 1}
        assert len(store.rows("audit_logs")) == 1
        assert len(store.rows("adr_job_archives")) == 2
        assert store.locks[MAINTENANCE_LOCK_NAME]["holder_id"] == "other-process"

    @pytest.mark.asyncio
    async def test_invalid_configuration_runs_nothing(self, store, factory, isolated_log_directory):
        """
        GIVEN a stored configuration whose archive retention is shorter than job retention
        WHEN a maintenance run executes
        THEN it fails before archiving, purging or reaping anything
        """
        _seed_aged_rows(store, factory)
        store.config = {"job_retention_months": 120, "archive_retention_years": 2}
        log_file = _old_log(isolated_log_directory)

        result = await MaintenanceService().run_maintenance(now=NOW)

        assert not result.success
        assert "Invalid maintenance configuration" in result.error_message
        assert result.log_files_deleted == 0
        assert log_file.exists()
        assert not [name for name, _ in store.calls if name in ARCHIVE_AND_PURGE_CALLS]

    @pytest.mark.asyncio
    async def test_unreadable_configuration_runs_nothing(self, store, factory):
        _seed_aged_rows(store, factory)
        store.fail("get_maintenance_configuration")

        result = await MaintenanceService().run_maintenance(now=NOW)

        assert not result.success
        assert "Failed to load maintenance configuration" in result.error_message
        assert len(store.rows("adr_jobs")) == 1

    @pytest.mark.asyncio
    async def test_cancellation_returns_partial_result(self, store, factory, isolated_log_directory):
        """
        GIVEN cancellation is requested while the first kind is being archived
        WHEN the batch finishes
        THEN the run stops before the next kind and before log reaping
        """
        _seed_aged_rows(store, factory)
        log_file = _old_log(isolated_log_directory)
        cancel_event = asyncio.Event()
        original_delete = store.delete_operational_records

        async def delete_then_cancel(target, ids):
            deleted = await original_delete(target, ids)
            cancel_event.set()
            return deleted

        store.delete_operational_records = delete_then_cancel

        result = await MaintenanceService().run_maintenance(cancel_event=cancel_event, now=NOW)

        assert result.cancelled
        assert result.success
        assert result.archived == {"job": 1}
        assert result.purged == {}
        assert log_file.exists()
        assert len(store.rows("audit_logs")) == 1

    @pytest.mark.asyncio
    async def test_get_preview_counts_each_kind(self, store, factory):
        _seed_aged_rows(store, factory)

        preview = await MaintenanceService().get_preview(now=NOW)

        counts = {entity["kind"]: entity["eligible_for_archive"] for entity in preview["entities"]}
        assert counts == {"job": 1, "job_execution": 1, "audit_log": 1, "schedule_execution": 1}
        assert preview["total_eligible_for_purge"] == 1
        assert len(store.rows("adr_jobs")) == 1


class TestMaintenanceConfiguration:

    @pytest.mark.asyncio
    async def test_update_keeps_stored_values_it_does_not_change(self, store):
        store.config = {"archive_retention_years": 10, "job_retention_months": 24}

        config = await MaintenanceConfigService().update_configuration({"log_retention_days": 14})

        assert config["archive_retention_years"] == 10
        assert config["job_retention_months"] == 24
        assert store.config["log_retention_days"] == 14

    @pytest.mark.asyncio
    async def test_update_refuses_to_write_when_stored_row_is_unreadable(self, store):
        """
        GIVEN a stored ten year archive horizon and a failing configuration read
        WHEN a partial update is submitted
        THEN the read error propagates and the stored row is not overwritten with defaults
        """
        store.config = {"archive_retention_years": 10, "job_retention_months": 24}
        store.fail("get_maintenance_configuration", times=1)

        with pytest.raises(StoreFailure):
            await MaintenanceConfigService().update_configuration({"log_retention_days": 14})

        assert store.config == {"archive_retention_years": 10, "job_retention_months": 24}
        assert store.calls_to("upsert_maintenance_configuration") == []

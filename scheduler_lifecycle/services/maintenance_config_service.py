"""
Maintenance Configuration Service - Runtime-editable retention settings.

The stored row in maintenance_configuration overrides the defaults from settings
field by field. Maintenance runs call load_retention_policy() at the start of
every run, so edits take effect on the next run without a restart.

Usage:
    policy = await maintenance_config_service.load_retention_policy()
    config = await maintenance_config_service.update_configuration({"log_retention_days": 14})
"""
import logging
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from pydantic import ValidationError

from scheduler_lifecycle.core.config import settings
from scheduler_lifecycle.core.retention_policy import RetentionPolicy
from scheduler_lifecycle.services.database import db_service

logger = logging.getLogger(__name__)

POLICY_FIELDS = tuple(RetentionPolicy.model_fields.keys())


class MaintenanceConfigurationError(ValueError):
    """Stored or submitted maintenance configuration cannot be turned into a RetentionPolicy."""


def default_configuration() -> Dict[str, Any]:
    """Retention values from settings, used where no stored value exists"""
    return {
        "job_retention_months": settings.JOB_RETENTION_MONTHS,
        "job_execution_retention_months": settings.JOB_EXECUTION_RETENTION_MONTHS,
        "audit_log_retention_days": settings.AUDIT_LOG_RETENTION_DAYS,
        "archive_retention_years": settings.ARCHIVE_RETENTION_YEARS,
        "log_retention_days": settings.LOG_RETENTION_DAYS,
        "batch_size": settings.ARCHIVAL_BATCH_SIZE,
        "archival_enabled": settings.ARCHIVAL_ENABLED,
    }


def _format_validation_error(error: ValidationError) -> str:
    parts = []
    for item in error.errors():
        location = ".".join(str(part) for part in item.get("loc", ()))
        parts.append(f"{location}: {item['msg']}" if location else item["msg"])
    return "; ".join(parts)


def build_policy(values: Dict[str, Any]) -> RetentionPolicy:
    """Validate merged configuration values into a RetentionPolicy"""
    try:
        return RetentionPolicy(**{key: values[key] for key in POLICY_FIELDS if values.get(key) is not None})
    except ValidationError as e:
        raise MaintenanceConfigurationError(f"Invalid maintenance configuration: {_format_validation_error(e)}") from e


class MaintenanceConfigService:
    """Reads and writes the maintenance configuration row"""

    async def _load_stored(self) -> Optional[Dict[str, Any]]:
        return await db_service.get_maintenance_configuration()

    async def load_retention_policy(self) -> RetentionPolicy:
        """
        Build the policy for a maintenance run from the stored row and defaults.

        A store failure is not papered over with defaults here: running a purge
        with a shorter default horizon than the operator configured would delete
        archives early.

        Raises:
            MaintenanceConfigurationError: If the store cannot be read or the values are invalid
        """
        try:
            stored = await self._load_stored()
        except Exception as e:
            raise MaintenanceConfigurationError(f"Failed to load maintenance configuration: {e}") from e

        values = default_configuration()
        if stored:
            values.update({key: stored[key] for key in POLICY_FIELDS if stored.get(key) is not None})
        return build_policy(values)

    async def get_configuration(self) -> Dict[str, Any]:
        """
        Get the effective configuration for display.

        Falls back to defaults (with source="defaults") when no row exists or
        the store cannot be read.
        """
        stored = None
        try:
            stored = await self._load_stored()
        except Exception as e:
            logger.warning(f"Failed to fetch maintenance configuration: {e}. Using system defaults.")

        config = default_configuration()
        if not stored:
            config.update({"source": "defaults", "updated_at": None, "updated_by": None})
            return config

        config.update({key: stored[key] for key in POLICY_FIELDS if stored.get(key) is not None})
        config.update({
            "source": "database",
            "updated_at": stored.get("updated_at"),
            "updated_by": stored.get("updated_by"),
        })
        return config

    async def update_configuration(
        self,
        changes: Dict[str, Any],
        updated_by: Optional[str] = None
    ) -> Dict[str, Any]:
        """
        Merge `changes` into the current configuration, validate, and store it.

        Args:
            changes: Subset of RetentionPolicy fields to change (None values are ignored)
            updated_by: Identifier of the caller, stored for audit

        Returns:
            The effective configuration after the update

        Raises:
            MaintenanceConfigurationError: If the merged values are invalid
            Exception: Store read errors propagate; merging onto defaults would
                overwrite the stored values the caller did not change
        """
        stored = await self._load_stored()
        merged = default_configuration()
        if stored:
            merged.update({key: stored[key] for key in POLICY_FIELDS if stored.get(key) is not None})
        merged.update({key: value for key, value in changes.items() if key in POLICY_FIELDS and value is not None})

        policy = build_policy(merged)

        row = policy.model_dump()
        row["updated_at"] = datetime.now(timezone.utc).isoformat()
        if updated_by:
            row["updated_by"] = updated_by

        await db_service.upsert_maintenance_configuration(row)
        logger.info(f"Updated maintenance configuration: {policy.model_dump()}")

        return await self.get_configuration()


maintenance_config_service = MaintenanceConfigService()

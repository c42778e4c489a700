"""
Retention policy for the data-lifecycle engine.

A RetentionPolicy is loaded once at the start of a maintenance run and is
immutable for the rest of that run. Cutoffs are always derived from the instant
the caller passes in, so re-running maintenance recomputes them from scratch.
"""
from datetime import datetime, timezone
from typing import Optional

from dateutil.relativedelta import relativedelta
from pydantic import BaseModel, Field, model_validator

from scheduler_lifecycle.core.entity_kinds import EntityKind


class RetentionPolicy(BaseModel):
    job_retention_months: int = Field(12, gt=0)
    job_execution_retention_months: int = Field(12, gt=0)
    audit_log_retention_days: int = Field(90, gt=0)
    archive_retention_years: int = Field(7, gt=0)
    log_retention_days: int = Field(30, gt=0)
    batch_size: int = Field(5000, gt=0)
    archival_enabled: bool = True

    model_config = {"frozen": True}

    @model_validator(mode="after")
    def _archives_outlive_operational_rows(self) -> "RetentionPolicy":
        reference = datetime.now(timezone.utc)
        archive_cutoff = reference - self.archive_retention
        for kind in EntityKind:
            if archive_cutoff >= reference - self.retention_for(kind):
                raise ValueError(
                    f"archive retention ({self.archive_retention_years} years) must be longer "
                    f"than the {kind.value} retention"
                )
        return self

    @property
    def job_retention(self) -> relativedelta:
        return relativedelta(months=self.job_retention_months)

    @property
    def job_execution_retention(self) -> relativedelta:
        return relativedelta(months=self.job_execution_retention_months)

    @property
    def audit_log_retention(self) -> relativedelta:
        return relativedelta(days=self.audit_log_retention_days)

    @property
    def archive_retention(self) -> relativedelta:
        return relativedelta(years=self.archive_retention_years)

    @property
    def log_retention(self) -> relativedelta:
        return relativedelta(days=self.log_retention_days)

    def retention_for(self, kind: EntityKind) -> relativedelta:
        """Operational retention for an entity kind. Schedule executions share the job execution window."""
        kind = EntityKind(kind)
        if kind == EntityKind.JOB:
            return self.job_retention
        if kind == EntityKind.AUDIT_LOG:
            return self.audit_log_retention
        return self.job_execution_retention

    def cutoff_for(self, kind: EntityKind, now: Optional[datetime] = None) -> datetime:
        return _now(now) - self.retention_for(kind)

    def archive_cutoff(self, now: Optional[datetime] = None) -> datetime:
        return _now(now) - self.archive_retention

    def log_cutoff(self, now: Optional[datetime] = None) -> datetime:
        return _now(now) - self.log_retention


def _now(now: Optional[datetime]) -> datetime:
    if now is None:
        return datetime.now(timezone.utc)
    if now.tzinfo is None:
        return now.replace(tzinfo=timezone.utc)
    return now

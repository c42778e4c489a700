from pydantic import BaseModel, Field
from typing import Optional, List, Dict
from datetime import datetime


class MaintenanceResult(BaseModel):
    """Aggregate outcome of one maintenance run"""
    archived: Dict[str, int] = Field(default_factory=dict)
    purged: Dict[str, int] = Field(default_factory=dict)
    log_files_deleted: int = 0
    log_files_bytes_freed: int = 0
    success: bool = True
    error_message: Optional[str] = None
    errors: List[str] = Field(default_factory=list)
    cancelled: bool = False
    archival_enabled: bool = True
    started_at: datetime
    completed_at: datetime
    duration_seconds: float = 0.0

    model_config = {"frozen": True}

    @property
    def total_archived(self) -> int:
        return sum(self.archived.values())

    @property
    def total_purged(self) -> int:
        return sum(self.purged.values())


class MaintenanceRunResponse(MaintenanceResult):
    total_archived_records: int = 0
    total_purged_records: int = 0

    @classmethod
    def from_result(cls, result: MaintenanceResult) -> "MaintenanceRunResponse":
        return cls(
            **result.model_dump(),
            total_archived_records=result.total_archived,
            total_purged_records=result.total_purged,
        )


class MaintenanceConfigResponse(BaseModel):
    job_retention_months: int
    job_execution_retention_months: int
    audit_log_retention_days: int
    archive_retention_years: int
    log_retention_days: int
    batch_size: int
    archival_enabled: bool
    source: str = Field("defaults", description="'database' when a stored row exists, otherwise 'defaults'")
    updated_at: Optional[datetime] = None
    updated_by: Optional[str] = None


class UpdateMaintenanceConfigRequest(BaseModel):
    """Partial update; omitted fields keep their current value"""
    job_retention_months: Optional[int] = Field(None, gt=0)
    job_execution_retention_months: Optional[int] = Field(None, gt=0)
    audit_log_retention_days: Optional[int] = Field(None, gt=0)
    archive_retention_years: Optional[int] = Field(None, gt=0)
    log_retention_days: Optional[int] = Field(None, gt=0)
    batch_size: Optional[int] = Field(None, gt=0, le=50000)
    archival_enabled: Optional[bool] = None


class EntityPreview(BaseModel):
    kind: str
    archive_cutoff: datetime
    eligible_for_archive: int
    purge_cutoff: datetime
    eligible_for_purge: int


class MaintenancePreviewResponse(BaseModel):
    generated_at: datetime
    archival_enabled: bool
    entities: List[EntityPreview]
    log_cutoff: datetime
    total_eligible_for_archive: int = 0
    total_eligible_for_purge: int = 0


class MaintenanceSchedulerStatus(BaseModel):
    running: bool
    enabled: bool
    next_run_hour_utc: int
    check_interval_seconds: int
    last_run_at: Optional[datetime] = None
    last_run_success: Optional[bool] = None

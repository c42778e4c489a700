from pydantic import BaseModel, Field
from typing import Optional, List
from datetime import datetime
from enum import Enum


class RunStatus(str, Enum):
    QUEUED = "Queued"
    RUNNING = "Running"
    COMPLETED = "Completed"
    FAILED = "Failed"


ACTIVE_STATUSES = (RunStatus.QUEUED, RunStatus.RUNNING)
TERMINAL_STATUSES = (RunStatus.COMPLETED, RunStatus.FAILED)


class OrchestrationRunResults(BaseModel):
    """Counters reported by a finished orchestration run"""
    sync_accounts_inserted: int = 0
    sync_accounts_updated: int = 0
    sync_accounts_total: int = 0
    jobs_created: int = 0
    jobs_skipped: int = 0
    credentials_verified: int = 0
    credentials_failed: int = 0
    scraping_requested: int = 0
    scraping_failed: int = 0
    statuses_checked: int = 0
    statuses_failed: int = 0


class OrchestrationRunCreate(BaseModel):
    requested_by: Optional[str] = Field(None, max_length=200)


class OrchestrationRunProgressUpdate(BaseModel):
    current_step: Optional[str] = Field(None, max_length=200)
    current_progress: Optional[str] = Field(None, max_length=200)
    total_items: Optional[int] = Field(None, ge=0)
    processed_items: Optional[int] = Field(None, ge=0)


class OrchestrationRunFailure(OrchestrationRunResults):
    error_message: str = Field(..., min_length=1)


class OrchestrationRunResponse(OrchestrationRunResults):
    request_id: str
    requested_by: Optional[str] = None
    status: RunStatus
    requested_at: datetime
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    current_step: Optional[str] = None
    current_progress: Optional[str] = None
    total_items: Optional[int] = None
    processed_items: Optional[int] = None
    error_message: Optional[str] = None

    model_config = {"from_attributes": True}


class OrchestrationRunListResponse(BaseModel):
    runs: List[OrchestrationRunResponse]
    total: int


class LastRunStats(BaseModel):
    accounts_synced: int = 0
    jobs_created: int = 0
    credentials_verified: int = 0
    scraping_requested: int = 0
    statuses_checked: int = 0


class OrchestratorHealth(BaseModel):
    """Freshness report for the orchestrator"""
    status: str
    is_healthy: bool
    message: str
    checked_at: datetime
    threshold_hours: int
    cutoff_time: datetime
    is_currently_running: bool = False
    current_run_request_id: Optional[str] = None
    current_step: Optional[str] = None
    current_progress: Optional[str] = None
    last_successful_run_time: Optional[datetime] = None
    hours_since_last_success: Optional[float] = None
    last_run_request_id: Optional[str] = None
    last_run_status: Optional[RunStatus] = None
    last_run_error_message: Optional[str] = None
    last_run_stats: Optional[LastRunStats] = None

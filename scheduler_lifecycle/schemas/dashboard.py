from pydantic import BaseModel
from typing import Optional, List
from datetime import datetime


class ExecutionTrendPoint(BaseModel):
    """One hourly bucket of execution activity"""
    bucket_start: datetime
    bucket_end: datetime
    execution_count: int
    average_duration_seconds: Optional[float] = None
    peak_concurrency: int


class ConcurrencySummaryResponse(BaseModel):
    window_start: datetime
    window_end: datetime
    hours: int
    client_id: Optional[int] = None
    total_executions: int
    running_executions: int
    peak_concurrency: int
    tie_break: str
    trends: List[ExecutionTrendPoint]

from pydantic_settings import BaseSettings
from typing import List


class Settings(BaseSettings):
    # Supabase Configuration
    SUPABASE_URL: str
    SUPABASE_KEY: str
    SUPABASE_SERVICE_KEY: str

    # Database
    DATABASE_URL: str

    # API Configuration
    API_V1_PREFIX: str = "/api/v1"
    PROJECT_NAME: str = "Scheduler Lifecycle"
    BACKEND_CORS_ORIGINS: List[str] = ["http://localhost:5173", "http://localhost:3000"]

    # Retention defaults (used when no maintenance_configuration row exists)
    JOB_RETENTION_MONTHS: int = 12
    JOB_EXECUTION_RETENTION_MONTHS: int = 12
    AUDIT_LOG_RETENTION_DAYS: int = 90
    ARCHIVE_RETENTION_YEARS: int = 7
    LOG_RETENTION_DAYS: int = 30
    ARCHIVAL_BATCH_SIZE: int = 5000
    ARCHIVAL_ENABLED: bool = True

    # Archival batch behaviour
    ARCHIVAL_BATCH_MAX_ATTEMPTS: int = 3
    ARCHIVAL_RETRY_DELAY_SECONDS: float = 0.5

    # Log file reaping
    MAINTENANCE_LOG_DIRECTORIES: List[str] = ["logs"]
    MAINTENANCE_LOG_PATTERNS: List[str] = ["*.txt", "*.log"]

    # Maintenance scheduler
    MAINTENANCE_SCHEDULER_ENABLED: bool = True
    MAINTENANCE_JOB_HOUR_UTC: int = 2
    MAINTENANCE_CHECK_INTERVAL_SECONDS: int = 3600
    MAINTENANCE_RUN_ON_STARTUP: bool = False
    MAINTENANCE_LOCK_TTL_MINUTES: int = 120
    MAINTENANCE_SHUTDOWN_TIMEOUT_SECONDS: float = 60.0

    # Orchestration runs
    ORCHESTRATOR_HEALTH_MAX_HOURS: int = 26
    STALE_RUN_RECOVERY_ENABLED: bool = True
    ORCHESTRATION_STALE_RUN_HOURS: int = 24
    STALE_RUN_RECOVERY_INTERVAL_SECONDS: float = 3600.0

    class Config:
        env_file = ".env"
        case_sensitive = True


settings = Settings()

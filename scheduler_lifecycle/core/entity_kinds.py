"""
Entity kinds handled by the data-lifecycle engine.

Each kind maps to an operational table and its archive table. The archival and
purge services are generic; everything table-specific lives in ARCHIVAL_TARGETS.
"""
from dataclasses import dataclass
from enum import Enum
from typing import Dict, List, Optional


class EntityKind(str, Enum):
    JOB = "job"
    JOB_EXECUTION = "job_execution"
    AUDIT_LOG = "audit_log"
    SCHEDULE_EXECUTION = "schedule_execution"


@dataclass(frozen=True)
class ArchivalTarget:
    """Table layout for one archivable entity kind."""
    kind: EntityKind
    operational_table: str
    archive_table: str
    age_column: str
    source_id_column: str
    id_column: str = "id"
    soft_delete_column: Optional[str] = "is_deleted"
    archive_id_column: str = "id"
    archived_at_column: str = "archived_at"

    @property
    def label(self) -> str:
        return self.kind.value.replace("_", " ")


ARCHIVAL_TARGETS: Dict[EntityKind, ArchivalTarget] = {
    EntityKind.JOB: ArchivalTarget(
        kind=EntityKind.JOB,
        operational_table="adr_jobs",
        archive_table="adr_job_archives",
        age_column="created_at",
        source_id_column="original_adr_job_id",
    ),
    EntityKind.JOB_EXECUTION: ArchivalTarget(
        kind=EntityKind.JOB_EXECUTION,
        operational_table="adr_job_executions",
        archive_table="adr_job_execution_archives",
        age_column="created_at",
        source_id_column="original_adr_job_execution_id",
    ),
    EntityKind.AUDIT_LOG: ArchivalTarget(
        kind=EntityKind.AUDIT_LOG,
        operational_table="audit_logs",
        archive_table="audit_log_archives",
        age_column="timestamp",
        source_id_column="original_audit_log_id",
    ),
    EntityKind.SCHEDULE_EXECUTION: ArchivalTarget(
        kind=EntityKind.SCHEDULE_EXECUTION,
        operational_table="job_executions",
        archive_table="job_execution_archives",
        age_column="created_at",
        source_id_column="original_job_execution_id",
    ),
}

# Order in which a maintenance run processes the kinds
MAINTENANCE_ORDER: List[EntityKind] = [
    EntityKind.JOB,
    EntityKind.JOB_EXECUTION,
    EntityKind.AUDIT_LOG,
    EntityKind.SCHEDULE_EXECUTION,
]


def get_archival_target(kind: EntityKind) -> ArchivalTarget:
    """Look up the table layout for an entity kind (accepts the enum or its value)."""
    return ARCHIVAL_TARGETS[EntityKind(kind)]

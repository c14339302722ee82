"""
In-process store for CSV import wizard jobs.

Jobs are transient: they expire after a fixed TTL, each tenant keeps at most a
fixed number of them (oldest evicted first), and a process restart loses all
of them. Callers treat a missing job as 404 and restart the wizard.
"""

from __future__ import annotations

import enum
import threading
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import TYPE_CHECKING, Any, Callable, Dict, List

from worksync_app.importer.contracts import EntityType, coerce_entity_type

if TYPE_CHECKING:  # pragma: no cover
    from worksync_app.importer.mapping import ColumnMapping

    from .execution import ImportSummary
    from .validation import ValidationSummary

DEFAULT_JOB_TTL_SECONDS = 2 * 60 * 60
DEFAULT_MAX_JOBS_PER_TENANT = 50
DEFAULT_LIST_LIMIT = 20


class ImportJobStatus(str, enum.Enum):
    DRAFT = "draft"
    VALIDATED = "validated"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"


class ImportJobNotFound(LookupError):
    """Raised when a job id is unknown, expired, or owned by another tenant."""

    def __init__(self, job_id: str):
        super().__init__(f"Import job {job_id} not found")
        self.job_id = job_id


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class ImportJob:
    id: str
    tenant_id: int
    entity_type: EntityType
    created_at: datetime
    updated_at: datetime
    created_by_user_id: int | None = None
    status: ImportJobStatus = ImportJobStatus.DRAFT
    file_name: str | None = None
    raw_rows: List[Dict[str, str]] = field(default_factory=list)
    columns: List[str] = field(default_factory=list)
    sample_rows: List[Dict[str, str]] = field(default_factory=list)
    mapping: List["ColumnMapping"] = field(default_factory=list)
    auto_create_missing: bool | None = None
    validation_summary: "ValidationSummary | None" = None
    import_summary: "ImportSummary | None" = None
    progress: Dict[str, int] | None = None
    error_rows: List[Dict[str, Any]] = field(default_factory=list)


class ImportJobStore:
    """Thread-safe job map with TTL sweep and per-tenant quota."""

    def __init__(
        self,
        *,
        ttl_seconds: int = DEFAULT_JOB_TTL_SECONDS,
        max_jobs_per_tenant: int = DEFAULT_MAX_JOBS_PER_TENANT,
        clock: Callable[[], datetime] | None = None,
    ):
        self.ttl = timedelta(seconds=ttl_seconds)
        self.max_jobs_per_tenant = max_jobs_per_tenant
        self._clock = clock or _utcnow
        self._jobs: Dict[str, ImportJob] = {}
        self._lock = threading.RLock()

    def __len__(self) -> int:
        with self._lock:
            return len(self._jobs)

    def _is_expired(self, job: ImportJob, now: datetime) -> bool:
        return now - job.created_at > self.ttl

    def sweep_expired(self) -> int:
        """Drop every job older than the TTL and return how many were removed."""

        with self._lock:
            now = self._clock()
            expired = [job_id for job_id, job in self._jobs.items() if self._is_expired(job, now)]
            for job_id in expired:
                del self._jobs[job_id]
            return len(expired)

    def create(
        self,
        tenant_id: int,
        entity_type: EntityType | str,
        *,
        created_by_user_id: int | None = None,
        file_name: str | None = None,
    ) -> ImportJob:
        entity = coerce_entity_type(entity_type)
        with self._lock:
            self.sweep_expired()
            tenant_jobs = sorted(
                (job for job in self._jobs.values() if job.tenant_id == tenant_id),
                key=lambda job: job.created_at,
            )
            while tenant_jobs and len(tenant_jobs) >= self.max_jobs_per_tenant:
                evicted = tenant_jobs.pop(0)
                del self._jobs[evicted.id]

            now = self._clock()
            job = ImportJob(
                id=str(uuid.uuid4()),
                tenant_id=tenant_id,
                entity_type=entity,
                created_at=now,
                updated_at=now,
                created_by_user_id=created_by_user_id,
                file_name=file_name,
            )
            self._jobs[job.id] = job
            return job

    def get(self, job_id: str, *, tenant_id: int | None = None) -> ImportJob:
        with self._lock:
            job = self._jobs.get(job_id)
            if job is not None and self._is_expired(job, self._clock()):
                del self._jobs[job_id]
                job = None
            if job is None or (tenant_id is not None and job.tenant_id != tenant_id):
                raise ImportJobNotFound(job_id)
            return job

    def list_for_tenant(self, tenant_id: int, limit: int = DEFAULT_LIST_LIMIT) -> List[ImportJob]:
        with self._lock:
            now = self._clock()
            jobs = [
                job for job in self._jobs.values() if job.tenant_id == tenant_id and not self._is_expired(job, now)
            ]
        jobs.sort(key=lambda job: job.created_at, reverse=True)
        return jobs[:limit]

    def update(self, job_id: str, **changes: Any) -> ImportJob:
        with self._lock:
            job = self.get(job_id)
            for name, value in changes.items():
                if not hasattr(job, name):
                    raise AttributeError(f"ImportJob has no attribute {name!r}")
                setattr(job, name, value)
            job.updated_at = self._clock()
            return job

    def delete(self, job_id: str) -> bool:
        with self._lock:
            return self._jobs.pop(job_id, None) is not None


def job_to_dto(job: ImportJob, *, preview_limit: int | None = None) -> dict:
    """Project the caller-visible fields of ``job``; raw rows are never exposed."""

    return {
        "id": job.id,
        "tenantId": job.tenant_id,
        "entityType": job.entity_type.value,
        "status": job.status.value,
        "createdAt": job.created_at.isoformat(),
        "updatedAt": job.updated_at.isoformat(),
        "fileName": job.file_name,
        "rowCount": len(job.raw_rows),
        "columns": list(job.columns),
        "sampleRows": list(job.sample_rows),
        "mapping": [mapping.to_dict() for mapping in job.mapping],
        "autoCreateMissing": job.auto_create_missing,
        "validationSummary": (
            job.validation_summary.to_dict(preview_limit=preview_limit) if job.validation_summary else None
        ),
        "importSummary": job.import_summary.to_dict() if job.import_summary else None,
        "progress": dict(job.progress) if job.progress else None,
        "errorRowCount": len(job.error_rows),
    }

"""
SQLAlchemy models backing the external synchronization pipeline.

CSV import jobs live in the in-process job store; only external sync runs and
the provider-id mapping table are persisted.
"""

from __future__ import annotations

import enum
from datetime import datetime, timezone

from sqlalchemy import Enum, ForeignKey, Index, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column, relationship

from ..base import BaseModel, db


class ImportRunStatus(str, enum.Enum):
    """Lifecycle states for an import run."""

    PENDING = "pending"
    RUNNING = "running"
    SUCCEEDED = "succeeded"
    PARTIALLY_FAILED = "partially_failed"
    FAILED = "failed"
    CANCELLED = "cancelled"

    @property
    def is_terminal(self) -> bool:
        return self in (
            ImportRunStatus.SUCCEEDED,
            ImportRunStatus.PARTIALLY_FAILED,
            ImportRunStatus.FAILED,
            ImportRunStatus.CANCELLED,
        )


class ImportRun(BaseModel):
    """Metadata describing a single external synchronization run."""

    __tablename__ = "import_runs"

    id: Mapped[int] = mapped_column(primary_key=True)
    tenant_id: Mapped[int] = mapped_column(ForeignKey("tenants.id"), nullable=False, index=True)
    source: Mapped[str] = mapped_column(db.String(100), nullable=False, index=True)
    adapter: Mapped[str | None] = mapped_column(db.String(100), nullable=True)
    status: Mapped[ImportRunStatus] = mapped_column(
        Enum(ImportRunStatus, name="import_run_status_enum"),
        nullable=False,
        default=ImportRunStatus.PENDING,
        index=True,
    )
    phase: Mapped[str | None] = mapped_column(db.String(255), nullable=True)
    dry_run: Mapped[bool] = mapped_column(db.Boolean, nullable=False, default=False)
    started_at: Mapped[datetime | None] = mapped_column(db.DateTime(timezone=True))
    finished_at: Mapped[datetime | None] = mapped_column(db.DateTime(timezone=True))
    triggered_by_user_id: Mapped[int | None] = mapped_column(ForeignKey("users.id"), nullable=True)
    counts_json: Mapped[dict | None] = mapped_column(db.JSON, nullable=True)
    error_log_json: Mapped[list | None] = mapped_column(db.JSON, nullable=True)
    error_summary: Mapped[str | None] = mapped_column(db.Text, nullable=True)
    ingest_params_json: Mapped[dict | None] = mapped_column(
        db.JSON,
        nullable=True,
        comment="Stored run parameters (workspace gid, project gids, target workspace, options)",
    )
    celery_task_id: Mapped[str | None] = mapped_column(db.String(155), nullable=True)

    triggered_by_user = relationship("User", foreign_keys=[triggered_by_user_id])

    __table_args__ = (Index("idx_import_runs_tenant_started", "tenant_id", "started_at"),)

    def mark_running(self, *, phase: str = "Starting...") -> None:
        self.status = ImportRunStatus.RUNNING
        self.phase = phase
        self.started_at = self.started_at or datetime.now(timezone.utc)

    def mark_finished(self, status: ImportRunStatus, *, phase: str) -> None:
        self.status = status
        self.phase = phase
        self.finished_at = datetime.now(timezone.utc)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "run_id": self.id,
            "tenant_id": self.tenant_id,
            "source": self.source,
            "adapter": self.adapter,
            "status": self.status.value if self.status else None,
            "phase": self.phase,
            "dry_run": self.dry_run,
            "started_at": self.started_at.isoformat() if self.started_at else None,
            "finished_at": self.finished_at.isoformat() if self.finished_at else None,
            "triggered_by_user_id": self.triggered_by_user_id,
            "counts": self.counts_json or {},
            "errors": self.error_log_json or [],
            "error_summary": self.error_summary,
            "ingest_params": self.ingest_params_json or {},
        }


class IntegrationEntityMap(BaseModel):
    """Maps a provider record id to the local row it was imported into."""

    __tablename__ = "integration_entity_map"

    id: Mapped[int] = mapped_column(db.Integer, primary_key=True, autoincrement=True)
    tenant_id: Mapped[int] = mapped_column(ForeignKey("tenants.id"), nullable=False)
    provider: Mapped[str] = mapped_column(db.String(50), nullable=False)
    entity_type: Mapped[str] = mapped_column(db.String(50), nullable=False)
    provider_entity_id: Mapped[str] = mapped_column(db.String(255), nullable=False)
    local_entity_id: Mapped[int] = mapped_column(db.Integer, nullable=False)
    metadata_json: Mapped[dict | None] = mapped_column(db.JSON, nullable=True)
    last_seen_at: Mapped[datetime] = mapped_column(
        db.DateTime(timezone=True),
        nullable=False,
        default=lambda: datetime.now(timezone.utc),
    )

    __table_args__ = (
        UniqueConstraint(
            "tenant_id",
            "provider",
            "entity_type",
            "provider_entity_id",
            name="uq_integration_entity_map_provider_key",
        ),
        Index(
            "idx_integration_entity_map_local",
            "tenant_id",
            "entity_type",
            "local_entity_id",
        ),
    )

    def __repr__(self):
        return (
            f"<IntegrationEntityMap {self.provider}:{self.entity_type}:{self.provider_entity_id}"
            f" -> {self.local_entity_id}>"
        )

"""
Bridge between bound Celery tasks and the pipelines' progress/cancel hooks.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

from worksync_app.models import ImportRun, ImportRunStatus, db

PROGRESS_STATE = "PROGRESS"


@dataclass
class JobContext:
    """
    Progress, result and cancellation hooks for one background job.

    ``task`` is the bound Celery task (``self`` inside a ``bind=True`` task);
    it may be ``None`` when a pipeline runs inline from the CLI or a request.
    ``run_id`` ties cancellation to an ``ImportRun`` row.
    """

    task: Any = None
    run_id: int | None = None
    progress: dict[str, Any] = field(default_factory=dict)
    result: Any = None

    def update_progress(self, current: int, total: int, phase: str | None = None) -> None:
        self.progress = {"current": current, "total": total, "phase": phase}
        if self.task is None:
            return
        request = getattr(self.task, "request", None)
        if request is None or getattr(request, "is_eager", False) or not getattr(request, "id", None):
            return
        self.task.update_state(state=PROGRESS_STATE, meta=dict(self.progress))

    def set_result(self, result: Any) -> None:
        self.result = result

    def is_cancelled(self) -> bool:
        if self.run_id is None:
            return False
        status = (
            db.session.query(ImportRun.status).filter(ImportRun.id == self.run_id).scalar()
        )
        return status == ImportRunStatus.CANCELLED

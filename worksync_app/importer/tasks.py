"""
Importer Celery tasks.

``asana_import`` drives an external sync run recorded as an ``ImportRun``;
``csv_import`` commits a tabular job held in the in-process job store, so it
only finds its job when the worker shares the web process (eager mode or the
inline CLI path).
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any

from celery import shared_task
from flask import current_app

from worksync_app.importer.adapters.asana import create_asana_client
from worksync_app.importer.jobs import JobContext
from worksync_app.importer.metrics import record_asana_run
from worksync_app.importer.pipeline import AsanaImportCancelled, AsanaImportOptions, AsanaImportPipeline, execute_job
from worksync_app.importer.pipeline.job_store import ImportJobStatus
from worksync_app.models import ImportRun, ImportRunStatus, Workspace, db


@shared_task(name="importer.healthcheck", bind=True)
def importer_healthcheck(self) -> dict[str, Any]:
    """
    Simple heartbeat task used by worker health checks.
    """
    now = datetime.now(timezone.utc)
    return {
        "status": "ok",
        "timestamp": now.isoformat(),
        "worker_hostname": self.request.hostname,
        "app_version": getattr(self.app, "user_options", {}).get("version"),
    }


def _set_phase(run_id: int, phase: str) -> None:
    run = db.session.get(ImportRun, run_id)
    if run is None:
        return
    run.phase = phase
    db.session.commit()


@shared_task(name="importer.pipeline.asana_import", bind=True)
def asana_import(self, *, payload: dict[str, Any]) -> dict[str, Any]:
    """
    Execute an Asana sync run.

    ``payload`` carries ``tenantId``, ``asanaWorkspaceGid``, ``projectGids``,
    ``targetWorkspaceId``, ``options`` and ``asanaRunId``.
    """

    run_id = int(payload["asanaRunId"])
    run = db.session.get(ImportRun, run_id)
    if run is None:
        raise ValueError(f"Import run {run_id} not found.")
    if run.status == ImportRunStatus.CANCELLED:
        return {"run_id": run_id, "status": run.status.value}

    tenant_id = int(payload["tenantId"])
    project_gids = [str(gid) for gid in payload.get("projectGids") or ()]
    context = JobContext(task=self, run_id=run_id)

    run.mark_running(phase="Starting...")
    run.celery_task_id = getattr(self.request, "id", None)
    db.session.commit()

    def update_phase(text: str) -> None:
        _set_phase(run_id, text)
        context.update_progress(0, len(project_gids), text)

    try:
        workspace_id = Workspace.resolve_for_tenant(tenant_id, payload.get("targetWorkspaceId"))
        pipeline = AsanaImportPipeline(
            tenant_id,
            workspace_id,
            run.triggered_by_user_id,
            AsanaImportOptions.from_dict(payload.get("options")),
            create_asana_client(current_app.config),
            update_phase=update_phase,
            is_cancelled=context.is_cancelled,
            logger=current_app.logger,
        )
        result = pipeline.execute(str(payload["asanaWorkspaceGid"]), project_gids)
    except AsanaImportCancelled:
        db.session.rollback()
        cancelled = db.session.get(ImportRun, run_id)
        cancelled.mark_finished(ImportRunStatus.CANCELLED, phase="Cancelled")
        db.session.commit()
        record_asana_run(ImportRunStatus.CANCELLED.value)
        current_app.logger.info("Asana import run cancelled", extra={"importer_run_id": run_id})
        return {"run_id": run_id, "status": ImportRunStatus.CANCELLED.value}
    except Exception as exc:
        db.session.rollback()
        recovery_run = db.session.get(ImportRun, run_id)
        if recovery_run is not None:
            recovery_run.mark_finished(ImportRunStatus.FAILED, phase="Error")
            recovery_run.error_summary = str(exc)
            recovery_run.error_log_json = [
                {"entityType": "system", "asanaGid": "", "name": "", "message": str(exc)}
            ]
            db.session.commit()
        record_asana_run(ImportRunStatus.FAILED.value)
        current_app.logger.exception(
            "Asana import run failed",
            extra={
                "importer_run_id": run_id,
                "importer_error": str(exc),
            },
        )
        raise

    run = db.session.get(ImportRun, run_id)
    status = ImportRunStatus.PARTIALLY_FAILED if result.has_errors else ImportRunStatus.SUCCEEDED
    run.counts_json = result.counts.to_dict()
    run.error_log_json = [error.to_dict() for error in result.errors]
    run.error_summary = f"{len(result.errors)} entities failed" if result.has_errors else None
    run.mark_finished(status, phase="Done")
    db.session.commit()
    record_asana_run(status.value)

    summary = {"run_id": run_id, "status": status.value, **result.to_dict()}
    context.set_result(summary)
    current_app.logger.info(
        "Asana import run completed",
        extra={
            "importer_run_id": run_id,
            "importer_status": status.value,
            "importer_counts": run.counts_json,
            "importer_error_count": len(result.errors),
        },
    )
    return summary


@shared_task(name="importer.pipeline.csv_import", bind=True)
def csv_import(self, *, import_job_id: str, tenant_id: int) -> dict[str, Any]:
    """
    Commit a validated CSV import job from the importer job store.
    """

    store = current_app.extensions["importer"]["job_store"]
    job = store.get(import_job_id, tenant_id=tenant_id)
    context = JobContext(task=self)
    store.update(job.id, status=ImportJobStatus.RUNNING, progress={"processed": 0, "total": len(job.raw_rows)})

    try:
        summary = execute_job(
            job,
            store=store,
            batch_size=int(current_app.config.get("IMPORTER_BATCH_SIZE", 200)),
            progress_callback=lambda current, total: context.update_progress(current, total, "Importing rows"),
        )
    except Exception as exc:
        db.session.rollback()
        store.update(job.id, status=ImportJobStatus.FAILED)
        current_app.logger.exception(
            "CSV import job failed",
            extra={
                "importer_job_id": import_job_id,
                "importer_error": str(exc),
            },
        )
        raise

    payload = {"job_id": import_job_id, "status": store.get(job.id).status.value, **summary.to_dict()}
    context.set_result(payload)
    return payload

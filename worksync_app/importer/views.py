"""
Importer blueprint: CSV import wizard endpoints, Asana sync runs and health.

Callers identify their tenant with the ``X-Tenant-Id`` header (and optionally
the acting user with ``X-User-Id``); a job or run owned by another tenant is
reported as not found.
"""

from __future__ import annotations

from http import HTTPStatus

from celery.exceptions import TimeoutError as CeleryTimeoutError
from flask import Blueprint, Response, current_app, jsonify, request

from worksync_app.importer.adapters.asana import AsanaClientError, AsanaNotConfigured, create_asana_client
from worksync_app.importer.adapters.csv_rows import CSVParseError, CSVUploadTooLarge, serialize_error_rows
from worksync_app.importer.contracts import UnknownEntityTypeError, describe_entity
from worksync_app.importer.mapping import MappingLoadError, parse_mapping_payload
from worksync_app.importer.pipeline import (
    AsanaImportOptions,
    AsanaImportPipeline,
    AsanaOptionsError,
    ImportJobNotFound,
    ImportJobStatus,
    execute_job,
    job_to_dto,
    validate_job,
)
from worksync_app.importer.utils import decode_upload, stage_upload
from worksync_app.models import ImportRun, ImportRunStatus, TenantWorkspaceMissing, Workspace, db

from .celery_app import DEFAULT_QUEUE_NAME, get_celery_app
from .registry import AdapterDescriptor

importer_blueprint = Blueprint("importer", __name__, url_prefix="/importer")

VALIDATION_PREVIEW_LIMIT = 50
RUN_LIST_LIMIT = 50
ASANA_IMPORT_TASK = "importer.pipeline.asana_import"


class TenantContextMissing(Exception):
    pass


def _serialize_adapter(adapter: AdapterDescriptor) -> dict:
    return {
        "name": adapter.name,
        "title": adapter.title,
        "summary": adapter.summary,
        "required_config": list(adapter.required_config),
    }


def _json_error(message: str, status: HTTPStatus):
    return jsonify({"error": message}), status


def _importer_state() -> dict:
    return current_app.extensions.get("importer", {})


def _job_store():
    return _importer_state()["job_store"]


def _current_tenant_id() -> int:
    raw = request.headers.get("X-Tenant-Id", "").strip()
    if not raw.isdigit():
        raise TenantContextMissing()
    return int(raw)


def _current_user_id() -> int | None:
    raw = request.headers.get("X-User-Id", "").strip()
    return int(raw) if raw.isdigit() else None


def _payload() -> dict:
    return request.get_json(silent=True) or {}


def _coerce_optional_bool(value):
    if value is None or isinstance(value, bool):
        return value
    return str(value).strip().lower() in {"1", "true", "yes", "on"}


@importer_blueprint.errorhandler(TenantContextMissing)
def _handle_missing_tenant(exc):
    return _json_error("X-Tenant-Id header is required.", HTTPStatus.UNAUTHORIZED)


@importer_blueprint.errorhandler(ImportJobNotFound)
def _handle_job_not_found(exc):
    return _json_error("Import job not found.", HTTPStatus.NOT_FOUND)


@importer_blueprint.errorhandler(UnknownEntityTypeError)
def _handle_unknown_entity(exc):
    return _json_error(str(exc), HTTPStatus.BAD_REQUEST)


@importer_blueprint.errorhandler(MappingLoadError)
def _handle_bad_mapping(exc):
    return _json_error(str(exc), HTTPStatus.BAD_REQUEST)


@importer_blueprint.errorhandler(AsanaOptionsError)
def _handle_bad_options(exc):
    return _json_error(str(exc), HTTPStatus.BAD_REQUEST)


@importer_blueprint.errorhandler(AsanaNotConfigured)
def _handle_asana_not_configured(exc):
    return _json_error(str(exc), HTTPStatus.BAD_REQUEST)


@importer_blueprint.errorhandler(AsanaClientError)
def _handle_asana_error(exc):
    current_app.logger.warning("Asana request failed: %s", exc, extra={"importer_error": str(exc)})
    return _json_error(str(exc), HTTPStatus.BAD_GATEWAY)


# Health -------------------------------------------------------------------------


@importer_blueprint.get("/health")
def importer_healthcheck():
    state = _importer_state()
    adapters = state.get("active_adapters", ())
    return (
        jsonify(
            {
                "status": "ok",
                "enabled": state.get("enabled", False),
                "adapters": [_serialize_adapter(adapter) for adapter in adapters],
                "readiness": state.get("adapter_readiness", {}),
                "jobs_in_memory": len(state["job_store"]) if state.get("job_store") is not None else 0,
            }
        ),
        200,
    )


@importer_blueprint.get("/worker_health")
def importer_worker_health():
    """
    Validate importer worker availability via the heartbeat task.
    """
    state = _importer_state()
    timeout_seconds = float(request.args.get("timeout", 5))
    payload = {
        "importer_enabled": state.get("enabled", False),
        "worker_enabled": state.get("worker_enabled", False),
        "queue": DEFAULT_QUEUE_NAME,
        "timeout_seconds": timeout_seconds,
    }
    if not payload["importer_enabled"] or not payload["worker_enabled"]:
        payload["status"] = "disabled"
        return jsonify(payload), 200

    celery_app = get_celery_app(current_app)
    task = celery_app.tasks.get("importer.healthcheck") if celery_app is not None else None
    if task is None:
        payload["status"] = "error"
        payload["error"] = "heartbeat_task_missing"
        return jsonify(payload), 500

    result = task.apply_async()
    try:
        payload["heartbeat"] = result.get(timeout=timeout_seconds)
    except CeleryTimeoutError:
        payload["status"] = "timeout"
        return jsonify(payload), 504
    payload["status"] = "ok"
    return jsonify(payload), 200


# CSV import wizard --------------------------------------------------------------


@importer_blueprint.get("/fields/<entity_type>")
def importer_fields(entity_type: str):
    return jsonify(describe_entity(entity_type)), 200


@importer_blueprint.post("/jobs")
def create_import_job():
    tenant_id = _current_tenant_id()
    payload = _payload()
    entity_type = payload.get("entityType") or payload.get("entity_type")
    if not entity_type:
        return _json_error("entityType is required.", HTTPStatus.BAD_REQUEST)
    job = _job_store().create(
        tenant_id,
        entity_type,
        created_by_user_id=_current_user_id(),
        file_name=payload.get("fileName"),
    )
    current_app.logger.info(
        "Import job created",
        extra={"importer_job_id": job.id, "importer_tenant_id": tenant_id, "importer_entity_type": job.entity_type.value},
    )
    return jsonify(job_to_dto(job)), HTTPStatus.CREATED


@importer_blueprint.get("/jobs")
def list_import_jobs():
    tenant_id = _current_tenant_id()
    limit = request.args.get("limit", type=int) or 20
    jobs = _job_store().list_for_tenant(tenant_id, limit=max(1, min(limit, 100)))
    return jsonify({"jobs": [job_to_dto(job, preview_limit=VALIDATION_PREVIEW_LIMIT) for job in jobs]}), 200


@importer_blueprint.get("/jobs/<job_id>")
def get_import_job(job_id: str):
    job = _job_store().get(job_id, tenant_id=_current_tenant_id())
    return jsonify(job_to_dto(job, preview_limit=VALIDATION_PREVIEW_LIMIT)), 200


@importer_blueprint.delete("/jobs/<job_id>")
def delete_import_job(job_id: str):
    store = _job_store()
    job = store.get(job_id, tenant_id=_current_tenant_id())
    store.delete(job.id)
    return "", HTTPStatus.NO_CONTENT


@importer_blueprint.post("/jobs/<job_id>/upload")
def upload_import_file(job_id: str):
    store = _job_store()
    job = store.get(job_id, tenant_id=_current_tenant_id())
    if job.status == ImportJobStatus.RUNNING:
        return _json_error("Import job is already running.", HTTPStatus.CONFLICT)

    file_name = None
    upload = request.files.get("file")
    try:
        if upload is not None:
            text, file_name = decode_upload(upload)
        else:
            body = _payload()
            text = body.get("csv") or body.get("content")
            file_name = body.get("fileName")
            if text is None:
                text = request.get_data(as_text=True)
        if not text or not text.strip():
            return _json_error("No CSV content provided.", HTTPStatus.BAD_REQUEST)

        response = stage_upload(
            store,
            job,
            text,
            file_name=file_name,
            max_rows=int(current_app.config.get("IMPORTER_MAX_ROW_COUNT", 50000)),
            max_mb=int(current_app.config.get("IMPORTER_MAX_UPLOAD_MB", 25)),
        )
    except CSVUploadTooLarge as exc:
        return _json_error(str(exc), HTTPStatus.REQUEST_ENTITY_TOO_LARGE)
    except CSVParseError as exc:
        return _json_error(str(exc), HTTPStatus.BAD_REQUEST)

    current_app.logger.info(
        "Import file staged",
        extra={
            "importer_job_id": job.id,
            "importer_row_count": response["rowCount"],
            "importer_truncated": response["truncated"],
        },
    )
    return jsonify(response), 200


@importer_blueprint.put("/jobs/<job_id>/mapping")
def update_import_mapping(job_id: str):
    store = _job_store()
    job = store.get(job_id, tenant_id=_current_tenant_id())
    payload = request.get_json(silent=True)
    raw_mapping = payload.get("mapping") if isinstance(payload, dict) else payload
    mapping = parse_mapping_payload(raw_mapping)

    changes = {"mapping": mapping, "status": ImportJobStatus.DRAFT, "validation_summary": None}
    if isinstance(payload, dict) and "autoCreateMissing" in payload:
        changes["auto_create_missing"] = _coerce_optional_bool(payload["autoCreateMissing"])
    job = store.update(job.id, **changes)
    return jsonify(job_to_dto(job, preview_limit=VALIDATION_PREVIEW_LIMIT)), 200


@importer_blueprint.post("/jobs/<job_id>/validate")
def validate_import_job(job_id: str):
    store = _job_store()
    job = store.get(job_id, tenant_id=_current_tenant_id())
    if not job.raw_rows:
        return _json_error("Upload a CSV file before validating.", HTTPStatus.BAD_REQUEST)
    if not job.mapping:
        return _json_error("Column mapping is required before validating.", HTTPStatus.BAD_REQUEST)

    payload = _payload()
    if "autoCreateMissing" in payload:
        store.update(job.id, auto_create_missing=_coerce_optional_bool(payload["autoCreateMissing"]))

    summary = validate_job(job)
    store.update(job.id, validation_summary=summary, status=ImportJobStatus.VALIDATED)
    current_app.logger.info(
        "Import job validated",
        extra={"importer_job_id": job.id, "importer_counts": summary.counts()},
    )
    return jsonify(summary.to_dict(preview_limit=VALIDATION_PREVIEW_LIMIT)), 200


@importer_blueprint.post("/jobs/<job_id>/run")
def run_import_job(job_id: str):
    store = _job_store()
    job = store.get(job_id, tenant_id=_current_tenant_id())
    if job.status == ImportJobStatus.RUNNING:
        return _json_error("Import job is already running.", HTTPStatus.CONFLICT)
    if not job.raw_rows:
        return _json_error("Upload a CSV file before running the import.", HTTPStatus.BAD_REQUEST)
    if not job.mapping:
        return _json_error("Column mapping is required before running the import.", HTTPStatus.BAD_REQUEST)

    payload = _payload()
    if "autoCreateMissing" in payload:
        store.update(job.id, auto_create_missing=_coerce_optional_bool(payload["autoCreateMissing"]))

    store.update(job.id, status=ImportJobStatus.RUNNING, progress={"processed": 0, "total": len(job.raw_rows)})
    try:
        summary = execute_job(job, store=store, batch_size=int(current_app.config.get("IMPORTER_BATCH_SIZE", 200)))
    except Exception:
        db.session.rollback()
        store.update(job.id, status=ImportJobStatus.FAILED)
        current_app.logger.exception("Import job failed", extra={"importer_job_id": job.id})
        raise

    job = store.get(job.id)
    return jsonify({"status": job.status.value, **summary.to_dict()}), 200


@importer_blueprint.get("/jobs/<job_id>/errors.csv")
def download_import_errors(job_id: str):
    job = _job_store().get(job_id, tenant_id=_current_tenant_id())
    body = serialize_error_rows(job.error_rows)
    return Response(
        body,
        mimetype="text/csv",
        headers={"Content-Disposition": f'attachment; filename="import-{job.id}-errors.csv"'},
    )


# Asana sync ---------------------------------------------------------------------


def _asana_request_params(payload: dict) -> tuple[str, list[str]]:
    workspace_gid = str(payload.get("asanaWorkspaceGid") or "").strip()
    project_gids = [str(gid) for gid in payload.get("projectGids") or () if str(gid).strip()]
    return workspace_gid, project_gids


def _resolve_target_workspace(tenant_id: int, payload: dict) -> int:
    return Workspace.resolve_for_tenant(tenant_id, payload.get("targetWorkspaceId"))


@importer_blueprint.get("/asana/workspaces")
def asana_workspaces():
    _current_tenant_id()
    client = create_asana_client(current_app.config)
    return jsonify({"workspaces": client.get_workspaces()}), 200


@importer_blueprint.get("/asana/workspaces/<workspace_gid>/projects")
def asana_projects(workspace_gid: str):
    _current_tenant_id()
    include_archived = request.args.get("include_archived", "false").lower() == "true"
    client = create_asana_client(current_app.config)
    return jsonify({"projects": client.get_projects(workspace_gid, include_archived=include_archived)}), 200


@importer_blueprint.post("/asana/validate")
def asana_validate():
    tenant_id = _current_tenant_id()
    payload = _payload()
    workspace_gid, project_gids = _asana_request_params(payload)
    if not workspace_gid or not project_gids:
        return _json_error("asanaWorkspaceGid and projectGids are required.", HTTPStatus.BAD_REQUEST)
    try:
        workspace_id = _resolve_target_workspace(tenant_id, payload)
    except TenantWorkspaceMissing as exc:
        return _json_error(str(exc), HTTPStatus.BAD_REQUEST)

    pipeline = AsanaImportPipeline(
        tenant_id,
        workspace_id,
        _current_user_id(),
        AsanaImportOptions.from_dict(payload.get("options")),
        create_asana_client(current_app.config),
        logger=current_app.logger,
    )
    result = pipeline.validate(workspace_gid, project_gids)
    return jsonify(result.to_dict()), 200


@importer_blueprint.post("/asana/runs")
def asana_start_run():
    tenant_id = _current_tenant_id()
    payload = _payload()
    workspace_gid, project_gids = _asana_request_params(payload)
    if not workspace_gid or not project_gids:
        return _json_error("asanaWorkspaceGid and projectGids are required.", HTTPStatus.BAD_REQUEST)
    options = AsanaImportOptions.from_dict(payload.get("options"))
    if not current_app.config.get("IMPORTER_ASANA_ACCESS_TOKEN"):
        return _json_error("IMPORTER_ASANA_ACCESS_TOKEN is not configured.", HTTPStatus.BAD_REQUEST)
    try:
        workspace_id = _resolve_target_workspace(tenant_id, payload)
    except TenantWorkspaceMissing as exc:
        return _json_error(str(exc), HTTPStatus.BAD_REQUEST)

    run = ImportRun(
        tenant_id=tenant_id,
        source="asana",
        adapter="asana",
        status=ImportRunStatus.PENDING,
        phase="Queued",
        triggered_by_user_id=_current_user_id(),
        counts_json={},
        ingest_params_json={
            "asanaWorkspaceGid": workspace_gid,
            "projectGids": project_gids,
            "targetWorkspaceId": workspace_id,
            "options": options.to_dict(),
        },
    )
    db.session.add(run)
    db.session.commit()

    task_payload = {"tenantId": tenant_id, "asanaRunId": run.id, **run.ingest_params_json}
    task = get_celery_app(current_app).tasks[ASANA_IMPORT_TASK]
    async_result = task.apply_async(kwargs={"payload": task_payload})
    run = db.session.get(ImportRun, run.id)
    if run.celery_task_id is None:
        run.celery_task_id = async_result.id
        db.session.commit()

    current_app.logger.info(
        "Asana import run queued",
        extra={"importer_run_id": run.id, "importer_task_id": async_result.id, "importer_tenant_id": tenant_id},
    )
    return jsonify(run.to_dict()), HTTPStatus.ACCEPTED


def _tenant_run_or_404(run_id: int, tenant_id: int) -> ImportRun | None:
    run = db.session.get(ImportRun, run_id)
    if run is None or run.tenant_id != tenant_id:
        return None
    return run


@importer_blueprint.get("/asana/runs")
def asana_list_runs():
    tenant_id = _current_tenant_id()
    runs = (
        db.session.query(ImportRun)
        .filter(ImportRun.tenant_id == tenant_id, ImportRun.source == "asana")
        .order_by(ImportRun.id.desc())
        .limit(RUN_LIST_LIMIT)
        .all()
    )
    return jsonify({"runs": [run.to_dict() for run in runs]}), 200


@importer_blueprint.get("/asana/runs/<int:run_id>")
def asana_run_detail(run_id: int):
    run = _tenant_run_or_404(run_id, _current_tenant_id())
    if run is None:
        return _json_error("Import run not found.", HTTPStatus.NOT_FOUND)
    return jsonify(run.to_dict()), 200


@importer_blueprint.post("/asana/runs/<int:run_id>/cancel")
def asana_cancel_run(run_id: int):
    run = _tenant_run_or_404(run_id, _current_tenant_id())
    if run is None:
        return _json_error("Import run not found.", HTTPStatus.NOT_FOUND)
    if run.status.is_terminal:
        return _json_error(f"Import run already {run.status.value}.", HTTPStatus.CONFLICT)

    # A running task notices the status at its next checkpoint and finishes the run itself.
    if run.status == ImportRunStatus.PENDING:
        run.mark_finished(ImportRunStatus.CANCELLED, phase="Cancelled")
    else:
        run.status = ImportRunStatus.CANCELLED
        run.phase = "Cancelling..."
    db.session.commit()

    current_app.logger.info("Asana import run cancelled", extra={"importer_run_id": run.id})
    return jsonify(run.to_dict()), 200

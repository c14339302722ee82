"""
``flask importer`` commands: inline CSV validate/run, Asana validate/sync and
worker management.
"""

from __future__ import annotations

import json
from pathlib import Path
from typing import Optional

import click
from celery import Celery
from celery.exceptions import TimeoutError as CeleryTimeoutError
from flask.cli import ScriptInfo, with_appcontext

from worksync_app.importer.adapters.asana import AsanaClientError, create_asana_client
from worksync_app.importer.adapters.csv_rows import CSVParseError, serialize_error_rows
from worksync_app.importer.celery_app import DEFAULT_QUEUE_NAME, get_celery_app
from worksync_app.importer.contracts import EntityType, UnknownEntityTypeError
from worksync_app.importer.mapping import MappingLoadError, load_mapping_file
from worksync_app.importer.pipeline import (
    AsanaImportOptions,
    AsanaImportPipeline,
    AsanaOptionsError,
    ImportJobStatus,
    execute_job,
    validate_job,
)
from worksync_app.importer.pipeline.job_store import ImportJobStore
from worksync_app.importer.utils import read_csv_file, stage_upload
from worksync_app.models import ImportRun, ImportRunStatus, TenantWorkspaceMissing, Workspace, db
from worksync_app.utils.importer import get_importer_adapters, is_adapter_enabled, is_importer_enabled

ENTITY_CHOICES = click.Choice([entity.value for entity in EntityType], case_sensitive=False)


@click.group(name="importer", invoke_without_command=True)
@click.pass_context
def importer_cli(ctx):
    """
    Importer management commands.

    Displays configured adapters when invoked without a subcommand.
    """
    info = ctx.ensure_object(ScriptInfo)
    app = info.load_app()
    if not is_importer_enabled(app):
        raise click.ClickException(
            "Importer is disabled via IMPORTER_ENABLED=false. Enable it to run importer CLI commands."
        )
    if ctx.invoked_subcommand is None:
        adapters = get_importer_adapters(app)
        if not adapters:
            click.echo("No importer adapters configured.")
        else:
            click.echo("Enabled importer adapters:")
            for adapter in adapters:
                click.echo(f"  - {adapter}")


def get_disabled_importer_group() -> click.Group:
    """
    Return a minimal command group that informs the operator the importer is disabled.
    """

    @click.group(name="importer", invoke_without_command=True)
    def disabled_group():
        raise click.ClickException("Importer commands are unavailable because IMPORTER_ENABLED=false.")

    return disabled_group


def _require_adapter(app, name: str) -> None:
    if not is_adapter_enabled(name, app):
        raise click.ClickException(f"The '{name}' adapter is not enabled. Add it to IMPORTER_ADAPTERS.")


def _resolve_celery(app) -> Celery:
    celery_app = get_celery_app(app)
    if celery_app is None:
        raise click.ClickException(
            "Importer Celery app is unavailable. Ensure IMPORTER_ENABLED=true and the "
            "importer package initialises before running worker commands."
        )
    return celery_app


def _emit(payload: dict) -> None:
    click.echo(json.dumps(payload, indent=2, sort_keys=True))


# CSV ----------------------------------------------------------------------------


def _prepare_csv_job(app, *, tenant_id: int, entity_type: str, file_path: Path, mapping_path: Optional[Path], auto_create):
    """Stage ``file_path`` into a detached job using the file's or the suggested mapping."""

    store = ImportJobStore()
    job = store.create(tenant_id, entity_type, file_name=file_path.name)
    try:
        stage_upload(
            store,
            job,
            read_csv_file(file_path),
            file_name=file_path.name,
            max_rows=int(app.config.get("IMPORTER_MAX_ROW_COUNT", 50000)),
            max_mb=int(app.config.get("IMPORTER_MAX_UPLOAD_MB", 25)),
        )
        if mapping_path is not None:
            store.update(job.id, mapping=load_mapping_file(mapping_path))
    except (CSVParseError, MappingLoadError, UnknownEntityTypeError) as exc:
        raise click.ClickException(str(exc)) from exc
    store.update(job.id, auto_create_missing=auto_create)
    return store, store.get(job.id)


_csv_options = [
    click.option("--tenant-id", required=True, type=int, help="Tenant receiving the imported rows."),
    click.option("--entity-type", required=True, type=ENTITY_CHOICES, help="Entity sheet being imported."),
    click.option(
        "--file",
        "file_path",
        required=True,
        type=click.Path(path_type=Path, exists=True, dir_okay=False),
        help="CSV file to import.",
    ),
    click.option(
        "--mapping",
        "mapping_path",
        type=click.Path(path_type=Path, exists=True, dir_okay=False),
        help="YAML or JSON column mapping; defaults to the suggested mapping.",
    ),
    click.option(
        "--auto-create/--no-auto-create",
        "auto_create",
        default=None,
        help="Create missing clients, users and projects referenced by rows.",
    ),
]


def _with_csv_options(func):
    for option in reversed(_csv_options):
        func = option(func)
    return func


@importer_cli.group(name="csv")
@click.pass_context
def csv_group(ctx):
    """Validate or run CSV imports inline."""
    _require_adapter(ctx.ensure_object(ScriptInfo).load_app(), "csv")


@csv_group.command("validate")
@_with_csv_options
@with_appcontext
@click.pass_context
def csv_validate(ctx, tenant_id: int, entity_type: str, file_path: Path, mapping_path, auto_create):
    """Dry-run a CSV file and print the validation summary."""
    app = ctx.ensure_object(ScriptInfo).load_app()
    _, job = _prepare_csv_job(
        app,
        tenant_id=tenant_id,
        entity_type=entity_type,
        file_path=file_path,
        mapping_path=mapping_path,
        auto_create=auto_create,
    )
    summary = validate_job(job)
    _emit({"rowCount": len(job.raw_rows), "mapping": [m.to_dict() for m in job.mapping], **summary.to_dict()})


@csv_group.command("run")
@_with_csv_options
@click.option(
    "--errors-out",
    type=click.Path(path_type=Path, dir_okay=False, writable=True),
    help="Write failed rows to this CSV file.",
)
@with_appcontext
@click.pass_context
def csv_run(ctx, tenant_id: int, entity_type: str, file_path: Path, mapping_path, auto_create, errors_out):
    """Import a CSV file inline and print the import summary."""
    app = ctx.ensure_object(ScriptInfo).load_app()
    store, job = _prepare_csv_job(
        app,
        tenant_id=tenant_id,
        entity_type=entity_type,
        file_path=file_path,
        mapping_path=mapping_path,
        auto_create=auto_create,
    )
    store.update(job.id, status=ImportJobStatus.RUNNING)
    summary = execute_job(job, store=store, batch_size=int(app.config.get("IMPORTER_BATCH_SIZE", 200)))
    job = store.get(job.id)

    if errors_out is not None and job.error_rows:
        errors_out.write_text(serialize_error_rows(job.error_rows), encoding="utf-8")

    payload = {"status": job.status.value, **summary.to_dict()}
    if errors_out is not None:
        payload["errorsFile"] = str(errors_out) if job.error_rows else None
    _emit(payload)
    if job.status == ImportJobStatus.FAILED:
        raise click.ClickException(f"Import failed: {summary.failed} row(s) failed and nothing was written.")


# Asana --------------------------------------------------------------------------


def _asana_options(options_json: Optional[str], options_file: Optional[Path]) -> AsanaImportOptions:
    raw = {}
    try:
        if options_file is not None:
            raw = json.loads(options_file.read_text(encoding="utf-8"))
        elif options_json:
            raw = json.loads(options_json)
        return AsanaImportOptions.from_dict(raw)
    except (json.JSONDecodeError, AsanaOptionsError) as exc:
        raise click.ClickException(f"Invalid Asana options: {exc}") from exc


_asana_options_decorators = [
    click.option("--tenant-id", required=True, type=int),
    click.option("--workspace-gid", required=True, help="Asana workspace gid."),
    click.option("--project-gid", "project_gids", required=True, multiple=True, help="Asana project gid (repeatable)."),
    click.option("--target-workspace-id", type=int, help="Local workspace id; defaults to the tenant's primary."),
    click.option("--user-id", type=int, help="Local user recorded as the actor."),
    click.option("--options", "options_json", help="Import options as a JSON object."),
    click.option(
        "--options-file",
        type=click.Path(path_type=Path, exists=True, dir_okay=False),
        help="Import options JSON file.",
    ),
]


def _with_asana_options(func):
    for option in reversed(_asana_options_decorators):
        func = option(func)
    return func


def _target_workspace(tenant_id: int, target_workspace_id: Optional[int]) -> int:
    try:
        return Workspace.resolve_for_tenant(tenant_id, target_workspace_id)
    except TenantWorkspaceMissing as exc:
        raise click.ClickException(str(exc)) from exc


@importer_cli.group(name="asana")
@click.pass_context
def asana_group(ctx):
    """Validate or run Asana synchronization."""
    _require_adapter(ctx.ensure_object(ScriptInfo).load_app(), "asana")


@asana_group.command("validate")
@_with_asana_options
@with_appcontext
@click.pass_context
def asana_validate(ctx, tenant_id, workspace_gid, project_gids, target_workspace_id, user_id, options_json, options_file):
    """Count what an Asana sync would create, update, skip or fail."""
    app = ctx.ensure_object(ScriptInfo).load_app()
    options = _asana_options(options_json, options_file)
    try:
        pipeline = AsanaImportPipeline(
            tenant_id,
            _target_workspace(tenant_id, target_workspace_id),
            user_id,
            options,
            create_asana_client(app.config),
            logger=app.logger,
        )
        result = pipeline.validate(workspace_gid, list(project_gids))
    except AsanaClientError as exc:
        raise click.ClickException(str(exc)) from exc
    _emit(result.to_dict())


@asana_group.command("sync")
@_with_asana_options
@click.option(
    "--inline/--no-inline",
    default=False,
    help="Run inline within the CLI process instead of queueing via Celery.",
)
@with_appcontext
@click.pass_context
def asana_sync(
    ctx, tenant_id, workspace_gid, project_gids, target_workspace_id, user_id, options_json, options_file, inline
):
    """Create an import run and execute or enqueue the Asana sync."""
    app = ctx.ensure_object(ScriptInfo).load_app()
    options = _asana_options(options_json, options_file)
    workspace_id = _target_workspace(tenant_id, target_workspace_id)

    run = ImportRun(
        tenant_id=tenant_id,
        source="asana",
        adapter="asana",
        status=ImportRunStatus.PENDING,
        phase="Queued",
        triggered_by_user_id=user_id,
        counts_json={},
        ingest_params_json={
            "asanaWorkspaceGid": workspace_gid,
            "projectGids": list(project_gids),
            "targetWorkspaceId": workspace_id,
            "options": options.to_dict(),
        },
    )
    db.session.add(run)
    db.session.commit()
    run_id = run.id
    payload = {"tenantId": tenant_id, "asanaRunId": run_id, **run.ingest_params_json}

    celery_app = _resolve_celery(app)
    task = celery_app.tasks["importer.pipeline.asana_import"]
    if not inline:
        async_result = task.apply_async(kwargs={"payload": payload})
        app.logger.info(
            "Asana import run queued via CLI",
            extra={"importer_run_id": run_id, "importer_task_id": async_result.id},
        )
        _emit({"run_id": run_id, "task_id": async_result.id, "status": "queued"})
        return

    eager = task.apply(kwargs={"payload": payload}, throw=False)
    if eager.failed():
        # the task recorded the failure through its own session
        db.session.expire_all()
        run = db.session.get(ImportRun, run_id)
        reason = (run.error_summary if run is not None else None) or str(eager.result)
        raise click.ClickException(f"Asana import run {run_id} failed: {reason}")
    _emit(eager.result)


# Worker -------------------------------------------------------------------------


@importer_cli.group(name="worker")
@click.pass_context
def worker_group(ctx):
    """Manage the importer background worker."""
    app = ctx.ensure_object(ScriptInfo).load_app()
    state = app.extensions.get("importer", {})
    if not state.get("worker_enabled") and not app.config.get("IMPORTER_WORKER_ENABLED"):
        click.echo(
            "Warning: IMPORTER_WORKER_ENABLED is false. Commands will still run, "
            "but enable the flag to surface accurate health status.",
            err=True,
        )


@worker_group.command("run")
@click.option("--loglevel", default="info", show_default=True)
@click.option("--concurrency", type=int, help="Number of worker processes/threads.")
@click.option("--pool", type=str, help="Celery pool implementation (e.g., 'prefork', 'solo', 'threads').")
@click.option("--queues", default=DEFAULT_QUEUE_NAME, show_default=True, help="Comma-separated queue list to consume.")
@click.pass_context
def worker_run(ctx, loglevel: str, concurrency: Optional[int], pool: Optional[str], queues: str):
    """
    Start the Celery worker in the current process.
    """
    app = ctx.ensure_object(ScriptInfo).load_app()
    celery_app = _resolve_celery(app)
    app.extensions.setdefault("importer", {})["worker_enabled"] = True

    argv = ["worker", "--loglevel", loglevel, "-Q", queues]
    if concurrency:
        argv.extend(["--concurrency", str(concurrency)])
    if pool:
        argv.extend(["--pool", pool])

    click.echo(f"Starting importer worker (queues: {queues}, loglevel: {loglevel}{f', pool: {pool}' if pool else ''})")
    try:
        celery_app.worker_main(argv=argv)
    except KeyboardInterrupt:
        click.echo("Worker shutdown requested. Exiting...")


@worker_group.command("ping")
@click.option("--timeout", default=10.0, show_default=True, help="Seconds to wait for a response.")
@click.pass_context
def worker_ping(ctx, timeout: float):
    """
    Validate worker connectivity by executing the heartbeat task.
    """
    app = ctx.ensure_object(ScriptInfo).load_app()
    celery_app = _resolve_celery(app)
    task = celery_app.tasks.get("importer.healthcheck")
    if task is None:
        raise click.ClickException("Heartbeat task 'importer.healthcheck' is not registered.")

    result = task.apply_async()
    try:
        payload = result.get(timeout=timeout)
    except CeleryTimeoutError as exc:
        raise click.ClickException(f"Worker did not respond within {timeout}s") from exc
    click.echo(json.dumps(payload, indent=2))

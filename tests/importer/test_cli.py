import json
from pathlib import Path
from unittest.mock import Mock, patch

import pytest

from worksync_app.importer.adapters.asana import AsanaApiError
from worksync_app.models import Client, ImportRun, ImportRunStatus, Project, Task, db


def _write(tmp_path: Path, name: str, content: str) -> Path:
    path = tmp_path / name
    path.write_text(content, encoding="utf-8")
    return path


def _asana_args(tenant, *extra):
    return ["--tenant-id", str(tenant.id), "--workspace-gid", "ws-1", "--project-gid", "p-1", *extra]


def test_importer_group_lists_adapters(runner):
    result = runner.invoke(args=["importer"])
    assert result.exit_code == 0, result.output
    assert "- csv" in result.output
    assert "- asana" in result.output


def test_csv_validate_uses_suggested_mapping(runner, tenant, tmp_path):
    csv_path = _write(tmp_path, "clients.csv", "Company,Industry\nAcme,Retail\nGlobex,\n")

    result = runner.invoke(
        args=[
            "importer",
            "csv",
            "validate",
            "--tenant-id",
            str(tenant.id),
            "--entity-type",
            "clients",
            "--file",
            str(csv_path),
        ]
    )

    assert result.exit_code == 0, result.output
    payload = json.loads(result.output)
    assert payload["rowCount"] == 2
    assert payload["wouldCreate"] == 2
    assert {"sourceColumn": "Company", "targetField": "companyName"} in payload["mapping"]
    assert Client.query.count() == 0


def test_csv_run_with_mapping_file_writes_errors(runner, tenant, make_project, tmp_path):
    make_project("Website")
    csv_path = _write(tmp_path, "tasks.csv", "Task,Project\nLogo,Branding\nPalette,Website\n")
    mapping_path = _write(
        tmp_path,
        "mapping.yaml",
        "mapping:\n"
        "  - sourceColumn: Task\n"
        "    targetField: title\n"
        "  - sourceColumn: Project\n"
        "    targetField: projectName\n",
    )
    errors_path = tmp_path / "errors.csv"

    result = runner.invoke(
        args=[
            "importer",
            "csv",
            "run",
            "--tenant-id",
            str(tenant.id),
            "--entity-type",
            "tasks",
            "--file",
            str(csv_path),
            "--mapping",
            str(mapping_path),
            "--no-auto-create",
            "--errors-out",
            str(errors_path),
        ]
    )

    assert result.exit_code == 0, result.output
    payload = json.loads(result.output)
    assert payload["status"] == "completed"
    assert (payload["created"], payload["failed"]) == (1, 1)
    assert payload["errorsFile"] == str(errors_path)
    lines = errors_path.read_text(encoding="utf-8").splitlines()
    assert lines == ["row,primaryKey,errorCode,message", '2,Logo,PROJECT_NOT_FOUND,"Project ""Branding"" not found"']
    assert Task.query.filter_by(title="Palette").count() == 1


def test_csv_run_that_writes_nothing_exits_nonzero(runner, tenant, tmp_path):
    csv_path = _write(tmp_path, "users.csv", "Email,Role\n,manager\n")

    result = runner.invoke(
        args=["importer", "csv", "run", "--tenant-id", str(tenant.id), "--entity-type", "users", "--file", str(csv_path)]
    )

    assert result.exit_code != 0
    assert "Import failed: 1 row(s) failed and nothing was written." in result.output


def test_csv_run_rejects_bad_mapping_file(runner, tenant, tmp_path):
    csv_path = _write(tmp_path, "clients.csv", "Company\nAcme\n")
    mapping_path = _write(tmp_path, "mapping.json", '{"mapping": {"Company": "companyName"}}')

    result = runner.invoke(
        args=[
            "importer",
            "csv",
            "run",
            "--tenant-id",
            str(tenant.id),
            "--entity-type",
            "clients",
            "--file",
            str(csv_path),
            "--mapping",
            str(mapping_path),
        ]
    )

    assert result.exit_code != 0
    assert "mapping must be an array" in result.output
    assert Client.query.count() == 0


def test_asana_sync_queues_by_default(runner, tenant, workspace_id):
    async_result = Mock()
    async_result.id = "celery-task-123"
    task = Mock()
    task.apply_async.return_value = async_result
    celery_app = Mock()
    celery_app.tasks = {"importer.pipeline.asana_import": task}

    with patch("worksync_app.importer.cli._resolve_celery", return_value=celery_app):
        result = runner.invoke(args=["importer", "asana", "sync", *_asana_args(tenant, "--options", '{"autoCreateUsers": true}')])

    assert result.exit_code == 0, result.output
    payload = json.loads(result.output)
    assert payload["status"] == "queued"
    assert payload["task_id"] == "celery-task-123"

    run = db.session.get(ImportRun, payload["run_id"])
    assert run.status == ImportRunStatus.PENDING
    assert run.ingest_params_json["targetWorkspaceId"] == workspace_id
    queued = task.apply_async.call_args.kwargs["kwargs"]["payload"]
    assert queued["asanaRunId"] == run.id
    assert queued["options"]["autoCreateUsers"] is True


def test_asana_sync_inline_runs_the_import(runner, tenant, asana_client, monkeypatch):
    monkeypatch.setattr("worksync_app.importer.tasks.create_asana_client", lambda config: asana_client)

    result = runner.invoke(args=["importer", "asana", "sync", *_asana_args(tenant, "--inline")])

    assert result.exit_code == 0, result.output
    payload = json.loads(result.output)
    assert payload["status"] == "succeeded"
    assert payload["counts"]["tasks"]["create"] == 2
    assert Project.query.count() == 1


def test_asana_sync_inline_failure_is_reported(runner, tenant, asana_client, monkeypatch):
    def boom(workspace_gid):
        raise AsanaApiError(500, "boom")

    monkeypatch.setattr(asana_client, "get_workspace_users", boom)
    monkeypatch.setattr("worksync_app.importer.tasks.create_asana_client", lambda config: asana_client)

    result = runner.invoke(args=["importer", "asana", "sync", *_asana_args(tenant, "--inline")])

    assert result.exit_code != 0
    assert "failed: Asana API error 500: boom" in result.output
    db.session.expire_all()
    run = ImportRun.query.one()
    assert run.status == ImportRunStatus.FAILED
    assert run.error_summary == "Asana API error 500: boom"


def test_asana_validate_prints_counts(runner, tenant, asana_client, monkeypatch):
    monkeypatch.setattr("worksync_app.importer.cli.create_asana_client", lambda config: asana_client)

    result = runner.invoke(args=["importer", "asana", "validate", *_asana_args(tenant)])

    assert result.exit_code == 0, result.output
    payload = json.loads(result.output)
    assert payload["counts"]["sections"]["create"] == 2
    assert ImportRun.query.count() == 0


@pytest.mark.parametrize("options", ["{not json", '{"clientMappingStrategy": "random"}'])
def test_asana_commands_reject_bad_options(runner, tenant, options):
    result = runner.invoke(args=["importer", "asana", "validate", *_asana_args(tenant, "--options", options)])
    assert result.exit_code != 0
    assert "Invalid Asana options" in result.output


def test_worker_ping(runner):
    result = runner.invoke(args=["importer", "worker", "ping"])
    assert result.exit_code == 0, result.output
    payload = json.loads(result.output)
    assert payload["status"] == "ok"
    assert "worker_hostname" in payload

import json
from typing import Any, Dict

import pytest
from flask import Flask

from worksync_app.importer import IMPORTER_EXTENSION_KEY, get_celery_app, init_importer
from worksync_app.importer.celery_app import DEFAULT_QUEUE_NAME


def build_app(enabled=False, adapters=(), **overrides):
    instance_path_override = overrides.pop("INSTANCE_PATH", None)
    if instance_path_override:
        app = Flask(__name__, instance_path=instance_path_override)
    else:
        app = Flask(__name__)
    app.config.update(
        SECRET_KEY="test-secret",
        TESTING=True,
        IMPORTER_ENABLED=enabled,
        IMPORTER_ADAPTERS=tuple(adapters),
    )
    app.config.update(overrides)
    init_importer(app)
    return app


EAGER = {"task_always_eager": True, "task_eager_propagates": True}


def test_importer_disabled_registers_stub_cli(monkeypatch):
    called = {"flag": False}

    def record_call(*args, **kwargs):
        called["flag"] = True
        return ()

    monkeypatch.setattr("worksync_app.importer.resolve_adapters", record_call)

    app = build_app(enabled=False)

    assert called["flag"] is False, "resolve_adapters should not run when importer disabled"
    assert "importer" not in app.blueprints
    assert app.extensions[IMPORTER_EXTENSION_KEY]["active_adapters"] == ()

    runner = app.test_cli_runner()
    result = runner.invoke(args=["importer"])
    assert result.exit_code != 0
    assert "Importer commands are unavailable" in result.output


def test_importer_enabled_registers_blueprint_and_cli():
    app = build_app(enabled=True, adapters=("csv",), CELERY_CONFIG=EAGER)

    assert "importer" in app.blueprints
    assert "importer.importer_healthcheck" in app.view_functions

    client = app.test_client()
    response = client.get("/importer/health")
    assert response.status_code == 200
    payload = json.loads(response.data)
    assert payload["enabled"] is True
    assert payload["adapters"][0]["name"] == "csv"
    assert payload["jobs_in_memory"] == 0

    runner = app.test_cli_runner()
    result = runner.invoke(args=["importer"])
    assert result.exit_code == 0
    assert "- csv" in result.output

    importer_state = app.extensions[IMPORTER_EXTENSION_KEY]
    assert importer_state["enabled"] is True
    assert importer_state["active_adapters"][0].name == "csv"
    assert importer_state["job_store"] is not None


def test_importer_unknown_adapter_raises():
    with pytest.raises(ValueError, match="Unknown importer adapters configured: unknown"):
        build_app(enabled=True, adapters=("unknown",))


def test_asana_adapter_without_token_is_not_ready():
    app = build_app(enabled=True, adapters=("csv", "asana"), CELERY_CONFIG=EAGER)

    readiness = app.test_client().get("/importer/health").get_json()["readiness"]

    assert readiness["csv"]["status"] == "ready"
    assert readiness["asana"]["status"] == "missing-env"
    assert readiness["asana"]["missing_env_vars"] == ["IMPORTER_ASANA_ACCESS_TOKEN"]


def test_adapter_subcommands_require_the_adapter():
    app = build_app(enabled=True, adapters=("asana",), IMPORTER_ASANA_ACCESS_TOKEN="pat", CELERY_CONFIG=EAGER)

    result = app.test_cli_runner().invoke(args=["importer", "csv", "validate"])

    assert result.exit_code != 0
    assert "The 'csv' adapter is not enabled" in result.output


def test_celery_defaults_to_sqlite_transport(tmp_path):
    instance_dir = tmp_path / "instance"
    instance_dir.mkdir()
    sqlite_path = instance_dir / "custom.sqlite"

    app = build_app(
        enabled=True,
        adapters=("csv",),
        CELERY_SQLITE_PATH=str(sqlite_path),
        CELERY_CONFIG=EAGER,
        INSTANCE_PATH=str(instance_dir),
    )

    celery_app = get_celery_app(app)
    assert celery_app is not None
    assert celery_app.conf.broker_url.startswith("sqla+sqlite:///")
    assert sqlite_path.name in celery_app.conf.broker_url
    assert celery_app.conf.result_backend.startswith("db+sqlite:///")
    assert celery_app.conf.task_default_queue == DEFAULT_QUEUE_NAME
    assert celery_app.conf.worker_prefetch_multiplier == 1
    assert "importer.pipeline.asana_import" in celery_app.tasks
    assert "importer.pipeline.csv_import" in celery_app.tasks


def test_celery_config_accepts_json_string():
    app = build_app(
        enabled=True,
        adapters=("csv",),
        CELERY_BROKER_URL="memory://",
        CELERY_RESULT_BACKEND="cache+memory://",
        CELERY_CONFIG='{"task_always_eager": true}',
    )
    celery_app = get_celery_app(app)
    assert celery_app.conf.broker_url == "memory://"
    assert celery_app.conf.task_always_eager is True


def test_worker_run_invokes_celery(monkeypatch):
    app = build_app(enabled=True, adapters=("csv",), IMPORTER_WORKER_ENABLED=True, CELERY_CONFIG=EAGER)
    celery_app = get_celery_app(app)
    assert celery_app is not None

    calls: Dict[str, Any] = {}

    def fake_worker_main(argv=None):
        calls["argv"] = argv

    monkeypatch.setattr(celery_app, "worker_main", fake_worker_main)

    runner = app.test_cli_runner()
    result = runner.invoke(
        args=["importer", "worker", "run", "--loglevel", "debug", "--concurrency", "2", "--pool", "solo"]
    )

    assert result.exit_code == 0, result.output
    assert calls["argv"] == [
        "worker",
        "--loglevel",
        "debug",
        "-Q",
        "imports",
        "--concurrency",
        "2",
        "--pool",
        "solo",
    ]


def test_worker_health_endpoint_states():
    app = build_app(enabled=True, adapters=("csv",), CELERY_CONFIG=EAGER)
    disabled_payload = app.test_client().get("/importer/worker_health").get_json()
    assert disabled_payload["status"] == "disabled"
    assert disabled_payload["worker_enabled"] is False

    eager_app = build_app(enabled=True, adapters=("csv",), IMPORTER_WORKER_ENABLED=True, CELERY_CONFIG=EAGER)
    ok_resp = eager_app.test_client().get("/importer/worker_health")
    assert ok_resp.status_code == 200
    ok_payload = ok_resp.get_json()
    assert ok_payload["status"] == "ok"
    assert ok_payload["heartbeat"]["status"] == "ok"

"""
Importer feature package.

``init_importer`` mounts the blueprint, CLI group and Celery app when
``IMPORTER_ENABLED`` is set and records adapter readiness on
``app.extensions['importer']``.
"""

from __future__ import annotations

from typing import Any, Dict, Iterable, Mapping, Tuple

from flask import Flask

from worksync_app.utils.importer import get_importer_adapters, is_importer_enabled

from .adapters.asana import check_asana_adapter_readiness
from .celery_app import ensure_celery_app, get_celery_app
from .cli import get_disabled_importer_group, importer_cli
from .metrics import record_adapter_status
from .pipeline.job_store import ImportJobStore
from .registry import AdapterDescriptor, get_adapter_registry, resolve_adapters
from .views import importer_blueprint

IMPORTER_EXTENSION_KEY = "importer"

__all__ = [
    "IMPORTER_EXTENSION_KEY",
    "get_adapter_readiness",
    "get_celery_app",
    "get_job_store",
    "init_importer",
    "refresh_adapter_readiness",
]


def _ensure_extension_state(app: Flask) -> dict:
    return app.extensions.setdefault(
        IMPORTER_EXTENSION_KEY,
        {
            "enabled": False,
            "configured_adapters": (),
            "active_adapters": (),
            "worker_enabled": False,
            "celery_app": None,
            "job_store": None,
            "adapter_readiness": {},
        },
    )


def _compute_adapter_readiness(
    app: Flask,
    descriptors: Iterable[AdapterDescriptor],
    *,
    require_auth_ping: bool = False,
) -> Dict[str, Dict[str, Any]]:
    readiness: Dict[str, Dict[str, Any]] = {}
    for descriptor in descriptors:
        payload: Dict[str, Any] = {"name": descriptor.name, "title": descriptor.title}
        if descriptor.name == "asana":
            payload.update(check_asana_adapter_readiness(app.config, require_auth_ping=require_auth_ping).as_dict())
        else:
            payload.update({"status": "ready", "missing_env_vars": [], "auth_status": "skipped", "messages": []})
        record_adapter_status(descriptor.name, payload["status"] == "ready")
        readiness[descriptor.name] = payload
    return readiness


def _set_cli(app: Flask, enabled: bool) -> None:
    command_name = importer_cli.name
    if command_name in app.cli.commands:
        app.cli.commands.pop(command_name)
    app.cli.add_command(importer_cli if enabled else get_disabled_importer_group())


def init_importer(app: Flask) -> None:
    """
    Conditionally mount importer blueprint and CLI based on configuration.
    """
    enabled = is_importer_enabled(app)
    configured_adapters: Tuple[str, ...] = get_importer_adapters(app)

    state = _ensure_extension_state(app)
    state.update(
        {
            "enabled": enabled,
            "configured_adapters": configured_adapters,
            "worker_enabled": bool(app.config.get("IMPORTER_WORKER_ENABLED", False)),
        }
    )

    if not enabled:
        for name in get_adapter_registry():
            record_adapter_status(name, False)
        state["active_adapters"] = ()
        _set_cli(app, enabled=False)
        app.logger.info("Importer disabled via IMPORTER_ENABLED flag; skipping registration.")
        return

    state["active_adapters"] = tuple(resolve_adapters(configured_adapters, get_adapter_registry()))
    if state.get("job_store") is None:
        state["job_store"] = ImportJobStore(
            ttl_seconds=int(app.config.get("IMPORTER_JOB_TTL_SECONDS", 2 * 60 * 60)),
            max_jobs_per_tenant=int(app.config.get("IMPORTER_MAX_JOBS_PER_TENANT", 50)),
        )
    ensure_celery_app(app, state)

    readiness_map = _compute_adapter_readiness(app, state["active_adapters"])
    state["adapter_readiness"] = readiness_map
    for name, payload in readiness_map.items():
        if payload.get("status") != "ready":
            messages = list(payload.get("messages") or ())
            app.logger.warning(
                "Importer adapter '%s' not ready (status=%s). %s",
                name,
                payload.get("status"),
                "; ".join(messages) or "No additional context provided.",
                extra={
                    "importer_adapter": name,
                    "importer_adapter_status": payload.get("status"),
                    "importer_adapter_missing_env": payload.get("missing_env_vars"),
                },
            )

    if importer_blueprint.name not in app.blueprints and not getattr(app, "_got_first_request", False):
        app.register_blueprint(importer_blueprint)
    elif importer_blueprint.name not in app.blueprints:
        app.logger.warning(
            "Importer blueprint registration skipped because the app has already handled its first request."
        )
    _set_cli(app, enabled=True)

    adapter_names = ", ".join(adapter.name for adapter in state["active_adapters"]) or "none"
    app.logger.info("Importer enabled with adapters: %s", adapter_names)


def get_job_store(app: Flask) -> ImportJobStore | None:
    return _ensure_extension_state(app).get("job_store")


def get_adapter_readiness(app: Flask) -> Mapping[str, Dict[str, Any]]:
    return dict(_ensure_extension_state(app).get("adapter_readiness", {}))


def refresh_adapter_readiness(app: Flask, *, require_auth_ping: bool = False) -> Mapping[str, Dict[str, Any]]:
    """
    Recompute adapter readiness, optionally pinging Asana, and cache the result.
    """
    state = _ensure_extension_state(app)
    readiness_map = _compute_adapter_readiness(app, state.get("active_adapters", ()), require_auth_ping=require_auth_ping)
    state["adapter_readiness"] = readiness_map
    return dict(readiness_map)

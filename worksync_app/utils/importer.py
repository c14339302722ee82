"""
Importer feature-flag helpers.
"""

from __future__ import annotations

from typing import Iterable, Tuple

from flask import current_app


def _get_config(app=None):
    return app.config if app is not None else current_app.config


def is_importer_enabled(app=None) -> bool:
    return bool(_get_config(app).get("IMPORTER_ENABLED", False))


def get_importer_adapters(app=None) -> Tuple[str, ...]:
    """Return the configured adapter names, lower-cased and in configuration order."""
    adapters: Iterable[str] | str = _get_config(app).get("IMPORTER_ADAPTERS", ())
    if isinstance(adapters, str):
        adapters = adapters.split(",")
    return tuple(item.strip().lower() for item in adapters if item and item.strip())


def is_adapter_enabled(name: str, app=None) -> bool:
    return is_importer_enabled(app) and name in get_importer_adapters(app)

"""Asana adapter readiness checks and client construction."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Literal, Mapping, Tuple

from .client import (
    DEFAULT_BASE_URL,
    DEFAULT_MAX_RETRIES,
    DEFAULT_REQUEST_INTERVAL_MS,
    AsanaApiError,
    AsanaClient,
    AsanaClientError,
    AsanaNotConfigured,
    AsanaRetryExhausted,
    ConnectionCheck,
    RequestThrottle,
    shared_throttle,
)

REQUIRED_CONFIG_KEYS: Tuple[str, ...] = ("IMPORTER_ASANA_ACCESS_TOKEN",)


@dataclass(frozen=True)
class AsanaAdapterReadiness:
    missing_config: Tuple[str, ...]
    auth_status: Literal["skipped", "ok", "failed"]
    auth_error: str | None = None

    @property
    def status(self) -> str:
        if self.missing_config:
            return "missing-env"
        if self.auth_status == "failed":
            return "auth-error"
        return "ready"

    def messages(self) -> Tuple[str, ...]:
        messages: list[str] = []
        if self.missing_config:
            messages.append(f"Missing required Asana settings: {', '.join(self.missing_config)}")
        if self.auth_status == "failed" and self.auth_error:
            messages.append(self.auth_error)
        return tuple(messages)

    def as_dict(self) -> dict[str, object]:
        payload: dict[str, object] = {
            "status": self.status,
            "missing_env_vars": list(self.missing_config),
            "auth_status": self.auth_status,
            "messages": list(self.messages()),
        }
        if self.auth_error:
            payload["auth_error"] = self.auth_error
        return payload


def create_asana_client(config: Mapping[str, object], **overrides) -> AsanaClient:
    """
    Build an ``AsanaClient`` from importer configuration.

    Raises ``AsanaNotConfigured`` when no access token is configured.
    """

    token = overrides.pop("access_token", None) or config.get("IMPORTER_ASANA_ACCESS_TOKEN")
    if not token:
        raise AsanaNotConfigured("IMPORTER_ASANA_ACCESS_TOKEN is not configured.")
    interval_ms = config.get("IMPORTER_ASANA_REQUEST_INTERVAL_MS")
    if interval_ms is None:
        interval_ms = DEFAULT_REQUEST_INTERVAL_MS
    overrides.setdefault("throttle", shared_throttle(int(interval_ms)))
    overrides.setdefault("base_url", config.get("IMPORTER_ASANA_BASE_URL") or DEFAULT_BASE_URL)
    overrides.setdefault("max_retries", int(config.get("IMPORTER_ASANA_MAX_RETRIES", DEFAULT_MAX_RETRIES)))
    return AsanaClient(str(token), **overrides)


def check_asana_adapter_readiness(
    config: Mapping[str, object],
    *,
    require_auth_ping: bool = False,
    client: AsanaClient | None = None,
) -> AsanaAdapterReadiness:
    """Non-raising readiness check; optionally pings ``/users/me``."""

    missing = tuple(key for key in REQUIRED_CONFIG_KEYS if not config.get(key))
    if missing or not require_auth_ping:
        return AsanaAdapterReadiness(missing_config=missing, auth_status="skipped")

    check = (client or create_asana_client(config)).test_connection()
    if check.ok:
        return AsanaAdapterReadiness(missing_config=(), auth_status="ok")
    return AsanaAdapterReadiness(
        missing_config=(),
        auth_status="failed",
        auth_error=f"Asana authentication failed: {check.error}",
    )


__all__ = [
    "AsanaAdapterReadiness",
    "AsanaApiError",
    "AsanaClient",
    "AsanaClientError",
    "AsanaNotConfigured",
    "AsanaRetryExhausted",
    "ConnectionCheck",
    "RequestThrottle",
    "check_asana_adapter_readiness",
    "create_asana_client",
    "shared_throttle",
]

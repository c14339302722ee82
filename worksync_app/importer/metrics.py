"""Prometheus metrics helpers for the importer."""

from __future__ import annotations

from typing import Literal

from prometheus_client import Counter, Gauge, Histogram

_adapter_enabled_gauge = Gauge(
    "importer_adapter_enabled",
    "Whether an importer adapter is enabled (1) or disabled (0).",
    ["adapter"],
)
_rows_counter = Counter(
    "importer_rows_processed_total",
    "Tabular import rows processed by entity type and outcome.",
    ["entity_type", "outcome"],
)
_job_duration = Histogram(
    "importer_job_duration_seconds",
    "Duration of tabular import executions in seconds.",
    buckets=(0.5, 1, 2, 5, 10, 30, 60, 120, 300, 600),
)
_asana_requests_counter = Counter(
    "importer_asana_requests_total",
    "Outbound Asana API requests by HTTP status class.",
    ["status_class"],
)
_asana_retries_counter = Counter(
    "importer_asana_retries_total",
    "Asana API request retries by reason.",
    ["reason"],
)
_asana_runs_counter = Counter(
    "importer_asana_runs_total",
    "Asana import runs by final status.",
    ["status"],
)


def record_adapter_status(adapter: str, enabled: bool) -> None:
    _adapter_enabled_gauge.labels(adapter=adapter).set(1 if enabled else 0)


def record_rows(entity_type: str, outcome: Literal["created", "updated", "skipped", "failed"], count: int) -> None:
    """Increment the row counter for a finished tabular import."""

    if count:
        _rows_counter.labels(entity_type=entity_type, outcome=outcome).inc(count)


def record_job_duration(duration_seconds: float) -> None:
    _job_duration.observe(duration_seconds)


def record_asana_request(status_code: int | None) -> None:
    status_class = f"{status_code // 100}xx" if status_code else "error"
    _asana_requests_counter.labels(status_class=status_class).inc()


def record_asana_retry(reason: Literal["rate_limited", "server_error"]) -> None:
    _asana_retries_counter.labels(reason=reason).inc()


def record_asana_run(status: str) -> None:
    _asana_runs_counter.labels(status=status).inc()

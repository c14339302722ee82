"""
Throttled, retrying client for the Asana REST API.

All requests in the process share one minimum-interval throttle. HTTP 429 is
retried after ``Retry-After`` (or exponential backoff), 5xx responses are
retried with the same backoff, and every other failure raises immediately.
"""

from __future__ import annotations

import logging
import threading
import time
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Mapping

import requests

from worksync_app.importer.metrics import record_asana_request, record_asana_retry

DEFAULT_BASE_URL = "https://app.asana.com/api/1.0"
DEFAULT_PAGE_SIZE = 100
DEFAULT_MAX_RETRIES = 3
DEFAULT_REQUEST_INTERVAL_MS = 200
BASE_BACKOFF_MS = 1000
REQUEST_TIMEOUT_SECONDS = 30

PROJECT_OPT_FIELDS = (
    "gid,name,notes,color,archived,created_at,modified_at,due_date,start_on,current_status,team,team.name"
)
TASK_OPT_FIELDS = (
    "gid,name,notes,completed,completed_at,created_at,modified_at,due_on,start_on,"
    "assignee,assignee.name,assignee.email,memberships.project,memberships.section,"
    "parent,parent.name,num_subtasks,custom_fields,custom_fields.name,"
    "custom_fields.display_value,custom_fields.text_value"
)
SUBTASK_OPT_FIELDS = (
    "gid,name,notes,completed,completed_at,created_at,modified_at,due_on,start_on,"
    "assignee,assignee.name,assignee.email,parent,parent.name"
)


class AsanaClientError(RuntimeError):
    """Base error for Asana client failures."""


class AsanaNotConfigured(AsanaClientError):
    """Raised when no access token is available."""


class AsanaApiError(AsanaClientError):
    """Raised for non-retryable API responses."""

    def __init__(self, status_code: int, body: str):
        super().__init__(f"Asana API error {status_code}: {body}")
        self.status_code = status_code
        self.body = body


class AsanaRetryExhausted(AsanaClientError):
    """Raised when rate limiting persists past the retry budget."""


class RequestThrottle:
    """Enforce a minimum interval between consecutive requests."""

    def __init__(
        self,
        interval_ms: int = DEFAULT_REQUEST_INTERVAL_MS,
        *,
        clock: Callable[[], float] = time.monotonic,
        sleep_fn: Callable[[float], None] = time.sleep,
    ):
        self.interval_ms = interval_ms
        self.clock = clock
        self.sleep = sleep_fn
        self._last_request: float | None = None
        self._lock = threading.Lock()

    def wait(self) -> None:
        with self._lock:
            now = self.clock()
            if self._last_request is not None:
                remaining = self.interval_ms / 1000 - (now - self._last_request)
                if remaining > 0:
                    self.sleep(remaining)
            self._last_request = self.clock()


_shared_throttle = RequestThrottle()


def shared_throttle(interval_ms: int | None = None) -> RequestThrottle:
    """Return the process-wide throttle, optionally updating its interval."""

    if interval_ms is not None:
        _shared_throttle.interval_ms = interval_ms
    return _shared_throttle


@dataclass(frozen=True)
class ConnectionCheck:
    ok: bool
    user: Mapping[str, Any] | None = None
    error: str | None = None

    def as_dict(self) -> dict:
        payload: dict = {"ok": self.ok}
        if self.user is not None:
            payload["user"] = dict(self.user)
        if self.error:
            payload["error"] = self.error
        return payload


class AsanaClient:
    """Read-only access to the Asana objects the import pipeline consumes."""

    def __init__(
        self,
        access_token: str,
        *,
        base_url: str = DEFAULT_BASE_URL,
        session: requests.Session | None = None,
        throttle: RequestThrottle | None = None,
        max_retries: int = DEFAULT_MAX_RETRIES,
        sleep_fn: Callable[[float], None] = time.sleep,
        page_size: int = DEFAULT_PAGE_SIZE,
        logger: logging.Logger | None = None,
    ) -> None:
        if not access_token:
            raise AsanaNotConfigured("Asana is not connected. Provide a personal access token first.")
        self.base_url = base_url.rstrip("/")
        self.session = session or requests.Session()
        self.throttle = throttle or shared_throttle()
        self.max_retries = max(0, int(max_retries))
        self.sleep = sleep_fn
        self.page_size = page_size
        self.logger = logger or logging.getLogger(__name__)
        self._headers = {"Authorization": f"Bearer {access_token}", "Accept": "application/json"}

    # Transport ------------------------------------------------------------------

    def _backoff_seconds(self, attempt: int) -> float:
        return BASE_BACKOFF_MS * (2**attempt) / 1000

    def _retry_after_seconds(self, response, attempt: int) -> float:
        retry_after = response.headers.get("Retry-After") if response.headers else None
        if retry_after:
            try:
                return int(retry_after)
            except ValueError:
                pass
        return self._backoff_seconds(attempt)

    def request(self, path: str, params: Mapping[str, Any] | None = None) -> Dict[str, Any]:
        """GET ``path`` and return the decoded JSON envelope."""

        url = f"{self.base_url}{path}"
        for attempt in range(self.max_retries + 1):
            self.throttle.wait()
            response = self.session.get(
                url,
                headers=self._headers,
                params=dict(params or {}),
                timeout=REQUEST_TIMEOUT_SECONDS,
            )
            record_asana_request(response.status_code)

            if 200 <= response.status_code < 300:
                return response.json()

            if response.status_code == 429:
                if attempt == self.max_retries:
                    break
                delay = self._retry_after_seconds(response, attempt)
                self.logger.warning(
                    "Asana rate limited, retrying in %.1fs (attempt %s/%s)",
                    delay,
                    attempt + 1,
                    self.max_retries,
                    extra={"asana_path": path, "asana_status": 429},
                )
                record_asana_retry("rate_limited")
                self.sleep(delay)
                continue

            if response.status_code >= 500 and attempt < self.max_retries:
                delay = self._backoff_seconds(attempt)
                self.logger.warning(
                    "Asana server error %s, retrying in %.1fs",
                    response.status_code,
                    delay,
                    extra={"asana_path": path, "asana_status": response.status_code},
                )
                record_asana_retry("server_error")
                self.sleep(delay)
                continue

            raise AsanaApiError(response.status_code, response.text)

        raise AsanaRetryExhausted(f"Asana API: max retries exceeded for {path}")

    def paginate(self, path: str, params: Mapping[str, Any] | None = None) -> List[Dict[str, Any]]:
        """Collect every page of ``path`` following ``next_page.offset``."""

        merged: Dict[str, Any] = {**(params or {}), "limit": str(self.page_size)}
        results: List[Dict[str, Any]] = []
        while True:
            payload = self.request(path, merged)
            results.extend(payload.get("data") or [])
            next_page = payload.get("next_page") or {}
            offset = next_page.get("offset")
            if not offset:
                break
            merged["offset"] = offset
        return results

    # Resources ------------------------------------------------------------------

    def test_connection(self) -> ConnectionCheck:
        try:
            payload = self.request("/users/me", {"opt_fields": "gid,name,email"})
        except AsanaClientError as exc:
            return ConnectionCheck(ok=False, error=str(exc))
        return ConnectionCheck(ok=True, user=payload.get("data") or {})

    def get_workspaces(self) -> List[Dict[str, Any]]:
        return self.paginate("/workspaces", {"opt_fields": "gid,name"})

    def get_projects(self, workspace_gid: str, *, include_archived: bool = False) -> List[Dict[str, Any]]:
        params = {"workspace": workspace_gid, "opt_fields": PROJECT_OPT_FIELDS}
        if not include_archived:
            params["archived"] = "false"
        return self.paginate("/projects", params)

    def get_sections(self, project_gid: str) -> List[Dict[str, Any]]:
        return self.paginate(f"/projects/{project_gid}/sections", {"opt_fields": "gid,name,created_at"})

    def get_tasks_for_section(self, section_gid: str) -> List[Dict[str, Any]]:
        return self.paginate(f"/sections/{section_gid}/tasks", {"opt_fields": TASK_OPT_FIELDS})

    def get_tasks_for_project(self, project_gid: str) -> List[Dict[str, Any]]:
        return self.paginate(f"/projects/{project_gid}/tasks", {"opt_fields": TASK_OPT_FIELDS})

    def get_subtasks(self, task_gid: str) -> List[Dict[str, Any]]:
        return self.paginate(f"/tasks/{task_gid}/subtasks", {"opt_fields": SUBTASK_OPT_FIELDS})

    def get_workspace_users(self, workspace_gid: str) -> List[Dict[str, Any]]:
        return self.paginate(f"/workspaces/{workspace_gid}/users", {"opt_fields": "gid,name,email"})

from __future__ import annotations

from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List

import pytest

from worksync_app.importer.pipeline.job_store import ImportJobStore


class FakeClock:
    def __init__(self, start: datetime | None = None):
        self.now = start or datetime(2026, 1, 1, 9, 0, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now = self.now + timedelta(**kwargs)


class FakeAsanaClient:
    """In-memory stand-in exposing the reads the pipeline performs."""

    def __init__(self):
        self.users: List[Dict[str, Any]] = []
        self.projects: List[Dict[str, Any]] = []
        self.sections: Dict[str, List[Dict[str, Any]]] = {}
        self.tasks: Dict[str, List[Dict[str, Any]]] = {}
        self.subtasks: Dict[str, List[Dict[str, Any]]] = {}
        self.calls: List[tuple] = []

    def get_workspaces(self):
        self.calls.append(("workspaces",))
        return [{"gid": "ws-1", "name": "Agency"}]

    def get_workspace_users(self, workspace_gid):
        self.calls.append(("users", workspace_gid))
        return [dict(user) for user in self.users]

    def get_projects(self, workspace_gid, *, include_archived=False):
        self.calls.append(("projects", workspace_gid, include_archived))
        return [dict(project) for project in self.projects]

    def get_sections(self, project_gid):
        self.calls.append(("sections", project_gid))
        return [dict(section) for section in self.sections.get(project_gid, [])]

    def get_tasks_for_project(self, project_gid):
        self.calls.append(("tasks", project_gid))
        return [dict(task) for task in self.tasks.get(project_gid, [])]

    def get_subtasks(self, task_gid):
        self.calls.append(("subtasks", task_gid))
        return [dict(task) for task in self.subtasks.get(task_gid, [])]


@pytest.fixture
def fake_clock():
    return FakeClock()


@pytest.fixture
def job_store(fake_clock):
    return ImportJobStore(ttl_seconds=2 * 60 * 60, max_jobs_per_tenant=3, clock=fake_clock)


@pytest.fixture
def asana_client():
    """One project with two sections, two tasks and one subtask."""
    client = FakeAsanaClient()
    client.users = [
        {"gid": "u-1", "name": "Ada Lovelace", "email": "ada@acme.test"},
        {"gid": "u-2", "name": "Grace Hopper", "email": "grace@elsewhere.test"},
    ]
    client.projects = [
        {"gid": "p-1", "name": "Website Redesign", "notes": "Q1 refresh", "archived": False, "team": {"name": "Design"}},
    ]
    client.sections = {
        "p-1": [{"gid": "s-1", "name": "To do"}, {"gid": "s-2", "name": "Done"}],
    }
    client.tasks = {
        "p-1": [
            {
                "gid": "t-1",
                "name": "Wireframes",
                "completed": False,
                "due_on": "2026-02-01",
                "assignee": {"gid": "u-1"},
                "memberships": [{"project": {"gid": "p-1"}, "section": {"gid": "s-1"}}],
                "num_subtasks": 1,
            },
            {
                "gid": "t-2",
                "name": "Kickoff",
                "completed": True,
                "memberships": [{"project": {"gid": "p-1"}, "section": {"gid": "s-2"}}],
                "num_subtasks": 0,
            },
        ],
    }
    client.subtasks = {
        "t-1": [{"gid": "st-1", "name": "Mobile layout", "completed": False, "assignee": {"gid": "u-1"}}],
    }
    return client

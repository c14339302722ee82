"""
Per-call natural-key indexes over a tenant's existing rows.

Lookups are rebuilt for every validate/execute call and hold plain ids, never
ORM instances, so a rolled-back row cannot leave a stale object behind.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Dict

from worksync_app.models import Client, Project, Task, User, Workspace, db


def task_key(project_id: int | None, title: str) -> str:
    return f"{project_id or 'none'}::{title.strip().lower()}"


@dataclass
class TenantLookups:
    tenant_id: int
    workspace_id: int
    users_by_email: Dict[str, int] = field(default_factory=dict)
    clients_by_name: Dict[str, int] = field(default_factory=dict)
    projects_by_name: Dict[str, int] = field(default_factory=dict)
    tasks_by_key: Dict[str, int] = field(default_factory=dict)

    def user_id(self, email: str | None) -> int | None:
        return self.users_by_email.get((email or "").strip().lower())

    def client_id(self, name: str | None) -> int | None:
        return self.clients_by_name.get((name or "").strip().lower())

    def project_id(self, name: str | None) -> int | None:
        return self.projects_by_name.get((name or "").strip().lower())

    def task_id(self, project_id: int | None, title: str) -> int | None:
        return self.tasks_by_key.get(task_key(project_id, title))

    def remember_user(self, email: str, user_id: int) -> None:
        self.users_by_email[email.strip().lower()] = user_id

    def remember_client(self, name: str, client_id: int) -> None:
        self.clients_by_name[name.strip().lower()] = client_id

    def remember_project(self, name: str, project_id: int) -> None:
        self.projects_by_name[name.strip().lower()] = project_id

    def remember_task(self, project_id: int | None, title: str, task_id: int) -> None:
        self.tasks_by_key[task_key(project_id, title)] = task_id


def build_lookups(tenant_id: int, *, session=None) -> TenantLookups:
    """
    Load the tenant's users, clients, projects and tasks into natural-key maps.

    Raises ``TenantWorkspaceMissing`` when the tenant has no workspace, since
    created rows must be attached to one.
    """

    session = session or db.session
    lookups = TenantLookups(
        tenant_id=tenant_id,
        workspace_id=Workspace.primary_id_for_tenant(tenant_id, session=session),
    )

    for user_id, email in session.query(User.id, User.email).filter(User.tenant_id == tenant_id):
        lookups.remember_user(email, user_id)
    for client_id, company_name in session.query(Client.id, Client.company_name).filter(Client.tenant_id == tenant_id):
        lookups.remember_client(company_name, client_id)
    for project_id, name in session.query(Project.id, Project.name).filter(Project.tenant_id == tenant_id):
        lookups.remember_project(name, project_id)
    for task_id, project_id, title in session.query(Task.id, Task.project_id, Task.title).filter(
        Task.tenant_id == tenant_id
    ):
        lookups.remember_task(project_id, title, task_id)

    return lookups

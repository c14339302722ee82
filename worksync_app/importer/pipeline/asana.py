"""
Asana → local synchronization pipeline.

Both phases visit entities in dependency order: users, then for each selected
project its client, the project, sections, top-level tasks and subtasks.
Every external record is resolved through ``integration_entity_map`` first so
re-running a sync updates rows instead of duplicating them.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Iterable, List, Mapping, Sequence

from sqlalchemy.exc import IntegrityError

from worksync_app.importer.adapters.asana import AsanaClient, AsanaClientError
from worksync_app.importer.mapping import parse_datetime
from worksync_app.models import Client, Project, Section, Subtask, Task, TaskAssignee, User, db

from .entity_map import lookup_local_id, upsert_mapping

PROVIDER = "asana"
ENTITY_KINDS = ("users", "clients", "projects", "sections", "tasks", "subtasks")
CLIENT_MAPPING_STRATEGIES = ("single", "team", "per_project")
FOREIGN_CLIENT_MESSAGE = "Configured client not found for this tenant"

PhaseCallback = Callable[[str], None]
CancelCheck = Callable[[], bool]


class AsanaImportCancelled(RuntimeError):
    """Raised at a checkpoint when the run has been cancelled."""


class AsanaOptionsError(ValueError):
    """Raised when import options are malformed."""


@dataclass(frozen=True)
class AsanaImportOptions:
    auto_create_clients: bool = True
    auto_create_projects: bool = True
    auto_create_tasks: bool = True
    auto_create_users: bool = False
    fallback_unassigned: bool = True
    client_mapping_strategy: str = "single"
    single_client_id: int | None = None
    single_client_name: str | None = None
    project_client_map: Mapping[str, str] = field(default_factory=dict, hash=False)

    @classmethod
    def from_dict(cls, payload: Mapping[str, Any] | None) -> "AsanaImportOptions":
        payload = payload or {}

        def _pick(camel: str, snake: str, default: Any) -> Any:
            if camel in payload:
                return payload[camel]
            return payload.get(snake, default)

        strategy = str(_pick("clientMappingStrategy", "client_mapping_strategy", "single"))
        if strategy not in CLIENT_MAPPING_STRATEGIES:
            raise AsanaOptionsError(
                f"Invalid client mapping strategy {strategy!r}. Must be one of: {', '.join(CLIENT_MAPPING_STRATEGIES)}"
            )
        single_client_id = _pick("singleClientId", "single_client_id", None)
        project_client_map = _pick("projectClientMap", "project_client_map", None) or {}
        if not isinstance(project_client_map, Mapping):
            raise AsanaOptionsError("projectClientMap must be an object of project gid to client name.")
        return cls(
            auto_create_clients=bool(_pick("autoCreateClients", "auto_create_clients", True)),
            auto_create_projects=bool(_pick("autoCreateProjects", "auto_create_projects", True)),
            auto_create_tasks=bool(_pick("autoCreateTasks", "auto_create_tasks", True)),
            auto_create_users=bool(_pick("autoCreateUsers", "auto_create_users", False)),
            fallback_unassigned=bool(_pick("fallbackUnassigned", "fallback_unassigned", True)),
            client_mapping_strategy=strategy,
            single_client_id=int(single_client_id) if single_client_id not in (None, "") else None,
            single_client_name=_pick("singleClientName", "single_client_name", None) or None,
            project_client_map={str(k): str(v) for k, v in project_client_map.items()},
        )

    def to_dict(self) -> dict:
        return {
            "autoCreateClients": self.auto_create_clients,
            "autoCreateProjects": self.auto_create_projects,
            "autoCreateTasks": self.auto_create_tasks,
            "autoCreateUsers": self.auto_create_users,
            "fallbackUnassigned": self.fallback_unassigned,
            "clientMappingStrategy": self.client_mapping_strategy,
            "singleClientId": self.single_client_id,
            "singleClientName": self.single_client_name,
            "projectClientMap": dict(self.project_client_map),
        }


@dataclass
class EntityCounts:
    create: int = 0
    update: int = 0
    skip: int = 0
    error: int = 0

    def to_dict(self) -> dict:
        return {"create": self.create, "update": self.update, "skip": self.skip, "error": self.error}


@dataclass
class AsanaImportCounts:
    users: EntityCounts = field(default_factory=EntityCounts)
    clients: EntityCounts = field(default_factory=EntityCounts)
    projects: EntityCounts = field(default_factory=EntityCounts)
    sections: EntityCounts = field(default_factory=EntityCounts)
    tasks: EntityCounts = field(default_factory=EntityCounts)
    subtasks: EntityCounts = field(default_factory=EntityCounts)

    def bump(self, kind: str, outcome: str) -> None:
        counts = getattr(self, kind)
        setattr(counts, outcome, getattr(counts, outcome) + 1)

    def to_dict(self) -> dict:
        return {kind: getattr(self, kind).to_dict() for kind in ENTITY_KINDS}


@dataclass(frozen=True)
class AsanaImportError:
    entity_type: str
    asana_gid: str
    name: str
    message: str

    def to_dict(self) -> dict:
        return {"entityType": self.entity_type, "asanaGid": self.asana_gid, "name": self.name, "message": self.message}


@dataclass
class AsanaExecutionResult:
    counts: AsanaImportCounts = field(default_factory=AsanaImportCounts)
    errors: List[AsanaImportError] = field(default_factory=list)

    @property
    def has_errors(self) -> bool:
        return bool(self.errors)

    def to_dict(self) -> dict:
        return {"counts": self.counts.to_dict(), "errors": [error.to_dict() for error in self.errors]}


@dataclass
class AsanaValidationResult(AsanaExecutionResult):
    auto_create_clients: List[str] = field(default_factory=list)
    auto_create_users: List[str] = field(default_factory=list)

    def to_dict(self) -> dict:
        payload = super().to_dict()
        payload["autoCreatePreview"] = {
            "clients": list(self.auto_create_clients),
            "users": list(self.auto_create_users),
        }
        return payload


def _status_for(completed: bool) -> str:
    return "done" if completed else "todo"


def _split_name(full_name: str | None) -> tuple[str | None, str | None]:
    parts = (full_name or "").split()
    if not parts:
        return None, None
    return parts[0], " ".join(parts[1:]) or None


class AsanaImportPipeline:
    """
    Validate or execute an Asana import for one tenant.

    ``update_phase`` receives coarse progress text and ``is_cancelled`` is
    polled between entity batches; a positive poll raises
    ``AsanaImportCancelled``.
    """

    def __init__(
        self,
        tenant_id: int,
        workspace_id: int,
        actor_user_id: int | None,
        options: AsanaImportOptions,
        client: AsanaClient,
        *,
        session=None,
        update_phase: PhaseCallback | None = None,
        is_cancelled: CancelCheck | None = None,
        logger: logging.Logger | None = None,
    ):
        self.tenant_id = tenant_id
        self.workspace_id = workspace_id
        self.actor_user_id = actor_user_id
        self.options = options
        self.client = client
        self.session = session or db.session
        self._update_phase = update_phase
        self._is_cancelled = is_cancelled
        self.logger = logger or logging.getLogger(__name__)

        self._user_email_to_id: Dict[str, int] = {}
        self._asana_user_to_local: Dict[str, int] = {}
        self._client_ids_by_name: Dict[str, int | None] = {}
        self._projects_cache: Dict[str, Dict[str, Any]] | None = None

    # Shared helpers -------------------------------------------------------------

    def _phase(self, text: str) -> None:
        if self._update_phase is not None:
            self._update_phase(text)

    def _checkpoint(self) -> None:
        if self._is_cancelled is not None and self._is_cancelled():
            raise AsanaImportCancelled("Asana import cancelled")

    def _lookup(self, entity_type: str, provider_entity_id: str) -> int | None:
        return lookup_local_id(
            self.session,
            tenant_id=self.tenant_id,
            provider=PROVIDER,
            entity_type=entity_type,
            provider_entity_id=provider_entity_id,
        )

    def _map(self, entity_type: str, provider_entity_id: str, local_id: int, **metadata) -> None:
        upsert_mapping(
            self.session,
            tenant_id=self.tenant_id,
            provider=PROVIDER,
            entity_type=entity_type,
            provider_entity_id=provider_entity_id,
            local_entity_id=local_id,
            metadata=metadata or None,
        )

    def _record_error(self, result: AsanaExecutionResult, kind: str, gid: str, name: str, message: str) -> None:
        result.counts.bump(kind, "error")
        result.errors.append(AsanaImportError(entity_type=kind.rstrip("s"), asana_gid=gid, name=name, message=message))

    def _guarded(
        self,
        result: AsanaExecutionResult,
        kind: str,
        gid: str,
        name: str,
        write: Callable[[], str | None],
    ) -> bool:
        """
        Run ``write`` in its own transaction and count its outcome.

        API errors abort the run; any other failure rolls back this entity only
        and is recorded against it.
        """
        try:
            outcome = write()
            self.session.commit()
        except AsanaClientError:
            self.session.rollback()
            raise
        except Exception as exc:
            self.session.rollback()
            self.logger.warning("Asana %s %s failed: %s", kind, gid, exc, extra={"asana_gid": gid})
            self._record_error(result, kind, gid, name, str(exc))
            return False
        if outcome:
            result.counts.bump(kind, outcome)
        return True

    def _load_local_users(self) -> None:
        for user_id, email in self.session.query(User.id, User.email).filter(User.tenant_id == self.tenant_id):
            if email:
                self._user_email_to_id[email.lower()] = user_id

    def _projects_by_gid(self, asana_workspace_gid: str) -> Dict[str, Dict[str, Any]]:
        if self._projects_cache is None:
            projects = self.client.get_projects(asana_workspace_gid, include_archived=True)
            self._projects_cache = {project["gid"]: project for project in projects}
        return self._projects_cache

    def resolve_client_name(self, asana_project: Mapping[str, Any]) -> str | None:
        strategy = self.options.client_mapping_strategy
        if strategy == "single":
            return self.options.single_client_name or None
        if strategy == "team":
            team = asana_project.get("team") or {}
            return team.get("name") or None
        if strategy == "per_project":
            return self.options.project_client_map.get(str(asana_project.get("gid"))) or None
        return None

    def _find_client_by_name(self, name: str) -> int | None:
        row = (
            self.session.query(Client.id)
            .filter(Client.tenant_id == self.tenant_id, Client.company_name == name)
            .first()
        )
        return row[0] if row else None

    def _configured_client_id(self) -> int | None:
        """``single_client_id`` when the single strategy applies and the client is this tenant's."""
        if self.options.client_mapping_strategy != "single" or not self.options.single_client_id:
            return None
        row = (
            self.session.query(Client.id)
            .filter(Client.tenant_id == self.tenant_id, Client.id == self.options.single_client_id)
            .first()
        )
        return row[0] if row else None

    def _uses_configured_client(self) -> bool:
        return self.options.client_mapping_strategy == "single" and bool(self.options.single_client_id)

    # Validate -------------------------------------------------------------------

    def validate(self, asana_workspace_gid: str, project_gids: Sequence[str]) -> AsanaValidationResult:
        """Count what ``execute`` would do without writing anything."""

        result = AsanaValidationResult()
        counts = result.counts
        self._load_local_users()

        self._phase("Fetching Asana users...")
        for asana_user in self.client.get_workspace_users(asana_workspace_gid):
            gid, email = asana_user["gid"], asana_user.get("email")
            if self._lookup("user", gid) is not None:
                counts.bump("users", "skip")
            elif email and email.lower() in self._user_email_to_id:
                counts.bump("users", "update")
            elif self.options.auto_create_users and email:
                counts.bump("users", "create")
                result.auto_create_users.append(email)
            elif self.options.fallback_unassigned:
                counts.bump("users", "skip")
            else:
                self._record_error(
                    result,
                    "users",
                    gid,
                    asana_user.get("name") or gid,
                    f"No matching user and auto-create disabled (email: {email or 'none'})",
                )

        planned_clients: set[str] = set()
        for project_gid in project_gids:
            self._checkpoint()
            self._phase(f"Validating project {project_gid}...")
            asana_project = self._projects_by_gid(asana_workspace_gid).get(project_gid)
            if asana_project is None:
                self._record_error(result, "projects", project_gid, project_gid, "Project not found in Asana")
                continue

            if self._lookup("project", project_gid) is not None:
                counts.bump("projects", "update")
            elif self.options.auto_create_projects:
                counts.bump("projects", "create")
            else:
                self._record_error(
                    result,
                    "projects",
                    project_gid,
                    asana_project.get("name") or project_gid,
                    "Project not mapped and auto-create disabled",
                )
                continue

            client_name = self.resolve_client_name(asana_project)
            if client_name and client_name not in planned_clients:
                planned_clients.add(client_name)
                if self._uses_configured_client():
                    if self._configured_client_id() is not None:
                        counts.bump("clients", "skip")
                    else:
                        self._record_error(result, "clients", "n/a", client_name, FOREIGN_CLIENT_MESSAGE)
                elif (
                    self._find_client_by_name(client_name) is not None
                    or self._lookup("client", client_name) is not None
                ):
                    counts.bump("clients", "skip")
                elif self.options.auto_create_clients:
                    counts.bump("clients", "create")
                    result.auto_create_clients.append(client_name)
                else:
                    self._record_error(
                        result, "clients", "n/a", client_name, "Client not found and auto-create disabled"
                    )

            for section in self.client.get_sections(project_gid):
                counts.bump("sections", "update" if self._lookup("section", section["gid"]) is not None else "create")

            for task in self.client.get_tasks_for_project(project_gid):
                if task.get("parent"):
                    mapped = self._lookup("subtask", task["gid"]) is not None
                    counts.bump("subtasks", "update" if mapped else "create")
                elif self._lookup("task", task["gid"]) is not None:
                    counts.bump("tasks", "update")
                elif self.options.auto_create_tasks:
                    counts.bump("tasks", "create")
                else:
                    counts.bump("tasks", "skip")

        return result

    # Execute --------------------------------------------------------------------

    def execute(self, asana_workspace_gid: str, project_gids: Sequence[str]) -> AsanaExecutionResult:
        """Import users and every selected project, committing each entity on its own."""

        result = AsanaExecutionResult()
        self._load_local_users()

        self._checkpoint()
        self._phase("Importing users...")
        self._import_users(self.client.get_workspace_users(asana_workspace_gid), result)

        total = len(project_gids)
        for position, project_gid in enumerate(project_gids, start=1):
            self._checkpoint()
            self._phase(f"Importing project {position}/{total}...")
            try:
                self._import_project(asana_workspace_gid, project_gid, result)
            except (AsanaClientError, AsanaImportCancelled):
                raise
            except Exception as exc:
                self.session.rollback()
                self.logger.warning("Asana project %s failed: %s", project_gid, exc)
                self._record_error(result, "projects", project_gid, project_gid, str(exc))

        return result

    def _import_users(self, asana_users: Iterable[Mapping[str, Any]], result: AsanaExecutionResult) -> None:
        for asana_user in asana_users:
            gid = asana_user["gid"]
            name = asana_user.get("name") or gid
            email = (asana_user.get("email") or "").strip()

            existing_id = self._lookup("user", gid)
            if existing_id is not None:
                self._asana_user_to_local[gid] = existing_id
                result.counts.bump("users", "skip")
                continue

            local_id = self._user_email_to_id.get(email.lower()) if email else None
            if local_id is not None:

                def _link(local_id=local_id) -> str:
                    self._map("user", gid, local_id, name=name, email=email)
                    return "update"

                if self._guarded(result, "users", gid, name, _link):
                    self._asana_user_to_local[gid] = local_id
                continue

            if not (self.options.auto_create_users and email):
                if self.options.fallback_unassigned:
                    result.counts.bump("users", "skip")
                else:
                    self._record_error(result, "users", gid, name, f"Cannot map user (email: {email or 'none'})")
                continue

            try:
                first_name, last_name = _split_name(asana_user.get("name"))
                user = User(
                    tenant_id=self.tenant_id,
                    email=email.lower(),
                    name=asana_user.get("name") or email,
                    first_name=first_name,
                    last_name=last_name,
                    role="employee",
                    is_active=True,
                )
                self.session.add(user)
                self.session.flush()
                self._map("user", gid, user.id, name=name, email=email)
                self.session.commit()
            except IntegrityError as exc:
                self.session.rollback()
                self._link_existing_user(gid, name, email, exc, result)
                continue
            self._asana_user_to_local[gid] = user.id
            self._user_email_to_id[email.lower()] = user.id
            result.counts.bump("users", "create")

    def _link_existing_user(
        self, gid: str, name: str, email: str, exc: IntegrityError, result: AsanaExecutionResult
    ) -> None:
        existing = (
            self.session.query(User.id)
            .filter(User.tenant_id == self.tenant_id, db.func.lower(User.email) == email.lower())
            .first()
        )
        if existing is None:
            self._record_error(result, "users", gid, name, str(exc.orig or exc))
            return
        local_id = existing[0]
        if self._guarded(result, "users", gid, name, lambda: self._map("user", gid, local_id, name=name, email=email) or "skip"):
            self._asana_user_to_local[gid] = local_id
            self._user_email_to_id[email.lower()] = local_id

    def _resolve_client_id(self, client_name: str, result: AsanaExecutionResult) -> int | None:
        if client_name in self._client_ids_by_name:
            return self._client_ids_by_name[client_name]

        if self._uses_configured_client():
            client_id = self._configured_client_id()
            if client_id is not None:
                result.counts.bump("clients", "skip")
            else:
                self._record_error(result, "clients", "n/a", client_name, FOREIGN_CLIENT_MESSAGE)
        else:
            client_id = self._find_client_by_name(client_name)
            if client_id is None:
                client_id = self._lookup("client", client_name)
            if client_id is not None:
                result.counts.bump("clients", "skip")
            elif not self.options.auto_create_clients:
                self._record_error(result, "clients", "n/a", client_name, "Client not found and auto-create disabled")
            else:
                created: Dict[str, int] = {}

                def _create() -> str:
                    client = Client(
                        tenant_id=self.tenant_id,
                        workspace_id=self.workspace_id,
                        company_name=client_name,
                        status="active",
                    )
                    self.session.add(client)
                    self.session.flush()
                    self._map("client", client_name, client.id, name=client_name)
                    created["id"] = client.id
                    return "create"

                self._guarded(result, "clients", "n/a", client_name, _create)
                client_id = created.get("id")

        self._client_ids_by_name[client_name] = client_id
        return client_id

    def _import_project(self, asana_workspace_gid: str, project_gid: str, result: AsanaExecutionResult) -> None:
        asana_project = self._projects_by_gid(asana_workspace_gid).get(project_gid)
        if asana_project is None:
            self._record_error(result, "projects", project_gid, project_gid, "Project not found in Asana workspace")
            return
        project_name = asana_project.get("name") or project_gid

        existing_project_id = self._lookup("project", project_gid)
        if existing_project_id is None and not self.options.auto_create_projects:
            self._record_error(
                result, "projects", project_gid, project_name, "Project not mapped and auto-create disabled"
            )
            return

        client_id = None
        client_name = self.resolve_client_name(asana_project)
        if client_name:
            client_id = self._resolve_client_id(client_name, result)

        local: Dict[str, int] = {}

        def _write_project() -> str:
            project = self.session.get(Project, existing_project_id) if existing_project_id is not None else None
            if project is not None:
                project.name = project_name
                project.description = asana_project.get("notes") or None
                project.client_id = client_id
                outcome = "update"
            else:
                project = Project(
                    tenant_id=self.tenant_id,
                    workspace_id=self.workspace_id,
                    client_id=client_id,
                    name=project_name,
                    description=asana_project.get("notes") or None,
                    status="completed" if asana_project.get("archived") else "active",
                    created_by_user_id=self.actor_user_id,
                )
                self.session.add(project)
                self.session.flush()
                outcome = "create"
            self._map("project", project_gid, project.id, name=project_name)
            local["project_id"] = project.id
            return outcome

        if not self._guarded(result, "projects", project_gid, project_name, _write_project):
            return
        project_id = local["project_id"]

        self._checkpoint()
        section_ids = self._import_sections(project_gid, project_id, result)

        self._checkpoint()
        all_tasks = self.client.get_tasks_for_project(project_gid)
        top_level = [task for task in all_tasks if not task.get("parent")]
        children = [task for task in all_tasks if task.get("parent")]

        for order_index, task in enumerate(top_level):
            self._import_task(task, project_id, section_ids, order_index, result)

        self._checkpoint()
        seen_subtasks: set[str] = set()
        for order_index, child in enumerate(children):
            seen_subtasks.add(child["gid"])
            parent_id = self._lookup("task", child["parent"]["gid"])
            self._import_subtask(child, parent_id, order_index, result)

        for task in top_level:
            if (task.get("num_subtasks") or 0) <= 0:
                continue
            self._checkpoint()
            parent_id = self._lookup("task", task["gid"])
            for order_index, subtask in enumerate(self.client.get_subtasks(task["gid"])):
                if subtask["gid"] in seen_subtasks:
                    continue
                seen_subtasks.add(subtask["gid"])
                subtask.setdefault("parent", {"gid": task["gid"], "name": task.get("name")})
                self._import_subtask(subtask, parent_id, order_index, result)

    def _import_sections(self, project_gid: str, project_id: int, result: AsanaExecutionResult) -> Dict[str, int]:
        section_ids: Dict[str, int] = {}
        for order_index, asana_section in enumerate(self.client.get_sections(project_gid)):
            gid = asana_section["gid"]
            name = asana_section.get("name") or gid

            def _write(gid=gid, name=name, order_index=order_index) -> str:
                existing_id = self._lookup("section", gid)
                section = self.session.get(Section, existing_id) if existing_id is not None else None
                if section is not None:
                    section.name = name
                    section.order_index = order_index
                    outcome = "update"
                else:
                    section = Section(project_id=project_id, name=name, order_index=order_index)
                    self.session.add(section)
                    self.session.flush()
                    outcome = "create"
                self._map("section", gid, section.id, name=name)
                section_ids[gid] = section.id
                return outcome

            self._guarded(result, "sections", gid, name, _write)
        return section_ids

    def _assignee_id(self, task: Mapping[str, Any]) -> int | None:
        assignee = task.get("assignee") or {}
        gid = assignee.get("gid")
        return self._asana_user_to_local.get(gid) if gid else None

    def _import_task(
        self,
        task: Mapping[str, Any],
        project_id: int,
        section_ids: Mapping[str, int],
        order_index: int,
        result: AsanaExecutionResult,
    ) -> None:
        gid = task["gid"]
        name = task.get("name") or gid
        existing_id = self._lookup("task", gid)
        if existing_id is None and not self.options.auto_create_tasks:
            result.counts.bump("tasks", "skip")
            return

        memberships = task.get("memberships") or []
        section_gid = ((memberships[0] or {}).get("section") or {}).get("gid") if memberships else None
        section_id = section_ids.get(section_gid) if section_gid else None
        assignee_id = self._assignee_id(task)

        def _write() -> str:
            existing = self.session.get(Task, existing_id) if existing_id is not None else None
            if existing is not None:
                existing.title = name
                existing.description = task.get("notes") or None
                existing.status = _status_for(bool(task.get("completed")))
                existing.section_id = section_id
                existing.start_date = parse_datetime(task.get("start_on"))
                existing.due_date = parse_datetime(task.get("due_on"))
                local_task = existing
                outcome = "update"
            else:
                local_task = Task(
                    tenant_id=self.tenant_id,
                    project_id=project_id,
                    section_id=section_id,
                    title=name,
                    description=task.get("notes") or None,
                    status=_status_for(bool(task.get("completed"))),
                    priority="medium",
                    start_date=parse_datetime(task.get("start_on")),
                    due_date=parse_datetime(task.get("due_on")),
                    created_by_user_id=self.actor_user_id,
                    order_index=order_index,
                )
                self.session.add(local_task)
                self.session.flush()
                outcome = "create"
            self._map("task", gid, local_task.id, name=name)
            if assignee_id is not None:
                already = (
                    self.session.query(TaskAssignee.id)
                    .filter_by(task_id=local_task.id, user_id=assignee_id)
                    .first()
                )
                if already is None:
                    self.session.add(TaskAssignee(tenant_id=self.tenant_id, task_id=local_task.id, user_id=assignee_id))
            return outcome

        self._guarded(result, "tasks", gid, name, _write)

    def _import_subtask(
        self,
        task: Mapping[str, Any],
        parent_id: int | None,
        order_index: int,
        result: AsanaExecutionResult,
    ) -> None:
        gid = task["gid"]
        name = task.get("name") or gid
        if parent_id is None:
            if self.options.auto_create_tasks and task.get("parent"):
                message = "Parent task not imported yet"
            else:
                message = "Parent task missing and auto-create disabled"
            self._record_error(result, "subtasks", gid, name, message)
            return

        assignee_id = self._assignee_id(task)
        completed = bool(task.get("completed"))

        def _write() -> str:
            existing_id = self._lookup("subtask", gid)
            subtask = self.session.get(Subtask, existing_id) if existing_id is not None else None
            if subtask is not None:
                subtask.title = name
                subtask.status = _status_for(completed)
                subtask.completed = completed
                subtask.due_date = parse_datetime(task.get("due_on"))
                subtask.assignee_id = assignee_id
                outcome = "update"
            else:
                subtask = Subtask(
                    task_id=parent_id,
                    title=name,
                    status=_status_for(completed),
                    completed=completed,
                    priority="medium",
                    due_date=parse_datetime(task.get("due_on")),
                    assignee_id=assignee_id,
                    order_index=order_index,
                )
                self.session.add(subtask)
                self.session.flush()
                outcome = "create"
            self._map("subtask", gid, subtask.id, name=name)
            return outcome

        self._guarded(result, "subtasks", gid, name, _write)

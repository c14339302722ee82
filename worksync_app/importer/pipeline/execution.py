"""
Commit phase for tabular import jobs.

Rows are written strictly in sheet order, one transaction per row, so a store
failure rolls back only that row and is reported as ``DB_ERROR``. Natural-key
lookups are updated only after a row's transaction commits.
"""

from __future__ import annotations

import time
from dataclasses import dataclass, field
from typing import Callable, Dict, List, Mapping, Sequence, Tuple

from flask import current_app

from worksync_app.importer import metrics
from worksync_app.importer.contracts import EntityType, coerce_entity_type
from worksync_app.importer.mapping import ColumnMapping, apply_mapping, parse_datetime
from worksync_app.models import Client, Project, Task, TaskAssignee, TimeEntry, User, db

from .job_store import ImportJobStatus, ImportJobStore
from .lookups import TenantLookups, build_lookups
from .validation import (
    ACTION_CREATE,
    ACTION_SKIP,
    ACTION_UPDATE,
    RowOutcome,
    ValidationError,
    ValidationWarning,
    check_field_formats,
    invalid_duration,
    planned_duration,
)

DEFAULT_BATCH_SIZE = 200
DEFAULT_PROJECT_COLOR = "#3B82F6"
USER_ROLES = ("employee", "admin", "manager", "contractor")
TIME_ENTRY_SCOPES = ("in_scope", "out_of_scope", "internal")

ProgressCallback = Callable[[int, int], None]


@dataclass
class ImportSummary:
    created: int = 0
    updated: int = 0
    skipped: int = 0
    failed: int = 0
    duration_ms: int = 0
    errors: List[ValidationError] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "created": self.created,
            "updated": self.updated,
            "skipped": self.skipped,
            "failed": self.failed,
            "durationMs": self.duration_ms,
            "errors": [error.to_dict() for error in self.errors],
        }


@dataclass(frozen=True)
class ErrorRow:
    row: int
    primary_key: str
    error_code: str
    message: str

    def to_dict(self) -> dict:
        return {
            "row": self.row,
            "primaryKey": self.primary_key,
            "errorCode": self.error_code,
            "message": self.message,
        }


@dataclass(frozen=True)
class AutoCreateCounts:
    clients: int = 0
    users: int = 0
    projects: int = 0

    @property
    def total(self) -> int:
        return self.clients + self.users + self.projects


def primary_key_for_row(entity_type: EntityType, mapped: Mapping[str, str]) -> str:
    if entity_type is EntityType.CLIENTS:
        return mapped.get("companyName", "")
    if entity_type is EntityType.PROJECTS:
        return mapped.get("name", "")
    if entity_type is EntityType.TASKS:
        return mapped.get("title", "")
    if entity_type in (EntityType.USERS, EntityType.ADMINS):
        return mapped.get("email", "")
    if entity_type is EntityType.TIME_ENTRIES:
        return f"{mapped.get('userEmail', '')}@{mapped.get('startTime', '')}"
    return ""


def _text(mapped: Mapping[str, str], key: str) -> str:
    return (mapped.get(key) or "").strip()


def _optional(mapped: Mapping[str, str], key: str) -> str | None:
    return _text(mapped, key) or None


def _parse_int(value: str) -> int | None:
    if not value:
        return None
    try:
        return int(float(value.replace(",", "")))
    except ValueError:
        return None


def _required(row: int, field_key: str, message: str) -> RowOutcome:
    return RowOutcome(ACTION_SKIP, error=ValidationError(row, "REQUIRED", message, field=field_key))


def _not_found(row: int, code: str, field_key: str, message: str) -> RowOutcome:
    return RowOutcome(ACTION_SKIP, error=ValidationError(row, code, message, field=field_key))


class RowImporter:
    """
    Create the local rows for one entity type against a ``TenantLookups``.

    Each ``import_row`` call stages its lookup updates; ``commit`` applies them
    once the caller's transaction succeeds and ``discard`` drops them after a
    rollback.
    """

    def __init__(self, entity_type: EntityType, lookups: TenantLookups, *, session=None):
        self.entity_type = entity_type
        self.lookups = lookups
        self.session = session or db.session
        self._pending: List[Tuple[Callable[..., None], tuple]] = []
        self._handlers: Dict[EntityType, Callable[[Mapping[str, str], int], RowOutcome]] = {
            EntityType.CLIENTS: self._import_client,
            EntityType.PROJECTS: self._import_project,
            EntityType.TASKS: self._import_task,
            EntityType.USERS: lambda mapped, row: self._import_user(mapped, row, default_role="employee"),
            EntityType.ADMINS: lambda mapped, row: self._import_user(mapped, row, default_role="admin"),
            EntityType.TIME_ENTRIES: self._import_time_entry,
        }

    def import_row(self, mapped: Mapping[str, str], row: int) -> RowOutcome:
        return self._handlers[self.entity_type](mapped, row)

    def commit(self) -> None:
        self.session.commit()
        for remember, args in self._pending:
            remember(*args)
        self._pending.clear()

    def discard(self) -> None:
        self.session.rollback()
        self._pending.clear()

    def _stage(self, remember: Callable[..., None], *args) -> None:
        self._pending.append((remember, args))

    # Dependency creation -----------------------------------------------------

    def create_client(self, company_name: str, *, parent_client_id: int | None = None, **attrs) -> int:
        client = Client(
            tenant_id=self.lookups.tenant_id,
            workspace_id=self.lookups.workspace_id,
            company_name=company_name,
            parent_client_id=parent_client_id,
            status=attrs.pop("status", None) or "active",
            **attrs,
        )
        self.session.add(client)
        self.session.flush()
        self._stage(self.lookups.remember_client, company_name, client.id)
        return client.id

    def create_user(self, email: str, *, role: str = "employee", **attrs) -> int:
        email = email.strip().lower()
        local_part = email.split("@")[0]
        first_name = attrs.pop("first_name", None) or local_part
        last_name = attrs.pop("last_name", None) or ""
        name = attrs.pop("name", None) or f"{first_name} {last_name}".strip()
        user = User(
            tenant_id=self.lookups.tenant_id,
            email=email,
            name=name,
            first_name=first_name,
            last_name=last_name,
            role=role,
            is_active=attrs.pop("is_active", True),
        )
        self.session.add(user)
        self.session.flush()
        self._stage(self.lookups.remember_user, email, user.id)
        return user.id

    def create_project(self, name: str, *, client_id: int | None = None, **attrs) -> int:
        project = Project(
            tenant_id=self.lookups.tenant_id,
            workspace_id=self.lookups.workspace_id,
            name=name,
            client_id=client_id,
            status=attrs.pop("status", None) or "active",
            color=attrs.pop("color", None) or DEFAULT_PROJECT_COLOR,
            **attrs,
        )
        self.session.add(project)
        self.session.flush()
        self._stage(self.lookups.remember_project, name, project.id)
        return project.id

    # Entity handlers ---------------------------------------------------------

    def _format_error(self, mapped: Mapping[str, str], row: int) -> RowOutcome | None:
        error = check_field_formats(self.entity_type, mapped, row)
        return RowOutcome(ACTION_SKIP, error=error) if error else None

    def _import_client(self, mapped: Mapping[str, str], row: int) -> RowOutcome:
        company_name = _text(mapped, "companyName")
        if not company_name:
            return _required(row, "companyName", "Company name is required")
        if self.lookups.client_id(company_name) is not None:
            return RowOutcome(ACTION_SKIP)
        invalid = self._format_error(mapped, row)
        if invalid:
            return invalid

        parent_client_id = None
        parent_name = _text(mapped, "parentClientName")
        if parent_name:
            parent_client_id = self.lookups.client_id(parent_name)
            if parent_client_id is None:
                parent_client_id = self.create_client(parent_name)

        status = _text(mapped, "status").lower() or None
        self.create_client(
            company_name,
            parent_client_id=parent_client_id,
            status=status,
            display_name=_optional(mapped, "displayName"),
            industry=_optional(mapped, "industry"),
            website=_optional(mapped, "website"),
            phone=_optional(mapped, "phone"),
            email=_optional(mapped, "email"),
            notes=_optional(mapped, "notes"),
            address_line1=_optional(mapped, "addressLine1"),
            address_line2=_optional(mapped, "addressLine2"),
            city=_optional(mapped, "city"),
            state=_optional(mapped, "state"),
            postal_code=_optional(mapped, "postalCode"),
            country=_optional(mapped, "country"),
        )
        return RowOutcome(ACTION_CREATE)

    def _import_project(self, mapped: Mapping[str, str], row: int) -> RowOutcome:
        name = _text(mapped, "name")
        if not name:
            return _required(row, "name", "Project name is required")
        if self.lookups.project_id(name) is not None:
            return RowOutcome(ACTION_SKIP)
        invalid = self._format_error(mapped, row)
        if invalid:
            return invalid

        client_id = None
        client_name = _text(mapped, "clientName")
        if client_name:
            client_id = self.lookups.client_id(client_name)
            if client_id is None:
                return _not_found(row, "CLIENT_NOT_FOUND", "clientName", f'Client "{client_name}" not found')

        self.create_project(
            name,
            client_id=client_id,
            description=_optional(mapped, "description"),
            status=_text(mapped, "status").lower() or None,
            color=_optional(mapped, "color"),
            budget_minutes=_parse_int(_text(mapped, "budgetMinutes")),
        )
        return RowOutcome(ACTION_CREATE)

    def _import_task(self, mapped: Mapping[str, str], row: int) -> RowOutcome:
        title = _text(mapped, "title")
        if not title:
            return _required(row, "title", "Task title is required")

        project_id = None
        project_name = _text(mapped, "projectName")
        if project_name:
            project_id = self.lookups.project_id(project_name)
            if project_id is None:
                return _not_found(row, "PROJECT_NOT_FOUND", "projectName", f'Project "{project_name}" not found')
        if self.lookups.task_id(project_id, title) is not None:
            return RowOutcome(ACTION_SKIP)
        invalid = self._format_error(mapped, row)
        if invalid:
            return invalid

        assignee_id = None
        assignee_email = _text(mapped, "assigneeEmail")
        if assignee_email:
            assignee_id = self.lookups.user_id(assignee_email)
            if assignee_id is None:
                return _not_found(row, "ASSIGNEE_NOT_FOUND", "assigneeEmail", f'User "{assignee_email}" not found')

        parent_task_id = None
        parent_title = _text(mapped, "parentTaskTitle")
        if parent_title and project_id is not None:
            parent_task_id = self.lookups.task_id(project_id, parent_title)

        task = Task(
            tenant_id=self.lookups.tenant_id,
            project_id=project_id,
            parent_task_id=parent_task_id,
            title=title,
            description=_optional(mapped, "description"),
            status=_text(mapped, "status").lower() or "todo",
            priority=_text(mapped, "priority").lower() or "medium",
            due_date=parse_datetime(_text(mapped, "dueDate")),
            start_date=parse_datetime(_text(mapped, "startDate")),
            estimate_minutes=_parse_int(_text(mapped, "estimateMinutes")),
        )
        self.session.add(task)
        self.session.flush()
        if assignee_id is not None:
            self.session.add(TaskAssignee(tenant_id=self.lookups.tenant_id, task_id=task.id, user_id=assignee_id))
        self._stage(self.lookups.remember_task, project_id, title, task.id)
        return RowOutcome(ACTION_CREATE)

    def _import_user(self, mapped: Mapping[str, str], row: int, *, default_role: str) -> RowOutcome:
        email = _text(mapped, "email").lower()
        if not email:
            return _required(row, "email", "Email is required")
        if self.lookups.user_id(email) is not None:
            return RowOutcome(ACTION_SKIP)
        invalid = self._format_error(mapped, row)
        if invalid:
            return invalid

        role = _text(mapped, "role").lower() or default_role
        if role not in USER_ROLES:
            role = default_role
        self.create_user(
            email,
            role=role,
            first_name=_optional(mapped, "firstName"),
            last_name=_optional(mapped, "lastName"),
            name=_optional(mapped, "name"),
            is_active=_text(mapped, "isActive").lower() != "false",
        )
        return RowOutcome(ACTION_CREATE)

    def _import_time_entry(self, mapped: Mapping[str, str], row: int) -> RowOutcome:
        user_email = _text(mapped, "userEmail").lower()
        if not user_email:
            return _required(row, "userEmail", "User email is required")
        user_id = self.lookups.user_id(user_email)
        if user_id is None:
            return _not_found(row, "USER_NOT_FOUND", "userEmail", f'User "{user_email}" not found')

        start_text = _text(mapped, "startTime")
        if not start_text:
            return _required(row, "startTime", "Start time is required")
        start = parse_datetime(start_text)
        if start is None:
            return _not_found(row, "INVALID_DATE", "startTime", f'Invalid start time: "{start_text}"')
        invalid = self._format_error(mapped, row)
        if invalid:
            return invalid

        warning = None
        end = parse_datetime(_text(mapped, "endTime"))
        if end is not None and end <= start:
            warning = ValidationWarning(
                row, "END_BEFORE_START", "End time is before or equal to start time", field="endTime"
            )
            end = None

        if end is not None:
            duration_seconds = round((end - start).total_seconds())
        else:
            planned = planned_duration(mapped, start)
            if planned is None:
                return invalid_duration(mapped, row)
            duration_seconds, end = planned

        client_id = self.lookups.client_id(_text(mapped, "clientName")) if _text(mapped, "clientName") else None
        project_id = self.lookups.project_id(_text(mapped, "projectName")) if _text(mapped, "projectName") else None
        task_id = None
        task_title = _text(mapped, "taskTitle")
        if task_title and project_id is not None:
            task_id = self.lookups.task_id(project_id, task_title)

        scope = _text(mapped, "scope").lower()
        self.session.add(
            TimeEntry(
                tenant_id=self.lookups.tenant_id,
                workspace_id=self.lookups.workspace_id,
                user_id=user_id,
                client_id=client_id,
                project_id=project_id,
                task_id=task_id,
                description=_optional(mapped, "description"),
                scope=scope if scope in TIME_ENTRY_SCOPES else "in_scope",
                start_time=start,
                end_time=end,
                duration_seconds=duration_seconds,
                is_manual=_text(mapped, "isManual").lower() != "false",
            )
        )
        self.session.flush()
        return RowOutcome(ACTION_CREATE, warning=warning)


def _collect_needed_dependencies(
    entity_type: EntityType,
    rows: Sequence[Mapping[str, str]],
    mapping: Sequence[ColumnMapping],
    lookups: TenantLookups,
) -> Tuple[Dict[str, str], Dict[str, str], Dict[str, str]]:
    """Return unresolved client names, user emails and project names keyed by lower-case form."""

    clients: Dict[str, str] = {}
    users: Dict[str, str] = {}
    projects: Dict[str, str] = {}

    def _want(target: Dict[str, str], value: str, resolver: Callable[[str], int | None]) -> None:
        value = value.strip()
        if value and resolver(value) is None:
            target.setdefault(value.lower(), value)

    for raw_row in rows:
        mapped = apply_mapping(raw_row, mapping)
        if entity_type is EntityType.CLIENTS:
            _want(clients, _text(mapped, "parentClientName"), lookups.client_id)
        elif entity_type in (EntityType.PROJECTS, EntityType.TIME_ENTRIES):
            _want(clients, _text(mapped, "clientName"), lookups.client_id)
        if entity_type is EntityType.TASKS:
            _want(users, _text(mapped, "assigneeEmail"), lookups.user_id)
        elif entity_type is EntityType.TIME_ENTRIES:
            _want(users, _text(mapped, "userEmail"), lookups.user_id)
        if entity_type in (EntityType.TASKS, EntityType.TIME_ENTRIES):
            _want(projects, _text(mapped, "projectName"), lookups.project_id)

    return clients, users, projects


def auto_create_missing_dependencies(
    entity_type: EntityType,
    rows: Sequence[Mapping[str, str]],
    mapping: Sequence[ColumnMapping],
    importer: RowImporter,
) -> AutoCreateCounts:
    """
    Create every distinct unresolved client, user and project referenced by
    ``rows`` exactly once, seeding the lookups as each commit lands.
    """

    lookups = importer.lookups
    clients, users, projects = _collect_needed_dependencies(entity_type, rows, mapping, lookups)
    created = {"clients": 0, "users": 0, "projects": 0}

    for name in clients.values():
        if lookups.client_id(name) is None:
            importer.create_client(name)
            importer.commit()
            created["clients"] += 1
    for email in users.values():
        if lookups.user_id(email) is None:
            importer.create_user(email)
            importer.commit()
            created["users"] += 1
    for name in projects.values():
        if lookups.project_id(name) is None:
            importer.create_project(name)
            importer.commit()
            created["projects"] += 1

    current_app.logger.info(
        "Auto-created import dependencies",
        extra={"importer_tenant_id": lookups.tenant_id, "importer_auto_created": created},
    )
    return AutoCreateCounts(**created)


def _persist(job, store: ImportJobStore | None, **changes) -> None:
    if store is not None:
        store.update(job.id, **changes)
        return
    for name, value in changes.items():
        setattr(job, name, value)


def execute_job(
    job,
    *,
    store: ImportJobStore | None = None,
    batch_size: int = DEFAULT_BATCH_SIZE,
    session=None,
    progress_callback: ProgressCallback | None = None,
) -> ImportSummary:
    """
    Commit every row of ``job`` and record the outcome on the job.

    Progress is persisted after each batch of ``batch_size`` rows. The job ends
    ``failed`` only when nothing was created or updated and at least one row
    failed; otherwise it ends ``completed``.
    """

    entity_type = coerce_entity_type(job.entity_type)
    started = time.monotonic()
    lookups = build_lookups(job.tenant_id, session=session)
    importer = RowImporter(entity_type, lookups, session=session)
    summary = ImportSummary()
    error_rows: List[ErrorRow] = []

    if job.auto_create_missing:
        summary.created += auto_create_missing_dependencies(entity_type, job.raw_rows, job.mapping, importer).total

    total = len(job.raw_rows)
    batch_size = max(1, batch_size)
    for batch_start in range(0, total, batch_size):
        batch_end = min(batch_start + batch_size, total)
        for index in range(batch_start, batch_end):
            row = index + 2
            mapped = apply_mapping(job.raw_rows[index], job.mapping)
            try:
                outcome = importer.import_row(mapped, row)
                if outcome.error is None:
                    importer.commit()
                else:
                    importer.discard()
            except Exception as exc:
                importer.discard()
                message = str(exc) or "Database error"
                current_app.logger.warning(
                    "Import row %s failed to store: %s",
                    row,
                    message,
                    extra={"importer_job_id": job.id, "importer_row": row},
                )
                outcome = RowOutcome(ACTION_SKIP, error=ValidationError(row, "DB_ERROR", message))

            if outcome.error is not None:
                summary.failed += 1
                summary.errors.append(outcome.error)
                error_rows.append(
                    ErrorRow(
                        row=row,
                        primary_key=primary_key_for_row(entity_type, mapped),
                        error_code=outcome.error.code,
                        message=outcome.error.message,
                    )
                )
            elif outcome.action == ACTION_SKIP:
                summary.skipped += 1
            elif outcome.action == ACTION_UPDATE:
                summary.updated += 1
            else:
                summary.created += 1

        _persist(job, store, progress={"processed": batch_end, "total": total})
        if progress_callback is not None:
            progress_callback(batch_end, total)

    summary.duration_ms = int((time.monotonic() - started) * 1000)
    failed_outright = summary.failed > 0 and summary.created == 0 and summary.updated == 0
    _persist(
        job,
        store,
        status=ImportJobStatus.FAILED if failed_outright else ImportJobStatus.COMPLETED,
        import_summary=summary,
        error_rows=[error_row.to_dict() for error_row in error_rows],
        progress={"processed": total, "total": total},
    )

    for outcome_name in ("created", "updated", "skipped", "failed"):
        metrics.record_rows(entity_type.value, outcome_name, getattr(summary, outcome_name))
    metrics.record_job_duration(summary.duration_ms / 1000)
    current_app.logger.info(
        "Import job %s finished",
        job.id,
        extra={
            "importer_job_id": job.id,
            "importer_entity_type": entity_type.value,
            "importer_summary": summary.to_dict() | {"errors": len(summary.errors)},
        },
    )
    return summary

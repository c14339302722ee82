"""
Dry-run classification of mapped rows against a tenant's current data.

Data-quality problems never raise: every row yields a ``RowOutcome`` with an
action and, where relevant, a structured error or warning. Only infrastructure
problems (unknown entity type, missing workspace, store failures) propagate.
"""

from __future__ import annotations

import math
from collections import OrderedDict
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Callable, Dict, List, Mapping, Sequence

from worksync_app.importer.contracts import EntityType, FieldType, coerce_entity_type, get_entity_fields
from worksync_app.importer.mapping import ColumnMapping, apply_mapping, parse_datetime

from .lookups import TenantLookups, build_lookups, task_key

DEPENDENCY_ERROR_CODES = frozenset({"PROJECT_NOT_FOUND", "USER_NOT_FOUND", "CLIENT_NOT_FOUND", "ASSIGNEE_NOT_FOUND"})

ACTION_CREATE = "create"
ACTION_UPDATE = "update"
ACTION_SKIP = "skip"


@dataclass(frozen=True)
class ValidationError:
    row: int
    code: str
    message: str
    field: str | None = None

    @property
    def is_dependency_error(self) -> bool:
        return self.code in DEPENDENCY_ERROR_CODES

    def to_dict(self) -> dict:
        payload = {"row": self.row, "code": self.code, "message": self.message}
        if self.field:
            payload["field"] = self.field
        return payload


@dataclass(frozen=True)
class ValidationWarning:
    row: int
    code: str
    message: str
    field: str | None = None

    def to_dict(self) -> dict:
        payload = {"row": self.row, "code": self.code, "message": self.message}
        if self.field:
            payload["field"] = self.field
        return payload


@dataclass(frozen=True)
class RowOutcome:
    action: str
    error: ValidationError | None = None
    warning: ValidationWarning | None = None


@dataclass
class MissingDependency:
    type: str
    name: str
    referenced_by_rows: List[int] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {"type": self.type, "name": self.name, "referencedByRows": list(self.referenced_by_rows)}


@dataclass
class ValidationSummary:
    would_create: int = 0
    would_update: int = 0
    would_skip: int = 0
    would_fail: int = 0
    would_fail_without_auto_create: int = 0
    errors: List[ValidationError] = field(default_factory=list)
    warnings: List[ValidationWarning] = field(default_factory=list)
    missing_dependencies: List[MissingDependency] = field(default_factory=list)

    def counts(self) -> dict:
        return {
            "wouldCreate": self.would_create,
            "wouldUpdate": self.would_update,
            "wouldSkip": self.would_skip,
            "wouldFail": self.would_fail,
            "wouldFailWithoutAutoCreate": self.would_fail_without_auto_create,
        }

    def to_dict(self, *, preview_limit: int | None = None) -> dict:
        errors = self.errors if preview_limit is None else self.errors[:preview_limit]
        warnings = self.warnings if preview_limit is None else self.warnings[:preview_limit]
        return {
            **self.counts(),
            "errors": [error.to_dict() for error in errors],
            "warnings": [warning.to_dict() for warning in warnings],
            "missingDependencies": [dep.to_dict() for dep in self.missing_dependencies],
        }


class _MissingDependencyCollector:
    """Group unresolved references by type and lower-cased name."""

    def __init__(self) -> None:
        self._groups: Dict[str, "OrderedDict[str, List[int]]"] = {
            "client": OrderedDict(),
            "user": OrderedDict(),
            "project": OrderedDict(),
        }

    def add(self, dependency_type: str, name: str, row: int) -> None:
        self._groups[dependency_type].setdefault(name.lower(), []).append(row)

    def as_list(self) -> List[MissingDependency]:
        return [
            MissingDependency(type=dependency_type, name=name, referenced_by_rows=rows)
            for dependency_type, group in self._groups.items()
            for name, rows in group.items()
        ]


def collect_missing_deps(
    entity_type: EntityType,
    mapped: Mapping[str, str],
    row: int,
    lookups: TenantLookups,
    collector: _MissingDependencyCollector,
) -> None:
    def _check(dependency_type: str, value: str | None, resolver: Callable[[str], int | None]) -> None:
        name = (value or "").strip()
        if name and resolver(name) is None:
            collector.add(dependency_type, name, row)

    if entity_type is EntityType.CLIENTS:
        _check("client", mapped.get("parentClientName"), lookups.client_id)
    elif entity_type is EntityType.PROJECTS:
        _check("client", mapped.get("clientName"), lookups.client_id)
    elif entity_type is EntityType.TASKS:
        _check("project", mapped.get("projectName"), lookups.project_id)
        _check("user", mapped.get("assigneeEmail"), lookups.user_id)
    elif entity_type is EntityType.TIME_ENTRIES:
        _check("user", mapped.get("userEmail"), lookups.user_id)
        _check("client", mapped.get("clientName"), lookups.client_id)
        _check("project", mapped.get("projectName"), lookups.project_id)


def _text(mapped: Mapping[str, str], key: str) -> str:
    return (mapped.get(key) or "").strip()


def _required(row: int, field_key: str, message: str) -> RowOutcome:
    return RowOutcome(ACTION_SKIP, error=ValidationError(row, "REQUIRED", message, field=field_key))


def _validate_client(mapped: Mapping[str, str], row: int, lookups: TenantLookups) -> RowOutcome:
    company_name = _text(mapped, "companyName")
    if not company_name:
        return _required(row, "companyName", "Company name is required")
    if lookups.client_id(company_name) is not None:
        return RowOutcome(ACTION_SKIP)
    parent_name = _text(mapped, "parentClientName")
    if parent_name and lookups.client_id(parent_name) is None:
        warning = ValidationWarning(
            row,
            "PARENT_WILL_CREATE",
            f'Parent client "{parent_name}" will be created',
            field="parentClientName",
        )
        return RowOutcome(ACTION_CREATE, warning=warning)
    return RowOutcome(ACTION_CREATE)


def _validate_project(mapped: Mapping[str, str], row: int, lookups: TenantLookups) -> RowOutcome:
    name = _text(mapped, "name")
    if not name:
        return _required(row, "name", "Project name is required")
    if lookups.project_id(name) is not None:
        return RowOutcome(ACTION_SKIP)
    client_name = _text(mapped, "clientName")
    if client_name and lookups.client_id(client_name) is None:
        error = ValidationError(row, "CLIENT_NOT_FOUND", f'Client "{client_name}" not found', field="clientName")
        return RowOutcome(ACTION_CREATE, error=error)
    return RowOutcome(ACTION_CREATE)


def _validate_task(mapped: Mapping[str, str], row: int, lookups: TenantLookups) -> RowOutcome:
    title = _text(mapped, "title")
    if not title:
        return _required(row, "title", "Task title is required")
    project_name = _text(mapped, "projectName")
    if project_name:
        project_id = lookups.project_id(project_name)
        if project_id is None:
            error = ValidationError(
                row, "PROJECT_NOT_FOUND", f'Project "{project_name}" not found', field="projectName"
            )
            return RowOutcome(ACTION_CREATE, error=error)
        if lookups.task_id(project_id, title) is not None:
            return RowOutcome(ACTION_SKIP)
    elif lookups.task_id(None, title) is not None:
        return RowOutcome(ACTION_SKIP)
    assignee_email = _text(mapped, "assigneeEmail")
    if assignee_email and lookups.user_id(assignee_email) is None:
        error = ValidationError(
            row, "ASSIGNEE_NOT_FOUND", f'User "{assignee_email}" not found', field="assigneeEmail"
        )
        return RowOutcome(ACTION_CREATE, error=error)
    return RowOutcome(ACTION_CREATE)


def _validate_user(mapped: Mapping[str, str], row: int, lookups: TenantLookups) -> RowOutcome:
    email = _text(mapped, "email")
    if not email:
        return _required(row, "email", "Email is required")
    if lookups.user_id(email) is not None:
        return RowOutcome(ACTION_SKIP)
    return RowOutcome(ACTION_CREATE)


def planned_duration(mapped: Mapping[str, str], start: datetime) -> tuple[int, datetime | None] | None:
    """
    Seconds and end time implied by ``durationHours``.

    Non-numeric text counts as no duration. Returns ``None`` when the number
    is not finite or the end time falls outside the supported date range.
    """
    hours_text = _text(mapped, "durationHours").replace(",", "")
    if not hours_text:
        return 0, None
    try:
        hours = float(hours_text)
    except ValueError:
        return 0, None
    if not math.isfinite(hours):
        return None
    seconds = round(hours * 3600)
    try:
        return seconds, start + timedelta(seconds=seconds)
    except OverflowError:
        return None


def invalid_duration(mapped: Mapping[str, str], row: int) -> RowOutcome:
    text = _text(mapped, "durationHours")
    error = ValidationError(row, "INVALID_NUMBER", f'Invalid duration: "{text}"', field="durationHours")
    return RowOutcome(ACTION_SKIP, error=error)


def _validate_time_entry(mapped: Mapping[str, str], row: int, lookups: TenantLookups) -> RowOutcome:
    user_email = _text(mapped, "userEmail")
    if not user_email:
        return _required(row, "userEmail", "User email is required")
    if lookups.user_id(user_email) is None:
        error = ValidationError(row, "USER_NOT_FOUND", f'User "{user_email}" not found', field="userEmail")
        return RowOutcome(ACTION_CREATE, error=error)

    start_text = _text(mapped, "startTime")
    if not start_text:
        return _required(row, "startTime", "Start time is required")
    start = parse_datetime(start_text)
    if start is None:
        error = ValidationError(row, "INVALID_DATE", f'Invalid start time: "{start_text}"', field="startTime")
        return RowOutcome(ACTION_SKIP, error=error)

    end = parse_datetime(_text(mapped, "endTime"))
    if end is not None and end > start:
        return RowOutcome(ACTION_CREATE)
    if planned_duration(mapped, start) is None:
        return invalid_duration(mapped, row)
    if end is not None:
        warning = ValidationWarning(
            row, "END_BEFORE_START", "End time is before or equal to start time", field="endTime"
        )
        return RowOutcome(ACTION_CREATE, warning=warning)
    return RowOutcome(ACTION_CREATE)


ROW_VALIDATORS: Mapping[EntityType, Callable[[Mapping[str, str], int, TenantLookups], RowOutcome]] = {
    EntityType.CLIENTS: _validate_client,
    EntityType.PROJECTS: _validate_project,
    EntityType.TASKS: _validate_task,
    EntityType.USERS: _validate_user,
    EntityType.ADMINS: _validate_user,
    EntityType.TIME_ENTRIES: _validate_time_entry,
}


def validate_row(entity_type: EntityType, mapped: Mapping[str, str], row: int, lookups: TenantLookups) -> RowOutcome:
    return ROW_VALIDATORS[entity_type](mapped, row, lookups)


def check_field_formats(entity_type: EntityType | str, mapped: Mapping[str, str], row: int) -> ValidationError | None:
    """Return the first enum or date format error among the mapped fields."""

    for definition in get_entity_fields(entity_type):
        value = _text(mapped, definition.key)
        if not value:
            continue
        if definition.type is FieldType.ENUM and value.lower() not in definition.enum_values:
            allowed = ", ".join(definition.enum_values)
            return ValidationError(
                row,
                "INVALID_ENUM",
                f'Invalid {definition.label.lower()} "{value}". Must be one of: {allowed}',
                field=definition.key,
            )
        if definition.type is FieldType.DATETIME and parse_datetime(value) is None:
            return ValidationError(
                row, "INVALID_DATE", f'Invalid {definition.label.lower()}: "{value}"', field=definition.key
            )
    return None


def planned_key(entity_type: EntityType, mapped: Mapping[str, str], lookups: TenantLookups) -> str | None:
    """Natural key a create outcome would claim, used to spot in-sheet duplicates."""

    if entity_type is EntityType.CLIENTS:
        return _text(mapped, "companyName").lower() or None
    if entity_type is EntityType.PROJECTS:
        return _text(mapped, "name").lower() or None
    if entity_type in (EntityType.USERS, EntityType.ADMINS):
        return _text(mapped, "email").lower() or None
    if entity_type is EntityType.TASKS:
        title = _text(mapped, "title")
        if not title:
            return None
        project_name = _text(mapped, "projectName")
        if not project_name:
            return task_key(None, title)
        project_id = lookups.project_id(project_name)
        return task_key(project_id if project_id is not None else f"name:{project_name.lower()}", title)
    return None


def validate_rows(
    entity_type: EntityType | str,
    rows: Sequence[Mapping[str, str]],
    mapping: Sequence[ColumnMapping],
    lookups: TenantLookups,
    *,
    auto_create_missing: bool | None = None,
) -> ValidationSummary:
    """
    Classify every row without touching the store.

    Dependency errors are counted under ``would_fail_without_auto_create``.
    They also count as ``would_create`` unless ``auto_create_missing`` is
    explicitly ``False``, in which case they fail and are surfaced in ``errors``.
    """

    entity = coerce_entity_type(entity_type)
    summary = ValidationSummary()
    collector = _MissingDependencyCollector()
    planned: set[str] = set()

    for index, raw_row in enumerate(rows):
        row = index + 2
        mapped = apply_mapping(raw_row, mapping)
        collect_missing_deps(entity, mapped, row, lookups, collector)
        outcome = validate_row(entity, mapped, row, lookups)

        creatable = outcome.action != ACTION_SKIP and (outcome.error is None or outcome.error.is_dependency_error)
        if creatable:
            key = planned_key(entity, mapped, lookups)
            if key is not None and key in planned:
                outcome = RowOutcome(ACTION_SKIP)
            else:
                format_error = check_field_formats(entity, mapped, row)
                if format_error is not None:
                    outcome = RowOutcome(ACTION_SKIP, error=format_error)
                elif key is not None:
                    planned.add(key)

        _tally(summary, outcome, auto_create_missing)

    summary.missing_dependencies = collector.as_list()
    return summary


def _tally(summary: ValidationSummary, outcome: RowOutcome, auto_create_missing: bool | None) -> None:
    error = outcome.error
    if error is not None:
        if error.is_dependency_error:
            summary.would_fail_without_auto_create += 1
            if auto_create_missing is False:
                summary.would_fail += 1
                summary.errors.append(error)
            else:
                summary.would_create += 1
        else:
            summary.would_fail += 1
            summary.errors.append(error)
    elif outcome.action == ACTION_SKIP:
        summary.would_skip += 1
    elif outcome.action == ACTION_UPDATE:
        summary.would_update += 1
    else:
        summary.would_create += 1

    if outcome.warning is not None:
        summary.warnings.append(outcome.warning)


def validate_job(job, *, session=None) -> ValidationSummary:
    """Build fresh lookups for ``job.tenant_id`` and dry-run every row of ``job``."""

    lookups = build_lookups(job.tenant_id, session=session)
    return validate_rows(
        job.entity_type,
        job.raw_rows,
        job.mapping,
        lookups,
        auto_create_missing=job.auto_create_missing,
    )

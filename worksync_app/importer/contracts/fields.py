"""Per-entity field catalog for tabular imports.

Each importable entity type declares the target fields it accepts, their value
type, whether they are required, and the header aliases used by the mapping
resolver. The catalog is static and shared by every tenant.
"""

from __future__ import annotations

import enum
import re
from dataclasses import dataclass
from typing import Dict, Mapping, Tuple


class FieldType(str, enum.Enum):
    STRING = "string"
    NUMBER = "number"
    DATETIME = "datetime"
    ENUM = "enum"
    BOOLEAN = "boolean"
    EMAIL = "email"


class EntityType(str, enum.Enum):
    CLIENTS = "clients"
    PROJECTS = "projects"
    TASKS = "tasks"
    USERS = "users"
    ADMINS = "admins"
    TIME_ENTRIES = "time_entries"


class UnknownEntityTypeError(ValueError):
    """Raised when an entity type outside the catalog is requested."""

    def __init__(self, value: object):
        self.value = value
        choices = ", ".join(entity.value for entity in EntityType)
        super().__init__(f"Invalid entity type {value!r}. Must be one of: {choices}")


@dataclass(frozen=True)
class FieldDefinition:
    """Metadata describing one importable target field."""

    key: str
    label: str
    type: FieldType
    required: bool = False
    aliases: Tuple[str, ...] = ()
    enum_values: Tuple[str, ...] = ()
    is_resolver: bool = False
    example: str | None = None

    def names(self) -> Tuple[str, ...]:
        """Return the key, label and aliases used for header matching."""

        return (self.key, self.label, *self.aliases)

    def to_dict(self) -> dict:
        payload = {
            "key": self.key,
            "label": self.label,
            "type": self.type.value,
            "required": self.required,
            "aliases": list(self.aliases),
            "isResolver": self.is_resolver,
        }
        if self.enum_values:
            payload["enumValues"] = list(self.enum_values)
        if self.example is not None:
            payload["examples"] = [self.example]
        return payload


ENTITY_LABELS: Mapping[EntityType, str] = {
    EntityType.CLIENTS: "Clients",
    EntityType.PROJECTS: "Projects",
    EntityType.TASKS: "Tasks",
    EntityType.USERS: "Users",
    EntityType.ADMINS: "Admins",
    EntityType.TIME_ENTRIES: "Time Entries",
}

_PARENT_CLIENT_ALIASES = (
    "parent_client",
    "parent_company",
    "parent",
    "parentClient",
    "parent_client_name",
    "parentClientName",
    "division_of",
    "divisionOf",
    "client_group",
    "clientGroup",
)
_FIRST_NAME_ALIASES = ("first_name", "first", "given_name")
_LAST_NAME_ALIASES = ("last_name", "last", "family_name", "surname")
_ROLE_VALUES = ("employee", "admin", "manager", "contractor")

CLIENT_FIELDS: Tuple[FieldDefinition, ...] = (
    FieldDefinition(
        "companyName",
        "Company Name",
        FieldType.STRING,
        required=True,
        aliases=("company_name", "company", "name", "client_name", "clientName", "client"),
        example="Acme Corp",
    ),
    FieldDefinition("displayName", "Display Name", FieldType.STRING, aliases=("display_name", "display", "short_name")),
    FieldDefinition("industry", "Industry", FieldType.STRING, aliases=("sector", "vertical"), example="Technology"),
    FieldDefinition("website", "Website", FieldType.STRING, aliases=("url", "site", "web")),
    FieldDefinition("phone", "Phone", FieldType.STRING, aliases=("telephone", "tel", "phone_number")),
    FieldDefinition("email", "Email", FieldType.EMAIL, aliases=("contact_email", "company_email")),
    FieldDefinition(
        "status",
        "Status",
        FieldType.ENUM,
        aliases=("client_status",),
        enum_values=("active", "inactive", "lead", "prospect", "past", "on_hold"),
        example="active",
    ),
    FieldDefinition("notes", "Notes", FieldType.STRING, aliases=("note", "comments", "comment")),
    FieldDefinition(
        "parentClientName",
        "Parent Client",
        FieldType.STRING,
        aliases=_PARENT_CLIENT_ALIASES,
        is_resolver=True,
        example="Parent Corp",
    ),
    FieldDefinition("addressLine1", "Address Line 1", FieldType.STRING, aliases=("address_line_1", "address", "street")),
    FieldDefinition("addressLine2", "Address Line 2", FieldType.STRING, aliases=("address_line_2", "suite", "apt")),
    FieldDefinition("city", "City", FieldType.STRING, aliases=("town",)),
    FieldDefinition("state", "State", FieldType.STRING, aliases=("province", "region")),
    FieldDefinition("postalCode", "Postal Code", FieldType.STRING, aliases=("postal_code", "zip", "zip_code", "zipcode")),
    FieldDefinition("country", "Country", FieldType.STRING, aliases=("nation",)),
)

PROJECT_FIELDS: Tuple[FieldDefinition, ...] = (
    FieldDefinition(
        "name",
        "Project Name",
        FieldType.STRING,
        required=True,
        aliases=("project_name", "projectName", "project", "title"),
        example="Website Redesign",
    ),
    FieldDefinition(
        "clientName",
        "Client Name",
        FieldType.STRING,
        aliases=("client_name", "client", "company", "companyName"),
        is_resolver=True,
        example="Acme Corp",
    ),
    FieldDefinition("description", "Description", FieldType.STRING, aliases=("desc", "details", "summary")),
    FieldDefinition(
        "status",
        "Status",
        FieldType.ENUM,
        aliases=("project_status",),
        enum_values=("active", "completed", "on_hold", "archived"),
        example="active",
    ),
    FieldDefinition("color", "Color", FieldType.STRING, aliases=("project_color",), example="#3B82F6"),
    FieldDefinition(
        "budgetMinutes",
        "Budget (minutes)",
        FieldType.NUMBER,
        aliases=("budget_minutes", "budget", "budgetHours"),
        example="4800",
    ),
)

TASK_FIELDS: Tuple[FieldDefinition, ...] = (
    FieldDefinition(
        "title",
        "Task Title",
        FieldType.STRING,
        required=True,
        aliases=("task_title", "taskTitle", "task", "name", "task_name"),
        example="Design homepage mockup",
    ),
    FieldDefinition(
        "projectName",
        "Project Name",
        FieldType.STRING,
        aliases=("project_name", "project", "projectTitle"),
        is_resolver=True,
    ),
    FieldDefinition("description", "Description", FieldType.STRING, aliases=("desc", "details", "notes")),
    FieldDefinition(
        "status",
        "Status",
        FieldType.ENUM,
        aliases=("task_status",),
        enum_values=("todo", "in_progress", "review", "done"),
        example="todo",
    ),
    FieldDefinition(
        "priority",
        "Priority",
        FieldType.ENUM,
        aliases=("task_priority", "prio"),
        enum_values=("low", "medium", "high", "urgent"),
        example="medium",
    ),
    FieldDefinition(
        "assigneeEmail",
        "Assignee Email",
        FieldType.EMAIL,
        aliases=("assignee_email", "assignee", "assigned_to", "owner"),
        is_resolver=True,
        example="john@company.com",
    ),
    FieldDefinition("dueDate", "Due Date", FieldType.DATETIME, aliases=("due_date", "deadline", "due"), example="2026-03-15"),
    FieldDefinition("startDate", "Start Date", FieldType.DATETIME, aliases=("start_date", "start")),
    FieldDefinition(
        "estimateMinutes",
        "Estimate (minutes)",
        FieldType.NUMBER,
        aliases=("estimate_minutes", "estimate", "estimateHours", "time_estimate"),
    ),
    FieldDefinition(
        "parentTaskTitle",
        "Parent Task Title",
        FieldType.STRING,
        aliases=("parent_task", "parent", "parentTask", "subtask_of"),
        is_resolver=True,
    ),
)

USER_FIELDS: Tuple[FieldDefinition, ...] = (
    FieldDefinition(
        "email",
        "Email",
        FieldType.EMAIL,
        required=True,
        aliases=("user_email", "userEmail", "employee_email"),
        example="john@company.com",
    ),
    FieldDefinition("firstName", "First Name", FieldType.STRING, aliases=_FIRST_NAME_ALIASES),
    FieldDefinition("lastName", "Last Name", FieldType.STRING, aliases=_LAST_NAME_ALIASES),
    FieldDefinition("name", "Full Name", FieldType.STRING, aliases=("full_name", "fullName", "display_name")),
    FieldDefinition(
        "role",
        "Role",
        FieldType.ENUM,
        aliases=("user_role", "employee_role"),
        enum_values=_ROLE_VALUES,
        example="employee",
    ),
    FieldDefinition("isActive", "Is Active", FieldType.BOOLEAN, aliases=("is_active", "active", "status", "enabled")),
)

ADMIN_FIELDS: Tuple[FieldDefinition, ...] = (
    FieldDefinition(
        "email",
        "Email",
        FieldType.EMAIL,
        required=True,
        aliases=("admin_email", "user_email", "userEmail"),
        example="admin@company.com",
    ),
    FieldDefinition("firstName", "First Name", FieldType.STRING, aliases=_FIRST_NAME_ALIASES),
    FieldDefinition("lastName", "Last Name", FieldType.STRING, aliases=_LAST_NAME_ALIASES),
    FieldDefinition("name", "Full Name", FieldType.STRING, aliases=("full_name", "fullName", "display_name")),
)

TIME_ENTRY_FIELDS: Tuple[FieldDefinition, ...] = (
    FieldDefinition(
        "userEmail",
        "User Email",
        FieldType.EMAIL,
        required=True,
        aliases=("user_email", "email", "user", "employee_email"),
        is_resolver=True,
    ),
    FieldDefinition(
        "startTime",
        "Start Time",
        FieldType.DATETIME,
        required=True,
        aliases=("start_time", "start", "date", "startDate", "start_date", "entry_date"),
        example="2026-01-28T09:00:00Z",
    ),
    FieldDefinition("endTime", "End Time", FieldType.DATETIME, aliases=("end_time", "end", "endDate", "end_date")),
    FieldDefinition(
        "durationHours",
        "Duration (hours)",
        FieldType.NUMBER,
        aliases=("duration_hours", "hours", "billableHours", "billable_hours", "duration"),
        example="8",
    ),
    FieldDefinition("description", "Description", FieldType.STRING, aliases=("desc", "notes", "task", "work_description")),
    FieldDefinition(
        "scope",
        "Scope",
        FieldType.ENUM,
        aliases=("billable_scope", "entry_scope", "billable"),
        enum_values=("in_scope", "out_of_scope", "internal"),
        example="in_scope",
    ),
    FieldDefinition(
        "clientName",
        "Client Name",
        FieldType.STRING,
        aliases=("client_name", "client", "company", "companyName"),
        is_resolver=True,
    ),
    FieldDefinition("projectName", "Project Name", FieldType.STRING, aliases=("project_name", "project"), is_resolver=True),
    FieldDefinition(
        "taskTitle",
        "Task Title",
        FieldType.STRING,
        aliases=("task_title", "task", "taskName", "task_name"),
        is_resolver=True,
    ),
    FieldDefinition("isManual", "Is Manual", FieldType.BOOLEAN, aliases=("is_manual", "manual")),
)

ENTITY_FIELD_MAP: Mapping[EntityType, Tuple[FieldDefinition, ...]] = {
    EntityType.CLIENTS: CLIENT_FIELDS,
    EntityType.PROJECTS: PROJECT_FIELDS,
    EntityType.TASKS: TASK_FIELDS,
    EntityType.USERS: USER_FIELDS,
    EntityType.ADMINS: ADMIN_FIELDS,
    EntityType.TIME_ENTRIES: TIME_ENTRY_FIELDS,
}

_SEPARATORS = re.compile(r"[\s_-]+")
_NON_ALNUM = re.compile(r"[^a-z0-9]")


def normalize_header(header: str) -> str:
    """Collapse a header to lower-case alphanumerics for comparison."""

    collapsed = _SEPARATORS.sub("", header.strip().lower())
    return _NON_ALNUM.sub("", collapsed)


def coerce_entity_type(value: object) -> EntityType:
    """Return the ``EntityType`` for ``value`` or raise ``UnknownEntityTypeError``."""

    if isinstance(value, EntityType):
        return value
    try:
        return EntityType(str(value).strip().lower())
    except ValueError as exc:
        raise UnknownEntityTypeError(value) from exc


def get_entity_fields(entity_type: EntityType | str) -> Tuple[FieldDefinition, ...]:
    return ENTITY_FIELD_MAP[coerce_entity_type(entity_type)]


def get_field_index(entity_type: EntityType | str) -> Dict[str, FieldDefinition]:
    """Return the catalog for ``entity_type`` keyed by field key."""

    return {field.key: field for field in get_entity_fields(entity_type)}


def describe_entity(entity_type: EntityType | str) -> dict:
    """Return the JSON-ready catalog payload served to the import wizard."""

    entity = coerce_entity_type(entity_type)
    return {
        "entityType": entity.value,
        "label": ENTITY_LABELS[entity],
        "fields": [field.to_dict() for field in ENTITY_FIELD_MAP[entity]],
    }

# worksync_app/models/__init__.py
"""
Database models package
"""

from .base import BaseModel, db
from .importer import ImportRun, ImportRunStatus, IntegrationEntityMap
from .tenant import Tenant, TenantWorkspaceMissing, Workspace
from .work import Client, Project, Section, Subtask, Task, TaskAssignee, TimeEntry, User

__all__ = [
    "db",
    "BaseModel",
    "Tenant",
    "TenantWorkspaceMissing",
    "Workspace",
    "User",
    "Client",
    "Project",
    "Section",
    "Task",
    "TaskAssignee",
    "Subtask",
    "TimeEntry",
    "ImportRun",
    "ImportRunStatus",
    "IntegrationEntityMap",
]

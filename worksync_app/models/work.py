# worksync_app/models/work.py

"""
Work-management entities targeted by the bulk importer and the Asana sync.

Enumerated values (status, role, scope) are stored as plain strings; the
importer field catalog owns the allowed value sets.
"""

from __future__ import annotations

from datetime import datetime

from sqlalchemy import ForeignKey, Index, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column, relationship

from .base import BaseModel, db


class User(BaseModel):
    __tablename__ = "users"

    id: Mapped[int] = mapped_column(primary_key=True)
    tenant_id: Mapped[int] = mapped_column(ForeignKey("tenants.id"), nullable=False, index=True)
    email: Mapped[str] = mapped_column(db.String(255), nullable=False)
    name: Mapped[str | None] = mapped_column(db.String(200), nullable=True)
    first_name: Mapped[str | None] = mapped_column(db.String(100), nullable=True)
    last_name: Mapped[str | None] = mapped_column(db.String(100), nullable=True)
    role: Mapped[str] = mapped_column(db.String(32), nullable=False, default="employee")
    is_active: Mapped[bool] = mapped_column(db.Boolean, nullable=False, default=True)

    __table_args__ = (UniqueConstraint("tenant_id", "email", name="uq_users_tenant_email"),)

    def __repr__(self):
        return f"<User {self.email}>"


class Client(BaseModel):
    __tablename__ = "clients"

    id: Mapped[int] = mapped_column(primary_key=True)
    tenant_id: Mapped[int] = mapped_column(ForeignKey("tenants.id"), nullable=False, index=True)
    workspace_id: Mapped[int | None] = mapped_column(ForeignKey("workspaces.id"), nullable=True)
    parent_client_id: Mapped[int | None] = mapped_column(ForeignKey("clients.id"), nullable=True)
    company_name: Mapped[str] = mapped_column(db.String(255), nullable=False)
    display_name: Mapped[str | None] = mapped_column(db.String(255), nullable=True)
    industry: Mapped[str | None] = mapped_column(db.String(100), nullable=True)
    website: Mapped[str | None] = mapped_column(db.String(500), nullable=True)
    phone: Mapped[str | None] = mapped_column(db.String(50), nullable=True)
    email: Mapped[str | None] = mapped_column(db.String(255), nullable=True)
    status: Mapped[str] = mapped_column(db.String(32), nullable=False, default="active")
    notes: Mapped[str | None] = mapped_column(db.Text, nullable=True)
    address_line1: Mapped[str | None] = mapped_column(db.String(255), nullable=True)
    address_line2: Mapped[str | None] = mapped_column(db.String(255), nullable=True)
    city: Mapped[str | None] = mapped_column(db.String(100), nullable=True)
    state: Mapped[str | None] = mapped_column(db.String(100), nullable=True)
    postal_code: Mapped[str | None] = mapped_column(db.String(20), nullable=True)
    country: Mapped[str | None] = mapped_column(db.String(100), nullable=True)

    parent_client = relationship("Client", remote_side=[id])

    __table_args__ = (Index("idx_clients_tenant_name", "tenant_id", "company_name"),)

    def __repr__(self):
        return f"<Client {self.company_name}>"


class Project(BaseModel):
    __tablename__ = "projects"

    id: Mapped[int] = mapped_column(primary_key=True)
    tenant_id: Mapped[int] = mapped_column(ForeignKey("tenants.id"), nullable=False, index=True)
    workspace_id: Mapped[int | None] = mapped_column(ForeignKey("workspaces.id"), nullable=True)
    client_id: Mapped[int | None] = mapped_column(ForeignKey("clients.id"), nullable=True)
    name: Mapped[str] = mapped_column(db.String(255), nullable=False)
    description: Mapped[str | None] = mapped_column(db.Text, nullable=True)
    status: Mapped[str] = mapped_column(db.String(32), nullable=False, default="active")
    color: Mapped[str | None] = mapped_column(db.String(16), nullable=True)
    budget_minutes: Mapped[int | None] = mapped_column(db.Integer, nullable=True)
    created_by_user_id: Mapped[int | None] = mapped_column(ForeignKey("users.id"), nullable=True)

    client = relationship("Client")
    sections = relationship("Section", back_populates="project", cascade="all, delete-orphan")

    __table_args__ = (Index("idx_projects_tenant_name", "tenant_id", "name"),)

    def __repr__(self):
        return f"<Project {self.name}>"


class Section(BaseModel):
    __tablename__ = "sections"

    id: Mapped[int] = mapped_column(primary_key=True)
    project_id: Mapped[int] = mapped_column(ForeignKey("projects.id"), nullable=False, index=True)
    name: Mapped[str] = mapped_column(db.String(255), nullable=False)
    order_index: Mapped[int] = mapped_column(db.Integer, nullable=False, default=0)

    project = relationship("Project", back_populates="sections")


class Task(BaseModel):
    __tablename__ = "tasks"

    id: Mapped[int] = mapped_column(primary_key=True)
    tenant_id: Mapped[int] = mapped_column(ForeignKey("tenants.id"), nullable=False, index=True)
    project_id: Mapped[int | None] = mapped_column(ForeignKey("projects.id"), nullable=True, index=True)
    section_id: Mapped[int | None] = mapped_column(ForeignKey("sections.id"), nullable=True)
    parent_task_id: Mapped[int | None] = mapped_column(ForeignKey("tasks.id"), nullable=True)
    title: Mapped[str] = mapped_column(db.String(500), nullable=False)
    description: Mapped[str | None] = mapped_column(db.Text, nullable=True)
    status: Mapped[str] = mapped_column(db.String(32), nullable=False, default="todo")
    priority: Mapped[str] = mapped_column(db.String(32), nullable=False, default="medium")
    start_date: Mapped[datetime | None] = mapped_column(db.DateTime(timezone=True), nullable=True)
    due_date: Mapped[datetime | None] = mapped_column(db.DateTime(timezone=True), nullable=True)
    estimate_minutes: Mapped[int | None] = mapped_column(db.Integer, nullable=True)
    order_index: Mapped[int] = mapped_column(db.Integer, nullable=False, default=0)
    created_by_user_id: Mapped[int | None] = mapped_column(ForeignKey("users.id"), nullable=True)

    assignees = relationship("TaskAssignee", back_populates="task", cascade="all, delete-orphan")
    subtasks = relationship("Subtask", back_populates="task", cascade="all, delete-orphan")

    def __repr__(self):
        return f"<Task {self.title}>"


class TaskAssignee(BaseModel):
    __tablename__ = "task_assignees"

    id: Mapped[int] = mapped_column(primary_key=True)
    tenant_id: Mapped[int] = mapped_column(ForeignKey("tenants.id"), nullable=False)
    task_id: Mapped[int] = mapped_column(ForeignKey("tasks.id"), nullable=False, index=True)
    user_id: Mapped[int] = mapped_column(ForeignKey("users.id"), nullable=False)

    task = relationship("Task", back_populates="assignees")

    __table_args__ = (UniqueConstraint("task_id", "user_id", name="uq_task_assignees_task_user"),)


class Subtask(BaseModel):
    __tablename__ = "subtasks"

    id: Mapped[int] = mapped_column(primary_key=True)
    task_id: Mapped[int] = mapped_column(ForeignKey("tasks.id"), nullable=False, index=True)
    title: Mapped[str] = mapped_column(db.String(500), nullable=False)
    status: Mapped[str] = mapped_column(db.String(32), nullable=False, default="todo")
    completed: Mapped[bool] = mapped_column(db.Boolean, nullable=False, default=False)
    priority: Mapped[str] = mapped_column(db.String(32), nullable=False, default="medium")
    due_date: Mapped[datetime | None] = mapped_column(db.DateTime(timezone=True), nullable=True)
    assignee_id: Mapped[int | None] = mapped_column(ForeignKey("users.id"), nullable=True)
    order_index: Mapped[int] = mapped_column(db.Integer, nullable=False, default=0)

    task = relationship("Task", back_populates="subtasks")


class TimeEntry(BaseModel):
    __tablename__ = "time_entries"

    id: Mapped[int] = mapped_column(primary_key=True)
    tenant_id: Mapped[int] = mapped_column(ForeignKey("tenants.id"), nullable=False, index=True)
    workspace_id: Mapped[int | None] = mapped_column(ForeignKey("workspaces.id"), nullable=True)
    user_id: Mapped[int] = mapped_column(ForeignKey("users.id"), nullable=False, index=True)
    client_id: Mapped[int | None] = mapped_column(ForeignKey("clients.id"), nullable=True)
    project_id: Mapped[int | None] = mapped_column(ForeignKey("projects.id"), nullable=True)
    task_id: Mapped[int | None] = mapped_column(ForeignKey("tasks.id"), nullable=True)
    description: Mapped[str | None] = mapped_column(db.Text, nullable=True)
    scope: Mapped[str] = mapped_column(db.String(32), nullable=False, default="in_scope")
    start_time: Mapped[datetime] = mapped_column(db.DateTime(timezone=True), nullable=False)
    end_time: Mapped[datetime | None] = mapped_column(db.DateTime(timezone=True), nullable=True)
    duration_seconds: Mapped[int] = mapped_column(db.Integer, nullable=False, default=0)
    is_manual: Mapped[bool] = mapped_column(db.Boolean, nullable=False, default=True)

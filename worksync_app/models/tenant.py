# worksync_app/models/tenant.py

from __future__ import annotations

from sqlalchemy import ForeignKey, Index, select
from sqlalchemy.orm import Mapped, mapped_column, relationship

from .base import BaseModel, db


class TenantWorkspaceMissing(LookupError):
    """Raised when a tenant has no workspace to attach imported records to."""


class Tenant(BaseModel):
    """A customer account; every imported record is scoped to exactly one tenant."""

    __tablename__ = "tenants"

    id: Mapped[int] = mapped_column(primary_key=True)
    name: Mapped[str] = mapped_column(db.String(200), nullable=False)
    slug: Mapped[str] = mapped_column(db.String(100), unique=True, nullable=False, index=True)
    is_active: Mapped[bool] = mapped_column(db.Boolean, nullable=False, default=True)

    workspaces = relationship("Workspace", back_populates="tenant", cascade="all, delete-orphan")

    def __repr__(self):
        return f"<Tenant {self.slug}>"


class Workspace(BaseModel):
    __tablename__ = "workspaces"

    id: Mapped[int] = mapped_column(primary_key=True)
    tenant_id: Mapped[int] = mapped_column(ForeignKey("tenants.id"), nullable=False, index=True)
    name: Mapped[str] = mapped_column(db.String(200), nullable=False)
    is_primary: Mapped[bool] = mapped_column(db.Boolean, nullable=False, default=False)

    tenant = relationship("Tenant", back_populates="workspaces")

    __table_args__ = (Index("idx_workspace_tenant_primary", "tenant_id", "is_primary"),)

    @staticmethod
    def primary_id_for_tenant(tenant_id: int, session=None) -> int:
        """
        Return the primary workspace id for ``tenant_id``.

        Falls back to the oldest workspace when none is flagged primary and
        raises ``TenantWorkspaceMissing`` when the tenant has no workspace.
        """
        session = session or db.session
        stmt = (
            select(Workspace.id)
            .where(Workspace.tenant_id == tenant_id)
            .order_by(Workspace.is_primary.desc(), Workspace.id.asc())
            .limit(1)
        )
        workspace_id = session.execute(stmt).scalar_one_or_none()
        if workspace_id is None:
            raise TenantWorkspaceMissing(f"Tenant {tenant_id} has no workspace.")
        return workspace_id

    @staticmethod
    def resolve_for_tenant(tenant_id: int, workspace_id=None, session=None) -> int:
        """Return ``workspace_id`` if ``tenant_id`` owns it, else the tenant's primary workspace."""
        if workspace_id in (None, ""):
            return Workspace.primary_id_for_tenant(tenant_id, session=session)
        session = session or db.session
        try:
            candidate = int(workspace_id)
        except (TypeError, ValueError):
            raise TenantWorkspaceMissing(f"Invalid workspace id {workspace_id!r}.") from None
        stmt = select(Workspace.id).where(Workspace.id == candidate, Workspace.tenant_id == tenant_id)
        if session.execute(stmt).scalar_one_or_none() is None:
            raise TenantWorkspaceMissing(f"Workspace {candidate} not found for tenant {tenant_id}.")
        return candidate

    def __repr__(self):
        return f"<Workspace {self.name} tenant={self.tenant_id}>"

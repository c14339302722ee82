"""
Helpers for idempotent external sync decisions backed by integration_entity_map.
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Mapping

from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.orm import Session

from worksync_app.models import IntegrationEntityMap

_DIALECT_INSERTS = {"postgresql": postgresql.insert, "sqlite": sqlite.insert}


def lookup_local_id(
    session: Session,
    *,
    tenant_id: int,
    provider: str,
    entity_type: str,
    provider_entity_id: str,
) -> int | None:
    """Return the local id mapped to a provider record, or ``None``."""

    row = (
        session.query(IntegrationEntityMap.local_entity_id)
        .filter_by(
            tenant_id=tenant_id,
            provider=provider,
            entity_type=entity_type,
            provider_entity_id=str(provider_entity_id),
        )
        .first()
    )
    return row[0] if row else None


def upsert_mapping(
    session: Session,
    *,
    tenant_id: int,
    provider: str,
    entity_type: str,
    provider_entity_id: str,
    local_entity_id: int,
    metadata: Mapping[str, Any] | None = None,
) -> None:
    """
    Insert or refresh the mapping row for a provider record.

    Uses a native ``ON CONFLICT`` upsert on the composite key where the
    dialect supports it; other dialects fall back to select-then-write.
    """

    now = datetime.now(timezone.utc)
    values = {
        "tenant_id": tenant_id,
        "provider": provider,
        "entity_type": entity_type,
        "provider_entity_id": str(provider_entity_id),
        "local_entity_id": local_entity_id,
        "metadata_json": dict(metadata) if metadata is not None else None,
        "last_seen_at": now,
        "created_at": now,
        "updated_at": now,
    }

    insert = _DIALECT_INSERTS.get(session.get_bind().dialect.name)
    if insert is not None:
        stmt = insert(IntegrationEntityMap).values(**values)
        stmt = stmt.on_conflict_do_update(
            index_elements=["tenant_id", "provider", "entity_type", "provider_entity_id"],
            set_={
                "local_entity_id": stmt.excluded.local_entity_id,
                "metadata_json": stmt.excluded.metadata_json,
                "last_seen_at": stmt.excluded.last_seen_at,
                "updated_at": stmt.excluded.updated_at,
            },
        )
        session.execute(stmt)
        return

    existing = (
        session.query(IntegrationEntityMap)
        .filter_by(
            tenant_id=tenant_id,
            provider=provider,
            entity_type=entity_type,
            provider_entity_id=str(provider_entity_id),
        )
        .first()
    )
    if existing is None:
        session.add(IntegrationEntityMap(**values))
    else:
        existing.local_entity_id = local_entity_id
        existing.metadata_json = values["metadata_json"]
        existing.last_seen_at = now
    session.flush()

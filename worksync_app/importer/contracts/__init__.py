"""Canonical field catalog helpers for importer adapters."""

from __future__ import annotations

from .fields import (
    ENTITY_FIELD_MAP,
    ENTITY_LABELS,
    EntityType,
    FieldDefinition,
    FieldType,
    UnknownEntityTypeError,
    coerce_entity_type,
    describe_entity,
    get_entity_fields,
    get_field_index,
    normalize_header,
)

__all__ = [
    "ENTITY_FIELD_MAP",
    "ENTITY_LABELS",
    "EntityType",
    "FieldDefinition",
    "FieldType",
    "UnknownEntityTypeError",
    "coerce_entity_type",
    "describe_entity",
    "get_entity_fields",
    "get_field_index",
    "normalize_header",
]

"""Column mapping suggestion, loading and application for tabular imports."""

from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Iterable, List, Mapping, Sequence

import yaml

from worksync_app.importer.contracts import FieldDefinition, FieldType, normalize_header

from .transforms import TRANSFORMS, apply_transform, parse_datetime

EXACT_KEY_SCORE = 100
NAME_MATCH_SCORE = 90
SUBSTRING_SCORE = 70
MIN_ACCEPT_SCORE = 50

DEFAULT_TRANSFORMS: Mapping[FieldType, str] = {
    FieldType.EMAIL: "lowercase",
    FieldType.DATETIME: "parseDate",
    FieldType.NUMBER: "parseNumber",
    FieldType.BOOLEAN: "parseBoolean",
}


class MappingLoadError(RuntimeError):
    """Raised when a column mapping payload or file cannot be loaded."""


@dataclass(frozen=True)
class ColumnMapping:
    source_column: str
    target_field: str
    transform: str | None = None
    static_value: str | None = None
    enum_map: Mapping[str, str] | None = field(default=None, hash=False)

    @classmethod
    def from_dict(cls, payload: Mapping[str, Any]) -> "ColumnMapping":
        if not isinstance(payload, Mapping):
            raise MappingLoadError(f"Column mapping must be an object, got {payload!r}")
        target = payload.get("targetField", payload.get("target_field"))
        if not target or not str(target).strip():
            raise MappingLoadError(f"Column mapping missing 'targetField': {dict(payload)!r}")
        source = payload.get("sourceColumn", payload.get("source_column")) or ""
        transform = payload.get("transform") or None
        if transform is not None and transform not in TRANSFORMS:
            raise MappingLoadError(f"Unknown transform '{transform}' for field '{target}'.")
        static_value = payload.get("staticValue", payload.get("static_value"))
        enum_map = payload.get("enumMap", payload.get("enum_map"))
        if enum_map is not None and not isinstance(enum_map, Mapping):
            raise MappingLoadError(f"enumMap for field '{target}' must be an object.")
        return cls(
            source_column=str(source),
            target_field=str(target).strip(),
            transform=transform,
            static_value=None if static_value is None else str(static_value),
            enum_map={str(k): str(v) for k, v in enum_map.items()} if enum_map else None,
        )

    def to_dict(self) -> dict:
        payload: dict[str, Any] = {"sourceColumn": self.source_column, "targetField": self.target_field}
        if self.transform:
            payload["transform"] = self.transform
        if self.static_value is not None:
            payload["staticValue"] = self.static_value
        if self.enum_map:
            payload["enumMap"] = dict(self.enum_map)
        return payload


def parse_mapping_payload(payload: Any) -> List[ColumnMapping]:
    """Coerce a JSON/YAML mapping list into ``ColumnMapping`` objects."""

    if not isinstance(payload, list):
        raise MappingLoadError("mapping must be an array")
    return [ColumnMapping.from_dict(entry) for entry in payload]


def load_mapping_file(path: str | Path) -> List[ColumnMapping]:
    """
    Load a confirmed column mapping from a YAML or JSON file.

    The document is either a list of mapping entries or an object with a
    ``mapping`` key holding that list.
    """

    path = Path(path)
    if not path.exists():
        raise MappingLoadError(f"Mapping file not found at {path}")
    try:
        raw = yaml.safe_load(path.read_text(encoding="utf-8"))
    except yaml.YAMLError as exc:
        raise MappingLoadError(f"Failed to parse mapping file at {path}: {exc}") from exc
    if isinstance(raw, Mapping):
        raw = raw.get("mapping")
    return parse_mapping_payload(raw)


def _score_column(normalized_column: str, normalized_key: str, normalized_names: Sequence[str]) -> int:
    if normalized_column == normalized_key:
        return EXACT_KEY_SCORE
    if normalized_column in normalized_names:
        return NAME_MATCH_SCORE
    for name in normalized_names:
        if name and (name in normalized_column or normalized_column in name):
            return SUBSTRING_SCORE
    return 0


def suggest_mappings(source_columns: Iterable[str], fields: Sequence[FieldDefinition]) -> List[ColumnMapping]:
    """
    Propose a column for each catalog field, in catalog order.

    Columns are claimed first-fit: once a field takes a column no later field
    may use it. Fields without a candidate scoring at least
    ``MIN_ACCEPT_SCORE`` are left unmapped.
    """

    columns = list(source_columns)
    used: set[str] = set()
    mappings: List[ColumnMapping] = []

    for definition in fields:
        normalized_key = normalize_header(definition.key)
        normalized_names = [normalize_header(name) for name in definition.names()]
        best_column: str | None = None
        best_score = 0

        for column in columns:
            if column in used:
                continue
            normalized_column = normalize_header(column)
            if not normalized_column:
                continue
            score = _score_column(normalized_column, normalized_key, normalized_names)
            if score > best_score:
                best_column = column
                best_score = score
            if best_score == EXACT_KEY_SCORE:
                break

        if best_column is not None and best_score >= MIN_ACCEPT_SCORE:
            used.add(best_column)
            mappings.append(
                ColumnMapping(
                    source_column=best_column,
                    target_field=definition.key,
                    transform=DEFAULT_TRANSFORMS.get(definition.type),
                )
            )

    return mappings


def apply_mapping(row: Mapping[str, str], mappings: Sequence[ColumnMapping]) -> Dict[str, str]:
    """Project a raw row onto target field keys, running each mapping's transform."""

    mapped: Dict[str, str] = {}
    for mapping in mappings:
        if mapping.static_value:
            value = mapping.static_value
        else:
            value = row.get(mapping.source_column, "")
        if value is None:
            value = ""
        mapped[mapping.target_field] = apply_transform(mapping.transform, str(value), mapping.enum_map)
    return mapped


__all__ = [
    "ColumnMapping",
    "DEFAULT_TRANSFORMS",
    "MappingLoadError",
    "apply_mapping",
    "load_mapping_file",
    "parse_datetime",
    "parse_mapping_payload",
    "suggest_mappings",
]

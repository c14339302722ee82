"""
Importer adapter registry.

Descriptors are plain metadata so configuration can be validated before any
adapter module is imported.
"""

from __future__ import annotations

from collections import OrderedDict
from dataclasses import dataclass
from typing import Iterable, Mapping, Sequence, Tuple


@dataclass(frozen=True)
class AdapterDescriptor:
    """Metadata describing an importer adapter."""

    name: str
    title: str
    required_config: Tuple[str, ...] = ()
    summary: str | None = None


def get_adapter_registry() -> Mapping[str, AdapterDescriptor]:
    return OrderedDict(
        (
            (
                "csv",
                AdapterDescriptor(
                    name="csv",
                    title="CSV Upload",
                    summary="Bulk-load clients, projects, tasks, users and time entries from CSV files.",
                ),
            ),
            (
                "asana",
                AdapterDescriptor(
                    name="asana",
                    title="Asana",
                    required_config=("IMPORTER_ASANA_ACCESS_TOKEN",),
                    summary="Synchronize users, projects, sections, tasks and subtasks from an Asana workspace.",
                ),
            ),
        )
    )


def resolve_adapters(
    configured: Sequence[str],
    registry: Mapping[str, AdapterDescriptor] | None = None,
) -> Iterable[AdapterDescriptor]:
    """
    Map configured adapter names to registry descriptors, raising on unknowns.
    """
    registry = registry or get_adapter_registry()
    unknown = sorted({adapter for adapter in configured if adapter not in registry})
    if unknown:
        raise ValueError(
            "Unknown importer adapters configured: "
            + ", ".join(unknown)
            + ". Supported adapters: "
            + ", ".join(registry)
            + "."
        )
    return tuple(registry[adapter] for adapter in configured)

"""Importer pipeline helpers."""

from __future__ import annotations

from .asana import (
    AsanaExecutionResult,
    AsanaImportCancelled,
    AsanaImportError,
    AsanaImportOptions,
    AsanaImportPipeline,
    AsanaOptionsError,
    AsanaValidationResult,
)
from .entity_map import lookup_local_id, upsert_mapping
from .execution import AutoCreateCounts, ErrorRow, ImportSummary, RowImporter, auto_create_missing_dependencies, execute_job
from .job_store import ImportJob, ImportJobNotFound, ImportJobStatus, ImportJobStore, job_to_dto
from .lookups import TenantLookups, build_lookups, task_key
from .validation import (
    MissingDependency,
    ValidationError,
    ValidationSummary,
    ValidationWarning,
    collect_missing_deps,
    validate_job,
    validate_rows,
)

__all__ = [
    "AsanaExecutionResult",
    "AsanaImportCancelled",
    "AsanaImportError",
    "AsanaImportOptions",
    "AsanaImportPipeline",
    "AsanaOptionsError",
    "AsanaValidationResult",
    "AutoCreateCounts",
    "ErrorRow",
    "ImportJob",
    "ImportJobNotFound",
    "ImportJobStatus",
    "ImportJobStore",
    "ImportSummary",
    "MissingDependency",
    "RowImporter",
    "TenantLookups",
    "ValidationError",
    "ValidationSummary",
    "ValidationWarning",
    "auto_create_missing_dependencies",
    "build_lookups",
    "collect_missing_deps",
    "execute_job",
    "job_to_dto",
    "lookup_local_id",
    "task_key",
    "upsert_mapping",
    "validate_job",
    "validate_rows",
]

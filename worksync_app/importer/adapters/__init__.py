"""Importer source adapters: tabular CSV uploads and the Asana API."""

from __future__ import annotations

from .asana import (
    AsanaApiError,
    AsanaClient,
    AsanaClientError,
    AsanaNotConfigured,
    AsanaRetryExhausted,
    check_asana_adapter_readiness,
    create_asana_client,
)
from .csv_rows import (
    CSVHeaderError,
    CSVParseError,
    CSVUploadTooLarge,
    ParsedTable,
    check_upload_size,
    parse_csv,
    serialize_csv,
    serialize_error_rows,
)

__all__ = [
    "AsanaApiError",
    "AsanaClient",
    "AsanaClientError",
    "AsanaNotConfigured",
    "AsanaRetryExhausted",
    "CSVHeaderError",
    "CSVParseError",
    "CSVUploadTooLarge",
    "ParsedTable",
    "check_asana_adapter_readiness",
    "check_upload_size",
    "create_asana_client",
    "parse_csv",
    "serialize_csv",
    "serialize_error_rows",
]

"""
Importer helpers shared by the HTTP views and the CLI for staging CSV uploads.
"""

from __future__ import annotations

from pathlib import Path
from typing import Any

from werkzeug.datastructures import FileStorage
from werkzeug.utils import secure_filename

from worksync_app.importer.adapters.csv_rows import CSVParseError, check_upload_size, parse_csv
from worksync_app.importer.contracts import get_entity_fields
from worksync_app.importer.mapping import suggest_mappings
from worksync_app.importer.pipeline.job_store import ImportJob, ImportJobStatus, ImportJobStore

SAMPLE_ROW_COUNT = 20
CSV_EXTENSIONS: tuple[str, ...] = ("csv", "txt")


class EmptyUploadError(CSVParseError):
    """Raised when an upload has a header but no data rows."""


def decode_upload(file: FileStorage) -> tuple[str, str | None]:
    """Return ``(text, file_name)`` for a multipart CSV upload."""

    file_name = secure_filename(file.filename or "") or None
    if file_name and "." in file_name and file_name.rsplit(".", 1)[1].lower() not in CSV_EXTENSIONS:
        raise CSVParseError(f"Unsupported file type: {file_name}")
    raw = file.read()
    return raw.decode("utf-8-sig", errors="replace"), file_name


def read_csv_file(path: str | Path) -> str:
    return Path(path).read_text(encoding="utf-8-sig")


def stage_upload(
    store: ImportJobStore | None,
    job: ImportJob,
    text: str,
    *,
    file_name: str | None = None,
    max_rows: int,
    max_mb: int,
) -> dict[str, Any]:
    """
    Parse ``text`` into ``job`` and return the upload response payload.

    The job is reset to ``draft`` with a suggested mapping; any previous
    validation or import results are cleared.
    """

    check_upload_size(text, max_mb=max_mb)
    table = parse_csv(text, max_rows=max_rows, max_field_size=max_mb * 1024 * 1024)
    if not table.rows:
        raise EmptyUploadError("CSV file has no data rows.")

    fields = get_entity_fields(job.entity_type)
    suggested = suggest_mappings(table.columns, fields)
    changes = {
        "file_name": file_name or job.file_name,
        "columns": list(table.columns),
        "raw_rows": table.rows,
        "sample_rows": table.rows[:SAMPLE_ROW_COUNT],
        "mapping": suggested,
        "status": ImportJobStatus.DRAFT,
        "validation_summary": None,
        "import_summary": None,
        "error_rows": [],
        "progress": None,
    }
    if store is not None:
        store.update(job.id, **changes)
    else:
        for name, value in changes.items():
            setattr(job, name, value)

    return {
        "columns": list(table.columns),
        "sampleRows": table.rows[:SAMPLE_ROW_COUNT],
        "rowCount": len(table.rows),
        "rawRowCount": table.raw_row_count,
        "truncated": table.truncated,
        "suggestedMapping": [mapping.to_dict() for mapping in suggested],
        "fields": [field.to_dict() for field in fields],
    }

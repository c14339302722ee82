"""Tabular CSV adapter for the bulk import wizard.

Turns raw delimited upload text into a header plus ordered row mappings, and
serializes rows back to RFC-4180 text for error exports. Quoted fields may
contain separators, doubled quotes and embedded newlines.
"""

from __future__ import annotations

import csv
import io
from dataclasses import dataclass, field
from typing import Iterable, Iterator, Mapping, Sequence

MAX_ROW_COUNT = 50000
DEFAULT_MAX_FIELD_SIZE = 25 * 1024 * 1024
ERROR_EXPORT_COLUMNS = ("row", "primaryKey", "errorCode", "message")


class CSVParseError(Exception):
    """Base exception for CSV parsing failures."""


class CSVHeaderError(CSVParseError):
    """Raised when the header row is missing or unusable."""

    def __init__(self, message: str = "CSV header row is missing.", *, duplicates: Sequence[str] | None = None):
        if duplicates:
            message = "Duplicate CSV columns detected: " + ", ".join(sorted(duplicates)) + "."
        super().__init__(message)
        self.duplicates = tuple(duplicates or ())


class CSVUploadTooLarge(CSVParseError):
    """Raised when upload text exceeds the configured size limit."""

    def __init__(self, size_bytes: int, max_bytes: int) -> None:
        super().__init__(f"File too large. Maximum size is {max_bytes // (1024 * 1024)}MB")
        self.size_bytes = size_bytes
        self.max_bytes = max_bytes


@dataclass(frozen=True)
class ParsedTable:
    """Header plus data rows parsed from an upload."""

    columns: tuple[str, ...]
    rows: list[dict[str, str]] = field(default_factory=list)
    raw_row_count: int = 0

    @property
    def truncated(self) -> bool:
        return self.raw_row_count > len(self.rows)


def _sanitize_header(header: str | None) -> str:
    token = (header or "").strip()
    return token.lstrip("\ufeff").strip()


def _row_is_blank(cells: Sequence[str]) -> bool:
    return all(cell.strip() == "" for cell in cells)


def _iter_records(text: str, max_field_size: int) -> Iterator[list[str]]:
    csv.field_size_limit(max_field_size)
    reader = csv.reader(io.StringIO(text, newline=""), strict=False)
    try:
        for cells in reader:
            if not cells or _row_is_blank(cells):
                continue
            yield cells
    except csv.Error as exc:
        raise CSVParseError(f"Malformed CSV near line {reader.line_num}: {exc}") from exc


def _build_columns(raw_headers: Sequence[str]) -> tuple[str, ...]:
    columns: list[str] = []
    duplicates: list[str] = []
    for position, raw in enumerate(raw_headers, start=1):
        name = _sanitize_header(raw) or f"column_{position}"
        if name in columns:
            duplicates.append(name)
        columns.append(name)
    if duplicates:
        raise CSVHeaderError(duplicates=duplicates)
    return tuple(columns)


def parse_csv(
    text: str,
    *,
    max_rows: int = MAX_ROW_COUNT,
    max_field_size: int = DEFAULT_MAX_FIELD_SIZE,
) -> ParsedTable:
    """
    Parse delimited ``text`` into a :class:`ParsedTable`.

    Blank lines are skipped, short rows are padded with empty strings and
    extra cells beyond the header are dropped. Rows past ``max_rows`` are
    counted in ``raw_row_count`` but not returned. Reader failures, such as a
    cell longer than ``max_field_size`` characters, raise :class:`CSVParseError`.
    """
    records = _iter_records(text.lstrip("\ufeff"), max_field_size)
    try:
        raw_headers = next(records)
    except StopIteration:
        raise CSVHeaderError() from None

    columns = _build_columns(raw_headers)
    width = len(columns)
    rows: list[dict[str, str]] = []
    raw_row_count = 0
    for cells in records:
        raw_row_count += 1
        if len(rows) >= max_rows:
            continue
        padded = list(cells[:width]) + [""] * max(0, width - len(cells))
        rows.append(dict(zip(columns, padded)))

    return ParsedTable(columns=columns, rows=rows, raw_row_count=raw_row_count)


def serialize_csv(columns: Sequence[str], rows: Iterable[Mapping[str, object]]) -> str:
    """Render ``rows`` as CSV text with ``columns`` as the header row."""

    buffer = io.StringIO(newline="")
    writer = csv.writer(buffer, quoting=csv.QUOTE_MINIMAL, lineterminator="\r\n")
    writer.writerow(columns)
    for row in rows:
        writer.writerow(["" if row.get(column) is None else str(row.get(column)) for column in columns])
    return buffer.getvalue()


def serialize_error_rows(error_rows: Iterable[Mapping[str, object]]) -> str:
    """Render execution error rows as the downloadable ``errors.csv`` export."""

    return serialize_csv(ERROR_EXPORT_COLUMNS, error_rows)


def check_upload_size(text: str, *, max_mb: int) -> None:
    max_bytes = max_mb * 1024 * 1024
    size_bytes = len(text.encode("utf-8"))
    if size_bytes > max_bytes:
        raise CSVUploadTooLarge(size_bytes, max_bytes)

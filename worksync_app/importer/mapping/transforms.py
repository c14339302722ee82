"""
Value transforms applied to mapped cells.

Every transform is total: unparseable input degrades to the trimmed source text
so the validation pass can report it against the row.
"""

from __future__ import annotations

import math
import re
from datetime import datetime, timezone
from typing import Callable, Dict, Mapping

TRUE_TOKENS = frozenset({"true", "yes", "1", "y", "on"})
FALSE_TOKENS = frozenset({"false", "no", "0", "n", "off", ""})

_ISO_FRAGMENT = re.compile(
    r"\d{4}-\d{2}-\d{2}"
    r"(?:[T ]\d{2}:\d{2}(?::\d{2}(?:\.\d{3}(?:\d{3})?)?)?)?"
    r"(?:Z|[+-]\d{2}:?\d{2})?"
)
_OFFSET_WITHOUT_COLON = re.compile(r"([+-]\d{2})(\d{2})$")

_FALLBACK_FORMATS = (
    "%m/%d/%Y",
    "%m/%d/%Y %H:%M",
    "%m/%d/%Y %H:%M:%S",
    "%m/%d/%Y %I:%M %p",
    "%m-%d-%Y",
    "%Y/%m/%d",
    "%Y/%m/%d %H:%M",
    "%d %b %Y",
    "%d %B %Y",
    "%b %d, %Y",
    "%B %d, %Y",
    "%b %d %Y",
    "%a, %d %b %Y %H:%M:%S",
)


def _parse_iso_fragment(text: str) -> datetime | None:
    match = _ISO_FRAGMENT.search(text)
    if not match:
        return None
    fragment = match.group(0).replace(" ", "T", 1)
    if fragment.endswith("Z"):
        fragment = fragment[:-1] + "+00:00"
    fragment = _OFFSET_WITHOUT_COLON.sub(r"\1:\2", fragment) if "T" in fragment else fragment
    try:
        return datetime.fromisoformat(fragment)
    except ValueError:
        return None


def parse_datetime(value: object) -> datetime | None:
    """
    Parse ``value`` into an aware UTC datetime.

    An embedded ISO-8601 fragment wins; otherwise a fixed list of common
    spreadsheet formats is tried. Naive values are treated as UTC.
    """

    if value is None:
        return None
    if isinstance(value, datetime):
        parsed = value
    else:
        text = str(value).strip()
        if not text:
            return None
        parsed = _parse_iso_fragment(text)
        if parsed is None:
            for fmt in _FALLBACK_FORMATS:
                try:
                    parsed = datetime.strptime(text, fmt)
                    break
                except ValueError:
                    continue
        if parsed is None:
            return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    try:
        return parsed.astimezone(timezone.utc)
    except (OverflowError, ValueError):
        # offset pushes the instant outside years 1-9999
        return None


def format_datetime(value: datetime) -> str:
    return value.astimezone(timezone.utc).isoformat(timespec="milliseconds").replace("+00:00", "Z")


def trim(value: str, enum_map: Mapping[str, str] | None = None) -> str:
    return value.strip()


def lowercase(value: str, enum_map: Mapping[str, str] | None = None) -> str:
    return value.strip().lower()


def parse_date(value: str, enum_map: Mapping[str, str] | None = None) -> str:
    text = value.strip()
    parsed = parse_datetime(text)
    return format_datetime(parsed) if parsed else text


def parse_number(value: str, enum_map: Mapping[str, str] | None = None) -> str:
    text = value.strip()
    try:
        number = float(text.replace(",", ""))
    except ValueError:
        return text
    if not math.isfinite(number):
        return text
    if number.is_integer():
        return str(int(number))
    return str(number)


def parse_boolean(value: str, enum_map: Mapping[str, str] | None = None) -> str:
    token = value.strip().lower()
    if token in TRUE_TOKENS:
        return "true"
    if token in FALSE_TOKENS:
        return "false"
    return token


def enum_map_lookup(value: str, enum_map: Mapping[str, str] | None = None) -> str:
    text = value.strip()
    if not enum_map:
        return text
    folded = {str(key).strip().lower(): str(target) for key, target in enum_map.items()}
    return folded.get(text.lower(), text)


TransformFn = Callable[[str, "Mapping[str, str] | None"], str]

TRANSFORMS: Dict[str, TransformFn] = {
    "trim": trim,
    "lowercase": lowercase,
    "parseDate": parse_date,
    "parseNumber": parse_number,
    "parseBoolean": parse_boolean,
    "enumMap": enum_map_lookup,
}


def apply_transform(name: str | None, value: str, enum_map: Mapping[str, str] | None = None) -> str:
    """Run the named transform over ``value``; unknown or empty names pass through."""

    if not name:
        return value
    transform = TRANSFORMS.get(name)
    if transform is None:
        return value
    return transform(value, enum_map)

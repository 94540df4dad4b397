from __future__ import annotations

import datetime as dt
from collections.abc import Mapping
from dataclasses import dataclass
from typing import Any, Literal

from ..store.utils import parse_iso8601

SortDirection = Literal["asc", "desc"]


@dataclass(frozen=True)
class ColumnDef:
    key: str
    label: str
    min_width: int
    default_width: int
    max_width: int
    align: str = "left"
    filter_placeholder: str | None = "Filter..."


COLUMN_DEFS: tuple[ColumnDef, ...] = (
    ColumnDef("title", "Task", 170, 300, 600),
    ColumnDef("startedAt", "Start Time", 140, 185, 320),
    ColumnDef("endedAt", "End Time", 140, 185, 320),
    ColumnDef("duration", "Duration", 95, 120, 180, align="right", filter_placeholder="e.g. 30m"),
    ColumnDef("status", "Status", 120, 150, 220, filter_placeholder=None),
    ColumnDef("project", "Project", 120, 190, 380),
    ColumnDef("type", "Category", 120, 170, 260),
    ColumnDef("notes", "Description", 170, 320, 720),
)
COLUMN_BY_KEY: dict[str, ColumnDef] = {col.key: col for col in COLUMN_DEFS}
COLUMN_KEYS: tuple[str, ...] = tuple(col.key for col in COLUMN_DEFS)
DEFAULT_COLUMN_ORDER: tuple[str, ...] = COLUMN_KEYS
DEFAULT_COLUMN_WIDTHS: dict[str, int] = {col.key: col.default_width for col in COLUMN_DEFS}
EMPTY_FILTERS: dict[str, str] = {key: "" for key in COLUMN_KEYS}

STATUS_OPTIONS: tuple[tuple[str, str], ...] = (
    ("NOT_STARTED", "Not started"),
    ("IN_PROGRESS", "In progress"),
    ("ON_HOLD", "On hold"),
    ("COMPLETED", "Completed"),
)
STATUS_LABELS = dict(STATUS_OPTIONS)

FILTER_SUGGESTION_LIMIT = 40
AUTO_FIT_CHAR_WIDTH = 7.2
AUTO_FIT_PADDING = 24


def format_status_label(status: str | None) -> str:
    key = status or "IN_PROGRESS"
    return STATUS_LABELS.get(key, key)


def _local(value: dt.datetime, tz: dt.tzinfo | None) -> dt.datetime:
    return value.astimezone(tz) if tz is not None else value.astimezone()


def format_datetime(value: str | None, tz: dt.tzinfo | None = None) -> str:
    if not value:
        return "active"
    parsed = parse_iso8601(value)
    if parsed is None:
        return "-"
    local = _local(parsed, tz)
    return f"{local:%b} {local.day}, {local.year}, {local:%H:%M}"


def duration_label(start: dt.datetime, end: dt.datetime) -> str:
    total_seconds = max(0, int((end - start).total_seconds()))
    hours, remainder = divmod(total_seconds, 3600)
    minutes, seconds = divmod(remainder, 60)
    if hours > 0:
        return f"{hours}h {minutes:02d}m"
    if minutes > 0:
        return f"{minutes}m {seconds:02d}s"
    return f"{seconds}s"


def to_local_input(value: str | None, tz: dt.tzinfo | None = None) -> str:
    """Render a stored timestamp as a ``datetime-local`` style value."""

    if not value:
        return ""
    parsed = parse_iso8601(value)
    if parsed is None:
        return ""
    return _local(parsed, tz).strftime("%Y-%m-%dT%H:%M")


def value_for_column(
    event: Mapping[str, Any], key: str, now: dt.datetime, tz: dt.tzinfo | None = None
) -> str:
    """The rendered display string of one cell.

    Filtering and sorting both run on this string, not on the raw value.
    """

    if key == "title":
        return str(event.get("title") or "")
    if key == "startedAt":
        return format_datetime(event.get("startedAt"), tz)
    if key == "endedAt":
        return format_datetime(event.get("endedAt"), tz)
    if key == "duration":
        start = parse_iso8601(str(event.get("startedAt") or ""))
        if start is None:
            return "-"
        ended_raw = event.get("endedAt")
        end = parse_iso8601(str(ended_raw)) if ended_raw else now
        return duration_label(start, end or now)
    if key == "status":
        return format_status_label(event.get("status"))
    if key == "project":
        return str(event.get("project") or "")
    if key == "notes":
        return str(event.get("notes") or "")
    if key == "type":
        return str(event.get("category") or event.get("type") or "")
    return ""


def compare_text(a: str, b: str) -> int:
    left, right = a.casefold(), b.casefold()
    if left != right:
        return -1 if left < right else 1
    if a != b:
        return -1 if a < b else 1
    return 0


def normalize_column_order(candidate: object) -> tuple[str, ...]:
    """Keep known keys in stored order, then append any missing ones."""

    if not isinstance(candidate, list | tuple):
        return DEFAULT_COLUMN_ORDER
    ordered: list[str] = []
    for item in candidate:
        if not isinstance(item, str) or item not in COLUMN_BY_KEY or item in ordered:
            continue
        ordered.append(item)
    for key in DEFAULT_COLUMN_ORDER:
        if key not in ordered:
            ordered.append(key)
    return tuple(ordered)


def clamp_width(key: str, width: float) -> int:
    col = COLUMN_BY_KEY[key]
    return max(col.min_width, min(col.max_width, round(width)))


def editable_key(key: str) -> str:
    # Duration is derived; editing it focuses the start time.
    return "startedAt" if key == "duration" else key

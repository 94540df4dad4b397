from __future__ import annotations

from collections.abc import Iterable
from typing import Any

SUGGESTION_LIMIT = 100


def dedupe_non_empty(values: Iterable[str | None]) -> list[str]:
    """Trimmed, case-insensitively unique values in first-seen order."""

    seen: set[str] = set()
    out: list[str] = []
    for value in values:
        trimmed = (value or "").strip()
        if not trimmed:
            continue
        key = trimmed.lower()
        if key in seen:
            continue
        seen.add(key)
        out.append(trimmed)
    return out


def build_pairs(
    rows: Iterable[tuple[str | None, str | None]], *, key_name: str
) -> list[dict[str, str]]:
    seen: set[str] = set()
    out: list[dict[str, str]] = []
    for key_value, notes_value in rows:
        key = (key_value or "").strip()
        notes = (notes_value or "").strip()
        if not key or not notes:
            continue
        lowered = key.lower()
        if lowered in seen:
            continue
        seen.add(lowered)
        out.append({key_name: key, "notes": notes})
        if len(out) >= SUGGESTION_LIMIT:
            break
    return out


def build_suggestions(records: list[Any]) -> dict[str, Any]:
    """Prefill lists for the entry form.

    ``records`` is newest-first and starts with the active record when there
    is one; each item needs ``title``, ``category``, ``project`` and ``notes``.
    """

    return {
        "titles": dedupe_non_empty(r.title for r in records)[:SUGGESTION_LIMIT],
        "categories": dedupe_non_empty(r.category for r in records)[:SUGGESTION_LIMIT],
        "projects": dedupe_non_empty(r.project for r in records)[:SUGGESTION_LIMIT],
        "taskNotes": build_pairs(((r.title, r.notes) for r in records), key_name="task"),
    }

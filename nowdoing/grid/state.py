"""Reducer-style state for the history grid.

``GridState`` is an immutable snapshot; every user action is a pure function
``(state, ...) -> state``. Side effects (network calls, local storage,
timers) live in :mod:`nowdoing.grid.controller`. Keeping the transitions here
means invariants such as "at most one row is being edited" are enforced in a
single place.
"""

from __future__ import annotations

import datetime as dt
import functools
import math
from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field, fields, replace
from typing import Any

from ..store.utils import now_utc
from .columns import (
    AUTO_FIT_CHAR_WIDTH,
    AUTO_FIT_PADDING,
    COLUMN_BY_KEY,
    COLUMN_KEYS,
    DEFAULT_COLUMN_ORDER,
    DEFAULT_COLUMN_WIDTHS,
    EMPTY_FILTERS,
    FILTER_SUGGESTION_LIMIT,
    STATUS_OPTIONS,
    SortDirection,
    clamp_width,
    compare_text,
    editable_key,
    format_status_label,
    to_local_input,
    value_for_column,
)

PAGE_SIZE_OPTIONS = (10, 25, 50, 100)
DEFAULT_PAGE_SIZE = 10
REFRESH_INTERVAL_OPTIONS = (0, 60, 180, 300)
DENSITY_OPTIONS = ("compact", "comfort")
BATCH_FIELDS = ("status", "category", "project")


@dataclass(frozen=True)
class EventDraft:
    """Edit buffer for one row; every field is always present."""

    title: str
    start_time: str
    end_time: str
    status: str
    project: str
    notes: str
    category: str

    @classmethod
    def from_event(cls, event: Mapping[str, Any], tz: dt.tzinfo | None = None) -> EventDraft:
        return cls(
            title=str(event.get("title") or ""),
            start_time=to_local_input(event.get("startedAt"), tz),
            end_time=to_local_input(event.get("endedAt"), tz),
            status=str(event.get("status") or "IN_PROGRESS"),
            project=str(event.get("project") or ""),
            notes=str(event.get("notes") or ""),
            category=str(event.get("category") or event.get("type") or ""),
        )

    def to_patch(self, event_id: str) -> dict[str, Any]:
        # An empty endTime means "open"; the service rejects it for closed rows.
        patch: dict[str, Any] = {
            "id": event_id,
            "title": self.title.strip(),
            "category": self.category.strip(),
            "status": self.status,
            "project": self.project.strip(),
            "notes": self.notes.strip(),
            "endTime": self.end_time.strip(),
        }
        if self.start_time.strip():
            patch["startTime"] = self.start_time.strip()
        return patch


DRAFT_FIELDS = frozenset(f.name for f in fields(EventDraft))


@dataclass(frozen=True)
class GridState:
    events: tuple[dict[str, Any], ...] = ()
    drafts: Mapping[str, EventDraft] = field(default_factory=dict)
    saving: frozenset[str] = frozenset()
    error: str | None = None
    loading: bool = False
    filters: Mapping[str, str] = field(default_factory=lambda: dict(EMPTY_FILTERS))
    sort_key: str = "startedAt"
    sort_direction: SortDirection = "desc"
    page: int = 1
    page_size: int = DEFAULT_PAGE_SIZE
    column_order: tuple[str, ...] = DEFAULT_COLUMN_ORDER
    column_widths: Mapping[str, int] = field(default_factory=lambda: dict(DEFAULT_COLUMN_WIDTHS))
    editing_id: str | None = None
    edit_focus: str | None = None
    selected: frozenset[str] = frozenset()
    refresh_interval_s: int = 0
    density: str = "compact"
    now: dt.datetime = field(default_factory=now_utc)
    tz: dt.tzinfo | None = None
    # Bumped by every local write; rows remember the revision that last wrote them.
    revision: int = 0
    row_revisions: Mapping[str, int] = field(default_factory=dict)


@dataclass(frozen=True)
class PageView:
    rows: list[dict[str, Any]]
    total_records: int
    total_pages: int
    page: int
    start: int
    end: int


# Lookups


def find_event(state: GridState, event_id: str) -> dict[str, Any] | None:
    for event in state.events:
        if event.get("id") == event_id:
            return event
    return None


def _require_event(state: GridState, event_id: str) -> dict[str, Any]:
    event = find_event(state, event_id)
    if event is None:
        raise KeyError(event_id)
    return event


def _require_column(key: str) -> None:
    if key not in COLUMN_BY_KEY:
        raise ValueError(f"unknown column: {key}")


# Derived views


def row_has_changes(state: GridState, event_id: str) -> bool:
    event = find_event(state, event_id)
    draft = state.drafts.get(event_id)
    if event is None or draft is None:
        return False
    canonical = EventDraft.from_event(event, state.tz)
    return (
        draft.title.strip() != canonical.title
        or draft.category.strip() != canonical.category
        or draft.status != canonical.status
        or draft.project.strip() != canonical.project
        or draft.notes.strip() != canonical.notes
        or draft.start_time.strip() != canonical.start_time
        or draft.end_time.strip() != canonical.end_time
    )


def _matches_filters(state: GridState, event: Mapping[str, Any]) -> bool:
    for key in COLUMN_KEYS:
        needle = (state.filters.get(key) or "").strip().lower()
        if not needle:
            continue
        if key == "status":
            raw = str(event.get("status") or "").lower()
            label = format_status_label(event.get("status")).lower()
            if needle not in raw and needle not in label:
                return False
            continue
        value = value_for_column(event, key, state.now, state.tz).lower()
        if needle not in value:
            return False
    return True


def filter_events(state: GridState) -> list[dict[str, Any]]:
    return [event for event in state.events if _matches_filters(state, event)]


def sort_events(state: GridState, events: Iterable[dict[str, Any]]) -> list[dict[str, Any]]:
    key = state.sort_key
    sign = 1 if state.sort_direction == "asc" else -1

    def _compare(a: dict[str, Any], b: dict[str, Any]) -> int:
        left = value_for_column(a, key, state.now, state.tz)
        right = value_for_column(b, key, state.now, state.tz)
        return sign * compare_text(left, right)

    return sorted(events, key=functools.cmp_to_key(_compare))


def filtered_sorted(state: GridState) -> list[dict[str, Any]]:
    return sort_events(state, filter_events(state))


def total_pages_for(total_records: int, page_size: int) -> int:
    return max(1, math.ceil(total_records / page_size))


def page_view(state: GridState) -> PageView:
    rows = filtered_sorted(state)
    total = len(rows)
    total_pages = total_pages_for(total, state.page_size)
    page = min(max(1, state.page), total_pages)
    start = 0 if total == 0 else (page - 1) * state.page_size
    end = min(total, start + state.page_size)
    return PageView(
        rows=rows[start:end],
        total_records=total,
        total_pages=total_pages,
        page=page,
        start=start,
        end=end,
    )


def filter_suggestions(state: GridState, key: str) -> list[str]:
    _require_column(key)
    if key == "status":
        return [label for _, label in STATUS_OPTIONS]
    seen: set[str] = set()
    values: list[str] = []
    for event in state.events:
        value = value_for_column(event, key, state.now, state.tz).strip()
        if not value or value.lower() in seen:
            continue
        seen.add(value.lower())
        values.append(value)
    values.sort(key=functools.cmp_to_key(compare_text))
    return values[:FILTER_SUGGESTION_LIMIT]


def category_options(state: GridState) -> list[str]:
    found = {
        str(event.get("category") or event.get("type") or "").strip() for event in state.events
    }
    found.discard("")
    return sorted(found, key=functools.cmp_to_key(compare_text))


def selected_ids(state: GridState) -> list[str]:
    return [str(e["id"]) for e in state.events if e.get("id") in state.selected]


# Transitions


def _clamp_page(state: GridState) -> GridState:
    total = len(filter_events(state))
    page = min(max(1, state.page), total_pages_for(total, state.page_size))
    return state if page == state.page else replace(state, page=page)


def _replace_event(
    events: tuple[dict[str, Any], ...], updated: dict[str, Any]
) -> tuple[dict[str, Any], ...]:
    return tuple(updated if e.get("id") == updated.get("id") else e for e in events)


def fetch_started(state: GridState) -> GridState:
    return replace(state, loading=True, error=None)


def fetch_failed(state: GridState, message: str) -> GridState:
    return replace(state, loading=False, error=message)


def receive_events(
    state: GridState,
    events: Iterable[Mapping[str, Any]],
    fetched_at: int | None = None,
) -> GridState:
    """Install a freshly fetched canonical list.

    The row being edited keeps its draft so a refresh never discards
    in-progress edits; selection and edit mode drop rows that disappeared.
    ``fetched_at`` is the ``revision`` when the request went out: rows written
    locally after that keep their local canonical value and draft.
    """

    stale: set[str] = set()
    if fetched_at is not None:
        stale = {i for i, rev in state.row_revisions.items() if rev > fetched_at}
    local = {str(e.get("id")): e for e in state.events if str(e.get("id")) in stale}
    canonical = tuple(dict(local.get(str(e.get("id")), e)) for e in events)
    ids = {str(e.get("id")) for e in canonical}
    drafts: dict[str, EventDraft] = {}
    for event in canonical:
        event_id = str(event.get("id"))
        if event_id in state.drafts and (event_id == state.editing_id or event_id in stale):
            drafts[event_id] = state.drafts[event_id]
        else:
            drafts[event_id] = EventDraft.from_event(event, state.tz)
    editing_id = state.editing_id if state.editing_id in ids else None
    next_state = replace(
        state,
        events=canonical,
        drafts=drafts,
        loading=False,
        error=None,
        editing_id=editing_id,
        edit_focus=state.edit_focus if editing_id else None,
        selected=frozenset(i for i in state.selected if i in ids),
        saving=frozenset(i for i in state.saving if i in ids),
        row_revisions={i: rev for i, rev in state.row_revisions.items() if i in ids},
    )
    return _clamp_page(next_state)


def set_filter(state: GridState, key: str, value: str) -> GridState:
    _require_column(key)
    filters = dict(state.filters)
    filters[key] = value
    return replace(state, filters=filters, page=1)


def replace_filters(state: GridState, filters: Mapping[str, str]) -> GridState:
    merged = dict(EMPTY_FILTERS)
    for key, value in filters.items():
        if key in merged and isinstance(value, str):
            merged[key] = value
    return replace(state, filters=merged, page=1)


def clear_filters(state: GridState) -> GridState:
    return replace(state, filters=dict(EMPTY_FILTERS), page=1)


def toggle_sort(state: GridState, key: str) -> GridState:
    _require_column(key)
    if state.sort_key == key:
        direction: SortDirection = "desc" if state.sort_direction == "asc" else "asc"
        return replace(state, sort_direction=direction, page=1)
    return replace(state, sort_key=key, sort_direction="asc", page=1)


def set_sort(state: GridState, key: str, direction: SortDirection) -> GridState:
    _require_column(key)
    if direction not in ("asc", "desc"):
        raise ValueError(f"invalid sort direction: {direction}")
    return replace(state, sort_key=key, sort_direction=direction, page=1)


def set_page(state: GridState, page: int) -> GridState:
    total_pages = total_pages_for(len(filter_events(state)), state.page_size)
    return replace(state, page=min(max(1, int(page)), total_pages))


def set_page_size(state: GridState, page_size: int) -> GridState:
    if page_size not in PAGE_SIZE_OPTIONS:
        raise ValueError(f"page size must be one of {PAGE_SIZE_OPTIONS}")
    return replace(state, page_size=page_size, page=1)


def set_column_order(state: GridState, order: tuple[str, ...]) -> GridState:
    return replace(state, column_order=order)


def move_column(state: GridState, source: str, target: str) -> GridState:
    if source == target:
        return state
    order = list(state.column_order)
    if source not in order or target not in order:
        return state
    order.remove(source)
    order.insert(order.index(target), source)
    return replace(state, column_order=tuple(order))


def resize_column(state: GridState, key: str, width: float) -> GridState:
    _require_column(key)
    widths = dict(state.column_widths)
    widths[key] = clamp_width(key, width)
    return replace(state, column_widths=widths)


def auto_fit_column(state: GridState, key: str) -> GridState:
    _require_column(key)
    longest = len(COLUMN_BY_KEY[key].label)
    for event in state.events:
        longest = max(longest, len(value_for_column(event, key, state.now, state.tz).strip()))
    return resize_column(state, key, longest * AUTO_FIT_CHAR_WIDTH + AUTO_FIT_PADDING)


def set_density(state: GridState, density: str) -> GridState:
    if density not in DENSITY_OPTIONS:
        raise ValueError(f"density must be one of {DENSITY_OPTIONS}")
    return replace(state, density=density)


def set_refresh_interval(state: GridState, seconds: int) -> GridState:
    if seconds not in REFRESH_INTERVAL_OPTIONS:
        raise ValueError(f"refresh interval must be one of {REFRESH_INTERVAL_OPTIONS}")
    return replace(state, refresh_interval_s=seconds)


def begin_edit(state: GridState, event_id: str, focus: str | None = None) -> GridState:
    event = _require_event(state, event_id)
    if state.editing_id not in (None, event_id):
        raise ValueError(f"row {state.editing_id} is still being edited")
    drafts = dict(state.drafts)
    drafts.setdefault(event_id, EventDraft.from_event(event, state.tz))
    return replace(
        state,
        drafts=drafts,
        editing_id=event_id,
        edit_focus=editable_key(focus) if focus else None,
    )


def update_draft(state: GridState, event_id: str, **changes: str) -> GridState:
    unknown = set(changes) - DRAFT_FIELDS
    if unknown:
        raise ValueError(f"unknown draft fields: {sorted(unknown)}")
    event = _require_event(state, event_id)
    drafts = dict(state.drafts)
    current = drafts.get(event_id) or EventDraft.from_event(event, state.tz)
    drafts[event_id] = replace(current, **changes)
    return replace(state, drafts=drafts)


def close_edit(state: GridState) -> GridState:
    return replace(state, editing_id=None, edit_focus=None)


def cancel_edit(state: GridState, event_id: str) -> GridState:
    event = _require_event(state, event_id)
    drafts = dict(state.drafts)
    drafts[event_id] = EventDraft.from_event(event, state.tz)
    next_state = replace(state, drafts=drafts)
    return close_edit(next_state) if state.editing_id == event_id else next_state


def save_started(state: GridState, event_id: str) -> GridState:
    return replace(state, saving=state.saving | {event_id}, error=None)


def save_succeeded(state: GridState, updated: Mapping[str, Any]) -> GridState:
    event = dict(updated)
    event_id = str(event.get("id"))
    drafts = dict(state.drafts)
    drafts[event_id] = EventDraft.from_event(event, state.tz)
    revision = state.revision + 1
    next_state = replace(
        state,
        events=_replace_event(state.events, event),
        drafts=drafts,
        saving=state.saving - {event_id},
        revision=revision,
        row_revisions={**state.row_revisions, event_id: revision},
    )
    if state.editing_id == event_id:
        next_state = close_edit(next_state)
    return _clamp_page(next_state)


def save_failed(state: GridState, event_id: str, message: str) -> GridState:
    # Drafts and edit mode are kept so nothing the user typed is lost.
    return replace(state, saving=state.saving - {event_id}, error=message)


def toggle_selected(state: GridState, event_id: str) -> GridState:
    _require_event(state, event_id)
    if event_id in state.selected:
        return replace(state, selected=state.selected - {event_id})
    return replace(state, selected=state.selected | {event_id})


def select_page(state: GridState) -> GridState:
    ids = {str(e.get("id")) for e in page_view(state).rows}
    return replace(state, selected=state.selected | ids)


def clear_selection(state: GridState) -> GridState:
    return replace(state, selected=frozenset())


def batch_finished(
    state: GridState,
    updated: Iterable[Mapping[str, Any]],
    failed_ids: Iterable[str],
    message: str | None,
) -> GridState:
    events = state.events
    drafts = dict(state.drafts)
    succeeded: set[str] = set()
    for item in updated:
        event = dict(item)
        event_id = str(event.get("id"))
        succeeded.add(event_id)
        events = _replace_event(events, event)
        if event_id != state.editing_id:
            drafts[event_id] = EventDraft.from_event(event, state.tz)
    failed = set(failed_ids)
    selected = frozenset(i for i in state.selected if i not in succeeded or i in failed)
    revision = state.revision + 1 if succeeded else state.revision
    next_state = replace(
        state,
        events=events,
        drafts=drafts,
        selected=selected,
        error=message,
        revision=revision,
        row_revisions={**state.row_revisions, **{i: revision for i in succeeded}},
    )
    return _clamp_page(next_state)


def tick(state: GridState, now: dt.datetime) -> GridState:
    return replace(state, now=now)


def set_error(state: GridState, message: str | None) -> GridState:
    return replace(state, error=message)

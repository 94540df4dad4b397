"""Saved filter views and column order, kept in client-local storage.

Nothing here talks to the server. Storage goes through ``KeyValueStorage`` so
the same logic runs against an in-memory dict in tests and a JSON file for
the CLI.
"""

from __future__ import annotations

import json
import logging
from collections.abc import Mapping
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Literal, Protocol
from urllib.parse import parse_qs, urlencode, urlparse, urlunparse
from uuid import uuid4

from .grid.columns import COLUMN_KEYS, EMPTY_FILTERS, normalize_column_order

logger = logging.getLogger(__name__)

COLUMN_ORDER_STORAGE_KEY = "nowdoing.history.columnOrder.v2"
SAVED_VIEWS_STORAGE_KEY = "nowdoing.history.savedViews.v1"
ALL_TASKS_VIEW_ID = "all"
ALL_TASKS_VIEW_NAME = "All tasks"
UNTITLED_VIEW_NAME = "Untitled view"
VIEW_QUERY_PARAM = "view"

ViewStatus = Literal["all", "saved", "unsaved"]


class KeyValueStorage(Protocol):
    def get_item(self, key: str) -> str | None: ...

    def set_item(self, key: str, value: str) -> None: ...

    def remove_item(self, key: str) -> None: ...


class MemoryStorage:
    def __init__(self, items: Mapping[str, str] | None = None) -> None:
        self.items: dict[str, str] = dict(items or {})

    def get_item(self, key: str) -> str | None:
        return self.items.get(key)

    def set_item(self, key: str, value: str) -> None:
        self.items[key] = value

    def remove_item(self, key: str) -> None:
        self.items.pop(key, None)


class JsonFileStorage:
    """All keys in one JSON object on disk; an unreadable file reads as empty."""

    def __init__(self, path: Path | str) -> None:
        self.path = Path(path).expanduser()

    def _load(self) -> dict[str, str]:
        try:
            raw = self.path.read_text()
        except FileNotFoundError:
            return {}
        except OSError:
            logger.warning("local state unreadable", extra={"path": str(self.path)})
            return {}
        try:
            data = json.loads(raw) if raw.strip() else {}
        except json.JSONDecodeError:
            return {}
        if not isinstance(data, dict):
            return {}
        return {str(k): v for k, v in data.items() if isinstance(v, str)}

    def _dump(self, data: dict[str, str]) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        self.path.write_text(json.dumps(data, ensure_ascii=False, indent=2) + "\n")

    def get_item(self, key: str) -> str | None:
        return self._load().get(key)

    def set_item(self, key: str, value: str) -> None:
        data = self._load()
        data[key] = value
        self._dump(data)

    def remove_item(self, key: str) -> None:
        data = self._load()
        if key in data:
            del data[key]
            self._dump(data)


@dataclass
class SavedView:
    id: str
    name: str
    filters: dict[str, str] = field(default_factory=lambda: dict(EMPTY_FILTERS))

    def to_dict(self) -> dict[str, Any]:
        return {"id": self.id, "name": self.name, "filters": dict(self.filters)}


def normalize_filters(candidate: object) -> dict[str, str]:
    filters = dict(EMPTY_FILTERS)
    if not isinstance(candidate, Mapping):
        return filters
    for key in COLUMN_KEYS:
        value = candidate.get(key)
        if isinstance(value, str):
            filters[key] = value
    return filters


def filters_equal(a: Mapping[str, str], b: Mapping[str, str]) -> bool:
    return all((a.get(key) or "") == (b.get(key) or "") for key in COLUMN_KEYS)


def is_empty_filters(filters: Mapping[str, str]) -> bool:
    return all(not (filters.get(key) or "").strip() for key in COLUMN_KEYS)


def _read_json(storage: KeyValueStorage, key: str) -> Any:
    raw = storage.get_item(key)
    if not raw:
        return None
    try:
        return json.loads(raw)
    except json.JSONDecodeError:
        return None


def load_saved_views(storage: KeyValueStorage) -> list[SavedView]:
    data = _read_json(storage, SAVED_VIEWS_STORAGE_KEY)
    if not isinstance(data, list):
        return []
    views: list[SavedView] = []
    seen: set[str] = set()
    for item in data:
        if not isinstance(item, dict):
            continue
        view_id = item.get("id")
        name = item.get("name")
        if not isinstance(view_id, str) or not view_id or view_id == ALL_TASKS_VIEW_ID:
            continue
        if not isinstance(name, str) or view_id in seen:
            continue
        seen.add(view_id)
        views.append(SavedView(id=view_id, name=name, filters=normalize_filters(item.get("filters"))))
    return views


def save_saved_views(storage: KeyValueStorage, views: list[SavedView]) -> None:
    payload = [view.to_dict() for view in views if view.id != ALL_TASKS_VIEW_ID]
    storage.set_item(SAVED_VIEWS_STORAGE_KEY, json.dumps(payload, ensure_ascii=False))


def load_column_order(storage: KeyValueStorage) -> tuple[str, ...]:
    return normalize_column_order(_read_json(storage, COLUMN_ORDER_STORAGE_KEY))


def save_column_order(storage: KeyValueStorage, order: tuple[str, ...] | list[str]) -> None:
    storage.set_item(
        COLUMN_ORDER_STORAGE_KEY, json.dumps(list(normalize_column_order(list(order))))
    )


def unique_view_name(
    name: str, views: list[SavedView], exclude_id: str | None = None
) -> str:
    base = name.strip() or UNTITLED_VIEW_NAME
    taken = {v.name.strip().lower() for v in views if v.id != exclude_id}
    if base.lower() not in taken:
        return base
    suffix = 2
    while f"{base} {suffix}".lower() in taken:
        suffix += 1
    return f"{base} {suffix}"


def view_id_from_url(url: str) -> str | None:
    values = parse_qs(urlparse(url).query).get(VIEW_QUERY_PARAM)
    if not values:
        return None
    return values[0].strip() or None


def url_with_view(url: str, view_id: str | None) -> str:
    """Return ``url`` with the ``view`` parameter set, or removed for "all"."""

    parsed = urlparse(url)
    params = [
        (k, v)
        for k, values in parse_qs(parsed.query, keep_blank_values=True).items()
        for v in values
        if k != VIEW_QUERY_PARAM
    ]
    if view_id and view_id != ALL_TASKS_VIEW_ID:
        params.append((VIEW_QUERY_PARAM, view_id))
    return urlunparse(parsed._replace(query=urlencode(params)))


class SavedViewsManager:
    """Saved views plus the live filter set they are compared against."""

    def __init__(self, storage: KeyValueStorage) -> None:
        self.storage = storage
        self.views = load_saved_views(storage)
        self.active_view_id = ALL_TASKS_VIEW_ID
        self.filters: dict[str, str] = dict(EMPTY_FILTERS)

    def _persist(self) -> None:
        save_saved_views(self.storage, self.views)

    def get_view(self, view_id: str) -> SavedView | None:
        for view in self.views:
            if view.id == view_id:
                return view
        return None

    def _require_view(self, view_id: str) -> SavedView:
        view = self.get_view(view_id)
        if view is None:
            raise KeyError(view_id)
        return view

    def set_filters(self, filters: Mapping[str, str]) -> None:
        self.filters = normalize_filters(filters)

    def select_view(self, view_id: str) -> dict[str, str]:
        """Activate a view and return the filters it applies."""

        if view_id == ALL_TASKS_VIEW_ID:
            self.active_view_id = ALL_TASKS_VIEW_ID
            self.filters = dict(EMPTY_FILTERS)
            return dict(self.filters)
        view = self._require_view(view_id)
        self.active_view_id = view.id
        self.filters = dict(view.filters)
        return dict(self.filters)

    def restore_from_url(self, url: str) -> dict[str, str] | None:
        view_id = view_id_from_url(url)
        if view_id is None or (view_id != ALL_TASKS_VIEW_ID and self.get_view(view_id) is None):
            return None
        return self.select_view(view_id)

    def add_view(self, name: str) -> SavedView:
        existing = self.match_view(self.filters)
        if existing is not None:
            self.active_view_id = existing.id
            return existing
        view = SavedView(
            id=uuid4().hex,
            name=unique_view_name(name, self.views),
            filters=dict(self.filters),
        )
        self.views.append(view)
        self.active_view_id = view.id
        self._persist()
        return view

    def rename_view(self, view_id: str, name: str) -> SavedView:
        view = self._require_view(view_id)
        view.name = unique_view_name(name, self.views, exclude_id=view_id)
        self._persist()
        return view

    def duplicate_view(self, view_id: str) -> SavedView:
        source = self._require_view(view_id)
        copy = SavedView(
            id=uuid4().hex,
            name=unique_view_name(source.name, self.views),
            filters=dict(source.filters),
        )
        self.views.append(copy)
        self.active_view_id = copy.id
        self.filters = dict(copy.filters)
        self._persist()
        return copy

    def delete_view(self, view_id: str) -> None:
        view = self._require_view(view_id)
        self.views.remove(view)
        if self.active_view_id == view_id:
            self.active_view_id = ALL_TASKS_VIEW_ID
            self.filters = dict(EMPTY_FILTERS)
        self._persist()

    def match_view(self, filters: Mapping[str, str]) -> SavedView | None:
        for view in self.views:
            if filters_equal(view.filters, filters):
                return view
        return None

    def view_status(self) -> ViewStatus:
        active = self.get_view(self.active_view_id)
        if active is not None and filters_equal(active.filters, self.filters):
            return "saved"
        if self.active_view_id == ALL_TASKS_VIEW_ID and is_empty_filters(self.filters):
            return "all"
        return "unsaved"

    def current_url(self, url: str) -> str:
        return url_with_view(url, self.active_view_id)

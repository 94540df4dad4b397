from __future__ import annotations

from rich import print
from rich.markup import escape

from nowdoing.grid import state as grid
from nowdoing.grid.columns import COLUMN_BY_KEY, DEFAULT_COLUMN_ORDER
from nowdoing.views import (
    ALL_TASKS_VIEW_ID,
    ALL_TASKS_VIEW_NAME,
    KeyValueStorage,
    SavedView,
    SavedViewsManager,
    load_column_order,
    save_column_order,
)

from .common import fail


def _filters_summary(view: SavedView) -> str:
    parts = [f"{key}={value}" for key, value in view.filters.items() if value.strip()]
    return ", ".join(parts) or "(no filters)"


def _resolve_view(manager: SavedViewsManager, ref: str) -> SavedView:
    view = manager.get_view(ref)
    if view is not None:
        return view
    matches = [v for v in manager.views if v.name.strip().lower() == ref.strip().lower()]
    if len(matches) == 1:
        return matches[0]
    fail(f"Unknown view: {ref}")


def views_list_cmd(*, storage: KeyValueStorage) -> None:
    manager = SavedViewsManager(storage)
    print(f"- {ALL_TASKS_VIEW_ID}  {ALL_TASKS_VIEW_NAME}")
    for view in manager.views:
        print(f"- {view.id}  {escape(view.name)}  [dim]{escape(_filters_summary(view))}[/dim]")


def views_add_cmd(*, storage: KeyValueStorage, name: str, filters: dict[str, str]) -> None:
    manager = SavedViewsManager(storage)
    manager.set_filters(filters)
    existing = manager.match_view(manager.filters)
    view = manager.add_view(name)
    if existing is not None:
        print(f"[yellow]Filters already saved as {escape(view.name)} ({view.id})[/yellow]")
        return
    print(f"[green]Saved view {escape(view.name)} ({view.id})[/green]")


def views_rename_cmd(*, storage: KeyValueStorage, ref: str, name: str) -> None:
    manager = SavedViewsManager(storage)
    view = manager.rename_view(_resolve_view(manager, ref).id, name)
    print(f"[green]Renamed to {escape(view.name)}[/green]")


def views_duplicate_cmd(*, storage: KeyValueStorage, ref: str) -> None:
    manager = SavedViewsManager(storage)
    copy = manager.duplicate_view(_resolve_view(manager, ref).id)
    print(f"[green]Duplicated as {escape(copy.name)} ({copy.id})[/green]")


def views_delete_cmd(*, storage: KeyValueStorage, ref: str) -> None:
    manager = SavedViewsManager(storage)
    view = _resolve_view(manager, ref)
    manager.delete_view(view.id)
    print(f"[green]Deleted view {escape(view.name)}[/green]")


def columns_show_cmd(*, storage: KeyValueStorage) -> None:
    for index, key in enumerate(load_column_order(storage), start=1):
        print(f"{index}. {key} ({COLUMN_BY_KEY[key].label})")


def columns_move_cmd(*, storage: KeyValueStorage, source: str, target: str) -> None:
    for key in (source, target):
        if key not in COLUMN_BY_KEY:
            fail(f"Unknown column: {key}")
    state = grid.GridState(column_order=load_column_order(storage))
    state = grid.move_column(state, source, target)
    save_column_order(storage, state.column_order)
    print(f"Column order: {', '.join(state.column_order)}")


def columns_reset_cmd(*, storage: KeyValueStorage) -> None:
    save_column_order(storage, DEFAULT_COLUMN_ORDER)
    print(f"Column order: {', '.join(DEFAULT_COLUMN_ORDER)}")

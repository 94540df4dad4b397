from __future__ import annotations

import time
from typing import Any

from rich import print
from rich.live import Live
from rich.markup import escape
from rich.table import Table

from nowdoing.client import ActivityClient, ActivityClientError
from nowdoing.grid import state as grid
from nowdoing.grid.columns import (
    COLUMN_BY_KEY,
    format_datetime,
    format_status_label,
    value_for_column,
)
from nowdoing.grid.controller import GridController
from nowdoing.grid.timers import AutoRefresher, NowTicker
from nowdoing.service import MAX_EVENTS_LIMIT
from nowdoing.store.utils import now_utc, parse_iso8601
from nowdoing.views import KeyValueStorage, SavedViewsManager

from .common import fail, format_minutes

WATCH_REDRAW_S = 1.0


def _describe(record: dict[str, Any]) -> str:
    parts = [f"[bold]{escape(str(record.get('title') or ''))}[/bold]"]
    category = record.get("category") or record.get("type")
    if category:
        parts.append(f"({escape(str(category))})")
    if record.get("project"):
        parts.append(f"- {escape(str(record['project']))}")
    return " ".join(parts)


def now_cmd(*, client: ActivityClient) -> None:
    try:
        current = client.get_current()
    except ActivityClientError as exc:
        fail(exc.message)
    if current is None:
        print("[dim]Nothing in progress[/dim]")
        return
    started = parse_iso8601(str(current.get("startedAt") or ""))
    elapsed = ""
    if started is not None:
        minutes = round((now_utc() - started).total_seconds() / 60)
        elapsed = f" for {format_minutes(minutes)}"
    print(f"{_describe(current)} | {format_status_label(current.get('status'))}{elapsed}")
    if current.get("notes"):
        print(f"  {escape(str(current['notes']))}")


def start_cmd(*, client: ActivityClient, payload: dict[str, Any]) -> None:
    try:
        active = client.start(payload)
    except ActivityClientError as exc:
        fail(exc.message)
    if active is None:
        print("[green]Logged closed entry[/green]")
        return
    print(f"[green]Started[/green] {_describe(active)}")


def stop_cmd(*, client: ActivityClient) -> None:
    try:
        client.stop()
    except ActivityClientError as exc:
        fail(exc.message)
    print("[green]Stopped[/green]")


def render_history(state: grid.GridState, *, view_label: str | None = None) -> Table:
    page = grid.page_view(state)
    table = Table(title=view_label, show_lines=state.density == "comfort")
    table.add_column("Id", style="dim", no_wrap=True)
    for key in state.column_order:
        col = COLUMN_BY_KEY[key]
        label = col.label
        if key == state.sort_key:
            label = f"{label} {'^' if state.sort_direction == 'asc' else 'v'}"
        table.add_column(label, justify=col.align, max_width=col.max_width // 7)
    for event in page.rows:
        cells = [str(event.get("id"))[:8]]
        cells.extend(
            escape(value_for_column(event, key, state.now, state.tz)) for key in state.column_order
        )
        table.add_row(*cells)
    if page.total_records:
        table.caption = (
            f"Showing {page.start + 1}-{page.end} of {page.total_records}"
            f" (page {page.page}/{page.total_pages})"
        )
    else:
        table.caption = "No tasks match the current filters"
    return table


def history_cmd(
    *,
    client: ActivityClient,
    storage: KeyValueStorage,
    limit: int | None,
    filters: dict[str, str],
    view: str | None,
    sort: str | None,
    descending: bool,
    page: int,
    page_size: int,
    comfort: bool,
    watch: bool = False,
    refresh_interval_s: int = 0,
) -> None:
    controller = GridController(client, storage, events_limit=limit)
    if not controller.refresh():
        fail(controller.state.error or "could not load history")
    manager = SavedViewsManager(storage)
    try:
        if view:
            manager.select_view(view)
        if filters:
            merged = dict(manager.filters)
            merged.update(filters)
            manager.set_filters(merged)
        controller.dispatch(grid.replace_filters, manager.filters)
        if sort:
            controller.dispatch(grid.set_sort, sort, "desc" if descending else "asc")
        controller.dispatch(grid.set_page_size, page_size)
        controller.dispatch(grid.set_page, page)
        if comfort:
            controller.dispatch(grid.set_density, "comfort")
    except KeyError as exc:
        fail(f"Unknown view: {exc.args[0]}")
    except ValueError as exc:
        fail(str(exc))

    status = manager.view_status()
    active = manager.get_view(manager.active_view_id)
    label = escape(active.name if active is not None else "All tasks")
    if status == "unsaved":
        label = f"{label} (unsaved filters)"
    if not watch:
        print(render_history(controller.state, view_label=label))
        return
    _watch_history(controller, label=label, refresh_interval_s=refresh_interval_s)


def _watch_history(controller: GridController, *, label: str, refresh_interval_s: int) -> None:
    try:
        controller.dispatch(grid.set_refresh_interval, refresh_interval_s)
    except ValueError as exc:
        fail(str(exc))
    refresher = AutoRefresher(controller)
    ticker = NowTicker(controller)
    refresher.start()
    ticker.start()
    try:
        with Live(render_history(controller.state, view_label=label), auto_refresh=False) as live:
            while True:
                time.sleep(WATCH_REDRAW_S)
                live.update(render_history(controller.state, view_label=label), refresh=True)
    except KeyboardInterrupt:
        pass
    finally:
        refresher.stop()
        ticker.stop()


def edit_cmd(
    *,
    client: ActivityClient,
    event_id: str,
    changes: dict[str, str],
) -> None:
    controller = GridController(client, events_limit=MAX_EVENTS_LIMIT)
    if not controller.refresh():
        fail(controller.state.error or "could not load history")
    matches = [e for e in controller.state.events if str(e.get("id", "")).startswith(event_id)]
    if len(matches) != 1:
        fail("No such event" if not matches else f"Ambiguous event id: {event_id}")
    target = str(matches[0]["id"])
    controller.start_editing(target)
    controller.update_draft(target, **changes)
    if not grid.row_has_changes(controller.state, target):
        print("[yellow]Nothing to change[/yellow]")
        controller.cancel_editing(target)
        return
    if not controller.save_row(target):
        fail(controller.state.error or "save failed")
    saved = grid.find_event(controller.state, target) or {}
    print(f"[green]Updated[/green] {_describe(saved)}")


def batch_cmd(
    *,
    client: ActivityClient,
    field: str,
    value: str,
    event_ids: list[str],
) -> None:
    controller = GridController(client, events_limit=MAX_EVENTS_LIMIT)
    if not controller.refresh():
        fail(controller.state.error or "could not load history")
    known = {str(e.get("id")) for e in controller.state.events}
    for prefix in event_ids:
        matches = [i for i in known if i.startswith(prefix)]
        if len(matches) != 1:
            fail(f"No unique event for id {prefix}")
        if matches[0] not in controller.state.selected:
            controller.dispatch(grid.toggle_selected, matches[0])
    try:
        result = controller.apply_batch_edit(field, value)
    except ValueError as exc:
        fail(str(exc))
    if result.message:
        fail(result.message)
    print(f"[green]Updated {result.updated} row(s)[/green]")


def suggest_cmd(*, client: ActivityClient) -> None:
    try:
        data = client.suggestions()
    except ActivityClientError as exc:
        fail(exc.message)
    for key, heading in (("titles", "Tasks"), ("categories", "Categories"), ("projects", "Projects")):
        values = data.get(key) or []
        print(f"[bold]{heading}[/bold]")
        if not values:
            print("- (none)")
        for value in values:
            print(f"- {escape(str(value))}")


def analytics_cmd(*, client: ActivityClient) -> None:
    try:
        data = client.analytics()
    except ActivityClientError as exc:
        fail(exc.message)
    today = data.get("todayTotals") or {}
    week = data.get("weekTotals") or {}
    categories = data.get("categories") or []
    table = Table(title=f"Week of {format_datetime(data.get('weekStart'))}")
    table.add_column("Category")
    table.add_column("Today", justify="right")
    table.add_column("This week", justify="right")
    for category in categories:
        table.add_row(
            escape(str(category)),
            format_minutes(int(today.get(category, 0))),
            format_minutes(int(week.get(category, 0))),
        )
    table.caption = (
        f"Total today {format_minutes(sum(today.values()))}, "
        f"this week {format_minutes(sum(week.values()))}"
    )
    print(table)


def build_start_payload(
    *,
    title: str,
    category: str,
    status: str | None,
    project: str | None,
    notes: str | None,
    reference_id: str | None,
    start_time: str | None,
    end_time: str | None,
    redacted: bool,
    redacted_label: str | None,
) -> dict[str, Any]:
    payload: dict[str, Any] = {"title": title, "category": category}
    optional = {
        "status": status,
        "project": project,
        "notes": notes,
        "referenceId": reference_id,
        "startTime": start_time,
        "endTime": end_time,
        "redactedLabel": redacted_label,
    }
    payload.update({k: v for k, v in optional.items() if v is not None})
    payload["visibility"] = "REDACTED" if redacted else "PUBLIC"
    return payload

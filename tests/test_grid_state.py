from __future__ import annotations

import datetime as dt
from typing import Any

import pytest

from nowdoing.grid import state as grid
from nowdoing.grid.columns import (
    COLUMN_BY_KEY,
    DEFAULT_COLUMN_ORDER,
    duration_label,
    format_datetime,
    normalize_column_order,
    value_for_column,
)

UTC = dt.UTC
NOW = dt.datetime(2024, 1, 2, 12, 0, tzinfo=UTC)


def _event(
    event_id: str,
    title: str,
    *,
    category: str = "Admin",
    status: str = "COMPLETED",
    start: str = "2024-01-02T09:00:00+00:00",
    end: str | None = "2024-01-02T09:30:00+00:00",
    project: str | None = None,
    notes: str | None = None,
) -> dict[str, Any]:
    return {
        "id": event_id,
        "title": title,
        "category": category,
        "type": category,
        "status": status,
        "project": project,
        "notes": notes,
        "startedAt": start,
        "endedAt": end,
    }


def _state(events: list[dict[str, Any]], **kwargs: Any) -> grid.GridState:
    base = grid.GridState(now=NOW, tz=UTC, **kwargs)
    return grid.receive_events(base, events)


def _ids(rows: list[dict[str, Any]]) -> list[str]:
    return [row["id"] for row in rows]


def test_rendered_values() -> None:
    event = _event("a", "Task", end=None, start="2024-01-02T10:30:15+00:00")
    assert format_datetime("2024-01-02T10:00:00+00:00", UTC) == "Jan 2, 2024, 10:00"
    assert format_datetime(None, UTC) == "active"
    assert format_datetime("garbage", UTC) == "-"
    assert value_for_column(event, "duration", NOW, UTC) == "1h 29m"
    assert value_for_column(event, "status", NOW, UTC) == "Completed"
    assert value_for_column(event, "type", NOW, UTC) == "Admin"
    start = dt.datetime(2024, 1, 1, tzinfo=UTC)
    assert duration_label(start, start + dt.timedelta(minutes=5, seconds=3)) == "5m 03s"
    assert duration_label(start, start + dt.timedelta(seconds=42)) == "42s"


def test_filter_is_case_insensitive_substring_and_idempotent() -> None:
    state = _state(
        [
            _event("a", "Write report"),
            _event("b", "Review PR", category="Dev"),
            _event("c", "report review", category="dev"),
        ]
    )

    once = grid.set_filter(state, "title", "REPORT")
    twice = grid.set_filter(once, "title", "REPORT")

    assert _ids(grid.filtered_sorted(once)) == _ids(grid.filtered_sorted(twice))
    assert set(_ids(grid.filter_events(once))) == {"a", "c"}

    both = grid.set_filter(once, "type", "dev")
    assert _ids(grid.filter_events(both)) == ["c"]
    assert grid.clear_filters(both).filters["title"] == ""


def test_status_filter_matches_label_or_raw_key() -> None:
    state = _state(
        [_event("a", "One", status="ON_HOLD"), _event("b", "Two", status="IN_PROGRESS")]
    )
    assert _ids(grid.filter_events(grid.set_filter(state, "status", "on hold"))) == ["a"]
    assert _ids(grid.filter_events(grid.set_filter(state, "status", "on_hold"))) == ["a"]


def test_filters_never_touch_canonical_or_drafts() -> None:
    state = _state([_event("a", "One"), _event("b", "Two")])
    filtered = grid.set_filter(state, "title", "one")
    assert filtered.events == state.events
    assert filtered.drafts == state.drafts


def test_default_sort_is_start_descending() -> None:
    state = _state(
        [
            _event("old", "Old", start="2024-01-02T08:00:00+00:00"),
            _event("new", "New", start="2024-01-02T10:00:00+00:00"),
        ]
    )
    assert _ids(grid.filtered_sorted(state)) == ["new", "old"]


def test_toggle_sort_twice_restores_order() -> None:
    state = _state([_event("a", "beta"), _event("b", "Alpha"), _event("c", "gamma")])

    asc = grid.toggle_sort(state, "title")
    assert (asc.sort_key, asc.sort_direction) == ("title", "asc")
    assert _ids(grid.filtered_sorted(asc)) == ["b", "a", "c"]

    desc = grid.toggle_sort(asc, "title")
    assert desc.sort_direction == "desc"
    assert _ids(grid.filtered_sorted(desc)) == ["c", "a", "b"]

    back = grid.toggle_sort(desc, "title")
    assert _ids(grid.filtered_sorted(back)) == _ids(grid.filtered_sorted(asc))

    other = grid.toggle_sort(desc, "project")
    assert (other.sort_key, other.sort_direction) == ("project", "asc")


def test_duration_sorts_by_rendered_text() -> None:
    state = _state(
        [
            _event("long", "Long", start="2024-01-02T08:00:00+00:00", end="2024-01-02T10:00:00+00:00"),
            _event("short", "Short", start="2024-01-02T09:00:00+00:00", end="2024-01-02T09:05:00+00:00"),
        ]
    )
    # "2h 00m" < "5m 00s" as text even though five minutes is shorter.
    assert _ids(grid.filtered_sorted(grid.toggle_sort(state, "duration"))) == ["long", "short"]


def test_pagination_resets_and_clamps() -> None:
    events = [
        _event(f"e{i:02d}", f"Task {i:02d}", start=f"2024-01-02T{i % 24:02d}:00:00+00:00")
        for i in range(23)
    ]
    state = _state(events)

    view = grid.page_view(state)
    assert (view.total_records, view.total_pages, len(view.rows)) == (23, 3, 10)

    last = grid.set_page(state, 99)
    assert last.page == 3
    assert len(grid.page_view(last).rows) == 3
    assert grid.set_page(state, -4).page == 1

    assert grid.set_filter(last, "title", "Task").page == 1
    assert grid.toggle_sort(last, "title").page == 1
    bigger = grid.set_page_size(last, 25)
    assert (bigger.page, grid.page_view(bigger).total_pages) == (1, 1)
    with pytest.raises(ValueError):
        grid.set_page_size(state, 7)

    shrunk = grid.receive_events(last, events[:12])
    assert shrunk.page == 2


def test_empty_page_view() -> None:
    view = grid.page_view(_state([]))
    assert (view.total_records, view.total_pages, view.page, view.rows) == (0, 1, 1, [])


def test_dirty_detection_trims_and_compares_local_inputs() -> None:
    state = _state([_event("a", "Task", project="P")])
    state = grid.begin_edit(state, "a", "title")

    assert not grid.row_has_changes(state, "a")
    assert grid.row_has_changes(grid.update_draft(state, "a", title="Task 2"), "a")
    assert not grid.row_has_changes(grid.update_draft(state, "a", title="  Task  "), "a")
    assert not grid.row_has_changes(grid.update_draft(state, "a", project=" P "), "a")
    assert state.drafts["a"].start_time == "2024-01-02T09:00"
    assert grid.row_has_changes(
        grid.update_draft(state, "a", start_time="2024-01-02T08:55"), "a"
    )
    with pytest.raises(ValueError):
        grid.update_draft(state, "a", colour="red")


def test_only_one_row_edits_at_a_time() -> None:
    state = _state([_event("a", "One"), _event("b", "Two")])
    editing = grid.begin_edit(state, "a", "duration")
    assert editing.edit_focus == "startedAt"
    with pytest.raises(ValueError):
        grid.begin_edit(editing, "b")
    assert grid.begin_edit(grid.close_edit(editing), "b").editing_id == "b"


def test_draft_patch_carries_every_field() -> None:
    state = _state([_event("a", "One", end=None, project="P")])
    draft = grid.update_draft(state, "a", notes=" new ").drafts["a"]

    patch = draft.to_patch("a")

    assert patch == {
        "id": "a",
        "title": "One",
        "category": "Admin",
        "status": "COMPLETED",
        "project": "P",
        "notes": "new",
        "endTime": "",
        "startTime": "2024-01-02T09:00",
    }
    blank_start = grid.update_draft(state, "a", start_time="").drafts["a"]
    assert "startTime" not in blank_start.to_patch("a")


def test_refresh_keeps_draft_of_row_being_edited() -> None:
    state = _state([_event("a", "One"), _event("b", "Two")])
    state = grid.begin_edit(state, "a")
    state = grid.update_draft(state, "a", title="Edited")

    refreshed = grid.receive_events(
        state, [_event("a", "One (server)"), _event("b", "Two (server)")]
    )

    assert refreshed.drafts["a"].title == "Edited"
    assert refreshed.drafts["b"].title == "Two (server)"
    assert refreshed.editing_id == "a"


def test_refresh_drops_vanished_rows_from_selection_and_edit() -> None:
    state = _state([_event("a", "One"), _event("b", "Two")])
    state = grid.toggle_selected(grid.toggle_selected(state, "a"), "b")
    state = grid.begin_edit(state, "b")

    refreshed = grid.receive_events(state, [_event("a", "One")])

    assert refreshed.selected == frozenset({"a"})
    assert refreshed.editing_id is None


def test_response_older_than_a_local_write_keeps_written_rows() -> None:
    state = _state([_event("a", "One"), _event("b", "Two")])
    fetched_at = state.revision
    state = grid.save_succeeded(state, _event("a", "Uno"))
    state = grid.batch_finished(state, [_event("b", "Two", project="Web")], (), None)
    assert state.revision == fetched_at + 2

    refreshed = grid.receive_events(
        state, [_event("a", "One"), _event("b", "Two"), _event("c", "Three")], fetched_at
    )

    assert grid.find_event(refreshed, "a")["title"] == "Uno"
    assert refreshed.drafts["a"].title == "Uno"
    assert grid.find_event(refreshed, "b")["project"] == "Web"
    assert refreshed.drafts["b"].project == "Web"
    assert grid.find_event(refreshed, "c")["title"] == "Three"

    newer = grid.receive_events(refreshed, [_event("a", "Uno (server)")], refreshed.revision)
    assert grid.find_event(newer, "a")["title"] == "Uno (server)"
    assert newer.row_revisions == {"a": fetched_at + 1}


def test_save_success_and_failure() -> None:
    state = _state([_event("a", "One")])
    state = grid.update_draft(grid.begin_edit(state, "a"), "a", title="Uno")
    state = grid.save_started(state, "a")
    assert "a" in state.saving

    failed = grid.save_failed(state, "a", "title and category are required")
    assert failed.error == "title and category are required"
    assert failed.editing_id == "a"
    assert failed.drafts["a"].title == "Uno"
    assert "a" not in failed.saving

    saved = grid.save_succeeded(state, _event("a", "Uno (server)"))
    assert saved.editing_id is None
    assert grid.find_event(saved, "a")["title"] == "Uno (server)"
    assert saved.drafts["a"].title == "Uno (server)"


def test_cancel_edit_restores_canonical() -> None:
    state = _state([_event("a", "One")])
    state = grid.update_draft(grid.begin_edit(state, "a"), "a", title="Changed")
    cancelled = grid.cancel_edit(state, "a")
    assert cancelled.editing_id is None
    assert cancelled.drafts["a"].title == "One"


def test_select_page_and_clear() -> None:
    events = [_event(f"e{i}", f"T{i}") for i in range(12)]
    state = grid.select_page(_state(events))
    assert len(state.selected) == 10
    assert grid.clear_selection(state).selected == frozenset()


def test_columns_move_resize_and_auto_fit() -> None:
    state = _state([_event("a", "x" * 100)])

    moved = grid.move_column(state, "notes", "title")
    assert moved.column_order[:2] == ("notes", "title")
    assert sorted(moved.column_order) == sorted(DEFAULT_COLUMN_ORDER)

    assert grid.resize_column(state, "title", 5).column_widths["title"] == 170
    assert grid.resize_column(state, "title", 9999).column_widths["title"] == 600
    fitted = grid.auto_fit_column(state, "title")
    assert fitted.column_widths["title"] == COLUMN_BY_KEY["title"].max_width
    notes = grid.auto_fit_column(_state([_event("a", "Hi", notes="n" * 40)]), "notes")
    assert notes.column_widths["notes"] == round(40 * 7.2 + 24)
    narrow = grid.auto_fit_column(_state([_event("a", "Hi")]), "status")
    assert narrow.column_widths["status"] == COLUMN_BY_KEY["status"].min_width


def test_normalize_column_order_repairs_stored_values() -> None:
    assert normalize_column_order("nonsense") == DEFAULT_COLUMN_ORDER
    repaired = normalize_column_order(["notes", "bogus", "notes", "title"])
    assert repaired[:2] == ("notes", "title")
    assert sorted(repaired) == sorted(DEFAULT_COLUMN_ORDER)


def test_filter_suggestions_and_category_options() -> None:
    state = _state(
        [
            _event("a", "One", category="Dev", project="web"),
            _event("b", "Two", category="admin", project="Web"),
            _event("c", "Three", category="Dev", project=None),
        ]
    )
    assert grid.filter_suggestions(state, "project") == ["web"]
    assert grid.filter_suggestions(state, "type") == ["admin", "Dev"]
    assert grid.filter_suggestions(state, "status")[0] == "Not started"
    assert grid.category_options(state) == ["admin", "Dev"]


def test_batch_finished_merges_and_keeps_failed_selected() -> None:
    state = _state([_event("a", "A"), _event("b", "B"), _event("c", "C")])
    for event_id in ("a", "b", "c"):
        state = grid.toggle_selected(state, event_id)

    state = grid.batch_finished(
        state,
        [_event("a", "A", category="Ops"), _event("b", "B", category="Ops")],
        ["c"],
        "Updated 2 row(s). 1 row(s) failed.",
    )

    assert state.selected == frozenset({"c"})
    assert grid.find_event(state, "a")["category"] == "Ops"
    assert state.drafts["b"].category == "Ops"
    assert state.error == "Updated 2 row(s). 1 row(s) failed."


def test_tick_updates_open_duration_without_refetch() -> None:
    state = _state([_event("a", "Open", start="2024-01-02T11:59:00+00:00", end=None)])
    assert value_for_column(state.events[0], "duration", state.now, UTC) == "1m 00s"
    later = grid.tick(state, NOW + dt.timedelta(seconds=5))
    assert later.events is state.events
    assert value_for_column(later.events[0], "duration", later.now, UTC) == "1m 05s"


def test_refresh_interval_options() -> None:
    state = _state([])
    assert grid.set_refresh_interval(state, 180).refresh_interval_s == 180
    with pytest.raises(ValueError):
        grid.set_refresh_interval(state, 45)

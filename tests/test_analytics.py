from __future__ import annotations

import datetime as dt
from pathlib import Path

from nowdoing import analytics
from nowdoing.identity import ViewerContext
from nowdoing.service import ActivityService
from nowdoing.store import ActivityEvent, ActivityStore
from nowdoing.store.utils import to_iso

TZ = dt.timezone(dt.timedelta(hours=2))
# Wednesday afternoon, local time.
NOW = dt.datetime(2024, 1, 3, 15, 0, tzinfo=TZ)
OWNER = ViewerContext(subject="me", viewer="me", role="OWNER")


def _event(
    index: int,
    category: str,
    start: dt.datetime,
    end: dt.datetime | None,
) -> ActivityEvent:
    return ActivityEvent(
        id=f"e{index}",
        subject_upn="me",
        title=f"Task {index}",
        category=category,
        status="IN_PROGRESS",
        project=None,
        notes=None,
        reference_id=None,
        started_at=to_iso(start),
        ended_at=to_iso(end) if end is not None else None,
    )


def _at(hour: int, minute: int = 0, day: int = 3) -> dt.datetime:
    return dt.datetime(2024, 1, day, hour, minute, tzinfo=TZ)


def test_week_starts_on_monday() -> None:
    assert analytics.start_of_week(NOW) == dt.datetime(2024, 1, 1, tzinfo=TZ)
    sunday = dt.datetime(2024, 1, 7, 23, 59, tzinfo=TZ)
    assert analytics.start_of_week(sunday) == dt.datetime(2024, 1, 1, tzinfo=TZ)
    monday = dt.datetime(2024, 1, 8, 0, 0, tzinfo=TZ)
    assert analytics.start_of_week(monday) == monday


def test_three_events_today() -> None:
    events = [
        _event(1, "Admin", _at(0, 0), _at(0, 30)),
        _event(2, "Admin", _at(1, 0), _at(1, 15)),
        _event(3, "Meeting", _at(2, 0), _at(2, 20)),
    ]

    summary = analytics.aggregate(events, NOW)

    assert summary.today_totals == {"Admin": 45, "Meeting": 20}
    assert summary.week_totals == {"Admin": 45, "Meeting": 20}
    assert summary.categories == ["Admin", "Meeting"]


def test_earlier_days_count_for_week_only_and_open_events_run_to_now() -> None:
    last_week = dt.timedelta(days=4)
    events = [
        _event(1, "Deep work", _at(9, 0, day=1), _at(11, 0, day=1)),
        _event(2, "  ", _at(14, 0), None),
        _event(3, "Admin", _at(10, 0) - last_week, _at(10, 10) - last_week),
    ]

    summary = analytics.aggregate(events, NOW)

    assert summary.week_totals == {"Deep work": 120, analytics.FALLBACK_CATEGORY: 60}
    assert summary.today_totals == {analytics.FALLBACK_CATEGORY: 60}
    assert summary.categories == ["Deep work", analytics.FALLBACK_CATEGORY]


def test_category_ties_sort_case_insensitively() -> None:
    events = [
        _event(1, "beta", _at(9, 0), _at(9, 10)),
        _event(2, "Alpha", _at(10, 0), _at(10, 10)),
    ]
    summary = analytics.aggregate(events, NOW)
    assert summary.categories == ["Alpha", "beta"]


def test_minutes_round_and_floor_at_zero() -> None:
    start = _at(9, 0)
    assert analytics.minutes_between(start, start + dt.timedelta(seconds=89)) == 1
    assert analytics.minutes_between(start, start + dt.timedelta(seconds=91)) == 2
    assert analytics.minutes_between(start, start - dt.timedelta(minutes=5)) == 0


def test_service_analytics_reads_current_week(tmp_path: Path) -> None:
    store = ActivityStore(tmp_path / "activity.sqlite")
    try:
        for index, (category, start, end) in enumerate(
            [
                ("Admin", _at(0, 0), _at(0, 30)),
                ("Admin", _at(1, 0), _at(1, 15)),
                ("Meeting", _at(2, 0), _at(2, 20)),
                ("Old", _at(9, 0) - dt.timedelta(days=10), _at(10, 0) - dt.timedelta(days=10)),
            ]
        ):
            store.insert_event(_event(index, category, start, end))
        service = ActivityService(store)

        payload = service.get_analytics(OWNER, now=NOW)
    finally:
        store.close()

    assert payload["todayTotals"] == {"Admin": 45, "Meeting": 20}
    assert payload["weekTotals"] == {"Admin": 45, "Meeting": 20}
    assert payload["categories"] == ["Admin", "Meeting"]
    assert payload["weekStart"] == to_iso(dt.datetime(2024, 1, 1, tzinfo=TZ))

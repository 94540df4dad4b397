from __future__ import annotations

import datetime as dt
from collections.abc import Iterable
from dataclasses import dataclass, field
from typing import Any

from .store.types import ActivityEvent
from .store.utils import parse_iso8601, to_iso

FALLBACK_CATEGORY = "General"
ANALYTICS_EVENT_LIMIT = 500


def normalize_category(category: str | None) -> str:
    return (category or "").strip() or FALLBACK_CATEGORY


def start_of_today(now: dt.datetime) -> dt.datetime:
    return now.replace(hour=0, minute=0, second=0, microsecond=0)


def start_of_week(now: dt.datetime) -> dt.datetime:
    # Monday is day 0, so a Sunday rewinds six days.
    monday = now - dt.timedelta(days=now.weekday())
    return start_of_today(monday)


def minutes_between(start: dt.datetime, end: dt.datetime) -> int:
    return max(0, round((end - start).total_seconds() / 60))


@dataclass
class AnalyticsSummary:
    today_start: dt.datetime
    week_start: dt.datetime
    today_totals: dict[str, int] = field(default_factory=dict)
    week_totals: dict[str, int] = field(default_factory=dict)
    categories: list[str] = field(default_factory=list)

    def to_payload(self) -> dict[str, Any]:
        return {
            "todayStart": to_iso(self.today_start),
            "weekStart": to_iso(self.week_start),
            "todayTotals": dict(self.today_totals),
            "weekTotals": dict(self.week_totals),
            "categories": list(self.categories),
        }


def aggregate(events: Iterable[ActivityEvent], now: dt.datetime) -> AnalyticsSummary:
    """Per-category minutes for today and the current week.

    ``now`` must be timezone aware; its tzinfo defines the local day and
    week boundaries. Events starting before the week boundary are ignored
    and open events count up to ``now``.
    """

    if now.tzinfo is None:
        now = now.astimezone()
    today_start = start_of_today(now)
    week_start = start_of_week(now)
    summary = AnalyticsSummary(today_start=today_start, week_start=week_start)

    for event in events:
        start = parse_iso8601(event.started_at)
        if start is None or start < week_start:
            continue
        end = parse_iso8601(event.ended_at) if event.ended_at else None
        minutes = minutes_between(start, end or now)
        category = normalize_category(event.category)
        summary.week_totals[category] = summary.week_totals.get(category, 0) + minutes
        if start >= today_start:
            summary.today_totals[category] = summary.today_totals.get(category, 0) + minutes

    keys = set(summary.week_totals) | set(summary.today_totals)
    summary.categories = sorted(
        keys, key=lambda name: (-summary.week_totals.get(name, 0), name.lower(), name)
    )
    return summary

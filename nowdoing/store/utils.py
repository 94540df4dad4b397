from __future__ import annotations

import datetime as dt


def now_utc() -> dt.datetime:
    return dt.datetime.now(dt.UTC)


def to_iso(value: dt.datetime) -> str:
    """Serialize an instant the way every timestamp column stores it.

    Fixed microsecond precision in UTC keeps lexical order equal to
    chronological order, which the ORDER BY/range queries rely on.
    """

    if value.tzinfo is None:
        value = value.astimezone()
    return value.astimezone(dt.UTC).isoformat(timespec="microseconds")


def parse_iso8601(value: str) -> dt.datetime | None:
    raw = value.strip()
    if not raw:
        return None
    if raw.endswith("Z"):
        raw = raw[:-1] + "+00:00"
    try:
        parsed = dt.datetime.fromisoformat(raw)
    except ValueError:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=dt.UTC)
    return parsed.astimezone(dt.UTC)


def parse_time_input(value: str, *, tz: dt.tzinfo | None = None) -> dt.datetime | None:
    """Parse a form/CLI time value.

    Accepts ``YYYY-MM-DDTHH:MM`` (naive, read as local time in ``tz`` or the
    process timezone) and full ISO-8601 with an offset or ``Z``. Returns None
    for blank input and raises ValueError for anything unparseable.
    """

    raw = value.strip()
    if not raw:
        return None
    if raw.endswith("Z"):
        raw = raw[:-1] + "+00:00"
    parsed = dt.datetime.fromisoformat(raw)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=tz) if tz is not None else parsed.astimezone()
    return parsed.astimezone(dt.UTC)

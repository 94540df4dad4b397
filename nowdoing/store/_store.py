from __future__ import annotations

import sqlite3
from collections.abc import Iterator
from contextlib import contextmanager
from pathlib import Path

from .. import db
from .types import ActiveRecord, ActivityEvent

_EVENT_COLUMNS = (
    "id, subject_upn, title, category, status, project, notes, reference_id, "
    "started_at, ended_at, visibility, redacted_label"
)
_ACTIVE_COLUMNS = (
    "id, subject_upn, title, category, status, project, notes, reference_id, "
    "started_at, last_heartbeat_at, visibility, redacted_label"
)


def _event_from_row(row: sqlite3.Row) -> ActivityEvent:
    return ActivityEvent(
        id=str(row["id"]),
        subject_upn=str(row["subject_upn"]),
        title=str(row["title"]),
        category=str(row["category"]),
        status=str(row["status"]),
        project=row["project"],
        notes=row["notes"],
        reference_id=row["reference_id"],
        started_at=str(row["started_at"]),
        ended_at=row["ended_at"],
        visibility=str(row["visibility"]),
        redacted_label=row["redacted_label"],
    )


def _active_from_row(row: sqlite3.Row) -> ActiveRecord:
    return ActiveRecord(
        id=str(row["id"]),
        subject_upn=str(row["subject_upn"]),
        title=str(row["title"]),
        category=str(row["category"]),
        status=str(row["status"]),
        project=row["project"],
        notes=row["notes"],
        reference_id=row["reference_id"],
        started_at=str(row["started_at"]),
        last_heartbeat_at=str(row["last_heartbeat_at"]),
        visibility=str(row["visibility"]),
        redacted_label=row["redacted_label"],
    )


class ActivityStore:
    """Row-level access to the active record and event tables.

    The store knows nothing about validation or roles; the service layer
    composes these primitives inside ``transaction()``.
    """

    def __init__(
        self,
        db_path: Path | str = db.DEFAULT_DB_PATH,
        *,
        check_same_thread: bool = True,
    ):
        self.db_path = Path(db_path).expanduser()
        self.conn = db.connect(self.db_path, check_same_thread=check_same_thread)
        db.initialize_schema(self.conn)

    def close(self) -> None:
        self.conn.close()

    @contextmanager
    def transaction(self) -> Iterator[None]:
        if self.conn.in_transaction:
            yield
            return
        self.conn.execute("BEGIN IMMEDIATE")
        try:
            yield
        except BaseException:
            self.conn.execute("ROLLBACK")
            raise
        self.conn.execute("COMMIT")

    # Active record

    def get_active(self, subject_upn: str) -> ActiveRecord | None:
        row = self.conn.execute(
            f"""
            SELECT {_ACTIVE_COLUMNS} FROM active_activity
            WHERE subject_upn = ?
            ORDER BY started_at DESC
            LIMIT 1
            """,
            (subject_upn,),
        ).fetchone()
        return _active_from_row(row) if row else None

    def upsert_active(self, record: ActiveRecord) -> None:
        self.conn.execute(
            f"""
            INSERT INTO active_activity({_ACTIVE_COLUMNS})
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            ON CONFLICT(id) DO UPDATE SET
                subject_upn = excluded.subject_upn,
                title = excluded.title,
                category = excluded.category,
                status = excluded.status,
                project = excluded.project,
                notes = excluded.notes,
                reference_id = excluded.reference_id,
                started_at = excluded.started_at,
                last_heartbeat_at = excluded.last_heartbeat_at,
                visibility = excluded.visibility,
                redacted_label = excluded.redacted_label
            """,
            (
                record.id,
                record.subject_upn,
                record.title,
                record.category,
                record.status,
                record.project,
                record.notes,
                record.reference_id,
                record.started_at,
                record.last_heartbeat_at,
                record.visibility,
                record.redacted_label,
            ),
        )

    def delete_active(self, subject_upn: str) -> int:
        cur = self.conn.execute(
            "DELETE FROM active_activity WHERE subject_upn = ?", (subject_upn,)
        )
        return int(cur.rowcount or 0)

    # Events

    def get_event(self, event_id: str) -> ActivityEvent | None:
        row = self.conn.execute(
            f"SELECT {_EVENT_COLUMNS} FROM activity_events WHERE id = ?", (event_id,)
        ).fetchone()
        return _event_from_row(row) if row else None

    def get_open_event(self, subject_upn: str) -> ActivityEvent | None:
        row = self.conn.execute(
            f"""
            SELECT {_EVENT_COLUMNS} FROM activity_events
            WHERE subject_upn = ? AND ended_at IS NULL
            ORDER BY started_at DESC
            LIMIT 1
            """,
            (subject_upn,),
        ).fetchone()
        return _event_from_row(row) if row else None

    def count_open_events(self, subject_upn: str) -> int:
        row = self.conn.execute(
            "SELECT COUNT(*) AS n FROM activity_events WHERE subject_upn = ? AND ended_at IS NULL",
            (subject_upn,),
        ).fetchone()
        return int(row["n"]) if row else 0

    def insert_event(self, event: ActivityEvent) -> None:
        self.conn.execute(
            f"""
            INSERT INTO activity_events({_EVENT_COLUMNS})
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            """,
            (
                event.id,
                event.subject_upn,
                event.title,
                event.category,
                event.status,
                event.project,
                event.notes,
                event.reference_id,
                event.started_at,
                event.ended_at,
                event.visibility,
                event.redacted_label,
            ),
        )

    def update_event(self, event: ActivityEvent) -> None:
        self.conn.execute(
            """
            UPDATE activity_events
            SET title = ?, category = ?, status = ?, project = ?, notes = ?,
                reference_id = ?, started_at = ?, ended_at = ?, visibility = ?,
                redacted_label = ?
            WHERE id = ?
            """,
            (
                event.title,
                event.category,
                event.status,
                event.project,
                event.notes,
                event.reference_id,
                event.started_at,
                event.ended_at,
                event.visibility,
                event.redacted_label,
                event.id,
            ),
        )

    def close_event(self, event_id: str, ended_at: str) -> None:
        self.conn.execute(
            "UPDATE activity_events SET ended_at = ? WHERE id = ?", (ended_at, event_id)
        )

    def recent_events(self, subject_upn: str, *, limit: int) -> list[ActivityEvent]:
        rows = self.conn.execute(
            f"""
            SELECT {_EVENT_COLUMNS} FROM activity_events
            WHERE subject_upn = ?
            ORDER BY started_at DESC
            LIMIT ?
            """,
            (subject_upn, int(limit)),
        ).fetchall()
        return [_event_from_row(row) for row in rows]

    def events_since(
        self, subject_upn: str, started_at: str, *, limit: int
    ) -> list[ActivityEvent]:
        rows = self.conn.execute(
            f"""
            SELECT {_EVENT_COLUMNS} FROM activity_events
            WHERE subject_upn = ? AND started_at >= ?
            ORDER BY started_at DESC
            LIMIT ?
            """,
            (subject_upn, started_at, int(limit)),
        ).fetchall()
        return [_event_from_row(row) for row in rows]

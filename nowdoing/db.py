from __future__ import annotations

import sqlite3
from pathlib import Path

DEFAULT_DB_PATH = Path.home() / ".nowdoing.sqlite"
SCHEMA_VERSION = 1


def connect(db_path: Path | str, check_same_thread: bool = True) -> sqlite3.Connection:
    path = Path(db_path).expanduser()
    path.parent.mkdir(parents=True, exist_ok=True)
    # Transactions are opened explicitly by ActivityStore.transaction().
    conn = sqlite3.connect(path, check_same_thread=check_same_thread, isolation_level=None)
    conn.row_factory = sqlite3.Row
    conn.execute("PRAGMA foreign_keys = ON")
    try:
        conn.execute("PRAGMA journal_mode = WAL")
    except sqlite3.OperationalError:
        conn.execute("PRAGMA journal_mode = DELETE")
    conn.execute("PRAGMA synchronous = NORMAL")
    conn.execute("PRAGMA busy_timeout = 5000")
    return conn


def initialize_schema(conn: sqlite3.Connection) -> None:
    row = conn.execute("PRAGMA user_version").fetchone()
    version = int(row[0]) if row else 0
    if version < SCHEMA_VERSION:
        _initialize_schema_v1(conn)
        conn.execute(f"PRAGMA user_version = {SCHEMA_VERSION}")


def _initialize_schema_v1(conn: sqlite3.Connection) -> None:
    conn.executescript(
        """
        CREATE TABLE IF NOT EXISTS active_activity (
            id TEXT PRIMARY KEY,
            subject_upn TEXT NOT NULL,
            title TEXT NOT NULL,
            category TEXT NOT NULL,
            status TEXT NOT NULL DEFAULT 'IN_PROGRESS',
            project TEXT,
            notes TEXT,
            reference_id TEXT,
            started_at TEXT NOT NULL,
            last_heartbeat_at TEXT NOT NULL,
            visibility TEXT NOT NULL DEFAULT 'PUBLIC',
            redacted_label TEXT
        );
        CREATE INDEX IF NOT EXISTS idx_active_activity_subject ON active_activity(subject_upn);

        CREATE TABLE IF NOT EXISTS activity_events (
            id TEXT PRIMARY KEY,
            subject_upn TEXT NOT NULL,
            title TEXT NOT NULL,
            category TEXT NOT NULL,
            status TEXT NOT NULL DEFAULT 'IN_PROGRESS',
            project TEXT,
            notes TEXT,
            reference_id TEXT,
            started_at TEXT NOT NULL,
            ended_at TEXT,
            visibility TEXT NOT NULL DEFAULT 'PUBLIC',
            redacted_label TEXT
        );
        CREATE INDEX IF NOT EXISTS idx_activity_events_subject ON activity_events(subject_upn);
        CREATE INDEX IF NOT EXISTS idx_activity_events_subject_started
            ON activity_events(subject_upn, started_at DESC);
        """
    )


"""Database schema and persistence for Mindtrail.

This module provides SQLite setup and connection management, the key-value
store backing the resume slot, and the progress-report log.
All timestamps use ISO8601 format.
"""

import logging
import sqlite3
from datetime import datetime, timezone
from typing import Optional, TypedDict

from mindtrail.config import DATABASE_PATH

logger = logging.getLogger("mindtrail.database")

# Key under which the current task index is stored
RESUME_KEY = "currentTaskIndex"


class ProgressReportDict(TypedDict):
    """Type definition for one stored progress report."""

    id: int
    percent: int
    is_finished: bool
    last_task_index: int
    reported_at: str


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


def get_connection(db_path: str = DATABASE_PATH) -> sqlite3.Connection:
    """Get a database connection with row access by column name.

    Args:
        db_path: Path to SQLite database file

    Returns:
        SQLite connection object
    """
    conn = sqlite3.connect(db_path)
    conn.row_factory = sqlite3.Row
    return conn


def init_database(db_path: str = DATABASE_PATH) -> None:
    """Initialize database schema if not exists.

    Creates:
    - kv_store: single-key values such as the resume slot
    - progress_reports: append-only course progress log

    Args:
        db_path: Path to SQLite database file
    """
    conn = get_connection(db_path)
    cursor = conn.cursor()

    cursor.executescript("""
        CREATE TABLE IF NOT EXISTS kv_store (
            key TEXT PRIMARY KEY,
            value TEXT NOT NULL,
            updated_at TEXT NOT NULL
        );

        CREATE TABLE IF NOT EXISTS progress_reports (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            percent INTEGER NOT NULL CHECK(percent >= 0 AND percent <= 100),
            is_finished INTEGER NOT NULL DEFAULT 0,
            last_task_index INTEGER NOT NULL,
            reported_at TEXT NOT NULL
        );
        CREATE INDEX IF NOT EXISTS idx_progress_reports_reported_at ON progress_reports(reported_at);
    """)

    conn.commit()
    conn.close()


# ============================================================================
# Key-Value Store
# ============================================================================


def get_value(key: str, db_path: str = DATABASE_PATH) -> Optional[str]:
    conn = get_connection(db_path)
    cursor = conn.cursor()
    cursor.execute("SELECT value FROM kv_store WHERE key = ?", (key,))
    row = cursor.fetchone()
    conn.close()
    return row["value"] if row else None


def set_value(key: str, value: str, db_path: str = DATABASE_PATH) -> None:
    conn = get_connection(db_path)
    cursor = conn.cursor()
    cursor.execute(
        """
        INSERT OR REPLACE INTO kv_store (key, value, updated_at)
        VALUES (?, ?, ?)
    """,
        (key, value, _now()),
    )
    conn.commit()
    conn.close()


def delete_value(key: str, db_path: str = DATABASE_PATH) -> None:
    conn = get_connection(db_path)
    cursor = conn.cursor()
    cursor.execute("DELETE FROM kv_store WHERE key = ?", (key,))
    conn.commit()
    conn.close()


# ============================================================================
# Progress Reports
# ============================================================================


def record_progress_report(
    percent: int,
    is_finished: bool,
    last_task_index: int,
    db_path: str = DATABASE_PATH,
) -> int:
    """Append one progress report.

    Args:
        percent: Course completion percentage (clamped to 0-100)
        is_finished: True when the learner finished the course
        last_task_index: Index of the task the learner is on
        db_path: Path to database file

    Returns:
        ID of the stored report
    """
    conn = get_connection(db_path)
    cursor = conn.cursor()
    cursor.execute(
        """
        INSERT INTO progress_reports (percent, is_finished, last_task_index, reported_at)
        VALUES (?, ?, ?, ?)
    """,
        (max(0, min(100, int(percent))), int(is_finished), last_task_index, _now()),
    )
    report_id = cursor.lastrowid
    conn.commit()
    conn.close()
    return report_id


def get_progress_reports(db_path: str = DATABASE_PATH) -> list[ProgressReportDict]:
    """All progress reports, oldest first."""
    conn = get_connection(db_path)
    cursor = conn.cursor()
    cursor.execute("""
        SELECT id, percent, is_finished, last_task_index, reported_at
        FROM progress_reports
        ORDER BY id
    """)
    rows = cursor.fetchall()
    conn.close()
    return [
        {
            "id": row["id"],
            "percent": row["percent"],
            "is_finished": bool(row["is_finished"]),
            "last_task_index": row["last_task_index"],
            "reported_at": row["reported_at"],
        }
        for row in rows
    ]


# ============================================================================
# Resume Slot & Progress Sink Adapters
# ============================================================================


class SqliteResumeSlot:
    """Resume slot stored under one kv_store key."""

    def __init__(self, key: str = RESUME_KEY, db_path: str = DATABASE_PATH):
        self.key = key
        self.db_path = db_path

    def load(self) -> Optional[str]:
        return get_value(self.key, self.db_path)

    def save(self, value: str) -> None:
        set_value(self.key, value, self.db_path)

    def clear(self) -> None:
        delete_value(self.key, self.db_path)


class SqliteProgressSink:
    """Progress sink appending to the progress_reports table.

    Failures are logged and never raised to the caller.
    """

    def __init__(self, db_path: str = DATABASE_PATH):
        self.db_path = db_path

    def report_progress(self, percent: int, is_finished: bool, last_task_index: int) -> None:
        try:
            record_progress_report(percent, is_finished, last_task_index, self.db_path)
            logger.info(
                "Progress reported: %d%% (finished=%s, task=%d)", percent, is_finished, last_task_index
            )
        except sqlite3.Error as e:
            logger.error("Progress report failed: %s", e)

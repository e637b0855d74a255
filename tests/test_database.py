"""Tests for the SQLite key-value store, progress reports and their adapters.

Each test uses a temporary SQLite database for isolation.
"""

from datetime import datetime

import pytest

from mindtrail.database import (
    RESUME_KEY,
    SqliteProgressSink,
    SqliteResumeSlot,
    delete_value,
    get_connection,
    get_progress_reports,
    get_value,
    init_database,
    record_progress_report,
    set_value,
)


@pytest.fixture
def test_db_path(tmp_path):
    """Create temporary test database."""
    db_path = tmp_path / "test_mindtrail.db"
    init_database(str(db_path))
    return str(db_path)


def test_init_database_is_idempotent(test_db_path):
    """Test that the schema can be created twice."""
    init_database(test_db_path)

    conn = get_connection(test_db_path)
    tables = {
        row["name"] for row in conn.execute("SELECT name FROM sqlite_master WHERE type = 'table'")
    }
    conn.close()

    assert {"kv_store", "progress_reports"} <= tables


def test_kv_store_roundtrip(test_db_path):
    """Test set, overwrite and delete of one key."""
    assert get_value("missing", test_db_path) is None

    set_value(RESUME_KEY, "1", test_db_path)
    set_value(RESUME_KEY, "2", test_db_path)
    assert get_value(RESUME_KEY, test_db_path) == "2"

    delete_value(RESUME_KEY, test_db_path)
    assert get_value(RESUME_KEY, test_db_path) is None


def test_kv_store_timestamp_is_iso8601(test_db_path):
    """Test the stored updated_at format."""
    set_value("k", "v", test_db_path)

    conn = get_connection(test_db_path)
    row = conn.execute("SELECT updated_at FROM kv_store WHERE key = 'k'").fetchone()
    conn.close()

    assert isinstance(datetime.fromisoformat(row["updated_at"]), datetime)


def test_progress_reports_are_ordered_and_clamped(test_db_path):
    """Test appending and reading back progress reports."""
    first = record_progress_report(33, False, 1, test_db_path)
    second = record_progress_report(140, True, 2, test_db_path)

    reports = get_progress_reports(test_db_path)

    assert [r["id"] for r in reports] == [first, second]
    assert reports[0]["percent"] == 33
    assert reports[0]["is_finished"] is False
    assert reports[1]["percent"] == 100
    assert reports[1]["is_finished"] is True
    assert reports[1]["last_task_index"] == 2


def test_sqlite_resume_slot(test_db_path):
    """Test the resume slot adapter with a per-session key."""
    slot = SqliteResumeSlot(f"{RESUME_KEY}:learner-1", test_db_path)
    other = SqliteResumeSlot(f"{RESUME_KEY}:learner-2", test_db_path)

    slot.save("2")

    assert slot.load() == "2"
    assert other.load() is None

    slot.clear()
    assert slot.load() is None


def test_sqlite_progress_sink(test_db_path):
    """Test that the sink appends a report."""
    SqliteProgressSink(test_db_path).report_progress(50, False, 1)

    reports = get_progress_reports(test_db_path)
    assert len(reports) == 1
    assert reports[0]["percent"] == 50


def test_sqlite_progress_sink_swallows_errors(tmp_path):
    """Test that a database failure is logged and not raised."""
    sink = SqliteProgressSink(str(tmp_path / "uninitialised.db"))

    sink.report_progress(50, False, 1)

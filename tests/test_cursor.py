from __future__ import annotations

import pytest

from fakes import setup_conn
from market_sync.errors import CursorError
from market_sync.sync.cursor import Cursor, read_cursor, write_cursor

STREAM = ("market_sync", "pnl")


def test_cursor_ordering_is_lexicographic() -> None:
    assert Cursor(10, "b") > Cursor(10, "a")
    assert Cursor(11, "a") > Cursor(10, "z")
    assert max([Cursor(10, "a"), Cursor(9, "z"), Cursor(10, "ab")]) == Cursor(10, "ab")


def test_read_missing_cursor() -> None:
    conn = setup_conn()
    assert read_cursor(conn, STREAM) is None


def test_write_is_idempotent_upsert() -> None:
    conn = setup_conn()
    assert write_cursor(conn, STREAM, Cursor(100, "0xabc"))
    assert write_cursor(conn, STREAM, Cursor(100, "0xabc"))
    assert read_cursor(conn, STREAM) == Cursor(100, "0xabc")
    count = conn.execute("SELECT COUNT(*) FROM sync_state").fetchone()[0]
    assert count == 1


def test_cursor_never_regresses() -> None:
    conn = setup_conn()
    write_cursor(conn, STREAM, Cursor(200, "b"))
    assert write_cursor(conn, STREAM, Cursor(200, "a")) is False
    assert write_cursor(conn, STREAM, Cursor(150, "z")) is False
    assert read_cursor(conn, STREAM) == Cursor(200, "b")
    assert write_cursor(conn, STREAM, Cursor(201, "a"))
    assert read_cursor(conn, STREAM) == Cursor(201, "a")


def test_cursor_write_keeps_lock_fields() -> None:
    conn = setup_conn()
    conn.execute(
        "INSERT INTO sync_state (service_name, subgraph_name, status, total_processed, updated_at) "
        "VALUES (?, ?, 'completed', 5, 1.0)",
        STREAM,
    )
    conn.commit()
    write_cursor(conn, STREAM, Cursor(1, "x"), now=2.0)
    row = conn.execute("SELECT status, total_processed FROM sync_state").fetchone()
    assert row["status"] == "completed"
    assert row["total_processed"] == 5


def test_unparseable_stored_cursor_is_fatal() -> None:
    conn = setup_conn()
    conn.execute(
        "INSERT INTO sync_state (service_name, subgraph_name, cursor_timestamp, cursor_id, updated_at) "
        "VALUES (?, ?, 'not-a-number', 'x', 1.0)",
        STREAM,
    )
    conn.commit()
    with pytest.raises(CursorError):
        read_cursor(conn, STREAM)

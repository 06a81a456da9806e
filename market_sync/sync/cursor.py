from __future__ import annotations

import logging
import sqlite3
import time
from typing import NamedTuple

from market_sync.db import store
from market_sync.errors import CursorError

logger = logging.getLogger(__name__)


class Cursor(NamedTuple):
    """Sync watermark; tuple ordering gives the (timestamp, id) lexicographic order."""

    timestamp: int
    id: str


def read_cursor(conn: sqlite3.Connection, stream: store.StreamKey) -> Cursor | None:
    state = store.fetch_sync_state(conn, stream)
    if not state or state.get("cursor_timestamp") is None or not state.get("cursor_id"):
        return None
    try:
        timestamp = int(state["cursor_timestamp"])
    except (TypeError, ValueError) as exc:
        raise CursorError(
            f"Stored cursor for {stream[0]}/{stream[1]} is not numeric: {state['cursor_timestamp']!r}"
        ) from exc
    return Cursor(timestamp, str(state["cursor_id"]))


def write_cursor(
    conn: sqlite3.Connection,
    stream: store.StreamKey,
    cursor: Cursor,
    now: float | None = None,
) -> bool:
    current = read_cursor(conn, stream)
    if current is not None and cursor < current:
        logger.warning(
            "Refusing to move cursor for %s/%s backwards from %s to %s",
            stream[0],
            stream[1],
            current,
            cursor,
        )
        return False
    store.upsert_sync_cursor(
        conn,
        stream,
        cursor.timestamp,
        cursor.id,
        time.time() if now is None else now,
    )
    return True

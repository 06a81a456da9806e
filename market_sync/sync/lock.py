from __future__ import annotations

import logging
import sqlite3
import time
from dataclasses import dataclass

from market_sync.db import store
from market_sync.errors import SyncLockError

logger = logging.getLogger(__name__)

DEFAULT_STALE_AFTER_S = 15 * 60


@dataclass(frozen=True)
class SyncLease:
    running: bool
    last_heartbeat: float
    stale_after_s: float = DEFAULT_STALE_AFTER_S

    def is_stale(self, now: float) -> bool:
        return now - self.last_heartbeat > self.stale_after_s

    def is_held(self, now: float) -> bool:
        return self.running and not self.is_stale(now)


def read_lease(
    conn: sqlite3.Connection,
    stream: store.StreamKey,
    stale_after_s: float = DEFAULT_STALE_AFTER_S,
) -> SyncLease | None:
    state = store.fetch_sync_state(conn, stream)
    if state is None:
        return None
    return SyncLease(
        running=state["status"] == "running",
        last_heartbeat=float(state["updated_at"]),
        stale_after_s=stale_after_s,
    )


def try_acquire(
    conn: sqlite3.Connection,
    stream: store.StreamKey,
    stale_after_s: float = DEFAULT_STALE_AFTER_S,
    now: float | None = None,
) -> bool:
    """Claim the stream's run slot.

    A single conditional UPDATE moves the row to ``running`` when it is not
    running or its heartbeat is older than ``stale_after_s``. When no row exists
    a fresh one is inserted; losing that insert race to another invocation
    returns False rather than raising.
    """
    now = time.time() if now is None else now
    try:
        claimed = store.claim_sync_lock(conn, stream, now, now - stale_after_s)
        if claimed == 1:
            conn.commit()
            return True
        try:
            store.insert_sync_lock(conn, stream, now)
        except sqlite3.IntegrityError:
            conn.rollback()
            logger.info("Sync lock for %s/%s is held by another run", *stream)
            return False
        conn.commit()
        return True
    except sqlite3.Error as exc:
        conn.rollback()
        raise SyncLockError(f"Failed to claim sync lock: {exc}") from exc


def heartbeat(conn: sqlite3.Connection, stream: store.StreamKey, now: float | None = None) -> None:
    store.touch_sync_state(conn, stream, time.time() if now is None else now)


def mark_completed(
    conn: sqlite3.Connection,
    stream: store.StreamKey,
    total_processed: int,
    now: float | None = None,
) -> None:
    store.update_sync_status(
        conn,
        stream,
        "completed",
        time.time() if now is None else now,
        error_message=None,
        total_processed=total_processed,
    )


def mark_error(
    conn: sqlite3.Connection,
    stream: store.StreamKey,
    message: str,
    now: float | None = None,
) -> None:
    try:
        store.update_sync_status(conn, stream, "error", time.time() if now is None else now, error_message=message)
    except sqlite3.Error as exc:
        logger.error("Failed to update sync status to error for %s/%s: %s", stream[0], stream[1], exc)

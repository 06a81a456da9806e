from __future__ import annotations

import logging
import sqlite3
import time
from typing import Any, Callable, Protocol

from market_sync.config import SyncConfig
from market_sync.db import store
from market_sync.pipeline.event_status import update_event_statuses
from market_sync.pipeline.results import Failed, Processed, RecordResult, SyncStats
from market_sync.sync import lock
from market_sync.sync.cursor import Cursor, read_cursor, write_cursor

logger = logging.getLogger(__name__)


class SyncStream(Protocol):
    key: store.StreamKey

    def fetch_page(self, cursor: Cursor | None, page_size: int) -> list[dict[str, Any]]: ...

    def prepare(self, conn: sqlite3.Connection, page: list[dict[str, Any]]) -> Any: ...

    def cursor_for(self, record: dict[str, Any]) -> Cursor | None: ...

    def process(self, conn: sqlite3.Connection, record: dict[str, Any], context: Any) -> RecordResult: ...


class LockBusy(Exception):
    """Another invocation holds a fresh lease on the stream."""


def run_sync(
    conn: sqlite3.Connection,
    stream: SyncStream,
    config: SyncConfig,
    clock: Callable[[], float] = time.monotonic,
) -> SyncStats:
    if not lock.try_acquire(conn, stream.key, config.lock_stale_after_s):
        raise LockBusy(f"Sync already running for {stream.key[0]}/{stream.key[1]}")

    logger.info("Starting sync for %s/%s", *stream.key)
    try:
        stats = sync_pages(conn, stream, config, clock)
    except Exception as exc:
        logger.exception("Sync failed for %s/%s", *stream.key)
        lock.mark_error(conn, stream.key, str(exc))
        raise
    lock.mark_completed(conn, stream.key, stats.processed)
    logger.info(
        "Sync summary stream=%s/%s pages=%d fetched=%d processed=%d skipped=%d errors=%d time_limit_reached=%s",
        stream.key[0],
        stream.key[1],
        stats.pages,
        stats.fetched,
        stats.processed,
        stats.skipped,
        len(stats.error_details),
        stats.time_limit_reached,
    )
    return stats


def sync_pages(
    conn: sqlite3.Connection,
    stream: SyncStream,
    config: SyncConfig,
    clock: Callable[[], float] = time.monotonic,
) -> SyncStats:
    started = clock()
    stats = SyncStats()
    cursor = read_cursor(conn, stream.key)
    persisted = cursor
    pending_events: set[int] = set()

    def out_of_time() -> bool:
        return clock() - started >= config.time_limit_s

    if cursor is not None:
        logger.info("Resuming %s/%s after %s at %s", stream.key[0], stream.key[1], cursor.id, cursor.timestamp)

    try:
        while True:
            if out_of_time():
                stats.time_limit_reached = True
                break
            page = stream.fetch_page(cursor, config.page_size)
            stats.pages += 1
            if not page:
                logger.info("No additional records for %s/%s", *stream.key)
                break
            stats.fetched += len(page)
            logger.info("Processing %d records (running total fetched: %d)", len(page), stats.fetched)

            context = stream.prepare(conn, page)
            for record in page:
                if out_of_time():
                    logger.warning("Time limit reached during processing, stopping sync loop")
                    stats.time_limit_reached = True
                    break
                result = _process_record(conn, stream, record, context)
                stats.record(result)
                if isinstance(result, Processed):
                    pending_events.update(result.event_ids)
                elif isinstance(result, Failed):
                    logger.warning("Record %s failed: %s", result.record_id, result.error)
                record_cursor = stream.cursor_for(record)
                if record_cursor is not None and (cursor is None or record_cursor > cursor):
                    cursor = record_cursor

            if cursor is not None and cursor != persisted:
                write_cursor(conn, stream.key, cursor)
                persisted = cursor
            else:
                lock.heartbeat(conn, stream.key)

            if pending_events:
                update_event_statuses(conn, pending_events)
                pending_events.clear()

            if stats.time_limit_reached:
                break
            if len(page) < config.page_size:
                logger.info("Last page was smaller than the page size; stopping pagination")
                break
    finally:
        # Keep whatever progress was durably applied even when the run aborts.
        if cursor is not None and cursor != persisted:
            write_cursor(conn, stream.key, cursor)
        if pending_events:
            update_event_statuses(conn, pending_events)

    return stats


def _process_record(
    conn: sqlite3.Connection,
    stream: SyncStream,
    record: dict[str, Any],
    context: Any,
) -> RecordResult:
    record_id = str(record.get("id") or "")
    try:
        result = stream.process(conn, record, context)
    except Exception as exc:  # noqa: BLE001
        logger.exception("Unexpected failure processing record %s", record_id)
        conn.rollback()
        return Failed(record_id, str(exc))
    conn.commit()
    return result

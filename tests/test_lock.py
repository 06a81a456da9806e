from __future__ import annotations

import sqlite3
import threading

import pytest

from fakes import setup_conn
from market_sync.db import store
from market_sync.errors import SyncLockError
from market_sync.sync import lock

STREAM = ("resolution_sync", "resolution")


def test_first_acquire_inserts_running_row() -> None:
    conn = setup_conn()
    assert lock.try_acquire(conn, STREAM, now=1000.0) is True
    state = store.fetch_sync_state(conn, STREAM)
    assert state["status"] == "running"
    assert state["error_message"] is None
    assert state["updated_at"] == 1000.0


def test_fresh_running_lock_is_not_acquirable() -> None:
    conn = setup_conn()
    assert lock.try_acquire(conn, STREAM, now=1000.0)
    assert lock.try_acquire(conn, STREAM, now=1000.0 + 14 * 60) is False


def test_stale_running_lock_is_taken_over() -> None:
    conn = setup_conn()
    assert lock.try_acquire(conn, STREAM, now=1000.0)
    assert lock.try_acquire(conn, STREAM, now=1000.0 + 15 * 60 + 1) is True


def test_completed_and_error_release_the_lock() -> None:
    conn = setup_conn()
    assert lock.try_acquire(conn, STREAM, now=1000.0)
    lock.mark_completed(conn, STREAM, total_processed=7, now=1001.0)
    state = store.fetch_sync_state(conn, STREAM)
    assert state["status"] == "completed"
    assert state["total_processed"] == 7

    assert lock.try_acquire(conn, STREAM, now=1002.0)
    lock.mark_error(conn, STREAM, "boom", now=1003.0)
    assert store.fetch_sync_state(conn, STREAM)["error_message"] == "boom"

    assert lock.try_acquire(conn, STREAM, now=1004.0)
    state = store.fetch_sync_state(conn, STREAM)
    assert state["status"] == "running"
    assert state["error_message"] is None
    assert state["total_processed"] == 7


def test_concurrent_acquire_has_single_winner(tmp_path) -> None:
    db_path = tmp_path / "lock.sqlite"
    conn = store.get_connection(db_path)
    store.init_db(conn)
    conn.close()

    barrier = threading.Barrier(2)
    results: list[bool] = []
    errors: list[BaseException] = []

    def worker() -> None:
        local = store.get_connection(db_path)
        try:
            barrier.wait()
            results.append(lock.try_acquire(local, STREAM))
        except BaseException as exc:  # noqa: BLE001
            errors.append(exc)
        finally:
            local.close()

    threads = [threading.Thread(target=worker) for _ in range(2)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()

    assert not errors
    assert sorted(results) == [False, True]


def test_storage_failure_is_fatal() -> None:
    conn = sqlite3.connect(":memory:")
    with pytest.raises(SyncLockError):
        lock.try_acquire(conn, STREAM)


def test_lease_view() -> None:
    conn = setup_conn()
    assert lock.read_lease(conn, STREAM) is None
    lock.try_acquire(conn, STREAM, now=1000.0)
    lease = lock.read_lease(conn, STREAM)
    assert lease.running is True
    assert lease.is_held(1000.0 + 60)
    assert not lease.is_held(1000.0 + 16 * 60)

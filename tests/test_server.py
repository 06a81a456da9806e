from __future__ import annotations

from typing import Any

from fastapi.testclient import TestClient

from market_sync.config import AppConfig
from market_sync.db import store
from market_sync.pipeline.results import Processed
from market_sync.pipeline.streams import CONDITIONS_STREAM, RESOLUTION_STREAM
from market_sync.server import create_app, is_cron_authorized
from market_sync.sync import lock
from market_sync.sync.cursor import Cursor

SECRET = "s3cret"


class StubStream:
    def __init__(self, key: tuple[str, str], records: list[dict[str, Any]]) -> None:
        self.key = key
        self.records = records

    def fetch_page(self, cursor: Cursor | None, page_size: int) -> list[dict[str, Any]]:
        return [] if cursor is not None else list(self.records)

    def prepare(self, conn, page):
        return None

    def cursor_for(self, record: dict[str, Any]) -> Cursor | None:
        return Cursor(int(record["ts"]), record["id"])

    def process(self, conn, record, context):
        return Processed(record["id"])


def _client(tmp_path) -> tuple[TestClient, Any]:
    db_path = tmp_path / "sync.sqlite"
    setup = store.get_connection(db_path)
    store.init_db(setup)
    setup.close()

    config = AppConfig()
    config.server.cron_secret = SECRET

    def stream_factory(name: str, _config: AppConfig) -> StubStream:
        key = CONDITIONS_STREAM if name == "events" else RESOLUTION_STREAM
        return StubStream(key, [{"id": "r1", "ts": "10"}, {"id": "r2", "ts": "11"}])

    app = create_app(config, stream_factory=stream_factory, connect=lambda _config: store.get_connection(db_path))
    return TestClient(app), db_path


def test_cron_authorization() -> None:
    assert is_cron_authorized("Bearer abc", "abc")
    assert not is_cron_authorized("Bearer abd", "abc")
    assert not is_cron_authorized(None, "abc")
    assert not is_cron_authorized("Bearer ", None)


def test_missing_bearer_is_rejected(tmp_path) -> None:
    client, _ = _client(tmp_path)
    response = client.get("/api/sync/events")
    assert response.status_code == 401
    assert response.json() == {"error": "Unauthenticated."}

    response = client.get("/api/sync/resolution", headers={"Authorization": "Bearer wrong"})
    assert response.status_code == 401


def test_authorized_run_returns_summary(tmp_path) -> None:
    client, db_path = _client(tmp_path)
    response = client.get("/api/sync/resolution", headers={"Authorization": f"Bearer {SECRET}"})

    assert response.status_code == 200
    body = response.json()
    assert body["success"] is True
    assert body["fetched"] == 2
    assert body["processed"] == 2
    assert body["timeLimitReached"] is False

    conn = store.get_connection(db_path)
    try:
        state = store.fetch_sync_state(conn, RESOLUTION_STREAM)
    finally:
        conn.close()
    assert state["status"] == "completed"
    assert (state["cursor_timestamp"], state["cursor_id"]) == (11, "r2")


def test_running_sync_returns_conflict(tmp_path) -> None:
    client, db_path = _client(tmp_path)
    conn = store.get_connection(db_path)
    try:
        assert lock.try_acquire(conn, CONDITIONS_STREAM)
    finally:
        conn.close()

    response = client.get("/api/sync/events", headers={"Authorization": f"Bearer {SECRET}"})
    assert response.status_code == 409
    assert response.json() == {"success": False, "message": "Sync already running", "skipped": True}

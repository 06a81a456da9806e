"""HTTP triggers for the sync streams, meant to be hit by a cron scheduler."""

from __future__ import annotations

import hmac
import logging
import sqlite3
from pathlib import Path
from typing import Callable

from fastapi import FastAPI, Header
from fastapi.responses import JSONResponse

from market_sync.config import AppConfig, load_config
from market_sync.pipeline.driver import SyncStream
from market_sync.pipeline.run_sync import ROOT, build_stream, execute_sync, open_database

logger = logging.getLogger(__name__)


def is_cron_authorized(authorization: str | None, secret: str | None) -> bool:
    if not secret or not authorization:
        return False
    return hmac.compare_digest(authorization.encode("utf-8"), f"Bearer {secret}".encode("utf-8"))


def create_app(
    config: AppConfig,
    stream_factory: Callable[[str, AppConfig], SyncStream] = build_stream,
    connect: Callable[[AppConfig], sqlite3.Connection] = open_database,
) -> FastAPI:
    app = FastAPI(title="market-sync", version="0.1.0")

    def _trigger(name: str, authorization: str | None) -> JSONResponse:
        if not is_cron_authorized(authorization, config.server.cron_secret):
            return JSONResponse(status_code=401, content={"error": "Unauthenticated."})
        conn = connect(config)
        try:
            status, body = execute_sync(conn, stream_factory(name, config), config)
        finally:
            conn.close()
        return JSONResponse(status_code=status, content=body)

    @app.get("/api/sync/events")
    def sync_events(authorization: str | None = Header(default=None)) -> JSONResponse:
        return _trigger("events", authorization)

    @app.get("/api/sync/resolution")
    def sync_resolution(authorization: str | None = Header(default=None)) -> JSONResponse:
        return _trigger("resolution", authorization)

    return app


def run_api(host: str = "127.0.0.1", port: int = 8000, config_path: Path | None = None) -> None:
    import uvicorn

    logging.basicConfig(level=logging.INFO, format="%(levelname)s %(message)s")
    config = load_config(config_path or ROOT / "config.yaml")
    uvicorn.run(create_app(config), host=host, port=port)


if __name__ == "__main__":
    run_api()

from __future__ import annotations

import argparse
import json
import logging
import sqlite3
import sys
from pathlib import Path
from typing import Any

from market_sync.api.content import ContentClient
from market_sync.api.subgraph import SubgraphClient
from market_sync.config import AppConfig, load_config
from market_sync.db import store
from market_sync.pipeline.driver import LockBusy, SyncStream, run_sync
from market_sync.pipeline.images import LocalImageStore
from market_sync.pipeline.streams import ConditionStream, ResolutionStream

logger = logging.getLogger(__name__)

ROOT = Path(__file__).resolve().parents[2]
STREAM_NAMES = ("events", "resolution")


def build_stream(name: str, config: AppConfig) -> SyncStream:
    if name == "events":
        content = ContentClient(config.content.gateway, timeout_s=config.content.request_timeout_s)
        return ConditionStream(
            config,
            SubgraphClient(config.subgraphs.conditions_url, timeout_s=config.subgraphs.request_timeout_s),
            content,
            LocalImageStore(content, _resolve(config.images.root_dir)),
        )
    if name == "resolution":
        return ResolutionStream(
            config,
            SubgraphClient(config.subgraphs.resolution_url, timeout_s=config.subgraphs.request_timeout_s),
        )
    raise ValueError(f"Unknown sync stream: {name}")


def open_database(config: AppConfig) -> sqlite3.Connection:
    conn = store.get_connection(_resolve(config.database.path))
    store.init_db(conn)
    return conn


def execute_sync(
    conn: sqlite3.Connection,
    stream: SyncStream,
    config: AppConfig,
) -> tuple[int, dict[str, Any]]:
    """Run one stream and map the outcome to an HTTP-style (status, body) pair."""
    try:
        stats = run_sync(conn, stream, config.sync)
    except LockBusy:
        logger.info("Sync already running for %s/%s, skipping", *stream.key)
        return 409, {"success": False, "message": "Sync already running", "skipped": True}
    except Exception as exc:  # noqa: BLE001
        return 500, {"success": False, "error": str(exc)}
    return 200, stats.to_response()


def _resolve(path: str) -> Path:
    candidate = Path(path)
    return candidate if candidate.is_absolute() else ROOT / candidate


def main(argv: list[str] | None = None) -> int:
    logging.basicConfig(level=logging.INFO, format="%(levelname)s %(message)s")
    parser = argparse.ArgumentParser(description="Run one incremental subgraph sync")
    parser.add_argument("stream", choices=STREAM_NAMES)
    parser.add_argument("--config", default=str(ROOT / "config.yaml"))
    args = parser.parse_args(argv)

    config = load_config(args.config)
    conn = open_database(config)
    try:
        status, body = execute_sync(conn, build_stream(args.stream, config), config)
    finally:
        conn.close()
    print(json.dumps(body, indent=2))
    if status == 200:
        return 0
    return 2 if status == 409 else 1


if __name__ == "__main__":
    sys.exit(main())

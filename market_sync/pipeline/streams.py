from __future__ import annotations

import logging
import sqlite3
from typing import Any

from market_sync.api.content import ContentClient
from market_sync.api.subgraph import SubgraphClient
from market_sync.config import AppConfig, allowed_creators
from market_sync.db import store
from market_sync.pipeline.conditions import process_condition
from market_sync.pipeline.images import ImageStore
from market_sync.pipeline.resolution import ResolutionTarget, lookup_targets, process_resolution
from market_sync.pipeline.results import RecordResult
from market_sync.sync.cursor import Cursor
from market_sync.utils.normalize import parse_epoch_seconds

logger = logging.getLogger(__name__)

CONDITIONS_STREAM = ("market_sync", "pnl")
RESOLUTION_STREAM = ("resolution_sync", "resolution")

SETTINGS_GROUP = "general"
MARKET_CREATORS_KEY = "market_creators"


def load_allowed_creators(conn: sqlite3.Connection, config: AppConfig) -> set[str]:
    try:
        settings_value = store.fetch_setting(conn, SETTINGS_GROUP, MARKET_CREATORS_KEY)
    except sqlite3.Error as exc:
        logger.warning("Failed to read market creator settings, using configured creators only: %s", exc)
        settings_value = None
    return allowed_creators(config, settings_value)


class ConditionStream:
    key = CONDITIONS_STREAM

    def __init__(
        self,
        config: AppConfig,
        subgraph: SubgraphClient,
        content: ContentClient,
        images: ImageStore,
    ) -> None:
        self.config = config
        self.subgraph = subgraph
        self.content = content
        self.images = images
        self._creators: set[str] | None = None

    def fetch_page(self, cursor: Cursor | None, page_size: int) -> list[dict[str, Any]]:
        return self.subgraph.fetch_conditions(cursor, page_size)

    def prepare(self, conn: sqlite3.Connection, page: list[dict[str, Any]]) -> set[str]:
        if self._creators is None:
            self._creators = load_allowed_creators(conn, self.config)
        return self._creators

    def cursor_for(self, record: dict[str, Any]) -> Cursor | None:
        timestamp = parse_epoch_seconds(record.get("updatedAt"))
        if timestamp is None or not record.get("id"):
            return None
        return Cursor(timestamp, str(record["id"]))

    def process(self, conn: sqlite3.Connection, record: dict[str, Any], context: set[str]) -> RecordResult:
        return process_condition(conn, record, context, self.content, self.images)


class ResolutionStream:
    key = RESOLUTION_STREAM

    def __init__(self, config: AppConfig, subgraph: SubgraphClient) -> None:
        self.config = config
        self.subgraph = subgraph

    def fetch_page(self, cursor: Cursor | None, page_size: int) -> list[dict[str, Any]]:
        return self.subgraph.fetch_resolutions(cursor, page_size)

    def prepare(self, conn: sqlite3.Connection, page: list[dict[str, Any]]) -> dict[str, ResolutionTarget]:
        return lookup_targets(conn, page)

    def cursor_for(self, record: dict[str, Any]) -> Cursor | None:
        timestamp = parse_epoch_seconds(record.get("lastUpdateTimestamp"))
        if timestamp is None or not record.get("id"):
            return None
        return Cursor(timestamp, str(record["id"]))

    def process(
        self,
        conn: sqlite3.Connection,
        record: dict[str, Any],
        context: dict[str, ResolutionTarget],
    ) -> RecordResult:
        return process_resolution(conn, record, context, self.config.resolution)

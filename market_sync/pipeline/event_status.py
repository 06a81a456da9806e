from __future__ import annotations

import logging
import sqlite3
from collections import defaultdict
from typing import Any, Iterable

from market_sync.db import store
from market_sync.utils.time import utc_now_iso

logger = logging.getLogger(__name__)


def derive_status(markets: Iterable[dict[str, Any]]) -> str:
    flags = list(markets)
    if not flags:
        return "draft"
    has_unresolved = any(market.get("is_resolved") is not True for market in flags)
    if not has_unresolved:
        return "resolved"
    has_active = any(
        market.get("is_active") is True
        or (market.get("is_active") is None and market.get("is_resolved") is False)
        for market in flags
    )
    return "active" if has_active else "archived"


def update_event_statuses(
    conn: sqlite3.Connection,
    event_ids: Iterable[int],
    now_iso: str | None = None,
    commit: bool = True,
) -> int:
    """Recompute status for the given events; returns how many rows were written."""
    ids = sorted({int(event_id) for event_id in event_ids})
    if not ids:
        return 0
    events = store.fetch_events_by_ids(conn, ids)
    markets_by_event: dict[int, list[dict[str, Any]]] = defaultdict(list)
    for market in store.fetch_market_flags_for_events(conn, ids):
        markets_by_event[market["event_id"]].append(market)

    now_iso = now_iso or utc_now_iso()
    written = 0
    for event_id in ids:
        current = events.get(event_id)
        if current is None:
            logger.warning("Event %s vanished before status recompute", event_id)
            continue
        next_status = derive_status(markets_by_event.get(event_id, []))
        resolved_at = current.get("resolved_at")
        if next_status == "resolved" and resolved_at is None:
            resolved_at = now_iso
        if next_status == current.get("status") and resolved_at == current.get("resolved_at"):
            continue
        store.update_event_status(conn, event_id, next_status, resolved_at, commit=False)
        logger.info("Event %s status %s -> %s", event_id, current.get("status"), next_status)
        written += 1
    if commit:
        conn.commit()
    return written

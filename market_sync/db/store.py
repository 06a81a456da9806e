from __future__ import annotations

import json
import sqlite3
from pathlib import Path
from typing import Any, Iterable, Sequence

from market_sync.db.schema import MIGRATIONS, SCHEMA_VERSION

StreamKey = tuple[str, str]


def get_connection(db_path: Path, timeout_s: float = 10.0) -> sqlite3.Connection:
    db_path.parent.mkdir(parents=True, exist_ok=True)
    conn = sqlite3.connect(db_path, timeout=timeout_s)
    conn.row_factory = sqlite3.Row
    return conn


def init_db(conn: sqlite3.Connection) -> None:
    version = conn.execute("PRAGMA user_version").fetchone()[0]
    for index in range(version, SCHEMA_VERSION):
        conn.executescript(MIGRATIONS[index])
        conn.execute(f"PRAGMA user_version = {index + 1}")
    conn.commit()


def schema_version(conn: sqlite3.Connection) -> int:
    return conn.execute("PRAGMA user_version").fetchone()[0]


def _to_bool(value: Any) -> bool | None:
    if value is None:
        return None
    return bool(value)


def _to_int(value: bool | None) -> int | None:
    if value is None:
        return None
    return 1 if value else 0


def _placeholders(values: Sequence[Any]) -> str:
    return ", ".join("?" for _ in values)


# --- sync_state -----------------------------------------------------------------


def claim_sync_lock(
    conn: sqlite3.Connection,
    stream: StreamKey,
    now: float,
    stale_before: float,
) -> int:
    cursor = conn.execute(
        """
        UPDATE sync_state
        SET status = 'running', error_message = NULL, updated_at = ?
        WHERE service_name = ? AND subgraph_name = ?
          AND (status IS NOT 'running' OR updated_at < ?)
        """,
        (now, stream[0], stream[1], stale_before),
    )
    return cursor.rowcount


def insert_sync_lock(conn: sqlite3.Connection, stream: StreamKey, now: float) -> None:
    conn.execute(
        """
        INSERT INTO sync_state (service_name, subgraph_name, status, error_message, updated_at)
        VALUES (?, ?, 'running', NULL, ?)
        """,
        (stream[0], stream[1], now),
    )


def update_sync_status(
    conn: sqlite3.Connection,
    stream: StreamKey,
    status: str,
    now: float,
    error_message: str | None = None,
    total_processed: int | None = None,
) -> None:
    conn.execute(
        """
        INSERT INTO sync_state (service_name, subgraph_name, status, error_message, total_processed, updated_at)
        VALUES (?, ?, ?, ?, COALESCE(?, 0), ?)
        ON CONFLICT (service_name, subgraph_name) DO UPDATE SET
            status = excluded.status,
            error_message = excluded.error_message,
            total_processed = COALESCE(?, sync_state.total_processed),
            updated_at = excluded.updated_at
        """,
        (stream[0], stream[1], status, error_message, total_processed, now, total_processed),
    )
    conn.commit()


def touch_sync_state(conn: sqlite3.Connection, stream: StreamKey, now: float) -> None:
    conn.execute(
        "UPDATE sync_state SET updated_at = ? WHERE service_name = ? AND subgraph_name = ? AND status = 'running'",
        (now, stream[0], stream[1]),
    )
    conn.commit()


def fetch_sync_state(conn: sqlite3.Connection, stream: StreamKey) -> dict[str, Any] | None:
    row = conn.execute(
        """
        SELECT service_name, subgraph_name, status, error_message, total_processed,
               cursor_timestamp, cursor_id, updated_at
        FROM sync_state WHERE service_name = ? AND subgraph_name = ?
        """,
        stream,
    ).fetchone()
    return dict(row) if row else None


def upsert_sync_cursor(
    conn: sqlite3.Connection,
    stream: StreamKey,
    timestamp: int,
    record_id: str,
    now: float,
) -> None:
    conn.execute(
        """
        INSERT INTO sync_state (service_name, subgraph_name, cursor_timestamp, cursor_id, updated_at)
        VALUES (?, ?, ?, ?, ?)
        ON CONFLICT (service_name, subgraph_name) DO UPDATE SET
            cursor_timestamp = excluded.cursor_timestamp,
            cursor_id = excluded.cursor_id,
            updated_at = excluded.updated_at
        """,
        (stream[0], stream[1], timestamp, record_id, now),
    )
    conn.commit()


# --- conditions -----------------------------------------------------------------


def upsert_condition(conn: sqlite3.Connection, condition: dict[str, Any], commit: bool = True) -> None:
    conn.execute(
        """
        INSERT INTO conditions
        (id, oracle, question_id, resolved, metadata_hash, creator, created_at, updated_at)
        VALUES (?, ?, ?, ?, ?, ?, ?, ?)
        ON CONFLICT (id) DO UPDATE SET
            oracle = excluded.oracle,
            question_id = excluded.question_id,
            resolved = excluded.resolved,
            metadata_hash = excluded.metadata_hash,
            creator = excluded.creator,
            created_at = excluded.created_at,
            updated_at = excluded.updated_at
        """,
        (
            condition["id"],
            condition["oracle"],
            condition["question_id"],
            1 if condition.get("resolved") else 0,
            condition["metadata_hash"],
            condition["creator"],
            condition["created_at"],
            condition["updated_at"],
        ),
    )
    if commit:
        conn.commit()


def update_condition_fields(
    conn: sqlite3.Connection,
    condition_id: str,
    fields: dict[str, Any],
    commit: bool = True,
) -> int:
    if not fields:
        return 0
    assignments = ", ".join(f"{column} = ?" for column in fields)
    cursor = conn.execute(
        f"UPDATE conditions SET {assignments} WHERE id = ?",
        (*fields.values(), condition_id),
    )
    if commit:
        conn.commit()
    return cursor.rowcount


def fetch_condition(conn: sqlite3.Connection, condition_id: str) -> dict[str, Any] | None:
    row = conn.execute("SELECT * FROM conditions WHERE id = ?", (condition_id,)).fetchone()
    if not row:
        return None
    result = dict(row)
    for key in ("resolved", "resolution_flagged", "resolution_paused", "resolution_was_disputed", "resolution_approved"):
        result[key] = _to_bool(result[key])
    return result


def fetch_conditions_by_question_ids(
    conn: sqlite3.Connection,
    question_ids: Sequence[str],
) -> list[dict[str, Any]]:
    lowered = [value.lower() for value in question_ids]
    if not lowered:
        return []
    rows = conn.execute(
        f"SELECT id, question_id FROM conditions WHERE lower(question_id) IN ({_placeholders(lowered)})",
        lowered,
    ).fetchall()
    return [dict(row) for row in rows]


# --- events ---------------------------------------------------------------------


def fetch_event_by_slug(conn: sqlite3.Connection, slug: str) -> dict[str, Any] | None:
    row = conn.execute(
        "SELECT id, slug, title, end_date, created_at, series_slug, status, resolved_at FROM events WHERE slug = ?",
        (slug,),
    ).fetchone()
    return dict(row) if row else None


def insert_event(conn: sqlite3.Connection, event: dict[str, Any], commit: bool = True) -> int:
    cursor = conn.execute(
        """
        INSERT INTO events
        (slug, title, creator, icon_url, show_market_icons, enable_neg_risk, neg_risk_augmented,
         neg_risk, neg_risk_market_id, series_slug, rules, end_date, created_at)
        VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
        """,
        (
            event["slug"],
            event["title"],
            event.get("creator"),
            event.get("icon_url"),
            1 if event.get("show_market_icons", True) else 0,
            1 if event.get("enable_neg_risk") else 0,
            1 if event.get("neg_risk_augmented") else 0,
            1 if event.get("neg_risk") else 0,
            event.get("neg_risk_market_id"),
            event.get("series_slug"),
            event.get("rules"),
            event.get("end_date"),
            event["created_at"],
        ),
    )
    if commit:
        conn.commit()
    return int(cursor.lastrowid)


def update_event_fields(
    conn: sqlite3.Connection,
    event_id: int,
    fields: dict[str, Any],
    commit: bool = True,
) -> None:
    if not fields:
        return
    assignments = ", ".join(f"{column} = ?" for column in fields)
    conn.execute(f"UPDATE events SET {assignments} WHERE id = ?", (*fields.values(), event_id))
    if commit:
        conn.commit()


def fetch_events_by_ids(conn: sqlite3.Connection, event_ids: Sequence[int]) -> dict[int, dict[str, Any]]:
    ids = list(event_ids)
    if not ids:
        return {}
    rows = conn.execute(
        f"SELECT id, status, resolved_at FROM events WHERE id IN ({_placeholders(ids)})",
        ids,
    ).fetchall()
    return {row["id"]: dict(row) for row in rows}


def update_event_status(
    conn: sqlite3.Connection,
    event_id: int,
    status: str,
    resolved_at: str | None,
    commit: bool = True,
) -> None:
    conn.execute(
        "UPDATE events SET status = ?, resolved_at = ? WHERE id = ?",
        (status, resolved_at, event_id),
    )
    if commit:
        conn.commit()


# --- markets --------------------------------------------------------------------

MARKET_COLUMNS = (
    "condition_id",
    "event_id",
    "is_resolved",
    "is_active",
    "title",
    "slug",
    "short_title",
    "icon_url",
    "metadata_json",
    "question",
    "market_rules",
    "resolution_source",
    "resolution_source_url",
    "resolver",
    "neg_risk",
    "neg_risk_other",
    "neg_risk_market_id",
    "neg_risk_request_id",
    "metadata_version",
    "metadata_schema",
    "end_time",
    "created_at",
    "updated_at",
)


def fetch_market(conn: sqlite3.Connection, condition_id: str) -> dict[str, Any] | None:
    row = conn.execute("SELECT * FROM markets WHERE condition_id = ?", (condition_id,)).fetchone()
    if not row:
        return None
    result = dict(row)
    for key in ("is_resolved", "is_active", "neg_risk", "neg_risk_other"):
        result[key] = _to_bool(result[key])
    result["metadata"] = json.loads(result.pop("metadata_json")) if result.get("metadata_json") else {}
    return result


def upsert_market(conn: sqlite3.Connection, market: dict[str, Any], commit: bool = True) -> None:
    row = []
    for column in MARKET_COLUMNS:
        if column == "metadata_json":
            row.append(json.dumps(market.get("metadata", {}), ensure_ascii=True))
        elif column in ("neg_risk", "neg_risk_other"):
            row.append(1 if market.get(column) else 0)
        elif column in ("is_resolved", "is_active"):
            row.append(_to_int(market.get(column)))
        else:
            row.append(market.get(column))
    updates = ", ".join(_market_update_clause(column) for column in MARKET_COLUMNS if column != "condition_id")
    conn.execute(
        f"""
        INSERT INTO markets ({", ".join(MARKET_COLUMNS)})
        VALUES ({_placeholders(MARKET_COLUMNS)})
        ON CONFLICT (condition_id) DO UPDATE SET {updates}
        """,
        row,
    )
    if commit:
        conn.commit()


def _market_update_clause(column: str) -> str:
    # Optional in metadata: a later sighting without it keeps the stored value.
    if column in ("end_time", "icon_url"):
        return f"{column} = COALESCE(excluded.{column}, markets.{column})"
    # The resolution stream owns these flags once the market exists; only a
    # resolved sighting may move them.
    if column == "is_resolved":
        return "is_resolved = CASE WHEN excluded.is_resolved = 1 THEN 1 ELSE markets.is_resolved END"
    if column == "is_active":
        return "is_active = CASE WHEN excluded.is_resolved = 1 THEN 0 ELSE markets.is_active END"
    return f"{column} = excluded.{column}"


def update_market_flags(
    conn: sqlite3.Connection,
    condition_id: str,
    fields: dict[str, bool],
    commit: bool = True,
) -> None:
    if not fields:
        return
    assignments = ", ".join(f"{column} = ?" for column in fields)
    conn.execute(
        f"UPDATE markets SET {assignments} WHERE condition_id = ?",
        (*(_to_int(value) for value in fields.values()), condition_id),
    )
    if commit:
        conn.commit()


def fetch_markets_by_condition_ids(
    conn: sqlite3.Connection,
    condition_ids: Sequence[str],
) -> list[dict[str, Any]]:
    ids = list(condition_ids)
    if not ids:
        return []
    rows = conn.execute(
        f"""
        SELECT condition_id, event_id, neg_risk, neg_risk_request_id, is_resolved, is_active
        FROM markets WHERE condition_id IN ({_placeholders(ids)})
        """,
        ids,
    ).fetchall()
    return [_market_flags_row(row) for row in rows]


def fetch_markets_by_neg_risk_request_ids(
    conn: sqlite3.Connection,
    request_ids: Sequence[str],
) -> list[dict[str, Any]]:
    lowered = [value.lower() for value in request_ids]
    if not lowered:
        return []
    rows = conn.execute(
        f"""
        SELECT condition_id, event_id, neg_risk, neg_risk_request_id, is_resolved, is_active
        FROM markets WHERE lower(neg_risk_request_id) IN ({_placeholders(lowered)})
        """,
        lowered,
    ).fetchall()
    return [_market_flags_row(row) for row in rows]


def fetch_market_flags_for_events(
    conn: sqlite3.Connection,
    event_ids: Sequence[int],
) -> list[dict[str, Any]]:
    ids = list(event_ids)
    if not ids:
        return []
    rows = conn.execute(
        f"""
        SELECT condition_id, event_id, neg_risk, neg_risk_request_id, is_resolved, is_active
        FROM markets WHERE event_id IN ({_placeholders(ids)})
        """,
        ids,
    ).fetchall()
    return [_market_flags_row(row) for row in rows]


def _market_flags_row(row: sqlite3.Row) -> dict[str, Any]:
    return {
        "condition_id": row["condition_id"],
        "event_id": row["event_id"],
        "neg_risk": bool(row["neg_risk"]),
        "neg_risk_request_id": row["neg_risk_request_id"],
        "is_resolved": _to_bool(row["is_resolved"]),
        "is_active": _to_bool(row["is_active"]),
    }


# --- outcomes -------------------------------------------------------------------


def insert_outcomes(
    conn: sqlite3.Connection,
    condition_id: str,
    outcomes: Iterable[dict[str, Any]],
    commit: bool = True,
) -> None:
    rows = [
        (
            condition_id,
            outcome["outcome_index"],
            outcome.get("outcome_text"),
            outcome["token_id"],
        )
        for outcome in outcomes
    ]
    conn.executemany(
        """
        INSERT OR IGNORE INTO outcomes (condition_id, outcome_index, outcome_text, token_id)
        VALUES (?, ?, ?, ?)
        """,
        rows,
    )
    if commit:
        conn.commit()


def fetch_outcomes(conn: sqlite3.Connection, condition_id: str) -> list[dict[str, Any]]:
    rows = conn.execute(
        """
        SELECT condition_id, outcome_index, outcome_text, token_id, is_winning_outcome, payout_value
        FROM outcomes WHERE condition_id = ? ORDER BY outcome_index
        """,
        (condition_id,),
    ).fetchall()
    results = []
    for row in rows:
        result = dict(row)
        result["is_winning_outcome"] = bool(result["is_winning_outcome"])
        results.append(result)
    return results


def update_outcome_payout(
    conn: sqlite3.Connection,
    condition_id: str,
    outcome_index: int,
    is_winning: bool,
    payout_value: float,
    commit: bool = True,
) -> None:
    conn.execute(
        """
        UPDATE outcomes SET is_winning_outcome = ?, payout_value = ?
        WHERE condition_id = ? AND outcome_index = ?
        """,
        (1 if is_winning else 0, payout_value, condition_id, outcome_index),
    )
    if commit:
        conn.commit()


# --- tags and settings ----------------------------------------------------------


def get_or_create_tag(conn: sqlite3.Connection, name: str, slug: str, commit: bool = True) -> int:
    row = conn.execute("SELECT id FROM tags WHERE slug = ?", (slug,)).fetchone()
    if row:
        return int(row["id"])
    cursor = conn.execute("INSERT INTO tags (name, slug) VALUES (?, ?)", (name, slug))
    if commit:
        conn.commit()
    return int(cursor.lastrowid)


def link_event_tag(conn: sqlite3.Connection, event_id: int, tag_id: int, commit: bool = True) -> None:
    conn.execute(
        "INSERT OR IGNORE INTO event_tags (event_id, tag_id) VALUES (?, ?)",
        (event_id, tag_id),
    )
    if commit:
        conn.commit()


def fetch_event_tag_slugs(conn: sqlite3.Connection, event_id: int) -> list[str]:
    rows = conn.execute(
        """
        SELECT t.slug FROM event_tags et JOIN tags t ON t.id = et.tag_id
        WHERE et.event_id = ? ORDER BY t.slug
        """,
        (event_id,),
    ).fetchall()
    return [row["slug"] for row in rows]


def fetch_setting(conn: sqlite3.Connection, group: str, key: str) -> str | None:
    row = conn.execute(
        "SELECT value FROM settings WHERE settings_group = ? AND settings_key = ?",
        (group, key),
    ).fetchone()
    return row["value"] if row else None


def upsert_setting(conn: sqlite3.Connection, group: str, key: str, value: str | None, commit: bool = True) -> None:
    conn.execute(
        "INSERT OR REPLACE INTO settings (settings_group, settings_key, value) VALUES (?, ?, ?)",
        (group, key, value),
    )
    if commit:
        conn.commit()

from __future__ import annotations

import logging
import sqlite3
from typing import Any, Iterable

from market_sync.api.content import ContentClient
from market_sync.db import store
from market_sync.errors import RecordError
from market_sync.pipeline.images import ImageStore
from market_sync.pipeline.results import Failed, Processed, RecordResult, Skipped
from market_sync.utils.normalize import (
    normalize_address,
    normalize_bool,
    normalize_hex,
    normalize_int,
    normalize_string,
    parse_epoch_seconds,
    storage_slug,
    tag_slug,
)
from market_sync.utils.time import epoch_to_iso, normalize_timestamp, parse_datetime

logger = logging.getLogger(__name__)

REQUIRED_CONDITION_FIELDS = ("oracle", "questionId", "creator", "metadataHash")

UMA_FIELDS = (
    ("uma_request_tx_hash", normalize_hex),
    ("uma_request_log_index", normalize_int),
    ("uma_oracle_address", normalize_address),
    ("mirror_uma_request_tx_hash", normalize_hex),
    ("mirror_uma_request_log_index", normalize_int),
    ("mirror_uma_oracle_address", normalize_address),
)


def process_condition(
    conn: sqlite3.Connection,
    record: dict[str, Any],
    allowed_creators: set[str],
    content: ContentClient,
    images: ImageStore,
) -> RecordResult:
    condition_id = str(record.get("id") or "")
    try:
        condition = normalize_condition(record)
    except RecordError as exc:
        return Failed(condition_id, exc.message)

    if condition["creator"] not in allowed_creators:
        logger.info(
            "Skipping market %s - creator %s not in allowed list",
            condition_id,
            condition["creator"],
        )
        return Skipped(condition_id, "creator_not_allowed")

    try:
        store.upsert_condition(conn, condition, commit=False)
        metadata = content.fetch_metadata(condition["metadata_hash"], condition_id)
        event_id = upsert_event(conn, condition_id, metadata["event"], condition, images)
        event_ids = upsert_market(conn, condition, metadata, event_id, images)
    except RecordError as exc:
        return Failed(condition_id, exc.message)
    except sqlite3.Error as exc:
        conn.rollback()
        return Failed(condition_id, f"Database error: {exc}")
    return Processed(condition_id, event_ids)


def normalize_condition(record: dict[str, Any]) -> dict[str, Any]:
    condition_id = str(record.get("id") or "")
    if not condition_id:
        raise RecordError(condition_id, "Condition is missing its id")
    for field in REQUIRED_CONDITION_FIELDS:
        if not record.get(field):
            raise RecordError(condition_id, f"Market {condition_id} missing required {field} field")
    created_at = _require_epoch(record, "creationTimestamp", condition_id)
    updated_at = _require_epoch(record, "updatedAt", condition_id)
    return {
        "id": condition_id,
        "oracle": record["oracle"],
        "question_id": record["questionId"],
        "resolved": normalize_bool(record.get("resolved")),
        "metadata_hash": record["metadataHash"],
        "creator": str(record["creator"]).lower(),
        "created_at": epoch_to_iso(created_at),
        "updated_at": epoch_to_iso(updated_at),
    }


def _require_epoch(record: dict[str, Any], field: str, condition_id: str) -> int:
    raw = record.get(field)
    if raw is None or raw == "":
        raise RecordError(condition_id, f"Market {condition_id} missing required {field} field")
    value = parse_epoch_seconds(raw)
    if value is None:
        raise RecordError(condition_id, f"Market {condition_id} has invalid {field}: {raw}")
    return value


def upsert_event(
    conn: sqlite3.Connection,
    condition_id: str,
    event_data: Any,
    condition: dict[str, Any],
    images: ImageStore,
) -> int:
    if not isinstance(event_data, dict) or not event_data.get("slug") or not event_data.get("title"):
        raise RecordError(condition_id, f"Invalid event data: {event_data!r}")

    slug = str(event_data["slug"])
    title = str(event_data["title"])
    created_at = condition["created_at"]
    end_date = normalize_timestamp(event_data.get("end_time"))
    flags = {
        "enable_neg_risk": normalize_bool(event_data.get("enable_neg_risk")),
        "neg_risk_augmented": normalize_bool(event_data.get("neg_risk_augmented")),
        "neg_risk": normalize_bool(event_data.get("neg_risk")),
    }
    neg_risk_market_id = normalize_hex(event_data.get("neg_risk_market_id"))
    series_slug = normalize_string(event_data.get("series_slug"))

    existing = store.fetch_event_by_slug(conn, slug)
    if existing:
        patch: dict[str, Any] = {key: 1 if value else 0 for key, value in flags.items()}
        if neg_risk_market_id:
            patch["neg_risk_market_id"] = neg_risk_market_id
        if series_slug:
            patch["series_slug"] = series_slug
        if title != existing["title"]:
            patch["title"] = title
        if _is_earlier(created_at, existing.get("created_at")):
            patch["created_at"] = created_at
        if end_date and end_date != existing.get("end_date"):
            patch["end_date"] = end_date
        store.update_event_fields(conn, existing["id"], patch, commit=False)
        logger.info("Event %s already exists, using existing ID: %s", slug, existing["id"])
        return int(existing["id"])

    icon_url = None
    if event_data.get("icon"):
        icon_slug = storage_slug(slug, f"{title}:{condition['creator']}")
        icon_url = images.store_image(str(event_data["icon"]), f"events/icons/{icon_slug}")

    logger.info("Creating new event: %s by creator: %s", slug, condition["creator"])
    event_id = store.insert_event(
        conn,
        {
            "slug": slug,
            "title": title,
            "creator": condition["creator"],
            "icon_url": icon_url,
            "show_market_icons": event_data.get("show_market_icons") is not False,
            "neg_risk_market_id": neg_risk_market_id,
            "series_slug": series_slug,
            "rules": normalize_string(event_data.get("rules")),
            "end_date": end_date,
            "created_at": created_at,
            **flags,
        },
        commit=False,
    )

    tags = event_data.get("tags")
    if isinstance(tags, list) and tags:
        try:
            process_tags(conn, event_id, tags)
        except sqlite3.Error as exc:
            logger.warning("Failed to attach tags to event %s: %s", event_id, exc)
    return event_id


def _is_earlier(candidate: str, current: str | None) -> bool:
    candidate_dt = parse_datetime(candidate)
    if candidate_dt is None:
        return False
    current_dt = parse_datetime(current)
    return current_dt is None or candidate_dt < current_dt


def process_tags(conn: sqlite3.Connection, event_id: int, tag_names: Iterable[Any]) -> None:
    for tag_name in tag_names:
        if not isinstance(tag_name, str) or not tag_name.strip():
            logger.warning("Skipping invalid tag: %r", tag_name)
            continue
        name = tag_name[:100]
        slug = tag_slug(name)
        tag_id = store.get_or_create_tag(conn, name, slug, commit=False)
        store.link_event_tag(conn, event_id, tag_id, commit=False)


def upsert_market(
    conn: sqlite3.Connection,
    condition: dict[str, Any],
    metadata: dict[str, Any],
    event_id: int,
    images: ImageStore,
) -> tuple[int, ...]:
    condition_id = condition["id"]
    existing = store.fetch_market(conn, condition_id)
    if existing:
        logger.info("Market %s already exists, updating cached data", condition_id)

    icon_url = None
    if metadata.get("icon"):
        icon_slug = storage_slug(metadata.get("slug"), condition_id)
        icon_url = images.store_image(str(metadata["icon"]), f"markets/icons/{icon_slug}")

    uma_update = {}
    for key, normalizer in UMA_FIELDS:
        value = normalizer(metadata.get(key))
        if value is not None:
            uma_update[key] = value
    store.update_condition_fields(conn, condition_id, uma_update, commit=False)

    resolved = bool(condition.get("resolved"))
    store.upsert_market(
        conn,
        {
            "condition_id": condition_id,
            "event_id": event_id,
            "is_resolved": resolved,
            "is_active": not resolved,
            "title": metadata["name"],
            "slug": metadata["slug"],
            "short_title": normalize_string(metadata.get("short_title")),
            "icon_url": icon_url,
            "metadata": metadata,
            "question": normalize_string(metadata.get("question")),
            "market_rules": normalize_string(metadata.get("market_rules")),
            "resolution_source": normalize_string(metadata.get("resolution_source")),
            "resolution_source_url": normalize_string(metadata.get("resolution_source_url")),
            "resolver": normalize_address(metadata.get("resolver")),
            "neg_risk": normalize_bool(metadata.get("neg_risk")),
            "neg_risk_other": normalize_bool(metadata.get("neg_risk_other")),
            "neg_risk_market_id": normalize_hex(metadata.get("neg_risk_market_id")),
            "neg_risk_request_id": normalize_hex(metadata.get("neg_risk_request_id")),
            "metadata_version": normalize_string(metadata.get("version")),
            "metadata_schema": normalize_string(metadata.get("schema")),
            "end_time": normalize_timestamp(metadata.get("end_time")),
            "created_at": condition["created_at"],
            "updated_at": condition["updated_at"],
        },
        commit=False,
    )

    if existing is None:
        outcomes = build_outcomes(condition_id, metadata.get("outcomes"))
        if outcomes:
            store.insert_outcomes(conn, condition_id, outcomes, commit=False)
        return (event_id,)

    previous_event_id = existing.get("event_id")
    if previous_event_id is not None and previous_event_id != event_id:
        return (int(previous_event_id), event_id)
    return (event_id,)


def build_outcomes(condition_id: str, raw_outcomes: Any) -> list[dict[str, Any]]:
    if not isinstance(raw_outcomes, list):
        return []
    outcomes = []
    for index, outcome in enumerate(raw_outcomes):
        if isinstance(outcome, dict):
            text = outcome.get("outcome")
            token_id = outcome.get("token_id")
        else:
            text = outcome
            token_id = None
        outcomes.append(
            {
                "outcome_index": index,
                "outcome_text": None if text is None else str(text),
                "token_id": str(token_id) if token_id else f"{condition_id}{index}",
            }
        )
    return outcomes

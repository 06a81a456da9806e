from __future__ import annotations

import logging
import sqlite3
from dataclasses import dataclass
from typing import Any, Iterable

from market_sync.config import ResolutionConfig
from market_sync.db import store
from market_sync.pipeline.results import Failed, Processed, RecordResult, Skipped
from market_sync.utils.normalize import parse_epoch_seconds
from market_sync.utils.time import epoch_to_iso

logger = logging.getLogger(__name__)

UNPROPOSED_PRICE_SENTINEL = 69
PRICE_YES = 10**18
PRICE_INVALID = 5 * 10**17

PENDING_STATUSES = frozenset({"posed", "proposed", "reproposed", "challenged", "disputed"})


@dataclass(frozen=True)
class ResolutionTarget:
    condition_id: str
    event_id: int | None
    neg_risk: bool


def decode_price(raw: Any) -> float | None:
    """Map the oracle's fixed-point price to a payout ratio, or None while undecidable."""
    if raw is None or isinstance(raw, bool):
        return None
    text = str(raw).strip()
    if not text:
        return None
    try:
        value = int(text)
    except ValueError:
        logger.warning("Unparseable resolution price %r", raw)
        return None
    if value == UNPROPOSED_PRICE_SENTINEL or value < 0:
        return None
    if value == 0:
        return 0.0
    if value == PRICE_YES:
        return 1.0
    if value == PRICE_INVALID:
        return 0.5
    logger.warning("Unrecognized resolution price %s, treating as pending", value)
    return None


def parse_liveness(raw: Any) -> int | None:
    if raw is None or isinstance(raw, bool):
        return None
    try:
        value = int(str(raw).strip())
    except ValueError:
        return None
    return value if value >= 0 else None


def compute_deadline(
    status: str,
    flagged: bool,
    last_update: int,
    liveness_s: int | None,
    neg_risk: bool,
    config: ResolutionConfig,
) -> int | None:
    if status == "resolved":
        return None
    if flagged:
        safety_period = config.safety_period_neg_risk_s if neg_risk else config.safety_period_s
        return last_update + safety_period
    if status in PENDING_STATUSES:
        effective = liveness_s if liveness_s is not None else config.liveness_default_s
        if effective is None:
            logger.warning("No liveness available for %s resolution updated at %s", status, last_update)
            return None
        return last_update + effective
    return None


def payouts_for_price(price: float) -> list[tuple[int, float]]:
    return [
        (0, min(max(price, 0.0), 1.0)),
        (1, min(max(1.0 - price, 0.0), 1.0)),
    ]


def lookup_targets(
    conn: sqlite3.Connection,
    records: Iterable[dict[str, Any]],
) -> dict[str, ResolutionTarget]:
    """Map lower-cased resolution ids to the conditions they resolve, in batched reads."""
    resolution_ids = sorted({str(record.get("id") or "").lower() for record in records} - {""})
    condition_by_resolution: dict[str, str] = {}

    for condition in store.fetch_conditions_by_question_ids(conn, resolution_ids):
        if condition.get("question_id"):
            condition_by_resolution[condition["question_id"].lower()] = condition["id"]

    neg_risk_matches = store.fetch_markets_by_neg_risk_request_ids(conn, resolution_ids)
    for market in neg_risk_matches:
        if market.get("neg_risk_request_id"):
            condition_by_resolution[market["neg_risk_request_id"].lower()] = market["condition_id"]

    markets = {
        market["condition_id"]: market
        for market in store.fetch_markets_by_condition_ids(conn, sorted(set(condition_by_resolution.values())))
    }

    targets: dict[str, ResolutionTarget] = {}
    for resolution_id, condition_id in condition_by_resolution.items():
        market = markets.get(condition_id)
        targets[resolution_id] = ResolutionTarget(
            condition_id=condition_id,
            event_id=market["event_id"] if market else None,
            neg_risk=bool(market["neg_risk"]) if market else False,
        )
    return targets


def process_resolution(
    conn: sqlite3.Connection,
    record: dict[str, Any],
    targets: dict[str, ResolutionTarget],
    config: ResolutionConfig,
) -> RecordResult:
    resolution_id = str(record.get("id") or "")
    last_update = parse_epoch_seconds(record.get("lastUpdateTimestamp"))
    if last_update is None:
        return Failed(resolution_id, f"Invalid lastUpdateTimestamp: {record.get('lastUpdateTimestamp')}")

    target = targets.get(resolution_id.lower())
    if target is None:
        return Skipped(resolution_id, "untracked_question")

    status = str(record.get("status") or "posed").lower()
    is_resolved = status == "resolved"
    flagged = bool(record.get("flagged"))
    price = decode_price(record.get("price"))
    liveness_s = parse_liveness(record.get("liveness"))
    deadline = compute_deadline(status, flagged, last_update, liveness_s, target.neg_risk, config)
    approved = record.get("approved")

    try:
        store.update_condition_fields(
            conn,
            target.condition_id,
            {
                "resolved": 1 if is_resolved else 0,
                "resolution_status": status,
                "resolution_flagged": 1 if flagged else 0,
                "resolution_paused": 1 if record.get("paused") else 0,
                "resolution_last_update": epoch_to_iso(last_update),
                "resolution_price": price,
                "resolution_was_disputed": 1 if record.get("wasDisputed") else 0,
                "resolution_approved": None if approved is None else (1 if approved else 0),
                "resolution_deadline_at": epoch_to_iso(deadline) if deadline is not None else None,
                "resolution_liveness_seconds": liveness_s,
            },
            commit=False,
        )
        apply_market_state(conn, target.condition_id, is_resolved)
        if is_resolved and price is not None:
            apply_payouts(conn, target.condition_id, price)
    except sqlite3.Error as exc:
        conn.rollback()
        return Failed(resolution_id, f"Failed to update condition {target.condition_id}: {exc}")

    event_ids = (int(target.event_id),) if target.event_id is not None else ()
    return Processed(resolution_id, event_ids)


def apply_market_state(conn: sqlite3.Connection, condition_id: str, is_resolved: bool) -> bool:
    market = store.fetch_market(conn, condition_id)
    if market is None:
        return False
    changes: dict[str, bool] = {}
    if market.get("is_resolved") is not is_resolved:
        changes["is_resolved"] = is_resolved
    if is_resolved and market.get("is_active") is not False:
        changes["is_active"] = False
    store.update_market_flags(conn, condition_id, changes, commit=False)
    return bool(changes)


def apply_payouts(conn: sqlite3.Connection, condition_id: str, price: float) -> int:
    stored = {outcome["outcome_index"]: outcome for outcome in store.fetch_outcomes(conn, condition_id)}
    written = 0
    for outcome_index, payout in payouts_for_price(price):
        current = stored.get(outcome_index)
        if current is None:
            continue
        is_winning = payout > 0
        if current["payout_value"] == payout and current["is_winning_outcome"] == is_winning:
            continue
        store.update_outcome_payout(conn, condition_id, outcome_index, is_winning, payout, commit=False)
        written += 1
    return written

from __future__ import annotations

import json
import logging
from typing import Any, Sequence

import requests

from market_sync.errors import SubgraphError
from market_sync.sync.cursor import Cursor
from market_sync.utils.normalize import normalize_bool

logger = logging.getLogger(__name__)

PAGE_SIZE = 200

CONDITION_FIELDS = (
    "id",
    "oracle",
    "questionId",
    "resolved",
    "metadataHash",
    "creator",
    "creationTimestamp",
    "updatedAt",
)

RESOLUTION_FIELDS = (
    "id",
    "status",
    "flagged",
    "paused",
    "wasDisputed",
    "approved",
    "lastUpdateTimestamp",
    "price",
    "liveness",
)


def build_page_query(
    entity: str,
    fields: Sequence[str],
    timestamp_field: str,
    cursor: Cursor | None,
    page_size: int = PAGE_SIZE,
) -> str:
    where_clause = ""
    if cursor is not None:
        timestamp_literal = json.dumps(str(cursor.timestamp))
        id_literal = json.dumps(cursor.id)
        where_clause = (
            f", where: {{ or: [{{ {timestamp_field}_gt: {timestamp_literal} }}, "
            f"{{ {timestamp_field}: {timestamp_literal}, id_gt: {id_literal} }}] }}"
        )
    selection = "\n        ".join(fields)
    return (
        "{\n"
        f"  {entity}(\n"
        f"    first: {page_size},\n"
        f"    orderBy: {timestamp_field},\n"
        f"    orderDirection: asc{where_clause}\n"
        "  ) {\n"
        f"        {selection}\n"
        "  }\n"
        "}\n"
    )


class SubgraphClient:
    """GraphQL reader for one subgraph. Failures are fatal for the run and are not retried."""

    def __init__(self, url: str, timeout_s: int = 30, session: requests.Session | None = None) -> None:
        self.url = url
        self.timeout = (timeout_s, timeout_s)
        self.session = session or requests.Session()

    def _post_query(self, query: str) -> dict[str, Any]:
        try:
            response = self.session.post(self.url, json={"query": query}, timeout=self.timeout)
        except requests.RequestException as exc:
            raise SubgraphError(f"Subgraph request failed: {exc}") from exc
        if not response.ok:
            raise SubgraphError(f"Subgraph request failed: {response.status_code} {response.reason}")
        try:
            payload = response.json()
        except ValueError as exc:
            raise SubgraphError("Subgraph returned a non-JSON body") from exc
        if not isinstance(payload, dict):
            raise SubgraphError("Subgraph returned an unexpected payload")
        errors = payload.get("errors")
        if errors:
            first = errors[0] if isinstance(errors, list) else errors
            message = first.get("message") if isinstance(first, dict) else str(first)
            raise SubgraphError(f"Subgraph query error: {message}")
        return payload

    def fetch_page(
        self,
        entity: str,
        fields: Sequence[str],
        timestamp_field: str,
        cursor: Cursor | None,
        page_size: int = PAGE_SIZE,
    ) -> list[dict[str, Any]]:
        query = build_page_query(entity, fields, timestamp_field, cursor, page_size)
        payload = self._post_query(query)
        data = payload.get("data") or {}
        rows = data.get(entity) or []
        return [row for row in rows if isinstance(row, dict)]

    def fetch_conditions(self, cursor: Cursor | None, page_size: int = PAGE_SIZE) -> list[dict[str, Any]]:
        rows = self.fetch_page("conditions", CONDITION_FIELDS, "updatedAt", cursor, page_size)
        for row in rows:
            if row.get("creator"):
                row["creator"] = str(row["creator"]).lower()
        return rows

    def fetch_resolutions(self, cursor: Cursor | None, page_size: int = PAGE_SIZE) -> list[dict[str, Any]]:
        rows = self.fetch_page("marketResolutions", RESOLUTION_FIELDS, "lastUpdateTimestamp", cursor, page_size)
        for row in rows:
            row["flagged"] = normalize_bool(row.get("flagged"))
            row["paused"] = normalize_bool(row.get("paused"))
            row["wasDisputed"] = normalize_bool(row.get("wasDisputed"))
            row["approved"] = None if row.get("approved") is None else normalize_bool(row.get("approved"))
        return rows

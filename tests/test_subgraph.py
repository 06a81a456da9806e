from __future__ import annotations

from typing import Any

import pytest

from market_sync.api.subgraph import CONDITION_FIELDS, SubgraphClient, build_page_query
from market_sync.errors import SubgraphError
from market_sync.sync.cursor import Cursor


class FakeResponse:
    def __init__(self, payload: Any, status_code: int = 200) -> None:
        self.payload = payload
        self.status_code = status_code
        self.ok = 200 <= status_code < 300
        self.reason = "Bad Gateway" if status_code == 502 else "OK"

    def json(self) -> Any:
        return self.payload


class FakeSession:
    def __init__(self, response: FakeResponse) -> None:
        self.response = response
        self.queries: list[str] = []

    def post(self, url: str, json: dict[str, Any], timeout: Any) -> FakeResponse:
        self.queries.append(json["query"])
        return self.response


def test_query_without_cursor_has_no_filter() -> None:
    query = build_page_query("conditions", CONDITION_FIELDS, "updatedAt", None)
    assert "first: 200" in query
    assert "orderBy: updatedAt" in query
    assert "orderDirection: asc" in query
    assert "where" not in query


def test_query_uses_composite_strictly_after_predicate() -> None:
    query = build_page_query("conditions", CONDITION_FIELDS, "updatedAt", Cursor(1700000000, "0xabc"))
    assert 'updatedAt_gt: "1700000000"' in query
    assert 'updatedAt: "1700000000", id_gt: "0xabc"' in query
    assert "or: [" in query


def test_fetch_conditions_lowercases_creator() -> None:
    session = FakeSession(
        FakeResponse({"data": {"conditions": [{"id": "c1", "creator": "0xABCDEF", "updatedAt": "1"}]}})
    )
    client = SubgraphClient("https://example.test/gn", session=session)
    rows = client.fetch_conditions(Cursor(0, ""))
    assert rows[0]["creator"] == "0xabcdef"
    assert len(session.queries) == 1


def test_fetch_resolutions_normalizes_booleans() -> None:
    session = FakeSession(
        FakeResponse(
            {
                "data": {
                    "marketResolutions": [
                        {"id": "r1", "flagged": "true", "paused": 0, "wasDisputed": "false", "approved": None}
                    ]
                }
            }
        )
    )
    client = SubgraphClient("https://example.test/gn", session=session)
    row = client.fetch_resolutions(None)[0]
    assert row["flagged"] is True
    assert row["paused"] is False
    assert row["wasDisputed"] is False
    assert row["approved"] is None


def test_empty_result_is_caught_up() -> None:
    client = SubgraphClient("https://example.test/gn", session=FakeSession(FakeResponse({"data": {"conditions": []}})))
    assert client.fetch_conditions(None) == []


def test_non_2xx_is_fatal() -> None:
    client = SubgraphClient("https://example.test/gn", session=FakeSession(FakeResponse({}, status_code=502)))
    with pytest.raises(SubgraphError):
        client.fetch_conditions(None)


def test_error_envelope_is_fatal() -> None:
    payload = {"errors": [{"message": "indexer is behind"}]}
    client = SubgraphClient("https://example.test/gn", session=FakeSession(FakeResponse(payload)))
    with pytest.raises(SubgraphError, match="indexer is behind"):
        client.fetch_resolutions(None)

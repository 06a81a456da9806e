from __future__ import annotations

from typing import Any

import pytest
import requests

from market_sync.api.content import ContentClient
from market_sync.errors import MetadataError
from market_sync.pipeline.images import LocalImageStore, resolve_image_meta, resolve_storage_path
from market_sync.utils.normalize import storage_slug


class FakeResponse:
    def __init__(self, payload: Any = None, status_code: int = 200, content: bytes = b"", headers=None) -> None:
        self.payload = payload
        self.status_code = status_code
        self.content = content
        self.headers = headers or {}

    def json(self) -> Any:
        if self.payload is None:
            raise ValueError("not json")
        return self.payload

    def raise_for_status(self) -> None:
        if self.status_code >= 400:
            raise requests.HTTPError(f"{self.status_code} error", response=self)


class FakeSession:
    def __init__(self, response: FakeResponse) -> None:
        self.response = response
        self.urls: list[str] = []

    def get(self, url: str, timeout: Any) -> FakeResponse:
        self.urls.append(url)
        return self.response


def test_metadata_is_fetched_from_gateway() -> None:
    session = FakeSession(FakeResponse({"name": "M", "slug": "m", "event": {"slug": "e"}}))
    client = ContentClient("https://gateway.example/", session=session)
    metadata = client.fetch_metadata("abc", "c1")
    assert metadata["slug"] == "m"
    assert session.urls == ["https://gateway.example/abc"]


def test_missing_metadata_fields_fail_record() -> None:
    client = ContentClient("https://gateway.example", session=FakeSession(FakeResponse({"name": "M"})))
    with pytest.raises(MetadataError) as excinfo:
        client.fetch_metadata("abc", "c1")
    assert excinfo.value.record_id == "c1"
    assert "slug" in excinfo.value.message


def test_client_error_is_not_retried() -> None:
    session = FakeSession(FakeResponse(status_code=404))
    client = ContentClient("https://gateway.example", session=session)
    with pytest.raises(MetadataError):
        client.fetch_metadata("abc", "c1")
    assert len(session.urls) == 1


def test_non_json_metadata_fails_record() -> None:
    client = ContentClient("https://gateway.example", session=FakeSession(FakeResponse(None)))
    with pytest.raises(MetadataError, match="not JSON"):
        client.fetch_metadata("abc")


def test_image_type_from_header_then_magic_bytes() -> None:
    assert resolve_image_meta("image/png; charset=binary", b"") == ("png", "image/png")
    assert resolve_image_meta("application/octet-stream", b"\xff\xd8\xff\xe0") == ("jpg", "image/jpeg")
    assert resolve_image_meta(None, b"RIFF\x00\x00\x00\x00WEBPVP8 ") == ("webp", "image/webp")
    assert resolve_image_meta(None, None) == ("jpg", "image/jpeg")


def test_storage_path_keeps_existing_extension() -> None:
    assert resolve_storage_path("markets/icons/m1", "png") == "markets/icons/m1.png"
    assert resolve_storage_path("markets/icons/m1.webp", "png") == "markets/icons/m1.webp"


def test_storage_slug_falls_back_to_hash() -> None:
    assert storage_slug("Will It Rain?", "seed") == "will-it-rain"
    assert storage_slug("Café", "seed") == "cafe"
    fallback = storage_slug("!!!", "seed")
    assert fallback.startswith("icon-")
    assert fallback == storage_slug("???", "seed")


def test_local_image_store_writes_file(tmp_path) -> None:
    png = b"\x89PNG\r\n\x1a\n" + b"\x00" * 8
    session = FakeSession(FakeResponse(content=png, headers={"content-type": "image/png"}))
    images = LocalImageStore(ContentClient("https://gateway.example", session=session), tmp_path)

    stored = images.store_image("icon-hash", "events/icons/event-one")

    assert stored == "events/icons/event-one.png"
    assert (tmp_path / stored).read_bytes() == png


def test_local_image_store_failure_returns_none(tmp_path) -> None:
    session = FakeSession(FakeResponse(status_code=404))
    images = LocalImageStore(ContentClient("https://gateway.example", session=session), tmp_path)
    assert images.store_image("icon-hash", "events/icons/event-one") is None

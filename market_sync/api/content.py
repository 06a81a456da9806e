from __future__ import annotations

import logging
from typing import Any

import requests
from tenacity import retry, retry_if_exception, stop_after_attempt, wait_exponential_jitter

from market_sync.errors import MetadataError

logger = logging.getLogger(__name__)

REQUIRED_METADATA_FIELDS = ("name", "slug", "event")


def _should_retry(exc: BaseException) -> bool:
    if isinstance(exc, requests.HTTPError):
        if exc.response is None:
            return True
        status = exc.response.status_code
        return status >= 500 or status == 429
    return isinstance(exc, (requests.ConnectionError, requests.Timeout))


class ContentClient:
    """Reads content-addressed documents and images from the storage gateway."""

    def __init__(
        self,
        gateway: str,
        timeout_s: int = 20,
        session: requests.Session | None = None,
    ) -> None:
        self.gateway = gateway.rstrip("/")
        self.timeout = (timeout_s, timeout_s)
        self.session = session or requests.Session()

    def url_for(self, content_hash: str) -> str:
        return f"{self.gateway}/{content_hash}"

    @retry(
        stop=stop_after_attempt(3),
        wait=wait_exponential_jitter(initial=1, max=10),
        retry=retry_if_exception(_should_retry),
        reraise=True,
    )
    def _get(self, content_hash: str) -> requests.Response:
        response = self.session.get(self.url_for(content_hash), timeout=self.timeout)
        response.raise_for_status()
        return response

    def fetch_metadata(self, content_hash: str, record_id: str = "") -> dict[str, Any]:
        url = self.url_for(content_hash)
        try:
            response = self._get(content_hash)
        except requests.RequestException as exc:
            raise MetadataError(record_id, f"Failed to fetch metadata from {url}: {exc}") from exc
        try:
            metadata = response.json()
        except ValueError as exc:
            raise MetadataError(record_id, f"Metadata at {url} is not JSON") from exc
        if not isinstance(metadata, dict):
            raise MetadataError(record_id, f"Metadata at {url} is not an object")
        missing = [field for field in REQUIRED_METADATA_FIELDS if not metadata.get(field)]
        if missing:
            raise MetadataError(
                record_id,
                f"Invalid metadata: missing required fields {missing}. Got: {sorted(metadata.keys())}",
            )
        return metadata

    def fetch_image(self, content_hash: str) -> tuple[bytes, str | None]:
        response = self._get(content_hash)
        return response.content, response.headers.get("content-type")

from __future__ import annotations

import logging
import re
from pathlib import Path
from typing import Protocol

from market_sync.api.content import ContentClient

logger = logging.getLogger(__name__)

_EXTENSION_PATTERN = re.compile(r"\.(?:png|jpe?g|webp)$", re.IGNORECASE)


class ImageStore(Protocol):
    def store_image(self, source_hash: str, path: str) -> str | None: ...


def resolve_image_meta(content_type: str | None, data: bytes | None) -> tuple[str, str]:
    """Return (extension, content type) from the header, falling back to magic bytes."""
    normalized = (content_type or "").split(";")[0].strip().lower()
    if normalized == "image/png":
        return "png", "image/png"
    if normalized in ("image/jpeg", "image/jpg"):
        return "jpg", "image/jpeg"
    if normalized == "image/webp":
        return "webp", "image/webp"
    if data:
        if data[:8] == b"\x89PNG\r\n\x1a\n":
            return "png", "image/png"
        if data[:2] == b"\xff\xd8":
            return "jpg", "image/jpeg"
        if len(data) >= 12 and data[:4] == b"RIFF" and data[8:12] == b"WEBP":
            return "webp", "image/webp"
    return "jpg", "image/jpeg"


def resolve_storage_path(storage_path: str, extension: str) -> str:
    if _EXTENSION_PATTERN.search(storage_path):
        return storage_path
    return f"{storage_path}.{extension}"


class LocalImageStore:
    """Caches gateway images under a local asset directory."""

    def __init__(self, content: ContentClient, root_dir: Path) -> None:
        self.content = content
        self.root_dir = root_dir

    def store_image(self, source_hash: str, path: str) -> str | None:
        try:
            data, content_type = self.content.fetch_image(source_hash)
            extension, _ = resolve_image_meta(content_type, data)
            resolved = resolve_storage_path(path, extension)
            target = self.root_dir / resolved
            target.parent.mkdir(parents=True, exist_ok=True)
            target.write_bytes(data)
            return resolved
        except Exception as exc:  # noqa: BLE001
            logger.warning("Failed to store image %s at %s: %s", source_hash, path, exc)
            return None

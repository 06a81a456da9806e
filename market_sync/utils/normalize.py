from __future__ import annotations

import math
import re
import unicodedata
from typing import Any

ADDRESS_PATTERN = re.compile(r"^0x[a-fA-F0-9]{40}$")


def normalize_bool(value: Any) -> bool:
    if isinstance(value, bool):
        return value
    if isinstance(value, str):
        lowered = value.strip().lower()
        if lowered == "true":
            return True
        if lowered == "false":
            return False
    if isinstance(value, (int, float)):
        return value != 0
    return bool(value)


def normalize_string(value: Any) -> str | None:
    if not isinstance(value, str):
        return None
    trimmed = value.strip()
    return trimmed or None


def normalize_hex(value: Any) -> str | None:
    text = normalize_string(value)
    if text is None:
        return None
    return text.lower() if text.startswith("0x") else text


def normalize_address(value: Any) -> str | None:
    text = normalize_string(value)
    if text is None:
        return None
    return text.lower() if ADDRESS_PATTERN.match(text) else text


def normalize_int(value: Any) -> int | None:
    if isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value
    if isinstance(value, float):
        return math.trunc(value) if math.isfinite(value) else None
    if isinstance(value, str) and value.strip():
        try:
            parsed = float(value.strip())
        except ValueError:
            return None
        return math.trunc(parsed) if math.isfinite(parsed) else None
    return None


def parse_epoch_seconds(value: Any) -> int | None:
    """Parse an integer-as-string subgraph timestamp."""
    if value is None or isinstance(value, bool):
        return None
    text = str(value).strip()
    if not text:
        return None
    try:
        return int(text)
    except ValueError:
        pass
    try:
        parsed = float(text)
    except ValueError:
        return None
    return int(parsed) if math.isfinite(parsed) else None


def fnv1a_hex(value: str) -> str:
    hashed = 0x811C9DC5
    for char in value:
        hashed ^= ord(char)
        hashed = (hashed * 0x01000193) & 0xFFFFFFFF
    return f"{hashed:08x}"


def storage_slug(value: Any, fallback_seed: str) -> str:
    raw = "" if value is None else str(value)
    decomposed = unicodedata.normalize("NFKD", raw).lower()
    sanitized = re.sub(r"[^a-z0-9-]", "-", decomposed)
    sanitized = re.sub(r"-+", "-", sanitized).strip("-")
    if sanitized:
        return sanitized
    return f"icon-{fnv1a_hex(fallback_seed or raw or 'fallback')}"


def tag_slug(name: str) -> str:
    return re.sub(r"[^a-z0-9]+", "-", name.lower())[:100]

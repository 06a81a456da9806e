from __future__ import annotations

import logging
import os
import re
from pathlib import Path
from typing import Any, Dict, List, Optional

import yaml
from pydantic import BaseModel

logger = logging.getLogger(__name__)

WALLET_ADDRESS_PATTERN = re.compile(r"^0x[0-9a-fA-F]{40}$")


class DatabaseConfig(BaseModel):
    path: str = "data/market_sync.sqlite"


class SyncConfig(BaseModel):
    page_size: int = 200
    time_limit_s: float = 250
    lock_stale_after_s: int = 15 * 60


class SubgraphConfig(BaseModel):
    conditions_url: str = (
        "https://api.goldsky.com/api/public/project_cmfbr456t4gud01w483uu2d9d/subgraphs/pnl-subgraph/1.0.0/gn"
    )
    resolution_url: str = (
        "https://api.goldsky.com/api/public/project_cmkeqj653po3801t6ajbv1wcv/subgraphs/resolution-subgraph/1.0.0/gn"
    )
    request_timeout_s: int = 30


class ContentConfig(BaseModel):
    gateway: str = "https://gateway.irys.xyz"
    request_timeout_s: int = 20


class ResolutionConfig(BaseModel):
    safety_period_s: int = 60 * 60
    safety_period_neg_risk_s: int = 60 * 60
    liveness_default_s: Optional[int] = None


class CreatorsConfig(BaseModel):
    fixed: List[str] = ["0x1FD81E09dA67D84f02DB0c0eBabd5a217D1B928d"]
    extra: List[str] = []


class ImagesConfig(BaseModel):
    root_dir: str = "data/assets"


class ServerConfig(BaseModel):
    cron_secret: Optional[str] = None


class AppConfig(BaseModel):
    database: DatabaseConfig = DatabaseConfig()
    sync: SyncConfig = SyncConfig()
    subgraphs: SubgraphConfig = SubgraphConfig()
    content: ContentConfig = ContentConfig()
    resolution: ResolutionConfig = ResolutionConfig()
    creators: CreatorsConfig = CreatorsConfig()
    images: ImagesConfig = ImagesConfig()
    server: ServerConfig = ServerConfig()


def load_config(path: str | Path) -> AppConfig:
    data: Dict[str, Any] = {}
    config_path = Path(path)
    if config_path.exists():
        with config_path.open("r", encoding="utf-8") as handle:
            loaded = yaml.safe_load(handle)
            if isinstance(loaded, dict):
                data = loaded
    config = AppConfig(**data)
    apply_env_overrides(config, os.environ)
    return config


def apply_env_overrides(config: AppConfig, environ: Dict[str, str]) -> None:
    secret = environ.get("CRON_SECRET")
    if secret:
        config.server.cron_secret = secret
    gateway = environ.get("CONTENT_GATEWAY")
    if gateway:
        config.content.gateway = gateway
    db_path = environ.get("MARKET_SYNC_DB")
    if db_path:
        config.database.path = db_path
    liveness = parse_optional_int(environ.get("RESOLUTION_LIVENESS_DEFAULT_SECONDS"))
    if liveness is not None:
        config.resolution.liveness_default_s = liveness


def parse_optional_int(raw: str | None) -> int | None:
    if not raw:
        return None
    try:
        return int(raw.strip(), 10)
    except ValueError:
        return None


def parse_creator_list(raw: str | None) -> tuple[list[str], list[str]]:
    """Split a newline/comma separated address list into (valid, invalid)."""
    valid: list[str] = []
    invalid: list[str] = []
    for item in re.split(r"[\n,]+", raw or ""):
        address = item.strip()
        if not address:
            continue
        if WALLET_ADDRESS_PATTERN.match(address):
            valid.append(address.lower())
        else:
            invalid.append(address)
    return valid, invalid


def allowed_creators(config: AppConfig, settings_value: str | None = None) -> set[str]:
    creators = {address.lower() for address in config.creators.fixed}
    valid, invalid = parse_creator_list("\n".join([*config.creators.extra, settings_value or ""]))
    if invalid:
        logger.error("Invalid market creator addresses in settings: %s", ", ".join(invalid))
    creators.update(valid)
    return creators

from __future__ import annotations

from fakes import CREATOR, setup_conn
from market_sync.config import AppConfig, allowed_creators, apply_env_overrides, load_config, parse_creator_list
from market_sync.db import store
from market_sync.pipeline.streams import load_allowed_creators

EXTRA = "0x" + "ab" * 20


def test_parse_creator_list_splits_and_validates() -> None:
    valid, invalid = parse_creator_list(f"{EXTRA.upper().replace('0X', '0x')},\n  not-an-address \n\n")
    assert valid == [EXTRA]
    assert invalid == ["not-an-address"]
    assert parse_creator_list(None) == ([], [])


def test_allowed_creators_merges_fixed_and_settings() -> None:
    creators = allowed_creators(AppConfig(), f"{EXTRA}\n0x123")
    assert creators == {CREATOR, EXTRA}


def test_settings_row_feeds_allow_list() -> None:
    conn = setup_conn()
    store.upsert_setting(conn, "general", "market_creators", EXTRA)
    assert load_allowed_creators(conn, AppConfig()) == {CREATOR, EXTRA}


def test_env_overrides() -> None:
    config = AppConfig()
    apply_env_overrides(
        config,
        {
            "CRON_SECRET": "abc",
            "CONTENT_GATEWAY": "https://gateway.example",
            "RESOLUTION_LIVENESS_DEFAULT_SECONDS": "7200",
        },
    )
    assert config.server.cron_secret == "abc"
    assert config.content.gateway == "https://gateway.example"
    assert config.resolution.liveness_default_s == 7200

    apply_env_overrides(config, {"RESOLUTION_LIVENESS_DEFAULT_SECONDS": "soon"})
    assert config.resolution.liveness_default_s == 7200


def test_load_config_reads_yaml(tmp_path, monkeypatch) -> None:
    monkeypatch.delenv("CRON_SECRET", raising=False)
    monkeypatch.delenv("MARKET_SYNC_DB", raising=False)
    path = tmp_path / "config.yaml"
    path.write_text("sync:\n  page_size: 50\nresolution:\n  safety_period_neg_risk_s: 172800\n", encoding="utf-8")
    config = load_config(path)
    assert config.sync.page_size == 50
    assert config.sync.time_limit_s == 250
    assert config.resolution.safety_period_neg_risk_s == 172800


def test_missing_config_file_uses_defaults(tmp_path) -> None:
    config = load_config(tmp_path / "absent.yaml")
    assert config.sync.page_size == 200
    assert config.resolution.safety_period_s == 3600

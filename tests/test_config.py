from __future__ import annotations

from pathlib import Path

import pytest

from teia_status.config import DEFAULT_CONFIG_PATH, load_config


@pytest.fixture(autouse=True)
def clean_env(monkeypatch: pytest.MonkeyPatch) -> None:
    for var in ("TEIA_STATUS_CONFIG", "LOG_LEVEL", "CHECK_INTERVAL_SECONDS", "NFT_STORAGE_KEY", "GITHUB_TOKEN", "DAO_VOTES_ENABLED"):
        monkeypatch.delenv(var, raising=False)


def test_packaged_config_defaults() -> None:
    assert DEFAULT_CONFIG_PATH.exists()
    config = load_config()

    assert config.interval_seconds == 60
    assert config.user_agent == "teia status"
    assert config.initial_latest_mint_id == 701552
    assert config.thresholds.block_level_diff == 50
    assert config.thresholds.reference_max_lag_blocks == 10
    assert config.thresholds.timestamp_minutes == 10
    assert config.thresholds.absolute_level_diff == 5
    assert config.thresholds.latency_ms == 5000
    assert config.timeouts.rpc_node_seconds == 10
    assert config.timeouts.gateway_seconds == 15
    assert config.retry.retries == 5
    assert len(config.rpc_nodes) == 6
    assert config.dao_votes.enabled is False
    assert config.nft_storage_key is None
    assert config.github_token is None
    assert config.endpoints.tzkt_head == "https://api.tzkt.io/v1/head"


def test_env_overrides(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("NFT_STORAGE_KEY", "nft-key")
    monkeypatch.setenv("GITHUB_TOKEN", "gh-token")
    monkeypatch.setenv("CHECK_INTERVAL_SECONDS", "30")
    monkeypatch.setenv("LOG_LEVEL", "DEBUG")
    monkeypatch.setenv("DAO_VOTES_ENABLED", "true")

    config = load_config()

    assert config.nft_storage_key == "nft-key"
    assert config.github_token == "gh-token"
    assert config.interval_seconds == 30
    assert config.log_level == "DEBUG"
    assert config.dao_votes.enabled is True
    assert config.dao_votes.poll_id


def test_custom_config_path(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    text = DEFAULT_CONFIG_PATH.read_text(encoding="utf-8").replace("interval_seconds: 60", "interval_seconds: 120")
    path = tmp_path / "status.yaml"
    path.write_text(text, encoding="utf-8")

    assert load_config(str(path)).interval_seconds == 120

    monkeypatch.setenv("TEIA_STATUS_CONFIG", str(path))
    assert load_config().interval_seconds == 120


def test_non_mapping_yaml_is_rejected(tmp_path: Path) -> None:
    path = tmp_path / "broken.yaml"
    path.write_text("- just\n- a list\n", encoding="utf-8")

    with pytest.raises(ValueError):
        load_config(str(path))

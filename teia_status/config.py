"""Configuration management for the status checker."""

import os
from pathlib import Path
from typing import Any, Dict, Optional

import yaml
from pydantic import BaseModel, Field


DEFAULT_CONFIG_PATH = Path(__file__).with_name("config.yaml")


class EndpointsConfig(BaseModel):
    """External service URLs. Values live in config.yaml."""
    tzkt_head: str
    tzkt_operations: str
    teia_graphql: str
    teia_tzkt_head: str
    teztok_graphql: str
    objkt_graphql: str
    teia_gui: str
    github_latest_commit: str
    nft_storage_gateway: str
    teia_ipfs_gateway: str
    nft_storage_status_page: str
    nft_storage_api: str
    tzprofiles_indexer: str
    tzprofiles_api: str
    mempool_graphql: str
    restricted_list: str


class ThresholdsConfig(BaseModel):
    """Numeric tolerance policy."""
    block_level_diff: int = Field(default=50, description="Allowed drift in blocks vs the reference")
    reference_max_lag_blocks: int = Field(default=10, description="Allowed known_level - level on the reference")
    timestamp_minutes: int = Field(default=10, description="Allowed head age in minutes for timestamp sources")
    absolute_level_diff: int = Field(default=5, description="Allowed drift in blocks for strict sources")
    max_reference_age_seconds: int = Field(default=300, description="Reference height older than this is unusable")
    latency_ms: int = Field(default=5000, description="Gateway round trip below this is responsive")
    metadata_error_count: int = Field(default=10, description="Token metadata errors that flag the indexer")
    metadata_sample_size: int = Field(default=20, description="Newest tokens scanned for metadata errors")
    mempool_max_transactions: int = Field(default=10, description="Pending transactions above this flag the mempool")


class TimeoutsConfig(BaseModel):
    """Per call timeouts in seconds."""
    fetch_seconds: float = Field(default=120.0, description="Generic fetch timeout")
    rpc_node_seconds: float = Field(default=10.0, description="RPC node header call timeout")
    gateway_seconds: float = Field(default=15.0, description="IPFS gateway latency probe bound")
    tzkt_operations_seconds: float = Field(default=10.0, description="TzKT operations call timeout")


class RetryConfig(BaseModel):
    """Outbound retry policy."""
    retries: int = Field(default=5, description="Extra attempts for retryable failures")
    delay_seconds: float = Field(default=5.0, description="Delay multiplied by the attempt number")


class DaoVotesConfig(BaseModel):
    """DAO token distribution poll tally, disabled unless switched on."""
    enabled: bool = Field(default=False, description="Include the poll tally in the report")
    poll_id: str = Field(default="", description="IPFS CID of the poll description")
    users_list: str = Field(default="", description="URL of the JSON list of eligible addresses")
    poll_base: str = Field(default="", description="IPFS gateway prefix for the poll description")
    votes: str = Field(default="", description="TzKT bigmap keys URL, formatted with poll_id")


class StatusConfig(BaseModel):
    """Main configuration for the status checker."""

    log_level: str = Field(default="INFO", description="Logging level")
    interval_seconds: int = Field(default=60, description="Seconds between check cycles")
    user_agent: str = Field(default="teia status", description="User agent for outbound calls")

    # Credentials
    nft_storage_key: Optional[str] = Field(default=None, description="NFT.Storage API key")
    github_token: Optional[str] = Field(default=None, description="GitHub API token")

    endpoints: EndpointsConfig
    rpc_nodes: list[str] = Field(default_factory=list, description="Tezos RPC hosts")
    probe_account: str = Field(default="", description="Account used by the TzKT and TzProfiles API checks")
    marketplace_contract: str = Field(default="", description="Contract whose swaps are counted")
    initial_latest_mint_id: int = Field(default=0, description="Latest mint shown before the first refresh")

    thresholds: ThresholdsConfig = Field(default_factory=ThresholdsConfig)
    timeouts: TimeoutsConfig = Field(default_factory=TimeoutsConfig)
    retry: RetryConfig = Field(default_factory=RetryConfig)
    dao_votes: DaoVotesConfig = Field(default_factory=DaoVotesConfig)


def load_config(config_path: Optional[str] = None) -> StatusConfig:
    """Load configuration from file or environment variables."""
    if config_path is None:
        config_path = os.getenv("TEIA_STATUS_CONFIG", str(DEFAULT_CONFIG_PATH))

    config_data: Dict[str, Any] = {}

    if os.path.exists(config_path):
        with open(config_path, "r", encoding="utf-8") as f:
            config_data = yaml.safe_load(f) or {}
    if not isinstance(config_data, dict):
        raise ValueError("Config YAML must be a mapping")

    env_overrides = {
        "log_level": os.getenv("LOG_LEVEL"),
        "interval_seconds": os.getenv("CHECK_INTERVAL_SECONDS"),
        "nft_storage_key": os.getenv("NFT_STORAGE_KEY"),
        "github_token": os.getenv("GITHUB_TOKEN"),
    }

    for key, value in env_overrides.items():
        if value is not None:
            if key == "interval_seconds":
                value = int(value)
            config_data[key] = value

    dao_enabled = os.getenv("DAO_VOTES_ENABLED")
    if dao_enabled is not None:
        dao = dict(config_data.get("dao_votes") or {})
        dao["enabled"] = dao_enabled.lower() in ("true", "1", "yes")
        config_data["dao_votes"] = dao

    return StatusConfig(**config_data)


def get_config() -> StatusConfig:
    """Get the configuration instance."""
    return load_config()

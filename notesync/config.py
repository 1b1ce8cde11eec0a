"""Configuration loading for notesync."""

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import yaml


@dataclass
class StoreConfig:
    """Configuration for the local note table."""

    db_path: str = "~/.notesync/notes.db"


@dataclass
class RemoteConfig:
    """Configuration for the remote notes collection."""

    base_url: str = ""
    api_key: str = ""
    table: str = "notes"
    timeout_seconds: float = 30.0
    max_retries: int = 3


@dataclass
class ConnectivityConfig:
    probe_url: str = ""  # Empty: derive from remote.base_url
    probe_interval_seconds: float = 15.0
    probe_timeout_seconds: float = 5.0
    probe_cache_seconds: float = 2.0


@dataclass
class SyncConfig:
    """Configuration for reconciliation."""

    enabled: bool = True
    sync_interval_minutes: float = 5  # 0 disables the periodic loop
    reconcile_on_reconnect: bool = True
    pull_policy: str = "remote_wins"  # "remote_wins" or "keep_dirty"


@dataclass
class SessionConfig:
    user_id: str | None = None
    access_token: str | None = None


@dataclass
class Config:
    store: StoreConfig = field(default_factory=StoreConfig)
    remote: RemoteConfig = field(default_factory=RemoteConfig)
    connectivity: ConnectivityConfig = field(default_factory=ConnectivityConfig)
    sync: SyncConfig = field(default_factory=SyncConfig)
    session: SessionConfig = field(default_factory=SessionConfig)

    @property
    def probe_url(self) -> str | None:
        """URL used to probe connectivity, if any."""
        if self.connectivity.probe_url:
            return self.connectivity.probe_url
        if self.remote.base_url:
            return f"{self.remote.base_url.rstrip('/')}/rest/v1/"
        return None


def _get_env(key: str, default: Any = None) -> Any:
    """Get environment variable with NOTESYNC_ prefix."""
    return os.environ.get(f"NOTESYNC_{key}", default)


def _is_true(value: str) -> bool:
    return value.lower() in ("true", "1", "yes")


def _apply_env_overrides(config: Config) -> Config:
    """Apply environment variable overrides to config."""
    # Store overrides
    if db_path := _get_env("DB_PATH"):
        config.store.db_path = db_path

    # Remote overrides
    if base_url := _get_env("REMOTE_URL"):
        config.remote.base_url = base_url
    if api_key := _get_env("REMOTE_API_KEY"):
        config.remote.api_key = api_key
    if table := _get_env("REMOTE_TABLE"):
        config.remote.table = table
    if timeout := _get_env("REMOTE_TIMEOUT"):
        config.remote.timeout_seconds = float(timeout)

    # Connectivity overrides
    if probe_url := _get_env("PROBE_URL"):
        config.connectivity.probe_url = probe_url
    if probe_interval := _get_env("PROBE_INTERVAL"):
        config.connectivity.probe_interval_seconds = float(probe_interval)

    # Sync overrides
    if sync_enabled := _get_env("SYNC_ENABLED"):
        config.sync.enabled = _is_true(sync_enabled)
    if sync_interval := _get_env("SYNC_INTERVAL"):
        config.sync.sync_interval_minutes = float(sync_interval)
    if pull_policy := _get_env("PULL_POLICY"):
        config.sync.pull_policy = pull_policy

    # Session overrides
    if user_id := _get_env("USER_ID"):
        config.session.user_id = user_id
    if access_token := _get_env("ACCESS_TOKEN"):
        config.session.access_token = access_token

    return config


def load_config(config_path: str | Path | None = None) -> Config:
    """Load configuration from YAML file with environment variable overrides.

    Args:
        config_path: Path to YAML config file. If None, uses default config.

    Returns:
        Loaded Config object.
    """
    config = Config()

    if config_path:
        path = Path(config_path).expanduser()
        if path.exists():
            with open(path) as f:
                data = yaml.safe_load(f) or {}

            # Parse store config
            if "store" in data:
                config.store = StoreConfig(
                    db_path=data["store"].get("db_path", config.store.db_path)
                )

            # Parse remote config
            if "remote" in data:
                remote_data = data["remote"]
                config.remote = RemoteConfig(
                    base_url=remote_data.get("base_url", config.remote.base_url),
                    api_key=remote_data.get("api_key", config.remote.api_key),
                    table=remote_data.get("table", config.remote.table),
                    timeout_seconds=remote_data.get(
                        "timeout_seconds", config.remote.timeout_seconds
                    ),
                    max_retries=remote_data.get(
                        "max_retries", config.remote.max_retries
                    ),
                )

            # Parse connectivity config
            if "connectivity" in data:
                conn_data = data["connectivity"]
                config.connectivity = ConnectivityConfig(
                    probe_url=conn_data.get("probe_url", config.connectivity.probe_url),
                    probe_interval_seconds=conn_data.get(
                        "probe_interval_seconds",
                        config.connectivity.probe_interval_seconds,
                    ),
                    probe_timeout_seconds=conn_data.get(
                        "probe_timeout_seconds",
                        config.connectivity.probe_timeout_seconds,
                    ),
                    probe_cache_seconds=conn_data.get(
                        "probe_cache_seconds",
                        config.connectivity.probe_cache_seconds,
                    ),
                )

            # Parse sync config
            if "sync" in data:
                sync_data = data["sync"]
                config.sync = SyncConfig(
                    enabled=sync_data.get("enabled", config.sync.enabled),
                    sync_interval_minutes=sync_data.get(
                        "sync_interval_minutes", config.sync.sync_interval_minutes
                    ),
                    reconcile_on_reconnect=sync_data.get(
                        "reconcile_on_reconnect", config.sync.reconcile_on_reconnect
                    ),
                    pull_policy=sync_data.get("pull_policy", config.sync.pull_policy),
                )

            # Parse session config
            if "session" in data:
                session_data = data["session"] or {}
                config.session = SessionConfig(
                    user_id=session_data.get("user_id"),
                    access_token=session_data.get("access_token"),
                )

    # Apply environment variable overrides
    config = _apply_env_overrides(config)

    return config

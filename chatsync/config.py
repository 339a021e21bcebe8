"""Configuration loading for chatsync."""

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import yaml


@dataclass
class ServerConfig:
    base_url: str = "http://localhost:8080/"
    request_timeout_seconds: float = 10.0


@dataclass
class IdentityConfig:
    """Identity asserted to the chat server on every request."""

    nick_name: str = ""
    email: str = ""


@dataclass
class SyncConfig:
    """Configuration for the long-poll sync loop."""

    poll_timeout_seconds: float = 60.0  # Client-side guard, above the server hold time
    retry_min_delay_seconds: float = 1.0
    retry_max_delay_seconds: float = 30.0
    join_max_attempts: int = 5
    join_backoff_seconds: float = 1.0
    allow_duplicate_users: bool = True


@dataclass
class Config:
    server: ServerConfig = field(default_factory=ServerConfig)
    identity: IdentityConfig = field(default_factory=IdentityConfig)
    sync: SyncConfig = field(default_factory=SyncConfig)


def _get_env(key: str, default: Any = None) -> Any:
    """Get environment variable with CHATSYNC_ prefix."""
    return os.environ.get(f"CHATSYNC_{key}", default)


def _apply_env_overrides(config: Config) -> Config:
    """Apply environment variable overrides to config."""
    # Server overrides
    if url := _get_env("SERVER_URL"):
        config.server.base_url = url

    # Identity overrides
    if nick_name := _get_env("NICK_NAME"):
        config.identity.nick_name = nick_name
    if email := _get_env("EMAIL"):
        config.identity.email = email

    # Sync overrides
    if poll_timeout := _get_env("POLL_TIMEOUT"):
        config.sync.poll_timeout_seconds = float(poll_timeout)
    if min_delay := _get_env("RETRY_MIN_DELAY"):
        config.sync.retry_min_delay_seconds = float(min_delay)
    if max_delay := _get_env("RETRY_MAX_DELAY"):
        config.sync.retry_max_delay_seconds = float(max_delay)
    if attempts := _get_env("JOIN_MAX_ATTEMPTS"):
        config.sync.join_max_attempts = int(attempts)
    if duplicates := _get_env("ALLOW_DUPLICATE_USERS"):
        config.sync.allow_duplicate_users = duplicates.lower() in ("true", "1", "yes")

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
        path = Path(config_path)
        if path.exists():
            with open(path) as f:
                data = yaml.safe_load(f) or {}

            # Parse server config
            if "server" in data:
                server_data = data["server"] or {}
                config.server = ServerConfig(
                    base_url=server_data.get("base_url", config.server.base_url),
                    request_timeout_seconds=server_data.get(
                        "request_timeout_seconds", config.server.request_timeout_seconds
                    ),
                )

            # Parse identity config
            if "identity" in data:
                identity_data = data["identity"] or {}
                config.identity = IdentityConfig(
                    nick_name=identity_data.get("nick_name", config.identity.nick_name),
                    email=identity_data.get("email", config.identity.email),
                )

            # Parse sync config
            if "sync" in data:
                sync_data = data["sync"] or {}
                config.sync = SyncConfig(
                    poll_timeout_seconds=sync_data.get(
                        "poll_timeout_seconds", config.sync.poll_timeout_seconds
                    ),
                    retry_min_delay_seconds=sync_data.get(
                        "retry_min_delay_seconds", config.sync.retry_min_delay_seconds
                    ),
                    retry_max_delay_seconds=sync_data.get(
                        "retry_max_delay_seconds", config.sync.retry_max_delay_seconds
                    ),
                    join_max_attempts=sync_data.get(
                        "join_max_attempts", config.sync.join_max_attempts
                    ),
                    join_backoff_seconds=sync_data.get(
                        "join_backoff_seconds", config.sync.join_backoff_seconds
                    ),
                    allow_duplicate_users=sync_data.get(
                        "allow_duplicate_users", config.sync.allow_duplicate_users
                    ),
                )

    # Apply environment variable overrides
    config = _apply_env_overrides(config)

    # The base URL is joined with relative endpoint paths
    if not config.server.base_url.endswith("/"):
        config.server.base_url += "/"

    return config

"""Configuration loading for acesync."""

import logging
import os
import threading
from dataclasses import dataclass, field, replace
from pathlib import Path
from typing import Any, Callable

import yaml

from .log.sync import SyncMode

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class NodeConfig:
    name: str = "acesync-node"


@dataclass(frozen=True)
class RepositoryConfig:
    """Configuration for the file-based versioned repositories."""

    base_dir: str = "~/.acesync/repositories"
    master: bool = True
    limit: int | None = None  # None keeps every version
    names: tuple[str, ...] = ("deployment",)
    skip_unchanged: bool = False

    def path(self, name: str) -> Path:
        return Path(self.base_dir).expanduser() / name


@dataclass(frozen=True)
class LogConfig:
    """Configuration for the event log stores, one SQLite file per name."""

    directory: str = "~/.acesync/logs"
    names: tuple[str, ...] = ("auditlog",)
    max_events: int = 0  # 0 keeps every event

    def db_path(self, name: str) -> Path:
        return Path(self.directory).expanduser() / f"{name}.db"


@dataclass(frozen=True)
class SyncConfig:
    """Configuration for log synchronization with a server."""

    enabled: bool = True
    server_url: str = ""
    log_names: tuple[str, ...] = ("auditlog",)
    interval_seconds: int = 300
    max_retries: int = 3
    timeout: float = 30.0
    data_mode: SyncMode = SyncMode.PUSHPULL
    lowest_id_mode: SyncMode = SyncMode.NONE


@dataclass(frozen=True)
class DeploymentConfig:
    """Configuration for serving deployment packages."""

    repository: str = "deployment"  # Name of the repository holding the deployment document
    max_concurrent_users: int = 0  # 0 is unlimited
    artifact_timeout: float = 30.0


@dataclass(frozen=True)
class ServerConfig:
    host: str = "0.0.0.0"
    port: int = 8080


@dataclass(frozen=True)
class Config:
    node: NodeConfig = field(default_factory=NodeConfig)
    repository: RepositoryConfig = field(default_factory=RepositoryConfig)
    log: LogConfig = field(default_factory=LogConfig)
    sync: SyncConfig = field(default_factory=SyncConfig)
    deployment: DeploymentConfig = field(default_factory=DeploymentConfig)
    server: ServerConfig = field(default_factory=ServerConfig)


class ConfigHolder:
    """Holds the current ``Config`` and swaps it as a whole.

    Readers take ``holder.current`` once and keep using that object, so they
    never observe a mix of old and new settings. Listeners run after every
    swap with the new configuration.
    """

    def __init__(self, config: Config | None = None):
        self._config = config or Config()
        self._lock = threading.Lock()
        self._listeners: list[Callable[[Config], None]] = []

    @property
    def current(self) -> Config:
        return self._config

    def add_listener(self, listener: Callable[[Config], None]) -> None:
        self._listeners.append(listener)

    def update(self, config: Config) -> None:
        with self._lock:
            self._config = config
            listeners = list(self._listeners)
        for listener in listeners:
            listener(config)
        logger.info("Configuration updated")


def _get_env(key: str, default: Any = None) -> Any:
    """Get environment variable with ACESYNC_ prefix."""
    return os.environ.get(f"ACESYNC_{key}", default)


def _parse_bool(value: str) -> bool:
    return value.lower() in ("true", "1", "yes")


def _parse_names(value: Any) -> tuple[str, ...]:
    if isinstance(value, str):
        return tuple(name.strip() for name in value.split(",") if name.strip())
    return tuple(str(name) for name in value)


def _parse_mode(value: Any) -> SyncMode:
    if isinstance(value, SyncMode):
        return value
    try:
        return SyncMode(str(value).lower())
    except ValueError:
        valid = ", ".join(mode.value for mode in SyncMode)
        raise ValueError(f"Invalid sync mode {value!r}, expected one of: {valid}") from None


def _apply_env_overrides(config: Config) -> Config:
    """Apply environment variable overrides to config."""
    # Node overrides
    if name := _get_env("NODE_NAME"):
        config = replace(config, node=replace(config.node, name=name))

    # Repository overrides
    repository = config.repository
    if base_dir := _get_env("REPOSITORY_BASE_DIR"):
        repository = replace(repository, base_dir=base_dir)
    if master := _get_env("REPOSITORY_MASTER"):
        repository = replace(repository, master=_parse_bool(master))
    if limit := _get_env("REPOSITORY_LIMIT"):
        repository = replace(repository, limit=int(limit) or None)

    # Log overrides
    log = config.log
    if directory := _get_env("LOG_DIRECTORY"):
        log = replace(log, directory=directory)
    if max_events := _get_env("LOG_MAX_EVENTS"):
        log = replace(log, max_events=int(max_events))

    # Sync overrides
    sync = config.sync
    if sync_enabled := _get_env("SYNC_ENABLED"):
        sync = replace(sync, enabled=_parse_bool(sync_enabled))
    if server_url := _get_env("SYNC_SERVER_URL"):
        sync = replace(sync, server_url=server_url)
    if sync_interval := _get_env("SYNC_INTERVAL"):
        sync = replace(sync, interval_seconds=int(sync_interval))
    if data_mode := _get_env("SYNC_DATA_MODE"):
        sync = replace(sync, data_mode=_parse_mode(data_mode))
    if lowest_id_mode := _get_env("SYNC_LOWEST_ID_MODE"):
        sync = replace(sync, lowest_id_mode=_parse_mode(lowest_id_mode))

    # Deployment overrides
    deployment = config.deployment
    if max_users := _get_env("DEPLOYMENT_MAX_CONCURRENT_USERS"):
        deployment = replace(deployment, max_concurrent_users=int(max_users))

    # Server overrides
    server = config.server
    if host := _get_env("SERVER_HOST"):
        server = replace(server, host=host)
    if port := _get_env("SERVER_PORT"):
        server = replace(server, port=int(port))

    return replace(
        config,
        repository=repository,
        log=log,
        sync=sync,
        deployment=deployment,
        server=server,
    )


def load_config(config_path: str | Path | None = None) -> Config:
    """Load configuration from YAML file with environment variable overrides.

    Args:
        config_path: Path to YAML config file. If None, uses default config.

    Returns:
        Loaded and validated Config object.

    Raises:
        ValueError: If a value has the wrong form, such as an unknown sync mode.
    """
    config = Config()

    if config_path:
        path = Path(config_path)
        if path.exists():
            with open(path) as f:
                data = yaml.safe_load(f) or {}

            # Parse node config
            if "node" in data:
                config = replace(
                    config, node=NodeConfig(name=data["node"].get("name", config.node.name))
                )

            # Parse repository config
            if "repository" in data:
                repo_data = data["repository"]
                defaults = config.repository
                config = replace(
                    config,
                    repository=RepositoryConfig(
                        base_dir=repo_data.get("base_dir", defaults.base_dir),
                        master=repo_data.get("master", defaults.master),
                        limit=repo_data.get("limit", defaults.limit),
                        names=_parse_names(repo_data.get("names", defaults.names)),
                        skip_unchanged=repo_data.get("skip_unchanged", defaults.skip_unchanged),
                    ),
                )

            # Parse log config
            if "log" in data:
                log_data = data["log"]
                defaults = config.log
                config = replace(
                    config,
                    log=LogConfig(
                        directory=log_data.get("directory", defaults.directory),
                        names=_parse_names(log_data.get("names", defaults.names)),
                        max_events=log_data.get("max_events", defaults.max_events),
                    ),
                )

            # Parse sync config
            if "sync" in data:
                sync_data = data["sync"]
                defaults = config.sync
                config = replace(
                    config,
                    sync=SyncConfig(
                        enabled=sync_data.get("enabled", defaults.enabled),
                        server_url=sync_data.get("server_url", defaults.server_url),
                        log_names=_parse_names(sync_data.get("log_names", defaults.log_names)),
                        interval_seconds=sync_data.get("interval_seconds", defaults.interval_seconds),
                        max_retries=sync_data.get("max_retries", defaults.max_retries),
                        timeout=sync_data.get("timeout", defaults.timeout),
                        data_mode=_parse_mode(sync_data.get("data_mode", defaults.data_mode)),
                        lowest_id_mode=_parse_mode(
                            sync_data.get("lowest_id_mode", defaults.lowest_id_mode)
                        ),
                    ),
                )

            # Parse deployment config
            if "deployment" in data:
                dep_data = data["deployment"]
                defaults = config.deployment
                config = replace(
                    config,
                    deployment=DeploymentConfig(
                        repository=dep_data.get("repository", defaults.repository),
                        max_concurrent_users=dep_data.get(
                            "max_concurrent_users", defaults.max_concurrent_users
                        ),
                        artifact_timeout=dep_data.get("artifact_timeout", defaults.artifact_timeout),
                    ),
                )

            # Parse server config
            if "server" in data:
                server_data = data["server"]
                config = replace(
                    config,
                    server=ServerConfig(
                        host=server_data.get("host", config.server.host),
                        port=server_data.get("port", config.server.port),
                    ),
                )

    # Apply environment variable overrides
    config = _apply_env_overrides(config)

    if config.repository.limit is not None and config.repository.limit < 1:
        raise ValueError(f"repository.limit must be at least 1, was {config.repository.limit}")
    if config.log.max_events < 0:
        raise ValueError(f"log.max_events must not be negative, was {config.log.max_events}")

    return config

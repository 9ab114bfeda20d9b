"""Tests for configuration loading."""

import os

import pytest

from acesync.config import Config, ConfigHolder, NodeConfig, load_config
from acesync.log import SyncMode


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    """Remove any ACESYNC_ variables from the environment."""
    for key in list(os.environ):
        if key.startswith("ACESYNC_"):
            monkeypatch.delenv(key)


@pytest.fixture
def config_file(tmp_path):
    """Write a config file with every section."""
    path = tmp_path / "config.yaml"
    path.write_text(
        """
node:
  name: gateway-7
repository:
  base_dir: /srv/repos
  master: false
  limit: 20
  names: [deployment, store]
log:
  directory: /srv/logs
  names: auditlog,feedback
  max_events: 500
sync:
  server_url: http://server:8080
  log_names: [auditlog]
  interval_seconds: 60
  data_mode: push
  lowest_id_mode: pull
deployment:
  max_concurrent_users: 4
server:
  port: 9090
"""
    )
    return path


class TestLoadConfig:
    """Tests for YAML loading."""

    def test_defaults(self):
        config = load_config()

        assert config == Config()
        assert config.repository.limit is None
        assert config.sync.data_mode == SyncMode.PUSHPULL

    def test_missing_file_uses_defaults(self, tmp_path):
        assert load_config(tmp_path / "missing.yaml") == Config()

    def test_empty_file(self, tmp_path):
        path = tmp_path / "empty.yaml"
        path.write_text("")

        assert load_config(path) == Config()

    def test_all_sections(self, config_file):
        config = load_config(config_file)

        assert config.node.name == "gateway-7"
        assert config.repository.master is False
        assert config.repository.limit == 20
        assert config.repository.names == ("deployment", "store")
        assert str(config.repository.path("store")) == "/srv/repos/store"
        assert config.log.names == ("auditlog", "feedback")
        assert config.log.max_events == 500
        assert str(config.log.db_path("auditlog")) == "/srv/logs/auditlog.db"
        assert config.sync.interval_seconds == 60
        assert config.sync.data_mode == SyncMode.PUSH
        assert config.sync.lowest_id_mode == SyncMode.PULL
        assert config.deployment.max_concurrent_users == 4
        assert config.server.port == 9090
        assert config.server.host == "0.0.0.0"

    def test_invalid_mode(self, tmp_path):
        path = tmp_path / "config.yaml"
        path.write_text("sync:\n  data_mode: sideways\n")

        with pytest.raises(ValueError, match="sideways"):
            load_config(path)

    def test_invalid_limit(self, tmp_path):
        path = tmp_path / "config.yaml"
        path.write_text("repository:\n  limit: 0\n")

        with pytest.raises(ValueError):
            load_config(path)


class TestEnvOverrides:
    """Tests for ACESYNC_ environment variables."""

    def test_overrides_file(self, config_file, monkeypatch):
        monkeypatch.setenv("ACESYNC_NODE_NAME", "from-env")
        monkeypatch.setenv("ACESYNC_SERVER_PORT", "7000")
        monkeypatch.setenv("ACESYNC_SYNC_DATA_MODE", "PULL")
        monkeypatch.setenv("ACESYNC_REPOSITORY_MASTER", "yes")

        config = load_config(config_file)

        assert config.node.name == "from-env"
        assert config.server.port == 7000
        assert config.sync.data_mode == SyncMode.PULL
        assert config.repository.master is True
        assert config.repository.limit == 20

    def test_zero_limit_means_unlimited(self, config_file, monkeypatch):
        monkeypatch.setenv("ACESYNC_REPOSITORY_LIMIT", "0")

        assert load_config(config_file).repository.limit is None

    def test_invalid_env_mode(self, monkeypatch):
        monkeypatch.setenv("ACESYNC_SYNC_LOWEST_ID_MODE", "everywhere")

        with pytest.raises(ValueError):
            load_config()


class TestConfigHolder:
    """Tests for swapping configurations at runtime."""

    def test_update_swaps_and_notifies(self):
        holder = ConfigHolder()
        seen = []
        holder.add_listener(seen.append)
        new = Config(node=NodeConfig(name="reloaded"))

        holder.update(new)

        assert holder.current is new
        assert seen == [new]

    def test_snapshot_is_stable(self):
        holder = ConfigHolder(Config(node=NodeConfig(name="before")))
        snapshot = holder.current

        holder.update(Config(node=NodeConfig(name="after")))

        assert snapshot.node.name == "before"
        assert holder.current.node.name == "after"

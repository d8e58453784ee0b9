"""Tests for engine configuration."""

from pathlib import Path

from sentencify_storage.config import DEFAULT_QUOTA_BYTES, StorageConfig


class TestStorageConfig:
    """Tests for StorageConfig."""

    def test_defaults(self):
        config = StorageConfig()

        assert config.durable_store_enabled is True
        assert config.quota_bytes == DEFAULT_QUOTA_BYTES
        assert config.autosave_idle_ms == 1500

    def test_paths_under_data_dir(self, tmp_path: Path):
        config = StorageConfig(data_dir=tmp_path)

        assert config.session_path == tmp_path / "session.json"
        assert config.durable_path == tmp_path / "sentencify.db"

    def test_data_dir_expanded(self):
        config = StorageConfig(data_dir="~/sentencify-test")
        assert "~" not in str(config.data_dir)

    def test_from_env(self, monkeypatch, tmp_path: Path):
        monkeypatch.setenv("SENTENCIFY_DATA_DIR", str(tmp_path))
        monkeypatch.setenv("SENTENCIFY_DURABLE_STORE", "off")
        monkeypatch.setenv("SENTENCIFY_QUOTA_BYTES", "1024")
        monkeypatch.setenv("SENTENCIFY_SYNC_POLL_MS", "50")

        config = StorageConfig.from_env()

        assert config.data_dir == tmp_path
        assert config.durable_store_enabled is False
        assert config.quota_bytes == 1024
        assert config.sync_poll_ms == 50

    def test_from_env_kill_switch_values(self, monkeypatch):
        for value, expected in (("1", True), ("TRUE", True), ("yes", True), ("0", False)):
            monkeypatch.setenv("SENTENCIFY_DURABLE_STORE", value)
            assert StorageConfig.from_env().durable_store_enabled is expected

    def test_from_env_defaults(self, monkeypatch):
        for name in ("SENTENCIFY_DURABLE_STORE", "SENTENCIFY_QUOTA_BYTES"):
            monkeypatch.delenv(name, raising=False)

        config = StorageConfig.from_env()

        assert config.durable_store_enabled is True
        assert config.quota_bytes == DEFAULT_QUOTA_BYTES

    def test_from_yaml(self, tmp_path: Path):
        settings = tmp_path / "settings.yaml"
        settings.write_text(
            f"""
storage:
  data_dir: {tmp_path / "data"}
  durable_store_enabled: false
  autosave_idle_ms: 250
  unknown_key: ignored
other_section:
  anything: 1
"""
        )

        config = StorageConfig.from_yaml(settings)

        assert config.data_dir == tmp_path / "data"
        assert config.durable_store_enabled is False
        assert config.autosave_idle_ms == 250

    def test_from_yaml_missing_file(self, tmp_path: Path):
        config = StorageConfig.from_yaml(tmp_path / "missing.yaml")
        assert config == StorageConfig()

    def test_from_yaml_without_section(self, tmp_path: Path):
        settings = tmp_path / "settings.yaml"
        settings.write_text("other: 1\n")

        assert StorageConfig.from_yaml(settings).quota_bytes == DEFAULT_QUOTA_BYTES

"""Tests for bootstrap configuration."""

import json

from ratifact.config import (
    AppConfig,
    config_dir,
    default_config_path,
    load_config,
    save_config,
)


class TestConfigDir:
    def test_xdg(self, monkeypatch, tmp_path):
        monkeypatch.setenv("XDG_CONFIG_HOME", str(tmp_path))
        assert config_dir() == tmp_path / "ratifact"

    def test_env_config_path(self, monkeypatch, tmp_path):
        monkeypatch.setenv("RATIFACT_CONFIG", str(tmp_path / "c.json"))
        assert default_config_path() == tmp_path / "c.json"


class TestLoadConfig:
    def test_missing_file_gives_defaults(self, monkeypatch, tmp_path):
        monkeypatch.delenv("RATIFACT_DB", raising=False)
        monkeypatch.delenv("RATIFACT_DEBUG", raising=False)
        monkeypatch.setenv("XDG_CONFIG_HOME", str(tmp_path))

        config = load_config(tmp_path / "absent.json")

        assert config.scan_paths == ["~"]
        assert config.database_path == str(tmp_path / "ratifact" / "ratifact.db")
        assert config.debounce_seconds == 1.0

    def test_reads_file(self, monkeypatch, tmp_path):
        monkeypatch.delenv("RATIFACT_DB", raising=False)
        path = tmp_path / "config.json"
        path.write_text(json.dumps({"scan_paths": ["/srv/code"], "max_workers": 2}))

        config = load_config(path)

        assert config.scan_paths == ["/srv/code"]
        assert config.max_workers == 2

    def test_invalid_values_fall_back(self, tmp_path, caplog):
        path = tmp_path / "config.json"
        path.write_text(json.dumps({"debounce_seconds": -1}))

        config = load_config(path)

        assert config.debounce_seconds == 1.0
        assert "Ignoring invalid config" in caplog.text

    def test_unparseable_file(self, tmp_path, caplog):
        path = tmp_path / "config.json"
        path.write_text("{not json")

        assert load_config(path).max_depth == 15
        assert "Ignoring unreadable config" in caplog.text

    def test_env_overrides(self, monkeypatch, tmp_path):
        monkeypatch.setenv("RATIFACT_DB", str(tmp_path / "x.db"))
        monkeypatch.setenv("RATIFACT_DEBUG", "yes")

        config = load_config(tmp_path / "absent.json")

        assert config.database_path == str(tmp_path / "x.db")
        assert config.debug_logs_enabled

    def test_debug_env_false(self, monkeypatch, tmp_path):
        monkeypatch.setenv("RATIFACT_DEBUG", "0")
        path = tmp_path / "config.json"
        path.write_text(json.dumps({"debug_logs_enabled": True}))
        assert not load_config(path).debug_logs_enabled


class TestSaveConfig:
    def test_round_trip(self, tmp_path):
        path = tmp_path / "nested" / "config.json"
        saved = save_config(AppConfig(database_path="/d.db", scan_paths=["/a"]), path)

        assert saved == path
        loaded = AppConfig.model_validate_json(path.read_text())
        assert loaded.scan_paths == ["/a"]
        assert loaded.database_path == "/d.db"

"""Tests for config loading."""

from __future__ import annotations

from pathlib import Path

import pytest

from bootrescue.core.config import (
    BootRescueConfig,
    get_log_path,
    get_state_dir,
    load_config,
)
from bootrescue.core.errors import ConfigError


class TestLoadConfig:
    def test_defaults_when_no_config_file(self, tmp_path: Path):
        """Without a bootrescue.toml, load_config should return defaults."""
        config = load_config(tmp_path)

        assert isinstance(config, BootRescueConfig)
        assert config.general.log_file == "action.log"
        assert config.collector.command_timeout == 60
        assert config.collector.min_loader_size == 64 * 1024
        assert "storahci" in config.collector.storage_services
        assert "ntfs.sys" in config.collector.critical_drivers
        assert config.matcher.ignore == []
        assert config.executor.long_command_timeout == 7200

    def test_loads_toml_sections(self, tmp_path: Path):
        (tmp_path / "bootrescue.toml").write_text("""\
[general]
state_dir = "/var/lib/bootrescue"

[collector]
min_loader_size = 4096
storage_services = ["stornvme"]

[matcher]
ignore = ["LOG-001", "PWR-002"]

[executor]
command_timeout = 30
""")
        config = load_config(tmp_path)

        assert config.general.state_dir == "/var/lib/bootrescue"
        assert config.collector.min_loader_size == 4096
        assert config.collector.storage_services == ["stornvme"]
        assert config.matcher.ignore == ["LOG-001", "PWR-002"]
        assert config.executor.command_timeout == 30
        # Untouched values keep their defaults
        assert config.executor.long_command_timeout == 7200

    def test_accepts_file_path(self, tmp_path: Path):
        config_file = tmp_path / "custom.toml"
        config_file.write_text("[collector]\nhash_limit_mb = 8\n")

        assert load_config(config_file).collector.hash_limit_mb == 8

    def test_invalid_toml_raises_config_error(self, tmp_path: Path):
        (tmp_path / "bootrescue.toml").write_text("[collector\n")

        with pytest.raises(ConfigError):
            load_config(tmp_path)

    @pytest.mark.parametrize("value", ["0", "-5", "true", '"ten"'])
    def test_non_positive_integers_rejected(self, tmp_path: Path, value: str):
        (tmp_path / "bootrescue.toml").write_text(f"[executor]\ncommand_timeout = {value}\n")

        with pytest.raises(ConfigError, match="executor.command_timeout"):
            load_config(tmp_path)

    def test_string_list_rejected_when_not_list(self, tmp_path: Path):
        (tmp_path / "bootrescue.toml").write_text('[matcher]\nignore = "LOG-001"\n')

        with pytest.raises(ConfigError, match="matcher.ignore"):
            load_config(tmp_path)


class TestStateDir:
    def test_environment_override(self, tmp_path: Path, monkeypatch: pytest.MonkeyPatch):
        monkeypatch.setenv("BOOTRESCUE_STATE_DIR", str(tmp_path / "env"))

        state_dir = get_state_dir(BootRescueConfig())

        assert state_dir == tmp_path / "env"
        assert state_dir.is_dir()

    def test_config_state_dir(self, tmp_path: Path, monkeypatch: pytest.MonkeyPatch):
        monkeypatch.delenv("BOOTRESCUE_STATE_DIR", raising=False)
        config = BootRescueConfig()
        config.general.state_dir = str(tmp_path / "configured")

        assert get_state_dir(config) == tmp_path / "configured"

    def test_log_path_relative_to_state_dir(self, state_dir: Path):
        assert get_log_path() == state_dir / "action.log"

    def test_absolute_log_path_kept(self, tmp_path: Path):
        config = BootRescueConfig()
        config.general.log_file = str(tmp_path / "elsewhere.log")

        assert get_log_path(config) == tmp_path / "elsewhere.log"

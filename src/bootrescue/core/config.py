"""Configuration management for bootrescue (bootrescue.toml parsing + defaults)."""

from __future__ import annotations

import os
import tomllib
from dataclasses import dataclass, field
from pathlib import Path

from bootrescue.core.errors import ConfigError

CONFIG_FILENAME = "bootrescue.toml"
STATE_DIR_ENV = "BOOTRESCUE_STATE_DIR"


@dataclass
class GeneralConfig:
    state_dir: str = ""
    log_file: str = "action.log"


@dataclass
class CollectorConfig:
    command_timeout: int = 60
    min_loader_size: int = 64 * 1024
    hash_limit_mb: int = 32
    storage_services: list[str] = field(
        default_factory=lambda: [
            "storahci",
            "stornvme",
            "iaStorV",
            "iaStorAVC",
            "iaStorAC",
            "pciide",
            "disk",
            "volmgr",
            "partmgr",
            "mountmgr",
        ]
    )
    critical_drivers: list[str] = field(
        default_factory=lambda: [
            "disk.sys",
            "classpnp.sys",
            "storport.sys",
            "storahci.sys",
            "stornvme.sys",
            "partmgr.sys",
            "volmgr.sys",
            "mountmgr.sys",
            "ntfs.sys",
            "acpi.sys",
            "pci.sys",
        ]
    )


@dataclass
class MatcherConfig:
    ignore: list[str] = field(default_factory=list)


@dataclass
class ExecutorConfig:
    command_timeout: int = 300
    long_command_timeout: int = 7200


@dataclass
class BootRescueConfig:
    """Complete bootrescue configuration."""

    general: GeneralConfig = field(default_factory=GeneralConfig)
    collector: CollectorConfig = field(default_factory=CollectorConfig)
    matcher: MatcherConfig = field(default_factory=MatcherConfig)
    executor: ExecutorConfig = field(default_factory=ExecutorConfig)


def load_config(path: Path | None = None) -> BootRescueConfig:
    """Load configuration from bootrescue.toml if present, otherwise return defaults.

    *path* may be the file itself or the directory holding it.
    """
    config = BootRescueConfig()

    if path is None:
        path = Path.cwd()
    config_file = path / CONFIG_FILENAME if path.is_dir() else path
    if not config_file.exists():
        return config

    try:
        with open(config_file, "rb") as f:
            data = tomllib.load(f)
    except tomllib.TOMLDecodeError as e:
        raise ConfigError(f"{config_file}: {e}") from e

    if "general" in data:
        g = data["general"]
        for attr in ("state_dir", "log_file"):
            if attr in g:
                setattr(config.general, attr, str(g[attr]))

    if "collector" in data:
        c = data["collector"]
        for attr in ("command_timeout", "min_loader_size", "hash_limit_mb"):
            if attr in c:
                setattr(config.collector, attr, _positive_int(c[attr], f"collector.{attr}"))
        for attr in ("storage_services", "critical_drivers"):
            if attr in c:
                setattr(config.collector, attr, _string_list(c[attr], f"collector.{attr}"))

    if "matcher" in data:
        m = data["matcher"]
        if "ignore" in m:
            config.matcher.ignore = _string_list(m["ignore"], "matcher.ignore")

    if "executor" in data:
        x = data["executor"]
        for attr in ("command_timeout", "long_command_timeout"):
            if attr in x:
                setattr(config.executor, attr, _positive_int(x[attr], f"executor.{attr}"))

    return config


def get_state_dir(config: BootRescueConfig | None = None) -> Path:
    """Get or create the directory holding the action log, locks and backups."""
    override = os.environ.get(STATE_DIR_ENV)
    if override:
        state_dir = Path(override)
    elif config is not None and config.general.state_dir:
        state_dir = Path(config.general.state_dir)
    elif os.name == "nt":
        state_dir = Path(os.environ.get("ProgramData", "C:\\ProgramData")) / "bootrescue"
    else:
        state_dir = Path.home() / ".bootrescue"
    state_dir.mkdir(parents=True, exist_ok=True)
    return state_dir


def get_log_path(config: BootRescueConfig | None = None) -> Path:
    config = config or BootRescueConfig()
    log_file = Path(config.general.log_file)
    if log_file.is_absolute():
        return log_file
    return get_state_dir(config) / log_file


def _positive_int(value: object, name: str) -> int:
    if isinstance(value, bool) or not isinstance(value, int) or value <= 0:
        raise ConfigError(f"{name} must be a positive integer, got {value!r}")
    return value


def _string_list(value: object, name: str) -> list[str]:
    if not isinstance(value, list) or not all(isinstance(v, str) for v in value):
        raise ConfigError(f"{name} must be a list of strings")
    return list(value)

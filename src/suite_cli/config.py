from __future__ import annotations

import os
import tomllib
from dataclasses import dataclass, fields, replace
from pathlib import Path
from typing import Any

from .errors import ConfigError


DEFAULT_CONTAINER_NAME = "hailo_ai_sw_suite_2025-01_container"
DEFAULT_IMAGE_NAME = "hailo_ai_sw_suite_2025-01:1"
DEFAULT_IMAGE_TARBALL = "hailo_ai_sw_suite_2025-01.tar.gz"
DEFAULT_XAUTH_FILE = "/tmp/hailo_docker.xauth"
DEFAULT_SHARED_DIR = "shared_with_docker"
DEFAULT_WORKSPACE_DIR = "share"
DEFAULT_HAILORT_LOGGER_PATH = "/var/log/hailo"
DEFAULT_TABLE_LOG = "system_reqs_table.log"
DEFAULT_DETAIL_LOG = "system_reqs_results.log"
CONFIG_ENV = "SUITE_CLI_CONFIG"
CONFIG_TABLE = "suite"
_PATH_KEYS = {"image_dir", "xauth_file", "work_dir"}


@dataclass(frozen=True)
class SuiteSettings:
    work_dir: Path
    image_dir: Path
    container_name: str = DEFAULT_CONTAINER_NAME
    image_name: str = DEFAULT_IMAGE_NAME
    image_tarball: str = DEFAULT_IMAGE_TARBALL
    xauth_file: Path = Path(DEFAULT_XAUTH_FILE)
    shared_dir: str = DEFAULT_SHARED_DIR
    workspace_dir: str = DEFAULT_WORKSPACE_DIR
    default_logger_path: str = DEFAULT_HAILORT_LOGGER_PATH
    table_log: str = DEFAULT_TABLE_LOG
    detail_log: str = DEFAULT_DETAIL_LOG

    @property
    def tarball_path(self) -> Path:
        return self.image_dir / self.image_tarball

    @property
    def shared_path(self) -> Path:
        return self.work_dir / self.shared_dir

    @property
    def workspace_path(self) -> Path:
        return self.work_dir / self.workspace_dir

    @property
    def table_log_path(self) -> Path:
        return self.work_dir / self.table_log

    @property
    def detail_log_path(self) -> Path:
        return self.work_dir / self.detail_log


@dataclass(frozen=True)
class LaunchOptions:
    resume: bool = False
    override: bool = False
    enable_service: bool = False
    enable_monitor: bool = False
    logger_path: str | None = None


def _to_absolute(value: str, cwd: Path) -> Path:
    path = Path(value).expanduser()
    return path if path.is_absolute() else (cwd / path).resolve()


def _default_config_file() -> Path:
    return Path.home() / ".config" / "hailo-suite" / "launcher.toml"


def default_settings(cwd: Path) -> SuiteSettings:
    return SuiteSettings(work_dir=cwd, image_dir=cwd)


def _settings_overrides(raw: Any, cwd: Path, source: Path) -> dict[str, Any]:
    if not isinstance(raw, dict):
        raise ConfigError(f"[{CONFIG_TABLE}] in {source} must be a table")
    known = {field.name for field in fields(SuiteSettings)}
    overrides: dict[str, Any] = {}
    for key, value in raw.items():
        if key not in known:
            raise ConfigError(f"Unknown setting '{key}' in {source}")
        if not isinstance(value, str) or not value.strip():
            raise ConfigError(f"Setting '{key}' in {source} must be a non-empty string")
        overrides[key] = _to_absolute(value, cwd) if key in _PATH_KEYS else value.strip()
    return overrides


def load_settings(config_file: str | None, cwd: Path, env: dict[str, str] | None = None) -> SuiteSettings:
    source = os.environ if env is None else env
    settings = default_settings(cwd)

    explicit = config_file or str(source.get(CONFIG_ENV, "")).strip()
    if explicit:
        config_path = _to_absolute(explicit, cwd)
        if not config_path.is_file():
            raise ConfigError(f"Config file does not exist: {config_path}")
    else:
        config_path = _default_config_file()
        if not config_path.is_file():
            return settings

    try:
        with config_path.open("rb") as handle:
            document = tomllib.load(handle)
    except tomllib.TOMLDecodeError as exc:
        raise ConfigError(f"Invalid TOML in {config_path}: {exc}") from exc

    if CONFIG_TABLE not in document:
        return settings
    return replace(settings, **_settings_overrides(document[CONFIG_TABLE], cwd, config_path))

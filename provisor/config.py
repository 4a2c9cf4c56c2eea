"""Configuration management for provisor."""
from __future__ import annotations

from pathlib import Path
from typing import Any, Optional
import yaml


GLOBAL_CONFIG_PATH = Path.home() / ".provisor.yaml"

LOG_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL")
BOOL_KEYS = ("inherit_environment", "fail_fast", "show")


class Config:
    """Provisor configuration with hierarchical lookup.

    Config hierarchy (higher priority first):
    1. Project config (.provisor/config)
    2. Global config (~/.provisor.yaml)

    When reading, project values override global.
    When writing, writes to the config path specified at init.
    """

    def __init__(self, config_path: Optional[Path] = None, enable_hierarchy: bool = True):
        """Initialize config.

        Args:
            config_path: Specific config file to use. If None, uses global config.
            enable_hierarchy: If True, falls back to the global config for
                             missing keys. If False, only uses config_path.
        """
        self.config_path = config_path or GLOBAL_CONFIG_PATH
        self.enable_hierarchy = enable_hierarchy
        self._data: dict[str, Any] = {}
        self._global_data: dict[str, Any] = {}
        self.load()

    def load(self) -> None:
        """Load configuration from file(s)."""
        self._data = self._read(self.config_path, required=True)
        if self.enable_hierarchy and self.config_path != GLOBAL_CONFIG_PATH:
            self._global_data = self._read(GLOBAL_CONFIG_PATH, required=False)
        else:
            self._global_data = {}

    @staticmethod
    def _read(path: Path, required: bool) -> dict[str, Any]:
        if not path.exists():
            return {}
        try:
            with open(path) as f:
                loaded = yaml.safe_load(f) or {}
        except (OSError, yaml.YAMLError) as e:
            if required:
                raise RuntimeError(f"Failed to load config from {path}: {e}") from e
            return {}
        if not isinstance(loaded, dict):
            if required:
                raise RuntimeError(f"Config at {path} must be a mapping")
            return {}
        return loaded

    def save(self) -> None:
        """Save configuration to primary config file."""
        try:
            self.config_path.parent.mkdir(parents=True, exist_ok=True)
            with open(self.config_path, "w") as f:
                yaml.dump(self._data, f, default_flow_style=False)
        except OSError as e:
            raise RuntimeError(f"Failed to save config to {self.config_path}: {e}") from e

    def get(self, key: str, default: Any = None) -> Any:
        """Get a value: project config first, then global, then default."""
        if key in self._data:
            return self._data[key]
        if key in self._global_data:
            return self._global_data[key]
        return default

    def set(self, key: str, value: Any) -> None:
        """Set a configuration value in the primary config."""
        self._data[key] = value

    def as_dict(self) -> dict[str, Any]:
        merged = dict(self._global_data)
        merged.update(self._data)
        return merged

    @property
    def log_level(self) -> str:
        return str(self.get("log_level", "WARNING")).upper()

    @log_level.setter
    def log_level(self, value: str) -> None:
        self.set("log_level", value.upper())

    @property
    def db_path(self) -> Optional[str]:
        """Path of the SQLite run history, relative paths resolve against the project root."""
        return self.get("db_path")

    @db_path.setter
    def db_path(self, value: str) -> None:
        self.set("db_path", value)

    @property
    def inherit_environment(self) -> bool:
        return _as_bool(self.get("inherit_environment", True))

    @inherit_environment.setter
    def inherit_environment(self, value: bool) -> None:
        self.set("inherit_environment", bool(value))

    @property
    def fail_fast(self) -> bool:
        return _as_bool(self.get("fail_fast", True))

    @fail_fast.setter
    def fail_fast(self, value: bool) -> None:
        self.set("fail_fast", bool(value))

    @property
    def show(self) -> bool:
        return _as_bool(self.get("show", False))

    @show.setter
    def show(self, value: bool) -> None:
        self.set("show", bool(value))

    @classmethod
    def load_with_project_context(cls, start_path: Optional[Path] = None) -> Config:
        """Load config with project context if available.

        Uses the project-local config with global fallback when inside a
        provisor project, and the global config alone otherwise.
        """
        from .paths import get_project_config_path

        project_config_path = get_project_config_path(start_path)
        if project_config_path:
            return cls(config_path=project_config_path, enable_hierarchy=True)
        return cls(config_path=GLOBAL_CONFIG_PATH, enable_hierarchy=False)


def _as_bool(value: Any) -> bool:
    if isinstance(value, str):
        return value.strip().lower() in ("1", "true", "yes", "on")
    return bool(value)


def coerce_value(key: str, value: str) -> Any:
    """Convert a CLI string value to the type stored for key.

    Raises ValueError for values that are invalid for the key.
    """
    if key == "log_level":
        if value.upper() not in LOG_LEVELS:
            raise ValueError(f"Invalid log_level '{value}'. Must be one of: {', '.join(LOG_LEVELS)}")
        return value.upper()
    if key in BOOL_KEYS:
        if value.strip().lower() not in ("1", "0", "true", "false", "yes", "no", "on", "off"):
            raise ValueError(f"Invalid boolean for {key}: '{value}'")
        return _as_bool(value)
    return value

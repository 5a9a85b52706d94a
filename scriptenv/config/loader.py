"""Configuration loader for scriptenv.

This module provides the ConfigLoader class for loading and merging YAML
configuration files with a layered priority hierarchy:
    CLI flags > environment variables > project file > user file > defaults
"""

import logging
import os
from collections.abc import Mapping
from pathlib import Path
from typing import Any

import yaml
from pydantic import ValidationError

from scriptenv.config.constants import (
    ENV_CACHE_DIR,
    ENV_INDEX_URL,
    ENV_INSTALL_TIMEOUT,
    ENV_NO_CACHE,
    ENV_PYTHON,
    PROJECT_CONFIG_FILENAME,
    TOOL_NAME,
    USER_CONFIG_FILENAME,
)
from scriptenv.config.models import Settings, xdg_dir
from scriptenv.errors import ConfigurationError

logger = logging.getLogger(__name__)

_TRUTHY = {"1", "true", "yes", "on"}
_FALSY = {"0", "false", "no", "off", ""}


def _deep_merge(base: dict[str, Any], override: dict[str, Any]) -> dict[str, Any]:
    """Merge one settings layer over another.

    Nested mappings merge key by key; scalars and lists from the higher layer
    replace the lower one. None in the higher layer leaves the value alone,
    so unset CLI flags do not clobber file settings.

    Args:
        base: Lower-priority layer
        override: Higher-priority layer

    Returns:
        New merged mapping

    """
    result = base.copy()

    for key, value in override.items():
        if value is None:
            continue

        if key in result and isinstance(result[key], dict) and isinstance(value, dict):
            result[key] = _deep_merge(result[key], value)
        else:
            result[key] = value

    return result


def _parse_bool(name: str, value: str) -> bool:
    lowered = value.strip().lower()
    if lowered in _TRUTHY:
        return True
    if lowered in _FALSY:
        return False
    raise ConfigurationError(f"Invalid boolean for {name}: {value!r}")


def user_config_path() -> Path:
    """Return the per-user configuration file path."""
    return xdg_dir("XDG_CONFIG_HOME", Path.home() / ".config") / TOOL_NAME / USER_CONFIG_FILENAME


class ConfigLoader:
    """Load and merge configuration for scriptenv.

    Supports a layered priority hierarchy:
        1. Settings model defaults
        2. $XDG_CONFIG_HOME/scriptenv/config.yaml (optional - per user)
        3. scriptenv.yaml in the working directory or a parent (optional)
        4. SCRIPTENV_* environment variables
        5. Explicit overrides (command-line flags)

    Example:
        loader = ConfigLoader()
        settings = loader.load(overrides={"python": "3.12"})

    """

    def __init__(
        self,
        base_path: str | Path | None = None,
        user_path: Path | None = None,
        environ: Mapping[str, str] | None = None,
    ) -> None:
        """Initialize the ConfigLoader.

        Args:
            base_path: Directory the project file search starts from.
                Defaults to current working directory.
            user_path: Per-user config file. Defaults to the XDG location.
            environ: Environment mapping. Defaults to os.environ.

        """
        self.base_path = Path.cwd() if base_path is None else Path(base_path)
        self.user_path = user_config_path() if user_path is None else user_path
        self.environ = os.environ if environ is None else environ

    def _load_yaml_optional(self, path: Path) -> dict[str, Any] | None:
        """Load a YAML file if it exists.

        Args:
            path: Path to YAML file

        Returns:
            Parsed YAML content as dict, or None if file doesn't exist

        Raises:
            ConfigurationError: If file exists but cannot be parsed

        """
        if not path.exists():
            return None

        try:
            with open(path) as f:
                content = yaml.safe_load(f)
        except yaml.YAMLError as e:
            raise ConfigurationError(f"Invalid YAML in {path}: {e}")
        except PermissionError:
            raise ConfigurationError(f"Permission denied reading: {path}")

        if content is None:
            return {}
        if not isinstance(content, dict):
            raise ConfigurationError(f"Expected a mapping at the top of {path}")
        return content

    def find_project_config(self) -> Path | None:
        """Return the nearest scriptenv.yaml at or above base_path."""
        for directory in (self.base_path, *self.base_path.parents):
            candidate = directory / PROJECT_CONFIG_FILENAME
            if candidate.is_file():
                return candidate
        return None

    def _environment_layer(self) -> dict[str, Any]:
        layer: dict[str, Any] = {}
        if value := self.environ.get(ENV_CACHE_DIR):
            layer["cache_dir"] = value
        if value := self.environ.get(ENV_INDEX_URL):
            layer["index"] = {"url": value}
        if value := self.environ.get(ENV_PYTHON):
            layer["python"] = value
        if ENV_NO_CACHE in self.environ:
            layer["no_cache"] = _parse_bool(ENV_NO_CACHE, self.environ[ENV_NO_CACHE])
        if value := self.environ.get(ENV_INSTALL_TIMEOUT):
            try:
                layer["install"] = {"timeout_seconds": int(value)}
            except ValueError:
                raise ConfigurationError(f"Invalid integer for {ENV_INSTALL_TIMEOUT}: {value!r}")
        return layer

    def load(self, overrides: dict[str, Any] | None = None) -> Settings:
        """Load merged settings.

        Args:
            overrides: Highest-priority values, typically from CLI flags.
                None values are ignored.

        Returns:
            Validated Settings

        Raises:
            ConfigurationError: If any layer is invalid

        """
        merged: dict[str, Any] = {}

        user_layer = self._load_yaml_optional(self.user_path)
        if user_layer is not None:
            logger.debug(f"Loaded user config from {self.user_path}")
            merged = _deep_merge(merged, user_layer)

        project_path = self.find_project_config()
        if project_path is not None:
            project_layer = self._load_yaml_optional(project_path) or {}
            logger.debug(f"Loaded project config from {project_path}")
            merged = _deep_merge(merged, project_layer)

        merged = _deep_merge(merged, self._environment_layer())

        if overrides:
            merged = _deep_merge(merged, overrides)

        try:
            return Settings(**merged)
        except ValidationError as e:
            raise ConfigurationError(f"Invalid configuration: {e}")

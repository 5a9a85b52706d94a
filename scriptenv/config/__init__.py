"""Configuration loading system for scriptenv.

This module provides Pydantic models and a ConfigLoader for merging YAML
configuration files, environment variables and command-line overrides.

Example:
    from scriptenv.config import ConfigLoader

    settings = ConfigLoader().load(overrides={"no_cache": True})
    cache_root = settings.resolved_cache_dir()

"""

from .constants import DEFAULT_INDEX_URL, PROJECT_CONFIG_FILENAME
from .loader import ConfigLoader, user_config_path
from .models import IndexSettings, InstallSettings, Settings

__all__ = [
    "DEFAULT_INDEX_URL",
    "PROJECT_CONFIG_FILENAME",
    "ConfigLoader",
    "IndexSettings",
    "InstallSettings",
    "Settings",
    "user_config_path",
]

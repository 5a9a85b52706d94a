"""Shared constants for scriptenv configuration.

This module is the single source of truth for file names, environment
variable names and default URLs. Import from here rather than hardcoding
them at call sites.
"""

DEFAULT_INDEX_URL: str = "https://pypi.org/simple"
PROJECT_CONFIG_FILENAME: str = "scriptenv.yaml"
USER_CONFIG_FILENAME: str = "config.yaml"
TOOL_NAME: str = "scriptenv"

ENV_CACHE_DIR: str = "SCRIPTENV_CACHE_DIR"
ENV_INDEX_URL: str = "SCRIPTENV_INDEX_URL"
ENV_PYTHON: str = "SCRIPTENV_PYTHON"
ENV_NO_CACHE: str = "SCRIPTENV_NO_CACHE"
ENV_INSTALL_TIMEOUT: str = "SCRIPTENV_INSTALL_TIMEOUT"

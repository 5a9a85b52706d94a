"""Pydantic models for scriptenv configuration.

This module defines the settings schema merged from user files, project
files, environment variables and command-line flags.
"""

import os
from pathlib import Path

from pydantic import BaseModel, Field, field_validator

from scriptenv.config.constants import DEFAULT_INDEX_URL


class IndexSettings(BaseModel):
    """Package index configuration."""

    url: str = Field(default=DEFAULT_INDEX_URL, description="Default index URL")
    extra_urls: list[str] = Field(
        default_factory=list, description="Additional index URLs consulted after the default"
    )

    @field_validator("url")
    @classmethod
    def validate_url(cls, v: str) -> str:
        """Strip whitespace and reject empty index URLs."""
        if not v or not v.strip():
            raise ValueError("Index URL cannot be empty")
        return v.strip()


class InstallSettings(BaseModel):
    """Settings for package installation into environments."""

    timeout_seconds: int = Field(default=600, ge=1, le=86400)
    max_retries: int = Field(default=3, ge=1, le=10)
    base_delay: float = Field(default=1.0, ge=0.0, le=60.0)


class Settings(BaseModel):
    """Resolved scriptenv settings.

    Maps to config.yaml / scriptenv.yaml after merging.
    """

    cache_dir: Path | None = Field(default=None, description="Cache root directory")
    python: str | None = Field(default=None, description="Default Python request")
    no_cache: bool = Field(default=False, description="Use throwaway environments")
    index: IndexSettings = Field(default_factory=IndexSettings)
    install: InstallSettings = Field(default_factory=InstallSettings)

    def resolved_cache_dir(self) -> Path:
        """Return the cache root, falling back to the XDG cache directory."""
        if self.cache_dir is not None:
            return self.cache_dir.expanduser()
        return xdg_dir("XDG_CACHE_HOME", Path.home() / ".cache") / "scriptenv"


def xdg_dir(variable: str, fallback: Path) -> Path:
    """Return an XDG base directory from the environment or its fallback."""
    value = os.environ.get(variable)
    if value and Path(value).is_absolute():
        return Path(value)
    return fallback

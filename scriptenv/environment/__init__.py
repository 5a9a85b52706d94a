"""Environment module for building and caching script environments.

This module provides virtual environment creation, pip-based installation
with retry, and content-addressed caching.
"""

from scriptenv.environment.builder import (
    ENVIRONMENTS_DIRNAME,
    MARKER_FILENAME,
    Environment,
    EnvironmentBuilder,
    EnvironmentSpec,
)
from scriptenv.environment.installer import (
    IndexOptions,
    InstalledPackage,
    InstallResult,
    PipInstaller,
)

__all__ = [
    # Builder
    "ENVIRONMENTS_DIRNAME",
    "MARKER_FILENAME",
    "Environment",
    "EnvironmentBuilder",
    "EnvironmentSpec",
    # Installer
    "IndexOptions",
    "InstallResult",
    "InstalledPackage",
    "PipInstaller",
]

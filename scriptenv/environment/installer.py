"""Package installation into environments via pip.

Dependency resolution is pip's job. This module only assembles pip command
lines, retries transient failures, and lists what ended up installed.
"""

from __future__ import annotations

import json
import logging
import subprocess
import time
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path

from scriptenv.config.constants import DEFAULT_INDEX_URL
from scriptenv.config.models import InstallSettings
from scriptenv.errors import InstallError

logger = logging.getLogger(__name__)

# Failures that no amount of retrying will fix
NON_RETRYABLE_PATTERNS = [
    "No matching distribution found",
    "Could not find a version that satisfies",
    "ResolutionImpossible",
    "Invalid requirement",
    "conflicting dependencies",
    "does not appear to be a Python project",
    "is not a valid editable requirement",
]


@dataclass(frozen=True)
class IndexOptions:
    """Where and up to when packages may be fetched from."""

    index_url: str = DEFAULT_INDEX_URL
    extra_index_urls: tuple[str, ...] = ()
    exclude_newer: datetime | None = None

    def as_pip_args(self) -> list[str]:
        """Return the pip flags selecting these indexes."""
        args = ["--index-url", self.index_url]
        for url in self.extra_index_urls:
            args.extend(["--extra-index-url", url])
        if self.exclude_newer is not None:
            args.extend(["--uploaded-prior-to", self.exclude_newer.isoformat()])
        return args


@dataclass(frozen=True)
class InstalledPackage:
    """A distribution present in an environment."""

    name: str
    version: str

    def pin(self) -> str:
        """Return the ``name==version`` requirement for this package."""
        return f"{self.name}=={self.version}"


@dataclass
class InstallResult:
    """Outcome of a pip install run."""

    command: list[str]
    duration_seconds: float
    attempts: int = 1
    warnings: list[str] = field(default_factory=list)


CommandRunner = Callable[..., subprocess.CompletedProcess]


class PipInstaller:
    """Run pip inside an environment with retry for transient failures.

    Example:
        installer = PipInstaller(InstallSettings())
        installer.install(env_python, ["rich"], IndexOptions())

    """

    def __init__(
        self,
        settings: InstallSettings | None = None,
        runner: CommandRunner = subprocess.run,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        """Initialize the installer.

        Args:
            settings: Timeout and retry settings.
            runner: subprocess.run-compatible callable (injectable for tests).
            sleep: Delay function used between retries.

        """
        self.settings = settings or InstallSettings()
        self.runner = runner
        self.sleep = sleep

    def build_command(
        self,
        python: Path,
        requirements: list[str],
        index: IndexOptions,
        editable: list[Path] | None = None,
    ) -> list[str]:
        """Assemble the pip install command line."""
        command = [
            str(python),
            "-m",
            "pip",
            "install",
            "--disable-pip-version-check",
            "--no-input",
            "--quiet",
            *index.as_pip_args(),
        ]
        for path in editable or []:
            command.extend(["--editable", str(path)])
        command.extend(requirements)
        return command

    def _run_with_retry(self, command: list[str]) -> tuple[subprocess.CompletedProcess[str], int]:
        """Run a pip command with exponential backoff.

        Returns:
            The successful CompletedProcess and the attempt count.

        Raises:
            InstallError: On a permanent failure or after all retries.

        """
        command_str = " ".join(command)
        max_retries = self.settings.max_retries
        last_error: subprocess.CompletedProcess[str] | None = None

        for attempt in range(max_retries):
            try:
                result = self.runner(
                    command,
                    capture_output=True,
                    text=True,
                    check=False,
                    timeout=self.settings.timeout_seconds,
                    stdin=subprocess.DEVNULL,
                )
            except subprocess.TimeoutExpired as e:
                raise InstallError(
                    message=f"Package installation timed out after {self.settings.timeout_seconds}s",
                    command=command_str,
                ) from e
            except OSError as e:
                raise InstallError(
                    message=f"Failed to execute pip: {e}",
                    command=command_str,
                ) from e

            if result.returncode == 0:
                return result, attempt + 1

            stderr_lower = result.stderr.lower()
            for pattern in NON_RETRYABLE_PATTERNS:
                if pattern.lower() in stderr_lower:
                    raise InstallError(
                        message=f"Failed to install requirements: {pattern}",
                        command=command_str,
                        stderr=result.stderr.strip(),
                    )

            last_error = result
            if attempt < max_retries - 1:
                delay = self.settings.base_delay * (2**attempt)
                logger.warning(
                    f"pip failed (attempt {attempt + 1}/{max_retries}), retrying in {delay:.1f}s"
                )
                self.sleep(delay)

        stderr = last_error.stderr.strip() if last_error else "Unknown error"
        raise InstallError(
            message=f"Failed to install requirements after {max_retries} attempts",
            command=command_str,
            stderr=stderr,
        )

    def install(
        self,
        python: Path,
        requirements: list[str],
        index: IndexOptions,
        editable: list[Path] | None = None,
    ) -> InstallResult:
        """Install requirements (and editable projects) into an environment.

        Raises:
            InstallError: If pip fails permanently.

        """
        command = self.build_command(python, requirements, index, editable)
        logger.debug(f"Running command: {' '.join(command)}")
        started = time.monotonic()
        result, attempts = self._run_with_retry(command)
        duration = time.monotonic() - started
        warnings = [line for line in result.stderr.splitlines() if line.startswith("WARNING")]
        return InstallResult(
            command=command,
            duration_seconds=duration,
            attempts=attempts,
            warnings=warnings,
        )

    def list_installed(self, python: Path) -> list[InstalledPackage]:
        """Return the distributions installed in an environment, pip excluded.

        Raises:
            InstallError: If pip cannot list the environment.

        """
        command = [
            str(python),
            "-m",
            "pip",
            "list",
            "--disable-pip-version-check",
            "--format=json",
            "--exclude",
            "pip",
        ]
        result, _ = self._run_with_retry(command)
        try:
            entries = json.loads(result.stdout or "[]")
        except json.JSONDecodeError as e:
            raise InstallError(
                message=f"Unexpected output from pip list: {e}",
                command=" ".join(command),
            ) from e
        packages = [InstalledPackage(name=entry["name"], version=entry["version"]) for entry in entries]
        return sorted(packages, key=lambda p: p.name.lower())

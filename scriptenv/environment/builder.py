"""Cached virtual environments for scripts.

Each distinct combination of interpreter, requirements, indexes, cut-off date
and project maps to one environment directory under the cache, named after
the digest of that combination. An environment is ready once its marker file
exists; directories without a marker are leftovers of an interrupted build
and are rebuilt from scratch. Builds hold an exclusive lock on a sibling
``.<name>.lock`` file, so concurrent runs of one spec build it once.
"""

from __future__ import annotations

import fcntl
import hashlib
import json
import logging
import os
import shutil
import subprocess
import sys
import tempfile
import time
from collections.abc import Callable, Mapping
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

from scriptenv.config.constants import DEFAULT_INDEX_URL
from scriptenv.environment.installer import IndexOptions, InstalledPackage, PipInstaller
from scriptenv.errors import EnvironmentBuildError
from scriptenv.python.discovery import Interpreter

logger = logging.getLogger(__name__)

ENVIRONMENTS_DIRNAME = "environments-v1"
MARKER_FILENAME = ".scriptenv-env.json"
DIGEST_LENGTH = 16


@dataclass(frozen=True)
class EnvironmentSpec:
    """Everything that determines the contents of an environment."""

    interpreter: Interpreter
    requirements: tuple[str, ...] = ()
    index_url: str = DEFAULT_INDEX_URL
    extra_index_urls: tuple[str, ...] = ()
    exclude_newer: datetime | None = None
    project_root: Path | None = None
    project_digest: str | None = None
    pins: tuple[str, ...] = ()

    @property
    def install_targets(self) -> list[str]:
        """Return the requirement strings handed to pip.

        Pins are a lock file's resolution of the script's dependencies;
        requirements hold whatever the lock does not cover (``--with``).
        """
        return [*self.pins, *self.requirements]

    @property
    def needs_install(self) -> bool:
        """Whether anything must be installed after creating the venv."""
        return bool(self.install_targets) or self.project_root is not None

    def index_options(self) -> IndexOptions:
        """Return the pip index options for this spec."""
        return IndexOptions(
            index_url=self.index_url,
            extra_index_urls=self.extra_index_urls,
            exclude_newer=self.exclude_newer,
        )

    def canonical(self) -> dict[str, Any]:
        """Return a JSON-serializable, order-stable description."""
        return {
            "python": {
                "executable": str(self.interpreter.executable),
                "version": self.interpreter.version,
                "implementation": self.interpreter.implementation,
            },
            "requirements": sorted(self.requirements),
            "pins": sorted(self.pins),
            "index_url": self.index_url,
            "extra_index_urls": list(self.extra_index_urls),
            "exclude_newer": self.exclude_newer.isoformat() if self.exclude_newer else None,
            "project_root": str(self.project_root) if self.project_root else None,
            "project_digest": self.project_digest,
        }

    def digest(self) -> str:
        """Return the sha256 hex digest of the canonical description."""
        payload = json.dumps(self.canonical(), sort_keys=True, separators=(",", ":"))
        return hashlib.sha256(payload.encode("utf-8")).hexdigest()


@dataclass
class Environment:
    """A virtual environment on disk."""

    root: Path
    digest: str
    ephemeral: bool = False
    fresh: bool = False
    packages: list[InstalledPackage] = field(default_factory=list)
    install_seconds: float = 0.0

    @property
    def scripts_dir(self) -> Path:
        """Return the directory holding the environment's executables."""
        return self.root / ("Scripts" if sys.platform == "win32" else "bin")

    @property
    def python(self) -> Path:
        """Return the environment's interpreter."""
        name = "python.exe" if sys.platform == "win32" else "python"
        return self.scripts_dir / name

    @property
    def gui_python(self) -> Path:
        """Return the windowless interpreter on Windows, else the interpreter."""
        if sys.platform == "win32":
            candidate = self.scripts_dir / "pythonw.exe"
            if candidate.exists():
                return candidate
        return self.python

    def child_environ(self, base: Mapping[str, str] | None = None) -> dict[str, str]:
        """Return process environment variables that activate this environment."""
        environ = dict(os.environ if base is None else base)
        environ.pop("PYTHONHOME", None)
        environ["VIRTUAL_ENV"] = str(self.root)
        path = environ.get("PATH", "")
        environ["PATH"] = str(self.scripts_dir) + (os.pathsep + path if path else "")
        return environ

    def remove(self) -> None:
        """Delete the environment directory."""
        shutil.rmtree(self.root, ignore_errors=True)


CommandRunner = Callable[..., subprocess.CompletedProcess]


class EnvironmentBuilder:
    """Create or reuse environments in the cache.

    Example:
        builder = EnvironmentBuilder(cache_dir, PipInstaller())
        env = builder.ensure(EnvironmentSpec(interpreter, ("rich",)))

    """

    def __init__(
        self,
        cache_dir: Path,
        installer: PipInstaller | None = None,
        runner: CommandRunner = subprocess.run,
    ) -> None:
        """Initialize the builder.

        Args:
            cache_dir: Cache root; environments live in a subdirectory.
            installer: Installer used to populate environments.
            runner: subprocess.run-compatible callable (injectable for tests).

        """
        self.cache_dir = cache_dir
        self.installer = installer or PipInstaller()
        self.runner = runner

    @property
    def environments_dir(self) -> Path:
        """Return the directory holding cached environments."""
        return self.cache_dir / ENVIRONMENTS_DIRNAME

    def path_for(self, spec: EnvironmentSpec) -> Path:
        """Return the cache path of the environment for spec."""
        return self.environments_dir / spec.digest()[:DIGEST_LENGTH]

    def _create_venv(self, interpreter: Interpreter, target: Path, with_pip: bool) -> None:
        command = [str(interpreter.executable), "-m", "venv"]
        if not with_pip:
            command.append("--without-pip")
        command.append(str(target))
        logger.debug(f"Running command: {' '.join(command)}")
        try:
            result = self.runner(
                command,
                capture_output=True,
                text=True,
                check=False,
                stdin=subprocess.DEVNULL,
            )
        except OSError as e:
            raise EnvironmentBuildError(
                message=f"Failed to execute {interpreter.executable}: {e}",
                command=" ".join(command),
            ) from e
        if result.returncode != 0:
            raise EnvironmentBuildError(
                message=f"Failed to create virtual environment at {target}",
                command=" ".join(command),
                stderr=result.stderr.strip(),
            )

    def _read_marker(self, root: Path) -> dict[str, Any] | None:
        marker = root / MARKER_FILENAME
        if not marker.is_file():
            return None
        try:
            with open(marker) as f:
                return json.load(f)
        except (OSError, json.JSONDecodeError) as e:
            logger.warning(f"Ignoring unreadable environment marker {marker}: {e}")
            return None

    def _write_marker(self, env: Environment, spec: EnvironmentSpec) -> None:
        data = {
            "digest": env.digest,
            "created_at": datetime.now(timezone.utc).isoformat(),
            "spec": spec.canonical(),
            "packages": [{"name": p.name, "version": p.version} for p in env.packages],
        }
        marker = env.root / MARKER_FILENAME
        temp_path = marker.with_suffix(".tmp")
        with open(temp_path, "w") as f:
            json.dump(data, f, indent=2)
        temp_path.replace(marker)

    def _populate(self, env: Environment, spec: EnvironmentSpec) -> None:
        self._create_venv(spec.interpreter, env.root, with_pip=spec.needs_install)
        if not spec.needs_install:
            return
        editable = [spec.project_root] if spec.project_root is not None else []
        result = self.installer.install(
            env.python, spec.install_targets, spec.index_options(), editable=editable
        )
        logger.debug(
            f"pip install finished in {result.duration_seconds:.2f}s "
            f"after {result.attempts} attempt(s)"
        )
        for warning in result.warnings:
            logger.warning(f"pip: {warning}")
        env.install_seconds = result.duration_seconds
        env.packages = self.installer.list_installed(env.python)

    def ensure(self, spec: EnvironmentSpec, no_cache: bool = False) -> Environment:
        """Return a ready environment for spec, building it if needed.

        Args:
            spec: Environment contents.
            no_cache: Build into a temporary directory the caller removes.

        Returns:
            Environment (``fresh`` is True when it was just built).

        Raises:
            EnvironmentBuildError: If the venv cannot be created.
            InstallError: If installing requirements fails.

        """
        digest = spec.digest()

        if no_cache:
            root = Path(tempfile.mkdtemp(prefix="scriptenv-"))
            env = Environment(root=root, digest=digest, ephemeral=True, fresh=True)
            try:
                self._populate(env, spec)
            except BaseException:
                env.remove()
                raise
            return env

        root = self.path_for(spec)
        root.parent.mkdir(parents=True, exist_ok=True)

        # Concurrent runs of the same spec build one environment; the others wait
        lock_path = root.parent / f".{root.name}.lock"
        with open(lock_path, "w") as lock_file:
            fcntl.flock(lock_file.fileno(), fcntl.LOCK_EX)
            try:
                marker = self._read_marker(root)
                if marker is not None and marker.get("digest") == digest:
                    logger.debug(f"Reusing cached environment {root}")
                    packages = [
                        InstalledPackage(name=p["name"], version=p["version"])
                        for p in marker.get("packages", [])
                    ]
                    return Environment(root=root, digest=digest, packages=packages)

                if root.exists():
                    logger.info(f"Removing incomplete environment {root}")
                    shutil.rmtree(root)

                root.mkdir()
                env = Environment(root=root, digest=digest, fresh=True)
                started = time.monotonic()
                try:
                    self._populate(env, spec)
                    self._write_marker(env, spec)
                except BaseException:
                    env.remove()
                    raise
                logger.info(f"Built environment {root} in {time.monotonic() - started:.2f}s")
                return env
            finally:
                fcntl.flock(lock_file.fileno(), fcntl.LOCK_UN)

    def list_cached(self) -> list[Path]:
        """Return cached environment directories."""
        if not self.environments_dir.is_dir():
            return []
        return sorted(p for p in self.environments_dir.iterdir() if p.is_dir())

    def clean(self) -> int:
        """Remove every cached environment.

        Returns:
            Number of environments removed.

        """
        removed = 0
        for root in self.list_cached():
            shutil.rmtree(root, ignore_errors=True)
            removed += 1
        logger.info(f"Removed {removed} cached environments from {self.environments_dir}")
        return removed

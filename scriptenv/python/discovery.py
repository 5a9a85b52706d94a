"""Interpreter discovery.

Finds Python interpreters already installed on the machine and picks the one
that satisfies a request and a script's ``requires-python``. Interpreters are
never downloaded.
"""

from __future__ import annotations

import json
import logging
import os
import shutil
import subprocess
import sys
from collections.abc import Callable, Iterator
from dataclasses import dataclass
from pathlib import Path

from packaging.specifiers import SpecifierSet
from packaging.version import InvalidVersion, Version

from scriptenv.errors import InterpreterNotFoundError
from scriptenv.python.request import PythonRequest, RequestKind

logger = logging.getLogger(__name__)

# Newest minor version tried as a pythonX.Y executable name.
MAX_MINOR = 20
MIN_MINOR = 8

_QUERY_SCRIPT = (
    "import json, platform, sys; "
    "print(json.dumps({"
    "'version': platform.python_version(), "
    "'implementation': sys.implementation.name}))"
)


@dataclass(frozen=True)
class Interpreter:
    """An installed Python interpreter."""

    executable: Path
    version: str
    implementation: str = "cpython"

    @property
    def version_tuple(self) -> tuple[int, ...]:
        """Return (major, minor, micro) ignoring pre-release suffixes."""
        return Version(self.version).release

    @property
    def minor_version(self) -> str:
        """Return ``major.minor`` (e.g. ``3.12``)."""
        major, minor = self.version_tuple[:2]
        return f"{major}.{minor}"

    def satisfies(self, specifier: SpecifierSet) -> bool:
        """Check the interpreter version against a requires-python specifier."""
        return specifier.contains(Version(self.version), prereleases=True)


CommandRunner = Callable[..., subprocess.CompletedProcess]


class InterpreterFinder:
    """Enumerate and query interpreters on the search path.

    Example:
        finder = InterpreterFinder()
        interpreter = finder.find(PythonRequest.parse("3.12"))

    """

    def __init__(
        self,
        search_path: str | None = None,
        runner: CommandRunner = subprocess.run,
        timeout: float = 10.0,
    ) -> None:
        """Initialize the finder.

        Args:
            search_path: PATH-style string to search. Defaults to $PATH.
            runner: subprocess.run-compatible callable (injectable for tests).
            timeout: Seconds allowed for each interpreter query.

        """
        self.search_path = os.environ.get("PATH", "") if search_path is None else search_path
        self.runner = runner
        self.timeout = timeout
        self._cache: dict[Path, Interpreter | None] = {}

    def _which(self, name: str) -> Path | None:
        found = shutil.which(name, path=self.search_path)
        return Path(found) if found else None

    def _path_candidate(self, path: Path) -> Path:
        if path.is_dir():
            for relative in ("bin/python3", "bin/python", "Scripts/python.exe"):
                if (path / relative).exists():
                    return path / relative
        return path

    def candidates(self, request: PythonRequest) -> Iterator[Path]:
        """Yield executable paths to query for a request, in priority order."""
        if request.kind == RequestKind.PATH:
            assert request.path is not None  # noqa: S101
            yield self._path_candidate(request.path)
            return

        if request.kind == RequestKind.EXECUTABLE:
            found = self._which(request.text)
            if found is not None:
                yield found
            return

        for minor in range(MAX_MINOR, MIN_MINOR - 1, -1):
            found = self._which(f"python3.{minor}")
            if found is not None:
                yield found
        for name in ("python3", "python"):
            found = self._which(name)
            if found is not None:
                yield found
        yield Path(sys.executable)

    def query(self, executable: Path) -> Interpreter | None:
        """Ask an executable for its version information.

        Returns:
            Interpreter, or None if the executable is not a working Python.

        """
        try:
            key = executable.resolve()
        except OSError:
            key = executable
        if key in self._cache:
            return self._cache[key]

        interpreter: Interpreter | None = None
        try:
            result = self.runner(
                [str(executable), "-I", "-c", _QUERY_SCRIPT],
                capture_output=True,
                text=True,
                timeout=self.timeout,
                check=False,
                stdin=subprocess.DEVNULL,
            )
            if result.returncode == 0:
                data = json.loads(result.stdout)
                interpreter = Interpreter(
                    executable=executable,
                    version=data["version"],
                    implementation=data.get("implementation", "cpython"),
                )
                # Reject versions packaging cannot order
                Version(interpreter.version)
            else:
                logger.debug(f"Interpreter query failed for {executable}: {result.stderr.strip()}")
        except (OSError, subprocess.TimeoutExpired) as e:
            logger.debug(f"Failed to query {executable}: {e}")
        except (json.JSONDecodeError, KeyError, InvalidVersion) as e:
            logger.debug(f"Unexpected interpreter info from {executable}: {e}")
            interpreter = None

        self._cache[key] = interpreter
        return interpreter

    def discover(self, request: PythonRequest | None = None) -> list[Interpreter]:
        """Return distinct working interpreters for a request, in priority order."""
        request = request or PythonRequest.any()
        found: list[Interpreter] = []
        seen: set[Path] = set()
        for executable in self.candidates(request):
            interpreter = self.query(executable)
            if interpreter is None:
                continue
            identity = Path(interpreter.executable).resolve()
            if identity in seen:
                continue
            seen.add(identity)
            found.append(interpreter)
        return found

    def find(
        self,
        request: PythonRequest | None = None,
        requires_python: SpecifierSet | None = None,
    ) -> Interpreter:
        """Select an interpreter.

        With an explicit request, the first matching interpreter wins even if
        it violates requires_python (a warning is logged). Without one, the
        newest interpreter satisfying requires_python wins, or the first
        discovered interpreter when there is no constraint.

        Raises:
            InterpreterNotFoundError: If nothing matches.

        """
        request = request or PythonRequest.any()
        interpreters = self.discover(request)

        if request.kind != RequestKind.ANY:
            for interpreter in interpreters:
                if request.matches(interpreter):
                    if requires_python is not None and not interpreter.satisfies(requires_python):
                        logger.warning(
                            f"The requested interpreter resolved to Python {interpreter.version}, "
                            f"which is incompatible with the script's Python requirement: "
                            f"`{requires_python}`"
                        )
                    logger.debug(f"Using Python {interpreter.version} at {interpreter.executable}")
                    return interpreter
            raise InterpreterNotFoundError(f"No interpreter found for Python {request}")

        if requires_python is not None:
            compatible = [i for i in interpreters if i.satisfies(requires_python)]
            if not compatible:
                raise InterpreterNotFoundError(
                    f"No interpreter found for Python {requires_python}"
                )
            chosen = max(compatible, key=lambda i: Version(i.version))
        elif interpreters:
            chosen = interpreters[0]
        else:
            raise InterpreterNotFoundError("No Python interpreter found on the search path")

        logger.debug(f"Using Python {chosen.version} at {chosen.executable}")
        return chosen

"""Discovery of the project enclosing the working directory.

A project is a directory whose ``pyproject.toml`` has a ``[project]`` table.
Scripts without inline metadata run with that project installed; inline
metadata or ``--no-project`` isolates them from it.
"""

from __future__ import annotations

import hashlib
import logging
import tomllib
from dataclasses import dataclass
from pathlib import Path

from packaging.specifiers import SpecifierSet

from scriptenv.config.constants import TOOL_NAME
from scriptenv.errors import ProjectError
from scriptenv.requirements import parse_specifier

logger = logging.getLogger(__name__)

PYPROJECT = "pyproject.toml"


@dataclass(frozen=True)
class Project:
    """A project found above the working directory."""

    root: Path
    name: str
    requires_python: str | None
    digest: str

    def python_specifier(self) -> SpecifierSet | None:
        """Return requires-python as a SpecifierSet, if declared."""
        return parse_specifier(self.requires_python) if self.requires_python else None


def load_project(pyproject: Path) -> Project | None:
    """Read a pyproject.toml.

    Returns:
        Project, or None if the file has no ``[project]`` table or opts out
        with ``[tool.scriptenv] managed = false``.

    Raises:
        ProjectError: If the file cannot be read or parsed.

    """
    try:
        raw = pyproject.read_bytes()
        data = tomllib.loads(raw.decode("utf-8"))
    except (OSError, UnicodeDecodeError) as e:
        raise ProjectError(f"Failed to read {pyproject}: {e}") from e
    except tomllib.TOMLDecodeError as e:
        raise ProjectError(f"Invalid TOML in {pyproject}: {e}") from e

    table = data.get("project")
    if not isinstance(table, dict):
        return None

    tool = data.get("tool", {}).get(TOOL_NAME, {})
    if tool.get("managed") is False:
        logger.debug(f"Project at {pyproject.parent} is not managed; ignoring")
        return None

    name = table.get("name")
    if not isinstance(name, str) or not name.strip():
        raise ProjectError(f"Missing `project.name` in {pyproject}")

    requires_python = table.get("requires-python")
    if requires_python is not None:
        parse_specifier(requires_python)

    return Project(
        root=pyproject.parent,
        name=name.strip(),
        requires_python=requires_python,
        digest=hashlib.sha256(raw).hexdigest(),
    )


def find_project(start: Path | None = None) -> Project | None:
    """Return the nearest project at or above start (default: cwd)."""
    start = (Path.cwd() if start is None else start).resolve()
    for directory in (start, *start.parents):
        pyproject = directory / PYPROJECT
        if pyproject.is_file():
            project = load_project(pyproject)
            if project is not None:
                logger.debug(f"Found project `{project.name}` at {project.root}")
                return project
    return None

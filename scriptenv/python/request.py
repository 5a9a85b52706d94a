"""Parsing of ``--python`` requests."""

from __future__ import annotations

import re
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import TYPE_CHECKING

from packaging.specifiers import InvalidSpecifier, SpecifierSet
from packaging.version import Version

from scriptenv.errors import ConfigurationError

if TYPE_CHECKING:
    from scriptenv.python.discovery import Interpreter

_VERSION_REGEX = re.compile(r"^\d+(\.\d+){0,2}$")
_EXECUTABLE_REGEX = re.compile(r"^python(\d+(\.\d+)?)?w?(\.exe)?$", re.IGNORECASE)
_SPECIFIER_PREFIXES = ("<", ">", "=", "!", "~")


class RequestKind(str, Enum):
    """How a Python request selects interpreters."""

    ANY = "any"
    VERSION = "version"
    SPECIFIER = "specifier"
    EXECUTABLE = "executable"
    PATH = "path"


@dataclass(frozen=True)
class PythonRequest:
    """A parsed interpreter request such as ``3.12`` or ``>=3.11,<3.13``."""

    kind: RequestKind
    text: str = ""
    version: tuple[int, ...] | None = None
    specifier: SpecifierSet | None = None

    @classmethod
    def any(cls) -> PythonRequest:
        """Return a request matched by every interpreter."""
        return cls(kind=RequestKind.ANY)

    @classmethod
    def parse(cls, text: str) -> PythonRequest:
        """Parse a request string.

        Accepted forms: a version prefix (``3``, ``3.12``, ``3.12.4``), a
        PEP 440 specifier (``>=3.11,<3.13``), an executable name
        (``python3.12``), or a filesystem path.

        Raises:
            ConfigurationError: If the text matches none of the forms.

        """
        value = text.strip()
        if not value:
            raise ConfigurationError("Python request cannot be empty")

        if _VERSION_REGEX.match(value):
            return cls(
                kind=RequestKind.VERSION,
                text=value,
                version=tuple(int(part) for part in value.split(".")),
            )

        if value.startswith(_SPECIFIER_PREFIXES):
            try:
                return cls(kind=RequestKind.SPECIFIER, text=value, specifier=SpecifierSet(value))
            except InvalidSpecifier as e:
                raise ConfigurationError(f"Invalid Python request {value!r}: {e}") from e

        if "/" in value or "\\" in value or value.startswith((".", "~")):
            return cls(kind=RequestKind.PATH, text=value)

        if _EXECUTABLE_REGEX.match(value):
            return cls(kind=RequestKind.EXECUTABLE, text=value)

        raise ConfigurationError(f"Invalid Python request {value!r}")

    @property
    def path(self) -> Path | None:
        """Return the requested path for PATH requests."""
        return Path(self.text).expanduser() if self.kind == RequestKind.PATH else None

    def matches(self, interpreter: Interpreter) -> bool:
        """Check whether an interpreter satisfies this request.

        EXECUTABLE and PATH requests are satisfied by construction: their
        single candidate is the interpreter the request names.
        """
        if self.kind == RequestKind.VERSION:
            assert self.version is not None  # noqa: S101
            return interpreter.version_tuple[: len(self.version)] == self.version
        if self.kind == RequestKind.SPECIFIER:
            assert self.specifier is not None  # noqa: S101
            return self.specifier.contains(Version(interpreter.version), prereleases=True)
        return True

    def __str__(self) -> str:
        """Return the request as the user wrote it."""
        return self.text or "any Python"

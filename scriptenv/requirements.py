"""Requirement string helpers.

Thin wrappers over ``packaging`` for parsing PEP 508 requirements,
normalizing distribution names, and layering ``--with`` requirements on top
of a script's own dependencies.
"""

from __future__ import annotations

from collections.abc import Iterable

from packaging.requirements import InvalidRequirement, Requirement
from packaging.specifiers import InvalidSpecifier, SpecifierSet
from packaging.utils import canonicalize_name

from scriptenv.errors import RequirementError


def parse_requirement(text: str) -> Requirement:
    """Parse a PEP 508 requirement string.

    Args:
        text: Requirement such as ``"rich>12,<13"``.

    Returns:
        Parsed Requirement.

    Raises:
        RequirementError: If the string is not a valid requirement.

    """
    try:
        return Requirement(text.strip())
    except InvalidRequirement as e:
        raise RequirementError(f"Invalid requirement {text!r}: {e}") from e


def parse_specifier(text: str) -> SpecifierSet:
    """Parse a PEP 440 version specifier such as ``">=3.11"``."""
    try:
        return SpecifierSet(text)
    except InvalidSpecifier as e:
        raise RequirementError(f"Invalid version specifier {text!r}: {e}") from e


def requirement_name(text: str) -> str:
    """Return the normalized distribution name of a requirement string."""
    return canonicalize_name(parse_requirement(text).name)


def normalize_name(name: str) -> str:
    """Normalize a bare distribution name (``Foo_Bar`` -> ``foo-bar``)."""
    return canonicalize_name(name)


def merge_requirements(base: Iterable[str], extra: Iterable[str]) -> list[str]:
    """Layer extra requirements on top of base requirements.

    Every entry is validated. Exact duplicates are dropped while preserving
    first-seen order, so ``merge_requirements(["rich"], ["rich"])`` yields a
    single entry. Distinct constraints on the same name are kept side by
    side and left to the installer to intersect.

    Args:
        base: Requirements from the script metadata or project.
        extra: Requirements from ``--with``.

    Returns:
        Merged list of requirement strings.

    """
    merged: list[str] = []
    seen: set[str] = set()
    for text in [*base, *extra]:
        key = str(parse_requirement(text))
        if key in seen:
            continue
        seen.add(key)
        merged.append(text.strip())
    return merged

"""Pydantic models for inline script metadata."""

from __future__ import annotations

import tomllib
from pathlib import Path
from typing import Any

from packaging.specifiers import SpecifierSet
from pydantic import (
    AwareDatetime,
    BaseModel,
    ConfigDict,
    Field,
    ValidationError,
    field_validator,
)

from scriptenv.config.constants import TOOL_NAME
from scriptenv.errors import MetadataError, RequirementError
from scriptenv.metadata.block import find_script_block
from scriptenv.requirements import parse_requirement, parse_specifier


class IndexEntry(BaseModel):
    """A package index declared in ``[[tool.scriptenv.index]]``."""

    url: str = Field(..., description="Simple-API index URL")
    name: str | None = Field(default=None, description="Optional index label")
    default: bool = Field(default=False, description="Replace the default index")

    @field_validator("url")
    @classmethod
    def validate_url(cls, v: str) -> str:
        """Reject empty URLs."""
        if not v or not v.strip():
            raise ValueError("Index URL cannot be empty")
        return v.strip()


class ToolSettings(BaseModel):
    """Settings read from the ``[tool.scriptenv]`` table."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    exclude_newer: AwareDatetime | None = Field(default=None, alias="exclude-newer")
    index: list[IndexEntry] = Field(default_factory=list)


class ScriptMetadata(BaseModel):
    """Parsed ``script`` metadata block."""

    model_config = ConfigDict(populate_by_name=True, extra="allow")

    dependencies: list[str] = Field(default_factory=list)
    requires_python: str | None = Field(default=None, alias="requires-python")
    tool: dict[str, Any] = Field(default_factory=dict)

    @field_validator("dependencies")
    @classmethod
    def validate_dependencies(cls, v: list[str]) -> list[str]:
        """Ensure every dependency is a valid PEP 508 requirement."""
        for entry in v:
            try:
                parse_requirement(entry)
            except RequirementError as e:
                raise ValueError(e.message)
        return [entry.strip() for entry in v]

    @field_validator("requires_python")
    @classmethod
    def validate_requires_python(cls, v: str | None) -> str | None:
        """Ensure requires-python is a valid specifier set."""
        if v is None:
            return v
        try:
            parse_specifier(v)
        except RequirementError as e:
            raise ValueError(e.message)
        return v.strip()

    @property
    def settings(self) -> ToolSettings:
        """Return the validated ``[tool.scriptenv]`` settings."""
        return ToolSettings.model_validate(self.tool.get(TOOL_NAME, {}))

    def python_specifier(self) -> SpecifierSet | None:
        """Return requires-python as a SpecifierSet, if declared."""
        return SpecifierSet(self.requires_python) if self.requires_python else None


def read_metadata(source: str, origin: str = "<script>") -> ScriptMetadata | None:
    """Parse the ``script`` metadata block of source text.

    Args:
        source: Script source.
        origin: Name used in error messages.

    Returns:
        ScriptMetadata, or None when the source has no ``script`` block.

    Raises:
        MetadataError: If the block is duplicated, is not valid TOML, or
            holds invalid field values.

    """
    block = find_script_block(source, origin)
    if block is None:
        return None

    try:
        data = tomllib.loads(block.content)
    except tomllib.TOMLDecodeError as e:
        raise MetadataError(f"Invalid TOML in the metadata block of {origin}: {e}") from e

    try:
        metadata = ScriptMetadata.model_validate(data)
        # Surface [tool.scriptenv] errors while the origin is known
        _ = metadata.settings
    except ValidationError as e:
        raise MetadataError(f"Invalid script metadata in {origin}: {e}") from e
    return metadata


def read_script(path: Path) -> ScriptMetadata | None:
    """Read the metadata block of a script file.

    Raises:
        MetadataError: If the file cannot be read or its block is invalid.

    """
    try:
        source = path.read_text(encoding="utf-8-sig")
    except (OSError, UnicodeDecodeError) as e:
        raise MetadataError(f"Failed to read script {path}: {e}") from e
    return read_metadata(source, origin=f"`{path.name}`")

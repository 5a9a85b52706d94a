"""Locating and rendering inline metadata comment blocks.

A block looks like::

    # /// script
    # dependencies = ["rich"]
    # ///

Every line between the opening and closing markers is either ``#`` alone or
starts with ``# ``. The block type after ``///`` selects the consumer; only
``script`` blocks carry script metadata.
"""

from __future__ import annotations

import re
from dataclasses import dataclass

from scriptenv.errors import MetadataError

BLOCK_TYPE = "script"

BLOCK_REGEX = re.compile(
    r"(?m)^# /// (?P<type>[a-zA-Z0-9-]+)$\s(?P<content>(^#(| .*)$\s)+)^# ///$"
)

_ENCODING_REGEX = re.compile(r"^[ \t\f]*#.*?coding[:=][ \t]*[-_.a-zA-Z0-9]+")


@dataclass(frozen=True)
class MetadataBlock:
    """A single metadata block found in a source file.

    Attributes:
        type: Block type (``script`` for script metadata).
        content: TOML text with the comment prefixes removed.
        start: Offset of the opening marker in the normalized source.
        end: Offset just past the closing marker (before its newline).

    """

    type: str
    content: str
    start: int
    end: int


def normalize_newlines(text: str) -> str:
    """Convert CRLF and CR line endings to LF."""
    return text.replace("\r\n", "\n").replace("\r", "\n")


def _strip_comment(line: str) -> str:
    return line[2:] if line.startswith("# ") else line[1:]


def find_blocks(source: str) -> list[MetadataBlock]:
    """Return every well-formed metadata block in source order.

    Unclosed blocks are not matched and are therefore ignored.
    """
    text = normalize_newlines(source)
    blocks = []
    for match in BLOCK_REGEX.finditer(text):
        content = "".join(
            _strip_comment(line) for line in match.group("content").splitlines(keepends=True)
        )
        blocks.append(
            MetadataBlock(
                type=match.group("type"),
                content=content,
                start=match.start(),
                end=match.end(),
            )
        )
    return blocks


def find_script_block(source: str, origin: str = "<script>") -> MetadataBlock | None:
    """Return the single ``script`` block of source, or None.

    Args:
        source: Script source text.
        origin: Name used in error messages.

    Raises:
        MetadataError: If more than one ``script`` block is present.

    """
    matches = [block for block in find_blocks(source) if block.type == BLOCK_TYPE]
    if len(matches) > 1:
        raise MetadataError(f"Multiple `{BLOCK_TYPE}` metadata blocks found in {origin}")
    return matches[0] if matches else None


def render_block(content: str, block_type: str = BLOCK_TYPE) -> str:
    """Render TOML content as a commented block ending with a newline."""
    lines = [f"# /// {block_type}"]
    for line in content.rstrip("\n").split("\n") if content.strip() else []:
        lines.append(f"# {line}" if line else "#")
    lines.append("# ///")
    return "\n".join(lines) + "\n"


def header_end(source: str) -> int:
    """Return the offset after a leading shebang and encoding declaration.

    New blocks are inserted at this offset so that ``#!`` stays on the first
    line and a PEP 263 coding comment stays within the first two lines.
    """
    offset = 0
    lines = source.splitlines(keepends=True)
    for index, line in enumerate(lines[:2]):
        if (index == 0 and line.startswith("#!")) or _ENCODING_REGEX.match(line):
            offset += len(line)
        else:
            break
    return offset

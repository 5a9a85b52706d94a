"""Creating and editing inline script metadata in place.

Edits go through tomlkit so that comments and formatting elsewhere in the
block survive a round trip. Only the ``script`` block is touched; the rest
of the file is preserved byte for byte.
"""

from __future__ import annotations

import bisect
import codecs
import logging
from pathlib import Path

import tomlkit
from tomlkit.exceptions import TOMLKitError
from tomlkit.items import AoT, Array, Table
from tomlkit.toml_document import TOMLDocument

from scriptenv.config.constants import TOOL_NAME
from scriptenv.errors import MetadataError
from scriptenv.metadata.block import find_script_block, header_end, render_block
from scriptenv.requirements import normalize_name, parse_requirement, requirement_name

logger = logging.getLogger(__name__)

SCRIPT_BODY = '''

def main() -> None:
    print("Hello from {name}!")


if __name__ == "__main__":
    main()
'''


def _read_source(path: Path) -> tuple[str, str]:
    """Return the text of path with its line endings intact, and its codec."""
    try:
        data = path.read_bytes()
        encoding = "utf-8-sig" if data.startswith(codecs.BOM_UTF8) else "utf-8"
        return data.decode(encoding), encoding
    except (OSError, UnicodeDecodeError) as e:
        raise MetadataError(f"Failed to read script {path}: {e}") from e


def _write_source(path: Path, source: str, encoding: str = "utf-8") -> None:
    try:
        path.write_bytes(source.encode(encoding))
    except OSError as e:
        raise MetadataError(f"Failed to write script {path}: {e}") from e


def _parse_document(content: str, origin: str) -> TOMLDocument:
    try:
        return tomlkit.parse(content)
    except TOMLKitError as e:
        raise MetadataError(f"Invalid TOML in the metadata block of {origin}: {e}") from e


def _new_document(requires_python: str | None) -> TOMLDocument:
    document = tomlkit.document()
    if requires_python:
        document["requires-python"] = requires_python
    document["dependencies"] = tomlkit.array()
    return document


def _newline(source: str) -> str:
    """Return the line ending of the first line of source."""
    end = source.find("\n")
    if end > 0 and source[end - 1] == "\r":
        return "\r\n"
    return "\n"


def _raw_offset(source: str, offset: int) -> int:
    """Map an offset in the LF-normalized source back onto source."""
    position = 0
    for _ in range(offset):
        position += 2 if source.startswith("\r\n", position) else 1
    return position


def _splice(source: str, document: TOMLDocument, path: Path) -> str:
    """Replace (or insert) the script block of source with document.

    Text outside the block is kept as is, line endings included; the block
    itself is written with the line ending of the file's first line.
    """
    newline = _newline(source)
    rendered = render_block(tomlkit.dumps(document)).replace("\n", newline)
    block = find_script_block(source, origin=f"`{path.name}`")
    if block is not None:
        start = _raw_offset(source, block.start)
        end = _raw_offset(source, block.end)
        return source[:start] + rendered[: -len(newline)] + source[end:]

    offset = header_end(source)
    head = source[:offset]
    if head and not head.endswith(("\n", "\r")):
        head += newline
    rest = source[offset:]
    separator = newline if rest and not rest.startswith(("\n", "\r")) else ""
    return head + rendered + separator + rest


def _dependency_array(items: list[str]) -> Array:
    array = tomlkit.array()
    for item in items:
        array.append(item)
    if items:
        array.multiline(True)
    return array


def _load(path: Path) -> tuple[str, str, TOMLDocument | None]:
    source, encoding = _read_source(path)
    block = find_script_block(source, origin=f"`{path.name}`")
    if block is None:
        return source, encoding, None
    return source, encoding, _parse_document(block.content, f"`{path.name}`")


def init_script(
    path: Path,
    requires_python: str | None = None,
    with_body: bool = True,
) -> None:
    """Create a script with an empty metadata block.

    If the file does not exist it is created with the block followed by a
    minimal ``main()``. If it exists without a block, the block is inserted
    after any shebang or encoding line and the body is left untouched.

    Args:
        path: Script path.
        requires_python: Value for ``requires-python`` (e.g. ``">=3.12"``).
        with_body: Whether to write the hello-world body for new files.

    Raises:
        MetadataError: If the file already holds a ``script`` block.

    """
    document = _new_document(requires_python)

    if not path.exists():
        source = render_block(tomlkit.dumps(document))
        if with_body:
            source += SCRIPT_BODY.format(name=path.name)
        path.parent.mkdir(parents=True, exist_ok=True)
        _write_source(path, source)
        logger.info(f"Initialized script {path}")
        return

    source, encoding, existing = _load(path)
    if existing is not None:
        raise MetadataError(f"`{path.name}` is already a script with inline metadata")
    _write_source(path, _splice(source, document, path), encoding)
    logger.info(f"Added inline metadata to {path}")


def _is_sorted(items: list[str]) -> bool:
    keys = [requirement_name(item) for item in items]
    return keys == sorted(keys)


def _tool_section(document: TOMLDocument) -> Table:
    if TOOL_NAME in document.get("tool", {}):
        return document["tool"][TOOL_NAME]
    if "tool" not in document:
        document["tool"] = tomlkit.table(is_super_table=True)
    document["tool"][TOOL_NAME] = tomlkit.table(is_super_table=True)
    return document["tool"][TOOL_NAME]


def add_index(document: TOMLDocument, url: str) -> bool:
    """Append ``[[tool.scriptenv.index]]`` for url unless already present.

    Returns:
        True if an entry was added.

    """
    section = _tool_section(document)
    indexes = section.get("index")
    if indexes is None:
        indexes = tomlkit.aot()
        section["index"] = indexes
    elif not isinstance(indexes, AoT):
        raise MetadataError("`tool.scriptenv.index` must be an array of tables")

    if any(str(entry.get("url", "")).rstrip("/") == url.rstrip("/") for entry in indexes):
        return False
    entry = tomlkit.table()
    entry["url"] = url
    indexes.append(entry)
    return True


def add_dependencies(
    path: Path,
    requirements: list[str],
    index: str | None = None,
    requires_python: str | None = None,
) -> list[str]:
    """Add requirements to a script's metadata block.

    A requirement whose normalized name is already listed replaces that
    entry in place. New entries are appended, or inserted in order when the
    existing list is sorted by name.

    Args:
        path: Script path (must exist).
        requirements: PEP 508 requirement strings.
        index: Optional index URL to record in ``[[tool.scriptenv.index]]``.
        requires_python: ``requires-python`` for a newly created block.

    Returns:
        The resulting dependency list.

    Raises:
        MetadataError: If the script is missing or its block is invalid.

    """
    if not path.exists():
        raise MetadataError(f"Script not found: {path}")

    for requirement in requirements:
        parse_requirement(requirement)

    source, encoding, document = _load(path)
    if document is None:
        document = _new_document(requires_python)

    current = [str(item) for item in document.get("dependencies", [])]
    keep_sorted = _is_sorted(current)
    for requirement in requirements:
        requirement = requirement.strip()
        name = requirement_name(requirement)
        names = [requirement_name(item) for item in current]
        if name in names:
            current[names.index(name)] = requirement
        elif keep_sorted:
            current.insert(bisect.bisect(names, name), requirement)
        else:
            current.append(requirement)

    document["dependencies"] = _dependency_array(current)
    if index is not None:
        add_index(document, index)

    _write_source(path, _splice(source, document, path), encoding)
    logger.info(f"Updated dependencies of {path}: {current}")
    return current


def remove_dependencies(path: Path, names: list[str]) -> list[str]:
    """Remove dependencies by distribution name.

    Returns:
        The remaining dependency list.

    Raises:
        MetadataError: If the script has no block or a name is not listed.

    """
    if not path.exists():
        raise MetadataError(f"Script not found: {path}")

    source, encoding, document = _load(path)
    if document is None:
        raise MetadataError(f"`{path.name}` has no inline script metadata")

    current = [str(item) for item in document.get("dependencies", [])]
    for name in names:
        target = normalize_name(name)
        remaining = [item for item in current if requirement_name(item) != target]
        if len(remaining) == len(current):
            raise MetadataError(f"The dependency `{name}` could not be found in `dependencies`")
        current = remaining

    document["dependencies"] = _dependency_array(current)
    _write_source(path, _splice(source, document, path), encoding)
    logger.info(f"Updated dependencies of {path}: {current}")
    return current

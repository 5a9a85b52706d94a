"""Inline script metadata.

This module reads and edits the ``# /// script`` comment block that declares
a standalone script's dependencies and Python requirement.

Example:
    from scriptenv.metadata import add_dependencies, read_script

    add_dependencies(Path("example.py"), ["requests<3", "rich"])
    metadata = read_script(Path("example.py"))

"""

from .block import MetadataBlock, find_blocks, find_script_block, render_block
from .editor import add_dependencies, add_index, init_script, remove_dependencies
from .models import IndexEntry, ScriptMetadata, ToolSettings, read_metadata, read_script

__all__ = [
    "IndexEntry",
    "MetadataBlock",
    "ScriptMetadata",
    "ToolSettings",
    "add_dependencies",
    "add_index",
    "find_blocks",
    "find_script_block",
    "init_script",
    "read_metadata",
    "read_script",
    "remove_dependencies",
    "render_block",
]

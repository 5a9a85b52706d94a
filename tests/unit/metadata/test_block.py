"""Tests for locating and rendering metadata comment blocks."""

import pytest

from scriptenv.errors import MetadataError
from scriptenv.metadata.block import (
    find_blocks,
    find_script_block,
    header_end,
    render_block,
)

SCRIPT = """\
# /// script
# requires-python = ">=3.11"
# dependencies = [
#   "requests<3",
#   "rich",
# ]
# ///

import requests
"""


class TestFindBlocks:
    """Tests for find_blocks."""

    def test_extracts_content_without_prefixes(self) -> None:
        """Comment prefixes are stripped from every content line."""
        blocks = find_blocks(SCRIPT)

        assert len(blocks) == 1
        assert blocks[0].type == "script"
        assert blocks[0].content == (
            'requires-python = ">=3.11"\n'
            "dependencies = [\n"
            '  "requests<3",\n'
            '  "rich",\n'
            "]\n"
        )

    def test_bare_hash_lines_become_blank(self) -> None:
        """A line holding only '#' is an empty content line."""
        source = '# /// script\n# dependencies = []\n#\n# requires-python = ">=3.8"\n# ///\n'
        block = find_script_block(source)

        assert block is not None
        assert block.content == 'dependencies = []\n\nrequires-python = ">=3.8"\n'

    def test_unclosed_block_is_ignored(self) -> None:
        """A block without a closing marker is not a block."""
        source = "# /// script\n# dependencies = []\nprint('hi')\n"
        assert find_blocks(source) == []

    def test_other_block_types_are_reported(self) -> None:
        """Blocks of other types are found but not treated as script metadata."""
        source = "# /// pyproject\n# x = 1\n# ///\n"
        assert [b.type for b in find_blocks(source)] == ["pyproject"]
        assert find_script_block(source) is None

    def test_crlf_line_endings(self) -> None:
        """Windows line endings are normalized before matching."""
        source = SCRIPT.replace("\n", "\r\n")
        block = find_script_block(source)
        assert block is not None
        assert "rich" in block.content

    def test_span_covers_markers(self) -> None:
        """start/end delimit the opening and closing markers."""
        block = find_script_block(SCRIPT)
        assert block is not None
        assert SCRIPT[block.start :].startswith("# /// script")
        assert SCRIPT[: block.end].endswith("# ///")


class TestFindScriptBlock:
    """Tests for find_script_block."""

    def test_multiple_script_blocks_error(self) -> None:
        """Two script blocks are ambiguous."""
        source = SCRIPT + "\n" + SCRIPT
        with pytest.raises(MetadataError, match="Multiple `script` metadata blocks"):
            find_script_block(source, origin="`example.py`")

    def test_no_block(self) -> None:
        """Plain scripts have no block."""
        assert find_script_block("print('hello')\n") is None


class TestRenderBlock:
    """Tests for render_block."""

    def test_renders_comment_block(self) -> None:
        """Content lines are prefixed and wrapped in markers."""
        rendered = render_block('dependencies = []\n\nrequires-python = ">=3.12"\n')
        assert rendered == (
            "# /// script\n"
            "# dependencies = []\n"
            "#\n"
            '# requires-python = ">=3.12"\n'
            "# ///\n"
        )

    def test_rendered_block_is_found_again(self) -> None:
        """Rendered output is recognised by the parser."""
        block = find_script_block(render_block('dependencies = ["rich"]\n'))
        assert block is not None
        assert block.content == 'dependencies = ["rich"]\n'


class TestHeaderEnd:
    """Tests for header_end."""

    def test_no_header(self) -> None:
        """Scripts without shebang start at offset zero."""
        assert header_end("import sys\n") == 0

    def test_shebang(self) -> None:
        """The shebang line is skipped."""
        source = "#!/usr/bin/env python3\nimport sys\n"
        assert source[header_end(source) :] == "import sys\n"

    def test_shebang_and_encoding(self) -> None:
        """A coding declaration on line two is skipped too."""
        source = "#!/usr/bin/env python3\n# -*- coding: utf-8 -*-\nimport sys\n"
        assert source[header_end(source) :] == "import sys\n"

    def test_shebang_must_be_first(self) -> None:
        """A shebang on the second line is not a header."""
        source = "import os\n#!/usr/bin/env python3\n"
        assert header_end(source) == 0

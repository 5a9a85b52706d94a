"""Shared test fixtures."""

import sys
from pathlib import Path

import pytest

from scriptenv.config import Settings
from scriptenv.python import Interpreter


@pytest.fixture
def interpreter() -> Interpreter:
    """Return an interpreter record pointing at the running Python."""
    return Interpreter(executable=Path(sys.executable), version="3.12.4")


@pytest.fixture
def settings(tmp_path: Path) -> Settings:
    """Return settings with the cache rooted in a temporary directory."""
    return Settings(cache_dir=tmp_path / "cache")


@pytest.fixture
def write_script(tmp_path: Path):
    """Return a helper that writes a script into tmp_path."""

    def _write(name: str, content: str) -> Path:
        path = tmp_path / name
        path.write_text(content, encoding="utf-8")
        return path

    return _write

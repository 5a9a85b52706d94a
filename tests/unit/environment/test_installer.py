"""Tests for the pip installer."""

import json
import subprocess
from datetime import datetime, timezone
from pathlib import Path
from unittest.mock import MagicMock

import pytest

from scriptenv.config import InstallSettings
from scriptenv.environment import IndexOptions, InstalledPackage, PipInstaller
from scriptenv.errors import InstallError

PYTHON = Path("/envs/abc/bin/python")


def _completed(returncode: int = 0, stdout: str = "", stderr: str = "") -> subprocess.CompletedProcess:
    return subprocess.CompletedProcess([], returncode, stdout=stdout, stderr=stderr)


@pytest.fixture
def sleep() -> MagicMock:
    """Return a sleep stand-in that records delays."""
    return MagicMock()


class TestIndexOptions:
    """Tests for IndexOptions.as_pip_args."""

    def test_default_index(self) -> None:
        """The default index is always passed explicitly."""
        assert IndexOptions().as_pip_args() == ["--index-url", "https://pypi.org/simple"]

    def test_extra_indexes_and_cutoff(self) -> None:
        """Extra indexes and exclude-newer become pip flags."""
        options = IndexOptions(
            index_url="https://mirror.example.com/simple",
            extra_index_urls=("https://example.com/simple",),
            exclude_newer=datetime(2023, 10, 16, tzinfo=timezone.utc),
        )
        assert options.as_pip_args() == [
            "--index-url",
            "https://mirror.example.com/simple",
            "--extra-index-url",
            "https://example.com/simple",
            "--uploaded-prior-to",
            "2023-10-16T00:00:00+00:00",
        ]


class TestBuildCommand:
    """Tests for PipInstaller.build_command."""

    def test_command_shape(self) -> None:
        """Requirements follow editable projects after the index flags."""
        command = PipInstaller().build_command(
            PYTHON, ["rich>12,<13"], IndexOptions(), editable=[Path("/work/project")]
        )
        assert command[:4] == [str(PYTHON), "-m", "pip", "install"]
        assert "--no-input" in command
        assert command[-3:] == ["--editable", "/work/project", "rich>12,<13"]


class TestInstall:
    """Tests for PipInstaller.install."""

    def test_success(self, sleep: MagicMock) -> None:
        """A clean run reports one attempt and collects warnings."""
        runner = MagicMock(return_value=_completed(stderr="WARNING: something\nnoise\n"))
        installer = PipInstaller(runner=runner, sleep=sleep)

        result = installer.install(PYTHON, ["rich"], IndexOptions())

        assert result.attempts == 1
        assert result.warnings == ["WARNING: something"]
        assert runner.call_args.kwargs["timeout"] == 600
        sleep.assert_not_called()

    def test_retries_transient_failures(self, sleep: MagicMock) -> None:
        """Network hiccups are retried with exponential backoff."""
        runner = MagicMock(
            side_effect=[
                _completed(1, stderr="Connection reset by peer"),
                _completed(1, stderr="Read timed out"),
                _completed(0),
            ]
        )
        installer = PipInstaller(InstallSettings(base_delay=0.5), runner=runner, sleep=sleep)

        result = installer.install(PYTHON, ["rich"], IndexOptions())

        assert result.attempts == 3
        assert [c.args[0] for c in sleep.call_args_list] == [0.5, 1.0]

    def test_permanent_failure_is_not_retried(self, sleep: MagicMock) -> None:
        """Resolution failures raise immediately with pip's stderr."""
        stderr = "ERROR: No matching distribution found for nosuchpkg"
        runner = MagicMock(return_value=_completed(1, stderr=stderr))
        installer = PipInstaller(runner=runner, sleep=sleep)

        with pytest.raises(InstallError) as exc_info:
            installer.install(PYTHON, ["nosuchpkg"], IndexOptions())

        assert runner.call_count == 1
        assert exc_info.value.stderr == stderr
        assert "pip install" in str(exc_info.value)

    def test_gives_up_after_max_retries(self, sleep: MagicMock) -> None:
        """Repeated transient failures eventually raise."""
        runner = MagicMock(return_value=_completed(1, stderr="Temporary failure"))
        installer = PipInstaller(InstallSettings(max_retries=2), runner=runner, sleep=sleep)

        with pytest.raises(InstallError, match="after 2 attempts"):
            installer.install(PYTHON, ["rich"], IndexOptions())
        assert runner.call_count == 2

    def test_timeout(self, sleep: MagicMock) -> None:
        """A hung pip is reported as a timeout."""
        runner = MagicMock(side_effect=subprocess.TimeoutExpired(cmd="pip", timeout=5))
        installer = PipInstaller(InstallSettings(timeout_seconds=5), runner=runner, sleep=sleep)

        with pytest.raises(InstallError, match="timed out after 5s"):
            installer.install(PYTHON, ["rich"], IndexOptions())

    def test_missing_interpreter(self, sleep: MagicMock) -> None:
        """OSError from spawning pip becomes InstallError."""
        runner = MagicMock(side_effect=FileNotFoundError("no such file"))
        with pytest.raises(InstallError, match="Failed to execute pip"):
            PipInstaller(runner=runner, sleep=sleep).install(PYTHON, ["rich"], IndexOptions())


class TestListInstalled:
    """Tests for PipInstaller.list_installed."""

    def test_parses_json(self) -> None:
        """pip list output becomes sorted InstalledPackage records."""
        stdout = json.dumps(
            [{"name": "rich", "version": "13.7.1"}, {"name": "Pygments", "version": "2.18.0"}]
        )
        runner = MagicMock(return_value=_completed(stdout=stdout))

        packages = PipInstaller(runner=runner).list_installed(PYTHON)

        assert packages == [
            InstalledPackage("Pygments", "2.18.0"),
            InstalledPackage("rich", "13.7.1"),
        ]
        assert packages[1].pin() == "rich==13.7.1"

    def test_invalid_json(self) -> None:
        """Unexpected output is an InstallError."""
        runner = MagicMock(return_value=_completed(stdout="not json"))
        with pytest.raises(InstallError, match="Unexpected output"):
            PipInstaller(runner=runner).list_installed(PYTHON)

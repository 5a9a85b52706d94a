"""Tests for cached environment building."""

import json
import logging
import subprocess
import threading
from datetime import datetime, timezone
from pathlib import Path
from unittest.mock import MagicMock

import pytest

from scriptenv.environment import (
    ENVIRONMENTS_DIRNAME,
    MARKER_FILENAME,
    Environment,
    EnvironmentBuilder,
    EnvironmentSpec,
    InstalledPackage,
    InstallResult,
)
from scriptenv.errors import EnvironmentBuildError, InstallError
from scriptenv.python import Interpreter


@pytest.fixture
def installer() -> MagicMock:
    """Return an installer stand-in that installs rich."""
    mock = MagicMock()
    mock.install.return_value = InstallResult(command=["pip"], duration_seconds=1.25)
    mock.list_installed.return_value = [
        InstalledPackage("markdown-it-py", "3.0.0"),
        InstalledPackage("rich", "13.7.1"),
    ]
    return mock


@pytest.fixture
def venv_runner() -> MagicMock:
    """Return a runner standing in for ``python -m venv``."""
    return MagicMock(return_value=subprocess.CompletedProcess([], 0, stdout="", stderr=""))


@pytest.fixture
def builder(tmp_path: Path, installer: MagicMock, venv_runner: MagicMock) -> EnvironmentBuilder:
    """Return a builder rooted in a temporary cache."""
    return EnvironmentBuilder(tmp_path / "cache", installer, runner=venv_runner)


class TestEnvironmentSpec:
    """Tests for EnvironmentSpec hashing."""

    def test_digest_ignores_requirement_order(self, interpreter: Interpreter) -> None:
        """Reordered requirements share an environment."""
        first = EnvironmentSpec(interpreter, ("rich", "requests<3"))
        second = EnvironmentSpec(interpreter, ("requests<3", "rich"))
        assert first.digest() == second.digest()

    @pytest.mark.parametrize(
        "changes",
        [
            {"requirements": ("rich>13",)},
            {"index_url": "https://mirror.example.com/simple"},
            {"exclude_newer": datetime(2023, 10, 16, tzinfo=timezone.utc)},
            {"project_root": Path("/work/project"), "project_digest": "abc"},
            {"pins": ("rich==13.7.1",)},
        ],
    )
    def test_digest_covers_inputs(self, interpreter: Interpreter, changes: dict) -> None:
        """Every input that changes the environment changes the digest."""
        base = EnvironmentSpec(interpreter, ("rich",))
        changed = EnvironmentSpec(**{"interpreter": interpreter, "requirements": ("rich",), **changes})
        assert base.digest() != changed.digest()

    def test_interpreter_version_changes_digest(self, interpreter: Interpreter) -> None:
        """Upgrading the interpreter yields a new environment."""
        upgraded = Interpreter(executable=interpreter.executable, version="3.12.5")
        assert EnvironmentSpec(interpreter).digest() != EnvironmentSpec(upgraded).digest()

    def test_install_targets(self, interpreter: Interpreter) -> None:
        """Pins are installed alongside extra requirements."""
        spec = EnvironmentSpec(interpreter, ("click",), pins=("rich==13.7.1",))
        assert spec.install_targets == ["rich==13.7.1", "click"]
        assert spec.needs_install
        assert not EnvironmentSpec(interpreter).needs_install


class TestEnsure:
    """Tests for EnvironmentBuilder.ensure."""

    def test_builds_and_marks(
        self,
        builder: EnvironmentBuilder,
        interpreter: Interpreter,
        installer: MagicMock,
        venv_runner: MagicMock,
    ) -> None:
        """A new spec creates a venv, installs, and writes the marker."""
        spec = EnvironmentSpec(interpreter, ("rich",))
        env = builder.ensure(spec)

        assert env.fresh
        assert env.root == builder.path_for(spec)
        assert env.root.parent.name == ENVIRONMENTS_DIRNAME
        assert env.install_seconds == 1.25
        venv_command = venv_runner.call_args.args[0]
        assert venv_command[1:3] == ["-m", "venv"]
        assert "--without-pip" not in venv_command
        installer.install.assert_called_once()
        assert installer.install.call_args.args[1] == ["rich"]

        marker = json.loads((env.root / MARKER_FILENAME).read_text())
        assert marker["digest"] == spec.digest()
        assert [p["name"] for p in marker["packages"]] == ["markdown-it-py", "rich"]

    def test_reuses_cached_environment(
        self, builder: EnvironmentBuilder, interpreter: Interpreter, installer: MagicMock
    ) -> None:
        """A second ensure with the same spec does not install again."""
        spec = EnvironmentSpec(interpreter, ("rich",))
        builder.ensure(spec)
        again = builder.ensure(spec)

        assert not again.fresh
        assert installer.install.call_count == 1
        assert [p.name for p in again.packages] == ["markdown-it-py", "rich"]

    def test_no_requirements_skips_pip(
        self,
        builder: EnvironmentBuilder,
        interpreter: Interpreter,
        installer: MagicMock,
        venv_runner: MagicMock,
    ) -> None:
        """Dependency-free environments are created without pip."""
        env = builder.ensure(EnvironmentSpec(interpreter))

        assert "--without-pip" in venv_runner.call_args.args[0]
        installer.install.assert_not_called()
        assert env.packages == []

    def test_project_is_installed_editable(
        self, builder: EnvironmentBuilder, interpreter: Interpreter, installer: MagicMock
    ) -> None:
        """The enclosing project is passed as an editable install."""
        spec = EnvironmentSpec(interpreter, project_root=Path("/work/project"), project_digest="d")
        builder.ensure(spec)
        assert installer.install.call_args.kwargs["editable"] == [Path("/work/project")]

    def test_incomplete_environment_is_rebuilt(
        self, builder: EnvironmentBuilder, interpreter: Interpreter, installer: MagicMock
    ) -> None:
        """A directory without a marker is removed and rebuilt."""
        spec = EnvironmentSpec(interpreter, ("rich",))
        root = builder.path_for(spec)
        root.mkdir(parents=True)
        (root / "leftover").write_text("partial")

        env = builder.ensure(spec)

        assert env.fresh
        assert not (root / "leftover").exists()
        assert (root / MARKER_FILENAME).is_file()

    def test_failed_install_leaves_nothing(
        self, builder: EnvironmentBuilder, interpreter: Interpreter, installer: MagicMock
    ) -> None:
        """A failed build removes its directory."""
        installer.install.side_effect = InstallError("boom")
        spec = EnvironmentSpec(interpreter, ("rich",))

        with pytest.raises(InstallError):
            builder.ensure(spec)
        assert not builder.path_for(spec).exists()

    def test_venv_failure(
        self, builder: EnvironmentBuilder, interpreter: Interpreter, venv_runner: MagicMock
    ) -> None:
        """venv errors carry the command and stderr."""
        venv_runner.return_value = subprocess.CompletedProcess([], 1, stdout="", stderr="no ensurepip")

        with pytest.raises(EnvironmentBuildError) as exc_info:
            builder.ensure(EnvironmentSpec(interpreter, ("rich",)))
        assert exc_info.value.stderr == "no ensurepip"

    def test_concurrent_ensure_waits_for_build(
        self,
        tmp_path: Path,
        interpreter: Interpreter,
        installer: MagicMock,
        venv_runner: MagicMock,
    ) -> None:
        """A second builder waits for an in-progress build and then reuses it."""
        spec = EnvironmentSpec(interpreter, ("rich",))
        first = EnvironmentBuilder(tmp_path / "cache", installer, runner=venv_runner)
        second = EnvironmentBuilder(tmp_path / "cache", installer, runner=venv_runner)
        root = first.path_for(spec)
        results: list[Environment] = []
        observed: dict[str, bool] = {}
        waiters: list[threading.Thread] = []

        def install_while_racing(*args: object, **kwargs: object) -> InstallResult:
            (root / "sentinel").write_text("building")
            waiter = threading.Thread(target=lambda: results.append(second.ensure(spec)))
            waiters.append(waiter)
            waiter.start()
            waiter.join(timeout=0.2)
            observed["waiting"] = waiter.is_alive()
            observed["sentinel"] = (root / "sentinel").exists()
            return InstallResult(command=["pip"], duration_seconds=1.25)

        installer.install.side_effect = install_while_racing

        env = first.ensure(spec)
        waiters[0].join(timeout=5)

        assert env.fresh
        assert observed == {"waiting": True, "sentinel": True}
        assert (root / "sentinel").exists()
        assert len(results) == 1
        assert not results[0].fresh
        assert installer.install.call_count == 1

    def test_pip_warnings_are_logged(
        self,
        builder: EnvironmentBuilder,
        interpreter: Interpreter,
        installer: MagicMock,
        caplog: pytest.LogCaptureFixture,
    ) -> None:
        """Warnings pip printed during the install reach the log."""
        installer.install.return_value = InstallResult(
            command=["pip"],
            duration_seconds=1.25,
            attempts=2,
            warnings=["WARNING: rich 13.7.1 does not provide the extra 'jupyter'"],
        )

        with caplog.at_level(logging.DEBUG, logger="scriptenv.environment.builder"):
            builder.ensure(EnvironmentSpec(interpreter, ("rich[jupyter]",)))

        warnings = [r for r in caplog.records if r.levelno == logging.WARNING]
        assert [r.getMessage() for r in warnings] == [
            "pip: WARNING: rich 13.7.1 does not provide the extra 'jupyter'"
        ]
        assert any("after 2 attempt(s)" in r.getMessage() for r in caplog.records)

    def test_no_cache_is_ephemeral(
        self, builder: EnvironmentBuilder, interpreter: Interpreter
    ) -> None:
        """no_cache builds outside the cache and the caller removes it."""
        env = builder.ensure(EnvironmentSpec(interpreter, ("rich",)), no_cache=True)

        assert env.ephemeral
        assert builder.environments_dir not in env.root.parents
        env.remove()
        assert not env.root.exists()


class TestCacheMaintenance:
    """Tests for list_cached and clean."""

    def test_clean(self, builder: EnvironmentBuilder, interpreter: Interpreter) -> None:
        """clean removes every cached environment."""
        builder.ensure(EnvironmentSpec(interpreter, ("rich",)))
        builder.ensure(EnvironmentSpec(interpreter, ("click",)))

        assert len(builder.list_cached()) == 2
        assert builder.clean() == 2
        assert builder.list_cached() == []

    def test_clean_without_cache(self, tmp_path: Path) -> None:
        """Cleaning an absent cache is a no-op."""
        assert EnvironmentBuilder(tmp_path / "nothing").clean() == 0


class TestEnvironment:
    """Tests for Environment helpers."""

    def test_child_environ(self, tmp_path: Path) -> None:
        """The child sees the environment activated."""
        env = Environment(root=tmp_path / "env", digest="abc")
        environ = env.child_environ({"PATH": "/usr/bin", "PYTHONHOME": "/opt/python"})

        assert environ["VIRTUAL_ENV"] == str(tmp_path / "env")
        assert environ["PATH"].startswith(str(env.scripts_dir))
        assert environ["PATH"].endswith("/usr/bin")
        assert "PYTHONHOME" not in environ

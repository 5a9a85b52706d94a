"""Script execution orchestration.

This module provides the ScriptRunner class that turns a ``run`` invocation
into an environment and a child process:

1. classify the target (script file, stdin, or command),
2. read inline metadata or find the enclosing project,
3. select an interpreter,
4. build or reuse the environment,
5. run the child with the environment activated and propagate its status.
"""

from __future__ import annotations

import logging
import os
import shutil
import subprocess
import sys
import tempfile
from collections.abc import Callable
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import TextIO

from packaging.specifiers import SpecifierSet

from scriptenv.config.models import Settings
from scriptenv.environment.builder import Environment, EnvironmentBuilder, EnvironmentSpec
from scriptenv.environment.installer import PipInstaller
from scriptenv.errors import LockError, ScriptenvError
from scriptenv.lock import ScriptLock, lock_path, usable_lock, write_lock
from scriptenv.metadata.block import find_script_block
from scriptenv.metadata.models import ScriptMetadata, read_metadata, read_script
from scriptenv.project import Project, find_project
from scriptenv.python.discovery import Interpreter, InterpreterFinder
from scriptenv.python.request import PythonRequest, RequestKind
from scriptenv.requirements import merge_requirements
from scriptenv.utils.signals import child_exit_status, interrupts_forwarded

logger = logging.getLogger(__name__)

SCRIPT_SUFFIXES = (".py", ".pyw")
GUI_SUFFIX = ".pyw"
STDIN_TARGET = "-"

Echo = Callable[[str], None]


class TargetKind(str, Enum):
    """What the ``run`` target names."""

    SCRIPT = "script"
    STDIN = "stdin"
    COMMAND = "command"


@dataclass
class RunOptions:
    """Options of a single ``run`` invocation."""

    target: str
    args: list[str] = field(default_factory=list)
    with_requirements: list[str] = field(default_factory=list)
    python: str | None = None
    no_project: bool = False
    script: bool = False
    gui_script: bool = False
    locked: bool = False
    no_cache: bool = False
    indexes: list[str] = field(default_factory=list)


@dataclass
class RunPlan:
    """Resolved inputs for running a target."""

    kind: TargetKind
    spec: EnvironmentSpec
    script: Path | None = None
    command: list[str] = field(default_factory=list)
    metadata: ScriptMetadata | None = None
    project: Project | None = None
    lock: ScriptLock | None = None
    gui: bool = False


class ScriptRunner:
    """Run scripts and commands in managed environments.

    Example:
        runner = ScriptRunner(ConfigLoader().load())
        status = runner.run(RunOptions(target="example.py", with_requirements=["rich"]))

    """

    def __init__(
        self,
        settings: Settings,
        finder: InterpreterFinder | None = None,
        builder: EnvironmentBuilder | None = None,
        echo: Echo | None = None,
        cwd: Path | None = None,
        stdin: TextIO | None = None,
        runner: Callable[..., subprocess.CompletedProcess] = subprocess.run,
    ) -> None:
        """Initialize the runner.

        Args:
            settings: Merged configuration.
            finder: Interpreter finder.
            builder: Environment builder. Defaults to one rooted at the cache.
            echo: Sink for user-facing progress messages.
            cwd: Working directory for project discovery and the child.
            stdin: Stream read when the target is ``-``.
            runner: subprocess.run-compatible callable used for the child.

        """
        self.settings = settings
        self.finder = finder or InterpreterFinder()
        self.builder = builder or EnvironmentBuilder(
            settings.resolved_cache_dir(), PipInstaller(settings.install)
        )
        self.echo: Echo = echo or (lambda message: None)
        self.cwd = Path.cwd() if cwd is None else cwd
        self.stdin = sys.stdin if stdin is None else stdin
        self.runner = runner

    # -------------------------------------------------------------------------
    # Resolution helpers
    # -------------------------------------------------------------------------

    def _resolve_path(self, target: str) -> Path:
        path = Path(target).expanduser()
        return path if path.is_absolute() else self.cwd / path

    def classify(self, target: str, force_script: bool = False) -> TargetKind:
        """Decide whether target is a script, stdin, or a command."""
        if target == STDIN_TARGET:
            return TargetKind.STDIN
        if force_script:
            return TargetKind.SCRIPT

        path = self._resolve_path(target)
        if path.suffix.lower() in SCRIPT_SUFFIXES:
            return TargetKind.SCRIPT
        if path.is_file():
            try:
                source = path.read_text(encoding="utf-8-sig")
            except (OSError, UnicodeDecodeError):
                return TargetKind.COMMAND
            if find_script_block(source, origin=f"`{path.name}`") is not None:
                return TargetKind.SCRIPT
        return TargetKind.COMMAND

    def python_request(self, explicit: str | None) -> PythonRequest | None:
        """Return the interpreter request from the flag or the settings."""
        text = explicit or self.settings.python
        return PythonRequest.parse(text) if text else None

    def _indexes(
        self, metadata: ScriptMetadata | None, cli_indexes: list[str]
    ) -> tuple[str, tuple[str, ...]]:
        index_url = self.settings.index.url
        extras: list[str] = list(cli_indexes)
        if metadata is not None:
            for entry in metadata.settings.index:
                if entry.default:
                    index_url = entry.url
                else:
                    extras.append(entry.url)
        extras.extend(self.settings.index.extra_urls)
        deduplicated: list[str] = []
        for url in extras:
            if url != index_url and url not in deduplicated:
                deduplicated.append(url)
        return index_url, tuple(deduplicated)

    def _find_interpreter(
        self, explicit: str | None, requires_python: SpecifierSet | None
    ) -> Interpreter:
        return self.finder.find(self.python_request(explicit), requires_python)

    def plan(self, options: RunOptions, stdin_source: str | None = None) -> RunPlan:
        """Resolve everything needed to run options.target.

        Args:
            options: Run options.
            stdin_source: Script text when the target is ``-``.

        Raises:
            ScriptenvError: For unreadable scripts, invalid metadata, missing
                interpreters, or lock violations.

        """
        kind = self.classify(options.target, options.script)
        script: Path | None = None
        metadata: ScriptMetadata | None = None
        origin = options.target

        if kind == TargetKind.SCRIPT:
            script = self._resolve_path(options.target)
            if not script.is_file():
                raise ScriptenvError(f"Script not found: {options.target}")
            metadata = read_script(script)
            origin = script.name
        elif kind == TargetKind.STDIN:
            metadata = read_metadata(stdin_source or "", origin="`-`")
            origin = "-"

        if metadata is not None:
            self.echo(f"Reading inline script metadata from `{origin}`")

        project: Project | None = None
        if metadata is None and not options.no_project:
            project = find_project(self.cwd)
        elif metadata is not None and not options.no_project:
            logger.debug("Inline metadata present; not installing the enclosing project")

        if metadata is not None:
            requires_python = metadata.python_specifier()
        elif project is not None:
            requires_python = project.python_specifier()
        else:
            requires_python = None

        interpreter = self._find_interpreter(options.python, requires_python)

        lock: ScriptLock | None = None
        if metadata is not None and script is not None:
            lock = usable_lock(script, metadata, locked=options.locked)
        elif options.locked:
            raise LockError("`--locked` requires a script file with inline metadata")

        if lock is not None:
            requirements = merge_requirements([], options.with_requirements)
            pins = tuple(lock.pins())
        else:
            base = metadata.dependencies if metadata is not None else []
            requirements = merge_requirements(base, options.with_requirements)
            pins = ()

        index_url, extra_index_urls = self._indexes(metadata, options.indexes)
        spec = EnvironmentSpec(
            interpreter=interpreter,
            requirements=tuple(requirements),
            index_url=index_url,
            extra_index_urls=extra_index_urls,
            exclude_newer=metadata.settings.exclude_newer if metadata is not None else None,
            project_root=project.root if project is not None else None,
            project_digest=project.digest if project is not None else None,
            pins=pins,
        )

        gui = options.gui_script or (script is not None and script.suffix.lower() == GUI_SUFFIX)
        command = [options.target, *options.args] if kind == TargetKind.COMMAND else []
        return RunPlan(
            kind=kind,
            spec=spec,
            script=script,
            command=command,
            metadata=metadata,
            project=project,
            lock=lock,
            gui=gui,
        )

    # -------------------------------------------------------------------------
    # Execution
    # -------------------------------------------------------------------------

    def _child_command(self, plan: RunPlan, env: Environment, args: list[str]) -> list[str]:
        if plan.kind == TargetKind.COMMAND:
            program, *rest = plan.command
            found = shutil.which(program, path=env.child_environ()["PATH"])
            return [found or program, *rest]
        assert plan.script is not None  # noqa: S101
        python = env.gui_python if plan.gui else env.python
        return [str(python), str(plan.script), *args]

    def _report_install(self, env: Environment) -> None:
        if env.fresh and env.packages:
            count = len(env.packages)
            noun = "package" if count == 1 else "packages"
            self.echo(f"Installed {count} {noun} in {env.install_seconds:.2f}s")

    def run(self, options: RunOptions) -> int:
        """Run a script or command and return the exit status to propagate."""
        temp_script: Path | None = None
        stdin_source: str | None = None
        if options.target == STDIN_TARGET:
            stdin_source = self.stdin.read()
            handle, name = tempfile.mkstemp(prefix="scriptenv-stdin-", suffix=".py")
            with os.fdopen(handle, "w", encoding="utf-8") as f:
                f.write(stdin_source)
            temp_script = Path(name)

        env: Environment | None = None
        try:
            plan = self.plan(options, stdin_source=stdin_source)
            if temp_script is not None:
                plan.script = temp_script

            env = self.builder.ensure(plan.spec, no_cache=options.no_cache or self.settings.no_cache)
            self._report_install(env)

            command = self._child_command(plan, env, options.args)
            logger.debug(f"Running command: {' '.join(command)}")
            try:
                with interrupts_forwarded():
                    result = self.runner(command, env=env.child_environ(), cwd=self.cwd, check=False)
            except OSError as e:
                raise ScriptenvError(f"Failed to spawn: `{command[0]}`: {e}") from e
            return child_exit_status(result.returncode)
        finally:
            if env is not None and env.ephemeral:
                env.remove()
            if temp_script is not None:
                temp_script.unlink(missing_ok=True)

    # -------------------------------------------------------------------------
    # Metadata-driven helpers used by init/add/lock
    # -------------------------------------------------------------------------

    def requires_python_for(self, explicit: str | None) -> str:
        """Return the ``requires-python`` value for a new metadata block.

        A version request ``3.12`` becomes ``>=3.12`` and a specifier is used
        verbatim; otherwise the selected interpreter's minor version is used.
        """
        request = self.python_request(explicit)
        if request is not None and request.kind == RequestKind.VERSION:
            assert request.version is not None  # noqa: S101
            return ">=" + ".".join(str(part) for part in request.version[:2])
        if request is not None and request.kind == RequestKind.SPECIFIER:
            return request.text
        interpreter = self.finder.find(request)
        return f">={interpreter.minor_version}"

    def lock(self, script: Path, python: str | None = None) -> Path:
        """Resolve a script's dependencies and write its lock file.

        Raises:
            LockError: If the script has no inline metadata.

        """
        path = self._resolve_path(str(script))
        if not path.is_file():
            raise LockError(f"Script not found: {script}")
        metadata = read_script(path)
        if metadata is None:
            raise LockError(f"`{path.name}` has no inline script metadata")
        self.echo(f"Reading inline script metadata from `{path.name}`")

        interpreter = self._find_interpreter(python, metadata.python_specifier())
        index_url, extra_index_urls = self._indexes(metadata, [])
        spec = EnvironmentSpec(
            interpreter=interpreter,
            requirements=tuple(metadata.dependencies),
            index_url=index_url,
            extra_index_urls=extra_index_urls,
            exclude_newer=metadata.settings.exclude_newer,
        )

        env = self.builder.ensure(spec, no_cache=self.settings.no_cache)
        try:
            self._report_install(env)
            lock = ScriptLock.from_environment(metadata, env.packages)
        finally:
            if env.ephemeral:
                env.remove()

        destination = lock_path(path)
        write_lock(destination, lock)
        self.echo(f"Resolved {len(lock.packages)} packages into `{destination.name}`")
        return destination

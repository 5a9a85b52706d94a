"""Command-line interface for scriptenv.

Python justification: Click library for CLI parsing and subprocess orchestration.
"""

import logging
import sys
from pathlib import Path
from typing import Any, NoReturn

import click

from scriptenv import __version__
from scriptenv.config import ConfigLoader, Settings
from scriptenv.environment import EnvironmentBuilder
from scriptenv.errors import ScriptenvError
from scriptenv.metadata import add_dependencies, init_script, read_script, remove_dependencies
from scriptenv.python import PythonRequest
from scriptenv.runner import RunOptions, ScriptRunner

logger = logging.getLogger(__name__)

ERROR_EXIT_CODE = 2


def _configure_logging(verbose: int, quiet: bool) -> None:
    if quiet:
        level = logging.ERROR
    elif verbose >= 2:
        level = logging.DEBUG
    elif verbose == 1:
        level = logging.INFO
    else:
        level = logging.WARNING
    logging.basicConfig(
        level=level,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
        stream=sys.stderr,
    )


def _fail(error: ScriptenvError) -> NoReturn:
    click.echo(f"error: {error}", err=True)
    sys.exit(ERROR_EXIT_CODE)


def _settings(overrides: dict[str, Any] | None = None) -> Settings:
    try:
        return ConfigLoader().load(overrides=overrides)
    except ScriptenvError as e:
        _fail(e)


def _runner(ctx: click.Context, settings: Settings) -> ScriptRunner:
    quiet = ctx.obj.get("quiet", False)

    def echo(message: str) -> None:
        if not quiet:
            click.echo(message, err=True)

    return ScriptRunner(settings, echo=echo)


@click.group()
@click.version_option(version=__version__, prog_name="scriptenv")
@click.option("--verbose", "-v", count=True, help="Verbose output (repeat for debug).")
@click.option("--quiet", "-q", is_flag=True, help="Suppress progress output.")
@click.pass_context
def cli(ctx: click.Context, verbose: int, quiet: bool) -> None:
    """scriptenv - Run standalone Python scripts in isolated environments.

    Dependencies come from inline script metadata or --with, and are
    installed into cached virtual environments.
    """
    if verbose and quiet:
        raise click.UsageError("Cannot use --verbose and --quiet together.")
    ctx.ensure_object(dict)
    ctx.obj["quiet"] = quiet
    _configure_logging(verbose, quiet)


@cli.command(
    context_settings={"ignore_unknown_options": True, "allow_interspersed_args": False}
)
@click.option(
    "--with",
    "with_requirements",
    multiple=True,
    help="Run with the given package installed (e.g. 'rich>12,<13'). Can be repeated.",
)
@click.option("--no-project", is_flag=True, help="Do not install the enclosing project.")
@click.option("--python", "-p", "python", help="Python interpreter to use (e.g. 3.12).")
@click.option("--script", "force_script", is_flag=True, help="Treat the target as a script.")
@click.option("--gui-script", is_flag=True, help="Run with the windowless interpreter on Windows.")
@click.option("--locked", is_flag=True, help="Require an up-to-date script lock file.")
@click.option("--no-cache", is_flag=True, help="Use a throwaway environment.")
@click.option("--index", "indexes", multiple=True, help="Additional package index URL.")
@click.argument("target")
@click.argument("args", nargs=-1, type=click.UNPROCESSED)
@click.pass_context
def run(
    ctx: click.Context,
    with_requirements: tuple[str, ...],
    no_project: bool,
    python: str | None,
    force_script: bool,
    gui_script: bool,
    locked: bool,
    no_cache: bool,
    indexes: tuple[str, ...],
    target: str,
    args: tuple[str, ...],
) -> None:
    """Run a script or command in an isolated environment.

    TARGET is a script path, '-' to read the script from stdin, or a command.
    Remaining ARGS are passed to the script unchanged.

    Examples:

        scriptenv run example.py hello world!

        scriptenv run --with 'rich>12,<13' example.py

        echo 'print("hello world!")' | scriptenv run -

        scriptenv run --python 3.10 --no-project example.py
    """
    settings = _settings()
    options = RunOptions(
        target=target,
        args=list(args),
        with_requirements=list(with_requirements),
        python=python,
        no_project=no_project,
        script=force_script,
        gui_script=gui_script,
        locked=locked,
        no_cache=no_cache,
        indexes=list(indexes),
    )
    try:
        status = _runner(ctx, settings).run(options)
    except ScriptenvError as e:
        _fail(e)
    sys.exit(status)


@cli.command()
@click.option(
    "--script",
    "script",
    required=True,
    type=click.Path(path_type=Path, dir_okay=False),
    help="Script to create or add inline metadata to.",
)
@click.option("--python", "-p", "python", help="Minimum Python version for requires-python.")
@click.pass_context
def init(ctx: click.Context, script: Path, python: str | None) -> None:
    """Create a script with inline metadata.

    Examples:

        scriptenv init --script example.py --python 3.12
    """
    runner = _runner(ctx, _settings())
    try:
        init_script(script, requires_python=runner.requires_python_for(python))
    except ScriptenvError as e:
        _fail(e)
    runner.echo(f"Initialized script at `{script}`")


@cli.command()
@click.option(
    "--script",
    "script",
    required=True,
    type=click.Path(path_type=Path, dir_okay=False),
    help="Script whose inline metadata to update.",
)
@click.option("--index", "index", help="Package index URL to record in the script.")
@click.argument("requirements", nargs=-1, required=True)
@click.pass_context
def add(ctx: click.Context, script: Path, index: str | None, requirements: tuple[str, ...]) -> None:
    """Add dependencies to a script's inline metadata.

    Examples:

        scriptenv add --script example.py 'requests<3' 'rich'

        scriptenv add --index "https://example.com/simple" --script example.py 'requests<3'
    """
    runner = _runner(ctx, _settings())
    try:
        requires_python = None
        if script.exists() and read_script(script) is None:
            requires_python = runner.requires_python_for(None)
        add_dependencies(script, list(requirements), index=index, requires_python=requires_python)
    except ScriptenvError as e:
        _fail(e)
    runner.echo(f"Updated `{script}`")


@cli.command()
@click.option(
    "--script",
    "script",
    required=True,
    type=click.Path(path_type=Path, dir_okay=False),
    help="Script whose inline metadata to update.",
)
@click.argument("names", nargs=-1, required=True)
@click.pass_context
def remove(ctx: click.Context, script: Path, names: tuple[str, ...]) -> None:
    """Remove dependencies from a script's inline metadata."""
    runner = _runner(ctx, _settings())
    try:
        remove_dependencies(script, list(names))
    except ScriptenvError as e:
        _fail(e)
    runner.echo(f"Updated `{script}`")


@cli.command()
@click.option(
    "--script",
    "script",
    required=True,
    type=click.Path(path_type=Path, dir_okay=False),
    help="Script to lock.",
)
@click.option("--python", "-p", "python", help="Python interpreter to resolve with.")
@click.pass_context
def lock(ctx: click.Context, script: Path, python: str | None) -> None:
    """Resolve a script's dependencies into <script>.lock.

    Examples:

        scriptenv lock --script example.py
    """
    runner = _runner(ctx, _settings())
    try:
        runner.lock(script, python=python)
    except ScriptenvError as e:
        _fail(e)


@cli.group()
def cache() -> None:
    """Inspect and clean the environment cache."""
    pass


@cache.command("dir")
def cache_dir() -> None:
    """Show the cache directory."""
    click.echo(str(_settings().resolved_cache_dir()))


@cache.command("clean")
def cache_clean() -> None:
    """Remove all cached environments."""
    settings = _settings()
    builder = EnvironmentBuilder(settings.resolved_cache_dir())
    removed = builder.clean()
    noun = "environment" if removed == 1 else "environments"
    click.echo(f"Removed {removed} {noun}")


@cli.group()
def python() -> None:
    """Inspect available Python interpreters."""
    pass


@python.command("find")
@click.argument("request", required=False)
@click.pass_context
def python_find(ctx: click.Context, request: str | None) -> None:
    """Show the interpreter a request resolves to.

    Examples:

        scriptenv python find 3.12
    """
    runner = _runner(ctx, _settings())
    try:
        parsed = PythonRequest.parse(request) if request else runner.python_request(None)
        interpreter = runner.finder.find(parsed)
    except ScriptenvError as e:
        _fail(e)
    click.echo(str(interpreter.executable))


def main() -> None:
    """Entry point for the CLI."""
    cli()


if __name__ == "__main__":
    main()

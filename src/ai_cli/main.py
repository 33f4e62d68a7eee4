"""CLI entrypoint for ai-cli."""

import logging
from collections.abc import Iterator
from contextlib import contextmanager
from pathlib import Path

import rich_click as click
from click import get_text_stream

from ai_cli import __version__
from ai_cli.config import VALID_COMPLETION_MODES, ConfigError
from ai_cli.orchestrator.controllers import (
    BackendsCommand,
    CommandOutput,
    LoopCommand,
    RunCliController,
    RunCommand,
)

click.rich_click.USE_MARKDOWN = True
CONTROLLER = RunCliController()

LOG_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR")


@click.group()
@click.version_option(version=__version__, prog_name="ai-cli")
@click.option(
    "--log-level",
    type=click.Choice(LOG_LEVELS, case_sensitive=False),
    default="WARNING",
    show_default=True,
    envvar="AI_CLI_LOG_LEVEL",
    help="Diagnostic log level (written to stderr).",
)
def ai_cli(log_level: str) -> None:
    """Run external AI CLI backends once or in a guarded loop."""

    logging.basicConfig(
        level=getattr(logging, log_level.upper()),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


@ai_cli.command("backends")
@click.option("--probe/--no-probe", default=False, help="Probe each backend for availability.")
@click.option("--json", "as_json", is_flag=True, help="Print machine-readable JSON.")
def backends(probe: bool, as_json: bool) -> None:
    """List supported backends."""

    with _config_errors():
        _emit_lines(CONTROLLER.backends(BackendsCommand(probe=probe, as_json=as_json)))


@ai_cli.group("config")
def config() -> None:
    """Inspect and edit `~/.ai-cli.json`."""


@config.command("show")
def config_show() -> None:
    """Print the resolved configuration."""

    with _config_errors():
        _emit_lines(CONTROLLER.config_show())


@config.command("path")
def config_path() -> None:
    """Print user and project configuration file paths."""

    _emit_lines(CONTROLLER.config_path())


@config.command("get")
@click.argument("key")
def config_get(key: str) -> None:
    """Print one resolved configuration value."""

    with _config_errors():
        _emit_lines(CONTROLLER.config_get(key))


@config.command("set")
@click.argument("key")
@click.argument("value")
def config_set(key: str, value: str) -> None:
    """Store a value in the user configuration file."""

    with _config_errors():
        _emit_lines(CONTROLLER.config_set(key, value))


@ai_cli.command("run")
@click.argument("prompt_source")
@click.option("-b", "--backend", default=None, help="Backend id (copilot, codex, claude).")
@click.option(
    "--timeout-ms",
    type=click.IntRange(min=1),
    default=None,
    help="Backend timeout in milliseconds.",
)
@click.option("--json", "as_json", is_flag=True, help="Print only a JSON summary on stdout.")
@click.option(
    "--artifacts/--no-artifacts",
    default=False,
    show_default=True,
    help="Persist run traces under `.ai-cli/runs/`.",
)
@click.option(
    "--verbosity",
    type=click.IntRange(min=0, max=3),
    default=2,
    show_default=True,
    help="0 result only, 1 + summary, 2 + progress, 3 + prompt and live output.",
)
def run(  # noqa: PLR0913
    prompt_source: str,
    backend: str | None,
    timeout_ms: int | None,
    as_json: bool,
    artifacts: bool,
    verbosity: int,
) -> None:
    """Send one prompt (file path or `-` for stdin) to a backend."""

    with _config_errors():
        output = CONTROLLER.run(
            RunCommand(
                prompt_source=prompt_source,
                backend=backend,
                timeout_ms=timeout_ms,
                as_json=as_json,
                artifacts=artifacts,
                verbosity=verbosity,
                cwd=Path.cwd(),
                stdin=get_text_stream("stdin"),
            ),
            err=_echo_err,
            stream=_stream_chunk,
        )
    _finish(output)


@ai_cli.command("loop")
@click.argument("prompt_source")
@click.option("-b", "--backend", default=None, help="Backend id (copilot, codex, claude).")
@click.option(
    "-m",
    "--max-iterations",
    type=click.IntRange(min=1),
    default=None,
    help="Maximum number of iterations.",
)
@click.option(
    "--timeout-ms",
    type=click.IntRange(min=1),
    default=None,
    help="Global timeout in milliseconds.",
)
@click.option(
    "--completion-mode",
    type=click.Choice(VALID_COMPLETION_MODES),
    default=None,
    help="How completion is detected: `DONE` marker line or JSON status object.",
)
@click.option(
    "--no-progress-limit",
    type=click.IntRange(min=0),
    default=None,
    help="Stop after N identical consecutive responses (0 disables).",
)
@click.option("--json", "as_json", is_flag=True, help="Print only a JSON summary on stdout.")
@click.option(
    "--artifacts/--no-artifacts",
    default=False,
    show_default=True,
    help="Persist run traces under `.ai-cli/runs/`.",
)
@click.option(
    "--verbosity",
    type=click.IntRange(min=0, max=3),
    default=2,
    show_default=True,
    help="0 result only, 1 + summary, 2 + progress, 3 + prompt and live output.",
)
def loop(  # noqa: PLR0913
    prompt_source: str,
    backend: str | None,
    max_iterations: int | None,
    timeout_ms: int | None,
    completion_mode: str | None,
    no_progress_limit: int | None,
    as_json: bool,
    artifacts: bool,
    verbosity: int,
) -> None:
    """Run a prompt repeatedly until the backend reports completion."""

    with _config_errors():
        output = CONTROLLER.loop(
            LoopCommand(
                prompt_source=prompt_source,
                backend=backend,
                max_iterations=max_iterations,
                timeout_ms=timeout_ms,
                completion_mode=completion_mode,
                no_progress_limit=no_progress_limit,
                as_json=as_json,
                artifacts=artifacts,
                verbosity=verbosity,
                cwd=Path.cwd(),
                stdin=get_text_stream("stdin"),
            ),
            err=_echo_err,
            stream=_stream_chunk,
        )
    _finish(output)


@contextmanager
def _config_errors() -> Iterator[None]:
    """Turn configuration errors into a ClickException before anything runs."""

    try:
        yield
    except ConfigError as error:
        raise click.ClickException(str(error)) from error


def _finish(output: CommandOutput) -> None:
    _emit_lines(output.stdout)
    for line in output.stderr:
        _echo_err(line)
    if output.exit_code:
        raise SystemExit(output.exit_code)


def _echo_err(line: str) -> None:
    click.echo(line, err=True)


def _stream_chunk(chunk: str) -> None:
    click.echo(chunk, err=True, nl=False)


def _emit_lines(lines: list[str]) -> None:
    for line in lines:
        click.echo(line)


if __name__ == "__main__":  # pragma: no cover
    ai_cli()

"""Controllers for the ai-cli commands."""

from __future__ import annotations

import json
import sys
from collections.abc import Callable
from dataclasses import dataclass, field
from pathlib import Path
from typing import TextIO

from ai_cli.config import (
    CONFIG_KEYS,
    ConfigError,
    Settings,
    config_paths,
    format_config_value,
    load_config_file,
    parse_config_value,
    save_user_config,
)
from ai_cli.orchestrator.artifacts import ArtifactOptions, write_artifacts
from ai_cli.orchestrator.backend import BackendRegistry, build_default_registry
from ai_cli.orchestrator.loop import IterationOrchestrator
from ai_cli.orchestrator.models import (
    EXIT_NOINPUT,
    LoopRequest,
    OneShotRequest,
    RunResult,
    TranscriptEntry,
    utc_now,
)
from ai_cli.orchestrator.summary import (
    build_json_summary,
    format_iteration_progress,
    render_loop_summary_lines,
    render_run_summary_lines,
)

LineSink = Callable[[str], None]
ChunkSink = Callable[[str], None]
RegistryFactory = Callable[[Settings], BackendRegistry]

_ERROR_PREVIEW_CHARS = 200
_STDIN_SOURCE = "-"


class PromptSourceError(RuntimeError):
    """Prompt file missing, unreadable or empty."""

    exit_code = EXIT_NOINPUT


@dataclass(slots=True)
class BackendsCommand:
    """CLI input for backend listing."""

    probe: bool
    as_json: bool


@dataclass(slots=True)
class RunCommand:
    """CLI input for a one-shot run."""

    prompt_source: str
    backend: str | None = None
    timeout_ms: int | None = None
    as_json: bool = False
    artifacts: bool = False
    verbosity: int = 2
    cwd: Path = field(default_factory=Path.cwd)
    stdin: TextIO | None = None


@dataclass(slots=True)
class LoopCommand:
    """CLI input for an iterative run."""

    prompt_source: str
    backend: str | None = None
    max_iterations: int | None = None
    timeout_ms: int | None = None
    completion_mode: str | None = None
    no_progress_limit: int | None = None
    as_json: bool = False
    artifacts: bool = False
    verbosity: int = 2
    cwd: Path = field(default_factory=Path.cwd)
    stdin: TextIO | None = None


@dataclass(slots=True)
class CommandOutput:
    """Rendered command output and process exit code."""

    stdout: list[str] = field(default_factory=list)
    stderr: list[str] = field(default_factory=list)
    exit_code: int = 0


def read_prompt_source(source: str, stdin: TextIO | None = None) -> str:
    """Read a prompt from a file path or ``-`` (stdin); the result is stripped."""

    if source == _STDIN_SOURCE:
        content = (stdin or sys.stdin).read()
    else:
        path = Path(source)
        if not path.is_file():
            raise PromptSourceError(
                f"Prompt file not found: {source}\nCheck the path or create the file.",
            )
        try:
            content = path.read_text("utf-8")
        except (OSError, UnicodeDecodeError) as error:
            raise PromptSourceError(f"Cannot read prompt file {source}: {error}") from error

    prompt = content.strip()
    if not prompt:
        raise PromptSourceError("The prompt is empty.")
    return prompt


def _default_registry(settings: Settings) -> BackendRegistry:
    return build_default_registry(settings.commands)


class RunCliController:
    """Coordinates config resolution, the orchestrator and output rendering."""

    def __init__(
        self,
        *,
        registry_factory: RegistryFactory = _default_registry,
        env: dict[str, str] | None = None,
    ) -> None:
        self._registry_factory = registry_factory
        self._env = env

    def backends(self, command: BackendsCommand, *, cwd: Path | None = None) -> list[str]:
        settings = Settings.load(cwd, env=self._env)
        registry = self._registry_factory(settings)

        rows: list[dict[str, str | None]] = []
        for adapter in registry.adapters():
            row: dict[str, str | None] = {
                "id": adapter.id.value,
                "name": adapter.display_name,
            }
            if command.probe:
                availability = adapter.is_available()
                row["status"] = availability.status.value
                row["details"] = availability.details
            rows.append(row)

        if command.as_json:
            return [json.dumps(rows, indent=2)]

        lines = ["Supported backends:", ""]
        for row in rows:
            default_marker = "*" if row["id"] == settings.backend else " "
            line = f"  {default_marker} {row['id']:<10} {row['name']}"
            if command.probe:
                line += f" ({row['status']})"
                if row.get("details"):
                    line += f" - {row['details']}"
            lines.append(line)
        lines.append("")
        lines.append("* default backend")
        return lines

    def config_show(self, *, cwd: Path | None = None) -> list[str]:
        settings = Settings.load(cwd, env=self._env)
        return [json.dumps(settings.as_config_dict(), indent=2)]

    def config_path(self, *, cwd: Path | None = None) -> list[str]:
        paths = config_paths(cwd, env=self._env)
        project = str(paths.project) if paths.project is not None else "(none)"
        return [f"user: {paths.user}", f"project: {project}"]

    def config_get(self, key: str, *, cwd: Path | None = None) -> list[str]:
        if key not in CONFIG_KEYS:
            raise ConfigError(f"Unknown config key: {key}. Valid keys: {', '.join(CONFIG_KEYS)}")
        settings = Settings.load(cwd, env=self._env)
        return [format_config_value(settings.as_config_dict()[key])]

    def config_set(self, key: str, raw_value: str, *, cwd: Path | None = None) -> list[str]:
        try:
            value = parse_config_value(key, raw_value)
        except ValueError as error:
            raise ConfigError(str(error)) from error
        user_path = config_paths(cwd, env=self._env).user
        current = load_config_file(user_path)
        current[key] = value
        saved = save_user_config(current, user_path)
        return [f"{key} = {format_config_value(value)} ({saved})"]

    def run(
        self,
        command: RunCommand,
        *,
        err: LineSink,
        stream: ChunkSink | None = None,
    ) -> CommandOutput:
        try:
            prompt = read_prompt_source(command.prompt_source, command.stdin)
        except PromptSourceError as error:
            return CommandOutput(stderr=[str(error)], exit_code=error.exit_code)

        settings = Settings.load(command.cwd, env=self._env)
        backend = command.backend or settings.backend
        timeout_ms = command.timeout_ms if command.timeout_ms is not None else settings.timeout_ms
        if command.verbosity >= 3 and not command.as_json:
            _echo_prompt(err, prompt)

        started_at = utc_now()
        orchestrator = IterationOrchestrator(self._registry_factory(settings))
        result = orchestrator.run_once(
            OneShotRequest(
                prompt=prompt,
                backend=backend,
                timeout_ms=timeout_ms,
                cwd=command.cwd,
            ),
            on_chunk=stream if command.verbosity >= 3 and not command.as_json else None,
        )

        output = _render_result(
            result,
            as_json=command.as_json,
            verbosity=command.verbosity,
            summary_lines=render_run_summary_lines(result),
        )
        if command.artifacts:
            _persist(
                output,
                result,
                ArtifactOptions(
                    cwd=command.cwd,
                    command="run",
                    prompt=prompt,
                    started_at=started_at,
                    timeout_ms=timeout_ms,
                ),
            )
        return output

    def loop(
        self,
        command: LoopCommand,
        *,
        err: LineSink,
        stream: ChunkSink | None = None,
    ) -> CommandOutput:
        try:
            prompt = read_prompt_source(command.prompt_source, command.stdin)
        except PromptSourceError as error:
            return CommandOutput(stderr=[str(error)], exit_code=error.exit_code)

        settings = Settings.load(command.cwd, env=self._env)
        loop_settings = settings.to_loop_settings(
            backend=command.backend,
            max_iterations=command.max_iterations,
            timeout_ms=command.timeout_ms,
            completion_mode=command.completion_mode,
            no_progress_limit=command.no_progress_limit,
        )
        human = not command.as_json
        if command.verbosity >= 3 and human:
            _echo_prompt(err, prompt)

        def on_iteration(entry: TranscriptEntry) -> None:
            if human and command.verbosity >= 2:
                err(format_iteration_progress(entry))

        started_at = utc_now()
        orchestrator = IterationOrchestrator(self._registry_factory(settings))
        result = orchestrator.run_loop(
            LoopRequest(prompt=prompt, settings=loop_settings, cwd=command.cwd),
            on_iteration=on_iteration,
            on_chunk=stream if command.verbosity >= 3 and human else None,
        )

        output = _render_result(
            result,
            as_json=command.as_json,
            verbosity=command.verbosity,
            summary_lines=render_loop_summary_lines(result),
        )
        if command.artifacts:
            _persist(
                output,
                result,
                ArtifactOptions(
                    cwd=command.cwd,
                    command="loop",
                    prompt=prompt,
                    started_at=started_at,
                    timeout_ms=loop_settings.timeout_ms,
                    max_iterations=loop_settings.max_iterations,
                    completion_mode=loop_settings.completion_mode.value,
                ),
            )
        return output


def _render_result(
    result: RunResult,
    *,
    as_json: bool,
    verbosity: int,
    summary_lines: list[str],
) -> CommandOutput:
    output = CommandOutput(exit_code=result.exit_code)
    if as_json:
        output.stdout.append(json.dumps(build_json_summary(result), indent=2, ensure_ascii=False))
        return output

    if result.exit_code == 0:
        output.stdout.append(result.text)
    else:
        output.stderr.append(f"[{result.status.value}] {result.text[:_ERROR_PREVIEW_CHARS]}")
        if result.details and result.details != result.text:
            output.stderr.append(result.details)
    if verbosity >= 1:
        output.stderr.extend(summary_lines)
    return output


def _persist(output: CommandOutput, result: RunResult, options: ArtifactOptions) -> None:
    written = write_artifacts(result, options)
    if written.ok:
        output.stderr.append(f"Artifacts: {written.path}")
        return
    output.stderr.append(written.error_message or "Failed to write artifacts")
    if written.error_code is not None:
        output.exit_code = written.error_code


def _echo_prompt(err: LineSink, prompt: str) -> None:
    rule = "─" * 40
    for line in (rule, "Prompt:", rule, prompt, rule):
        err(line)

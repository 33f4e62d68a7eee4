"""Runtime configuration: defaults, user/project JSON files and environment."""

from __future__ import annotations

import json
import os
import shlex
from collections.abc import Mapping
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from ai_cli.orchestrator.models import CompletionMode, LoopSettings

PROJECT_CONFIG_FILENAME = ".ai-cli.json"
USER_CONFIG_FILENAME = ".ai-cli.json"
PROJECT_SEARCH_MAX_DEPTH = 100

CONFIG_KEYS: tuple[str, ...] = (
    "backend",
    "maxIterations",
    "timeoutMs",
    "completionMode",
    "noProgressLimit",
)
VALID_BACKENDS: tuple[str, ...] = ("copilot", "codex")
VALID_COMPLETION_MODES: tuple[str, ...] = tuple(mode.value for mode in CompletionMode)

_POSITIVE_INT_KEYS = frozenset({"maxIterations", "timeoutMs"})
_NON_NEGATIVE_INT_KEYS = frozenset({"noProgressLimit"})


class ConfigError(ValueError):
    """Invalid or unreadable configuration file."""

    def __init__(self, message: str, *, file_path: Path | None = None) -> None:
        super().__init__(f"{message}: {file_path}" if file_path else message)
        self.file_path = file_path


@dataclass(slots=True)
class ConfigPaths:
    """Locations consulted while resolving configuration."""

    user: Path
    project: Path | None


@dataclass(slots=True)
class Settings:
    """Resolved orchestrator settings."""

    backend: str = "copilot"
    max_iterations: int = 10
    timeout_ms: int = 300_000
    completion_mode: str = CompletionMode.MARKER.value
    no_progress_limit: int = 3
    commands: dict[str, tuple[str, ...]] = field(default_factory=dict)

    @classmethod
    def load(
        cls,
        cwd: Path | None = None,
        env: Mapping[str, str] | None = None,
    ) -> Settings:
        """Merge defaults < user file < project file < environment."""

        environ = os.environ if env is None else env
        paths = config_paths(cwd, env=environ)
        merged: dict[str, Any] = {}
        merged.update(load_config_file(paths.user))
        if paths.project is not None:
            merged.update(load_config_file(paths.project))
        merged.update(_env_overrides(environ))

        defaults = cls()
        return cls(
            backend=merged.get("backend", defaults.backend),
            max_iterations=merged.get("maxIterations", defaults.max_iterations),
            timeout_ms=merged.get("timeoutMs", defaults.timeout_ms),
            completion_mode=merged.get("completionMode", defaults.completion_mode),
            no_progress_limit=merged.get("noProgressLimit", defaults.no_progress_limit),
            commands=_collect_command_overrides(environ),
        )

    def to_loop_settings(  # noqa: PLR0913
        self,
        *,
        backend: str | None = None,
        max_iterations: int | None = None,
        timeout_ms: int | None = None,
        completion_mode: str | None = None,
        no_progress_limit: int | None = None,
    ) -> LoopSettings:
        """Apply per-invocation overrides on top of the resolved settings."""

        return LoopSettings(
            backend=backend or self.backend,
            max_iterations=max_iterations if max_iterations is not None else self.max_iterations,
            timeout_ms=timeout_ms if timeout_ms is not None else self.timeout_ms,
            completion_mode=CompletionMode(completion_mode or self.completion_mode),
            stagnation_threshold=(
                no_progress_limit if no_progress_limit is not None else self.no_progress_limit
            ),
        )

    def as_config_dict(self) -> dict[str, Any]:
        return {
            "backend": self.backend,
            "maxIterations": self.max_iterations,
            "timeoutMs": self.timeout_ms,
            "completionMode": self.completion_mode,
            "noProgressLimit": self.no_progress_limit,
        }


def user_config_path(env: Mapping[str, str] | None = None) -> Path:
    environ = os.environ if env is None else env
    override = environ.get("AI_CLI_USER_CONFIG", "").strip()
    if override:
        return Path(override).expanduser()
    return Path.home() / USER_CONFIG_FILENAME


def find_project_root(cwd: Path | None = None) -> Path | None:
    """Walk up from ``cwd`` until a directory holding the project file is found."""

    current = (cwd or Path.cwd()).resolve()
    for _ in range(PROJECT_SEARCH_MAX_DEPTH):
        if (current / PROJECT_CONFIG_FILENAME).is_file():
            return current
        if current.parent == current:
            return None
        current = current.parent
    return None


def config_paths(cwd: Path | None = None, *, env: Mapping[str, str] | None = None) -> ConfigPaths:
    root = find_project_root(cwd)
    return ConfigPaths(
        user=user_config_path(env),
        project=root / PROJECT_CONFIG_FILENAME if root is not None else None,
    )


def load_config_file(path: Path) -> dict[str, Any]:
    """Read one JSON config file; a missing file is an empty config."""

    if not path.exists():
        return {}
    try:
        content = path.read_text("utf-8")
    except OSError as error:
        raise ConfigError("Cannot read configuration file", file_path=path) from error
    try:
        payload = json.loads(content)
    except json.JSONDecodeError as error:
        raise ConfigError("Invalid JSON in configuration file", file_path=path) from error
    if not is_valid_config(payload):
        raise ConfigError("Invalid configuration values", file_path=path)
    return payload


def save_user_config(config: Mapping[str, Any], path: Path | None = None) -> Path:
    target = path or user_config_path()
    try:
        target.parent.mkdir(parents=True, exist_ok=True)
        target.write_text(json.dumps(dict(config), indent=2) + "\n", "utf-8")
    except OSError as error:
        raise ConfigError("Cannot write configuration file", file_path=target) from error
    return target


def is_valid_config(payload: object) -> bool:
    """Validate a partial config; unknown keys are tolerated."""

    if not isinstance(payload, dict):
        return False
    backend = payload.get("backend")
    if backend is not None and backend not in VALID_BACKENDS:
        return False
    mode = payload.get("completionMode")
    if mode is not None and mode not in VALID_COMPLETION_MODES:
        return False
    for key in _POSITIVE_INT_KEYS:
        value = payload.get(key)
        if value is not None and (not _is_int(value) or value <= 0):
            return False
    for key in _NON_NEGATIVE_INT_KEYS:
        value = payload.get(key)
        if value is not None and (not _is_int(value) or value < 0):
            return False
    return True


def parse_config_value(key: str, raw: str) -> str | int:
    """Parse a ``config set`` value for ``key``; raises ``ValueError`` when invalid."""

    if key not in CONFIG_KEYS:
        raise ValueError(f"Unknown config key: {key}. Valid keys: {', '.join(CONFIG_KEYS)}")
    if key == "backend":
        if raw not in VALID_BACKENDS:
            raise ValueError(f'Invalid value for backend: "{raw}"')
        return raw
    if key == "completionMode":
        if raw not in VALID_COMPLETION_MODES:
            raise ValueError(f'Invalid value for completionMode: "{raw}"')
        return raw

    try:
        value = int(raw.strip())
    except ValueError as error:
        raise ValueError(f'Invalid value (integer required): "{raw}"') from error
    if key in _POSITIVE_INT_KEYS and value <= 0:
        raise ValueError(f"{key} must be > 0")
    if key in _NON_NEGATIVE_INT_KEYS and value < 0:
        raise ValueError(f"{key} must be >= 0")
    return value


def format_config_value(value: object) -> str:
    if isinstance(value, str):
        return value
    return json.dumps(value)


def _env_overrides(env: Mapping[str, str]) -> dict[str, Any]:
    overrides: dict[str, Any] = {}
    env_keys = {
        "backend": "AI_CLI_BACKEND",
        "maxIterations": "AI_CLI_MAX_ITERATIONS",
        "timeoutMs": "AI_CLI_TIMEOUT_MS",
        "completionMode": "AI_CLI_COMPLETION_MODE",
        "noProgressLimit": "AI_CLI_NO_PROGRESS_LIMIT",
    }
    for key, name in env_keys.items():
        raw = env.get(name, "").strip()
        if not raw:
            continue
        try:
            overrides[key] = parse_config_value(key, raw)
        except ValueError as error:
            raise ConfigError(f"{name}: {error}") from error
    return overrides


def _collect_command_overrides(env: Mapping[str, str]) -> dict[str, tuple[str, ...]]:
    commands: dict[str, tuple[str, ...]] = {}
    for backend in VALID_BACKENDS:
        raw = env.get(f"AI_CLI_{backend.upper()}_COMMAND", "").strip()
        if raw:
            commands[backend] = tuple(shlex.split(raw))
    return commands


def _is_int(value: object) -> bool:
    return isinstance(value, int) and not isinstance(value, bool)

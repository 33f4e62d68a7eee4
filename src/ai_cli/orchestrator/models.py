"""Value types and exit codes shared by the run loop and its callers."""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import Enum
from pathlib import Path
from typing import Any

EXIT_SUCCESS = 0
EXIT_BACKEND_MISSING = 2
EXIT_MAX_ITERATIONS = 4
EXIT_NO_PROGRESS = 5
EXIT_BACKEND_UNAUTHENTICATED = 6
EXIT_USAGE = 64
EXIT_DATAERR = 65
EXIT_NOINPUT = 66
EXIT_CANTCREAT = 73
EXIT_TIMEOUT = 75
EXIT_BACKEND_TIMEOUT = 124
EXIT_BACKEND_FAILURE = 1


class CompletionMode(str, Enum):
    """How backend output is interpreted for completion."""

    MARKER = "marker"
    JSON = "json"


class CompletionStatus(str, Enum):
    """Completion verdict states."""

    DONE = "done"
    CONTINUE = "continue"
    ERROR = "error"


class RunStatus(str, Enum):
    """Terminal status of one run."""

    SUCCESS = "success"
    DONE = "done"
    MAX_ITERATIONS = "max-iterations"
    TIMEOUT = "timeout"
    NO_PROGRESS = "no-progress"
    INVALID_JSON = "invalid-json"
    BACKEND_ERROR = "backend-error"
    BACKEND_MISSING = "backend-missing"
    BACKEND_UNAUTHENTICATED = "backend-unauthenticated"
    BACKEND_UNSUPPORTED = "backend-unsupported"
    BACKEND_UNKNOWN = "backend-unknown"


INVALID_JSON_ERROR = "invalid-json"


@dataclass(slots=True, frozen=True)
class CompletionVerdict:
    """Interpretation of one backend response."""

    status: CompletionStatus
    summary: str | None = None
    next_prompt: str | None = None
    error: str | None = None


@dataclass(slots=True, frozen=True)
class TranscriptEntry:
    """One prompt/response exchange inside a loop run."""

    iteration: int
    prompt: str
    response: str
    duration_ms: int
    started_at: datetime
    exit_code: int


@dataclass(slots=True, frozen=True)
class RunResult:
    """Immutable outcome of a loop or one-shot run."""

    exit_code: int
    status: RunStatus
    backend: str
    text: str
    duration_ms: int
    transcript: tuple[TranscriptEntry, ...] | None = None
    summary: str | None = None
    details: str | None = None

    @property
    def iterations(self) -> int:
        return len(self.transcript) if self.transcript is not None else 0

    @property
    def is_loop(self) -> bool:
        return self.transcript is not None


@dataclass(slots=True, frozen=True)
class LoopSettings:
    """Resolved guardrail settings for one loop run."""

    backend: str
    max_iterations: int
    timeout_ms: int
    completion_mode: CompletionMode = CompletionMode.MARKER
    stagnation_threshold: int = 3

    def __post_init__(self) -> None:
        if self.max_iterations <= 0:
            raise ValueError("max_iterations must be positive")
        if self.timeout_ms <= 0:
            raise ValueError("timeout_ms must be positive")
        if self.stagnation_threshold < 0:
            raise ValueError("stagnation_threshold must be non-negative")


@dataclass(slots=True)
class LoopRequest:
    """Everything a loop run needs besides the registry."""

    prompt: str
    settings: LoopSettings
    cwd: Path = field(default_factory=Path.cwd)
    env: Mapping[str, str | None] = field(default_factory=dict)


@dataclass(slots=True)
class OneShotRequest:
    """Single prompt exchange without completion detection."""

    prompt: str
    backend: str
    timeout_ms: int
    cwd: Path = field(default_factory=Path.cwd)
    env: Mapping[str, str | None] = field(default_factory=dict)


def utc_now() -> datetime:
    return datetime.now(tz=UTC)


def transcript_to_dicts(transcript: tuple[TranscriptEntry, ...]) -> list[dict[str, Any]]:
    """Serialize transcript entries with camelCase keys for JSON output."""

    return [
        {
            "iteration": entry.iteration,
            "prompt": entry.prompt,
            "response": entry.response,
            "durationMs": entry.duration_ms,
            "startedAt": entry.started_at.isoformat(),
            "exitCode": entry.exit_code,
        }
        for entry in transcript
    ]

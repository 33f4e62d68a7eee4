"""Backend adapter contract for external CLI agents."""

from __future__ import annotations

import os
from collections.abc import Callable, Mapping
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any, Protocol

ChunkCallback = Callable[[str], None]


class AdapterId(str, Enum):
    """Closed set of backend identifiers."""

    COPILOT = "copilot"
    CODEX = "codex"
    CLAUDE = "claude"


class AvailabilityStatus(str, Enum):
    """Probe verdicts for one backend."""

    AVAILABLE = "available"
    MISSING = "missing"
    UNAUTHENTICATED = "unauthenticated"
    UNSUPPORTED = "unsupported"


@dataclass(slots=True, frozen=True)
class Availability:
    """Fresh availability verdict with optional diagnostic text."""

    status: AvailabilityStatus
    details: str | None = None

    @property
    def is_available(self) -> bool:
        return self.status is AvailabilityStatus.AVAILABLE


@dataclass(slots=True)
class RunOnceRequest:
    """Inputs required to execute one prompt exchange."""

    prompt: str
    cwd: Path
    timeout_seconds: float | None = None
    env: Mapping[str, str | None] = field(default_factory=dict)
    base_env: Mapping[str, str] | None = None
    on_chunk: ChunkCallback | None = None


@dataclass(slots=True)
class ExecutionOutcome:
    """Result of one backend invocation."""

    exit_code: int
    text: str
    raw: dict[str, Any] | None = None
    timed_out: bool = False


class BackendAdapter(Protocol):
    """Capability set implemented by every backend variant."""

    id: AdapterId
    display_name: str

    def is_available(self) -> Availability:
        """Probe the backend without side effects."""

    def run_once(self, request: RunOnceRequest) -> ExecutionOutcome:
        """Send one prompt non-interactively and return the captured output."""


def merge_environment(
    base_env: Mapping[str, str] | None,
    overrides: Mapping[str, str | None],
) -> dict[str, str]:
    """Return a fresh env dict with overrides applied; ``None`` removes a key."""

    merged = dict(os.environ if base_env is None else base_env)
    for key, value in overrides.items():
        if value is None:
            merged.pop(key, None)
        else:
            merged[key] = value
    return merged

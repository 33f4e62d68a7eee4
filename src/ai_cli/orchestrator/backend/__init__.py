"""Backend adapters for external AI CLI tools."""

from ai_cli.orchestrator.backend.base import (
    AdapterId,
    Availability,
    AvailabilityStatus,
    BackendAdapter,
    ExecutionOutcome,
    RunOnceRequest,
)
from ai_cli.orchestrator.backend.claude import ClaudeAdapter
from ai_cli.orchestrator.backend.cli_backend import BackendRunError
from ai_cli.orchestrator.backend.codex import CodexAdapter
from ai_cli.orchestrator.backend.copilot import CopilotAdapter
from ai_cli.orchestrator.backend.registry import BackendRegistry, build_default_registry

__all__ = [
    "AdapterId",
    "Availability",
    "AvailabilityStatus",
    "BackendAdapter",
    "BackendRegistry",
    "BackendRunError",
    "ClaudeAdapter",
    "CodexAdapter",
    "CopilotAdapter",
    "ExecutionOutcome",
    "RunOnceRequest",
    "build_default_registry",
]

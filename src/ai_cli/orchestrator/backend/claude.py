"""Placeholder adapter for the reserved ``claude`` identifier."""

from __future__ import annotations

from ai_cli.orchestrator.backend.base import (
    AdapterId,
    Availability,
    AvailabilityStatus,
    ExecutionOutcome,
    RunOnceRequest,
)

UNSUPPORTED_EXIT_CODE = 64
UNSUPPORTED_MESSAGE = "Claude backend is not supported yet"


class ClaudeAdapter:
    """Registered so the identifier resolves, but never spawns anything."""

    id = AdapterId.CLAUDE
    display_name = "Anthropic Claude CLI"

    def is_available(self) -> Availability:
        return Availability(status=AvailabilityStatus.UNSUPPORTED, details=UNSUPPORTED_MESSAGE)

    def run_once(self, request: RunOnceRequest) -> ExecutionOutcome:  # noqa: ARG002
        return ExecutionOutcome(exit_code=UNSUPPORTED_EXIT_CODE, text=UNSUPPORTED_MESSAGE)

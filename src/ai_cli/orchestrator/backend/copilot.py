"""GitHub Copilot CLI adapter."""

from __future__ import annotations

import logging
from collections.abc import Sequence

from ai_cli.orchestrator.backend.availability import UNAUTHENTICATED_PATTERNS
from ai_cli.orchestrator.backend.base import (
    AdapterId,
    Availability,
    ExecutionOutcome,
    RunOnceRequest,
)
from ai_cli.orchestrator.backend.cli_backend import (
    DEFAULT_PROBE_TIMEOUT_SECONDS,
    execute_prompt,
    probe_backend,
)

logger = logging.getLogger(__name__)

COPILOT_COMMAND: tuple[str, ...] = ("copilot",)
COPILOT_RUN_FLAGS: tuple[str, ...] = ("-s", "--allow-all-tools", "--allow-all-paths")


class CopilotAdapter:
    """Run prompts through ``copilot -p`` and stream stdout as it arrives."""

    id = AdapterId.COPILOT
    display_name = "GitHub Copilot CLI"

    def __init__(
        self,
        command: Sequence[str] | None = None,
        *,
        probe_timeout_seconds: float = DEFAULT_PROBE_TIMEOUT_SECONDS,
    ) -> None:
        self.command = tuple(command) if command else COPILOT_COMMAND
        self.probe_timeout_seconds = probe_timeout_seconds

    def is_available(self) -> Availability:
        return probe_backend(
            self.command,
            unauthenticated_patterns=UNAUTHENTICATED_PATTERNS,
            timeout_seconds=self.probe_timeout_seconds,
        ).to_availability()

    def run_once(self, request: RunOnceRequest) -> ExecutionOutcome:
        argv = [*self.command, "-p", request.prompt, *COPILOT_RUN_FLAGS]
        logger.info("Running copilot: cwd=%s prompt_chars=%d", request.cwd, len(request.prompt))
        return execute_prompt(argv, request, stream=True)

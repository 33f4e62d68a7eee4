"""OpenAI Codex CLI adapter."""

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

CODEX_COMMAND: tuple[str, ...] = ("codex",)
# `-` tells `codex exec` to read the prompt from stdin
CODEX_RUN_ARGS: tuple[str, ...] = ("exec", "-")
CODEX_UNAUTHENTICATED_PATTERNS: tuple[str, ...] = (
    *UNAUTHENTICATED_PATTERNS,
    r"forbidden",
    r"api\s*key",
    r"openai_api_key",
)


class CodexAdapter:
    """Pipe prompts into ``codex exec`` over stdin."""

    id = AdapterId.CODEX
    display_name = "OpenAI Codex CLI"

    def __init__(
        self,
        command: Sequence[str] | None = None,
        *,
        probe_timeout_seconds: float = DEFAULT_PROBE_TIMEOUT_SECONDS,
    ) -> None:
        self.command = tuple(command) if command else CODEX_COMMAND
        self.probe_timeout_seconds = probe_timeout_seconds

    def is_available(self) -> Availability:
        return probe_backend(
            self.command,
            unauthenticated_patterns=CODEX_UNAUTHENTICATED_PATTERNS,
            timeout_seconds=self.probe_timeout_seconds,
        ).to_availability()

    def run_once(self, request: RunOnceRequest) -> ExecutionOutcome:
        argv = [*self.command, *CODEX_RUN_ARGS]
        logger.info("Running codex: cwd=%s prompt_chars=%d", request.cwd, len(request.prompt))
        return execute_prompt(argv, request, input_text=request.prompt)

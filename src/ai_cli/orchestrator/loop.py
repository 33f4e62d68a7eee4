"""Iteration orchestrator: prompt -> execute -> detect under guardrails."""

from __future__ import annotations

import logging
import os
import time
from collections.abc import Callable, Mapping
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from types import MappingProxyType

from ai_cli.orchestrator.backend.base import (
    AvailabilityStatus,
    BackendAdapter,
    ChunkCallback,
    ExecutionOutcome,
    RunOnceRequest,
)
from ai_cli.orchestrator.backend.registry import BackendRegistry
from ai_cli.orchestrator.completion import detect_completion
from ai_cli.orchestrator.models import (
    EXIT_BACKEND_FAILURE,
    EXIT_BACKEND_MISSING,
    EXIT_BACKEND_UNAUTHENTICATED,
    EXIT_DATAERR,
    EXIT_MAX_ITERATIONS,
    EXIT_NO_PROGRESS,
    EXIT_SUCCESS,
    EXIT_TIMEOUT,
    EXIT_USAGE,
    INVALID_JSON_ERROR,
    CompletionStatus,
    LoopRequest,
    OneShotRequest,
    RunResult,
    RunStatus,
    TranscriptEntry,
    utc_now,
)

logger = logging.getLogger(__name__)

IterationCallback = Callable[[TranscriptEntry], None]

_UNAVAILABLE_OUTCOMES: dict[AvailabilityStatus, tuple[RunStatus, int]] = {
    AvailabilityStatus.MISSING: (RunStatus.BACKEND_MISSING, EXIT_BACKEND_MISSING),
    AvailabilityStatus.UNAUTHENTICATED: (
        RunStatus.BACKEND_UNAUTHENTICATED,
        EXIT_BACKEND_UNAUTHENTICATED,
    ),
    AvailabilityStatus.UNSUPPORTED: (RunStatus.BACKEND_UNSUPPORTED, EXIT_USAGE),
}


@dataclass(slots=True)
class _RunState:
    """Mutable bookkeeping for one run; never escapes the orchestrator."""

    backend: str
    started: float
    transcript: list[TranscriptEntry] = field(default_factory=list)
    last_response: str = ""
    previous_response: str = ""
    identical_count: int = 0


class IterationOrchestrator:
    """Drive one backend until completion or until a guardrail trips.

    The orchestrator holds no state between runs; every ``run_loop`` and
    ``run_once`` call resolves and probes the backend afresh and snapshots
    the process environment once.
    """

    def __init__(
        self,
        registry: BackendRegistry,
        *,
        monotonic: Callable[[], float] = time.monotonic,
        now: Callable[[], datetime] = utc_now,
    ) -> None:
        self._registry = registry
        self._monotonic = monotonic
        self._now = now

    def run_loop(
        self,
        request: LoopRequest,
        *,
        on_iteration: IterationCallback | None = None,
        on_chunk: ChunkCallback | None = None,
    ) -> RunResult:
        settings = request.settings
        state = _RunState(backend=settings.backend, started=self._monotonic())

        adapter = self._preflight(settings.backend, state)
        if isinstance(adapter, RunResult):
            return adapter

        base_env = _snapshot_environment()
        prompt = request.prompt

        for iteration in range(1, settings.max_iterations + 1):
            elapsed_ms = self._elapsed_ms(state)
            if elapsed_ms >= settings.timeout_ms:
                return self._timeout_result(state, elapsed_ms=elapsed_ms)

            remaining_ms = settings.timeout_ms - elapsed_ms
            entry, outcome = self._step(
                adapter,
                state=state,
                iteration=iteration,
                prompt=prompt,
                cwd=request.cwd,
                env=request.env,
                base_env=base_env,
                timeout_ms=remaining_ms,
                on_chunk=on_chunk,
            )
            _notify(on_iteration, entry)
            if outcome is None:
                return self._finish(
                    state,
                    status=RunStatus.BACKEND_ERROR,
                    exit_code=EXIT_BACKEND_FAILURE,
                    text=entry.response,
                    details=entry.response,
                )

            if outcome.timed_out:
                return self._timeout_result(state, elapsed_ms=self._elapsed_ms(state))

            if settings.stagnation_threshold > 0:
                if outcome.text == state.previous_response:
                    state.identical_count += 1
                else:
                    state.identical_count = 1
                state.previous_response = outcome.text
                if state.identical_count >= settings.stagnation_threshold:
                    return self._finish(
                        state,
                        status=RunStatus.NO_PROGRESS,
                        exit_code=EXIT_NO_PROGRESS,
                        text=outcome.text,
                        details=(
                            f"Stopped after {state.identical_count} identical "
                            "consecutive responses"
                        ),
                    )

            if outcome.exit_code != 0:
                return self._finish(
                    state,
                    status=RunStatus.BACKEND_ERROR,
                    exit_code=outcome.exit_code,
                    text=outcome.text,
                    details=f"Backend returned exit code {outcome.exit_code}",
                )

            verdict = detect_completion(outcome.text, settings.completion_mode)
            if verdict.status is CompletionStatus.DONE:
                return self._finish(
                    state,
                    status=RunStatus.DONE,
                    exit_code=EXIT_SUCCESS,
                    text=outcome.text,
                    summary=verdict.summary,
                )
            if verdict.status is CompletionStatus.ERROR:
                return self._finish(
                    state,
                    status=RunStatus.INVALID_JSON,
                    exit_code=EXIT_DATAERR,
                    text=outcome.text,
                    details=verdict.error or verdict.summary or INVALID_JSON_ERROR,
                )
            if verdict.next_prompt:
                prompt = verdict.next_prompt

        return self._finish(
            state,
            status=RunStatus.MAX_ITERATIONS,
            exit_code=EXIT_MAX_ITERATIONS,
            text=state.last_response,
            details=f"Reached the limit of {settings.max_iterations} iterations",
        )

    def run_once(
        self,
        request: OneShotRequest,
        *,
        on_chunk: ChunkCallback | None = None,
    ) -> RunResult:
        state = _RunState(backend=request.backend, started=self._monotonic())

        adapter = self._preflight(request.backend, state, one_shot=True)
        if isinstance(adapter, RunResult):
            return adapter

        entry, outcome = self._step(
            adapter,
            state=state,
            iteration=1,
            prompt=request.prompt,
            cwd=request.cwd,
            env=request.env,
            base_env=_snapshot_environment(),
            timeout_ms=request.timeout_ms,
            on_chunk=on_chunk,
        )
        if outcome is None:
            return self._finish(
                state,
                status=RunStatus.BACKEND_ERROR,
                exit_code=EXIT_BACKEND_FAILURE,
                text=entry.response,
                details=entry.response,
                one_shot=True,
            )
        if outcome.exit_code == 0:
            return self._finish(
                state,
                status=RunStatus.SUCCESS,
                exit_code=EXIT_SUCCESS,
                text=outcome.text,
                one_shot=True,
            )
        return self._finish(
            state,
            status=RunStatus.BACKEND_ERROR,
            exit_code=outcome.exit_code,
            text=outcome.text,
            details=f"Backend returned exit code {outcome.exit_code}",
            one_shot=True,
        )

    def _preflight(
        self,
        backend_id: str,
        state: _RunState,
        *,
        one_shot: bool = False,
    ) -> BackendAdapter | RunResult:
        """Resolve and probe the backend; a ``RunResult`` means the run is over."""

        adapter = self._registry.resolve(backend_id)
        if adapter is None:
            supported = ", ".join(self._registry.ids())
            message = f"Unknown backend: {backend_id}. Supported backends: {supported}"
            return self._finish(
                state,
                status=RunStatus.BACKEND_UNKNOWN,
                exit_code=EXIT_USAGE,
                text=message,
                details=message,
                one_shot=one_shot,
            )

        try:
            availability = adapter.is_available()
        except Exception as error:  # noqa: BLE001
            logger.exception("Backend %s raised during availability probe", backend_id)
            message = f"Availability probe raised {type(error).__name__}: {error}"
            return self._finish(
                state,
                status=RunStatus.BACKEND_ERROR,
                exit_code=EXIT_BACKEND_FAILURE,
                text=message,
                details=message,
                one_shot=one_shot,
            )

        if availability.is_available:
            if availability.details:
                logger.info(
                    "Backend %s probe inconclusive, proceeding: %s",
                    backend_id,
                    availability.details,
                )
            return adapter

        status, exit_code = _UNAVAILABLE_OUTCOMES[availability.status]
        message = availability.details or f"Backend {backend_id} is not available"
        return self._finish(
            state,
            status=status,
            exit_code=exit_code,
            text=message,
            details=message,
            one_shot=one_shot,
        )

    def _step(  # noqa: PLR0913
        self,
        adapter: BackendAdapter,
        *,
        state: _RunState,
        iteration: int,
        prompt: str,
        cwd: Path,
        env: Mapping[str, str | None],
        base_env: Mapping[str, str],
        timeout_ms: float,
        on_chunk: ChunkCallback | None,
    ) -> tuple[TranscriptEntry, ExecutionOutcome | None]:
        """Run one exchange and record it; ``None`` outcome means the adapter raised."""

        started_at = self._now()
        step_start = self._monotonic()
        outcome: ExecutionOutcome | None
        try:
            outcome = adapter.run_once(
                RunOnceRequest(
                    prompt=prompt,
                    cwd=cwd,
                    timeout_seconds=timeout_ms / 1000,
                    env=env,
                    base_env=base_env,
                    on_chunk=on_chunk,
                ),
            )
        except Exception as error:  # noqa: BLE001
            logger.exception("Backend %s raised during run_once", state.backend)
            outcome = None
            response = f"Backend raised {type(error).__name__}: {error}"
            exit_code = EXIT_BACKEND_FAILURE
        else:
            response = outcome.text
            exit_code = outcome.exit_code

        entry = TranscriptEntry(
            iteration=iteration,
            prompt=prompt,
            response=response,
            duration_ms=_to_ms(self._monotonic() - step_start),
            started_at=started_at,
            exit_code=exit_code,
        )
        state.transcript.append(entry)
        state.last_response = response
        logger.debug(
            "Iteration %d finished: backend=%s exit_code=%d duration_ms=%d",
            iteration,
            state.backend,
            exit_code,
            entry.duration_ms,
        )
        return entry, outcome

    def _timeout_result(self, state: _RunState, *, elapsed_ms: int) -> RunResult:
        return self._finish(
            state,
            status=RunStatus.TIMEOUT,
            exit_code=EXIT_TIMEOUT,
            text=state.last_response,
            details=f"Global timeout reached after {elapsed_ms}ms",
        )

    def _finish(  # noqa: PLR0913
        self,
        state: _RunState,
        *,
        status: RunStatus,
        exit_code: int,
        text: str,
        summary: str | None = None,
        details: str | None = None,
        one_shot: bool = False,
    ) -> RunResult:
        result = RunResult(
            exit_code=exit_code,
            status=status,
            backend=state.backend,
            text=text,
            duration_ms=self._elapsed_ms(state),
            transcript=None if one_shot else tuple(state.transcript),
            summary=summary,
            details=details,
        )
        logger.info(
            "Run finished: backend=%s status=%s exit_code=%d iterations=%d",
            result.backend,
            result.status.value,
            result.exit_code,
            len(state.transcript),
        )
        return result

    def _elapsed_ms(self, state: _RunState) -> int:
        return _to_ms(self._monotonic() - state.started)


def _snapshot_environment() -> Mapping[str, str]:
    return MappingProxyType(dict(os.environ))


def _to_ms(seconds: float) -> int:
    return int(round(seconds * 1000))


def _notify(on_iteration: IterationCallback | None, entry: TranscriptEntry) -> None:
    if on_iteration is None:
        return
    try:
        on_iteration(entry)
    except Exception:  # noqa: BLE001
        logger.exception("Iteration observer failed for iteration %d", entry.iteration)

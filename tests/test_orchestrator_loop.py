from __future__ import annotations

from datetime import UTC, datetime, timedelta
from pathlib import Path

import allure
import pytest

from ai_cli.orchestrator.backend import (
    AdapterId,
    Availability,
    AvailabilityStatus,
    BackendRegistry,
    ExecutionOutcome,
    RunOnceRequest,
)
from ai_cli.orchestrator.loop import IterationOrchestrator
from ai_cli.orchestrator.models import (
    CompletionMode,
    LoopRequest,
    LoopSettings,
    OneShotRequest,
    RunStatus,
    TranscriptEntry,
)

pytestmark = [
    allure.epic("Run Loop"),
    allure.feature("Iteration Orchestrator"),
]

_EPOCH = datetime(2026, 1, 1, tzinfo=UTC)


class FakeClock:
    def __init__(self) -> None:
        self.seconds = 0.0

    def monotonic(self) -> float:
        return self.seconds

    def now(self) -> datetime:
        return _EPOCH + timedelta(seconds=self.seconds)


class FakeAdapter:
    """Scripted backend; each call consumes the next response and advances the clock."""

    display_name = "Fake"

    def __init__(
        self,
        responses: list[ExecutionOutcome | Exception | str],
        *,
        clock: FakeClock,
        step_seconds: float = 0.1,
        availability: Availability | None = None,
        adapter_id: AdapterId = AdapterId.COPILOT,
    ) -> None:
        self.id = adapter_id
        self.responses = list(responses)
        self.clock = clock
        self.step_seconds = step_seconds
        self.availability = availability or Availability(status=AvailabilityStatus.AVAILABLE)
        self.requests: list[RunOnceRequest] = []
        self.probes = 0

    def is_available(self) -> Availability:
        self.probes += 1
        return self.availability

    def run_once(self, request: RunOnceRequest) -> ExecutionOutcome:
        self.requests.append(request)
        self.clock.seconds += self.step_seconds
        response = self.responses.pop(0) if self.responses else "idle"
        if isinstance(response, Exception):
            raise response
        if isinstance(response, str):
            return ExecutionOutcome(exit_code=0, text=response)
        return response


def _orchestrator(adapter: FakeAdapter, clock: FakeClock) -> IterationOrchestrator:
    return IterationOrchestrator(
        BackendRegistry([adapter]),
        monotonic=clock.monotonic,
        now=clock.now,
    )


def _loop_request(  # noqa: PLR0913
    prompt: str = "do the task",
    *,
    backend: str = "copilot",
    max_iterations: int = 10,
    timeout_ms: int = 60_000,
    mode: CompletionMode = CompletionMode.MARKER,
    stagnation_threshold: int = 3,
    env: dict[str, str | None] | None = None,
) -> LoopRequest:
    return LoopRequest(
        prompt=prompt,
        settings=LoopSettings(
            backend=backend,
            max_iterations=max_iterations,
            timeout_ms=timeout_ms,
            completion_mode=mode,
            stagnation_threshold=stagnation_threshold,
        ),
        cwd=Path("/tmp/project"),
        env=env or {},
    )


def test_marker_done_on_second_iteration() -> None:
    clock = FakeClock()
    adapter = FakeAdapter(["still working", "all set\nDONE"], clock=clock, step_seconds=0.25)

    result = _orchestrator(adapter, clock).run_loop(_loop_request())

    assert result.status is RunStatus.DONE
    assert result.exit_code == 0
    assert result.iterations == 2
    assert result.text == "all set\nDONE"
    assert result.transcript is not None
    assert [entry.iteration for entry in result.transcript] == [1, 2]
    assert [entry.duration_ms for entry in result.transcript] == [250, 250]
    assert result.transcript[1].started_at == _EPOCH + timedelta(seconds=0.25)
    assert result.duration_ms == 500


def test_max_iterations_with_distinct_responses() -> None:
    clock = FakeClock()
    adapter = FakeAdapter(["one", "two", "three", "four"], clock=clock)

    result = _orchestrator(adapter, clock).run_loop(_loop_request(max_iterations=3))

    assert result.status is RunStatus.MAX_ITERATIONS
    assert result.exit_code == 4
    assert result.iterations == 3
    assert result.text == "three"
    assert len(adapter.requests) == 3


def test_identical_responses_trip_no_progress() -> None:
    clock = FakeClock()
    adapter = FakeAdapter(["same", "same", "same", "same"], clock=clock)

    result = _orchestrator(adapter, clock).run_loop(_loop_request(stagnation_threshold=3))

    assert result.status is RunStatus.NO_PROGRESS
    assert result.exit_code == 5
    assert result.iterations == 3


def test_stagnation_counter_resets_on_change() -> None:
    clock = FakeClock()
    adapter = FakeAdapter(["a", "a", "b", "b", "b"], clock=clock)

    result = _orchestrator(adapter, clock).run_loop(_loop_request(stagnation_threshold=3))

    assert result.status is RunStatus.NO_PROGRESS
    assert result.iterations == 5


def test_zero_threshold_disables_stagnation_check() -> None:
    clock = FakeClock()
    adapter = FakeAdapter(["same"] * 5, clock=clock)

    result = _orchestrator(adapter, clock).run_loop(
        _loop_request(max_iterations=5, stagnation_threshold=0),
    )

    assert result.status is RunStatus.MAX_ITERATIONS
    assert result.iterations == 5


@pytest.mark.parametrize(
    ("availability_status", "run_status", "exit_code"),
    [
        (AvailabilityStatus.MISSING, RunStatus.BACKEND_MISSING, 2),
        (AvailabilityStatus.UNAUTHENTICATED, RunStatus.BACKEND_UNAUTHENTICATED, 6),
        (AvailabilityStatus.UNSUPPORTED, RunStatus.BACKEND_UNSUPPORTED, 64),
    ],
)
def test_unavailable_backend_never_runs(
    availability_status: AvailabilityStatus,
    run_status: RunStatus,
    exit_code: int,
) -> None:
    clock = FakeClock()
    adapter = FakeAdapter(
        ["unused"],
        clock=clock,
        availability=Availability(status=availability_status, details="probe said no"),
    )

    result = _orchestrator(adapter, clock).run_loop(_loop_request())

    assert result.status is run_status
    assert result.exit_code == exit_code
    assert result.iterations == 0
    assert result.transcript == ()
    assert result.details == "probe said no"
    assert adapter.requests == []


def test_unknown_backend_is_usage_error() -> None:
    clock = FakeClock()
    adapter = FakeAdapter(["unused"], clock=clock)

    result = _orchestrator(adapter, clock).run_loop(_loop_request(backend="gemini"))

    assert result.status is RunStatus.BACKEND_UNKNOWN
    assert result.exit_code == 64
    assert result.iterations == 0
    assert "gemini" in (result.details or "")
    assert adapter.probes == 0


def test_global_timeout_checked_before_each_iteration() -> None:
    clock = FakeClock()
    adapter = FakeAdapter(["a", "b", "c"], clock=clock, step_seconds=0.6)

    result = _orchestrator(adapter, clock).run_loop(_loop_request(timeout_ms=1_000))

    assert result.status is RunStatus.TIMEOUT
    assert result.exit_code == 75
    assert result.iterations == 2
    assert result.text == "b"
    assert adapter.requests[0].timeout_seconds == pytest.approx(1.0)
    assert adapter.requests[1].timeout_seconds == pytest.approx(0.4)


def test_backend_timeout_ends_run_as_timeout() -> None:
    clock = FakeClock()
    adapter = FakeAdapter(
        [ExecutionOutcome(exit_code=124, text="partial", timed_out=True)],
        clock=clock,
        step_seconds=1.0,
    )

    result = _orchestrator(adapter, clock).run_loop(_loop_request(timeout_ms=1_000))

    assert result.status is RunStatus.TIMEOUT
    assert result.exit_code == 75
    assert result.iterations == 1


def test_backend_exit_code_is_propagated() -> None:
    clock = FakeClock()
    adapter = FakeAdapter(
        [ExecutionOutcome(exit_code=42, text="boom")],
        clock=clock,
    )

    result = _orchestrator(adapter, clock).run_loop(_loop_request())

    assert result.status is RunStatus.BACKEND_ERROR
    assert result.exit_code == 42
    assert result.text == "boom"
    assert result.transcript is not None
    assert result.transcript[0].exit_code == 42


def test_invalid_json_stops_with_dataerr() -> None:
    clock = FakeClock()
    adapter = FakeAdapter(["plain prose, no JSON"], clock=clock)

    result = _orchestrator(adapter, clock).run_loop(_loop_request(mode=CompletionMode.JSON))

    assert result.status is RunStatus.INVALID_JSON
    assert result.exit_code == 65
    assert result.details == "invalid-json"


def test_json_next_replaces_prompt_and_summary_is_carried() -> None:
    clock = FakeClock()
    adapter = FakeAdapter(
        [
            '{"status": "continue", "next": "step two"}',
            '{"status": "continue"}',
            '{"status": "done", "summary": "shipped"}',
        ],
        clock=clock,
    )

    result = _orchestrator(adapter, clock).run_loop(
        _loop_request("step one", mode=CompletionMode.JSON),
    )

    assert result.status is RunStatus.DONE
    assert result.summary == "shipped"
    assert [request.prompt for request in adapter.requests] == [
        "step one",
        "step two",
        "step two",
    ]


def test_observer_sees_every_entry_and_its_errors_are_ignored() -> None:
    clock = FakeClock()
    adapter = FakeAdapter(["one", "two\nDONE"], clock=clock)
    seen: list[TranscriptEntry] = []

    def observer(entry: TranscriptEntry) -> None:
        seen.append(entry)
        raise RuntimeError("observer bug")

    result = _orchestrator(adapter, clock).run_loop(_loop_request(), on_iteration=observer)

    assert result.status is RunStatus.DONE
    assert result.transcript is not None
    assert seen == list(result.transcript)


def test_adapter_exception_becomes_backend_error() -> None:
    clock = FakeClock()
    adapter = FakeAdapter([RuntimeError("adapter exploded")], clock=clock)

    result = _orchestrator(adapter, clock).run_loop(_loop_request())

    assert result.status is RunStatus.BACKEND_ERROR
    assert result.exit_code == 1
    assert result.iterations == 1
    assert "adapter exploded" in (result.details or "")


def test_env_snapshot_and_overrides_reach_every_invocation() -> None:
    clock = FakeClock()
    adapter = FakeAdapter(["one", "two", "three"], clock=clock)

    _orchestrator(adapter, clock).run_loop(
        _loop_request(max_iterations=3, env={"CI": "1", "HOME": None}),
    )

    first, *rest = adapter.requests
    assert first.env == {"CI": "1", "HOME": None}
    assert first.base_env is not None
    assert all(request.base_env is first.base_env for request in rest)
    assert all(request.cwd == Path("/tmp/project") for request in adapter.requests)


def test_one_shot_success_has_no_transcript() -> None:
    clock = FakeClock()
    adapter = FakeAdapter(["hello"], clock=clock, step_seconds=0.85)

    result = _orchestrator(adapter, clock).run_once(
        OneShotRequest(prompt="hi", backend="copilot", timeout_ms=5_000),
    )

    assert result.status is RunStatus.SUCCESS
    assert result.exit_code == 0
    assert result.text == "hello"
    assert result.transcript is None
    assert result.iterations == 0
    assert result.duration_ms == 850
    assert adapter.requests[0].timeout_seconds == pytest.approx(5.0)


def test_one_shot_failure_propagates_exit_code() -> None:
    clock = FakeClock()
    adapter = FakeAdapter(
        [ExecutionOutcome(exit_code=124, text="slow", timed_out=True)],
        clock=clock,
    )

    result = _orchestrator(adapter, clock).run_once(
        OneShotRequest(prompt="hi", backend="copilot", timeout_ms=100),
    )

    assert result.status is RunStatus.BACKEND_ERROR
    assert result.exit_code == 124


class RaisingProbeAdapter(FakeAdapter):
    def is_available(self) -> Availability:
        self.probes += 1
        raise RuntimeError("probe blew up")


def test_raising_availability_probe_ends_loop_as_backend_error() -> None:
    clock = FakeClock()
    adapter = RaisingProbeAdapter(["unused"], clock=clock)

    result = _orchestrator(adapter, clock).run_loop(_loop_request())

    assert result.status is RunStatus.BACKEND_ERROR
    assert result.exit_code == 1
    assert result.iterations == 0
    assert result.transcript == ()
    assert "probe blew up" in (result.details or "")
    assert adapter.requests == []


def test_raising_availability_probe_ends_one_shot_as_backend_error() -> None:
    clock = FakeClock()
    adapter = RaisingProbeAdapter(["unused"], clock=clock)

    result = _orchestrator(adapter, clock).run_once(
        OneShotRequest(prompt="hi", backend="copilot", timeout_ms=100),
    )

    assert result.status is RunStatus.BACKEND_ERROR
    assert result.exit_code == 1
    assert result.transcript is None
    assert "RuntimeError" in result.text


def test_one_shot_missing_backend() -> None:
    clock = FakeClock()
    adapter = FakeAdapter(
        ["unused"],
        clock=clock,
        availability=Availability(status=AvailabilityStatus.MISSING, details="Command not found"),
    )

    result = _orchestrator(adapter, clock).run_once(
        OneShotRequest(prompt="hi", backend="copilot", timeout_ms=100),
    )

    assert result.status is RunStatus.BACKEND_MISSING
    assert result.exit_code == 2
    assert result.transcript is None
    assert adapter.requests == []


def test_loop_settings_reject_invalid_guardrails() -> None:
    with pytest.raises(ValueError, match="max_iterations"):
        LoopSettings(backend="copilot", max_iterations=0, timeout_ms=1)
    with pytest.raises(ValueError, match="timeout_ms"):
        LoopSettings(backend="copilot", max_iterations=1, timeout_ms=0)
    with pytest.raises(ValueError, match="stagnation_threshold"):
        LoopSettings(backend="copilot", max_iterations=1, timeout_ms=1, stagnation_threshold=-1)

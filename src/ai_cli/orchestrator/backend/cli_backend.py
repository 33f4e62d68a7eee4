"""Subprocess execution shared by CLI backend adapters."""

from __future__ import annotations

import codecs
import logging
import subprocess
import threading
import time
from collections.abc import Mapping, Sequence
from dataclasses import dataclass
from pathlib import Path
from typing import IO

from ai_cli.orchestrator.backend.availability import (
    MISSING_BINARY_PATTERNS,
    UNAUTHENTICATED_PATTERNS,
    AvailabilityClassification,
    classify_probe_result,
    classify_probe_timeout,
    classify_spawn_error,
)
from ai_cli.orchestrator.backend.base import (
    ChunkCallback,
    ExecutionOutcome,
    RunOnceRequest,
    merge_environment,
)

logger = logging.getLogger(__name__)

EXIT_SPAWN_NOT_FOUND = 2
EXIT_SPAWN_FAILED = 1
EXIT_BACKEND_TIMEOUT = 124

DEFAULT_PROBE_TIMEOUT_SECONDS = 15.0

_POLL_INTERVAL_SECONDS = 0.05
_TERMINATE_GRACE_SECONDS = 2.0
_READ_CHUNK_BYTES = 4096


class BackendRunError(RuntimeError):
    """Backend process could not be started."""

    def __init__(self, message: str, *, missing: bool) -> None:
        super().__init__(message)
        self.missing = missing


@dataclass(slots=True)
class ProcessRunResult:
    """Captured output of one finished (or terminated) process."""

    exit_code: int
    stdout: str
    stderr: str
    timed_out: bool


def probe_backend(
    command: Sequence[str],
    *,
    version_args: Sequence[str] = ("--version",),
    unauthenticated_patterns: tuple[str, ...] = UNAUTHENTICATED_PATTERNS,
    missing_patterns: tuple[str, ...] = MISSING_BINARY_PATTERNS,
    timeout_seconds: float = DEFAULT_PROBE_TIMEOUT_SECONDS,
) -> AvailabilityClassification:
    """Run the backend version probe and classify what came back."""

    argv = [*command, *version_args]
    try:
        completed = subprocess.run(  # noqa: S603
            argv,
            check=False,
            capture_output=True,
            text=True,
            encoding="utf-8",
            errors="replace",
            timeout=timeout_seconds,
        )
    except subprocess.TimeoutExpired:
        classification = classify_probe_timeout(timeout_seconds=timeout_seconds)
    except OSError as error:
        classification = classify_spawn_error(error, executable=command[0])
    else:
        classification = classify_probe_result(
            exit_code=completed.returncode,
            stdout=completed.stdout or "",
            stderr=completed.stderr or "",
            unauthenticated_patterns=unauthenticated_patterns,
            missing_patterns=missing_patterns,
        )

    logger.debug(
        "Backend probe classified: command=%s status=%s rule=%s pattern=%s",
        command[0],
        classification.status.value,
        classification.matched_rule,
        classification.matched_pattern,
    )
    return classification


def execute_prompt(
    argv: Sequence[str],
    request: RunOnceRequest,
    *,
    input_text: str | None = None,
    stream: bool = False,
) -> ExecutionOutcome:
    """Run one backend exchange and normalize it into an execution outcome.

    Spawn failures and timeouts are reported through the exit code and text,
    never raised, so the caller only ever has to check ``exit_code``.
    """

    env = merge_environment(request.base_env, request.env)
    try:
        result = run_cli_process(
            argv=argv,
            cwd=request.cwd,
            env=env,
            timeout_seconds=request.timeout_seconds,
            input_text=input_text,
            on_chunk=request.on_chunk if stream else None,
        )
    except BackendRunError as error:
        logger.warning("Backend spawn failed: %s", error)
        return ExecutionOutcome(
            exit_code=EXIT_SPAWN_NOT_FOUND if error.missing else EXIT_SPAWN_FAILED,
            text=str(error),
            raw={"spawn_error": str(error), "missing": error.missing},
        )

    raw = {
        "stdout": result.stdout,
        "stderr": result.stderr,
        "exit_code": result.exit_code,
        "timed_out": result.timed_out,
    }
    if result.timed_out:
        logger.warning(
            "Backend timed out after %.1fs: %s",
            request.timeout_seconds or 0.0,
            argv[0],
        )
        partial = select_response_text(stdout=result.stdout, stderr=result.stderr)
        message = f"Backend timed out after {request.timeout_seconds or 0.0:.1f}s"
        return ExecutionOutcome(
            exit_code=EXIT_BACKEND_TIMEOUT,
            text=f"{partial}\n{message}" if partial.strip() else message,
            raw=raw,
            timed_out=True,
        )

    return ExecutionOutcome(
        exit_code=result.exit_code,
        text=select_response_text(stdout=result.stdout, stderr=result.stderr),
        raw=raw,
    )


def select_response_text(*, stdout: str, stderr: str) -> str:
    """Prefer stdout; fall back to stderr when stdout carries nothing."""

    if stdout.strip():
        return stdout.strip()
    return stderr


def run_cli_process(  # noqa: PLR0913
    *,
    argv: Sequence[str],
    cwd: Path,
    env: Mapping[str, str],
    timeout_seconds: float | None,
    input_text: str | None = None,
    on_chunk: ChunkCallback | None = None,
) -> ProcessRunResult:
    """Spawn ``argv``, drain its output, and enforce ``timeout_seconds``."""

    try:
        process = subprocess.Popen(  # noqa: S603
            list(argv),
            cwd=cwd,
            env=dict(env),
            stdin=subprocess.PIPE if input_text is not None else subprocess.DEVNULL,
            stdout=subprocess.PIPE,
            stderr=subprocess.PIPE,
        )
    except FileNotFoundError as error:
        raise BackendRunError(f"Command not found: {argv[0]}", missing=True) from error
    except OSError as error:
        raise BackendRunError(f"Backend failed to start: {error}", missing=False) from error
    except (ValueError, TypeError) as error:
        raise BackendRunError(f"Invalid backend invocation: {error}", missing=False) from error

    stdout_chunks: list[str] = []
    stderr_chunks: list[str] = []
    readers = [
        _start_reader(process.stdout, stdout_chunks, on_chunk),
        _start_reader(process.stderr, stderr_chunks, None),
    ]
    if input_text is not None:
        _start_stdin_feeder(process.stdin, input_text)

    timed_out = _wait_with_deadline(process, timeout_seconds=timeout_seconds)
    for reader in readers:
        reader.join(timeout=_TERMINATE_GRACE_SECONDS)

    return ProcessRunResult(
        exit_code=EXIT_BACKEND_TIMEOUT if timed_out else process.returncode,
        stdout="".join(stdout_chunks),
        stderr="".join(stderr_chunks),
        timed_out=timed_out,
    )


def _wait_with_deadline(
    process: subprocess.Popen[bytes],
    *,
    timeout_seconds: float | None,
) -> bool:
    start_monotonic = time.monotonic()
    while True:
        if process.poll() is not None:
            return False
        if (
            timeout_seconds is not None
            and time.monotonic() - start_monotonic >= timeout_seconds
        ):
            _terminate_process(process)
            return True
        time.sleep(_POLL_INTERVAL_SECONDS)


def _start_reader(
    stream: IO[bytes] | None,
    sink: list[str],
    on_chunk: ChunkCallback | None,
) -> threading.Thread:
    thread = threading.Thread(
        target=_drain_stream,
        args=(stream, sink, on_chunk),
        daemon=True,
    )
    thread.start()
    return thread


def _drain_stream(
    stream: IO[bytes] | None,
    sink: list[str],
    on_chunk: ChunkCallback | None,
) -> None:
    if stream is None:
        return
    decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")
    try:
        while True:
            data = stream.read1(_READ_CHUNK_BYTES)  # type: ignore[attr-defined]
            if not data:
                break
            chunk = decoder.decode(data)
            if chunk:
                sink.append(chunk)
                _emit_chunk(on_chunk, chunk)
        tail = decoder.decode(b"", final=True)
        if tail:
            sink.append(tail)
            _emit_chunk(on_chunk, tail)
    finally:
        stream.close()


def _emit_chunk(on_chunk: ChunkCallback | None, chunk: str) -> None:
    if on_chunk is None:
        return
    try:
        on_chunk(chunk)
    except Exception:  # noqa: BLE001
        logger.exception("Streaming chunk callback failed")


def _start_stdin_feeder(stream: IO[bytes] | None, text: str) -> None:
    def _feed() -> None:
        if stream is None:
            return
        try:
            stream.write(text.encode("utf-8"))
        except (BrokenPipeError, OSError):
            logger.debug("Backend closed stdin before the prompt was fully written")
        finally:
            try:
                stream.close()
            except OSError:
                pass

    threading.Thread(target=_feed, daemon=True).start()


def _terminate_process(process: subprocess.Popen[bytes]) -> None:
    try:
        process.terminate()
    except OSError:
        return
    try:
        process.wait(timeout=_TERMINATE_GRACE_SECONDS)
    except subprocess.TimeoutExpired:
        try:
            process.kill()
        except OSError:
            return
        process.wait(timeout=_TERMINATE_GRACE_SECONDS)

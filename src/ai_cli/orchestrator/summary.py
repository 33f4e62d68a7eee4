"""Human and JSON renderings of finished runs."""

from __future__ import annotations

import math
from typing import Any

from ai_cli.orchestrator.models import RunResult, RunStatus, TranscriptEntry

_RULE = "─" * 40
_PREVIEW_CHARS = 60

_STATUS_MESSAGES: dict[str, str] = {
    RunStatus.SUCCESS.value: "Success",
    RunStatus.DONE.value: "Completed successfully",
    RunStatus.BACKEND_ERROR.value: "Backend error",
    RunStatus.BACKEND_MISSING.value: "Backend not found",
    RunStatus.BACKEND_UNAUTHENTICATED.value: "Authentication required",
    RunStatus.BACKEND_UNSUPPORTED.value: "Backend not supported",
    RunStatus.BACKEND_UNKNOWN.value: "Unknown backend",
    RunStatus.TIMEOUT.value: "Timeout exceeded",
    RunStatus.MAX_ITERATIONS.value: "Iteration limit reached",
    RunStatus.NO_PROGRESS.value: "No progress detected",
    RunStatus.INVALID_JSON.value: "Invalid JSON",
}


def format_duration(ms: int) -> str:
    """Format milliseconds as ``850ms``, ``1.2s``, ``2m 15s`` or ``2m``."""

    if ms < 1000:
        return f"{ms}ms"
    seconds = ms / 1000
    if seconds < 60:
        return f"{seconds:.1f}s"
    minutes = math.floor(seconds / 60)
    remaining = math.floor(seconds % 60 + 0.5)
    if remaining == 60:
        minutes, remaining = minutes + 1, 0
    if remaining == 0:
        return f"{minutes}m"
    return f"{minutes}m {remaining}s"


def status_to_human_message(status: RunStatus | str) -> str:
    key = status.value if isinstance(status, RunStatus) else status
    return _STATUS_MESSAGES.get(key, key)


def render_run_summary_lines(result: RunResult) -> list[str]:
    lines = [
        _RULE,
        f"Backend   : {result.backend}",
        f"Status    : {status_to_human_message(result.status)}",
        f"Duration  : {format_duration(result.duration_ms)}",
    ]
    if result.details:
        lines.append(f"Details   : {result.details}")
    lines.append(_RULE)
    return lines


def render_loop_summary_lines(result: RunResult) -> list[str]:
    lines = [
        _RULE,
        f"Backend    : {result.backend}",
        f"Status     : {status_to_human_message(result.status)}",
        f"Iterations : {result.iterations}",
        f"Duration   : {format_duration(result.duration_ms)}",
    ]
    if result.summary:
        lines.append(f"Summary    : {result.summary}")
    if result.details:
        lines.append(f"Details    : {result.details}")
    lines.append(_RULE)
    return lines


def build_json_summary(result: RunResult) -> dict[str, Any]:
    """Machine-readable summary; loop runs also carry ``iterations``."""

    payload: dict[str, Any] = {
        "backend": result.backend,
        "status": result.status.value,
        "exitCode": result.exit_code,
        "durationMs": result.duration_ms,
    }
    if result.is_loop:
        payload["iterations"] = result.iterations
    payload["text"] = result.text
    if result.summary:
        payload["summary"] = result.summary
    if result.details:
        payload["details"] = result.details
    return payload


def format_iteration_progress(entry: TranscriptEntry) -> str:
    """One-line progress marker, e.g. ``[iter 2] Working on it... (1250ms)``."""

    preview = entry.response[:_PREVIEW_CHARS].replace("\r", "").replace("\n", " ")
    suffix = "..." if len(entry.response) > _PREVIEW_CHARS else ""
    return f"[iter {entry.iteration}] {preview}{suffix} ({entry.duration_ms}ms)"

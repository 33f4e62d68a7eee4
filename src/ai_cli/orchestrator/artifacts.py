"""Persist run traces under ``.ai-cli/runs/<run-id>/``."""

from __future__ import annotations

import json
import logging
import secrets
import string
from dataclasses import dataclass
from datetime import datetime, timedelta
from pathlib import Path
from typing import Any

from ai_cli.orchestrator.models import (
    EXIT_CANTCREAT,
    RunResult,
    TranscriptEntry,
    transcript_to_dicts,
    utc_now,
)
from ai_cli.orchestrator.sanitization import (
    RedactionCallback,
    redact_object,
    redact_secrets,
)
from ai_cli.orchestrator.summary import build_json_summary

logger = logging.getLogger(__name__)

ARTIFACTS_DIRNAME = ".ai-cli"
META_FILENAME = "meta.json"
TRANSCRIPT_FILENAME = "transcript.ndjson"
RESULT_FILENAME = "result.json"

_RUN_ID_ALPHABET = string.ascii_lowercase + string.digits


@dataclass(slots=True)
class ArtifactOptions:
    """Context recorded next to a run result."""

    cwd: Path
    command: str
    prompt: str
    started_at: datetime
    timeout_ms: int | None = None
    max_iterations: int | None = None
    completion_mode: str | None = None
    on_redact: RedactionCallback | None = None


@dataclass(slots=True)
class ArtifactWriteResult:
    """Outcome of one artifact write; failures carry exit code 73."""

    ok: bool
    path: Path | None = None
    error_code: int | None = None
    error_message: str | None = None


def generate_run_id(now: datetime | None = None) -> str:
    """``YYYYMMDD-HHMMSS-xxxx`` using local time and a random suffix."""

    moment = now or datetime.now()  # noqa: DTZ005
    suffix = "".join(secrets.choice(_RUN_ID_ALPHABET) for _ in range(4))
    return f"{moment:%Y%m%d-%H%M%S}-{suffix}"


def artifacts_path(cwd: Path, run_id: str) -> Path:
    return cwd / ARTIFACTS_DIRNAME / "runs" / run_id


def write_artifacts(
    result: RunResult,
    options: ArtifactOptions,
    *,
    run_id: str | None = None,
) -> ArtifactWriteResult:
    """Write meta, transcript and result files; never raises on I/O errors."""

    resolved_id = run_id or generate_run_id()
    target = artifacts_path(options.cwd, resolved_id)
    try:
        target.mkdir(parents=True, exist_ok=True)
        _write_json(target / META_FILENAME, _build_meta(resolved_id, result, options))

        events = [
            redact_object(event, options.on_redact)
            for event in _transcript_events(result.transcript or ())
        ]
        ndjson = "".join(f"{json.dumps(event, ensure_ascii=False)}\n" for event in events)
        (target / TRANSCRIPT_FILENAME).write_text(ndjson, "utf-8")

        payload = build_json_summary(result)
        payload["transcript"] = transcript_to_dicts(result.transcript or ())
        _write_json(target / RESULT_FILENAME, redact_object(payload, options.on_redact))
    except OSError as error:
        logger.warning("Failed to write run artifacts to %s: %s", target, error)
        return ArtifactWriteResult(
            ok=False,
            error_code=EXIT_CANTCREAT,
            error_message=f"Failed to write artifacts: {error}",
        )

    logger.info("Run artifacts written: %s", target)
    return ArtifactWriteResult(ok=True, path=target)


def _build_meta(run_id: str, result: RunResult, options: ArtifactOptions) -> dict[str, Any]:
    meta_options: dict[str, Any] = {
        "command": options.command,
        "prompt": redact_secrets(options.prompt, options.on_redact),
    }
    if options.command == "loop":
        if options.max_iterations is not None:
            meta_options["maxIterations"] = options.max_iterations
        if options.completion_mode is not None:
            meta_options["completionMode"] = options.completion_mode
    if options.timeout_ms is not None:
        meta_options["timeoutMs"] = options.timeout_ms
    return {
        "id": run_id,
        "backend": result.backend,
        "startedAt": options.started_at.isoformat(),
        "finishedAt": utc_now().isoformat(),
        "options": meta_options,
    }


def _transcript_events(transcript: tuple[TranscriptEntry, ...]) -> list[dict[str, Any]]:
    events: list[dict[str, Any]] = []
    for entry in transcript:
        events.append(
            {
                "ts": entry.started_at.isoformat(),
                "type": "prompt",
                "iteration": entry.iteration,
                "content": entry.prompt,
            },
        )
        finished_at = entry.started_at + timedelta(milliseconds=entry.duration_ms)
        events.append(
            {
                "ts": finished_at.isoformat(),
                "type": "response",
                "iteration": entry.iteration,
                "content": entry.response,
                "durationMs": entry.duration_ms,
            },
        )
    return events


def _write_json(path: Path, payload: dict[str, Any]) -> None:
    path.write_text(json.dumps(payload, ensure_ascii=False, indent=2) + "\n", "utf-8")

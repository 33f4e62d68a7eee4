"""Completion detection for free-form backend output."""

from __future__ import annotations

import json
import re

from ai_cli.orchestrator.models import (
    INVALID_JSON_ERROR,
    CompletionMode,
    CompletionStatus,
    CompletionVerdict,
)

DONE_MARKER = "DONE"

_LINE_SPLIT = re.compile(r"\r?\n")
# Objects nested at most one level deep; enough for {"status": ..., "meta": {...}}.
_JSON_OBJECT_CANDIDATE = re.compile(r"\{[^{}]*(?:\{[^{}]*\}[^{}]*)*\}")
_VALID_STATUSES = frozenset(status.value for status in CompletionStatus)


def detect_completion(text: str, mode: CompletionMode | str) -> CompletionVerdict:
    """Interpret ``text`` according to ``mode``; never raises on bad input."""

    if CompletionMode(mode) is CompletionMode.JSON:
        return parse_json_completion(text)
    return parse_marker_completion(text)


def parse_marker_completion(text: str) -> CompletionVerdict:
    """``done`` iff the last non-blank line is exactly ``DONE``."""

    last_line = ""
    for line in _LINE_SPLIT.split(text):
        stripped = line.strip()
        if stripped:
            last_line = stripped
    if last_line == DONE_MARKER:
        return CompletionVerdict(status=CompletionStatus.DONE)
    return CompletionVerdict(status=CompletionStatus.CONTINUE)


def parse_json_completion(text: str) -> CompletionVerdict:
    """Use the last embedded JSON object carrying a valid ``status``."""

    candidates = [_try_load_dict(match) for match in _JSON_OBJECT_CANDIDATE.findall(text)]
    for payload in reversed(candidates):
        if payload is None:
            continue
        verdict = _verdict_from_payload(payload)
        if verdict is not None:
            return verdict
    return CompletionVerdict(status=CompletionStatus.ERROR, error=INVALID_JSON_ERROR)


def _verdict_from_payload(payload: dict[str, object]) -> CompletionVerdict | None:
    status = payload.get("status")
    if not isinstance(status, str) or status not in _VALID_STATUSES:
        return None
    summary = payload.get("summary")
    next_prompt = payload.get("next")
    if summary is not None and not isinstance(summary, str):
        return None
    if next_prompt is not None and not isinstance(next_prompt, str):
        return None
    return CompletionVerdict(
        status=CompletionStatus(status),
        summary=summary,
        next_prompt=next_prompt,
    )


def _try_load_dict(raw: str) -> dict[str, object] | None:
    try:
        parsed = json.loads(raw)
    except json.JSONDecodeError:
        return None
    if not isinstance(parsed, dict):
        return None
    return parsed

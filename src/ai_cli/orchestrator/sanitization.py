"""Best-effort secret redaction for persisted run artifacts."""

from __future__ import annotations

import re
from collections.abc import Callable
from typing import Any

REDACTED = "[REDACTED]"

RedactionCallback = Callable[[str], None]

_SECRET_PATTERNS: tuple[tuple[str, re.Pattern[str]], ...] = (
    ("Bearer token", re.compile(r"(?i)Bearer\s+[A-Za-z0-9\-_.~+/]+=*")),
    ("API key (sk-...)", re.compile(r"sk-[A-Za-z0-9]{20,}")),
    (
        "JWT token",
        re.compile(r"eyJ[A-Za-z0-9\-_]+\.eyJ[A-Za-z0-9\-_]+\.[A-Za-z0-9\-_.+/=]+"),
    ),
    (
        "AWS secret",
        re.compile(r"(?i)AWS_SECRET_ACCESS_KEY[=:]\s*[\"']?[A-Za-z0-9/+=]{40}[\"']?"),
    ),
    ("Token env var", re.compile(r"[A-Z_]+_TOKEN[=:]\s*[\"']?[^\s\"']+[\"']?")),
    ("API key env var", re.compile(r"[A-Z_]+_API_KEY[=:]\s*[\"']?[^\s\"']+[\"']?")),
    ("GitHub token", re.compile(r"gh[pousr]_[A-Za-z0-9]{36,}")),
)


def redact_secrets(text: str, on_redact: RedactionCallback | None = None) -> str:
    """Mask known secret shapes; ``on_redact`` fires once per pattern that hit."""

    redacted = text
    for name, pattern in _SECRET_PATTERNS:
        redacted, count = pattern.subn(REDACTED, redacted)
        if count and on_redact is not None:
            on_redact(name)
    return redacted


def redact_object(value: Any, on_redact: RedactionCallback | None = None) -> Any:
    """Return a deep copy of ``value`` with every string redacted."""

    if isinstance(value, str):
        return redact_secrets(value, on_redact)
    if isinstance(value, dict):
        return {key: redact_object(item, on_redact) for key, item in value.items()}
    if isinstance(value, list | tuple):
        return [redact_object(item, on_redact) for item in value]
    return value

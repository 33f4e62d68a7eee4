"""Deterministic availability classification for backend probe output."""

from __future__ import annotations

import errno
import re
from dataclasses import dataclass

from ai_cli.orchestrator.backend.base import Availability, AvailabilityStatus

AVAILABILITY_CLASSIFIER_VERSION = 1

UNAUTHENTICATED_PATTERNS: tuple[str, ...] = (
    r"auth(entication)?",
    r"login",
    r"log in",
    r"not\s+logged",
    r"unauthori[sz]ed",
    r"token",
)
MISSING_BINARY_PATTERNS: tuple[str, ...] = (
    r"command\s+not\s+found",
    r"not\s+recognized\s+as\s+an\s+internal\s+or\s+external\s+command",
    r"no\s+such\s+file\s+or\s+directory",
    r"cannot\s+find\s+the\s+file",
)


@dataclass(slots=True)
class AvailabilityClassification:
    """Normalized probe classification result."""

    status: AvailabilityStatus
    details: str | None
    matched_rule: str
    matched_pattern: str | None

    def to_availability(self) -> Availability:
        return Availability(status=self.status, details=self.details)


def classify_probe_result(
    *,
    exit_code: int,
    stdout: str,
    stderr: str,
    unauthenticated_patterns: tuple[str, ...] = UNAUTHENTICATED_PATTERNS,
    missing_patterns: tuple[str, ...] = MISSING_BINARY_PATTERNS,
) -> AvailabilityClassification:
    """Classify a finished probe command into an availability verdict.

    A zero exit code is authoritative. For non-zero exits the combined output
    is matched against authentication phrases first, then command-not-found
    phrases. Anything unrecognized is reported as available with the raw
    output attached: a genuinely broken backend fails loudly on the next real
    invocation anyway.
    """

    if exit_code == 0:
        return AvailabilityClassification(
            status=AvailabilityStatus.AVAILABLE,
            details=None,
            matched_rule="zero_exit_code",
            matched_pattern=None,
        )

    combined = _combine_output(stdout=stdout, stderr=stderr)

    pattern = _first_match(combined, unauthenticated_patterns)
    if pattern is not None:
        return AvailabilityClassification(
            status=AvailabilityStatus.UNAUTHENTICATED,
            details=combined,
            matched_rule="unauthenticated",
            matched_pattern=pattern,
        )

    pattern = _first_match(combined, missing_patterns)
    if pattern is not None:
        return AvailabilityClassification(
            status=AvailabilityStatus.MISSING,
            details=combined,
            matched_rule="missing_binary_output",
            matched_pattern=pattern,
        )

    return AvailabilityClassification(
        status=AvailabilityStatus.AVAILABLE,
        details=combined or f"exitCode={exit_code}",
        matched_rule="fallback_optimistic",
        matched_pattern=None,
    )


def classify_spawn_error(error: OSError, *, executable: str) -> AvailabilityClassification:
    """Classify a probe that could not be started at all."""

    if isinstance(error, FileNotFoundError) or error.errno == errno.ENOENT:
        return AvailabilityClassification(
            status=AvailabilityStatus.MISSING,
            details=f"Command not found: {executable}",
            matched_rule="spawn_not_found",
            matched_pattern=None,
        )
    return AvailabilityClassification(
        status=AvailabilityStatus.MISSING,
        details=str(error),
        matched_rule="spawn_failed",
        matched_pattern=None,
    )


def classify_probe_timeout(*, timeout_seconds: float) -> AvailabilityClassification:
    """Classify a probe that hung past its deadline."""

    return AvailabilityClassification(
        status=AvailabilityStatus.AVAILABLE,
        details=f"probe timed out after {timeout_seconds:g}s",
        matched_rule="probe_timeout",
        matched_pattern=None,
    )


def _combine_output(*, stdout: str, stderr: str) -> str:
    return f"{stdout}\n{stderr}".strip()


def _first_match(haystack: str, patterns: tuple[str, ...]) -> str | None:
    for pattern in patterns:
        if re.search(rf"\b(?:{pattern})\b", haystack, re.IGNORECASE):
            return pattern
    return None

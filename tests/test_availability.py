from __future__ import annotations

import errno

import allure

from ai_cli.orchestrator.backend.availability import (
    AVAILABILITY_CLASSIFIER_VERSION,
    classify_probe_result,
    classify_probe_timeout,
    classify_spawn_error,
)
from ai_cli.orchestrator.backend.base import AvailabilityStatus
from ai_cli.orchestrator.backend.codex import CODEX_UNAUTHENTICATED_PATTERNS

pytestmark = [
    allure.epic("Backends"),
    allure.feature("Availability Probe"),
]


def test_classifier_version_is_stable() -> None:
    assert AVAILABILITY_CLASSIFIER_VERSION == 1


def test_zero_exit_code_is_available_even_with_auth_words() -> None:
    classified = classify_probe_result(exit_code=0, stdout="copilot 1.0 (token cache)", stderr="")

    assert classified.status is AvailabilityStatus.AVAILABLE
    assert classified.details is None
    assert classified.matched_rule == "zero_exit_code"


def test_auth_phrase_maps_to_unauthenticated() -> None:
    classified = classify_probe_result(
        exit_code=1,
        stdout="",
        stderr="Error: You are not logged in. Please login.",
    )

    assert classified.status is AvailabilityStatus.UNAUTHENTICATED
    assert classified.matched_rule == "unauthenticated"
    assert classified.details == "Error: You are not logged in. Please login."


def test_auth_phrase_wins_over_missing_phrase() -> None:
    classified = classify_probe_result(
        exit_code=1,
        stdout="No such file or directory",
        stderr="unauthorized",
    )

    assert classified.status is AvailabilityStatus.UNAUTHENTICATED


def test_auth_words_require_word_boundaries() -> None:
    classified = classify_probe_result(exit_code=1, stdout="", stderr="author tokens-per-minute")

    assert classified.status is AvailabilityStatus.AVAILABLE
    assert classified.matched_rule == "fallback_optimistic"


def test_missing_phrase_maps_to_missing() -> None:
    classified = classify_probe_result(
        exit_code=127,
        stdout="",
        stderr="sh: copilot: command not found",
    )

    assert classified.status is AvailabilityStatus.MISSING
    assert classified.matched_rule == "missing_binary_output"


def test_windows_missing_phrase_maps_to_missing() -> None:
    classified = classify_probe_result(
        exit_code=1,
        stdout="'codex' is not recognized as an internal or external command",
        stderr="",
    )

    assert classified.status is AvailabilityStatus.MISSING


def test_unrecognized_failure_is_optimistically_available() -> None:
    classified = classify_probe_result(exit_code=3, stdout="", stderr="")

    assert classified.status is AvailabilityStatus.AVAILABLE
    assert classified.details == "exitCode=3"

    classified = classify_probe_result(exit_code=3, stdout="", stderr="segfault")
    assert classified.details == "segfault"


def test_codex_patterns_cover_api_key_messages() -> None:
    classified = classify_probe_result(
        exit_code=1,
        stdout="",
        stderr="Missing OPENAI_API_KEY environment variable",
        unauthenticated_patterns=CODEX_UNAUTHENTICATED_PATTERNS,
    )

    assert classified.status is AvailabilityStatus.UNAUTHENTICATED
    assert classified.matched_pattern == r"openai_api_key"

    classified = classify_probe_result(
        exit_code=1,
        stdout="",
        stderr="403 Forbidden",
        unauthenticated_patterns=CODEX_UNAUTHENTICATED_PATTERNS,
    )
    assert classified.status is AvailabilityStatus.UNAUTHENTICATED


def test_spawn_errors_map_to_missing() -> None:
    not_found = classify_spawn_error(FileNotFoundError(errno.ENOENT, "nope"), executable="codex")
    denied = classify_spawn_error(
        PermissionError(errno.EACCES, "Permission denied"),
        executable="codex",
    )

    assert not_found.status is AvailabilityStatus.MISSING
    assert not_found.details == "Command not found: codex"
    assert denied.status is AvailabilityStatus.MISSING
    assert denied.matched_rule == "spawn_failed"


def test_probe_timeout_is_available_with_diagnostic() -> None:
    classified = classify_probe_timeout(timeout_seconds=15)

    assert classified.status is AvailabilityStatus.AVAILABLE
    assert classified.details == "probe timed out after 15s"
    assert classified.to_availability().is_available

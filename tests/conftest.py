"""Shared test fixtures."""

from __future__ import annotations

import os
import shlex
import sys
from pathlib import Path

import pytest

ECHO_AGENT_COMMAND: tuple[str, ...] = (
    sys.executable,
    "-m",
    "ai_cli.orchestrator.backend.echo_agent",
)


@pytest.fixture(autouse=True)
def isolated_config(tmp_path: Path, monkeypatch) -> Path:
    """Point the user config at a temp file and run inside a clean work dir."""

    for name in list(os.environ):
        if name.startswith("AI_CLI_"):
            monkeypatch.delenv(name, raising=False)
    user_config = tmp_path / "home" / ".ai-cli.json"
    monkeypatch.setenv("AI_CLI_USER_CONFIG", str(user_config))
    workdir = tmp_path / "work"
    workdir.mkdir()
    monkeypatch.chdir(workdir)
    return workdir


@pytest.fixture()
def echo_backends(monkeypatch) -> tuple[str, ...]:
    """Route both copilot and codex identifiers to the local echo agent."""

    joined = shlex.join(ECHO_AGENT_COMMAND)
    monkeypatch.setenv("AI_CLI_COPILOT_COMMAND", joined)
    monkeypatch.setenv("AI_CLI_CODEX_COMMAND", joined)
    return ECHO_AGENT_COMMAND

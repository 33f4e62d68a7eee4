"""Local demo agent that stands in for a real AI CLI in integration tests.

It accepts both the copilot-style invocation (``-p PROMPT ...``) and the
codex-style one (``exec -`` with the prompt on stdin). Behavior is selected
through environment variables so tests can steer it via run-time overrides:

* ``AI_CLI_ECHO_MODE`` - ``echo`` (default), ``done-after``, ``json-done``,
  ``stream``, ``slow``, ``fail``, ``unauthenticated`` or ``env``.
* ``AI_CLI_ECHO_STATE`` - counter file used by ``done-after``.
* ``AI_CLI_ECHO_DONE_AFTER`` - invocation number that prints ``DONE``.
* ``AI_CLI_ECHO_SLEEP`` - seconds to sleep in ``slow`` mode.
* ``AI_CLI_ECHO_EXIT_CODE`` - exit code used by ``fail``.
* ``AI_CLI_ECHO_ENV_KEY`` - variable whose value ``env`` mode prints.
"""

from __future__ import annotations

import argparse
import json
import os
import sys
import time
from pathlib import Path

VERSION_TEXT = "echo-agent 0.1.0"


def main(argv: list[str] | None = None) -> int:
    """Answer one prompt according to ``AI_CLI_ECHO_MODE``."""

    parser = argparse.ArgumentParser(prog="echo-agent")
    parser.add_argument("--version", action="store_true")
    parser.add_argument("-p", "--prompt")
    parser.add_argument("-s", action="store_true")
    parser.add_argument("--allow-all-tools", action="store_true")
    parser.add_argument("--allow-all-paths", action="store_true")
    parser.add_argument("positional", nargs="*")
    args = parser.parse_args(argv)

    mode = os.getenv("AI_CLI_ECHO_MODE", "echo")

    if args.version:
        if mode == "unauthenticated":
            sys.stderr.write("Error: not logged in. Run `login` first.\n")
            return 1
        sys.stdout.write(f"{VERSION_TEXT}\n")
        return 0

    prompt = args.prompt if args.prompt is not None else _read_stdin_prompt(args.positional)
    return _respond(mode, prompt)


def _read_stdin_prompt(positional: list[str]) -> str:
    if positional and positional[-1] == "-":
        return sys.stdin.read()
    return ""


def _respond(mode: str, prompt: str) -> int:  # noqa: PLR0911
    if mode == "unauthenticated":
        sys.stderr.write("Error: authentication required\n")
        return 1
    if mode == "fail":
        sys.stderr.write("echo-agent: simulated failure\n")
        return int(os.getenv("AI_CLI_ECHO_EXIT_CODE", "3"))
    if mode == "env":
        key = os.getenv("AI_CLI_ECHO_ENV_KEY", "")
        sys.stdout.write(f"{key}={os.environ.get(key, '<unset>')}\n")
        return 0
    if mode == "json-done":
        payload = {"status": "done", "summary": f"handled {len(prompt)} chars"}
        sys.stdout.write(f"Finished.\n{json.dumps(payload)}\n")
        return 0
    if mode == "done-after":
        invocation = _bump_counter(Path(os.environ["AI_CLI_ECHO_STATE"]))
        done_after = int(os.getenv("AI_CLI_ECHO_DONE_AFTER", "1"))
        sys.stdout.write(f"step {invocation}: {prompt}\n")
        if invocation >= done_after:
            sys.stdout.write("DONE\n")
        return 0
    if mode == "stream":
        for word in prompt.split():
            sys.stdout.write(f"{word}\n")
            sys.stdout.flush()
            time.sleep(0.05)
        return 0
    if mode == "slow":
        sys.stdout.write("starting\n")
        sys.stdout.flush()
        time.sleep(float(os.getenv("AI_CLI_ECHO_SLEEP", "30")))
        sys.stdout.write("finished\n")
        return 0

    sys.stdout.write(f"{prompt}\n")
    return 0


def _bump_counter(path: Path) -> int:
    current = int(path.read_text("utf-8")) if path.exists() else 0
    current += 1
    path.write_text(str(current), "utf-8")
    return current


if __name__ == "__main__":  # pragma: no cover
    sys.exit(main())

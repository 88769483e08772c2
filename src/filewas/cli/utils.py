"""Utility helpers for the agent CLI runner."""

from __future__ import annotations

import os
from typing import Mapping

_SANITIZED_VARS = {
    "PYTHONHOME",
    "PYTHONPATH",
    "VIRTUAL_ENV",
    "PIP_RESPECT_VIRTUALENV",
}

# Agent CLIs emit ANSI colour codes unless told otherwise.
_PLAIN_OUTPUT_VARS = {
    "FORCE_COLOR": "0",
    "NO_COLOR": "1",
}


def sanitize_environment(additional: Mapping[str, str] | None = None) -> dict[str, str]:
    """Return a sanitized environment suitable for subprocess execution."""

    env = dict(os.environ)
    for key in _SANITIZED_VARS:
        env.pop(key, None)
    env.update(_PLAIN_OUTPUT_VARS)
    if additional:
        env.update(additional)
    return env


def build_cli_args(
    *,
    system_prompt: str | None = None,
    max_turns: int | None = None,
    resume_session_id: str | None = None,
    dangerously_skip_permissions: bool = False,
) -> list[str]:
    """Build the non-interactive argument list shared by the claude and glm CLIs."""

    args: list[str] = ["-p", "--output-format", "stream-json", "--verbose"]
    if resume_session_id:
        args.extend(["-r", resume_session_id])
    if max_turns is not None and max_turns > 0:
        args.extend(["--max-turns", str(max_turns)])
    if system_prompt:
        args.extend(["--system-prompt", system_prompt])
    if dangerously_skip_permissions:
        args.append("--dangerously-skip-permissions")
    return args

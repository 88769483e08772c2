from __future__ import annotations

import asyncio
from pathlib import Path

import pytest

from filewas.cli.runner import (
    CliExecutionResult,
    CliNotFoundError,
    CliRunner,
    CliTimeoutError,
    FakeCliRunner,
    serialize_result,
)
from filewas.cli.utils import build_cli_args, sanitize_environment


def _script(tmp_path: Path, body: str, name: str = "claude") -> Path:
    script = tmp_path / name
    script.write_text(f"#!/bin/sh\n{body}\n", encoding="utf-8")
    script.chmod(0o755)
    return script


def test_cli_runner_executes_script(tmp_path: Path) -> None:
    runner = CliRunner(_script(tmp_path, "echo 'claude 1.0.0'"))
    result = asyncio.run(runner.version())

    assert result.ok
    assert "claude 1.0.0" in result.stdout
    assert result.args[-1] == "--version"


def test_spawn_feeds_prompt_on_stdin(tmp_path: Path) -> None:
    runner = CliRunner(_script(tmp_path, 'echo "$@"\ncat'))
    result = asyncio.run(runner.spawn("do the thing", flags=["-p", "--verbose"]))

    lines = result.stdout.splitlines()
    assert lines[0] == "-p --verbose"
    assert lines[1] == "do the thing"


def test_resume_adds_session_flag(tmp_path: Path) -> None:
    runner = CliRunner(_script(tmp_path, 'echo "$@"'))
    result = asyncio.run(runner.resume("sess-42", "continue"))

    assert "-r sess-42" in result.stdout
    assert result.stdout.startswith("-p --output-format stream-json --verbose")


def test_spawn_times_out(tmp_path: Path) -> None:
    runner = CliRunner(_script(tmp_path, "sleep 5"))

    with pytest.raises(CliTimeoutError):
        asyncio.run(runner.spawn("wait", timeout=0.2))


def test_cli_not_found(tmp_path: Path) -> None:
    with pytest.raises(CliNotFoundError):
        CliRunner(tmp_path / "missing")


def test_cli_not_on_path(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> None:
    monkeypatch.setenv("PATH", str(tmp_path))
    with pytest.raises(CliNotFoundError):
        CliRunner(name="glm")


def test_fake_cli_runner_records_invocations() -> None:
    fake = FakeCliRunner(
        [CliExecutionResult(args=("-p",), returncode=0, stdout="ok", stderr="")],
        name="glm",
    )

    result = asyncio.run(fake.spawn("hello", flags=["-p"]))

    assert result.stdout == "ok"
    assert fake.invocations == [("-p",)]
    assert fake.inputs == ["hello"]
    assert fake.name == "glm"


def test_serialize_result_lists_args() -> None:
    result = CliExecutionResult(args=("claude", "--version"), returncode=0, stdout="ok", stderr="")
    payload = serialize_result(result)

    assert '"--version"' in payload


def test_build_cli_args_orders_flags() -> None:
    args = build_cli_args(
        system_prompt="Be brief",
        max_turns=5,
        resume_session_id="abc",
        dangerously_skip_permissions=True,
    )

    assert args[:4] == ["-p", "--output-format", "stream-json", "--verbose"]
    assert args[4:6] == ["-r", "abc"]
    assert args[6:8] == ["--max-turns", "5"]
    assert args[8:10] == ["--system-prompt", "Be brief"]
    assert args[-1] == "--dangerously-skip-permissions"


def test_build_cli_args_skips_zero_turns() -> None:
    assert "--max-turns" not in build_cli_args(max_turns=0)


def test_sanitize_environment_strips_virtualenv(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("PYTHONPATH", "value")
    env = sanitize_environment({"EXTRA": "1"})

    assert "PYTHONPATH" not in env
    assert env["NO_COLOR"] == "1"
    assert env["FORCE_COLOR"] == "0"
    assert env["EXTRA"] == "1"

from __future__ import annotations

import asyncio
import json
from pathlib import Path

import pytest

from filewas.agents import AgentConfigLoader, AgentConfigNotFoundError
from filewas.agents.models import AgentConfig
from filewas.cli import CliExecutionResult, CliNotFoundError, FakeCliRunner
from filewas.orchestrator import AgentRunner, AgentSpawnOptions, select_model

AGENTS_DIR = Path(__file__).resolve().parents[1] / "agents"


def _stream(result: str, *, session_id: str = "cli-session") -> str:
    return "\n".join(
        json.dumps(message)
        for message in (
            {"type": "system", "subtype": "init", "session_id": session_id},
            {
                "type": "result",
                "subtype": "success",
                "result": result,
                "session_id": session_id,
                "usage": {"input_tokens": 10, "output_tokens": 5},
            },
        )
    )


def _ok(stdout: str) -> CliExecutionResult:
    return CliExecutionResult(args=("-p",), returncode=0, stdout=stdout, stderr="")


def _options(agent_type: str = "implementer", **kwargs) -> AgentSpawnOptions:
    return AgentSpawnOptions(
        agent_type=agent_type,
        session_id=kwargs.pop("session_id", "session-1"),
        cwd=Path("."),
        prompt=kwargs.pop("prompt", "<task>\nDo it\n</task>"),
        **kwargs,
    )


def _config(**overrides) -> AgentConfig:
    data = {"type": "implementer", "name": "Implementer", "model": "glm", "thinking_level": "off"}
    data.update(overrides)
    return AgentConfig.model_validate(data)


def test_select_model_rules() -> None:
    assert select_model(_config()) == "glm"
    assert select_model(_config(), "claude") == "claude"
    assert select_model(_config(model_override_allowed=False), "claude") == "glm"
    assert select_model(_config(thinking_level="max"), "glm") == "claude"
    assert select_model(_config(), None, "max") == "claude"


def test_spawn_agent_completes_and_emits_events() -> None:
    glm = FakeCliRunner([_ok(_stream("Implemented"))], name="glm")
    runner = AgentRunner(AgentConfigLoader([AGENTS_DIR]), {"glm": glm})
    events: list[tuple[str, dict]] = []
    runner.add_listener(lambda event, payload: events.append((event, payload)))

    async def scenario():
        agent = await runner.spawn_agent(_options(max_turns=4))
        assert agent.status == "starting"
        return await runner.wait_for_agent(agent.id)

    agent = asyncio.run(scenario())

    assert agent is not None
    assert agent.status == "completed"
    assert agent.progress == 100
    assert agent.current_action == "Implemented"
    assert agent.cli_session_id == "cli-session"
    assert agent.token_usage is not None and agent.token_usage.output_tokens == 5
    assert agent.duration is not None

    names = [event for event, _ in events]
    assert names == ["agent:spawned", "agent:started", "agent:output", "agent:completed"]
    assert all(payload["sessionId"] == "session-1" for _, payload in events)

    flags = glm.invocations[0]
    assert flags[:2] == ("-p", "--output-format")
    assert "--max-turns" in flags
    assert "--system-prompt" in flags
    assert glm.inputs == ["<task>\nDo it\n</task>"]


def test_spawn_agent_records_exit_code_error() -> None:
    glm = FakeCliRunner(
        [CliExecutionResult(args=("-p",), returncode=2, stdout="", stderr="boom")], name="glm"
    )
    runner = AgentRunner(AgentConfigLoader([AGENTS_DIR]), {"glm": glm})

    async def scenario():
        agent = await runner.spawn_agent(_options())
        return await runner.wait_for_agent(agent.id)

    agent = asyncio.run(scenario())

    assert agent.status == "error"
    assert agent.error_message == "Process exited with code 2"
    assert runner.running_count() == 0


def test_spawn_agent_records_timeout_as_error() -> None:
    glm = FakeCliRunner(name="glm", delay=5)
    runner = AgentRunner(AgentConfigLoader([AGENTS_DIR]), {"glm": glm})

    async def scenario():
        agent = await runner.spawn_agent(_options(timeout=50))
        return await runner.wait_for_agent(agent.id)

    agent = asyncio.run(scenario())

    assert agent.status == "error"
    assert "did not finish" in (agent.error_message or "")


def test_stop_agent_cancels_run() -> None:
    glm = FakeCliRunner(name="glm", delay=5)
    runner = AgentRunner(AgentConfigLoader([AGENTS_DIR]), {"glm": glm})
    events: list[str] = []
    runner.add_listener(lambda event, payload: events.append(event))

    async def scenario():
        agent = await runner.spawn_agent(_options())
        await asyncio.sleep(0.05)
        assert agent.status == "running"
        assert runner.stop_agent(agent.id)
        return await runner.wait_for_agent(agent.id)

    agent = asyncio.run(scenario())

    assert agent.status == "completed"
    assert "agent:stopped" in events
    assert events[-1] == "agent:completed"
    assert not runner.stop_agent(agent.id)


def test_stop_agent_before_run_starts_finalises_agent() -> None:
    glm = FakeCliRunner(name="glm", delay=0.2)
    runner = AgentRunner(AgentConfigLoader([AGENTS_DIR]), {"glm": glm})
    events: list[tuple[str, dict]] = []
    runner.add_listener(lambda event, payload: events.append((event, payload)))

    async def scenario():
        agent = await runner.spawn_agent(_options())
        assert runner.stop_agent(agent.id)
        return await runner.wait_for_agent(agent.id)

    agent = asyncio.run(scenario())

    assert agent.status == "completed"
    assert agent.completed_at is not None
    assert [event for event, _ in events] == ["agent:spawned", "agent:stopped", "agent:completed"]
    assert events[-1][1]["stopped"] is True
    assert glm.invocations == []
    assert runner.running_count() == 0
    assert runner.cleanup_finished_agents() == 1


def test_stop_session_agents_only_touches_that_session() -> None:
    glm = FakeCliRunner(name="glm", delay=5)
    runner = AgentRunner(AgentConfigLoader([AGENTS_DIR]), {"glm": glm})

    async def scenario():
        first = await runner.spawn_agent(_options(session_id="a"))
        second = await runner.spawn_agent(_options(session_id="b"))
        await asyncio.sleep(0.05)
        stopped = runner.stop_session_agents("a")
        await runner.wait_for_agent(first.id)
        still_running = runner.get_agent(second.id).status
        await runner.aclose()
        return stopped, still_running

    stopped, still_running = asyncio.run(scenario())

    assert stopped == 1
    assert still_running == "running"


def test_spawn_agent_requires_definition_and_cli() -> None:
    runner = AgentRunner(AgentConfigLoader([AGENTS_DIR]), {"glm": FakeCliRunner(name="glm")})

    with pytest.raises(AgentConfigNotFoundError):
        asyncio.run(runner.spawn_agent(_options("architect")))

    with pytest.raises(CliNotFoundError):
        asyncio.run(runner.spawn_agent(_options("orchestrator")))


def test_listener_failure_does_not_break_run() -> None:
    glm = FakeCliRunner([_ok(_stream("ok"))], name="glm")
    runner = AgentRunner(AgentConfigLoader([AGENTS_DIR]), {"glm": glm})

    def broken(event, payload):
        raise RuntimeError("listener down")

    runner.add_listener(broken)

    async def scenario():
        agent = await runner.spawn_agent(_options())
        return await runner.wait_for_agent(agent.id)

    assert asyncio.run(scenario()).status == "completed"


def test_progress_and_cleanup() -> None:
    glm = FakeCliRunner([_ok(_stream("ok"))], name="glm")
    runner = AgentRunner(AgentConfigLoader([AGENTS_DIR]), {"glm": glm})

    async def scenario():
        agent = await runner.spawn_agent(_options())
        assert runner.update_progress(agent.id, 150, "Writing tests")
        assert agent.progress == 100
        assert agent.current_action == "Writing tests"
        await runner.wait_for_agent(agent.id)
        return agent

    agent = asyncio.run(scenario())

    assert not runner.update_progress("missing", 10)
    assert runner.cleanup_finished_agents() == 1
    assert runner.get_agent(agent.id) is None

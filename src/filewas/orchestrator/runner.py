"""Agent runner: launches agent CLI processes and tracks their lifecycle."""

from __future__ import annotations

import asyncio
import logging
import time
from datetime import datetime, timezone
from typing import Any, Callable, Mapping
from uuid import uuid4

from ..agents import AgentConfig, AgentConfigLoader, AgentConfigLoadError, AgentConfigNotFoundError
from ..cli import CliExecutionResult, CliNotFoundError, CliRunner, CliRunnerError, build_cli_args, parse_stream_output
from .models import Agent, AgentSpawnOptions

logger = logging.getLogger(__name__)

AGENT_EVENTS: tuple[str, ...] = (
    "agent:spawned",
    "agent:started",
    "agent:output",
    "agent:progress",
    "agent:completed",
    "agent:error",
    "agent:stopped",
)

AgentListener = Callable[[str, dict[str, Any]], None]


def select_model(
    config: AgentConfig,
    model_override: str | None = None,
    thinking_override: str | None = None,
) -> str:
    """Pick the model provider for an agent run.

    The ``max`` thinking level always runs on claude. Otherwise an override is
    honoured only when the agent definition allows it.
    """

    if (thinking_override or config.thinking_level) == "max":
        return "claude"
    if model_override and config.model_override_allowed:
        return model_override
    return config.model


def generate_agent_id() -> str:
    return f"agent-{int(time.time() * 1000)}-{uuid4().hex[:6]}"


class AgentRunner:
    """Own the in-memory agent table and the background tasks driving each CLI."""

    def __init__(
        self,
        loader: AgentConfigLoader,
        cli_runners: Mapping[str, CliRunner],
        *,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self._loader = loader
        self._cli_runners = dict(cli_runners)
        self._clock = clock or (lambda: datetime.now(timezone.utc))
        self._agents: dict[str, Agent] = {}
        self._tasks: dict[str, asyncio.Task[None]] = {}
        self._listeners: list[AgentListener] = []

    @property
    def available_models(self) -> list[str]:
        return sorted(self._cli_runners)

    def load_agent_config(self, agent_type: str) -> AgentConfig | None:
        """Return the definition for ``agent_type`` or ``None`` when it cannot be loaded."""

        try:
            return self._loader.get(agent_type)
        except AgentConfigNotFoundError:
            return None
        except AgentConfigLoadError as exc:
            logger.warning(
                "Failed to load agent definitions",
                extra={"agent_type": agent_type, "error": str(exc)},
            )
            return None

    def available_types(self) -> list[str]:
        return self._loader.available_types()

    # Listeners -------------------------------------------------------------

    def add_listener(self, listener: AgentListener) -> Callable[[], None]:
        self._listeners.append(listener)

        def _remove() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return _remove

    def _emit(self, event: str, agent: Agent, **data: Any) -> None:
        payload = {
            "agentId": agent.id,
            "sessionId": agent.session_id,
            "agentType": agent.type,
            "model": agent.model,
            "timestamp": self._clock().isoformat(),
            **data,
        }
        for listener in list(self._listeners):
            try:
                listener(event, payload)
            except Exception:
                logger.exception("Agent event listener failed", extra={"event": event, "agent_id": agent.id})

    # Spawning --------------------------------------------------------------

    async def spawn_agent(self, options: AgentSpawnOptions) -> Agent:
        """Start an agent CLI run in the background and return its record.

        Raises :class:`AgentConfigNotFoundError` for an unknown agent type and
        :class:`CliNotFoundError` when no CLI is configured for the chosen model.
        """

        config = self.load_agent_config(options.agent_type)
        if config is None:
            raise AgentConfigNotFoundError(
                f"Agent configuration not found for type: {options.agent_type}"
            )

        model = select_model(config, options.model)
        runner = self._cli_runners.get(model)
        if runner is None:
            raise CliNotFoundError(f"No CLI runner configured for model: {model}")

        agent = Agent(
            id=generate_agent_id(),
            type=options.agent_type,
            name=config.name,
            session_id=options.session_id,
            model=model,
            parent_agent_id=options.parent_agent_id,
            started_at=self._clock(),
        )
        self._agents[agent.id] = agent

        flags = build_cli_args(
            system_prompt=options.system_prompt or config.system_prompt or None,
            max_turns=options.max_turns,
            resume_session_id=options.resume_session_id,
            dangerously_skip_permissions=options.dangerously_skip_permissions,
        )
        self._tasks[agent.id] = asyncio.create_task(
            self._execute(agent, runner, options, flags), name=f"filewas-{agent.id}"
        )

        logger.info(
            "Spawned agent",
            extra={"agent_id": agent.id, "agent_type": agent.type, "model": model},
        )
        self._emit("agent:spawned", agent, parentAgentId=agent.parent_agent_id)
        return agent

    async def _execute(
        self,
        agent: Agent,
        runner: CliRunner,
        options: AgentSpawnOptions,
        flags: list[str],
    ) -> None:
        agent.status = "running"
        self._emit("agent:started", agent)
        timeout = options.timeout / 1000 if options.timeout else None
        try:
            result = await runner.spawn(
                options.prompt,
                flags=flags,
                cwd=options.cwd,
                timeout=timeout,
                env=options.env or None,
            )
        except asyncio.CancelledError:
            self._finish(agent)
            agent.status = "completed"
            self._emit("agent:completed", agent, duration=agent.duration, stopped=True)
            raise
        except (CliRunnerError, OSError) as exc:
            self._finish(agent)
            agent.status = "error"
            agent.error_message = str(exc)
            logger.warning("Agent run failed", extra={"agent_id": agent.id, "error": str(exc)})
            self._emit("agent:error", agent, error=agent.error_message)
            return

        self._record_result(agent, result)

    def _record_result(self, agent: Agent, result: CliExecutionResult) -> None:
        summary = parse_stream_output(result.stdout)
        if summary.session_id:
            agent.cli_session_id = summary.session_id
        if summary.token_usage is not None:
            agent.token_usage = summary.token_usage
        if result.stdout:
            self._emit("agent:output", agent, output=result.stdout)

        self._finish(agent)
        if result.ok and summary.error is None:
            agent.status = "completed"
            agent.progress = 100
            if summary.result_text:
                agent.current_action = summary.result_text
            self._emit(
                "agent:completed",
                agent,
                duration=agent.duration,
                tokenUsage=agent.token_usage.to_dict() if agent.token_usage else None,
                exitCode=result.returncode,
            )
            return

        agent.status = "error"
        agent.error_message = summary.error or f"Process exited with code {result.returncode}"
        self._emit("agent:error", agent, error=agent.error_message, exitCode=result.returncode)

    def _finish(self, agent: Agent) -> None:
        agent.completed_at = self._clock()
        if agent.started_at is not None:
            agent.duration = int((agent.completed_at - agent.started_at).total_seconds() * 1000)

    # Control ---------------------------------------------------------------

    def stop_agent(self, agent_id: str) -> bool:
        agent = self._agents.get(agent_id)
        task = self._tasks.get(agent_id)
        if agent is None or task is None or task.done():
            return False
        # A task cancelled before its first step never enters _execute.
        not_started = agent.status == "starting"
        agent.status = "stopping"
        task.cancel()
        self._emit("agent:stopped", agent)
        if not_started:
            self._finish(agent)
            agent.status = "completed"
            self._emit("agent:completed", agent, duration=agent.duration, stopped=True)
        return True

    def stop_session_agents(self, session_id: str) -> int:
        return sum(
            1
            for agent in self.get_session_agents(session_id)
            if agent.status in {"starting", "running"} and self.stop_agent(agent.id)
        )

    def update_progress(self, agent_id: str, progress: int, current_action: str | None = None) -> bool:
        agent = self._agents.get(agent_id)
        if agent is None:
            return False
        agent.progress = min(100, max(0, progress))
        if current_action:
            agent.current_action = current_action
        self._emit("agent:progress", agent, progress=agent.progress, currentAction=agent.current_action)
        return True

    # Queries ---------------------------------------------------------------

    def get_agent(self, agent_id: str) -> Agent | None:
        return self._agents.get(agent_id)

    def get_session_agents(self, session_id: str) -> list[Agent]:
        return [agent for agent in self._agents.values() if agent.session_id == session_id]

    def all_agents(self) -> list[Agent]:
        return list(self._agents.values())

    def running_count(self) -> int:
        return sum(1 for agent in self._agents.values() if agent.status in {"starting", "running"})

    # Cleanup ---------------------------------------------------------------

    def remove_agent(self, agent_id: str) -> bool:
        self._tasks.pop(agent_id, None)
        return self._agents.pop(agent_id, None) is not None

    def cleanup_finished_agents(self) -> int:
        finished = [
            agent_id
            for agent_id, agent in self._agents.items()
            if agent.status in {"completed", "error"}
        ]
        for agent_id in finished:
            self.remove_agent(agent_id)
        return len(finished)

    async def wait_for_agent(self, agent_id: str) -> Agent | None:
        """Await the background run of ``agent_id`` and return its final record."""

        task = self._tasks.get(agent_id)
        if task is not None:
            await asyncio.gather(task, return_exceptions=True)
        return self._agents.get(agent_id)

    async def aclose(self) -> None:
        """Cancel every in-flight run and wait for the tasks to unwind."""

        pending = [task for task in self._tasks.values() if not task.done()]
        for task in pending:
            task.cancel()
        if pending:
            await asyncio.gather(*pending, return_exceptions=True)


__all__ = ["AGENT_EVENTS", "AgentListener", "AgentRunner", "generate_agent_id", "select_model"]

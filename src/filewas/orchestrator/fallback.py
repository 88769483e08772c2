"""Escalation of repeatedly failing tasks to the orchestrator ("CEO") agent.

Each session owns one :class:`FallbackHandler`. The handler keeps an
append-only error history per task, decides when a task has failed often
enough to escalate, and runs the escalation: spawn the orchestrator agent with
a recovery prompt and wait, bounded by ``ceo_timeout``, for it to finish.

Handlers live in a :class:`FallbackRegistry` owned by the server, created when
a session first needs one and disposed when the session ends.
"""

from __future__ import annotations

import asyncio
import json
import logging
import time
from collections import OrderedDict
from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Mapping, Protocol

from pydantic import BaseModel, ConfigDict, Field

from ..agents import AgentConfig
from .broadcast import SessionMessage
from .models import Agent, AgentSpawnOptions, AgentTask

logger = logging.getLogger(__name__)

ORCHESTRATOR_TYPE = "orchestrator"
DEFAULT_CEO_TIMEOUT_MS = 300_000
POLL_INTERVAL_SECONDS = 0.5


class FallbackConfig(BaseModel):
    model_config = ConfigDict(extra="forbid")

    fallback_after_failures: int = Field(default=2, ge=1)
    enabled: bool = True
    ceo_timeout: int | None = Field(default=DEFAULT_CEO_TIMEOUT_MS, ge=0)
    ceo_max_turns: int | None = Field(default=10, ge=0)


class AgentRunnerProtocol(Protocol):
    def load_agent_config(self, agent_type: str) -> AgentConfig | None:
        ...

    async def spawn_agent(self, options: AgentSpawnOptions) -> Agent:
        ...

    def get_agent(self, agent_id: str) -> Agent | None:
        ...


class BroadcasterProtocol(Protocol):
    def broadcast_to_session(self, session_id: str, message: SessionMessage) -> Any:
        ...


@dataclass(slots=True)
class FallbackContext:
    task: AgentTask
    original_agent_type: str
    failed_agent: Agent
    errors: list[str] = field(default_factory=list)
    retry_count: int = 0
    session_id: str = ""
    cwd: Path | str = "."


@dataclass(slots=True)
class FallbackDecision:
    should_fallback: bool
    reason: str
    failure_count: int
    threshold_reached: bool

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass(slots=True)
class FallbackResult:
    success: bool
    ceo_agent_id: str | None = None
    output: str | None = None
    error: str | None = None
    duration: int = 0

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass(slots=True)
class CompletionOutcome:
    success: bool
    output: str | None = None
    error: str | None = None


class FallbackError(RuntimeError):
    """Raised inside :meth:`FallbackHandler.execute_fallback` and turned into a failed result."""


def build_fallback_prompt(context: FallbackContext) -> str:
    """Render the recovery brief handed to the orchestrator agent."""

    task = context.task
    lines = [
        "# CEO Fallback: Task Recovery Required",
        "",
        "A task has failed multiple times and requires your intervention.",
        "",
        "## Failed Task",
        f"**ID:** {task.id}",
        f"**Type:** {task.type}",
        f"**Title:** {task.title}",
        f"**Description:** {task.description}",
        f"**Priority:** {task.priority}",
        "",
        "## Failure Details",
        f"**Original Agent:** {context.original_agent_type}",
        f"**Agent Model:** {context.failed_agent.model}",
        f"**Retry Count:** {context.retry_count}/{task.max_retries}",
        "",
        "### Error Messages",
    ]
    lines.extend(f"{index}. {error}" for index, error in enumerate(context.errors, start=1))
    lines.extend(
        [
            "",
            "## Your Task",
            "",
            "As the Orchestrator (CEO), you need to:",
            "",
            "1. **Analyze the failure** - Understand why the original agent failed",
            "2. **Identify the root cause** - Determine what went wrong",
            "3. **Formulate a recovery plan** - Decide how to fix this",
            "4. **Execute the fix** - Use available tools to resolve the issue",
            "",
            "### Recovery Options",
            "",
            "- **Retry with different approach** - Modify the task execution strategy",
            "- **Delegate to another agent** - Assign to a more suitable agent type",
            "- **Break down the task** - Split into smaller, manageable sub-tasks",
            "- **Fix environmental issues** - Resolve configuration, dependency, or resource problems",
            "- **Escalate to user** - If truly blocked, explain what user intervention is needed",
            "",
            "### Important Notes",
            "",
            "- You have access to all tools available to the original agent",
            "- The original task input is available in the task data",
            "- Focus on completing the original task goal, not just analyzing",
            "- If you successfully complete the task, mark it as done",
            "- If the task is genuinely impossible, explain why clearly",
            "",
        ]
    )
    if task.input:
        lines.extend(
            [
                "## Original Task Input",
                "```json",
                json.dumps(task.input, indent=2, ensure_ascii=False),
                "```",
                "",
            ]
        )
    return "\n".join(lines)


def merge_fallback_config(
    base: FallbackConfig, updates: FallbackConfig | Mapping[str, Any] | None
) -> FallbackConfig:
    if updates is None:
        return base.model_copy()
    if isinstance(updates, FallbackConfig):
        changes = updates.model_dump(exclude_unset=True)
    else:
        changes = dict(updates)
    return FallbackConfig.model_validate({**base.model_dump(), **changes})


class FallbackHandler:
    def __init__(
        self,
        session_id: str,
        runner: AgentRunnerProtocol,
        broadcaster: BroadcasterProtocol,
        *,
        config: FallbackConfig | Mapping[str, Any] | None = None,
        poll_interval: float = POLL_INTERVAL_SECONDS,
    ) -> None:
        self._session_id = session_id
        self._runner = runner
        self._broadcaster = broadcaster
        self._poll_interval = poll_interval
        self._config = FallbackConfig()
        self._failure_history: dict[str, list[str]] = {}
        if config is not None:
            self.update_config(config)

    @property
    def session_id(self) -> str:
        return self._session_id

    @property
    def config(self) -> FallbackConfig:
        return self._config.model_copy()

    def update_config(self, updates: FallbackConfig | Mapping[str, Any]) -> FallbackConfig:
        """Shallow-merge ``updates`` over the current configuration.

        A :class:`FallbackConfig` instance contributes only the fields that were
        explicitly set on it.
        """

        self._config = merge_fallback_config(self._config, updates)
        return self.config

    # Decision --------------------------------------------------------------

    def should_trigger_fallback(self, task: AgentTask, agent: Agent | None, error: str) -> FallbackDecision:
        """Record ``error`` for ``task`` and decide whether to escalate.

        ``agent`` is accepted for call-site symmetry and does not influence the
        decision.
        """

        self._failure_history.setdefault(task.id, []).append(error)

        if not self._config.enabled:
            return FallbackDecision(
                should_fallback=False,
                reason="CEO fallback is disabled",
                failure_count=task.retries,
                threshold_reached=False,
            )

        failure_count = task.retries + 1
        threshold = self._config.fallback_after_failures
        threshold_reached = failure_count >= threshold
        max_retries_reached = failure_count >= task.max_retries

        if threshold_reached or max_retries_reached:
            reason = (
                f"Task exceeded max retries ({task.max_retries})"
                if max_retries_reached
                else f"Task failed {failure_count} times (threshold: {threshold})"
            )
            return FallbackDecision(True, reason, failure_count, threshold_reached=True)

        return FallbackDecision(
            False,
            f"Task has only failed {failure_count} times (threshold: {threshold})",
            failure_count,
            threshold_reached=False,
        )

    def get_failure_history(self, task_id: str) -> list[str]:
        return list(self._failure_history.get(task_id, []))

    def clear_failure_history(self, task_id: str) -> None:
        self._failure_history.pop(task_id, None)

    def clear_all_history(self) -> None:
        self._failure_history.clear()

    def get_stats(self) -> dict[str, Any]:
        return {
            "total_failures": sum(len(errors) for errors in self._failure_history.values()),
            "tasks_with_failures": len(self._failure_history),
            "config": self._config.model_dump(),
        }

    # Execution -------------------------------------------------------------

    async def execute_fallback(self, context: FallbackContext) -> FallbackResult:
        """Hand the failed task to the orchestrator agent and wait for its outcome.

        Never raises: every failure, including a missing orchestrator
        definition, comes back as an unsuccessful :class:`FallbackResult`.
        """

        started = time.monotonic()
        self._broadcast(
            "fallback:started",
            taskId=context.task.id,
            originalAgentType=context.original_agent_type,
            failedAgentId=context.failed_agent.id,
            retryCount=context.retry_count,
        )

        try:
            if self._runner.load_agent_config(ORCHESTRATOR_TYPE) is None:
                raise FallbackError("Orchestrator agent configuration not found")

            options = AgentSpawnOptions(
                agent_type=ORCHESTRATOR_TYPE,
                session_id=context.session_id or self._session_id,
                cwd=context.cwd,
                prompt=build_fallback_prompt(context),
                dangerously_skip_permissions=True,
                parent_agent_id=context.failed_agent.id,
                max_turns=self._config.ceo_max_turns,
                timeout=self._config.ceo_timeout,
            )
            ceo_agent = await self._runner.spawn_agent(options)
            self._broadcast(
                "fallback:ceo_spawned",
                taskId=context.task.id,
                ceoAgentId=ceo_agent.id,
                ceoAgentName=ceo_agent.name,
                model=ceo_agent.model,
            )

            outcome = await self.wait_for_completion(
                ceo_agent.id, self._config.ceo_timeout or DEFAULT_CEO_TIMEOUT_MS
            )
        except Exception as exc:
            duration = _elapsed_ms(started)
            logger.warning(
                "CEO fallback failed before completion",
                extra={"session_id": self._session_id, "task_id": context.task.id, "error": str(exc)},
            )
            self._broadcast(
                "fallback:failed",
                taskId=context.task.id,
                ceoAgentId="unknown",
                error=str(exc),
                duration=duration,
            )
            return FallbackResult(False, ceo_agent_id="unknown", error=str(exc), duration=duration)

        duration = _elapsed_ms(started)
        if outcome.success:
            self._broadcast(
                "fallback:success", taskId=context.task.id, ceoAgentId=ceo_agent.id, duration=duration
            )
        else:
            self._broadcast(
                "fallback:failed",
                taskId=context.task.id,
                ceoAgentId=ceo_agent.id,
                error=outcome.error or "Unknown error",
                duration=duration,
            )
        logger.info(
            "CEO fallback finished",
            extra={
                "session_id": self._session_id,
                "task_id": context.task.id,
                "ceo_agent_id": ceo_agent.id,
                "success": outcome.success,
            },
        )
        return FallbackResult(
            outcome.success,
            ceo_agent_id=ceo_agent.id,
            output=outcome.output,
            error=outcome.error,
            duration=duration,
        )

    async def wait_for_completion(self, agent_id: str, timeout_ms: int) -> CompletionOutcome:
        """Poll the runner until ``agent_id`` finishes, disappears or the deadline passes."""

        async def _poll() -> CompletionOutcome:
            while True:
                await asyncio.sleep(self._poll_interval)
                agent = self._runner.get_agent(agent_id)
                if agent is None:
                    return CompletionOutcome(False, error="Agent disappeared")
                if agent.status == "completed":
                    return CompletionOutcome(True, output=agent.current_action or "Task completed")
                if agent.status == "error":
                    return CompletionOutcome(False, error=agent.error_message or "Agent failed")

        try:
            return await asyncio.wait_for(_poll(), timeout=timeout_ms / 1000)
        except asyncio.TimeoutError:
            return CompletionOutcome(False, error=f"CEO agent timeout after {timeout_ms}ms")

    def _broadcast(self, event: str, **payload: Any) -> None:
        message = SessionMessage(
            type="status",
            event=event,
            payload={"sessionId": self._session_id, **payload},
            timestamp=datetime.now(timezone.utc).isoformat(),
        )
        self._broadcaster.broadcast_to_session(self._session_id, message)


def _elapsed_ms(started: float) -> int:
    return int((time.monotonic() - started) * 1000)


def create_fallback_handler(
    session_id: str,
    runner: AgentRunnerProtocol,
    broadcaster: BroadcasterProtocol,
    config: FallbackConfig | Mapping[str, Any] | None = None,
    *,
    poll_interval: float = POLL_INTERVAL_SECONDS,
) -> FallbackHandler:
    return FallbackHandler(
        session_id, runner, broadcaster, config=config, poll_interval=poll_interval
    )


class FallbackRegistry:
    """Session-scoped handlers with optional least-recently-used eviction.

    ``max_sessions`` of ``0`` keeps every handler until it is removed.
    """

    def __init__(
        self,
        runner: AgentRunnerProtocol,
        broadcaster: BroadcasterProtocol,
        *,
        default_config: FallbackConfig | Mapping[str, Any] | None = None,
        max_sessions: int = 0,
        poll_interval: float = POLL_INTERVAL_SECONDS,
    ) -> None:
        self._runner = runner
        self._broadcaster = broadcaster
        self._default_config = default_config
        self._max_sessions = max_sessions
        self._poll_interval = poll_interval
        self._handlers: OrderedDict[str, FallbackHandler] = OrderedDict()

    def get_handler(
        self,
        session_id: str,
        config: FallbackConfig | Mapping[str, Any] | None = None,
    ) -> FallbackHandler:
        """Return the session's handler, creating it on first use.

        A ``config`` given for an existing handler is merged into it.
        """

        handler = self._handlers.get(session_id)
        if handler is None:
            handler = create_fallback_handler(
                session_id,
                self._runner,
                self._broadcaster,
                self.resolve_config(config),
                poll_interval=self._poll_interval,
            )
            self._handlers[session_id] = handler
            self._evict()
            return handler

        if config is not None:
            handler.update_config(config)
        self._handlers.move_to_end(session_id)
        return handler

    def resolve_config(self, config: FallbackConfig | Mapping[str, Any] | None = None) -> FallbackConfig:
        """Return the configuration a new handler would start with.

        Raises :class:`pydantic.ValidationError` without registering anything.
        """

        defaults = merge_fallback_config(FallbackConfig(), self._default_config)
        return merge_fallback_config(defaults, config)

    def peek(self, session_id: str) -> FallbackHandler | None:
        return self._handlers.get(session_id)

    def remove_handler(self, session_id: str) -> bool:
        return self._handlers.pop(session_id, None) is not None

    def clear(self) -> None:
        self._handlers.clear()

    def session_ids(self) -> list[str]:
        return list(self._handlers)

    def __len__(self) -> int:
        return len(self._handlers)

    def __contains__(self, session_id: object) -> bool:
        return session_id in self._handlers

    def _evict(self) -> None:
        if self._max_sessions <= 0:
            return
        while len(self._handlers) > self._max_sessions:
            evicted, _ = self._handlers.popitem(last=False)
            logger.info("Evicted idle fallback handler", extra={"session_id": evicted})


__all__ = [
    "AgentRunnerProtocol",
    "BroadcasterProtocol",
    "CompletionOutcome",
    "FallbackConfig",
    "FallbackContext",
    "FallbackDecision",
    "FallbackError",
    "FallbackHandler",
    "FallbackRegistry",
    "FallbackResult",
    "ORCHESTRATOR_TYPE",
    "build_fallback_prompt",
    "create_fallback_handler",
    "merge_fallback_config",
]

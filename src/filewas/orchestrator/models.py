"""Runtime records shared by the orchestrator components."""

from __future__ import annotations

from dataclasses import asdict, dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Any, Literal

from ..cli.stream import TokenUsage

AgentStatus = Literal["starting", "running", "stopping", "completed", "error"]

ACTIVE_STATUSES: frozenset[str] = frozenset({"starting", "running", "stopping"})
FINISHED_STATUSES: frozenset[str] = frozenset({"completed", "error"})


@dataclass(slots=True)
class AgentTask:
    """One unit of work handed to an agent.

    ``retries`` counts completed attempts; ``max_retries`` is the task's own
    ceiling, independent of the fallback threshold.
    """

    id: str
    type: str
    title: str
    description: str = ""
    priority: str = "medium"
    input: dict[str, Any] | None = None
    retries: int = 0
    max_retries: int = 3


@dataclass(slots=True)
class Agent:
    id: str
    type: str
    name: str
    session_id: str
    model: str
    status: AgentStatus = "starting"
    parent_agent_id: str | None = None
    current_action: str | None = None
    error_message: str | None = None
    progress: int = 0
    started_at: datetime | None = None
    completed_at: datetime | None = None
    duration: int | None = None
    cli_session_id: str | None = None
    token_usage: TokenUsage | None = None

    @property
    def is_active(self) -> bool:
        return self.status in ACTIVE_STATUSES

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "type": self.type,
            "name": self.name,
            "sessionId": self.session_id,
            "model": self.model,
            "status": self.status,
            "parentAgentId": self.parent_agent_id,
            "currentAction": self.current_action,
            "errorMessage": self.error_message,
            "progress": self.progress,
            "startedAt": self.started_at.isoformat() if self.started_at else None,
            "completedAt": self.completed_at.isoformat() if self.completed_at else None,
            "duration": self.duration,
            "cliSessionId": self.cli_session_id,
            "tokenUsage": self.token_usage.to_dict() if self.token_usage else None,
        }


@dataclass(slots=True)
class AgentHandoff:
    """Structured summary one agent leaves for the next."""

    from_agent_id: str
    from_agent_type: str
    to_agent_type: str
    summary: str
    files: list[str] = field(default_factory=list)
    questions: list[str] = field(default_factory=list)
    recommendations: list[str] = field(default_factory=list)
    context: dict[str, Any] | None = None

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass(slots=True)
class AgentSpawnOptions:
    agent_type: str
    session_id: str
    cwd: Path | str
    prompt: str
    model: str | None = None
    system_prompt: str | None = None
    parent_agent_id: str | None = None
    dangerously_skip_permissions: bool = False
    max_turns: int | None = None
    timeout: int | None = None
    resume_session_id: str | None = None
    env: dict[str, str] = field(default_factory=dict)


__all__ = [
    "ACTIVE_STATUSES",
    "Agent",
    "AgentHandoff",
    "AgentSpawnOptions",
    "AgentStatus",
    "AgentTask",
    "FINISHED_STATUSES",
]

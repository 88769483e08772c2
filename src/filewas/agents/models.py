"""Agent definition models."""

from __future__ import annotations

from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field, computed_field, field_validator

ModelProvider = Literal["claude", "glm"]
ThinkingLevel = Literal["off", "think", "max"]

AGENT_TYPES: tuple[str, ...] = (
    "orchestrator",
    "planner",
    "architect",
    "implementer",
    "reviewer",
    "tester",
    "security",
    "debugger",
)

DEFAULT_AGENT_MODELS: dict[str, ModelProvider] = {
    "orchestrator": "claude",
    "planner": "claude",
    "architect": "claude",
    "security": "claude",
    "implementer": "glm",
    "reviewer": "glm",
    "tester": "glm",
    "debugger": "glm",
}

DEFAULT_THINKING_LEVELS: dict[str, ThinkingLevel] = {
    "orchestrator": "max",
    "planner": "think",
    "architect": "think",
    "security": "think",
    "implementer": "off",
    "reviewer": "off",
    "tester": "off",
    "debugger": "off",
}


class AgentCapabilities(BaseModel):
    """Capability flags derived from the tools an agent may use."""

    can_spawn_agents: bool = False
    can_execute_tools: bool = True
    can_modify_files: bool = False
    can_run_commands: bool = False
    can_access_network: bool = False
    can_read_files: bool = False

    @classmethod
    def from_tools(cls, tools: list[str]) -> "AgentCapabilities":
        names = set(tools)
        return cls(
            can_spawn_agents="Task" in names,
            can_modify_files=bool(names & {"Write", "Edit"}),
            can_run_commands="Bash" in names,
            can_access_network=bool(names & {"WebFetch", "WebSearch"}),
            can_read_files=bool(names & {"Read", "Glob", "Grep"}),
        )


class AgentConfig(BaseModel):
    """Configuration describing how an agent type is launched."""

    model_config = ConfigDict(protected_namespaces=())

    type: str = Field(..., description="Agent type, also the definition file stem.")
    name: str = Field(..., description="Display name for the agent.")
    description: str = Field(default="", description="Short description of the agent's role.")
    tools: list[str] = Field(default_factory=list, description="Tools the agent is allowed to use.")
    model: ModelProvider = Field(default="claude", description="Preferred model provider.")
    model_override_allowed: bool = Field(
        default=True,
        description="Whether callers may pick a different model for this agent.",
    )
    thinking_level: ThinkingLevel = Field(default="off", description="Default thinking level.")
    system_prompt: str = Field(default="", description="Markdown body used as the system prompt.")
    file_path: str | None = Field(default=None, description="Definition file this config came from.")
    metadata: dict[str, Any] = Field(default_factory=dict)

    @field_validator("type")
    @classmethod
    def _normalize_type(cls, value: str) -> str:
        normalized = value.strip()
        if not normalized:
            raise ValueError("Agent type must not be empty")
        return normalized

    @field_validator("tools", mode="before")
    @classmethod
    def _split_tools(cls, value: Any):  # type: ignore[override]
        if value is None:
            return []
        if isinstance(value, str):
            return [item.strip() for item in value.split(",") if item.strip()]
        if isinstance(value, (list, tuple)):
            return [str(item).strip() for item in value]
        raise TypeError("tools must be a list or a comma-separated string")

    @computed_field  # type: ignore[prop-decorator]
    @property
    def capabilities(self) -> AgentCapabilities:
        return AgentCapabilities.from_tools(self.tools)


__all__ = [
    "AGENT_TYPES",
    "AgentCapabilities",
    "AgentConfig",
    "DEFAULT_AGENT_MODELS",
    "DEFAULT_THINKING_LEVELS",
    "ModelProvider",
    "ThinkingLevel",
]

"""Agent definition models and loader exports."""

from .loader import (
    AgentConfigLoadError,
    AgentConfigLoader,
    AgentConfigNotFoundError,
    parse_agent_definition,
)
from .models import AGENT_TYPES, AgentCapabilities, AgentConfig

__all__ = [
    "AGENT_TYPES",
    "AgentCapabilities",
    "AgentConfig",
    "AgentConfigLoadError",
    "AgentConfigLoader",
    "AgentConfigNotFoundError",
    "parse_agent_definition",
]

"""Agent orchestration: runner, prompt assembly, broadcast and CEO fallback."""

from .broadcast import SessionBroadcaster, SessionMessage
from .fallback import (
    FallbackConfig,
    FallbackContext,
    FallbackDecision,
    FallbackHandler,
    FallbackRegistry,
    FallbackResult,
    build_fallback_prompt,
    create_fallback_handler,
)
from .models import Agent, AgentHandoff, AgentSpawnOptions, AgentTask
from .prompt_builder import BuiltPrompt, PromptBuilder, PromptBuilderContext
from .runner import AgentRunner, select_model

__all__ = [
    "Agent",
    "AgentHandoff",
    "AgentRunner",
    "AgentSpawnOptions",
    "AgentTask",
    "BuiltPrompt",
    "FallbackConfig",
    "FallbackContext",
    "FallbackDecision",
    "FallbackHandler",
    "FallbackRegistry",
    "FallbackResult",
    "PromptBuilder",
    "PromptBuilderContext",
    "SessionBroadcaster",
    "SessionMessage",
    "build_fallback_prompt",
    "create_fallback_handler",
    "select_model",
]

"""FastMCP server bootstrap for the Task.filewas orchestrator."""

import asyncio
import json
import logging
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Mapping, Optional

from fastmcp import FastMCP

from . import __version__
from .agents import AgentConfigLoadError, AgentConfigLoader
from .cli import CliNotFoundError, CliRunner, CliRunnerError
from .config import FilewasSettings, get_settings
from .orchestrator import (
    AgentRunner,
    FallbackConfig,
    FallbackRegistry,
    PromptBuilder,
    SessionBroadcaster,
    SessionMessage,
)
from .storage import ProjectStorage, RulesDocumentService, SessionStorage
from .tools import register_tools

logger = logging.getLogger(__name__)

CLI_NAMES: dict[str, str] = {"claude": "claude", "glm": "glm"}


def configure_logging(level: str) -> None:
    """Configure root logging for the server process."""

    logging.basicConfig(
        level=getattr(logging, level, logging.INFO),
        format="[%(asctime)s] [%(levelname)s] %(name)s: %(message)s",
    )


def _run_sync(coro):
    """Execute an async coroutine on a dedicated event loop."""

    loop = asyncio.new_event_loop()
    try:
        return loop.run_until_complete(coro)
    finally:
        loop.close()


def _probe_cli(runner: CliRunner) -> dict[str, Any]:
    metadata: dict[str, Any] = {
        "available": True,
        "path": str(runner.executable),
        "version": None,
        "error": None,
    }
    try:
        result = _run_sync(runner.version())
    except CliRunnerError as exc:
        metadata["error"] = str(exc)
        return metadata
    if result.ok:
        metadata["version"] = result.stdout.strip() or None
    else:
        metadata["error"] = result.stderr.strip() or f"version check exited with code {result.returncode}"
    return metadata


def build_cli_runners(settings: FilewasSettings) -> tuple[dict[str, CliRunner], dict[str, dict[str, Any]]]:
    """Locate the claude and glm CLIs; missing ones are reported, not fatal."""

    runners: dict[str, CliRunner] = {}
    metadata: dict[str, dict[str, Any]] = {}
    explicit = {"claude": settings.claude_cli_path, "glm": settings.glm_cli_path}
    for model, name in CLI_NAMES.items():
        path = explicit.get(model)
        try:
            runner = CliRunner(Path(path) if path else None, name=name)
        except CliNotFoundError as exc:
            metadata[model] = {"available": False, "path": path, "version": None, "error": str(exc)}
            continue
        runners[model] = runner
        metadata[model] = _probe_cli(runner)
    return runners, metadata


def create_server(
    settings: Optional[FilewasSettings] = None,
    cli_runners: Mapping[str, CliRunner] | None = None,
) -> FastMCP:
    """Instantiate the FastMCP server and wire the orchestrator components."""

    settings = settings or get_settings()

    if cli_runners is None:
        runners, cli_metadata = build_cli_runners(settings)
    else:
        runners = dict(cli_runners)
        cli_metadata = {model: _probe_cli(runner) for model, runner in runners.items()}

    loader = AgentConfigLoader(settings.agent_paths)
    agent_runner = AgentRunner(loader, runners)
    broadcaster = SessionBroadcaster()
    projects = ProjectStorage(settings.data_path)
    sessions = SessionStorage(settings.data_path)
    rules = RulesDocumentService(settings.data_path)
    prompt_builder = PromptBuilder(settings.data_path, projects=projects, rules=rules)
    fallbacks = FallbackRegistry(
        agent_runner,
        broadcaster,
        default_config=FallbackConfig(
            fallback_after_failures=settings.fallback_after_failures,
            enabled=settings.fallback_enabled,
            ceo_timeout=settings.ceo_timeout_ms,
            ceo_max_turns=settings.ceo_max_turns,
        ),
        max_sessions=settings.max_fallback_sessions,
    )

    def _relay_agent_event(event: str, payload: dict[str, Any]) -> None:
        broadcaster.broadcast_to_session(
            payload["sessionId"],
            SessionMessage(type="agent", event=event, payload=payload, timestamp=payload["timestamp"]),
        )

    agent_runner.add_listener(_relay_agent_event)

    server = FastMCP(
        name="Task.filewas Orchestrator",
        version=__version__,
        instructions=(
            "Task.filewas builds prompts from project documents, runs claude and glm "
            "agent CLIs per agent type, and escalates repeatedly failing tasks to the "
            "orchestrator (CEO) agent."
        ),
    )

    handles = register_tools(
        server,
        loader=loader,
        agent_runner=agent_runner,
        prompt_builder=prompt_builder,
        fallbacks=fallbacks,
        broadcaster=broadcaster,
        projects=projects,
        sessions=sessions,
        rules=rules,
    )

    def status_snapshot() -> dict[str, Any]:
        """Summarize runtime state for the status resource."""

        try:
            agent_types = loader.available_types()
            agent_error: str | None = None
        except AgentConfigLoadError as exc:
            agent_types = []
            agent_error = str(exc)

        status_counts: dict[str, int] = {}
        for agent in agent_runner.all_agents():
            status_counts[agent.status] = status_counts.get(agent.status, 0) + 1

        project_count = projects.count()
        return {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "server_version": __version__,
            "log_level": settings.log_level,
            "data_path": str(settings.data_path),
            "agents": {
                "types": agent_types,
                "error": agent_error,
                "running": agent_runner.running_count(),
                "status_counts": status_counts,
            },
            "cli": cli_metadata,
            "fallback": {
                "sessions": len(fallbacks),
                "max_sessions": settings.max_fallback_sessions,
                "enabled": settings.fallback_enabled,
                "threshold": settings.fallback_after_failures,
            },
            "storage": {
                "projects": project_count.data if project_count.success else None,
                "error": None if project_count.success else project_count.error,
            },
        }

    @server.resource(
        "resource://filewas/status",
        name="filewas_status",
        description="Provides the current runtime status of the orchestrator.",
        mime_type="application/json",
    )
    def status_resource() -> str:
        return json.dumps(status_snapshot())

    setattr(server, "filewas_settings", settings)
    setattr(server, "agent_loader", loader)
    setattr(server, "agent_runner", agent_runner)
    setattr(server, "cli_metadata", cli_metadata)
    setattr(server, "broadcaster", broadcaster)
    setattr(server, "fallbacks", fallbacks)
    setattr(server, "prompt_builder", prompt_builder)
    setattr(server, "project_storage", projects)
    setattr(server, "session_storage", sessions)
    setattr(server, "status_snapshot", status_snapshot)
    setattr(server, "tool_handles", handles)
    return server


def main() -> None:
    """Entry point for running the orchestrator MCP server."""

    settings = get_settings()
    configure_logging(settings.log_level)

    server = create_server(settings)
    cli_metadata = getattr(server, "cli_metadata", {})
    logger.info(
        "Launching Task.filewas MCP server",
        extra={
            "version": __version__,
            "log_level": settings.log_level,
            "claude_available": cli_metadata.get("claude", {}).get("available"),
            "glm_available": cli_metadata.get("glm", {}).get("available"),
        },
    )
    server.run()


if __name__ == "__main__":
    main()

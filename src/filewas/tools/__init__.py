"""Tool registration for the Task.filewas MCP server."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Any

from fastmcp import Context, FastMCP
from pydantic import ValidationError

from ..agents import AgentConfigLoader, AgentConfigNotFoundError
from ..cli import CliNotFoundError
from ..orchestrator import (
    AgentHandoff,
    AgentRunner,
    AgentSpawnOptions,
    AgentTask,
    FallbackContext,
    FallbackRegistry,
    PromptBuilder,
    PromptBuilderContext,
    SessionBroadcaster,
)
from ..storage import ProjectStorage, RulesDocumentService, SessionStorage

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class ToolHandles:
    list_agents: Any
    build_prompt: Any
    spawn_agent: Any
    agent_status: Any
    report_task_failure: Any
    execute_fallback: Any
    configure_fallback: Any
    fallback_stats: Any
    session_events: Any
    create_project: Any
    list_projects: Any
    start_session: Any
    end_session: Any


def _task_from_payload(payload: dict[str, Any]) -> AgentTask:
    missing = [key for key in ("id", "type", "title") if not payload.get(key)]
    if missing:
        raise ValueError(f"Task is missing required fields: {', '.join(missing)}")
    max_retries = payload.get("max_retries", payload.get("maxRetries", 3))
    return AgentTask(
        id=str(payload["id"]),
        type=str(payload["type"]),
        title=str(payload["title"]),
        description=str(payload.get("description") or ""),
        priority=str(payload.get("priority") or "medium"),
        input=payload.get("input") or None,
        retries=int(payload.get("retries") or 0),
        max_retries=int(max_retries),
    )


def _handoff_from_payload(payload: dict[str, Any] | None) -> AgentHandoff | None:
    if payload is None:
        return None
    try:
        return AgentHandoff(
            from_agent_id=str(payload.get("from_agent_id") or payload["fromAgentId"]),
            from_agent_type=str(payload.get("from_agent_type") or payload["fromAgentType"]),
            to_agent_type=str(payload.get("to_agent_type") or payload.get("toAgentType") or ""),
            summary=str(payload.get("summary") or ""),
            files=list(payload.get("files") or []),
            questions=list(payload.get("questions") or []),
            recommendations=list(payload.get("recommendations") or []),
            context=payload.get("context"),
        )
    except KeyError as exc:
        raise ValueError(f"Handoff is missing required field {exc}") from exc


def register_tools(
    server: FastMCP,
    *,
    loader: AgentConfigLoader,
    agent_runner: AgentRunner,
    prompt_builder: PromptBuilder,
    fallbacks: FallbackRegistry,
    broadcaster: SessionBroadcaster,
    projects: ProjectStorage,
    sessions: SessionStorage,
    rules: RulesDocumentService,
) -> ToolHandles:
    """Register the orchestrator tools on the server."""

    def _agent_config(agent_type: str):
        try:
            return loader.get(agent_type)
        except AgentConfigNotFoundError as exc:
            raise ValueError(f"Unknown agent type '{agent_type}'") from exc

    def _list_agents(context: Context | None = None) -> list[dict[str, Any]]:
        """List the agent definitions found on the configured search paths."""

        configs = loader.load_all()
        catalog = [
            {
                "type": config.type,
                "name": config.name,
                "description": config.description,
                "model": config.model,
                "thinking_level": config.thinking_level,
                "model_override_allowed": config.model_override_allowed,
                "tools": config.tools,
            }
            for config in sorted(configs.values(), key=lambda item: item.type)
        ]
        _emit_log(context, "debug", "Listed agents", extra={"count": len(catalog)})
        return catalog

    def _build_prompt(
        agent_type: str,
        user_prompt: str,
        *,
        session_id: str = "adhoc",
        project_id: str | None = None,
        phase_id: int | None = None,
        handoff: dict[str, Any] | None = None,
        additional_context: dict[str, Any] | None = None,
        resume_output: str | None = None,
        simple: bool = False,
        context: Context | None = None,
    ) -> dict[str, Any]:
        """Assemble the prompt an agent would receive, without running it."""

        config = _agent_config(agent_type)
        if simple:
            built = prompt_builder.build_simple_prompt(config, user_prompt)
        else:
            prompt_context = PromptBuilderContext(
                agent_config=config,
                session_id=session_id,
                user_prompt=user_prompt,
                project_id=project_id,
                phase_id=phase_id,
                handoff=_handoff_from_payload(handoff),
                additional_context=additional_context,
            )
            if resume_output is not None:
                built = prompt_builder.build_resume_prompt(prompt_context, resume_output)
            else:
                built = prompt_builder.build_prompt(prompt_context)

        _emit_log(
            context,
            "info",
            "Built prompt",
            extra={
                "agent_type": agent_type,
                "project_id": project_id,
                "total_tokens": built.metadata.total_tokens,
            },
        )
        return built.to_dict()

    async def _spawn_agent(
        agent_type: str,
        session_id: str,
        prompt: str,
        *,
        cwd: str | None = None,
        project_id: str | None = None,
        phase_id: int | None = None,
        handoff: dict[str, Any] | None = None,
        model: str | None = None,
        max_turns: int | None = None,
        timeout_ms: int | None = None,
        raw_prompt: bool = False,
        context: Context | None = None,
    ) -> dict[str, Any]:
        """Build the prompt for ``agent_type`` and launch it in the background."""

        config = _agent_config(agent_type)
        if raw_prompt:
            user_prompt, system_prompt = prompt, None
        else:
            built = prompt_builder.build_prompt(
                PromptBuilderContext(
                    agent_config=config,
                    session_id=session_id,
                    user_prompt=prompt,
                    project_id=project_id,
                    phase_id=phase_id,
                    handoff=_handoff_from_payload(handoff),
                )
            )
            user_prompt, system_prompt = built.user_prompt, built.system_prompt

        options = AgentSpawnOptions(
            agent_type=agent_type,
            session_id=session_id,
            cwd=Path(cwd) if cwd else Path.cwd(),
            prompt=user_prompt,
            model=model,
            system_prompt=system_prompt,
            max_turns=max_turns,
            timeout=timeout_ms,
        )
        try:
            agent = await agent_runner.spawn_agent(options)
        except CliNotFoundError as exc:
            raise RuntimeError(f"Agent CLI is unavailable; cannot spawn agent: {exc}") from exc

        _emit_log(
            context,
            "info",
            "Spawned agent",
            extra={"agent_id": agent.id, "agent_type": agent_type, "session_id": session_id},
        )
        return agent.to_dict()

    def _agent_status(
        agent_id: str | None = None,
        *,
        session_id: str | None = None,
        context: Context | None = None,
    ) -> dict[str, Any]:
        """Report one agent, or every agent of a session."""

        if agent_id:
            agent = agent_runner.get_agent(agent_id)
            if agent is None:
                raise ValueError(f"Agent '{agent_id}' not found")
            return agent.to_dict()
        if session_id:
            agents = agent_runner.get_session_agents(session_id)
            return {"session_id": session_id, "agents": [agent.to_dict() for agent in agents]}
        return {
            "running": agent_runner.running_count(),
            "agents": [agent.to_dict() for agent in agent_runner.all_agents()],
        }

    def _report_task_failure(
        session_id: str,
        task: dict[str, Any],
        error: str,
        *,
        agent_id: str | None = None,
        context: Context | None = None,
    ) -> dict[str, Any]:
        """Record a task failure and say whether the CEO fallback should take over."""

        agent_task = _task_from_payload(task)
        handler = fallbacks.get_handler(session_id)
        agent = agent_runner.get_agent(agent_id) if agent_id else None
        decision = handler.should_trigger_fallback(agent_task, agent, error)

        _emit_log(
            context,
            "info",
            "Recorded task failure",
            extra={
                "session_id": session_id,
                "task_id": agent_task.id,
                "should_fallback": decision.should_fallback,
            },
        )
        return {
            **decision.to_dict(),
            "history": handler.get_failure_history(agent_task.id),
        }

    async def _execute_fallback(
        session_id: str,
        task: dict[str, Any],
        agent_id: str,
        *,
        original_agent_type: str | None = None,
        errors: list[str] | None = None,
        cwd: str | None = None,
        context: Context | None = None,
    ) -> dict[str, Any]:
        """Escalate a failed task to the orchestrator agent and wait for the outcome."""

        agent_task = _task_from_payload(task)
        failed_agent = agent_runner.get_agent(agent_id)
        if failed_agent is None:
            raise ValueError(f"Agent '{agent_id}' not found")

        handler = fallbacks.get_handler(session_id)
        fallback_context = FallbackContext(
            task=agent_task,
            original_agent_type=original_agent_type or failed_agent.type,
            failed_agent=failed_agent,
            errors=list(errors) if errors is not None else handler.get_failure_history(agent_task.id),
            retry_count=agent_task.retries,
            session_id=session_id,
            cwd=Path(cwd) if cwd else Path.cwd(),
        )
        result = await handler.execute_fallback(fallback_context)

        _emit_log(
            context,
            "info" if result.success else "warning",
            "CEO fallback finished",
            extra={
                "session_id": session_id,
                "task_id": agent_task.id,
                "success": result.success,
                "ceo_agent_id": result.ceo_agent_id,
            },
        )
        return result.to_dict()

    def _configure_fallback(
        session_id: str,
        *,
        enabled: bool | None = None,
        fallback_after_failures: int | None = None,
        ceo_timeout: int | None = None,
        ceo_max_turns: int | None = None,
        context: Context | None = None,
    ) -> dict[str, Any]:
        """Update the CEO fallback settings of one session."""

        updates = {
            key: value
            for key, value in {
                "enabled": enabled,
                "fallback_after_failures": fallback_after_failures,
                "ceo_timeout": ceo_timeout,
                "ceo_max_turns": ceo_max_turns,
            }.items()
            if value is not None
        }
        try:
            handler = fallbacks.get_handler(session_id, updates)
        except ValidationError as exc:
            raise ValueError(f"Invalid fallback configuration: {exc}") from exc

        _emit_log(context, "info", "Updated fallback config", extra={"session_id": session_id, **updates})
        return handler.config.model_dump()

    def _fallback_stats(session_id: str, context: Context | None = None) -> dict[str, Any]:
        """Summarize recorded failures for a session."""

        handler = fallbacks.peek(session_id)
        if handler is None:
            return {"session_id": session_id, "active": False, "total_failures": 0, "tasks_with_failures": 0}
        return {"session_id": session_id, "active": True, **handler.get_stats()}

    def _session_events(
        session_id: str,
        limit: int = 20,
        context: Context | None = None,
    ) -> list[dict[str, Any]]:
        """Return the most recent broadcast messages of a session."""

        if limit <= 0:
            raise ValueError("limit must be positive")
        return [message.to_dict() for message in broadcaster.recent(session_id, limit)]

    def _create_project(
        name: str,
        *,
        description: str | None = None,
        project_type: str = "other",
        tags: list[str] | None = None,
        init_rules: bool = True,
        context: Context | None = None,
    ) -> dict[str, Any]:
        """Create a project record and, optionally, its rules document."""

        if not name.strip():
            raise ValueError("Project name must not be empty")
        project = projects.create_project(
            name.strip(), description=description, project_type=project_type, tags=tags
        ).unwrap()
        if init_rules:
            rules.init_project_rules(project["id"], project["name"], project_type=project_type).unwrap()

        _emit_log(context, "info", "Created project", extra={"project_id": project["id"]})
        return project

    def _list_projects(status: str | None = None, context: Context | None = None) -> list[dict[str, Any]]:
        """List projects, most recently active first."""

        return projects.list_projects(status=status).unwrap()

    def _start_session(
        project_id: str,
        title: str,
        *,
        description: str | None = None,
        fallback: dict[str, Any] | None = None,
        context: Context | None = None,
    ) -> dict[str, Any]:
        """Open a work session on a project and prepare its fallback handler."""

        project = projects.get_project(project_id).unwrap()
        if project is None:
            raise ValueError(f"Project '{project_id}' not found")
        try:
            fallback_config = fallbacks.resolve_config(fallback)
        except ValidationError as exc:
            raise ValueError(f"Invalid fallback configuration: {exc}") from exc

        session = sessions.create_session(
            project_id,
            title,
            description=description,
            version=project.get("activeVersion"),
        ).unwrap()
        session = sessions.update_status(session["id"], "in_progress").unwrap()
        fallbacks.get_handler(session["id"], fallback_config)

        _emit_log(
            context,
            "info",
            "Started session",
            extra={"session_id": session["id"], "project_id": project_id},
        )
        return session

    def _end_session(
        session_id: str,
        *,
        status: str = "done",
        context: Context | None = None,
    ) -> dict[str, Any]:
        """Stop the session's agents and dispose of its fallback handler."""

        stopped = agent_runner.stop_session_agents(session_id)
        removed = fallbacks.remove_handler(session_id)
        broadcaster.drop_session(session_id)
        persisted = sessions.update_status(session_id, status)
        if not persisted.success:
            logger.info(
                "Session status not persisted",
                extra={"session_id": session_id, "error": persisted.error},
            )

        _emit_log(
            context,
            "info",
            "Ended session",
            extra={"session_id": session_id, "stopped_agents": stopped},
        )
        return {
            "session_id": session_id,
            "status": status,
            "stopped_agents": stopped,
            "fallback_removed": removed,
            "persisted": persisted.success,
        }

    tool_list_agents = server.tool(
        name="list_agents",
        description="List agent definitions with their default model and thinking level.",
    )(_list_agents)
    tool_build_prompt = server.tool(
        name="build_prompt",
        description="Assemble an agent prompt from rules, project docs, handoff and task.",
    )(_build_prompt)
    tool_spawn_agent = server.tool(
        name="spawn_agent",
        description="Launch an agent CLI run in the background for a session.",
    )(_spawn_agent)
    tool_agent_status = server.tool(
        name="agent_status",
        description="Fetch the status of an agent, of a session's agents, or of every agent.",
    )(_agent_status)
    tool_report_failure = server.tool(
        name="report_task_failure",
        description="Record a task failure and decide whether to escalate to the CEO agent.",
    )(_report_task_failure)
    tool_execute_fallback = server.tool(
        name="execute_fallback",
        description="Hand a repeatedly failing task to the orchestrator (CEO) agent.",
    )(_execute_fallback)
    tool_configure_fallback = server.tool(
        name="configure_fallback",
        description="Update the CEO fallback threshold, timeout and turn limit for a session.",
    )(_configure_fallback)
    tool_fallback_stats = server.tool(
        name="fallback_stats",
        description="Summarize recorded task failures for a session.",
    )(_fallback_stats)
    tool_session_events = server.tool(
        name="session_events",
        description="Return recent status messages broadcast to a session.",
    )(_session_events)
    tool_create_project = server.tool(
        name="create_project",
        description="Create a project record and its rules document.",
    )(_create_project)
    tool_list_projects = server.tool(
        name="list_projects",
        description="List stored projects.",
    )(_list_projects)
    tool_start_session = server.tool(
        name="start_session",
        description="Open a work session on a project.",
    )(_start_session)
    tool_end_session = server.tool(
        name="end_session",
        description="Close a session, stopping its agents and discarding its fallback state.",
    )(_end_session)

    return ToolHandles(
        list_agents=tool_list_agents,
        build_prompt=tool_build_prompt,
        spawn_agent=tool_spawn_agent,
        agent_status=tool_agent_status,
        report_task_failure=tool_report_failure,
        execute_fallback=tool_execute_fallback,
        configure_fallback=tool_configure_fallback,
        fallback_stats=tool_fallback_stats,
        session_events=tool_session_events,
        create_project=tool_create_project,
        list_projects=tool_list_projects,
        start_session=tool_start_session,
        end_session=tool_end_session,
    )


def _emit_log(
    context: Context | None,
    level: str,
    message: str,
    *,
    extra: dict[str, Any] | None = None,
) -> None:
    """Log through the MCP context logger when one is attached, else the module logger."""

    payload = extra or {}

    if context is not None:
        ctx_logger = getattr(context, "logger", None)
        if ctx_logger is not None:
            log_method = getattr(ctx_logger, level, None)
            if callable(log_method):
                log_method(message, extra=payload)
                return

    fallback = getattr(logger, level, logger.info)
    fallback(message, extra=payload)


__all__ = ["ToolHandles", "register_tools"]

"""Task.filewas diagnostics CLI."""

from __future__ import annotations

import argparse
import asyncio
import json
from pathlib import Path

from filewas.agents import AgentConfigLoadError, AgentConfigLoader, AgentConfigNotFoundError
from filewas.cli import CliNotFoundError, CliRunner, CliRunnerError
from filewas.cli.runner import serialize_result
from filewas.config import FilewasSettings
from filewas.orchestrator import PromptBuilder, PromptBuilderContext
from filewas.storage import ProjectStorage, SessionStorage


def load_agents(settings: FilewasSettings) -> AgentConfigLoader:
    loader = AgentConfigLoader(settings.agent_paths)
    if not loader.search_paths:
        print("No agent definition directories found")
        raise SystemExit(1)
    return loader


def cmd_agents(args: argparse.Namespace) -> None:
    settings = FilewasSettings()
    loader = load_agents(settings)
    try:
        configs = loader.load_all()
    except AgentConfigLoadError as exc:
        print(f"Agent definitions invalid: {exc}")
        raise SystemExit(1)
    if args.json:
        print(json.dumps([config.model_dump() for config in configs.values()], indent=2))
    else:
        for agent_type in sorted(configs):
            config = configs[agent_type]
            print(f"{agent_type} [{config.model}/{config.thinking_level}] -> {config.name}")


def cmd_projects(args: argparse.Namespace) -> None:
    settings = FilewasSettings()
    result = ProjectStorage(settings.data_path).list_projects(status=args.status)
    if not result.success:
        print(f"Project storage unavailable: {result.error}")
        raise SystemExit(1)
    if args.json:
        print(json.dumps(result.data, indent=2))
    else:
        for project in result.data or []:
            print(f"{project['id']} [{project.get('status')}] {project.get('name')} ({project.get('activeVersion')})")


def cmd_sessions(args: argparse.Namespace) -> None:
    settings = FilewasSettings()
    result = SessionStorage(settings.data_path).list_sessions(args.project_id)
    if not result.success:
        print(f"Session storage unavailable: {result.error}")
        raise SystemExit(1)
    sessions = result.data or []
    if args.limit is not None and args.limit > 0:
        sessions = sessions[: args.limit]
    print(json.dumps(sessions, indent=2))


def cmd_prompt(args: argparse.Namespace) -> None:
    settings = FilewasSettings()
    loader = load_agents(settings)
    try:
        config = loader.get(args.agent_type)
    except AgentConfigNotFoundError as exc:
        print(str(exc))
        raise SystemExit(1)

    builder = PromptBuilder(settings.data_path)
    if args.simple:
        built = builder.build_simple_prompt(config, args.prompt)
    else:
        try:
            built = builder.build_prompt(
                PromptBuilderContext(
                    agent_config=config,
                    session_id="diagnostics",
                    user_prompt=args.prompt,
                    project_id=args.project_id,
                    phase_id=args.phase_id,
                )
            )
        except ValueError as exc:
            print(str(exc))
            raise SystemExit(1)

    if args.json:
        print(json.dumps(built.to_dict(), indent=2))
    else:
        print(built.user_prompt)
        print()
        print(f"# ~{built.metadata.total_tokens} tokens, files: {', '.join(built.metadata.injected_files) or '-'}")


def cmd_cli(args: argparse.Namespace) -> None:
    settings = FilewasSettings()
    explicit = settings.claude_cli_path if args.name == "claude" else settings.glm_cli_path
    try:
        runner = CliRunner(Path(explicit) if explicit else None, name=args.name)
        result = asyncio.run(runner.version())
    except (CliNotFoundError, CliRunnerError) as exc:
        print(f"{args.name} unavailable: {exc}")
        raise SystemExit(1)
    print(serialize_result(result))


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Task.filewas diagnostics")
    sub = parser.add_subparsers(dest="cmd")

    p_agents = sub.add_parser("agents", help="List agent definitions")
    p_agents.add_argument("--json", action="store_true", help="Output JSON")
    p_agents.set_defaults(func=cmd_agents)

    p_projects = sub.add_parser("projects", help="List stored projects")
    p_projects.add_argument("--status")
    p_projects.add_argument("--json", action="store_true", help="Output JSON")
    p_projects.set_defaults(func=cmd_projects)

    p_sessions = sub.add_parser("sessions", help="List stored sessions, newest first")
    p_sessions.add_argument("--project-id")
    p_sessions.add_argument("--limit", type=int, default=None)
    p_sessions.set_defaults(func=cmd_sessions)

    p_prompt = sub.add_parser("prompt", help="Render the prompt an agent would receive")
    p_prompt.add_argument("agent_type")
    p_prompt.add_argument("prompt")
    p_prompt.add_argument("--project-id")
    p_prompt.add_argument("--phase-id", type=int, default=None)
    p_prompt.add_argument("--simple", action="store_true", help="Skip rules, context and handoff")
    p_prompt.add_argument("--json", action="store_true", help="Output JSON")
    p_prompt.set_defaults(func=cmd_prompt)

    p_cli = sub.add_parser("cli", help="Check that an agent CLI can be launched")
    p_cli.add_argument("--name", choices=("claude", "glm"), default="claude")
    p_cli.set_defaults(func=cmd_cli)

    return parser


def main(argv: list[str] | None = None) -> None:
    parser = build_parser()
    args = parser.parse_args(argv)
    if not hasattr(args, "func"):
        parser.print_help()
        return
    args.func(args)


if __name__ == "__main__":
    main()

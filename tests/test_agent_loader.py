from pathlib import Path
import textwrap

import pytest

from filewas.agents import AgentConfigLoadError, AgentConfigLoader, AgentConfigNotFoundError
from filewas.agents.loader import split_frontmatter


def write_agent(path: Path, *, name: str, model: str = "glm") -> None:
    path.write_text(
        textwrap.dedent(
            """
            ---
            name: {name}
            description: Does work
            tools: Read, Write, Bash
            model: {model}
            ---
            You are {name}.
            """
        ).strip().format(name=name, model=model),
        encoding="utf-8",
    )


def test_loader_merges_paths(tmp_path: Path) -> None:
    base = tmp_path / "base"
    base.mkdir()
    override = tmp_path / "override"
    override.mkdir()

    write_agent(base / "implementer.md", name="Base Implementer")
    write_agent(override / "implementer.md", name="Override Implementer")

    loader = AgentConfigLoader([base, override])
    configs = loader.load_all()

    assert configs["implementer"].name == "Override Implementer"
    assert configs["implementer"].system_prompt == "You are Override Implementer."


def test_loader_applies_type_defaults(tmp_path: Path) -> None:
    (tmp_path / "planner.md").write_text("Plan the work.", encoding="utf-8")
    (tmp_path / "README.md").write_text("ignored", encoding="utf-8")

    configs = AgentConfigLoader([tmp_path]).load_all()

    assert list(configs) == ["planner"]
    planner = configs["planner"]
    assert planner.name == "planner"
    assert planner.model == "claude"
    assert planner.thinking_level == "think"
    assert planner.model_override_allowed is True


def test_capabilities_follow_tools(tmp_path: Path) -> None:
    write_agent(tmp_path / "tester.md", name="Tester")

    capabilities = AgentConfigLoader([tmp_path]).get("tester").capabilities

    assert capabilities.can_modify_files
    assert capabilities.can_run_commands
    assert capabilities.can_read_files
    assert not capabilities.can_spawn_agents


def test_loader_handles_missing_directories(tmp_path: Path) -> None:
    loader = AgentConfigLoader([tmp_path / "nowhere"])

    assert loader.search_paths == []
    assert loader.load_all() == {}


def test_get_unknown_type(tmp_path: Path) -> None:
    with pytest.raises(AgentConfigNotFoundError):
        AgentConfigLoader([tmp_path]).get("architect")


def test_loader_reports_invalid_definition(tmp_path: Path) -> None:
    (tmp_path / "broken.md").write_text("---\nmodel: gpt\n---\nbody", encoding="utf-8")

    with pytest.raises(AgentConfigLoadError):
        AgentConfigLoader([tmp_path]).load_all()


def test_split_frontmatter_without_header() -> None:
    data, body = split_frontmatter("  just a prompt \n")

    assert data == {}
    assert body == "just a prompt"


def test_bundled_definitions_load() -> None:
    agents_dir = Path(__file__).resolve().parents[1] / "agents"
    configs = AgentConfigLoader([agents_dir]).load_all()

    orchestrator = configs["orchestrator"]
    assert orchestrator.model == "claude"
    assert orchestrator.thinking_level == "max"
    assert orchestrator.model_override_allowed is False
    assert orchestrator.capabilities.can_spawn_agents

"""Prompt assembly from rules documents, project docs and agent handoffs.

The user prompt is built from optional sections in a fixed order::

    rules -> context (overview, roadmap, changelog) -> phase instruction
          -> handoff -> additional context -> task

Non-empty sections are joined by a blank line and the task is always last.
Every document is loaded best-effort: a missing or unreadable file simply
contributes nothing, and malformed JSONL lines are skipped.
"""

from __future__ import annotations

import json
import logging
import math
from dataclasses import asdict, dataclass, field
from pathlib import Path
from typing import Any, Iterable

from ..agents import AgentConfig
from ..storage import DEFAULT_VERSION, ProjectStorage, RulesDocumentService
from ..storage.jsonl import check_path_segment
from .models import AgentHandoff

logger = logging.getLogger(__name__)

RESUME_OUTPUT_LIMIT = 2000
CHANGELOG_ENTRY_LIMIT = 5


@dataclass(slots=True)
class DocumentLoadResult:
    path: Path
    content: str
    exists: bool
    size: int


@dataclass(slots=True)
class PromptMetadata:
    agent_type: str
    model: str
    thinking_level: str
    has_rules: bool = False
    has_context: bool = False
    has_handoff: bool = False
    injected_files: list[str] = field(default_factory=list)
    total_tokens: int = 0


@dataclass(slots=True)
class BuiltPrompt:
    system_prompt: str
    user_prompt: str
    metadata: PromptMetadata

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass(slots=True)
class PromptBuilderContext:
    agent_config: AgentConfig
    session_id: str
    user_prompt: str
    project_id: str | None = None
    phase_id: int | None = None
    handoff: AgentHandoff | None = None
    additional_context: dict[str, Any] | None = None


def estimate_tokens(text: str) -> int:
    """Rough token estimate: one token per four characters."""

    return math.ceil(len(text) / 4)


def load_document(path: Path, default: str = "") -> DocumentLoadResult:
    try:
        content = path.read_text(encoding="utf-8")
    except (OSError, UnicodeDecodeError):
        return DocumentLoadResult(path=path, content=default, exists=False, size=0)
    return DocumentLoadResult(path=path, content=content, exists=True, size=len(content))


def _json_lines(content: str) -> Iterable[tuple[str, Any]]:
    for line in content.split("\n"):
        if not line.strip():
            continue
        try:
            yield line, json.loads(line)
        except json.JSONDecodeError:
            continue


def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def filter_roadmap_lines(content: str, phase_id: int | None) -> str:
    """Keep the header, phases within one of ``phase_id`` and milestones covering it."""

    if phase_id is None:
        return content

    kept: list[str] = []
    for line, entry in _json_lines(content):
        if not isinstance(entry, dict):
            continue
        kind = entry.get("type")
        if kind == "header":
            kept.append(line)
        elif kind == "phase":
            if _is_number(entry.get("id")) and abs(entry["id"] - phase_id) <= 1:
                kept.append(line)
        elif kind == "milestone":
            phases = entry.get("phases")
            if isinstance(phases, list) and phase_id in phases:
                kept.append(line)
    return "\n".join(kept)


def recent_changelog_lines(content: str, limit: int = CHANGELOG_ENTRY_LIMIT) -> str:
    """Return the first ``limit`` lines of type ``entry`` in file order."""

    kept: list[str] = []
    for line, entry in _json_lines(content):
        if len(kept) >= limit:
            break
        if isinstance(entry, dict) and entry.get("type") == "entry":
            kept.append(line)
    return "\n".join(kept)


def build_phase_instruction(phase_id: int | None) -> str:
    if phase_id is None:
        return ""
    return f"""<phase-instruction id="{phase_id}">
You are currently working on **Phase {phase_id}** of the project roadmap.

Important notes for this phase:
- Follow the tasks defined in the roadmap for this phase
- Meet all acceptance criteria before marking the phase as complete
- Document your changes in the changelog
- Test your work before considering the phase complete

When this phase is complete:
1. Update the roadmap: set phase status to "completed"
2. Add an entry to the changelog with:
   - Phase number
   - Date (today's date in YYYY-MM-DD format)
   - Title describing what was done
   - List of changes made
   - List of files modified
3. Stop and report completion
</phase-instruction>"""


def build_handoff_section(handoff: AgentHandoff | None) -> str:
    if handoff is None:
        return ""

    files = "\n".join(f"- {path}" for path in handoff.files) or "(No files modified)"
    questions = (
        "\n".join(f"{index}. {item}" for index, item in enumerate(handoff.questions, start=1))
        or "(No open questions)"
    )
    recommendations = (
        "\n".join(f"{index}. {item}" for index, item in enumerate(handoff.recommendations, start=1))
        or "(No recommendations)"
    )
    return "\n".join(
        [
            f'<handoff from="{handoff.from_agent_type}" id="{handoff.from_agent_id}">',
            "## Summary",
            handoff.summary,
            "",
            "## Files Modified",
            files,
            "",
            "## Open Questions",
            questions,
            "",
            "## Recommendations",
            recommendations,
            "",
            "</handoff>",
        ]
    )


def _wrap(open_tag: str, body: str, close_tag: str) -> str:
    return f"{open_tag}\n{body}\n{close_tag}"


class PromptBuilder:
    """Builds agent prompts from the documents under the data directory."""

    def __init__(
        self,
        data_path: Path,
        *,
        projects: ProjectStorage | None = None,
        rules: RulesDocumentService | None = None,
    ) -> None:
        self._data_path = Path(data_path)
        self._projects = projects or ProjectStorage(self._data_path)
        self._rules = rules or RulesDocumentService(self._data_path)

    # Paths -----------------------------------------------------------------

    def project_docs_dir(self, project_id: str) -> Path:
        return self._data_path / "projects" / check_path_segment(project_id, "project id") / "docs"

    def version_dir(self, project_id: str, version: str = DEFAULT_VERSION) -> Path:
        return self.project_docs_dir(project_id) / check_path_segment(version, "version")

    def overview_path(self, project_id: str, version: str = DEFAULT_VERSION) -> Path:
        return self.version_dir(project_id, version) / "overview.md"

    def roadmap_path(self, project_id: str, version: str = DEFAULT_VERSION) -> Path:
        return self.version_dir(project_id, version) / "roadmap.jsonl"

    def changelog_path(self, project_id: str, version: str = DEFAULT_VERSION) -> Path:
        return self.version_dir(project_id, version) / "changelog.jsonl"

    def project_version(self, project_id: str) -> str:
        """Return the project's active version, or the default when it cannot be resolved."""

        try:
            result = self._projects.get_project(project_id)
        except Exception:
            logger.debug("Project lookup failed", extra={"project_id": project_id}, exc_info=True)
            return DEFAULT_VERSION
        if result.success and result.data and result.data.get("activeVersion"):
            return str(result.data["activeVersion"])
        return DEFAULT_VERSION

    # Sections --------------------------------------------------------------

    def build_rules_section(self, project_id: str | None = None) -> str:
        blocks: list[str] = []
        platform = self._rules.read_rules()
        if platform.success and platform.data is not None and platform.data.content:
            blocks.append(_wrap('<project-rules type="platform">', platform.data.content, "</project-rules>"))
        if project_id:
            project = self._rules.read_rules(project_id)
            if project.success and project.data is not None and project.data.content:
                blocks.append(
                    _wrap(
                        f'<project-rules type="project" id="{project_id}">',
                        project.data.content,
                        "</project-rules>",
                    )
                )
        return "\n\n".join(blocks)

    def build_context_section(
        self, project_id: str | None = None, phase_id: int | None = None
    ) -> tuple[str, list[str]]:
        """Return the context blocks and the paths of the files that fed them."""

        if not project_id:
            return "", []

        version = self.project_version(project_id)
        blocks: list[str] = []
        injected: list[str] = []

        overview = load_document(self.overview_path(project_id, version))
        if overview.exists:
            blocks.append(_wrap(f'<overview source="{overview.path}">', overview.content, "</overview>"))
            injected.append(str(overview.path))

        roadmap = load_document(self.roadmap_path(project_id, version))
        if roadmap.exists:
            blocks.append(
                _wrap(
                    f'<roadmap source="{roadmap.path}" version="{version}">',
                    filter_roadmap_lines(roadmap.content, phase_id),
                    "</roadmap>",
                )
            )
            injected.append(str(roadmap.path))

        changelog = load_document(self.changelog_path(project_id, version))
        if changelog.exists:
            blocks.append(
                _wrap(
                    f'<changelog source="{changelog.path}" version="{version}">',
                    recent_changelog_lines(changelog.content),
                    "</changelog>",
                )
            )
            injected.append(str(changelog.path))

        return "\n\n".join(blocks), injected

    # Builders --------------------------------------------------------------

    def build_prompt(self, context: PromptBuilderContext) -> BuiltPrompt:
        config = context.agent_config
        sections: list[str] = []

        rules = self.build_rules_section(context.project_id)
        if rules:
            sections.append(rules)

        context_content, injected = self.build_context_section(context.project_id, context.phase_id)
        if context_content:
            sections.append(context_content)

        phase = build_phase_instruction(context.phase_id)
        if phase:
            sections.append(phase)

        handoff = build_handoff_section(context.handoff)
        if handoff:
            sections.append(handoff)

        if context.additional_context is not None:
            sections.append(
                _wrap(
                    "<additional-context>",
                    json.dumps(context.additional_context, indent=2, ensure_ascii=False),
                    "</additional-context>",
                )
            )

        sections.append(_wrap("<task>", context.user_prompt, "</task>"))
        user_prompt = "\n\n".join(sections)

        return BuiltPrompt(
            system_prompt=config.system_prompt,
            user_prompt=user_prompt,
            metadata=PromptMetadata(
                agent_type=config.type,
                model=config.model,
                thinking_level=config.thinking_level,
                has_rules=bool(rules),
                has_context=bool(context_content),
                has_handoff=bool(handoff),
                injected_files=injected,
                total_tokens=estimate_tokens(config.system_prompt + user_prompt),
            ),
        )

    def build_simple_prompt(self, agent_config: AgentConfig, user_prompt: str) -> BuiltPrompt:
        wrapped = _wrap("<task>", user_prompt, "</task>")
        return BuiltPrompt(
            system_prompt=agent_config.system_prompt,
            user_prompt=wrapped,
            metadata=PromptMetadata(
                agent_type=agent_config.type,
                model=agent_config.model,
                thinking_level=agent_config.thinking_level,
                total_tokens=estimate_tokens(agent_config.system_prompt + wrapped),
            ),
        )

    def build_resume_prompt(self, context: PromptBuilderContext, previous_output: str) -> BuiltPrompt:
        excerpt = previous_output[:RESUME_OUTPUT_LIMIT]
        if len(previous_output) > RESUME_OUTPUT_LIMIT:
            excerpt += "\n... (truncated)"
        resume = (
            "<session-resume>\n"
            "You are resuming a previous session that was paused.\n\n"
            "## Previous Output Summary\n"
            f"{excerpt}\n\n"
            "## Instructions\n"
            "Continue from where you left off. Maintain the same context and approach.\n"
            "</session-resume>"
        )

        base = self.build_prompt(context)
        user_prompt = f"{resume}\n\n{base.user_prompt}"
        base.metadata.total_tokens = estimate_tokens(base.system_prompt + user_prompt)
        return BuiltPrompt(system_prompt=base.system_prompt, user_prompt=user_prompt, metadata=base.metadata)


__all__ = [
    "BuiltPrompt",
    "DocumentLoadResult",
    "PromptBuilder",
    "PromptBuilderContext",
    "PromptMetadata",
    "build_handoff_section",
    "build_phase_instruction",
    "estimate_tokens",
    "filter_roadmap_lines",
    "load_document",
    "recent_changelog_lines",
]

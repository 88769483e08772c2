"""Platform and project rules documents (``CLAUDE.md``)."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date, datetime, timezone
from pathlib import Path
from typing import Callable, Literal

from .jsonl import check_path_segment, ensure_dir, file_exists, resolve_data_path
from .results import StorageResult

RulesScope = Literal["platform", "project"]

RULES_FILENAME = "CLAUDE.md"
PROJECTS_DIR = "projects"

PLATFORM_RULES_TEMPLATE = """# Task.filewas - Platform Rules

---

## PLATFORM

This file holds the rules shared by every project on the platform.

---

## GENERAL RULES

### Code standards

1. Follow the existing code style of the project
2. Keep lint and formatter checks green
3. Prefer small, focused modules

### Git workflow

1. **Conventional Commits**: `feat:`, `fix:`, `docs:`, `refactor:`, `test:`, `chore:`
2. **Branches**: `main` for production, `dev/v{X.Y.Z}/phase-{N}` for development

---

## MODELS

| Model | Used for |
|-------|----------|
| claude | Critical decisions, architecture |
| glm | Routine tasks, implementation |

---

Project specific rules live in `projects/{project-id}/CLAUDE.md`.
"""

PROJECT_RULES_TEMPLATE = """# {project_name} - Project Rules

---

## PROJECT

Rules specific to {project_name}.

### Project type
{project_type}

### Tech stack
{tech_stack}

---

## PROJECT RULES

1. Follow the existing code style
2. Keep test coverage above 80%
3. Keep the documentation current

---

## HISTORY

| Date | Change |
|------|--------|
| {date} | Created |
"""


@dataclass(slots=True)
class RulesDocument:
    scope: RulesScope
    path: Path
    content: str
    exists: bool
    last_modified: str | None = None


def render_platform_rules() -> str:
    return PLATFORM_RULES_TEMPLATE


def render_project_rules(
    project_name: str,
    *,
    project_type: str | None = None,
    tech_stack: list[str] | None = None,
    today: date | None = None,
) -> str:
    return PROJECT_RULES_TEMPLATE.format(
        project_name=project_name,
        project_type=project_type or "Unspecified",
        tech_stack=", ".join(tech_stack) if tech_stack else "Unspecified",
        date=(today or date.today()).isoformat(),
    )


class RulesDocumentService:
    """Reads and writes the rules documents under the data directory."""

    def __init__(
        self,
        data_path: Path,
        *,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self._data_path = Path(data_path)
        self._clock = clock or (lambda: datetime.now(timezone.utc))

    def path_for(self, project_id: str | None = None) -> Path:
        if project_id:
            check_path_segment(project_id, "project id")
            return resolve_data_path(self._data_path, f"{PROJECTS_DIR}/{project_id}/{RULES_FILENAME}")
        return resolve_data_path(self._data_path, RULES_FILENAME)

    def read_rules(
        self, project_id: str | None = None, *, use_default: bool = False
    ) -> StorageResult[RulesDocument]:
        """Read the project document when ``project_id`` is given, else the platform one.

        A missing file is not an error: ``content`` is empty, or the default
        template when ``use_default`` is set.
        """

        scope: RulesScope = "project" if project_id else "platform"
        path = self.path_for(project_id)
        try:
            if not file_exists(path):
                content = ""
                if use_default:
                    content = (
                        render_project_rules(project_id) if project_id else render_platform_rules()
                    )
                return StorageResult.ok(RulesDocument(scope, path, content, exists=False))
            content = path.read_text(encoding="utf-8")
        except (OSError, UnicodeDecodeError) as exc:
            return StorageResult.fail(f"Failed to read {scope} {RULES_FILENAME}: {exc}")
        return StorageResult.ok(
            RulesDocument(scope, path, content, exists=True, last_modified=self._clock().isoformat())
        )

    def write_rules(
        self,
        content: str,
        project_id: str | None = None,
        *,
        append: bool = False,
    ) -> StorageResult[RulesDocument]:
        scope: RulesScope = "project" if project_id else "platform"
        path = self.path_for(project_id)
        try:
            ensure_dir(path.parent)
            final = content
            if append and file_exists(path):
                final = path.read_text(encoding="utf-8") + "\n" + content
            path.write_text(final, encoding="utf-8")
        except (OSError, UnicodeDecodeError) as exc:
            return StorageResult.fail(f"Failed to write {scope} {RULES_FILENAME}: {exc}")
        return StorageResult.ok(
            RulesDocument(scope, path, final, exists=True, last_modified=self._clock().isoformat())
        )

    def init_platform_rules(self, *, force: bool = False) -> StorageResult[RulesDocument]:
        """Write the default platform document unless one already exists."""

        if not force:
            existing = self.read_rules()
            if existing.success and existing.data is not None and existing.data.exists:
                return existing
        return self.write_rules(render_platform_rules())

    def init_project_rules(
        self,
        project_id: str,
        project_name: str,
        *,
        project_type: str | None = None,
        tech_stack: list[str] | None = None,
        force: bool = False,
    ) -> StorageResult[RulesDocument]:
        if not force:
            existing = self.read_rules(project_id)
            if existing.success and existing.data is not None and existing.data.exists:
                return existing
        content = render_project_rules(
            project_name,
            project_type=project_type,
            tech_stack=tech_stack,
            today=self._clock().date(),
        )
        return self.write_rules(content, project_id)


__all__ = [
    "PLATFORM_RULES_TEMPLATE",
    "PROJECT_RULES_TEMPLATE",
    "RulesDocument",
    "RulesDocumentService",
    "render_platform_rules",
    "render_project_rules",
]

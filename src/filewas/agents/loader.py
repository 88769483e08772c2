"""Agent definition loading from markdown files with YAML frontmatter."""

from __future__ import annotations

import re
from pathlib import Path
from typing import Any, Iterable

import yaml
from pydantic import ValidationError

from .models import DEFAULT_AGENT_MODELS, DEFAULT_THINKING_LEVELS, AgentConfig

_FRONTMATTER = re.compile(r"\A---\s*\n(.*?)\n---\s*(?:\n|\Z)(.*)\Z", re.DOTALL)


class AgentConfigLoadError(RuntimeError):
    """Raised when one or more agent definition files cannot be parsed."""


class AgentConfigNotFoundError(AgentConfigLoadError):
    """Raised when no definition exists for a requested agent type."""


def split_frontmatter(text: str) -> tuple[dict[str, Any], str]:
    """Return the parsed YAML frontmatter and the stripped markdown body."""

    match = _FRONTMATTER.match(text)
    if match is None:
        return {}, text.strip()
    document = yaml.safe_load(match.group(1))
    if document is None:
        document = {}
    if not isinstance(document, dict):
        raise AgentConfigLoadError("Frontmatter must be a mapping")
    return document, match.group(2).strip()


def parse_agent_definition(agent_type: str, text: str, *, path: Path | None = None) -> AgentConfig:
    """Build an :class:`AgentConfig` from the contents of ``<agent_type>.md``."""

    data, body = split_frontmatter(text)
    return AgentConfig.model_validate(
        {
            "type": agent_type,
            "name": data.get("name") or agent_type,
            "description": data.get("description") or "",
            "tools": data.get("tools"),
            "model": data.get("model") or DEFAULT_AGENT_MODELS.get(agent_type, "claude"),
            "model_override_allowed": data.get("model_override_allowed") is not False,
            "thinking_level": data.get("thinking_level")
            or DEFAULT_THINKING_LEVELS.get(agent_type, "off"),
            "system_prompt": body,
            "file_path": str(path) if path is not None else None,
            "metadata": {
                key: value
                for key, value in data.items()
                if key
                not in {"name", "description", "tools", "model", "model_override_allowed", "thinking_level"}
            },
        }
    )


class AgentConfigLoader:
    """Loads agent definitions from ``*.md`` files on disk."""

    def __init__(self, search_paths: Iterable[Path] | None = None) -> None:
        paths = [Path(path) for path in (search_paths or [])]
        self._search_paths: list[Path] = [path for path in paths if path.exists()]

    @property
    def search_paths(self) -> list[Path]:
        """Return the normalized search paths."""

        return list(self._search_paths)

    def load_all(self) -> dict[str, AgentConfig]:
        """Load agent definitions from all configured search paths.

        Later search paths override earlier ones when agent types collide.
        """

        if not self._search_paths:
            return {}

        configs: dict[str, AgentConfig] = {}
        errors: list[str] = []

        for base in self._search_paths:
            for path in sorted(base.glob("*.md")):
                if path.name.lower() == "readme.md":
                    continue
                try:
                    config = parse_agent_definition(
                        path.stem, path.read_text(encoding="utf-8"), path=path
                    )
                except (yaml.YAMLError, AgentConfigLoadError) as exc:
                    errors.append(f"Failed to parse frontmatter in {path}: {exc}")
                    continue
                except ValidationError as exc:
                    errors.append(f"Agent definition error in {path}: {exc}")
                    continue

                configs[config.type] = config

        if errors:
            raise AgentConfigLoadError("; ".join(errors))

        return configs

    def get(self, agent_type: str) -> AgentConfig:
        """Return a single agent definition by type."""

        configs = self.load_all()
        try:
            return configs[agent_type]
        except KeyError as exc:
            raise AgentConfigNotFoundError(
                f"Agent configuration not found for type: {agent_type}"
            ) from exc

    def available_types(self) -> list[str]:
        return sorted(self.load_all())


__all__ = [
    "AgentConfigLoadError",
    "AgentConfigLoader",
    "AgentConfigNotFoundError",
    "parse_agent_definition",
    "split_frontmatter",
]

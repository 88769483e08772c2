"""Project records stored as a single JSON array in ``projects.json``."""

from __future__ import annotations

import re
from pathlib import Path
from typing import Any

from .base import BaseStorageService, Entity
from .jsonl import check_path_segment
from .results import StorageResult

DEFAULT_VERSION = "v0.1.0"

_SLUG = re.compile(r"[^a-z0-9]+")


def slugify(name: str) -> str:
    return _SLUG.sub("-", name.lower()).strip("-")


class ProjectStorage(BaseStorageService):
    def __init__(self, data_path: Path, **kwargs: Any) -> None:
        super().__init__("projects.json", format="json", data_path=data_path, **kwargs)

    def create_project(
        self,
        name: str,
        *,
        description: str | None = None,
        project_type: str = "other",
        path: str | None = None,
        tags: list[str] | None = None,
        project_id: str | None = None,
    ) -> StorageResult[Entity]:
        now = self._now()
        data: Entity = {
            "name": name,
            "type": project_type,
            "status": "active",
            "path": path or f"projects/{slugify(name)}",
            "versions": [
                {
                    "version": DEFAULT_VERSION,
                    "description": "Initial version",
                    "createdAt": now,
                    "currentPhase": 0,
                    "totalPhases": 0,
                    "status": "draft",
                }
            ],
            "activeVersion": DEFAULT_VERSION,
            "sessionCount": 0,
            "lastActivityAt": now,
        }
        if project_id:
            data["id"] = check_path_segment(project_id, "project id")
        if description:
            data["description"] = description
        if tags:
            data["tags"] = list(tags)
        return self.create(data)

    def get_project(self, project_id: str) -> StorageResult[Entity | None]:
        return self.find_by_id(project_id)

    def list_projects(self, *, status: str | None = None) -> StorageResult[list[Entity]]:
        predicate = None if status is None else (lambda project: project.get("status") == status)
        return self.find_all(filter=predicate, sort_by="lastActivityAt", sort_direction="desc")

    def set_active_version(self, project_id: str, version: str) -> StorageResult[Entity]:
        return self.update(project_id, {"activeVersion": version, "lastActivityAt": self._now()})


__all__ = ["DEFAULT_VERSION", "ProjectStorage", "slugify"]

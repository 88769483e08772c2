"""Session records appended to ``sessions.jsonl``."""

from __future__ import annotations

from pathlib import Path
from typing import Any, Literal

from .base import BaseStorageService, Entity
from .results import StorageResult

SessionStatus = Literal["todo", "in_progress", "done", "cancelled"]
SESSION_STATUSES: tuple[str, ...] = ("todo", "in_progress", "done", "cancelled")


class SessionStorage(BaseStorageService):
    def __init__(self, data_path: Path, **kwargs: Any) -> None:
        super().__init__("sessions.jsonl", format="jsonl", data_path=data_path, **kwargs)

    def create_session(
        self,
        project_id: str,
        title: str,
        *,
        description: str | None = None,
        version: str | None = None,
        thinking_level: str = "off",
    ) -> StorageResult[Entity]:
        data: Entity = {
            "projectId": project_id,
            "title": title,
            "status": "todo",
            "processingState": "idle",
            "thinkingLevel": thinking_level,
            "version": version or "v0.1.0",
            "messageCount": 0,
        }
        if description:
            data["description"] = description
        return self.create(data)

    def list_sessions(self, project_id: str | None = None) -> StorageResult[list[Entity]]:
        """Return sessions newest first, optionally restricted to one project."""

        predicate = None if project_id is None else (lambda item: item.get("projectId") == project_id)
        return self.find_all(filter=predicate, sort_by="createdAt", sort_direction="desc")

    def update_status(self, session_id: str, status: str) -> StorageResult[Entity]:
        if status not in SESSION_STATUSES:
            return StorageResult.fail(f"Invalid session status: {status}")
        return self.update(session_id, {"status": status})

    def update_processing_state(self, session_id: str, state: str) -> StorageResult[Entity]:
        return self.update(session_id, {"processingState": state})


__all__ = ["SESSION_STATUSES", "SessionStatus", "SessionStorage"]

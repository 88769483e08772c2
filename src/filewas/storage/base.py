"""Generic entity store over a JSON array file or a JSON Lines file."""

from __future__ import annotations

import copy
import random
import string
import time
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Callable, Literal

from . import json_file, jsonl
from .results import StorageResult

StorageFormat = Literal["json", "jsonl"]
SortDirection = Literal["asc", "desc"]
Entity = dict[str, Any]

_BASE36 = string.digits + string.ascii_lowercase


def _to_base36(value: int) -> str:
    if value == 0:
        return "0"
    digits: list[str] = []
    while value:
        value, remainder = divmod(value, 36)
        digits.append(_BASE36[remainder])
    return "".join(reversed(digits))


def generate_id() -> str:
    """Return ``<base36 millis>-<6 random base36 chars>``."""

    stamp = _to_base36(int(time.time() * 1000))
    suffix = "".join(random.choices(_BASE36, k=6))
    return f"{stamp}-{suffix}"


def _sort_key(value: Any) -> tuple[int, Any]:
    if isinstance(value, bool):
        return (1, str(value))
    if isinstance(value, (int, float)):
        return (0, value)
    return (1, value if isinstance(value, str) else str(value))


def sort_entities(items: list[Entity], sort_by: str, direction: SortDirection = "asc") -> list[Entity]:
    """Sort by ``sort_by``; entities missing the field always sort last."""

    present = [item for item in items if item.get(sort_by) is not None]
    missing = [item for item in items if item.get(sort_by) is None]
    present.sort(key=lambda item: _sort_key(item[sort_by]), reverse=direction == "desc")
    return present + missing


class BaseStorageService:
    """CRUD operations for one collection of dict entities keyed by ``id``.

    ``json`` storage keeps a single array and rewrites the whole file on every
    mutation. ``jsonl`` storage appends one line per create and rewrites the
    file on update or delete. Neither format locks the file.
    """

    def __init__(
        self,
        relative_path: str,
        *,
        format: StorageFormat,
        data_path: Path,
        default_value: Any = None,
        timestamps: bool = True,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self._relative_path = relative_path
        self._format: StorageFormat = format
        self._default_value = [] if default_value is None else default_value
        self._timestamps = timestamps
        self._clock = clock or (lambda: datetime.now(timezone.utc))
        self._file_path = jsonl.resolve_data_path(data_path, relative_path)

    @property
    def file_path(self) -> Path:
        return self._file_path

    @property
    def format(self) -> StorageFormat:
        return self._format

    def generate_id(self) -> str:
        return generate_id()

    def _now(self) -> str:
        return self._clock().isoformat().replace("+00:00", "Z")

    # Reads -----------------------------------------------------------------

    def find_all(
        self,
        *,
        filter: Callable[[Entity], bool] | None = None,
        sort_by: str | None = None,
        sort_direction: SortDirection = "asc",
        limit: int | None = None,
        offset: int | None = None,
    ) -> StorageResult[list[Entity]]:
        if self._format == "jsonl":
            result = jsonl.read_jsonl(
                self._file_path,
                filter=filter,
                limit=limit,
                offset=offset,
                reverse=sort_direction == "desc",
            )
            if not result.success:
                return result
            items = result.data or []
            if sort_by:
                items = sort_entities(items, sort_by, sort_direction)
            return StorageResult.ok(items)

        result = json_file.read_json(self._file_path, self._default_value)
        if not result.success:
            return result
        items = list(result.data or [])
        if filter is not None:
            items = [item for item in items if filter(item)]
        if sort_by:
            items = sort_entities(items, sort_by, sort_direction)
        elif sort_direction == "desc":
            items.reverse()
        if offset and offset > 0:
            items = items[offset:]
        if limit and limit > 0:
            items = items[:limit]
        return StorageResult.ok(items)

    def find_by_id(self, entity_id: str) -> StorageResult[Entity | None]:
        return self.find_one(lambda item: item.get("id") == entity_id)

    def find_one(self, predicate: Callable[[Entity], bool]) -> StorageResult[Entity | None]:
        if self._format == "jsonl":
            return jsonl.find_in_jsonl(self._file_path, predicate)
        result = self.find_all(filter=predicate, limit=1)
        if not result.success:
            return StorageResult.fail(result.error or "Unknown error")
        return StorageResult.ok(result.data[0] if result.data else None)

    def find_where(self, predicate: Callable[[Entity], bool]) -> StorageResult[list[Entity]]:
        if self._format == "jsonl":
            return jsonl.filter_jsonl(self._file_path, predicate)
        return self.find_all(filter=predicate)

    def exists(self, entity_id: str) -> bool:
        result = self.find_by_id(entity_id)
        return result.success and result.data is not None

    def count(self, predicate: Callable[[Entity], bool] | None = None) -> StorageResult[int]:
        result = self.find_all(filter=predicate)
        if not result.success:
            return StorageResult.fail(result.error or "Unknown error")
        return StorageResult.ok(len(result.data or []))

    # Writes ----------------------------------------------------------------

    def _stamp(self, data: Entity, now: str) -> Entity:
        entity = dict(data)
        entity["id"] = data.get("id") or self.generate_id()
        if self._timestamps:
            entity["createdAt"] = now
            entity["updatedAt"] = now
        return entity

    def create(self, data: Entity) -> StorageResult[Entity]:
        entity = self._stamp(data, self._now())
        if self._format == "jsonl":
            result = jsonl.append_jsonl(self._file_path, entity)
        else:
            result = json_file.update_json(
                self._file_path, lambda items: [*items, entity], self._default_value
            )
        if not result.success:
            return StorageResult.fail(result.error or "Unknown error")
        return StorageResult.ok(entity)

    def create_many(self, items: list[Entity]) -> StorageResult[list[Entity]]:
        now = self._now()
        entities = [self._stamp(item, now) for item in items]
        if self._format == "jsonl":
            result = jsonl.append_jsonl_batch(self._file_path, entities)
        else:
            result = json_file.update_json(
                self._file_path, lambda existing: [*existing, *entities], self._default_value
            )
        if not result.success:
            return StorageResult.fail(result.error or "Unknown error")
        return StorageResult.ok(entities)

    def update(self, entity_id: str, updates: Entity) -> StorageResult[Entity]:
        """Shallow-merge ``updates`` into the entity; ``id`` and ``createdAt`` are kept."""

        changes = {key: value for key, value in updates.items() if key not in {"id", "createdAt"}}
        if self._timestamps:
            changes["updatedAt"] = self._now()

        def merge(item: Entity) -> Entity:
            return {**item, **changes}

        if self._format == "jsonl":
            result = jsonl.update_jsonl(
                self._file_path, lambda item: item.get("id") == entity_id, merge
            )
            if not result.success:
                return StorageResult.fail(result.error or "Unknown error")
            if result.data == 0:
                return StorageResult.fail(f"Entity not found: {entity_id}")
            found = self.find_by_id(entity_id)
            if not found.success or found.data is None:
                return StorageResult.fail("Failed to read updated entity")
            return StorageResult.ok(found.data)

        updated: list[Entity] = []

        def apply(items: list[Entity]) -> list[Entity]:
            rewritten = []
            for item in items:
                if item.get("id") == entity_id:
                    item = merge(item)
                    updated.append(item)
                rewritten.append(item)
            return rewritten

        result = json_file.update_json(self._file_path, apply, self._default_value)
        if not result.success:
            return StorageResult.fail(result.error or "Unknown error")
        if not updated:
            return StorageResult.fail(f"Entity not found: {entity_id}")
        return StorageResult.ok(updated[0])

    def delete(self, entity_id: str) -> StorageResult[None]:
        result = self.delete_where(lambda item: item.get("id") == entity_id)
        if not result.success:
            return StorageResult.fail(result.error or "Unknown error")
        if result.data == 0:
            return StorageResult.fail(f"Entity not found: {entity_id}")
        return StorageResult.ok()

    def delete_where(self, predicate: Callable[[Entity], bool]) -> StorageResult[int]:
        if self._format == "jsonl":
            return jsonl.delete_from_jsonl(self._file_path, predicate)

        deleted = 0

        def apply(items: list[Entity]) -> list[Entity]:
            nonlocal deleted
            kept = [item for item in items if not predicate(item)]
            deleted = len(items) - len(kept)
            return kept

        result = json_file.update_json(self._file_path, apply, self._default_value)
        if not result.success:
            return StorageResult.fail(result.error or "Unknown error")
        return StorageResult.ok(deleted)

    # Maintenance -----------------------------------------------------------

    def storage_exists(self) -> bool:
        return jsonl.file_exists(self._file_path)

    def ensure_storage(self) -> StorageResult[None]:
        """Create the parent directory and an empty document if missing."""

        try:
            jsonl.ensure_dir(self._file_path.parent)
        except OSError as exc:
            return StorageResult.fail(f"Failed to ensure storage: {exc}")
        if self.storage_exists():
            return StorageResult.ok()
        return self.clear()

    def clear(self) -> StorageResult[None]:
        if self._format == "jsonl":
            return jsonl.write_jsonl(self._file_path, [])
        return json_file.write_json(self._file_path, copy.deepcopy(self._default_value))


__all__ = ["BaseStorageService", "Entity", "generate_id", "sort_entities"]

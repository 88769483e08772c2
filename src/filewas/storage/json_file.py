"""Read and write helpers for single-document JSON files."""

from __future__ import annotations

import copy
import json
from pathlib import Path
from typing import Any, Callable

from .jsonl import ensure_dir, file_exists
from .results import StorageResult

_MISSING = object()


def read_json(path: Path, default: Any = _MISSING) -> StorageResult[Any]:
    """Parse ``path``; a missing file yields ``default`` when one is given."""

    try:
        if not file_exists(path):
            if default is not _MISSING:
                return StorageResult.ok(copy.deepcopy(default))
            return StorageResult.fail(f"File not found: {path}")
        return StorageResult.ok(json.loads(path.read_text(encoding="utf-8")))
    except (OSError, UnicodeDecodeError, json.JSONDecodeError) as exc:
        return StorageResult.fail(f"Failed to read JSON file: {exc}")


def write_json(path: Path, data: Any, *, indent: int = 2, create_dirs: bool = True) -> StorageResult[None]:
    try:
        if create_dirs:
            ensure_dir(path.parent)
        path.write_text(json.dumps(data, indent=indent, ensure_ascii=False) + "\n", encoding="utf-8")
    except (OSError, TypeError, ValueError) as exc:
        return StorageResult.fail(f"Failed to write JSON file: {exc}")
    return StorageResult.ok()


def update_json(
    path: Path,
    updater: Callable[[Any], Any],
    default: Any = _MISSING,
) -> StorageResult[Any]:
    """Read, transform and rewrite the whole document.

    The read and the write are not atomic with respect to other writers.
    """

    current = read_json(path, default)
    if not current.success:
        return current
    updated = updater(current.data)
    written = write_json(path, updated)
    if not written.success:
        return StorageResult.fail(written.error or "Unknown error")
    return StorageResult.ok(updated)


def merge_json(path: Path, partial: dict[str, Any], default: Any = _MISSING) -> StorageResult[Any]:
    """Shallow-merge ``partial`` into a JSON object document."""

    return update_json(path, lambda data: {**(data or {}), **partial}, default)


__all__ = ["merge_json", "read_json", "update_json", "write_json"]

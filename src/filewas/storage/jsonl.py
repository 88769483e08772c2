"""Read, write and append helpers for JSON Lines files.

Every file helper returns a :class:`StorageResult` instead of raising. A missing
file reads as an empty document. Malformed lines are skipped with a warning so
that one bad line never hides the rest of the log.

There is no file locking: two concurrent read-modify-write sequences against
the same file can interleave and the last writer wins.
"""

from __future__ import annotations

import json
import logging
import os
from pathlib import Path
from typing import Any, Callable, Iterable

from .results import StorageResult

logger = logging.getLogger(__name__)

Predicate = Callable[[Any], bool]


def resolve_data_path(data_path: Path | str, relative_path: str | Path) -> Path:
    """Resolve ``relative_path`` against the data directory."""

    base = Path(data_path)
    if not base.is_absolute():
        base = Path.cwd() / base
    return (base / relative_path).resolve()


def check_path_segment(value: str, label: str = "id") -> str:
    """Return ``value`` if it can name a single directory under the data path.

    Raises :class:`ValueError` for empty values, ``.``/``..`` and anything
    containing a path separator.
    """

    if (
        not value
        or value in {".", ".."}
        or "/" in value
        or "\\" in value
        or "\x00" in value
        or Path(value).is_absolute()
    ):
        raise ValueError(f"Invalid {label}: {value!r}")
    return value


def file_exists(path: Path) -> bool:
    return path.is_file() and os.access(path, os.R_OK)


def ensure_dir(path: Path) -> None:
    path.mkdir(parents=True, exist_ok=True)


def _parse_lines(content: str) -> list[Any]:
    items: list[Any] = []
    for raw in content.splitlines():
        line = raw.strip()
        if not line:
            continue
        try:
            items.append(json.loads(line))
        except json.JSONDecodeError:
            logger.warning("Skipping malformed JSONL line", extra={"line": line[:50]})
    return items


def read_jsonl(
    path: Path,
    *,
    filter: Predicate | None = None,
    limit: int | None = None,
    offset: int | None = None,
    reverse: bool = False,
) -> StorageResult[list[Any]]:
    """Read every valid line of ``path``.

    ``reverse`` is applied before ``filter`` so that ``reverse`` plus ``limit``
    yields the most recent matching entries.
    """

    try:
        if not file_exists(path):
            return StorageResult.ok([])
        items = _parse_lines(path.read_text(encoding="utf-8"))
    except (OSError, UnicodeDecodeError) as exc:
        return StorageResult.fail(f"Failed to read JSONL file: {exc}")

    if reverse:
        items.reverse()
    if filter is not None:
        items = [item for item in items if filter(item)]
    if offset and offset > 0:
        items = items[offset:]
    if limit and limit > 0:
        items = items[:limit]
    return StorageResult.ok(items)


def read_jsonl_header(path: Path) -> StorageResult[Any]:
    """Return the first valid line, or ``None`` for an empty document."""

    result = read_jsonl(path, limit=1)
    if not result.success:
        return StorageResult.fail(result.error or "Unknown error")
    return StorageResult.ok(result.data[0] if result.data else None)


def read_jsonl_tail(path: Path, count: int) -> StorageResult[list[Any]]:
    """Return the last ``count`` entries, most recent first."""

    return read_jsonl(path, reverse=True, limit=count)


def count_jsonl_lines(path: Path) -> StorageResult[int]:
    result = read_jsonl(path)
    if not result.success:
        return StorageResult.fail(result.error or "Unknown error")
    return StorageResult.ok(len(result.data or []))


def write_jsonl(path: Path, items: Iterable[Any], *, create_dirs: bool = True) -> StorageResult[None]:
    """Overwrite ``path`` with one JSON document per line."""

    try:
        if create_dirs:
            ensure_dir(path.parent)
        lines = [json.dumps(item, ensure_ascii=False) for item in items]
        content = "\n".join(lines) + "\n" if lines else ""
        path.write_text(content, encoding="utf-8")
    except (OSError, TypeError, ValueError) as exc:
        return StorageResult.fail(f"Failed to write JSONL file: {exc}")
    return StorageResult.ok()


def append_jsonl(path: Path, item: Any, *, create_dirs: bool = True) -> StorageResult[None]:
    return append_jsonl_batch(path, [item], create_dirs=create_dirs)


def append_jsonl_batch(
    path: Path, items: Iterable[Any], *, create_dirs: bool = True
) -> StorageResult[None]:
    batch = list(items)
    if not batch:
        return StorageResult.ok()
    try:
        if create_dirs:
            ensure_dir(path.parent)
        content = "".join(json.dumps(item, ensure_ascii=False) + "\n" for item in batch)
        with path.open("a", encoding="utf-8") as handle:
            handle.write(content)
    except (OSError, TypeError, ValueError) as exc:
        return StorageResult.fail(f"Failed to append to JSONL file: {exc}")
    return StorageResult.ok()


def update_jsonl(
    path: Path,
    predicate: Predicate,
    updater: Callable[[Any], Any],
) -> StorageResult[int]:
    """Rewrite matching lines through ``updater``; returns the number updated."""

    result = read_jsonl(path)
    if not result.success:
        return StorageResult.fail(result.error or "Unknown error")

    updated = 0
    items: list[Any] = []
    for item in result.data or []:
        if predicate(item):
            updated += 1
            items.append(updater(item))
        else:
            items.append(item)

    if updated:
        write_result = write_jsonl(path, items)
        if not write_result.success:
            return StorageResult.fail(write_result.error or "Unknown error")
    return StorageResult.ok(updated)


def delete_from_jsonl(path: Path, predicate: Predicate) -> StorageResult[int]:
    """Drop matching lines; returns the number deleted."""

    result = read_jsonl(path)
    if not result.success:
        return StorageResult.fail(result.error or "Unknown error")

    items = result.data or []
    kept = [item for item in items if not predicate(item)]
    deleted = len(items) - len(kept)
    if deleted:
        write_result = write_jsonl(path, kept)
        if not write_result.success:
            return StorageResult.fail(write_result.error or "Unknown error")
    return StorageResult.ok(deleted)


def find_in_jsonl(path: Path, predicate: Predicate) -> StorageResult[Any]:
    result = read_jsonl(path, filter=predicate, limit=1)
    if not result.success:
        return StorageResult.fail(result.error or "Unknown error")
    return StorageResult.ok(result.data[0] if result.data else None)


def filter_jsonl(path: Path, predicate: Predicate) -> StorageResult[list[Any]]:
    return read_jsonl(path, filter=predicate)


__all__ = [
    "append_jsonl",
    "append_jsonl_batch",
    "check_path_segment",
    "count_jsonl_lines",
    "delete_from_jsonl",
    "ensure_dir",
    "file_exists",
    "filter_jsonl",
    "find_in_jsonl",
    "read_jsonl",
    "read_jsonl_header",
    "read_jsonl_tail",
    "resolve_data_path",
    "update_jsonl",
    "write_jsonl",
]

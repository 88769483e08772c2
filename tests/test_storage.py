from __future__ import annotations

import json
import logging
from datetime import datetime, timedelta, timezone
from pathlib import Path

import pytest

from filewas.storage import (
    BaseStorageService,
    ProjectStorage,
    SessionStorage,
    StorageError,
    StorageResult,
    generate_id,
)
from filewas.storage import json_file, jsonl
from filewas.storage.base import sort_entities


class TickingClock:
    def __init__(self) -> None:
        self._now = datetime(2025, 1, 1, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        self._now += timedelta(seconds=1)
        return self._now


def test_generate_id_shape() -> None:
    first, second = generate_id(), generate_id()

    stamp, suffix = first.split("-")
    assert len(suffix) == 6
    assert stamp.isalnum() and stamp == stamp.lower()
    assert first != second


def test_storage_result_unwrap() -> None:
    assert StorageResult.ok(3).unwrap() == 3
    with pytest.raises(StorageError, match="nope"):
        StorageResult.fail("nope").unwrap()


def test_sort_entities_puts_missing_last() -> None:
    items = [{"id": "a", "rank": 2}, {"id": "b"}, {"id": "c", "rank": 1}]

    assert [item["id"] for item in sort_entities(items, "rank")] == ["c", "a", "b"]
    assert [item["id"] for item in sort_entities(items, "rank", "desc")] == ["a", "c", "b"]


@pytest.mark.parametrize("fmt, filename", [("json", "items.json"), ("jsonl", "items.jsonl")])
def test_crud_cycle(tmp_path: Path, fmt: str, filename: str) -> None:
    store = BaseStorageService(filename, format=fmt, data_path=tmp_path, clock=TickingClock())

    created = store.create({"name": "alpha", "rank": 2}).unwrap()
    store.create_many([{"name": "beta", "rank": 1}, {"name": "gamma"}]).unwrap()

    assert created["createdAt"] == created["updatedAt"]
    assert created["createdAt"].endswith("Z")
    assert store.count().unwrap() == 3
    assert store.exists(created["id"])

    ordered = store.find_all(sort_by="rank").unwrap()
    assert [item["name"] for item in ordered] == ["beta", "alpha", "gamma"]

    updated = store.update(created["id"], {"rank": 9, "id": "hijack", "createdAt": "never"}).unwrap()
    assert updated["id"] == created["id"]
    assert updated["createdAt"] == created["createdAt"]
    assert updated["updatedAt"] > created["updatedAt"]
    assert store.find_by_id(created["id"]).unwrap()["rank"] == 9

    assert store.find_one(lambda item: item["name"] == "gamma").unwrap()["name"] == "gamma"
    assert len(store.find_where(lambda item: "rank" in item).unwrap()) == 2

    assert store.delete(created["id"]).success
    missing = store.delete(created["id"])
    assert not missing.success
    assert missing.error == f"Entity not found: {created['id']}"
    assert store.delete_where(lambda item: True).unwrap() == 2
    assert store.count().unwrap() == 0


def test_update_missing_entity(tmp_path: Path) -> None:
    store = BaseStorageService("items.json", format="json", data_path=tmp_path)

    result = store.update("nope", {"x": 1})

    assert not result.success
    assert result.error == "Entity not found: nope"


def test_find_all_paginates(tmp_path: Path) -> None:
    store = BaseStorageService("items.jsonl", format="jsonl", data_path=tmp_path)
    store.create_many([{"n": index} for index in range(6)]).unwrap()

    page = store.find_all(offset=2, limit=2).unwrap()
    latest = store.find_all(sort_direction="desc", limit=2).unwrap()

    assert [item["n"] for item in page] == [2, 3]
    assert [item["n"] for item in latest] == [5, 4]


def test_missing_files_read_empty(tmp_path: Path) -> None:
    store = BaseStorageService("nested/items.json", format="json", data_path=tmp_path)

    assert store.find_all().unwrap() == []
    assert not store.storage_exists()
    assert store.ensure_storage().success
    assert json.loads(store.file_path.read_text(encoding="utf-8")) == []


def test_jsonl_skips_malformed_lines(tmp_path: Path, caplog: pytest.LogCaptureFixture) -> None:
    path = tmp_path / "events.jsonl"
    path.write_text('{"id": 1}\nnot json\n\n{"id": 2}\n', encoding="utf-8")

    with caplog.at_level(logging.WARNING):
        result = jsonl.read_jsonl(path)

    assert result.unwrap() == [{"id": 1}, {"id": 2}]
    assert "Skipping malformed JSONL line" in caplog.text
    assert jsonl.count_jsonl_lines(path).unwrap() == 2
    assert jsonl.read_jsonl_header(path).unwrap() == {"id": 1}
    assert jsonl.read_jsonl_tail(path, 1).unwrap() == [{"id": 2}]


def test_jsonl_reverse_applies_before_filter(tmp_path: Path) -> None:
    path = tmp_path / "events.jsonl"
    jsonl.write_jsonl(path, [{"n": index, "even": index % 2 == 0} for index in range(6)]).unwrap()

    result = jsonl.read_jsonl(path, filter=lambda item: item["even"], reverse=True, limit=2)

    assert [item["n"] for item in result.unwrap()] == [4, 2]


def test_json_file_helpers(tmp_path: Path) -> None:
    path = tmp_path / "doc.json"

    assert not json_file.read_json(path).success
    assert json_file.read_json(path, {"a": 1}).unwrap() == {"a": 1}

    json_file.write_json(path, {"a": 1}).unwrap()
    assert json_file.merge_json(path, {"b": 2}).unwrap() == {"a": 1, "b": 2}
    assert path.read_text(encoding="utf-8").endswith("\n")

    path.write_text("{", encoding="utf-8")
    assert not json_file.read_json(path).success


def test_project_storage_defaults(tmp_path: Path) -> None:
    projects = ProjectStorage(tmp_path, clock=TickingClock())

    first = projects.create_project("My Shop!", tags=["web"]).unwrap()
    second = projects.create_project("Blog", description="Notes").unwrap()

    assert first["path"] == "projects/my-shop"
    assert first["activeVersion"] == "v0.1.0"
    assert first["versions"][0]["status"] == "draft"
    assert first["status"] == "active"
    assert first["tags"] == ["web"]
    assert "description" not in first

    listed = projects.list_projects().unwrap()
    assert [project["id"] for project in listed] == [second["id"], first["id"]]
    assert projects.list_projects(status="archived").unwrap() == []
    assert projects.get_project("missing").unwrap() is None


def test_check_path_segment() -> None:
    assert jsonl.check_path_segment("proj-1") == "proj-1"
    for value in ("", ".", "..", "../x", "a/b", "a\\b", "/abs"):
        with pytest.raises(ValueError):
            jsonl.check_path_segment(value)


def test_project_storage_rejects_path_like_id(tmp_path: Path) -> None:
    projects = ProjectStorage(tmp_path)

    with pytest.raises(ValueError):
        projects.create_project("Shop", project_id="../shop")

    assert projects.list_projects().unwrap() == []


def test_session_storage_lifecycle(tmp_path: Path) -> None:
    sessions = SessionStorage(tmp_path, clock=TickingClock())

    first = sessions.create_session("p1", "Setup").unwrap()
    second = sessions.create_session("p1", "Login", thinking_level="think").unwrap()
    sessions.create_session("p2", "Other").unwrap()

    assert first["status"] == "todo"
    assert first["version"] == "v0.1.0"
    assert [item["id"] for item in sessions.list_sessions("p1").unwrap()] == [second["id"], first["id"]]
    assert len(sessions.list_sessions().unwrap()) == 3

    assert sessions.update_status(first["id"], "in_progress").unwrap()["status"] == "in_progress"
    invalid = sessions.update_status(first["id"], "paused")
    assert not invalid.success
    assert invalid.error == "Invalid session status: paused"
    assert sessions.update_processing_state(first["id"], "thinking").unwrap()["processingState"] == "thinking"

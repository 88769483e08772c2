from __future__ import annotations

import argparse
import importlib.util
import json
from pathlib import Path

import pytest

from filewas.storage import ProjectStorage, SessionStorage

REPO_ROOT = Path(__file__).resolve().parents[1]


def _load_diag(name: str):
    module_path = REPO_ROOT / "scripts" / "filewas_diag.py"
    spec = importlib.util.spec_from_file_location(name, module_path)
    assert spec and spec.loader
    diag = importlib.util.module_from_spec(spec)
    spec.loader.exec_module(diag)
    return diag


@pytest.fixture
def data_env(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> Path:
    monkeypatch.setenv("FILEWAS_DATA_PATH", str(tmp_path))
    monkeypatch.setenv("FILEWAS_AGENT_PATHS", str(REPO_ROOT / "agents"))
    return tmp_path


def test_agents_lists_definitions(data_env: Path, capsys) -> None:
    diag = _load_diag("filewas_diag_agents")

    diag.cmd_agents(argparse.Namespace(json=True))

    payload = json.loads(capsys.readouterr().out)
    assert [entry["type"] for entry in payload] == ["implementer", "orchestrator", "reviewer"]


def test_projects_and_sessions(data_env: Path, capsys) -> None:
    project = ProjectStorage(data_env).create_project("Shop").unwrap()
    SessionStorage(data_env).create_session(project["id"], "Setup").unwrap()
    diag = _load_diag("filewas_diag_storage")

    diag.cmd_projects(argparse.Namespace(status=None, json=True))
    projects = json.loads(capsys.readouterr().out)
    assert projects[0]["name"] == "Shop"

    diag.cmd_sessions(argparse.Namespace(project_id=project["id"], limit=None))
    sessions = json.loads(capsys.readouterr().out)
    assert sessions[0]["title"] == "Setup"


def test_prompt_renders_task(data_env: Path, capsys) -> None:
    diag = _load_diag("filewas_diag_prompt")

    diag.main(["prompt", "reviewer", "Check the diff"])

    out = capsys.readouterr().out
    assert out.startswith("<task>\nCheck the diff\n</task>\n")
    assert "tokens, files: -" in out


def test_prompt_unknown_agent_exits(data_env: Path, capsys) -> None:
    diag = _load_diag("filewas_diag_unknown")

    with pytest.raises(SystemExit) as excinfo:
        diag.main(["prompt", "architect", "Design"])

    assert excinfo.value.code == 1
    assert "architect" in capsys.readouterr().out


def test_cli_check_reports_missing_binary(
    data_env: Path, monkeypatch: pytest.MonkeyPatch, capsys
) -> None:
    monkeypatch.setenv("GLM_CLI_PATH", str(data_env / "missing-glm"))
    diag = _load_diag("filewas_diag_cli")

    with pytest.raises(SystemExit):
        diag.main(["cli", "--name", "glm"])

    assert "glm unavailable" in capsys.readouterr().out


def test_main_without_command_prints_help(capsys) -> None:
    diag = _load_diag("filewas_diag_help")

    diag.main([])

    assert "usage:" in capsys.readouterr().out


def test_prompt_rejects_path_like_project_id(data_env: Path, capsys) -> None:
    diag = _load_diag("filewas_diag_bad_project")

    with pytest.raises(SystemExit):
        diag.main(["prompt", "reviewer", "Check", "--project-id", "../elsewhere"])

    assert "Invalid project id" in capsys.readouterr().out

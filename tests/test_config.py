import os
from pathlib import Path

import pytest
from pydantic import ValidationError

from filewas.config import FilewasSettings


def test_defaults(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.delenv("FILEWAS_AGENT_PATHS", raising=False)
    monkeypatch.delenv("FILEWAS_LOG_LEVEL", raising=False)

    settings = FilewasSettings()

    assert settings.agent_paths == (Path("agents"),)
    assert settings.fallback_after_failures == 2
    assert settings.ceo_timeout_ms == 300_000
    assert settings.log_level == "INFO"


def test_env_overrides(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> None:
    monkeypatch.setenv("FILEWAS_AGENT_PATHS", os.pathsep.join([str(tmp_path / "a"), str(tmp_path / "b")]))
    monkeypatch.setenv("FILEWAS_LOG_LEVEL", " debug ")
    monkeypatch.setenv("FILEWAS_DATA_PATH", str(tmp_path))
    monkeypatch.setenv("FILEWAS_FALLBACK_ENABLED", "false")

    settings = FilewasSettings()

    assert settings.agent_paths == (tmp_path / "a", tmp_path / "b")
    assert settings.log_level == "DEBUG"
    assert settings.data_path == tmp_path
    assert settings.fallback_enabled is False


def test_rejects_invalid_values(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("FILEWAS_FALLBACK_AFTER_FAILURES", "0")
    with pytest.raises(ValidationError):
        FilewasSettings()

    monkeypatch.delenv("FILEWAS_FALLBACK_AFTER_FAILURES")
    monkeypatch.setenv("FILEWAS_LOG_LEVEL", "chatty")
    with pytest.raises(ValidationError):
        FilewasSettings()

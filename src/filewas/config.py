"""Configuration management for the Task.filewas orchestrator."""

from __future__ import annotations

from functools import lru_cache
from pathlib import Path
from typing import Annotated
import os

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, NoDecode, SettingsConfigDict


class FilewasSettings(BaseSettings):
    """Runtime configuration sourced from environment variables and optional .env file."""

    model_config = SettingsConfigDict(
        env_file=".env", env_file_encoding="utf-8", extra="ignore", populate_by_name=True
    )

    data_path: Path = Field(default=Path("./data"), validation_alias="FILEWAS_DATA_PATH")
    agent_paths: Annotated[tuple[Path, ...], NoDecode] = Field(
        default=(Path("agents"),), validation_alias="FILEWAS_AGENT_PATHS"
    )
    claude_cli_path: str | None = Field(default=None, validation_alias="CLAUDE_CLI_PATH")
    glm_cli_path: str | None = Field(default=None, validation_alias="GLM_CLI_PATH")
    log_level: str = Field(default="INFO", validation_alias="FILEWAS_LOG_LEVEL")
    fallback_after_failures: int = Field(
        default=2, validation_alias="FILEWAS_FALLBACK_AFTER_FAILURES"
    )
    fallback_enabled: bool = Field(default=True, validation_alias="FILEWAS_FALLBACK_ENABLED")
    ceo_timeout_ms: int = Field(default=300_000, validation_alias="FILEWAS_CEO_TIMEOUT_MS")
    ceo_max_turns: int = Field(default=10, validation_alias="FILEWAS_CEO_MAX_TURNS")
    max_fallback_sessions: int = Field(
        default=256, validation_alias="FILEWAS_MAX_FALLBACK_SESSIONS"
    )

    @field_validator("log_level")
    @classmethod
    def _normalize_log_level(cls, value: str) -> str:
        normalized = value.strip().upper()
        if normalized not in {"CRITICAL", "ERROR", "WARNING", "INFO", "DEBUG"}:
            raise ValueError(
                "FILEWAS_LOG_LEVEL must be one of CRITICAL, ERROR, WARNING, INFO, DEBUG"
            )
        return normalized

    @field_validator("agent_paths", mode="before")
    @classmethod
    def _parse_agent_paths(cls, value):
        if value is None or value == "":
            return (Path("agents"),)
        if isinstance(value, (list, tuple)):
            return tuple(Path(str(item)) for item in value)
        if isinstance(value, str):
            parts = [part.strip() for part in value.split(os.pathsep) if part.strip()]
            return tuple(Path(part) for part in parts) or (Path("agents"),)
        raise TypeError("FILEWAS_AGENT_PATHS must be a list of paths or a path-separated string")

    @field_validator("fallback_after_failures")
    @classmethod
    def _validate_fallback_after_failures(cls, value: int) -> int:
        if value < 1:
            raise ValueError("FILEWAS_FALLBACK_AFTER_FAILURES must be >= 1")
        return value

    @field_validator("ceo_timeout_ms", "ceo_max_turns", "max_fallback_sessions")
    @classmethod
    def _validate_non_negative(cls, value: int) -> int:
        if value < 0:
            raise ValueError("CEO timeout, CEO max turns and session bound must be >= 0")
        return value


@lru_cache(maxsize=1)
def get_settings() -> FilewasSettings:
    """Return cached settings instance."""

    settings = FilewasSettings()
    settings.data_path = settings.data_path.expanduser().resolve()
    settings.agent_paths = tuple(path.expanduser().resolve() for path in settings.agent_paths)
    return settings


__all__ = ["FilewasSettings", "get_settings"]

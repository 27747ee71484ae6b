"""Configuration management for Residue."""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from functools import lru_cache
from pathlib import Path

from pydantic import Field, ValidationError, field_validator
from pydantic_settings import (
    BaseSettings,
    JsonConfigSettingsSource,
    PydanticBaseSettingsSource,
    SettingsConfigDict,
)

from .result import Err, ErrorKind, Ok, Result

logger = logging.getLogger(__name__)


def get_config_dir() -> Path:
    return Path.home() / ".residue"


def get_config_path() -> Path:
    return get_config_dir() / "config"


class ResidueSettings(BaseSettings):
    """Runtime configuration sourced from environment variables and ``~/.residue/config``."""

    model_config = SettingsConfigDict(extra="ignore", populate_by_name=True)

    worker_url: str | None = Field(default=None, validation_alias="RESIDUE_WORKER_URL")
    token: str | None = Field(default=None, validation_alias="RESIDUE_TOKEN")
    log_level: str = Field(default="INFO", validation_alias="RESIDUE_LOG_LEVEL")
    agent_command: str = Field(default="claude", validation_alias="RESIDUE_AGENT_COMMAND")
    lock_timeout: float = Field(default=10.0, validation_alias="RESIDUE_LOCK_TIMEOUT")

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls: type[BaseSettings],
        init_settings: PydanticBaseSettingsSource,
        env_settings: PydanticBaseSettingsSource,
        dotenv_settings: PydanticBaseSettingsSource,
        file_secret_settings: PydanticBaseSettingsSource,
    ) -> tuple[PydanticBaseSettingsSource, ...]:
        # The per-user document is keyed by field name; populate_by_name lets
        # those keys validate while environment aliases keep priority.
        return (
            init_settings,
            env_settings,
            JsonConfigSettingsSource(settings_cls, json_file=get_config_path()),
        )

    @field_validator("worker_url")
    @classmethod
    def _normalize_worker_url(cls, value: str | None) -> str | None:
        if value is None:
            return None
        cleaned = value.strip().rstrip("/")
        if not cleaned:
            return None
        if not cleaned.startswith(("http://", "https://")):
            raise ValueError("worker_url must start with http:// or https://")
        return cleaned

    @field_validator("token")
    @classmethod
    def _normalize_token(cls, value: str | None) -> str | None:
        if value is None:
            return None
        return value.strip() or None

    @field_validator("log_level")
    @classmethod
    def _normalize_log_level(cls, value: str) -> str:
        normalized = value.strip().upper()
        if normalized not in {"CRITICAL", "ERROR", "WARNING", "INFO", "DEBUG"}:
            raise ValueError(
                "RESIDUE_LOG_LEVEL must be one of CRITICAL, ERROR, WARNING, INFO, DEBUG"
            )
        return normalized

    @field_validator("lock_timeout")
    @classmethod
    def _validate_lock_timeout(cls, value: float) -> float:
        if value <= 0:
            raise ValueError("RESIDUE_LOCK_TIMEOUT must be > 0")
        return value


@dataclass(slots=True)
class RemoteConfig:
    """Resolved address and credential of the remote service."""

    worker_url: str
    token: str


@lru_cache(maxsize=1)
def get_settings() -> ResidueSettings:
    """Return cached settings instance."""

    return ResidueSettings()


def resolve_remote_config(settings: ResidueSettings | None = None) -> Result[RemoteConfig]:
    """Return the remote address and token, or ``ConfigMissing``."""

    if settings is None:
        try:
            settings = get_settings()
        except (ValidationError, ValueError) as exc:
            return Err(ErrorKind.CONFIG_MISSING, f"Invalid configuration: {exc}")

    if not settings.worker_url or not settings.token:
        return Err(ErrorKind.CONFIG_MISSING, "Not configured. Run 'residue login' first.")
    return Ok(RemoteConfig(worker_url=settings.worker_url, token=settings.token))


def write_config(worker_url: str, token: str) -> Result[Path]:
    """Persist the per-user config document used by ``residue login``."""

    try:
        settings = ResidueSettings(worker_url=worker_url, token=token)
    except ValidationError as exc:
        return Err(ErrorKind.CONFIG_MISSING, str(exc.errors()[0]["msg"]))

    path = get_config_path()
    try:
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(
            json.dumps({"worker_url": settings.worker_url, "token": settings.token}, indent=2),
            encoding="utf-8",
        )
    except OSError as exc:
        return Err(ErrorKind.IO_ERROR, f"Failed to write config: {exc}")

    get_settings.cache_clear()
    logger.debug("Wrote config", extra={"path": str(path)})
    return Ok(path)


__all__ = [
    "RemoteConfig",
    "ResidueSettings",
    "get_config_dir",
    "get_config_path",
    "get_settings",
    "resolve_remote_config",
    "write_config",
]

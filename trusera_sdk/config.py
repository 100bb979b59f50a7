from __future__ import annotations

import os
import re
import stat
import tomllib
from pathlib import Path
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from trusera_sdk.constants import (
    API_KEY_PREFIX,
    DEFAULT_BASE_URL,
    DEFAULT_BATCH_SIZE,
    DEFAULT_FLUSH_INTERVAL_MS,
    DEFAULT_TIMEOUT_SECONDS,
)
from trusera_sdk.enums import EnforcementMode
from trusera_sdk.errors import ConfigError

ENV_API_KEY = "TRUSERA_API_KEY"
ENV_BASE_URL = "TRUSERA_BASE_URL"
ENV_AGENT_ID = "TRUSERA_AGENT_ID"


class ClientConfig(BaseModel):
    model_config = ConfigDict(extra="forbid")

    api_key: str
    base_url: str = DEFAULT_BASE_URL
    agent_id: str | None = None
    flush_interval: int = Field(default=DEFAULT_FLUSH_INTERVAL_MS, ge=1)
    batch_size: int = Field(default=DEFAULT_BATCH_SIZE, ge=1)
    debug: bool = False
    timeout_seconds: float = Field(default=DEFAULT_TIMEOUT_SECONDS, gt=0, le=300)

    @field_validator("api_key")
    @classmethod
    def validate_api_key(cls, value: str) -> str:
        if not value.startswith(API_KEY_PREFIX):
            raise ValueError(f"Invalid API key format. Must start with '{API_KEY_PREFIX}'")
        return value

    @field_validator("base_url")
    @classmethod
    def normalize_base_url(cls, value: str) -> str:
        cleaned = value.strip().rstrip("/")
        if not cleaned:
            raise ValueError("base_url cannot be empty")
        return cleaned

    @field_validator("agent_id")
    @classmethod
    def empty_agent_id_is_none(cls, value: str | None) -> str | None:
        if value is None or not value.strip():
            return None
        return value.strip()


class InterceptorOptions(BaseModel):
    model_config = ConfigDict(extra="forbid")

    enforcement: EnforcementMode = EnforcementMode.LOG
    policy_url: str | None = None
    exclude_patterns: list[str] = Field(default_factory=list)
    debug: bool = False

    @field_validator("exclude_patterns")
    @classmethod
    def validate_patterns(cls, value: list[str]) -> list[str]:
        for pattern in value:
            try:
                re.compile(pattern)
            except re.error as exc:
                raise ValueError(f"invalid exclude pattern {pattern!r}: {exc}") from exc
        return value


def first_error_message(exc: ValidationError) -> str:
    details = exc.errors()
    if not details:
        return str(exc)
    return str(details[0].get("msg", exc)).removeprefix("Value error, ")


def default_config_dir() -> Path:
    return Path.home() / ".trusera"


def default_config_path() -> Path:
    return default_config_dir() / "config.toml"


def _secure_path(path: Path, mode: int) -> None:
    if os.name == "nt":
        return
    path.chmod(mode)
    actual = stat.S_IMODE(path.stat().st_mode)
    if actual != mode:
        raise PermissionError(f"unable to set permissions {oct(mode)} for {path}")


def default_config_text() -> str:
    return (
        'api_key = ""\n'
        f'base_url = "{DEFAULT_BASE_URL}"\n'
        'agent_id = ""\n'
        f"flush_interval = {DEFAULT_FLUSH_INTERVAL_MS}\n"
        f"batch_size = {DEFAULT_BATCH_SIZE}\n"
        "debug = false\n"
        f"timeout_seconds = {DEFAULT_TIMEOUT_SECONDS}\n"
    )


def init_config(config_path: Path | None = None) -> Path:
    path = (config_path or default_config_path()).expanduser().resolve(strict=False)
    path.parent.mkdir(parents=True, exist_ok=True)
    if path.exists():
        _secure_path(path, 0o600)
        return path
    path.write_text(default_config_text(), encoding="utf-8")
    _secure_path(path, 0o600)
    return path


def load_config(config_path: Path | None = None) -> ClientConfig:
    raw: dict[str, Any] = {}
    path = (config_path or default_config_path()).expanduser()
    if path.exists():
        with path.open("rb") as handle:
            raw = tomllib.load(handle)

    for env_name, key in ((ENV_API_KEY, "api_key"), (ENV_BASE_URL, "base_url"), (ENV_AGENT_ID, "agent_id")):
        env_value = os.getenv(env_name)
        if env_value:
            raw[key] = env_value

    if not raw.get("api_key"):
        raise ConfigError(f"api_key is required; set api_key in {path} or {ENV_API_KEY}")
    try:
        return ClientConfig.model_validate(raw)
    except ValidationError as exc:
        raise ConfigError(first_error_message(exc)) from exc

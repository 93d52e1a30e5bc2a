"""クライアント設定（pydantic BaseModel）と読み込み"""

from __future__ import annotations

import os
from collections.abc import Mapping
from pathlib import Path
from typing import Any

import yaml
from pydantic import BaseModel, Field, ValidationError, field_validator

from .exceptions import ConfigError

_REQUIRED_ENV = {
    "TOGGLE_API_URL": "api_url",
    "TOGGLE_APP_NAME": "app_name",
    "TOGGLE_INSTANCE_ID": "instance_id",
}
_OPTIONAL_ENV = {
    "TOGGLE_CLIENT_SECRET": "client_secret",
    "TOGGLE_REFRESH_INTERVAL": "refresh_interval_seconds",
    "TOGGLE_METRICS_INTERVAL": "metrics_interval_seconds",
}


class ToggleClientConfig(BaseModel):
    """トグルクライアント設定。"""

    api_url: str
    app_name: str
    instance_id: str
    client_secret: str | None = None
    refresh_interval_seconds: float = Field(default=15.0, gt=0)
    metrics_interval_seconds: float = Field(default=60.0, gt=0)
    request_timeout_seconds: float = Field(default=10.0, gt=0)
    default_enabled: bool = False
    disable_metrics: bool = False
    project: str | None = None
    name_prefix: str | None = None
    tags: list[str] = Field(default_factory=list)  # "name:value"

    @field_validator("api_url", "app_name", "instance_id")
    @classmethod
    def _not_blank(cls, value: str) -> str:
        if not value.strip():
            raise ValueError("must not be empty")
        return value

    @field_validator("tags")
    @classmethod
    def _tag_format(cls, value: list[str]) -> list[str]:
        for tag in value:
            if ":" not in tag:
                raise ValueError(f"tag must be 'name:value': {tag!r}")
        return value

    @property
    def refresh_interval_ms(self) -> int:
        return int(self.refresh_interval_seconds * 1000)

    @classmethod
    def from_env(cls, environ: Mapping[str, str] | None = None) -> ToggleClientConfig:
        """環境変数から設定を読み込む。

        TOGGLE_API_URL / TOGGLE_APP_NAME / TOGGLE_INSTANCE_ID は必須。

        Raises:
            ConfigError: 必須の環境変数が無い、または値が不正な場合
        """
        env = os.environ if environ is None else environ
        missing = [name for name in _REQUIRED_ENV if not env.get(name)]
        if missing:
            raise ConfigError(f"Missing required environment variables: {', '.join(missing)}")
        data: dict[str, Any] = {key: env[name] for name, key in _REQUIRED_ENV.items()}
        for name, key in _OPTIONAL_ENV.items():
            if env.get(name):
                data[key] = env[name]
        return _validate(data)


def _validate(data: Mapping[str, Any]) -> ToggleClientConfig:
    try:
        return ToggleClientConfig.model_validate(data)
    except ValidationError as e:
        raise ConfigError(f"Config validation failed: {e}", cause=e) from e


def load_config(path: Path) -> ToggleClientConfig:
    """YAML ファイルから設定を読み込む。

    トップレベル、または toggle セクションに設定値を記述する。
    """
    try:
        text = path.read_text(encoding="utf-8")
    except OSError as e:
        raise ConfigError(f"Failed to read config file: {path}", cause=e) from e
    try:
        data = yaml.safe_load(text) or {}
    except yaml.YAMLError as e:
        raise ConfigError(f"Failed to parse YAML: {path}", cause=e) from e
    if not isinstance(data, Mapping):
        raise ConfigError(f"Config file must contain a mapping: {path}")
    section = data.get("toggle", data)
    if not isinstance(section, Mapping):
        raise ConfigError(f"toggle section must be a mapping: {path}")
    return _validate(section)

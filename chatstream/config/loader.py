"""Load configuration from YAML and environment variables. No hardcoded secrets."""

from __future__ import annotations

import os
from pathlib import Path
from typing import Any, Optional

import yaml
from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

# Default config lives next to this module
_DEFAULT_CONFIG_PATH = Path(__file__).parent / "default.yaml"


def _load_yaml(path: Path) -> dict[str, Any]:
    if not path.exists():
        return {}
    with open(path, "r", encoding="utf-8") as f:
        return yaml.safe_load(f) or {}


def _deep_merge(base: dict[str, Any], override: dict[str, Any]) -> dict[str, Any]:
    result = dict(base)
    for k, v in override.items():
        if k in result and isinstance(result[k], dict) and isinstance(v, dict):
            result[k] = _deep_merge(result[k], v)
        else:
            result[k] = v
    return result


class StreamSettings(BaseSettings):
    """Wire protocol tuning shared by encoder and decoder."""

    model_config = SettingsConfigDict(env_prefix="STREAM_", extra="ignore")
    debounce_ms: int = 16
    flush_threshold: int = 40
    annotation_suffix_length: int = 16
    chunk_size: int = 1024


class ProviderSettings(BaseSettings):
    model_config = SettingsConfigDict(env_prefix="PROVIDER_", extra="ignore")
    model: str = "gpt-4.1"
    openai_api_key: str = ""
    openai_base_url: Optional[str] = None


class LoggingSettings(BaseSettings):
    model_config = SettingsConfigDict(env_prefix="LOG_", extra="ignore")
    level: str = "INFO"
    json_format: bool = True


class Config(BaseSettings):
    """Application config: YAML + env. Secrets from env only."""

    model_config = SettingsConfigDict(env_nested_delimiter="__", extra="ignore")

    stream: StreamSettings = Field(default_factory=StreamSettings)
    provider: ProviderSettings = Field(default_factory=ProviderSettings)
    logging: LoggingSettings = Field(default_factory=LoggingSettings)

    @classmethod
    def load(cls, config_path: str | Path | None = None) -> "Config":
        path = Path(config_path) if config_path else _DEFAULT_CONFIG_PATH
        yaml_data = _load_yaml(path)
        env_prefix = os.getenv("CHATSTREAM_ENV_PREFIX", "")
        if env_prefix:
            yaml_data = _deep_merge(yaml_data, _load_yaml(Path(f"config/{env_prefix}.yaml")))
        api_key = os.getenv("OPENAI_API_KEY")
        if api_key:
            yaml_data.setdefault("provider", {})["openai_api_key"] = api_key
        base_url = os.getenv("OPENAI_BASE_URL")
        if base_url:
            yaml_data.setdefault("provider", {})["openai_base_url"] = base_url
        model = os.getenv("PROVIDER_MODEL")
        if model:
            yaml_data.setdefault("provider", {})["model"] = model
        level = os.getenv("LOG_LEVEL")
        if level:
            yaml_data.setdefault("logging", {})["level"] = level
        debounce = os.getenv("STREAM_DEBOUNCE_MS")
        if debounce:
            yaml_data.setdefault("stream", {})["debounce_ms"] = int(debounce)
        return cls(**yaml_data)


def get_config(config_path: str | Path | None = None) -> Config:
    return Config.load(config_path)

from __future__ import annotations

import os
from functools import lru_cache
from pathlib import Path
from typing import Any, Literal

import yaml
from pydantic import BaseModel, Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class PoolSettings(BaseModel):
    strategy: Literal["round-robin", "random", "weighted"] = "round-robin"
    max_failures: int = Field(default=3, ge=1)
    health_check_interval_seconds: int = Field(default=300, ge=1)
    retry_interval_seconds: int = Field(default=60, ge=1)
    is_active: bool = True


class SeedDomain(BaseModel):
    host: str
    protocol: Literal["http", "https"] = "https"
    weight: int = Field(default=1, ge=1)
    order: int | None = None
    health_check_path: str = "/health"
    status: Literal["active", "inactive", "testing"] | None = None


class GeneralSettings(BaseModel):
    instance_name: str = "LinkPool"
    master_key: str | None = None
    redis_url: str | None = None
    store_backend: Literal["memory", "file", "redis"] | None = None
    data_dir: str | None = None
    unbind_confirmation_code: str | None = None
    health_check_timeout_seconds: float = 10.0
    background_health_checks: bool = True
    landing_path: str = "/h5/landing"
    error_page_url: str = "/h5/error.html"


class AppConfig(BaseModel):
    pool_settings: PoolSettings = Field(default_factory=PoolSettings)
    domain_list: list[SeedDomain] = Field(default_factory=list)
    general_settings: GeneralSettings = Field(default_factory=GeneralSettings)


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_prefix="LINKPOOL_", extra="ignore")

    app_name: str = "LinkPool Domain Service"
    app_env: str = "dev"
    log_level: str = "INFO"
    config_path: str = "config.yaml"
    master_key: str | None = None
    redis_url: str | None = None
    store_backend: Literal["memory", "file", "redis"] = "file"
    data_dir: str = "./data"
    unbind_confirmation_code: str | None = None


def _resolve_env_token(value: Any) -> Any:
    if isinstance(value, str) and value.startswith("os.environ/"):
        env_name = value.split("/", 1)[1]
        return os.getenv(env_name)
    if isinstance(value, dict):
        return {k: _resolve_env_token(v) for k, v in value.items()}
    if isinstance(value, list):
        return [_resolve_env_token(v) for v in value]
    return value


def load_yaml_config(path: str | Path) -> AppConfig:
    cfg_path = Path(path)
    if not cfg_path.exists():
        return AppConfig()

    data = yaml.safe_load(cfg_path.read_text())
    if not isinstance(data, dict):
        return AppConfig()
    return AppConfig.model_validate(_resolve_env_token(data))


def effective_setting(cfg: AppConfig, settings: Settings, name: str) -> Any:
    """Return the `general_settings` value when set, otherwise the env-level one."""
    value = getattr(cfg.general_settings, name, None)
    if value is not None:
        return value
    return getattr(settings, name, None)


@lru_cache
def get_settings() -> Settings:
    return Settings()

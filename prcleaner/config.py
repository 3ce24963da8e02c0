"""Configuration management with Pydantic Settings + optional YAML."""

from __future__ import annotations

import os
from datetime import timedelta
from enum import Enum
from pathlib import Path
from typing import Any

import yaml
from pydantic import BaseModel, Field
from pydantic_settings import BaseSettings, SettingsConfigDict

from prcleaner.utils.platform import get_config_dir


class TransportKind(str, Enum):
    IN_MEMORY = "in_memory"
    SERVICE_BUS = "service_bus"
    QUEUE_STORAGE = "queue_storage"


class WebhooksConfig(BaseModel):
    bind: str = "0.0.0.0"
    port: int = 8080
    path: str = "/webhooks/azure"
    realm: str = "prcleaner"
    username: str = ""
    password: str = ""
    # Closing a PR right after its resources were created can race provisioning
    cleanup_delay_seconds: float = Field(default=60.0, ge=0)

    @property
    def cleanup_delay(self) -> timedelta:
        return timedelta(seconds=self.cleanup_delay_seconds)


class ServiceBusConfig(BaseModel):
    connection_string: str = ""
    fully_qualified_namespace: str = ""
    max_lock_renewal_seconds: float = 300.0
    receive_retry_seconds: float = 5.0


class QueueStorageConfig(BaseModel):
    connection_string: str = ""
    account_url: str = ""
    visibility_timeout: int = 300
    poll_interval: float = 5.0


class EventBusConfig(BaseModel):
    selected_transport: TransportKind = TransportKind.IN_MEMORY
    queue_name: str = "azdo-cleanup"
    max_concurrency: int = Field(default=4, ge=1)
    max_delivery_count: int = Field(default=5, ge=1)
    max_queue_size: int = 256
    retry_delay_seconds: float = 5.0
    service_bus: ServiceBusConfig = Field(default_factory=ServiceBusConfig)
    queue_storage: QueueStorageConfig = Field(default_factory=QueueStorageConfig)


class ProjectConfig(BaseModel):
    url: str
    # Service hooks reference projects by id, not name
    id: str = ""
    token: str = ""


class CleanerConfig(BaseModel):
    projects: list[ProjectConfig] = Field(default_factory=list)
    providers: list[str] = Field(default_factory=list)


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_prefix="PRCLEANER_",
        env_nested_delimiter="__",
        case_sensitive=False,
    )

    webhooks: WebhooksConfig = Field(default_factory=WebhooksConfig)
    event_bus: EventBusConfig = Field(default_factory=EventBusConfig)
    cleaner: CleanerConfig = Field(default_factory=CleanerConfig)
    log_level: str = "INFO"
    log_json: bool = False


def _deep_merge(base: dict[str, Any], override: dict[str, Any]) -> dict[str, Any]:
    result = base.copy()
    for key, value in override.items():
        if key in result and isinstance(result[key], dict) and isinstance(value, dict):
            result[key] = _deep_merge(result[key], value)
        else:
            result[key] = value
    return result


def load_settings(
    config_path: str | Path | None = None,
    overrides: dict[str, Any] | None = None,
) -> Settings:
    """Load settings from env vars, optionally overlaying a YAML config."""
    yaml_data: dict[str, Any] = {}

    # Determine config file path
    if config_path is None:
        config_path = os.environ.get("PRCLEANER_CONFIG")
    if config_path is None:
        default = get_config_dir() / "config.yaml"
        if default.exists():
            config_path = default

    # Load YAML if found
    if config_path is not None:
        path = Path(config_path)
        if path.exists():
            with open(path) as f:
                yaml_data = yaml.safe_load(f) or {}

    if overrides:
        yaml_data = _deep_merge(yaml_data, overrides)

    # Init kwargs outrank env vars in pydantic-settings, so YAML wins over env
    return Settings(**yaml_data)

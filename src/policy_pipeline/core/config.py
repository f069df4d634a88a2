"""Configuration management.

Loads from TOML config files + environment variables.
Uses pydantic-settings for validation and env var overriding.
"""

from __future__ import annotations

from pathlib import Path
from typing import Any

from pydantic import BaseModel, Field
from pydantic_settings import BaseSettings


# ---------------------------------------------------------------------------
# Sub-configs
# ---------------------------------------------------------------------------

class ObservabilityConfig(BaseModel):
    log_level: str = "INFO"
    log_format: str = "json"  # "json" or "console"


class PublisherConfig(BaseModel):
    queue_size: int = Field(default=10_000, gt=0)
    workers: int = Field(default=1, gt=0)
    max_attempts: int = Field(default=3, gt=0)  # per handler, per event
    retry_backoff_seconds: float = Field(default=0.05, ge=0.0)


class ExecutorConfig(BaseModel):
    follow_ups_enabled: bool = True
    audit_enabled: bool = True
    audit_path: str | None = None  # JSONL audit journal; None keeps it in memory


class StorageConfig(BaseModel):
    event_log_path: str | None = None  # JSONL event store; None keeps it in memory


# ---------------------------------------------------------------------------
# Top-level settings
# ---------------------------------------------------------------------------

class Settings(BaseSettings):
    """Top-level application settings.

    Loaded from TOML config files, overridden by environment variables.
    """

    observability: ObservabilityConfig = Field(default_factory=ObservabilityConfig)
    publisher: PublisherConfig = Field(default_factory=PublisherConfig)
    executor: ExecutorConfig = Field(default_factory=ExecutorConfig)
    storage: StorageConfig = Field(default_factory=StorageConfig)

    # Feature flags available to policies through the execution context
    features: list[str] = Field(default_factory=lambda: ["time_off"])

    model_config = {"env_prefix": "PIPELINE_", "env_nested_delimiter": "__"}


def load_settings(
    config_path: str | Path | None = None,
    overrides: dict[str, Any] | None = None,
) -> Settings:
    """Load settings from TOML file + env vars.

    Args:
        config_path: Path to TOML config file (optional).
        overrides: Dict of overrides to apply on top.

    Raises:
        ConfigError: If the TOML file cannot be parsed.
    """
    data: dict[str, Any] = {}

    if config_path:
        path = Path(config_path)
        if path.exists():
            import tomli

            from .errors import ConfigError

            try:
                with open(path, "rb") as f:
                    data = tomli.load(f)
            except tomli.TOMLDecodeError as exc:
                raise ConfigError(f"Invalid config file {path}: {exc}") from exc

    # Section tables merge key by key so an override keeps sibling keys.
    for key, value in (overrides or {}).items():
        if isinstance(value, dict) and isinstance(data.get(key), dict):
            data[key] = {**data[key], **value}
        else:
            data[key] = value

    return Settings(**data)

"""
Configuration management for the task engagement service.

Loads configuration from YAML with ZERO defaults.
Every value must be explicitly specified or startup fails.
"""

from __future__ import annotations

import os
from functools import lru_cache
from pathlib import Path
from typing import Any

import yaml
from pydantic import BaseModel, ConfigDict, field_validator, model_validator

REDACTION_MARKER = "***"
_SENSITIVE_KEY_PARTS = ("secret", "token", "password", "api_key")


class ConfigurationError(Exception):
    """Raised when the configuration file is missing or unreadable."""


class ServiceConfig(BaseModel):
    """Service identity configuration."""

    model_config = ConfigDict(extra="forbid")
    name: str
    version: str


class ServerConfig(BaseModel):
    """HTTP server configuration."""

    model_config = ConfigDict(extra="forbid")
    host: str
    port: int
    log_level: str


class LoggingConfig(BaseModel):
    """Logging configuration."""

    model_config = ConfigDict(extra="forbid")
    level: str
    directory: str


class DatabaseConfig(BaseModel):
    """Database configuration."""

    model_config = ConfigDict(extra="forbid")
    path: str


class RequestConfig(BaseModel):
    """Request handling configuration."""

    model_config = ConfigDict(extra="forbid")
    max_body_size: int


class BiddingConfig(BaseModel):
    """Bid validation limits."""

    model_config = ConfigDict(extra="forbid")
    max_amount_cents: int
    max_message_length: int

    @field_validator("max_amount_cents", "max_message_length")
    @classmethod
    def limits_must_be_positive(cls, value: int) -> int:
        """Reject zero or negative limits at startup."""
        if value <= 0:
            msg = "bidding limits must be positive"
            raise ValueError(msg)
        return value


class FeesConfig(BaseModel):
    """Platform fee configuration."""

    model_config = ConfigDict(extra="forbid")
    platform_fee_pct: int

    @field_validator("platform_fee_pct")
    @classmethod
    def fee_must_be_percentage(cls, value: int) -> int:
        """Platform fee is a whole percentage between 0 and 100."""
        if not 0 <= value <= 100:
            msg = "fees.platform_fee_pct must be between 0 and 100"
            raise ValueError(msg)
        return value


class CancellationTier(BaseModel):
    """Refund percentage applied when cancelling at least N hours ahead."""

    model_config = ConfigDict(extra="forbid")
    min_hours_before: float
    refund_pct: int


class CancellationConfig(BaseModel):
    """Time-based cancellation refund policy."""

    model_config = ConfigDict(extra="forbid")
    tiers: list[CancellationTier]

    @model_validator(mode="after")
    def validate_tiers(self) -> CancellationConfig:
        """Tiers must be non-empty, ordered by descending hours, with valid percentages."""
        if len(self.tiers) == 0:
            msg = "cancellation.tiers must not be empty"
            raise ValueError(msg)
        hours = [tier.min_hours_before for tier in self.tiers]
        if hours != sorted(hours, reverse=True):
            msg = "cancellation.tiers must be ordered by descending min_hours_before"
            raise ValueError(msg)
        for tier in self.tiers:
            if not 0 <= tier.refund_pct <= 100:
                msg = "cancellation refund_pct must be between 0 and 100"
                raise ValueError(msg)
        return self


class NotificationsConfig(BaseModel):
    """Notification relay configuration."""

    model_config = ConfigDict(extra="forbid")
    email_gateway_url: str | None
    email_gateway_api_key: str | None
    timeout_seconds: int


class ChangeFeedConfig(BaseModel):
    """Server-Sent Events stream configuration."""

    model_config = ConfigDict(extra="forbid")
    queue_size: int
    keepalive_interval_seconds: int


class Settings(BaseModel):
    """
    Root configuration container.

    All fields are REQUIRED. No defaults exist.
    Missing fields cause immediate startup failure.
    """

    model_config = ConfigDict(extra="forbid")
    service: ServiceConfig
    server: ServerConfig
    logging: LoggingConfig
    database: DatabaseConfig
    request: RequestConfig
    bidding: BiddingConfig
    fees: FeesConfig
    cancellation: CancellationConfig
    notifications: NotificationsConfig
    change_feed: ChangeFeedConfig


def get_config_path() -> Path:
    """Determine configuration file path from CONFIG_PATH or the working directory."""
    configured = os.environ.get("CONFIG_PATH")
    if configured:
        return Path(configured)
    return Path.cwd() / "config.yaml"


def _load_yaml(path: Path) -> dict[str, Any]:
    if not path.is_file():
        msg = f"Configuration file not found: {path}"
        raise ConfigurationError(msg)
    with path.open(encoding="utf-8") as handle:
        data = yaml.safe_load(handle)
    if not isinstance(data, dict):
        msg = f"Configuration file must contain a mapping: {path}"
        raise ConfigurationError(msg)
    return data


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Load and validate settings once; cached until clear_settings_cache()."""
    return Settings.model_validate(_load_yaml(get_config_path()))


def clear_settings_cache() -> None:
    """Drop the cached settings. Used in testing."""
    get_settings.cache_clear()


def _redact(value: Any, key: str = "") -> Any:
    if isinstance(value, dict):
        return {k: _redact(v, k) for k, v in value.items()}
    if isinstance(value, list):
        return [_redact(item, key) for item in value]
    if value is not None and any(part in key.lower() for part in _SENSITIVE_KEY_PARTS):
        return REDACTION_MARKER
    return value


def get_safe_config() -> dict[str, Any]:
    """Get configuration with sensitive values redacted."""
    redacted: dict[str, Any] = _redact(get_settings().model_dump())
    return redacted

"""Configuration for the analytics pipeline."""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from typing import Any

import httpx

from .errors import ConfigurationFault


@dataclass
class StorageConfig:
    """Local event log configuration."""
    # SQLite file holding both the event log and session preferences
    db_path: str = "sona_analytics.db"


@dataclass
class SessionConfig:
    """Session boundary configuration."""
    # Idle gap after which the next event starts a new session
    min_time_between_sessions_ms: int = 10 * 1000


@dataclass
class BatchingConfig:
    """Batching and flush scheduling."""
    max_batch_size: int = 10
    flush_interval_seconds: float = 30.0

    # Backoff after retryable delivery failures
    retry_initial_delay_seconds: float = 1.0
    retry_max_delay_seconds: float = 300.0


@dataclass
class DeliveryConfig:
    """Collector delivery configuration."""
    type: str = "http"  # http | console

    collector_url: str | None = field(
        default_factory=lambda: os.environ.get("SONA_COLLECTOR_URL")
    )
    api_key: str | None = field(
        default_factory=lambda: os.environ.get("SONA_API_KEY")
    )

    # Request timeout (seconds); an unbounded request would stall every later flush
    timeout_seconds: float = 10.0

    # Extra headers sent with every batch
    headers: dict[str, str] = field(default_factory=dict)

    # Options for the console delivery (stream, format, prefix)
    console: dict[str, Any] = field(default_factory=dict)

    def validate(self) -> None:
        """
        Check that deliveries can be attempted.

        Raises:
            ConfigurationFault: If the collector URL is missing or malformed
        """
        if self.type == "console":
            return
        if self.type != "http":
            raise ConfigurationFault(f"Unknown delivery type: {self.type}")
        if self.timeout_seconds <= 0:
            raise ConfigurationFault("Delivery timeout must be positive")
        if not self.collector_url:
            raise ConfigurationFault("No collector URL configured")

        try:
            url = httpx.URL(self.collector_url)
        except httpx.InvalidURL as e:
            raise ConfigurationFault(f"Invalid collector URL {self.collector_url!r}: {e}") from e

        if url.scheme not in ("http", "https") or not url.host:
            raise ConfigurationFault(f"Invalid collector URL: {self.collector_url!r}")


@dataclass
class AnalyticsConfig:
    """Main configuration container."""
    storage: StorageConfig = field(default_factory=StorageConfig)
    session: SessionConfig = field(default_factory=SessionConfig)
    batching: BatchingConfig = field(default_factory=BatchingConfig)
    delivery: DeliveryConfig = field(default_factory=DeliveryConfig)

    # Reported as context.app_version by the platform context provider
    app_version: str | None = None

    @classmethod
    def from_dict(cls, data: dict) -> AnalyticsConfig:
        """Create config from dictionary."""
        return cls(
            storage=StorageConfig(**data.get("storage", {})),
            session=SessionConfig(**data.get("session", {})),
            batching=BatchingConfig(**data.get("batching", {})),
            delivery=DeliveryConfig(**data.get("delivery", {})),
            app_version=data.get("app_version"),
        )

    @classmethod
    def from_yaml(cls, path: str) -> AnalyticsConfig:
        """Load config from YAML file."""
        import yaml
        with open(path, "r") as f:
            data = yaml.safe_load(f)
        return cls.from_dict(data or {})

    @classmethod
    def from_json(cls, path: str) -> AnalyticsConfig:
        """Load config from JSON file."""
        import json
        with open(path, "r") as f:
            data = json.load(f)
        return cls.from_dict(data)

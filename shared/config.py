"""
Shared configuration management for the Data Ingestion Service.
"""

from typing import Optional

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class BaseConfig(BaseSettings):
    """Base configuration class with common settings."""

    model_config = SettingsConfigDict(
        env_prefix="INGEST_",
        env_file=".env",
        case_sensitive=False,
        extra="allow"
    )

    # Environment
    env: str = Field(default="local")
    log_level: str = Field(default="info")

    # External services
    store_dsn: str = Field(default="postgres://localhost:5432/ingest")
    cache_url: str = Field(default="redis://localhost:6379/0")
    kafka_bootstrap: str = Field(default="localhost:9092")

    # Cache-aside behaviour
    cache_ttl_seconds: int = Field(default=300, ge=1)
    cache_update_max_attempts: int = Field(default=5, ge=1)
    cache_update_backoff_base: float = Field(default=0.1, ge=0)
    cache_update_backoff_max: float = Field(default=5.0, ge=0)
    call_timeout_seconds: float = Field(default=2.0, gt=0)

    # Event dispatch
    event_transport: str = Field(default="inprocess", pattern="^(inprocess|kafka)$")
    event_workers: int = Field(default=4, ge=1)
    event_queue_size: int = Field(default=10000, ge=0)
    write_events_topic: str = Field(default="ingest.records.write-events.v1")
    event_consumer_group: str = Field(default="ingest-cache-updater")
    dead_letter_buffer_size: int = Field(default=1000, ge=1)

    # Store protection
    store_failure_threshold: int = Field(default=5, ge=1)
    store_recovery_timeout: float = Field(default=30.0, ge=0)

    # Build metadata reported by /health
    git_commit: Optional[str] = Field(default=None)


class ServiceConfig(BaseConfig):
    """Service-specific configuration."""

    service_name: str
    port: int
    host: str = "0.0.0.0"

    def __init__(self, service_name: str, port: int, **kwargs):
        super().__init__(service_name=service_name, port=port, **kwargs)


def get_config(service_name: str, port: int, **overrides) -> ServiceConfig:
    """Get configuration for a specific service."""
    return ServiceConfig(service_name=service_name, port=port, **overrides)

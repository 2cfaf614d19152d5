"""
Worker configuration using Pydantic Settings.
Loads configuration from environment variables with sensible defaults.
"""

from functools import lru_cache

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Worker settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # OJS server
    ojs_url: str = "http://localhost:8080"
    ojs_request_timeout_seconds: float = 30.0

    # Worker Configuration
    worker_queues: list[str] = ["default"]
    worker_concurrency: int = 5
    worker_batch_size: int = 5
    worker_poll_interval_seconds: float = 2.0
    worker_heartbeat_interval_seconds: float = 15.0
    worker_shutdown_timeout_seconds: float = 25.0

    # Observability
    otel_enabled: bool = False
    otel_exporter_otlp_endpoint: str = "http://localhost:4317"
    otel_service_name: str = "ojs-worker"
    log_level: str = "INFO"
    log_format: str = "json"  # json or console


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()

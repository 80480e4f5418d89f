"""
Unified configuration for assetflow services.

This module provides a single Settings class that consolidates all
environment variables used by the API, the pipeline workers and the
reliability engine.
"""

from __future__ import annotations

from pathlib import Path
from pydantic_settings import BaseSettings, SettingsConfigDict

# Determine project root for .env file loading (allows running from any CWD)
PROJECT_ROOT = Path(__file__).resolve().parent.parent


class Settings(BaseSettings):
    """
    Unified settings for all assetflow services.

    Environment variables are loaded from .env file and can be overridden
    by actual environment variables.
    """

    # Service identification
    SERVICE_NAME: str = "assetflow"

    # PostgreSQL
    POSTGRES_DSN: str = "host=localhost port=5432 dbname=postgres user=postgres password=postgres"

    # Redis / Celery
    CELERY_BROKER_URL: str = "redis://localhost:6379/0"
    CELERY_RESULT_BACKEND: str = "redis://localhost:6379/0"

    # OpenAI (failure triage)
    OPENAI_MODEL_ID: str = "gpt-5-nano"
    OPENAI_API_KEY: str = ""
    ENABLE_AI_TRIAGE: bool = True

    # Escalation policy
    ESCALATION_FAILURE_THRESHOLD: int = 3
    CLASSIFICATION_FAILURE_THRESHOLD: int = 2
    CLASSIFICATION_TRACE_MAX_CHARS: int = 2000
    TICKET_RATE_CAP_PER_HOUR: int = 50  # 0 disables the cap

    # Operations surface: accept X-Actor-* headers set by a trusted gateway
    OPERATIONS_TRUST_ACTOR_HEADERS: bool = False

    # Stuck asset detection
    STUCK_ASSET_MINUTES: int = 30
    STUCK_SCAN_INTERVAL_SECONDS: int = 300
    STUCK_SCAN_BATCH_SIZE: int = 200

    # Periodic system reliability insight
    ENABLE_SYSTEM_INSIGHTS: bool = True
    SYSTEM_INSIGHT_INTERVAL_SECONDS: int = 3600

    # Stage processors: {"thumbnail": "package.module:factory", ...}
    STAGE_PROCESSORS: dict[str, str] = {}

    # Optimistic concurrency on asset writes
    ASSET_WRITE_MAX_ATTEMPTS: int = 5

    # System actor used as ticket creator
    SYSTEM_ACTOR_ID: str = "system@internal"

    # App host/port
    APP_HOST: str = "0.0.0.0"
    APP_PORT: int = 8081

    # Telemetry
    ENABLE_TELEMETRY: bool = False
    OTEL_SERVICE_NAME: str = ""
    OTEL_EXPORTER_OTLP_ENDPOINT: str = ""

    model_config = SettingsConfigDict(
        env_file=PROJECT_ROOT / ".env",
        extra="ignore"
    )


# Global settings instance
settings = Settings()  # type: ignore

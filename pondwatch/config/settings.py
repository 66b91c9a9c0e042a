"""Application settings using Pydantic Settings for environment-based configuration."""

from functools import lru_cache
from typing import Literal

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """
    Central configuration for the pondwatch application.

    All settings can be overridden via environment variables.
    Prefix is not used to allow standard env var names (e.g., LOG_LEVEL).
    Alert pipeline tuning lives in ``AlertConfig`` (``ALERTS_*``).
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Environment
    environment: Literal["development", "staging", "production"] = "development"
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = "INFO"
    debug: bool = False

    # Notification relay (FCM bridge). Unset URL means notifications are logged only.
    notifier_url: str | None = None
    notifier_api_key: str | None = None
    notifier_token: str | None = None
    notifier_timeout_seconds: float = Field(default=10.0, gt=0.0, le=120.0)

    # Observability
    metrics_enabled: bool = False
    metrics_port: int = 8000

    @property
    def is_production(self) -> bool:
        """Check if running in production environment."""
        return self.environment == "production"

    @property
    def notifier_configured(self) -> bool:
        """Check if a notification relay endpoint is configured."""
        return bool(self.notifier_url)


@lru_cache
def get_settings() -> Settings:
    """
    Get cached settings instance.

    Uses lru_cache to ensure settings are loaded only once.
    Clear cache with get_settings.cache_clear() if needed.
    """
    return Settings()

"""Alert pipeline configuration.

Controls the deduplication window, threshold preset, display cache and
notification gating. All settings can be overridden via ``ALERTS_*``
environment variables.
"""

from typing import Literal

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class AlertConfig(BaseSettings):
    """Configuration for the alert processing pipeline."""

    model_config = SettingsConfigDict(
        env_prefix="ALERTS_",
        case_sensitive=False,
        extra="ignore",
    )

    # Deduplication: suppress repeated (parameter, level, rounded value) signatures
    deduplication_window_ms: int = Field(
        default=300_000,
        gt=0,
        description="Milliseconds during which a repeated alert signature is suppressed",
    )
    signature_precision: int = Field(
        default=2,
        ge=0,
        le=6,
        description="Decimal places kept when rounding values into a signature",
    )

    # Thresholds
    water_type: Literal["freshwater", "saltwater"] = Field(
        default="freshwater",
        description="Threshold preset loaded at startup",
    )

    # Display cache
    cache_ttl_seconds: float = Field(
        default=60.0,
        gt=0.0,
        description="Lifetime of cached display results",
    )
    cache_max_entries: int = Field(
        default=100,
        ge=1,
        description="Oldest entries are evicted beyond this size",
    )
    display_limit: int = Field(
        default=20,
        ge=1,
        le=500,
        description="Default number of alerts returned for display",
    )

    # Notifications
    notify_weather_alerts: bool = Field(
        default=True,
        description="Dispatch weather alerts even though they carry low severity",
    )
    device_name: str = Field(
        default="DATM",
        description="Device name reported in device-environment notifications",
    )

    # Enrichment
    randomize_messages: bool = Field(
        default=False,
        description="Pick randomly among equivalent title phrasings",
    )

    # Monitor
    poll_interval_seconds: float = Field(
        default=60.0,
        gt=0.0,
        description="Interval between polls of the reading source",
    )

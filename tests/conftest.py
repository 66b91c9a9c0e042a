"""Pytest fixtures for pondwatch tests."""

from datetime import datetime, timezone

import pytest

from pondwatch.alerts.schemas import Alert
from pondwatch.alerts.thresholds import ThresholdStore
from pondwatch.config.settings import Settings

FIXED_NOW = datetime(2026, 3, 1, 12, 0, 0, tzinfo=timezone.utc)


class FakeClock:
    """Manually advanced clock returning whatever ``value`` holds."""

    def __init__(self, value):
        self.value = value

    def __call__(self):
        return self.value

    def advance(self, delta) -> None:
        self.value = self.value + delta


@pytest.fixture
def test_settings() -> Settings:
    """Settings configured for testing."""
    return Settings(
        environment="development",
        log_level="DEBUG",
        notifier_url=None,
        metrics_enabled=False,
    )


@pytest.fixture
def fixed_now() -> datetime:
    return FIXED_NOW


@pytest.fixture
def ms_clock() -> FakeClock:
    """Millisecond monotonic clock for deduplication windows."""
    return FakeClock(1_000_000.0)


@pytest.fixture
def seconds_clock() -> FakeClock:
    """Second-resolution monotonic clock for cache TTLs."""
    return FakeClock(100.0)


@pytest.fixture
def wall_clock() -> FakeClock:
    """Wall clock for alert timestamps and recency."""
    return FakeClock(FIXED_NOW)


@pytest.fixture
def freshwater() -> ThresholdStore:
    return ThresholdStore.for_water_type("freshwater")


@pytest.fixture
def make_alert():
    """Factory for processed alerts with sensible defaults."""

    def _make(
        parameter: str = "ph",
        value: float = 9.5,
        alert_level: str = "critical",
        severity: str = "high",
        category: str = "chemical",
        **kwargs,
    ) -> Alert:
        defaults = {
            "title": f"{parameter} {alert_level}",
            "message": f"{parameter} reading of {value} is {alert_level}",
            "timestamp": FIXED_NOW,
            "created_at": FIXED_NOW,
        }
        defaults.update(kwargs)
        return Alert(
            parameter=parameter,
            value=value,
            alert_level=alert_level,
            severity=severity,
            category=category,
            **defaults,
        )

    return _make

"""Turn the latest sensor reading into alert drafts.

Only the most recent reading in a batch is alerted on; earlier entries are
context for display and trend code elsewhere. Threshold parameters produce
a draft when they evaluate to anything other than ``normal``. The rain
sensor bypasses thresholds: only active precipitation produces a draft,
and that draft is informational.
"""

import logging
from collections.abc import Mapping, Sequence
from datetime import datetime
from typing import Any

from pondwatch.alerts.schemas import (
    AlertDraft,
    Parameter,
    SensorReading,
    as_number,
    reading_timestamp,
    utc_now,
)
from pondwatch.alerts.thresholds import ThresholdStore

logger = logging.getLogger(__name__)

# Rain sensor codes that indicate active precipitation (1 = raining, 2 = heavy)
PRECIPITATION_CODES: frozenset[int] = frozenset({1, 2})


def latest_reading(readings: Any) -> SensorReading | None:
    """Return the last reading of a batch, or None for empty/non-list input.

    Raises:
        TypeError: If the batch is a list but its last entry is not a mapping.
    """
    if isinstance(readings, (str, bytes, Mapping)) or not isinstance(readings, Sequence):
        return None
    if len(readings) == 0:
        return None
    latest = readings[-1]
    if not isinstance(latest, Mapping):
        raise TypeError(
            f"Sensor reading must be a mapping, got {type(latest).__name__}"
        )
    return latest


class AlertGenerator:
    """Evaluates the latest reading against a ThresholdStore."""

    def __init__(self, thresholds: ThresholdStore) -> None:
        self._thresholds = thresholds

    def generate(
        self,
        readings: Any,
        now: datetime | None = None,
    ) -> list[AlertDraft]:
        """Produce drafts for every out-of-range parameter in the latest reading.

        Args:
            readings: Batch of sensor readings, oldest first.
            now: Fallback sample time for readings without a timestamp.

        Returns:
            Drafts in reading key order. Empty for empty or non-list input.
        """
        latest = latest_reading(readings)
        if latest is None:
            return []

        timestamp = reading_timestamp(latest, default=now or utc_now())
        drafts: list[AlertDraft] = []

        for key, value in latest.items():
            parameter = Parameter.from_name(key)
            if parameter is None or value is None:
                continue

            if parameter.is_weather:
                draft = self._rain_draft(value, timestamp)
                if draft is not None:
                    drafts.append(draft)
                continue

            level = self._thresholds.evaluate(parameter.value, value)
            if level == "normal":
                continue

            drafts.append(
                AlertDraft(
                    parameter=parameter.value,
                    value=as_number(value),
                    level=level,
                    timestamp=timestamp,
                )
            )

        logger.debug("Generated %d alert drafts from latest reading", len(drafts))
        return drafts

    def _rain_draft(self, value: Any, timestamp: datetime) -> AlertDraft | None:
        code = as_number(value) if not isinstance(value, bool) else float(value)
        if code is None or int(code) != code or int(code) not in PRECIPITATION_CODES:
            return None
        return AlertDraft(
            parameter=Parameter.RAIN.value,
            value=code,
            level="warning",
            timestamp=timestamp,
            informational=True,
        )

"""Per-parameter safe and critical ranges.

Threshold configuration arrives as ``{parameter: {min, max}}``; critical
bounds are derived by padding the normal bounds with fixed,
parameter-specific margins. The store knows nothing about alerts: it only
answers ``evaluate(parameter, value) -> level``.
"""

import logging
import threading
from typing import Any, Mapping

from pondwatch.alerts.schemas import AlertLevel, Parameter, Threshold, as_number

logger = logging.getLogger(__name__)

# (lower, upper) padding applied to normal bounds to obtain critical bounds
DEFAULT_MARGINS: dict[str, tuple[float | None, float | None]] = {
    Parameter.PH.value: (0.5, 0.5),
    Parameter.TEMPERATURE.value: (6.0, 5.0),
    Parameter.TURBIDITY.value: (None, 50.0),
    Parameter.SALINITY.value: (5.0, 5.0),
    Parameter.TDS.value: (None, 500.0),
    Parameter.HUMIDITY.value: (10.0, 10.0),
    Parameter.DEVICE_TEMPERATURE.value: (10.0, 10.0),
}

WATER_TYPE_PRESETS: dict[str, dict[str, dict[str, float | None]]] = {
    "freshwater": {
        Parameter.PH.value: {"min": 6.5, "max": 8.5},
        Parameter.TEMPERATURE.value: {"min": 26.0, "max": 30.0},
        Parameter.SALINITY.value: {"min": 0.0, "max": 5.0},
        Parameter.TURBIDITY.value: {"min": 0.0, "max": 50.0},
    },
    "saltwater": {
        Parameter.PH.value: {"min": 7.5, "max": 8.5},
        Parameter.TEMPERATURE.value: {"min": 24.0, "max": 30.0},
        Parameter.SALINITY.value: {"min": 15.0, "max": 35.0},
        Parameter.TURBIDITY.value: {"min": 0.0, "max": 60.0},
    },
}

# Limits that do not depend on the pond's water type
SHARED_LIMITS: dict[str, dict[str, float | None]] = {
    Parameter.TDS.value: {"min": None, "max": 500.0},
    Parameter.HUMIDITY.value: {"min": 30.0, "max": 80.0},
    Parameter.DEVICE_TEMPERATURE.value: {"min": 10.0, "max": 45.0},
}


def threshold_key(parameter: Any) -> str | None:
    """Normalize a parameter name into the store's lookup key."""
    known = Parameter.from_name(parameter)
    if known is not None:
        return known.value
    if isinstance(parameter, str) and parameter.strip():
        return parameter.strip().lower()
    return None


def derive_threshold(
    parameter: str,
    bounds: Mapping[str, Any],
    margins: Mapping[str, tuple[float | None, float | None]] | None = None,
) -> Threshold:
    """Build a Threshold from a ``{min, max}`` mapping.

    Explicit critical bounds win, either as ``critical_min``/``critical_max``
    keys or as a nested ``critical: {min, max}`` mapping. Missing critical
    bounds are derived by padding the matching normal bound with the
    parameter's margin; a margin never creates a bound on an open side.

    Args:
        parameter: Normalized parameter key.
        bounds: Configuration mapping for the parameter.
        margins: Margin table (defaults to ``DEFAULT_MARGINS``).

    Returns:
        The derived Threshold.

    Raises:
        ValueError: If the bounds are inconsistent or non-numeric.
    """
    margins = DEFAULT_MARGINS if margins is None else margins
    nested = bounds.get("critical") or {}

    def _bound(raw: Any, name: str) -> float | None:
        if raw is None:
            return None
        number = as_number(raw)
        if number is None:
            raise ValueError(f"Threshold {name} for {parameter!r} is not numeric: {raw!r}")
        return number

    low = _bound(bounds.get("min"), "min")
    high = _bound(bounds.get("max"), "max")
    critical_low = _bound(bounds.get("critical_min", nested.get("min")), "critical_min")
    critical_high = _bound(bounds.get("critical_max", nested.get("max")), "critical_max")

    lower_margin, upper_margin = margins.get(parameter, (None, None))
    if critical_low is None and low is not None and lower_margin is not None:
        critical_low = low - lower_margin
    if critical_high is None and high is not None and upper_margin is not None:
        critical_high = high + upper_margin

    return Threshold(
        parameter=parameter,
        min=low,
        max=high,
        critical_min=critical_low,
        critical_max=critical_high,
    )


class ThresholdStore:
    """Holds exactly one active threshold per parameter.

    Lookups are case-insensitive and alias-aware (``pH``, ``datmTemp``).
    Updates swap in a new mapping under a lock, so an evaluation sees
    either the old threshold or the new one, never a mix.
    """

    def __init__(
        self,
        thresholds: Mapping[str, Threshold | Mapping[str, Any]] | None = None,
        margins: Mapping[str, tuple[float | None, float | None]] | None = None,
    ) -> None:
        self._margins = dict(DEFAULT_MARGINS if margins is None else margins)
        self._lock = threading.Lock()
        loaded: dict[str, Threshold] = {}
        for parameter, threshold in (thresholds or {}).items():
            key, value = self._coerce(parameter, threshold)
            loaded[key] = value
        self._thresholds = loaded

    @classmethod
    def from_config(
        cls,
        config: Mapping[str, Mapping[str, Any]],
        margins: Mapping[str, tuple[float | None, float | None]] | None = None,
    ) -> "ThresholdStore":
        """Load a ``{parameter: {min, max}}`` configuration."""
        return cls(thresholds=config, margins=margins)

    @classmethod
    def for_water_type(cls, water_type: str = "freshwater") -> "ThresholdStore":
        """Load the preset for ``freshwater`` or ``saltwater`` ponds.

        Unknown water types fall back to the freshwater preset.
        """
        preset = WATER_TYPE_PRESETS.get(water_type)
        if preset is None:
            logger.warning("Unknown water type %r, using freshwater thresholds", water_type)
            preset = WATER_TYPE_PRESETS["freshwater"]
        return cls.from_config({**preset, **SHARED_LIMITS})

    def _coerce(
        self,
        parameter: Any,
        threshold: Threshold | Mapping[str, Any],
    ) -> tuple[str, Threshold]:
        key = threshold_key(parameter)
        if key is None:
            raise ValueError(f"Invalid threshold parameter name: {parameter!r}")
        if isinstance(threshold, Threshold):
            if threshold.parameter != key:
                threshold = Threshold(
                    parameter=key,
                    min=threshold.min,
                    max=threshold.max,
                    critical_min=threshold.critical_min,
                    critical_max=threshold.critical_max,
                )
            return key, threshold
        if isinstance(threshold, Mapping):
            return key, derive_threshold(key, threshold, self._margins)
        raise TypeError(
            f"Threshold for {parameter!r} must be a Threshold or mapping, "
            f"got {type(threshold).__name__}"
        )

    def get_threshold(self, parameter: Any) -> Threshold | None:
        key = threshold_key(parameter)
        if key is None:
            return None
        return self._thresholds.get(key)

    def all_thresholds(self) -> dict[str, Threshold]:
        return dict(self._thresholds)

    def evaluate(self, parameter: Any, value: Any) -> AlertLevel:
        """Classify a reading value for a parameter.

        Returns ``critical`` outside the critical range, ``warning`` outside
        the normal range, else ``normal``. Unknown parameters and values
        that are not numbers resolve to ``normal``; this never raises.
        """
        threshold = self.get_threshold(parameter)
        if threshold is None:
            return "normal"
        number = as_number(value)
        if number is None:
            return "normal"
        return threshold.evaluate(number)

    def update_threshold(
        self,
        parameter: Any,
        threshold: Threshold | Mapping[str, Any],
    ) -> Threshold:
        """Replace the active threshold for a parameter.

        Takes effect on the next evaluation. Cached results computed with
        the old threshold are the caller's concern.

        Returns:
            The threshold now in effect.
        """
        key, value = self._coerce(parameter, threshold)
        with self._lock:
            updated = dict(self._thresholds)
            updated[key] = value
            self._thresholds = updated
        logger.info("Threshold updated for %s: %s", key, value.to_dict())
        return value

    def update_thresholds(
        self,
        updates: Mapping[str, Threshold | Mapping[str, Any]],
    ) -> dict[str, Threshold]:
        """Replace several thresholds in one swap.

        Every update is validated before any is applied, so a bad entry
        leaves the store unchanged.
        """
        coerced = dict(self._coerce(parameter, value) for parameter, value in updates.items())
        with self._lock:
            self._thresholds = {**self._thresholds, **coerced}
        logger.info("Thresholds updated for %s", sorted(coerced))
        return coerced

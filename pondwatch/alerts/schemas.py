"""Schema definitions for readings, alert drafts and processed alerts.

A reading batch flows through the pipeline as ``AlertDraft`` candidates
(ephemeral, never persisted) and leaves it as immutable ``Alert`` records.
A recurring condition always produces a new ``Alert``; nothing here is
updated in place once created.
"""

import enum
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Literal, Mapping

SensorReading = Mapping[str, Any]

# Reading keys that carry the sample time rather than a measurement
TIMESTAMP_KEYS: tuple[str, ...] = ("datetime", "timestamp")

AlertLevel = Literal["normal", "warning", "critical"]

VALID_LEVELS: frozenset[str] = frozenset({"normal", "warning", "critical"})

ALERTABLE_LEVELS: frozenset[str] = frozenset({"warning", "critical"})

Severity = Literal["low", "medium", "high"]

VALID_SEVERITIES: frozenset[str] = frozenset({"low", "medium", "high"})

Category = Literal["chemical", "physical", "device", "weather"]

VALID_CATEGORIES: frozenset[str] = frozenset({
    "chemical",
    "physical",
    "device",
    "weather",
})

Urgency = Literal["immediate", "soon", "eventual", "monitor"]

VALID_URGENCIES: frozenset[str] = frozenset({
    "immediate",
    "soon",
    "eventual",
    "monitor",
})

Direction = Literal["high", "low", "unknown"]


def _normalize_name(name: str) -> str:
    return name.strip().lower().replace("_", "").replace("-", "").replace(" ", "")


class Parameter(str, enum.Enum):
    """Closed set of sensor parameters the pipeline knows how to alert on."""

    PH = "ph"
    TEMPERATURE = "temperature"
    TURBIDITY = "turbidity"
    SALINITY = "salinity"
    TDS = "tds"
    HUMIDITY = "humidity"
    DEVICE_TEMPERATURE = "datm_temp"
    RAIN = "is_raining"

    @classmethod
    def from_name(cls, name: Any) -> "Parameter | None":
        """Resolve a reading key such as ``pH``, ``datmTemp`` or ``isRaining``.

        Matching ignores case, underscores, dashes and spaces. Returns None
        for anything that is not a known parameter (including non-strings).
        """
        if isinstance(name, Parameter):
            return name
        if not isinstance(name, str):
            return None
        return _PARAMETER_ALIASES.get(_normalize_name(name))

    @property
    def is_weather(self) -> bool:
        return self is Parameter.RAIN

    @property
    def is_device(self) -> bool:
        return self in (Parameter.HUMIDITY, Parameter.DEVICE_TEMPERATURE)


_PARAMETER_ALIASES: dict[str, Parameter] = {
    _normalize_name(p.value): p for p in Parameter
}


def utc_now() -> datetime:
    """Current time as an aware UTC datetime."""
    return datetime.now(timezone.utc)


def coerce_timestamp(value: Any) -> datetime | None:
    """Convert a reading timestamp into an aware datetime.

    Accepts datetimes (naive ones are taken as UTC), ISO-8601 strings
    (including a trailing ``Z``) and epoch numbers in seconds or
    milliseconds. Returns None when the value cannot be interpreted.
    """
    if isinstance(value, datetime):
        if value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value
    if isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        seconds = value / 1000 if abs(value) > 1e11 else value
        try:
            return datetime.fromtimestamp(seconds, tz=timezone.utc)
        except (OverflowError, OSError, ValueError):
            return None
    if isinstance(value, str):
        text = value.strip()
        if text.endswith("Z"):
            text = text[:-1] + "+00:00"
        try:
            parsed = datetime.fromisoformat(text)
        except ValueError:
            return None
        return coerce_timestamp(parsed)
    return None


def reading_timestamp(reading: SensorReading, default: datetime | None = None) -> datetime:
    """Return the sample time of a reading, falling back to ``default`` or now."""
    for key in TIMESTAMP_KEYS:
        ts = coerce_timestamp(reading.get(key))
        if ts is not None:
            return ts
    return default or utc_now()


def generate_alert_id(now: datetime | None = None) -> str:
    """Build an alert id from the creation time plus a random suffix."""
    now = now or utc_now()
    millis = int(now.timestamp() * 1000)
    return f"alert_{millis}_{uuid.uuid4().hex[:9]}"


@dataclass(frozen=True)
class Threshold:
    """Safe and critical bounds for one parameter.

    Either side of either range may be open (None). Boundaries are strict:
    a value equal to a bound is inside the range.
    """

    parameter: str
    min: float | None = None
    max: float | None = None
    critical_min: float | None = None
    critical_max: float | None = None

    def __post_init__(self) -> None:
        if self.min is not None and self.max is not None and self.min > self.max:
            raise ValueError(
                f"Threshold for {self.parameter!r} has min {self.min} above max {self.max}"
            )
        if (
            self.critical_min is not None
            and self.critical_max is not None
            and self.critical_min > self.critical_max
        ):
            raise ValueError(
                f"Threshold for {self.parameter!r} has critical_min "
                f"{self.critical_min} above critical_max {self.critical_max}"
            )
        if (
            self.critical_min is not None
            and self.min is not None
            and self.critical_min > self.min
        ):
            raise ValueError(
                f"Threshold for {self.parameter!r} has critical_min "
                f"{self.critical_min} inside the normal range"
            )
        if (
            self.critical_max is not None
            and self.max is not None
            and self.critical_max < self.max
        ):
            raise ValueError(
                f"Threshold for {self.parameter!r} has critical_max "
                f"{self.critical_max} inside the normal range"
            )

    def evaluate(self, value: float) -> AlertLevel:
        """Classify a numeric value against this threshold."""
        if self.critical_min is not None and value < self.critical_min:
            return "critical"
        if self.critical_max is not None and value > self.critical_max:
            return "critical"
        if self.min is not None and value < self.min:
            return "warning"
        if self.max is not None and value > self.max:
            return "warning"
        return "normal"

    def direction(self, value: float) -> Direction:
        """Which side of the normal range a value falls on."""
        if self.max is not None and value > self.max:
            return "high"
        if self.min is not None and value < self.min:
            return "low"
        return "unknown"

    def deviation_percent(self, value: float) -> float:
        """Percentage by which a value overshoots the normal bound it crossed."""
        direction = self.direction(value)
        if direction == "high" and self.max:
            return (value - self.max) / abs(self.max) * 100
        if direction == "low" and self.min:
            return (self.min - value) / abs(self.min) * 100
        return 0.0

    def to_dict(self) -> dict[str, Any]:
        return {
            "parameter": self.parameter,
            "min": self.min,
            "max": self.max,
            "critical_min": self.critical_min,
            "critical_max": self.critical_max,
        }


@dataclass
class AlertDraft:
    """Unvalidated candidate alert produced by the generator.

    Fields are loosely typed on purpose: drafts handed in by custom stages
    may be malformed, and the validation stage is what rejects them.

    Attributes:
        parameter: Parameter name (normalized ``Parameter`` value when generated).
        value: Reading value that triggered the draft.
        level: ``normal``, ``warning`` or ``critical``.
        timestamp: Sample time of the reading.
        informational: Weather-style draft that bypassed threshold logic.
    """

    parameter: str | None
    value: Any
    level: str | None
    timestamp: datetime | None
    informational: bool = False


@dataclass(frozen=True)
class Alert:
    """A processed, immutable alert ready for persistence and notification.

    Attributes:
        parameter: Normalized parameter name.
        value: Numeric reading that triggered the alert.
        alert_level: ``warning`` or ``critical`` (never ``normal``).
        severity: ``low``, ``medium`` or ``high``.
        title: Short human-readable summary.
        message: Detailed description with the safe range.
        category: Routing tag (chemical, physical, device, weather).
        id: Creation-time based identifier with a random suffix.
        confidence: Sensor confidence score in [0, 1].
        priority: Numeric display priority (higher shows first).
        urgency: How quickly the alert needs attention.
        impact: Coarse impact tier derived from the level.
        recommendations: Remediation suggestions.
        timestamp: Sample time of the triggering reading.
        created_at: When the alert was created.
    """

    parameter: str
    value: float
    alert_level: str
    severity: str
    title: str
    message: str
    category: str
    id: str = field(default_factory=generate_alert_id)
    confidence: float = 0.8
    priority: int = 0
    urgency: str = "monitor"
    impact: str = "low"
    recommendations: tuple[str, ...] = ()
    timestamp: datetime = field(default_factory=utc_now)
    created_at: datetime = field(default_factory=utc_now)

    def __post_init__(self) -> None:
        if self.alert_level not in ALERTABLE_LEVELS:
            raise ValueError(
                f"Invalid alert_level {self.alert_level!r}. "
                f"Must be one of: {sorted(ALERTABLE_LEVELS)}"
            )
        if self.severity not in VALID_SEVERITIES:
            raise ValueError(
                f"Invalid severity {self.severity!r}. "
                f"Must be one of: {sorted(VALID_SEVERITIES)}"
            )
        if self.category not in VALID_CATEGORIES:
            raise ValueError(
                f"Invalid category {self.category!r}. "
                f"Must be one of: {sorted(VALID_CATEGORIES)}"
            )
        if self.urgency not in VALID_URGENCIES:
            raise ValueError(
                f"Invalid urgency {self.urgency!r}. "
                f"Must be one of: {sorted(VALID_URGENCIES)}"
            )

    def to_dict(self) -> dict[str, Any]:
        """Convert to JSON-serializable dictionary."""
        return {
            "id": self.id,
            "parameter": self.parameter,
            "value": self.value,
            "alert_level": self.alert_level,
            "severity": self.severity,
            "title": self.title,
            "message": self.message,
            "category": self.category,
            "confidence": self.confidence,
            "priority": self.priority,
            "urgency": self.urgency,
            "impact": self.impact,
            "recommendations": list(self.recommendations),
            "timestamp": self.timestamp.isoformat(),
            "created_at": self.created_at.isoformat(),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Alert":
        """Create an Alert from a dictionary.

        Args:
            data: Dictionary with alert fields.

        Returns:
            Alert instance.
        """
        timestamp = coerce_timestamp(data.get("timestamp")) or utc_now()
        created_at = coerce_timestamp(data.get("created_at")) or utc_now()

        return cls(
            id=data.get("id") or generate_alert_id(created_at),
            parameter=data["parameter"],
            value=float(data["value"]),
            alert_level=data["alert_level"],
            severity=data["severity"],
            title=data["title"],
            message=data["message"],
            category=data["category"],
            confidence=data.get("confidence", 0.8),
            priority=data.get("priority", 0),
            urgency=data.get("urgency", "monitor"),
            impact=data.get("impact", "low"),
            recommendations=tuple(data.get("recommendations", ())),
            timestamp=timestamp,
            created_at=created_at,
        )


@dataclass
class PipelineError:
    """A recoverable failure recorded on a processing result."""

    type: str
    message: str
    stage: str | None = None
    alert_id: str | None = None
    parameter: str | None = None
    details: list[str] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "type": self.type,
            "message": self.message,
            "stage": self.stage,
            "alert_id": self.alert_id,
            "parameter": self.parameter,
            "details": list(self.details),
        }


@dataclass(frozen=True)
class DuplicateRecord:
    """A draft dropped because its signature was seen inside the window."""

    signature: str
    parameter: str
    level: str
    value: float
    last_seen_ms: float


@dataclass(frozen=True)
class NotificationReceipt:
    """Proof of one delivered notification."""

    alert_id: str
    parameter: str
    channel: str
    notification_id: str | None = None
    value: float | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "alert_id": self.alert_id,
            "parameter": self.parameter,
            "channel": self.channel,
            "notification_id": self.notification_id,
            "value": self.value,
        }


@dataclass
class ProcessingResult:
    """Consolidated outcome of one ``process_reading`` cycle.

    ``processed_alerts`` is ordered by the priority contract (priority
    descending, then timestamp descending). Callers inspect ``errors`` to
    decide on follow-up action; nothing recoverable is raised.
    """

    new_alerts: list[Alert] = field(default_factory=list)
    processed_alerts: list[Alert] = field(default_factory=list)
    notifications: list[NotificationReceipt] = field(default_factory=list)
    errors: list[PipelineError] = field(default_factory=list)
    suppressed: list[DuplicateRecord] = field(default_factory=list)
    data_signature: str | None = None
    message: str | None = None

    @property
    def has_errors(self) -> bool:
        return bool(self.errors)

    def errors_of_type(self, error_type: str) -> list[PipelineError]:
        return [e for e in self.errors if e.type == error_type]

    def to_dict(self) -> dict[str, Any]:
        return {
            "new_alerts": [a.to_dict() for a in self.new_alerts],
            "processed_alerts": [a.to_dict() for a in self.processed_alerts],
            "notifications": [n.to_dict() for n in self.notifications],
            "errors": [e.to_dict() for e in self.errors],
            "suppressed": len(self.suppressed),
            "data_signature": self.data_signature,
            "message": self.message,
        }


def as_number(value: Any) -> float | None:
    """Interpret a reading value as a finite float, or None.

    Numeric strings are accepted; booleans, NaN and infinities are not.
    """
    if isinstance(value, bool) or value is None:
        return None
    if isinstance(value, (int, float)):
        number = float(value)
    elif isinstance(value, str):
        try:
            number = float(value.strip())
        except ValueError:
            return None
    else:
        return None
    if number != number or number in (float("inf"), float("-inf")):
        return None
    return number

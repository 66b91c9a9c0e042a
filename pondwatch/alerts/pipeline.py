"""Alert pipeline stages.

Fixed order, driven by ``AlertOrchestrator``:

1. ``ValidationStage``    - reject malformed drafts (recorded, not raised)
2. ``DeduplicationStage`` - suppress signatures seen inside the window
3. custom ``AlertProcessor`` stages, each isolated by the orchestrator
4. ``EnrichmentStage``    - drafts become ``Alert`` records
5. ``PrioritizationStage`` - priority score and urgency

Stages are synchronous and do no I/O, so a single stage call cannot
interleave with another invocation on the same event loop.
"""

import dataclasses
import logging
import random
from collections.abc import Awaitable, Callable
from datetime import datetime
from typing import Protocol, runtime_checkable

from pondwatch.alerts import templates
from pondwatch.alerts.dedup import SignatureWindow, alert_signature
from pondwatch.alerts.errors import ErrorType
from pondwatch.alerts.schemas import (
    VALID_LEVELS,
    Alert,
    AlertDraft,
    DuplicateRecord,
    Parameter,
    PipelineError,
    as_number,
    coerce_timestamp,
    generate_alert_id,
    utc_now,
)
from pondwatch.alerts.thresholds import ThresholdStore

logger = logging.getLogger(__name__)

REQUIRED_FIELDS: tuple[str, ...] = ("parameter", "value", "level", "timestamp")

SEVERITY_BY_LEVEL: dict[str, str] = {
    "critical": "high",
    "warning": "medium",
}

IMPACT_BY_LEVEL: dict[str, str] = {
    "critical": "high",
    "warning": "medium",
}

SEVERITY_SCORES: dict[str, int] = {
    "high": 100,
    "medium": 50,
    "low": 10,
}

URGENCY_BY_SEVERITY: dict[str, str] = {
    "high": "immediate",
    "medium": "soon",
}

# Recency bonus: (max age in hours, bonus points), checked in order
RECENCY_BONUSES: tuple[tuple[float, int], ...] = (
    (1.0, 20),
    (6.0, 10),
)


@runtime_checkable
class AlertProcessor(Protocol):
    """Contract for custom stages appended to the pipeline.

    ``process`` receives the deduplicated drafts and returns the drafts to
    carry forward. It may be a plain or an ``async`` method.
    """

    def process(
        self, alerts: list[AlertDraft]
    ) -> list[AlertDraft] | Awaitable[list[AlertDraft]]:
        ...


def stage_name(stage: object) -> str:
    return getattr(stage, "name", None) or type(stage).__name__


# ── Validation ───────────────────────────────────────────


def validate_draft(draft: object) -> list[str]:
    """Return the list of problems with a draft (empty when valid)."""
    if not isinstance(draft, AlertDraft):
        return [f"Draft must be an AlertDraft, got {type(draft).__name__}"]

    errors: list[str] = []
    for name in REQUIRED_FIELDS:
        if getattr(draft, name) is None:
            errors.append(f"Missing required field: {name}")

    if draft.parameter is not None and not (
        isinstance(draft.parameter, str) and draft.parameter.strip()
    ):
        errors.append("Parameter must be a non-empty string")

    if draft.value is not None and as_number(draft.value) is None:
        errors.append("Value must be a valid number")

    if draft.level is not None:
        if draft.level not in VALID_LEVELS:
            errors.append(f"Invalid alert level: {draft.level}")
        elif draft.level == "normal":
            errors.append("Alert level 'normal' does not describe an alert condition")

    if draft.timestamp is not None and coerce_timestamp(draft.timestamp) is None:
        errors.append(f"Invalid timestamp: {draft.timestamp!r}")

    return errors


def _parameter_key(parameter: str) -> str:
    known = Parameter.from_name(parameter)
    return known.value if known is not None else parameter.strip().lower()


class ValidationStage:
    """Rejects malformed drafts and normalizes the rest."""

    name = "validation"

    def run(self, drafts: list[AlertDraft]) -> tuple[list[AlertDraft], list[PipelineError]]:
        valid: list[AlertDraft] = []
        invalid: list[PipelineError] = []

        for draft in drafts:
            problems = validate_draft(draft)
            if problems:
                parameter = getattr(draft, "parameter", None)
                invalid.append(
                    PipelineError(
                        type=ErrorType.VALIDATION.value,
                        message="Invalid alert draft",
                        stage=self.name,
                        parameter=parameter if isinstance(parameter, str) else None,
                        details=problems,
                    )
                )
                continue

            valid.append(
                dataclasses.replace(
                    draft,
                    parameter=_parameter_key(draft.parameter),
                    value=as_number(draft.value),
                    timestamp=coerce_timestamp(draft.timestamp),
                )
            )

        if invalid:
            logger.warning("Rejected %d malformed alert drafts", len(invalid))
        return valid, invalid


# ── Deduplication ────────────────────────────────────────


class DeduplicationStage:
    """Suppresses drafts whose signature was seen inside the window."""

    name = "deduplication"

    def __init__(self, window: SignatureWindow, precision: int = 2) -> None:
        self._window = window
        self._precision = precision

    @property
    def window(self) -> SignatureWindow:
        return self._window

    def signature(self, draft: AlertDraft) -> str:
        return alert_signature(draft.parameter, draft.level, draft.value, self._precision)

    def run(self, drafts: list[AlertDraft]) -> tuple[list[AlertDraft], list[DuplicateRecord]]:
        now = self._window.now()
        unique: list[AlertDraft] = []
        duplicates: list[DuplicateRecord] = []

        for draft in drafts:
            signature = self.signature(draft)
            decision = self._window.check_and_record(signature, now)
            if decision.duplicate:
                duplicates.append(
                    DuplicateRecord(
                        signature=signature,
                        parameter=draft.parameter,
                        level=draft.level,
                        value=draft.value,
                        last_seen_ms=decision.last_seen_ms,
                    )
                )
                logger.debug("Alert draft deduplicated: %s", signature)
            else:
                unique.append(draft)

        removed = self._window.sweep(now)
        if removed:
            logger.debug("Swept %d stale alert signatures", removed)
        return unique, duplicates


# ── Enrichment ───────────────────────────────────────────


def severity_for(level: str, informational: bool = False) -> str:
    if informational:
        return "low"
    return SEVERITY_BY_LEVEL.get(level, "low")


class EnrichmentStage:
    """Turns validated drafts into ``Alert`` records.

    Adds the id, creation time, severity, category, confidence, title,
    message and remediation steps. Title phrasing is deterministic unless
    an ``rng`` is supplied.
    """

    name = "enrichment"

    def __init__(
        self,
        thresholds: ThresholdStore,
        rng: random.Random | None = None,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self._thresholds = thresholds
        self._rng = rng
        self._clock = clock

    def run(self, drafts: list[AlertDraft]) -> tuple[list[Alert], list[PipelineError]]:
        alerts: list[Alert] = []
        errors: list[PipelineError] = []

        for draft in drafts:
            try:
                alerts.append(self.enrich(draft))
            except (TypeError, ValueError, AttributeError) as e:
                logger.warning("Failed to enrich draft for %s: %s", getattr(draft, "parameter", None), e)
                errors.append(
                    PipelineError(
                        type=ErrorType.PROCESSOR_STAGE.value,
                        message=f"Enrichment failed: {e}",
                        stage=self.name,
                        parameter=getattr(draft, "parameter", None),
                    )
                )
        return alerts, errors

    def enrich(self, draft: AlertDraft) -> Alert:
        parameter = _parameter_key(draft.parameter)
        value = as_number(draft.value)
        if value is None:
            raise ValueError(f"Value must be a valid number, got {draft.value!r}")
        timestamp = coerce_timestamp(draft.timestamp) or self._clock()
        created_at = self._clock()
        profile = templates.profile_for(parameter)
        informational = draft.informational or Parameter.from_name(parameter) is Parameter.RAIN

        if informational:
            code = templates.rain_code(value)
            return Alert(
                id=generate_alert_id(created_at),
                parameter=parameter,
                value=value,
                alert_level=draft.level,
                severity=severity_for(draft.level, informational=True),
                title=templates.rain_title(value),
                message=templates.rain_message(value),
                category="weather",
                confidence=profile.confidence,
                impact="low",
                recommendations=tuple(templates.RAIN_RECOMMENDATIONS.get(code, ())),
                timestamp=timestamp,
                created_at=created_at,
            )

        threshold = self._thresholds.get_threshold(parameter)
        direction = threshold.direction(value) if threshold is not None else "unknown"
        deviation = threshold.deviation_percent(value) if threshold is not None else 0.0

        return Alert(
            id=generate_alert_id(created_at),
            parameter=parameter,
            value=value,
            alert_level=draft.level,
            severity=severity_for(draft.level),
            title=templates.alert_title(parameter, value, draft.level, direction, self._rng),
            message=templates.alert_message(parameter, value, draft.level, threshold),
            category=profile.category,
            confidence=profile.confidence,
            impact=IMPACT_BY_LEVEL.get(draft.level, "low"),
            recommendations=tuple(
                templates.recommendations(parameter, draft.level, direction, deviation)
            ),
            timestamp=timestamp,
            created_at=created_at,
        )


# ── Prioritization ───────────────────────────────────────


def urgency_for(severity: str) -> str:
    return URGENCY_BY_SEVERITY.get(severity, "monitor")


def priority_score(alert: Alert, now: datetime) -> int:
    """``severity score + parameter weight + recency bonus``.

    Severity scores are 100/50/10 for high/medium/low; the recency bonus
    is +20 under one hour old and +10 under six hours.
    """
    score = SEVERITY_SCORES.get(alert.severity, SEVERITY_SCORES["low"])
    score += templates.profile_for(alert.parameter).weight

    age_hours = (now - alert.timestamp).total_seconds() / 3600
    for max_age, bonus in RECENCY_BONUSES:
        if age_hours < max_age:
            score += bonus
            break
    return score


def sort_alerts(alerts: list[Alert]) -> list[Alert]:
    """Order by priority descending, then timestamp descending."""
    return sorted(alerts, key=lambda a: (a.priority, a.timestamp), reverse=True)


class PrioritizationStage:
    """Assigns the numeric display priority and urgency."""

    name = "prioritization"

    def __init__(self, clock: Callable[[], datetime] = utc_now) -> None:
        self._clock = clock

    def run(self, alerts: list[Alert]) -> list[Alert]:
        now = self._clock()
        return [
            dataclasses.replace(
                alert,
                priority=priority_score(alert, now),
                urgency=urgency_for(alert.severity),
            )
            for alert in alerts
        ]

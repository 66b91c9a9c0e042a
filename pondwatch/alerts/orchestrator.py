"""Alert orchestrator: the single entry point for processing sensor readings.

One call to ``process_reading`` runs a full cycle:

    generate -> validate -> deduplicate -> custom stages -> enrich
    -> prioritize -> persist (one batch) -> notify -> invalidate cache

Recoverable failures are recorded on the returned ``ProcessingResult``.
Only ``CriticalPipelineError`` is raised, for failures that leave the
cycle with nothing meaningful to report.
"""

import asyncio
import dataclasses
import hashlib
import inspect
import random
import time
from collections.abc import Callable, Mapping, Sequence
from dataclasses import dataclass
from datetime import datetime
from typing import Any

import structlog

from pondwatch.alerts import templates
from pondwatch.alerts.cache import ResultCache
from pondwatch.alerts.channels import HttpNotifier, LoggingNotifier, Notifier, default_channels
from pondwatch.alerts.config import AlertConfig
from pondwatch.alerts.dedup import SignatureWindow, monotonic_ms
from pondwatch.alerts.errors import CriticalPipelineError, ErrorType, ProcessorStageError
from pondwatch.alerts.generator import AlertGenerator
from pondwatch.alerts.pipeline import (
    AlertProcessor,
    DeduplicationStage,
    EnrichmentStage,
    PrioritizationStage,
    ValidationStage,
    priority_score,
    sort_alerts,
    stage_name,
    urgency_for,
)
from pondwatch.alerts.repository import AlertStore, InMemoryAlertRepository
from pondwatch.alerts.router import NotificationRouter
from pondwatch.alerts.schemas import (
    TIMESTAMP_KEYS,
    Alert,
    AlertDraft,
    PipelineError,
    ProcessingResult,
    Threshold,
    utc_now,
)
from pondwatch.alerts.thresholds import ThresholdStore, threshold_key
from pondwatch.config.settings import Settings, get_settings
from pondwatch.observability.logging import bind_context, unbind_context
from pondwatch.observability.metrics import MetricsCollector, get_metrics

logger = structlog.get_logger(__name__)

NO_ALERTS_MESSAGE = "No alerts generated"

# Deliberately out-of-range reading used by run_self_test
SELF_TEST_READING: dict[str, float] = {
    "ph": 9.5,
    "temperature": 36.0,
    "turbidity": 75.0,
    "salinity": 2.5,
}


def data_signature(readings: Any) -> str | None:
    """Content hash of a reading batch, ignoring sample timestamps.

    Two batches with the same measurements hash equal even when taken at
    different times. Returns None for input that is not a reading batch.
    """
    if isinstance(readings, Mapping):
        batch: Sequence[Any] = [readings]
    elif isinstance(readings, Sequence) and not isinstance(readings, (str, bytes)):
        batch = readings
    else:
        return None

    parts: list[str] = []
    for reading in batch:
        if not isinstance(reading, Mapping):
            continue
        for key in sorted(reading, key=str):
            if key in TIMESTAMP_KEYS:
                continue
            parts.append(f"{key}:{reading[key]}")
    return hashlib.sha1("|".join(parts).encode("utf-8")).hexdigest()[:16]


def time_ago(timestamp: datetime, now: datetime) -> str:
    """Human-readable age such as ``Just now``, ``5 min ago`` or ``3 days ago``."""
    seconds = int((now - timestamp).total_seconds())
    if seconds < 60:
        return "Just now"
    minutes = seconds // 60
    if minutes < 60:
        return f"{minutes} min ago"
    hours = minutes // 60
    if hours < 24:
        return f"{hours} hr ago"
    days = hours // 24
    return f"{days} day ago" if days == 1 else f"{days} days ago"


def display_message(alert: Alert) -> str:
    if alert.category == "weather":
        return f"Weather: {templates.rain_status_text(alert.value)}"
    return templates.status_line(alert.parameter, alert.value, alert.severity, alert.alert_level)


@dataclass(frozen=True)
class DisplayAlert:
    """An alert shaped for the dashboard list."""

    alert: Alert
    display_message: str
    time_ago: str
    action_required: str
    priority: int

    def to_dict(self) -> dict[str, Any]:
        return {
            **self.alert.to_dict(),
            "display_message": self.display_message,
            "time_ago": self.time_ago,
            "action_required": self.action_required,
            "priority": self.priority,
        }


@dataclass
class SelfTestReport:
    """Outcome of ``run_self_test``."""

    success: bool
    message: str
    result: ProcessingResult | None = None
    error: str | None = None


class AlertOrchestrator:
    """Runs processing cycles and serves alerts for display.

    Collaborators are injected; ``build_orchestrator`` wires the defaults.
    The deduplication window is owned here and shared by every cycle, so
    ``reset_deduplication`` is the only way to forget seen signatures
    before they age out.
    """

    def __init__(
        self,
        thresholds: ThresholdStore,
        repository: AlertStore,
        router: NotificationRouter,
        cache: ResultCache | None = None,
        config: AlertConfig | None = None,
        window: SignatureWindow | None = None,
        processors: list[AlertProcessor] | None = None,
        metrics: MetricsCollector | None = None,
        rng: random.Random | None = None,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self._config = config or AlertConfig()
        self._thresholds = thresholds
        self._repository = repository
        self._router = router
        self._cache = cache or ResultCache(
            ttl_seconds=self._config.cache_ttl_seconds,
            max_entries=self._config.cache_max_entries,
        )
        self._window = window or SignatureWindow(
            window_ms=self._config.deduplication_window_ms,
            clock=monotonic_ms,
        )
        self._metrics = metrics
        self._clock = clock

        if rng is None and self._config.randomize_messages:
            rng = random.Random()

        self._generator = AlertGenerator(thresholds)
        self._validation = ValidationStage()
        self._deduplication = DeduplicationStage(self._window, self._config.signature_precision)
        self._enrichment = EnrichmentStage(thresholds, rng=rng, clock=clock)
        self._prioritization = PrioritizationStage(clock=clock)

        self._processors: list[AlertProcessor] = []
        for processor in processors or []:
            self.add_processor(processor)

        self._inflight: set[asyncio.Task] = set()

    @property
    def thresholds(self) -> ThresholdStore:
        return self._thresholds

    @property
    def window(self) -> SignatureWindow:
        return self._window

    @property
    def cache(self) -> ResultCache:
        return self._cache

    @property
    def repository(self) -> AlertStore:
        return self._repository

    @property
    def processors(self) -> list[AlertProcessor]:
        return list(self._processors)

    def add_processor(self, processor: AlertProcessor) -> None:
        """Append a custom stage, run after deduplication and before enrichment.

        Raises:
            TypeError: If ``processor`` has no callable ``process``.
        """
        if not callable(getattr(processor, "process", None)):
            raise TypeError(
                f"Alert processor must define process(), got {type(processor).__name__}"
            )
        self._processors.append(processor)
        logger.info("Added alert processor", processor=stage_name(processor))

    def reset_deduplication(self) -> None:
        """Forget every remembered alert signature."""
        self._window.clear()
        logger.info("Alert deduplication window cleared")

    def should_notify(self, alert: Alert) -> bool:
        """High severity, critical level, and (optionally) weather alerts notify."""
        if alert.severity == "high" or alert.alert_level == "critical":
            return True
        return alert.category == "weather" and self._config.notify_weather_alerts

    # ── Processing ───────────────────────────────────────────

    async def process_reading(self, readings: Any, trigger: str = "manual") -> ProcessingResult:
        """Run one processing cycle over a batch of sensor readings.

        The cycle runs in its own task and is shielded from cancellation
        of the caller: once started it always finishes its persistence and
        notification steps, so a cancelled caller never leaves alerts
        saved but unnotified.

        Args:
            readings: Batch of readings, oldest first. Only the latest is
                alerted on.
            trigger: What started the cycle (``poll``, ``push``, ``manual``).

        Returns:
            ProcessingResult describing everything that happened.

        Raises:
            CriticalPipelineError: If the cycle could not run at all.
        """
        task = asyncio.ensure_future(self._run_cycle(readings, trigger))
        self._inflight.add(task)
        task.add_done_callback(self._inflight.discard)
        return await asyncio.shield(task)

    async def drain(self) -> None:
        """Wait for cycles whose callers were cancelled to finish."""
        if self._inflight:
            await asyncio.gather(*list(self._inflight), return_exceptions=True)

    async def _run_cycle(self, readings: Any, trigger: str) -> ProcessingResult:
        started = time.perf_counter()
        result = ProcessingResult(data_signature=data_signature(readings))
        # Runs in its own task, so the binding never leaks to the caller
        bind_context(trigger=trigger, data_signature=result.data_signature)
        try:
            return await self._run_cycle_bound(readings, trigger, result, started)
        finally:
            unbind_context("trigger", "data_signature")

    async def _run_cycle_bound(
        self,
        readings: Any,
        trigger: str,
        result: ProcessingResult,
        started: float,
    ) -> ProcessingResult:
        try:
            drafts = self._generator.generate(readings, now=self._clock())
        except Exception as e:
            logger.error("Alert generation failed", error=str(e))
            raise CriticalPipelineError(f"Alert generation failed: {e}") from e

        if not drafts:
            result.message = NO_ALERTS_MESSAGE
            return result

        try:
            alerts = await self._run_stages(drafts, result)
            result.processed_alerts = alerts
            result.new_alerts = list(alerts)

            if alerts:
                await self._persist(alerts, result)
                await self._notify(alerts, result)
        except CriticalPipelineError:
            raise
        except Exception as e:
            logger.exception("Alert processing cycle failed")
            raise CriticalPipelineError(f"Alert processing failed: {e}") from e
        finally:
            # Alerts may already be saved even when a later step blew up
            self._cache.invalidate_all()

        latency = time.perf_counter() - started
        self._record_metrics(trigger, drafts, result, latency)

        logger.info(
            "Alert processing completed",
            drafts=len(drafts),
            processed=len(result.processed_alerts),
            suppressed=len(result.suppressed),
            notifications=len(result.notifications),
            errors=len(result.errors),
            latency_seconds=round(latency, 4),
        )
        return result

    async def _run_stages(self, drafts: list[AlertDraft], result: ProcessingResult) -> list[Alert]:
        valid, invalid = self._validation.run(drafts)
        result.errors.extend(invalid)

        unique, duplicates = self._deduplication.run(valid)
        result.suppressed.extend(duplicates)

        current = unique
        for processor in self._processors:
            current = await self._run_processor(processor, current, result)

        alerts, failures = self._enrichment.run(current)
        result.errors.extend(failures)
        return sort_alerts(self._prioritization.run(alerts))

    async def _run_processor(
        self,
        processor: AlertProcessor,
        drafts: list[AlertDraft],
        result: ProcessingResult,
    ) -> list[AlertDraft]:
        """Run one custom stage; on failure its input passes through unchanged."""
        name = stage_name(processor)
        try:
            output = processor.process([dataclasses.replace(d) for d in drafts])
            if inspect.isawaitable(output):
                output = await output
            if not isinstance(output, list):
                raise ProcessorStageError(
                    name, f"returned {type(output).__name__}, expected a list of drafts"
                )
            return output
        except Exception as e:
            logger.error("Alert processor failed", processor=name, error=str(e))
            result.errors.append(
                PipelineError(
                    type=ErrorType.PROCESSOR_STAGE.value,
                    message=str(e),
                    stage=name,
                )
            )
            return drafts

    async def _persist(self, alerts: list[Alert], result: ProcessingResult) -> None:
        try:
            await self._repository.save_alerts(alerts)
        except Exception as e:
            logger.error("Failed to save alerts", count=len(alerts), error=str(e))
            result.errors.append(
                PipelineError(
                    type=ErrorType.PERSISTENCE.value,
                    message=f"Failed to save alerts: {e}",
                    stage="persistence",
                )
            )

    async def _notify(self, alerts: list[Alert], result: ProcessingResult) -> None:
        selected = [a for a in alerts if self.should_notify(a)]
        if not selected:
            return
        report = await self._router.dispatch(selected)
        result.notifications.extend(report.receipts)
        result.errors.extend(report.errors)

    def _record_metrics(
        self,
        trigger: str,
        drafts: list[AlertDraft],
        result: ProcessingResult,
        latency: float,
    ) -> None:
        if self._metrics is None:
            return
        try:
            for draft in drafts:
                self._metrics.drafts_generated.labels(parameter=draft.parameter).inc()
            self._metrics.record_cycle(
                trigger=trigger,
                processed_severities=[a.severity for a in result.processed_alerts],
                suppressed_parameters=[d.parameter for d in result.suppressed],
                error_types=[e.type for e in result.errors],
                channels=[n.channel for n in result.notifications],
                latency=latency,
            )
        except Exception as e:
            logger.warning("Failed to record alert metrics", error=str(e))

    # ── Display ──────────────────────────────────────────────

    async def get_alerts_for_display(
        self,
        severity: str | None = None,
        parameter: str | None = None,
        limit: int | None = None,
        use_cache: bool = True,
    ) -> list[DisplayAlert]:
        """Recent alerts ranked for display.

        Results are cached per filter combination until the TTL expires or
        the next processing cycle completes.

        Args:
            severity: Only alerts of this severity.
            parameter: Only alerts for this parameter (aliases accepted).
            limit: Maximum alerts (defaults to ``display_limit``).
            use_cache: Set False to bypass the cache for this read.

        Returns:
            DisplayAlerts ordered by priority, then timestamp, descending.
        """
        if limit is None:
            limit = self._config.display_limit
        parameter = threshold_key(parameter) if parameter is not None else None
        key = ResultCache.make_key(severity, parameter, limit)

        if use_cache:
            cached = self._cache.get(key)
            if cached is not None:
                return cached

        generation = self._cache.generation
        alerts = await self._repository.get_alerts(
            limit=limit, severity=severity, parameter=parameter,
        )
        now = self._clock()
        display = [
            DisplayAlert(
                alert=alert,
                display_message=display_message(alert),
                time_ago=time_ago(alert.timestamp, now),
                action_required=urgency_for(alert.severity),
                priority=priority_score(alert, now),
            )
            for alert in alerts
        ]
        display.sort(key=lambda d: (d.priority, d.alert.timestamp), reverse=True)

        # A cycle that finished during the read has already made this stale
        self._cache.set(key, display, generation=generation)
        return display

    # ── Administration ───────────────────────────────────────

    def update_thresholds(
        self,
        updates: Mapping[str, Threshold | Mapping[str, Any]],
    ) -> dict[str, Threshold]:
        """Apply new thresholds and drop cached display results.

        Raises:
            ValueError: If any update is invalid (none are applied).
        """
        applied = self._thresholds.update_thresholds(updates)
        self._cache.invalidate_all()
        return applied

    async def run_self_test(self) -> SelfTestReport:
        """Process a deliberately out-of-range reading end to end."""
        reading = {**SELF_TEST_READING, "datetime": self._clock()}
        try:
            result = await self.process_reading([reading], trigger="self_test")
        except CriticalPipelineError as e:
            logger.error("Alert self-test failed", error=str(e))
            return SelfTestReport(success=False, message="Self-test failed", error=str(e))

        return SelfTestReport(
            success=True,
            message=f"Generated {len(result.processed_alerts)} test alerts",
            result=result,
        )


def build_orchestrator(
    config: AlertConfig | None = None,
    settings: Settings | None = None,
    repository: AlertStore | None = None,
    notifier: Notifier | None = None,
) -> AlertOrchestrator:
    """Wire an orchestrator from configuration.

    Uses the HTTP relay when ``NOTIFIER_URL`` is set, otherwise notifications
    are only logged. Persistence defaults to the in-memory repository.
    """
    config = config or AlertConfig()
    settings = settings or get_settings()

    if notifier is None:
        if settings.notifier_configured:
            notifier = HttpNotifier(
                base_url=settings.notifier_url,
                api_key=settings.notifier_api_key,
                device_token=settings.notifier_token,
                timeout=settings.notifier_timeout_seconds,
            )
        else:
            notifier = LoggingNotifier()

    return AlertOrchestrator(
        thresholds=ThresholdStore.for_water_type(config.water_type),
        repository=repository or InMemoryAlertRepository(),
        router=NotificationRouter(default_channels(notifier, device_name=config.device_name)),
        config=config,
        metrics=get_metrics() if settings.metrics_enabled else None,
    )

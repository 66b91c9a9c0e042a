"""
Alert monitor - feeds sensor readings into the alert orchestrator.

Two triggers share one entry point:
1. A fixed-interval poll of a ``ReadingSource``
2. ``on_readings()``, called by a push-style data subscription

Both may overlap; the orchestrator's deduplication window suppresses the
later of two near-simultaneous cycles carrying the same reading.
"""

import asyncio
import json
from collections import Counter
from pathlib import Path
from typing import Any, Protocol

import structlog

from pondwatch.alerts.config import AlertConfig
from pondwatch.alerts.errors import CriticalPipelineError
from pondwatch.alerts.orchestrator import AlertOrchestrator
from pondwatch.alerts.schemas import ProcessingResult, SensorReading

logger = structlog.get_logger(__name__)


class ReadingSource(Protocol):
    """Anything that can hand over the current batch of sensor readings."""

    async def fetch(self) -> list[SensorReading]:
        ...


class JsonFileSource:
    """Reads a JSON array of readings (oldest first) from a file.

    The file is re-read on every fetch, so an external writer can append
    readings between polls.
    """

    def __init__(self, path: str | Path) -> None:
        self._path = Path(path)

    async def fetch(self) -> list[SensorReading]:
        text = await asyncio.to_thread(self._path.read_text, encoding="utf-8")
        data = json.loads(text)
        if isinstance(data, dict):
            return [data]
        if not isinstance(data, list):
            raise ValueError(f"{self._path} must contain a JSON object or array")
        return data


class AlertMonitor:
    """
    Runs the orchestrator on a poll interval and on pushed readings.

    Features:
    - Fixed-interval polling with prompt shutdown
    - Push handler sharing the same processing entry point
    - Cumulative alert counts by severity
    - A failed cycle is logged and the loop keeps going

    Usage:
        monitor = AlertMonitor(orchestrator, source)
        await monitor.start()  # Runs until stopped
    """

    def __init__(
        self,
        orchestrator: AlertOrchestrator,
        source: ReadingSource | None = None,
        interval: float | None = None,
        config: AlertConfig | None = None,
    ):
        """
        Initialize the monitor.

        Args:
            orchestrator: Orchestrator that processes each batch
            source: Reading source to poll (None disables polling)
            interval: Seconds between polls (default from config)
            config: Alert configuration
        """
        self._config = config or AlertConfig()
        self._orchestrator = orchestrator
        self._source = source
        self._interval = interval or self._config.poll_interval_seconds
        self._running = False
        self._stop_event = asyncio.Event()

        self._last_result: ProcessingResult | None = None
        self._alert_counts: Counter[str] = Counter()
        self._cycles = 0
        self._failures = 0

    @property
    def is_running(self) -> bool:
        return self._running

    @property
    def last_result(self) -> ProcessingResult | None:
        return self._last_result

    @property
    def alert_counts(self) -> dict[str, int]:
        """Alerts processed since start, by severity."""
        return {severity: self._alert_counts[severity] for severity in ("high", "medium", "low")}

    async def start(self, max_cycles: int | None = None) -> None:
        """
        Poll the reading source until stop() is called.

        Args:
            max_cycles: Stop after this many polls (None runs indefinitely)
        """
        if self._source is None:
            raise RuntimeError("AlertMonitor.start() requires a reading source")

        self._running = True
        self._stop_event.clear()
        logger.info("Starting alert monitor", interval=self._interval)

        try:
            polls = 0
            while self._running:
                await self.poll_once()
                polls += 1
                if max_cycles is not None and polls >= max_cycles:
                    break
                try:
                    await asyncio.wait_for(self._stop_event.wait(), timeout=self._interval)
                except asyncio.TimeoutError:
                    pass
        except asyncio.CancelledError:
            logger.info("Alert monitor cancelled")
            raise
        finally:
            self._running = False
            await self._orchestrator.drain()
            logger.info("Alert monitor stopped", cycles=self._cycles, failures=self._failures)

    async def stop(self) -> None:
        """Stop the poll loop after the current cycle."""
        logger.info("Stopping alert monitor")
        self._running = False
        self._stop_event.set()

    async def poll_once(self) -> ProcessingResult | None:
        """Fetch from the source and process the batch once."""
        try:
            readings = await self._source.fetch()
        except Exception as e:
            self._failures += 1
            logger.error("Failed to fetch sensor readings", error=str(e))
            return None
        return await self._process(readings, trigger="poll")

    async def on_readings(self, readings: Any) -> ProcessingResult | None:
        """Push handler for a data subscription."""
        return await self._process(readings, trigger="push")

    async def _process(self, readings: Any, trigger: str) -> ProcessingResult | None:
        try:
            result = await self._orchestrator.process_reading(readings, trigger=trigger)
        except CriticalPipelineError as e:
            self._failures += 1
            logger.error("Alert cycle failed", trigger=trigger, error=str(e))
            return None

        self._cycles += 1
        self._last_result = result
        self._alert_counts.update(a.severity for a in result.processed_alerts)

        if result.errors:
            logger.warning(
                "Alert cycle completed with errors",
                trigger=trigger,
                errors=[e.type for e in result.errors],
            )
        return result

    def get_stats(self) -> dict[str, Any]:
        """Get monitor statistics."""
        return {
            "running": self._running,
            "cycles": self._cycles,
            "failures": self._failures,
            "alert_counts": self.alert_counts,
            "last_data_signature": self._last_result.data_signature if self._last_result else None,
        }

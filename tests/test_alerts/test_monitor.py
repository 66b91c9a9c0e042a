"""Tests for the polling/push alert monitor and the JSON file source."""

import asyncio
import json

import pytest

from pondwatch.alerts.monitor import AlertMonitor, JsonFileSource
from pondwatch.alerts.orchestrator import build_orchestrator


class ScriptedSource:
    """Returns queued batches in order, repeating the last one; raises queued exceptions."""

    def __init__(self, *batches):
        self.batches = list(batches)
        self.fetches = 0

    async def fetch(self):
        item = self.batches[min(self.fetches, len(self.batches) - 1)]
        self.fetches += 1
        if isinstance(item, Exception):
            raise item
        return item


@pytest.fixture
def orchestrator(test_settings):
    return build_orchestrator(settings=test_settings)


# ── Push ─────────────────────────────────────────────────


class TestOnReadings:
    @pytest.mark.asyncio
    async def test_push_processes_batch(self, orchestrator):
        monitor = AlertMonitor(orchestrator)

        result = await monitor.on_readings([{"ph": 9.5}])

        assert len(result.processed_alerts) == 1
        assert monitor.last_result is result
        assert monitor.alert_counts == {"high": 1, "medium": 0, "low": 0}
        stats = monitor.get_stats()
        assert stats["cycles"] == 1
        assert stats["failures"] == 0
        assert stats["last_data_signature"] == result.data_signature

    @pytest.mark.asyncio
    async def test_critical_failure_returns_none(self, orchestrator):
        monitor = AlertMonitor(orchestrator)

        result = await monitor.on_readings([{"ph": 7.0}, "not a reading"])

        assert result is None
        assert monitor.last_result is None
        assert monitor.get_stats()["failures"] == 1

    @pytest.mark.asyncio
    async def test_push_and_poll_share_deduplication(self, orchestrator):
        source = ScriptedSource([{"ph": 9.5}])
        monitor = AlertMonitor(orchestrator, source=source)

        pushed = await monitor.on_readings([{"ph": 9.5}])
        polled = await monitor.poll_once()

        assert len(pushed.processed_alerts) == 1
        assert polled.processed_alerts == []
        assert len(polled.suppressed) == 1


# ── Polling ──────────────────────────────────────────────


class TestPolling:
    @pytest.mark.asyncio
    async def test_start_requires_source(self, orchestrator):
        with pytest.raises(RuntimeError, match="reading source"):
            await AlertMonitor(orchestrator).start()

    @pytest.mark.asyncio
    async def test_runs_max_cycles(self, orchestrator):
        source = ScriptedSource([{"ph": 9.5}], [{"ph": 9.5}], [{"temperature": 31.0}])
        monitor = AlertMonitor(orchestrator, source=source, interval=0.01)

        await asyncio.wait_for(monitor.start(max_cycles=3), timeout=2.0)

        assert source.fetches == 3
        assert monitor.alert_counts == {"high": 1, "medium": 1, "low": 0}
        assert monitor.is_running is False
        assert monitor.get_stats()["cycles"] == 3

    @pytest.mark.asyncio
    async def test_source_failure_does_not_stop_loop(self, orchestrator):
        source = ScriptedSource(RuntimeError("sensor offline"), [{"ph": 9.5}])
        monitor = AlertMonitor(orchestrator, source=source, interval=0.01)

        await asyncio.wait_for(monitor.start(max_cycles=2), timeout=2.0)

        stats = monitor.get_stats()
        assert stats["failures"] == 1
        assert stats["cycles"] == 1
        assert monitor.alert_counts["high"] == 1

    @pytest.mark.asyncio
    async def test_stop_interrupts_wait(self, orchestrator):
        source = ScriptedSource([{"temperature": 28.0}])
        monitor = AlertMonitor(orchestrator, source=source, interval=30.0)

        task = asyncio.create_task(monitor.start())
        while source.fetches == 0:
            await asyncio.sleep(0.01)
        assert monitor.is_running

        await monitor.stop()
        await asyncio.wait_for(task, timeout=2.0)

        assert monitor.is_running is False
        assert source.fetches == 1
        assert monitor.last_result.message == "No alerts generated"


# ── JsonFileSource ───────────────────────────────────────


class TestJsonFileSource:
    @pytest.mark.asyncio
    async def test_reads_array(self, tmp_path):
        path = tmp_path / "readings.json"
        path.write_text(json.dumps([{"ph": 7.0}, {"ph": 9.5}]), encoding="utf-8")

        assert await JsonFileSource(path).fetch() == [{"ph": 7.0}, {"ph": 9.5}]

    @pytest.mark.asyncio
    async def test_single_object_becomes_batch(self, tmp_path):
        path = tmp_path / "reading.json"
        path.write_text('{"ph": 9.5}', encoding="utf-8")

        assert await JsonFileSource(str(path)).fetch() == [{"ph": 9.5}]

    @pytest.mark.asyncio
    async def test_rereads_on_every_fetch(self, tmp_path):
        path = tmp_path / "readings.json"
        source = JsonFileSource(path)
        path.write_text("[]", encoding="utf-8")
        assert await source.fetch() == []

        path.write_text('[{"ph": 9.5}]', encoding="utf-8")
        assert await source.fetch() == [{"ph": 9.5}]

    @pytest.mark.asyncio
    async def test_rejects_scalar(self, tmp_path):
        path = tmp_path / "readings.json"
        path.write_text("42", encoding="utf-8")

        with pytest.raises(ValueError, match="JSON object or array"):
            await JsonFileSource(path).fetch()

    @pytest.mark.asyncio
    async def test_invalid_json(self, tmp_path):
        path = tmp_path / "readings.json"
        path.write_text("{not json", encoding="utf-8")

        with pytest.raises(ValueError):
            await JsonFileSource(path).fetch()

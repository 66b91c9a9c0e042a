"""Tests for AlertOrchestrator processing cycles, display and administration."""

import asyncio
from datetime import timedelta
from unittest.mock import AsyncMock, MagicMock

import pytest
import structlog

from pondwatch.alerts.channels import (
    DeliveryResult,
    HttpNotifier,
    LoggingNotifier,
    default_channels,
)
from pondwatch.alerts.config import AlertConfig
from pondwatch.alerts.dedup import SignatureWindow
from pondwatch.alerts.errors import CriticalPipelineError
from pondwatch.alerts.orchestrator import (
    NO_ALERTS_MESSAGE,
    AlertOrchestrator,
    build_orchestrator,
    data_signature,
    time_ago,
)
from pondwatch.alerts.repository import InMemoryAlertRepository
from pondwatch.alerts.router import NotificationRouter
from pondwatch.alerts.schemas import AlertDraft
from pondwatch.config.settings import Settings


class RecordingNotifier:
    """Notifier double that records calls and can fail or block on demand."""

    def __init__(self):
        self.calls: list[tuple[str, str]] = []
        self.failing: set[str] = set()
        self.entered = asyncio.Event()
        self.gate: asyncio.Event | None = None

    async def notify(self, parameter, value, alert_level):
        self.calls.append(("water_quality", parameter))
        self.entered.set()
        if self.gate is not None:
            await self.gate.wait()
        if parameter in self.failing:
            return DeliveryResult(success=False, error="relay down")
        return DeliveryResult(success=True, notification_id=f"wq-{len(self.calls)}")

    async def notify_device_status(self, device_name, kind, payload):
        self.calls.append(("device", payload["parameter"]))
        if payload["parameter"] in self.failing:
            raise RuntimeError("device relay down")
        return DeliveryResult(success=True, notification_id=f"dev-{len(self.calls)}")

    async def notify_weather_alert(self, status_text, code):
        self.calls.append(("weather", status_text))
        return DeliveryResult(success=True, notification_id=f"wx-{len(self.calls)}")


class SpyRepository(InMemoryAlertRepository):
    """In-memory repository that counts calls and can be made to fail."""

    def __init__(self):
        super().__init__()
        self.save_calls: list[list] = []
        self.get_calls = 0
        self.fail_saves = False

    async def save_alerts(self, alerts):
        self.save_calls.append(list(alerts))
        if self.fail_saves:
            raise RuntimeError("database unavailable")
        await super().save_alerts(alerts)

    async def get_alerts(self, **kwargs):
        self.get_calls += 1
        return await super().get_alerts(**kwargs)


class SlowReadRepository(InMemoryAlertRepository):
    """Repository whose reads wait until released while ``block`` is set."""

    def __init__(self):
        super().__init__()
        self.block = True
        self.entered = asyncio.Event()
        self.release = asyncio.Event()

    async def get_alerts(self, **kwargs):
        # Snapshot first so the read returns what was stored when it began
        alerts = await super().get_alerts(**kwargs)
        if self.block:
            self.entered.set()
            await self.release.wait()
        return alerts


@pytest.fixture
def notifier():
    return RecordingNotifier()


@pytest.fixture
def repository():
    return SpyRepository()


@pytest.fixture
def make_orchestrator(freshwater, repository, notifier, ms_clock, wall_clock):
    def _make(**kwargs) -> AlertOrchestrator:
        options = {
            "thresholds": freshwater,
            "repository": repository,
            "router": NotificationRouter(default_channels(notifier)),
            "config": AlertConfig(),
            "window": SignatureWindow(300_000, clock=ms_clock),
            "clock": wall_clock,
        }
        options.update(kwargs)
        return AlertOrchestrator(**options)

    return _make


@pytest.fixture
def orchestrator(make_orchestrator):
    return make_orchestrator()


# ── Fast path ────────────────────────────────────────────


class TestNoAlerts:
    @pytest.mark.asyncio
    async def test_normal_reading_short_circuits(self, orchestrator, repository, notifier):
        orchestrator.cache.set("display_all_all_20", ["stale"])

        result = await orchestrator.process_reading([{"ph": 7.2, "temperature": 28.0}])

        assert result.message == NO_ALERTS_MESSAGE
        assert result.processed_alerts == []
        assert result.errors == []
        assert result.data_signature is not None
        assert repository.save_calls == []
        assert notifier.calls == []
        assert len(orchestrator.cache) == 1

    @pytest.mark.asyncio
    async def test_empty_batch(self, orchestrator, repository):
        result = await orchestrator.process_reading([])
        assert result.message == NO_ALERTS_MESSAGE
        assert repository.save_calls == []


# ── Full cycle ───────────────────────────────────────────


class TestProcessReading:
    @pytest.mark.asyncio
    async def test_critical_ph(self, orchestrator, repository, notifier):
        orchestrator.cache.set("display_all_all_20", ["stale"])

        result = await orchestrator.process_reading([{"ph": 9.5}])

        assert result.message is None
        assert len(result.processed_alerts) == 1
        alert = result.processed_alerts[0]
        assert (alert.parameter, alert.alert_level, alert.severity) == ("ph", "critical", "high")
        assert alert.priority == 140
        assert alert.urgency == "immediate"
        assert result.new_alerts == result.processed_alerts

        assert repository.save_calls == [[alert]]
        assert notifier.calls == [("water_quality", "ph")]
        assert [(n.alert_id, n.channel) for n in result.notifications] == [
            (alert.id, "water_quality_alert"),
        ]
        assert result.errors == []
        assert len(orchestrator.cache) == 0

    @pytest.mark.asyncio
    async def test_processed_alerts_follow_priority_order(self, orchestrator):
        result = await orchestrator.process_reading(
            [{"turbidity": 75.0, "temperature": 31.0, "ph": 9.5}]
        )
        assert [a.parameter for a in result.processed_alerts] == ["ph", "temperature", "turbidity"]
        assert [a.priority for a in result.processed_alerts] == [140, 85, 80]

    @pytest.mark.asyncio
    async def test_every_alert_is_abnormal(self, orchestrator):
        result = await orchestrator.process_reading(
            [{"ph": 9.5, "temperature": 28.0, "salinity": 6.0, "humidity": 50.0}]
        )
        assert {a.alert_level for a in result.processed_alerts} <= {"warning", "critical"}
        assert [a.parameter for a in result.processed_alerts] == ["ph", "salinity"]

    @pytest.mark.asyncio
    async def test_warning_is_saved_but_not_notified(self, orchestrator, repository, notifier):
        result = await orchestrator.process_reading([{"temperature": 31.0}])

        assert [a.severity for a in result.processed_alerts] == ["medium"]
        assert len(repository) == 1
        assert notifier.calls == []
        assert result.notifications == []

    @pytest.mark.asyncio
    async def test_weather_alert_notifies_by_default(self, orchestrator, notifier):
        result = await orchestrator.process_reading([{"isRaining": 2}])

        alert = result.processed_alerts[0]
        assert (alert.severity, alert.category) == ("low", "weather")
        assert notifier.calls == [("weather", "Heavy Rain")]
        assert result.notifications[0].channel == "weather_alert"

    @pytest.mark.asyncio
    async def test_weather_notifications_can_be_disabled(self, make_orchestrator, notifier):
        orchestrator = make_orchestrator(config=AlertConfig(notify_weather_alerts=False))
        result = await orchestrator.process_reading([{"isRaining": 2}])

        assert len(result.processed_alerts) == 1
        assert notifier.calls == []

    @pytest.mark.asyncio
    async def test_device_alert_uses_device_channel(self, orchestrator, notifier):
        result = await orchestrator.process_reading([{"datmTemp": 60.0}])
        assert notifier.calls == [("device", "datm_temp")]
        assert result.notifications[0].channel == "device_status_alert"


# ── Deduplication ────────────────────────────────────────


class TestDeduplication:
    @pytest.mark.asyncio
    async def test_repeat_inside_window_is_suppressed(self, orchestrator, repository, notifier):
        first = await orchestrator.process_reading([{"ph": 9.5}])
        second = await orchestrator.process_reading([{"ph": 9.5}])

        assert len(first.processed_alerts) == 1
        assert second.processed_alerts == []
        assert second.new_alerts == []
        assert [d.signature for d in second.suppressed] == ["ph-critical-9.5"]
        assert second.errors == []
        assert len(repository.save_calls) == 1
        assert len(notifier.calls) == 1

    @pytest.mark.asyncio
    async def test_repeat_after_window_fires_again(self, orchestrator, ms_clock):
        await orchestrator.process_reading([{"ph": 9.5}])
        ms_clock.advance(300_001)
        result = await orchestrator.process_reading([{"ph": 9.5}])
        assert len(result.processed_alerts) == 1

    @pytest.mark.asyncio
    async def test_level_change_is_a_new_alert(self, orchestrator):
        await orchestrator.process_reading([{"ph": 8.7}])
        result = await orchestrator.process_reading([{"ph": 9.5}])
        assert [a.alert_level for a in result.processed_alerts] == ["critical"]

    @pytest.mark.asyncio
    async def test_reset_deduplication(self, orchestrator):
        await orchestrator.process_reading([{"ph": 9.5}])
        orchestrator.reset_deduplication()
        result = await orchestrator.process_reading([{"ph": 9.5}])
        assert len(result.processed_alerts) == 1

    @pytest.mark.asyncio
    async def test_overlapping_invocations_deliver_once(self, orchestrator, repository, notifier):
        reading = [{"ph": 9.5, "temperature": 36.0}]

        results = await asyncio.gather(
            orchestrator.process_reading(reading, trigger="poll"),
            orchestrator.process_reading(reading, trigger="push"),
        )

        assert sum(len(r.processed_alerts) for r in results) == 2
        assert sum(len(r.suppressed) for r in results) == 2
        assert len(repository) == 2
        assert sorted(notifier.calls) == [("water_quality", "ph"), ("water_quality", "temperature")]


# ── Partial failures ─────────────────────────────────────


class TestPartialFailures:
    @pytest.mark.asyncio
    async def test_persistence_failure_does_not_block_notification(self, orchestrator, repository, notifier):
        repository.fail_saves = True

        result = await orchestrator.process_reading([{"ph": 9.5}])

        assert len(result.processed_alerts) == 1
        assert [e.type for e in result.errors] == ["persistence_error"]
        assert "database unavailable" in result.errors[0].message
        assert notifier.calls == [("water_quality", "ph")]
        assert len(result.notifications) == 1

    @pytest.mark.asyncio
    async def test_one_channel_failing_does_not_block_another(self, orchestrator, notifier):
        notifier.failing = {"ph"}

        result = await orchestrator.process_reading([{"ph": 9.5, "datm_temp": 60.0}])

        assert [n.channel for n in result.notifications] == ["device_status_alert"]
        assert len(result.errors) == 1
        error = result.errors[0]
        assert error.type == "notification_error"
        assert error.stage == "water_quality_alert"
        assert error.parameter == "ph"

    @pytest.mark.asyncio
    async def test_notifier_exception_is_recorded(self, orchestrator, notifier):
        notifier.failing = {"datm_temp"}
        result = await orchestrator.process_reading([{"datm_temp": 60.0}])
        assert result.errors_of_type("notification_error")[0].stage == "device_status_alert"

    @pytest.mark.asyncio
    async def test_generation_failure_is_critical(self, orchestrator, repository):
        with pytest.raises(CriticalPipelineError) as exc_info:
            await orchestrator.process_reading([{"ph": 7.0}, 5])
        assert isinstance(exc_info.value.__cause__, TypeError)
        assert repository.save_calls == []

    @pytest.mark.asyncio
    async def test_router_crash_is_critical(self, make_orchestrator):
        router = MagicMock()
        router.dispatch = AsyncMock(side_effect=RuntimeError("router bug"))
        orchestrator = make_orchestrator(router=router)

        assert await orchestrator.get_alerts_for_display() == []

        with pytest.raises(CriticalPipelineError, match="router bug"):
            await orchestrator.process_reading([{"ph": 9.5}])

        # Saved before the router ran, so the display must show it
        display = await orchestrator.get_alerts_for_display()
        assert [d.alert.parameter for d in display] == ["ph"]


# ── Custom processors ────────────────────────────────────


class TestCustomProcessors:
    @pytest.mark.asyncio
    async def test_failing_processor_passes_input_through(self, orchestrator):
        class Exploding:
            name = "exploding"

            def process(self, alerts):
                alerts[0].value = 0.0
                raise RuntimeError("boom")

        orchestrator.add_processor(Exploding())
        result = await orchestrator.process_reading([{"ph": 9.5}])

        assert [a.value for a in result.processed_alerts] == [9.5]
        assert [(e.type, e.stage) for e in result.errors] == [("processor_stage_error", "exploding")]
        assert "boom" in result.errors[0].message

    @pytest.mark.asyncio
    async def test_non_list_result_is_a_stage_error(self, orchestrator):
        class ReturnsNothing:
            def process(self, alerts):
                return None

        orchestrator.add_processor(ReturnsNothing())
        result = await orchestrator.process_reading([{"ph": 9.5}])

        assert len(result.processed_alerts) == 1
        assert result.errors[0].stage == "ReturnsNothing"
        assert "expected a list" in result.errors[0].message

    @pytest.mark.asyncio
    async def test_async_processor_can_filter(self, make_orchestrator):
        class DropTemperature:
            async def process(self, alerts):
                return [a for a in alerts if a.parameter != "temperature"]

        orchestrator = make_orchestrator(processors=[DropTemperature()])
        result = await orchestrator.process_reading([{"ph": 9.5, "temperature": 36.0}])

        assert [a.parameter for a in result.processed_alerts] == ["ph"]
        assert result.errors == []

    @pytest.mark.asyncio
    async def test_processors_run_in_order(self, orchestrator):
        seen = []

        class Recorder:
            def __init__(self, tag):
                self.name = tag

            def process(self, alerts):
                seen.append(self.name)
                return alerts

        orchestrator.add_processor(Recorder("first"))
        orchestrator.add_processor(Recorder("second"))
        await orchestrator.process_reading([{"ph": 9.5}])
        assert seen == ["first", "second"]

    @pytest.mark.asyncio
    async def test_malformed_injected_draft_fails_enrichment_only(self, orchestrator):
        class Injector:
            def process(self, alerts):
                return alerts + [AlertDraft(parameter="ph", value="junk", level="critical", timestamp=None)]

        orchestrator.add_processor(Injector())
        result = await orchestrator.process_reading([{"temperature": 36.0}])

        assert [a.parameter for a in result.processed_alerts] == ["temperature"]
        assert [(e.type, e.stage) for e in result.errors] == [("processor_stage_error", "enrichment")]

    @pytest.mark.asyncio
    async def test_cycle_fields_are_bound_while_processing(self, orchestrator):
        seen = {}

        class ContextRecorder:
            def process(self, alerts):
                seen.update(structlog.contextvars.get_contextvars())
                return alerts

        orchestrator.add_processor(ContextRecorder())
        result = await orchestrator.process_reading([{"ph": 9.5}], trigger="poll")

        assert seen["trigger"] == "poll"
        assert seen["data_signature"] == result.data_signature
        assert "trigger" not in structlog.contextvars.get_contextvars()

    def test_add_processor_requires_process(self, orchestrator):
        with pytest.raises(TypeError, match="process"):
            orchestrator.add_processor(object())
        assert orchestrator.processors == []


# ── Cancellation ─────────────────────────────────────────


class TestCancellation:
    @pytest.mark.asyncio
    async def test_cancelled_caller_does_not_abort_cycle(self, orchestrator, repository, notifier):
        notifier.gate = asyncio.Event()

        caller = asyncio.create_task(orchestrator.process_reading([{"ph": 9.5}]))
        await asyncio.wait_for(notifier.entered.wait(), timeout=2.0)
        caller.cancel()
        with pytest.raises(asyncio.CancelledError):
            await caller

        notifier.gate.set()
        await asyncio.wait_for(orchestrator.drain(), timeout=2.0)

        assert len(repository) == 1
        assert notifier.calls == [("water_quality", "ph")]


# ── Metrics ──────────────────────────────────────────────


class TestMetrics:
    @pytest.mark.asyncio
    async def test_cycle_is_recorded(self, make_orchestrator):
        metrics = MagicMock()
        orchestrator = make_orchestrator(metrics=metrics)

        await orchestrator.process_reading([{"ph": 9.5}], trigger="poll")

        metrics.drafts_generated.labels.assert_called_with(parameter="ph")
        kwargs = metrics.record_cycle.call_args.kwargs
        assert kwargs["trigger"] == "poll"
        assert kwargs["processed_severities"] == ["high"]
        assert kwargs["channels"] == ["water_quality_alert"]

    @pytest.mark.asyncio
    async def test_metrics_failure_never_fails_cycle(self, make_orchestrator):
        metrics = MagicMock()
        metrics.record_cycle.side_effect = RuntimeError("registry broken")
        orchestrator = make_orchestrator(metrics=metrics)

        result = await orchestrator.process_reading([{"ph": 9.5}])
        assert len(result.processed_alerts) == 1
        assert result.errors == []


# ── Display ──────────────────────────────────────────────


class TestDisplay:
    @pytest.mark.asyncio
    async def test_display_decorations(self, orchestrator):
        await orchestrator.process_reading([{"ph": 9.5, "temperature": 31.0}])

        display = await orchestrator.get_alerts_for_display()

        assert [d.alert.parameter for d in display] == ["ph", "temperature"]
        top = display[0]
        assert top.display_message == "Critical: pH Level is 9.50 (critical)"
        assert top.time_ago == "Just now"
        assert top.action_required == "immediate"
        assert top.priority == 140
        assert display[1].action_required == "soon"
        assert top.to_dict()["display_message"] == top.display_message

    @pytest.mark.asyncio
    async def test_weather_display_message(self, orchestrator):
        await orchestrator.process_reading([{"is_raining": 1}])
        display = await orchestrator.get_alerts_for_display()
        assert display[0].display_message == "Weather: Raining"
        assert display[0].action_required == "monitor"

    @pytest.mark.asyncio
    async def test_results_are_cached_until_next_cycle(self, orchestrator, repository):
        await orchestrator.process_reading([{"ph": 9.5}])

        first = await orchestrator.get_alerts_for_display(severity="high")
        second = await orchestrator.get_alerts_for_display(severity="high")
        assert first == second
        assert repository.get_calls == 1

        await orchestrator.get_alerts_for_display(severity="high", use_cache=False)
        assert repository.get_calls == 2

        await orchestrator.process_reading([{"temperature": 36.0}])
        refreshed = await orchestrator.get_alerts_for_display(severity="high")
        assert repository.get_calls == 3
        assert len(refreshed) == 2

    @pytest.mark.asyncio
    async def test_parameter_filter_accepts_aliases(self, orchestrator):
        await orchestrator.process_reading([{"ph": 9.5, "temperature": 36.0}])
        display = await orchestrator.get_alerts_for_display(parameter="pH")
        assert [d.alert.parameter for d in display] == ["ph"]

    @pytest.mark.asyncio
    async def test_age_lowers_display_priority(self, orchestrator, wall_clock):
        await orchestrator.process_reading([{"ph": 9.5}])
        wall_clock.advance(timedelta(hours=2))

        display = await orchestrator.get_alerts_for_display(use_cache=False)

        assert display[0].time_ago == "2 hr ago"
        assert display[0].priority == 130

    @pytest.mark.asyncio
    async def test_limit(self, orchestrator):
        await orchestrator.process_reading([{"ph": 9.5, "temperature": 36.0, "turbidity": 120.0}])
        display = await orchestrator.get_alerts_for_display(limit=2)
        assert len(display) == 2

    @pytest.mark.asyncio
    async def test_zero_limit_returns_nothing(self, orchestrator):
        await orchestrator.process_reading([{"ph": 9.5}])
        assert await orchestrator.get_alerts_for_display(limit=0) == []

    @pytest.mark.asyncio
    async def test_read_overlapping_a_cycle_is_not_cached(self, make_orchestrator):
        repository = SlowReadRepository()
        orchestrator = make_orchestrator(repository=repository)

        stale_read = asyncio.create_task(orchestrator.get_alerts_for_display())
        await repository.entered.wait()
        await orchestrator.process_reading([{"ph": 9.5}])
        repository.block = False
        repository.release.set()
        assert await stale_read == []

        display = await orchestrator.get_alerts_for_display()
        assert [d.alert.parameter for d in display] == ["ph"]


class TestTimeAgo:
    @pytest.mark.parametrize(
        "delta,expected",
        [
            (timedelta(seconds=30), "Just now"),
            (timedelta(minutes=5), "5 min ago"),
            (timedelta(hours=3), "3 hr ago"),
            (timedelta(days=1, hours=2), "1 day ago"),
            (timedelta(days=3), "3 days ago"),
        ],
    )
    def test_buckets(self, fixed_now, delta, expected):
        assert time_ago(fixed_now - delta, fixed_now) == expected


class TestDataSignature:
    def test_ignores_timestamps(self):
        a = data_signature([{"datetime": "2026-03-01T12:00:00Z", "ph": 7.0}])
        b = data_signature([{"datetime": "2026-03-01T12:05:00Z", "ph": 7.0}])
        assert a == b

    def test_changes_with_values(self):
        assert data_signature([{"ph": 7.0}]) != data_signature([{"ph": 7.1}])

    def test_key_order_does_not_matter(self):
        assert data_signature([{"ph": 7.0, "temperature": 28}]) == data_signature(
            [{"temperature": 28, "ph": 7.0}]
        )

    def test_non_batch(self):
        assert data_signature(None) is None
        assert data_signature("ph=7") is None

    def test_single_mapping_is_a_batch(self):
        assert data_signature({"ph": 7.0}) == data_signature([{"ph": 7.0}])


# ── Administration ───────────────────────────────────────


class TestUpdateThresholds:
    @pytest.mark.asyncio
    async def test_new_threshold_applies_and_cache_is_dropped(self, orchestrator):
        orchestrator.cache.set("display_all_all_20", ["stale"])

        applied = orchestrator.update_thresholds({"pH": {"min": 6.5, "max": 9.6}})

        assert applied["ph"].critical_max == pytest.approx(10.1)
        assert len(orchestrator.cache) == 0
        result = await orchestrator.process_reading([{"ph": 9.5}])
        assert result.message == NO_ALERTS_MESSAGE

    def test_invalid_update_raises(self, orchestrator):
        with pytest.raises(ValueError):
            orchestrator.update_thresholds({"ph": {"min": 9, "max": 6}})


class TestSelfTest:
    @pytest.mark.asyncio
    async def test_self_test(self, orchestrator, notifier):
        report = await orchestrator.run_self_test()

        assert report.success is True
        assert report.message == "Generated 3 test alerts"
        assert [a.parameter for a in report.result.processed_alerts] == ["ph", "temperature", "turbidity"]
        assert sorted(notifier.calls) == [("water_quality", "ph"), ("water_quality", "temperature")]

    @pytest.mark.asyncio
    async def test_self_test_reports_critical_failure(self, make_orchestrator):
        orchestrator = make_orchestrator()
        orchestrator._generator = MagicMock()
        orchestrator._generator.generate.side_effect = RuntimeError("sensor map broken")

        report = await orchestrator.run_self_test()

        assert report.success is False
        assert "sensor map broken" in report.error


class TestBuildOrchestrator:
    @pytest.mark.asyncio
    async def test_logging_notifier_without_relay(self, test_settings):
        orchestrator = build_orchestrator(settings=test_settings)

        report = await orchestrator.run_self_test()

        assert report.success is True
        assert all(n.notification_id.startswith("log-") for n in report.result.notifications)

    def test_http_notifier_with_relay(self):
        settings = Settings(notifier_url="http://relay.test", notifier_api_key="k")
        orchestrator = build_orchestrator(settings=settings)
        notifiers = {type(c._notifier) for c in orchestrator._router.channels}
        assert notifiers == {HttpNotifier}

    def test_water_type_preset(self, test_settings):
        orchestrator = build_orchestrator(
            config=AlertConfig(water_type="saltwater"), settings=test_settings,
        )
        assert orchestrator.thresholds.get_threshold("salinity").min == 15.0

    def test_injected_collaborators(self, test_settings):
        repository = InMemoryAlertRepository()
        notifier = LoggingNotifier()
        orchestrator = build_orchestrator(settings=test_settings, repository=repository, notifier=notifier)
        assert orchestrator.repository is repository

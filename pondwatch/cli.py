"""
Command-line interface for pondwatch.

Provides commands to inspect thresholds, classify single values,
exercise the alert pipeline end to end, and replay or watch a file
of sensor readings.

Usage:
    pondwatch evaluate ph 9.2            # Classify one value
    pondwatch thresholds                 # Show active thresholds
    pondwatch self-test                  # Run the canned alert reading
    pondwatch monitor --file data.json   # Replay readings through the pipeline
"""

import asyncio
import signal
import sys

import click

from pondwatch.alerts.config import AlertConfig
from pondwatch.alerts.monitor import AlertMonitor, JsonFileSource
from pondwatch.alerts.orchestrator import build_orchestrator
from pondwatch.alerts.schemas import ProcessingResult
from pondwatch.alerts.thresholds import WATER_TYPE_PRESETS, ThresholdStore, threshold_key
from pondwatch.config.settings import get_settings
from pondwatch.observability.logging import setup_logging
from pondwatch.observability.metrics import get_metrics

LEVEL_COLORS = {
    "normal": "green",
    "warning": "yellow",
    "critical": "red",
}

WATER_TYPE_OPTION = click.option(
    "--water-type",
    type=click.Choice(sorted(WATER_TYPE_PRESETS)),
    default=None,
    help="Threshold preset (default from ALERTS_WATER_TYPE)",
)


def _alert_config(water_type: str | None) -> AlertConfig:
    config = AlertConfig()
    if water_type:
        config = config.model_copy(update={"water_type": water_type})
    return config


def _bound(value: float | None) -> str:
    return "-" if value is None else f"{value:g}"


def _echo_result(result: ProcessingResult) -> None:
    if result.message:
        click.echo(result.message)
    for alert in result.processed_alerts:
        color = LEVEL_COLORS.get(alert.alert_level, "white")
        click.echo(click.style(f"  [{alert.severity}] {alert.title}", fg=color))
        click.echo(f"      {alert.message}")
    if result.suppressed:
        click.echo(f"  {len(result.suppressed)} duplicate(s) suppressed")
    for receipt in result.notifications:
        click.echo(f"  notified via {receipt.channel}: {receipt.parameter}")
    for error in result.errors:
        click.echo(click.style(f"  ✗ {error.type}: {error.message}", fg="red"))


@click.group()
@click.option("--debug", is_flag=True, help="Enable debug logging")
def main(debug: bool) -> None:
    """Pondwatch - Water-quality alerting for aquaculture ponds."""
    if debug:
        import os
        os.environ["DEBUG"] = "true"
        get_settings.cache_clear()

    setup_logging()


@main.command()
@click.argument("parameter")
@click.argument("value", type=float)
@WATER_TYPE_OPTION
def evaluate(parameter: str, value: float, water_type: str | None) -> None:
    """Classify a single VALUE for PARAMETER."""
    config = _alert_config(water_type)
    store = ThresholdStore.for_water_type(config.water_type)

    threshold = store.get_threshold(parameter)
    if threshold is None:
        click.echo(click.style(f"No threshold configured for {parameter!r}", fg="yellow"))

    level = store.evaluate(parameter, value)
    key = threshold_key(parameter) or parameter
    click.echo(f"{key} = {value:g}: " + click.style(level, fg=LEVEL_COLORS[level], bold=True))


@main.command()
@WATER_TYPE_OPTION
def thresholds(water_type: str | None) -> None:
    """Show the active thresholds."""
    config = _alert_config(water_type)
    store = ThresholdStore.for_water_type(config.water_type)

    click.echo(f"Thresholds ({config.water_type}):")
    click.echo(f"  {'parameter':<12} {'min':>8} {'max':>8} {'crit min':>9} {'crit max':>9}")
    for name, threshold in sorted(store.all_thresholds().items()):
        click.echo(
            f"  {name:<12} {_bound(threshold.min):>8} {_bound(threshold.max):>8} "
            f"{_bound(threshold.critical_min):>9} {_bound(threshold.critical_max):>9}"
        )


@main.command("self-test")
@WATER_TYPE_OPTION
def self_test(water_type: str | None) -> None:
    """Process a deliberately out-of-range reading end to end."""

    async def run():
        orchestrator = build_orchestrator(config=_alert_config(water_type))
        return await orchestrator.run_self_test()

    report = asyncio.run(run())
    if not report.success:
        click.echo(click.style(f"✗ {report.message}: {report.error}", fg="red"))
        sys.exit(1)

    click.echo(click.style(f"✓ {report.message}", fg="green"))
    _echo_result(report.result)


@main.command()
@click.option(
    "--file",
    "path",
    required=True,
    type=click.Path(exists=True, dir_okay=False),
    help="JSON array of sensor readings, oldest first",
)
@click.option("--watch", is_flag=True, help="Keep polling the file instead of replaying it once")
@click.option("--interval", default=None, type=float, help="Seconds between polls with --watch")
@WATER_TYPE_OPTION
def monitor(path: str, watch: bool, interval: float | None, water_type: str | None) -> None:
    """Feed a file of sensor readings through the alert pipeline."""
    config = _alert_config(water_type)
    settings = get_settings()

    async def replay() -> int:
        orchestrator = build_orchestrator(config=config, settings=settings)
        alert_monitor = AlertMonitor(orchestrator, config=config)
        readings = await JsonFileSource(path).fetch()

        failures = 0
        for index, reading in enumerate(readings, start=1):
            result = await alert_monitor.on_readings([reading])
            click.echo(f"Reading {index}/{len(readings)}:")
            if result is None:
                failures += 1
                click.echo(click.style("  ✗ processing failed", fg="red"))
            else:
                _echo_result(result)

        counts = alert_monitor.alert_counts
        click.echo(
            f"\nAlerts: {counts['high']} high, {counts['medium']} medium, {counts['low']} low"
        )
        return 1 if failures else 0

    async def watch_file() -> int:
        orchestrator = build_orchestrator(config=config, settings=settings)
        alert_monitor = AlertMonitor(
            orchestrator, source=JsonFileSource(path), interval=interval, config=config,
        )

        if settings.metrics_enabled:
            get_metrics().start_server()

        # Handle shutdown signals
        loop = asyncio.get_event_loop()
        for sig in (signal.SIGTERM, signal.SIGINT):
            loop.add_signal_handler(sig, lambda: asyncio.create_task(alert_monitor.stop()))

        await alert_monitor.start()
        return 0

    try:
        exit_code = asyncio.run(watch_file() if watch else replay())
    except ValueError as e:
        click.echo(click.style(f"✗ Could not read {path}: {e}", fg="red"))
        sys.exit(1)
    if exit_code != 0:
        sys.exit(exit_code)


if __name__ == "__main__":
    main()

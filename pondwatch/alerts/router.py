"""Category-based notification fan-out.

Partitions alerts into disjoint groups, one per channel, and dispatches
the groups concurrently. Inside a group alerts are sent one at a time.
A failure is recorded against the single alert it hit; it never stops
the rest of its group or any other group.
"""

import asyncio
import logging
from dataclasses import dataclass, field

from pondwatch.alerts.channels import NotificationChannel
from pondwatch.alerts.errors import ErrorType, NotificationError
from pondwatch.alerts.schemas import Alert, NotificationReceipt, PipelineError

logger = logging.getLogger(__name__)


@dataclass
class DispatchReport:
    """Receipts and errors collected from one dispatch."""

    receipts: list[NotificationReceipt] = field(default_factory=list)
    errors: list[PipelineError] = field(default_factory=list)
    unrouted: list[Alert] = field(default_factory=list)


class NotificationRouter:
    """Routes each alert to the first channel that accepts it."""

    def __init__(self, channels: list[NotificationChannel]) -> None:
        names = [c.name for c in channels]
        if len(set(names)) != len(names):
            raise ValueError(f"Channel names must be unique, got {names}")
        self._channels = list(channels)

    @property
    def channels(self) -> list[NotificationChannel]:
        return list(self._channels)

    def partition(
        self, alerts: list[Alert]
    ) -> tuple[dict[str, list[Alert]], list[Alert]]:
        """Split alerts into disjoint per-channel groups.

        Returns:
            ``(groups, unrouted)`` where ``groups`` maps channel name to its
            alerts in input order, and ``unrouted`` holds alerts no channel
            accepted.
        """
        groups: dict[str, list[Alert]] = {c.name: [] for c in self._channels}
        unrouted: list[Alert] = []
        for alert in alerts:
            channel = next((c for c in self._channels if c.accepts(alert)), None)
            if channel is None:
                unrouted.append(alert)
            else:
                groups[channel.name].append(alert)
        return groups, unrouted

    async def dispatch(self, alerts: list[Alert]) -> DispatchReport:
        """Send every alert through its channel.

        Args:
            alerts: Alerts already selected for notification.

        Returns:
            DispatchReport with one receipt per success and one error per failure.
        """
        report = DispatchReport()
        if not alerts:
            return report

        groups, report.unrouted = self.partition(alerts)
        for alert in report.unrouted:
            logger.warning("No notification channel for alert %s (%s)", alert.id, alert.category)

        channels = {c.name: c for c in self._channels}
        outcomes = await asyncio.gather(
            *(
                self._dispatch_group(channels[name], group)
                for name, group in groups.items()
                if group
            )
        )
        for receipts, errors in outcomes:
            report.receipts.extend(receipts)
            report.errors.extend(errors)

        if report.errors:
            logger.warning(
                "Notification dispatch: %d delivered, %d failed",
                len(report.receipts), len(report.errors),
            )
        return report

    async def _dispatch_group(
        self,
        channel: NotificationChannel,
        alerts: list[Alert],
    ) -> tuple[list[NotificationReceipt], list[PipelineError]]:
        receipts: list[NotificationReceipt] = []
        errors: list[PipelineError] = []

        for alert in alerts:
            try:
                receipts.append(await channel.send(alert))
            except NotificationError as e:
                logger.error("Notification for alert %s failed on %s: %s", alert.id, channel.name, e)
                errors.append(
                    PipelineError(
                        type=ErrorType.NOTIFICATION.value,
                        message=str(e),
                        stage=channel.name,
                        alert_id=alert.id,
                        parameter=alert.parameter,
                    )
                )
        return receipts, errors

"""Alert persistence.

Durable storage is an external collaborator behind the ``AlertStore``
protocol: one batch write per processing cycle and a filtered read for
display. ``InMemoryAlertRepository`` is the reference implementation used
by the CLI and tests.
"""

import asyncio
import logging
from typing import Protocol

from pondwatch.alerts.errors import PersistenceError
from pondwatch.alerts.schemas import Alert

logger = logging.getLogger(__name__)


class AlertStore(Protocol):
    """External persistence capability."""

    async def save_alerts(self, alerts: list[Alert]) -> None:
        ...

    async def get_alerts(
        self,
        *,
        limit: int = 20,
        severity: str | None = None,
        parameter: str | None = None,
    ) -> list[Alert]:
        ...


class InMemoryAlertRepository:
    """Process-local alert store with the same filtering as the real one.

    Alerts are immutable, so saving an id that already exists is rejected
    rather than treated as an update.
    """

    def __init__(self, max_alerts: int = 1000) -> None:
        self._alerts: list[Alert] = []
        self._ids: set[str] = set()
        self._max_alerts = max_alerts
        self._lock = asyncio.Lock()

    def __len__(self) -> int:
        return len(self._alerts)

    async def save_alerts(self, alerts: list[Alert]) -> None:
        """Append a batch of alerts atomically.

        Raises:
            PersistenceError: If any alert id is already stored (nothing is saved).
        """
        async with self._lock:
            clashes = [a.id for a in alerts if a.id in self._ids]
            if clashes:
                raise PersistenceError(f"Alerts already stored: {clashes}")
            self._alerts.extend(alerts)
            self._ids.update(a.id for a in alerts)

            overflow = len(self._alerts) - self._max_alerts
            if overflow > 0:
                dropped = self._alerts[:overflow]
                del self._alerts[:overflow]
                self._ids.difference_update(a.id for a in dropped)
        logger.debug("Stored %d alerts (total=%d)", len(alerts), len(self._alerts))

    async def get_alerts(
        self,
        *,
        limit: int = 20,
        severity: str | None = None,
        parameter: str | None = None,
    ) -> list[Alert]:
        """Get recent alerts with optional filtering.

        Args:
            limit: Maximum alerts to return.
            severity: Filter by severity.
            parameter: Filter by parameter name.

        Returns:
            Alerts ordered by timestamp descending.
        """
        matches = [
            a for a in self._alerts
            if (severity is None or a.severity == severity)
            and (parameter is None or a.parameter == parameter)
        ]
        matches.sort(key=lambda a: (a.timestamp, a.created_at), reverse=True)
        return matches[:limit]

    async def get_by_id(self, alert_id: str) -> Alert | None:
        return next((a for a in self._alerts if a.id == alert_id), None)

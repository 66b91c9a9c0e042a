"""Notification channels for alert delivery.

The actual push transport is an external collaborator behind the
``Notifier`` protocol, which exposes the three call shapes the mobile
relay understands: water-quality alerts, device status and weather.

One ``NotificationChannel`` exists per alert category group. Each knows
which alerts it accepts and how to turn one alert into its notifier call,
so the router never branches on parameter names.
"""

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Protocol

import httpx

from pondwatch.alerts import templates
from pondwatch.alerts.errors import NotificationError
from pondwatch.alerts.schemas import Alert, NotificationReceipt

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class DeliveryResult:
    """What a notifier reports back for one send."""

    success: bool
    notification_id: str | None = None
    error: str | None = None


class Notifier(Protocol):
    """External notification-send capability."""

    async def notify(self, parameter: str, value: float, alert_level: str) -> DeliveryResult:
        ...

    async def notify_device_status(
        self, device_name: str, kind: str, payload: dict[str, Any]
    ) -> DeliveryResult:
        ...

    async def notify_weather_alert(self, status_text: str, code: int) -> DeliveryResult:
        ...


class HttpNotifier:
    """Sends notifications through the FCM relay's HTTP API.

    Water-quality alerts go to ``POST /alert``; device and weather
    notifications go to ``POST /custom``. Creates a new
    ``httpx.AsyncClient`` per call (short-lived, no pooling). Retry and
    timeout policy belong here, not in the alert pipeline.
    """

    def __init__(
        self,
        base_url: str,
        api_key: str | None = None,
        device_token: str | None = None,
        timeout: float = 10.0,
    ) -> None:
        self._base_url = base_url.rstrip("/")
        self._headers = {"x-api-key": api_key} if api_key else {}
        self._device_token = device_token
        self._timeout = timeout

    async def _post(self, path: str, payload: dict[str, Any]) -> DeliveryResult:
        url = f"{self._base_url}{path}"
        try:
            async with httpx.AsyncClient(timeout=self._timeout) as client:
                resp = await client.post(url, json=payload, headers=self._headers)
        except httpx.TimeoutException:
            logger.warning("Notification relay %s timed out", url)
            return DeliveryResult(success=False, error="timeout")
        except httpx.HTTPError as e:
            logger.warning("Notification relay %s failed: %s", url, e)
            return DeliveryResult(success=False, error=str(e))

        if not resp.is_success:
            logger.warning("Notification relay %s returned %d", url, resp.status_code)
            return DeliveryResult(success=False, error=f"HTTP {resp.status_code}")

        try:
            body = resp.json()
        except ValueError:
            body = {}
        if not isinstance(body, dict):
            body = {}
        return DeliveryResult(success=True, notification_id=body.get("messageId"))

    async def notify(self, parameter: str, value: float, alert_level: str) -> DeliveryResult:
        return await self._post(
            "/alert",
            {
                "fcmToken": self._device_token,
                "sensorData": {
                    "parameter": parameter,
                    "value": value,
                    "alertLevel": alert_level,
                },
            },
        )

    async def notify_device_status(
        self, device_name: str, kind: str, payload: dict[str, Any]
    ) -> DeliveryResult:
        return await self._post(
            "/custom",
            {
                "fcmToken": self._device_token,
                "title": f"{device_name} Status Alert",
                "body": payload.get("message", kind),
                "data": {"type": kind, "deviceName": device_name, **payload},
            },
        )

    async def notify_weather_alert(self, status_text: str, code: int) -> DeliveryResult:
        return await self._post(
            "/custom",
            {
                "fcmToken": self._device_token,
                "title": f"Weather Update: {status_text}",
                "body": templates.rain_message(code),
                "data": {"type": "weather_alert", "code": code},
            },
        )


class LoggingNotifier:
    """Notifier that only logs. Used when no relay is configured."""

    def __init__(self) -> None:
        self._sent = 0

    def _next_id(self, prefix: str) -> str:
        self._sent += 1
        return f"{prefix}-{self._sent}"

    async def notify(self, parameter: str, value: float, alert_level: str) -> DeliveryResult:
        logger.info("Water quality notification: %s=%s (%s)", parameter, value, alert_level)
        return DeliveryResult(success=True, notification_id=self._next_id("log"))

    async def notify_device_status(
        self, device_name: str, kind: str, payload: dict[str, Any]
    ) -> DeliveryResult:
        logger.info("Device status notification: %s %s %s", device_name, kind, payload.get("message"))
        return DeliveryResult(success=True, notification_id=self._next_id("log"))

    async def notify_weather_alert(self, status_text: str, code: int) -> DeliveryResult:
        logger.info("Weather notification: %s (code %d)", status_text, code)
        return DeliveryResult(success=True, notification_id=self._next_id("log"))


class NotificationChannel(ABC):
    """Abstract base for a category-specific notification channel."""

    def __init__(self, notifier: Notifier) -> None:
        self._notifier = notifier

    @property
    @abstractmethod
    def name(self) -> str:
        """Unique identifier for this channel, used on receipts."""

    @abstractmethod
    def accepts(self, alert: Alert) -> bool:
        """Whether this channel is responsible for an alert."""

    @abstractmethod
    async def _deliver(self, alert: Alert) -> DeliveryResult:
        """Make the notifier call for one alert."""

    async def send(self, alert: Alert) -> NotificationReceipt:
        """Deliver one alert.

        Raises:
            NotificationError: If the notifier raised or reported failure.
        """
        try:
            result = await self._deliver(alert)
        except NotificationError:
            raise
        except Exception as e:
            raise NotificationError(self.name, str(e) or type(e).__name__) from e

        if not result.success:
            raise NotificationError(self.name, result.error or "delivery reported failure")

        return NotificationReceipt(
            alert_id=alert.id,
            parameter=alert.parameter,
            channel=self.name,
            notification_id=result.notification_id,
            value=alert.value,
        )


class WaterQualityChannel(NotificationChannel):
    """Core water-quality alerts (chemical and physical parameters)."""

    @property
    def name(self) -> str:
        return "water_quality_alert"

    def accepts(self, alert: Alert) -> bool:
        return alert.category in ("chemical", "physical")

    async def _deliver(self, alert: Alert) -> DeliveryResult:
        return await self._notifier.notify(alert.parameter, alert.value, alert.alert_level)


class DeviceStatusChannel(NotificationChannel):
    """Device-environment alerts (enclosure humidity and temperature)."""

    def __init__(self, notifier: Notifier, device_name: str = "DATM") -> None:
        super().__init__(notifier)
        self._device_name = device_name

    @property
    def name(self) -> str:
        return "device_status_alert"

    def accepts(self, alert: Alert) -> bool:
        return alert.category == "device"

    async def _deliver(self, alert: Alert) -> DeliveryResult:
        return await self._notifier.notify_device_status(
            self._device_name,
            "device_status",
            {
                "message": templates.status_line(
                    alert.parameter, alert.value, alert.severity, alert.alert_level,
                ),
                "parameter": alert.parameter,
                "value": alert.value,
                "severity": alert.severity,
            },
        )


class WeatherChannel(NotificationChannel):
    """Weather alerts from the rain sensor."""

    @property
    def name(self) -> str:
        return "weather_alert"

    def accepts(self, alert: Alert) -> bool:
        return alert.category == "weather"

    async def _deliver(self, alert: Alert) -> DeliveryResult:
        code = templates.rain_code(alert.value)
        return await self._notifier.notify_weather_alert(
            templates.rain_status_text(alert.value), code,
        )


def default_channels(notifier: Notifier, device_name: str = "DATM") -> list[NotificationChannel]:
    """The standard three-way fan-out: water quality, device, weather."""
    return [
        WaterQualityChannel(notifier),
        DeviceStatusChannel(notifier, device_name=device_name),
        WeatherChannel(notifier),
    ]

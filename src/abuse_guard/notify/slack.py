"""Slack incoming-webhook channel."""

from __future__ import annotations

import logging

import httpx

from abuse_guard.config import SlackConfig
from abuse_guard.models.alert import Alert
from abuse_guard.notify.base import NotificationChannel

logger = logging.getLogger(__name__)

_COLORS = {"critical": "danger", "warning": "warning", "info": "good"}


class SlackChannel(NotificationChannel):
    name = "slack"

    def __init__(
        self,
        config: SlackConfig,
        timeout: float = 10.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        super().__init__(min_severity=config.min_severity)  # type: ignore[arg-type]
        self._config = config
        self._timeout = timeout
        self._transport = transport

    def build_payload(self, alert: Alert) -> dict:  # type: ignore[type-arg]
        return {
            "channel": self._config.channel,
            "username": self._config.username,
            "icon_emoji": ":warning:",
            "attachments": [
                {
                    "color": _COLORS.get(alert.severity, "#36a64f"),
                    "title": f"{alert.severity.upper()}: {alert.component} - {alert.alert_key}",
                    "text": alert.message,
                    "footer": self._config.username,
                    "ts": int(alert.updated_at.timestamp()),
                }
            ],
        }

    async def send(self, alert: Alert) -> bool:
        if not self._config.webhook_url:
            logger.debug("Slack webhook URL not configured, skipping")
            return False
        async with httpx.AsyncClient(timeout=self._timeout, transport=self._transport) as client:
            response = await client.post(self._config.webhook_url, json=self.build_payload(alert))
            response.raise_for_status()
        logger.info("Slack alert sent: %s/%s", alert.component, alert.alert_key)
        return True

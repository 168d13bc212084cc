"""SMTP email channel.

smtplib is blocking, so delivery runs in a worker thread.
"""

from __future__ import annotations

import asyncio
import logging
import smtplib
from email.mime.text import MIMEText

from abuse_guard.config import EmailConfig
from abuse_guard.models.alert import Alert
from abuse_guard.notify.base import NotificationChannel

logger = logging.getLogger(__name__)

PRODUCT = "abuse-guard"


class EmailChannel(NotificationChannel):
    name = "email"

    def __init__(self, config: EmailConfig, timeout: float = 10.0) -> None:
        super().__init__(min_severity=config.min_severity)  # type: ignore[arg-type]
        self._config = config
        self._timeout = timeout

    def build_message(self, alert: Alert) -> MIMEText:
        body = (
            f"Component: {alert.component}\n"
            f"Alert Level: {alert.severity}\n"
            f"Alert Type: {alert.alert_key}\n"
            f"Message: {alert.message}\n"
            f"Timestamp: {alert.updated_at.isoformat()}\n"
            f"\n"
            f"This is an automated alert from {PRODUCT}."
        )
        msg = MIMEText(body)
        msg["From"] = self._config.from_address
        msg["To"] = ", ".join(self._config.recipients)
        msg["Subject"] = (
            f"[{alert.severity.upper()}] {PRODUCT}: {alert.component} - {alert.alert_key}"
        )
        return msg

    async def send(self, alert: Alert) -> bool:
        if not self._config.recipients:
            logger.debug("No email recipients configured, skipping")
            return False
        await asyncio.to_thread(self._deliver, self.build_message(alert))
        logger.info("Email alert sent to %s", ", ".join(self._config.recipients))
        return True

    def _deliver(self, msg: MIMEText) -> None:
        with smtplib.SMTP(self._config.smtp_host, self._config.smtp_port, timeout=self._timeout) as server:
            server.starttls()
            if self._config.smtp_user:
                server.login(self._config.smtp_user, self._config.smtp_password)
            server.send_message(msg)

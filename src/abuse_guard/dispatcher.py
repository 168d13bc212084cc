"""AlertDispatcher: turns detections into deduplicated, escalating alert rows.

Per (component, alert_key) an alert is either Active or Resolved. raise_alert()
decides between three outcomes against the alerts collection:

    no active row inside the dedup window   → claim + insert   → CREATED
    active row with lower severity          → update in place  → ESCALATED
    active row with equal/higher severity   → nothing written  → DEDUPLICATED

Notification fan-out happens after that decision and is best effort: the
alert row is the source of truth, channel delivery is a side effect whose
failures are logged and never reach the caller.

The alerts collection is the only synchronisation point: callers may be
separate processes (API monitor, CLI check), so the first row of a window
claims a unique dedup_key and a writer that loses that race re-reads and
takes the dedup or escalate path instead.
"""

from __future__ import annotations

import asyncio
import logging
from datetime import datetime, timedelta
from typing import Any, Callable

from pymongo.errors import DuplicateKeyError

from abuse_guard.config import AlertConfig
from abuse_guard.errors import ValidationError
from abuse_guard.models.alert import SEVERITY_RANK, Alert, AlertDecision, AlertOutcome, Severity
from abuse_guard.models.base import _utcnow
from abuse_guard.notify.base import NotificationChannel
from abuse_guard.store.alerts import AlertStore

logger = logging.getLogger(__name__)

Clock = Callable[[], datetime]


class AlertDispatcher:
    def __init__(
        self,
        alert_store: AlertStore,
        config: AlertConfig,
        channels: list[NotificationChannel] | None = None,
        clock: Clock = _utcnow,
    ) -> None:
        self._alert_store = alert_store
        self._config = config
        self._channels = list(channels or [])
        self._clock = clock

    @property
    def component(self) -> str:
        return self._config.component

    @property
    def dedup_window(self) -> timedelta:
        return timedelta(minutes=self._config.deduplication_window_minutes)

    async def raise_alert(
        self,
        component: str,
        severity: Severity,
        alert_key: str,
        message: str,
        metadata: dict[str, Any] | None = None,
    ) -> AlertDecision:
        if severity not in SEVERITY_RANK:
            raise ValidationError(f"Invalid alert severity: {severity}")

        try:
            decision = await self._decide(component, severity, alert_key, message, metadata or {})
        except DuplicateKeyError:
            # Another writer claimed the window first; its row is now visible
            decision = await self._decide(component, severity, alert_key, message, metadata or {})

        if decision.outcome is AlertOutcome.DEDUPLICATED:
            logger.debug("Alert deduplicated: %s/%s", component, alert_key)
        else:
            logger.info(
                "Alert %s: %s/%s [%s] %s",
                decision.outcome.value, component, alert_key, decision.alert.severity, message,
            )
            await self.notify(decision.alert)
        return decision

    async def _decide(
        self,
        component: str,
        severity: Severity,
        alert_key: str,
        message: str,
        metadata: dict[str, Any],
    ) -> AlertDecision:
        now = self._clock()
        window_start: datetime | None = None
        if self._config.deduplication_enabled:
            window_start = now - self.dedup_window
            existing = await self._alert_store.find_active(component, alert_key, window_start)
            if existing is not None:
                if SEVERITY_RANK[existing.severity] >= SEVERITY_RANK[severity]:
                    return AlertDecision(outcome=AlertOutcome.DEDUPLICATED, alert=existing)
                if await self._alert_store.escalate(existing.id, severity, message, now):
                    escalated = existing.model_copy(
                        update={"severity": severity, "message": message, "updated_at": now}
                    )
                    return AlertDecision(outcome=AlertOutcome.ESCALATED, alert=escalated)
                # Another writer escalated it first
                return AlertDecision(outcome=AlertOutcome.DEDUPLICATED, alert=existing)

        alert = Alert(
            component=component,
            severity=severity,
            alert_key=alert_key,
            message=message,
            metadata=metadata,
            created_at=now,
            updated_at=now,
        )
        await self._alert_store.insert(alert, claim_since=window_start)
        return AlertDecision(outcome=AlertOutcome.CREATED, alert=alert)

    async def notify(self, alert: Alert) -> int:
        """Fan *alert* out to every accepting channel. Returns the number delivered."""
        targets = [channel for channel in self._channels if channel.accepts(alert)]
        if not targets:
            return 0
        results = await asyncio.gather(
            *(channel.send(alert) for channel in targets), return_exceptions=True
        )
        delivered = 0
        for channel, result in zip(targets, results):
            if isinstance(result, BaseException):
                logger.error(
                    "Failed to send %s alert %s/%s: %s",
                    channel.name, alert.component, alert.alert_key, result,
                )
            elif result:
                delivered += 1
            else:
                logger.warning("%s channel did not deliver %s/%s", channel.name, alert.component, alert.alert_key)
        return delivered

    async def resolve(self, alert_id: str) -> bool:
        resolved = await self._alert_store.resolve(alert_id, self._clock())
        if resolved:
            logger.info("Alert %s resolved", alert_id)
        return resolved

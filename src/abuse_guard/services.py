"""Wiring: build every store and service from one AppConfig and database handle."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Callable

from motor.motor_asyncio import AsyncIOMotorDatabase

from abuse_guard.config import AppConfig
from abuse_guard.detections.ddos import AnomalyDetector
from abuse_guard.dispatcher import AlertDispatcher
from abuse_guard.models.base import _utcnow
from abuse_guard.notify.base import NotificationChannel
from abuse_guard.notify.factory import build_channels
from abuse_guard.policy import IPPolicyService
from abuse_guard.store.alerts import AlertStore
from abuse_guard.store.client import guarded
from abuse_guard.store.events import EventStore
from abuse_guard.store.policies import PolicyStore


@dataclass
class Services:
    config: AppConfig
    policy_store: PolicyStore
    event_store: EventStore
    alert_store: AlertStore
    dispatcher: AlertDispatcher
    policy: IPPolicyService
    detector: AnomalyDetector

    async def ensure_indexes(self) -> None:
        timeout = self.config.store.timeout_seconds
        await guarded("policy indexes", self.policy_store.ensure_indexes(), timeout)
        await guarded("event indexes", self.event_store.ensure_indexes(), timeout)
        await guarded("alert indexes", self.alert_store.ensure_indexes(), timeout)


def build_services(
    config: AppConfig,
    db: AsyncIOMotorDatabase,  # type: ignore[type-arg]
    channels: list[NotificationChannel] | None = None,
    clock: Callable[[], datetime] = _utcnow,
) -> Services:
    timeout = config.store.timeout_seconds
    policy_store = PolicyStore(db, timeout=timeout)
    event_store = EventStore(db, timeout=timeout)
    alert_store = AlertStore(db, timeout=timeout)

    if channels is None:
        channels = build_channels(config.notifications)
    dispatcher = AlertDispatcher(alert_store, config.alerts, channels, clock=clock)
    policy = IPPolicyService(policy_store, event_store, dispatcher, clock=clock)
    detector = AnomalyDetector(event_store, policy, dispatcher, config.detection, clock=clock)

    return Services(
        config=config,
        policy_store=policy_store,
        event_store=event_store,
        alert_store=alert_store,
        dispatcher=dispatcher,
        policy=policy,
        detector=detector,
    )

"""Shared pytest fixtures for the abuse-guard test suite."""

from __future__ import annotations

from datetime import datetime, timedelta, timezone
from typing import Any, AsyncGenerator, Callable

import pytest
from mongomock_motor import AsyncMongoMockClient

from abuse_guard.config import AlertConfig, AppConfig, DetectionConfig
from abuse_guard.models.alert import Alert
from abuse_guard.models.event import SecurityEvent
from abuse_guard.models.policy import IPPolicyEntry
from abuse_guard.services import Services, build_services
from abuse_guard.store.events import EventStore


class FakeClock:
    """Controllable replacement for _utcnow; whole seconds keep BSON round-trips exact."""

    def __init__(self, start: datetime) -> None:
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs: float) -> datetime:
        self.now = self.now + timedelta(**kwargs)
        return self.now


# ---------------------------------------------------------------------------
# Config fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def detection_config() -> DetectionConfig:
    return DetectionConfig(
        enabled=True,
        window_seconds=60,
        requests_per_second_threshold=100.0,
        auto_block_duration_minutes=15,
        connection_window_seconds=10,
        concurrent_connections_threshold=500,
    )


@pytest.fixture
def alert_config() -> AlertConfig:
    return AlertConfig(deduplication_enabled=True, deduplication_window_minutes=60, component="SECURITY")


@pytest.fixture
def app_config(detection_config: DetectionConfig, alert_config: AlertConfig) -> AppConfig:
    return AppConfig(detection=detection_config, alerts=alert_config)


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock(datetime(2024, 1, 1, 12, 0, 0, tzinfo=timezone.utc))


# ---------------------------------------------------------------------------
# Store fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def mongo_db():  # type: ignore[no-untyped-def]
    """Fresh in-memory database per test."""
    return AsyncMongoMockClient()["abuse_guard_test"]


@pytest.fixture
async def services(app_config: AppConfig, mongo_db, clock: FakeClock) -> AsyncGenerator[Services, None]:  # type: ignore[no-untyped-def]
    svc = build_services(app_config, mongo_db, channels=[], clock=clock)
    await svc.ensure_indexes()
    yield svc


# ---------------------------------------------------------------------------
# Model factories
# ---------------------------------------------------------------------------


@pytest.fixture
def make_entry(clock: FakeClock) -> Callable[..., IPPolicyEntry]:
    """Factory: create an IPPolicyEntry with sensible defaults, override via kwargs."""

    def _factory(**kwargs: Any) -> IPPolicyEntry:
        defaults: dict[str, Any] = {
            "address": "192.0.2.10",
            "list_type": "deny",
            "reason": "test",
            "created_at": clock(),
            "created_by": "pytest",
        }
        defaults.update(kwargs)
        return IPPolicyEntry(**defaults)

    return _factory


@pytest.fixture
def make_alert(clock: FakeClock) -> Callable[..., Alert]:
    def _factory(**kwargs: Any) -> Alert:
        defaults: dict[str, Any] = {
            "component": "SECURITY",
            "severity": "warning",
            "alert_key": "ddos:192.0.2.10",
            "message": "Test alert",
            "created_at": clock(),
            "updated_at": clock(),
        }
        defaults.update(kwargs)
        return Alert(**defaults)

    return _factory


@pytest.fixture
def add_events(clock: FakeClock) -> Callable[..., Any]:
    """Factory: append *count* events for *address* at the clock's current time."""

    async def _add(store: EventStore, address: str, count: int, event_type: str = "rate_limit") -> None:
        for _ in range(count):
            await store.insert(
                SecurityEvent(event_type=event_type, source_address=address, observed_at=clock())  # type: ignore[arg-type]
            )

    return _add

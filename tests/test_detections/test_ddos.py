"""AnomalyDetector unit tests — collaborators mocked."""

from __future__ import annotations

from datetime import timedelta
from unittest.mock import AsyncMock, MagicMock

import pytest

from abuse_guard.config import DetectionConfig
from abuse_guard.detections.base import DetectionResult
from abuse_guard.detections.ddos import CONNECTIONS_ALERT_KEY, AnomalyDetector, ddos_alert_key
from abuse_guard.dispatcher import AlertDispatcher
from abuse_guard.errors import StoreUnavailable, ValidationError
from abuse_guard.models.alert import Alert, AlertDecision, AlertOutcome
from abuse_guard.models.policy import IPPolicyEntry, PolicyDecision, PolicyStatus
from abuse_guard.policy import IPPolicyService
from abuse_guard.store.events import EventStore

ADDR = "203.0.113.7"


@pytest.fixture
def event_store() -> EventStore:
    store = MagicMock(spec=EventStore)
    store.count = AsyncMock(return_value=0)
    store.count_active_connections = AsyncMock(return_value=0)
    store.active_addresses = AsyncMock(return_value=[])
    store.insert = AsyncMock(return_value="event-id")
    return store  # type: ignore[return-value]


@pytest.fixture
def policy(make_entry) -> IPPolicyService:  # type: ignore[no-untyped-def]
    service = MagicMock(spec=IPPolicyService)
    service.block = AsyncMock(side_effect=lambda address, minutes, reason, actor: make_entry(
        address=address, list_type="temp_block", reason=reason, created_by=actor
    ))
    service.status = AsyncMock(
        side_effect=lambda address: PolicyStatus(
            address=address, decision=PolicyDecision(address=address, disposition="allowed")
        )
    )
    return service  # type: ignore[return-value]


@pytest.fixture
def dispatcher() -> AlertDispatcher:
    mock = MagicMock(spec=AlertDispatcher)
    mock.component = "SECURITY"

    async def _raise(component, severity, alert_key, message, metadata=None):  # type: ignore[no-untyped-def]
        alert = Alert(component=component, severity=severity, alert_key=alert_key, message=message)
        return AlertDecision(outcome=AlertOutcome.CREATED, alert=alert)

    mock.raise_alert = AsyncMock(side_effect=_raise)
    return mock  # type: ignore[return-value]


@pytest.fixture
def detector(event_store, policy, dispatcher, detection_config, clock) -> AnomalyDetector:  # type: ignore[no-untyped-def]
    return AnomalyDetector(event_store, policy, dispatcher, detection_config, clock=clock)


# ---------------------------------------------------------------------------
# detect_attack
# ---------------------------------------------------------------------------


@pytest.mark.parametrize("count,verdict", [(6001, "attack"), (6000, "normal"), (0, "normal")])
async def test_threshold_is_strict(detector, event_store, count, verdict) -> None:  # type: ignore[no-untyped-def]
    event_store.count = AsyncMock(return_value=count)
    result = await detector.detect_attack(ADDR, window_seconds=60, threshold=100)
    assert result.verdict == verdict
    assert result.event_count == count


async def test_counts_trailing_window(detector, event_store, clock) -> None:  # type: ignore[no-untyped-def]
    await detector.detect_attack(ADDR)
    event_store.count.assert_awaited_once_with(
        ADDR,
        since=clock() - timedelta(seconds=60),
        until=clock(),
        event_types=["rate_limit", "ddos"],
    )


@pytest.mark.parametrize("window,threshold", [(0, 100), (-1, 100), (60, 0), (60, -5)])
async def test_rejects_non_positive_parameters(detector, event_store, window, threshold) -> None:  # type: ignore[no-untyped-def]
    with pytest.raises(ValidationError):
        await detector.detect_attack(ADDR, window_seconds=window, threshold=threshold)
    event_store.count.assert_not_awaited()


async def test_rejects_bad_address(detector) -> None:  # type: ignore[no-untyped-def]
    with pytest.raises(ValidationError):
        await detector.detect_attack("10.0.0.300")


async def test_store_failure_propagates(detector, event_store) -> None:  # type: ignore[no-untyped-def]
    event_store.count = AsyncMock(side_effect=StoreUnavailable("event count"))
    with pytest.raises(StoreUnavailable):
        await detector.detect_attack(ADDR)


# ---------------------------------------------------------------------------
# enforce_detection
# ---------------------------------------------------------------------------


def _attack(count: int = 7000) -> DetectionResult:
    return DetectionResult(address=ADDR, verdict="attack", event_count=count, window_seconds=60, threshold=100)


async def test_enforce_normal_is_noop(detector, policy, dispatcher) -> None:  # type: ignore[no-untyped-def]
    normal = DetectionResult(address=ADDR, verdict="normal", event_count=1, window_seconds=60, threshold=100)
    assert await detector.enforce_detection(ADDR, normal) is None
    policy.block.assert_not_awaited()
    dispatcher.raise_alert.assert_not_awaited()


async def test_enforce_blocks_records_and_alerts(detector, policy, dispatcher, event_store) -> None:  # type: ignore[no-untyped-def]
    result = await detector.enforce_detection(ADDR, _attack())

    assert result is not None
    assert result.entry.list_type == "temp_block"
    policy.block.assert_awaited_once()
    args = policy.block.await_args
    assert args.args[:2] == (ADDR, 15)
    assert args.kwargs["actor"] == "ddos-detector"

    recorded = event_store.insert.await_args.args[0]
    assert recorded.event_type == "ddos"
    assert recorded.source_address == ADDR

    component, severity, key, _message = dispatcher.raise_alert.await_args.args
    assert (component, severity, key) == ("SECURITY", "critical", ddos_alert_key(ADDR))


async def test_enforce_honours_explicit_duration(detector, policy) -> None:  # type: ignore[no-untyped-def]
    await detector.enforce_detection(ADDR, _attack(), block_duration_minutes=60, reason="manual")
    assert policy.block.await_args.args == (ADDR, 60, "manual")


async def test_enforce_survives_event_log_outage(detector, event_store, dispatcher) -> None:  # type: ignore[no-untyped-def]
    event_store.insert = AsyncMock(side_effect=StoreUnavailable("event insert"))
    result = await detector.enforce_detection(ADDR, _attack())
    assert result is not None
    dispatcher.raise_alert.assert_awaited_once()


# ---------------------------------------------------------------------------
# check_connection_rate_limiting
# ---------------------------------------------------------------------------


async def test_connections_at_threshold_do_not_alert(detector, event_store, dispatcher) -> None:  # type: ignore[no-untyped-def]
    event_store.count_active_connections = AsyncMock(return_value=500)
    result = await detector.check_connection_rate_limiting()
    assert not result.exceeded
    assert result.alert is None
    dispatcher.raise_alert.assert_not_awaited()


async def test_connections_above_threshold_warn(detector, event_store, dispatcher, clock) -> None:  # type: ignore[no-untyped-def]
    event_store.count_active_connections = AsyncMock(return_value=501)
    result = await detector.check_connection_rate_limiting()

    assert result.exceeded
    assert result.alert is not None
    event_store.count_active_connections.assert_awaited_once_with(
        since=clock() - timedelta(seconds=10), until=clock(), event_types=["rate_limit", "ddos"]
    )
    _component, severity, key, _message = dispatcher.raise_alert.await_args.args
    assert (severity, key) == ("warning", CONNECTIONS_ALERT_KEY)


# ---------------------------------------------------------------------------
# check_and_block
# ---------------------------------------------------------------------------


async def test_sweep_disabled(event_store, policy, dispatcher, clock) -> None:  # type: ignore[no-untyped-def]
    detector = AnomalyDetector(event_store, policy, dispatcher, DetectionConfig(enabled=False), clock=clock)
    report = await detector.check_and_block()
    assert not report.enabled
    event_store.active_addresses.assert_not_awaited()


async def test_sweep_skips_listed_addresses(detector, event_store, policy, make_entry) -> None:  # type: ignore[no-untyped-def]
    event_store.active_addresses = AsyncMock(return_value=["192.0.2.1", "192.0.2.2", "192.0.2.3"])
    event_store.count = AsyncMock(return_value=10_000)
    listed = {
        "192.0.2.1": make_entry(address="192.0.2.1", list_type="allow"),
        "192.0.2.2": make_entry(address="192.0.2.2", list_type="deny"),
    }

    def _status(address: str) -> PolicyStatus:
        entry: IPPolicyEntry | None = listed.get(address)
        disposition = {"allow": "allowed", "deny": "denied"}[entry.list_type] if entry else "allowed"
        return PolicyStatus(
            address=address,
            decision=PolicyDecision(address=address, disposition=disposition),  # type: ignore[arg-type]
            entry=entry,
        )

    policy.status = AsyncMock(side_effect=_status)

    report = await detector.check_and_block()

    assert report.skipped == ["192.0.2.1", "192.0.2.2"]
    assert report.checked == ["192.0.2.3"]
    assert [d.address for d in report.attacks] == ["192.0.2.3"]
    policy.block.assert_awaited_once()
    assert report.connections is not None


async def test_sweep_single_address(detector, event_store) -> None:  # type: ignore[no-untyped-def]
    report = await detector.check_and_block("203.0.113.7")
    assert report.checked == [ADDR]
    assert report.attacks == []
    event_store.active_addresses.assert_not_awaited()


async def test_attack_and_connection_alerts_are_independent(detector, event_store, dispatcher) -> None:  # type: ignore[no-untyped-def]
    event_store.active_addresses = AsyncMock(return_value=[ADDR])
    event_store.count = AsyncMock(return_value=10_000)
    event_store.count_active_connections = AsyncMock(return_value=900)

    report = await detector.check_and_block()

    keys = [call.args[2] for call in dispatcher.raise_alert.await_args_list]
    assert keys == [ddos_alert_key(ADDR), CONNECTIONS_ALERT_KEY]
    assert report.connections is not None and report.connections.exceeded


async def test_sweep_continues_past_store_failure(detector, event_store, policy) -> None:  # type: ignore[no-untyped-def]
    event_store.active_addresses = AsyncMock(return_value=["192.0.2.1", "192.0.2.2"])
    event_store.count = AsyncMock(return_value=10_000)

    def _status(address: str) -> PolicyStatus:
        if address == "192.0.2.1":
            raise StoreUnavailable("policy lookup")
        return PolicyStatus(address=address, decision=PolicyDecision(address=address, disposition="allowed"))

    policy.status = AsyncMock(side_effect=_status)

    report = await detector.check_and_block()

    assert report.failed == ["192.0.2.1"]
    assert [d.address for d in report.attacks] == ["192.0.2.2"]
    assert report.connections is not None

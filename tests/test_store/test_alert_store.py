"""AlertStore conditional escalation, resolution and dedup claims."""

from __future__ import annotations

from datetime import timedelta

import pytest
from pymongo.errors import DuplicateKeyError

from abuse_guard.store.alerts import COLLECTION, AlertStore


@pytest.fixture
async def store(mongo_db) -> AlertStore:  # type: ignore[no-untyped-def]
    s = AlertStore(mongo_db)
    await s.ensure_indexes()
    return s


async def test_find_active_respects_window(store, make_alert, clock) -> None:  # type: ignore[no-untyped-def]
    alert = make_alert()
    await store.insert(alert)

    found = await store.find_active("SECURITY", alert.alert_key, clock() - timedelta(minutes=60))
    assert found is not None and found.id == alert.id
    assert await store.find_active("SECURITY", alert.alert_key, clock() + timedelta(seconds=1)) is None


async def test_escalate_only_raises_severity(store, make_alert, clock) -> None:  # type: ignore[no-untyped-def]
    alert = make_alert(severity="warning")
    await store.insert(alert)

    assert await store.escalate(alert.id, "critical", "worse", clock())
    # Already critical: an equal-severity escalation matches nothing
    assert not await store.escalate(alert.id, "critical", "again", clock())
    assert not await store.escalate(alert.id, "info", "better", clock())

    stored = await store.get_by_id(alert.id)
    assert stored is not None
    assert stored.severity == "critical"
    assert stored.message == "worse"


async def test_resolve_hides_alert_from_dedup(store, make_alert, clock) -> None:  # type: ignore[no-untyped-def]
    alert = make_alert()
    await store.insert(alert)

    assert await store.resolve(alert.id, clock())
    assert not await store.resolve(alert.id, clock())
    assert await store.find_active("SECURITY", alert.alert_key, clock() - timedelta(hours=1)) is None


async def test_list_alerts_filters(store, make_alert, clock) -> None:  # type: ignore[no-untyped-def]
    first = make_alert(alert_key="ddos:192.0.2.1")
    second = make_alert(alert_key="ddos:192.0.2.2", created_at=clock() + timedelta(seconds=1))
    other = make_alert(component="BACKUP", alert_key="disk")
    for alert in (first, second, other):
        await store.insert(alert)
    await store.resolve(first.id, clock())

    security = await store.list_alerts(component="SECURITY")
    assert [a.id for a in security] == [second.id, first.id]
    active = await store.list_alerts(component="SECURITY", status="active")
    assert [a.id for a in active] == [second.id]


async def test_second_claim_in_window_is_rejected(store, make_alert, clock) -> None:  # type: ignore[no-untyped-def]
    window_start = clock() - timedelta(minutes=60)
    await store.insert(make_alert(), claim_since=window_start)

    with pytest.raises(DuplicateKeyError):
        await store.insert(make_alert(), claim_since=window_start)


async def test_stale_claim_is_released(store, make_alert, clock, mongo_db) -> None:  # type: ignore[no-untyped-def]
    old = make_alert()
    await store.insert(old, claim_since=clock() - timedelta(minutes=60))

    clock.advance(minutes=61)
    new = make_alert(created_at=clock(), updated_at=clock())
    await store.insert(new, claim_since=clock() - timedelta(minutes=60))

    old_doc = await mongo_db[COLLECTION].find_one({"id": old.id})
    new_doc = await mongo_db[COLLECTION].find_one({"id": new.id})
    assert "dedup_key" not in old_doc
    assert new_doc["dedup_key"] == f"SECURITY:{new.alert_key}"


async def test_resolve_releases_claim(store, make_alert, clock) -> None:  # type: ignore[no-untyped-def]
    window_start = clock() - timedelta(minutes=60)
    first = make_alert()
    await store.insert(first, claim_since=window_start)
    await store.resolve(first.id, clock())

    await store.insert(make_alert(), claim_since=window_start)


async def test_unclaimed_rows_do_not_collide(store, make_alert) -> None:  # type: ignore[no-untyped-def]
    await store.insert(make_alert())
    await store.insert(make_alert())
    assert len(await store.list_alerts()) == 2

"""EventStore: the Event Log, read back only through counts and aggregations.

Events are appended by the ingestion path and by the policy service's audit
trail. Detection only ever counts them.
"""

from __future__ import annotations

from datetime import datetime

from motor.motor_asyncio import AsyncIOMotorDatabase

from abuse_guard.models.base import as_utc
from abuse_guard.models.event import SecurityEvent
from abuse_guard.store.client import guarded, to_storage_time

COLLECTION = "security_events"


class EventStore:
    def __init__(self, db: AsyncIOMotorDatabase, timeout: float | None = None) -> None:  # type: ignore[type-arg]
        self._col = db[COLLECTION]
        self._timeout = timeout

    async def ensure_indexes(self) -> None:
        await self._col.create_index([("source_address", 1), ("observed_at", -1)])
        await self._col.create_index([("event_type", 1), ("observed_at", -1)])
        await self._col.create_index([("observed_at", -1)])

    async def insert(self, event: SecurityEvent) -> str:
        doc = event.model_dump()
        doc["observed_at"] = to_storage_time(event.observed_at)
        await guarded("event insert", self._col.insert_one(doc), self._timeout)
        return event.id

    async def count(
        self,
        address: str,
        since: datetime,
        until: datetime | None = None,
        event_types: list[str] | None = None,
    ) -> int:
        """Number of events from *address* observed in [since, until]."""
        query = {"source_address": address, "observed_at": _time_range(since, until)}
        if event_types:
            query["event_type"] = {"$in": list(event_types)}
        return await guarded("event count", self._col.count_documents(query), self._timeout)

    async def count_type(self, event_type: str, since: datetime, until: datetime | None = None) -> int:
        query = {"event_type": event_type, "observed_at": _time_range(since, until)}
        return await guarded("event count", self._col.count_documents(query), self._timeout)

    async def active_addresses(
        self,
        since: datetime,
        until: datetime | None = None,
        event_types: list[str] | None = None,
    ) -> list[str]:
        """Distinct source addresses with at least one event in [since, until], sorted."""
        query: dict = {"observed_at": _time_range(since, until)}  # type: ignore[type-arg]
        if event_types:
            query["event_type"] = {"$in": list(event_types)}
        addresses = await guarded(
            "event distinct", self._col.distinct("source_address", query), self._timeout
        )
        return sorted(a for a in addresses if a)

    async def count_active_connections(
        self,
        since: datetime,
        until: datetime | None = None,
        event_types: list[str] | None = None,
    ) -> int:
        return len(await self.active_addresses(since, until, event_types))

    async def last_observed(self, event_type: str, since: datetime) -> datetime | None:
        doc = await guarded(
            "event last",
            self._col.find_one(
                {"event_type": event_type, "observed_at": {"$gte": to_storage_time(since)}},
                {"_id": 0, "observed_at": 1},
                sort=[("observed_at", -1)],
            ),
            self._timeout,
        )
        if doc is None:
            return None
        return as_utc(doc["observed_at"])


def _time_range(since: datetime, until: datetime | None) -> dict:  # type: ignore[type-arg]
    bounds = {"$gte": to_storage_time(since)}
    if until is not None:
        bounds["$lte"] = to_storage_time(until)
    return bounds

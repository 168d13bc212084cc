"""AlertStore — async Motor CRUD for the alerts collection."""

from __future__ import annotations

from datetime import datetime

from motor.motor_asyncio import AsyncIOMotorDatabase

from abuse_guard.models.alert import SEVERITY_RANK, Alert, AlertStatus, Severity
from abuse_guard.store.client import guarded, to_storage_time

COLLECTION = "alerts"


class AlertStore:
    def __init__(self, db: AsyncIOMotorDatabase, timeout: float | None = None) -> None:  # type: ignore[type-arg]
        self._col = db[COLLECTION]
        self._timeout = timeout

    async def ensure_indexes(self) -> None:
        await self._col.create_index([("id", 1)], unique=True)
        await self._col.create_index(
            [("component", 1), ("alert_key", 1), ("status", 1), ("created_at", -1)]
        )
        await self._col.create_index([("created_at", -1)])
        # One claim per (component, alert_key); rows without a claim are not indexed
        await self._col.create_index([("dedup_key", 1)], unique=True, sparse=True)

    async def insert(self, alert: Alert, claim_since: datetime | None = None) -> str:
        """Insert *alert*; with *claim_since*, also claim its dedup slot.

        Claims held by active rows created before *claim_since* are released
        first. A live claim held by another row makes the insert raise
        DuplicateKeyError, so two writers in different processes can never
        both create the first alert of a window.
        """
        doc = _to_document(alert)
        if claim_since is not None:
            key = dedup_key(alert.component, alert.alert_key)
            await guarded(
                "alert release",
                self._col.update_many(
                    {"dedup_key": key, "created_at": {"$lt": to_storage_time(claim_since)}},
                    {"$unset": {"dedup_key": ""}},
                ),
                self._timeout,
            )
            doc["dedup_key"] = key
        await guarded("alert insert", self._col.insert_one(doc), self._timeout)
        return alert.id

    async def find_active(
        self, component: str, alert_key: str, created_since: datetime
    ) -> Alert | None:
        """Most recent active alert for (component, alert_key) created at or after *created_since*."""
        doc = await guarded(
            "alert lookup",
            self._col.find_one(
                {
                    "component": component,
                    "alert_key": alert_key,
                    "status": "active",
                    "created_at": {"$gte": to_storage_time(created_since)},
                },
                {"_id": 0},
                sort=[("created_at", -1)],
            ),
            self._timeout,
        )
        return Alert(**doc) if doc else None

    async def escalate(
        self, alert_id: str, severity: Severity, message: str, now: datetime
    ) -> bool:
        """Raise severity in place, only if the stored severity is still lower.

        The severity comparison is part of the update filter, so two concurrent
        escalations can never downgrade each other.
        """
        result = await guarded(
            "alert escalate",
            self._col.update_one(
                {
                    "id": alert_id,
                    "status": "active",
                    "severity_rank": {"$lt": SEVERITY_RANK[severity]},
                },
                {
                    "$set": {
                        "severity": severity,
                        "severity_rank": SEVERITY_RANK[severity],
                        "message": message,
                        "updated_at": to_storage_time(now),
                    }
                },
            ),
            self._timeout,
        )
        return result.modified_count == 1

    async def list_alerts(
        self,
        skip: int = 0,
        limit: int = 50,
        component: str | None = None,
        status: AlertStatus | None = None,
        since: datetime | None = None,
    ) -> list[Alert]:
        query: dict = {}  # type: ignore[type-arg]
        if component:
            query["component"] = component
        if status:
            query["status"] = status
        if since:
            query["created_at"] = {"$gte": to_storage_time(since)}

        async def _fetch() -> list[Alert]:
            cursor = self._col.find(
                query, {"_id": 0}, sort=[("created_at", -1)], skip=skip, limit=limit
            )
            return [Alert(**doc) async for doc in cursor]

        return await guarded("alert list", _fetch(), self._timeout)

    async def get_by_id(self, alert_id: str) -> Alert | None:
        doc = await guarded(
            "alert get", self._col.find_one({"id": alert_id}, {"_id": 0}), self._timeout
        )
        return Alert(**doc) if doc else None

    async def resolve(self, alert_id: str, now: datetime) -> bool:
        result = await guarded(
            "alert resolve",
            self._col.update_one(
                {"id": alert_id, "status": "active"},
                {
                    "$set": {"status": "resolved", "updated_at": to_storage_time(now)},
                    "$unset": {"dedup_key": ""},
                },
            ),
            self._timeout,
        )
        return result.modified_count == 1


def _to_document(alert: Alert) -> dict:  # type: ignore[type-arg]
    doc = alert.model_dump(mode="python")
    doc["created_at"] = to_storage_time(alert.created_at)
    doc["updated_at"] = to_storage_time(alert.updated_at)
    doc["severity_rank"] = SEVERITY_RANK[alert.severity]
    return doc


def dedup_key(component: str, alert_key: str) -> str:
    return f"{component}:{alert_key}"

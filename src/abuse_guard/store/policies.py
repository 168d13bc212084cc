"""PolicyStore — async Motor CRUD for the ip_policies collection."""

from __future__ import annotations

from datetime import datetime

from motor.motor_asyncio import AsyncIOMotorDatabase

from abuse_guard.models.policy import IPPolicyEntry, ListType
from abuse_guard.store.client import guarded, to_storage_time

COLLECTION = "ip_policies"


class PolicyStore:
    def __init__(self, db: AsyncIOMotorDatabase, timeout: float | None = None) -> None:  # type: ignore[type-arg]
        self._col = db[COLLECTION]
        self._timeout = timeout

    async def ensure_indexes(self) -> None:
        await self._col.create_index([("address", 1)], unique=True)
        await self._col.create_index([("list_type", 1), ("expires_at", 1)])
        await self._col.create_index([("created_at", -1)])

    async def upsert(self, entry: IPPolicyEntry) -> None:
        """Insert-or-replace keyed on address, as one atomic document write."""
        doc = _to_document(entry)
        await guarded(
            "policy upsert",
            self._col.update_one({"address": entry.address}, {"$set": doc}, upsert=True),
            self._timeout,
        )

    async def find_active(self, address: str, now: datetime) -> list[IPPolicyEntry]:
        """All rows for *address* that have no expiry or expire after *now*."""
        query = {
            "address": address,
            "$or": [
                {"expires_at": None},
                {"expires_at": {"$gt": to_storage_time(now)}},
            ],
        }
        return await self._find("policy lookup", query)

    async def delete(self, address: str, list_types: list[ListType]) -> int:
        result = await guarded(
            "policy remove",
            self._col.delete_many({"address": address, "list_type": {"$in": list(list_types)}}),
            self._timeout,
        )
        return result.deleted_count

    async def delete_expired_temp_blocks(self, now: datetime) -> int:
        """Single-statement sweep; allow and deny rows are never matched."""
        result = await guarded(
            "policy cleanup",
            self._col.delete_many(
                {
                    "list_type": "temp_block",
                    "expires_at": {"$ne": None, "$lt": to_storage_time(now)},
                }
            ),
            self._timeout,
        )
        return result.deleted_count

    async def list_entries(
        self,
        list_type: ListType | None = None,
        active_at: datetime | None = None,
        limit: int = 0,
    ) -> list[IPPolicyEntry]:
        query: dict = {}  # type: ignore[type-arg]
        if list_type:
            query["list_type"] = list_type
        if active_at is not None:
            query["$or"] = [
                {"expires_at": None},
                {"expires_at": {"$gt": to_storage_time(active_at)}},
            ]
        return await self._find("policy list", query, limit=limit)

    async def _find(self, operation: str, query: dict, limit: int = 0) -> list[IPPolicyEntry]:  # type: ignore[type-arg]
        async def _fetch() -> list[IPPolicyEntry]:
            cursor = self._col.find(query, {"_id": 0}, sort=[("created_at", -1)], limit=limit)
            return [IPPolicyEntry(**doc) async for doc in cursor]

        return await guarded(operation, _fetch(), self._timeout)


def _to_document(entry: IPPolicyEntry) -> dict:  # type: ignore[type-arg]
    doc = entry.model_dump()
    doc["created_at"] = to_storage_time(entry.created_at)
    doc["expires_at"] = to_storage_time(entry.expires_at) if entry.expires_at else None
    return doc

"""Motor async client setup and the store-call guard.

The client is created once per process (FastAPI lifespan or CLI run) and
shared by every store. Each store call goes through guarded(), which bounds
it with a timeout and turns connectivity failures into StoreUnavailable.
"""

from __future__ import annotations

import asyncio
from datetime import datetime, timezone
from typing import Awaitable, TypeVar

from motor.motor_asyncio import AsyncIOMotorClient, AsyncIOMotorDatabase
from pymongo.errors import ConnectionFailure, ExecutionTimeout, WTimeoutError

from abuse_guard.errors import StoreUnavailable

T = TypeVar("T")

_UNAVAILABLE_ERRORS = (ConnectionFailure, ExecutionTimeout, WTimeoutError)


def get_motor_client(uri: str, timeout_seconds: float = 5.0) -> AsyncIOMotorClient:  # type: ignore[type-arg]
    timeout_ms = int(timeout_seconds * 1000)
    return AsyncIOMotorClient(
        uri,
        serverSelectionTimeoutMS=timeout_ms,
        connectTimeoutMS=timeout_ms,
        socketTimeoutMS=timeout_ms,
    )


def get_database(
    client: AsyncIOMotorClient,  # type: ignore[type-arg]
    db_name: str,
) -> AsyncIOMotorDatabase:  # type: ignore[type-arg]
    return client[db_name]


def to_storage_time(value: datetime) -> datetime:
    """BSON datetimes are naive UTC."""
    if value.tzinfo is None:
        return value
    return value.astimezone(timezone.utc).replace(tzinfo=None)


async def guarded(operation: str, awaitable: Awaitable[T], timeout: float | None) -> T:
    """Await a store call under *timeout*; connectivity failures become StoreUnavailable.

    Only timeouts and connection-level driver errors are translated. Anything
    else (duplicate keys, bad queries) propagates unchanged.
    """
    try:
        return await asyncio.wait_for(awaitable, timeout=timeout)
    except asyncio.TimeoutError as exc:
        raise StoreUnavailable(operation, exc) from exc
    except _UNAVAILABLE_ERRORS as exc:
        raise StoreUnavailable(operation, exc) from exc

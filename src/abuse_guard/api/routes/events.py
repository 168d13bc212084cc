"""POST /events — append a security event to the Event Log."""

from __future__ import annotations

from typing import Any

from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field

from abuse_guard.api.dependencies import get_event_store
from abuse_guard.models.base import UtcDatetime, _utcnow
from abuse_guard.models.event import EventType, SecurityEvent
from abuse_guard.models.policy import normalize_address
from abuse_guard.store.events import EventStore

router = APIRouter()


class EventIn(BaseModel):
    event_type: EventType
    source_address: str
    endpoint: str | None = None
    metadata: dict[str, Any] = Field(default_factory=dict)
    observed_at: UtcDatetime = Field(default_factory=_utcnow)


class EventAccepted(BaseModel):
    event_id: str


@router.post("/events", response_model=EventAccepted, status_code=201)
async def record_event(
    body: EventIn,
    event_store: EventStore = Depends(get_event_store),
) -> EventAccepted:
    event = SecurityEvent(
        event_type=body.event_type,
        source_address=normalize_address(body.source_address),
        endpoint=body.endpoint,
        metadata=body.metadata,
        observed_at=body.observed_at,
    )
    return EventAccepted(event_id=await event_store.insert(event))

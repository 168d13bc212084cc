"""SecurityEvent Pydantic model — one observed security-relevant action."""

from __future__ import annotations

import uuid
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field

from abuse_guard.models.base import UtcDatetime, _utcnow


def _new_id() -> str:
    return str(uuid.uuid4())


EventType = Literal["rate_limit", "ddos", "abuse", "block", "unblock"]


class SecurityEvent(BaseModel):
    """An immutable Event Log record. Never updated once written."""

    model_config = ConfigDict(frozen=True)

    id: str = Field(default_factory=_new_id)
    event_type: EventType
    source_address: str
    endpoint: str | None = None
    metadata: dict[str, Any] = Field(default_factory=dict)
    observed_at: UtcDatetime = Field(default_factory=_utcnow)

"""Alert Pydantic model — persisted to MongoDB when a condition is raised."""

from __future__ import annotations

import uuid
from enum import Enum
from typing import Any, Literal

from pydantic import BaseModel, Field

from abuse_guard.models.base import UtcDatetime, _utcnow


def _new_id() -> str:
    return str(uuid.uuid4())


Severity = Literal["info", "warning", "critical"]
AlertStatus = Literal["active", "resolved"]

SEVERITY_RANK: dict[str, int] = {"info": 0, "warning": 1, "critical": 2}


class Alert(BaseModel):
    """One logical alert condition, identified by (component, alert_key)."""

    id: str = Field(default_factory=_new_id)
    component: str
    severity: Severity
    alert_key: str  # e.g. "ddos:10.0.0.5"
    message: str
    metadata: dict[str, Any] = Field(default_factory=dict)
    created_at: UtcDatetime = Field(default_factory=_utcnow)
    updated_at: UtcDatetime = Field(default_factory=_utcnow)
    status: AlertStatus = "active"


class AlertOutcome(str, Enum):
    CREATED = "created"
    ESCALATED = "escalated"
    DEDUPLICATED = "deduplicated"


class AlertDecision(BaseModel):
    """What raise_alert() did, and the row it now points at."""

    outcome: AlertOutcome
    alert: Alert

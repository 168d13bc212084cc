"""Detection routes — run one sweep on demand, report recent attack statistics."""

from __future__ import annotations

from datetime import datetime

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel, Field

from abuse_guard.api.dependencies import get_detector
from abuse_guard.detections.ddos import AnomalyDetector
from abuse_guard.models.policy import IPPolicyEntry

router = APIRouter(prefix="/detection", tags=["detection"])


class CheckRequest(BaseModel):
    address: str | None = None
    window_seconds: float | None = Field(None, gt=0)
    threshold: float | None = Field(None, gt=0)


class AttackOut(BaseModel):
    address: str
    event_count: int
    requests_per_second: float
    threshold: float


class CheckResponse(BaseModel):
    enabled: bool
    checked: list[str]
    skipped: list[str]
    failed: list[str] = []
    attacks: list[AttackOut]
    active_connections: int | None = None
    connections_exceeded: bool = False


class StatsResponse(BaseModel):
    hours: int
    ddos_events: int
    attacking_addresses: list[str]
    last_attack_at: datetime | None
    blocked: list[IPPolicyEntry]


@router.post("/check", response_model=CheckResponse)
async def check(
    body: CheckRequest | None = None,
    detector: AnomalyDetector = Depends(get_detector),
) -> CheckResponse:
    body = body or CheckRequest()
    report = await detector.check_and_block(body.address, body.window_seconds, body.threshold)
    connections = report.connections
    return CheckResponse(
        enabled=report.enabled,
        checked=report.checked,
        skipped=report.skipped,
        failed=report.failed,
        attacks=[
            AttackOut(
                address=d.address,
                event_count=d.event_count,
                requests_per_second=d.observed_rate,
                threshold=d.threshold,
            )
            for d in report.attacks
        ],
        active_connections=connections.active_connections if connections else None,
        connections_exceeded=bool(connections and connections.exceeded),
    )


@router.get("/stats", response_model=StatsResponse)
async def stats(
    hours: int = Query(24, ge=1, le=24 * 30),
    detector: AnomalyDetector = Depends(get_detector),
) -> StatsResponse:
    result = await detector.stats(hours)
    return StatsResponse(
        hours=result.hours,
        ddos_events=result.ddos_events,
        attacking_addresses=result.attacking_addresses,
        last_attack_at=result.last_attack_at,
        blocked=result.blocked,
    )

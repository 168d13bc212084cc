"""IP policy routes — allow/deny lists, temporary blocks, decisions, status and cleanup."""

from __future__ import annotations

from datetime import timedelta

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel, Field

from abuse_guard.api.dependencies import get_policy_service
from abuse_guard.models.policy import IPPolicyEntry, PolicyDecision, PolicyStatus
from abuse_guard.policy import IPPolicyService

router = APIRouter(prefix="/policies", tags=["policies"])


class ListEntryRequest(BaseModel):
    address: str
    reason: str = ""
    created_by: str = "api"


class DenyRequest(ListEntryRequest):
    ttl_minutes: float | None = Field(None, description="Omit for a permanent deny")


class BlockRequest(ListEntryRequest):
    duration_minutes: float = 15


class RemovalResult(BaseModel):
    address: str
    removed: int


@router.get("", response_model=list[IPPolicyEntry])
async def list_policies(
    list_type: str | None = Query(None),
    active_only: bool = Query(False),
    policy: IPPolicyService = Depends(get_policy_service),
) -> list[IPPolicyEntry]:
    return await policy.list_entries(list_type, active_only=active_only)


@router.post("/cleanup", response_model=dict)
async def cleanup(policy: IPPolicyService = Depends(get_policy_service)) -> dict:  # type: ignore[type-arg]
    return {"removed": await policy.cleanup_expired()}


@router.get("/{address}/decision", response_model=PolicyDecision)
async def classify_address(
    address: str,
    policy: IPPolicyService = Depends(get_policy_service),
) -> PolicyDecision:
    """Enforcement view: fails open (200, fail_open=true) when the store is down."""
    return await policy.classify(address)


@router.get("/{address}", response_model=PolicyStatus)
async def policy_status(
    address: str,
    policy: IPPolicyService = Depends(get_policy_service),
) -> PolicyStatus:
    return await policy.status(address)


@router.post("/allow", response_model=IPPolicyEntry, status_code=201)
async def add_allow(
    body: ListEntryRequest,
    policy: IPPolicyService = Depends(get_policy_service),
) -> IPPolicyEntry:
    return await policy.allow_add(body.address, body.reason or "Added to allow-list", actor=body.created_by)


@router.post("/deny", response_model=IPPolicyEntry, status_code=201)
async def add_deny(
    body: DenyRequest,
    policy: IPPolicyService = Depends(get_policy_service),
) -> IPPolicyEntry:
    ttl = timedelta(minutes=body.ttl_minutes) if body.ttl_minutes is not None else None
    return await policy.upsert(
        body.address, "deny", body.reason or "Added to deny-list", ttl=ttl, actor=body.created_by
    )


@router.post("/block", response_model=IPPolicyEntry, status_code=201)
async def add_block(
    body: BlockRequest,
    policy: IPPolicyService = Depends(get_policy_service),
) -> IPPolicyEntry:
    return await policy.block(
        body.address, body.duration_minutes, body.reason or "Temporary block", actor=body.created_by
    )


@router.delete("/allow/{address}", response_model=RemovalResult)
async def remove_allow(
    address: str,
    policy: IPPolicyService = Depends(get_policy_service),
) -> RemovalResult:
    return RemovalResult(address=address, removed=await policy.allow_remove(address))


@router.delete("/deny/{address}", response_model=RemovalResult)
async def remove_deny(
    address: str,
    policy: IPPolicyService = Depends(get_policy_service),
) -> RemovalResult:
    return RemovalResult(address=address, removed=await policy.deny_remove(address))


@router.delete("/block/{address}", response_model=RemovalResult)
async def unblock(
    address: str,
    policy: IPPolicyService = Depends(get_policy_service),
) -> RemovalResult:
    """Lift both a temporary block and a deny-list entry."""
    return RemovalResult(address=address, removed=await policy.unblock(address))

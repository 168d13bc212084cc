"""Alert query routes — GET /alerts, GET /alerts/{id}, PATCH /alerts/{id}/resolve."""

from __future__ import annotations

from datetime import datetime

from fastapi import APIRouter, Depends, HTTPException, Query

from abuse_guard.api.dependencies import get_alert_store, get_dispatcher
from abuse_guard.dispatcher import AlertDispatcher
from abuse_guard.models.alert import Alert, AlertStatus
from abuse_guard.store.alerts import AlertStore

router = APIRouter()


@router.get("/alerts", response_model=list[Alert])
async def list_alerts(
    skip: int = Query(0, ge=0),
    limit: int = Query(50, ge=1, le=500),
    component: str | None = Query(None),
    status: AlertStatus | None = Query(None),
    since: datetime | None = Query(None),
    alert_store: AlertStore = Depends(get_alert_store),
) -> list[Alert]:
    return await alert_store.list_alerts(
        skip=skip,
        limit=limit,
        component=component,
        status=status,
        since=since,
    )


@router.get("/alerts/{alert_id}", response_model=Alert)
async def get_alert(
    alert_id: str,
    alert_store: AlertStore = Depends(get_alert_store),
) -> Alert:
    alert = await alert_store.get_by_id(alert_id)
    if alert is None:
        raise HTTPException(status_code=404, detail="Alert not found")
    return alert


@router.patch("/alerts/{alert_id}/resolve", response_model=dict)
async def resolve_alert(
    alert_id: str,
    dispatcher: AlertDispatcher = Depends(get_dispatcher),
) -> dict:  # type: ignore[type-arg]
    resolved = await dispatcher.resolve(alert_id)
    if not resolved:
        raise HTTPException(status_code=404, detail="Active alert not found")
    return {"resolved": True, "alert_id": alert_id}

"""FastAPI dependency providers.

The Services bundle is built in the lifespan hook and attached to app.state;
each provider hands one piece of it to a route via Request injection.
"""

from __future__ import annotations

from fastapi import Request

from abuse_guard.detections.ddos import AnomalyDetector
from abuse_guard.dispatcher import AlertDispatcher
from abuse_guard.policy import IPPolicyService
from abuse_guard.store.alerts import AlertStore
from abuse_guard.store.events import EventStore


def get_policy_service(request: Request) -> IPPolicyService:
    return request.app.state.policy  # type: ignore[no-any-return]


def get_detector(request: Request) -> AnomalyDetector:
    return request.app.state.detector  # type: ignore[no-any-return]


def get_dispatcher(request: Request) -> AlertDispatcher:
    return request.app.state.dispatcher  # type: ignore[no-any-return]


def get_alert_store(request: Request) -> AlertStore:
    return request.app.state.alert_store  # type: ignore[no-any-return]


def get_event_store(request: Request) -> EventStore:
    return request.app.state.event_store  # type: ignore[no-any-return]

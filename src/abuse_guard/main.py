"""FastAPI application factory with lifespan startup/shutdown."""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import AsyncGenerator

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from abuse_guard.api.routes import alerts, detection, events, health, policies
from abuse_guard.config import load_config
from abuse_guard.errors import StoreUnavailable, ValidationError
from abuse_guard.logging_config import setup_logging
from abuse_guard.retention import build_cleanup_task
from abuse_guard.scheduler import PeriodicTask
from abuse_guard.services import build_services
from abuse_guard.store.client import get_database, get_motor_client

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Create shared resources on startup; close them on shutdown."""
    config = load_config()
    setup_logging()

    client = get_motor_client(config.mongo_uri, config.store.timeout_seconds)
    db = get_database(client, config.mongo_db)
    services = build_services(config, db)

    # Idempotent; a store that is down at startup is not fatal
    try:
        await services.ensure_indexes()
    except StoreUnavailable as exc:
        logger.error("Could not ensure indexes: %s", exc)

    tasks = [build_cleanup_task(services.policy, config.retention)]
    if config.detection.enabled:
        tasks.append(
            PeriodicTask(
                "ddos-monitor",
                services.detector.check_and_block,
                config.detection.check_interval_seconds,
                run_immediately=False,
            )
        )
    for task in tasks:
        await task.start()

    # Attach to app.state so dependency providers can access them
    app.state.config = config
    app.state.mongo_client = client
    app.state.policy_store = services.policy_store
    app.state.event_store = services.event_store
    app.state.alert_store = services.alert_store
    app.state.dispatcher = services.dispatcher
    app.state.policy = services.policy
    app.state.detector = services.detector

    yield

    for task in tasks:
        await task.stop()
    await services.policy.drain()
    client.close()


async def _validation_error(request: Request, exc: ValidationError) -> JSONResponse:
    return JSONResponse(status_code=422, content={"detail": str(exc)})


async def _store_unavailable(request: Request, exc: StoreUnavailable) -> JSONResponse:
    logger.error("%s %s failed: %s", request.method, request.url.path, exc)
    return JSONResponse(status_code=503, content={"detail": str(exc)})


def register_error_handlers(app: FastAPI) -> None:
    app.add_exception_handler(ValidationError, _validation_error)  # type: ignore[arg-type]
    app.add_exception_handler(StoreUnavailable, _store_unavailable)  # type: ignore[arg-type]


def create_app() -> FastAPI:
    app = FastAPI(
        title="Abuse Guard",
        version="0.1.0",
        lifespan=lifespan,
    )
    register_error_handlers(app)
    app.include_router(health.router)
    app.include_router(policies.router)
    app.include_router(alerts.router)
    app.include_router(events.router)
    app.include_router(detection.router)
    return app


app = create_app()

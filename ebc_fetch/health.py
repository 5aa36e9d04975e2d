"""Liveness and readiness checks for the fetcher, served by uvicorn."""

from __future__ import annotations

import time
from typing import TYPE_CHECKING

from fastapi import FastAPI
from fastapi.responses import JSONResponse

from .models import HealthStatus, ServiceStatus

if TYPE_CHECKING:
    from .service import FetcherService

# a suspended fetcher (dont_run, no credentials) is idle on purpose, not sick
ALIVE_STATES = frozenset({ServiceStatus.STARTING, ServiceStatus.RUNNING, ServiceStatus.SUSPENDED})


def create_health_app(service: FetcherService) -> FastAPI:
    """``/health`` reports status and counters; ``/ready`` is 200 only
    once a cycle has completed against the mailbox."""
    app = FastAPI(title=f"{service.config.name} health", docs_url=None, redoc_url=None)

    @app.get("/health")
    async def health() -> JSONResponse:
        current = service.status
        body = HealthStatus(
            service_name=service.config.name,
            status=current,
            uptime_seconds=time.monotonic() - service.start_time,
            details=await service.health_check(),
        )
        return JSONResponse(
            content=body.model_dump(mode="json"),
            status_code=200 if current in ALIVE_STATES else 503,
        )

    @app.get("/ready")
    async def ready() -> JSONResponse:
        current = service.status
        running = current is ServiceStatus.RUNNING
        return JSONResponse(
            content={"ready": running, "status": current.value},
            status_code=200 if running else 503,
        )

    return app

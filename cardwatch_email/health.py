"""FastAPI health endpoints for liveness and readiness probes."""

from __future__ import annotations

import time
from typing import TYPE_CHECKING

from fastapi import FastAPI
from fastapi.responses import JSONResponse

from .models import ConnectionState, HealthStatus

if TYPE_CHECKING:
    from .service import IngestionService


def create_health_app(service: IngestionService) -> FastAPI:
    """Build a minimal FastAPI app with ``/health`` and ``/ready`` routes.

    ``/health`` is 200 while any mailbox worker is running, reconnecting
    ones included.  ``/ready`` is 200 only when every mailbox is connected.
    """
    app = FastAPI(title=f"{service.config.name} health", docs_url=None, redoc_url=None)

    @app.get("/health")
    async def health() -> JSONResponse:
        status = HealthStatus(
            service_name=service.config.name,
            running=service.running,
            uptime_seconds=time.monotonic() - service.start_time,
            mailboxes=service.status(),
        )
        return JSONResponse(
            content=status.model_dump(mode="json"),
            status_code=200 if service.running else 503,
        )

    @app.get("/ready")
    async def ready() -> JSONResponse:
        mailboxes = service.status()
        is_ready = bool(mailboxes) and all(
            m.state is ConnectionState.CONNECTED for m in mailboxes
        )
        return JSONResponse(
            content={"ready": is_ready},
            status_code=200 if is_ready else 503,
        )

    return app

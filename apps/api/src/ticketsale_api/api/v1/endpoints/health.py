from __future__ import annotations

from typing import Any

from fastapi import APIRouter, Request

from ticketsale_api.core.settings import settings


router = APIRouter()


@router.get("/health", summary="Service health check")
async def service_health(request: Request) -> dict[str, Any]:
    queue = getattr(request.app.state, "webhook_queue", None)
    return {
        "status": "ok",
        "environment": settings.environment,
        "version": settings.version,
        "webhookQueue": {
            "running": bool(queue and queue.is_running),
            "pending": queue.pending if queue else 0,
        },
    }

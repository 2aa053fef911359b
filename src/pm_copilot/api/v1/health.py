"""Health check endpoints.

/health is a liveness check; /health/ready also reports whether the
meeting store is loaded and a generative service key is configured.
"""

from __future__ import annotations

from fastapi import APIRouter, Request, status
from fastapi.responses import JSONResponse

from src.pm_copilot.config import get_settings

router = APIRouter(tags=["health"])


@router.get("/health")
async def health_check():
    """Basic liveness check. No dependencies are checked."""
    settings = get_settings()
    return {"status": "ok", "environment": settings.ENVIRONMENT.value}


@router.get("/health/ready")
async def readiness_check(request: Request):
    """Readiness check: meeting store loaded and gateway configured.

    A gateway without keys is reported as "no_keys" and does not make the
    service unready; meetings can still be listed and read.
    """
    checks: dict = {"meeting_store": "ok", "gateway": "ok"}

    if getattr(request.app.state, "meeting_store", None) is None:
        checks["meeting_store"] = "error"

    gateway = getattr(request.app.state, "gateway", None)
    if gateway is None:
        checks["gateway"] = "error"
    elif not gateway.available:
        checks["gateway"] = "no_keys"

    healthy = checks["meeting_store"] == "ok" and checks["gateway"] in ("ok", "no_keys")
    return JSONResponse(
        status_code=status.HTTP_200_OK if healthy else status.HTTP_503_SERVICE_UNAVAILABLE,
        content={"status": "ready" if healthy else "degraded", "checks": checks},
    )

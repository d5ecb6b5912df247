"""Health check endpoints for container orchestration."""

from typing import Any

from fastapi import APIRouter, Request, Response, status
from fastapi.responses import JSONResponse

from closedloop.services.scheduler import get_scheduler

router = APIRouter(tags=["Health"])


def _loop_health(request: Request) -> dict[str, str]:
    manager = getattr(request.app.state, "manager", None)
    scheduler = get_scheduler()
    return {
        "loop": "configured" if manager is not None else "not_configured",
        "pump": "attached"
        if manager is not None and manager.pump_driver is not None
        else "detached",
        "scheduler": "running"
        if scheduler is not None and scheduler.running
        else "stopped",
    }


@router.get("/health", response_model=None)
async def health_check(request: Request) -> Response:
    """
    Health check with loop status.

    Returns 200 with status "healthy" when the loop is configured, and
    503 with status "degraded" when it is not. A detached pump is
    reported but is not a failure: the loop still computes suggestions.
    """
    details = _loop_health(request)

    if details["loop"] == "configured":
        return JSONResponse(
            status_code=status.HTTP_200_OK,
            content={"status": "healthy", **details},
        )
    return JSONResponse(
        status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
        content={"status": "degraded", **details},
    )


@router.get("/health/live")
async def liveness_probe() -> dict[str, Any]:
    """Liveness probe: the process is running."""
    return {"status": "alive"}


@router.get("/health/ready", response_model=None)
async def readiness_probe(request: Request) -> Response:
    """Readiness probe: the loop manager has been built."""
    details = _loop_health(request)

    if details["loop"] == "configured":
        return JSONResponse(
            status_code=status.HTTP_200_OK,
            content={"status": "ready", "loop": details["loop"]},
        )
    return JSONResponse(
        status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
        content={"status": "not_ready", "loop": details["loop"]},
    )

"""closedloop FastAPI application."""

from contextlib import asynccontextmanager
from typing import Any

from fastapi import FastAPI

from closedloop import __version__
from closedloop.config import settings, validate_settings
from closedloop.core.exceptions import CollaboratorConfigError
from closedloop.logging_config import get_logger, setup_logging
from closedloop.middleware import CorrelationIdMiddleware
from closedloop.plugins import build_manager
from closedloop.routers import health, loop
from closedloop.services.scheduler import start_scheduler, stop_scheduler

setup_logging(
    log_format=settings.log_format,
    log_level=settings.log_level,
    service_name=settings.service_name,
)
logger = get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Build the loop manager and run the scheduler for the app's lifetime."""
    if not settings.testing:
        validate_settings()

    try:
        manager = build_manager(settings)
    except CollaboratorConfigError as e:
        logger.error("Loop collaborators failed to load", error=str(e))
        manager = None

    app.state.manager = manager
    if manager is not None:
        start_scheduler(manager)
    logger.info("closedloop started", loop_configured=manager is not None)

    yield

    logger.info("Shutting down closedloop...")
    stop_scheduler()
    if manager is not None:
        await manager.shutdown()
    logger.info("closedloop shutdown complete")


app = FastAPI(
    title="closedloop",
    description="Closed-loop insulin delivery orchestrator",
    version=__version__,
    lifespan=lifespan,
)

app.add_middleware(CorrelationIdMiddleware)

app.include_router(health.router)
app.include_router(loop.router)


@app.get("/")
async def root() -> dict[str, Any]:
    return {
        "name": "closedloop",
        "version": __version__,
        "docs": "/docs",
    }

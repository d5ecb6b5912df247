"""Loop router.

Observe the loop and issue user-initiated commands. Every pump command
still goes through the safety gate and the serial pump queue.
"""

from typing import Annotated

from fastapi import APIRouter, Depends, HTTPException, Request, status

from closedloop.core.enums import TriggerSource
from closedloop.core.models import EnactmentResult, LoopCycleResult
from closedloop.logging_config import get_logger
from closedloop.schemas.loop import (
    BolusCommand,
    LoopStatusResponse,
    SuggestionResponse,
    TempBasalCommand,
)
from closedloop.services.aps_manager import APSManager

logger = get_logger(__name__)

router = APIRouter(prefix="/api/loop", tags=["loop"])


def get_manager(request: Request) -> APSManager:
    """Resolve the loop manager, or 503 if the loop is not configured."""
    manager = getattr(request.app.state, "manager", None)
    if manager is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Loop is not configured",
        )
    return manager


Manager = Annotated[APSManager, Depends(get_manager)]


@router.get("/status", response_model=LoopStatusResponse)
async def get_loop_status(manager: Manager) -> LoopStatusResponse:
    """Current coordinator state, pump status and the last cycle result."""
    coordinator = manager.coordinator
    return LoopStatusResponse(
        state=coordinator.state,
        active_cycle_id=coordinator.active_cycle_id,
        closed_loop=manager.preferences.closed_loop,
        pump_attached=manager.pump_driver is not None,
        pump_status=manager.pump_status(),
        effective_temp_basal=manager.effective_temp_basal(),
        last_cycle=coordinator.last_result,
    )


@router.get("/suggestion", response_model=SuggestionResponse)
async def get_suggestion(manager: Manager) -> SuggestionResponse:
    """Latest suggested and enacted records."""
    return SuggestionResponse(suggested=manager.suggested(), enacted=manager.enacted())


@router.post("/trigger", response_model=LoopCycleResult)
async def trigger_loop(manager: Manager) -> LoopCycleResult:
    """Run a loop cycle now, superseding any cycle in progress."""
    logger.info("Manual loop trigger requested")
    return await manager.fetch_and_loop(TriggerSource.manual)


@router.post("/bolus", response_model=EnactmentResult)
async def enact_bolus(command: BolusCommand, manager: Manager) -> EnactmentResult:
    """User-initiated bolus. Refused while the pump is bolusing or suspended."""
    logger.info("Manual bolus requested", units=command.units)
    return await manager.enact_bolus(command.units)


@router.post("/temp-basal", response_model=EnactmentResult)
async def enact_temp_basal(
    command: TempBasalCommand, manager: Manager
) -> EnactmentResult:
    """User-initiated temp basal."""
    logger.info(
        "Manual temp basal requested",
        rate=command.rate,
        duration_minutes=command.duration_minutes,
    )
    return await manager.enact_temp_basal(command.rate, command.duration_minutes)

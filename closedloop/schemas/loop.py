"""Loop HTTP schemas.

Request and response bodies for the loop endpoints.
"""

from decimal import Decimal

from pydantic import BaseModel, Field

from closedloop.core.enums import LoopState
from closedloop.core.models import LoopCycleResult, PumpStatus, Suggestion, TempBasal


class LoopStatusResponse(BaseModel):
    """Current loop state and the last completed cycle."""

    state: LoopState = Field(..., description="Coordinator state")
    active_cycle_id: str | None = Field(None, description="Cycle in progress, if any")
    closed_loop: bool = Field(..., description="Whether suggestions are enacted")
    pump_attached: bool = Field(..., description="Whether a pump driver is attached")
    pump_status: PumpStatus = Field(..., description="Latest recorded pump status")
    effective_temp_basal: TempBasal = Field(..., description="Temp basal in effect now")
    last_cycle: LoopCycleResult | None = Field(None, description="Last non-superseded cycle")


class SuggestionResponse(BaseModel):
    """Latest suggested and enacted records."""

    suggested: Suggestion | None = None
    enacted: Suggestion | None = None


class BolusCommand(BaseModel):
    """User-initiated bolus."""

    units: Decimal = Field(..., gt=0, le=25, description="Bolus units (0-25]")


class TempBasalCommand(BaseModel):
    """User-initiated temp basal."""

    rate: Decimal = Field(..., ge=0, le=35, description="Rate in U/h")
    duration_minutes: int = Field(..., gt=0, le=24 * 60, description="Duration in minutes")

"""Loop Pydantic models.

Pure data models for the loop: driver snapshots, recorded pump state,
suggestions, announcements and the outcome types returned by the loop
services. No I/O here.
"""

from datetime import datetime
from decimal import Decimal
from typing import Annotated, Literal, Self

from pydantic import AwareDatetime, BaseModel, ConfigDict, Field, model_validator

from closedloop.core.enums import (
    AnnouncementStatus,
    BasalDeliveryKind,
    BolusState,
    CycleOutcome,
    EnactmentStatus,
    PumpAction,
    PumpMode,
    RecommendationStatus,
    StepStatus,
    TempType,
    TriggerSource,
)

# ---------------------------------------------------------------------------
# Inputs
# ---------------------------------------------------------------------------


class BloodGlucose(BaseModel):
    """A single CGM sample (mg/dL)."""

    model_config = ConfigDict(frozen=True)

    date: AwareDatetime
    glucose: int = Field(ge=0)


# ---------------------------------------------------------------------------
# Driver snapshots
# ---------------------------------------------------------------------------


class DoseEntry(BaseModel):
    """A dose as reported back by the pump driver."""

    model_config = ConfigDict(frozen=True)

    start_date: AwareDatetime
    end_date: AwareDatetime
    units_per_hour: float = Field(default=0.0, ge=0)
    units: float | None = Field(default=None, ge=0)
    automatic: bool | None = None


class BasalDeliveryState(BaseModel):
    """Live basal delivery state of the pump."""

    model_config = ConfigDict(frozen=True)

    kind: BasalDeliveryKind
    dose: DoseEntry | None = None

    @model_validator(mode="after")
    def check_dose(self) -> Self:
        if self.kind == BasalDeliveryKind.temp_basal and self.dose is None:
            msg = "a temp_basal delivery state must carry the running dose"
            raise ValueError(msg)
        return self

    @property
    def is_suspended(self) -> bool:
        return self.kind == BasalDeliveryKind.suspended


class PumpManagerStatus(BaseModel):
    """Snapshot pushed by the pump driver on every change."""

    model_config = ConfigDict(frozen=True)

    bolus_state: BolusState = BolusState.no_bolus
    basal_delivery_state: BasalDeliveryState | None = None


# ---------------------------------------------------------------------------
# Recorded state
# ---------------------------------------------------------------------------


class PumpStatus(BaseModel):
    """Pump status as seen by the loop.

    ``status == suspended`` iff ``suspended``; ``status == bolusing`` iff
    ``bolusing and not suspended``.
    """

    model_config = ConfigDict(frozen=True)

    status: PumpMode
    bolusing: bool
    suspended: bool

    @model_validator(mode="after")
    def check_consistency(self) -> Self:
        if (self.status == PumpMode.suspended) != self.suspended:
            msg = "status must be 'suspended' exactly when suspended is true"
            raise ValueError(msg)
        if (self.status == PumpMode.bolusing) != (self.bolusing and not self.suspended):
            msg = "status must be 'bolusing' exactly when bolusing and not suspended"
            raise ValueError(msg)
        return self

    @classmethod
    def from_manager_status(cls, status: PumpManagerStatus) -> "PumpStatus":
        """Derive the loop's view from a driver snapshot.

        A driver that does not report a basal delivery state is treated as
        suspended.
        """
        bolusing = status.bolus_state != BolusState.no_bolus
        delivery = status.basal_delivery_state
        suspended = delivery.is_suspended if delivery is not None else True
        if suspended:
            mode = PumpMode.suspended
        elif bolusing:
            mode = PumpMode.bolusing
        else:
            mode = PumpMode.normal
        return cls(status=mode, bolusing=bolusing, suspended=suspended)


class TempBasal(BaseModel):
    """A temporary basal rate, either recorded intent or derived effective value.

    ``duration`` is in minutes, ``rate`` in U/h.
    """

    model_config = ConfigDict(frozen=True)

    duration: int = Field(ge=0)
    rate: Decimal = Field(ge=0)
    temp: TempType = TempType.absolute
    updated_at: AwareDatetime

    @classmethod
    def none(cls, at: datetime) -> "TempBasal":
        """No temp basal running."""
        return cls(duration=0, rate=Decimal(0), updated_at=at)


class Suggestion(BaseModel):
    """Output of the recommendation engine. Read-only for the loop.

    Extra engine fields are preserved so the enacted copy matches the
    suggested record.
    """

    model_config = ConfigDict(frozen=True, extra="allow")

    rate: Decimal | None = Field(default=None, ge=0)
    duration: int | None = Field(default=None, ge=0)
    units: Decimal | None = Field(default=None, ge=0)
    timestamp: AwareDatetime
    reason: str | None = None

    @property
    def has_temp_basal(self) -> bool:
        return self.rate is not None and self.duration is not None

    @property
    def has_bolus(self) -> bool:
        return self.units is not None


# ---------------------------------------------------------------------------
# Announcements
# ---------------------------------------------------------------------------


class BolusAction(BaseModel):
    model_config = ConfigDict(frozen=True)

    type: Literal["bolus"] = "bolus"
    amount: Decimal = Field(gt=0)


class PumpCommandAction(BaseModel):
    model_config = ConfigDict(frozen=True)

    type: Literal["pump"] = "pump"
    pump_action: PumpAction


class LoopModeAction(BaseModel):
    model_config = ConfigDict(frozen=True)

    type: Literal["looping"] = "looping"
    closed_loop: bool


class TempBasalAction(BaseModel):
    model_config = ConfigDict(frozen=True)

    type: Literal["tempbasal"] = "tempbasal"
    rate: Decimal = Field(ge=0)
    duration: int = Field(ge=0, description="Duration in minutes. 0 cancels the temp.")


AnnouncementAction = Annotated[
    BolusAction | PumpCommandAction | LoopModeAction | TempBasalAction,
    Field(discriminator="type"),
]


class Announcement(BaseModel):
    """A one-shot remote command. Identity is ``id``."""

    model_config = ConfigDict(frozen=True)

    id: str = Field(min_length=1)
    created_at: AwareDatetime
    action: AnnouncementAction | None = None
    enacted: bool = False

    @property
    def is_actionable(self) -> bool:
        return self.action is not None and not self.enacted


# ---------------------------------------------------------------------------
# Runtime preferences
# ---------------------------------------------------------------------------


class LoopPreferences(BaseModel):
    """Process-wide loop switches, shared by reference.

    The Remote Command Handler is the only writer of ``closed_loop``.
    """

    model_config = ConfigDict(validate_assignment=True)

    closed_loop: bool = False
    unsuspend_if_no_temp: bool = False


# ---------------------------------------------------------------------------
# Outcomes
# ---------------------------------------------------------------------------


class RecommendationOutcome(BaseModel):
    """Result of refreshing inputs and invoking the recommendation engine."""

    model_config = ConfigDict(frozen=True)

    status: RecommendationStatus
    suggestion: Suggestion | None = None
    detail: str | None = None

    @model_validator(mode="after")
    def check_consistency(self) -> Self:
        if self.status == RecommendationStatus.success and self.suggestion is None:
            msg = "a successful recommendation must carry a suggestion"
            raise ValueError(msg)
        if self.status != RecommendationStatus.success and self.suggestion is not None:
            msg = "only a successful recommendation carries a suggestion"
            raise ValueError(msg)
        return self

    @property
    def ok(self) -> bool:
        return self.status == RecommendationStatus.success


class EnactmentResult(BaseModel):
    """Result of applying a suggestion to the pump.

    Step statuses reflect exactly what the hardware accepted.
    """

    model_config = ConfigDict(frozen=True)

    status: EnactmentStatus
    temp_basal: StepStatus = StepStatus.not_requested
    bolus: StepStatus = StepStatus.not_requested
    errors: list[str] = Field(default_factory=list)

    @model_validator(mode="after")
    def check_consistency(self) -> Self:
        steps = (self.temp_basal, self.bolus)
        if self.status == EnactmentStatus.succeeded:
            if StepStatus.failed in steps or StepStatus.skipped in steps:
                msg = "a succeeded enactment cannot contain failed or skipped steps"
                raise ValueError(msg)
            if self.errors:
                msg = "errors must be empty when the enactment succeeded"
                raise ValueError(msg)
        if self.status == EnactmentStatus.partially_failed:
            if StepStatus.failed not in steps:
                msg = "a partially failed enactment must contain a failed step"
                raise ValueError(msg)
        return self

    @property
    def detail(self) -> str:
        return f"temp_basal={self.temp_basal.value} bolus={self.bolus.value}"


class AnnouncementResult(BaseModel):
    """Result of handling one announcement."""

    model_config = ConfigDict(frozen=True)

    announcement_id: str
    status: AnnouncementStatus
    detail: str | None = None


class LoopCycleResult(BaseModel):
    """Summary of one loop cycle, kept for observability."""

    model_config = ConfigDict(frozen=True)

    cycle_id: str
    trigger: TriggerSource
    outcome: CycleOutcome
    started_at: AwareDatetime
    finished_at: AwareDatetime
    recommendation: RecommendationOutcome | None = None
    enactment: EnactmentResult | None = None
    announcement: AnnouncementResult | None = None
    detail: str | None = None

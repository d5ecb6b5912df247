"""Loop core: data model, contracts and error taxonomy.

Everything the loop services exchange is defined here. Nothing in this
package performs I/O or talks to the pump.
"""

from closedloop.core.cancellation import CancellationToken
from closedloop.core.enums import (
    AnnouncementStatus,
    BasalDeliveryKind,
    BolusState,
    CycleOutcome,
    EnactmentStatus,
    LoopState,
    PumpAction,
    PumpMode,
    RecommendationStatus,
    StepStatus,
    TempType,
    TriggerSource,
)
from closedloop.core.exceptions import (
    CollaboratorConfigError,
    CycleSupersededError,
    DriverCommandError,
    EngineError,
    InsufficientDataError,
    LoopError,
    RefreshError,
    UnsafeDeviceStateError,
)
from closedloop.core.models import (
    Announcement,
    AnnouncementResult,
    BasalDeliveryState,
    BloodGlucose,
    BolusAction,
    DoseEntry,
    EnactmentResult,
    LoopCycleResult,
    LoopModeAction,
    LoopPreferences,
    PumpCommandAction,
    PumpManagerStatus,
    PumpStatus,
    RecommendationOutcome,
    Suggestion,
    TempBasal,
    TempBasalAction,
)

__all__ = [
    "Announcement",
    "AnnouncementResult",
    "AnnouncementStatus",
    "BasalDeliveryKind",
    "BasalDeliveryState",
    "BloodGlucose",
    "BolusAction",
    "BolusState",
    "CancellationToken",
    "CollaboratorConfigError",
    "CycleOutcome",
    "CycleSupersededError",
    "DoseEntry",
    "DriverCommandError",
    "EnactmentResult",
    "EnactmentStatus",
    "EngineError",
    "InsufficientDataError",
    "LoopCycleResult",
    "LoopError",
    "LoopModeAction",
    "LoopPreferences",
    "LoopState",
    "PumpAction",
    "PumpCommandAction",
    "PumpManagerStatus",
    "PumpMode",
    "PumpStatus",
    "RecommendationOutcome",
    "RecommendationStatus",
    "RefreshError",
    "StepStatus",
    "Suggestion",
    "TempBasal",
    "TempBasalAction",
    "TempType",
    "TriggerSource",
    "UnsafeDeviceStateError",
]

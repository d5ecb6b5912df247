"""Loop enums.

Status and action vocabularies shared by the loop services.
"""

from enum import StrEnum, auto


class PumpMode(StrEnum):
    """Derived pump status exposed to the loop."""

    normal = auto()
    bolusing = auto()
    suspended = auto()


class TempType(StrEnum):
    """Temp basal kind. Only absolute rates are issued by this controller."""

    absolute = auto()


class BolusState(StrEnum):
    """Driver-reported bolus state."""

    no_bolus = auto()
    initiating = auto()
    in_progress = auto()
    canceling = auto()


class BasalDeliveryKind(StrEnum):
    """Driver-reported basal delivery state."""

    active = auto()
    initiating_temp_basal = auto()
    temp_basal = auto()
    canceling_temp_basal = auto()
    suspending = auto()
    suspended = auto()
    resuming = auto()


class PumpAction(StrEnum):
    """Pump actions a remote announcement can request."""

    suspend = auto()
    resume = auto()


class LoopState(StrEnum):
    """Loop Trigger Coordinator state machine."""

    idle = auto()
    refreshing = auto()
    evaluating = auto()
    enacting = auto()


class TriggerSource(StrEnum):
    """What started a loop cycle.

    ``periodic``: the background scheduler.
    ``pump``: the driver signalled that a loop is recommended.
    ``manual``: an explicit request over HTTP or the manager facade.
    """

    periodic = auto()
    pump = auto()
    manual = auto()


class RecommendationStatus(StrEnum):
    """Outcome of a recommendation attempt."""

    success = auto()
    insufficient_data = auto()
    refresh_failed = auto()
    engine_error = auto()
    resume_failed = auto()
    superseded = auto()


class StepStatus(StrEnum):
    """Outcome of one enactment step (temp basal or bolus)."""

    not_requested = auto()
    succeeded = auto()
    failed = auto()
    skipped = auto()


class EnactmentStatus(StrEnum):
    """Outcome of applying a suggestion."""

    succeeded = auto()
    skipped_unsafe = auto()
    partially_failed = auto()
    nothing_to_enact = auto()
    superseded = auto()


class AnnouncementStatus(StrEnum):
    """Outcome of handling a remote announcement."""

    enacted = auto()
    already_enacted = auto()
    in_progress = auto()
    skipped_unsafe = auto()
    failed = auto()
    invalid = auto()


class CycleOutcome(StrEnum):
    """Outcome of a whole loop cycle."""

    completed = auto()
    no_action = auto()
    failed = auto()
    superseded = auto()

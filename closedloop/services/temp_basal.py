"""Temp-Basal Reconciler.

Works out which temp basal is actually in effect, for the recommendation
engine's ``current_temp`` input. Recorded intent goes stale when an
enactment half-fails or the pump ends a temp basal on its own, so the
driver's live delivery state wins whenever it is known.
"""

from datetime import datetime
from decimal import Decimal

from closedloop.core.constants import MONITOR_TEMP_BASAL, SECONDS_PER_MINUTE
from closedloop.core.enums import BasalDeliveryKind
from closedloop.core.models import TempBasal
from closedloop.logging_config import get_logger
from closedloop.services.device_state import DeviceStateTracker
from closedloop.storage import RecordStorage, retrieve

logger = get_logger(__name__)


def _whole_minutes(seconds: float) -> int:
    return int(seconds // SECONDS_PER_MINUTE)


class TempBasalReconciler:
    """Derives the effective temp basal. Never writes the recorded intent."""

    def __init__(self, storage: RecordStorage, device_state: DeviceStateTracker):
        self._storage = storage
        self._device_state = device_state

    def recorded_intent(self) -> TempBasal | None:
        return retrieve(self._storage, MONITOR_TEMP_BASAL, TempBasal)

    def effective_temp_basal(self, now: datetime) -> TempBasal:
        fallback = self._from_recorded_intent(now)

        driver = self._device_state.driver
        if driver is None:
            return fallback

        state = driver.status.basal_delivery_state
        if state is None:
            return fallback

        if state.kind == BasalDeliveryKind.active:
            # Scheduled basal running: any recorded temp is over
            return TempBasal.none(now)

        if state.kind == BasalDeliveryKind.temp_basal and state.dose is not None:
            remaining = _whole_minutes((state.dose.end_date - now).total_seconds())
            return TempBasal(
                duration=max(0, remaining),
                rate=Decimal(str(state.dose.units_per_hour)),
                updated_at=now,
            )

        return fallback

    def _from_recorded_intent(self, now: datetime) -> TempBasal:
        intent = self.recorded_intent()
        if intent is None:
            return TempBasal.none(now)

        elapsed = _whole_minutes((now - intent.updated_at).total_seconds())
        remaining = max(0, intent.duration - elapsed)
        logger.debug(
            "Temp basal from recorded intent",
            recorded_duration=intent.duration,
            elapsed_minutes=elapsed,
            remaining_minutes=remaining,
        )
        return TempBasal(duration=remaining, rate=intent.rate, updated_at=now)

"""Tests for the Temp-Basal Reconciler."""

from datetime import timedelta
from decimal import Decimal

from closedloop.core.constants import MONITOR_TEMP_BASAL
from closedloop.core.enums import BasalDeliveryKind
from closedloop.core.models import (
    BasalDeliveryState,
    DoseEntry,
    PumpManagerStatus,
    TempBasal,
)
from closedloop.services.device_state import DeviceStateTracker
from closedloop.services.temp_basal import TempBasalReconciler
from closedloop.storage import save


def record_intent(storage, duration, rate, at):
    save(
        storage,
        MONITOR_TEMP_BASAL,
        TempBasal(duration=duration, rate=Decimal(rate), updated_at=at),
    )


def delivery(kind, dose=None):
    return PumpManagerStatus(basal_delivery_state=BasalDeliveryState(kind=kind, dose=dose))


class TestRecordedIntent:
    """Without a live driver answer, the recorded intent is aged by elapsed time."""

    def test_no_record_means_no_temp(self, storage, clock):
        reconciler = TempBasalReconciler(storage, DeviceStateTracker(storage))

        temp = reconciler.effective_temp_basal(clock())

        assert temp.duration == 0
        assert temp.rate == Decimal(0)

    def test_remaining_duration(self, storage, clock):
        record_intent(storage, 30, "1.0", clock())
        reconciler = TempBasalReconciler(storage, DeviceStateTracker(storage))

        clock.advance(minutes=10)
        temp = reconciler.effective_temp_basal(clock())

        assert temp.duration == 20
        assert temp.rate == Decimal("1.0")
        assert temp.updated_at == clock()

    def test_partial_minutes_are_floored(self, storage, clock):
        record_intent(storage, 30, "1.0", clock())
        reconciler = TempBasalReconciler(storage, DeviceStateTracker(storage))

        clock.advance(minutes=10, seconds=59)

        assert reconciler.effective_temp_basal(clock()).duration == 20

    def test_expired_intent_clamps_to_zero(self, storage, clock):
        record_intent(storage, 30, "1.0", clock())
        reconciler = TempBasalReconciler(storage, DeviceStateTracker(storage))

        clock.advance(minutes=45)

        assert reconciler.effective_temp_basal(clock()).duration == 0

    def test_reconciler_never_writes_the_record(self, storage, clock):
        record_intent(storage, 30, "1.0", clock())
        before = storage.retrieve_raw(MONITOR_TEMP_BASAL)
        reconciler = TempBasalReconciler(storage, DeviceStateTracker(storage))

        clock.advance(minutes=10)
        reconciler.effective_temp_basal(clock())

        assert storage.retrieve_raw(MONITOR_TEMP_BASAL) == before


class TestLiveDeliveryState:
    def test_active_scheduled_basal_overrides_record(self, storage, driver, clock):
        record_intent(storage, 30, "1.0", clock())
        tracker = DeviceStateTracker(storage, driver)
        reconciler = TempBasalReconciler(storage, tracker)

        clock.advance(minutes=5)
        temp = reconciler.effective_temp_basal(clock())

        assert temp.duration == 0
        assert temp.rate == Decimal(0)

    def test_running_temp_basal_from_driver(self, storage, driver, clock):
        record_intent(storage, 30, "1.0", clock())
        start = clock()
        driver.set_status(
            delivery(
                BasalDeliveryKind.temp_basal,
                DoseEntry(
                    start_date=start,
                    end_date=start + timedelta(minutes=60),
                    units_per_hour=0.45,
                ),
            )
        )
        reconciler = TempBasalReconciler(storage, DeviceStateTracker(storage, driver))

        clock.advance(minutes=15)
        temp = reconciler.effective_temp_basal(clock())

        assert temp.duration == 45
        assert temp.rate == Decimal("0.45")

    def test_driver_temp_past_end_is_zero(self, storage, driver, clock):
        start = clock()
        driver.set_status(
            delivery(
                BasalDeliveryKind.temp_basal,
                DoseEntry(
                    start_date=start,
                    end_date=start + timedelta(minutes=30),
                    units_per_hour=2.0,
                ),
            )
        )
        reconciler = TempBasalReconciler(storage, DeviceStateTracker(storage, driver))

        clock.advance(minutes=31)

        assert reconciler.effective_temp_basal(clock()).duration == 0

    def test_other_states_fall_back_to_record(self, storage, driver, clock):
        record_intent(storage, 30, "1.0", clock())
        driver.set_status(delivery(BasalDeliveryKind.suspended))
        reconciler = TempBasalReconciler(storage, DeviceStateTracker(storage, driver))

        clock.advance(minutes=10)

        assert reconciler.effective_temp_basal(clock()).duration == 20

    def test_unknown_delivery_state_falls_back_to_record(self, storage, driver, clock):
        record_intent(storage, 30, "1.0", clock())
        driver.set_status(PumpManagerStatus())
        reconciler = TempBasalReconciler(storage, DeviceStateTracker(storage, driver))

        clock.advance(minutes=10)

        assert reconciler.effective_temp_basal(clock()).duration == 20

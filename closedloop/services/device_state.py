"""Device State Tracker.

Keeps the latest pump status derived from driver snapshots and answers
whether it is safe to send the pump a command right now. This is the
only writer of the persisted pump status record.
"""

from closedloop.core.constants import MONITOR_STATUS
from closedloop.core.exceptions import UnsafeDeviceStateError
from closedloop.core.interfaces import PumpDriver
from closedloop.core.models import PumpManagerStatus, PumpStatus
from closedloop.logging_config import get_logger
from closedloop.storage import RecordStorage, retrieve, save

logger = get_logger(__name__)


class DeviceStateTracker:
    """Tracks pump status and gates every pump action."""

    def __init__(self, storage: RecordStorage, driver: PumpDriver | None = None):
        self._storage = storage
        self._driver: PumpDriver | None = None
        if driver is not None:
            self.attach(driver)

    @property
    def driver(self) -> PumpDriver | None:
        return self._driver

    def attach(self, driver: PumpDriver) -> None:
        """Register as the driver's status observer and record its current status."""
        if self._driver is driver:
            return
        self.detach()
        self._driver = driver
        driver.add_status_observer(self.on_status_changed)
        self.on_status_changed(driver.status)
        logger.info("Pump driver attached", driver=type(driver).__name__)

    def detach(self) -> None:
        if self._driver is None:
            return
        self._driver.remove_status_observer(self.on_status_changed)
        logger.info("Pump driver detached", driver=type(self._driver).__name__)
        self._driver = None

    def on_status_changed(self, status: PumpManagerStatus) -> None:
        """Driver push notification: derive and persist the pump status."""
        pump_status = PumpStatus.from_manager_status(status)
        save(self._storage, MONITOR_STATUS, pump_status)
        logger.debug(
            "Pump status updated",
            status=pump_status.status.value,
            bolusing=pump_status.bolusing,
            suspended=pump_status.suspended,
        )

    def current_status(self) -> PumpStatus:
        """Latest recorded status; unknown state reads as suspended."""
        recorded = retrieve(self._storage, MONITOR_STATUS, PumpStatus)
        if recorded is not None:
            return recorded
        if self._driver is not None:
            return PumpStatus.from_manager_status(self._driver.status)
        return PumpStatus.from_manager_status(PumpManagerStatus())

    def verify_safe_to_act(self) -> bool:
        """Return True only if a driver is attached and the pump is idle.

        Reads the driver's live snapshot on every call; the pump can change
        state between a trigger and a dispatch.
        """
        if self._driver is None:
            logger.warning("Pump action refused: no pump driver attached")
            return False

        status = PumpStatus.from_manager_status(self._driver.status)
        if status.bolusing:
            logger.warning("Pump action refused: bolus in progress")
            return False
        if status.suspended:
            logger.warning("Pump action refused: delivery suspended")
            return False
        return True

    def require_safe_to_act(self) -> None:
        """Raise UnsafeDeviceStateError unless verify_safe_to_act() passes."""
        if not self.verify_safe_to_act():
            raise UnsafeDeviceStateError("Pump is not in a state that accepts commands")

"""Loop manager.

Wires the loop services around one record storage, one data store, one
recommendation engine and (optionally) one pump driver, and exposes the
operations callers need: run the loop, user-initiated bolus and temp
basal, engine maintenance.
"""

from collections.abc import Callable
from datetime import datetime
from decimal import Decimal

from closedloop.core.constants import (
    ENACT_ENACTED,
    ENACT_SUGGESTED,
    MIN_GLUCOSE_SAMPLES,
    MONITOR_TEMP_BASAL,
)
from closedloop.core.enums import TriggerSource
from closedloop.core.interfaces import DataStore, PumpDriver, RecommendationEngine
from closedloop.core.models import (
    EnactmentResult,
    LoopCycleResult,
    LoopPreferences,
    PumpStatus,
    Suggestion,
    TempBasal,
)
from closedloop.logging_config import get_logger
from closedloop.services.broadcaster import SuggestionBroadcaster
from closedloop.services.device_state import DeviceStateTracker
from closedloop.services.enactment import EnactmentEngine
from closedloop.services.loop_coordinator import LoopTriggerCoordinator
from closedloop.services.pump_commands import PumpCommandQueue
from closedloop.services.recommendation import RecommendationInvoker, utc_now
from closedloop.services.remote_commands import RemoteCommandHandler
from closedloop.services.temp_basal import TempBasalReconciler
from closedloop.storage import RecordStorage, retrieve

logger = get_logger(__name__)


class APSManager:
    """Facade over the loop services."""

    def __init__(
        self,
        *,
        storage: RecordStorage,
        data_store: DataStore,
        engine: RecommendationEngine,
        preferences: LoopPreferences,
        pump_driver: PumpDriver | None = None,
        min_glucose_samples: int = MIN_GLUCOSE_SAMPLES,
        clock: Callable[[], datetime] = utc_now,
    ):
        self.storage = storage
        self.data_store = data_store
        self.preferences = preferences
        self._clock = clock

        self.broadcaster = SuggestionBroadcaster()
        self.device_state = DeviceStateTracker(storage)
        self.pump_queue = PumpCommandQueue(self.device_state)
        self.reconciler = TempBasalReconciler(storage, self.device_state)
        self.invoker = RecommendationInvoker(
            data_store=data_store,
            engine=engine,
            storage=storage,
            device_state=self.device_state,
            reconciler=self.reconciler,
            pump_queue=self.pump_queue,
            preferences=preferences,
            broadcaster=self.broadcaster,
            min_glucose_samples=min_glucose_samples,
            clock=clock,
        )
        self.enactment = EnactmentEngine(
            storage=storage,
            device_state=self.device_state,
            pump_queue=self.pump_queue,
            clock=clock,
        )
        self.remote_commands = RemoteCommandHandler(
            data_store=data_store,
            pump_queue=self.pump_queue,
            preferences=preferences,
        )
        self.coordinator = LoopTriggerCoordinator(
            data_store=data_store,
            device_state=self.device_state,
            invoker=self.invoker,
            enactment=self.enactment,
            remote_commands=self.remote_commands,
            preferences=preferences,
            clock=clock,
        )

        if pump_driver is not None:
            self.pump_driver = pump_driver

    @property
    def pump_driver(self) -> PumpDriver | None:
        return self.device_state.driver

    @pump_driver.setter
    def pump_driver(self, driver: PumpDriver | None) -> None:
        if driver is None:
            self.device_state.detach()
        else:
            self.device_state.attach(driver)

    async def fetch_and_loop(
        self, source: TriggerSource = TriggerSource.manual
    ) -> LoopCycleResult:
        """Run one loop cycle, superseding any cycle in progress."""
        return await self.coordinator.trigger(source)

    def recommend_loop(self) -> None:
        """Driver signal that a loop should run now (e.g. a new CGM reading)."""
        self.coordinator.fire(TriggerSource.pump)

    async def enact_bolus(self, amount: Decimal) -> EnactmentResult:
        return await self.enactment.enact_bolus(amount)

    async def enact_temp_basal(self, rate: Decimal, duration: int) -> EnactmentResult:
        return await self.enactment.enact_temp_basal(rate, duration)

    async def autosense(self) -> None:
        await self.invoker.autosense()

    async def autotune(self) -> None:
        await self.invoker.autotune()

    def pump_status(self) -> PumpStatus:
        return self.device_state.current_status()

    def effective_temp_basal(self) -> TempBasal:
        return self.reconciler.effective_temp_basal(self._clock())

    def recorded_temp_basal(self) -> TempBasal | None:
        return retrieve(self.storage, MONITOR_TEMP_BASAL, TempBasal)

    def suggested(self) -> Suggestion | None:
        return retrieve(self.storage, ENACT_SUGGESTED, Suggestion)

    def enacted(self) -> Suggestion | None:
        return retrieve(self.storage, ENACT_ENACTED, Suggestion)

    async def shutdown(self) -> None:
        """Stop accepting work and let in-flight pump commands finish."""
        await self.coordinator.shutdown()
        await self.pump_queue.wait_idle()
        self.device_state.detach()
        logger.info("Loop manager shut down")

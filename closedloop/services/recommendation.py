"""Recommendation Invoker.

Refreshes the engine's inputs, runs the recommendation engine and
publishes the resulting suggestion. The engine itself is external; this
module only decides when it may run and what it is given.
"""

import asyncio
from collections.abc import Callable
from datetime import UTC, datetime

from closedloop.core.cancellation import CancellationToken
from closedloop.core.constants import ENACT_SUGGESTED, MIN_GLUCOSE_SAMPLES
from closedloop.core.enums import LoopState, RecommendationStatus
from closedloop.core.exceptions import (
    CycleSupersededError,
    DriverCommandError,
    EngineError,
    InsufficientDataError,
    RefreshError,
    UnsafeDeviceStateError,
)
from closedloop.core.interfaces import DataStore, RecommendationEngine
from closedloop.core.models import LoopPreferences, RecommendationOutcome, Suggestion
from closedloop.logging_config import get_logger
from closedloop.services.broadcaster import SuggestionBroadcaster
from closedloop.services.device_state import DeviceStateTracker
from closedloop.services.pump_commands import PumpCommandQueue
from closedloop.services.temp_basal import TempBasalReconciler
from closedloop.storage import RecordStorage, save

logger = get_logger(__name__)


def utc_now() -> datetime:
    return datetime.now(UTC)


class RecommendationInvoker:
    """Produces suggestions from fresh inputs."""

    def __init__(
        self,
        *,
        data_store: DataStore,
        engine: RecommendationEngine,
        storage: RecordStorage,
        device_state: DeviceStateTracker,
        reconciler: TempBasalReconciler,
        pump_queue: PumpCommandQueue,
        preferences: LoopPreferences,
        broadcaster: SuggestionBroadcaster,
        min_glucose_samples: int = MIN_GLUCOSE_SAMPLES,
        clock: Callable[[], datetime] = utc_now,
    ):
        self._data_store = data_store
        self._engine = engine
        self._storage = storage
        self._device_state = device_state
        self._reconciler = reconciler
        self._pump_queue = pump_queue
        self._preferences = preferences
        self._broadcaster = broadcaster
        self._min_glucose_samples = min_glucose_samples
        self._clock = clock

    async def refresh_inputs(self) -> None:
        """Fetch glucose, carbs and temp targets concurrently.

        All three fetches run to completion; if any failed the refresh
        fails as a whole.

        Raises:
            RefreshError: at least one fetch failed.
        """
        names = ("glucose", "carbs", "temp_targets")
        results = await asyncio.gather(
            self._data_store.fetch_glucose(),
            self._data_store.fetch_carbs(),
            self._data_store.fetch_temp_targets(),
            return_exceptions=True,
        )

        failures: dict[str, str] = {}
        for name, result in zip(names, results, strict=True):
            if isinstance(result, asyncio.CancelledError):
                raise result
            if isinstance(result, BaseException):
                failures[name] = str(result) or type(result).__name__

        if failures:
            logger.warning("Input refresh failed", failures=failures)
            raise RefreshError(f"Input refresh failed: {', '.join(sorted(failures))}")

        logger.debug("Inputs refreshed")

    async def evaluate(self, token: CancellationToken | None = None) -> Suggestion:
        """Run the engine on the refreshed inputs and publish its suggestion.

        Raises:
            InsufficientDataError: not enough glucose samples.
            DriverCommandError, UnsafeDeviceStateError: the resume before
                the engine run failed.
            EngineError: the engine failed.
            CycleSupersededError: the token was cancelled between steps.
        """
        glucose = self._data_store.recent_glucose()
        if len(glucose) < self._min_glucose_samples:
            raise InsufficientDataError(len(glucose), self._min_glucose_samples)

        now = self._clock()
        current_temp = self._reconciler.effective_temp_basal(now)

        if (
            current_temp.duration == 0
            and self._preferences.closed_loop
            and self._preferences.unsuspend_if_no_temp
            and self._device_state.driver is not None
        ):
            # No temp running must not coexist with a suspended pump
            logger.info("No temp basal running, resuming delivery before loop")
            await self._pump_queue.dispatch(
                "resume_delivery",
                lambda driver: driver.resume_delivery(),
                require_safe=False,
                token=token,
            )

        if token is not None:
            token.check()

        try:
            await self._engine.make_profiles()
            suggestion = await self._engine.determine_basal(current_temp, now)
        except Exception as e:
            logger.error("Recommendation engine failed", error=str(e))
            raise EngineError(f"Recommendation engine failed: {e}") from e

        if token is not None:
            token.check()

        save(self._storage, ENACT_SUGGESTED, suggestion)
        logger.info(
            "Suggestion produced",
            rate=suggestion.rate,
            duration=suggestion.duration,
            units=suggestion.units,
            current_temp_duration=current_temp.duration,
        )
        self._broadcaster.notify(suggestion)
        return suggestion

    async def determine_suggestion(
        self,
        token: CancellationToken | None = None,
        on_stage: Callable[[LoopState], None] | None = None,
    ) -> RecommendationOutcome:
        """Refresh inputs, then evaluate. Never raises loop errors.

        ``on_stage`` is told when the refresh is done and evaluation starts.
        """
        try:
            await self.refresh_inputs()
            if token is not None:
                token.check()
            if on_stage is not None:
                on_stage(LoopState.evaluating)
            suggestion = await self.evaluate(token)
        except RefreshError as e:
            return RecommendationOutcome(
                status=RecommendationStatus.refresh_failed, detail=str(e)
            )
        except InsufficientDataError as e:
            logger.warning(
                "Not enough glucose data",
                available=e.available,
                required=e.required,
            )
            return RecommendationOutcome(
                status=RecommendationStatus.insufficient_data, detail=str(e)
            )
        except (DriverCommandError, UnsafeDeviceStateError) as e:
            return RecommendationOutcome(
                status=RecommendationStatus.resume_failed, detail=str(e)
            )
        except EngineError as e:
            return RecommendationOutcome(
                status=RecommendationStatus.engine_error, detail=str(e)
            )
        except CycleSupersededError as e:
            return RecommendationOutcome(
                status=RecommendationStatus.superseded, detail=str(e)
            )

        return RecommendationOutcome(
            status=RecommendationStatus.success, suggestion=suggestion
        )

    async def autosense(self) -> None:
        """Run the engine's sensitivity detection; failures are only logged."""
        try:
            await self._engine.autosense()
            logger.info("Autosense completed")
        except Exception as e:
            logger.error("Autosense failed", error=str(e))

    async def autotune(self) -> None:
        """Run the engine's profile tuning; failures are only logged."""
        try:
            await self._engine.autotune()
            logger.info("Autotune completed")
        except Exception as e:
            logger.error("Autotune failed", error=str(e))

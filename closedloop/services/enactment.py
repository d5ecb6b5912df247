"""Enactment Engine.

Applies a suggestion to the pump: temp basal first, then bolus, each
rounded to what the driver supports at that moment and dispatched
through the serial pump queue. Recorded state only ever reflects what
the pump accepted; nothing is retried or rolled back.
"""

from collections.abc import Callable
from datetime import datetime, timedelta
from decimal import Decimal

from closedloop.core.cancellation import CancellationToken
from closedloop.core.constants import ENACT_ENACTED, MONITOR_TEMP_BASAL
from closedloop.core.enums import EnactmentStatus, StepStatus
from closedloop.core.exceptions import (
    CycleSupersededError,
    DriverCommandError,
    UnsafeDeviceStateError,
)
from closedloop.core.interfaces import PumpDriver
from closedloop.core.models import EnactmentResult, Suggestion, TempBasal
from closedloop.logging_config import get_logger
from closedloop.services.device_state import DeviceStateTracker
from closedloop.services.pump_commands import PumpCommandQueue
from closedloop.services.recommendation import utc_now
from closedloop.storage import RecordStorage, save

logger = get_logger(__name__)


class EnactmentEngine:
    """Sole writer of the recorded temp basal intent."""

    def __init__(
        self,
        *,
        storage: RecordStorage,
        device_state: DeviceStateTracker,
        pump_queue: PumpCommandQueue,
        clock: Callable[[], datetime] = utc_now,
    ):
        self._storage = storage
        self._device_state = device_state
        self._pump_queue = pump_queue
        self._clock = clock

    async def enact(
        self, suggestion: Suggestion, token: CancellationToken | None = None
    ) -> EnactmentResult:
        """Apply a suggestion: temp basal, then bolus.

        The bolus is only attempted once the temp basal step has completed
        successfully; a failed temp basal leaves the pump in an uncertain
        state and the bolus is skipped.
        """
        wants_temp = suggestion.has_temp_basal
        wants_bolus = suggestion.has_bolus

        if not self._device_state.verify_safe_to_act():
            return EnactmentResult(
                status=EnactmentStatus.skipped_unsafe,
                temp_basal=StepStatus.skipped if wants_temp else StepStatus.not_requested,
                bolus=StepStatus.skipped if wants_bolus else StepStatus.not_requested,
            )

        if not wants_temp and not wants_bolus:
            logger.info("Suggestion has nothing to enact")
            self._record_enacted(suggestion)
            return EnactmentResult(status=EnactmentStatus.nothing_to_enact)

        temp_status = StepStatus.not_requested
        bolus_status = StepStatus.not_requested
        errors: list[str] = []

        if wants_temp:
            try:
                await self._dispatch_temp_basal(
                    suggestion.rate, suggestion.duration, token=token
                )
                temp_status = StepStatus.succeeded
            except CycleSupersededError:
                return EnactmentResult(
                    status=EnactmentStatus.superseded,
                    temp_basal=StepStatus.skipped,
                    bolus=StepStatus.skipped if wants_bolus else StepStatus.not_requested,
                )
            except (DriverCommandError, UnsafeDeviceStateError) as e:
                temp_status = StepStatus.failed
                errors.append(str(e))

        if wants_bolus:
            if temp_status == StepStatus.failed:
                bolus_status = StepStatus.skipped
            else:
                try:
                    await self._dispatch_bolus(
                        suggestion.units, automatic=True, token=token
                    )
                    bolus_status = StepStatus.succeeded
                except CycleSupersededError:
                    return EnactmentResult(
                        status=EnactmentStatus.superseded,
                        temp_basal=temp_status,
                        bolus=StepStatus.skipped,
                    )
                except (DriverCommandError, UnsafeDeviceStateError) as e:
                    bolus_status = StepStatus.failed
                    errors.append(str(e))

        if errors:
            result = EnactmentResult(
                status=EnactmentStatus.partially_failed,
                temp_basal=temp_status,
                bolus=bolus_status,
                errors=errors,
            )
            logger.error("Loop enactment failed", detail=result.detail, errors=errors)
            return result

        self._record_enacted(suggestion)
        logger.info(
            "Loop enactment succeeded",
            temp_basal=temp_status.value,
            bolus=bolus_status.value,
        )
        return EnactmentResult(
            status=EnactmentStatus.succeeded,
            temp_basal=temp_status,
            bolus=bolus_status,
        )

    async def enact_bolus(self, amount: Decimal) -> EnactmentResult:
        """User-initiated (manual) bolus."""
        try:
            await self._dispatch_bolus(amount, automatic=False)
        except UnsafeDeviceStateError:
            return EnactmentResult(
                status=EnactmentStatus.skipped_unsafe, bolus=StepStatus.skipped
            )
        except DriverCommandError as e:
            return EnactmentResult(
                status=EnactmentStatus.partially_failed,
                bolus=StepStatus.failed,
                errors=[str(e)],
            )
        return EnactmentResult(
            status=EnactmentStatus.succeeded, bolus=StepStatus.succeeded
        )

    async def enact_temp_basal(self, rate: Decimal, duration: int) -> EnactmentResult:
        """User-initiated temp basal for ``duration`` minutes."""
        try:
            await self._dispatch_temp_basal(rate, duration)
        except UnsafeDeviceStateError:
            return EnactmentResult(
                status=EnactmentStatus.skipped_unsafe, temp_basal=StepStatus.skipped
            )
        except DriverCommandError as e:
            return EnactmentResult(
                status=EnactmentStatus.partially_failed,
                temp_basal=StepStatus.failed,
                errors=[str(e)],
            )
        return EnactmentResult(
            status=EnactmentStatus.succeeded, temp_basal=StepStatus.succeeded
        )

    async def _dispatch_temp_basal(
        self,
        rate: Decimal,
        duration: int,
        token: CancellationToken | None = None,
    ) -> float:
        async def command(driver: PumpDriver) -> float:
            rounded = driver.round_to_supported_basal_rate(float(rate))
            logger.info(
                "Enacting temp basal",
                requested_rate=rate,
                rounded_rate=rounded,
                duration_minutes=duration,
            )
            await driver.enact_temp_basal(rounded, timedelta(minutes=duration))
            return rounded

        def record_intent(rounded: float) -> None:
            intent = TempBasal(
                duration=duration,
                rate=Decimal(str(rounded)),
                updated_at=self._clock(),
            )
            save(self._storage, MONITOR_TEMP_BASAL, intent)

        return await self._pump_queue.dispatch(
            "enact_temp_basal", command, token=token, on_success=record_intent
        )

    async def _dispatch_bolus(
        self,
        units: Decimal,
        *,
        automatic: bool,
        token: CancellationToken | None = None,
    ) -> float:
        async def command(driver: PumpDriver) -> float:
            rounded = driver.round_to_supported_bolus_volume(float(units))
            logger.info(
                "Enacting bolus",
                requested_units=units,
                rounded_units=rounded,
                automatic=automatic,
            )
            await driver.enact_bolus(rounded, automatic)
            return rounded

        return await self._pump_queue.dispatch("enact_bolus", command, token=token)

    def _record_enacted(self, suggestion: Suggestion) -> None:
        """Keep an audit copy of the suggestion that was applied."""
        self._storage.save_raw(ENACT_ENACTED, suggestion.model_dump_json())

"""Remote Command Handler.

Applies remote announcements (bolus, suspend/resume, loop mode, temp
basal) through the same safety gate and pump queue as the loop, and marks
each one enacted exactly once. A failed dispatch leaves the announcement
unenacted so a later refresh can retry it.
"""

from collections import OrderedDict
from collections.abc import Awaitable, Callable
from datetime import timedelta

from closedloop.core.cancellation import CancellationToken
from closedloop.core.constants import ENACTED_ID_MEMORY
from closedloop.core.enums import AnnouncementStatus, PumpAction
from closedloop.core.exceptions import DriverCommandError, UnsafeDeviceStateError
from closedloop.core.interfaces import DataStore, PumpDriver
from closedloop.core.models import (
    Announcement,
    AnnouncementResult,
    BolusAction,
    LoopModeAction,
    LoopPreferences,
    PumpCommandAction,
    TempBasalAction,
)
from closedloop.logging_config import get_logger
from closedloop.services.pump_commands import PumpCommandQueue

logger = get_logger(__name__)


class RemoteCommandHandler:
    """Sole writer of announcement enacted flags and of ``closed_loop``."""

    def __init__(
        self,
        *,
        data_store: DataStore,
        pump_queue: PumpCommandQueue,
        preferences: LoopPreferences,
    ):
        self._data_store = data_store
        self._pump_queue = pump_queue
        self._preferences = preferences
        self._enacted_ids: OrderedDict[str, None] = OrderedDict()
        self._pending_ids: set[str] = set()

    async def handle(
        self, announcement: Announcement, token: CancellationToken | None = None
    ) -> AnnouncementResult:
        """Apply one announcement. Idempotent per announcement id.

        An announcement is ``in_progress`` only while its command is at the
        driver. One still waiting for the pump queue does not block another
        caller, so a newer cycle can take over from a superseded one.

        Raises:
            CycleSupersededError: ``token`` was cancelled before dispatch.
        """
        if announcement.enacted or announcement.id in self._enacted_ids:
            logger.info("Announcement already enacted", announcement_id=announcement.id)
            return self._result(announcement, AnnouncementStatus.already_enacted)

        action = announcement.action
        if action is None:
            logger.warning("Invalid announcement action", announcement_id=announcement.id)
            return self._result(
                announcement, AnnouncementStatus.invalid, "announcement has no action"
            )

        if isinstance(action, LoopModeAction):
            self._preferences.closed_loop = action.closed_loop
            logger.info(
                "Closed loop set by announcement",
                announcement_id=announcement.id,
                closed_loop=action.closed_loop,
            )
            self._mark_enacted(announcement)
            return self._result(announcement, AnnouncementStatus.enacted)

        if announcement.id in self._pending_ids:
            logger.info("Announcement already in progress", announcement_id=announcement.id)
            return self._result(announcement, AnnouncementStatus.in_progress)

        name, command, require_safe = self._pump_command(action)

        async def send(driver: PumpDriver) -> bool:
            # Another caller may have enacted it while this one was queued
            if announcement.id in self._enacted_ids:
                return False
            self._pending_ids.add(announcement.id)
            try:
                await command(driver)
            finally:
                self._pending_ids.discard(announcement.id)
            return True

        def on_sent(sent: bool) -> None:
            if sent:
                self._mark_enacted(announcement)

        try:
            sent = await self._pump_queue.dispatch(
                name,
                send,
                require_safe=require_safe,
                token=token,
                on_success=on_sent,
            )
        except UnsafeDeviceStateError as e:
            logger.warning(
                "Announcement skipped, pump not ready",
                announcement_id=announcement.id,
                command=name,
            )
            return self._result(announcement, AnnouncementStatus.skipped_unsafe, str(e))
        except DriverCommandError as e:
            logger.error(
                "Announcement command failed",
                announcement_id=announcement.id,
                command=name,
                error=str(e.cause),
            )
            return self._result(announcement, AnnouncementStatus.failed, str(e))

        if not sent:
            logger.info("Announcement already enacted", announcement_id=announcement.id)
            return self._result(announcement, AnnouncementStatus.already_enacted)

        logger.info(
            "Announcement enacted", announcement_id=announcement.id, command=name
        )
        return self._result(announcement, AnnouncementStatus.enacted)

    def _pump_command(
        self, action: BolusAction | PumpCommandAction | TempBasalAction
    ) -> tuple[str, Callable[[PumpDriver], Awaitable[None]], bool]:
        """Map an announcement action to (name, driver command, require_safe)."""
        if isinstance(action, BolusAction):
            amount = float(action.amount)

            async def bolus(driver: PumpDriver) -> None:
                await driver.enact_bolus(amount, False)

            return "announcement_bolus", bolus, True

        if isinstance(action, PumpCommandAction):
            if action.pump_action == PumpAction.suspend:

                async def suspend(driver: PumpDriver) -> None:
                    await driver.suspend_delivery()

                return "announcement_suspend", suspend, True

            async def resume(driver: PumpDriver) -> None:
                await driver.resume_delivery()

            return "announcement_resume", resume, False

        if isinstance(action, TempBasalAction):
            rate = float(action.rate)
            duration = timedelta(minutes=action.duration)

            async def temp_basal(driver: PumpDriver) -> None:
                await driver.enact_temp_basal(rate, duration)

            return "announcement_temp_basal", temp_basal, True

        raise TypeError(f"Unsupported announcement action: {type(action).__name__}")

    def _mark_enacted(self, announcement: Announcement) -> None:
        self._enacted_ids[announcement.id] = None
        while len(self._enacted_ids) > ENACTED_ID_MEMORY:
            self._enacted_ids.popitem(last=False)
        self._data_store.store_announcements(
            [announcement.model_copy(update={"enacted": True})], enacted=True
        )

    @staticmethod
    def _result(
        announcement: Announcement,
        status: AnnouncementStatus,
        detail: str | None = None,
    ) -> AnnouncementResult:
        return AnnouncementResult(
            announcement_id=announcement.id, status=status, detail=detail
        )

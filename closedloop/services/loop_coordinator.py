"""Loop Trigger Coordinator.

Runs loop cycles as an explicit state machine::

    idle -> refreshing -> evaluating -> enacting -> idle

Every trigger starts a new cycle and cancels the token of the cycle it
replaces. Cancellation is cooperative: a superseded cycle finishes the
step it is in, then stops before its next step. Pump commands already
sent are never interrupted and their bookkeeping still runs (see
PumpCommandQueue). Only the active cycle moves the state machine, and
whatever happens the coordinator ends up idle and ready for the next
trigger.
"""

import asyncio
import uuid
from collections.abc import Callable
from datetime import datetime

from closedloop.core.cancellation import CancellationToken
from closedloop.core.enums import (
    AnnouncementStatus,
    CycleOutcome,
    EnactmentStatus,
    LoopState,
    RecommendationStatus,
    TriggerSource,
)
from closedloop.core.exceptions import CycleSupersededError
from closedloop.core.interfaces import DataStore
from closedloop.core.models import (
    AnnouncementResult,
    EnactmentResult,
    LoopCycleResult,
    LoopPreferences,
    RecommendationOutcome,
)
from closedloop.logging_config import cycle_id_ctx, get_logger, request_cycle_ids_ctx
from closedloop.services.device_state import DeviceStateTracker
from closedloop.services.enactment import EnactmentEngine
from closedloop.services.recommendation import RecommendationInvoker, utc_now
from closedloop.services.remote_commands import RemoteCommandHandler

logger = get_logger(__name__)

_ENACTMENT_OUTCOMES = {
    EnactmentStatus.succeeded: CycleOutcome.completed,
    EnactmentStatus.nothing_to_enact: CycleOutcome.completed,
    EnactmentStatus.skipped_unsafe: CycleOutcome.no_action,
    EnactmentStatus.partially_failed: CycleOutcome.failed,
    EnactmentStatus.superseded: CycleOutcome.superseded,
}

_ANNOUNCEMENT_OUTCOMES = {
    AnnouncementStatus.enacted: CycleOutcome.completed,
    AnnouncementStatus.already_enacted: CycleOutcome.no_action,
    AnnouncementStatus.in_progress: CycleOutcome.no_action,
    AnnouncementStatus.skipped_unsafe: CycleOutcome.no_action,
    AnnouncementStatus.invalid: CycleOutcome.no_action,
    AnnouncementStatus.failed: CycleOutcome.failed,
}


class LoopTriggerCoordinator:
    """Arbitrates loop triggers so at most one cycle is active."""

    def __init__(
        self,
        *,
        data_store: DataStore,
        device_state: DeviceStateTracker,
        invoker: RecommendationInvoker,
        enactment: EnactmentEngine,
        remote_commands: RemoteCommandHandler,
        preferences: LoopPreferences,
        clock: Callable[[], datetime] = utc_now,
    ):
        self._data_store = data_store
        self._device_state = device_state
        self._invoker = invoker
        self._enactment = enactment
        self._remote_commands = remote_commands
        self._preferences = preferences
        self._clock = clock

        self._state = LoopState.idle
        self._active: CancellationToken | None = None
        self._last_result: LoopCycleResult | None = None
        self._background: set[asyncio.Task] = set()

    @property
    def state(self) -> LoopState:
        return self._state

    @property
    def active_cycle_id(self) -> str | None:
        return self._active.cycle_id if self._active is not None else None

    @property
    def last_result(self) -> LoopCycleResult | None:
        return self._last_result

    def fire(self, source: TriggerSource) -> asyncio.Task:
        """Schedule a trigger from synchronous code (driver callbacks, jobs)."""
        task = asyncio.ensure_future(self.trigger(source))
        self._background.add(task)
        task.add_done_callback(self._background.discard)
        return task

    async def trigger(self, source: TriggerSource) -> LoopCycleResult:
        """Start a new cycle, superseding any active one, and run it to the end."""
        cycle_id = uuid.uuid4().hex[:12]
        previous = self._active
        if previous is not None:
            logger.info(
                "Superseding active loop cycle",
                superseded_cycle=previous.cycle_id,
                new_cycle=cycle_id,
            )
            previous.cancel()

        token = CancellationToken(cycle_id)
        self._active = token
        context = cycle_id_ctx.set(cycle_id)
        request_cycles = request_cycle_ids_ctx.get()
        if request_cycles is not None:
            request_cycles.append(cycle_id)
        started_at = self._clock()
        logger.info("Loop cycle started", trigger=source.value)

        try:
            try:
                result = await self._run_cycle(token, source, started_at)
            except CycleSupersededError as e:
                result = self._result(
                    token, source, started_at, CycleOutcome.superseded, detail=str(e)
                )
            except Exception as e:
                logger.exception("Loop cycle failed unexpectedly", error=str(e))
                result = self._result(
                    token, source, started_at, CycleOutcome.failed, detail=str(e)
                )
            finally:
                if self._active is token:
                    self._active = None
                    self._state = LoopState.idle

            if result.outcome == CycleOutcome.superseded:
                logger.info("Loop cycle superseded, results discarded")
            else:
                self._last_result = result
                logger.info(
                    "Loop cycle finished",
                    outcome=result.outcome.value,
                    detail=result.detail,
                )
            return result
        finally:
            cycle_id_ctx.reset(context)

    async def shutdown(self) -> None:
        """Supersede the active cycle and wait for fired triggers to finish."""
        if self._active is not None:
            self._active.cancel()
        if self._background:
            await asyncio.gather(*list(self._background), return_exceptions=True)

    def _set_state(self, token: CancellationToken, state: LoopState) -> None:
        if self._active is token:
            self._state = state
            logger.debug("Loop state changed", state=state.value)

    async def _run_cycle(
        self,
        token: CancellationToken,
        source: TriggerSource,
        started_at: datetime,
    ) -> LoopCycleResult:
        self._set_state(token, LoopState.refreshing)

        if self._device_state.driver is not None:
            announcement = await self._handle_pending_announcement(token)
            if announcement is not None:
                return self._result(
                    token,
                    source,
                    started_at,
                    _ANNOUNCEMENT_OUTCOMES[announcement.status],
                    announcement=announcement,
                    detail=announcement.detail,
                )

        recommendation = await self._invoker.determine_suggestion(
            token, on_stage=lambda state: self._set_state(token, state)
        )
        token.check()
        if not recommendation.ok:
            return self._recommendation_failed(token, source, started_at, recommendation)

        if not self._preferences.closed_loop:
            return self._result(
                token,
                source,
                started_at,
                CycleOutcome.completed,
                recommendation=recommendation,
                detail="open loop: suggestion not enacted",
            )

        self._set_state(token, LoopState.enacting)
        enactment = await self._enactment.enact(recommendation.suggestion, token)
        return self._result(
            token,
            source,
            started_at,
            _ENACTMENT_OUTCOMES[enactment.status],
            recommendation=recommendation,
            enactment=enactment,
            detail=enactment.detail,
        )

    async def _handle_pending_announcement(
        self, token: CancellationToken
    ) -> AnnouncementResult | None:
        """Apply a pending announcement in place of the computed suggestion."""
        try:
            await self._data_store.fetch_announcements()
        except Exception as e:
            logger.warning("Announcement refresh failed", error=str(e))
        token.check()

        recent = self._data_store.recent_announcement()
        if recent is None or not recent.is_actionable:
            return None

        logger.info("Pending announcement replaces loop", announcement_id=recent.id)
        self._set_state(token, LoopState.enacting)
        result = await self._remote_commands.handle(recent, token)
        token.check()
        return result

    def _recommendation_failed(
        self,
        token: CancellationToken,
        source: TriggerSource,
        started_at: datetime,
        recommendation: RecommendationOutcome,
    ) -> LoopCycleResult:
        if recommendation.status == RecommendationStatus.superseded:
            outcome = CycleOutcome.superseded
        elif recommendation.status == RecommendationStatus.insufficient_data:
            outcome = CycleOutcome.no_action
        else:
            outcome = CycleOutcome.failed
        return self._result(
            token,
            source,
            started_at,
            outcome,
            recommendation=recommendation,
            detail=recommendation.detail,
        )

    def _result(
        self,
        token: CancellationToken,
        source: TriggerSource,
        started_at: datetime,
        outcome: CycleOutcome,
        *,
        recommendation: RecommendationOutcome | None = None,
        enactment: EnactmentResult | None = None,
        announcement: AnnouncementResult | None = None,
        detail: str | None = None,
    ) -> LoopCycleResult:
        return LoopCycleResult(
            cycle_id=token.cycle_id,
            trigger=source,
            outcome=outcome,
            started_at=started_at,
            finished_at=self._clock(),
            recommendation=recommendation,
            enactment=enactment,
            announcement=announcement,
            detail=detail,
        )

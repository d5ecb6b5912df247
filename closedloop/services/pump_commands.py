"""Serial execution context for pump commands.

Every command this controller sends to the pump goes through one
PumpCommandQueue, so no two driver commands ever overlap. Each command
runs in its own shielded task: cancelling the caller stops waiting for
the result but never interrupts the command, and the command's
bookkeeping callback still runs when the pump answers.
"""

import asyncio
from collections.abc import Awaitable, Callable
from typing import TypeVar

from closedloop.core.cancellation import CancellationToken
from closedloop.core.exceptions import DriverCommandError, UnsafeDeviceStateError
from closedloop.core.interfaces import PumpDriver
from closedloop.logging_config import get_logger
from closedloop.services.device_state import DeviceStateTracker

logger = get_logger(__name__)

T = TypeVar("T")


class PumpCommandQueue:
    """Runs pump commands one at a time."""

    def __init__(self, device_state: DeviceStateTracker):
        self._device_state = device_state
        self._lock = asyncio.Lock()
        self._in_flight: set[asyncio.Task] = set()

    @property
    def busy(self) -> bool:
        return self._lock.locked()

    async def dispatch(
        self,
        name: str,
        command: Callable[[PumpDriver], Awaitable[T]],
        *,
        require_safe: bool = True,
        token: CancellationToken | None = None,
        on_success: Callable[[T], None] | None = None,
    ) -> T:
        """Run ``command`` against the attached driver.

        The token and the safety check are evaluated after the queue is
        acquired, immediately before the driver call. ``on_success`` runs
        inside the same task as the command.

        Raises:
            CycleSupersededError: token cancelled before dispatch.
            UnsafeDeviceStateError: no driver, or (with require_safe) the
                pump is bolusing or suspended.
            DriverCommandError: the driver call failed.
        """
        task = asyncio.ensure_future(
            self._run(name, command, require_safe, token, on_success)
        )
        self._in_flight.add(task)
        task.add_done_callback(self._forget)
        return await asyncio.shield(task)

    async def _run(
        self,
        name: str,
        command: Callable[[PumpDriver], Awaitable[T]],
        require_safe: bool,
        token: CancellationToken | None,
        on_success: Callable[[T], None] | None,
    ) -> T:
        async with self._lock:
            if token is not None:
                token.check()

            driver = self._device_state.driver
            if driver is None:
                raise UnsafeDeviceStateError("No pump driver attached")
            if require_safe:
                self._device_state.require_safe_to_act()

            logger.info("Dispatching pump command", command=name)
            try:
                result = await command(driver)
            except Exception as e:
                logger.error("Pump command failed", command=name, error=str(e))
                raise DriverCommandError(name, e) from e

            logger.info("Pump command succeeded", command=name)
            if on_success is not None:
                on_success(result)
            return result

    def _forget(self, task: asyncio.Task) -> None:
        self._in_flight.discard(task)
        # Retrieve the outcome of commands whose caller stopped waiting
        if not task.cancelled():
            task.exception()

    async def wait_idle(self) -> None:
        """Wait for every dispatched command to finish."""
        while self._in_flight:
            await asyncio.gather(*list(self._in_flight), return_exceptions=True)

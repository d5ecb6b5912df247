"""Cooperative cancellation for loop cycles.

A token is checked between steps and just before a pump command is
dispatched. Cancelling never interrupts a step that is already running.
"""

from closedloop.core.exceptions import CycleSupersededError


class CancellationToken:
    """Marks a loop cycle as superseded."""

    def __init__(self, cycle_id: str = "-"):
        self.cycle_id = cycle_id
        self._cancelled = False

    @property
    def cancelled(self) -> bool:
        return self._cancelled

    def cancel(self) -> None:
        self._cancelled = True

    def check(self) -> None:
        """Raise CycleSupersededError if the cycle was cancelled."""
        if self._cancelled:
            raise CycleSupersededError(f"Loop cycle {self.cycle_id} was superseded")

    def __repr__(self) -> str:
        return f"CancellationToken(cycle_id={self.cycle_id!r}, cancelled={self._cancelled})"

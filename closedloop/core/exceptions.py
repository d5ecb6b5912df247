"""Loop error taxonomy.

Services raise these internally and convert them to outcome models at
their boundary. None of them is fatal to the process.
"""


class LoopError(Exception):
    """Base exception for loop errors."""

    pass


class InsufficientDataError(LoopError):
    """Fewer glucose samples than the engine requires."""

    def __init__(self, available: int, required: int):
        self.available = available
        self.required = required
        super().__init__(
            f"Not enough glucose data: {available} samples, {required} required"
        )


class UnsafeDeviceStateError(LoopError):
    """Pump is bolusing, suspended, or not attached."""

    pass


class DriverCommandError(LoopError):
    """The pump driver rejected or failed a command."""

    def __init__(self, command: str, cause: BaseException | None = None):
        self.command = command
        self.cause = cause
        reason = str(cause) if cause is not None else "unknown error"
        super().__init__(f"Pump command {command} failed: {reason}")


class EngineError(LoopError):
    """The recommendation engine failed."""

    pass


class RefreshError(LoopError):
    """An input fetch (glucose, carbs, temp targets) failed."""

    pass


class CycleSupersededError(LoopError):
    """A newer loop trigger replaced the cycle before its next step."""

    pass


class CollaboratorConfigError(LoopError):
    """A collaborator factory path could not be loaded."""

    pass

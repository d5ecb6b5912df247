"""Collaborator contracts consumed by the loop.

The data store, recommendation engine and pump driver live outside this
package. Anything satisfying these protocols can be plugged in through
the factory paths in settings.
"""

from collections.abc import Callable, Sequence
from datetime import datetime, timedelta
from typing import Protocol, runtime_checkable

from closedloop.core.models import (
    Announcement,
    BloodGlucose,
    DoseEntry,
    PumpManagerStatus,
    Suggestion,
    TempBasal,
)

StatusObserver = Callable[[PumpManagerStatus], None]


@runtime_checkable
class DataStore(Protocol):
    """Glucose, carbs, temp targets and announcements.

    ``fetch_*`` methods refresh local copies from the data-sharing backend
    and raise on failure.
    """

    async def fetch_glucose(self) -> None: ...

    async def fetch_carbs(self) -> None: ...

    async def fetch_temp_targets(self) -> None: ...

    async def fetch_announcements(self) -> None: ...

    def recent_glucose(self) -> Sequence[BloodGlucose]: ...

    def recent_announcement(self) -> Announcement | None: ...

    def store_announcements(
        self, announcements: Sequence[Announcement], enacted: bool
    ) -> None: ...


@runtime_checkable
class RecommendationEngine(Protocol):
    """Dosing recommendation algorithm."""

    async def make_profiles(self) -> None: ...

    async def determine_basal(
        self, current_temp: TempBasal, clock: datetime
    ) -> Suggestion: ...

    async def autosense(self) -> None: ...

    async def autotune(self) -> None: ...


@runtime_checkable
class PumpDriver(Protocol):
    """Insulin pump driver. Commands raise on failure."""

    @property
    def status(self) -> PumpManagerStatus: ...

    def add_status_observer(self, observer: StatusObserver) -> None: ...

    def remove_status_observer(self, observer: StatusObserver) -> None: ...

    async def enact_temp_basal(
        self, units_per_hour: float, duration: timedelta
    ) -> DoseEntry: ...

    async def enact_bolus(self, units: float, automatic: bool) -> DoseEntry: ...

    async def suspend_delivery(self) -> None: ...

    async def resume_delivery(self) -> None: ...

    def round_to_supported_basal_rate(self, units_per_hour: float) -> float: ...

    def round_to_supported_bolus_volume(self, units: float) -> float: ...


@runtime_checkable
class SuggestionObserver(Protocol):
    """Listener notified of every new suggestion."""

    def suggestion_did_update(self, suggestion: Suggestion) -> None: ...

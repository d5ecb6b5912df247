"""Pytest configuration and shared fixtures.

Fakes for the three external collaborators (pump driver, data store,
recommendation engine). The fake driver keeps a trace of every command
it receives, in order, so tests can assert on dispatch ordering.
"""

import asyncio
import os
from collections.abc import AsyncGenerator
from datetime import UTC, datetime, timedelta
from decimal import Decimal

import pytest
import pytest_asyncio

# Set testing mode BEFORE importing settings
os.environ["CLOSEDLOOP_TESTING"] = "true"

from closedloop.config import settings

settings.testing = True

from closedloop.core.enums import BasalDeliveryKind, BolusState
from closedloop.core.models import (
    Announcement,
    BasalDeliveryState,
    BloodGlucose,
    DoseEntry,
    LoopPreferences,
    PumpManagerStatus,
    Suggestion,
)
from closedloop.services.aps_manager import APSManager
from closedloop.storage import MemoryStorage

NOW = datetime(2025, 6, 15, 12, 0, 0, tzinfo=UTC)


class FakeClock:
    def __init__(self, now: datetime = NOW):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now += timedelta(**kwargs)


def idle_status() -> PumpManagerStatus:
    return PumpManagerStatus(
        bolus_state=BolusState.no_bolus,
        basal_delivery_state=BasalDeliveryState(kind=BasalDeliveryKind.active),
    )


class FakePumpDriver:
    """In-memory pump that records every command."""

    def __init__(self, clock: FakeClock, increment: float = 0.05):
        self._clock = clock
        self._status = idle_status()
        self._observers = []
        self.increment = increment
        self.trace: list[tuple] = []
        self.failures: dict[str, Exception] = {}
        self.gates: dict[str, asyncio.Event] = {}
        self.rounding_queries = 0

    @property
    def status(self) -> PumpManagerStatus:
        return self._status

    def set_status(self, status: PumpManagerStatus) -> None:
        self._status = status
        for observer in list(self._observers):
            observer(status)

    def add_status_observer(self, observer) -> None:
        self._observers.append(observer)

    def remove_status_observer(self, observer) -> None:
        self._observers.remove(observer)

    @property
    def observer_count(self) -> int:
        return len(self._observers)

    def commands(self) -> list[str]:
        """Names of completed commands, in order."""
        return [entry[0] for entry in self.trace if not entry[0].startswith("start:")]

    async def _run(self, name: str, *details):
        self.trace.append((f"start:{name}", *details))
        gate = self.gates.get(name)
        if gate is not None:
            await gate.wait()
        failure = self.failures.get(name)
        if failure is not None:
            raise failure
        self.trace.append((name, *details))

    async def enact_temp_basal(self, units_per_hour: float, duration: timedelta) -> DoseEntry:
        minutes = int(duration.total_seconds() // 60)
        await self._run("temp_basal", units_per_hour, minutes)
        now = self._clock()
        return DoseEntry(start_date=now, end_date=now + duration, units_per_hour=units_per_hour)

    async def enact_bolus(self, units: float, automatic: bool) -> DoseEntry:
        await self._run("bolus", units, automatic)
        now = self._clock()
        return DoseEntry(start_date=now, end_date=now, units=units, automatic=automatic)

    async def suspend_delivery(self) -> None:
        await self._run("suspend")

    async def resume_delivery(self) -> None:
        await self._run("resume")

    def _round(self, value: float) -> float:
        self.rounding_queries += 1
        return round(round(value / self.increment) * self.increment, 3)

    def round_to_supported_basal_rate(self, units_per_hour: float) -> float:
        return self._round(units_per_hour)

    def round_to_supported_bolus_volume(self, units: float) -> float:
        return self._round(units)


class FakeDataStore:
    """Data store with configurable fetch failures and gates."""

    def __init__(self, glucose: list[BloodGlucose]):
        self.glucose = glucose
        self.announcements: list[Announcement] = []
        self.stored: list[tuple[Announcement, bool]] = []
        self.fetch_calls: dict[str, int] = {
            "glucose": 0,
            "carbs": 0,
            "temp_targets": 0,
            "announcements": 0,
        }
        self.failures: dict[str, Exception] = {}
        self.gates: dict[str, asyncio.Event] = {}

    async def _fetch(self, name: str) -> None:
        self.fetch_calls[name] += 1
        gate = self.gates.pop(name, None)
        if gate is not None:
            await gate.wait()
        failure = self.failures.get(name)
        if failure is not None:
            raise failure

    async def fetch_glucose(self) -> None:
        await self._fetch("glucose")

    async def fetch_carbs(self) -> None:
        await self._fetch("carbs")

    async def fetch_temp_targets(self) -> None:
        await self._fetch("temp_targets")

    async def fetch_announcements(self) -> None:
        await self._fetch("announcements")

    def recent_glucose(self) -> list[BloodGlucose]:
        return self.glucose

    def recent_announcement(self) -> Announcement | None:
        return self.announcements[-1] if self.announcements else None

    def store_announcements(self, announcements, enacted: bool) -> None:
        for announcement in announcements:
            self.stored.append((announcement, enacted))
            self.announcements = [
                announcement if existing.id == announcement.id else existing
                for existing in self.announcements
            ]


class FakeEngine:
    """Recommendation engine returning a preset suggestion."""

    def __init__(self, suggestion: Suggestion):
        self.suggestion = suggestion
        self.error: Exception | None = None
        self.calls: list[tuple] = []
        self.profiles_made = 0
        self.autosense_runs = 0
        self.autotune_runs = 0

    async def make_profiles(self) -> None:
        self.profiles_made += 1

    async def determine_basal(self, current_temp, clock) -> Suggestion:
        self.calls.append((current_temp, clock))
        if self.error is not None:
            raise self.error
        return self.suggestion

    async def autosense(self) -> None:
        self.autosense_runs += 1

    async def autotune(self) -> None:
        self.autotune_runs += 1


def make_glucose(count: int, now: datetime = NOW) -> list[BloodGlucose]:
    return [
        BloodGlucose(date=now - timedelta(minutes=5 * i), glucose=120)
        for i in range(count)
    ]


def make_suggestion(**overrides) -> Suggestion:
    defaults = {
        "rate": Decimal("0.8"),
        "duration": 30,
        "units": Decimal("1.5"),
        "timestamp": NOW,
    }
    defaults.update(overrides)
    return Suggestion(**defaults)


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def storage() -> MemoryStorage:
    return MemoryStorage()


@pytest.fixture
def driver(clock) -> FakePumpDriver:
    return FakePumpDriver(clock)


@pytest.fixture
def data_store() -> FakeDataStore:
    return FakeDataStore(make_glucose(36))


@pytest.fixture
def engine() -> FakeEngine:
    return FakeEngine(make_suggestion())


@pytest.fixture
def preferences() -> LoopPreferences:
    return LoopPreferences(closed_loop=True, unsuspend_if_no_temp=False)


@pytest_asyncio.fixture
async def manager(
    storage, data_store, engine, preferences, driver, clock
) -> AsyncGenerator[APSManager, None]:
    """Fully wired loop manager with the fake driver attached."""
    aps = APSManager(
        storage=storage,
        data_store=data_store,
        engine=engine,
        preferences=preferences,
        pump_driver=driver,
        clock=clock,
    )
    yield aps
    await aps.shutdown()


@pytest.fixture
def suggestion_factory():
    return make_suggestion


@pytest.fixture
def glucose_factory():
    return make_glucose

"""Tests for record storage."""

from datetime import UTC, datetime
from decimal import Decimal

import pytest

from closedloop.core.constants import MONITOR_STATUS, MONITOR_TEMP_BASAL
from closedloop.core.enums import PumpMode
from closedloop.core.models import PumpStatus, TempBasal
from closedloop.storage import FileStorage, MemoryStorage, RecordStorage, retrieve, save

NOW = datetime(2025, 6, 15, 12, 0, 0, tzinfo=UTC)


class TestFileStorage:
    def test_save_and_retrieve(self, tmp_path):
        storage = FileStorage(tmp_path)
        record = TempBasal(duration=30, rate=Decimal("0.8"), updated_at=NOW)

        save(storage, MONITOR_TEMP_BASAL, record)

        assert (tmp_path / "monitor" / "temp_basal.json").exists()
        assert retrieve(storage, MONITOR_TEMP_BASAL, TempBasal) == record

    def test_overwrite_replaces_record(self, tmp_path):
        storage = FileStorage(tmp_path)
        save(storage, MONITOR_STATUS, PumpStatus(status=PumpMode.normal, bolusing=False, suspended=False))
        save(storage, MONITOR_STATUS, PumpStatus(status=PumpMode.suspended, bolusing=False, suspended=True))

        assert retrieve(storage, MONITOR_STATUS, PumpStatus).suspended is True
        leftovers = [p.name for p in (tmp_path / "monitor").iterdir()]
        assert leftovers == ["status.json"]

    def test_missing_record(self, tmp_path):
        assert retrieve(FileStorage(tmp_path), MONITOR_STATUS, PumpStatus) is None

    def test_key_cannot_escape_root(self, tmp_path):
        storage = FileStorage(tmp_path / "data")

        with pytest.raises(ValueError):
            storage.save_raw("../outside.json", "{}")

    def test_satisfies_protocol(self, tmp_path):
        assert isinstance(FileStorage(tmp_path), RecordStorage)


class TestRetrieve:
    def test_corrupt_record_reads_as_missing(self):
        storage = MemoryStorage()
        storage.save_raw(MONITOR_TEMP_BASAL, '{"duration": -5}')

        assert retrieve(storage, MONITOR_TEMP_BASAL, TempBasal) is None

    def test_memory_storage_keys(self):
        storage = MemoryStorage()
        storage.save_raw("b", "{}")
        storage.save_raw("a", "{}")

        assert storage.keys() == ["a", "b"]
        assert isinstance(storage, RecordStorage)

"""Record storage keyed by fixed logical names."""

from closedloop.storage.base import RecordStorage, retrieve, save
from closedloop.storage.file_storage import FileStorage, MemoryStorage

__all__ = ["FileStorage", "MemoryStorage", "RecordStorage", "retrieve", "save"]

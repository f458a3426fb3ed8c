# box_tracker/storage/__init__.py
"""
Record stores: JSON files (default) or SQL.
"""
from box_tracker.storage.base import ChangeSet, RecordStore
from box_tracker.storage.json_files import JsonRecordStore
from box_tracker.storage.sql import SqlRecordStore


def build_store(settings) -> RecordStore:
    if settings.STORAGE_BACKEND == "sql":
        return SqlRecordStore(settings.DATABASE_URL, echo=settings.DB_ECHO)
    return JsonRecordStore(settings.BOX_TRACKER_DATA_ROOT)


__all__ = [
    "ChangeSet",
    "RecordStore",
    "JsonRecordStore",
    "SqlRecordStore",
    "build_store",
]

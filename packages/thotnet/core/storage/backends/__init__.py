"""Storage backend implementations."""

from thotnet.core.storage.backends.fs import FSBlobStore
from thotnet.core.storage.backends.memory import InMemoryBlobStore, InMemoryRecordStore
from thotnet.core.storage.backends.postgrest import PostgrestRecordStore
from thotnet.core.storage.backends.sqlite import SQLiteRecordStore

__all__ = [
    "FSBlobStore",
    "InMemoryBlobStore",
    "InMemoryRecordStore",
    "PostgrestRecordStore",
    "SQLiteRecordStore",
]

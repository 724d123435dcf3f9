"""Artifact storage for thotnet.

Blob stores hold artifact bytes, record stores hold one canonical row per
target, and the schema-adaptive writer keeps writes succeeding when the
record schema drifts:
- Unknown fields are shed one at a time (bounded)
- Malformed rich fields are stripped once
- Essential identity fields are never dropped
"""

from thotnet.core.storage.backends.fs import FSBlobStore
from thotnet.core.storage.backends.memory import InMemoryBlobStore, InMemoryRecordStore
from thotnet.core.storage.backends.postgrest import PostgrestRecordStore
from thotnet.core.storage.backends.sqlite import SQLiteRecordStore
from thotnet.core.storage.errors import (
    BlobStoreError,
    PersistenceError,
    PersistenceErrorReason,
    RecordRejected,
    RejectionKind,
    StorageError,
)
from thotnet.core.storage.models import ConflictPolicy
from thotnet.core.storage.protocols import BlobStore, RecordStore
from thotnet.core.storage.writer import SchemaAdaptiveWriter, classify_rejection

__all__ = [
    # Protocols
    "BlobStore",
    "RecordStore",
    # Backends
    "FSBlobStore",
    "InMemoryBlobStore",
    "InMemoryRecordStore",
    "PostgrestRecordStore",
    "SQLiteRecordStore",
    # Writer
    "ConflictPolicy",
    "SchemaAdaptiveWriter",
    "classify_rejection",
    # Errors
    "BlobStoreError",
    "PersistenceError",
    "PersistenceErrorReason",
    "RecordRejected",
    "RejectionKind",
    "StorageError",
]

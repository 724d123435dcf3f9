"""Storage models shared by backends and the adaptive writer."""

from __future__ import annotations

from enum import Enum


class ConflictPolicy(str, Enum):
    """How a write resolves an existing canonical record for the same target.

    LAST_WRITE_WINS: the new row replaces the existing one.
    REJECT_ON_DUPLICATE: an existing row with a different checksum is an error.
    MERGE: existing metadata is kept under keys the new row does not set.
    """

    LAST_WRITE_WINS = "last_write_wins"
    REJECT_ON_DUPLICATE = "reject_on_duplicate"
    MERGE = "merge"


# Columns a row can never shed; everything else is optional on the backend
ESSENTIAL_COLUMNS = frozenset(
    {
        "conflict_key",
        "subject_id",
        "locale",
        "variant",
        "checksum",
        "source_tag",
        "storage_location",
    }
)

# Rich columns stripped once when a backend reports a malformed payload
RICH_COLUMNS = ("metadata", "prompt_summary", "anchor")

# Canonical row layout written by the pipeline
ARTIFACT_COLUMNS = (
    "conflict_key",
    "subject_id",
    "locale",
    "variant",
    "slot_id",
    "checksum",
    "kind",
    "source_tag",
    "model",
    "storage_location",
    "mime_type",
    "content_hash",
    "metadata",
    "prompt_summary",
    "anchor",
    "created_at",
)

"""Idempotency key computation.

Maps a generation request to a stable SHA-256 over a canonical JSON document.
Equal canonical inputs always produce equal keys, across processes and time.
"""

from __future__ import annotations

import hashlib
import json
import re
import unicodedata
from typing import Any

from thotnet.core.generation.models import GenerationOptions, GenerationRequest

# Bump when canonicalization rules change so old keys stop matching
KEY_VERSION = 1

# Float precision used when canonicalizing numbers
_FLOAT_PRECISION = 6

# Keys that never affect output
VOLATILE_KEYS = frozenset(
    {
        "timestamp",
        "created_at",
        "updated_at",
        "requested_at",
        "session_id",
        "request_id",
        "trace_id",
        "retry_count",
        "retries",
        "attempt",
        "attempt_number",
        "nonce",
    }
)

_HORIZONTAL_WS = re.compile(r"[ \t\f\v\u00a0]+")
_BLANK_RUNS = re.compile(r"\n{3,}")


def normalize_text(text: str) -> str:
    """Normalize whitespace and Unicode form of a text payload.

    Args:
        text: Raw payload.

    Returns:
        NFC text with LF line endings, trimmed lines, collapsed horizontal
        whitespace and at most one blank line between paragraphs.
    """
    text = unicodedata.normalize("NFC", text)
    text = text.replace("\r\n", "\n").replace("\r", "\n")
    lines = [_HORIZONTAL_WS.sub(" ", line).strip() for line in text.split("\n")]
    text = "\n".join(lines)
    text = _BLANK_RUNS.sub("\n\n", text)
    return text.strip()


def _canonical_value(value: Any) -> Any:
    """Recursively stabilize a structured value."""
    if isinstance(value, dict):
        return {
            str(k): _canonical_value(v)
            for k, v in sorted(value.items(), key=lambda item: str(item[0]))
            if str(k).lower() not in VOLATILE_KEYS and v is not None
        }
    if isinstance(value, (list, tuple)):
        return [_canonical_value(v) for v in value]
    if isinstance(value, bool):
        return value
    if isinstance(value, float):
        rounded = round(value, _FLOAT_PRECISION)
        # 1.0 and 1 hash identically
        return int(rounded) if rounded.is_integer() else rounded
    if isinstance(value, str):
        return normalize_text(value)
    return value


def canonical_options(options: GenerationOptions) -> dict[str, Any]:
    """Output-affecting options with empty values dropped."""
    raw = options.model_dump(mode="json")
    return _canonical_value({k: v for k, v in raw.items() if v not in (None, {}, [])})


def canonical_document(request: GenerationRequest) -> dict[str, Any]:
    """Build the canonical document hashed into the key.

    The provider order is deliberately absent: which provider produced an
    artifact does not change what was asked for.
    """
    target = request.target
    return {
        "v": KEY_VERSION,
        "target": [target.subject_id, target.locale, target.variant, target.slot_id or ""],
        "kind": request.kind.value,
        "payload": normalize_text(request.payload),
        "options": canonical_options(request.options),
    }


def canonical_json(document: Any) -> str:
    """Serialize with sorted keys and compact separators."""
    return json.dumps(document, sort_keys=True, separators=(",", ":"), ensure_ascii=False)


def compute_idempotency_key(request: GenerationRequest) -> str:
    """Compute the idempotency key (checksum) for a request.

    Args:
        request: Generation request.

    Returns:
        64-character hex SHA-256 digest.

    Example:
        >>> key = compute_idempotency_key(request)
        >>> key == compute_idempotency_key(request.model_copy(update={"session_id": "x"}))
        True
    """
    payload = canonical_json(canonical_document(request))
    return hashlib.sha256(payload.encode("utf-8")).hexdigest()


def compute_content_hash(content: bytes | str) -> str:
    """SHA-256 of stored content."""
    if isinstance(content, str):
        content = content.encode("utf-8")
    return hashlib.sha256(content).hexdigest()

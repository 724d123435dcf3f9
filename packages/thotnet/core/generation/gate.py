"""Content acceptance gate.

Validates provider output before it may become canonical. A rejection is a
cascade-continuation signal: the orchestrator records it and moves on.
"""

from __future__ import annotations

import logging
import re
from collections.abc import Iterable, Mapping

from pydantic import BaseModel, ConfigDict, Field

from thotnet.core.generation.models import ContentKind, GeneratedImage, ProviderOutcome

logger = logging.getLogger(__name__)

# C0 controls except tab and newline, DEL, and C1 controls
_CONTROL_CHARS = re.compile(r"[\x00-\x08\x0b-\x1f\x7f-\x9f]")

DEFAULT_PLACEHOLDER_PATTERNS: dict[str, list[str]] = {
    "en": [
        r"coming soon",
        r"content coming soon",
        r"under construction",
        r"to be written",
        r"\bplaceholder\b",
        r"\[pending\]",
        r"\btbd\b",
        r"lorem ipsum",
    ],
    "es": [
        r"pr[oó]ximamente",
        r"en preparaci[oó]n",
        r"contenido en desarrollo",
        r"\[pendiente\]",
        r"lorem ipsum",
    ],
}

DEFAULT_ALLOWED_MIME_TYPES = frozenset({"image/png", "image/jpeg", "image/webp", "image/svg+xml"})


class GateVerdict(BaseModel):
    """Decision for one provider output.

    Attributes:
        accepted: Whether the output may become canonical.
        reason: Rejection reason code (None when accepted).
        detail: Human-readable explanation.
        findings: Non-blocking structural audit findings.
        sanitized_text: Text output with control characters removed.
        image: Accepted image (image gate only).
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    accepted: bool
    reason: str | None = None
    detail: str | None = None
    findings: list[str] = Field(default_factory=list)
    sanitized_text: str | None = None
    image: GeneratedImage | None = None


def _reject(reason: str, detail: str) -> GateVerdict:
    return GateVerdict(accepted=False, reason=reason, detail=detail)


def strip_control_chars(text: str) -> str:
    """Remove control characters, keeping tabs and newlines."""
    return _CONTROL_CHARS.sub("", text)


def audit_structure(markdown: str) -> list[str]:
    """Check an article for expected structural elements.

    Findings are informational only and never block acceptance.

    Args:
        markdown: Article body.

    Returns:
        Finding codes, empty when nothing is missing.
    """
    findings: list[str] = []
    lines = [line.rstrip() for line in markdown.splitlines()]
    non_empty = [line for line in lines if line.strip()]

    if not any(line.startswith("# ") for line in lines):
        findings.append("missing_h1")
    if not any(line.startswith("## ") for line in lines):
        findings.append("missing_section_headings")
    if not any(line.strip() in ("---", "***", "___") for line in lines):
        findings.append("missing_separator")

    # Standfirst: first non-heading paragraph right after the title
    if non_empty and non_empty[0].startswith("# "):
        following = non_empty[1] if len(non_empty) > 1 else ""
        if not following or following.startswith("#"):
            findings.append("missing_standfirst")

    in_fence = False
    for line in lines:
        stripped = line.strip()
        if stripped.startswith("```"):
            if not in_fence and stripped == "```":
                findings.append("code_fence_missing_language")
            in_fence = not in_fence

    return findings


class TextGate:
    """Acceptance rules for text output.

    Args:
        min_length: Minimum sanitized length in characters.
        placeholder_max_length: Placeholder phrases only reject text shorter
            than this; long articles may legitimately mention them.
        placeholder_patterns: Regex patterns per locale. Patterns for the
            base language and for 'en' are always checked.
        audit: Run the structural audit and log its findings.
    """

    def __init__(
        self,
        *,
        min_length: int = 200,
        placeholder_max_length: int = 2000,
        placeholder_patterns: Mapping[str, Iterable[str]] | None = None,
        audit: bool = True,
    ) -> None:
        self._min_length = min_length
        self._placeholder_max_length = placeholder_max_length
        patterns = placeholder_patterns or DEFAULT_PLACEHOLDER_PATTERNS
        self._patterns = {
            locale.lower(): [re.compile(p, re.IGNORECASE) for p in locale_patterns]
            for locale, locale_patterns in patterns.items()
        }
        self._audit = audit

    def _patterns_for(self, locale: str) -> list[re.Pattern[str]]:
        base = locale.lower().split("-")[0].split("_")[0]
        selected: list[re.Pattern[str]] = []
        for key in dict.fromkeys([locale.lower(), base, "en"]):
            selected.extend(self._patterns.get(key, []))
        return selected

    def matches_placeholder(self, text: str, locale: str = "en") -> str | None:
        """Return the first matching placeholder pattern, if any."""
        for pattern in self._patterns_for(locale):
            if pattern.search(text):
                return pattern.pattern
        return None

    def check(self, text: str | None, locale: str = "en") -> GateVerdict:
        """Evaluate text output.

        Args:
            text: Provider output.
            locale: Locale of the requested content.

        Returns:
            GateVerdict; accepted verdicts carry the sanitized text.
        """
        sanitized = strip_control_chars(text or "").strip()
        if not sanitized:
            return _reject("empty", "Output is empty")

        length = len(sanitized)
        if length < self._placeholder_max_length:
            pattern = self.matches_placeholder(sanitized, locale)
            if pattern is not None:
                return _reject(
                    "placeholder",
                    f"Output of {length} chars matches placeholder pattern '{pattern}'",
                )

        if length < self._min_length:
            return _reject("too_short", f"Output has {length} chars, minimum {self._min_length}")

        findings = audit_structure(sanitized) if self._audit else []
        if findings:
            logger.info("Structural audit findings (non-blocking): %s", ", ".join(findings))

        return GateVerdict(accepted=True, findings=findings, sanitized_text=sanitized)


class ImageGate:
    """Acceptance rules for image output. Pixel content is not inspected.

    Args:
        allowed_mime_types: Accepted declared mime types.
        max_bytes: Optional upper bound on payload size.
    """

    def __init__(
        self,
        *,
        allowed_mime_types: Iterable[str] = DEFAULT_ALLOWED_MIME_TYPES,
        max_bytes: int | None = None,
    ) -> None:
        self._allowed = frozenset(m.lower() for m in allowed_mime_types)
        self._max_bytes = max_bytes

    def check(self, images: list[GeneratedImage]) -> GateVerdict:
        """Evaluate image output; the first image is the candidate."""
        if not images:
            return _reject("empty", "No image returned")

        image = images[0]
        if not image.data:
            return _reject("empty", "Image payload is empty")

        mime_type = image.mime_type.split(";")[0].strip().lower()
        if mime_type not in self._allowed:
            return _reject("mime_type", f"Mime type '{image.mime_type}' is not allowed")

        if self._max_bytes is not None and len(image.data) > self._max_bytes:
            return _reject(
                "too_large", f"Image has {len(image.data)} bytes, maximum {self._max_bytes}"
            )

        return GateVerdict(accepted=True, image=image)


class ContentGate:
    """Dispatches provider outcomes to the gate for their content kind."""

    def __init__(self, text: TextGate | None = None, image: ImageGate | None = None) -> None:
        self.text = text or TextGate()
        self.image = image or ImageGate()

    def check(self, kind: ContentKind, outcome: ProviderOutcome, locale: str = "en") -> GateVerdict:
        if kind == ContentKind.IMAGE:
            return self.image.check(outcome.images)
        return self.text.check(outcome.content, locale)

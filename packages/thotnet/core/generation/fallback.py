"""Deterministic local fallback artifacts.

Used when every provider failed or was rejected. No network calls; the same
request always yields byte-identical output.
"""

from __future__ import annotations

import logging
import re
from io import BytesIO
from pathlib import Path

from PIL import Image, ImageDraw, ImageFont

from thotnet.core.generation.idempotency import normalize_text
from thotnet.core.generation.models import ArtifactContent, ContentKind, GenerationRequest

logger = logging.getLogger(__name__)

FALLBACK_MODEL = "fallback-template"

DEFAULT_WIDTH = 1200
DEFAULT_HEIGHT = 630

# Titles longer than this are cut and suffixed with "..."
_MAX_TITLE_CHARS = 80

_PADDING_RATIO = 0.08

CATEGORY_GRADIENTS: dict[str, tuple[str, str]] = {
    "machine-learning": ("#2563eb", "#0ea5e9"),
    "nlp": ("#3b82f6", "#06b6d4"),
    "computer-vision": ("#10b981", "#14b8a6"),
    "robotics": ("#f59e0b", "#ef4444"),
    "research": ("#2563eb", "#22d3ee"),
    "ethics": ("#ef4444", "#f97316"),
    "industry": ("#06b6d4", "#3b82f6"),
    "tools": ("#14b8a6", "#10b981"),
    "models": ("#ec4899", "#f43f5e"),
}
_DEFAULT_GRADIENT = ("#2563eb", "#0ea5e9")

_SENTENCE_SPLIT = re.compile(r"(?<=[.!?])\s+")

_TEMPLATES: dict[str, dict[str, str]] = {
    "en": {
        "overview": "Overview",
        "key_points": "Key points",
        "note": (
            "This is a provisional version of this content. A complete version "
            "will replace it automatically once generation services are available."
        ),
        "untitled": "Untitled",
    },
    "es": {
        "overview": "Resumen",
        "key_points": "Puntos clave",
        "note": (
            "Esta es una versión provisional de este contenido. Una versión "
            "completa la reemplazará automáticamente cuando los servicios de "
            "generación estén disponibles."
        ),
        "untitled": "Sin título",
    },
}


def truncate_title(title: str) -> str:
    """Cut titles to the displayable length."""
    title = " ".join(title.split())
    if len(title) > _MAX_TITLE_CHARS:
        return title[: _MAX_TITLE_CHARS - 3] + "..."
    return title


def _hex_to_rgb(value: str) -> tuple[int, int, int]:
    value = value.lstrip("#")
    return (int(value[0:2], 16), int(value[2:4], 16), int(value[4:6], 16))


def _interpolate(
    start: tuple[int, int, int], end: tuple[int, int, int], t: float
) -> tuple[int, int, int]:
    return (
        round(start[0] + (end[0] - start[0]) * t),
        round(start[1] + (end[1] - start[1]) * t),
        round(start[2] + (end[2] - start[2]) * t),
    )


class FallbackArtifactGenerator:
    """Renders minimal text and image artifacts locally.

    Args:
        font_path: Optional .ttf font for image titles. If None, uses PIL default.
    """

    def __init__(self, font_path: Path | None = None) -> None:
        self._font_path = font_path

    def generate(self, request: GenerationRequest) -> ArtifactContent:
        """Render the fallback for a request's content kind."""
        if request.kind == ContentKind.IMAGE:
            data = self.render_image(
                self._title(request),
                request.options.category,
                request.options.width or DEFAULT_WIDTH,
                request.options.height or DEFAULT_HEIGHT,
            )
            return ArtifactContent(kind=ContentKind.IMAGE, data=data, mime_type="image/png")
        return ArtifactContent(
            kind=ContentKind.TEXT,
            text=self.render_text(self._title(request), request.payload, request.target.locale),
            mime_type="text/markdown",
        )

    def _title(self, request: GenerationRequest) -> str:
        if request.options.title:
            return truncate_title(request.options.title)
        first_line = next((line for line in normalize_text(request.payload).split("\n") if line), "")
        return truncate_title(first_line.lstrip("# ").strip())

    def render_text(self, title: str, payload: str, locale: str) -> str:
        """Render a templated minimal narrative.

        Args:
            title: Article title.
            payload: Source prompt or content; its first sentences seed the summary.
            locale: Content locale; unknown locales use English.

        Returns:
            Markdown document.
        """
        labels = _TEMPLATES.get(locale.lower().split("-")[0], _TEMPLATES["en"])
        text = " ".join(normalize_text(payload).split())
        sentences = [s.strip() for s in _SENTENCE_SPLIT.split(text) if s.strip()]

        summary = " ".join(sentences[:2])[:400] if sentences else ""
        points = sentences[2:5]

        lines = [f"# {title or labels['untitled']}", "", f"## {labels['overview']}", ""]
        if summary:
            lines.extend([summary, ""])
        if points:
            lines.extend([f"## {labels['key_points']}", ""])
            lines.extend(f"- {point}" for point in points)
            lines.append("")
        lines.extend(["---", "", f"> {labels['note']}", ""])
        return "\n".join(lines)

    def render_image(self, title: str, category: str | None, width: int, height: int) -> bytes:
        """Render a gradient placeholder PNG with the title centered.

        Args:
            title: Title text drawn on the image.
            category: Category selecting the gradient colours.
            width: Image width in pixels.
            height: Image height in pixels.

        Returns:
            PNG bytes.
        """
        start, end = CATEGORY_GRADIENTS.get((category or "").lower(), _DEFAULT_GRADIENT)
        start_rgb, end_rgb = _hex_to_rgb(start), _hex_to_rgb(end)

        image = Image.new("RGB", (width, height))
        draw = ImageDraw.Draw(image)
        for y in range(height):
            t = y / max(height - 1, 1)
            draw.line([(0, y), (width, y)], fill=_interpolate(start_rgb, end_rgb, t))

        # Decorative circles
        overlay = Image.new("RGBA", (width, height), (0, 0, 0, 0))
        overlay_draw = ImageDraw.Draw(overlay)
        radius = min(width, height) // 3
        overlay_draw.ellipse(
            [width - radius * 2, -radius, width + radius // 2, radius], fill=(255, 255, 255, 28)
        )
        overlay_draw.ellipse(
            [-radius // 2, height - radius, radius, height + radius // 2], fill=(255, 255, 255, 20)
        )
        image = Image.alpha_composite(image.convert("RGBA"), overlay)

        if title:
            draw = ImageDraw.Draw(image)
            pad_x = int(width * _PADDING_RATIO)
            font = self._font(height)
            wrapped = self._wrap(draw, title, font, width - 2 * pad_x)
            bbox = draw.multiline_textbbox((0, 0), wrapped, font=font, align="center")
            text_w = bbox[2] - bbox[0]
            text_h = bbox[3] - bbox[1]
            draw.multiline_text(
                ((width - text_w) // 2, (height - text_h) // 2),
                wrapped,
                fill=(255, 255, 255, 255),
                font=font,
                align="center",
            )

        buf = BytesIO()
        image.convert("RGB").save(buf, "PNG")
        return buf.getvalue()

    def _font(self, height: int) -> ImageFont.FreeTypeFont | ImageFont.ImageFont:
        if self._font_path and self._font_path.exists():
            return ImageFont.truetype(str(self._font_path), max(height // 12, 12))
        logger.debug("No custom font available, using PIL default")
        return ImageFont.load_default()

    def _wrap(
        self,
        draw: ImageDraw.ImageDraw,
        text: str,
        font: ImageFont.FreeTypeFont | ImageFont.ImageFont,
        max_width: int,
    ) -> str:
        """Greedy word wrap against the measured text width."""
        lines: list[str] = []
        current = ""
        for word in text.split():
            candidate = f"{current} {word}".strip()
            bbox = draw.textbbox((0, 0), candidate, font=font)
            if bbox[2] - bbox[0] <= max_width or not current:
                current = candidate
            else:
                lines.append(current)
                current = word
        if current:
            lines.append(current)
        return "\n".join(lines)

"""Release-name classification and preference filtering for addon streams.

Everything in this module is pure: it takes the raw stream dictionaries an
addon returns and turns them into display names, quality tags and sizes,
then decides whether a stream satisfies a user's filter preferences.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Any, Mapping

from .models import FilterPreferences, StreamEvidence
from .utils import first_line, strip_markup

UNKNOWN_NAME = "Unknown"

# Ordered (pattern, tag) pairs. The earliest match in the text wins; ties on
# position fall back to table order.
QUALITY_PATTERNS: tuple[tuple[re.Pattern[str], str], ...] = (
    (re.compile(r"\b4K\b", re.IGNORECASE), "4K"),
    (re.compile(r"\b2160p\b", re.IGNORECASE), "2160P"),
    (re.compile(r"\b1080p\b", re.IGNORECASE), "1080P"),
    (re.compile(r"\b720p\b", re.IGNORECASE), "720P"),
    (re.compile(r"\b480p\b", re.IGNORECASE), "480P"),
    (re.compile(r"\bHDR\b", re.IGNORECASE), "HDR"),
    (re.compile(r"\bDV\b", re.IGNORECASE), "DV"),
    (re.compile(r"\bDolby Vision\b", re.IGNORECASE), "DOLBY VISION"),
)

SIZE_RE = re.compile(r"\b(\d+(?:\.\d+)?\s*(?:GB|MB))\b", re.IGNORECASE)

RESOLUTION_RANK: dict[str, int] = {
    "480P": 1,
    "720P": 2,
    "1080P": 3,
    "4K": 4,
    "2160P": 4,
}

# Dynamic range tags satisfy any minimum resolution.
HIGH_DYNAMIC_RANGE_TAGS = frozenset({"HDR", "DV", "DOLBY VISION"})


@dataclass(slots=True)
class ClassifiedStream:
    """Signals extracted from one raw addon stream."""

    name: str
    title: str
    raw_name: str
    quality: str
    size: str

    @property
    def match_text(self) -> str:
        """Text searched for language tags."""

        return f"{self.name} {self.raw_name} {self.title}"

    def to_evidence(self) -> StreamEvidence:
        return StreamEvidence(
            name=self.name,
            title=self.title,
            quality=self.quality,
            size=self.size,
        )


def _text(value: Any) -> str:
    return value if isinstance(value, str) else ""


def extract_display_name(stream: Mapping[str, Any]) -> str:
    """Return the best human-readable release name for a stream."""

    hints = stream.get("behaviorHints")
    filename = _text(hints.get("filename")) if isinstance(hints, Mapping) else ""

    candidates = (
        filename.strip(),
        first_line(_text(stream.get("description"))),
        first_line(_text(stream.get("title"))),
        _text(stream.get("name")).strip(),
    )
    for candidate in candidates:
        if candidate:
            cleaned = strip_markup(candidate)
            if cleaned:
                return cleaned
    return UNKNOWN_NAME


def extract_quality(text: str) -> str:
    """Return the first quality tag found in ``text`` or an empty string."""

    best_tag = ""
    best_position: int | None = None
    for pattern, tag in QUALITY_PATTERNS:
        match = pattern.search(text)
        if match is None:
            continue
        if best_position is None or match.start() < best_position:
            best_position = match.start()
            best_tag = tag
    return best_tag


def extract_size(text: str) -> str:
    """Return the first ``<number> GB|MB`` size string in ``text``."""

    match = SIZE_RE.search(text)
    return match.group(1) if match else ""


def classify_stream(stream: Mapping[str, Any]) -> ClassifiedStream:
    """Extract display name, quality and size from a raw addon stream."""

    name = extract_display_name(stream)
    title = _text(stream.get("title"))
    raw_name = _text(stream.get("name"))
    description = _text(stream.get("description"))

    quality = extract_quality(f"{name} {raw_name} {title}")
    size = extract_size(f"{name} {title} {description}")
    return ClassifiedStream(
        name=name,
        title=title,
        raw_name=raw_name,
        quality=quality,
        size=size,
    )


def meets_resolution(quality: str, minimum: str | None) -> bool:
    """Return whether an extracted quality tag satisfies ``minimum``."""

    if not minimum:
        return True
    if not quality:
        return False
    tag = quality.upper()
    if tag in HIGH_DYNAMIC_RANGE_TAGS:
        return True
    required = RESOLUTION_RANK.get(minimum.upper())
    if required is None:
        return True
    return RESOLUTION_RANK.get(tag, 0) >= required


def matches_language(text: str, language_tags: list[str]) -> bool:
    if not language_tags:
        return True
    haystack = text.casefold()
    return any(tag.casefold() in haystack for tag in language_tags if tag)


def passes_filters(
    classified: ClassifiedStream, preferences: FilterPreferences | None
) -> bool:
    """Return whether a classified stream satisfies the user's preferences."""

    if preferences is None:
        return True
    if not meets_resolution(classified.quality, preferences.min_resolution):
        return False
    return matches_language(classified.match_text, preferences.language_tags)

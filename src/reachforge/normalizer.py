"""
Passage cleaning for retrieved caregiver-notebook content.

Strips structural markup and encoding noise left over from document
conversion, then rejects passages too short or too generic to ground an
answer. The cleaning steps run in a fixed order; later patterns assume the
earlier ones already removed markers and collapsed line breaks.
"""
from __future__ import annotations

import re
from typing import Iterable

from .config import PASSAGE_FOCUS_CHARS, PASSAGE_MIN_CHARS
from .observability import get_logger
from .passages import Passage

logger = get_logger(__name__)

_NOISE_PATTERNS = (
    re.compile(r"\[SECTION:.*?\]", flags=re.IGNORECASE),
    re.compile(r"TABLE OF CONTENTS", flags=re.IGNORECASE),
    re.compile(r"Introduction\]", flags=re.IGNORECASE),
    re.compile(r"Notes:", flags=re.IGNORECASE),
    # Mojibake of the white-square glyph used as checkbox bullets.
    re.compile("â¬œ"),
    re.compile("⬜"),
)
_REPEATED_PERIODS_RE = re.compile(r"\.(?:\s*\.)+")
_REPEATED_NEWLINES_RE = re.compile(r"(\r\n|\n|\r){2,}")
_REPEATED_WHITESPACE_RE = re.compile(r"\s{2,}")
_PARAGRAPH_SPLIT_RE = re.compile(r"\n\n+")

RESIDUAL_MARKERS = ("SECTION", "Contents")
BOILERPLATE_PHRASES = (
    "Caregiver Notebook will serve",
    "Your Notebook in an easy to find spot",
    "health care providers",
    "doctor's visit",
    "TABLE OF CONTENTS",
)


def clean_passage_text(raw_text) -> str:
    if not raw_text or not isinstance(raw_text, str):
        return ""
    text = raw_text
    for pattern in _NOISE_PATTERNS:
        text = pattern.sub("", text)
    text = _REPEATED_PERIODS_RE.sub(".", text)
    text = _REPEATED_NEWLINES_RE.sub("\n", text)
    text = _REPEATED_WHITESPACE_RE.sub(" ", text)
    return text.strip()


def is_informative(text: str, min_chars: int = PASSAGE_MIN_CHARS) -> bool:
    """True when cleaned text is long enough and free of leftover markup or notebook boilerplate."""
    if len(text) < min_chars:
        return False
    if any(marker in text for marker in RESIDUAL_MARKERS):
        return False
    if any(phrase in text for phrase in BOILERPLATE_PHRASES):
        return False
    return True


def focus_paragraph(raw_text: str, query: str, max_chars: int) -> str:
    """Narrows an over-long passage to the first paragraph that mentions the query."""
    if not raw_text or max_chars <= 0 or len(raw_text) <= max_chars:
        return raw_text
    needle = str(query or "").strip().lower()
    if not needle:
        return raw_text
    for paragraph in _PARAGRAPH_SPLIT_RE.split(raw_text):
        if needle in paragraph.lower():
            return paragraph
    return raw_text


class PassageNormalizer:
    def __init__(self, min_chars: int = PASSAGE_MIN_CHARS, focus_chars: int | None = PASSAGE_FOCUS_CHARS):
        self.min_chars = max(0, int(min_chars))
        self.focus_chars = int(focus_chars or 0)

    def normalize(self, passage: Passage, query: str | None = None) -> Passage | None:
        raw_text = passage.text
        if self.focus_chars and query:
            raw_text = focus_paragraph(raw_text, query, self.focus_chars)
        cleaned = clean_passage_text(raw_text)
        if not is_informative(cleaned, self.min_chars):
            logger.debug("passage_rejected", length=len(cleaned), preview=cleaned[:60])
            return None
        return passage.with_text(cleaned)

    def normalize_all(self, passages: Iterable[Passage], query: str | None = None) -> list[Passage]:
        kept = []
        for passage in passages:
            normalized = self.normalize(passage, query)
            if normalized is not None:
                kept.append(normalized)
        return kept

"""
Prefix-signature deduplication for passage sets.

Two passages sharing the same leading characters (case-insensitive) are
treated as the same passage even if they diverge later on; the first one
seen wins and keeps its position.
"""
from __future__ import annotations

from typing import Iterable

from .config import DEDUP_SIGNATURE_CHARS
from .passages import Passage


def passage_signature(passage: Passage, length: int = DEDUP_SIGNATURE_CHARS) -> str:
    return passage.text[: max(1, int(length))].lower()


def deduplicate_passages(passages: Iterable[Passage], signature_length: int = DEDUP_SIGNATURE_CHARS) -> list[Passage]:
    seen: set[str] = set()
    unique: list[Passage] = []
    for passage in passages:
        signature = passage_signature(passage, signature_length)
        if signature in seen:
            continue
        seen.add(signature)
        unique.append(passage)
    return unique


def merge_passage_sets(
    primary: list[Passage],
    secondary: list[Passage],
    signature_length: int = DEDUP_SIGNATURE_CHARS,
) -> list[Passage]:
    """Concatenates primary-first and deduplicates, so primary passages always survive."""
    return deduplicate_passages([*primary, *secondary], signature_length)

"""
Adaptive retrieval over a similarity-search backend.

The retriever wraps a plain search capability with a result cache, passage
cleaning, deduplication and a minimum-count threshold. When the first search
leaves too few usable passages it runs one broadened search (the query plus
a fixed domain suffix) and merges the two sets, primary first. Search
failures never reach the caller: the retriever logs them and hands back
whatever it has, possibly nothing.
"""
from __future__ import annotations

import asyncio
import time
from typing import Any, Protocol

from .config import (
    DEDUP_SIGNATURE_CHARS,
    EXPANDED_QUERY_SUFFIX,
    MIN_DOCS_THRESHOLD,
    RETRIEVER_K,
)
from .deduplicator import deduplicate_passages, merge_passage_sets
from .normalizer import PassageNormalizer
from .observability import get_logger
from .passages import Passage
from .ttl_cache import TTLCacheStore

logger = get_logger(__name__)

RETRIEVAL_KEY_PREFIX = "retrieval:"


class SimilaritySearch(Protocol):
    def search(self, query_text: str, top_k: int) -> list[Passage]:
        ...


class VectorStoreSearch:
    """Search capability backed by a LangChain vector store."""

    def __init__(self, vector_store: Any):
        self.vector_store = vector_store

    def search(self, query_text: str, top_k: int) -> list[Passage]:
        docs = self.vector_store.similarity_search(query_text, k=int(top_k))
        return [Passage.from_document(doc) for doc in docs or []]


def retrieval_cache_key(query: str) -> str:
    return f"{RETRIEVAL_KEY_PREFIX}{query}"


# Cached sets and returned sets never share metadata dicts.
def _detach(passages: list[Passage]) -> list[Passage]:
    return [passage.detached() for passage in passages]


class AdaptiveRetriever:
    def __init__(
        self,
        search: SimilaritySearch,
        cache: TTLCacheStore,
        *,
        top_k: int = RETRIEVER_K,
        min_docs: int = MIN_DOCS_THRESHOLD,
        expansion_suffix: str = EXPANDED_QUERY_SUFFIX,
        normalizer: PassageNormalizer | None = None,
        signature_length: int = DEDUP_SIGNATURE_CHARS,
    ):
        self.search = search
        self.cache = cache
        self.top_k = max(1, int(top_k))
        self.min_docs = max(0, int(min_docs))
        self.expansion_suffix = expansion_suffix
        self.normalizer = normalizer or PassageNormalizer()
        self.signature_length = signature_length

    def expand_query(self, query: str) -> str:
        return f"{query}{self.expansion_suffix}"

    def _clean(self, passages: list[Passage], query: str) -> list[Passage]:
        normalized = self.normalizer.normalize_all(passages, query=query)
        return deduplicate_passages(normalized, self.signature_length)

    def retrieve(self, query: str) -> list[Passage]:
        cache_key = retrieval_cache_key(query)
        cached = self.cache.get(cache_key)
        if cached is not None:
            logger.info("retrieval_cache_hit", query=query, passages=len(cached))
            return _detach(cached)
        logger.info("retrieval_cache_miss", query=query)

        start = time.perf_counter()
        try:
            raw = self.search.search(query, self.top_k)
        except Exception as exc:
            logger.error("retrieval_backend_error", query=query, stage="primary", error=str(exc))
            return []

        primary = self._clean(list(raw or []), query)
        final = primary
        if len(primary) < self.min_docs:
            expanded_query = self.expand_query(query)
            logger.info(
                "retrieval_expanded",
                query=query,
                expanded_query=expanded_query,
                primary_passages=len(primary),
                threshold=self.min_docs,
            )
            try:
                expanded_raw = self.search.search(expanded_query, self.top_k)
            except Exception as exc:
                # Keep the primary set; an expansion failure only costs recall.
                logger.error("retrieval_backend_error", query=expanded_query, stage="expansion", error=str(exc))
                expanded_raw = []
            expanded = self.normalizer.normalize_all(list(expanded_raw or []), query=query)
            final = merge_passage_sets(primary, expanded, self.signature_length)

        if len(final) < self.min_docs:
            logger.warning("retrieval_low_signal", query=query, passages=len(final), threshold=self.min_docs)

        self.cache.set(cache_key, _detach(final))
        logger.info(
            "retrieval_completed",
            query=query,
            passages=len(final),
            elapsed_s=round(time.perf_counter() - start, 3),
        )
        return _detach(final)

    async def aretrieve(self, query: str) -> list[Passage]:
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(None, self.retrieve, query)

# /reachforge/rag_pipeline.py
"""
Wires the retrieval/generation engine to its backends: the persisted Chroma
collection (HuggingFace embeddings) for similarity search, and a Groq or
Ollama model for generation. Also owns the two cache stores for the life of
the process.
"""
import os
import time
from dataclasses import dataclass
from typing import Callable

from langchain_chroma import Chroma
from langchain_groq import ChatGroq
from langchain_huggingface import HuggingFaceEmbeddings
from langchain_ollama import OllamaLLM

from .config import (
    API_MODEL_NAME,
    CACHE_SWEEP_INTERVAL_S,
    CHROMA_COLLECTION,
    DB_PATH,
    EMBEDDING_MODEL_NAME,
    LLM_MAX_TOKENS,
    LLM_TEMPERATURE,
    LOCAL_MODEL_NAME,
    RESPONSE_CACHE_TTL_S,
    RETRIEVAL_CACHE_TTL_S,
    USE_API_LLM,
    console,
    get_model_kwargs,
)
from .generation import GenerationOrchestrator, RunnableTextGenerator, TextGenerator
from .observability import get_logger
from .retrieval import AdaptiveRetriever, SimilaritySearch, VectorStoreSearch
from .ttl_cache import TTLCacheStore

logger = get_logger(__name__)

_EMBEDDING_MODEL = None
_VECTOR_STORE = None


def get_embeddings():
    global _EMBEDDING_MODEL
    if _EMBEDDING_MODEL is None:
        _EMBEDDING_MODEL = HuggingFaceEmbeddings(
            model_name=EMBEDDING_MODEL_NAME,
            model_kwargs=get_model_kwargs(),
        )
    return _EMBEDDING_MODEL


def get_vector_store():
    """Opens the existing Chroma collection; building the index happens elsewhere."""
    global _VECTOR_STORE
    if _VECTOR_STORE is None:
        _VECTOR_STORE = Chroma(
            collection_name=CHROMA_COLLECTION,
            embedding_function=get_embeddings(),
            persist_directory=DB_PATH,
        )
    return _VECTOR_STORE


# --- LLM Initialization ---

def _initialize_llm():
    """Initializes the LLM based on global configuration."""
    if USE_API_LLM:
        if not os.getenv("GROQ_API_KEY"):
            console.print("[bold red]Groq API key not found. LLM disabled.[/bold red]")
            return None
        console.print(f"[green]Using API Model: {API_MODEL_NAME}[/green]")
        return ChatGroq(
            model_name=API_MODEL_NAME,
            temperature=LLM_TEMPERATURE,
            max_tokens=LLM_MAX_TOKENS,
            groq_api_key=os.getenv("GROQ_API_KEY"),
        )
    console.print(f"[green]Using Local Model: {LOCAL_MODEL_NAME}[/green]")
    return OllamaLLM(
        model=LOCAL_MODEL_NAME,
        temperature=LLM_TEMPERATURE,
        num_predict=LLM_MAX_TOKENS,
    )


# --- Engine Assembly ---

@dataclass
class RAGEngine:
    retrieval_cache: TTLCacheStore
    response_cache: TTLCacheStore
    retriever: AdaptiveRetriever
    orchestrator: GenerationOrchestrator | None = None

    @property
    def generation_ready(self) -> bool:
        return self.orchestrator is not None

    def cache_stats(self) -> dict[str, dict[str, int]]:
        return {
            self.retrieval_cache.name: self.retrieval_cache.stats(),
            self.response_cache.name: self.response_cache.stats(),
        }

    def close(self):
        self.retrieval_cache.close()
        self.response_cache.close()


def build_engine(
    search: SimilaritySearch | None = None,
    generator: TextGenerator | None = None,
    *,
    clock: Callable[[], float] = time.monotonic,
    start_sweepers: bool = True,
):
    """
    Builds the engine around the configured backends.
    Either collaborator can be injected. Without an LLM the engine still
    serves retrieval and its orchestrator is None.
    """
    start = time.perf_counter()
    if generator is None:
        llm = _initialize_llm()
        if llm is None:
            logger.error("pipeline_llm_unavailable", use_api_llm=USE_API_LLM)
        else:
            generator = RunnableTextGenerator(llm)
    if search is None:
        search = VectorStoreSearch(get_vector_store())

    retrieval_cache = TTLCacheStore(
        RETRIEVAL_CACHE_TTL_S, CACHE_SWEEP_INTERVAL_S, clock=clock, name="retrieval_cache"
    )
    response_cache = TTLCacheStore(
        RESPONSE_CACHE_TTL_S, CACHE_SWEEP_INTERVAL_S, clock=clock, name="response_cache"
    )
    if start_sweepers:
        retrieval_cache.start()
        response_cache.start()

    retriever = AdaptiveRetriever(search, retrieval_cache)
    orchestrator = GenerationOrchestrator(retriever, generator, response_cache) if generator is not None else None
    logger.info(
        "pipeline_ready",
        collection=CHROMA_COLLECTION,
        generation_ready=orchestrator is not None,
        elapsed_s=round(time.perf_counter() - start, 3),
    )
    return RAGEngine(
        retrieval_cache=retrieval_cache,
        response_cache=response_cache,
        retriever=retriever,
        orchestrator=orchestrator,
    )

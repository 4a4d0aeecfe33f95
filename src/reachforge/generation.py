"""
Generation pipelines for free-form questions and lesson slides.

Both tasks share one adaptive retriever (and so one retrieval cache) but keep
separate prompt templates and separate response-cache namespaces. Retrieval
problems degrade the context; generation problems fail the request and are
never cached.
"""
from __future__ import annotations

import asyncio
import time
from enum import Enum
from typing import Any, Protocol

from langchain_core.output_parsers import StrOutputParser
from langchain_core.prompts import PromptTemplate

from .config import SLIDE_QUERY_TEMPLATE
from .observability import get_logger
from .passages import Passage, join_passage_texts
from .prompts import LESSON_SLIDE_PROMPT, QA_PROMPT
from .retrieval import AdaptiveRetriever
from .ttl_cache import TTLCacheStore

logger = get_logger(__name__)

RESPONSE_KEY_PREFIX = "response:"


class GenerationTask(str, Enum):
    QA = "qa"
    TOPIC_SLIDE = "slide"

    @property
    def namespace(self) -> str:
        return self.value

    @property
    def prompt(self) -> PromptTemplate:
        return QA_PROMPT if self is GenerationTask.QA else LESSON_SLIDE_PROMPT

    @property
    def input_field(self) -> str:
        return "question" if self is GenerationTask.QA else "topic"

    def retrieval_query(self, user_input: str) -> str:
        if self is GenerationTask.QA:
            return user_input
        return SLIDE_QUERY_TEMPLATE.format(topic=user_input)


class GenerationError(Exception):
    """The generation backend failed for one request."""

    def __init__(self, task: GenerationTask, user_input: str, message: str):
        super().__init__(message)
        self.task = task
        self.user_input = user_input


class InvalidInputError(ValueError):
    pass


class TextGenerator(Protocol):
    def complete(self, prompt_text: str) -> str:
        ...


class RunnableTextGenerator:
    """Adapts a LangChain chat model or LLM to plain prompt-in, text-out calls."""

    def __init__(self, llm: Any):
        self.llm = llm
        self._chain = llm | StrOutputParser()

    def complete(self, prompt_text: str) -> str:
        return self._chain.invoke(prompt_text)


def response_cache_key(task: GenerationTask, user_input: str) -> str:
    return f"{RESPONSE_KEY_PREFIX}{task.namespace}:{user_input}"


def build_prompt(task: GenerationTask, user_input: str, passages: list[Passage]) -> str:
    context = join_passage_texts(passages)
    return task.prompt.format(context=context, **{task.input_field: user_input})


class GenerationOrchestrator:
    def __init__(self, retriever: AdaptiveRetriever, generator: TextGenerator, cache: TTLCacheStore):
        self.retriever = retriever
        self.generator = generator
        self.cache = cache

    def generate(self, task: GenerationTask, user_input: str) -> str:
        task = GenerationTask(task)
        if not isinstance(user_input, str) or not user_input.strip():
            raise InvalidInputError(f"{task.input_field} is required")

        cache_key = response_cache_key(task, user_input)
        cached = self.cache.get(cache_key)
        if cached is not None:
            logger.info("response_cache_hit", task=task.namespace, input=user_input)
            return cached
        logger.info("response_cache_miss", task=task.namespace, input=user_input)

        start = time.perf_counter()
        passages = self.retriever.retrieve(task.retrieval_query(user_input))
        prompt_text = build_prompt(task, user_input, passages)

        try:
            text = self.generator.complete(prompt_text)
        except Exception as exc:
            logger.error("generation_failed", task=task.namespace, input=user_input, error=str(exc))
            raise GenerationError(task, user_input, f"Generation failed for {task.namespace}: {exc}") from exc

        self.cache.set(cache_key, text)
        logger.info(
            "generation_completed",
            task=task.namespace,
            input=user_input,
            context_passages=len(passages),
            elapsed_s=round(time.perf_counter() - start, 3),
        )
        return text

    async def agenerate(self, task: GenerationTask, user_input: str) -> str:
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(None, self.generate, task, user_input)

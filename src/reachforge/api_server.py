"""
FastAPI service layer for the reachforge retrieval/caching engine.

Maps the question and lesson-slide routes onto the generation orchestrator,
exposes raw retrieval for debugging, and reports metrics.

Run with:
    uvicorn reachforge.api_server:app --host 0.0.0.0 --port 5000
"""
from __future__ import annotations

import asyncio
import time
from contextlib import asynccontextmanager
from concurrent.futures import ThreadPoolExecutor
from typing import Any

from fastapi import FastAPI, HTTPException, Request
from fastapi.responses import JSONResponse
from pydantic import BaseModel

from .config import API_THREAD_POOL_WORKERS, ENVIRONMENT, WARM_LESSON_SLIDES
from .generation import GenerationError, GenerationTask, InvalidInputError
from .lessons import LESSONS, warm_slide_cache
from .metrics import metrics_collector
from .observability import get_logger
from .rag_pipeline import build_engine

logger = get_logger(__name__)


# ---------------------------------------------------------------------------
# Pydantic request / response models
# ---------------------------------------------------------------------------

# Required fields are optional at the schema level so that a missing or blank
# value is answered with 400 and a named field instead of a validation 422.
class QuestionRequest(BaseModel):
    question: str | None = None


class QuestionResponse(BaseModel):
    answer: str


class SlideRequest(BaseModel):
    lessonHeader: str | None = None


class SlideResponse(BaseModel):
    slideContent: str


class RetrieveRequest(BaseModel):
    query: str | None = None


class PassageModel(BaseModel):
    text: str
    metadata: dict[str, Any]


class RetrieveResponse(BaseModel):
    passages: list[PassageModel]
    count: int


# ---------------------------------------------------------------------------
# Application state populated at startup
# ---------------------------------------------------------------------------

_state: dict[str, Any] = {}

# Thread pool for running synchronous pipeline calls off the event loop.
# A request whose client disconnects still finishes in its worker and warms the caches.
_executor = ThreadPoolExecutor(max_workers=API_THREAD_POOL_WORKERS)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Initialize the engine once at startup; stop cache sweepers on shutdown."""
    engine = build_engine()
    if not engine.generation_ready:
        logger.warning("pipeline_not_ready", detail="LLM unavailable; generation routes return 503")
    elif WARM_LESSON_SLIDES:
        _executor.submit(warm_slide_cache, engine.orchestrator)
    _state["engine"] = engine

    yield  # Application is running.

    engine.close()
    _executor.shutdown(wait=False)
    _state.clear()


app = FastAPI(
    title="reachforge API",
    description="Cached, adaptive retrieval-augmented answers and lesson slides",
    version="1.0.0",
    lifespan=lifespan,
)


# ---------------------------------------------------------------------------
# Middleware & error handlers
# ---------------------------------------------------------------------------

@app.middleware("http")
async def log_requests(request: Request, call_next):
    start = time.perf_counter()
    response = await call_next(request)
    duration_s = time.perf_counter() - start
    logger.info(
        "http_request",
        method=request.method,
        path=request.url.path,
        status=response.status_code,
        duration_s=round(duration_s, 3),
    )
    return response


@app.exception_handler(Exception)
async def unhandled_error(request: Request, exc: Exception):
    logger.error("http_unhandled_error", path=request.url.path, error=str(exc), exc_info=exc)
    body: dict[str, Any] = {"detail": "An unexpected error occurred."}
    if ENVIRONMENT == "development":
        body["error"] = str(exc)
    return JSONResponse(status_code=500, content=body)


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def _require_engine():
    engine = _state.get("engine")
    if engine is None:
        raise HTTPException(status_code=503, detail="Retrieval pipeline is not initialized.")
    return engine


def _require_orchestrator():
    engine = _state.get("engine")
    if engine is None or engine.orchestrator is None:
        raise HTTPException(
            status_code=503,
            detail="Generation pipeline is not initialized. Ensure the LLM is available.",
        )
    return engine.orchestrator


def _require_text(value: str | None, field_name: str) -> str:
    if value is None or not str(value).strip():
        raise HTTPException(status_code=400, detail=f"{field_name} is required")
    return value


async def _run_generation(route: str, task: GenerationTask, user_input: str) -> str:
    orchestrator = _require_orchestrator()
    start = time.perf_counter()
    loop = asyncio.get_running_loop()
    try:
        text = await loop.run_in_executor(_executor, orchestrator.generate, task, user_input)
    except InvalidInputError as exc:
        metrics_collector.record_request(route, (time.perf_counter() - start) * 1000.0, success=False)
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    except GenerationError as exc:
        metrics_collector.record_request(route, (time.perf_counter() - start) * 1000.0, success=False)
        raise HTTPException(
            status_code=500,
            detail=f"Internal server error during {task.namespace} generation.",
        ) from exc
    metrics_collector.record_request(route, (time.perf_counter() - start) * 1000.0, success=True)
    return text


# ---------------------------------------------------------------------------
# Endpoints
# ---------------------------------------------------------------------------

@app.post("/api/query", response_model=QuestionResponse)
async def query_endpoint(request: QuestionRequest):
    """Answer a free-form caregiver question."""
    question = _require_text(request.question, "question")
    answer = await _run_generation("/api/query", GenerationTask.QA, question)
    return QuestionResponse(answer=answer)


@app.post("/api/generateSlide", response_model=SlideResponse)
async def slide_endpoint(request: SlideRequest):
    """Generate Markdown slide content for a lesson header."""
    header = _require_text(request.lessonHeader, "lessonHeader")
    content = await _run_generation("/api/generateSlide", GenerationTask.TOPIC_SLIDE, header)
    return SlideResponse(slideContent=content)


@app.post("/api/retrieve", response_model=RetrieveResponse)
async def retrieve_endpoint(request: RetrieveRequest):
    """Return the cleaned, deduplicated passages for a query."""
    query = _require_text(request.query, "query")
    engine = _require_engine()
    start = time.perf_counter()
    loop = asyncio.get_running_loop()
    try:
        passages = await loop.run_in_executor(_executor, engine.retriever.retrieve, query)
    except Exception:
        metrics_collector.record_request("/api/retrieve", (time.perf_counter() - start) * 1000.0, success=False)
        raise
    metrics_collector.record_request("/api/retrieve", (time.perf_counter() - start) * 1000.0, success=True)
    return RetrieveResponse(
        passages=[PassageModel(**p.to_dict()) for p in passages],
        count=len(passages),
    )


@app.get("/api/lessons")
async def lessons_endpoint():
    return {"lessons": [lesson.to_dict() for lesson in LESSONS]}


@app.get("/metrics")
async def metrics_endpoint():
    """Return aggregated service metrics."""
    engine = _state.get("engine")
    cache_stats = engine.cache_stats() if engine is not None else None
    return metrics_collector.get_summary(cache_stats=cache_stats)


@app.get("/health")
async def health_endpoint():
    engine = _state.get("engine")
    return {
        "status": "ok",
        "pipeline_ready": engine is not None and engine.generation_ready,
        "retrieval_ready": engine is not None,
    }

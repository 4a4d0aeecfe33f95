# /reachforge/config.py
"""
Centralized configuration for the retrieval/caching engine.
Includes model names, paths, retrieval tuning, cache lifetimes and hardware detection.
"""
import functools
import os
from pathlib import Path
from dotenv import load_dotenv
from rich.console import Console
from rich.panel import Panel
from .observability import configure_logging

# ==============================================================================
# CONSOLE & ENVIRONMENT
# ==============================================================================
console = Console()
load_dotenv()


def _env_bool(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None:
        return bool(default)
    return str(raw).strip().lower() in {"1", "true", "yes", "on"}


def _env_int(name: str, default: int, minimum: int = 1) -> int:
    raw = os.getenv(name)
    if raw is None:
        return int(default)
    try:
        value = int(raw)
    except ValueError:
        return int(default)
    return max(minimum, value)


def _env_float(name: str, default: float, minimum: float = 0.0) -> float:
    raw = os.getenv(name)
    if raw is None:
        return float(default)
    try:
        value = float(raw)
    except ValueError:
        return float(default)
    return max(float(minimum), value)


def _env_str(name: str, default: str) -> str:
    # Whitespace is significant for the expansion suffix, so no strip here.
    raw = os.getenv(name)
    if raw is None or raw == "":
        return default
    return raw

# ==============================================================================
# GPU DETECTION & SETUP
# ==============================================================================
def _load_torch():
    import torch  # Imported lazily; only the embedding path needs it.
    return torch


@functools.cache
def detect_gpu_setup():
    """Detects and prints GPU information on first access only."""
    torch = _load_torch()
    if torch.cuda.is_available():
        device_name = torch.cuda.get_device_name(0)
        memory_gb = torch.cuda.get_device_properties(0).total_memory / (1024**3)
        console.print(Panel(
            f"[bold green]GPU Detected![/bold green]\n"
            f"Device: {device_name}\n"
            f"Memory: {memory_gb:.1f} GB",
            title="GPU Configuration",
            border_style="green"
        ))
        return {'device': 'cuda', 'name': device_name}
    else:
        console.print("[yellow]No GPU detected. Using CPU instead.[/yellow]")
        return {'device': 'cpu', 'name': 'cpu'}


@functools.cache
def get_model_kwargs() -> dict[str, str]:
    return {'device': detect_gpu_setup()['device']}


# ==============================================================================
# GLOBAL CONFIGURATION
# ==============================================================================
# --- Application Toggles ---
USE_API_LLM = _env_bool("USE_API_LLM", False)              # True for Groq API, False for local Ollama
ENVIRONMENT = os.getenv("ENVIRONMENT", "production").strip().lower()
WARM_LESSON_SLIDES = _env_bool("WARM_LESSON_SLIDES", False)

# --- Model Names ---
LOCAL_MODEL_NAME = os.getenv("LOCAL_MODEL_NAME", "granite3.3:2b") # Local model to use with Ollama
API_MODEL_NAME = os.getenv("API_MODEL_NAME", "gemma2-9b-it")  # API model to use with Groq
EMBEDDING_MODEL_NAME = os.getenv("EMBEDDING_MODEL_NAME", "sentence-transformers/all-MiniLM-L6-v2")
LLM_TEMPERATURE = _env_float("LLM_TEMPERATURE", 0.0, minimum=0.0)
LLM_MAX_TOKENS = _env_int("LLM_MAX_TOKENS", 1024, minimum=16)

# --- Path Configuration ---
# Data directory is at ../../data relative to this file (src/reachforge/config.py)
_BASE_DIR = Path(__file__).resolve().parent.parent.parent
_DATA_DIR = _BASE_DIR / "data"

DB_PATH = os.getenv("DB_PATH", str(_DATA_DIR / "vector_store_db"))
CHROMA_COLLECTION = os.getenv("CHROMA_COLLECTION", "reachdocs")
CACHE_DIR = Path(os.getenv("CACHE_DIR", str(_DATA_DIR / "runtime_cache")))
METRICS_DIR = Path(os.getenv("METRICS_DIR", "logs"))

# --- Retrieval Tuning ---
RETRIEVER_K = _env_int("RETRIEVER_K", 10, minimum=1)
MIN_DOCS_THRESHOLD = _env_int("MIN_DOCS_THRESHOLD", 4, minimum=0)
EXPANDED_QUERY_SUFFIX = _env_str("EXPANDED_QUERY_SUFFIX", " dementia symptoms management")
SLIDE_QUERY_TEMPLATE = _env_str(
    "SLIDE_QUERY_TEMPLATE",
    "Information relevant to: {topic} for parents of children with cancer.",
)

# --- Passage Cleaning ---
PASSAGE_MIN_CHARS = _env_int("PASSAGE_MIN_CHARS", 100, minimum=0)
# Set to 0 to keep long passages whole instead of narrowing to the query's paragraph.
PASSAGE_FOCUS_CHARS = _env_int("PASSAGE_FOCUS_CHARS", 0, minimum=0)
DEDUP_SIGNATURE_CHARS = _env_int("DEDUP_SIGNATURE_CHARS", 150, minimum=1)

# --- Cache Lifetimes ---
RETRIEVAL_CACHE_TTL_S = _env_float("RETRIEVAL_CACHE_TTL_S", 3600.0, minimum=1.0)
RESPONSE_CACHE_TTL_S = _env_float("RESPONSE_CACHE_TTL_S", 3600.0, minimum=1.0)
# Set to 0 to disable the background sweep (expired entries are still misses on read).
CACHE_SWEEP_INTERVAL_S = _env_float("CACHE_SWEEP_INTERVAL_S", 600.0, minimum=0.0)

# --- API Server ---
API_THREAD_POOL_WORKERS = _env_int("API_THREAD_POOL_WORKERS", 8, minimum=1)

# --- Create necessary directories ---
CACHE_DIR.mkdir(parents=True, exist_ok=True)
LOG_PATH = Path(os.getenv("LOG_PATH", str(CACHE_DIR / "app.log")))
LOG_PATH.parent.mkdir(parents=True, exist_ok=True)
configure_logging(LOG_PATH)

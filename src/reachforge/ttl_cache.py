"""
In-process key/value cache with per-entry time-to-live.

Entries expire a fixed number of seconds after their last write. Expiry is
enforced two ways: reads treat a stale entry as a miss and drop it, and an
optional background thread sweeps stale entries on a fixed interval so that
memory is reclaimed for keys nobody reads again. There is no size cap and no
pressure-based eviction; TTL is the only way an entry leaves the store.
"""
from __future__ import annotations

import threading
import time
from dataclasses import dataclass
from typing import Any, Callable

from .observability import get_logger

logger = get_logger(__name__)


@dataclass
class CacheEntry:
    value: Any
    expires_at: float

    def is_expired(self, now: float) -> bool:
        return now >= self.expires_at


class TTLCacheStore:
    """Thread-safe TTL mapping from string keys to arbitrary values."""

    def __init__(
        self,
        ttl_seconds: float,
        sweep_interval_seconds: float | None = None,
        *,
        clock: Callable[[], float] = time.monotonic,
        name: str = "cache",
    ):
        if ttl_seconds <= 0:
            raise ValueError("ttl_seconds must be positive")
        self.ttl_seconds = float(ttl_seconds)
        self.sweep_interval_seconds = float(sweep_interval_seconds or 0.0)
        self.name = name
        self._clock = clock
        self._entries: dict[str, CacheEntry] = {}
        self._lock = threading.Lock()
        self._stop = threading.Event()
        self._sweeper: threading.Thread | None = None

        self._hits = 0
        self._misses = 0
        self._sets = 0
        self._expirations = 0

    # --- Core operations ---

    def get(self, key: str, default: Any = None) -> Any:
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                self._misses += 1
                return default
            if entry.is_expired(self._clock()):
                del self._entries[key]
                self._expirations += 1
                self._misses += 1
                return default
            self._hits += 1
            return entry.value

    def set(self, key: str, value: Any) -> None:
        with self._lock:
            self._entries[key] = CacheEntry(value=value, expires_at=self._clock() + self.ttl_seconds)
            self._sets += 1

    def contains(self, key: str) -> bool:
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                return False
            if entry.is_expired(self._clock()):
                del self._entries[key]
                self._expirations += 1
                return False
            return True

    __contains__ = contains

    def sweep(self) -> int:
        """Removes every expired entry and returns how many were dropped."""
        with self._lock:
            now = self._clock()
            expired = [key for key, entry in self._entries.items() if entry.is_expired(now)]
            for key in expired:
                del self._entries[key]
            self._expirations += len(expired)
        if expired:
            logger.info("ttl_cache_swept", cache=self.name, removed=len(expired))
        return len(expired)

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()

    def stats(self) -> dict[str, int]:
        with self._lock:
            return {
                "hits": self._hits,
                "misses": self._misses,
                "sets": self._sets,
                "expirations": self._expirations,
                "size": len(self._entries),
            }

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    # --- Background sweep lifecycle ---

    def start(self) -> "TTLCacheStore":
        """Starts the periodic sweeper thread (no-op without an interval)."""
        if self.sweep_interval_seconds <= 0:
            return self
        if self._sweeper is not None and self._sweeper.is_alive():
            return self
        self._stop.clear()
        self._sweeper = threading.Thread(
            target=self._sweep_loop,
            name=f"ttl-sweeper-{self.name}",
            daemon=True,
        )
        self._sweeper.start()
        return self

    def _sweep_loop(self):
        while not self._stop.wait(self.sweep_interval_seconds):
            self.sweep()

    @property
    def sweeper_running(self) -> bool:
        return self._sweeper is not None and self._sweeper.is_alive()

    def close(self) -> None:
        self._stop.set()
        sweeper = self._sweeper
        if sweeper is not None and sweeper is not threading.current_thread():
            sweeper.join(timeout=max(1.0, self.sweep_interval_seconds))
        self._sweeper = None

    def __enter__(self) -> "TTLCacheStore":
        return self.start()

    def __exit__(self, *_exc_info) -> None:
        self.close()

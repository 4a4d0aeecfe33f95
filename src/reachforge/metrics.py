"""
Performance metrics collector for the reachforge API service.

Tracks: latency, throughput, memory usage and error count per route.
Logs structured metrics to logs/metrics.jsonl.
"""
from __future__ import annotations

import json
import os
import threading
import time
from pathlib import Path

import psutil

from .config import METRICS_DIR


class _RouteStats:
    __slots__ = ("requests", "errors", "total_latency_ms", "min_latency_ms", "max_latency_ms")

    def __init__(self):
        self.requests = 0
        self.errors = 0
        self.total_latency_ms = 0.0
        self.min_latency_ms = float("inf")
        self.max_latency_ms = 0.0

    def record(self, latency_ms: float, success: bool):
        self.requests += 1
        self.total_latency_ms += latency_ms
        self.min_latency_ms = min(self.min_latency_ms, latency_ms)
        self.max_latency_ms = max(self.max_latency_ms, latency_ms)
        if not success:
            self.errors += 1

    def summary(self) -> dict:
        total = self.requests
        return {
            "requests": total,
            "errors": self.errors,
            "avg_ms": round(self.total_latency_ms / total, 2) if total else 0.0,
            "min_ms": round(self.min_latency_ms, 2) if total else 0.0,
            "max_ms": round(self.max_latency_ms, 2) if total else 0.0,
        }


class MetricsCollector:
    """Thread-safe request metrics tracker with JSONL file logging."""

    def __init__(self, log_dir: str | Path = METRICS_DIR):
        self._lock = threading.Lock()
        self._start_time: float = time.time()
        self._routes: dict[str, _RouteStats] = {}
        self._overall = _RouteStats()

        # Logging.
        self._log_dir = Path(log_dir)
        self._log_dir.mkdir(parents=True, exist_ok=True)
        self._log_path = self._log_dir / "metrics.jsonl"

        # Process handle for memory tracking.
        self._process = psutil.Process(os.getpid())

    def record_request(self, route: str, latency_ms: float, success: bool) -> None:
        """Records a single request's outcome and appends to JSONL log."""
        entry = {
            "timestamp": time.strftime("%Y-%m-%dT%H:%M:%S%z"),
            "route": route,
            "latency_ms": round(latency_ms, 2),
            "success": success,
        }

        with self._lock:
            self._routes.setdefault(route, _RouteStats()).record(latency_ms, success)
            self._overall.record(latency_ms, success)

        # Append to JSONL file outside the lock.
        try:
            with open(self._log_path, "a", encoding="utf-8") as fh:
                fh.write(json.dumps(entry, ensure_ascii=True) + "\n")
        except OSError:
            pass

    def get_summary(self, cache_stats: dict | None = None) -> dict:
        """Returns comprehensive metrics snapshot."""
        with self._lock:
            overall = self._overall.summary()
            routes = {name: stats.summary() for name, stats in self._routes.items()}

        uptime_s = time.time() - self._start_time
        throughput_rps = (overall["requests"] / uptime_s) if uptime_s > 0 else 0.0

        mem_info = self._process.memory_info()
        total = overall["requests"]

        summary = {
            "latency": {
                "avg_ms": overall["avg_ms"],
                "min_ms": overall["min_ms"],
                "max_ms": overall["max_ms"],
            },
            "throughput": {
                "total_requests": total,
                "requests_per_second": round(throughput_rps, 4),
                "uptime_seconds": round(uptime_s, 1),
            },
            "memory": {
                "rss_mb": round(mem_info.rss / (1024 * 1024), 1),
                "vms_mb": round(mem_info.vms / (1024 * 1024), 1),
            },
            "errors": {
                "count": overall["errors"],
                "rate_percent": round((overall["errors"] / total * 100) if total > 0 else 0.0, 2),
            },
            "routes": routes,
        }
        if cache_stats is not None:
            summary["caches"] = cache_stats
        return summary


# Module-level singleton used by the API server.
metrics_collector = MetricsCollector()

from __future__ import annotations

import os
import resource
import sys
import threading
import time
from dataclasses import dataclass
from typing import Any, Callable

from e2e_mcp.result import utc_iso


def _peak_rss_bytes() -> int:
    peak = int(resource.getrusage(resource.RUSAGE_SELF).ru_maxrss)
    # Linux reports KiB, macOS reports bytes.
    return peak if sys.platform == "darwin" else peak * 1024


def _current_rss_bytes() -> int | None:
    try:
        with open("/proc/self/statm", "r", encoding="ascii") as f:
            resident_pages = int(f.read().split()[1])
    except (OSError, IndexError, ValueError):
        return None
    return resident_pages * os.sysconf("SC_PAGE_SIZE")


def memory_usage() -> dict[str, int]:
    peak = _peak_rss_bytes()
    current = _current_rss_bytes()
    return {"rss": current if current is not None else peak, "maxRss": peak}


class HealthMonitor:
    def __init__(self, active_sessions: Callable[[], int] | None = None, *, clock: Callable[[], float] = time.monotonic) -> None:
        self._active_sessions = active_sessions or (lambda: 0)
        self._clock = clock
        self._started = clock()

    def uptime_seconds(self) -> float:
        return max(0.0, self._clock() - self._started)

    def get_health(self) -> dict[str, Any]:
        return {
            "status": "healthy",
            "activeSessions": int(self._active_sessions()),
            "memory": memory_usage(),
            "uptime": round(self.uptime_seconds(), 3),
            "timestamp": utc_iso(),
        }


@dataclass
class _ToolStats:
    total: int = 0
    successful: int = 0
    total_ms: float = 0.0
    min_ms: float | None = None
    max_ms: float | None = None

    def add(self, success: bool, response_time_ms: float) -> None:
        self.total += 1
        if success:
            self.successful += 1
        self.total_ms += response_time_ms
        self.min_ms = response_time_ms if self.min_ms is None else min(self.min_ms, response_time_ms)
        self.max_ms = response_time_ms if self.max_ms is None else max(self.max_ms, response_time_ms)

    def to_dict(self) -> dict[str, Any]:
        if self.total == 0:
            return {
                "total": 0,
                "successful": 0,
                "failed": 0,
                "successRate": 0.0,
                "errorRate": 0.0,
                "averageResponseTime": 0.0,
            }
        failed = self.total - self.successful
        return {
            "total": self.total,
            "successful": self.successful,
            "failed": failed,
            "successRate": self.successful / self.total,
            "errorRate": failed / self.total,
            "averageResponseTime": self.total_ms / self.total,
            "minResponseTime": self.min_ms,
            "maxResponseTime": self.max_ms,
        }


class MetricsCollector:
    """Per-tool call counters and response-time aggregates."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._overall = _ToolStats()
        self._by_tool: dict[str, _ToolStats] = {}

    def record_tool_call(self, name: str, success: bool, response_time_ms: float) -> None:
        ms = max(0.0, float(response_time_ms))
        with self._lock:
            self._overall.add(bool(success), ms)
            self._by_tool.setdefault(name, _ToolStats()).add(bool(success), ms)

    def get_metrics(self) -> dict[str, Any]:
        with self._lock:
            return {
                "toolCalls": self._overall.to_dict(),
                "byTool": {name: stats.to_dict() for name, stats in sorted(self._by_tool.items())},
                "timestamp": utc_iso(),
            }

    def reset(self) -> None:
        with self._lock:
            self._overall = _ToolStats()
            self._by_tool.clear()

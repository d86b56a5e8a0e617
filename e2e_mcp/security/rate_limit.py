"""Sliding-window request counter.

Approximate: bursts at window edges are tolerated. Entries are
pruned lazily on each check and removed once empty, so memory only grows with
active callers.
"""

from __future__ import annotations

import threading
import time
from collections import deque
from typing import Callable

from e2e_mcp.result import Result


SESSION_CREATE = "session-create"
TOOL_CALL = "tool-call"


class RateLimiter:
    def __init__(self, max_requests: int, window_ms: int, *, clock: Callable[[], float] = time.monotonic) -> None:
        if max_requests <= 0:
            raise ValueError("max_requests must be positive")
        if window_ms <= 0:
            raise ValueError("window_ms must be positive")
        self.max_requests = int(max_requests)
        self.window_ms = int(window_ms)
        self._clock = clock
        self._lock = threading.Lock()
        self._requests: dict[tuple[str, str], deque[float]] = {}

    def _now_ms(self) -> float:
        return self._clock() * 1000.0

    def _prune(self, key: tuple[str, str], now_ms: float) -> deque[float] | None:
        entries = self._requests.get(key)
        if entries is None:
            return None
        window_start = now_ms - self.window_ms
        while entries and entries[0] <= window_start:
            entries.popleft()
        if not entries:
            del self._requests[key]
            return None
        return entries

    def check_limit(self, operation_class: str, caller_id: str) -> Result:
        key = (str(operation_class), str(caller_id))
        with self._lock:
            now_ms = self._now_ms()
            entries = self._prune(key, now_ms)
            if entries is not None and len(entries) >= self.max_requests:
                retry_after = max(0.0, entries[0] + self.window_ms - now_ms)
                return Result.failure(
                    "rate_limit_exceeded",
                    f"Rate limit exceeded: {self.max_requests} requests per {self.window_ms}ms",
                    limit=self.max_requests,
                    window_ms=self.window_ms,
                    retry_after_ms=int(round(retry_after)),
                )
            if entries is None:
                entries = self._requests.setdefault(key, deque())
            entries.append(now_ms)
        return Result.success(None)

    def tracked_keys(self) -> int:
        with self._lock:
            return len(self._requests)

    def reset(self, operation_class: str, caller_id: str) -> None:
        with self._lock:
            self._requests.pop((str(operation_class), str(caller_id)), None)

    def clear(self) -> None:
        with self._lock:
            self._requests.clear()

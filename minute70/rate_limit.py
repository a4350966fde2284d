"""In-memory sliding-window rate limiter.

Process-local and best effort: each worker keeps its own counters, which is
fine for deterring abuse of cheap endpoints.
"""
import threading
import time
from collections import deque
from dataclasses import dataclass
from typing import Callable, Deque, Dict, Optional

from fastapi import Request

CLEANUP_INTERVAL_MS = 5 * 60 * 1000


def _now_ms() -> float:
    return time.time() * 1000


@dataclass
class RateLimitDecision:
    allowed: bool
    retry_after_ms: int = 0


class SlidingWindowLimiter:
    def __init__(self, clock: Callable[[], float] = _now_ms):
        self._clock = clock
        self._hits: Dict[str, Deque[float]] = {}
        self._lock = threading.Lock()
        self._last_cleanup = clock()

    def check(self, key: str, max_requests: int, window_ms: int) -> RateLimitDecision:
        with self._lock:
            now = self._clock()
            self._sweep(now, window_ms)
            cutoff = now - window_ms
            hits = self._hits.get(key)
            if hits is None:
                hits = self._hits[key] = deque()
            while hits and hits[0] <= cutoff:
                hits.popleft()

            if len(hits) >= max_requests:
                retry_after = int(hits[0] + window_ms - now) if hits else window_ms
                return RateLimitDecision(False, max(retry_after, 0))

            hits.append(now)
            return RateLimitDecision(True)

    def allow(self, key: str, max_requests: int, window_ms: int) -> bool:
        return self.check(key, max_requests, window_ms).allowed

    def reset(self) -> None:
        with self._lock:
            self._hits.clear()

    def __len__(self) -> int:
        return len(self._hits)

    def _sweep(self, now: float, window_ms: int) -> None:
        # caller holds the lock
        if now - self._last_cleanup < CLEANUP_INTERVAL_MS:
            return
        self._last_cleanup = now
        cutoff = now - window_ms
        for key in list(self._hits):
            hits = self._hits[key]
            while hits and hits[0] <= cutoff:
                hits.popleft()
            if not hits:
                del self._hits[key]


def client_ip(request: Request) -> str:
    forwarded: Optional[str] = request.headers.get("x-forwarded-for")
    if forwarded:
        return forwarded.split(",")[0].strip()
    real = request.headers.get("x-real-ip")
    if real:
        return real.strip()
    if request.client and request.client.host:
        return request.client.host
    return "unknown"

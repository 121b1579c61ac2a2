import logging, math, time
from dataclasses import dataclass
from typing import Callable, Dict, Optional
from fastapi import Request
from .errors import RateLimitError

log = logging.getLogger("ratelimit")


@dataclass
class Window:
    started_at: float
    count: int = 0


class RateLimiter:
    """Fixed-window request counter per client key."""

    def __init__(self, max_requests: int, window: float,
                 clock: Callable[[], float] = time.monotonic):
        self.max_requests = max_requests
        self.window = window
        self._clock = clock
        self._windows: Dict[str, Window] = {}

    def hit(self, key: str) -> Dict[str, str]:
        """Count one request for ``key``; return rate-limit headers or raise RateLimitError."""
        now = self._clock()
        self._expire(now)
        current = self._windows.get(key)
        if current is None:
            current = self._windows[key] = Window(started_at=now)
        current.count += 1

        reset = max(1, math.ceil(current.started_at + self.window - now))
        if current.count > self.max_requests:
            log.warning("Rate limit exceeded for %s (%d requests)", key, current.count)
            raise RateLimitError(retry_after=reset)
        return {
            "X-RateLimit-Limit": str(self.max_requests),
            "X-RateLimit-Remaining": str(self.max_requests - current.count),
            "X-RateLimit-Reset": str(reset),
        }

    def _expire(self, now: float):
        for key in [k for k, w in self._windows.items() if now - w.started_at >= self.window]:
            del self._windows[key]

    def __len__(self) -> int:
        return len(self._windows)


def client_key(request: Request) -> str:
    forwarded: Optional[str] = request.headers.get("x-forwarded-for")
    if forwarded:
        return forwarded.split(",")[0].strip()
    return request.client.host if request.client else "unknown"

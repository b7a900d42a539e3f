from __future__ import annotations

import math
import time
from collections import defaultdict, deque
from threading import Lock

from fastapi import HTTPException


class RateLimiter:
    """
    Sliding-window limiter kept in process memory.

    Used for OTP verify/resend, password reset and checkout creation. Each
    rejected hit carries a `Retry-After` header so clients can show a countdown.
    Multi-instance deployments need a shared store instead.
    """

    def __init__(self, clock=time.monotonic) -> None:
        self._clock = clock
        self._lock = Lock()
        self._events: dict[str, deque[float]] = defaultdict(deque)

    def hit(self, *, key: str, limit: int, window_seconds: int, detail: str = "Too many requests") -> None:
        now = self._clock()
        win_start = now - float(window_seconds)
        with self._lock:
            q = self._events[key]
            while q and q[0] < win_start:
                q.popleft()
            if len(q) >= int(limit):
                retry_after = max(1, math.ceil(q[0] - win_start))
                raise HTTPException(status_code=429, detail=detail, headers={"Retry-After": str(retry_after)})
            q.append(now)

    def reset(self) -> None:
        with self._lock:
            self._events.clear()


limiter = RateLimiter()

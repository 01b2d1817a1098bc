from __future__ import annotations

from collections import OrderedDict, deque
from collections.abc import Callable
from threading import Lock
import time
from typing import Deque

from fastapi import HTTPException, Request, status

from app.core.config import get_settings


class InMemoryRateLimiter:
    """Sliding-window limiter keyed by caller.

    The clock is injectable and the key map is bounded: once it holds more
    than ``max_keys`` buckets, empty ones are dropped first, then the least
    recently used.
    """

    def __init__(self, *, clock: Callable[[], float] = time.monotonic, max_keys: int = 10_000) -> None:
        self._clock = clock
        self._max_keys = max(1, max_keys)
        self._buckets: OrderedDict[str, Deque[float]] = OrderedDict()
        self._lock = Lock()

    def check(self, *, key: str, limit: int, window_seconds: int) -> tuple[bool, int]:
        now = self._clock()
        earliest = now - window_seconds
        retry_after = 1
        with self._lock:
            bucket = self._buckets.get(key)
            if bucket is None:
                bucket = deque()
                self._buckets[key] = bucket
            self._buckets.move_to_end(key)
            while bucket and bucket[0] <= earliest:
                bucket.popleft()
            if len(bucket) >= limit:
                retry_after = max(1, int(bucket[0] + window_seconds - now))
                return False, retry_after
            bucket.append(now)
            self._evict(earliest)
        return True, retry_after

    def _evict(self, earliest: float) -> None:
        if len(self._buckets) <= self._max_keys:
            return
        for key in [key for key, bucket in self._buckets.items() if not bucket or bucket[-1] <= earliest]:
            del self._buckets[key]
        while len(self._buckets) > self._max_keys:
            self._buckets.popitem(last=False)

    def __len__(self) -> int:
        return len(self._buckets)

    def clear(self) -> None:
        with self._lock:
            self._buckets.clear()


_limiter = InMemoryRateLimiter(max_keys=get_settings().rate_limit_max_keys)


def _request_ip(request: Request) -> str:
    forwarded = request.headers.get("x-forwarded-for", "")
    if forwarded:
        return forwarded.split(",")[0].strip()
    if request.client and request.client.host:
        return request.client.host
    return "unknown"


def enforce_rate_limit(
    *,
    request: Request,
    scope: str,
    limit: int,
    window_seconds: int,
    identity: str | None = None,
) -> None:
    id_part = (identity or "").strip().lower()
    key = f"{scope}|{_request_ip(request)}|{id_part}"
    allowed, retry_after = _limiter.check(key=key, limit=limit, window_seconds=window_seconds)
    if allowed:
        return
    raise HTTPException(
        status_code=status.HTTP_429_TOO_MANY_REQUESTS,
        detail=f"Too many requests for {scope}. Try again in {retry_after} second(s).",
        headers={"Retry-After": str(retry_after)},
    )


def clear_rate_limiter() -> None:
    _limiter.clear()

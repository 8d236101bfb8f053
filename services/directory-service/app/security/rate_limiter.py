"""Rate limits on admin mutations, per operator and action."""

from __future__ import annotations

import logging
import math
import time
from collections import deque
from dataclasses import dataclass
from threading import Lock
from typing import Callable, Deque, DefaultDict, Protocol

from redis import Redis

from ..config import Settings

logger = logging.getLogger(__name__)


def mutation_key(operator: str, action: str) -> str:
    """Bucket name for one operator performing one kind of mutation."""
    return f"mutation:{operator or 'anonymous'}:{action}"


@dataclass(frozen=True, slots=True)
class RateDecision:
    allowed: bool
    retry_after: int = 0


class RateLimiter(Protocol):
    def check(self, operator: str, action: str) -> RateDecision: ...


class SlidingWindowRateLimiter:
    """Thread-safe in-process limiter."""

    def __init__(self, max_requests: int, window_seconds: int) -> None:
        self._max_requests = max_requests
        self._window = window_seconds
        self._events: DefaultDict[str, Deque[float]] = DefaultDict(deque)
        self._lock = Lock()

    def check(self, operator: str, action: str) -> RateDecision:
        """Record the mutation unless the operator already used up the window for it."""
        key = mutation_key(operator, action)
        now = time.monotonic()
        with self._lock:
            queue = self._events[key]
            while queue and now - queue[0] > self._window:
                queue.popleft()
            if len(queue) >= self._max_requests:
                return RateDecision(False, max(1, math.ceil(self._window - (now - queue[0]))))
            queue.append(now)
            return RateDecision(True)


class RedisFixedWindowRateLimiter:
    """Limiter shared by every replica.

    Each operator gets one Redis hash per window, holding a counter per
    action (``assign``, ``save``, ``flow-account``). The hash expires with
    its window, so an operator's buckets reset together.
    """

    def __init__(
        self,
        client: Redis,
        *,
        max_requests: int,
        window_seconds: int,
        key_prefix: str = "directory-rate",
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._client = client
        self._max_requests = max_requests
        self._window = window_seconds
        self._key_prefix = key_prefix
        self._clock = clock

    def operator_key(self, operator: str, window: int) -> str:
        return f"{self._key_prefix}:{operator or 'anonymous'}:{window}"

    def check(self, operator: str, action: str) -> RateDecision:
        now = self._clock()
        window = int(now // self._window)
        key = self.operator_key(operator, window)
        with self._client.pipeline() as pipe:
            pipe.hincrby(key, action, 1)
            pipe.expire(key, self._window)
            count, _ = pipe.execute()

        if int(count) > self._max_requests:
            retry_after = max(1, math.ceil((window + 1) * self._window - now))
            logger.info("operator %s over the %s limit for %ss", operator or "anonymous", action, retry_after)
            return RateDecision(False, retry_after)
        return RateDecision(True)


def build_rate_limiter(settings: Settings) -> RateLimiter:
    """Instantiate the configured backend, falling back to memory when Redis is unreachable."""
    if settings.rate_limit_backend == "redis" and settings.redis_url:
        try:
            client = Redis.from_url(settings.redis_url)
            client.ping()
            logger.info("rate limiter configured for redis backend at %s", settings.redis_url)
            return RedisFixedWindowRateLimiter(
                client,
                max_requests=settings.rate_limit_requests,
                window_seconds=settings.rate_limit_window_seconds,
            )
        except Exception as exc:  # pragma: no cover - depends on a live redis
            logger.warning("redis rate limiter unavailable, falling back to in-memory: %s", exc)

    logger.info("rate limiter using in-memory backend")
    return SlidingWindowRateLimiter(
        max_requests=settings.rate_limit_requests,
        window_seconds=settings.rate_limit_window_seconds,
    )

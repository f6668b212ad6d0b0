"""Sliding window rate limiting for the public authentication endpoints."""

from __future__ import annotations

import logging
import time
from collections import defaultdict, deque
from threading import Lock
from typing import Deque, Protocol

from ..config import Settings
from ..domain.errors import RateLimitedError

logger = logging.getLogger(__name__)


class RateLimiter(Protocol):
    def allow(self, key: str) -> bool: ...


class SlidingWindowRateLimiter:
    """Thread-safe in-process sliding window rate limiter."""

    def __init__(self, max_requests: int, window_seconds: int) -> None:
        """Initialise limiter parameters and per-key storage."""
        self._max_requests = max_requests
        self._window = window_seconds
        self._events: defaultdict[str, Deque[float]] = defaultdict(deque)
        self._lock = Lock()

    def allow(self, key: str) -> bool:
        """Return ``True`` when the request is within the configured rate limit."""
        now = time.monotonic()
        with self._lock:
            queue = self._events[key]
            while queue and now - queue[0] > self._window:
                queue.popleft()
            if len(queue) >= self._max_requests:
                return False
            queue.append(now)
            return True


def enforce(limiter: RateLimiter, key: str) -> None:
    """Raise ``RateLimitedError`` when ``key`` has exhausted its window."""
    if not limiter.allow(key):
        logger.warning("rate limit exceeded key=%s", key)
        raise RateLimitedError("too many requests, please try again later")


def build_rate_limiter(settings: Settings) -> RateLimiter:
    """Instantiate the configured backend, falling back to memory when Redis is unreachable."""
    if settings.rate_limit_backend == "redis" and settings.redis_url:
        import redis

        from .redis_rate_limiter import RedisSlidingWindowRateLimiter

        client = redis.Redis.from_url(settings.redis_url)
        try:
            client.ping()
        except redis.RedisError as exc:
            logger.warning("redis rate limiter unavailable, falling back to in-memory: %s", exc)
        else:
            logger.info("rate limiter configured for redis backend")
            return RedisSlidingWindowRateLimiter(
                client,
                max_requests=settings.rate_limit_requests,
                window_seconds=settings.rate_limit_window_seconds,
            )

    logger.info("rate limiter using in-memory backend")
    return SlidingWindowRateLimiter(
        max_requests=settings.rate_limit_requests,
        window_seconds=settings.rate_limit_window_seconds,
    )

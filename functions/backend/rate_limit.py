"""
Sliding-window rate limiting.

The Redis implementation keeps one sorted set of request timestamps per key
so every worker process shares the same window. The in-memory limiter is
per-process and is used when no Redis URL is configured.
"""

from __future__ import annotations

import logging
import threading
import time
import uuid
from dataclasses import dataclass, field
from typing import Callable, Dict, Optional, Protocol

import redis
from redis import exceptions as redis_exceptions

logger = logging.getLogger(__name__)


class RateLimiter(Protocol):
    def hit(self, key: str) -> bool:
        """Record a request for `key`; return False when over the limit."""
        ...


@dataclass
class InMemoryRateLimiter:
    max_requests: int
    window_seconds: float
    clock: Callable[[], float] = time.time
    hits: Dict[str, list[float]] = field(default_factory=dict)

    def __post_init__(self):
        self._lock = threading.Lock()
        self._last_sweep = self.clock()

    def hit(self, key: str) -> bool:
        now = self.clock()
        with self._lock:
            if now - self._last_sweep >= self.window_seconds:
                self._sweep(now)
            recent = [ts for ts in self.hits.get(key, []) if now - ts < self.window_seconds]
            if len(recent) >= self.max_requests:
                self.hits[key] = recent
                return False
            recent.append(now)
            self.hits[key] = recent
            return True

    def _sweep(self, now: float) -> None:
        idle = [
            key
            for key, stamps in self.hits.items()
            if not stamps or now - stamps[-1] >= self.window_seconds
        ]
        for key in idle:
            del self.hits[key]
        self._last_sweep = now

    def reset(self) -> None:
        with self._lock:
            self.hits.clear()


@dataclass
class RedisRateLimiter:
    url: str
    max_requests: int
    window_seconds: int
    key_prefix: str = "viraly:ratelimit"
    client: Optional[redis.Redis] = None
    fallback: Optional[InMemoryRateLimiter] = None
    clock: Callable[[], float] = time.time

    def __post_init__(self):
        if self.client is None:
            self.client = redis.Redis.from_url(self.url, decode_responses=True)
        if self.fallback is None:
            self.fallback = InMemoryRateLimiter(
                self.max_requests, self.window_seconds, clock=self.clock
            )

    def hit(self, key: str) -> bool:
        now = self.clock()
        zkey = f"{self.key_prefix}:{key}"
        member = f"{now}:{uuid.uuid4().hex}"
        try:
            pipe = self.client.pipeline()
            pipe.zremrangebyscore(zkey, 0, now - self.window_seconds)
            pipe.zadd(zkey, {member: now})
            pipe.zcard(zkey)
            pipe.expire(zkey, int(self.window_seconds) + 5)
            _, _, count, _ = pipe.execute()
        except redis_exceptions.RedisError as exc:
            logger.warning("Redis rate limiter error, using in-process window: %s", exc)
            return self.fallback.hit(key)
        if int(count) <= self.max_requests:
            return True
        # Rejected requests do not occupy the window.
        try:
            self.client.zrem(zkey, member)
        except redis_exceptions.RedisError as exc:
            logger.warning("Could not drop rejected request from %s: %s", zkey, exc)
        return False

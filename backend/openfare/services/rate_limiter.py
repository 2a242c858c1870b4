"""Rate limiting backends shared by the request gate and the auth routes."""

from __future__ import annotations

import logging
import math
import threading
import time
from abc import ABC, abstractmethod
from collections import deque
from dataclasses import dataclass
from typing import Callable, Deque, Dict

import redis

from openfare.config import Settings

logger = logging.getLogger(__name__)


class RateLimiter(ABC):
    """Counts hits per key inside a time window."""

    @abstractmethod
    def allow(self, key: str, limit: int, window_seconds: int) -> bool:
        """Record a hit and report whether it is within the limit."""

    def retry_after(self, key: str, window_seconds: int) -> int:
        return window_seconds


@dataclass
class _Bucket:
    timestamps: Deque[float]
    window_seconds: int


class InMemoryRateLimiter(RateLimiter):
    """Sliding-window rate limiter suitable for single-node deployments."""

    def __init__(self, sweep_interval_seconds: float = 60.0, clock: Callable[[], float] = time.time) -> None:
        self._lock = threading.Lock()
        self._buckets: Dict[str, _Bucket] = {}
        self._clock = clock
        self._sweep_interval = sweep_interval_seconds
        self._last_sweep = clock()

    def allow(self, key: str, limit: int, window_seconds: int) -> bool:
        now = self._clock()
        cutoff = now - window_seconds

        with self._lock:
            if now - self._last_sweep >= self._sweep_interval:
                self._sweep(now)

            bucket = self._buckets.setdefault(key, _Bucket(timestamps=deque(), window_seconds=window_seconds))
            while bucket.timestamps and bucket.timestamps[0] <= cutoff:
                bucket.timestamps.popleft()

            if len(bucket.timestamps) >= limit:
                return False

            bucket.timestamps.append(now)
            return True

    def retry_after(self, key: str, window_seconds: int) -> int:
        now = self._clock()
        with self._lock:
            bucket = self._buckets.get(key)
            if bucket is None or not bucket.timestamps:
                return 0
            return max(1, math.ceil(bucket.timestamps[0] + window_seconds - now))

    def sweep(self) -> int:
        with self._lock:
            return self._sweep(self._clock())

    def __len__(self) -> int:
        return len(self._buckets)

    def _sweep(self, now: float) -> int:
        stale = [
            key for key, bucket in self._buckets.items()
            if not bucket.timestamps or bucket.timestamps[-1] <= now - bucket.window_seconds
        ]
        for key in stale:
            del self._buckets[key]
        self._last_sweep = now
        return len(stale)


class RedisRateLimiter(RateLimiter):
    """Fixed-window counter in redis (INCR + EXPIRE), shared across workers."""

    PREFIX = "openfare:ratelimit:"

    def __init__(self, client: "redis.Redis", clock: Callable[[], float] = time.time) -> None:
        self.client = client
        self._clock = clock

    @classmethod
    def from_url(cls, url: str, *, timeout: float) -> "RedisRateLimiter":
        client = redis.Redis.from_url(
            url,
            socket_timeout=timeout,
            socket_connect_timeout=timeout,
            decode_responses=True,
        )
        return cls(client)

    def _window_key(self, key: str, window_seconds: int) -> str:
        window = int(self._clock() // window_seconds)
        return f"{self.PREFIX}{key}:{window_seconds}:{window}"

    def allow(self, key: str, limit: int, window_seconds: int) -> bool:
        redis_key = self._window_key(key, window_seconds)
        try:
            pipe = self.client.pipeline()
            pipe.incr(redis_key)
            pipe.expire(redis_key, window_seconds)
            count, _ = pipe.execute()
        except redis.RedisError as exc:
            logger.error("Redis rate limiter unavailable, allowing request: %s", exc)
            return True
        return int(count) <= limit

    def retry_after(self, key: str, window_seconds: int) -> int:
        return max(1, window_seconds - int(self._clock() % window_seconds))


def build_rate_limiter(cfg: Settings) -> RateLimiter:
    """Create the limiter selected by RATE_LIMIT_BACKEND."""
    if cfg.RATE_LIMIT_BACKEND == "memory":
        return InMemoryRateLimiter(sweep_interval_seconds=cfg.RATE_LIMIT_SWEEP_INTERVAL_SECONDS)
    if cfg.RATE_LIMIT_BACKEND == "redis":
        return RedisRateLimiter.from_url(cfg.REDIS_URL, timeout=cfg.STORE_TIMEOUT_SECONDS)
    raise ValueError(f"Unknown RATE_LIMIT_BACKEND: {cfg.RATE_LIMIT_BACKEND}")

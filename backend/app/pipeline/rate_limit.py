"""Fixed-window request rate limiting.

Buckets live in a ``BucketStore``. The default store keeps them in process
memory; a shared store (e.g. Redis) can implement the same interface for
multi-instance deployments without touching the call sites.
"""
import logging
import math
import threading
import time
from contextlib import contextmanager
from dataclasses import dataclass
from typing import Callable, Iterator, Optional, Protocol

logger = logging.getLogger(__name__)

UNKNOWN_CLIENT = "unknown"


@dataclass
class RateLimitBucket:
    count: int
    reset_at_ms: int


@dataclass(frozen=True)
class RateLimitResult:
    ok: bool
    remaining: int
    limit: int
    reset_at_ms: int
    retry_after_seconds: int

    def headers(self) -> dict[str, str]:
        return {
            "Retry-After": str(self.retry_after_seconds),
            "X-RateLimit-Limit": str(self.limit),
            "X-RateLimit-Remaining": str(self.remaining),
            "X-RateLimit-Reset": str(self.reset_at_ms),
        }


class BucketStore(Protocol):
    def lock(self, key: str): ...

    def get(self, key: str) -> Optional[RateLimitBucket]: ...

    def set(self, key: str, bucket: RateLimitBucket) -> None: ...

    def prune(self, now_ms: int) -> int: ...


class KeyLock:
    def __init__(self):
        self.lock = threading.Lock()
        self.users = 0


class InMemoryBucketStore:
    """Thread-safe bucket map with one lock per key.

    A key lock is only discarded while no thread holds or waits on it.
    """

    def __init__(self, max_buckets: int = 10_000):
        self.max_buckets = max_buckets
        self._buckets: dict[str, RateLimitBucket] = {}
        self._locks: dict[str, KeyLock] = {}
        self._guard = threading.Lock()

    @contextmanager
    def lock(self, key: str) -> Iterator[None]:
        with self._guard:
            key_lock = self._locks.setdefault(key, KeyLock())
            key_lock.users += 1
        try:
            with key_lock.lock:
                yield
        finally:
            with self._guard:
                key_lock.users -= 1

    def get(self, key: str) -> Optional[RateLimitBucket]:
        return self._buckets.get(key)

    def set(self, key: str, bucket: RateLimitBucket) -> None:
        with self._guard:
            self._buckets[key] = bucket

    def prune(self, now_ms: int) -> int:
        """Drop expired buckets once the map outgrows ``max_buckets``."""
        with self._guard:
            if len(self._buckets) <= self.max_buckets:
                return 0
            expired = [k for k, b in self._buckets.items() if b.reset_at_ms <= now_ms]
            for k in expired:
                del self._buckets[k]
            idle = [k for k, kl in self._locks.items() if kl.users == 0 and k not in self._buckets]
            for k in idle:
                del self._locks[k]
        if expired:
            logger.info(f"Pruned {len(expired)} expired rate-limit buckets")
        return len(expired)

    def __len__(self) -> int:
        return len(self._buckets)


def _now_ms() -> int:
    return int(time.time() * 1000)


class RateLimiter:
    def __init__(self, store: Optional[BucketStore] = None, clock: Callable[[], int] = _now_ms):
        self.store = store if store is not None else InMemoryBucketStore()
        self.clock = clock

    def check(self, key: str, limit: int, window_ms: int) -> RateLimitResult:
        now = self.clock()
        with self.store.lock(key):
            bucket = self.store.get(key)

            if bucket is None or bucket.reset_at_ms <= now:
                reset_at = now + window_ms
                self.store.set(key, RateLimitBucket(count=1, reset_at_ms=reset_at))
                result = RateLimitResult(
                    ok=True,
                    remaining=max(0, limit - 1),
                    limit=limit,
                    reset_at_ms=reset_at,
                    retry_after_seconds=max(1, math.ceil(window_ms / 1000)),
                )
            else:
                retry_after = max(1, math.ceil((bucket.reset_at_ms - now) / 1000))
                if bucket.count >= limit:
                    logger.warning(f"Rate limit exceeded for {key}")
                    return RateLimitResult(
                        ok=False, remaining=0, limit=limit,
                        reset_at_ms=bucket.reset_at_ms, retry_after_seconds=retry_after,
                    )
                bucket.count += 1
                self.store.set(key, bucket)
                result = RateLimitResult(
                    ok=True, remaining=max(0, limit - bucket.count), limit=limit,
                    reset_at_ms=bucket.reset_at_ms, retry_after_seconds=retry_after,
                )

        self.store.prune(now)
        return result


def get_client_ip(headers, trusted_header: str = "cf-connecting-ip") -> str:
    """Best-effort client address from proxy headers.

    Not spoof-proof behind untrusted proxies. Requests without any identifying
    header share the ``unknown`` bucket.
    """
    trusted = headers.get(trusted_header)
    if trusted and trusted.strip():
        return trusted.strip()

    forwarded_for = headers.get("x-forwarded-for")
    if forwarded_for:
        first = forwarded_for.split(",")[0].strip()
        if first:
            return first

    return UNKNOWN_CLIENT

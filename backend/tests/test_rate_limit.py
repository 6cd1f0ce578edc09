import threading

import pytest

from app.pipeline.rate_limit import InMemoryBucketStore, RateLimitBucket, RateLimiter, get_client_ip


class FakeClock:
    def __init__(self, now_ms=1_000_000):
        self.now_ms = now_ms

    def __call__(self):
        return self.now_ms

    def advance(self, ms):
        self.now_ms += ms


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def limiter(clock):
    return RateLimiter(clock=clock)


def test_admits_exactly_limit_requests_per_window(limiter, clock):
    results = [limiter.check("search:1.2.3.4", limit=3, window_ms=60_000) for _ in range(5)]

    assert [r.ok for r in results] == [True, True, True, False, False]
    assert [r.remaining for r in results] == [2, 1, 0, 0, 0]
    assert all(r.reset_at_ms == clock.now_ms + 60_000 for r in results)


def test_window_resets_after_expiry(limiter, clock):
    for _ in range(3):
        limiter.check("k", limit=3, window_ms=60_000)
    assert limiter.check("k", limit=3, window_ms=60_000).ok is False

    clock.advance(60_000)
    result = limiter.check("k", limit=3, window_ms=60_000)

    assert result.ok is True
    assert result.remaining == 2
    assert result.reset_at_ms == clock.now_ms + 60_000


def test_denial_reports_retry_after_until_reset(limiter, clock):
    limiter.check("k", limit=1, window_ms=10_000)
    clock.advance(2_500)
    denied = limiter.check("k", limit=1, window_ms=10_000)

    assert denied.ok is False
    # 7.5 seconds left, rounded up
    assert denied.retry_after_seconds == 8
    assert denied.headers() == {
        "Retry-After": "8",
        "X-RateLimit-Limit": "1",
        "X-RateLimit-Remaining": "0",
        "X-RateLimit-Reset": str(denied.reset_at_ms),
    }


def test_retry_after_is_at_least_one_second(limiter, clock):
    limiter.check("k", limit=1, window_ms=10_000)
    clock.advance(9_999)

    assert limiter.check("k", limit=1, window_ms=10_000).retry_after_seconds == 1


def test_keys_are_independent(limiter):
    limiter.check("search:a", limit=1, window_ms=60_000)

    assert limiter.check("search:a", limit=1, window_ms=60_000).ok is False
    assert limiter.check("search:b", limit=1, window_ms=60_000).ok is True
    assert limiter.check("chat:a", limit=1, window_ms=60_000).ok is True


def test_concurrent_requests_never_exceed_limit(limiter):
    results = []
    lock = threading.Lock()

    def hit():
        result = limiter.check("shared", limit=10, window_ms=60_000)
        with lock:
            results.append(result.ok)

    threads = [threading.Thread(target=hit) for _ in range(50)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    assert results.count(True) == 10
    assert results.count(False) == 40


def test_store_prunes_expired_buckets_when_over_capacity(clock):
    store = InMemoryBucketStore(max_buckets=2)
    limiter = RateLimiter(store=store, clock=clock)
    limiter.check("a", limit=5, window_ms=1_000)
    limiter.check("b", limit=5, window_ms=1_000)
    assert len(store) == 2

    clock.advance(5_000)
    limiter.check("c", limit=5, window_ms=1_000)

    assert len(store) == 1
    assert store.get("c") is not None


def test_prune_keeps_a_key_locked_while_it_is_held():
    store = InMemoryBucketStore(max_buckets=0)
    store.set("k", RateLimitBucket(count=1, reset_at_ms=5))
    holding = threading.Event()
    release = threading.Event()
    order = []

    def first():
        with store.lock("k"):
            order.append("first in")
            holding.set()
            release.wait(timeout=5)
            order.append("first out")

    def second():
        with store.lock("k"):
            order.append("second in")

    t1 = threading.Thread(target=first)
    t1.start()
    assert holding.wait(timeout=5)

    assert store.prune(now_ms=10) == 1
    t2 = threading.Thread(target=second)
    t2.start()
    t2.join(timeout=0.2)
    assert t2.is_alive()

    release.set()
    t1.join(timeout=5)
    t2.join(timeout=5)
    assert order == ["first in", "first out", "second in"]


def test_prune_drops_idle_key_locks(clock):
    store = InMemoryBucketStore(max_buckets=0)
    limiter = RateLimiter(store=store, clock=clock)
    limiter.check("a", limit=5, window_ms=1_000)
    clock.advance(5_000)

    limiter.check("b", limit=5, window_ms=1_000)
    clock.advance(5_000)
    store.set("c", RateLimitBucket(count=1, reset_at_ms=0))
    store.prune(clock())

    assert len(store) == 0
    assert store._locks == {}


def test_client_ip_prefers_trusted_header():
    headers = {"cf-connecting-ip": " 203.0.113.9 ", "x-forwarded-for": "198.51.100.1"}
    assert get_client_ip(headers) == "203.0.113.9"


def test_client_ip_uses_first_forwarded_address():
    headers = {"x-forwarded-for": "198.51.100.1, 10.0.0.2, 10.0.0.3"}
    assert get_client_ip(headers) == "198.51.100.1"


def test_client_ip_honors_configured_header():
    headers = {"x-real-ip": "192.0.2.44", "cf-connecting-ip": "203.0.113.9"}
    assert get_client_ip(headers, trusted_header="x-real-ip") == "192.0.2.44"


def test_client_ip_falls_back_to_shared_unknown_bucket():
    assert get_client_ip({}) == "unknown"
    assert get_client_ip({"x-forwarded-for": " , "}) == "unknown"

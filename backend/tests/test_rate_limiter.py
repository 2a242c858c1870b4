import pytest
import redis

from openfare.services.rate_limiter import InMemoryRateLimiter, RedisRateLimiter, build_rate_limiter


class FakeClock:
    def __init__(self, now=1_700_000_000.0):
        self.now = now

    def __call__(self):
        return self.now

    def advance(self, seconds):
        self.now += seconds


class FakePipeline:
    def __init__(self, client):
        self.client = client
        self.ops = []

    def incr(self, key):
        self.ops.append(("incr", key))

    def expire(self, key, seconds):
        self.ops.append(("expire", key, seconds))

    def execute(self):
        results = []
        for op in self.ops:
            if op[0] == "incr":
                self.client.counts[op[1]] = self.client.counts.get(op[1], 0) + 1
                results.append(self.client.counts[op[1]])
            else:
                self.client.expiries[op[1]] = op[2]
                results.append(True)
        return results


class FakeRedis:
    def __init__(self):
        self.counts = {}
        self.expiries = {}

    def pipeline(self):
        return FakePipeline(self)


class BrokenRedis:
    def pipeline(self):
        raise redis.ConnectionError("down")


def test_allows_up_to_limit():
    limiter = InMemoryRateLimiter(clock=FakeClock())
    assert [limiter.allow("k", 3, 60) for _ in range(4)] == [True, True, True, False]
    assert limiter.allow("other", 3, 60) is True


def test_window_slides():
    clock = FakeClock()
    limiter = InMemoryRateLimiter(clock=clock)
    assert limiter.allow("k", 2, 60)
    clock.advance(30)
    assert limiter.allow("k", 2, 60)
    assert not limiter.allow("k", 2, 60)

    clock.advance(30)
    # The first hit has left the window.
    assert limiter.allow("k", 2, 60)
    assert not limiter.allow("k", 2, 60)


def test_retry_after_tracks_oldest_hit():
    clock = FakeClock()
    limiter = InMemoryRateLimiter(clock=clock)
    assert limiter.retry_after("k", 60) == 0

    limiter.allow("k", 5, 60)
    clock.advance(20)
    limiter.allow("k", 5, 60)
    assert limiter.retry_after("k", 60) == 40


def test_sweep_bounds_the_key_map():
    clock = FakeClock()
    limiter = InMemoryRateLimiter(sweep_interval_seconds=60, clock=clock)
    for i in range(100):
        limiter.allow(f"client-{i}", 10, 60)
    assert len(limiter) == 100

    clock.advance(61)
    limiter.allow("fresh", 10, 60)
    assert len(limiter) == 1


def test_explicit_sweep_keeps_live_keys():
    clock = FakeClock()
    limiter = InMemoryRateLimiter(sweep_interval_seconds=3600, clock=clock)
    limiter.allow("old", 10, 60)
    clock.advance(50)
    limiter.allow("new", 10, 60)
    clock.advance(20)
    assert limiter.sweep() == 1
    assert len(limiter) == 1


def test_redis_counts_per_fixed_window():
    client = FakeRedis()
    clock = FakeClock(now=1_700_000_080.0)
    limiter = RedisRateLimiter(client, clock=clock)

    assert [limiter.allow("k", 2, 60) for _ in range(3)] == [True, True, False]
    [key] = client.counts
    assert key.startswith("openfare:ratelimit:k:60:")
    assert client.expiries[key] == 60
    assert limiter.retry_after("k", 60) == 20

    clock.advance(20)
    assert limiter.allow("k", 2, 60) is True


def test_redis_outage_fails_open():
    limiter = RedisRateLimiter(BrokenRedis())
    assert limiter.allow("k", 1, 60) is True
    assert limiter.allow("k", 1, 60) is True


def test_build_rate_limiter(monkeypatch):
    from openfare.config import settings

    monkeypatch.setattr(settings, "RATE_LIMIT_BACKEND", "memory")
    assert isinstance(build_rate_limiter(settings), InMemoryRateLimiter)

    monkeypatch.setattr(settings, "RATE_LIMIT_BACKEND", "nope")
    with pytest.raises(ValueError):
        build_rate_limiter(settings)

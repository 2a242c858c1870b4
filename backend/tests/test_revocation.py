from datetime import timedelta

import pytest
import redis

from openfare.core.exceptions import ServiceUnavailableError
from openfare.services.revocation import (
    DatabaseRevocationRegistry,
    InMemoryRevocationRegistry,
    RedisRevocationRegistry,
    build_revocation_registry,
)


class FakeClock:
    def __init__(self, now=1_700_000_000.0):
        self.now = now

    def __call__(self):
        return self.now

    def advance(self, seconds):
        self.now += seconds


class FakeRedis:
    """Just enough of redis.Redis for SET NX EX / GET."""

    def __init__(self):
        self.values = {}
        self.ttls = {}

    def set(self, key, value, ex=None, nx=False):
        if nx and key in self.values:
            return None
        self.values[key] = str(value)
        self.ttls[key] = ex
        return True

    def get(self, key):
        return self.values.get(key)


class BrokenRedis:
    def set(self, *args, **kwargs):
        raise redis.ConnectionError("down")

    def get(self, *args, **kwargs):
        raise redis.TimeoutError("slow")


@pytest.fixture(params=["memory", "database", "redis"])
def clocked_registry(request, session_factory):
    clock = FakeClock()
    ttl = timedelta(days=7)
    if request.param == "memory":
        registry = InMemoryRevocationRegistry(record_ttl=ttl, clock=clock)
    elif request.param == "database":
        registry = DatabaseRevocationRegistry(session_factory, record_ttl=ttl, clock=clock)
    else:
        registry = RedisRevocationRegistry(FakeRedis(), record_ttl=ttl, clock=clock)
    return registry, clock


def test_unknown_principal_is_not_revoked(clocked_registry):
    registry, clock = clocked_registry
    assert registry.revoked_since(1) is None
    assert registry.is_revoked(1, clock.now) is False


def test_revoke_blocks_tokens_issued_before(clocked_registry):
    registry, clock = clocked_registry
    issued_before = clock.now - 10
    clock.advance(0.25)
    registry.revoke(1)

    assert registry.is_revoked(1, issued_before) is True
    assert registry.is_revoked(1, clock.now) is True
    assert registry.is_revoked(2, issued_before) is False


def test_tokens_issued_after_revocation_are_valid(clocked_registry):
    registry, clock = clocked_registry
    registry.revoke(1)
    clock.advance(0.001)
    assert registry.is_revoked(1, clock.now) is False


def test_revoke_again_moves_the_cutoff(clocked_registry):
    registry, clock = clocked_registry
    registry.revoke(1)
    first = registry.revoked_since(1)
    clock.advance(30)
    registry.revoke(1)
    assert registry.revoked_since(1) == pytest.approx(first + 30)


def test_claim_token_only_once(clocked_registry):
    registry, clock = clocked_registry
    expires_at = clock.now + 3600
    assert registry.claim_token("jti-1", expires_at) is True
    assert registry.claim_token("jti-1", expires_at) is False
    assert registry.claim_token("jti-2", expires_at) is True


def test_memory_records_expire():
    clock = FakeClock()
    registry = InMemoryRevocationRegistry(record_ttl=timedelta(seconds=60), clock=clock)
    registry.revoke(1)
    registry.claim_token("jti", clock.now + 30)

    clock.advance(31)
    assert registry.claim_token("jti", clock.now + 30) is True
    clock.advance(30)
    assert registry.revoked_since(1) is None


def test_memory_sweep_drops_stale_records():
    clock = FakeClock()
    registry = InMemoryRevocationRegistry(record_ttl=timedelta(seconds=60), clock=clock)
    for principal_id in range(5):
        registry.revoke(principal_id)
    registry.claim_token("jti", clock.now + 10)

    clock.advance(120)
    assert registry.sweep() == 6
    assert registry.sweep() == 0


def test_database_sweep_and_expiry(session_factory):
    clock = FakeClock()
    registry = DatabaseRevocationRegistry(session_factory, record_ttl=timedelta(seconds=60), clock=clock)
    registry.revoke(1)
    registry.claim_token("jti", clock.now + 30)

    clock.advance(45)
    assert registry.revoked_since(1) is not None
    # The claim has expired, so the id may be claimed again.
    assert registry.claim_token("jti", clock.now + 30) is True

    clock.advance(100)
    assert registry.revoked_since(1) is None
    assert registry.sweep() == 2


def test_redis_keys_carry_expiry():
    client = FakeRedis()
    clock = FakeClock()
    registry = RedisRevocationRegistry(client, record_ttl=timedelta(days=7), clock=clock)
    registry.revoke(42)
    registry.claim_token("abc", clock.now + 90.5)

    assert client.ttls["openfare:auth:revoked:principal:42"] == 7 * 24 * 3600
    assert client.ttls["openfare:auth:refresh:used:abc"] == 91
    assert float(client.values["openfare:auth:revoked:principal:42"]) == clock.now


def test_redis_outage_fails_closed():
    registry = RedisRevocationRegistry(BrokenRedis())
    with pytest.raises(ServiceUnavailableError):
        registry.revoke(1)
    with pytest.raises(ServiceUnavailableError):
        registry.is_revoked(1, 0.0)
    with pytest.raises(ServiceUnavailableError):
        registry.claim_token("jti", 0.0)


def test_build_registry_by_backend(session_factory, monkeypatch):
    from openfare.config import settings

    monkeypatch.setattr(settings, "REVOCATION_BACKEND", "memory")
    assert isinstance(build_revocation_registry(settings), InMemoryRevocationRegistry)

    monkeypatch.setattr(settings, "REVOCATION_BACKEND", "database")
    assert isinstance(build_revocation_registry(settings, session_factory), DatabaseRevocationRegistry)

    monkeypatch.setattr(settings, "REVOCATION_BACKEND", "carrier-pigeon")
    with pytest.raises(ValueError):
        build_revocation_registry(settings)


def _row_count(session_factory):
    from openfare.models.security import RevokedToken

    db = session_factory()
    try:
        return db.query(RevokedToken).count()
    finally:
        db.close()


def test_database_registry_sweeps_during_writes(session_factory):
    clock = FakeClock()
    registry = DatabaseRevocationRegistry(
        session_factory, record_ttl=timedelta(seconds=60), clock=clock, sweep_interval_seconds=60
    )
    for i in range(20):
        registry.claim_token(f"old-{i}", clock.now + 30)
    registry.revoke(1)
    assert _row_count(session_factory) == 21

    clock.advance(10_000)
    registry.claim_token("fresh", clock.now + 30)
    # Only the new claim survives; nobody called sweep() directly.
    assert _row_count(session_factory) == 1

    registry.revoke(2)
    assert _row_count(session_factory) == 2


def test_database_sweep_failure_maps_to_unavailable(session_factory, monkeypatch):
    from sqlalchemy.exc import OperationalError
    from sqlalchemy.orm import Query

    def broken_delete(self, *args, **kwargs):
        raise OperationalError("DELETE", {}, Exception("disk I/O error"))

    registry = DatabaseRevocationRegistry(session_factory)
    monkeypatch.setattr(Query, "delete", broken_delete)
    with pytest.raises(ServiceUnavailableError):
        registry.sweep()

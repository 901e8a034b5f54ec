"""Tests for the position cache."""

from decimal import Decimal

import pytest

from moonwell_risk.core.cache import PositionCache
from moonwell_risk.core.models import UserPosition

ACCOUNT = "0xAbCdEf0000000000000000000000000000000001"


@pytest.fixture
def cache(clock):
    return PositionCache(ttl=30, clock=clock)


def position(borrowed="0", hf="999"):
    return UserPosition(total_supplied=Decimal("100"), total_borrowed=Decimal(borrowed), health_factor=Decimal(hf))


def test_miss_then_hit(cache):
    assert cache.get(ACCOUNT) is None

    cache.put(ACCOUNT, position())

    assert cache.get(ACCOUNT) == position()


def test_keys_ignore_address_case(cache):
    cache.put(ACCOUNT, position())

    assert cache.get(ACCOUNT.lower()) is not None
    assert cache.get(ACCOUNT.upper().replace("0X", "0x")) is not None


def test_entry_expires_after_ttl(cache, clock):
    cache.put(ACCOUNT, position())

    clock.advance(30)
    assert cache.get(ACCOUNT) is not None

    clock.advance(0.5)
    assert cache.get(ACCOUNT) is None
    assert cache.peek(ACCOUNT) is None


def test_max_age_overrides_ttl_without_evicting(cache, clock):
    """Test that a tighter freshness bound misses but keeps the entry for others."""
    cache.put(ACCOUNT, position())
    clock.advance(10)

    assert cache.get(ACCOUNT, max_age=5) is None
    assert cache.get(ACCOUNT) is not None
    assert cache.age(ACCOUNT) == 10


def test_peek_ignores_age(cache, clock):
    cache.put(ACCOUNT, position(borrowed="50", hf="1.6"))
    clock.advance(20)

    assert cache.get(ACCOUNT, max_age=0) is None
    assert cache.peek(ACCOUNT).health_factor == Decimal("1.6")


def test_put_replaces_whole_entry(cache, clock):
    cache.put(ACCOUNT, position())
    clock.advance(25)
    cache.put(ACCOUNT, position(borrowed="50", hf="1.6"))
    clock.advance(25)

    cached = cache.get(ACCOUNT)
    assert cached.total_borrowed == Decimal("50")
    assert cached.health_factor == Decimal("1.6")


def test_invalidate(cache):
    other = "0x0000000000000000000000000000000000000002"
    cache.put(ACCOUNT, position())
    cache.put(other, position())

    cache.invalidate(ACCOUNT)
    assert cache.get(ACCOUNT) is None
    assert cache.get(other) is not None

    cache.invalidate()
    assert cache.get(other) is None


def test_cleanup_expired(clock):
    cache = PositionCache(ttl=10, clock=clock)
    cache.put("0xold", position())
    clock.advance(11)
    cache.put("0xnew", position())

    assert cache.cleanup_expired() == 1
    assert cache.peek("0xold") is None
    assert cache.peek("0xnew") is not None

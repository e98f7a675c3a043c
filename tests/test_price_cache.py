#!/usr/bin/env python3
"""
Tests for the key-value cache and the typed price/portfolio facade.
"""
import threading
import time

from valuation.core.price_cache import InMemoryKeyValueCache, PriceCache
from valuation.shared.config import CacheConfig
from valuation.shared.models import Portfolio, PriceQuote

from fakes import FixedClock, utc


class Ticker:
    """Monotonic clock stand-in"""

    def __init__(self):
        self.t = 0.0

    def __call__(self):
        return self.t


def quote(asset_id="A", price=1.0, at=None, approximate=False):
    return PriceQuote(asset_id=asset_id, price_usd=price, source="test",
                      resolved_at=at or utc(2025, 3, 1, 12), approximate=approximate)


def portfolio(address="w1", chain="solana", value=10.0):
    return Portfolio(address=address, chain=chain, analyzed_at=utc(2025, 3, 1, 12), total_value_usd=value,
                     cost_basis_total_usd=None, unrealized_pnl_usd=0.0, performance_pct=None, tier="neutral",
                     holdings=[], top_winners=[], top_losers=[], allocation=[], windows=[])


class TestInMemoryKeyValueCache:
    def test_put_get_invalidate(self):
        """Test basic put, get and invalidate"""
        kv = InMemoryKeyValueCache()
        kv.put("k", 1)
        assert kv.get("k") == 1
        kv.invalidate("k")
        assert kv.get("k") is None
        kv.invalidate("missing")

    def test_entries_expire_after_ttl(self):
        """Test entry expiry at the TTL boundary"""
        ticker = Ticker()
        kv = InMemoryKeyValueCache(clock=ticker)
        kv.put("k", "v", ttl=10)
        ticker.t = 9.9
        assert kv.get("k") == "v"
        ticker.t = 10.0
        assert kv.get("k") is None
        assert len(kv) == 0

    def test_no_ttl_never_expires(self):
        """Test entries stored without a TTL"""
        ticker = Ticker()
        kv = InMemoryKeyValueCache(clock=ticker)
        kv.put("k", "v")
        ticker.t = 1e12
        assert kv.get("k") == "v"

    def test_lock_on_one_key_does_not_block_another(self):
        """Test that key locks are independent"""
        kv = InMemoryKeyValueCache()
        kv.put("other", 42)
        seen = []
        with kv.locked("busy"):
            t = threading.Thread(target=lambda: seen.append(kv.get("other")))
            t.start()
            t.join(timeout=2)
        assert seen == [42]

    def test_lock_serializes_same_key(self):
        """Test that one key lock serializes its holders"""
        kv = InMemoryKeyValueCache()
        order = []

        def worker():
            with kv.locked("wallet"):
                order.append("second")

        with kv.locked("wallet"):
            t = threading.Thread(target=worker)
            t.start()
            time.sleep(0.05)
            order.append("first")
        t.join(timeout=2)
        assert order == ["first", "second"]

    def test_key_locks_are_released_after_use(self):
        """Test that per-key locks do not accumulate"""
        kv = InMemoryKeyValueCache()
        for i in range(20):
            kv.put(f"k{i}", i)
            kv.get(f"k{i}")
            with kv.locked(f"lock:portfolio:solana:w{i}"):
                pass
            kv.invalidate(f"k{i}")
        assert kv.lock_count() == 0

    def test_purge_drops_only_expired_entries(self):
        """Test explicit purge of expired entries"""
        ticker = Ticker()
        kv = InMemoryKeyValueCache(clock=ticker)
        kv.put("short", 1, ttl=5)
        kv.put("long", 2, ttl=50)
        kv.put("forever", 3)
        ticker.t = 10.0
        assert kv.purge_expired() == 1
        assert len(kv) == 2
        assert kv.get("long") == 2

    def test_puts_sweep_expired_entries(self):
        """Test periodic sweep triggered by puts"""
        ticker = Ticker()
        kv = InMemoryKeyValueCache(clock=ticker)
        kv.put("stale", 1, ttl=1)
        ticker.t = 5.0
        for i in range(InMemoryKeyValueCache.SWEEP_EVERY):
            kv.put(f"k{i}", i)
        assert len(kv) == InMemoryKeyValueCache.SWEEP_EVERY


class TestPriceCache:
    def test_saved_portfolio_is_returned_by_address_and_chain(self):
        """Test portfolio round trip keyed by address and chain"""
        cache = PriceCache()
        saved = portfolio()
        cache.save_portfolio(saved)
        assert cache.get_portfolio("w1", "solana") == saved
        assert cache.get_portfolio("w1", "ethereum") is None
        assert cache.get_portfolio("w2", "solana") is None

    def test_portfolio_expires_after_ttl(self):
        """Test portfolio expiry after portfolio_ttl_s"""
        ticker = Ticker()
        cache = PriceCache(backend=InMemoryKeyValueCache(clock=ticker), config=CacheConfig(portfolio_ttl_s=900))
        cache.save_portfolio(portfolio())
        ticker.t = 899.0
        assert cache.get_portfolio("w1", "solana") is not None
        ticker.t = 900.0
        assert cache.get_portfolio("w1", "solana") is None

    def test_invalidate_portfolio(self):
        """Test explicit portfolio invalidation"""
        cache = PriceCache()
        cache.save_portfolio(portfolio())
        cache.invalidate_portfolio("w1", "solana")
        assert cache.get_portfolio("w1", "solana") is None

    def test_current_quote_expires_after_ttl(self):
        """Test current quote freshness window"""
        clock = FixedClock(utc(2025, 3, 1, 12))
        cache = PriceCache(config=CacheConfig(current_price_ttl_s=60), now=clock)
        cache.put_current(quote())
        assert cache.get_current("A").price_usd == 1.0
        clock.advance(seconds=61)
        assert cache.get_current("A") is None

    def test_historical_quotes_keyed_by_day_and_never_expire(self):
        """Test day-keyed historical quotes"""
        clock = FixedClock(utc(2025, 3, 1, 12))
        cache = PriceCache(now=clock)
        cache.put_historical(quote(price=2.0), utc(2025, 1, 5, 3))
        clock.advance(days=365)
        assert cache.get_historical("A", utc(2025, 1, 5, 23)).price_usd == 2.0
        assert cache.get_historical("A", utc(2025, 1, 6)) is None

    def test_approximate_quote_not_stored_historically(self):
        """Test that approximate quotes stay out of the historical tier"""
        cache = PriceCache()
        cache.put_historical(quote(approximate=True), utc(2025, 1, 5))
        assert cache.get_historical("A", utc(2025, 1, 5)) is None

    def test_portfolio_key_is_chain_and_address(self):
        """Test portfolio key layout"""
        assert PriceCache.portfolio_key("abc", "Solana") == "portfolio:solana:abc"

    def test_lookups_are_reported_to_metrics(self):
        """Test cache hit and miss reporting"""
        calls = []

        class Metrics:
            def record_cache_lookup(self, tier, hit):
                calls.append((tier, hit))

        cache = PriceCache(metrics=Metrics(), now=FixedClock(utc(2025, 3, 1, 12)))
        cache.get_current("A")
        cache.put_current(quote())
        cache.get_current("A")
        cache.get_portfolio("w", "solana")
        assert calls == [("current", False), ("current", True), ("portfolio", False)]

    def test_portfolio_lock_without_backend_support(self):
        """Test portfolio lock on a backend without key locks"""
        class PlainBackend:
            def __init__(self):
                self.data = {}

            def get(self, key):
                return self.data.get(key)

            def put(self, key, value, ttl=None):
                self.data[key] = value

            def invalidate(self, key):
                self.data.pop(key, None)

        cache = PriceCache(backend=PlainBackend())
        with cache.portfolio_lock("w", "solana"):
            assert cache.get_portfolio("w", "solana") is None

#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""
Two-tier price/portfolio cache on top of a pluggable key-value store.

Key layout:
- price:current:{asset_id}          current quote, expires after current_price_ttl_s
- price:hist:{asset_id}:{YYYY-MM-DD} historical quote, never expires
- portfolio:{chain}:{address}       composed Portfolio, expires after portfolio_ttl_s

The backing store only has to provide get/put(ttl)/invalidate. The in-memory
store shipped here locks per key so a slow writer on one wallet never blocks a
reader of another.
"""

from __future__ import annotations

import threading
import time
from contextlib import contextmanager
from datetime import datetime
from typing import Any, Callable, Dict, Iterator, Optional, Protocol, Tuple

from ..shared.config import CacheConfig
from ..shared.logging_setup import get_logger
from ..shared.models import Portfolio, PriceQuote
from ..shared.utils import day_key, utc_now

logger = get_logger(__name__)


class KeyValueCache(Protocol):
    """Minimal contract for a cache backend; get returns None on miss."""

    def get(self, key: str) -> Optional[Any]: ...

    def put(self, key: str, value: Any, ttl: Optional[float] = None) -> None: ...

    def invalidate(self, key: str) -> None: ...


class InMemoryKeyValueCache:
    """Process-local cache with one lock per key."""

    # Expired entries are swept after this many puts
    SWEEP_EVERY = 256

    def __init__(self, clock: Callable[[], float] = time.monotonic):
        self._clock = clock
        self._entries: Dict[str, Tuple[Any, Optional[float]]] = {}
        # key -> [lock, holders]; dropped once nobody holds or waits on it
        self._locks: Dict[str, list] = {}
        self._registry_lock = threading.Lock()
        self._puts = 0

    @contextmanager
    def locked(self, key: str) -> Iterator[None]:
        """Hold the lock of a single key (used for read-through computations)."""
        # The registry lock is only held while looking up / releasing the slot
        with self._registry_lock:
            slot = self._locks.get(key)
            if slot is None:
                slot = [threading.Lock(), 0]
                self._locks[key] = slot
            slot[1] += 1
        try:
            with slot[0]:
                yield
        finally:
            with self._registry_lock:
                slot[1] -= 1
                if slot[1] == 0:
                    del self._locks[key]

    def _expired(self, entry: Tuple[Any, Optional[float]]) -> bool:
        expires_at = entry[1]
        return expires_at is not None and self._clock() >= expires_at

    def get(self, key: str) -> Optional[Any]:
        with self.locked(key):
            entry = self._entries.get(key)
            if entry is None:
                return None
            if self._expired(entry):
                del self._entries[key]
                return None
            return entry[0]

    def put(self, key: str, value: Any, ttl: Optional[float] = None) -> None:
        expires_at = None if ttl is None else self._clock() + float(ttl)
        with self.locked(key):
            self._entries[key] = (value, expires_at)
        self._puts += 1
        if self._puts % self.SWEEP_EVERY == 0:
            self.purge_expired()

    def invalidate(self, key: str) -> None:
        with self.locked(key):
            self._entries.pop(key, None)

    def purge_expired(self) -> int:
        """Drop every expired entry; returns how many were removed."""
        removed = 0
        for key in [k for k, entry in list(self._entries.items()) if self._expired(entry)]:
            with self.locked(key):
                entry = self._entries.get(key)
                if entry is not None and self._expired(entry):
                    del self._entries[key]
                    removed += 1
        if removed:
            logger.debug(f"Purged {removed} expired cache entries")
        return removed

    def lock_count(self) -> int:
        with self._registry_lock:
            return len(self._locks)

    def __len__(self) -> int:
        return len(self._entries)


class PriceCache:
    """Typed facade over a KeyValueCache for quotes and portfolios"""

    def __init__(
        self,
        backend: Optional[KeyValueCache] = None,
        config: Optional[CacheConfig] = None,
        metrics=None,
        now: Callable[[], datetime] = utc_now,
    ):
        self.backend = backend if backend is not None else InMemoryKeyValueCache()
        self.config = config or CacheConfig()
        self.metrics = metrics
        self._now = now

    @staticmethod
    def current_key(asset_id: str) -> str:
        return f"price:current:{asset_id}"

    @staticmethod
    def historical_key(asset_id: str, at: datetime) -> str:
        return f"price:hist:{asset_id}:{day_key(at)}"

    @staticmethod
    def portfolio_key(address: str, chain: str) -> str:
        return f"portfolio:{chain.lower()}:{address}"

    def _record(self, tier: str, hit: bool) -> None:
        if self.metrics is not None:
            self.metrics.record_cache_lookup(tier, hit)

    # Current prices
    def get_current(self, asset_id: str) -> Optional[PriceQuote]:
        quote = self.backend.get(self.current_key(asset_id))
        if quote is not None and not quote.is_fresh(self._now(), self.config.current_price_ttl_s):
            quote = None
        self._record("current", quote is not None)
        return quote

    def put_current(self, quote: PriceQuote) -> None:
        self.backend.put(self.current_key(quote.asset_id), quote, self.config.current_price_ttl_s)

    # Historical prices
    def get_historical(self, asset_id: str, at: datetime) -> Optional[PriceQuote]:
        quote = self.backend.get(self.historical_key(asset_id, at))
        self._record("historical", quote is not None)
        return quote

    def put_historical(self, quote: PriceQuote, at: datetime) -> None:
        if quote.approximate:
            logger.debug(f"Not caching approximate historical quote for {quote.asset_id}")
            return
        self.backend.put(self.historical_key(quote.asset_id, at), quote, None)

    # Portfolios
    def get_portfolio(self, address: str, chain: str) -> Optional[Portfolio]:
        portfolio = self.backend.get(self.portfolio_key(address, chain))
        self._record("portfolio", portfolio is not None)
        return portfolio

    def save_portfolio(self, portfolio: Portfolio) -> None:
        self.backend.put(
            self.portfolio_key(portfolio.address, portfolio.chain),
            portfolio,
            self.config.portfolio_ttl_s,
        )
        logger.debug(f"Cached portfolio for {portfolio.chain}:{portfolio.address}")

    def invalidate_portfolio(self, address: str, chain: str) -> None:
        self.backend.invalidate(self.portfolio_key(address, chain))

    def invalidate_current(self, asset_id: str) -> None:
        self.backend.invalidate(self.current_key(asset_id))

    @contextmanager
    def portfolio_lock(self, address: str, chain: str) -> Iterator[None]:
        """Serialize analyses of the same wallet when the backend supports key locks."""
        locked = getattr(self.backend, "locked", None)
        if locked is None:
            yield
            return
        with locked(f"lock:{self.portfolio_key(address, chain)}"):
            yield

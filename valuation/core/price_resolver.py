#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""
Multi-source price resolution with fallback, caching and backpressure.

Current prices:
    fresh cache hit -> sources in priority order -> None (unavailable)
Historical prices:
    cached quote -> nearest market-snapshot sample within the history window
    -> sources' by-date endpoints -> current price flagged approximate=True

Per source, asset ids are chunked to the source's batch size and the chunks
are dispatched to a small thread pool with a fixed delay between chunk
submissions. A semaphore held by each source caps its in-flight calls across
all concurrent batches. Every chunk call is time-boxed.
A RateLimitedError blocks the source for the rest of the batch call; other
failures and timeouts only lose that chunk. Nothing here raises for a missing
price: callers receive None / absent keys and pick their own substitute.
"""
from __future__ import annotations

import threading
import time
from concurrent.futures import ThreadPoolExecutor, TimeoutError as FuturesTimeout
from dataclasses import replace
from datetime import datetime
from typing import Callable, Dict, List, Optional, Sequence, Tuple

from .market_snapshot import MarketSnapshot
from .price_cache import PriceCache
from .price_source import PriceMap, PriceSource
from ..shared.config import PricesConfig
from ..shared.errors import RateLimitedError, UpstreamUnavailable
from ..shared.logging_setup import get_logger
from ..shared.models import PriceQuote
from ..shared.utils import chunked, day_key, dedupe, to_utc, utc_now

logger = get_logger(__name__)

SNAPSHOT_HISTORY_SOURCE = "snapshot-history"

HistoricalRequest = Tuple[str, datetime]


class PriceResolver:
    def __init__(
        self,
        sources: Sequence[PriceSource],
        cache: Optional[PriceCache] = None,
        config: Optional[PricesConfig] = None,
        snapshot: Optional[MarketSnapshot] = None,
        metrics=None,
        now: Callable[[], datetime] = utc_now,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.sources = list(sources)
        self.cache = cache or PriceCache()
        self.config = config or PricesConfig()
        self.snapshot = snapshot
        self.metrics = metrics
        self._now = now
        self._sleep = sleep

    # ------------------------------------------------------------------
    # Current prices
    # ------------------------------------------------------------------
    def resolve_current(self, asset_id: str) -> Optional[PriceQuote]:
        return self.resolve_current_batch([asset_id]).get(asset_id)

    def resolve_current_batch(self, asset_ids: Sequence[str]) -> Dict[str, PriceQuote]:
        """
        Resolve current prices for many assets

        Returns:
            Mapping of asset id -> quote for every asset that resolved; ids
            absent from the mapping are unavailable.
        """
        results: Dict[str, PriceQuote] = {}
        pending: List[str] = []
        for asset_id in dedupe(a for a in asset_ids if a):
            cached = self.cache.get_current(asset_id)
            if cached is not None:
                results[asset_id] = cached
            else:
                pending.append(asset_id)

        if pending:
            logger.debug(f"Resolving {len(pending)} current prices ({len(results)} cache hits)")

        for source in self.sources:
            if not pending:
                break
            found = self._query_current(source, pending)
            resolved_at = self._now()
            for asset_id in pending:
                hit = found.get(asset_id)
                if hit is None or not hit[0] or hit[0] <= 0:
                    continue
                quote = PriceQuote(
                    asset_id=asset_id,
                    price_usd=float(hit[0]),
                    source=source.name,
                    resolved_at=resolved_at,
                    change_24h=hit[1],
                )
                self.cache.put_current(quote)
                results[asset_id] = quote
                self._record_resolution(source.name)
            pending = [a for a in pending if a not in results]

        for asset_id in pending:
            logger.info(f"No current price for {asset_id} from any source")
            self._record_unavailable("current")
        return results

    def _chunk_size(self, source: PriceSource) -> int:
        return max(1, min(source.max_batch_size, self.config.batch_size_for(source.name, source.max_batch_size)))

    def _query_current(self, source: PriceSource, asset_ids: List[str]) -> PriceMap:
        chunks = list(chunked(asset_ids, self._chunk_size(source)))
        merged: PriceMap = {}
        for part in self._dispatch(source, chunks, source.get_current_prices):
            merged.update(part)
        return merged

    def _dispatch(self, source: PriceSource, jobs: list, call: Callable) -> list:
        """
        Run call(job) for each job on a pool capped at the source's concurrency

        Returns the successful results in job order. Failed, timed out and
        rate-limited jobs are logged and dropped.
        """
        if not jobs:
            return []
        blocked = threading.Event()
        cap = self.config.concurrency_for(source.name)
        slots = source.call_slots(cap)

        def _guarded(job):
            with slots:
                if blocked.is_set():
                    return None
                try:
                    return call(job)
                except RateLimitedError:
                    blocked.set()
                    raise

        workers = max(1, min(cap, len(jobs)))
        pool = ThreadPoolExecutor(max_workers=workers, thread_name_prefix=f"price-{source.name}")
        results = []
        try:
            futures = []
            for i, job in enumerate(jobs):
                if blocked.is_set():
                    break
                if i > 0 and self.config.inter_chunk_delay_s > 0:
                    self._sleep(self.config.inter_chunk_delay_s)
                futures.append(pool.submit(_guarded, job))

            for future in futures:
                try:
                    value = future.result(timeout=self.config.timeout_s)
                except RateLimitedError:
                    continue
                except FuturesTimeout:
                    logger.warning(f"{source.name} call timed out after {self.config.timeout_s}s")
                    self._record_failure(source.name, "timeout")
                    continue
                except UpstreamUnavailable as e:
                    logger.warning(f"{source.name} unavailable: {e}")
                    self._record_failure(source.name, "error")
                    continue
                except Exception as e:
                    logger.warning(f"{source.name} failed unexpectedly: {e}")
                    self._record_failure(source.name, "error")
                    continue
                if value is not None:
                    results.append(value)
        finally:
            pool.shutdown(wait=False, cancel_futures=True)

        if blocked.is_set():
            logger.warning(f"{source.name} rate limited; skipped for the rest of this batch")
            self._record_failure(source.name, "rate_limited")
        return results

    # ------------------------------------------------------------------
    # Historical prices
    # ------------------------------------------------------------------
    def resolve_historical(self, asset_id: str, at: datetime) -> Optional[PriceQuote]:
        return self.resolve_historical_batch([(asset_id, at)]).get((asset_id, at))

    def resolve_historical_batch(self, requests: Sequence[HistoricalRequest]) -> Dict[HistoricalRequest, PriceQuote]:
        """
        Resolve prices near given times for many (asset_id, at) pairs

        Requests falling on the same UTC day for the same asset share one
        lookup. Anything not found historically is answered with the current
        price, flagged approximate and not stored in the historical tier.
        """
        days: Dict[Tuple[str, str], datetime] = {}
        for asset_id, at in requests:
            if not asset_id:
                continue
            days.setdefault((asset_id, day_key(at)), to_utc(at))

        found: Dict[Tuple[str, str], PriceQuote] = {}
        pending: List[Tuple[str, str]] = []
        for key, at in days.items():
            asset_id = key[0]
            cached = self.cache.get_historical(asset_id, at)
            if cached is not None:
                found[key] = cached
                continue
            quote = self._from_snapshot_history(asset_id, at)
            if quote is not None:
                self.cache.put_historical(quote, at)
                found[key] = quote
                continue
            pending.append(key)

        for source in self.sources:
            if not pending:
                break
            if not getattr(source, "supports_history", False):
                continue

            def _lookup(key, _source=source):
                return key, _source.get_historical_price(key[0], days[key])

            resolved_at = self._now()
            for key, price in self._dispatch(source, pending, _lookup):
                if price is None or price <= 0:
                    continue
                quote = PriceQuote(asset_id=key[0], price_usd=float(price), source=source.name,
                                   resolved_at=resolved_at)
                self.cache.put_historical(quote, days[key])
                found[key] = quote
                self._record_resolution(source.name)
            pending = [k for k in pending if k not in found]

        if pending:
            current = self.resolve_current_batch([k[0] for k in pending])
            approximated = 0
            for key in pending:
                quote = current.get(key[0])
                if quote is None:
                    self._record_unavailable("historical")
                    continue
                found[key] = replace(quote, approximate=True)
                approximated += 1
            if approximated:
                logger.info(f"{approximated} historical prices approximated with current prices")

        out: Dict[HistoricalRequest, PriceQuote] = {}
        for asset_id, at in requests:
            quote = found.get((asset_id, day_key(at)))
            if quote is not None:
                out[(asset_id, at)] = quote
        return out

    def _from_snapshot_history(self, asset_id: str, at: datetime) -> Optional[PriceQuote]:
        if self.snapshot is None:
            return None
        price = self.snapshot.nearest_price(asset_id, at, self.config.historical_window_days)
        if price is None:
            return None
        self._record_resolution(SNAPSHOT_HISTORY_SOURCE)
        return PriceQuote(asset_id=asset_id, price_usd=price, source=SNAPSHOT_HISTORY_SOURCE,
                          resolved_at=self._now())

    # ------------------------------------------------------------------
    # Metrics hooks
    # ------------------------------------------------------------------
    def _record_resolution(self, source: str) -> None:
        if self.metrics is not None:
            self.metrics.record_price_resolution(source)

    def _record_unavailable(self, kind: str) -> None:
        if self.metrics is not None:
            self.metrics.record_price_unavailable(kind)

    def _record_failure(self, source: str, reason: str) -> None:
        if self.metrics is not None:
            self.metrics.record_source_failure(source, reason)

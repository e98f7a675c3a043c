#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""
On-disk market snapshot: asset id -> market id, last price, 24h change and an
optional daily price history.

File layout (cache/market_snapshot.json):
{
  "updated_at": "2025-02-01T00:00:00+00:00",
  "assets": {
    "<asset_id>": {
      "market_id": "bonk", "symbol": "bonk", "price": 0.00002,
      "change_24h": -3.1, "market_cap_rank": 60,
      "last_updated": "2025-02-01T00:00:00+00:00",
      "history": [[1738368000000, 0.000019], ...]
    }
  }
}

Lifecycle: load() on start, refresh() when the file is older than
max_age_hours (or on the auto-refresh schedule), invalidate() to force the
next ensure_fresh() to rebuild it. One instance is owned by the engine and
injected into the price sources that need it.
"""
from __future__ import annotations

import json
import os
import threading
import time
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional, Tuple

from ..shared.config import SnapshotConfig
from ..shared.errors import RateLimitedError
from ..shared.http_client import JsonHttpClient
from ..shared.logging_setup import get_logger
from ..shared.utils import (
    datetime_to_timestamp,
    normalize_asset_id,
    parse_datetime,
    safe_float,
    timestamp_to_datetime,
    to_utc,
    utc_now,
)

logger = get_logger(__name__)

MARKETS_PER_PAGE = 250


@dataclass
class SnapshotEntry:
    market_id: str
    symbol: str = ""
    price: float = 0.0
    change_24h: float = 0.0
    market_cap_rank: Optional[int] = None
    last_updated: Optional[datetime] = None
    history: List[Tuple[datetime, float]] = field(default_factory=list)

    def to_json(self) -> Dict[str, Any]:
        return {
            "market_id": self.market_id,
            "symbol": self.symbol,
            "price": self.price,
            "change_24h": self.change_24h,
            "market_cap_rank": self.market_cap_rank,
            "last_updated": self.last_updated.isoformat() if self.last_updated else None,
            "history": [[datetime_to_timestamp(ts), p] for ts, p in self.history],
        }

    @classmethod
    def from_json(cls, raw: Dict[str, Any]) -> "SnapshotEntry":
        history = []
        for item in raw.get("history") or []:
            try:
                ts, price = item[0], float(item[1])
            except (IndexError, TypeError, ValueError):
                continue
            history.append((timestamp_to_datetime(int(ts)), price))
        history.sort(key=lambda p: p[0])
        rank = raw.get("market_cap_rank")
        return cls(
            market_id=str(raw.get("market_id") or ""),
            symbol=str(raw.get("symbol") or ""),
            price=safe_float(raw.get("price")),
            change_24h=safe_float(raw.get("change_24h")),
            market_cap_rank=int(rank) if isinstance(rank, (int, float)) else None,
            last_updated=parse_datetime(raw.get("last_updated")),
            history=history,
        )


class MarketSnapshot:
    """Injected replacement for a process-wide coin mapping"""

    def __init__(
        self,
        config: Optional[SnapshotConfig] = None,
        path: Optional[Path] = None,
        client: Optional[JsonHttpClient] = None,
        now: Callable[[], datetime] = utc_now,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.config = config or SnapshotConfig()
        self.path = Path(path) if path is not None else Path(self.config.path)
        self.client = client
        self._now = now
        self._sleep = sleep
        self._lock = threading.RLock()
        self._entries: Dict[str, SnapshotEntry] = {}
        self._updated_at: Optional[datetime] = None
        self._stop = threading.Event()
        self._refresh_thread: Optional[threading.Thread] = None
        self.logger = get_logger(f"{__name__}.MarketSnapshot")

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------
    def load(self) -> bool:
        """Read the snapshot file; returns True when something was loaded."""
        if not self.path.exists():
            self.logger.info(f"No market snapshot at {self.path}")
            return False
        try:
            with open(self.path, "r", encoding="utf-8") as f:
                raw = json.load(f)
        except (OSError, json.JSONDecodeError) as e:
            self.logger.warning(f"Unreadable market snapshot {self.path}: {e}")
            return False
        if not isinstance(raw, dict):
            self.logger.warning(f"Market snapshot {self.path} is not a JSON object")
            return False

        entries: Dict[str, SnapshotEntry] = {}
        for asset_id, item in (raw.get("assets") or {}).items():
            if isinstance(item, dict):
                entries[normalize_asset_id(asset_id)] = SnapshotEntry.from_json(item)

        updated_at = parse_datetime(raw.get("updated_at"))
        if updated_at is None:
            updated_at = datetime.fromtimestamp(self.path.stat().st_mtime).astimezone()
        with self._lock:
            self._entries = entries
            self._updated_at = to_utc(updated_at)
        self.logger.info(f"Loaded {len(entries)} assets from market snapshot {self.path}")
        return True

    def is_stale(self) -> bool:
        with self._lock:
            if self._updated_at is None:
                return True
            age = self._now() - self._updated_at
        return age >= timedelta(hours=self.config.max_age_hours)

    def ensure_fresh(self) -> None:
        """Load on first use and rebuild from upstream when stale."""
        with self._lock:
            if self._updated_at is None:
                self.load()
            if not self.is_stale():
                return
        if self.client is None:
            self.logger.debug("Market snapshot is stale and no client is configured")
            return
        self.refresh()

    def invalidate(self) -> None:
        with self._lock:
            self._entries = {}
            self._updated_at = None
        self.logger.info("Market snapshot invalidated")

    def save(self) -> None:
        with self._lock:
            payload = {
                "updated_at": self._updated_at.isoformat() if self._updated_at else None,
                "assets": {k: v.to_json() for k, v in self._entries.items()},
            }
        self.path.parent.mkdir(parents=True, exist_ok=True)
        tmp = self.path.with_suffix(self.path.suffix + ".tmp")
        with open(tmp, "w", encoding="utf-8") as f:
            json.dump(payload, f, indent=2)
        os.replace(tmp, self.path)

    # ------------------------------------------------------------------
    # Upstream refresh
    # ------------------------------------------------------------------
    def _platform_index(self) -> Dict[str, str]:
        """market id -> asset id on one of the configured platforms"""
        index: Dict[str, str] = {}
        resp = self.client.get("coins/list", params={"include_platform": "true"})
        if not resp.success or not isinstance(resp.data, list):
            self.logger.warning(f"Could not fetch coin platform list: {resp.error}")
        else:
            for coin in resp.data:
                platforms = coin.get("platforms") or {}
                for platform in self.config.platforms:
                    address = platforms.get(platform)
                    if address:
                        index[str(coin.get("id"))] = normalize_asset_id(address)
                        break
        for asset_id, market_id in self.config.pinned_ids.items():
            index[market_id] = normalize_asset_id(asset_id)
        return index

    def _fetch_market_pages(self) -> List[Dict[str, Any]]:
        markets: List[Dict[str, Any]] = []
        for page in range(1, self.config.pages + 1):
            try:
                resp = self.client.get("coins/markets", params={
                    "vs_currency": "usd",
                    "order": "market_cap_desc",
                    "per_page": MARKETS_PER_PAGE,
                    "page": page,
                    "price_change_percentage": "24h",
                })
            except RateLimitedError:
                self.logger.warning(f"Rate limited on markets page {page}, keeping {len(markets)} markets")
                break
            if not resp.success or not isinstance(resp.data, list):
                self.logger.warning(f"Markets page {page} failed: {resp.error}")
                break
            if not resp.data:
                break
            markets.extend(resp.data)
            self.logger.debug(f"Downloaded markets page {page} ({len(resp.data)} rows)")
            if page < self.config.pages:
                self._sleep(self.config.page_delay_s)
        return markets

    def _fetch_history(self, market_id: str) -> List[Tuple[datetime, float]]:
        resp = self.client.get(f"coins/{market_id}/market_chart", params={
            "vs_currency": "usd",
            "days": self.config.history_days,
            "interval": "daily",
        })
        if not resp.success or not isinstance(resp.data, dict):
            return []
        history = []
        for item in resp.data.get("prices") or []:
            try:
                history.append((timestamp_to_datetime(int(item[0])), float(item[1])))
            except (IndexError, TypeError, ValueError):
                continue
        history.sort(key=lambda p: p[0])
        return history

    def refresh(self) -> int:
        """
        Rebuild the snapshot from CoinGecko and persist it

        Returns:
            Number of assets in the new snapshot (0 when nothing could be fetched;
            the previous snapshot is then kept)
        """
        if self.client is None:
            raise ValueError("MarketSnapshot.refresh() needs an HTTP client")

        started = self._now()
        try:
            index = self._platform_index()
            markets = self._fetch_market_pages()
        except RateLimitedError:
            self.logger.warning("Rate limited while refreshing market snapshot; keeping previous data")
            return 0

        entries: Dict[str, SnapshotEntry] = {}
        for row in markets:
            market_id = str(row.get("id") or "")
            asset_id = index.get(market_id)
            if not asset_id:
                continue
            rank = row.get("market_cap_rank")
            entries[asset_id] = SnapshotEntry(
                market_id=market_id,
                symbol=str(row.get("symbol") or ""),
                price=safe_float(row.get("current_price")),
                change_24h=safe_float(row.get("price_change_percentage_24h")),
                market_cap_rank=int(rank) if isinstance(rank, (int, float)) else None,
                last_updated=started,
            )

        if not entries:
            self.logger.warning("Market snapshot refresh produced no entries; keeping previous data")
            return 0

        ranked = [e for e in entries.values()
                  if e.market_cap_rank is not None and e.market_cap_rank <= self.config.history_top_rank]
        for entry in ranked:
            try:
                entry.history = self._fetch_history(entry.market_id)
            except RateLimitedError:
                self.logger.warning(f"Rate limited fetching history; {entry.market_id} and later assets keep none")
                break
            self._sleep(self.config.page_delay_s)

        with self._lock:
            self._entries = entries
            self._updated_at = started
        try:
            self.save()
        except OSError as e:
            self.logger.error(f"Failed to write market snapshot {self.path}: {e}")
        self.logger.info(f"Market snapshot refreshed: {len(entries)} assets, {len(ranked)} with history")
        return len(entries)

    def start_auto_refresh(self, interval_hours: Optional[float] = None) -> threading.Thread:
        """Refresh on a fixed schedule in a daemon thread until stop_auto_refresh()."""
        interval_s = 3600.0 * (interval_hours or self.config.refresh_interval_hours)

        def _loop():
            while not self._stop.wait(interval_s):
                try:
                    self.refresh()
                except Exception as e:
                    self.logger.error(f"Scheduled market snapshot refresh failed: {e}")

        self._stop.clear()
        t = threading.Thread(target=_loop, daemon=True, name="MarketSnapshotRefresh")
        t.start()
        self._refresh_thread = t
        self.logger.info(f"Market snapshot auto-refresh every {interval_s / 3600.0:.1f}h")
        return t

    def stop_auto_refresh(self) -> None:
        self._stop.set()

    # ------------------------------------------------------------------
    # Lookups
    # ------------------------------------------------------------------
    def entry(self, asset_id: str) -> Optional[SnapshotEntry]:
        with self._lock:
            return self._entries.get(normalize_asset_id(asset_id))

    def market_id(self, asset_id: str) -> Optional[str]:
        e = self.entry(asset_id)
        return e.market_id if e and e.market_id else None

    def current_price(self, asset_id: str) -> Optional[Tuple[float, float]]:
        e = self.entry(asset_id)
        if e is None or e.price <= 0:
            return None
        return e.price, e.change_24h

    def historical_series(self, asset_id: str) -> List[Tuple[datetime, float]]:
        e = self.entry(asset_id)
        return list(e.history) if e else []

    def nearest_price(self, asset_id: str, at: datetime, max_days: float) -> Optional[float]:
        """Closest history sample to `at`, or None when none lies within max_days."""
        at = to_utc(at)
        best: Optional[Tuple[float, float]] = None
        for ts, price in self.historical_series(asset_id):
            if price <= 0:
                continue
            distance = abs((ts - at).total_seconds())
            if best is None or distance < best[0]:
                best = (distance, price)
        if best is None or best[0] > max_days * 86400.0:
            return None
        return best[1]

    def put(self, asset_id: str, entry: SnapshotEntry) -> None:
        with self._lock:
            self._entries[normalize_asset_id(asset_id)] = entry
            if self._updated_at is None:
                self._updated_at = self._now()

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

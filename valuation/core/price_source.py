#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""
Price sources consulted by the PriceResolver, in priority order.

Every source exposes the same two calls:
- get_current_prices(asset_ids) -> {asset_id: (price_usd, change_24h or None)}
- get_historical_price(asset_id, at) -> price_usd or None

Implementations:
- JupiterPriceSource: fast real-time quotes for Solana mints
- CoinGeckoPriceSource: broad market data, current and by-date history
- MarketSnapshotPriceSource: last prices from the on-disk market snapshot
- SeedPriceSource: static default table, last resort

Ids a source does not know are simply absent from the result. A transport
failure raises UpstreamUnavailable; HTTP 429 raises RateLimitedError.
"""
from __future__ import annotations

import logging
import threading
from datetime import datetime
from typing import Dict, List, Optional, Sequence, Tuple

from .market_snapshot import MarketSnapshot
from .seed_prices import SeedPriceTable
from ..shared.errors import UpstreamUnavailable
from ..shared.http_client import JsonHttpClient
from ..shared.utils import normalize_asset_id, safe_float, to_utc

PriceMap = Dict[str, Tuple[float, Optional[float]]]


class PriceSource:
    name = "base"
    max_batch_size = 50
    supports_history = False

    _slots_guard = threading.Lock()

    def call_slots(self, cap: int) -> threading.BoundedSemaphore:
        """
        Semaphore bounding in-flight calls to this source

        Created on first use with the given cap and shared by every resolver
        holding this instance, so overlapping batches stay within the cap.
        """
        with PriceSource._slots_guard:
            slots = self.__dict__.get("_call_slots")
            if slots is None:
                slots = threading.BoundedSemaphore(max(1, int(cap)))
                self._call_slots = slots
            return slots

    def get_current_prices(self, asset_ids: Sequence[str]) -> PriceMap:
        raise NotImplementedError

    def get_historical_price(self, asset_id: str, at: datetime) -> Optional[float]:
        return None


class JupiterPriceSource(PriceSource):
    name = "jupiter"

    def __init__(self, *, client: JsonHttpClient, max_batch_size: int = 100) -> None:
        self.client = client
        self.max_batch_size = max(1, int(max_batch_size))
        self.log = logging.getLogger(__name__)

    def get_current_prices(self, asset_ids: Sequence[str]) -> PriceMap:
        # Jupiter only quotes Solana mints
        ids = [a for a in asset_ids if not a.lower().startswith("0x")]
        if not ids:
            return {}
        resp = self.client.get("", params={"ids": ",".join(ids)})
        if not resp.success:
            raise UpstreamUnavailable(self.name, resp.error or "request failed")
        data = (resp.data or {}).get("data") if isinstance(resp.data, dict) else None
        if not isinstance(data, dict):
            raise UpstreamUnavailable(self.name, "response has no 'data' object")

        out: PriceMap = {}
        for asset_id in ids:
            item = data.get(asset_id)
            if not isinstance(item, dict):
                continue
            price = safe_float(item.get("price"))
            if price > 0:
                out[asset_id] = (price, None)
        self.log.debug(f"Jupiter priced {len(out)}/{len(ids)} assets")
        return out


class CoinGeckoPriceSource(PriceSource):
    name = "coingecko"
    supports_history = True

    def __init__(self, *, client: JsonHttpClient, snapshot: Optional[MarketSnapshot] = None,
                 max_batch_size: int = 250) -> None:
        self.client = client
        self.snapshot = snapshot
        self.max_batch_size = max(1, int(max_batch_size))
        self.log = logging.getLogger(__name__)

    @staticmethod
    def platform_for(asset_id: str) -> str:
        return "ethereum" if asset_id.lower().startswith("0x") else "solana"

    def _market_id(self, asset_id: str) -> Optional[str]:
        if self.snapshot is None:
            return None
        return self.snapshot.market_id(asset_id)

    def _simple_price(self, by_market: Dict[str, List[str]]) -> PriceMap:
        resp = self.client.get("simple/price", params={
            "ids": ",".join(by_market.keys()),
            "vs_currencies": "usd",
            "include_24hr_change": "true",
        })
        if not resp.success or not isinstance(resp.data, dict):
            raise UpstreamUnavailable(self.name, resp.error or "unexpected simple/price payload")
        out: PriceMap = {}
        for market_id, asset_ids in by_market.items():
            item = resp.data.get(market_id)
            if not isinstance(item, dict):
                continue
            price = safe_float(item.get("usd"))
            if price <= 0:
                continue
            change = item.get("usd_24h_change")
            for asset_id in asset_ids:
                out[asset_id] = (price, safe_float(change) if change is not None else None)
        return out

    def _token_price(self, platform: str, asset_ids: List[str]) -> PriceMap:
        resp = self.client.get(f"simple/token_price/{platform}", params={
            "contract_addresses": ",".join(asset_ids),
            "vs_currencies": "usd",
            "include_24hr_change": "true",
        })
        if not resp.success or not isinstance(resp.data, dict):
            raise UpstreamUnavailable(self.name, resp.error or "unexpected token_price payload")
        # Contract keys come back lowercased
        by_key = {str(k).lower(): v for k, v in resp.data.items()}
        out: PriceMap = {}
        for asset_id in asset_ids:
            item = by_key.get(asset_id.lower())
            if not isinstance(item, dict):
                continue
            price = safe_float(item.get("usd"))
            if price <= 0:
                continue
            change = item.get("usd_24h_change")
            out[asset_id] = (price, safe_float(change) if change is not None else None)
        return out

    def get_current_prices(self, asset_ids: Sequence[str]) -> PriceMap:
        by_market: Dict[str, List[str]] = {}
        by_platform: Dict[str, List[str]] = {}
        for asset_id in asset_ids:
            market_id = self._market_id(asset_id)
            if market_id:
                by_market.setdefault(market_id, []).append(asset_id)
            else:
                by_platform.setdefault(self.platform_for(asset_id), []).append(asset_id)

        out: PriceMap = {}
        if by_market:
            out.update(self._simple_price(by_market))
        for platform, ids in by_platform.items():
            out.update(self._token_price(platform, ids))
        self.log.debug(f"CoinGecko priced {len(out)}/{len(asset_ids)} assets")
        return out

    def get_historical_price(self, asset_id: str, at: datetime) -> Optional[float]:
        market_id = self._market_id(asset_id)
        if not market_id:
            return None
        resp = self.client.get(f"coins/{market_id}/history", params={
            "date": to_utc(at).strftime("%d-%m-%Y"),
            "localization": "false",
        })
        if not resp.success:
            raise UpstreamUnavailable(self.name, resp.error or "history request failed")
        market_data = (resp.data or {}).get("market_data") if isinstance(resp.data, dict) else None
        if not isinstance(market_data, dict):
            return None
        price = safe_float((market_data.get("current_price") or {}).get("usd"))
        return price if price > 0 else None


class MarketSnapshotPriceSource(PriceSource):
    name = "snapshot"
    max_batch_size = 1000

    def __init__(self, *, snapshot: MarketSnapshot) -> None:
        self.snapshot = snapshot

    def get_current_prices(self, asset_ids: Sequence[str]) -> PriceMap:
        out: PriceMap = {}
        for asset_id in asset_ids:
            hit = self.snapshot.current_price(asset_id)
            if hit is not None:
                out[asset_id] = (hit[0], hit[1])
        return out


class SeedPriceSource(PriceSource):
    name = "seed"
    max_batch_size = 1000

    def __init__(self, *, table: SeedPriceTable) -> None:
        self.table = table

    def get_current_prices(self, asset_ids: Sequence[str]) -> PriceMap:
        out: PriceMap = {}
        for asset_id in asset_ids:
            price = self.table.price_for(normalize_asset_id(asset_id))
            if price is not None and price > 0:
                out[asset_id] = (price, None)
        return out

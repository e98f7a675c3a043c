#!/usr/bin/env python3
"""
Unit tests for the on-disk market snapshot

Tests cover:
- Persist/load round trip and staleness
- Refresh from a scripted upstream (platform mapping, pinned natives, history)
- Refresh failures keep the previous snapshot
- Nearest-sample historical lookups
"""
import json
from datetime import timedelta

import pytest

from valuation.core.market_snapshot import MarketSnapshot, SnapshotEntry
from valuation.shared.config import SnapshotConfig
from valuation.shared.errors import RateLimitedError

from fakes import SOL_ID, FixedClock, ScriptedClient, utc

NOW = utc(2025, 3, 1, 12)
DAY_MS = 86_400_000


def upstream(markets_route=None):
    return ScriptedClient({
        "coins/list": [
            {"id": "bonk", "symbol": "bonk", "platforms": {"solana": "DezXAZ8z7PnrnRJjz3wXBoRgixCa6xjnB7YaB1pPB263"}},
            {"id": "usd-coin", "symbol": "usdc", "platforms": {
                "ethereum": "0xA0b86991c6218b36c1d19D4a2e9Eb0cE3606eB48",
            }},
            {"id": "nowhere", "symbol": "nw", "platforms": {"tron": "T123"}},
        ],
        "coins/markets": markets_route if markets_route is not None else [
            {"id": "solana", "symbol": "sol", "current_price": 150.0,
             "price_change_percentage_24h": 1.5, "market_cap_rank": 5},
            {"id": "usd-coin", "symbol": "usdc", "current_price": 1.0, "market_cap_rank": 7},
            {"id": "bonk", "symbol": "bonk", "current_price": 0.00002, "market_cap_rank": 80},
            {"id": "nowhere", "symbol": "nw", "current_price": 3.0, "market_cap_rank": 9},
        ],
        "coins/solana/market_chart": {"prices": [
            [1740700800000, 148.0], [1740700800000 + DAY_MS, 149.0],
        ]},
        "coins/usd-coin/market_chart": {"prices": [[1740700800000, 1.0]]},
    })


def make_snapshot(tmp_path, client=None, clock=None, **cfg):
    cfg.setdefault("pages", 1)
    return MarketSnapshot(SnapshotConfig(**cfg), path=tmp_path / "market_snapshot.json",
                          client=client, now=clock or FixedClock(NOW), sleep=lambda s: None)


class TestRefresh:
    def test_refresh_maps_platform_and_pinned_ids(self, tmp_path):
        """Test coin map built from platforms and pinned ids"""
        snapshot = make_snapshot(tmp_path, client=upstream())
        assert snapshot.refresh() == 3

        # Base58 mint kept as-is, contract address lowercased, native pinned
        assert snapshot.market_id("DezXAZ8z7PnrnRJjz3wXBoRgixCa6xjnB7YaB1pPB263") == "bonk"
        assert snapshot.market_id("0xa0b86991c6218b36c1d19d4a2e9eb0ce3606eb48") == "usd-coin"
        assert snapshot.market_id("0xA0B86991C6218B36C1D19D4A2E9EB0CE3606EB48") == "usd-coin"
        assert snapshot.current_price(SOL_ID) == (150.0, 1.5)
        assert snapshot.market_id("T123") is None

    def test_history_only_for_top_ranked(self, tmp_path):
        """Test that history is fetched for top-ranked coins only"""
        snapshot = make_snapshot(tmp_path, client=upstream(), history_top_rank=50)
        snapshot.refresh()
        assert [p for _, p in snapshot.historical_series(SOL_ID)] == [148.0, 149.0]
        assert snapshot.historical_series("DezXAZ8z7PnrnRJjz3wXBoRgixCa6xjnB7YaB1pPB263") == []

    def test_refresh_persists_and_reloads(self, tmp_path):
        """Test snapshot save and reload"""
        make_snapshot(tmp_path, client=upstream()).refresh()
        raw = json.loads((tmp_path / "market_snapshot.json").read_text())
        assert raw["updated_at"].startswith("2025-03-01")

        reloaded = make_snapshot(tmp_path)
        assert reloaded.load()
        assert len(reloaded) == 3
        assert reloaded.current_price(SOL_ID) == (150.0, 1.5)
        assert len(reloaded.historical_series(SOL_ID)) == 2
        assert not reloaded.is_stale()

    def test_rate_limited_refresh_keeps_previous_data(self, tmp_path):
        """Test that a 429 during refresh keeps the old snapshot"""
        snapshot = make_snapshot(tmp_path, client=upstream(RateLimitedError("coingecko", "HTTP 429")))
        snapshot.put("MintA", SnapshotEntry(market_id="a", price=1.0))
        assert snapshot.refresh() == 0
        assert snapshot.market_id("MintA") == "a"

    def test_refresh_without_client_is_an_error(self, tmp_path):
        """Test refresh with no HTTP client configured"""
        with pytest.raises(ValueError):
            make_snapshot(tmp_path).refresh()


class TestLifecycle:
    def test_missing_file_is_stale(self, tmp_path):
        """Test staleness of a snapshot never written"""
        snapshot = make_snapshot(tmp_path)
        assert not snapshot.load()
        assert snapshot.is_stale()

    def test_staleness_follows_max_age(self, tmp_path):
        """Test staleness against max_age_hours"""
        clock = FixedClock(NOW)
        snapshot = make_snapshot(tmp_path, client=upstream(), clock=clock, max_age_hours=24)
        snapshot.refresh()
        clock.advance(hours=23)
        assert not snapshot.is_stale()
        clock.advance(hours=1)
        assert snapshot.is_stale()

    def test_ensure_fresh_refreshes_stale_snapshot(self, tmp_path):
        """Test automatic rebuild of a stale snapshot"""
        client = upstream()
        snapshot = make_snapshot(tmp_path, client=client)
        snapshot.ensure_fresh()
        assert len(snapshot) == 3
        calls = len(client.calls)
        snapshot.ensure_fresh()
        assert len(client.calls) == calls

    def test_invalidate_forces_rebuild(self, tmp_path):
        """Test that invalidate marks the snapshot stale"""
        client = upstream()
        snapshot = make_snapshot(tmp_path, client=client)
        snapshot.refresh()
        snapshot.invalidate()
        assert len(snapshot) == 0
        assert snapshot.is_stale()

    def test_corrupt_file_is_ignored(self, tmp_path):
        """Test loading a corrupt snapshot file"""
        (tmp_path / "market_snapshot.json").write_text("{not json")
        assert not make_snapshot(tmp_path).load()


class TestNearestPrice:
    def test_nearest_sample_within_window(self, tmp_path):
        """Test nearest history sample lookup"""
        snapshot = make_snapshot(tmp_path)
        snapshot.put("A", SnapshotEntry(market_id="a", history=[
            (NOW - timedelta(days=10), 1.0),
            (NOW - timedelta(days=3), 2.0),
            (NOW - timedelta(days=1), 0.0),
        ]))
        assert snapshot.nearest_price("A", NOW - timedelta(days=4), 7) == 2.0
        assert snapshot.nearest_price("A", NOW - timedelta(days=9), 7) == 1.0
        # Zero-priced samples are skipped
        assert snapshot.nearest_price("A", NOW, 7) == 2.0
        assert snapshot.nearest_price("A", NOW + timedelta(days=20), 7) is None
        assert snapshot.nearest_price("B", NOW, 7) is None

#!/usr/bin/env python3
"""
Unit tests for the performance calculator

Tests cover:
- Tier band boundaries
- Cost-basis scenarios, including no history at all
- Placeholder values for unpriced holdings
- Winners/losers and allocation buckets
"""
import pytest

from valuation.core.performance import (
    OTHER_BUCKET,
    PLACEHOLDER_SOURCE,
    PerformanceCalculator,
    classify_tier,
    placeholder_value,
)
from valuation.shared.config import PerformanceConfig
from valuation.shared.models import AcquisitionLot, Holding, PriceQuote

from fakes import token, utc


def quote(asset_id, price, change=None):
    return PriceQuote(asset_id=asset_id, price_usd=price, source="test", resolved_at=utc(2025, 1, 1),
                      change_24h=change)


@pytest.mark.parametrize("pct,expected", [
    (150.0, "excellent"),
    (20.0, "excellent"),
    (19.99, "good"),
    (5.0, "good"),
    (4.99, "neutral"),
    (0.0, "neutral"),
    (-5.0, "neutral"),
    (-5.01, "bad"),
    (-20.0, "bad"),
    (-20.01, "terrible"),
])
def test_tier_boundaries(pct, expected):
    """Test tier classification at each band edge"""
    assert classify_tier(pct) == expected


class TestScenarios:
    def test_buy_ten_at_two_sell_four_price_five(self):
        """Test performance for a partially sold position"""
        abc = token("ABC", "ABC")
        lot = AcquisitionLot(asset=abc, remaining_quantity=6.0, weighted_average_unit_cost=2.0)
        result = PerformanceCalculator().compute([Holding(abc, 6.0)], {"ABC": lot}, {"ABC": quote("ABC", 5.0)})

        assert result.total_value_usd == pytest.approx(30.0)
        assert result.cost_basis_total_usd == pytest.approx(12.0)
        assert result.unrealized_pnl_usd == pytest.approx(18.0)
        assert result.performance_pct == pytest.approx(150.0)
        assert result.tier == "excellent"

    def test_no_history_single_holding(self):
        """Test performance with no cost basis"""
        abc = token("ABC", "ABC")
        result = PerformanceCalculator().compute([Holding(abc, 1.0)], {}, {"ABC": quote("ABC", 100.0, change=-8.0)})

        assert result.total_value_usd == pytest.approx(100.0)
        assert result.cost_basis_total_usd is None
        assert result.performance_pct is None
        # Momentum fallback: value-weighted 24h change of -8%
        assert result.momentum_pct == pytest.approx(-8.0)
        assert result.tier == "bad"
        assert result.holdings[0].cost_basis_usd is None
        assert result.holdings[0].unrealized_pnl_usd is None

    def test_zero_cost_basis_uses_momentum(self):
        """Test momentum tier when the cost basis is zero"""
        abc = token("ABC", "ABC")
        lot = AcquisitionLot(asset=abc, remaining_quantity=3.0, weighted_average_unit_cost=0.0,
                             unpriced_quantity=3.0)
        result = PerformanceCalculator().compute([Holding(abc, 3.0)], {"ABC": lot}, {"ABC": quote("ABC", 1.0, 25.0)})
        assert result.cost_basis_total_usd == 0.0
        assert result.performance_pct is None
        assert result.tier == "excellent"

    def test_empty_wallet_is_neutral(self):
        """Test an empty wallet"""
        result = PerformanceCalculator().compute([], {}, {})
        assert result.total_value_usd == 0.0
        assert result.tier == "neutral"
        assert result.allocation == []


class TestPlaceholders:
    def test_placeholder_grows_with_magnitude_and_is_capped(self):
        """Test placeholder value scaling"""
        assert placeholder_value(0.5, 0.01, 1.0) == pytest.approx(0.01)
        assert placeholder_value(5, 0.01, 1.0) == pytest.approx(0.01)
        assert placeholder_value(50, 0.01, 1.0) == pytest.approx(0.02)
        assert placeholder_value(1_000_000, 0.01, 1.0) == pytest.approx(0.07)
        assert placeholder_value(1e200, 0.01, 1.0) == pytest.approx(1.0)

    def test_unpriced_holding_is_flagged_not_dropped(self):
        """Test that unpriced holdings stay in the report"""
        dust = token("DUST", "DUST")
        result = PerformanceCalculator(PerformanceConfig()).compute([Holding(dust, 5000.0)], {}, {})
        h = result.holdings[0]
        assert h.price_is_placeholder
        assert h.price_source == PLACEHOLDER_SOURCE
        assert h.value_usd == pytest.approx(0.04)
        assert h.unit_price_usd == pytest.approx(0.04 / 5000.0)
        assert result.allocation[0].name == "DUST"


class TestRankings:
    def _holdings(self, changes):
        holdings, quotes = [], {}
        for i, change in enumerate(changes):
            asset = token(f"T{i}", f"T{i}")
            holdings.append(Holding(asset, 1.0))
            quotes[asset.asset_id] = quote(asset.asset_id, 10.0 + i, change)
        return holdings, quotes

    def test_winners_and_losers_are_top_five_by_change(self):
        """Test winner and loser rankings"""
        holdings, quotes = self._holdings([1, 2, 3, 4, 5, 6, -1, -2, -3, -4, -5, -6, 0])
        result = PerformanceCalculator().compute(holdings, {}, quotes)

        assert [h.change_24h for h in result.top_winners] == [6, 5, 4, 3, 2]
        assert [h.change_24h for h in result.top_losers] == [-6, -5, -4, -3, -2]

    def test_holdings_ranked_by_value(self):
        """Test holdings ordering by value"""
        holdings, quotes = self._holdings([0, 0, 0])
        result = PerformanceCalculator().compute(holdings, {}, quotes)
        values = [h.value_usd for h in result.holdings]
        assert values == sorted(values, reverse=True)

    def test_allocation_top_n_plus_other(self):
        """Test allocation slices with an Other bucket"""
        holdings, quotes = self._holdings([0] * 6)
        result = PerformanceCalculator(PerformanceConfig(allocation_top_n=4)).compute(holdings, {}, quotes)

        assert len(result.allocation) == 5
        assert result.allocation[-1].name == OTHER_BUCKET
        assert result.allocation[-1].value_usd == pytest.approx(10.0 + 11.0)
        assert sum(s.percentage for s in result.allocation) == pytest.approx(100.0)

    def test_no_other_bucket_when_everything_fits(self):
        """Test allocation without an Other bucket"""
        holdings, quotes = self._holdings([0, 0])
        result = PerformanceCalculator().compute(holdings, {}, quotes)
        assert all(s.name != OTHER_BUCKET for s in result.allocation)

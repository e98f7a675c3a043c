#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""
Portfolio performance: value, cost basis, P&L, tier, movers and allocation.

Unpriced holdings get a small placeholder value that grows with the order of
magnitude of the quantity held (base_usd per decade, capped at max_usd). They
stay visible in the allocation without dominating it, and are flagged with
price_is_placeholder=True.

Performance percentage is P&L over cost basis for holdings that have a
tracked lot. When that cost basis is unknown, zero or negative the percentage
is None and the tier is taken from the value-weighted 24h change instead.
"""
from __future__ import annotations

import math
from typing import List, Mapping, Optional

from ..shared.config import PerformanceConfig
from ..shared.logging_setup import get_logger
from ..shared.models import (
    AcquisitionLot,
    AllocationSlice,
    Holding,
    HoldingValuation,
    PerformanceMetrics,
    PriceQuote,
    TIER_BAD,
    TIER_EXCELLENT,
    TIER_GOOD,
    TIER_NEUTRAL,
    TIER_TERRIBLE,
)

logger = get_logger(__name__)

PLACEHOLDER_SOURCE = "placeholder"
OTHER_BUCKET = "Other"


def classify_tier(pct: float) -> str:
    """Lower bounds are inclusive: 20 -> excellent, -20 -> bad."""
    if pct >= 20.0:
        return TIER_EXCELLENT
    if pct >= 5.0:
        return TIER_GOOD
    if pct >= -5.0:
        return TIER_NEUTRAL
    if pct >= -20.0:
        return TIER_BAD
    return TIER_TERRIBLE


def placeholder_value(quantity: float, base_usd: float, max_usd: float) -> float:
    magnitude = math.floor(math.log10(max(quantity, 1.0)))
    return min(max_usd, base_usd * (1 + magnitude))


class PerformanceCalculator:
    def __init__(self, config: Optional[PerformanceConfig] = None):
        self.config = config or PerformanceConfig()

    def value_holding(self, holding: Holding, lot: Optional[AcquisitionLot],
                      quote: Optional[PriceQuote]) -> HoldingValuation:
        qty = float(holding.quantity)
        if quote is not None and quote.price_usd > 0:
            price = quote.price_usd
            value = qty * price
            change = quote.change_24h or 0.0
            source = quote.source
            placeholder = False
        else:
            value = placeholder_value(qty, self.config.dust_placeholder_base_usd,
                                      self.config.dust_placeholder_max_usd)
            price = value / qty
            change = 0.0
            source = PLACEHOLDER_SOURCE
            placeholder = True

        cost_basis = None
        pnl = None
        if lot is not None:
            cost_basis = lot.remaining_quantity * lot.weighted_average_unit_cost
            pnl = value - cost_basis

        return HoldingValuation(
            asset=holding.asset,
            quantity=qty,
            unit_price_usd=price,
            value_usd=value,
            price_source=source,
            change_24h=change,
            cost_basis_usd=cost_basis,
            unrealized_pnl_usd=pnl,
            price_is_placeholder=placeholder,
        )

    def allocation(self, ranked: List[HoldingValuation], total_value: float) -> List[AllocationSlice]:
        """Top-N by value plus an 'Other' bucket for the rest."""
        if total_value <= 0:
            return []
        top_n = self.config.allocation_top_n
        positive = [h for h in ranked if h.value_usd > 0]
        slices = [
            AllocationSlice(name=h.asset.symbol, value_usd=h.value_usd,
                            percentage=h.value_usd / total_value * 100.0)
            for h in positive[:top_n]
        ]
        rest = sum(h.value_usd for h in positive[top_n:])
        if rest > 0:
            slices.append(AllocationSlice(name=OTHER_BUCKET, value_usd=rest,
                                          percentage=rest / total_value * 100.0))
        return slices

    def compute(
        self,
        holdings: List[Holding],
        lots: Mapping[str, AcquisitionLot],
        quotes: Mapping[str, PriceQuote],
    ) -> PerformanceMetrics:
        """
        Combine holdings, lots and current quotes into aggregate metrics

        Args:
            holdings: Current positions in whole units
            lots: Acquisition lots keyed by asset id
            quotes: Current quotes keyed by asset id (missing = unavailable)
        """
        valuations = [
            self.value_holding(h, lots.get(h.asset.asset_id), quotes.get(h.asset.asset_id))
            for h in holdings
            if h.quantity > 0
        ]
        ranked = sorted(valuations, key=lambda v: v.value_usd, reverse=True)

        total_value = sum(v.value_usd for v in ranked)
        known = [v for v in ranked if v.cost_basis_usd is not None]
        cost_total: Optional[float] = sum(v.cost_basis_usd for v in known) if known else None
        pnl_total = sum(v.unrealized_pnl_usd for v in known) if known else 0.0

        momentum = 0.0
        if total_value > 0:
            momentum = sum(v.value_usd * v.change_24h for v in ranked) / total_value

        if cost_total is not None and cost_total > 0:
            performance_pct: Optional[float] = pnl_total / cost_total * 100.0
            tier = classify_tier(performance_pct)
        else:
            performance_pct = None
            tier = classify_tier(momentum) if total_value > 0 else TIER_NEUTRAL
            logger.debug(f"Cost basis unknown ({cost_total}); tier from 24h momentum {momentum:.2f}%")

        n = self.config.top_movers
        winners = sorted((v for v in ranked if v.change_24h > 0), key=lambda v: v.change_24h, reverse=True)[:n]
        losers = sorted((v for v in ranked if v.change_24h < 0), key=lambda v: v.change_24h)[:n]

        placeholders = sum(1 for v in ranked if v.price_is_placeholder)
        if placeholders:
            logger.info(f"{placeholders} holdings valued with a placeholder price")

        return PerformanceMetrics(
            holdings=ranked,
            total_value_usd=total_value,
            cost_basis_total_usd=cost_total,
            unrealized_pnl_usd=pnl_total,
            performance_pct=performance_pct,
            tier=tier,
            momentum_pct=momentum,
            top_winners=winners,
            top_losers=losers,
            allocation=self.allocation(ranked, total_value),
        )

#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""
Domain Models for the Wallet Valuation Engine
Defines assets, transfer events, price quotes and the composed Portfolio.
"""

from dataclasses import dataclass, field, asdict
from datetime import datetime, timezone
from typing import Dict, List, Optional, Any, Tuple

from .utils import normalize_asset_id


TIER_EXCELLENT = "excellent"
TIER_GOOD = "good"
TIER_NEUTRAL = "neutral"
TIER_BAD = "bad"
TIER_TERRIBLE = "terrible"

PERFORMANCE_TIERS = (TIER_EXCELLENT, TIER_GOOD, TIER_NEUTRAL, TIER_BAD, TIER_TERRIBLE)


@dataclass(frozen=True)
class Asset:
    """
    A recognized token on one chain

    Identified by the chain-native symbol or the contract/mint address.
    Hex contract ids are stored lowercased so checksummed and plain spellings
    name the same asset.
    """
    asset_id: str
    symbol: str = "Unknown"
    name: str = "Unknown Token"
    decimals: int = 0

    def __post_init__(self):
        """Validate identifier and precision"""
        if not self.asset_id or not str(self.asset_id).strip():
            raise ValueError("asset_id cannot be empty")
        object.__setattr__(self, "asset_id", normalize_asset_id(self.asset_id))
        if self.decimals < 0:
            raise ValueError("decimals cannot be negative")


@dataclass(frozen=True)
class TransferEvent:
    """
    A signed quantity movement of one asset relative to the analysed wallet

    Positive quantity = acquired, negative quantity = disposed.
    """
    asset: Asset
    quantity: float
    timestamp: datetime
    reference_id: str = ""
    counterparty: Optional[str] = None

    @property
    def is_acquisition(self) -> bool:
        return self.quantity > 0

    @property
    def is_disposal(self) -> bool:
        return self.quantity < 0


@dataclass
class AcquisitionLot:
    """
    Running weighted-average acquisition state for one asset

    remaining_quantity never drops below zero; unpriced_quantity counts
    inflows that entered at zero cost because no historical price resolved.
    """
    asset: Asset
    remaining_quantity: float = 0.0
    weighted_average_unit_cost: float = 0.0
    first_acquired_at: Optional[datetime] = None
    acquired_quantity: float = 0.0
    disposed_quantity: float = 0.0
    unpriced_quantity: float = 0.0

    @property
    def cost_basis(self) -> float:
        return self.remaining_quantity * self.weighted_average_unit_cost


@dataclass(frozen=True)
class PriceQuote:
    """
    A single resolved unit price with provenance

    approximate=True marks a historical request answered with a current price.
    """
    asset_id: str
    price_usd: float
    source: str
    resolved_at: datetime
    change_24h: Optional[float] = None
    approximate: bool = False

    def is_fresh(self, now: datetime, ttl_seconds: Optional[float]) -> bool:
        """A quote without TTL (historical) never expires."""
        if ttl_seconds is None:
            return True
        return (now - self.resolved_at).total_seconds() < ttl_seconds


@dataclass(frozen=True)
class TokenBalance:
    """Raw token balance as reported by a ledger source"""
    asset: Asset
    raw_quantity: float

    @property
    def quantity(self) -> float:
        return float(self.raw_quantity) / (10 ** self.asset.decimals)


@dataclass(frozen=True)
class BalanceSnapshot:
    """
    Normalized balance snapshot for one wallet

    native_quantity is expressed in whole units; token balances are raw
    integer-style quantities scaled by each asset's decimals.
    """
    native_quantity: float = 0.0
    tokens: List[TokenBalance] = field(default_factory=list)


@dataclass(frozen=True)
class Holding:
    """Quantity of one asset held right now (already scaled to whole units)"""
    asset: Asset
    quantity: float


@dataclass(frozen=True)
class HoldingValuation:
    """
    Valuation of a single held asset

    cost_basis and unrealized_pnl are None when no acquisition history exists.
    """
    asset: Asset
    quantity: float
    unit_price_usd: float
    value_usd: float
    price_source: Optional[str]
    change_24h: float = 0.0
    cost_basis_usd: Optional[float] = None
    unrealized_pnl_usd: Optional[float] = None
    price_is_placeholder: bool = False

    def to_dict(self) -> Dict[str, Any]:
        return {
            'asset_id': self.asset.asset_id,
            'symbol': self.asset.symbol,
            'name': self.asset.name,
            'decimals': self.asset.decimals,
            'quantity': self.quantity,
            'unit_price_usd': self.unit_price_usd,
            'value_usd': self.value_usd,
            'price_source': self.price_source,
            'change_24h': self.change_24h,
            'cost_basis_usd': self.cost_basis_usd,
            'unrealized_pnl_usd': self.unrealized_pnl_usd,
            'price_is_placeholder': self.price_is_placeholder,
        }


@dataclass(frozen=True)
class AllocationSlice:
    name: str
    value_usd: float
    percentage: float


@dataclass(frozen=True)
class TimePoint:
    date: str  # YYYY-MM-DD, or YYYY-MM-DD HH:MM for sub-daily spacing
    value: float


@dataclass(frozen=True)
class TimeWindow:
    """
    Named historical range

    days=None means all-time (bounded by the earliest known activity).
    """
    name: str
    days: Optional[int] = None


@dataclass(frozen=True)
class WindowBundle:
    """Per-window curve plus the change it depicts (presentation aid only)"""
    window: TimeWindow
    curve: Tuple[TimePoint, ...]
    start_value_usd: float
    end_value_usd: float
    change_usd: float
    change_pct: Optional[float]

    def __post_init__(self):
        object.__setattr__(self, "curve", tuple(self.curve))

    def to_dict(self) -> Dict[str, Any]:
        return {
            'window': self.window.name,
            'days': self.window.days,
            'start_value_usd': self.start_value_usd,
            'end_value_usd': self.end_value_usd,
            'change_usd': self.change_usd,
            'change_pct': self.change_pct,
            'curve': [{'date': p.date, 'value': p.value} for p in self.curve],
        }


@dataclass(frozen=True)
class RecentTransfer:
    """A transfer formatted for the report timeline (newest first)"""
    reference_id: str
    timestamp: datetime
    action: str  # 'receive' | 'send'
    symbol: str
    quantity: float
    value_usd: Optional[float] = None


@dataclass(frozen=True)
class TradingMetrics:
    """Behavioural scores on a 0-100 scale"""
    diamond_hands_factor: int = 50
    degen_level: int = 50
    paper_hands_risk: int = 50


@dataclass(frozen=True)
class PerformanceMetrics:
    """
    Aggregate output of the performance calculation

    performance_pct is None when the cost basis is unknown, zero or negative;
    the tier is then derived from value-weighted 24h momentum.
    """
    holdings: List[HoldingValuation]
    total_value_usd: float
    cost_basis_total_usd: Optional[float]
    unrealized_pnl_usd: float
    performance_pct: Optional[float]
    tier: str
    momentum_pct: float
    top_winners: List[HoldingValuation]
    top_losers: List[HoldingValuation]
    allocation: List[AllocationSlice]


@dataclass(frozen=True)
class Portfolio:
    """
    The engine's output for one (address, chain) analysis

    Built fresh per request and never mutated afterwards; cached by
    (address, chain) and replaced wholesale on refresh. Sequence fields are
    stored as tuples so a cached instance can be handed out safely.
    """
    address: str
    chain: str
    analyzed_at: datetime
    total_value_usd: float
    cost_basis_total_usd: Optional[float]
    unrealized_pnl_usd: float
    performance_pct: Optional[float]
    tier: str
    holdings: Tuple[HoldingValuation, ...]
    top_winners: Tuple[HoldingValuation, ...]
    top_losers: Tuple[HoldingValuation, ...]
    allocation: Tuple[AllocationSlice, ...]
    windows: Tuple[WindowBundle, ...]
    selected_window: str = "all"
    recent_transfers: Tuple[RecentTransfer, ...] = ()
    trading_metrics: TradingMetrics = field(default_factory=TradingMetrics)
    unavailable_assets: Tuple[str, ...] = ()

    def __post_init__(self):
        for name in ("holdings", "top_winners", "top_losers", "allocation",
                     "windows", "recent_transfers", "unavailable_assets"):
            object.__setattr__(self, name, tuple(getattr(self, name)))

    def window(self, name: str) -> Optional[WindowBundle]:
        for bundle in self.windows:
            if bundle.window.name == name:
                return bundle
        return None

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for JSON serialization"""
        return {
            'wallet': {'address': self.address, 'chain': self.chain},
            'analyzed_at': self.analyzed_at.astimezone(timezone.utc).isoformat(),
            'total_value_usd': self.total_value_usd,
            'cost_basis_total_usd': self.cost_basis_total_usd,
            'unrealized_pnl_usd': self.unrealized_pnl_usd,
            'performance_pct': self.performance_pct,
            'tier': self.tier,
            'selected_window': self.selected_window,
            'holdings': [h.to_dict() for h in self.holdings],
            'top_winners': [h.to_dict() for h in self.top_winners],
            'top_losers': [h.to_dict() for h in self.top_losers],
            'allocation': [asdict(a) for a in self.allocation],
            'windows': [w.to_dict() for w in self.windows],
            'recent_transfers': [
                {
                    'reference_id': t.reference_id,
                    'timestamp': t.timestamp.astimezone(timezone.utc).isoformat(),
                    'action': t.action,
                    'symbol': t.symbol,
                    'quantity': t.quantity,
                    'value_usd': t.value_usd,
                }
                for t in self.recent_transfers
            ],
            'trading_metrics': asdict(self.trading_metrics),
            'unavailable_assets': list(self.unavailable_assets),
        }

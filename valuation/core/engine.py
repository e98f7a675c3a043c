#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""
Wallet valuation pipeline.

analyze(request):
1. validate chain, address and windows (InvalidInputError, nothing fetched)
2. return the cached Portfolio unless force_refresh is set
3. balances from the first ledger source that answers (TotalFailureError if none)
4. transfer history (a failed feed degrades to "no activity")
5. cost basis replay, current prices, performance metrics
6. one synthetic curve per window, recent transfers, trading metrics
7. store the composed Portfolio and return it
"""
from __future__ import annotations

import re
import time
from dataclasses import dataclass, replace
from datetime import datetime
from pathlib import Path
from typing import Callable, Dict, List, Optional, Sequence, Tuple

from .cost_basis import CostBasisTracker
from .ledger import LedgerSource
from .market_snapshot import MarketSnapshot
from .metrics import EngineMetrics
from .performance import PerformanceCalculator
from .price_cache import PriceCache
from .price_resolver import PriceResolver
from .price_source import (
    CoinGeckoPriceSource,
    JupiterPriceSource,
    MarketSnapshotPriceSource,
    PriceSource,
    SeedPriceSource,
)
from .seed_prices import SeedTableError, load_seed_prices
from .time_series import TimeSeriesSynthesizer
from .trading_metrics import trading_metrics
from ..shared.config import ChainConfig, EngineSettings
from ..shared.errors import InvalidInputError, TotalFailureError
from ..shared.http_client import JsonHttpClient
from ..shared.logging_setup import get_logger
from ..shared.models import (
    Asset,
    BalanceSnapshot,
    Holding,
    Portfolio,
    RecentTransfer,
    TimeWindow,
    TransferEvent,
)
from ..shared.utils import to_utc, utc_now

logger = get_logger(__name__)


@dataclass(frozen=True)
class AnalysisRequest:
    address: str
    chain: str
    windows: Optional[Tuple[str, ...]] = None  # None = every configured window
    selected_window: str = "all"
    force_refresh: bool = False


class ValuationEngine:
    def __init__(
        self,
        settings: EngineSettings,
        ledger_sources: Sequence[LedgerSource],
        resolver: PriceResolver,
        cache: Optional[PriceCache] = None,
        metrics: Optional[EngineMetrics] = None,
        now: Callable[[], datetime] = utc_now,
    ):
        if not ledger_sources:
            raise ValueError("At least one ledger source is required")
        self.settings = settings
        self.ledger_sources = list(ledger_sources)
        self.resolver = resolver
        self.cache = cache or resolver.cache
        self.metrics = metrics
        self.cost_basis = CostBasisTracker(resolver)
        self.performance = PerformanceCalculator(settings.performance)
        self.synthesizer = TimeSeriesSynthesizer(settings.time_series)
        self._now = now
        self.logger = get_logger(f"{__name__}.ValuationEngine")

    # ------------------------------------------------------------------
    # Validation
    # ------------------------------------------------------------------
    def validate(self, request: AnalysisRequest) -> Tuple[str, str, ChainConfig, List[TimeWindow]]:
        """
        Check a request before any upstream is contacted

        Returns:
            (normalized address, chain key, chain config, windows to build)

        Raises:
            InvalidInputError: Unsupported chain, malformed address or unknown window
        """
        chain = (request.chain or "").strip().lower()
        chain_cfg = self.settings.chains.get(chain)
        if chain_cfg is None:
            raise InvalidInputError(
                f"Unsupported chain '{request.chain}'. Supported: {sorted(self.settings.chains)}"
            )

        address = (request.address or "").strip()
        if not address or not re.match(chain_cfg.address_pattern, address):
            raise InvalidInputError(f"Invalid {chain} address: '{request.address}'")
        if address.lower().startswith("0x"):
            address = address.lower()

        configured = self.settings.time_series.windows
        names = list(request.windows) if request.windows else list(configured.keys())
        if request.selected_window not in names:
            names.append(request.selected_window)
        unknown = [n for n in names if n not in configured]
        if unknown:
            raise InvalidInputError(f"Unknown time window(s) {unknown}. Known: {list(configured)}")

        windows = [TimeWindow(name=n, days=configured[n]) for n in dict.fromkeys(names)]
        return address, chain, chain_cfg, windows

    # ------------------------------------------------------------------
    # Entry point
    # ------------------------------------------------------------------
    def analyze(self, request: AnalysisRequest) -> Portfolio:
        address, chain, chain_cfg, windows = self.validate(request)
        started = time.monotonic()
        try:
            with self.cache.portfolio_lock(address, chain):
                if request.force_refresh:
                    self.cache.invalidate_portfolio(address, chain)
                else:
                    cached = self.cache.get_portfolio(address, chain)
                    if cached is not None and all(cached.window(w.name) is not None for w in windows):
                        self.logger.info(f"Cache hit for {chain}:{address}")
                        self._record(chain, "cached", started)
                        return replace(cached, selected_window=request.selected_window)

                portfolio = self._run_pipeline(address, chain, chain_cfg, windows, request.selected_window)
                self.cache.save_portfolio(portfolio)
        except TotalFailureError:
            self._record(chain, "failed", started)
            raise

        self._record(chain, "computed", started)
        self.logger.info(
            f"Analyzed {chain}:{address} value=${portfolio.total_value_usd:,.2f} "
            f"tier={portfolio.tier} in {time.monotonic() - started:.2f}s"
        )
        return portfolio

    def _record(self, chain: str, outcome: str, started: float) -> None:
        if self.metrics is not None:
            self.metrics.record_analysis(chain, outcome, time.monotonic() - started)

    # ------------------------------------------------------------------
    # Pipeline steps
    # ------------------------------------------------------------------
    def _fetch_balances(self, address: str) -> BalanceSnapshot:
        errors = []
        for source in self.ledger_sources:
            try:
                return source.get_balances(address)
            except Exception as e:
                self.logger.warning(f"Balance source {source.name} failed for {address}: {e}")
                errors.append(f"{source.name}: {e}")
        raise TotalFailureError(f"No balance source could answer for {address}: {'; '.join(errors)}")

    def _fetch_history(self, address: str) -> List[TransferEvent]:
        for source in self.ledger_sources:
            try:
                return source.get_transfer_history(address, self.settings.history.max_events)
            except Exception as e:
                self.logger.warning(f"History source {source.name} failed for {address}: {e}")
        self.logger.info(f"No transfer history for {address}; treating as no activity")
        return []

    @staticmethod
    def _holdings(balances: BalanceSnapshot, chain_cfg: ChainConfig) -> List[Holding]:
        quantities: Dict[str, float] = {}
        assets: Dict[str, Asset] = {}
        if balances.native_quantity > 0:
            native = Asset(
                asset_id=chain_cfg.native_asset_id,
                symbol=chain_cfg.native_symbol,
                name=chain_cfg.native_name,
                decimals=chain_cfg.native_decimals,
            )
            assets[native.asset_id] = native
            quantities[native.asset_id] = float(balances.native_quantity)
        for token in balances.tokens:
            qty = token.quantity
            if qty <= 0:
                continue
            asset_id = token.asset.asset_id
            assets.setdefault(asset_id, token.asset)
            quantities[asset_id] = quantities.get(asset_id, 0.0) + qty
        return [Holding(asset=assets[a], quantity=q) for a, q in quantities.items()]

    def _recent_transfers(self, events: List[TransferEvent]) -> List[RecentTransfer]:
        limit = self.settings.history.recent_transfers
        if limit <= 0 or not events:
            return []
        newest = sorted(events, key=lambda e: to_utc(e.timestamp), reverse=True)[:limit]
        quotes = self.resolver.resolve_historical_batch([(e.asset.asset_id, e.timestamp) for e in newest])
        recent = []
        for e in newest:
            quote = quotes.get((e.asset.asset_id, e.timestamp))
            qty = abs(e.quantity)
            recent.append(RecentTransfer(
                reference_id=e.reference_id,
                timestamp=to_utc(e.timestamp),
                action="receive" if e.is_acquisition else "send",
                symbol=e.asset.symbol,
                quantity=qty,
                value_usd=qty * quote.price_usd if quote is not None else None,
            ))
        return recent

    def _run_pipeline(
        self,
        address: str,
        chain: str,
        chain_cfg: ChainConfig,
        windows: List[TimeWindow],
        selected_window: str,
    ) -> Portfolio:
        balances = self._fetch_balances(address)
        events = [e for e in self._fetch_history(address) if e.quantity != 0]
        holdings = self._holdings(balances, chain_cfg)
        self.logger.debug(f"{address}: {len(holdings)} holdings, {len(events)} transfer events")

        lots = self.cost_basis.replay(events)
        quotes = self.resolver.resolve_current_batch([h.asset.asset_id for h in holdings])
        perf = self.performance.compute(holdings, lots, quotes)

        now = self._now()
        earliest = min((to_utc(e.timestamp) for e in events), default=None)
        bundles = [self.synthesizer.bundle(w, perf.total_value_usd, earliest, now) for w in windows]

        return Portfolio(
            address=address,
            chain=chain,
            analyzed_at=now,
            total_value_usd=perf.total_value_usd,
            cost_basis_total_usd=perf.cost_basis_total_usd,
            unrealized_pnl_usd=perf.unrealized_pnl_usd,
            performance_pct=perf.performance_pct,
            tier=perf.tier,
            holdings=perf.holdings,
            top_winners=perf.top_winners,
            top_losers=perf.top_losers,
            allocation=perf.allocation,
            windows=bundles,
            selected_window=selected_window,
            recent_transfers=self._recent_transfers(events),
            trading_metrics=trading_metrics(events, perf.tier),
            unavailable_assets=[h.asset.asset_id for h in perf.holdings if h.price_is_placeholder],
        )


# ----------------------------------------------------------------------
# Wiring
# ----------------------------------------------------------------------
def _resolve(root: Path, path: str) -> Path:
    p = Path(path)
    return p if p.is_absolute() else root / p


def build_price_sources(settings: EngineSettings, snapshot: Optional[MarketSnapshot],
                        root: Path) -> List[PriceSource]:
    """Instantiate the configured price sources in priority order."""
    prices = settings.prices
    sources: List[PriceSource] = []
    for name in prices.sources:
        if name == "jupiter":
            client = JsonHttpClient("jupiter", prices.endpoints["jupiter"],
                                    timeout=prices.timeout_s, retry_attempts=prices.retries + 1)
            sources.append(JupiterPriceSource(client=client, max_batch_size=prices.batch_size_for("jupiter", 100)))
        elif name == "coingecko":
            key = prices.api_key()
            client = JsonHttpClient("coingecko", prices.endpoints["coingecko"],
                                    timeout=prices.timeout_s, retry_attempts=prices.retries + 1,
                                    headers={"x-cg-pro-api-key": key} if key else None)
            sources.append(CoinGeckoPriceSource(client=client, snapshot=snapshot,
                                                max_batch_size=prices.batch_size_for("coingecko", 250)))
        elif name == "snapshot":
            if snapshot is not None:
                sources.append(MarketSnapshotPriceSource(snapshot=snapshot))
        elif name == "seed":
            if not settings.seed_prices.enabled:
                continue
            try:
                table = load_seed_prices(_resolve(root, settings.seed_prices.path))
            except SeedTableError as e:
                logger.warning(f"Seed price table disabled: {e}")
                continue
            sources.append(SeedPriceSource(table=table))
    logger.info(f"Price sources in priority order: {[s.name for s in sources]}")
    return sources


def build_engine(
    settings: EngineSettings,
    ledger_sources: Sequence[LedgerSource],
    root: Optional[Path] = None,
    metrics: Optional[EngineMetrics] = None,
    refresh_snapshot: bool = True,
) -> ValuationEngine:
    """
    Assemble cache, market snapshot, price sources, resolver and engine

    Args:
        settings: Loaded engine settings
        ledger_sources: Balance/history providers, tried in order
        root: Base directory for relative paths in settings (defaults to cwd)
        metrics: Optional metrics sink shared by all components
        refresh_snapshot: Rebuild a stale market snapshot from upstream now
    """
    root = root or Path.cwd()
    cache = PriceCache(config=settings.cache, metrics=metrics)

    snapshot_client = None
    if "coingecko" in settings.prices.endpoints:
        key = settings.prices.api_key()
        snapshot_client = JsonHttpClient("coingecko-markets", settings.prices.endpoints["coingecko"],
                                         timeout=max(settings.prices.timeout_s, 10.0),
                                         retry_attempts=settings.prices.retries + 1,
                                         headers={"x-cg-pro-api-key": key} if key else None)
    snapshot = MarketSnapshot(settings.snapshot, path=_resolve(root, settings.snapshot.path),
                              client=snapshot_client)
    if refresh_snapshot:
        snapshot.ensure_fresh()
    else:
        snapshot.load()

    sources = build_price_sources(settings, snapshot, root)
    resolver = PriceResolver(sources, cache=cache, config=settings.prices, snapshot=snapshot, metrics=metrics)
    return ValuationEngine(settings, ledger_sources, resolver, cache=cache, metrics=metrics)

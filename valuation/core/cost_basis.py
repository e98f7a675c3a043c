#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""
Weighted-average cost basis from a transfer-event stream.

Events are replayed once, in ascending timestamp order (stable: same-time
events keep feed order), whatever order the feed delivered them in.

- Acquisition: the unit price is the historical price at the event time.
  new_avg = (old_avg * old_qty + price * qty) / (old_qty + qty)
  If no price resolves, the quantity enters at zero cost and is counted in
  unpriced_quantity. This inflates P&L for those inflows and is accepted for
  a best-effort report.
- Disposal: remaining -= min(qty, remaining); the average is unchanged. A
  disposal larger than the tracked quantity clamps to zero (untracked prior
  inflows such as airdrops).

The result is only as repeatable as the price history behind it.
"""
from __future__ import annotations

from typing import Dict, Iterable, List, Optional

from .price_resolver import PriceResolver
from ..shared.logging_setup import get_logger
from ..shared.models import AcquisitionLot, TransferEvent
from ..shared.utils import to_utc

logger = get_logger(__name__)


def order_events(events: Iterable[TransferEvent]) -> List[TransferEvent]:
    """Stable ascending sort by timestamp."""
    return sorted(events, key=lambda e: to_utc(e.timestamp))


class CostBasisTracker:
    def __init__(self, resolver: Optional[PriceResolver] = None):
        self.resolver = resolver

    def _acquisition_prices(self, events: List[TransferEvent]) -> Dict[int, float]:
        """Historical unit price per acquisition event index (absent = unpriced)."""
        if self.resolver is None:
            return {}
        requests = [(e.asset.asset_id, e.timestamp) for e in events if e.is_acquisition]
        if not requests:
            return {}
        quotes = self.resolver.resolve_historical_batch(requests)
        prices: Dict[int, float] = {}
        for i, e in enumerate(events):
            if not e.is_acquisition:
                continue
            quote = quotes.get((e.asset.asset_id, e.timestamp))
            if quote is not None and quote.price_usd > 0:
                prices[i] = quote.price_usd
        return prices

    def replay(self, events: Iterable[TransferEvent]) -> Dict[str, AcquisitionLot]:
        """
        Build per-asset acquisition lots

        Args:
            events: Transfer events in any order

        Returns:
            Mapping of asset id -> AcquisitionLot
        """
        ordered = order_events(e for e in events if e.quantity != 0)
        prices = self._acquisition_prices(ordered)
        lots: Dict[str, AcquisitionLot] = {}

        for i, event in enumerate(ordered):
            asset_id = event.asset.asset_id
            if event.is_acquisition:
                lot = lots.get(asset_id)
                if lot is None:
                    lot = AcquisitionLot(asset=event.asset)
                    lots[asset_id] = lot
                self._apply_acquisition(lot, event, prices.get(i))
            else:
                lot = lots.get(asset_id)
                if lot is None:
                    logger.debug(f"Disposal of {asset_id} with no tracked acquisition; ignored")
                    continue
                self._apply_disposal(lot, event)

        unpriced = [a for a, lot in lots.items() if lot.unpriced_quantity > 0]
        if unpriced:
            logger.info(f"{len(unpriced)} assets have inflows entered at zero cost: {unpriced}")
        return lots

    @staticmethod
    def _apply_acquisition(lot: AcquisitionLot, event: TransferEvent, price: Optional[float]) -> None:
        qty = float(event.quantity)
        unit = price if price is not None else 0.0
        old_qty = lot.remaining_quantity
        new_qty = old_qty + qty
        lot.weighted_average_unit_cost = (lot.weighted_average_unit_cost * old_qty + unit * qty) / new_qty
        lot.remaining_quantity = new_qty
        lot.acquired_quantity += qty
        if price is None:
            lot.unpriced_quantity += qty
        ts = to_utc(event.timestamp)
        if lot.first_acquired_at is None or ts < lot.first_acquired_at:
            lot.first_acquired_at = ts

    @staticmethod
    def _apply_disposal(lot: AcquisitionLot, event: TransferEvent) -> None:
        qty = -float(event.quantity)
        reduced = min(qty, lot.remaining_quantity)
        lot.remaining_quantity -= reduced
        lot.disposed_quantity += reduced
        if reduced < qty:
            logger.debug(
                f"Disposal of {qty} {lot.asset.symbol} exceeds tracked {reduced}; clamped to zero"
            )

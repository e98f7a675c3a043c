#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""
Seed (default) price table loader.

CSV format expected at config/seed_prices.csv:
asset_id,symbol,name,price_usd
So11111111111111111111111111111111111111112,SOL,Solana,150
...

Notes:
- Lines starting with '#' are ignored.
- Header row is required.
- Duplicate asset ids overwrite earlier entries (last wins).
- Ethereum-style ids (0x...) are matched case-insensitively.
- Rows with a non-positive or non-numeric price are skipped.

These prices are static guesses. They are the last fallback tier of the
price resolver and never an authoritative source.
"""
from __future__ import annotations

import csv
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, List, Optional

from ..shared.errors import ValuationError
from ..shared.utils import normalize_asset_id


@dataclass(frozen=True)
class SeedPrice:
    asset_id: str
    symbol: str
    name: str
    price_usd: float


class SeedTableError(ValuationError):
    pass


class SeedPriceTable:
    def __init__(self, records: List[SeedPrice]) -> None:
        self._by_id: Dict[str, SeedPrice] = {}
        for rec in records:
            self._by_id[normalize_asset_id(rec.asset_id)] = rec

    def get(self, asset_id: str) -> Optional[SeedPrice]:
        if not asset_id:
            return None
        return self._by_id.get(normalize_asset_id(asset_id))

    def price_for(self, asset_id: str) -> Optional[float]:
        rec = self.get(asset_id)
        return rec.price_usd if rec else None

    def __contains__(self, asset_id: str) -> bool:
        return self.get(asset_id) is not None

    def __len__(self) -> int:
        return len(self._by_id)


def load_seed_prices(csv_path: str | Path) -> SeedPriceTable:
    p = Path(csv_path)
    if not p.exists():
        raise SeedTableError(f"Seed price file not found: {p}")

    records: List[SeedPrice] = []
    with p.open("r", encoding="utf-8") as f:
        reader = csv.reader(f)
        header_seen = False
        for row in reader:
            if not row:
                continue
            if row[0].strip().startswith("#"):
                continue
            if not header_seen:
                header_seen = True
                if len(row) < 4:
                    raise SeedTableError("Invalid seed price header: expected 4 columns: asset_id,symbol,name,price_usd")
                continue
            if len(row) < 4:
                continue
            asset_id = row[0].strip()
            symbol = row[1].strip()
            name = row[2].strip()
            try:
                price = float(row[3].strip())
            except ValueError:
                continue
            if not asset_id or price <= 0:
                continue
            records.append(SeedPrice(asset_id=asset_id, symbol=symbol or "Unknown", name=name or symbol, price_usd=price))
    if not records:
        raise SeedTableError("Seed price table is empty after parsing")
    return SeedPriceTable(records)

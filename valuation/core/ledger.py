#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""
Ledger sources: normalized balances and transfer history for one wallet.

The engine only depends on LedgerSource; how the data is indexed upstream is
not its concern. JsonLedgerSource reads a normalized dump, either one wallet
per file or several under a "wallets" mapping:

{
  "address": "7xKX...",
  "chain": "solana",
  "native_quantity": 2.5,
  "tokens": [
    {"asset_id": "EPjF...", "symbol": "USDC", "name": "USD Coin",
     "decimals": 6, "raw_quantity": 1500000}
  ],
  "transfers": [
    {"asset_id": "EPjF...", "symbol": "USDC", "decimals": 6,
     "quantity": 1.5, "timestamp": "2025-01-10T12:00:00Z",
     "reference_id": "5h3...", "counterparty": "9yQ..."}
  ]
}

Transfer quantities are signed whole units (positive = received).
"""
from __future__ import annotations

import json
from pathlib import Path
from typing import Any, Dict, List, Optional

from ..shared.errors import UpstreamUnavailable
from ..shared.logging_setup import get_logger
from ..shared.models import Asset, BalanceSnapshot, TokenBalance, TransferEvent
from ..shared.utils import parse_datetime, safe_float

logger = get_logger(__name__)


class LedgerSource:
    name = "base"

    def get_balances(self, address: str) -> BalanceSnapshot:
        raise NotImplementedError

    def get_transfer_history(self, address: str, max_events: int) -> List[TransferEvent]:
        raise NotImplementedError


def _asset_from(raw: Dict[str, Any]) -> Asset:
    return Asset(
        asset_id=str(raw.get("asset_id") or "").strip(),
        symbol=str(raw.get("symbol") or "Unknown"),
        name=str(raw.get("name") or raw.get("symbol") or "Unknown Token"),
        decimals=int(raw.get("decimals") or 0),
    )


class JsonLedgerSource(LedgerSource):
    name = "json"

    def __init__(self, path: str | Path):
        self.path = Path(path)
        self._wallets: Optional[Dict[str, Dict[str, Any]]] = None

    def _load(self) -> Dict[str, Dict[str, Any]]:
        if self._wallets is not None:
            return self._wallets
        try:
            with open(self.path, "r", encoding="utf-8") as f:
                raw = json.load(f)
        except (OSError, json.JSONDecodeError) as e:
            raise UpstreamUnavailable(self.name, f"cannot read {self.path}: {e}")
        if not isinstance(raw, dict):
            raise UpstreamUnavailable(self.name, f"{self.path} is not a JSON object")

        if isinstance(raw.get("wallets"), dict):
            wallets = {str(k): v for k, v in raw["wallets"].items() if isinstance(v, dict)}
        elif raw.get("address"):
            wallets = {str(raw["address"]): raw}
        else:
            raise UpstreamUnavailable(self.name, f"{self.path} has neither 'wallets' nor 'address'")
        self._wallets = wallets
        logger.debug(f"Loaded {len(wallets)} wallets from {self.path}")
        return wallets

    def _wallet(self, address: str) -> Dict[str, Any]:
        wallets = self._load()
        wallet = wallets.get(address)
        if wallet is None:
            # Hex addresses are case-insensitive
            lowered = {k.lower(): v for k, v in wallets.items() if k.lower().startswith("0x")}
            wallet = lowered.get(address.lower())
        if wallet is None:
            raise UpstreamUnavailable(self.name, f"no ledger data for {address}")
        return wallet

    def get_balances(self, address: str) -> BalanceSnapshot:
        wallet = self._wallet(address)
        tokens = []
        for item in wallet.get("tokens") or []:
            try:
                asset = _asset_from(item)
            except ValueError as e:
                logger.warning(f"Skipping malformed token balance {item}: {e}")
                continue
            tokens.append(TokenBalance(asset=asset, raw_quantity=safe_float(item.get("raw_quantity"))))
        return BalanceSnapshot(native_quantity=safe_float(wallet.get("native_quantity")), tokens=tokens)

    def get_transfer_history(self, address: str, max_events: int) -> List[TransferEvent]:
        wallet = self._wallet(address)
        events: List[TransferEvent] = []
        for item in wallet.get("transfers") or []:
            try:
                events.append(TransferEvent(
                    asset=_asset_from(item),
                    quantity=float(item.get("quantity")),
                    timestamp=parse_datetime(item.get("timestamp")),
                    reference_id=str(item.get("reference_id") or ""),
                    counterparty=item.get("counterparty"),
                ))
            except (TypeError, ValueError) as e:
                logger.warning(f"Skipping malformed transfer {item}: {e}")
        events = [e for e in events if e.timestamp is not None]
        events.sort(key=lambda e: e.timestamp, reverse=True)
        return events[:max_events]

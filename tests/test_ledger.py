#!/usr/bin/env python3
"""
Tests for the JSON ledger source.
"""
import json

import pytest

from valuation.core.ledger import JsonLedgerSource
from valuation.shared.errors import UpstreamUnavailable

from fakes import WALLET

USDC = "EPjFWdd5AufqSSqeM2qN1xzybapC8G4wEGGkZwyTDt1v"
ETH_WALLET = "0xAbCdEf0123456789aBcDeF0123456789AbCdEf01"


def write_ledger(tmp_path, doc):
    p = tmp_path / "ledger.json"
    p.write_text(json.dumps(doc), encoding="utf-8")
    return JsonLedgerSource(p)


def single_wallet():
    return {
        "address": WALLET,
        "chain": "solana",
        "native_quantity": 2.5,
        "tokens": [
            {"asset_id": USDC, "symbol": "USDC", "name": "USD Coin", "decimals": 6, "raw_quantity": 1500000},
            {"asset_id": "", "symbol": "BROKEN"},
        ],
        "transfers": [
            {"asset_id": USDC, "symbol": "USDC", "decimals": 6, "quantity": 1.5,
             "timestamp": "2025-01-10T12:00:00Z", "reference_id": "sig-old"},
            {"asset_id": USDC, "symbol": "USDC", "decimals": 6, "quantity": -0.5,
             "timestamp": 1738368000, "reference_id": "sig-new"},
            {"asset_id": USDC, "symbol": "USDC", "quantity": "lots", "timestamp": "2025-01-11T00:00:00Z"},
            {"asset_id": USDC, "symbol": "USDC", "quantity": 1.0, "timestamp": "not a date"},
        ],
    }


def test_balances_are_scaled_by_decimals(tmp_path):
    """Test raw token quantities scaled by decimals"""
    ledger = write_ledger(tmp_path, single_wallet())
    snapshot = ledger.get_balances(WALLET)
    assert snapshot.native_quantity == 2.5
    assert len(snapshot.tokens) == 1
    assert snapshot.tokens[0].quantity == pytest.approx(1.5)


def test_history_is_newest_first_and_skips_malformed(tmp_path):
    """Test history ordering and malformed row handling"""
    ledger = write_ledger(tmp_path, single_wallet())
    events = ledger.get_transfer_history(WALLET, max_events=10)
    assert [e.reference_id for e in events] == ["sig-new", "sig-old"]
    assert events[0].is_disposal
    assert ledger.get_transfer_history(WALLET, max_events=1)[0].reference_id == "sig-new"


def test_multi_wallet_document_and_hex_case(tmp_path):
    """Test wallet lookup in a multi-wallet document"""
    ledger = write_ledger(tmp_path, {"wallets": {
        ETH_WALLET: {"native_quantity": 1.0},
        WALLET: {"native_quantity": 3.0},
    }})
    assert ledger.get_balances(ETH_WALLET.lower()).native_quantity == 1.0
    assert ledger.get_balances(WALLET).native_quantity == 3.0
    # Base58 is case-sensitive
    with pytest.raises(UpstreamUnavailable):
        ledger.get_balances(WALLET.lower())


def test_unknown_wallet_raises(tmp_path):
    """Test error for a wallet missing from the ledger"""
    with pytest.raises(UpstreamUnavailable):
        write_ledger(tmp_path, single_wallet()).get_balances("somebody-else")


def test_unreadable_file_raises(tmp_path):
    """Test error for broken or missing ledger files"""
    p = tmp_path / "ledger.json"
    p.write_text("[1, 2", encoding="utf-8")
    with pytest.raises(UpstreamUnavailable):
        JsonLedgerSource(p).get_balances(WALLET)
    with pytest.raises(UpstreamUnavailable):
        JsonLedgerSource(tmp_path / "missing.json").get_transfer_history(WALLET, 10)


def test_document_without_wallets_raises(tmp_path):
    """Test error for a document with no wallet data"""
    with pytest.raises(UpstreamUnavailable):
        write_ledger(tmp_path, {"tokens": []}).get_balances(WALLET)


def test_hex_token_ids_are_lowercased_and_base58_kept(tmp_path):
    """Test asset id casing for hex and base58 tokens"""
    ledger = write_ledger(tmp_path, {"wallets": {ETH_WALLET: {
        "tokens": [{"asset_id": "0xA0b86991c6218b36c1d19D4a2e9Eb0cE3606eB48", "symbol": "USDC", "raw_quantity": 3}],
        "transfers": [{"asset_id": USDC, "symbol": "USDC", "quantity": 1.0, "timestamp": "2025-01-10T12:00:00Z"}],
    }}})
    assert ledger.get_balances(ETH_WALLET).tokens[0].asset.asset_id == "0xa0b86991c6218b36c1d19d4a2e9eb0ce3606eb48"
    assert ledger.get_transfer_history(ETH_WALLET, 10)[0].asset.asset_id == USDC

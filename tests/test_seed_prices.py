#!/usr/bin/env python3
"""
Tests for the seed price CSV loader and its price source.
"""
from pathlib import Path

import pytest

from valuation.core.price_source import SeedPriceSource
from valuation.core.seed_prices import SeedTableError, load_seed_prices

from fakes import SOL_ID

SHIPPED = Path(__file__).resolve().parents[1] / "config" / "seed_prices.csv"


def write(tmp_path, text):
    p = tmp_path / "seed.csv"
    p.write_text(text, encoding="utf-8")
    return p


def test_shipped_table_loads():
    """Test the shipped seed price table"""
    table = load_seed_prices(SHIPPED)
    assert SOL_ID in table
    assert table.price_for(SOL_ID) > 0


def test_comments_bad_rows_and_case_insensitive_hex(tmp_path):
    """Test seed CSV parsing rules"""
    p = write(tmp_path, "\n".join([
        "# static guesses",
        "asset_id,symbol,name,price_usd",
        "0xABCdef0000000000000000000000000000000001,FOO,Foo,2.5",
        "MintAAA,BAR,Bar,notanumber",
        "MintBBB,BAZ,Baz,0",
        "short,row",
        "MintCCC,QUX,Qux,0.75",
        "MintCCC,QUX,Qux,0.80",
    ]))
    table = load_seed_prices(p)
    assert len(table) == 2
    assert table.price_for("0xabcdef0000000000000000000000000000000001") == 2.5
    assert table.price_for("MintCCC") == 0.80
    assert table.price_for("mintccc") is None
    assert table.get("MintAAA") is None
    assert table.get("") is None


def test_missing_file_raises(tmp_path):
    """Test error for a missing seed table"""
    with pytest.raises(SeedTableError):
        load_seed_prices(tmp_path / "nope.csv")


def test_empty_table_raises(tmp_path):
    """Test error for a table with no rows"""
    with pytest.raises(SeedTableError):
        load_seed_prices(write(tmp_path, "asset_id,symbol,name,price_usd\n"))


def test_short_header_raises(tmp_path):
    """Test error for a header missing columns"""
    with pytest.raises(SeedTableError):
        load_seed_prices(write(tmp_path, "asset_id,price\nA,1\n"))


def test_seed_source_answers_known_ids_only(tmp_path):
    """Test seed source lookups"""
    table = load_seed_prices(write(tmp_path, "asset_id,symbol,name,price_usd\nA,A,A,3\n"))
    source = SeedPriceSource(table=table)
    assert source.get_current_prices(["A", "B"]) == {"A": (3.0, None)}

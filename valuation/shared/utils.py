#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""
Utility Functions for the Wallet Valuation Engine
Shared helpers for time handling and data processing.
"""

from datetime import datetime, timezone, timedelta
from typing import Any, Iterable, Iterator, List, Optional, TypeVar

T = TypeVar("T")


def to_utc(dt: datetime) -> datetime:
    """Return dt as an aware UTC datetime (naive values are assumed UTC)."""
    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def parse_datetime(value: Any) -> Optional[datetime]:
    """
    Parse datetime from various formats

    Args:
        value: ISO string, epoch seconds/milliseconds, datetime, or None

    Returns:
        Aware UTC datetime or None

    Raises:
        ValueError: If datetime format is invalid
    """
    if value is None:
        return None

    if isinstance(value, datetime):
        return to_utc(value)

    if isinstance(value, bool):
        raise ValueError(f"Datetime must be string, number or datetime object, got {type(value)}")

    if isinstance(value, (int, float)):
        # Values past ~2001-09 in ms are > 1e12
        seconds = value / 1000.0 if value > 1e11 else float(value)
        return datetime.fromtimestamp(seconds, tz=timezone.utc)

    if isinstance(value, str):
        text = value.strip()
        if text.endswith("Z"):
            text = text[:-1] + "+00:00"
        try:
            return to_utc(datetime.fromisoformat(text))
        except ValueError:
            pass

        formats = [
            "%Y-%m-%d %H:%M:%S",
            "%d-%m-%Y",
        ]
        for fmt in formats:
            try:
                return datetime.strptime(value.strip(), fmt).replace(tzinfo=timezone.utc)
            except ValueError:
                continue

        raise ValueError(f"Invalid datetime format: {value}. Expected ISO format like '2025-02-01T00:00:00Z'")

    raise ValueError(f"Datetime must be string, number or datetime object, got {type(value)}")


def timestamp_to_datetime(timestamp_ms: int) -> datetime:
    """Convert millisecond timestamp to UTC datetime"""
    return datetime.fromtimestamp(timestamp_ms / 1000.0, tz=timezone.utc)


def datetime_to_timestamp(dt: datetime) -> int:
    """Convert datetime to millisecond timestamp"""
    return int(to_utc(dt).timestamp() * 1000)


def day_key(dt: datetime) -> str:
    """YYYY-MM-DD of the UTC day containing dt"""
    return to_utc(dt).strftime("%Y-%m-%d")


def days_between(start: datetime, end: datetime) -> float:
    return (to_utc(end) - to_utc(start)) / timedelta(days=1)


def chunked(items: Iterable[T], size: int) -> Iterator[List[T]]:
    """
    Split items into lists of at most `size` elements, preserving order

    Raises:
        ValueError: If size is not positive
    """
    if size <= 0:
        raise ValueError(f"chunk size must be positive, got {size}")
    batch: List[T] = []
    for item in items:
        batch.append(item)
        if len(batch) >= size:
            yield batch
            batch = []
    if batch:
        yield batch


def dedupe(items: Iterable[T]) -> List[T]:
    """Drop repeated items, keeping first-seen order"""
    seen = set()
    out: List[T] = []
    for item in items:
        if item in seen:
            continue
        seen.add(item)
        out.append(item)
    return out


def safe_float(value: Any, default: float = 0.0) -> float:
    """
    Safely convert value to float

    Args:
        value: Value to convert
        default: Default value if conversion fails

    Returns:
        Float value or default
    """
    if value is None:
        return default

    try:
        return float(value)
    except (ValueError, TypeError):
        return default


def clamp(value: float, low: float, high: float) -> float:
    return max(low, min(high, value))


def calculate_percentage_change(old_value: float, new_value: float) -> Optional[float]:
    """
    Calculate percentage change between two values

    Returns:
        Percentage change or None if old_value is zero
    """
    if old_value == 0:
        return None

    return ((new_value - old_value) / old_value) * 100


def normalize_asset_id(asset_id: str) -> str:
    """
    Canonical form of an asset identifier

    Hex (0x...) contract addresses are case-insensitive and are lowercased;
    base58 mints are case-sensitive and only stripped.
    """
    if not asset_id:
        return ""
    a = str(asset_id).strip()
    return a.lower() if a[:2].lower() == "0x" else a

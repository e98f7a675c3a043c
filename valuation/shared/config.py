#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""
Configuration System for the Wallet Valuation Engine
Handles YAML configuration loading, validation, and type conversion.

Every field carries a default, so EngineSettings() is usable without a file.
"""

import os
import re
import yaml
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, List, Optional, Any
import logging

from .errors import ValuationError


VALID_LOG_LEVELS = ["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]
KNOWN_PRICE_SOURCES = {"jupiter", "coingecko", "snapshot", "seed"}
HTTP_PRICE_SOURCES = {"jupiter", "coingecko"}


class ConfigError(ValuationError):
    """Configuration-related errors"""
    pass


@dataclass
class ChainConfig:
    """Native asset and address shape for one supported chain"""
    native_asset_id: str
    native_symbol: str
    native_name: str
    native_decimals: int = 9
    address_pattern: str = r"^\S+$"

    def __post_init__(self):
        if not self.native_asset_id:
            raise ValueError("native_asset_id cannot be empty")
        if self.native_decimals < 0:
            raise ValueError("native_decimals cannot be negative")
        try:
            re.compile(self.address_pattern)
        except re.error as e:
            raise ValueError(f"address_pattern is not a valid regex: {e}")


def _default_chains() -> Dict[str, ChainConfig]:
    return {
        "solana": ChainConfig(
            native_asset_id="So11111111111111111111111111111111111111112",
            native_symbol="SOL",
            native_name="Solana",
            native_decimals=9,
            address_pattern=r"^[1-9A-HJ-NP-Za-km-z]{32,44}$",
        ),
        "ethereum": ChainConfig(
            native_asset_id="0x0000000000000000000000000000000000000000",
            native_symbol="ETH",
            native_name="Ethereum",
            native_decimals=18,
            address_pattern=r"^0x[a-fA-F0-9]{40}$",
        ),
    }


@dataclass
class PricesConfig:
    """Price source ordering, endpoints and backpressure settings"""
    sources: List[str] = field(default_factory=lambda: ["jupiter", "coingecko", "snapshot", "seed"])
    endpoints: Dict[str, str] = field(default_factory=lambda: {
        "jupiter": "https://price.jup.ag/v4/price",
        "coingecko": "https://api.coingecko.com/api/v3",
    })
    api_key_env: str = "COINGECKO_API_KEY"
    timeout_s: float = 5.0
    retries: int = 0  # extra attempts after the first; 0 = one request per call
    inter_chunk_delay_s: float = 0.1
    historical_window_days: float = 7.0
    batch_sizes: Dict[str, int] = field(default_factory=lambda: {"jupiter": 100, "coingecko": 250})
    max_concurrency: Dict[str, int] = field(default_factory=lambda: {"jupiter": 4, "coingecko": 2})

    def __post_init__(self):
        """Validate source names and limits"""
        self.sources = [str(s).strip().lower() for s in (self.sources or []) if str(s).strip()]
        if not self.sources:
            raise ValueError("prices.sources must list at least one source")
        unknown = [s for s in self.sources if s not in KNOWN_PRICE_SOURCES]
        if unknown:
            raise ValueError(f"Unknown price sources {unknown}; expected a subset of {sorted(KNOWN_PRICE_SOURCES)}")
        if len(set(self.sources)) != len(self.sources):
            raise ValueError("prices.sources must not contain duplicates")
        missing = [s for s in self.sources if s in HTTP_PRICE_SOURCES and not self.endpoints.get(s)]
        if missing:
            raise ValueError(f"prices.endpoints has no URL for {missing}")
        if self.timeout_s <= 0:
            raise ValueError("prices.timeout_s must be positive")
        if self.retries < 0:
            raise ValueError("prices.retries cannot be negative")
        if self.inter_chunk_delay_s < 0:
            raise ValueError("prices.inter_chunk_delay_s cannot be negative")
        if self.historical_window_days <= 0:
            raise ValueError("prices.historical_window_days must be positive")
        for name, size in self.batch_sizes.items():
            if int(size) < 1:
                raise ValueError(f"prices.batch_sizes[{name}] must be >= 1")
        for name, cap in self.max_concurrency.items():
            if int(cap) < 1:
                raise ValueError(f"prices.max_concurrency[{name}] must be >= 1")

    def batch_size_for(self, source: str, default: int = 50) -> int:
        return int(self.batch_sizes.get(source, default))

    def concurrency_for(self, source: str, default: int = 2) -> int:
        return int(self.max_concurrency.get(source, default))

    def api_key(self) -> Optional[str]:
        if not self.api_key_env:
            return None
        return os.getenv(self.api_key_env) or None


@dataclass
class CacheConfig:
    current_price_ttl_s: float = 300.0
    portfolio_ttl_s: float = 900.0

    def __post_init__(self):
        if self.current_price_ttl_s <= 0:
            raise ValueError("cache.current_price_ttl_s must be positive")
        if self.portfolio_ttl_s <= 0:
            raise ValueError("cache.portfolio_ttl_s must be positive")


@dataclass
class SnapshotConfig:
    """On-disk market snapshot (asset id -> market id, price, daily history)"""
    path: str = "cache/market_snapshot.json"
    max_age_hours: float = 24.0
    refresh_interval_hours: float = 24.0
    pages: int = 4
    page_delay_s: float = 0.5
    history_top_rank: int = 50
    history_days: int = 30
    platforms: List[str] = field(default_factory=lambda: ["solana", "ethereum"])
    # Native assets have no contract platform entry on CoinGecko
    pinned_ids: Dict[str, str] = field(default_factory=lambda: {
        "So11111111111111111111111111111111111111112": "solana",
        "0x0000000000000000000000000000000000000000": "ethereum",
    })

    def __post_init__(self):
        if self.max_age_hours <= 0:
            raise ValueError("snapshot.max_age_hours must be positive")
        if self.refresh_interval_hours <= 0:
            raise ValueError("snapshot.refresh_interval_hours must be positive")
        if self.pages < 1:
            raise ValueError("snapshot.pages must be >= 1")
        if self.history_top_rank < 0 or self.history_days < 1:
            raise ValueError("snapshot.history_top_rank must be >= 0 and history_days >= 1")


@dataclass
class SeedPricesConfig:
    enabled: bool = True
    path: str = "config/seed_prices.csv"


@dataclass
class PerformanceConfig:
    top_movers: int = 5
    allocation_top_n: int = 4
    dust_placeholder_base_usd: float = 0.01
    dust_placeholder_max_usd: float = 1.0

    def __post_init__(self):
        if self.top_movers < 1:
            raise ValueError("performance.top_movers must be >= 1")
        if self.allocation_top_n < 1:
            raise ValueError("performance.allocation_top_n must be >= 1")
        if self.dust_placeholder_base_usd <= 0:
            raise ValueError("performance.dust_placeholder_base_usd must be positive")
        if self.dust_placeholder_max_usd < self.dust_placeholder_base_usd:
            raise ValueError("performance.dust_placeholder_max_usd must be >= dust_placeholder_base_usd")


@dataclass
class TimeSeriesConfig:
    bound_factor: float = 1.2
    min_points: int = 8
    max_points: int = 90
    volatility: float = 0.02
    start_fraction_min: float = 0.1
    start_fraction_max: float = 0.3
    default_history_days: int = 30
    windows: Dict[str, Optional[int]] = field(default_factory=lambda: {
        "all": None,
        "year": 365,
        "sixMonths": 182,
        "threeMonths": 91,
    })

    def __post_init__(self):
        """Validate curve bounds and window table"""
        if self.bound_factor < 1.0:
            raise ValueError("time_series.bound_factor must be >= 1.0")
        if self.min_points < 2:
            raise ValueError("time_series.min_points must be >= 2")
        if self.max_points < self.min_points:
            raise ValueError("time_series.max_points must be >= min_points")
        if self.volatility < 0.0:
            raise ValueError("time_series.volatility cannot be negative")
        if self.volatility > 0.0 and self.volatility >= self.bound_factor - 1.0:
            raise ValueError("time_series.volatility must stay below bound_factor - 1")
        if not (0.0 < self.start_fraction_min <= self.start_fraction_max <= 1.0):
            raise ValueError("time_series start fractions must satisfy 0 < min <= max <= 1")
        if self.default_history_days < 1:
            raise ValueError("time_series.default_history_days must be >= 1")
        if not self.windows:
            raise ValueError("time_series.windows cannot be empty")
        for name, days in self.windows.items():
            if days is not None and int(days) < 1:
                raise ValueError(f"time_series.windows[{name}] must be null or >= 1 day")


@dataclass
class HistoryConfig:
    max_events: int = 150
    recent_transfers: int = 20

    def __post_init__(self):
        if self.max_events < 1:
            raise ValueError("history.max_events must be >= 1")
        if self.recent_transfers < 0:
            raise ValueError("history.recent_transfers cannot be negative")


@dataclass
class TelemetryConfig:
    enabled: bool = False
    listen_address: str = "0.0.0.0"
    listen_port: int = 9108
    metric_prefix: str = "valuation_"

    def __post_init__(self):
        if not (1 <= self.listen_port <= 65535):
            raise ValueError("Port must be between 1 and 65535")


@dataclass
class EngineSettings:
    """Main engine configuration"""
    log_level: str = "INFO"
    chains: Dict[str, ChainConfig] = field(default_factory=_default_chains)
    prices: PricesConfig = field(default_factory=PricesConfig)
    cache: CacheConfig = field(default_factory=CacheConfig)
    snapshot: SnapshotConfig = field(default_factory=SnapshotConfig)
    seed_prices: SeedPricesConfig = field(default_factory=SeedPricesConfig)
    performance: PerformanceConfig = field(default_factory=PerformanceConfig)
    time_series: TimeSeriesConfig = field(default_factory=TimeSeriesConfig)
    history: HistoryConfig = field(default_factory=HistoryConfig)
    telemetry: TelemetryConfig = field(default_factory=TelemetryConfig)
    config_path: Optional[str] = None

    def __post_init__(self):
        if self.log_level.upper() not in VALID_LOG_LEVELS:
            raise ValueError(f"log_level must be one of: {VALID_LOG_LEVELS}")
        self.log_level = self.log_level.upper()
        if not self.chains:
            raise ValueError("At least one chain must be configured")
        self.chains = {str(k).strip().lower(): v for k, v in self.chains.items()}


def _section(raw: Dict[str, Any], name: str) -> Dict[str, Any]:
    value = raw.get(name) or {}
    if not isinstance(value, dict):
        raise ConfigError(f"'{name}' section must be a mapping")
    return value


def _pick(section: Dict[str, Any], cls) -> Dict[str, Any]:
    """Keep only keys the dataclass knows about; unknown keys are logged and dropped."""
    known = set(cls.__dataclass_fields__.keys())
    unknown = [k for k in section.keys() if k not in known]
    if unknown:
        logging.getLogger(__name__).warning(f"Ignoring unknown {cls.__name__} keys: {unknown}")
    return {k: v for k, v in section.items() if k in known}


def _build_settings(raw: Dict[str, Any], path: Optional[Path] = None) -> EngineSettings:
    try:
        settings_raw = _section(raw, "settings")
        chains_raw = _section(raw, "chains")
        chains = {
            name: ChainConfig(**_pick(c or {}, ChainConfig))
            for name, c in chains_raw.items()
        } if chains_raw else _default_chains()

        runtime_raw = _section(raw, "runtime")
        telemetry_raw = runtime_raw.get("telemetry") or {}
        if not isinstance(telemetry_raw, dict):
            raise ConfigError("'runtime.telemetry' must be a mapping")

        return EngineSettings(
            log_level=str(settings_raw.get("log_level", "INFO")),
            chains=chains,
            prices=PricesConfig(**_pick(_section(raw, "prices"), PricesConfig)),
            cache=CacheConfig(**_pick(_section(raw, "cache"), CacheConfig)),
            snapshot=SnapshotConfig(**_pick(_section(raw, "snapshot"), SnapshotConfig)),
            seed_prices=SeedPricesConfig(**_pick(_section(raw, "seed_prices"), SeedPricesConfig)),
            performance=PerformanceConfig(**_pick(_section(raw, "performance"), PerformanceConfig)),
            time_series=TimeSeriesConfig(**_pick(_section(raw, "time_series"), TimeSeriesConfig)),
            history=HistoryConfig(**_pick(_section(raw, "history"), HistoryConfig)),
            telemetry=TelemetryConfig(**_pick(telemetry_raw, TelemetryConfig)),
            config_path=str(path) if path else None,
        )
    except ConfigError:
        raise
    except (ValueError, TypeError) as e:
        raise ConfigError(f"Configuration validation failed: {e}")


def load_settings(config_path: str | Path) -> EngineSettings:
    """
    Load and validate engine configuration from a YAML file

    Args:
        config_path: Path to YAML configuration file

    Returns:
        Validated EngineSettings instance

    Raises:
        ConfigError: If the file is missing, unparsable or invalid
    """
    path = Path(config_path)
    if not path.exists():
        raise ConfigError(f"Configuration file not found: {config_path}")

    try:
        with open(path, "r", encoding="utf-8") as f:
            raw = yaml.safe_load(f) or {}
    except yaml.YAMLError as e:
        raise ConfigError(f"Invalid YAML in {config_path}: {e}")

    if not isinstance(raw, dict):
        raise ConfigError(f"Configuration must be a YAML mapping, got {type(raw)}")

    return _build_settings(raw, path)

#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""
Wallet valuation runner.
- Loads settings
- Builds the engine (cache, market snapshot, price sources, resolver)
- Analyzes one wallet from a normalized ledger JSON dump and prints the report
- Optionally serves Prometheus /metrics (prometheus_client) afterwards

Usage examples:
  python -m valuation.main --help
  python -m valuation.main --ledger wallet.json --address 7xKX... --chain solana
  python -m valuation.main --ledger wallet.json --address 0xab... --chain ethereum --window year
  python -m valuation.main --ledger wallet.json --address 7xKX... --offline  # no snapshot refresh
"""
from __future__ import annotations

import argparse
import json
import logging
import sys
import time
from pathlib import Path
from typing import Optional, Sequence

from .core.engine import AnalysisRequest, build_engine
from .core.ledger import JsonLedgerSource
from .core.metrics import EngineMetrics
from .shared.colored_logging import setup_colored_logging
from .shared.config import ConfigError, EngineSettings, load_settings
from .shared.errors import InvalidInputError, TotalFailureError


def main(
    ledger_path: str,
    address: str,
    chain: str = "solana",
    config_path: Optional[str] = None,
    window: str = "all",
    windows: Optional[Sequence[str]] = None,
    force_refresh: bool = False,
    offline: bool = False,
    serve_metrics: bool = False,
    output: Optional[str] = None,
    log_level: Optional[int] = None,
) -> int:
    base = Path(__file__).resolve().parents[1]
    default_cfg = base / 'config' / 'valuation_config.yaml'
    cfg_path = Path(config_path) if config_path else default_cfg

    setup_colored_logging(level=log_level if log_level is not None else logging.INFO)
    log = logging.getLogger(__name__)

    try:
        settings = load_settings(cfg_path) if cfg_path.exists() or config_path else EngineSettings()
    except ConfigError as e:
        print(f"Failed to load configuration: {e}")
        return 2
    if log_level is None:
        logging.getLogger().setLevel(getattr(logging, settings.log_level, logging.INFO))
    if not cfg_path.exists():
        log.info(f"No configuration at {cfg_path}; using defaults")

    metrics = EngineMetrics(settings.telemetry)
    serve = serve_metrics or settings.telemetry.enabled
    engine = build_engine(
        settings,
        [JsonLedgerSource(ledger_path)],
        root=base,
        metrics=metrics,
        refresh_snapshot=not offline,
    )

    request = AnalysisRequest(
        address=address,
        chain=chain,
        windows=tuple(windows) if windows else None,
        selected_window=window,
        force_refresh=force_refresh,
    )
    try:
        portfolio = engine.analyze(request)
    except InvalidInputError as e:
        print(f"Invalid request: {e}")
        return 2
    except TotalFailureError as e:
        print(f"Analysis failed: {e}")
        return 1

    payload = json.dumps(portfolio.to_dict(), indent=2)
    if output:
        out = Path(output)
        out.parent.mkdir(parents=True, exist_ok=True)
        out.write_text(payload + "\n", encoding="utf-8")
        log.info(f"Report written to {out}")
    else:
        print(payload)

    if serve:
        metrics.start_http()
        snapshot = engine.resolver.snapshot
        if snapshot is not None and not offline:
            snapshot.start_auto_refresh()
        try:
            # Keep main thread alive
            while True:
                time.sleep(3600)
        except KeyboardInterrupt:
            metrics.stop_http()
            if snapshot is not None:
                snapshot.stop_auto_refresh()
    return 0


if __name__ == '__main__':
    parser = argparse.ArgumentParser(description='Wallet Valuation Engine')
    parser.add_argument('--ledger', type=str, required=True, help='Normalized ledger JSON (balances + transfers)')
    parser.add_argument('--address', type=str, required=True, help='Wallet address to analyze')
    parser.add_argument('--chain', type=str, default='solana', help='Chain key from the configuration (solana, ethereum)')
    parser.add_argument('--config', type=str, default=None, help='Path to valuation_config.yaml')
    parser.add_argument('--window', type=str, default='all', help='Selected time window (all, year, sixMonths, threeMonths)')
    parser.add_argument('--windows', type=str, default=None, help='Comma-separated windows to build (default: all configured)')
    parser.add_argument('--force-refresh', action='store_true', help='Bypass the portfolio cache')
    parser.add_argument('--offline', action='store_true', help='Do not refresh a stale market snapshot from upstream')
    parser.add_argument('--serve-metrics', action='store_true', help='Serve /metrics after the analysis until interrupted')
    parser.add_argument('--output', type=str, default=None, help='Write the JSON report here instead of stdout')
    parser.add_argument('--log-level', type=str, default=None, choices=['DEBUG', 'INFO', 'WARNING', 'ERROR', 'CRITICAL'], help='Logging level (default: from config)')
    args = parser.parse_args()
    level = getattr(logging, args.log_level.upper()) if args.log_level else None
    sys.exit(main(
        ledger_path=args.ledger,
        address=args.address,
        chain=args.chain,
        config_path=args.config,
        window=args.window,
        windows=[w.strip() for w in args.windows.split(',') if w.strip()] if args.windows else None,
        force_refresh=args.force_refresh,
        offline=args.offline,
        serve_metrics=args.serve_metrics,
        output=args.output,
        log_level=level,
    ))

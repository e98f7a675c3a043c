#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""
Engine metrics on a private prometheus_client registry.

Counters cover price resolutions per source, unavailable prices, upstream
failures, cache lookups per tier and analyses per outcome; a histogram
tracks analysis latency. start_http() serves /metrics from a daemon thread.
"""
from __future__ import annotations

import logging
import threading
from dataclasses import dataclass
from http.server import BaseHTTPRequestHandler, HTTPServer
from typing import Optional

from prometheus_client import CONTENT_TYPE_LATEST, CollectorRegistry, Counter, Histogram, generate_latest

from ..shared.config import TelemetryConfig


@dataclass
class MetricHandles:
    price_resolutions: Counter
    price_unavailable: Counter
    source_failures: Counter
    cache_lookups: Counter
    analyses: Counter
    analysis_seconds: Histogram


class EngineMetrics:
    def __init__(self, config: Optional[TelemetryConfig] = None) -> None:
        self.config = config or TelemetryConfig()
        self.registry = CollectorRegistry()
        self.log = logging.getLogger(__name__)
        pfx = self.config.metric_prefix
        self.metrics = MetricHandles(
            price_resolutions=Counter(f"{pfx}price_resolutions", "Prices resolved, by winning source", ['source'], registry=self.registry),
            price_unavailable=Counter(f"{pfx}price_unavailable", "Price lookups no source could answer", ['kind'], registry=self.registry),
            source_failures=Counter(f"{pfx}source_failures", "Upstream price source failures", ['source', 'reason'], registry=self.registry),
            cache_lookups=Counter(f"{pfx}cache_lookups", "Cache lookups by tier and result", ['tier', 'result'], registry=self.registry),
            analyses=Counter(f"{pfx}analyses", "Wallet analyses by outcome", ['chain', 'outcome'], registry=self.registry),
            analysis_seconds=Histogram(f"{pfx}analysis_seconds", "Wall time of one wallet analysis", ['chain'],
                                       buckets=(0.1, 0.5, 1.0, 2.5, 5.0, 10.0, 30.0, 60.0), registry=self.registry),
        )
        self._server: Optional[HTTPServer] = None

    def record_price_resolution(self, source: str) -> None:
        self.metrics.price_resolutions.labels(source=source).inc()

    def record_price_unavailable(self, kind: str) -> None:
        self.metrics.price_unavailable.labels(kind=kind).inc()

    def record_source_failure(self, source: str, reason: str) -> None:
        self.metrics.source_failures.labels(source=source, reason=reason).inc()

    def record_cache_lookup(self, tier: str, hit: bool) -> None:
        self.metrics.cache_lookups.labels(tier=tier, result="hit" if hit else "miss").inc()

    def record_analysis(self, chain: str, outcome: str, seconds: Optional[float] = None) -> None:
        self.metrics.analyses.labels(chain=chain, outcome=outcome).inc()
        if seconds is not None:
            self.metrics.analysis_seconds.labels(chain=chain).observe(seconds)

    def render(self) -> bytes:
        return generate_latest(self.registry)

    def start_http(self) -> HTTPServer:
        """Start an HTTP server exposing /metrics."""
        outer_self = self

        class Handler(BaseHTTPRequestHandler):  # type: ignore
            def log_message(self, format: str, *args) -> None:  # quiet logs
                return

            def do_GET(self_inner):  # type: ignore
                if self_inner.path.split("?", 1)[0] != "/metrics":
                    self_inner.send_response(404)
                    self_inner.end_headers()
                    return
                data = outer_self.render()
                self_inner.send_response(200)
                self_inner.send_header("Content-Type", CONTENT_TYPE_LATEST)
                self_inner.send_header("Content-Length", str(len(data)))
                self_inner.end_headers()
                self_inner.wfile.write(data)

        server = HTTPServer((self.config.listen_address, int(self.config.listen_port)), Handler)
        t = threading.Thread(target=server.serve_forever, daemon=True, name="MetricsHTTP")
        t.start()
        self._server = server
        self.log.info(f"Serving metrics on {self.config.listen_address}:{self.config.listen_port}/metrics")
        return server

    def stop_http(self) -> None:
        if self._server is not None:
            self._server.shutdown()
            self._server.server_close()
            self._server = None

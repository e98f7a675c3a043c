#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""
Error taxonomy for the valuation engine.

- UpstreamUnavailable: a price or ledger source failed or timed out. Always
  recovered from by the caller (next source, placeholder, degraded report).
- RateLimitedError: an upstream answered 429; the source is skipped for the
  rest of the current batch.
- InvalidInputError: malformed address, unsupported chain or unknown window.
  Raised before any upstream is contacted.
- TotalFailureError: no balance source could answer; no report can be built.
"""


class ValuationError(Exception):
    """Base class for engine errors"""
    pass


class UpstreamUnavailable(ValuationError):
    """A price or ledger source failed, returned garbage, or timed out"""

    def __init__(self, source: str, message: str = "") -> None:
        self.source = source
        super().__init__(f"{source}: {message}" if message else source)


class RateLimitedError(UpstreamUnavailable):
    """Upstream signalled 'too many requests'"""
    pass


class InvalidInputError(ValuationError):
    """Request failed validation"""
    pass


class TotalFailureError(ValuationError):
    """Every balance source failed"""
    pass

#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""
Synthetic valuation curves for charting.

Dense historical valuations are rarely available, so each window gets a
plausible curve instead:
- it ends exactly at the current value V
- it starts at a random 10-30% of V at max(window start, earliest activity)
- it follows a cubic upward trend with smoothed multiplicative noise
- every point lies in [0, V * bound_factor]

The random generator is seeded from the inputs (window, V, start and end
day), so the same request on the same day yields the same curve. Curves are
a presentation aid and are never fed back into performance figures.
"""
from __future__ import annotations

import hashlib
import math
from datetime import datetime, timedelta
from typing import List, Optional

import numpy as np
from scipy.ndimage import gaussian_filter1d

from ..shared.config import TimeSeriesConfig
from ..shared.models import TimePoint, TimeWindow, WindowBundle
from ..shared.utils import calculate_percentage_change, day_key, to_utc, utc_now


class TimeSeriesSynthesizer:
    def __init__(self, config: Optional[TimeSeriesConfig] = None):
        self.config = config or TimeSeriesConfig()

    def window_start(self, window: TimeWindow, earliest_activity: Optional[datetime],
                     now: datetime) -> datetime:
        candidates = []
        if window.days is not None:
            candidates.append(now - timedelta(days=window.days))
        if earliest_activity is not None:
            candidates.append(min(to_utc(earliest_activity), now))
        if not candidates:
            return now - timedelta(days=self.config.default_history_days)
        return max(candidates)

    def point_count(self, span_days: float) -> int:
        """Roughly one point per day, bounded by min_points/max_points."""
        days = int(math.ceil(max(span_days, 0.0)))
        return min(self.config.max_points, max(self.config.min_points, days + 1))

    @staticmethod
    def _seed(window: TimeWindow, anchor_value: float, start: datetime, end: datetime) -> int:
        key = f"{window.name}|{window.days}|{anchor_value:.6f}|{day_key(start)}|{day_key(end)}"
        return int.from_bytes(hashlib.sha256(key.encode("utf-8")).digest()[:8], "big")

    def synthesize(
        self,
        window: TimeWindow,
        anchor_value: float,
        earliest_activity: Optional[datetime],
        now: Optional[datetime] = None,
    ) -> List[TimePoint]:
        """
        Build the curve for one window

        Args:
            window: Named range; days=None is all-time
            anchor_value: Current portfolio value V (final point)
            earliest_activity: First known transfer, if any
            now: End of the curve (defaults to the current UTC time)

        Returns:
            Points in ascending time order
        """
        end = to_utc(now) if now is not None else utc_now()
        start = self.window_start(window, earliest_activity, end)
        span_days = (end - start) / timedelta(days=1)
        n = self.point_count(span_days)

        offsets = np.linspace(0.0, (end - start).total_seconds(), n)
        stamps = [start + timedelta(seconds=float(s)) for s in offsets]
        # Sub-daily spacing keeps the time of day so labels stay distinct
        label_fmt = "%Y-%m-%d" if span_days >= n - 1 else "%Y-%m-%d %H:%M"
        labels = [ts.strftime(label_fmt) for ts in stamps]

        if anchor_value <= 0:
            return [TimePoint(date=label, value=0.0) for label in labels]

        cfg = self.config
        rng = np.random.default_rng(self._seed(window, anchor_value, start, end))
        start_fraction = rng.uniform(cfg.start_fraction_min, cfg.start_fraction_max)

        progress = np.linspace(0.0, 1.0, n)
        trend = anchor_value * (start_fraction + (1.0 - start_fraction) * progress ** 3)

        noise = np.zeros(n)
        if cfg.volatility > 0 and n > 2:
            raw = rng.normal(0.0, cfg.volatility, n)
            sigma = max(1.0, n / 30.0)
            noise = np.clip(gaussian_filter1d(raw, sigma=sigma, mode='nearest'),
                            -cfg.volatility, cfg.volatility)

        values = np.clip(trend * (1.0 + noise), 0.0, anchor_value * cfg.bound_factor)
        values[-1] = anchor_value

        return [TimePoint(date=label, value=float(v)) for label, v in zip(labels, values)]

    def bundle(
        self,
        window: TimeWindow,
        anchor_value: float,
        earliest_activity: Optional[datetime],
        now: Optional[datetime] = None,
    ) -> WindowBundle:
        """Curve plus the start/end change it depicts."""
        curve = self.synthesize(window, anchor_value, earliest_activity, now)
        start_value = curve[0].value if curve else 0.0
        change_pct = calculate_percentage_change(start_value, anchor_value)
        return WindowBundle(
            window=window,
            curve=curve,
            start_value_usd=start_value,
            end_value_usd=anchor_value,
            change_usd=anchor_value - start_value,
            change_pct=change_pct,
        )

#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""
Behavioural scores derived from transfer activity.

ratio = sends / max(receives, 1)
diamond hands = 100 - 40 * ratio
degen level   = 10 * unique assets + events / 10
paper hands   = 50 * ratio

Each score is clamped to [10, 95], nudged by the performance tier and
clamped again. Without any transfers every score stays at 50.
"""
from __future__ import annotations

import math
from typing import Sequence

from ..shared.models import TIER_EXCELLENT, TIER_TERRIBLE, TradingMetrics, TransferEvent
from ..shared.utils import clamp

SCORE_MIN = 10.0
SCORE_MAX = 95.0

TIER_ADJUSTMENTS = {
    TIER_EXCELLENT: (20.0, -10.0, 0.0),
    TIER_TERRIBLE: (-10.0, 15.0, 20.0),
}


def _round_half_up(value: float) -> int:
    return int(math.floor(value + 0.5))


def trading_metrics(events: Sequence[TransferEvent], tier: str) -> TradingMetrics:
    diamond = degen = paper = 50.0

    if events:
        receives = sum(1 for e in events if e.is_acquisition)
        sends = sum(1 for e in events if e.is_disposal)
        ratio = sends / (receives or 1)
        unique_assets = len({e.asset.asset_id for e in events})

        diamond = clamp(100.0 - ratio * 40.0, SCORE_MIN, SCORE_MAX)
        degen = clamp(unique_assets * 10.0 + len(events) / 10.0, SCORE_MIN, SCORE_MAX)
        paper = clamp(ratio * 50.0, SCORE_MIN, SCORE_MAX)

    d_diamond, d_degen, d_paper = TIER_ADJUSTMENTS.get(tier, (0.0, 0.0, 0.0))
    diamond = clamp(diamond + d_diamond, SCORE_MIN, SCORE_MAX)
    degen = clamp(degen + d_degen, SCORE_MIN, SCORE_MAX)
    paper = clamp(paper + d_paper, SCORE_MIN, SCORE_MAX)

    return TradingMetrics(
        diamond_hands_factor=_round_half_up(diamond),
        degen_level=_round_half_up(degen),
        paper_hands_risk=_round_half_up(paper),
    )

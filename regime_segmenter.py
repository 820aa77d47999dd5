"""
regime_segmenter.py -- Partition the timeline into labelled regime segments.

One forward replay drives one SD state value.  Each block gets a label by
priority:

    POCKET_DOMINANT > SD_ACTIVE > SD_PAUSED > BUCKET_DOMINANT > REVERSAL_ZONE > INACTIVE

Consecutive blocks with the same label extend one segment, so segment
durations always add up to the block count.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Literal

import config
import state_machine as sm
from replay import BlockStep, replay_blocks
from session_model import Timeline, Trade

logger = logging.getLogger(__name__)

RegimeLabel = Literal[
    "POCKET_DOMINANT",
    "SD_ACTIVE",
    "SD_PAUSED",
    "BUCKET_DOMINANT",
    "REVERSAL_ZONE",
    "INACTIVE",
]

REGIME_LABELS: tuple[str, ...] = (
    "POCKET_DOMINANT",
    "SD_ACTIVE",
    "SD_PAUSED",
    "BUCKET_DOMINANT",
    "REVERSAL_ZONE",
    "INACTIVE",
)


@dataclass(frozen=True)
class RegimeSegment:
    label: RegimeLabel
    start_block: int
    end_block: int
    duration: int
    pnl: float
    trades: tuple[Trade, ...]
    dominant_strategy: str | None = None


@dataclass(frozen=True)
class RegimeSummary:
    segment_count: int
    sd_active_pct: float
    sd_paused_pct: float
    pocket_dominance_pct: float
    bucket_dominance_pct: float
    reversal_zone_pct: float
    inactive_pct: float


def classify_block(step: BlockStep, params: sm.DepreciationParams) -> RegimeLabel:
    names = {t.strategy_name for t in step.trades}
    if names & set(config.POCKET_STRATEGIES):
        return "POCKET_DOMINANT"
    if step.phase_at_open == "ACTIVE":
        return "SD_ACTIVE"
    if step.phase_at_open == "PAUSED":
        return "SD_PAUSED"
    if names & set(config.BUCKET_STRATEGIES):
        return "BUCKET_DOMINANT"
    prev = step.previous
    if prev is not None and step.block.direction != prev.direction and step.block.magnitude_pct >= params.high_pct_threshold:
        return "REVERSAL_ZONE"
    return "INACTIVE"


class _OpenSegment:
    def __init__(self, label: RegimeLabel, start: int) -> None:
        self.label = label
        self.start = start
        self.end = start
        self.trades: list[Trade] = []
        self.pnl = 0.0

    def add(self, block_index: int, trades: tuple[Trade, ...]) -> None:
        self.end = block_index
        self.trades.extend(trades)
        self.pnl += sum(t.pnl for t in trades)

    def close(self) -> RegimeSegment:
        return RegimeSegment(
            label=self.label,
            start_block=self.start,
            end_block=self.end,
            duration=self.end - self.start + 1,
            pnl=self.pnl,
            trades=tuple(self.trades),
            dominant_strategy=self.trades[0].strategy_name if self.trades else None,
        )


def segment_regimes(timeline: Timeline, params: sm.DepreciationParams = sm.DEFAULT_PARAMS) -> list[RegimeSegment]:
    segments: list[RegimeSegment] = []
    current: _OpenSegment | None = None

    for step in replay_blocks(timeline, params):
        label = classify_block(step, params)
        idx = step.block.sequence_index
        if current is None or current.label != label:
            if current is not None:
                segments.append(current.close())
            current = _OpenSegment(label, idx)
        current.add(idx, step.trades)

    if current is not None:
        segments.append(current.close())

    logger.debug("Segmented %d blocks into %d regimes", len(timeline.blocks), len(segments))
    return segments


def summarize_regimes(segments: list[RegimeSegment]) -> RegimeSummary:
    total = sum(s.duration for s in segments)

    def share(label: str) -> float:
        if total <= 0:
            return 0.0
        return sum(s.duration for s in segments if s.label == label) / total * 100.0

    return RegimeSummary(
        segment_count=len(segments),
        sd_active_pct=share("SD_ACTIVE"),
        sd_paused_pct=share("SD_PAUSED"),
        pocket_dominance_pct=share("POCKET_DOMINANT"),
        bucket_dominance_pct=share("BUCKET_DOMINANT"),
        reversal_zone_pct=share("REVERSAL_ZONE"),
        inactive_pct=share("INACTIVE"),
    )

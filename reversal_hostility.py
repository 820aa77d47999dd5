"""
reversal_hostility.py -- Would a pause after a big reversal have paid off?

For every high-magnitude direction flip the analyzer looks ahead a fixed
window and scores each candidate pause length K:

    net_benefit(K) = avoided_loss(K) - missed_gain(K)

avoided_loss sums |pnl| of SD trades that lost inside (i, i+K], missed_gain
sums pnl of SD trades that won there.  Recorded trade pnl is used as-is.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass

import config
import state_machine as sm
from session_model import Timeline

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class PauseOutcome:
    pause_duration: int
    avoided_loss: float
    missed_gain: float
    net_benefit: float


@dataclass(frozen=True)
class ReversalHostilityEvent:
    block_index: int
    reversal_pct: float
    from_direction: int
    to_direction: int
    subsequent_blocks: int
    subsequent_same_direction: int
    outcomes: tuple[PauseOutcome, ...]

    def outcome_for(self, pause_duration: int) -> PauseOutcome | None:
        for o in self.outcomes:
            if o.pause_duration == pause_duration:
                return o
        return None


@dataclass(frozen=True)
class PauseBenefit:
    pause_duration: int
    average_net_benefit: float


@dataclass(frozen=True)
class ReversalHostilitySummary:
    reversal_count: int
    average_reversal_pct: float
    benefit_by_duration: tuple[PauseBenefit, ...]
    recommended_pause_duration: int | None


def analyze_reversal_hostility(
    timeline: Timeline,
    params: sm.DepreciationParams = sm.DEFAULT_PARAMS,
    pause_durations: tuple[int, ...] = config.PAUSE_DURATIONS,
    lookahead: int = config.REVERSAL_LOOKAHEAD_BLOCKS,
    *,
    sd_strategy: str | None = None,
) -> list[ReversalHostilityEvent]:
    sd_name = sd_strategy or config.SD_STRATEGY_NAME
    blocks = timeline.blocks
    last = blocks[-1].sequence_index
    events: list[ReversalHostilityEvent] = []

    for pos in range(1, len(blocks)):
        prev, cur = blocks[pos - 1], blocks[pos]
        if cur.direction == prev.direction or cur.magnitude_pct < params.high_pct_threshold:
            continue

        window = blocks[pos + 1 : pos + 1 + max(0, int(lookahead))]
        same = sum(1 for b in window if b.direction == cur.direction)

        i = cur.sequence_index
        outcomes: list[PauseOutcome] = []
        for k in pause_durations:
            avoided = 0.0
            missed = 0.0
            for t in timeline.index.between(i + 1, min(i + int(k), last), sd_name):
                if t.is_win:
                    missed += t.pnl
                else:
                    avoided += abs(t.pnl)
            outcomes.append(
                PauseOutcome(
                    pause_duration=int(k),
                    avoided_loss=avoided,
                    missed_gain=missed,
                    net_benefit=avoided - missed,
                )
            )

        events.append(
            ReversalHostilityEvent(
                block_index=i,
                reversal_pct=float(cur.magnitude_pct),
                from_direction=prev.direction,
                to_direction=cur.direction,
                subsequent_blocks=len(window),
                subsequent_same_direction=same,
                outcomes=tuple(outcomes),
            )
        )

    if not events:
        logger.warning("No reversals at or above %.1f%% found", params.high_pct_threshold)
    else:
        logger.debug("Found %d high-pct reversals", len(events))
    return events


def summarize_reversal_hostility(
    events: list[ReversalHostilityEvent],
    pause_durations: tuple[int, ...] = config.PAUSE_DURATIONS,
) -> ReversalHostilitySummary:
    """
    Average net benefit per K (0 with no events) and the K that maximizes it.
    The first K wins ties.
    """
    benefits: list[PauseBenefit] = []
    for k in pause_durations:
        values = []
        for e in events:
            o = e.outcome_for(int(k))
            values.append(o.net_benefit if o is not None else 0.0)
        avg = sum(values) / len(values) if values else 0.0
        benefits.append(PauseBenefit(pause_duration=int(k), average_net_benefit=avg))

    recommended: int | None = None
    best = None
    for b in benefits:
        if best is None or b.average_net_benefit > best:
            best = b.average_net_benefit
            recommended = b.pause_duration

    avg_pct = sum(e.reversal_pct for e in events) / len(events) if events else 0.0
    return ReversalHostilitySummary(
        reversal_count=len(events),
        average_reversal_pct=avg_pct,
        benefit_by_duration=tuple(benefits),
        recommended_pause_duration=recommended,
    )

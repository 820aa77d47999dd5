"""
false_deactivation.py -- Cost of SD deactivating while its direction persists.

The failure mode:
  1. SD is active on a trend and takes a losing streak
  2. accumulated loss crosses the life cap and SD deactivates
  3. the trend resumes without SD
  4. SD re-enters late, after the move is gone

`detect_false_deactivations` reconstructs this from the trade log alone.
That is an approximation: the recorder does not guarantee per-block machine
state, so the first SD trade is treated as an implicit activation.  When an
authoritative transition log exists (e.g. from a replay) use
`detect_from_transitions` instead.
"""

from __future__ import annotations

import bisect
import logging
from dataclasses import dataclass

import config
import state_machine as sm
from session_model import Timeline, Trade

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class FalseDeactivationEvent:
    deactivation_block: int
    reason: str
    reactivation_block: int
    gap_blocks: int
    persisted_blocks: int
    missed_pnl: float
    late_reentry_cost: float
    total_cost: float


@dataclass(frozen=True)
class FalseDeactivationSummary:
    count: int
    total_cost: float
    average_cost: float
    average_gap_blocks: float
    worst_event: FalseDeactivationEvent | None


def _measure_gap(
    timeline: Timeline,
    sd_trades: tuple[Trade, ...],
    keys: list[int],
    deactivation_block: int,
    direction: int,
    reason: str,
    params: sm.DepreciationParams,
    min_persisted: int,
) -> FalseDeactivationEvent | None:
    pos = bisect.bisect_right(keys, deactivation_block)
    reactivation = next((t for t in sd_trades[pos:] if t.is_win), None)
    if reactivation is None:
        return None
    reactivation_block = reactivation.resolution_index

    persisted = 0
    missed = 0.0
    for j in range(deactivation_block + 1, reactivation_block):
        block = timeline.block_at(j)
        if block.direction != direction:
            break
        persisted += 1
        missed += block.magnitude_pct * params.pnl_multiplier

    if persisted < min_persisted:
        return None

    # First SD trade recorded on the reactivation block.
    first_at = bisect.bisect_left(keys, reactivation_block)
    reentry = sd_trades[first_at]
    late_cost = abs(reentry.pnl) if not reentry.is_win else 0.0

    return FalseDeactivationEvent(
        deactivation_block=deactivation_block,
        reason=reason,
        reactivation_block=reactivation_block,
        gap_blocks=reactivation_block - deactivation_block,
        persisted_blocks=persisted,
        missed_pnl=missed,
        late_reentry_cost=late_cost,
        total_cost=missed + late_cost,
    )


def detect_false_deactivations(
    timeline: Timeline,
    params: sm.DepreciationParams = sm.DEFAULT_PARAMS,
    *,
    min_persisted: int = config.FALSE_DEACTIVATION_MIN_PERSISTED,
) -> list[FalseDeactivationEvent]:
    sd_trades = timeline.sd_trades()
    events: list[FalseDeactivationEvent] = []
    keys = [t.resolution_index for t in sd_trades]
    if len(sd_trades) < 2:
        return events

    active = False
    accumulated_loss = 0.0
    last_direction = 0

    for trade in sd_trades:
        if not active:
            active = True
            accumulated_loss = 0.0
            last_direction = trade.predicted_direction

        if trade.is_win:
            if trade.pnl > accumulated_loss:
                accumulated_loss = 0.0
            last_direction = trade.predicted_direction
            continue

        accumulated_loss += abs(trade.pnl)
        if accumulated_loss <= params.initial_life:
            continue

        active = False
        reason = f"accumulated loss {accumulated_loss:g} > life cap {params.initial_life:g}"
        event = _measure_gap(
            timeline,
            sd_trades,
            keys,
            trade.resolution_index,
            last_direction,
            reason,
            params,
            min_persisted,
        )
        if event is not None:
            events.append(event)

    logger.debug("Trade-log false deactivations: %d", len(events))
    return events


def detect_from_transitions(
    timeline: Timeline,
    transitions: tuple[sm.StateTransition, ...],
    params: sm.DepreciationParams = sm.DEFAULT_PARAMS,
    *,
    min_persisted: int = config.FALSE_DEACTIVATION_MIN_PERSISTED,
) -> list[FalseDeactivationEvent]:
    """
    Same measurement, anchored on real EXPIRE / RESUME_DENIED transitions.

    The persisted direction is the one SD was betting at expiry, i.e. the
    direction of the block before the expiry block.
    """
    sd_trades = timeline.sd_trades()
    events: list[FalseDeactivationEvent] = []
    keys = [t.resolution_index for t in sd_trades]
    for t in transitions:
        if t.to_phase != "EXPIRED":
            continue
        prev = timeline.previous_block(t.block_index)
        if prev is None:
            continue
        event = _measure_gap(timeline, sd_trades, keys, t.block_index, prev.direction, t.reason, params, min_persisted)
        if event is not None:
            events.append(event)
    return events


def summarize_false_deactivations(events: list[FalseDeactivationEvent]) -> FalseDeactivationSummary:
    if not events:
        return FalseDeactivationSummary(0, 0.0, 0.0, 0.0, None)
    total = sum(e.total_cost for e in events)
    worst = events[0]
    for e in events[1:]:
        if e.total_cost > worst.total_cost:
            worst = e
    return FalseDeactivationSummary(
        count=len(events),
        total_cost=total,
        average_cost=total / len(events),
        average_gap_blocks=sum(e.gap_blocks for e in events) / len(events),
        worst_event=worst,
    )

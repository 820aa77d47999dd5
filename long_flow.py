"""
long_flow.py -- Long momentum runs and whether SD was in them.

A run of at least `long_flow_length_threshold` same-direction blocks is a
long flow.  It is captured when at least one SD trade resolves inside the
run.  Uncaptured flows get an optimistic missed-pnl estimate: a win on every
block from the run's third position on.  That is an upper bound, not a
forecast.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Mapping

import config
import state_machine as sm
from replay import iter_runs
from session_model import Timeline

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class LongFlowEvent:
    start_block: int
    end_block: int
    length: int
    direction: int
    total_pct: float
    was_captured: bool
    captured_pnl: float
    missed_pnl: float
    sd_phase_at_start: sm.SDPhase | None = None


@dataclass(frozen=True)
class LongFlowSummary:
    total_flows: int
    captured_flows: int
    capture_rate: float
    captured_pnl: float
    missed_pnl: float


def detect_long_flows(
    timeline: Timeline,
    params: sm.DepreciationParams = sm.DEFAULT_PARAMS,
    phases: Mapping[int, sm.SDPhase] | None = None,
    *,
    sd_strategy: str | None = None,
) -> list[LongFlowEvent]:
    """
    `phases` maps block index -> SD phase at block open (from a replay).
    Without it the phase at flow start is left as None.
    """
    sd_name = sd_strategy or config.SD_STRATEGY_NAME
    events: list[LongFlowEvent] = []

    for run in iter_runs(timeline.blocks):
        if run.length < params.long_flow_length_threshold:
            continue
        inside = timeline.index.between(run.start_index, run.end_index, sd_name)
        captured = bool(inside)
        missed = 0.0
        if not captured:
            for j in range(run.start_index + 2, run.end_index + 1):
                missed += timeline.block_at(j).magnitude_pct * params.pnl_multiplier
        events.append(
            LongFlowEvent(
                start_block=run.start_index,
                end_block=run.end_index,
                length=run.length,
                direction=run.direction,
                total_pct=run.total_pct,
                was_captured=captured,
                captured_pnl=sum(t.pnl for t in inside),
                missed_pnl=missed,
                sd_phase_at_start=phases.get(run.start_index) if phases is not None else None,
            )
        )

    logger.debug("Long flows (>= %d blocks): %d", params.long_flow_length_threshold, len(events))
    return events


def capture_rate(events: list[LongFlowEvent]) -> float:
    if not events:
        return 0.0
    return sum(1 for e in events if e.was_captured) / len(events)


def summarize_long_flows(events: list[LongFlowEvent]) -> LongFlowSummary:
    return LongFlowSummary(
        total_flows=len(events),
        captured_flows=sum(1 for e in events if e.was_captured),
        capture_rate=capture_rate(events),
        captured_pnl=sum(e.captured_pnl for e in events),
        missed_pnl=sum(e.missed_pnl for e in events),
    )

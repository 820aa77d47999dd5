"""
replay.py -- Block-by-block replay of a timeline through the SD reducer.

The regime segmenter and the counterfactual simulator both walk the timeline
through this one driver so that activation, trade processing and competing
BREAK handling happen in exactly the same order for both.

Per block:
  1. momentum run tracking; a run break may activate SD
  2. `phase_at_open` is captured (used for regime labels)
  3. every SD trade resolved at the block goes through process_trade
  4. every losing competing-strategy trade sends a BREAK
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Iterator

import config
import state_machine as sm
from session_model import Block, Timeline, Trade

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Run:
    start_index: int
    end_index: int
    direction: int
    length: int
    total_pct: float


def iter_runs(blocks: tuple[Block, ...]) -> Iterator[Run]:
    """Maximal same-direction runs, including the final open run."""
    if not blocks:
        return
    start = blocks[0]
    length = 1
    total = float(start.magnitude_pct)
    last = start
    for b in blocks[1:]:
        if b.direction == start.direction:
            length += 1
            total += b.magnitude_pct
            last = b
            continue
        yield Run(start.sequence_index, last.sequence_index, start.direction, length, total)
        start = b
        last = b
        length = 1
        total = float(b.magnitude_pct)
    yield Run(start.sequence_index, last.sequence_index, start.direction, length, total)


class RunTracker:
    """
    Momentum tracker feeding activation.

    RunProfit = sum(D2..Dk) - break magnitude, i.e. the first block of a run
    is skipped and the block that breaks the run is charged against it.
    """

    def __init__(self, min_run_length: int = config.SD_MIN_RUN_LENGTH) -> None:
        self.min_run_length = max(2, int(min_run_length))
        self.direction: int | None = None
        self.length = 0
        self.run_profit = 0.0

    def observe(self, block: Block) -> float | None:
        """
        Feed one block. Returns the closed run's final RunProfit when this
        block breaks a run long enough to count, else None.
        """
        if self.direction is None or block.direction == self.direction:
            if self.direction is None:
                self.direction = block.direction
            self.length += 1
            if self.length >= 2:
                self.run_profit += block.magnitude_pct
            return None

        closed: float | None = None
        if self.length >= self.min_run_length:
            closed = self.run_profit - block.magnitude_pct
        self.direction = block.direction
        self.length = 1
        self.run_profit = 0.0
        return closed


@dataclass(frozen=True)
class BlockStep:
    block: Block
    previous: Block | None
    trades: tuple[Trade, ...]
    phase_at_open: sm.SDPhase
    state: sm.SDState
    outcomes: tuple[sm.TradeOutcome, ...]


def is_competing(strategy_name: str) -> bool:
    return strategy_name in config.POCKET_STRATEGIES or strategy_name in config.BUCKET_STRATEGIES


def replay_blocks(
    timeline: Timeline,
    params: sm.DepreciationParams,
    *,
    sd_strategy: str | None = None,
) -> Iterator[BlockStep]:
    """
    Drive one state value through the timeline, strictly in block order.
    """
    sd_name = sd_strategy or config.SD_STRATEGY_NAME
    tracker = RunTracker(params.activation_min_run_length)
    st = sm.initial_state(params)
    previous: Block | None = None

    for block in timeline.blocks:
        closed_profit = tracker.observe(block)
        if closed_profit is not None and closed_profit >= params.initial_life and st.phase == "INACTIVE":
            st = sm.activate(st, params, block.sequence_index, closed_profit, block.timestamp)

        phase_at_open = st.phase
        block_trades = timeline.index.at(block.sequence_index)
        outcomes: list[sm.TradeOutcome] = []

        for trade in block_trades:
            if trade.strategy_name != sd_name:
                continue
            st, outcome = sm.process_trade(st, params, trade, block, previous)
            outcomes.append(outcome)

        for trade in block_trades:
            if trade.strategy_name == sd_name or trade.is_win or not is_competing(trade.strategy_name):
                continue
            st = sm.handle_competing_strategy_event(st, "BREAK", trade.strategy_name, block.sequence_index, block.timestamp)

        yield BlockStep(
            block=block,
            previous=previous,
            trades=block_trades,
            phase_at_open=phase_at_open,
            state=st,
            outcomes=tuple(outcomes),
        )
        previous = block


def replay_final_state(timeline: Timeline, params: sm.DepreciationParams) -> sm.SDState:
    st = sm.initial_state(params)
    for step in replay_blocks(timeline, params):
        st = step.state
    return st

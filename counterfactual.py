"""
counterfactual.py -- Replay one timeline under one fixed DepreciationParams.

The same replay driver the regime segmenter uses feeds the reducer, so a
variant result differs from another only through its params.  After the
replay the equity curve is reduced to drawdown / volatility / a Sharpe-like
ratio, and the false-deactivation and long-flow analyses are recomputed
under the same params.

Results are deterministic: identical (timeline, params) give identical
results, including transition timestamps (they come from blocks).
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field

import numpy as np

import state_machine as sm
from false_deactivation import FalseDeactivationEvent, detect_false_deactivations, detect_from_transitions
from long_flow import capture_rate, detect_long_flows
from replay import replay_blocks
from session_model import Timeline

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class CounterfactualResult:
    variant: str
    params: sm.DepreciationParams
    total_pnl: float
    max_drawdown: float
    win_rate: float
    volatility: float
    sharpe_ratio: float
    real_trades_count: int
    imaginary_trades_count: int
    state_transitions: tuple[sm.StateTransition, ...] = ()
    pause_events: int = 0
    resume_events: int = 0
    expire_events: int = 0
    false_deactivations: tuple[FalseDeactivationEvent, ...] = ()
    machine_false_deactivations: tuple[FalseDeactivationEvent, ...] = ()
    long_flow_capture_rate: float = 0.0
    equity_curve: tuple[float, ...] = field(default=(), repr=False)


def max_drawdown(curve) -> float:
    """Largest peak-to-trough drop; the peak starts at the first point."""
    arr = np.asarray(curve, dtype=float)
    if arr.size == 0:
        return 0.0
    peaks = np.maximum.accumulate(arr)
    return float(np.max(peaks - arr))


def volatility(curve) -> float:
    """Population standard deviation of consecutive equity deltas."""
    arr = np.asarray(curve, dtype=float)
    if arr.size < 2:
        return 0.0
    return float(np.std(np.diff(arr)))


def run_counterfactual(
    timeline: Timeline,
    params: sm.DepreciationParams,
    variant: str,
) -> CounterfactualResult:
    sm.validate_params(params)

    st = sm.initial_state(params)
    phases: dict[int, sm.SDPhase] = {}
    points: list[float] = []
    for step in replay_blocks(timeline, params):
        phases[step.block.sequence_index] = step.phase_at_open
        points.extend(sm.equity_curve(step.outcomes))
        st = step.state

    stats = sm.metrics(st)
    curve = tuple(points)
    vol = volatility(curve)
    sharpe = st.real_pnl / vol if vol > 0 else 0.0

    flows = detect_long_flows(timeline, params, phases)
    result = CounterfactualResult(
        variant=variant,
        params=params,
        total_pnl=st.real_pnl,
        max_drawdown=max_drawdown(curve),
        win_rate=stats["win_rate"],
        volatility=vol,
        sharpe_ratio=sharpe,
        real_trades_count=st.real_wins + st.real_losses,
        imaginary_trades_count=st.imaginary_wins + st.imaginary_losses,
        state_transitions=st.transitions,
        pause_events=stats["pause_events"],
        resume_events=stats["resume_events"],
        expire_events=stats["expire_events"],
        false_deactivations=tuple(detect_false_deactivations(timeline, params)),
        machine_false_deactivations=tuple(detect_from_transitions(timeline, st.transitions, params)),
        long_flow_capture_rate=capture_rate(flows),
        equity_curve=curve,
    )
    logger.debug(
        "Variant %s: pnl=%.1f dd=%.1f win_rate=%.3f real=%d imaginary=%d transitions=%d",
        variant,
        result.total_pnl,
        result.max_drawdown,
        result.win_rate,
        result.real_trades_count,
        result.imaginary_trades_count,
        len(result.state_transitions),
    )
    return result


def combine_results(
    variant: str,
    params: sm.DepreciationParams,
    results: list[CounterfactualResult],
) -> CounterfactualResult:
    """
    Fold per-session results into one.

    pnl and counts are summed, drawdown is the worst session, ratios are
    averaged, logs are concatenated, and each session's equity curve
    continues from where the previous one ended.
    """
    if not results:
        raise ValueError(f"no results to combine for variant {variant!r}")
    n = len(results)

    curve: list[float] = []
    for r in results:
        offset = curve[-1] if curve else 0.0
        curve.extend(offset + v for v in r.equity_curve)

    transitions: list[sm.StateTransition] = []
    false_deacts: list[FalseDeactivationEvent] = []
    machine_deacts: list[FalseDeactivationEvent] = []
    for r in results:
        transitions.extend(r.state_transitions)
        false_deacts.extend(r.false_deactivations)
        machine_deacts.extend(r.machine_false_deactivations)

    return CounterfactualResult(
        variant=variant,
        params=params,
        total_pnl=sum(r.total_pnl for r in results),
        max_drawdown=max(r.max_drawdown for r in results),
        win_rate=sum(r.win_rate for r in results) / n,
        volatility=sum(r.volatility for r in results) / n,
        sharpe_ratio=sum(r.sharpe_ratio for r in results) / n,
        real_trades_count=sum(r.real_trades_count for r in results),
        imaginary_trades_count=sum(r.imaginary_trades_count for r in results),
        state_transitions=tuple(transitions),
        pause_events=sum(r.pause_events for r in results),
        resume_events=sum(r.resume_events for r in results),
        expire_events=sum(r.expire_events for r in results),
        false_deactivations=tuple(false_deacts),
        machine_false_deactivations=tuple(machine_deacts),
        long_flow_capture_rate=sum(r.long_flow_capture_rate for r in results) / n,
        equity_curve=tuple(curve),
    )

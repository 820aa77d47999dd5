"""
sensitivity_sweep.py -- One-parameter sweeps over the counterfactual.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, fields, replace

import state_machine as sm
from counterfactual import run_counterfactual
from session_model import Timeline

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class SensitivityPoint:
    value: float
    pnl: float
    max_drawdown: float
    win_rate: float
    false_deactivation_count: int
    long_flow_capture_rate: float


@dataclass(frozen=True)
class SensitivityResult:
    param_name: str
    param_values: tuple[float, ...]
    results: tuple[SensitivityPoint, ...]
    best_value: float
    best_pnl: float


_SWEEPABLE = frozenset(f.name for f in fields(sm.DepreciationParams))


def run_sensitivity_sweep(
    timeline: Timeline,
    param_name: str,
    values,
    base_params: sm.DepreciationParams = sm.DEFAULT_PARAMS,
) -> SensitivityResult:
    """
    Run one counterfactual per candidate value with every other field held
    at `base_params`.  Best value is by total pnl; the first value wins ties.
    """
    if param_name not in _SWEEPABLE:
        raise ValueError(f"unknown parameter {param_name!r}; expected one of {sorted(_SWEEPABLE)}")
    candidates = tuple(values)
    if not candidates:
        raise ValueError(f"no values to sweep for {param_name!r}")

    points: list[SensitivityPoint] = []
    for value in candidates:
        params = sm.validate_params(replace(base_params, **{param_name: value}))
        r = run_counterfactual(timeline, params, f"{param_name}_{value}")
        points.append(
            SensitivityPoint(
                value=value,
                pnl=r.total_pnl,
                max_drawdown=r.max_drawdown,
                win_rate=r.win_rate,
                false_deactivation_count=len(r.false_deactivations),
                long_flow_capture_rate=r.long_flow_capture_rate,
            )
        )

    best = points[0]
    for p in points[1:]:
        if p.pnl > best.pnl:
            best = p

    logger.info("Sweep %s over %d values: best=%s pnl=%.1f", param_name, len(points), best.value, best.pnl)
    return SensitivityResult(
        param_name=param_name,
        param_values=candidates,
        results=tuple(points),
        best_value=best.value,
        best_pnl=best.pnl,
    )

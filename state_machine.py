"""
state_machine.py

Same-Direction (SD) depreciation state machine.

Design goals:
- Pure reducer transitions: (state, event, params) -> (next_state, outcome)
- One gate (`_move`) is the only place a phase changes; illegal edges raise
- Life decays only on ACTIVE losses and is frozen while PAUSED
- Real trade outcomes carry an equity point; imaginary outcomes never do
- Transition timestamps come from blocks, so replays are bit-identical
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, replace
from typing import Iterable, Literal

import config
from session_model import Block, Trade

logger = logging.getLogger(__name__)


SDPhase = Literal["INACTIVE", "ACTIVE", "PAUSED", "EXPIRED"]
Trigger = Literal["ACTIVATION", "HIGH_PCT_REVERSAL", "RESUME", "EXPIRE", "RESUME_DENIED"]
PauseReason = Literal["HIGH_PCT_REVERSAL"]
CompetingEventType = Literal["BREAK", "TAKEOVER"]

LEGAL_EDGES: frozenset[tuple[str, str]] = frozenset(
    {
        ("INACTIVE", "ACTIVE"),
        ("ACTIVE", "PAUSED"),
        ("PAUSED", "ACTIVE"),
        ("ACTIVE", "EXPIRED"),
        ("PAUSED", "EXPIRED"),
    }
)


class IllegalTransitionError(RuntimeError):
    """Raised when a phase change outside LEGAL_EDGES is attempted."""


@dataclass(frozen=True)
class DepreciationParams:
    initial_life: float = config.SD_INITIAL_LIFE
    high_pct_threshold: float = config.SD_HIGH_PCT_THRESHOLD
    consecutive_wins_to_resume: int = config.SD_CONSECUTIVE_WINS_TO_RESUME
    imaginary_profit_to_resume: float = config.SD_IMAGINARY_PROFIT_TO_RESUME
    long_flow_length_threshold: int = config.SD_LONG_FLOW_THRESHOLD
    life_decay_per_loss_unit: float = config.SD_LIFE_DECAY_PER_LOSS
    # Informational only: life is always frozen while PAUSED and competing
    # strategies never trade for SD, whatever these two flags say.
    pause_preserves_life: bool = config.SD_PAUSE_PRESERVES_LIFE
    allow_competing_strategy_during_pause: bool = config.SD_ALLOW_COMPETING_DURING_PAUSE
    # Flat backtest staking: an SD trade books +/- magnitude_pct * pnl_multiplier.
    pnl_multiplier: float = config.SD_PNL_MULTIPLIER
    activation_min_run_length: int = config.SD_MIN_RUN_LENGTH


DEFAULT_PARAMS = DepreciationParams()

# Current live behavior: no pause trigger, so every loss streak runs to expiry.
BASELINE_PARAMS = replace(DEFAULT_PARAMS, high_pct_threshold=999.0)


def validate_params(params: DepreciationParams) -> DepreciationParams:
    if params.initial_life <= 0:
        raise ValueError(f"initial_life must be > 0, got {params.initial_life}")
    if params.high_pct_threshold < 0:
        raise ValueError(f"high_pct_threshold must be >= 0, got {params.high_pct_threshold}")
    if params.consecutive_wins_to_resume < 1:
        raise ValueError(f"consecutive_wins_to_resume must be >= 1, got {params.consecutive_wins_to_resume}")
    if params.long_flow_length_threshold < 1:
        raise ValueError(f"long_flow_length_threshold must be >= 1, got {params.long_flow_length_threshold}")
    if params.life_decay_per_loss_unit < 0:
        raise ValueError(f"life_decay_per_loss_unit must be >= 0, got {params.life_decay_per_loss_unit}")
    if params.pnl_multiplier <= 0:
        raise ValueError(f"pnl_multiplier must be > 0, got {params.pnl_multiplier}")
    if params.activation_min_run_length < 2:
        raise ValueError(f"activation_min_run_length must be >= 2, got {params.activation_min_run_length}")
    return params


@dataclass(frozen=True)
class MetricsSnapshot:
    remaining_life: float
    accumulated_loss: float
    real_pnl: float
    imaginary_pnl: float


@dataclass(frozen=True)
class StateTransition:
    from_phase: SDPhase
    to_phase: SDPhase
    trigger: Trigger
    block_index: int
    reason: str
    snapshot: MetricsSnapshot
    timestamp: str = ""


@dataclass(frozen=True)
class SDState:
    phase: SDPhase = "INACTIVE"
    remaining_life: float = 0.0
    accumulated_loss: float = 0.0
    real_pnl: float = 0.0
    imaginary_pnl: float = 0.0
    real_wins: int = 0
    real_losses: int = 0
    imaginary_wins: int = 0
    imaginary_losses: int = 0
    consecutive_imaginary_wins: int = 0
    pause_reason: PauseReason | None = None
    pause_started_at: int | None = None
    activated_at: int = -1
    transitions: tuple[StateTransition, ...] = ()


@dataclass(frozen=True)
class TradeOutcome:
    block_index: int
    is_real: bool
    is_win: bool
    pnl: float
    phase: SDPhase
    # real_pnl after this trade; None for imaginary outcomes.
    equity: float | None = None


def initial_state(params: DepreciationParams = DEFAULT_PARAMS) -> SDState:
    return SDState(remaining_life=float(params.initial_life))


def equity_curve(outcomes: Iterable[TradeOutcome]) -> tuple[float, ...]:
    """Equity after each real trade, in replay order."""
    return tuple(o.equity for o in outcomes if o.is_real)


# --------------------------- Events ---------------------------


@dataclass(frozen=True)
class ActivateEvent:
    block_index: int
    run_profit: float
    timestamp: str = ""


@dataclass(frozen=True)
class PauseEvent:
    reason: PauseReason
    block_index: int
    details: str = ""
    timestamp: str = ""


@dataclass(frozen=True)
class ResumeEvent:
    block_index: int
    reason: str
    timestamp: str = ""


@dataclass(frozen=True)
class ExpireEvent:
    block_index: int
    reason: str
    timestamp: str = ""


@dataclass(frozen=True)
class TradeEvent:
    trade: Trade
    current_block: Block
    previous_block: Block | None


@dataclass(frozen=True)
class CompetingStrategyEvent:
    event_type: CompetingEventType
    strategy_name: str
    block_index: int
    timestamp: str = ""


Event = ActivateEvent | PauseEvent | ResumeEvent | ExpireEvent | TradeEvent | CompetingStrategyEvent


# --------------------------- Gate ---------------------------


def _snapshot(state: SDState) -> MetricsSnapshot:
    return MetricsSnapshot(
        remaining_life=state.remaining_life,
        accumulated_loss=state.accumulated_loss,
        real_pnl=state.real_pnl,
        imaginary_pnl=state.imaginary_pnl,
    )


def _move(state: SDState, to: SDPhase, trigger: Trigger, block_index: int, reason: str, timestamp: str) -> SDState:
    if (state.phase, to) not in LEGAL_EDGES:
        raise IllegalTransitionError(f"{state.phase} -> {to} is not a legal SD transition (trigger={trigger})")
    rec = StateTransition(
        from_phase=state.phase,
        to_phase=to,
        trigger=trigger,
        block_index=int(block_index),
        reason=reason,
        snapshot=_snapshot(state),
        timestamp=timestamp,
    )
    logger.debug("SD %s -> %s @%d [%s] %s", state.phase, to, block_index, trigger, reason)
    return replace(state, phase=to, transitions=state.transitions + (rec,))


# --------------------------- Operations ---------------------------


def activate(
    state: SDState,
    params: DepreciationParams,
    block_index: int,
    run_profit: float,
    timestamp: str = "",
) -> SDState:
    if state.phase != "INACTIVE":
        return state
    st = replace(
        state,
        remaining_life=float(params.initial_life),
        accumulated_loss=0.0,
        activated_at=int(block_index),
    )
    return _move(st, "ACTIVE", "ACTIVATION", block_index, f"RunProfit {run_profit:g} >= {params.initial_life:g}", timestamp)


def pause(
    state: SDState,
    reason: PauseReason,
    block_index: int,
    details: str = "",
    timestamp: str = "",
) -> SDState:
    if state.phase != "ACTIVE":
        return state
    st = replace(
        state,
        pause_reason=reason,
        pause_started_at=int(block_index),
        consecutive_imaginary_wins=0,
    )
    text = f"{reason}: {details}" if details else reason
    return _move(st, "PAUSED", reason, block_index, text, timestamp)


def resume(state: SDState, block_index: int, reason: str, timestamp: str = "") -> SDState:
    if state.phase != "PAUSED":
        return state
    if state.remaining_life <= 0:
        return _move(
            state,
            "EXPIRED",
            "RESUME_DENIED",
            block_index,
            f"resume denied: life exhausted (remaining_life={state.remaining_life:g}; wanted: {reason})",
            timestamp,
        )
    st = replace(state, pause_reason=None, pause_started_at=None, consecutive_imaginary_wins=0)
    return _move(st, "ACTIVE", "RESUME", block_index, reason, timestamp)


def expire(state: SDState, block_index: int, reason: str, timestamp: str = "") -> SDState:
    if state.phase not in ("ACTIVE", "PAUSED"):
        return state
    return _move(state, "EXPIRED", "EXPIRE", block_index, reason, timestamp)


def trade_pnl(current_block: Block, previous_block: Block | None, params: DepreciationParams) -> tuple[bool, float]:
    """
    SD always bets the previous block's direction (+1 with no history).

    Win/loss books +/- magnitude_pct * pnl_multiplier. The recorded trade's
    own pnl is ignored so that every variant prices trades the same way.
    """
    bet = previous_block.direction if previous_block is not None else 1
    is_win = bet == current_block.direction
    stake = float(current_block.magnitude_pct) * float(params.pnl_multiplier)
    return is_win, stake if is_win else -stake


def process_trade(
    state: SDState,
    params: DepreciationParams,
    trade: Trade,
    current_block: Block,
    previous_block: Block | None,
) -> tuple[SDState, TradeOutcome]:
    block_index = current_block.sequence_index
    ts = current_block.timestamp
    st = state

    # Hostile reversal pauses before this trade is classified.
    if (
        st.phase == "ACTIVE"
        and previous_block is not None
        and current_block.direction != previous_block.direction
        and current_block.magnitude_pct >= params.high_pct_threshold
    ):
        st = pause(
            st,
            "HIGH_PCT_REVERSAL",
            block_index,
            details=f"{current_block.magnitude_pct:g}% >= {params.high_pct_threshold:g}%",
            timestamp=ts,
        )

    is_win, pnl = trade_pnl(current_block, previous_block, params)
    phase = st.phase

    if phase == "ACTIVE":
        if is_win:
            st = replace(st, real_wins=st.real_wins + 1, real_pnl=st.real_pnl + pnl)
            if pnl > st.accumulated_loss:
                st = replace(st, accumulated_loss=0.0)
        else:
            st = replace(
                st,
                real_losses=st.real_losses + 1,
                real_pnl=st.real_pnl + pnl,
                accumulated_loss=st.accumulated_loss + abs(pnl),
                remaining_life=st.remaining_life - current_block.magnitude_pct * params.life_decay_per_loss_unit,
            )
            if st.remaining_life <= 0:
                st = expire(st, block_index, f"life exhausted: remaining_life={st.remaining_life:g}", ts)
            elif st.accumulated_loss > params.initial_life:
                st = expire(
                    st,
                    block_index,
                    f"loss cap exceeded: accumulated_loss={st.accumulated_loss:g} > {params.initial_life:g}",
                    ts,
                )
        return st, TradeOutcome(
            block_index=block_index, is_real=True, is_win=is_win, pnl=pnl, phase=phase, equity=st.real_pnl
        )

    if phase == "PAUSED":
        if is_win:
            st = replace(
                st,
                imaginary_wins=st.imaginary_wins + 1,
                imaginary_pnl=st.imaginary_pnl + pnl,
                consecutive_imaginary_wins=st.consecutive_imaginary_wins + 1,
            )
            if st.consecutive_imaginary_wins >= params.consecutive_wins_to_resume:
                st = resume(st, block_index, f"{st.consecutive_imaginary_wins} consecutive imaginary wins", ts)
            elif st.imaginary_pnl >= params.imaginary_profit_to_resume:
                st = resume(
                    st,
                    block_index,
                    f"imaginary profit {st.imaginary_pnl:g} >= {params.imaginary_profit_to_resume:g}",
                    ts,
                )
        else:
            st = replace(
                st,
                imaginary_losses=st.imaginary_losses + 1,
                imaginary_pnl=st.imaginary_pnl + pnl,
                consecutive_imaginary_wins=0,
            )
        return st, TradeOutcome(block_index=block_index, is_real=False, is_win=is_win, pnl=pnl, phase=phase)

    # INACTIVE / EXPIRED: diagnostics only.
    if is_win:
        st = replace(st, imaginary_wins=st.imaginary_wins + 1, imaginary_pnl=st.imaginary_pnl + pnl)
    else:
        st = replace(st, imaginary_losses=st.imaginary_losses + 1, imaginary_pnl=st.imaginary_pnl + pnl)
    return st, TradeOutcome(block_index=block_index, is_real=False, is_win=is_win, pnl=pnl, phase=phase)


def handle_competing_strategy_event(
    state: SDState,
    event_type: CompetingEventType,
    strategy_name: str,
    block_index: int,
    timestamp: str = "",
) -> SDState:
    """A competing strategy that just lost gives a paused SD its chance back."""
    if event_type == "BREAK" and state.phase == "PAUSED" and state.remaining_life > 0:
        return resume(
            state,
            block_index,
            f"{strategy_name} broke, life remaining: {state.remaining_life:g}",
            timestamp,
        )
    return state


def transition(state: SDState, event: Event, params: DepreciationParams) -> tuple[SDState, TradeOutcome | None]:
    """
    Pure reducer for one event.
    """
    if isinstance(event, TradeEvent):
        return process_trade(state, params, event.trade, event.current_block, event.previous_block)
    if isinstance(event, ActivateEvent):
        return activate(state, params, event.block_index, event.run_profit, event.timestamp), None
    if isinstance(event, PauseEvent):
        return pause(state, event.reason, event.block_index, event.details, event.timestamp), None
    if isinstance(event, ResumeEvent):
        return resume(state, event.block_index, event.reason, event.timestamp), None
    if isinstance(event, ExpireEvent):
        return expire(state, event.block_index, event.reason, event.timestamp), None
    if isinstance(event, CompetingStrategyEvent):
        return (
            handle_competing_strategy_event(state, event.event_type, event.strategy_name, event.block_index, event.timestamp),
            None,
        )
    return state, None


# --------------------------- Checks & reporting ---------------------------


def check_invariants(state: SDState) -> list[str]:
    """
    Strict invariant checker for one state value.
    """
    violations: list[str] = []

    expected_from = "INACTIVE"
    for t in state.transitions:
        if (t.from_phase, t.to_phase) not in LEGAL_EDGES:
            violations.append(f"illegal edge {t.from_phase}->{t.to_phase} at block {t.block_index}")
        if t.from_phase != expected_from:
            violations.append(f"broken path: expected from {expected_from}, got {t.from_phase} at block {t.block_index}")
        expected_from = t.to_phase
    if state.phase != expected_from:
        violations.append(f"phase {state.phase} does not match transition log end {expected_from}")

    if state.accumulated_loss < 0:
        violations.append("accumulated_loss must be >= 0")
    if min(state.real_wins, state.real_losses, state.imaginary_wins, state.imaginary_losses) < 0:
        violations.append("trade counters must be >= 0")
    if state.phase == "PAUSED" and state.pause_reason is None:
        violations.append("PAUSED state must carry a pause_reason")
    if state.phase != "PAUSED" and state.pause_started_at is not None and state.phase != "EXPIRED":
        violations.append("pause_started_at must be cleared outside PAUSED")
    return violations


def check_step(before: SDState, after: SDState) -> list[str]:
    """
    Invariants that relate two consecutive states of one replay.
    """
    violations: list[str] = []
    if before.phase == "ACTIVE" and after.remaining_life > before.remaining_life:
        violations.append("remaining_life increased while ACTIVE")
    if before.phase == "PAUSED" and after.phase in ("PAUSED", "ACTIVE", "EXPIRED"):
        if after.remaining_life != before.remaining_life:
            violations.append("remaining_life changed while PAUSED")
    if after.transitions[: len(before.transitions)] != before.transitions:
        violations.append("transition log history was rewritten")
    return violations


def metrics(state: SDState) -> dict:
    real_count = state.real_wins + state.real_losses
    return {
        "real_pnl": state.real_pnl,
        "imaginary_pnl": state.imaginary_pnl,
        "real_wins": state.real_wins,
        "real_losses": state.real_losses,
        "imaginary_wins": state.imaginary_wins,
        "imaginary_losses": state.imaginary_losses,
        "win_rate": (state.real_wins / real_count) if real_count else 0.0,
        "transitions": len(state.transitions),
        "pause_events": sum(1 for t in state.transitions if t.to_phase == "PAUSED"),
        "resume_events": sum(1 for t in state.transitions if t.trigger == "RESUME"),
        "expire_events": sum(1 for t in state.transitions if t.to_phase == "EXPIRED"),
    }


def to_dict(state: SDState) -> dict:
    return {
        "phase": state.phase,
        "remaining_life": state.remaining_life,
        "accumulated_loss": state.accumulated_loss,
        "real_pnl": state.real_pnl,
        "imaginary_pnl": state.imaginary_pnl,
        "real_wins": state.real_wins,
        "real_losses": state.real_losses,
        "imaginary_wins": state.imaginary_wins,
        "imaginary_losses": state.imaginary_losses,
        "consecutive_imaginary_wins": state.consecutive_imaginary_wins,
        "pause_reason": state.pause_reason,
        "pause_started_at": state.pause_started_at,
        "activated_at": state.activated_at,
        "transitions": [
            {
                "from_phase": t.from_phase,
                "to_phase": t.to_phase,
                "trigger": t.trigger,
                "block_index": t.block_index,
                "reason": t.reason,
                "snapshot": t.snapshot.__dict__,
                "timestamp": t.timestamp,
            }
            for t in state.transitions
        ],
    }


def from_dict(data: dict) -> SDState:
    phase = str(data.get("phase", "INACTIVE"))
    if phase not in ("INACTIVE", "ACTIVE", "PAUSED", "EXPIRED"):
        raise ValueError(f"unknown SD phase {phase!r}")
    return SDState(
        phase=phase,  # type: ignore[arg-type]
        remaining_life=float(data.get("remaining_life", 0.0)),
        accumulated_loss=float(data.get("accumulated_loss", 0.0)),
        real_pnl=float(data.get("real_pnl", 0.0)),
        imaginary_pnl=float(data.get("imaginary_pnl", 0.0)),
        real_wins=int(data.get("real_wins", 0)),
        real_losses=int(data.get("real_losses", 0)),
        imaginary_wins=int(data.get("imaginary_wins", 0)),
        imaginary_losses=int(data.get("imaginary_losses", 0)),
        consecutive_imaginary_wins=int(data.get("consecutive_imaginary_wins", 0)),
        pause_reason=data.get("pause_reason"),
        pause_started_at=data.get("pause_started_at"),
        activated_at=int(data.get("activated_at", -1)),
        transitions=tuple(
            StateTransition(
                from_phase=t["from_phase"],
                to_phase=t["to_phase"],
                trigger=t["trigger"],
                block_index=int(t["block_index"]),
                reason=str(t.get("reason", "")),
                snapshot=MetricsSnapshot(**t["snapshot"]),
                timestamp=str(t.get("timestamp", "")),
            )
            for t in data.get("transitions", [])
        ),
    )

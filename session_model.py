"""
session_model.py -- Block/Trade records and the validated analysis timeline.

Blocks and trades are produced upstream (pattern engine + session recorder).
This module only:
- decodes recorder JSON into frozen records
- validates them at the boundary (fail fast, descriptive errors)
- indexes trades by resolution block once per analysis (`TradeIndex`)
- merges several sessions into one re-indexed timeline
"""

from __future__ import annotations

import bisect
import logging
import math
from dataclasses import dataclass, field, replace
from typing import Any, Iterable, Literal

import config

logger = logging.getLogger(__name__)

Direction = Literal[1, -1]


class SessionValidationError(ValueError):
    """Raised when blocks or trades violate the input contract."""


def _is_direction(value: Any) -> bool:
    # bool is an int subclass; True must not pass for +1.
    return type(value) is int and value in (1, -1)


@dataclass(frozen=True)
class Block:
    direction: Direction
    magnitude_pct: float
    sequence_index: int
    timestamp: str = ""


@dataclass(frozen=True)
class Trade:
    strategy_name: str
    signal_index: int
    resolution_index: int
    predicted_direction: Direction
    actual_direction: Direction
    is_win: bool
    pnl: float
    confidence: float = 0.0
    reason_text: str = ""
    timestamp: str = ""


@dataclass(frozen=True)
class SessionLog:
    session_id: str
    blocks: tuple[Block, ...]
    trades: tuple[Trade, ...]
    pnl_total: float = 0.0
    timestamp: str = ""


# --------------------------- Validation ---------------------------


def validate_blocks(blocks: Iterable[Block]) -> tuple[Block, ...]:
    out = tuple(blocks)
    if not out:
        raise SessionValidationError("block history is empty")
    prev_index: int | None = None
    for pos, b in enumerate(out):
        if not _is_direction(b.direction):
            raise SessionValidationError(f"block {b.sequence_index}: direction must be +1 or -1, got {b.direction!r}")
        if not 0.0 <= float(b.magnitude_pct) <= 100.0:
            raise SessionValidationError(f"block {b.sequence_index}: magnitude_pct {b.magnitude_pct!r} outside [0, 100]")
        if b.sequence_index < 0:
            raise SessionValidationError(f"block at position {pos}: negative sequence_index {b.sequence_index}")
        if prev_index is not None and b.sequence_index != prev_index + 1:
            raise SessionValidationError(
                f"block at position {pos}: sequence_index {b.sequence_index} does not follow {prev_index} "
                "(indices must be strictly increasing without gaps)"
            )
        prev_index = b.sequence_index
    return out


def validate_trades(trades: Iterable[Trade], blocks: tuple[Block, ...]) -> tuple[Trade, ...]:
    out = tuple(trades)
    if not blocks:
        raise SessionValidationError("cannot validate trades without blocks")
    first = blocks[0].sequence_index
    last = blocks[-1].sequence_index
    for pos, t in enumerate(out):
        if t.signal_index < first:
            raise SessionValidationError(
                f"trade {pos} ({t.strategy_name}): signal_index {t.signal_index} before first block {first}"
            )
        if not first <= t.resolution_index <= last:
            raise SessionValidationError(
                f"trade {pos} ({t.strategy_name}): resolution_index {t.resolution_index} outside blocks [{first}, {last}]"
            )
        if t.signal_index > t.resolution_index:
            raise SessionValidationError(
                f"trade {pos} ({t.strategy_name}): signal_index {t.signal_index} after resolution_index {t.resolution_index}"
            )
        if not _is_direction(t.predicted_direction) or not _is_direction(t.actual_direction):
            raise SessionValidationError(f"trade {pos} ({t.strategy_name}): directions must be +1 or -1")
        if t.is_win is not (t.predicted_direction == t.actual_direction):
            raise SessionValidationError(
                f"trade {pos} ({t.strategy_name}): is_win={t.is_win!r} disagrees with "
                f"predicted {t.predicted_direction} vs actual {t.actual_direction}"
            )
        if not math.isfinite(t.pnl):
            raise SessionValidationError(f"trade {pos} ({t.strategy_name}): pnl must be finite, got {t.pnl!r}")
    return out


# --------------------------- Trade index ---------------------------


class TradeIndex:
    """
    Sorted multimap: resolution block index -> trades resolved there.

    Built once per analysis; insertion order is preserved inside a block.
    """

    def __init__(self, trades: Iterable[Trade]) -> None:
        ordered = sorted(enumerate(trades), key=lambda it: (it[1].resolution_index, it[0]))
        self._trades: tuple[Trade, ...] = tuple(t for _, t in ordered)
        self._keys: list[int] = [t.resolution_index for t in self._trades]
        self._by_strategy: dict[str, tuple[Trade, ...]] = {}
        groups: dict[str, list[Trade]] = {}
        for t in self._trades:
            groups.setdefault(t.strategy_name, []).append(t)
        for name, rows in groups.items():
            self._by_strategy[name] = tuple(rows)

    def __len__(self) -> int:
        return len(self._trades)

    def all(self) -> tuple[Trade, ...]:
        return self._trades

    def at(self, block_index: int) -> tuple[Trade, ...]:
        lo = bisect.bisect_left(self._keys, block_index)
        hi = bisect.bisect_right(self._keys, block_index)
        return self._trades[lo:hi]

    def between(self, first: int, last: int, strategy: str | None = None) -> tuple[Trade, ...]:
        """Trades resolved in the inclusive block range [first, last]."""
        if last < first:
            return ()
        lo = bisect.bisect_left(self._keys, first)
        hi = bisect.bisect_right(self._keys, last)
        rows = self._trades[lo:hi]
        if strategy is None:
            return rows
        return tuple(t for t in rows if t.strategy_name == strategy)

    def for_strategy(self, strategy: str) -> tuple[Trade, ...]:
        return self._by_strategy.get(strategy, ())


# --------------------------- Timeline ---------------------------


@dataclass(frozen=True)
class Timeline:
    blocks: tuple[Block, ...]
    trades: tuple[Trade, ...]
    index: TradeIndex = field(compare=False, repr=False)

    @property
    def first_index(self) -> int:
        return self.blocks[0].sequence_index

    def block_at(self, sequence_index: int) -> Block:
        return self.blocks[sequence_index - self.first_index]

    def previous_block(self, sequence_index: int) -> Block | None:
        pos = sequence_index - self.first_index
        return self.blocks[pos - 1] if pos > 0 else None

    def sd_trades(self, strategy: str | None = None) -> tuple[Trade, ...]:
        return self.index.for_strategy(strategy or config.SD_STRATEGY_NAME)


def build_timeline(blocks: Iterable[Block], trades: Iterable[Trade]) -> Timeline:
    """Validate inputs and build the trade index once."""
    checked_blocks = validate_blocks(blocks)
    checked_trades = validate_trades(trades, checked_blocks)
    return Timeline(blocks=checked_blocks, trades=checked_trades, index=TradeIndex(checked_trades))


def merge_sessions(sessions: Iterable[SessionLog]) -> Timeline:
    """
    Concatenate sessions into one timeline.

    Each session's blocks are renumbered to follow the previous session's
    last block; trade signal/resolution indices move by the same offset.
    """
    merged_blocks: list[Block] = []
    merged_trades: list[Trade] = []
    count = 0
    for session in sessions:
        checked = validate_blocks(session.blocks)
        validate_trades(session.trades, checked)
        offset = len(merged_blocks) - checked[0].sequence_index
        merged_blocks.extend(replace(b, sequence_index=b.sequence_index + offset) for b in checked)
        merged_trades.extend(
            replace(
                t,
                signal_index=t.signal_index + offset,
                resolution_index=t.resolution_index + offset,
            )
            for t in session.trades
        )
        count += 1
    if count == 0:
        raise SessionValidationError("no sessions to merge")
    logger.info("Merged %d sessions: %d blocks, %d trades", count, len(merged_blocks), len(merged_trades))
    return build_timeline(merged_blocks, merged_trades)


# --------------------------- Decoding ---------------------------


def _pick(row: dict, *keys: str, default: Any = None) -> Any:
    for k in keys:
        if k in row and row[k] is not None:
            return row[k]
    return default


def _required(row: dict, what: str, *keys: str) -> Any:
    value = _pick(row, *keys)
    if value is None:
        raise SessionValidationError(f"{what}: missing {'/'.join(keys)}")
    return value


def _direction(raw: Any, what: str) -> int:
    if isinstance(raw, bool):
        raise SessionValidationError(f"{what}: bad direction {raw!r}")
    try:
        value = int(raw)
    except (TypeError, ValueError) as e:
        raise SessionValidationError(f"{what}: bad direction {raw!r}") from e
    if value not in (1, -1):
        raise SessionValidationError(f"{what}: direction must be +1 or -1, got {value}")
    return value


def block_from_dict(row: dict, position: int = 0) -> Block:
    """Accepts recorder keys (dir/pct/index/ts) or snake_case names."""
    what = f"block row {position}"
    try:
        return Block(
            direction=_direction(_required(row, what, "direction", "dir"), what),
            magnitude_pct=float(_required(row, what, "magnitude_pct", "pct")),
            sequence_index=int(_pick(row, "sequence_index", "index", default=position)),
            timestamp=str(_pick(row, "timestamp", "ts", default="")),
        )
    except (TypeError, ValueError) as e:
        if isinstance(e, SessionValidationError):
            raise
        raise SessionValidationError(f"{what}: {e}") from e


def trade_from_dict(row: dict, position: int = 0) -> Trade:
    """Accepts recorder keys (pattern/openIndex/evalIndex/...) or snake_case names."""
    what = f"trade row {position}"
    try:
        is_win = _required(row, what, "is_win", "isWin")
        if not isinstance(is_win, bool):
            raise SessionValidationError(f"{what}: is_win must be true or false, got {is_win!r}")
        resolution = int(_required(row, what, "resolution_index", "evalIndex"))
        return Trade(
            strategy_name=str(_pick(row, "strategy_name", "pattern", default="")),
            signal_index=int(_pick(row, "signal_index", "openIndex", default=resolution)),
            resolution_index=resolution,
            predicted_direction=_direction(_pick(row, "predicted_direction", "predictedDirection"), what),
            actual_direction=_direction(_pick(row, "actual_direction", "actualDirection"), what),
            is_win=is_win,
            pnl=float(_required(row, what, "pnl")),
            confidence=float(_pick(row, "confidence", default=0.0)),
            reason_text=str(_pick(row, "reason_text", "reason", default="")),
            timestamp=str(_pick(row, "timestamp", "ts", default="")),
        )
    except (TypeError, ValueError) as e:
        if isinstance(e, SessionValidationError):
            raise
        raise SessionValidationError(f"{what}: {e}") from e


def session_from_dict(data: dict, session_id: str = "") -> SessionLog:
    if not isinstance(data, dict):
        raise SessionValidationError("session payload must be a JSON object")
    blocks = tuple(block_from_dict(row, i) for i, row in enumerate(data.get("blocks") or []))
    trades = tuple(trade_from_dict(row, i) for i, row in enumerate(data.get("trades") or []))
    checked = validate_blocks(blocks)
    validate_trades(trades, checked)
    ts = str(data.get("ts", data.get("timestamp", "")) or "")
    return SessionLog(
        session_id=session_id or ts or "session",
        blocks=checked,
        trades=trades,
        pnl_total=float(data.get("pnlTotal", data.get("pnl_total", 0.0)) or 0.0),
        timestamp=ts,
    )

#!/usr/bin/env python3
"""
run_sd_analysis.py

Run the Same-Direction depreciation analysis over recorded session files.

Each input is a session JSON as written by the session recorder
(`blocks[{dir, pct, index, ts}]`, `trades[{pattern, openIndex, evalIndex, ...}]`).

Examples:
  python3 run_sd_analysis.py data/sessions/session_2026-01-04.json
  python3 run_sd_analysis.py data/sessions/*.json --json-out sd_report.json
  python3 run_sd_analysis.py s1.json --initial-life 160 --high-pct-threshold 75
"""

from __future__ import annotations

import argparse
import json
import logging
import os
from dataclasses import replace

import config
import state_machine as sm
from sd_analysis import (
    SDAnalysisAgent,
    SDAnalysisReport,
    format_false_deactivations,
    format_full_report,
    format_regimes,
    format_sensitivity,
    report_to_dict,
)
from session_model import SessionLog, SessionValidationError, session_from_dict

logger = logging.getLogger(__name__)


def setup_logging() -> None:
    level = getattr(logging, config.LOG_LEVEL.upper(), logging.INFO)
    logging.basicConfig(
        level=level,
        format="%(asctime)s [%(levelname)s] %(name)s - %(message)s",
    )


def load_session(path: str) -> SessionLog:
    with open(path, "r", encoding="utf-8") as f:
        data = json.load(f)
    session_id = os.path.splitext(os.path.basename(path))[0]
    return session_from_dict(data, session_id=session_id)


def _print_summary(report: SDAnalysisReport) -> None:
    print("=" * 64)
    print("SD ANALYSIS SESSIONS")
    print("=" * 64)
    for s in report.sessions:
        print(
            f"{s.session_id:<32} blocks={s.block_count:<5} trades={s.trade_count:<5} "
            f"pnl={s.total_pnl:.1f} sd_pnl={s.sd_pnl:.1f}"
        )
    print("-")
    print(format_full_report(report))
    print(format_sensitivity(report))
    print(format_regimes(report))
    print(format_false_deactivations(report))


def _build_params(args: argparse.Namespace) -> sm.DepreciationParams:
    return sm.validate_params(
        replace(
            sm.DEFAULT_PARAMS,
            initial_life=float(args.initial_life),
            high_pct_threshold=float(args.high_pct_threshold),
            consecutive_wins_to_resume=int(args.consecutive_wins),
            imaginary_profit_to_resume=float(args.imaginary_profit),
            life_decay_per_loss_unit=float(args.life_decay),
        )
    )


def parse_args() -> argparse.Namespace:
    p = argparse.ArgumentParser(description="Same-Direction depreciation analysis over recorded sessions")
    p.add_argument("sessions", nargs="+", help="Session JSON file(s)")
    p.add_argument("--initial-life", type=float, default=config.SD_INITIAL_LIFE)
    p.add_argument("--high-pct-threshold", type=float, default=config.SD_HIGH_PCT_THRESHOLD)
    p.add_argument("--consecutive-wins", type=int, default=config.SD_CONSECUTIVE_WINS_TO_RESUME)
    p.add_argument("--imaginary-profit", type=float, default=config.SD_IMAGINARY_PROFIT_TO_RESUME)
    p.add_argument("--life-decay", type=float, default=config.SD_LIFE_DECAY_PER_LOSS)
    p.add_argument("--quiet", action="store_true", default=False, help="Skip the configuration banner")
    p.add_argument("--json-out", default="", help="Optional JSON report output path")
    return p.parse_args()


def main() -> None:
    args = parse_args()
    setup_logging()
    if not args.quiet:
        config.print_banner()

    try:
        params = _build_params(args)
    except ValueError as e:
        raise SystemExit(str(e)) from e

    agent = SDAnalysisAgent()
    for path in args.sessions:
        try:
            agent.add_session(load_session(path))
        except FileNotFoundError as e:
            raise SystemExit(f"session file not found: {path}") from e
        except (json.JSONDecodeError, SessionValidationError) as e:
            raise SystemExit(f"{path}: {e}") from e

    try:
        report = agent.run(params)
    except (ValueError, RuntimeError) as e:
        raise SystemExit(str(e)) from e
    _print_summary(report)

    if args.json_out:
        with open(args.json_out, "w", encoding="utf-8") as f:
            json.dump(report_to_dict(report), f, indent=2)
        print(f"\nWrote JSON report: {args.json_out}")


if __name__ == "__main__":
    main()

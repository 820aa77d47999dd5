"""
sd_analysis.py -- Full SD analysis run over one or more recorded sessions.

Pipeline:
  1. merge sessions into one re-indexed timeline
  2. regime segmentation, false deactivations, reversal hostility and long
     flows on the merged timeline
  3. baseline + depreciation variants, replayed per session and combined
  4. sensitivity sweeps on the merged timeline
  5. executive summary, ranked recommendations, missing-data catalogue

The trade-log analyses are approximations of machine state (the recorder
does not log it); the missing-data catalogue lists what would make them
exact.
"""

from __future__ import annotations

import logging
from dataclasses import asdict, dataclass, field, replace
from typing import Literal

import config
import state_machine as sm
from counterfactual import CounterfactualResult, combine_results, run_counterfactual
from false_deactivation import (
    FalseDeactivationEvent,
    FalseDeactivationSummary,
    detect_false_deactivations,
    summarize_false_deactivations,
)
from long_flow import LongFlowEvent, LongFlowSummary, detect_long_flows, summarize_long_flows
from regime_segmenter import RegimeSegment, RegimeSummary, segment_regimes, summarize_regimes
from replay import replay_blocks
from reversal_hostility import (
    ReversalHostilityEvent,
    ReversalHostilitySummary,
    analyze_reversal_hostility,
    summarize_reversal_hostility,
)
from sensitivity_sweep import SensitivityResult, run_sensitivity_sweep
from session_model import SessionLog, build_timeline, merge_sessions

logger = logging.getLogger(__name__)

Priority = Literal["high", "medium", "low"]
_PRIORITY_ORDER = {"high": 0, "medium": 1, "low": 2}

PRIMARY_ISSUE_FALSE_DEACTIVATION = "False deactivation loop: SD deactivates prematurely and re-enters too late"
PRIMARY_ISSUE_LONG_FLOW = "Long flow miss: SD fails to capture long directional runs"


# --------------------------- Report types ---------------------------


@dataclass(frozen=True)
class ExecutiveSummary:
    primary_issue: str
    total_sd_loss: float
    false_deactivation_cost: float
    long_flow_missed_pnl: float
    best_fix_candidate: str
    estimated_improvement: float


@dataclass(frozen=True)
class SessionMeta:
    session_id: str
    block_count: int
    trade_count: int
    total_pnl: float
    sd_pnl: float


@dataclass(frozen=True)
class Recommendation:
    priority: Priority
    rule: str
    expected_impact: str
    parameter: str | None = None
    suggested_value: float | str | None = None


@dataclass(frozen=True)
class MissingDataField:
    field: str
    priority: Priority
    impact: str
    how_to_collect: str


@dataclass(frozen=True)
class NextExperiment:
    title: str
    objective: str
    data_needed: tuple[str, ...]
    success_criteria: str


@dataclass(frozen=True)
class Assumption:
    description: str
    impact: str
    needs_validation: bool


@dataclass(frozen=True)
class SDAnalysisReport:
    executive_summary: ExecutiveSummary
    sessions: tuple[SessionMeta, ...]
    regime_segments: tuple[RegimeSegment, ...]
    regime_summary: RegimeSummary
    false_deactivations: tuple[FalseDeactivationEvent, ...]
    false_deactivation_summary: FalseDeactivationSummary
    reversal_events: tuple[ReversalHostilityEvent, ...]
    reversal_summary: ReversalHostilitySummary
    long_flows: tuple[LongFlowEvent, ...]
    long_flow_summary: LongFlowSummary
    baseline: CounterfactualResult
    variants: tuple[CounterfactualResult, ...]
    best_variant: str
    improvement_over_baseline: float
    sensitivity: dict[str, SensitivityResult]
    recommendations: tuple[Recommendation, ...]
    missing_data_fields: tuple[MissingDataField, ...] = ()
    next_experiments: tuple[NextExperiment, ...] = ()
    assumptions: tuple[Assumption, ...] = field(default=())


MISSING_DATA_FIELDS: tuple[MissingDataField, ...] = (
    MissingDataField(
        field="SD machine state per block",
        priority="high",
        impact="Needed for exact regime segmentation and false-deactivation detection",
        how_to_collect="Snapshot the SD phase, remaining life and accumulated loss on every logged play",
    ),
    MissingDataField(
        field="is_real_bet flag on trades",
        priority="high",
        impact="Separates real from imaginary SD trades for pause analysis",
        how_to_collect="Record whether stake was actually placed on each completed trade",
    ),
    MissingDataField(
        field="hierarchy decision per block",
        priority="medium",
        impact="Shows which strategy family controlled each block",
        how_to_collect="Log the hierarchy decision next to each block in the session recorder",
    ),
    MissingDataField(
        field="pattern dominance per block",
        priority="medium",
        impact="Improves regime segmentation accuracy",
        how_to_collect="Log the dominant pattern and its confidence per block",
    ),
    MissingDataField(
        field="explicit reversal events",
        priority="low",
        impact="Faster analysis without recomputing reversals",
        how_to_collect="Log a reversal event whenever a high-magnitude flip is detected",
    ),
)

NEXT_EXPERIMENTS: tuple[NextExperiment, ...] = (
    NextExperiment(
        title="Validate pause/resume on live sessions",
        objective="Confirm the pause/resume logic behaves in practice without unexpected edge cases",
        data_needed=("10+ live sessions with per-block SD state", "imaginary trade tracking"),
        success_criteria="Fewer false deactivations and a higher long-flow capture rate",
    ),
    NextExperiment(
        title="Tune the pause threshold",
        objective="Find the high_pct_threshold that balances pause frequency against missed runs",
        data_needed=("30+ sessions across different market conditions",),
        success_criteria="Net benefit from pausing exceeds the cost of missed opportunities",
    ),
    NextExperiment(
        title="Test resume on pocket/bucket breaks",
        objective="Check that resuming SD when a competing pattern breaks captures the continuation",
        data_needed=("Sessions with clear pocket -> SD hand-offs",),
        success_criteria="SD captures more than 70% of post-break runs",
    ),
)

ASSUMPTIONS: tuple[Assumption, ...] = (
    Assumption(
        description="A 70% reversal is the right pause trigger",
        impact="Too low pauses too often; too high lets false deactivations continue",
        needs_validation=True,
    ),
    Assumption(
        description="Three consecutive imaginary wins is a good resume trigger",
        impact="Controls how quickly SD comes back after a pause",
        needs_validation=True,
    ),
    Assumption(
        description="Pausing does not decay life",
        impact="Keeps SD able to resume after a competing pattern breaks",
        needs_validation=True,
    ),
    Assumption(
        description="Bucket strategies stay paused while SD is paused",
        impact="Keeps the hierarchy intact; may miss bucket opportunities",
        needs_validation=True,
    ),
    Assumption(
        description="SD pnl is a flat multiple of block magnitude",
        impact="Every pnl estimate in the report scales with it; the live staking model differs",
        needs_validation=False,
    ),
)


# --------------------------- Agent ---------------------------


def depreciation_variants(params: sm.DepreciationParams) -> list[tuple[str, sm.DepreciationParams]]:
    return [
        ("depreciation_life100", replace(params, initial_life=100.0)),
        ("depreciation_life140", replace(params, initial_life=140.0)),
        ("depreciation_life180", replace(params, initial_life=180.0)),
        ("depreciation_thresh60", replace(params, high_pct_threshold=60.0)),
        ("depreciation_thresh70", replace(params, high_pct_threshold=70.0)),
        ("depreciation_thresh80", replace(params, high_pct_threshold=80.0)),
    ]


def baseline_params(params: sm.DepreciationParams) -> sm.DepreciationParams:
    """Current live rules on top of `params`: no pause trigger."""
    return replace(params, high_pct_threshold=sm.BASELINE_PARAMS.high_pct_threshold)


class SDAnalysisAgent:
    def __init__(self) -> None:
        self.sessions: list[SessionLog] = []

    def add_session(self, session: SessionLog) -> None:
        self.sessions.append(session)
        logger.info(
            "Added session %s: %d blocks, %d trades",
            session.session_id,
            len(session.blocks),
            len(session.trades),
        )

    def run(self, params: sm.DepreciationParams = sm.DEFAULT_PARAMS) -> SDAnalysisReport:
        if not self.sessions:
            raise ValueError("no sessions added; call add_session() first")
        sm.validate_params(params)

        timeline = merge_sessions(self.sessions)
        sd_name = config.SD_STRATEGY_NAME
        sd_trades = timeline.sd_trades()
        if not sd_trades:
            logger.warning("No %s trades in %d sessions; SD metrics will be empty", sd_name, len(self.sessions))

        # 1. Regimes
        segments = segment_regimes(timeline, params)
        regime_summary = summarize_regimes(segments)
        logger.info("Regimes: %d segments, SD active %.1f%%", regime_summary.segment_count, regime_summary.sd_active_pct)

        # 2. False deactivations (trade-log reconstruction)
        false_deacts = detect_false_deactivations(timeline, params)
        fd_summary = summarize_false_deactivations(false_deacts)

        # 3. Reversal hostility
        reversals = analyze_reversal_hostility(timeline, params)
        reversal_summary = summarize_reversal_hostility(reversals)

        # 4. Long flows, with SD phase at flow start from one replay
        phases = {step.block.sequence_index: step.phase_at_open for step in replay_blocks(timeline, params)}
        flows = detect_long_flows(timeline, params, phases)
        flow_summary = summarize_long_flows(flows)
        logger.info(
            "False deactivations: %d (cost %.1f); long flows: %d (capture %.0f%%)",
            fd_summary.count,
            fd_summary.total_cost,
            flow_summary.total_flows,
            flow_summary.capture_rate * 100.0,
        )

        # 5. Counterfactuals, one replay per session
        session_timelines = [build_timeline(s.blocks, s.trades) for s in self.sessions]
        base_params = baseline_params(params)
        baseline = combine_results(
            "baseline",
            base_params,
            [run_counterfactual(tl, base_params, f"baseline_session_{i}") for i, tl in enumerate(session_timelines)],
        )
        variants: list[CounterfactualResult] = []
        for name, vparams in depreciation_variants(params):
            per_session = [run_counterfactual(tl, vparams, f"{name}_session_{i}") for i, tl in enumerate(session_timelines)]
            variants.append(combine_results(name, vparams, per_session))

        best = variants[0]
        for v in variants[1:]:
            if v.total_pnl > best.total_pnl:
                best = v
        improvement = best.total_pnl - baseline.total_pnl
        logger.info("Best variant %s: pnl=%.1f (baseline %.1f)", best.variant, best.total_pnl, baseline.total_pnl)

        # 6. Sensitivity sweeps on the merged timeline
        sensitivity = {
            "initial_life": run_sensitivity_sweep(timeline, "initial_life", config.SWEEP_INITIAL_LIFE, params),
            "life_decay_per_loss_unit": run_sensitivity_sweep(
                timeline, "life_decay_per_loss_unit", config.SWEEP_LIFE_DECAY, params
            ),
            "high_pct_threshold": run_sensitivity_sweep(
                timeline, "high_pct_threshold", config.SWEEP_HIGH_PCT_THRESHOLD, params
            ),
        }

        total_sd_loss = sum(abs(t.pnl) for t in sd_trades if not t.is_win)
        if fd_summary.total_cost > flow_summary.missed_pnl:
            primary = PRIMARY_ISSUE_FALSE_DEACTIVATION
        else:
            primary = PRIMARY_ISSUE_LONG_FLOW

        summary = ExecutiveSummary(
            primary_issue=primary,
            total_sd_loss=total_sd_loss,
            false_deactivation_cost=fd_summary.total_cost,
            long_flow_missed_pnl=flow_summary.missed_pnl,
            best_fix_candidate=best.variant,
            estimated_improvement=improvement,
        )

        sessions_meta = tuple(
            SessionMeta(
                session_id=s.session_id,
                block_count=len(s.blocks),
                trade_count=len(s.trades),
                total_pnl=s.pnl_total,
                sd_pnl=sum(t.pnl for t in s.trades if t.strategy_name == sd_name),
            )
            for s in self.sessions
        )

        recommendations = generate_recommendations(
            params,
            fd_summary,
            reversal_summary,
            flow_summary,
            sensitivity,
            best,
            improvement,
        )

        return SDAnalysisReport(
            executive_summary=summary,
            sessions=sessions_meta,
            regime_segments=tuple(segments),
            regime_summary=regime_summary,
            false_deactivations=tuple(false_deacts),
            false_deactivation_summary=fd_summary,
            reversal_events=tuple(reversals),
            reversal_summary=reversal_summary,
            long_flows=tuple(flows),
            long_flow_summary=flow_summary,
            baseline=baseline,
            variants=tuple(variants),
            best_variant=best.variant,
            improvement_over_baseline=improvement,
            sensitivity=sensitivity,
            recommendations=recommendations,
            missing_data_fields=MISSING_DATA_FIELDS,
            next_experiments=NEXT_EXPERIMENTS,
            assumptions=ASSUMPTIONS,
        )


def generate_recommendations(
    params: sm.DepreciationParams,
    false_deacts: FalseDeactivationSummary,
    reversal: ReversalHostilitySummary,
    long_flows: LongFlowSummary,
    sensitivity: dict[str, SensitivityResult],
    best: CounterfactualResult,
    improvement: float,
) -> tuple[Recommendation, ...]:
    """Ranked high -> medium -> low; insertion order is kept inside a priority."""
    recs: list[Recommendation] = []

    if false_deacts.total_cost > config.FALSE_DEACTIVATION_COST_ALERT:
        recs.append(
            Recommendation(
                priority="high",
                rule="Run SD through the pause/resume state machine",
                expected_impact=f"Reduce false-deactivation cost by an estimated {round(false_deacts.total_cost * 0.7)}",
            )
        )
        threshold = sensitivity["high_pct_threshold"].best_value
        recs.append(
            Recommendation(
                priority="high",
                rule="Pause SD on high-magnitude reversals",
                parameter="high_pct_threshold",
                suggested_value=threshold,
                expected_impact=f"Pause on {threshold:g}%+ reversals to avoid the trap",
            )
        )

    if long_flows.total_flows and long_flows.capture_rate < config.LONG_FLOW_CAPTURE_ALERT:
        extra = round((1.0 - long_flows.capture_rate) * long_flows.total_flows)
        recs.append(
            Recommendation(
                priority="medium",
                rule="Resume SD when a competing pattern breaks",
                expected_impact=f"Capture up to {extra} more long flows",
            )
        )

    life = sensitivity["initial_life"]
    if life.best_value != params.initial_life:
        recs.append(
            Recommendation(
                priority="medium",
                rule="Adjust initial life",
                parameter="initial_life",
                suggested_value=life.best_value,
                expected_impact=f"Sweep-optimal pnl {life.best_pnl:.1f}",
            )
        )

    if improvement > 0:
        recs.append(
            Recommendation(
                priority="high",
                rule=f"Adopt the {best.variant} configuration",
                suggested_value=best.variant,
                expected_impact=f"Improvement of {improvement:.1f} over baseline",
            )
        )

    k = reversal.recommended_pause_duration
    if k is not None and reversal.reversal_count:
        benefit = next(b.average_net_benefit for b in reversal.benefit_by_duration if b.pause_duration == k)
        if benefit > 0:
            recs.append(
                Recommendation(
                    priority="low",
                    rule="Hold the pause for a fixed number of blocks after a reversal",
                    parameter="pause_duration",
                    suggested_value=k,
                    expected_impact=f"Average net benefit {benefit:.1f} per reversal",
                )
            )

    recs.append(
        Recommendation(
            priority="medium",
            rule="Log SD machine state and real/imaginary flags per block",
            expected_impact="Makes future analyses exact instead of reconstructed",
        )
    )

    recs.sort(key=lambda r: _PRIORITY_ORDER[r.priority])
    return tuple(recs)


# --------------------------- Formatting ---------------------------


def _banner(title: str) -> list[str]:
    return ["=" * 80, title.center(80).rstrip(), "=" * 80]


def format_executive_summary(report: SDAnalysisReport) -> str:
    s = report.executive_summary
    lines = _banner("SD ANALYSIS - EXECUTIVE SUMMARY")
    lines += [
        "",
        f"PRIMARY ISSUE: {s.primary_issue}",
        "",
        "KEY METRICS:",
        f"  - Total SD loss:             {s.total_sd_loss:.1f}",
        f"  - False deactivation cost:   {s.false_deactivation_cost:.1f}",
        f"  - Missed long flow pnl:      {s.long_flow_missed_pnl:.1f}",
        "",
        f"RECOMMENDED FIX: {s.best_fix_candidate}",
        f"ESTIMATED IMPROVEMENT: {s.estimated_improvement:.1f}",
        "",
    ]
    return "\n".join(lines)


def _metrics_row(name: str, r: CounterfactualResult) -> str:
    return (
        f"| {name:<23} | {r.total_pnl:>9.1f} | {r.max_drawdown:>7.1f} | {r.win_rate * 100:>7.1f}% "
        f"| {r.pause_events:>5} | {r.resume_events:>6} | {r.long_flow_capture_rate * 100:>9.0f}% |"
    )


def format_metrics_table(report: SDAnalysisReport) -> str:
    lines = _banner("BASELINE vs DEPRECIATION VARIANTS")
    lines += [
        "",
        "| Variant                 | Total PnL |  Max DD | Win Rate | Pause | Resume | LF Capture |",
        "|-------------------------|-----------|---------|----------|-------|--------|------------|",
        _metrics_row("baseline (current)", report.baseline),
    ]
    lines += [_metrics_row(v.variant, v) for v in report.variants]
    return "\n".join(lines) + "\n"


def format_recommendations(report: SDAnalysisReport) -> str:
    lines = _banner("RECOMMENDATIONS")
    for priority in ("high", "medium", "low"):
        rows = [r for r in report.recommendations if r.priority == priority]
        if not rows:
            continue
        lines.append("")
        lines.append(f"[{priority.upper()} PRIORITY]")
        for i, r in enumerate(rows, start=1):
            lines.append(f"  {i}. {r.rule}")
            if r.parameter:
                lines.append(f"     Parameter: {r.parameter} = {r.suggested_value}")
            lines.append(f"     Expected: {r.expected_impact}")
    return "\n".join(lines) + "\n"


def format_missing_data_fields(report: SDAnalysisReport) -> str:
    lines = _banner("MISSING DATA FIELDS (priority order)")
    for priority in ("high", "medium", "low"):
        rows = [f for f in report.missing_data_fields if f.priority == priority]
        if not rows:
            continue
        lines.append("")
        lines.append(f"[{priority.upper()}]")
        for f in rows:
            lines.append(f"  - {f.field}")
            lines.append(f"    Impact: {f.impact}")
            lines.append(f"    How: {f.how_to_collect}")
    return "\n".join(lines) + "\n"


def format_sensitivity(report: SDAnalysisReport) -> str:
    lines = _banner("SENSITIVITY SWEEPS")
    for name, result in report.sensitivity.items():
        lines.append("")
        lines.append(f"{name}: best={result.best_value:g} pnl={result.best_pnl:.1f}")
        lines.append("  value     pnl        max_dd   win_rate  false_deact  lf_capture")
        for p in result.results:
            lines.append(
                f"  {p.value:<8g}  {p.pnl:>9.1f}  {p.max_drawdown:>7.1f}  {p.win_rate * 100:>7.1f}%"
                f"  {p.false_deactivation_count:>11}  {p.long_flow_capture_rate * 100:>9.0f}%"
            )
    return "\n".join(lines) + "\n"


def format_regimes(report: SDAnalysisReport) -> str:
    r = report.regime_summary
    lines = _banner("REGIMES")
    lines += [
        f"segments:          {r.segment_count}",
        f"sd_active:         {r.sd_active_pct:.1f}%",
        f"sd_paused:         {r.sd_paused_pct:.1f}%",
        f"pocket_dominant:   {r.pocket_dominance_pct:.1f}%",
        f"bucket_dominant:   {r.bucket_dominance_pct:.1f}%",
        f"reversal_zone:     {r.reversal_zone_pct:.1f}%",
        f"inactive:          {r.inactive_pct:.1f}%",
    ]
    return "\n".join(lines) + "\n"


def format_false_deactivations(report: SDAnalysisReport) -> str:
    s = report.false_deactivation_summary
    lines = _banner("FALSE DEACTIVATIONS")
    lines += [
        f"count:             {s.count}",
        f"total_cost:        {s.total_cost:.1f}",
        f"average_cost:      {s.average_cost:.1f}",
        f"average_gap:       {s.average_gap_blocks:.1f} blocks",
    ]
    for e in report.false_deactivations:
        lines.append(
            f"  block {e.deactivation_block} -> {e.reactivation_block}: persisted={e.persisted_blocks} "
            f"missed={e.missed_pnl:.1f} late={e.late_reentry_cost:.1f} ({e.reason})"
        )
    return "\n".join(lines) + "\n"


def format_next_experiments(report: SDAnalysisReport) -> str:
    lines = _banner("NEXT EXPERIMENTS")
    for i, e in enumerate(report.next_experiments, start=1):
        lines.append("")
        lines.append(f"{i}. {e.title}")
        lines.append(f"   Objective: {e.objective}")
        lines.append(f"   Data needed: {', '.join(e.data_needed)}")
        lines.append(f"   Success: {e.success_criteria}")
    return "\n".join(lines) + "\n"


def format_assumptions(report: SDAnalysisReport) -> str:
    lines = _banner("ASSUMPTIONS")
    for a in report.assumptions:
        flag = " [needs validation]" if a.needs_validation else ""
        lines.append(f"  - {a.description}{flag}")
        lines.append(f"    Impact: {a.impact}")
    return "\n".join(lines) + "\n"


def format_full_report(report: SDAnalysisReport) -> str:
    return "\n".join(
        [
            format_executive_summary(report),
            format_metrics_table(report),
            format_recommendations(report),
            format_missing_data_fields(report),
            format_next_experiments(report),
            format_assumptions(report),
        ]
    )


def report_to_dict(report: SDAnalysisReport) -> dict:
    return asdict(report)

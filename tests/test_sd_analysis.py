import json
import unittest
from dataclasses import replace

import sd_analysis
import state_machine as sm
from counterfactual import CounterfactualResult, run_counterfactual
from false_deactivation import FalseDeactivationSummary
from long_flow import LongFlowSummary
from reversal_hostility import ReversalHostilitySummary
from sensitivity_sweep import SensitivityResult
from session_model import Block, SessionLog, Trade, merge_sessions


def _session(session_id: str, shift: int = 0) -> SessionLog:
    rows = [
        (1, 50), (1, 80), (1, 80), (1, 80), (-1, 30), (-1, 20), (-1, 10), (1, 75),
        (1, 10), (1, 10), (-1, 40), (-1, 40), (1, 10), (1, 10), (1, 10), (1, 10),
        (1, 10), (1, 10), (1, 10), (-1, 20),
    ]
    blocks = tuple(Block(d, float(pct), shift + i, f"{session_id}-{i}") for i, (d, pct) in enumerate(rows))

    def t(name, idx, win, pnl):
        return Trade(name, shift + idx - 1, shift + idx, 1, 1 if win else -1, win, pnl)

    trades = (
        t("SameDir", 5, True, 40.0),
        t("SameDir", 6, True, 20.0),
        t("SameDir", 7, False, -150.0),
        t("ZZ", 9, False, -20.0),
        t("SameDir", 10, False, -80.0),
        t("SameDir", 11, False, -80.0),
        t("2A2", 13, True, 15.0),
        t("SameDir", 18, True, 20.0),
    )
    return SessionLog(session_id, blocks, trades, pnl_total=-235.0, timestamp=session_id)


class SDAnalysisAgentTests(unittest.TestCase):
    def setUp(self):
        self.params = replace(sm.DEFAULT_PARAMS, initial_life=140.0, high_pct_threshold=70.0, long_flow_length_threshold=7)
        self.agent = sd_analysis.SDAnalysisAgent()
        self.agent.add_session(_session("s0"))
        self.agent.add_session(_session("s1", shift=100))

    def test_run_without_sessions_raises(self):
        with self.assertRaises(ValueError):
            sd_analysis.SDAnalysisAgent().run()

    def test_full_report(self):
        report = self.agent.run(self.params)

        self.assertEqual([s.session_id for s in report.sessions], ["s0", "s1"])
        self.assertEqual(report.sessions[0].block_count, 20)
        self.assertEqual(report.sessions[0].sd_pnl, -230.0)

        self.assertEqual(sum(seg.duration for seg in report.regime_segments), 40)
        self.assertEqual(report.false_deactivation_summary.count, 2)
        self.assertEqual(report.reversal_summary.reversal_count, 2)
        self.assertEqual(report.long_flow_summary.total_flows, 2)

        self.assertEqual(report.baseline.variant, "baseline")
        self.assertEqual(len(report.variants), 6)
        self.assertIn(report.best_variant, [v.variant for v in report.variants])
        best = next(v for v in report.variants if v.variant == report.best_variant)
        self.assertAlmostEqual(report.improvement_over_baseline, best.total_pnl - report.baseline.total_pnl)
        self.assertEqual(set(report.sensitivity), {"initial_life", "life_decay_per_loss_unit", "high_pct_threshold"})

        s = report.executive_summary
        self.assertEqual(s.total_sd_loss, 2 * (150.0 + 80.0 + 80.0))
        self.assertEqual(s.false_deactivation_cost, report.false_deactivation_summary.total_cost)
        self.assertEqual(s.best_fix_candidate, report.best_variant)

    def test_primary_issue_compares_costs(self):
        report = self.agent.run(self.params)
        s = report.executive_summary
        if s.false_deactivation_cost > s.long_flow_missed_pnl:
            self.assertEqual(s.primary_issue, sd_analysis.PRIMARY_ISSUE_FALSE_DEACTIVATION)
        else:
            self.assertEqual(s.primary_issue, sd_analysis.PRIMARY_ISSUE_LONG_FLOW)

    def test_recommendations_are_ranked(self):
        report = self.agent.run(self.params)
        order = {"high": 0, "medium": 1, "low": 2}
        ranks = [order[r.priority] for r in report.recommendations]
        self.assertEqual(ranks, sorted(ranks))
        self.assertTrue(any("Log SD machine state" in r.rule for r in report.recommendations))

    def test_missing_data_catalogue(self):
        report = self.agent.run(self.params)
        fields = [f.field for f in report.missing_data_fields]
        self.assertIn("SD machine state per block", fields)
        self.assertTrue(report.next_experiments)
        self.assertTrue(report.assumptions)

    def test_report_serializes_to_json(self):
        report = self.agent.run(self.params)
        payload = json.loads(json.dumps(sd_analysis.report_to_dict(report)))
        self.assertEqual(payload["best_variant"], report.best_variant)
        self.assertEqual(len(payload["variants"]), 6)
        self.assertIn("initial_life", payload["sensitivity"])

    def test_formatters(self):
        report = self.agent.run(self.params)
        text = sd_analysis.format_full_report(report)
        self.assertIn("EXECUTIVE SUMMARY", text)
        self.assertIn("baseline (current)", text)
        self.assertIn("RECOMMENDATIONS", text)
        self.assertIn("MISSING DATA FIELDS", text)
        self.assertIn("NEXT EXPERIMENTS", text)
        self.assertIn(report.next_experiments[0].title, text)
        self.assertIn("ASSUMPTIONS", text)
        self.assertIn(report.assumptions[0].description, text)
        self.assertIn("initial_life", sd_analysis.format_sensitivity(report))
        self.assertIn("sd_active", sd_analysis.format_regimes(report))
        self.assertIn("FALSE DEACTIVATIONS", sd_analysis.format_false_deactivations(report))


class BaselineParamsTests(unittest.TestCase):
    def test_baseline_only_disables_the_pause_trigger(self):
        params = replace(sm.DEFAULT_PARAMS, initial_life=200.0, pause_preserves_life=True)
        base = sd_analysis.baseline_params(params)
        self.assertEqual(base, replace(params, high_pct_threshold=sm.BASELINE_PARAMS.high_pct_threshold))
        self.assertTrue(base.pause_preserves_life)

    def test_informational_flags_do_not_change_results(self):
        params = replace(sm.DEFAULT_PARAMS, initial_life=140.0, high_pct_threshold=70.0, long_flow_length_threshold=7)
        flipped = replace(
            params,
            pause_preserves_life=not params.pause_preserves_life,
            allow_competing_strategy_during_pause=not params.allow_competing_strategy_during_pause,
        )
        tl = merge_sessions([_session("s0")])
        a = run_counterfactual(tl, params, "v")
        b = run_counterfactual(tl, flipped, "v")
        self.assertEqual(replace(a, params=flipped), b)


class RecommendationTests(unittest.TestCase):
    def test_adopt_only_with_real_improvement(self):
        sweep = SensitivityResult("x", (140.0,), (), 140.0, 0.0)
        sensitivity = {"initial_life": sweep, "life_decay_per_loss_unit": sweep, "high_pct_threshold": sweep}
        best = replace(_dummy_result(), variant="depreciation_thresh60")
        args = (
            sm.DEFAULT_PARAMS,
            FalseDeactivationSummary(0, 0.0, 0.0, 0.0, None),
            ReversalHostilitySummary(0, 0.0, (), None),
            LongFlowSummary(0, 0, 0.0, 0.0, 0.0),
            sensitivity,
            best,
        )
        without = sd_analysis.generate_recommendations(*args, 0.0)
        self.assertFalse(any(r.rule.startswith("Adopt") for r in without))
        with_gain = sd_analysis.generate_recommendations(*args, 25.0)
        self.assertEqual(with_gain[0].rule, "Adopt the depreciation_thresh60 configuration")
        self.assertEqual(with_gain[0].priority, "high")


def _dummy_result():
    return CounterfactualResult(
        variant="x",
        params=sm.DEFAULT_PARAMS,
        total_pnl=0.0,
        max_drawdown=0.0,
        win_rate=0.0,
        volatility=0.0,
        sharpe_ratio=0.0,
        real_trades_count=0,
        imaginary_trades_count=0,
    )


if __name__ == "__main__":
    unittest.main()

import unittest
from dataclasses import replace

import reversal_hostility as rh
import state_machine as sm
from session_model import Block, Trade, build_timeline


def _blocks(rows):
    return [Block(direction=d, magnitude_pct=pct, sequence_index=i) for i, (d, pct) in enumerate(rows)]


def _trade(name, idx, is_win, pnl):
    return Trade(name, max(0, idx - 1), idx, 1, 1 if is_win else -1, is_win, pnl)


class ReversalHostilityTests(unittest.TestCase):
    def setUp(self):
        self.params = replace(sm.DEFAULT_PARAMS, high_pct_threshold=70.0)
        rows = [(1, 10), (-1, 80), (-1, 10), (-1, 10), (1, 10), (1, 10), (-1, 10), (-1, 10), (-1, 10), (-1, 10)]
        trades = [
            _trade("SameDir", 2, False, -20.0),
            _trade("ZZ", 3, False, -50.0),
            _trade("SameDir", 4, True, 30.0),
            _trade("SameDir", 8, False, -10.0),
        ]
        self.timeline = build_timeline(_blocks(rows), trades)

    def test_scores_each_pause_duration(self):
        events = rh.analyze_reversal_hostility(self.timeline, self.params, pause_durations=(5, 10), lookahead=20)

        self.assertEqual(len(events), 1)
        e = events[0]
        self.assertEqual(e.block_index, 1)
        self.assertEqual(e.reversal_pct, 80.0)
        self.assertEqual((e.from_direction, e.to_direction), (1, -1))
        self.assertEqual(e.subsequent_blocks, 8)
        self.assertEqual(e.subsequent_same_direction, 6)

        k5 = e.outcome_for(5)
        self.assertEqual((k5.avoided_loss, k5.missed_gain, k5.net_benefit), (20.0, 30.0, -10.0))
        k10 = e.outcome_for(10)
        self.assertEqual((k10.avoided_loss, k10.missed_gain, k10.net_benefit), (30.0, 30.0, 0.0))
        self.assertIsNone(e.outcome_for(15))

    def test_lookahead_caps_subsequent_blocks(self):
        events = rh.analyze_reversal_hostility(self.timeline, self.params, pause_durations=(5,), lookahead=3)
        self.assertEqual(events[0].subsequent_blocks, 3)
        self.assertEqual(events[0].subsequent_same_direction, 2)

    def test_threshold_filters_reversals(self):
        p = replace(self.params, high_pct_threshold=81.0)
        with self.assertLogs("reversal_hostility", level="WARNING"):
            events = rh.analyze_reversal_hostility(self.timeline, p)
        self.assertEqual(events, [])

    def test_summary_recommends_best_duration(self):
        events = rh.analyze_reversal_hostility(self.timeline, self.params, pause_durations=(5, 10), lookahead=20)
        s = rh.summarize_reversal_hostility(events, pause_durations=(5, 10))
        self.assertEqual(s.reversal_count, 1)
        self.assertEqual(s.average_reversal_pct, 80.0)
        self.assertEqual([b.average_net_benefit for b in s.benefit_by_duration], [-10.0, 0.0])
        self.assertEqual(s.recommended_pause_duration, 10)

    def test_summary_of_nothing(self):
        s = rh.summarize_reversal_hostility([], pause_durations=(5, 10, 15, 20))
        self.assertEqual(s.reversal_count, 0)
        self.assertEqual(s.average_reversal_pct, 0.0)
        self.assertTrue(all(b.average_net_benefit == 0.0 for b in s.benefit_by_duration))
        self.assertEqual(s.recommended_pause_duration, 5)


if __name__ == "__main__":
    unittest.main()

import math
import unittest

import session_model as smod
from session_model import Block, SessionLog, SessionValidationError, Trade


def _blocks(rows, start=0):
    return tuple(Block(d, pct, start + i) for i, (d, pct) in enumerate(rows))


def _trade(name, idx, signal=None):
    return Trade(name, idx if signal is None else signal, idx, 1, 1, True, 10.0)


class ValidationTests(unittest.TestCase):
    def test_rejects_empty_history(self):
        with self.assertRaises(SessionValidationError):
            smod.validate_blocks([])

    def test_rejects_gap_in_indices(self):
        blocks = [Block(1, 10.0, 0), Block(1, 10.0, 2)]
        with self.assertRaisesRegex(SessionValidationError, "sequence_index 2"):
            smod.validate_blocks(blocks)

    def test_rejects_bad_direction_and_magnitude(self):
        with self.assertRaisesRegex(SessionValidationError, "direction"):
            smod.validate_blocks([Block(0, 10.0, 0)])
        with self.assertRaisesRegex(SessionValidationError, "magnitude_pct"):
            smod.validate_blocks([Block(1, 120.0, 0)])
        with self.assertRaises(SessionValidationError):
            smod.validate_blocks([Block(1, -1.0, 0)])

    def test_rejects_trades_outside_blocks(self):
        blocks = _blocks([(1, 10), (1, 10)])
        with self.assertRaisesRegex(SessionValidationError, "resolution_index 5"):
            smod.validate_trades([_trade("SameDir", 5)], blocks)
        with self.assertRaisesRegex(SessionValidationError, "signal_index"):
            smod.validate_trades([_trade("SameDir", 0, signal=1)], blocks)

    def test_rejects_bool_direction(self):
        with self.assertRaisesRegex(SessionValidationError, "direction"):
            smod.validate_blocks([Block(True, 10.0, 0)])
        blocks = _blocks([(1, 10)])
        with self.assertRaisesRegex(SessionValidationError, "directions"):
            smod.validate_trades([Trade("ZZ", 0, 0, True, True, True, 5.0)], blocks)

    def test_rejects_signal_before_first_block(self):
        blocks = _blocks([(1, 10), (1, 10)], start=3)
        with self.assertRaisesRegex(SessionValidationError, "signal_index -5"):
            smod.validate_trades([_trade("SameDir", 3, signal=-5)], blocks)
        with self.assertRaisesRegex(SessionValidationError, "signal_index 2"):
            smod.validate_trades([_trade("SameDir", 3, signal=2)], blocks)

    def test_rejects_non_finite_pnl(self):
        blocks = _blocks([(1, 10)])
        for pnl in (math.nan, math.inf, -math.inf):
            with self.assertRaisesRegex(SessionValidationError, "pnl must be finite"):
                smod.validate_trades([Trade("SameDir", 0, 0, 1, 1, True, pnl)], blocks)

    def test_rejects_is_win_that_disagrees_with_directions(self):
        blocks = _blocks([(1, 10)])
        with self.assertRaisesRegex(SessionValidationError, "is_win"):
            smod.validate_trades([Trade("SameDir", 0, 0, 1, -1, True, 20.0)], blocks)
        with self.assertRaisesRegex(SessionValidationError, "is_win"):
            smod.validate_trades([Trade("SameDir", 0, 0, 1, 1, False, -20.0)], blocks)

    def test_validation_errors_are_value_errors(self):
        self.assertTrue(issubclass(SessionValidationError, ValueError))


class TradeIndexTests(unittest.TestCase):
    def test_groups_by_resolution_block_in_order(self):
        trades = [_trade("ZZ", 3), _trade("SameDir", 1), _trade("SameDir", 3), _trade("2A2", 2)]
        idx = smod.TradeIndex(trades)

        self.assertEqual(len(idx), 4)
        self.assertEqual([t.strategy_name for t in idx.at(3)], ["ZZ", "SameDir"])
        self.assertEqual(idx.at(0), ())
        self.assertEqual([t.resolution_index for t in idx.between(1, 2)], [1, 2])
        self.assertEqual([t.resolution_index for t in idx.between(1, 3, "SameDir")], [1, 3])
        self.assertEqual(idx.between(3, 1), ())
        self.assertEqual([t.resolution_index for t in idx.for_strategy("SameDir")], [1, 3])
        self.assertEqual(idx.for_strategy("Nope"), ())


class MergeSessionsTests(unittest.TestCase):
    def test_reindexes_each_session(self):
        a = SessionLog("a", _blocks([(1, 10), (1, 20), (-1, 30)]), (_trade("SameDir", 1, signal=0),))
        b = SessionLog("b", _blocks([(1, 40), (-1, 50)], start=7), (_trade("ZZ", 8, signal=7),))

        tl = smod.merge_sessions([a, b])

        self.assertEqual([blk.sequence_index for blk in tl.blocks], [0, 1, 2, 3, 4])
        self.assertEqual([blk.magnitude_pct for blk in tl.blocks], [10, 20, 30, 40, 50])
        zz = tl.index.for_strategy("ZZ")[0]
        self.assertEqual((zz.signal_index, zz.resolution_index), (3, 4))
        self.assertEqual(tl.sd_trades()[0].resolution_index, 1)

    def test_merge_nothing_raises(self):
        with self.assertRaises(SessionValidationError):
            smod.merge_sessions([])

    def test_timeline_lookups(self):
        tl = smod.build_timeline(_blocks([(1, 10), (-1, 20)], start=5), [])
        self.assertEqual(tl.first_index, 5)
        self.assertEqual(tl.block_at(6).magnitude_pct, 20)
        self.assertIsNone(tl.previous_block(5))
        self.assertEqual(tl.previous_block(6).sequence_index, 5)


class DecodingTests(unittest.TestCase):
    def test_recorder_layout(self):
        data = {
            "ts": "2026-01-04T10:00:00Z",
            "pnlTotal": 125.5,
            "blocks": [
                {"dir": 1, "pct": 55.0, "index": 0, "ts": "a"},
                {"dir": -1, "pct": 72.5, "index": 1, "ts": "b"},
            ],
            "trades": [
                {
                    "pattern": "SameDir",
                    "openIndex": 0,
                    "evalIndex": 1,
                    "predictedDirection": 1,
                    "actualDirection": -1,
                    "isWin": False,
                    "pnl": -145.0,
                    "confidence": 0.6,
                    "reason": "momentum",
                }
            ],
        }
        s = smod.session_from_dict(data)

        self.assertEqual(s.session_id, "2026-01-04T10:00:00Z")
        self.assertEqual(s.pnl_total, 125.5)
        self.assertEqual(s.blocks[1], Block(-1, 72.5, 1, "b"))
        t = s.trades[0]
        self.assertEqual((t.strategy_name, t.signal_index, t.resolution_index), ("SameDir", 0, 1))
        self.assertFalse(t.is_win)
        self.assertEqual(t.reason_text, "momentum")

    def test_snake_case_layout(self):
        data = {
            "blocks": [{"direction": -1, "magnitude_pct": 12.0, "sequence_index": 0}],
            "trades": [
                {
                    "strategy_name": "ZZ",
                    "signal_index": 0,
                    "resolution_index": 0,
                    "predicted_direction": -1,
                    "actual_direction": -1,
                    "is_win": True,
                    "pnl": 24.0,
                }
            ],
        }
        s = smod.session_from_dict(data, session_id="s1")
        self.assertEqual(s.session_id, "s1")
        self.assertEqual(s.blocks[0].direction, -1)
        self.assertTrue(s.trades[0].is_win)

    def test_bad_rows_raise_validation_errors(self):
        with self.assertRaisesRegex(SessionValidationError, "block row 0"):
            smod.session_from_dict({"blocks": [{"dir": "up", "pct": 10}]})
        with self.assertRaisesRegex(SessionValidationError, "trade row 0"):
            smod.session_from_dict({"blocks": [{"dir": 1, "pct": 10}], "trades": [{"pattern": "ZZ"}]})
        with self.assertRaises(SessionValidationError):
            smod.session_from_dict({"blocks": []})
        with self.assertRaises(SessionValidationError):
            smod.session_from_dict(["not", "a", "dict"])

    def test_block_without_magnitude_is_rejected(self):
        with self.assertRaisesRegex(SessionValidationError, "block row 1: missing magnitude_pct/pct"):
            smod.session_from_dict({"blocks": [{"dir": 1, "pct": 10}, {"dir": -1, "index": 1}]})
        with self.assertRaisesRegex(SessionValidationError, "block row 0"):
            smod.session_from_dict({"blocks": [{"dir": True, "pct": 10}]})

    def test_is_win_must_be_a_json_bool(self):
        for raw in ("false", "true", 0, 1):
            with self.assertRaisesRegex(SessionValidationError, "trade row 0: is_win must be true or false"):
                smod.session_from_dict(_session(_trade_row(isWin=raw, actualDirection=-1)))
        with self.assertRaisesRegex(SessionValidationError, "trade row 0: missing is_win/isWin"):
            smod.session_from_dict(_session(_trade_row(isWin=None)))

    def test_pnl_is_required_and_finite(self):
        row = _trade_row()
        del row["pnl"]
        with self.assertRaisesRegex(SessionValidationError, "trade row 0: missing pnl"):
            smod.session_from_dict(_session(row))
        for raw in (float("nan"), "NaN", "inf"):
            with self.assertRaisesRegex(SessionValidationError, "pnl must be finite"):
                smod.session_from_dict(_session(_trade_row(pnl=raw)))

    def test_negative_open_index_is_rejected(self):
        with self.assertRaisesRegex(SessionValidationError, "signal_index -5"):
            smod.session_from_dict(_session(_trade_row(openIndex=-5)))

    def test_well_formed_row_still_decodes(self):
        s = smod.session_from_dict(_session(_trade_row()))
        self.assertEqual(s.trades[0].pnl, 20.0)
        self.assertIs(s.trades[0].is_win, True)


def _trade_row(**overrides) -> dict:
    row = {
        "pattern": "SameDir",
        "openIndex": 0,
        "evalIndex": 1,
        "predictedDirection": 1,
        "actualDirection": 1,
        "isWin": True,
        "pnl": 20.0,
    }
    row.update(overrides)
    return row


def _session(trade_row: dict) -> dict:
    return {"blocks": [{"dir": 1, "pct": 10, "index": 0}, {"dir": 1, "pct": 20, "index": 1}], "trades": [trade_row]}


if __name__ == "__main__":
    unittest.main()

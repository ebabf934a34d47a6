import tempfile
import unittest
from pathlib import Path

from lid_quiz.integrity import (
    describe,
    find_inconsistencies,
    has_activity,
    is_valid_stats,
    repair_stats,
    validate_storage_integrity,
)
from lid_quiz.stats import empty_stats
from lid_quiz.storage import build_adapter


def corrupted_stats():
    return {
        **empty_stats(),
        "correctAnswers": {"1": True, "2": True},
        "incorrectAnswers": {"2": 1, "3": 0},
        "attempted": {"1": True, "2": True, "3": True},
        "correct": 2,
        "wrong": 2,
        "learnedQuestions": {"3": 1700000000000},
        "totalSessions": 4,
    }


class TestValidateStorageIntegrity(unittest.TestCase):
    def setUp(self):
        self.tmp = tempfile.TemporaryDirectory()
        self.adapter = build_adapter(Path(self.tmp.name) / "s.json", session_backing={})

    def tearDown(self):
        self.tmp.cleanup()

    def test_missing_key_returns_none(self):
        self.assertIsNone(validate_storage_integrity(self.adapter, "k", lambda v: True))

    def test_valid_value_is_returned_as_is(self):
        self.adapter.set("k", {"a": 1})
        self.assertEqual(validate_storage_integrity(self.adapter, "k", lambda v: "a" in v), {"a": 1})

    def test_invalid_value_is_removed(self):
        self.adapter.set("k", [1, 2])
        self.assertIsNone(validate_storage_integrity(self.adapter, "k", lambda v: isinstance(v, dict)))
        self.assertIsNone(self.adapter.get("k"))

    def test_predicate_exception_counts_as_invalid(self):
        self.adapter.set("k", 5)

        def boom(value):
            raise KeyError("x")

        self.assertIsNone(validate_storage_integrity(self.adapter, "k", boom))
        self.assertIsNone(self.adapter.get("k"))


class TestIsValidStats(unittest.TestCase):
    def test_empty_stats_are_valid(self):
        self.assertTrue(is_valid_stats(empty_stats()))

    def test_flagged_questions_optional(self):
        stats = empty_stats()
        del stats["flaggedQuestions"]
        self.assertTrue(is_valid_stats(stats))

    def test_rejects_wrong_shapes(self):
        self.assertFalse(is_valid_stats(None))
        self.assertFalse(is_valid_stats([]))
        self.assertFalse(is_valid_stats({**empty_stats(), "correct": "1"}))
        self.assertFalse(is_valid_stats({**empty_stats(), "correct": True}))
        self.assertFalse(is_valid_stats({**empty_stats(), "attempted": []}))
        self.assertFalse(is_valid_stats({**empty_stats(), "flaggedQuestions": []}))
        stats = empty_stats()
        del stats["learnedQuestions"]
        self.assertFalse(is_valid_stats(stats))


class TestRepair(unittest.TestCase):
    def test_detects_every_kind_of_inconsistency(self):
        inc = find_inconsistencies(corrupted_stats())
        self.assertEqual(inc.duplicates, ["2"])
        self.assertTrue(inc.counter_drift)
        self.assertTrue(inc.needs_fixing)
        self.assertIn("重複 1 件", describe(inc))

        stats = {**empty_stats(), "correctAnswers": {"5": True}, "correct": 1}
        inc = find_inconsistencies(stats)
        self.assertEqual(inc.missing_from_attempted, ["5"])

        stats = {**empty_stats(), "attempted": {"9": True}}
        self.assertEqual(find_inconsistencies(stats).extra_in_attempted, ["9"])

    def test_consistent_stats_need_no_fixing(self):
        stats = {
            **empty_stats(),
            "correctAnswers": {"1": True},
            "incorrectAnswers": {"2": 3},
            "attempted": {"1": True, "2": True},
            "correct": 1,
            "wrong": 1,
        }
        inc = find_inconsistencies(stats)
        self.assertFalse(inc.needs_fixing)
        self.assertIsNone(describe(inc))

    def test_incorrect_wins_and_counters_follow_maps(self):
        fixed = repair_stats(corrupted_stats())
        self.assertEqual(fixed["correctAnswers"], {"1": True})
        self.assertEqual(fixed["incorrectAnswers"], {"2": 1, "3": 0})
        self.assertEqual(fixed["attempted"], {"1": True, "2": True, "3": True})
        self.assertEqual(fixed["correct"], 1)
        self.assertEqual(fixed["wrong"], 2)

    def test_untouched_fields_survive(self):
        fixed = repair_stats(corrupted_stats())
        self.assertEqual(fixed["learnedQuestions"], {"3": 1700000000000})
        self.assertEqual(fixed["totalSessions"], 4)
        self.assertEqual(fixed["flaggedQuestions"], {})

    def test_repair_is_pure_and_idempotent(self):
        original = corrupted_stats()
        once = repair_stats(original)
        self.assertEqual(original, corrupted_stats())
        self.assertEqual(repair_stats(once), once)
        self.assertFalse(find_inconsistencies(once).needs_fixing)

    def test_has_activity(self):
        self.assertFalse(has_activity(empty_stats()))
        self.assertTrue(has_activity(corrupted_stats()))
        self.assertTrue(has_activity({**empty_stats(), "attempted": {"1": True}}))


if __name__ == "__main__":
    unittest.main()

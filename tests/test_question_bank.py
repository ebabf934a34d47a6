import json
import tempfile
import unittest
from pathlib import Path
from unittest import mock

import requests

from lid_quiz import question_bank as qb
from lid_quiz.models import Question


SAMPLE = [
    {"id": 1, "question": "Frage 1", "options": ["a", "b", "c", "d"], "answerIndex": 2},
    {"id": 2, "question": "Frage 2", "options": ["a", "b", "c", "d"], "answerIndex": 0},
    {"question": "ohne id"},
]

REGION = [
    {"question": "Landesfrage A", "options": ["a", "b", "c", "d"], "answerIndex": 1},
    {"question": "Landesfrage B", "options": ["a", "b", "c", "d"], "answerIndex": 3, "image": "x.png"},
]


class BankTestCase(unittest.TestCase):
    def setUp(self):
        qb.clear_pool_cache()
        qb.clear_region_cache()
        self.tmp = tempfile.TemporaryDirectory()
        self.dir = Path(self.tmp.name)

    def tearDown(self):
        self.tmp.cleanup()
        qb.clear_pool_cache()
        qb.clear_region_cache()

    def write(self, name, data):
        path = self.dir / name
        path.write_text(json.dumps(data), encoding="utf-8")
        return str(path)


class TestLoadQuestionPool(BankTestCase):
    def test_local_file_skips_broken_records(self):
        pool = qb.load_question_pool(self.write("pool.json", SAMPLE))
        self.assertEqual([q.id for q in pool], [1, 2])
        self.assertEqual(pool[0].answer_index, 2)

    def test_cached_until_forced(self):
        source = self.write("pool.json", SAMPLE)
        first = qb.load_question_pool(source)
        Path(source).write_text(json.dumps(SAMPLE[:1]), encoding="utf-8")
        self.assertIs(qb.load_question_pool(source), first)
        self.assertEqual(len(qb.load_question_pool(source, force_reload=True)), 1)

    def test_missing_file_falls_back_to_demo(self):
        pool = qb.load_question_pool(str(self.dir / "missing.json"))
        self.assertEqual([q.id for q in pool], [1, 2])
        self.assertEqual(pool, qb.demo_questions())

    def test_empty_or_malformed_falls_back_to_demo(self):
        self.assertEqual(qb.load_question_pool(self.write("empty.json", [])), qb.demo_questions())
        self.assertEqual(qb.load_question_pool(self.write("obj.json", {"a": 1})), qb.demo_questions())
        bad = self.dir / "bad.json"
        bad.write_text("{", encoding="utf-8")
        self.assertEqual(qb.load_question_pool(str(bad)), qb.demo_questions())

    def test_url_source_uses_requests(self):
        response = mock.Mock()
        response.json.return_value = SAMPLE
        with mock.patch.object(qb.requests, "get", return_value=response) as get:
            pool = qb.load_question_pool("https://example.org/LiDData.json", timeout=3.0)
        get.assert_called_once_with("https://example.org/LiDData.json", timeout=3.0)
        response.raise_for_status.assert_called_once_with()
        self.assertEqual(len(pool), 2)

    def test_network_error_falls_back_to_demo(self):
        with mock.patch.object(qb.requests, "get", side_effect=requests.ConnectionError("offline")):
            pool = qb.load_question_pool("https://example.org/LiDData.json")
        self.assertEqual(pool, qb.demo_questions())

    def test_demo_is_not_cached(self):
        with mock.patch.object(qb.requests, "get", side_effect=requests.Timeout("slow")):
            qb.load_question_pool("https://example.org/x.json")
        response = mock.Mock()
        response.json.return_value = SAMPLE
        with mock.patch.object(qb.requests, "get", return_value=response):
            pool = qb.load_question_pool("https://example.org/x.json")
        self.assertEqual(len(pool), 2)
        self.assertEqual(pool[0].question, "Frage 1")


class TestRegions(BankTestCase):
    def test_known_regions(self):
        keys = [r["key"] for r in qb.get_available_regions()]
        self.assertIn(qb.DEFAULT_REGION, keys)
        self.assertEqual(qb.get_region("bayern")["name"], "Bayern")
        self.assertIsNone(qb.get_region("atlantis"))

    def test_ids_are_assigned_from_301(self):
        questions = qb.load_region_questions("bayern", self.write("bayern.json", REGION))
        self.assertEqual([q.id for q in questions], [301, 302])
        self.assertEqual(questions[1].image_path("bayern"), "images/bayern/image-302.png")
        self.assertIsNone(questions[0].image_path("bayern"))

    def test_cached_per_region(self):
        source = self.write("berlin.json", REGION)
        first = qb.load_region_questions("berlin", source)
        self.assertIs(qb.load_region_questions("berlin", source), first)

    def test_failure_returns_empty_and_is_not_cached(self):
        self.assertEqual(qb.load_region_questions("bremen", str(self.dir / "missing.json")), [])
        questions = qb.load_region_questions("bremen", self.write("bremen.json", REGION))
        self.assertEqual(len(questions), 2)


class TestQuestionModel(unittest.TestCase):
    def test_from_dict_and_back(self):
        q = Question.from_dict(SAMPLE[0])
        self.assertTrue(q.is_playable)
        self.assertTrue(q.is_correct(2))
        self.assertFalse(q.is_correct(1))
        self.assertEqual(q.to_dict(), SAMPLE[0])

    def test_rejects_bad_records(self):
        with self.assertRaises(ValueError):
            Question.from_dict({"question": "x"})
        with self.assertRaises(ValueError):
            Question.from_dict({"id": 1, "question": "x", "options": "abcd"})
        with self.assertRaises(ValueError):
            Question.from_dict("nope")


if __name__ == "__main__":
    unittest.main()

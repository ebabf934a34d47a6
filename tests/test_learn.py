import unittest

from lid_quiz.learn import (
    FILTER_ALL,
    FILTER_CORRECT,
    FILTER_FLAGGED,
    FILTER_LEARNED,
    FILTER_UNANSWERED,
    FILTER_WRONG,
    browse,
    filter_questions,
    match_score,
    page_count,
    paginate,
    search_questions,
)
from lid_quiz.models import Question
from lid_quiz.stats import empty_stats, mark_learned, record_answer, toggle_flag

POOL = [
    Question(1, "Wer wählt den Bundestag?", ("Das Volk", "Der Bundesrat", "Die Länder", "Der Kanzler"), 0),
    Question(2, "Was ist die Hauptstadt von Deutschland?", ("Berlin", "Bonn", "Hamburg", "München"), 0),
    Question(3, "Welches Recht gehört zu den Grundrechten?",
             ("Meinungsfreiheit", "Steuerpflicht", "Wehrpflicht", "Schulpflicht"), 0),
    Question(150, "Wer ernennt den Bundeskanzler?",
             ("Der Bundestag", "Der Bundespräsident", "Das Volk", "Die Länder"), 0),
]


def sample_stats():
    stats = record_answer(empty_stats(), 1, 0, True)
    stats = record_answer(stats, 2, 1, False)
    stats = mark_learned(stats, 3, now=1)
    stats = toggle_flag(stats, 150, now=1)
    return stats


class TestFilter(unittest.TestCase):
    def test_modes(self):
        stats = sample_stats()
        ids = lambda mode: [q.id for q in filter_questions(POOL, stats, mode)]
        self.assertEqual(ids(FILTER_ALL), [1, 2, 3, 150])
        self.assertEqual(ids(FILTER_UNANSWERED), [3, 150])
        self.assertEqual(ids(FILTER_WRONG), [2])
        self.assertEqual(ids(FILTER_CORRECT), [1])
        self.assertEqual(ids(FILTER_LEARNED), [3])
        self.assertEqual(ids(FILTER_FLAGGED), [150])

    def test_without_stats(self):
        self.assertEqual(len(filter_questions(POOL, None, FILTER_UNANSWERED)), 4)
        self.assertEqual(filter_questions(POOL, None, FILTER_WRONG), [])

    def test_unknown_mode(self):
        with self.assertRaises(ValueError):
            filter_questions(POOL, None, "irgendwas")


class TestSearch(unittest.TestCase):
    def test_exact_match_in_question_ranks_first(self):
        found = search_questions(POOL, "Bundestag")
        self.assertEqual([q.id for q in found], [1, 150])

    def test_typo_still_matches(self):
        self.assertGreater(match_score("Wer wählt den Bundestag?", "bundestg"), 0.9)
        self.assertEqual(search_questions(POOL, "Bundestg")[0].id, 1)

    def test_options_are_searched(self):
        self.assertEqual([q.id for q in search_questions(POOL, "Meinungsfreiheit")], [3])

    def test_short_or_unrelated_queries(self):
        self.assertEqual(search_questions(POOL, "B"), [])
        self.assertEqual(search_questions(POOL, "   "), [])
        self.assertEqual(search_questions(POOL, "Katzenfutter"), [])

    def test_limit(self):
        many = [Question(i, f"Frage zum Bundestag {i}", ("a", "b"), 0) for i in range(1, 30)]
        self.assertEqual(len(search_questions(many, "Bundestag")), 10)


class TestBrowse(unittest.TestCase):
    def test_groups_by_category(self):
        groups = browse(POOL, None)
        self.assertEqual(list(groups), ["Geschichte", "Politisches System"])
        self.assertEqual([q.id for q in groups["Geschichte"]], [1, 2, 3])

    def test_single_category_with_filter(self):
        groups = browse(POOL, sample_stats(), category="Geschichte", mode=FILTER_UNANSWERED)
        self.assertEqual({k: [q.id for q in v] for k, v in groups.items()}, {"Geschichte": [3]})

    def test_pagination(self):
        items = list(range(45))
        self.assertEqual(page_count(45), 3)
        self.assertEqual(page_count(0), 1)
        self.assertEqual(paginate(items, 3), list(range(40, 45)))
        self.assertEqual(paginate(items, 0), list(range(20)))
        self.assertEqual(paginate(items, 9), list(range(40, 45)))


if __name__ == "__main__":
    unittest.main()

import unittest

from lid_quiz.categories import COLUMNS, category_for, category_progress, group_by_category, short_category_name
from lid_quiz.models import Question
from lid_quiz.stats import empty_stats, mark_learned, record_answer


def q(i):
    return Question(id=i, question=f"Q{i}", options=("a", "b", "c", "d"), answer_index=0)


class TestCategoryFor(unittest.TestCase):
    def test_boundaries(self):
        cases = {
            1: "Geschichte",
            68: "Geschichte",
            69: "Verfassung & Religion",
            98: "Verfassung & Religion",
            99: "Deutschland",
            133: "Deutschland",
            134: "Politisches System",
            213: "Politisches System",
            214: "Rechtssystem & Arbeit",
            246: "Rechtssystem & Arbeit",
            247: "Bildung & EU",
            300: "Bildung & EU",
            301: "Jüdisches Leben",
            460: "Jüdisches Leben",
        }
        for qid, name in cases.items():
            self.assertEqual(category_for(qid).name, name, qid)

    def test_fallback(self):
        self.assertEqual(category_for(0).name, "Allgemein")
        self.assertEqual(category_for("abc").name, "Allgemein")
        self.assertEqual(category_for(None).name, "Allgemein")

    def test_string_ids_and_short_names(self):
        self.assertEqual(category_for("150").name, "Politisches System")
        self.assertEqual(short_category_name(150), "Politik")
        self.assertEqual(short_category_name(80), "Verfassung")


class TestCategoryProgress(unittest.TestCase):
    def test_grouping_keeps_category_order(self):
        groups = group_by_category([q(200), q(5), q(70), q(6)])
        self.assertEqual(list(groups), ["Geschichte", "Verfassung & Religion", "Politisches System"])
        self.assertEqual([x.id for x in groups["Geschichte"]], [5, 6])

    def test_progress_table(self):
        stats = record_answer(empty_stats(), 1, 0, True)
        stats = record_answer(stats, 2, 1, False)
        stats = mark_learned(stats, 2, now=1)
        df = category_progress(stats, [q(1), q(2), q(3), q(4), q(100)])

        self.assertEqual(list(df.columns), COLUMNS)
        self.assertEqual(list(df["Kategorie"]), ["Geschichte", "Deutschland"])
        row = df.iloc[0]
        self.assertEqual(row["Fragen"], 4)
        self.assertEqual(row["Bearbeitet"], 2)
        self.assertEqual(row["Richtig"], 1)
        self.assertEqual(row["Falsch"], 1)
        self.assertEqual(row["Gelernt"], 1)
        self.assertEqual(row["Fortschritt"], 25.0)
        self.assertEqual(df.iloc[1]["Richtig"], 0)

    def test_empty_inputs(self):
        df = category_progress(None, [])
        self.assertTrue(df.empty)
        self.assertEqual(list(df.columns), COLUMNS)


if __name__ == "__main__":
    unittest.main()

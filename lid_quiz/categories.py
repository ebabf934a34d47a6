"""
categories.py
======================

問題 id の範囲によるカテゴリ分けと、ダッシュボード用のカテゴリ別集計。
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict, Iterable, List, Optional

import pandas as pd

from .models import Question


@dataclass(frozen=True)
class Category:
    name: str
    short_name: str
    color: str
    description: str
    start: int
    end: Optional[int]  # None = 上限なし

    def contains(self, question_id: int) -> bool:
        if question_id < self.start:
            return False
        return self.end is None or question_id <= self.end


CATEGORIES: List[Category] = [
    Category("Geschichte", "Geschichte", "blue",
             "Deutsche Geschichte von der Antike bis zur Wiedervereinigung", 1, 68),
    Category("Verfassung & Religion", "Verfassung", "purple",
             "Grundgesetz, Feiertage, religiöse Vielfalt", 69, 98),
    Category("Deutschland", "Deutschland", "green",
             "Geographie, Bundesländer, Allgemeinwissen über Deutschland", 99, 133),
    Category("Politisches System", "Politik", "red",
             "Regierungsstruktur, Demokratie, Parteien, Wahlen", 134, 213),
    Category("Rechtssystem & Arbeit", "Recht & Arbeit", "orange",
             "Rechtssystem, Gerichte, Arbeitsrecht, Arbeitnehmerrechte", 214, 246),
    Category("Bildung & EU", "Bildung & EU", "teal",
             "Bildungssystem, Familienrecht, Europäische Union", 247, 300),
    Category("Jüdisches Leben", "Jüdisches Leben", "indigo",
             "Jüdisches Leben, Israel, Antisemitismus", 301, None),
]

FALLBACK = Category("Allgemein", "Allgemein", "gray", "Allgemeine Fragen", 0, 0)


def category_for(question_id: Any) -> Category:
    try:
        qid = int(question_id)
    except (TypeError, ValueError):
        return FALLBACK
    for cat in CATEGORIES:
        if cat.contains(qid):
            return cat
    return FALLBACK


def short_category_name(question_id: Any) -> str:
    return category_for(question_id).short_name


def group_by_category(questions: Iterable[Question]) -> Dict[str, List[Question]]:
    """カテゴリ名 → 問題リスト（CATEGORIES の順、空のカテゴリは含めない）。"""
    groups: Dict[str, List[Question]] = {}
    for q in questions:
        groups.setdefault(category_for(q.id).name, []).append(q)
    order = [c.name for c in CATEGORIES] + [FALLBACK.name]
    return {name: groups[name] for name in order if name in groups}


COLUMNS = ["Kategorie", "Fragen", "Bearbeitet", "Richtig", "Falsch", "Gelernt", "Fortschritt"]


def category_progress(stats: Optional[Dict[str, Any]], questions: Iterable[Question]) -> pd.DataFrame:
    """
    カテゴリごとの進捗表を返す。

    Fortschritt は 正解数 / 問題数（%、小数 1 桁）。
    """
    s = stats if isinstance(stats, dict) else {}

    def keys(name: str) -> set:
        value = s.get(name)
        return set(value) if isinstance(value, dict) else set()

    attempted = keys("attempted")
    correct = keys("correctAnswers")
    incorrect = keys("incorrectAnswers")
    learned = keys("learnedQuestions")

    rows = []
    for name, items in group_by_category(questions).items():
        ids = {str(q.id) for q in items}
        n_correct = len(ids & correct)
        rows.append(
            {
                "Kategorie": name,
                "Fragen": len(ids),
                "Bearbeitet": len(ids & attempted),
                "Richtig": n_correct,
                "Falsch": len(ids & incorrect),
                "Gelernt": len(ids & learned),
                "Fortschritt": round(100.0 * n_correct / len(ids), 1) if ids else 0.0,
            }
        )

    return pd.DataFrame(rows, columns=COLUMNS)

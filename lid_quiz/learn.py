"""
learn.py
======================

学習モード（問題の一覧・検索）。

- カテゴリ・解答状態で絞り込む
- 問題文と選択肢をあいまい検索する（2 文字以上、上位 10 件）
- 1 ページ分ずつ取り出す
"""

from __future__ import annotations

import difflib
import re
from typing import Any, Dict, Iterable, List, Optional, Sequence, Tuple

from .categories import category_for, group_by_category
from .models import Question

FILTER_ALL = "alle"
FILTER_UNANSWERED = "unbeantwortet"
FILTER_WRONG = "falsch"
FILTER_CORRECT = "richtig"
FILTER_LEARNED = "gelernt"
FILTER_FLAGGED = "markiert"

FILTERS = [
    FILTER_ALL,
    FILTER_UNANSWERED,
    FILTER_WRONG,
    FILTER_CORRECT,
    FILTER_LEARNED,
    FILTER_FLAGGED,
]

_FILTER_MAPS = {
    FILTER_WRONG: "incorrectAnswers",
    FILTER_CORRECT: "correctAnswers",
    FILTER_LEARNED: "learnedQuestions",
    FILTER_FLAGGED: "flaggedQuestions",
}

MIN_QUERY_LENGTH = 2
SEARCH_LIMIT = 10
SEARCH_THRESHOLD = 0.75
# 選択肢だけに当たった問題は問題文に当たった問題より下に並べる
OPTION_WEIGHT = 0.8

PAGE_SIZE = 20

_WORD_RE = re.compile(r"\w+")


def _keys(stats: Optional[Dict[str, Any]], name: str) -> set:
    if not isinstance(stats, dict):
        return set()
    value = stats.get(name)
    return set(value) if isinstance(value, dict) else set()


def filter_questions(
    questions: Iterable[Question],
    stats: Optional[Dict[str, Any]],
    mode: str = FILTER_ALL,
) -> List[Question]:
    """解答状態で絞り込む。未知のモードは ValueError。"""
    if mode not in FILTERS:
        raise ValueError(f"未知のフィルタです: {mode}")
    questions = list(questions)
    if mode == FILTER_ALL:
        return questions
    if mode == FILTER_UNANSWERED:
        attempted = _keys(stats, "attempted")
        return [q for q in questions if str(q.id) not in attempted]
    ids = _keys(stats, _FILTER_MAPS[mode])
    return [q for q in questions if str(q.id) in ids]


# ----------------------------------------------------------------------
#  検索
# ----------------------------------------------------------------------
def _words(text: str) -> List[str]:
    return _WORD_RE.findall(text.casefold())


def match_score(text: str, query: str) -> float:
    """
    query が text にどれだけ近く含まれるか（0.0〜1.0）。
    部分一致なら 1.0、それ以外は同じ語数の窓ごとの SequenceMatcher の最大値。
    """
    words = _words(text)
    needle = " ".join(_words(query))
    if not needle or not words:
        return 0.0
    if needle in " ".join(words):
        return 1.0

    size = len(needle.split())
    best = 0.0
    for i in range(max(1, len(words) - size + 1)):
        window = " ".join(words[i:i + size])
        best = max(best, difflib.SequenceMatcher(None, window, needle).ratio())
    return best


def search_questions(
    questions: Iterable[Question],
    query: str,
    limit: int = SEARCH_LIMIT,
    threshold: float = SEARCH_THRESHOLD,
) -> List[Question]:
    """問題文・選択肢のあいまい検索。スコアの高い順（同点は id 順）。"""
    query = (query or "").strip()
    if len(query) < MIN_QUERY_LENGTH:
        return []

    scored: List[Tuple[float, int, Question]] = []
    for q in questions:
        score = match_score(q.question, query)
        if q.options:
            score = max(score, OPTION_WEIGHT * max(match_score(o, query) for o in q.options))
        if score >= threshold:
            scored.append((score, q.id, q))

    scored.sort(key=lambda t: (-t[0], t[1]))
    return [q for _, _, q in scored[:limit]]


# ----------------------------------------------------------------------
#  一覧
# ----------------------------------------------------------------------
def browse(
    questions: Sequence[Question],
    stats: Optional[Dict[str, Any]],
    category: Optional[str] = None,
    mode: str = FILTER_ALL,
) -> Dict[str, List[Question]]:
    """カテゴリごとにまとめた一覧。category を渡すとそのカテゴリだけ。"""
    selected = [q for q in questions if category is None or category_for(q.id).name == category]
    return group_by_category(filter_questions(selected, stats, mode))


def page_count(total: int, size: int = PAGE_SIZE) -> int:
    return max(1, -(-total // size))


def paginate(items: Sequence[Any], page: int, size: int = PAGE_SIZE) -> List[Any]:
    """1 始まりのページ番号。範囲外は最初・最後のページに寄せる。"""
    page = min(max(page, 1), page_count(len(items), size))
    start = (page - 1) * size
    return list(items[start:start + size])

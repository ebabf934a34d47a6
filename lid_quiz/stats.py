"""
stats.py
======================

lid.stats（学習進捗）の更新ルールをまとめたモジュール。

lid.stats の構造:

{
  "attempted":        {"12": true, ...},     # 一度でも解いた問題
  "correctAnswers":   {"12": true, ...},     # 直近の解答が正解
  "incorrectAnswers": {"7": 2, ...},         # 直近の解答が不正解（選んだ index）
  "learnedQuestions": {"7": 1700000000000},  # 「覚えた」印（ms タイムスタンプ）
  "flaggedQuestions": {"9": 1700000000000},  # 後で見直す印
  "correct": 1,                              # == len(correctAnswers)
  "wrong": 1,                                # == len(incorrectAnswers)
  "totalSessions": 3
}

不変条件:
- 1 つの id が correctAnswers と incorrectAnswers の両方に入ることはない
- correct / wrong は常に各マップの件数と一致する

すべての更新は「前の値 → 次の値」の純粋関数として書き、
StatsEngine はそれを PersistentCell.write() に渡すだけにする。
（同じ tick に複数の更新が積まれても取りこぼさないため）
"""

from __future__ import annotations

import logging
import time
from typing import Any, Callable, Dict, Iterable, List, Optional

from .cell import PersistentCell
from .integrity import describe, find_inconsistencies, repair_stats

logger = logging.getLogger(__name__)

Stats = Dict[str, Any]


def empty_stats() -> Stats:
    return {
        "attempted": {},
        "correct": 0,
        "wrong": 0,
        "totalSessions": 0,
        "correctAnswers": {},
        "incorrectAnswers": {},
        "learnedQuestions": {},
        "flaggedQuestions": {},
    }


def now_ms() -> int:
    return int(time.time() * 1000)


def _qid(question_id: Any) -> str:
    # JSON のキーは文字列なので id は常に文字列で持つ
    return str(question_id)


def _map(stats: Stats, name: str) -> Dict[str, Any]:
    value = stats.get(name)
    return dict(value) if isinstance(value, dict) else {}


# ----------------------------------------------------------------------
#  純粋関数（前の値 → 次の値）
# ----------------------------------------------------------------------
def record_answer(stats: Stats, question_id: Any, chosen_index: int, is_correct: bool) -> Stats:
    """
    解答を 1 件反映する。

    - 初回: 正解/不正解のどちらかに入れ、attempted に印を付ける
    - 正誤が反転: 反対側から消して入れ直す（両方に入る瞬間を作らない）
    - 不正解のまま別の選択肢: 選んだ index だけ更新する
    カウンタは毎回マップの件数から計算し直す。
    """
    key = _qid(question_id)
    correct = _map(stats, "correctAnswers")
    incorrect = _map(stats, "incorrectAnswers")
    attempted = _map(stats, "attempted")

    if is_correct:
        correct[key] = True
        incorrect.pop(key, None)
    else:
        incorrect[key] = int(chosen_index)
        correct.pop(key, None)
    attempted[key] = True

    return {
        **stats,
        "attempted": attempted,
        "correctAnswers": correct,
        "incorrectAnswers": incorrect,
        "correct": len(correct),
        "wrong": len(incorrect),
    }


def toggle_flag(stats: Stats, question_id: Any, now: Optional[int] = None) -> Stats:
    key = _qid(question_id)
    flagged = _map(stats, "flaggedQuestions")
    if key in flagged:
        del flagged[key]
    else:
        flagged[key] = now if now is not None else now_ms()
    return {**stats, "flaggedQuestions": flagged}


def mark_learned(stats: Stats, question_id: Any, now: Optional[int] = None) -> Stats:
    learned = _map(stats, "learnedQuestions")
    learned[_qid(question_id)] = now if now is not None else now_ms()
    return {**stats, "learnedQuestions": learned}


def unmark_learned(stats: Stats, question_id: Any) -> Stats:
    learned = _map(stats, "learnedQuestions")
    learned.pop(_qid(question_id), None)
    return {**stats, "learnedQuestions": learned}


def reset_region_progress(stats: Stats, start: int, end: int) -> Stats:
    """
    州別問題の id 範囲（start〜end を含む）の解答状態を消す。

    州を切り替えると同じ id に別の問題が入るため、attempted / 正解 / 不正解
    から範囲内の id を取り除く。カウンタは実際に消した件数だけ減らし、0 未満にはしない。
    learnedQuestions / flaggedQuestions はそのまま。
    """
    attempted = _map(stats, "attempted")
    correct = _map(stats, "correctAnswers")
    incorrect = _map(stats, "incorrectAnswers")

    removed_correct = 0
    removed_wrong = 0
    for qid in range(int(start), int(end) + 1):
        key = _qid(qid)
        attempted.pop(key, None)
        if correct.pop(key, None) is not None:
            removed_correct += 1
        if key in incorrect:
            del incorrect[key]
            removed_wrong += 1

    return {
        **stats,
        "attempted": attempted,
        "correctAnswers": correct,
        "incorrectAnswers": incorrect,
        "correct": max(0, int(stats.get("correct", 0) or 0) - removed_correct),
        "wrong": max(0, int(stats.get("wrong", 0) or 0) - removed_wrong),
    }


def complete_session(stats: Stats) -> Stats:
    return {**stats, "totalSessions": int(stats.get("totalSessions", 0) or 0) + 1}


# ----------------------------------------------------------------------
#  参照系（レビュー画面・ダッシュボード用）
# ----------------------------------------------------------------------
def _ids(stats: Optional[Stats], name: str) -> List[int]:
    if not isinstance(stats, dict):
        return []
    return sorted(int(k) for k in _map(stats, name) if str(k).lstrip("-").isdigit())


def correct_ids(stats: Optional[Stats]) -> List[int]:
    return _ids(stats, "correctAnswers")


def incorrect_ids(stats: Optional[Stats]) -> List[int]:
    return _ids(stats, "incorrectAnswers")


def flagged_ids(stats: Optional[Stats]) -> List[int]:
    return _ids(stats, "flaggedQuestions")


def learned_ids(stats: Optional[Stats]) -> List[int]:
    return _ids(stats, "learnedQuestions")


def chosen_wrong_index(stats: Optional[Stats], question_id: Any) -> Optional[int]:
    """不正解のときに選んだ選択肢 index（無ければ None）。"""
    if not isinstance(stats, dict):
        return None
    return _map(stats, "incorrectAnswers").get(_qid(question_id))


def progress_summary(stats: Optional[Stats]) -> Dict[str, Any]:
    """ダッシュボード用の集計。"""
    s = stats if isinstance(stats, dict) else {}
    correct = len(_map(s, "correctAnswers"))
    wrong = len(_map(s, "incorrectAnswers"))
    answered = correct + wrong
    return {
        "attempted": len(_map(s, "attempted")),
        "correct": correct,
        "wrong": wrong,
        "learned": len(_map(s, "learnedQuestions")),
        "flagged": len(_map(s, "flaggedQuestions")),
        "total_sessions": int(s.get("totalSessions", 0) or 0),
        "accuracy": round(correct / answered, 4) if answered else 0.0,
    }


# ----------------------------------------------------------------------
#  StatsEngine
# ----------------------------------------------------------------------
class StatsEngine:
    """
    lid.stats のセルを持ち、名前付きの操作だけで更新するクラス。

    主な責務:
    - 解答・フラグ・学習済みの記録
    - 州切り替え時の id 範囲リセット
    - 描画のたびに呼ぶセルフチェック（不整合があれば修復）
    """

    def __init__(self, cell: PersistentCell, clock: Callable[[], int] = now_ms):
        self.cell = cell
        self.clock = clock

    @property
    def stats(self) -> Stats:
        return self.cell.read()

    def record_answer(self, question_id: Any, chosen_index: int, is_correct: bool) -> None:
        self.cell.write(lambda s: record_answer(s, question_id, chosen_index, is_correct))

    def toggle_flag(self, question_id: Any) -> None:
        ts = self.clock()
        self.cell.write(lambda s: toggle_flag(s, question_id, now=ts))

    def is_flagged(self, question_id: Any) -> bool:
        return _qid(question_id) in _map(self.stats, "flaggedQuestions")

    def mark_learned(self, question_id: Any) -> None:
        ts = self.clock()
        self.cell.write(lambda s: mark_learned(s, question_id, now=ts))

    def unmark_learned(self, question_id: Any) -> None:
        self.cell.write(lambda s: unmark_learned(s, question_id))

    def is_learned(self, question_id: Any) -> bool:
        return _qid(question_id) in _map(self.stats, "learnedQuestions")

    def reset_region_progress(self, start: int, end: int) -> None:
        self.cell.write(lambda s: reset_region_progress(s, start, end))

    def complete_session(self) -> None:
        self.cell.write(complete_session)

    def self_check(self) -> bool:
        """
        不整合があれば修復する。修復した場合 True。

        同じ tick に複数の解答が積まれた場合の取りこぼしを最終的に収束させる。
        """
        inc = find_inconsistencies(self.stats)
        if not inc.needs_fixing:
            return False
        logger.warning("lid.stats の不整合を修復します: %s", describe(inc))
        return self.cell.write(repair_stats)

    def correct_ids(self) -> List[int]:
        return correct_ids(self.stats)

    def incorrect_ids(self) -> List[int]:
        return incorrect_ids(self.stats)

    def flagged_ids(self) -> List[int]:
        return flagged_ids(self.stats)

    def learned_ids(self) -> List[int]:
        return learned_ids(self.stats)

    def chosen_wrong_index(self, question_id: Any) -> Optional[int]:
        return chosen_wrong_index(self.stats, question_id)

    def summary(self) -> Dict[str, Any]:
        return progress_summary(self.stats)

    def excluded_ids(self) -> Iterable[str]:
        """「正解済みを除外」モード用の id 集合（スナップショット）。"""
        return frozenset(_map(self.stats, "correctAnswers"))

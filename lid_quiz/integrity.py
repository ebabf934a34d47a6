"""
integrity.py
======================

保存データの整合性チェックと修復。

- validate_storage_integrity(): 述語で検証し、壊れていれば削除して None を返す
- is_valid_stats(): lid.stats の構造チェック
- find_inconsistencies(): 正解/不正解の重複・attempted のずれ・カウンタのずれを検出
- repair_stats(): 上記を修復した新しい dict を返す（元の dict は変更しない）

修復ポリシー:
- 正解と不正解の両方にある id は「不正解」を残す（最後に間違えた記録を優先）
- attempted は正解/不正解のキーの和集合として作り直す
- correct / wrong は保存値を信用せず、マップの件数から再計算する
- learnedQuestions / flaggedQuestions / totalSessions には触れない
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional

from .storage import StorageAdapter

logger = logging.getLogger(__name__)

# 必須のマップ（flaggedQuestions は古いデータに無いので任意）
REQUIRED_MAPS = ("attempted", "correctAnswers", "incorrectAnswers", "learnedQuestions")
REQUIRED_COUNTERS = ("correct", "wrong", "totalSessions")


# ----------------------------------------------------------------------
#  ストレージ上の値の検証
# ----------------------------------------------------------------------
def validate_storage_integrity(
    adapter: StorageAdapter,
    key: str,
    predicate: Callable[[Any], bool],
) -> Any:
    """
    key の値を読み、predicate で検証する。

    - 値が無ければ None
    - predicate が False を返す / 例外を投げる → key を全ストアから削除して None
    - 通れば値をそのまま返す（型変換などはしない）
    """
    data = adapter.get(key)
    if data is None:
        return None

    try:
        ok = predicate(data)
    except Exception as e:
        logger.error("%s の検証中にエラーが発生したため削除します: %s", key, e)
        adapter.remove(key)
        return None

    if not ok:
        logger.warning("%s に不正なデータを検出したため削除します", key)
        adapter.remove(key)
        return None

    return data


def _is_int(v: Any) -> bool:
    return isinstance(v, int) and not isinstance(v, bool)


def is_valid_stats(stats: Any) -> bool:
    """lid.stats として読み込んでよい構造かどうか。"""
    if not isinstance(stats, dict):
        return False
    for name in REQUIRED_COUNTERS:
        if not _is_int(stats.get(name)):
            return False
    for name in REQUIRED_MAPS:
        if not isinstance(stats.get(name), dict):
            return False
    if "flaggedQuestions" in stats and not isinstance(stats["flaggedQuestions"], dict):
        return False
    return True


# ----------------------------------------------------------------------
#  不整合の検出
# ----------------------------------------------------------------------
@dataclass
class StatsInconsistencies:
    duplicates: List[str] = field(default_factory=list)
    missing_from_attempted: List[str] = field(default_factory=list)
    extra_in_attempted: List[str] = field(default_factory=list)
    counter_drift: bool = False

    @property
    def needs_fixing(self) -> bool:
        return bool(
            self.duplicates
            or self.missing_from_attempted
            or self.extra_in_attempted
            or self.counter_drift
        )


def _as_map(value: Any) -> Dict[str, Any]:
    """壊れた値（None・文字列など）は空のマップとして扱う。"""
    return value if isinstance(value, dict) else {}


def find_inconsistencies(stats: Any) -> StatsInconsistencies:
    s = _as_map(stats)
    correct = _as_map(s.get("correctAnswers"))
    incorrect = _as_map(s.get("incorrectAnswers"))
    attempted = _as_map(s.get("attempted"))

    duplicates = [k for k in correct if k in incorrect]
    answered = set(correct) | set(incorrect)
    missing = sorted(k for k in answered if k not in attempted)
    extra = [k for k in attempted if k not in answered]

    drift = (
        s.get("correct") != len(correct) - len(duplicates)
        or s.get("wrong") != len(incorrect)
    )

    return StatsInconsistencies(
        duplicates=duplicates,
        missing_from_attempted=missing,
        extra_in_attempted=extra,
        counter_drift=drift,
    )


# ----------------------------------------------------------------------
#  修復
# ----------------------------------------------------------------------
def repair_stats(stats: Any) -> Dict[str, Any]:
    """
    重複と attempted のずれを直し、カウンタを再計算した新しい dict を返す。
    何度適用しても結果は変わらない（冪等）。
    """
    s = dict(_as_map(stats))
    incorrect = dict(_as_map(s.get("incorrectAnswers")))
    correct = {k: v for k, v in _as_map(s.get("correctAnswers")).items() if k not in incorrect}

    s["correctAnswers"] = correct
    s["incorrectAnswers"] = incorrect
    s["attempted"] = {k: True for k in list(correct) + list(incorrect)}
    s["correct"] = len(correct)
    s["wrong"] = len(incorrect)
    return s


def has_activity(stats: Any) -> bool:
    """新規インストール（何も解いていない）でなければ True。"""
    s = _as_map(stats)
    return not (
        s.get("correct") == 0
        and s.get("wrong") == 0
        and len(_as_map(s.get("attempted"))) == 0
    )


def describe(inc: StatsInconsistencies) -> Optional[str]:
    """ログ用の短い説明。問題が無ければ None。"""
    if not inc.needs_fixing:
        return None
    parts = []
    if inc.duplicates:
        parts.append(f"重複 {len(inc.duplicates)} 件")
    if inc.missing_from_attempted:
        parts.append(f"attempted 欠落 {len(inc.missing_from_attempted)} 件")
    if inc.extra_in_attempted:
        parts.append(f"attempted 余剰 {len(inc.extra_in_attempted)} 件")
    if inc.counter_drift:
        parts.append("カウンタのずれ")
    return "、".join(parts)

"""
quiz_set.py
======================

シード付きの出題セット生成。

- 同じシード・同じ除外集合・同じ問題プールなら、必ず同じ順序の問題リストになる
- 「正解済みを除外」モードでは excluded_ids に含まれる id を除く
- 州別問題は 3 問を（シードなしで）ランダムに選んで末尾に足す
  州別問題が足りない分は一般問題で埋めて、合計 size 問にする
"""

from __future__ import annotations

import random
from typing import Any, Callable, Iterable, List, Optional, Sequence, TypeVar

from .models import Question

T = TypeVar("T")

MASK32 = 0xFFFFFFFF
DEFAULT_QUIZ_COUNT = 33
DEFAULT_REGION_QUOTA = 3


# ----------------------------------------------------------------------
#  Mulberry32
# ----------------------------------------------------------------------
def _imul(a: int, b: int) -> int:
    return (a * b) & MASK32


def mulberry32(seed: int) -> Callable[[], float]:
    """
    32bit の小さな疑似乱数生成器。[0, 1) の float を返す関数を返す。
    シードは下位 32bit だけを使う（ms のタイムスタンプもそのまま渡せる）。
    """
    state = int(seed) & MASK32

    def rng() -> float:
        nonlocal state
        state = (state + 0x6D2B79F5) & MASK32
        t = _imul(state ^ (state >> 15), state | 1)
        t ^= (t + _imul(t ^ (t >> 7), t | 61)) & MASK32
        return ((t ^ (t >> 14)) & MASK32) / 4294967296

    return rng


def seeded_shuffle(items: Sequence[T], seed: int) -> List[T]:
    """Fisher–Yates（末尾から 1 まで）。元のシーケンスは変更しない。"""
    out = list(items)
    rng = mulberry32(seed)
    for i in range(len(out) - 1, 0, -1):
        j = int(rng() * (i + 1))
        out[i], out[j] = out[j], out[i]
    return out


# ----------------------------------------------------------------------
#  出題対象の絞り込み
# ----------------------------------------------------------------------
def learn_set(pool: Iterable[Question]) -> List[Question]:
    """四択かつ正解 index のある問題だけ。"""
    return [q for q in pool if q is not None and q.is_playable]


def _normalize(excluded_ids: Optional[Iterable[Any]]) -> frozenset:
    return frozenset(str(x) for x in (excluded_ids or ()))


def _eligible(pool: Iterable[Question], excluded: frozenset) -> List[Question]:
    if not excluded:
        return list(pool)
    return [q for q in pool if str(q.id) not in excluded]


# ----------------------------------------------------------------------
#  生成
# ----------------------------------------------------------------------
def generate(
    seed: int,
    excluded_ids: Optional[Iterable[Any]],
    pool: Sequence[Question],
    size: int = DEFAULT_QUIZ_COUNT,
) -> List[Question]:
    """除外 → シード付きシャッフル → 先頭 min(size, 残り件数) 件。"""
    if size < 0:
        raise ValueError("size は 0 以上である必要があります")
    available = _eligible(pool, _normalize(excluded_ids))
    shuffled = seeded_shuffle(available, seed)
    return shuffled[: min(size, len(shuffled))]


def pick_region_questions(
    region_pool: Sequence[Question],
    excluded_ids: Optional[Iterable[Any]] = None,
    count: int = DEFAULT_REGION_QUOTA,
    rng: Optional[random.Random] = None,
) -> List[Question]:
    """州別問題から count 問を一様ランダムに選ぶ（再現性は不要なのでシードなし）。"""
    eligible = _eligible(region_pool or [], _normalize(excluded_ids))
    if not eligible or count <= 0:
        return []
    r = rng if rng is not None else random
    return r.sample(eligible, min(count, len(eligible)))


def build_quiz_set(
    seed: int,
    excluded_ids: Optional[Iterable[Any]],
    pool: Sequence[Question],
    region_pool: Optional[Sequence[Question]] = None,
    size: int = DEFAULT_QUIZ_COUNT,
    region_quota: int = DEFAULT_REGION_QUOTA,
    rng: Optional[random.Random] = None,
) -> List[Question]:
    """
    一般問題 (size - 州別の件数) + 州別問題 (最大 region_quota) の出題セット。
    州別問題が region_quota に満たない場合は一般問題を増やして size 問に近づける。
    """
    if size < 0:
        raise ValueError("size は 0 以上である必要があります")
    excluded = _normalize(excluded_ids)
    regional = pick_region_questions(
        region_pool or [], excluded, count=min(region_quota, size), rng=rng
    )
    general = generate(seed, excluded, pool, size - len(regional))
    return general + regional

"""
session.py
======================

クイズ 1 回分の状態（QuizSession）と、それを操作する QuizController。

QuizSession は永続化しない派生データ:
- seed から一度だけ生成した問題リスト（途中で作り直さない）
- answers: 位置ごとの選択 index（-1 = 未回答）
- flags:   このクイズ内で「後で見る」にした位置

QuizController が持つ永続セル:
    lid.mode / lid.answers / lid.flags / lid.quizDuration /
    lid.excludeCorrect / lid.selectedState / lid.stats

app.py からは QuizController だけ使えばよい。
"""

from __future__ import annotations

import logging
import random
import threading
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional, Sequence, Tuple

from .cell import PersistentCell
from .config import AppConfig
from .integrity import is_valid_stats
from .models import Question
from .question_bank import DEFAULT_REGION, REGION_ID_END, REGION_ID_START, get_region
from .quiz_set import build_quiz_set
from .stats import StatsEngine, empty_stats, now_ms
from .storage import StorageAdapter
from .timer import CountdownTimer

logger = logging.getLogger(__name__)

UNANSWERED = -1

MODE_DASHBOARD = "dashboard"
MODE_QUIZ = "quiz"
MODE_LEARN = "learn"


# ----------------------------------------------------------------------
#  QuizSession
# ----------------------------------------------------------------------
@dataclass
class QuizSession:
    seed: int
    questions: Tuple[Question, ...]
    answers: List[int] = field(default_factory=list)
    flags: List[int] = field(default_factory=list)
    current: int = 0
    completed: bool = False

    def __post_init__(self):
        self.questions = tuple(self.questions)
        if len(self.answers) != len(self.questions):
            self.answers = [UNANSWERED] * len(self.questions)

    @property
    def total(self) -> int:
        return len(self.questions)

    @property
    def current_question(self) -> Optional[Question]:
        if 0 <= self.current < len(self.questions):
            return self.questions[self.current]
        return None

    @property
    def progress(self) -> float:
        """現在位置の進捗（%）。"""
        if not self.questions:
            return 0.0
        return (self.current + 1) / len(self.questions) * 100

    def answer_at(self, position: int) -> int:
        return self.answers[position] if 0 <= position < len(self.answers) else UNANSWERED

    def score_summary(self) -> Dict[str, int]:
        correct = wrong = empty = 0
        for q, a in zip(self.questions, self.answers):
            if a == UNANSWERED:
                empty += 1
            elif q.is_correct(a):
                correct += 1
            else:
                wrong += 1
        return {"correct": correct, "wrong": wrong, "empty": empty, "total": len(self.questions)}


# ----------------------------------------------------------------------
#  QuizController
# ----------------------------------------------------------------------
class QuizController:
    """
    クイズの流れ（開始・解答・移動・終了）と州の切り替えを扱うクラス。

    generator は build_quiz_set と同じ引数を受け取る関数（テストで差し替える）。
    timer_factory は CountdownTimer と同じ引数を受け取る。
    """

    def __init__(
        self,
        adapter: Optional[StorageAdapter],
        config: Optional[AppConfig] = None,
        pool: Sequence[Question] = (),
        region_pool: Sequence[Question] = (),
        enabled: bool = True,
        clock: Callable[[], int] = now_ms,
        generator: Callable[..., List[Question]] = build_quiz_set,
        timer_factory: Callable[..., CountdownTimer] = CountdownTimer,
        rng: Optional[random.Random] = None,
    ):
        self.config = config or AppConfig()
        self.pool = list(pool)
        self.region_pool = list(region_pool)
        self.clock = clock
        self.generator = generator
        self.timer_factory = timer_factory
        self.rng = rng
        self._lock = threading.RLock()

        def cell(key: str, initial: Any, validator: Optional[Callable[[Any], bool]] = None) -> PersistentCell:
            return PersistentCell(key, initial, enabled=enabled, validator=validator, adapter=adapter)

        self.mode = cell("lid.mode", MODE_DASHBOARD, lambda v: isinstance(v, str))
        self.answers = cell("lid.answers", [], lambda v: isinstance(v, list))
        self.flags = cell("lid.flags", [], lambda v: isinstance(v, list))
        self.quiz_duration = cell(
            "lid.quizDuration", 0, lambda v: isinstance(v, (int, float)) and not isinstance(v, bool)
        )
        self.exclude_correct = cell("lid.excludeCorrect", False, lambda v: isinstance(v, bool))
        self.selected_state = cell(
            "lid.selectedState",
            self.config.default_region or DEFAULT_REGION,
            lambda v: isinstance(v, str) and get_region(v) is not None,
        )
        self.stats_cell = cell("lid.stats", empty_stats(), is_valid_stats)
        self.stats = StatsEngine(self.stats_cell, clock=clock)

        self.session: Optional[QuizSession] = None
        self.timer: Optional[CountdownTimer] = None

        # 問題リストは保存していないので、再起動後の "quiz" はダッシュボードに戻す
        if self.mode.read() == MODE_QUIZ:
            logger.info("前回のクイズは復元できないためダッシュボードに戻します")
            self.mode.write(MODE_DASHBOARD)

    # ------------------------------------------------------------------
    # 状態
    # ------------------------------------------------------------------
    @property
    def in_quiz(self) -> bool:
        return self.mode.read() == MODE_QUIZ and self.session is not None

    def set_mode(self, mode: str) -> None:
        self.mode.write(mode)

    def set_quiz_duration(self, minutes: int) -> None:
        if minutes < 0:
            raise ValueError("制限時間は 0 以上である必要があります")
        self.quiz_duration.write(int(minutes))

    def set_exclude_correct(self, flag: bool) -> None:
        """次のクイズから有効。進行中のクイズの問題リストは変えない。"""
        self.exclude_correct.write(bool(flag))

    # ------------------------------------------------------------------
    # クイズの開始
    # ------------------------------------------------------------------
    def start_new_quiz(self, seed: Optional[int] = None) -> QuizSession:
        # ロックの外で止める（時間切れ処理がロック待ちの場合がある）
        if self.timer is not None:
            self.timer.cancel()
        with self._lock:
            if seed is None:
                seed = self.clock()

            # 除外集合は開始時点のスナップショット
            excluded = self.stats.excluded_ids() if self.exclude_correct.read() else frozenset()
            questions = self.generator(
                seed,
                excluded,
                self.pool,
                self.region_pool,
                size=self.config.quiz_count,
                region_quota=self.config.region_quota,
                rng=self.rng,
            )
            session = QuizSession(seed=seed, questions=tuple(questions))

            self._replace_timer(session)
            self.session = session
            self.answers.write(list(session.answers))
            self.flags.write([])
            self.mode.write(MODE_QUIZ)

            if self.timer is not None:
                self.timer.start()

            logger.info("新しいクイズを開始しました (seed=%s, %d 問)", seed, session.total)
            return session

    def _replace_timer(self, session: QuizSession) -> None:
        if self.timer is not None:
            self.timer.cancel()
            self.timer = None
        minutes = self.quiz_duration.read() or 0
        if minutes > 0:
            self.timer = self.timer_factory(minutes, lambda: self._on_time_up(session))

    def _on_time_up(self, session: QuizSession) -> None:
        with self._lock:
            # 古いタイマーが新しいクイズを終わらせないように
            if self.session is not session:
                return
            logger.info("制限時間に達したためクイズを終了します")
            self.complete_quiz()

    # ------------------------------------------------------------------
    # 解答・移動
    # ------------------------------------------------------------------
    def answer(self, index: int) -> Optional[bool]:
        """
        現在の問題に解答する。正解なら True。
        クイズ中でない・終了済みの場合は何もせず None。
        """
        with self._lock:
            if not self.in_quiz or self.session.completed:
                return None
            q = self.session.current_question
            if q is None:
                return None
            if not 0 <= index < len(q.options):
                raise ValueError(f"選択肢 index が範囲外です: {index}")

            correct = q.is_correct(index)
            self.session.answers[self.session.current] = index
            self.answers.write(list(self.session.answers))
            self.stats.record_answer(q.id, index, correct)
            return correct

    def next(self) -> int:
        with self._lock:
            if self.session is not None and self.session.questions:
                self.session.current = min(self.session.current + 1, self.session.total - 1)
                return self.session.current
            return 0

    def prev(self) -> int:
        with self._lock:
            if self.session is not None:
                self.session.current = max(self.session.current - 1, 0)
                return self.session.current
            return 0

    def go_to(self, position: int) -> int:
        with self._lock:
            if self.session is not None and self.session.questions:
                self.session.current = min(max(position, 0), self.session.total - 1)
                return self.session.current
            return 0

    def toggle_session_flag(self) -> bool:
        """
        現在位置のフラグを切り替え、付いたら True。
        lid.stats の flaggedQuestions も同じ状態に揃える（復習タブで使う）。
        """
        with self._lock:
            if self.session is None:
                return False
            pos = self.session.current
            if pos in self.session.flags:
                self.session.flags.remove(pos)
                flagged = False
            else:
                self.session.flags.append(pos)
                flagged = True
            self.flags.write(list(self.session.flags))

            q = self.session.current_question
            if q is not None and self.stats.is_flagged(q.id) != flagged:
                self.stats.toggle_flag(q.id)
            return flagged

    # ------------------------------------------------------------------
    # 終了
    # ------------------------------------------------------------------
    def complete_quiz(self) -> bool:
        """
        クイズを終了して totalSessions を 1 増やす。
        1 つのクイズにつき 1 回だけ。終了したら True。
        """
        with self._lock:
            if self.session is None or self.session.completed:
                return False
            self.session.completed = True
            if self.timer is not None:
                self.timer.cancel()
            self.stats.complete_session()
            logger.info("クイズを終了しました: %s", self.session.score_summary())
            return True

    def leave_quiz(self) -> None:
        """ダッシュボードへ戻る（タイマーも止める）。"""
        if self.timer is not None:
            self.timer.cancel()
        with self._lock:
            self.timer = None
            self.session = None
            self.mode.write(MODE_DASHBOARD)

    # ------------------------------------------------------------------
    # 州
    # ------------------------------------------------------------------
    def has_region_progress(self) -> bool:
        attempted = self.stats.stats.get("attempted") or {}
        return any(
            str(k).isdigit() and REGION_ID_START <= int(k) <= REGION_ID_END for k in attempted
        )

    def select_region(self, key: str, region_pool: Optional[Sequence[Question]] = None) -> bool:
        """
        州を切り替える。州別問題は同じ id 範囲を使い回すため 301〜310 の進捗を消す。
        同じ州なら何もしない（False）。
        """
        if get_region(key) is None:
            raise ValueError(f"未知の州です: {key}")
        with self._lock:
            if region_pool is not None:
                self.region_pool = list(region_pool)
            if key == self.selected_state.read():
                return False
            with self.stats_cell.batch():
                self.stats.reset_region_progress(REGION_ID_START, REGION_ID_END)
            self.selected_state.write(key)
            logger.info("州を %s に切り替えました", key)
            return True

    # ------------------------------------------------------------------
    # セルフチェック
    # ------------------------------------------------------------------
    def self_check(self) -> bool:
        return self.stats.self_check()

    def resync(self) -> None:
        for c in (self.mode, self.answers, self.flags, self.quiz_duration,
                  self.exclude_correct, self.selected_state, self.stats_cell):
            c.resync()

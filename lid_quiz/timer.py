"""
timer.py
======================

クイズの制限時間（分）を数えるカウントダウンタイマー。

- start() でデーモンスレッドを起動し、interval 秒ごとに tick() する
- 残り 0 になったら on_time_up を 1 回だけ呼ぶ
- total_minutes <= 0 のときはタイマー無し（start しても何もしない）
- cancel() でスレッドを止める。新しいクイズを始める前に必ず呼ぶこと

tick() は直接呼んでもよい（テストや Streamlit の再実行から進める場合）。
"""

from __future__ import annotations

import logging
import threading
from typing import Callable, Optional

logger = logging.getLogger(__name__)


class CountdownTimer:
    def __init__(
        self,
        total_minutes: float,
        on_time_up: Optional[Callable[[], None]] = None,
        interval: float = 1.0,
    ):
        self.total_seconds = max(0, int(round(float(total_minutes or 0) * 60)))
        self.on_time_up = on_time_up
        self.interval = interval

        self._lock = threading.Lock()
        self._remaining = self.total_seconds
        self._paused = False
        self._fired = False
        self._stop = threading.Event()
        self._thread: Optional[threading.Thread] = None

    # ------------------------------------------------------------------
    # 状態
    # ------------------------------------------------------------------
    @property
    def enabled(self) -> bool:
        return self.total_seconds > 0

    @property
    def remaining(self) -> int:
        return self._remaining

    @property
    def running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    @property
    def paused(self) -> bool:
        return self._paused

    @property
    def expired(self) -> bool:
        return self._fired

    def format_time(self) -> str:
        """残り時間を MM:SS で返す。"""
        minutes, seconds = divmod(max(0, self._remaining), 60)
        return f"{minutes:02d}:{seconds:02d}"

    # ------------------------------------------------------------------
    # 操作
    # ------------------------------------------------------------------
    def tick(self) -> int:
        """1 秒進める。0 になった瞬間に on_time_up を呼ぶ。"""
        fire = False
        with self._lock:
            if not self.enabled or self._paused or self._fired:
                return self._remaining
            self._remaining = max(0, self._remaining - 1)
            if self._remaining == 0:
                self._fired = True
                fire = True

        if fire:
            self._stop.set()
            if self.on_time_up is not None:
                try:
                    self.on_time_up()
                except Exception as e:
                    logger.error("時間切れの処理でエラーが発生しました: %s", e)
        return self._remaining

    def start(self) -> None:
        if not self.enabled or self._fired or self.running:
            return
        self._stop.clear()
        self._thread = threading.Thread(target=self._run, name="lid-countdown", daemon=True)
        self._thread.start()

    def _run(self) -> None:
        while not self._stop.wait(self.interval):
            self.tick()

    def cancel(self) -> None:
        self._stop.set()
        thread = self._thread
        self._thread = None
        if thread is not None and thread is not threading.current_thread():
            thread.join(timeout=max(self.interval * 2, 0.1))

    def pause(self) -> None:
        self._paused = True

    def resume(self) -> None:
        self._paused = False

    def reset(self) -> None:
        """止めて残り時間を最初に戻す（再 start が必要）。"""
        self.cancel()
        with self._lock:
            self._remaining = self.total_seconds
            self._fired = False
            self._paused = False

    def __repr__(self) -> str:
        return f"CountdownTimer(remaining={self.format_time()}, running={self.running})"

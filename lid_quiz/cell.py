"""
cell.py
======================

StorageAdapter に保存される「値 1 つ分」の入れ物。

    cell = PersistentCell("lid.stats", empty_stats(), enabled=True,
                          validator=is_valid_stats, adapter=adapter)
    cell.write(lambda prev: {**prev, "totalSessions": prev["totalSessions"] + 1})

- 生成時に一度だけストレージから読む（validator があれば検証付き）
- 生成時には書き込まない（読んだ値をそのまま書き戻すだけになるため）
- write() は値そのもの、または「前の値 → 次の値」の関数を受け取る
- batch() の中の write は、外側の batch を抜けたときに 1 回だけ保存する
- 保存に失敗してもメモリ上の値が正（ログだけ残す）
"""

from __future__ import annotations

import logging
import threading
from contextlib import contextmanager
from typing import Any, Callable, Generic, Iterator, Optional, TypeVar, Union

from .integrity import validate_storage_integrity
from .storage import StorageAdapter

logger = logging.getLogger(__name__)

T = TypeVar("T")

# 同意レベル: "ask"（未回答） / "necessary" / "all"
CONSENT_LEVELS = ("ask", "necessary", "all")


def persistence_enabled(consent: Optional[str]) -> bool:
    """少なくとも "necessary" の同意があるときだけ永続化する。"""
    return consent in ("necessary", "all")


class PersistentCell(Generic[T]):
    """
    永続化される値のセル。

    enabled=False の場合はストレージに一切触れず、メモリ上だけで動く。
    """

    def __init__(
        self,
        key: str,
        initial_value: T,
        enabled: bool = True,
        validator: Optional[Callable[[Any], bool]] = None,
        adapter: Optional[StorageAdapter] = None,
    ):
        if enabled and adapter is None:
            raise ValueError("enabled=True の場合は adapter が必要です")

        self.key = key
        self.initial_value = initial_value
        self.enabled = enabled
        self.validator = validator
        self.adapter = adapter

        self._lock = threading.RLock()
        self._batch_depth = 0
        self._dirty = False
        self._value: T = self._load_initial()

    # ------------------------------------------------------------------
    # 読み込み
    # ------------------------------------------------------------------
    def _read_storage(self) -> Any:
        if self.validator is not None:
            return validate_storage_integrity(self.adapter, self.key, self.validator)
        return self.adapter.get(self.key)

    def _load_initial(self) -> T:
        if not self.enabled:
            return self.initial_value
        try:
            stored = self._read_storage()
        except Exception as e:
            logger.error("%s の初期化に失敗しました: %s", self.key, e)
            return self.initial_value
        return stored if stored is not None else self.initial_value

    def read(self) -> T:
        return self._value

    @property
    def value(self) -> T:
        return self._value

    # ------------------------------------------------------------------
    # 書き込み
    # ------------------------------------------------------------------
    def write(self, new_value: Union[T, Callable[[T], T]]) -> bool:
        """
        値を更新する。関数を渡した場合は直前の値から次の値を計算する。

        戻り値: 値が受け入れられたかどうか（保存の成否ではない）
        """
        with self._lock:
            prev = self._value
            try:
                resolved = new_value(prev) if callable(new_value) else new_value
            except Exception as e:
                logger.error("%s の更新に失敗しました: %s", self.key, e)
                return False

            if self.validator is not None:
                try:
                    ok = self.validator(resolved)
                except Exception as e:
                    logger.warning("%s の検証で例外が発生したため更新を取り消します: %s", self.key, e)
                    return False
                if not ok:
                    logger.warning("%s の検証に失敗したため更新を取り消します", self.key)
                    return False

            self._value = resolved
            self._dirty = True
            if self._batch_depth == 0:
                self._flush()
            return True

    @contextmanager
    def batch(self) -> Iterator["PersistentCell[T]"]:
        """この中で行った write の保存をまとめて 1 回にする。"""
        with self._lock:
            self._batch_depth += 1
            try:
                yield self
            finally:
                self._batch_depth -= 1
                if self._batch_depth == 0:
                    self._flush()

    def _flush(self) -> None:
        if not self._dirty:
            return
        self._dirty = False
        if not self.enabled:
            return
        try:
            ok = self.adapter.set(self.key, self._value, self.enabled)
        except Exception as e:
            logger.error("%s の保存に失敗しました: %s", self.key, e)
            return
        if not ok:
            logger.warning("%s をストレージに保存できませんでした", self.key)

    # ------------------------------------------------------------------
    # 再同期
    # ------------------------------------------------------------------
    def resync(self) -> None:
        """
        ストレージから読み直してメモリの値を置き換える（別タブ・別プロセスの変更用）。
        値が無ければ何もしない。書き戻しはしない。
        """
        if not self.enabled:
            return
        with self._lock:
            try:
                stored = self._read_storage()
            except Exception as e:
                logger.error("%s の再同期に失敗しました: %s", self.key, e)
                return
            if stored is not None:
                self._value = stored
                self._dirty = False

    def __repr__(self) -> str:
        return f"PersistentCell({self.key!r}, enabled={self.enabled})"

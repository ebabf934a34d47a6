"""
migration.py
======================

起動時に一度だけ走らせる移行処理。

1. migrate_from_cookies()
   Cookie だけで保存していた頃のキーを durable ストアへコピーする。
   durable に既にあるキーは上書きしない。値は文字列のまま（検証は後で
   PersistentCell が読み込むときに行う）。

2. StatsMigration
   lid.stats の古い不整合（正解/不正解の重複、attempted のずれ）を一度だけ修復する。
   完了したら lid.migrationCompleted = true を保存し、以後は何もしない。

   状態: NOT_STARTED → RUNNING → COMPLETED
   保存するのは COMPLETED だけ。RUNNING の途中で落ちた場合は次回 NOT_STARTED から
   やり直す（修復は冪等なので安全）。
"""

from __future__ import annotations

import enum
import json
import logging
from dataclasses import dataclass
from typing import Any, List

from .cell import PersistentCell
from .integrity import find_inconsistencies, has_activity, repair_stats
from .storage import STORAGE_VERSION, VERSION_KEY, StorageAdapter

logger = logging.getLogger(__name__)

LEGACY_KEYS: List[str] = [
    "lid.stats",
    "lid.mode",
    "lid.answers",
    "lid.flags",
    "lid.quizDuration",
    "lid.excludeCorrect",
    "lid.selectedState",
    "lid.consent",
    "lid.dark",
]

MIGRATION_KEY = "lid.migrationCompleted"


# ----------------------------------------------------------------------
#  Cookie → durable
# ----------------------------------------------------------------------
def migrate_from_cookies(adapter: StorageAdapter) -> List[str]:
    """
    Cookie にだけある旧キーを durable ストアへコピーし、コピーしたキーを返す。
    何度呼んでも結果は同じ。
    """
    if not adapter.durable.is_available():
        logger.info("durable ストアが使えないため Cookie の移行をスキップします")
        return []

    migrated: List[str] = []
    for key in LEGACY_KEYS:
        if adapter.raw_get("durable", key):
            continue
        cookie_value = adapter.raw_get("cookie", key)
        if not cookie_value:
            continue
        if adapter.raw_set("durable", key, cookie_value):
            migrated.append(key)

    if migrated:
        adapter.raw_set("durable", VERSION_KEY, json.dumps(STORAGE_VERSION))
        logger.info("Cookie から %d 件のキーを移行しました: %s", len(migrated), ", ".join(migrated))
    return migrated


# ----------------------------------------------------------------------
#  lid.stats の一回限りの修復
# ----------------------------------------------------------------------
class MigrationState(str, enum.Enum):
    NOT_STARTED = "not_started"
    RUNNING = "running"
    COMPLETED = "completed"


@dataclass
class MigrationResult:
    stats: Any
    ran: bool
    reason: str


def run_stats_migration(stats: Any, completed: bool) -> MigrationResult:
    """
    修復が必要なら修復した stats を返す純粋関数。

    reason:
        skipped_no_data_or_completed … 完了済み / stats が無い
        skipped_empty_stats          … 新規インストール（何も解いていない）
        no_fixing_needed             … 整合している
        fixed_inconsistencies        … 修復した
    """
    if (
        completed
        or not isinstance(stats, dict)
        or ("correctAnswers" not in stats and "incorrectAnswers" not in stats)
    ):
        return MigrationResult(stats, False, "skipped_no_data_or_completed")

    if not has_activity(stats):
        return MigrationResult(stats, False, "skipped_empty_stats")

    if not find_inconsistencies(stats).needs_fixing:
        return MigrationResult(stats, False, "no_fixing_needed")

    return MigrationResult(repair_stats(stats), True, "fixed_inconsistencies")


class StatsMigration:
    """
    lid.stats の修復を一度だけ行うクラス。

    stats_cell:     lid.stats の PersistentCell
    completed_cell: lid.migrationCompleted の PersistentCell（bool）
    """

    def __init__(self, stats_cell: PersistentCell, completed_cell: PersistentCell):
        self.stats_cell = stats_cell
        self.completed_cell = completed_cell
        self._state = (
            MigrationState.COMPLETED if completed_cell.read() is True else MigrationState.NOT_STARTED
        )
        self.last_result: MigrationResult = MigrationResult(None, False, "not_run")

    @property
    def state(self) -> MigrationState:
        return self._state

    def run(self) -> MigrationResult:
        if self._state is MigrationState.COMPLETED:
            self.last_result = MigrationResult(self.stats_cell.read(), False, "skipped_no_data_or_completed")
            return self.last_result

        self._state = MigrationState.RUNNING
        result = run_stats_migration(self.stats_cell.read(), completed=False)

        # 書き込みは前の値からの関数で行う（repair_stats は冪等）
        if result.ran and not self.stats_cell.write(repair_stats):
            # 修復後の値が検証を通らなかった → 完了にせず次回やり直す
            self._state = MigrationState.NOT_STARTED
            self.last_result = MigrationResult(self.stats_cell.read(), False, "rejected")
            logger.error("lid.stats の移行結果が検証を通りませんでした")
            return self.last_result

        if result.ran:
            result = MigrationResult(self.stats_cell.read(), True, result.reason)
        self.completed_cell.write(True)
        self._state = MigrationState.COMPLETED
        self.last_result = result

        if result.ran:
            logger.info("lid.stats の不整合を修復しました")
        else:
            logger.info("lid.stats の移行は不要でした (%s)", result.reason)
        return result

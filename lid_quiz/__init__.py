"""
lid_quiz パッケージ
======================

このパッケージは、「Leben in Deutschland」対策クイズアプリの内部ロジックを提供する。

主な役割:
- 設定管理（config）
- 3 段フォールバックの永続ストレージ（storage）と値セル（cell）
- 保存データの検証・修復（integrity）と起動時の移行（migration）
- 学習進捗の更新（stats）とシード付き出題（quiz_set）
- 問題バンク・州別問題の読み込み（question_bank）
- クイズの進行（session）と制限時間（timer）
- 学習モードの絞り込み・検索（learn）
- Gemini による解説（explain）

app.py は Streamlit UI のみを担当し、内部ロジックはすべて本パッケージから呼ぶ。
ui は streamlit を import するため、ここでは読み込まない。
"""

from .config import AppConfig, load_app_config
from .storage import StorageAdapter, StorageUnavailableError, build_adapter
from .cell import PersistentCell, persistence_enabled
from .integrity import is_valid_stats, repair_stats, validate_storage_integrity
from .migration import StatsMigration, migrate_from_cookies, run_stats_migration
from .models import Question
from .stats import StatsEngine, empty_stats
from .quiz_set import build_quiz_set, generate, mulberry32
from .question_bank import load_question_pool, load_region_questions
from .categories import category_for, category_progress
from .learn import browse, search_questions
from .timer import CountdownTimer
from .session import QuizController, QuizSession
from .explain import ExplanationService

__all__ = [
    "AppConfig",
    "load_app_config",
    "StorageAdapter",
    "StorageUnavailableError",
    "build_adapter",
    "PersistentCell",
    "persistence_enabled",
    "is_valid_stats",
    "repair_stats",
    "validate_storage_integrity",
    "StatsMigration",
    "migrate_from_cookies",
    "run_stats_migration",
    "Question",
    "StatsEngine",
    "empty_stats",
    "build_quiz_set",
    "generate",
    "mulberry32",
    "load_question_pool",
    "load_region_questions",
    "category_for",
    "category_progress",
    "browse",
    "search_questions",
    "CountdownTimer",
    "QuizController",
    "QuizSession",
    "ExplanationService",
]

"""
question_bank.py
===========================

問題プール（一般問題）と州別問題の読み込み。

目的:
- 取得元は URL（http/https）でもローカルの JSON ファイルでもよい
- 取得失敗・空・壊れた JSON の場合はデモ用の 2 問にフォールバック（画面が空にならない）
- 壊れた 1 件は skip
- 多回ロード時の高速化（プロセス内キャッシュ）

州別問題:
- どの州を選んでも id は 301〜310 を先頭から順に振る
- 州ごとにキャッシュし、取得失敗時は空リスト
"""

from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Any, Dict, List, Optional

import requests

from .models import Question

logger = logging.getLogger(__name__)


# ----------------------------------------------------------------------
#  デモデータ
# ----------------------------------------------------------------------
DEMO_DATA: List[Dict[str, Any]] = [
    {
        "id": 1,
        "question": "In Deutschland dürfen Menschen offen etwas gegen die Regierung sagen, weil …",
        "options": [
            "hier Religionsfreiheit gilt.",
            "die Menschen Steuern zahlen.",
            "die Menschen das Wahlrecht haben.",
            "hier Meinungsfreiheit gilt.",
        ],
        "answerIndex": 3,
    },
    {
        "id": 2,
        "question": (
            "In Deutschland können Eltern bis zum 14. Lebensjahr ihres Kindes entscheiden, "
            "ob es in der Schule am … teilnimmt."
        ),
        "options": [
            "Geschichtsunterricht",
            "Religionsunterricht",
            "Politikunterricht",
            "Sprachunterricht",
        ],
        "answerIndex": 1,
    },
]


# ----------------------------------------------------------------------
#  州
# ----------------------------------------------------------------------
REGIONS: List[Dict[str, str]] = [
    {"key": "baden-wuerttemberg", "name": "Baden-Württemberg"},
    {"key": "bayern", "name": "Bayern"},
    {"key": "berlin", "name": "Berlin"},
    {"key": "bremen", "name": "Bremen"},
]

DEFAULT_REGION = "baden-wuerttemberg"
REGION_ID_START = 301
REGION_ID_END = 310


# ----------------------------------------------------------------------
#  グローバルキャッシュ（Pythonプロセス中は維持される）
# ----------------------------------------------------------------------
_POOL_CACHE: Dict[str, List[Question]] = {}
_REGION_CACHE: Dict[str, List[Question]] = {}


def demo_questions() -> List[Question]:
    return [Question.from_dict(d) for d in DEMO_DATA]


# ----------------------------------------------------------------------
#  取得
# ----------------------------------------------------------------------
def _is_url(source: str) -> bool:
    return source.startswith(("http://", "https://"))


def fetch_json(source: str, timeout: float = 10.0) -> Any:
    """URL またはローカルパスから JSON を読む。失敗時は例外をそのまま投げる。"""
    if _is_url(source):
        response = requests.get(source, timeout=timeout)
        response.raise_for_status()
        return response.json()
    return json.loads(Path(source).read_text(encoding="utf-8"))


def _parse_questions(data: Any) -> List[Question]:
    if not isinstance(data, list):
        return []
    questions: List[Question] = []
    for item in data:
        try:
            questions.append(Question.from_dict(item))
        except (ValueError, TypeError) as e:
            # 壊れた 1 件は無視する
            logger.debug("問題データを読み飛ばしました: %s", e)
    return questions


def load_question_pool(
    source: str,
    timeout: float = 10.0,
    force_reload: bool = False,
) -> List[Question]:
    """
    一般問題のプールを返す。

    - force_reload=True の場合のみ再取得
    - 取得失敗・空・壊れた JSON → DEMO_DATA（キャッシュはしない）
    """
    if not force_reload and source in _POOL_CACHE:
        return _POOL_CACHE[source]

    try:
        data = fetch_json(source, timeout=timeout)
    except (requests.RequestException, OSError, ValueError) as e:
        logger.error("問題バンクを取得できませんでした (%s): %s", source, e)
        return demo_questions()

    questions = _parse_questions(data)
    if not questions:
        logger.warning("問題バンクが空か形式が不正です (%s)。デモ問題を使います", source)
        return demo_questions()

    _POOL_CACHE[source] = questions
    return questions


def clear_pool_cache() -> None:
    _POOL_CACHE.clear()


# ----------------------------------------------------------------------
#  州別問題
# ----------------------------------------------------------------------
def get_available_regions() -> List[Dict[str, str]]:
    return list(REGIONS)


def get_region(key: str) -> Optional[Dict[str, str]]:
    for r in REGIONS:
        if r["key"] == key:
            return r
    return None


def assign_region_ids(items: List[Dict[str, Any]]) -> List[Question]:
    """州別 JSON（id なし）に 301 から順に id を振る。"""
    questions: List[Question] = []
    for index, item in enumerate(items):
        if not isinstance(item, dict):
            continue
        try:
            questions.append(Question.from_dict({**item, "id": REGION_ID_START + index}))
        except (ValueError, TypeError) as e:
            logger.debug("州別問題を読み飛ばしました: %s", e)
    return questions


def load_region_questions(
    region_key: str,
    source: str,
    timeout: float = 10.0,
) -> List[Question]:
    """
    州別問題を読み込む。州ごとにキャッシュし、失敗時は空リスト。
    source は取得元（AppConfig.region_source(key) の戻り値）。
    """
    if region_key in _REGION_CACHE:
        return _REGION_CACHE[region_key]

    try:
        data = fetch_json(source, timeout=timeout)
    except (requests.RequestException, OSError, ValueError) as e:
        logger.error("%s の州別問題を読み込めませんでした: %s", region_key, e)
        return []

    if not isinstance(data, list):
        logger.error("%s の州別問題の形式が不正です", region_key)
        return []

    questions = assign_region_ids(data)
    _REGION_CACHE[region_key] = questions
    return questions


def clear_region_cache() -> None:
    _REGION_CACHE.clear()

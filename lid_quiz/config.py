"""
config.py
=========

アプリ全体で利用する設定値を一元管理する。
ストレージのパス、問題バンクの取得元、クイズ件数、Gemini API など
すべてこのクラスを通じて取得する。

config.toml が存在すればその値で上書きする（読めなければデフォルトのまま）。
"""

from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional
import logging
import os

import toml

logger = logging.getLogger(__name__)


# ------------------------------------------------------------
# 基本パス定義
# ------------------------------------------------------------

ROOT_DIR = Path(__file__).resolve().parent.parent
DATA_DIR = ROOT_DIR / "data"
PUBLIC_DIR = ROOT_DIR / "public"


# ------------------------------------------------------------
# AppConfig
# ------------------------------------------------------------

@dataclass
class AppConfig:
    """
    アプリ設定クラス。

    - 永続ストレージ（durable / cookie）の保存先
    - 問題バンク・州別問題の取得元
    - クイズの出題数・州問題の枠
    - APIキーの読み取りとモデルのフェールオーバー順
    """

    # ---------- ストレージ ----------
    data_dir: Path = DATA_DIR
    durable_store_path: Path = DATA_DIR / "storage.json"
    cookie_jar_path: Optional[Path] = DATA_DIR / "cookies.txt"
    https: bool = False

    # ---------- 問題バンク ----------
    questions_source: str = str(PUBLIC_DIR / "json" / "LiDData.json")
    region_source_template: str = str(PUBLIC_DIR / "json" / "state-based" / "{key}.json")
    request_timeout: float = 10.0

    # ---------- クイズ ----------
    quiz_count: int = 33
    region_quota: int = 3
    default_region: str = "baden-wuerttemberg"
    language: str = "de"

    # ---------- API ----------
    gemini_api_key: str = ""
    model_failover_priority: List[str] = field(default_factory=list)

    # ============================================================
    # 初期化処理
    # ============================================================

    def __post_init__(self):
        self.data_dir = Path(self.data_dir)
        self.durable_store_path = Path(self.durable_store_path)
        if self.cookie_jar_path is not None:
            self.cookie_jar_path = Path(self.cookie_jar_path)

        if not self.gemini_api_key:
            self.gemini_api_key = self._load_api_key()

        if not self.model_failover_priority:
            self.model_failover_priority = [
                # 最新モデルは実行時に ExplanationService が API から取得
                "latest",
                "gemini-1.5-flash",
                "gemini-1.5-pro",
            ]

    # ============================================================
    # 内部関数
    # ============================================================

    def _load_api_key(self) -> str:
        """
        環境変数 → ローカルの .env の順で GEMINI_API_KEY を探す。
        """
        key = os.environ.get("GEMINI_API_KEY")
        if key:
            return key

        env_path = ROOT_DIR / ".env"
        if env_path.exists():
            for line in env_path.read_text().splitlines():
                if line.startswith("GEMINI_API_KEY="):
                    return line.split("=", 1)[1].strip()

        return ""  # キーなし → 解説機能はオフライン扱い

    def region_source(self, region_key: str) -> str:
        """州キーから州別問題の取得元を組み立てる。"""
        return self.region_source_template.format(key=region_key)


# ============================================================
# config.toml 読み込み
# ============================================================

# config.toml のセクション名 → AppConfig のフィールド名
_TOML_FIELDS: Dict[str, Dict[str, str]] = {
    "storage": {
        "data_dir": "data_dir",
        "durable_store_path": "durable_store_path",
        "cookie_jar_path": "cookie_jar_path",
        "https": "https",
    },
    "app": {
        "questions_source": "questions_source",
        "region_source_template": "region_source_template",
        "request_timeout": "request_timeout",
        "language": "language",
    },
    "quiz": {
        "count": "quiz_count",
        "region_quota": "region_quota",
        "default_region": "default_region",
    },
    "gemini": {
        "api_key": "gemini_api_key",
        "failover": "model_failover_priority",
    },
}


def load_app_config(path: str = "config.toml") -> AppConfig:
    """
    config.toml を読み込んで AppConfig を返す。
    ファイルが無い・壊れている場合はデフォルト値の AppConfig を返す。
    """
    raw: Dict[str, Any] = {}
    p = Path(path)
    if p.exists():
        try:
            raw = toml.load(p)
        except (toml.TomlDecodeError, OSError) as e:
            logger.warning("config.toml を読み込めませんでした (%s): %s", p, e)
            raw = {}

    kwargs: Dict[str, Any] = {}
    for section, mapping in _TOML_FIELDS.items():
        values = raw.get(section)
        if not isinstance(values, dict):
            continue
        for toml_key, field_name in mapping.items():
            if toml_key in values:
                kwargs[field_name] = values[toml_key]

    return AppConfig(**kwargs)

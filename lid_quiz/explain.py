"""
explain.py
======================

Google Gemini API による解説生成。

要件:
- 利用可能なモデル一覧を API から動的に取得
- 設定のフェールオーバー順に試す（"latest" は API から選んだ最新モデルに置き換える）
- クォータ上限（429）が出たらそれ以上試さない
- API キーが無い・すべて失敗した場合はオフライン扱い（explain() は None を返す）
- API の例外は呼び出し側へ投げない（引数の誤りだけ ValueError）
"""

from __future__ import annotations

import logging
import time
from typing import Any, Dict, List, Optional, Sequence, Tuple

import google.generativeai as genai
from google.api_core.exceptions import GoogleAPIError, ResourceExhausted

logger = logging.getLogger(__name__)

LATEST = "latest"


class ExplanationService:
    """
    解答の解説を Gemini に生成させるクラス。

    主な機能:
    - list_models(): 利用可能モデル一覧を取得
    - select_best_model(): 最新モデルを自動判定
    - generate(): モデル呼び出し (フェールオーバー付き)
    - explain(): 問題と解答から解説文を作る
    """

    def __init__(self, api_key: str, model_priority: Optional[Sequence[str]] = None):
        self.api_key = api_key or ""
        self.model_priority: List[str] = list(model_priority or [LATEST])
        self._cached_models: List[str] = []
        self._cache: Dict[Tuple[Any, ...], str] = {}
        self.last_error: Optional[str] = None

        if self.api_key:
            genai.configure(api_key=self.api_key)

    @property
    def online(self) -> bool:
        return bool(self.api_key)

    # ------------------------------------------------------------
    # モデル一覧取得
    # ------------------------------------------------------------
    def list_models(self) -> List[str]:
        """generateContent が使えるモデル名の一覧（取得失敗時は前回のキャッシュ）。"""
        if not self.online:
            return []
        try:
            response = genai.list_models()
        except GoogleAPIError as e:
            logger.warning("モデル一覧を取得できませんでした: %s", e)
            return list(self._cached_models)

        models = [
            m.name
            for m in response
            if "generateContent" in getattr(m, "supported_generation_methods", ())
        ]
        if models:
            self._cached_models = models
        return models

    # ------------------------------------------------------------
    # 最新モデルの自動選択
    # ------------------------------------------------------------
    @staticmethod
    def _score(model_name: str) -> tuple:
        # models/gemini-2.0-pro → (2, 0, 1)
        name = model_name.split("/")[-1]
        try:
            major, minor = name.split("-")[1].split(".")[:2]
            version = (int(major), int(minor))
        except (IndexError, ValueError):
            version = (0, 0)
        return version + (1 if "pro" in name else 0,)

    def select_best_model(self) -> Optional[str]:
        models = self.list_models()
        if not models:
            return None
        return max(models, key=self._score)

    def candidate_models(self) -> List[str]:
        """フェールオーバー順に並べたモデル名（重複なし）。"""
        ordered: List[str] = []
        for name in self.model_priority:
            if name == LATEST:
                best = self.select_best_model()
                if best is None:
                    continue
                name = best
            if name not in ordered:
                ordered.append(name)
        return ordered

    # ------------------------------------------------------------
    # generate(): フェールオーバーつき生成
    # ------------------------------------------------------------
    def generate(self, prompt: str) -> Dict[str, Any]:
        """
        候補モデルを順に試す。
        すべて失敗した場合は {"offline": True} を返す。
        """
        if not self.online:
            return {"offline": True}

        for model_name in self.candidate_models():
            try:
                model = genai.GenerativeModel(model_name)
                response = model.generate_content(prompt)
                return {
                    "model": model_name,
                    "text": response.text,
                    "offline": False,
                }
            except ResourceExhausted:
                # クォータ上限（429）
                self.last_error = "429"
                logger.warning("%s でクォータ上限に達しました", model_name)
                return {"model": model_name, "error": "429", "offline": True}
            except GoogleAPIError as e:
                # API エラー → 次のモデルへフェールオーバー
                self.last_error = str(e)
                logger.warning("%s の呼び出しに失敗しました: %s", model_name, e)
                time.sleep(0.3)
                continue
            except ValueError as e:
                # 安全フィルタ等で response.text が取れない
                self.last_error = str(e)
                logger.warning("%s の応答を読めませんでした: %s", model_name, e)
                continue

        return {"offline": True}

    # ------------------------------------------------------------
    # 解説
    # ------------------------------------------------------------
    @staticmethod
    def build_explanation_prompt(
        question_text: str,
        options: Sequence[str],
        correct_index: int,
        user_index: Optional[int] = None,
        language: str = "de",
    ) -> str:
        de = language == "de"
        rules = " ".join([
            "Do not repeat or paraphrase the instructions.",
            "Do not include headings, markdown, bold text, or labels like 'Question:' unless asked.",
            "Avoid gender references, answer neutrally.",
            "Start directly with the explanation.",
            "Keep it concise: 2-4 sentences total.",
            "If uncertain, say so briefly instead of inventing facts.",
            "Antwort ausschließlich auf Deutsch." if de else "Answer in natural, fluent English.",
        ])

        correct = options[correct_index]
        if user_index is None or user_index < 0:
            task = (
                f"Frage: {question_text}\nRichtige Antwort: {correct}\n"
                "Erkläre kurz, was die Frage bedeutet, und warum diese Antwort korrekt ist."
                if de else
                f"Question: {question_text}\nCorrect Answer: {correct}\n"
                "Briefly explain what the question means and why this answer is correct."
            )
        elif user_index == correct_index:
            task = (
                f"Frage: {question_text}\nGewählte Antwort: {correct} (richtig)\n"
                "Erkläre kurz, warum die Antwort korrekt ist."
                if de else
                f"Question: {question_text}\nChosen Answer: {correct} (correct)\n"
                "Briefly explain why this answer is correct."
            )
        else:
            chosen = options[user_index]
            task = (
                f"Frage: {question_text}\nGewählte Antwort: {chosen} (falsch)\n"
                f"Richtige Antwort: {correct}\n"
                "Erkläre kurz, warum die gewählte Antwort falsch ist und warum die richtige stimmt."
                if de else
                f"Question: {question_text}\nChosen Answer: {chosen} (incorrect)\n"
                f"Correct Answer: {correct}\n"
                "Briefly explain why the chosen answer is wrong and why the correct one is right."
            )
        return f"{rules}\n\n{task}"

    def explain(
        self,
        question_text: str,
        options: Sequence[str],
        correct_index: int,
        user_index: Optional[int] = None,
        language: str = "de",
    ) -> Optional[str]:
        """解説文を返す。オフライン・失敗時は None。"""
        if not self.online:
            return None
        if not (0 <= correct_index < len(options)):
            raise ValueError("correct_index が選択肢の範囲外です")
        if user_index is not None and user_index >= len(options):
            raise ValueError("user_index が選択肢の範囲外です")

        cache_key = (question_text, tuple(options), correct_index, user_index, language)
        if cache_key in self._cache:
            return self._cache[cache_key]

        prompt = self.build_explanation_prompt(
            question_text, options, correct_index, user_index, language
        )
        result = self.generate(prompt)
        text = (result.get("text") or "").strip()
        if result.get("offline") or not text:
            return None

        self._cache[cache_key] = text
        return text

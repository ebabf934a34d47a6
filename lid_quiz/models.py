"""
models.py
======================

問題データのモデル。

問題バンク（LiDData.json / 州別 JSON）の 1 件は次の形:

{
  "id": 1,
  "question": "In Deutschland dürfen Menschen offen etwas gegen die Regierung sagen, weil …",
  "options": ["...", "...", "...", "..."],
  "answerIndex": 3,
  "image": "image-1.png"        # 任意
}

このレイヤーからは読み取り専用。
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict, Optional, Tuple


@dataclass(frozen=True)
class Question:
    id: int
    question: str
    options: Tuple[str, ...] = ()
    answer_index: Optional[int] = None
    image: Optional[str] = None

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Question":
        """
        JSON の 1 件から Question を作る。
        id / question が無い、options がリストでない場合は ValueError。
        """
        if not isinstance(data, dict):
            raise ValueError("問題データが dict ではありません")
        if "id" not in data or "question" not in data:
            raise ValueError(f"id / question がありません: {data!r}")

        options = data.get("options", [])
        if not isinstance(options, list):
            raise ValueError(f"options がリストではありません (id={data.get('id')})")

        ai = data.get("answerIndex")
        if ai is not None:
            ai = int(ai)

        image = data.get("image")
        return cls(
            id=int(data["id"]),
            question=str(data["question"]),
            options=tuple(str(o) for o in options),
            answer_index=ai,
            image=str(image) if image else None,
        )

    def to_dict(self) -> Dict[str, Any]:
        d: Dict[str, Any] = {
            "id": self.id,
            "question": self.question,
            "options": list(self.options),
            "answerIndex": self.answer_index,
        }
        if self.image:
            d["image"] = self.image
        return d

    @property
    def is_playable(self) -> bool:
        """四択かつ正解 index があるものだけ出題対象にする。"""
        return len(self.options) == 4 and self.answer_index is not None

    def is_correct(self, chosen_index: int) -> bool:
        return self.answer_index is not None and chosen_index == self.answer_index

    def image_path(self, region_key: str, base: str = "images") -> Optional[str]:
        """州別問題の画像パス（画像なしなら None）。"""
        if not self.image:
            return None
        return f"{base}/{region_key}/image-{self.id}.png"

"""
ui.py
======================

Streamlit ベースの UI コンポーネントをまとめたモジュール。

責務:
- ライト / ダークのテーマと CSS
- 同意バナー（Cookie / 保存の可否）
- クイズ画面の描画（問題・選択肢・ナビゲーション・タイマー）
- ダッシュボードの集計表示
- 学習モードの問題カード
- Cookie をブラウザへ書き戻すスクリプト

ここでは「見た目」と「ユーザー操作の入力」だけを扱い、
状態の更新は app.py から QuizController を通して行う。

戻り値として「何が押されたか」「どの選択肢が新たに選ばれたか」を返す。
"""

from __future__ import annotations

import json
from typing import Any, Dict, Iterable, Optional

import pandas as pd
import streamlit as st
import streamlit.components.v1 as components

from .categories import short_category_name
from .models import Question
from .session import UNANSWERED, QuizSession

# ----------------------------------------------------------------------
#  テーマ定義
# ----------------------------------------------------------------------
THEMES: Dict[str, Dict[str, str]] = {
    "light": {
        "bg": "#ffffff",
        "text": "#1c1c1e",
        "surface": "#f2f2f7",
        "border": "#d1d1d6",
        "primary": "#007aff",
        "correct": "#34c759",
        "incorrect": "#ff3b30",
    },
    "dark": {
        "bg": "#000000",
        "text": "#f5f5f7",
        "surface": "#1c1c1e",
        "border": "#3a3a3c",
        "primary": "#0a84ff",
        "correct": "#30d158",
        "incorrect": "#ff453a",
    },
}


def theme_css(dark: bool) -> str:
    theme = THEMES["dark" if dark else "light"]
    return f"""
    <style>
    .lid-question-box {{
        background: {theme['surface']};
        color: {theme['text']};
        padding: 1rem;
        border-radius: 12px;
        border: 1px solid {theme['border']};
        font-size: 1.1rem;
        line-height: 1.6;
        margin-bottom: 0.75rem;
    }}
    .lid-tag {{
        padding: 0.1rem 0.5rem;
        border-radius: 999px;
        border: 1px solid {theme['border']};
        font-size: 0.8rem;
    }}
    .lid-correct {{ color: {theme['correct']}; font-weight: 600; }}
    .lid-incorrect {{ color: {theme['incorrect']}; font-weight: 600; }}
    .lid-timer {{ color: {theme['primary']}; font-variant-numeric: tabular-nums; }}
    </style>
    """


# ----------------------------------------------------------------------
#  同意バナー
# ----------------------------------------------------------------------
def render_consent_banner() -> Optional[str]:
    """
    保存の同意を尋ねる。押された選択（"necessary" / "all"）を返す。
    何も押されなければ None。
    """
    st.info(
        "Diese App speichert deinen Lernfortschritt lokal. "
        "Ohne Zustimmung geht der Fortschritt beim Schließen verloren."
    )
    col_all, col_needed = st.columns(2)
    with col_all:
        if st.button("Alle akzeptieren", key="lid_consent_all", use_container_width=True):
            return "all"
    with col_needed:
        if st.button("Nur notwendige", key="lid_consent_necessary", use_container_width=True):
            return "necessary"
    return None


# ----------------------------------------------------------------------
#  クイズ画面
# ----------------------------------------------------------------------
def render_question_block(
    session: QuizSession,
    *,
    remaining: Optional[str] = None,
    flagged: bool = False,
) -> Dict[str, Any]:
    """
    現在の問題を描画し、ユーザー操作の結果を返す。

    戻り値:
        {
          "selected_choice": Optional[int],   # 新たに押された選択肢 index
          "clicked_next": bool,
          "clicked_prev": bool,
          "clicked_flag": bool,
          "clicked_finish": bool,
        }
    """
    result: Dict[str, Any] = {
        "selected_choice": None,
        "clicked_next": False,
        "clicked_prev": False,
        "clicked_flag": False,
        "clicked_finish": False,
    }

    q = session.current_question
    if q is None:
        st.error("Keine Fragen verfügbar.")
        return result

    pos = session.current
    st.progress(min(max(session.progress / 100, 0.0), 1.0))

    header = (
        f"<span class='lid-tag'>Frage {pos + 1} / {session.total}</span> "
        f"<span class='lid-tag'>{short_category_name(q.id)}</span>"
    )
    if remaining is not None:
        header += f" <span class='lid-tag lid-timer'>⏱ {remaining}</span>"
    if flagged:
        header += " <span class='lid-tag'>🚩</span>"
    st.markdown(header, unsafe_allow_html=True)

    st.markdown(f"<div class='lid-question-box'>{q.question}</div>", unsafe_allow_html=True)

    chosen = session.answer_at(pos)
    for idx, text in enumerate(q.options):
        label = text
        if chosen != UNANSWERED:
            if idx == q.answer_index:
                label = f"✅ {text}"
            elif idx == chosen:
                label = f"❌ {text}"
        if st.button(label, key=f"lid_choice_{session.seed}_{pos}_{idx}", use_container_width=True):
            result["selected_choice"] = idx

    col_prev, col_flag, col_next = st.columns(3)
    with col_prev:
        result["clicked_prev"] = st.button("◀ Zurück", key="lid_prev", use_container_width=True)
    with col_flag:
        result["clicked_flag"] = st.button("🚩 Markieren", key="lid_flag", use_container_width=True)
    with col_next:
        result["clicked_next"] = st.button("Weiter ▶", key="lid_next", use_container_width=True)

    result["clicked_finish"] = st.button("Test beenden", key="lid_finish", use_container_width=True)
    return result


def render_score(session: QuizSession) -> None:
    summary = session.score_summary()
    st.markdown("### Ergebnis")
    col1, col2, col3 = st.columns(3)
    col1.metric("Richtig", f"{summary['correct']} / {summary['total']}")
    col2.metric("Falsch", summary["wrong"])
    col3.metric("Offen", summary["empty"])
    # 33 問中 17 問正解で合格
    if summary["total"] and summary["correct"] >= 17:
        st.success("Bestanden! 🎉")
    else:
        st.warning("Leider nicht bestanden.")


# ----------------------------------------------------------------------
#  ダッシュボード
# ----------------------------------------------------------------------
def render_stats_summary(summary: Dict[str, Any], table: Optional[pd.DataFrame] = None) -> None:
    col1, col2, col3, col4 = st.columns(4)
    col1.metric("Bearbeitet", summary.get("attempted", 0))
    col2.metric("Richtig", summary.get("correct", 0))
    col3.metric("Falsch", summary.get("wrong", 0))
    col4.metric("Tests", summary.get("total_sessions", 0))
    st.caption(
        f"Trefferquote: {summary.get('accuracy', 0.0) * 100:.1f} % · "
        f"Gelernt: {summary.get('learned', 0)} · Markiert: {summary.get('flagged', 0)}"
    )
    if table is not None and not table.empty:
        st.dataframe(table, use_container_width=True, hide_index=True)


# ----------------------------------------------------------------------
#  学習モード
# ----------------------------------------------------------------------
def render_learn_card(
    q: Question,
    *,
    learned: bool = False,
    flagged: bool = False,
    wrong_choice: Optional[int] = None,
    key_prefix: str = "lid_learn",
) -> Dict[str, bool]:
    """
    問題 1 件を正解付きで表示する。

    戻り値:
        {"clicked_learned": bool, "clicked_flag": bool}
    """
    marks = ("📗 " if learned else "") + ("🚩 " if flagged else "")
    with st.expander(f"{marks}{q.id}. {q.question}"):
        st.markdown(
            f"<span class='lid-tag'>{short_category_name(q.id)}</span>",
            unsafe_allow_html=True,
        )
        for idx, text in enumerate(q.options):
            if idx == q.answer_index:
                st.markdown(f"✅ **{text}**")
            elif idx == wrong_choice:
                st.markdown(f"❌ {text} *(deine Antwort)*")
            else:
                st.markdown(f"▫️ {text}")

        col_learned, col_flag = st.columns(2)
        with col_learned:
            clicked_learned = st.button(
                "Nicht mehr gelernt" if learned else "Als gelernt markieren",
                key=f"{key_prefix}_learned_{q.id}",
                use_container_width=True,
            )
        with col_flag:
            clicked_flag = st.button(
                "Markierung entfernen" if flagged else "🚩 Markieren",
                key=f"{key_prefix}_flag_{q.id}",
                use_container_width=True,
            )
    return {"clicked_learned": clicked_learned, "clicked_flag": clicked_flag}


# ----------------------------------------------------------------------
#  Cookie の書き戻し
# ----------------------------------------------------------------------
def cookie_script(headers: Iterable[str]) -> str:
    """Set-Cookie 形式の文字列を親ページの document.cookie に書く <script>。"""
    lines = [
        "window.parent.document.cookie = %s;" % json.dumps(h).replace("</", "<\\/")
        for h in headers
    ]
    return "<script>\n" + "\n".join(lines) + "\n</script>"


def render_cookie_sync(headers: Iterable[str]) -> None:
    headers = list(headers)
    if headers:
        components.html(cookie_script(headers), height=0)

"""
app.py
======================

「Leben in Deutschland」対策クイズアプリ（Streamlit）エントリーポイント。

特徴:
- 同意バナー → ダッシュボード / クイズ / 学習 / 復習 / 設定
- 学習進捗は durable（JSON ファイル）> session > Cookie の順に保存
- 保存先はブラウザごと（lid.clientId Cookie で data/<id>/ に分ける）
- 起動時に Cookie からの移行と lid.stats の修復を一度だけ実行
- 州を選ぶと州別問題 3 問がクイズに混ざる
- GEMINI_API_KEY があれば解答の解説を生成

前提:
- public/json/LiDData.json に問題バンクがある（無ければデモ問題 2 問）
- config.toml があれば設定を上書きする
"""

from __future__ import annotations

import logging
from typing import Optional

import streamlit as st

from lid_quiz.cell import PersistentCell, persistence_enabled
from lid_quiz.categories import CATEGORIES, category_progress
from lid_quiz.config import AppConfig, load_app_config
from lid_quiz.explain import ExplanationService
from lid_quiz.integrity import is_valid_stats
from lid_quiz.learn import FILTERS, PAGE_SIZE, browse, page_count, paginate, search_questions
from lid_quiz.migration import LEGACY_KEYS, MIGRATION_KEY, StatsMigration, migrate_from_cookies
from lid_quiz.question_bank import (
    get_available_regions,
    get_region,
    load_question_pool,
    load_region_questions,
)
from lid_quiz.quiz_set import learn_set
from lid_quiz.session import MODE_DASHBOARD, MODE_LEARN, MODE_QUIZ, QuizController
from lid_quiz.stats import empty_stats
from lid_quiz.storage import StorageAdapter, build_adapter, keys_present, resolve_client_id
from lid_quiz.ui import (
    render_consent_banner,
    render_cookie_sync,
    render_learn_card,
    render_question_block,
    render_score,
    render_stats_summary,
    theme_css,
)

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger("lid_quiz.app")


# ----------------------------------------------------------------------
#  設定・ストレージ
# ----------------------------------------------------------------------
def get_config() -> AppConfig:
    if "app_config" not in st.session_state:
        st.session_state["app_config"] = load_app_config()
    return st.session_state["app_config"]


def get_adapter() -> StorageAdapter:
    # 保存先はブラウザごと（lid.clientId Cookie）に分ける
    if "storage_adapter" not in st.session_state:
        cfg = get_config()
        cookies = dict(st.context.cookies)
        client_id = resolve_client_id(cookies)
        st.session_state["client_id"] = client_id
        st.session_state["storage_adapter"] = build_adapter(
            cfg.durable_store_path,
            session_backing=st.session_state,
            cookie_path=cfg.cookie_jar_path,
            secure=cfg.https,
            request_cookies=cookies,
            client_id=client_id,
        )
    return st.session_state["storage_adapter"]


def sync_cookies(adapter: StorageAdapter) -> None:
    """Cookie ジャーが前回送った内容から変わっていればブラウザへ書き戻す。"""
    headers = adapter.cookie.headers()
    if headers != st.session_state.get("cookie_headers_sent"):
        render_cookie_sync(headers)
        st.session_state["cookie_headers_sent"] = headers


def get_consent_cell() -> PersistentCell:
    # 同意の有無そのものは常に保存する
    if "consent_cell" not in st.session_state:
        st.session_state["consent_cell"] = PersistentCell(
            "lid.consent",
            "ask",
            enabled=True,
            validator=lambda v: v in ("ask", "necessary", "all"),
            adapter=get_adapter(),
        )
    return st.session_state["consent_cell"]


def run_migrations_once(adapter: StorageAdapter, enabled: bool) -> None:
    if st.session_state.get("migrations_done") or not enabled:
        return
    migrate_from_cookies(adapter)
    stats_cell = PersistentCell("lid.stats", empty_stats(), True, is_valid_stats, adapter)
    completed_cell = PersistentCell(MIGRATION_KEY, False, True, None, adapter)
    StatsMigration(stats_cell, completed_cell).run()
    st.session_state["migrations_done"] = True


def get_controller(enabled: bool) -> QuizController:
    ctl: Optional[QuizController] = st.session_state.get("controller")
    if ctl is None or st.session_state.get("controller_enabled") != enabled:
        cfg = get_config()
        pool = learn_set(load_question_pool(cfg.questions_source, cfg.request_timeout))
        ctl = QuizController(get_adapter(), cfg, pool=pool, enabled=enabled)
        region = ctl.selected_state.read()
        ctl.region_pool = learn_set(
            load_region_questions(region, cfg.region_source(region), cfg.request_timeout)
        )
        st.session_state["controller"] = ctl
        st.session_state["controller_enabled"] = enabled
    return ctl


def get_explainer() -> ExplanationService:
    if "explainer" not in st.session_state:
        cfg = get_config()
        st.session_state["explainer"] = ExplanationService(
            cfg.gemini_api_key, cfg.model_failover_priority
        )
    return st.session_state["explainer"]


def set_page(page: str) -> None:
    st.session_state["page"] = page


def get_page() -> str:
    return st.session_state.get("page", "home")


# ----------------------------------------------------------------------
#  ページ: ダッシュボード
# ----------------------------------------------------------------------
def render_dashboard_page(ctl: QuizController) -> None:
    st.markdown("## 🇩🇪 Leben in Deutschland")

    table = category_progress(ctl.stats.stats, ctl.pool + ctl.region_pool)
    render_stats_summary(ctl.stats.summary(), table)

    st.write("---")
    col1, col2 = st.columns(2)
    with col1:
        if st.button("🚀 Test starten", use_container_width=True):
            ctl.start_new_quiz()
            set_page("quiz")
            st.rerun()
    with col2:
        if st.button("🔁 Wiederholen", use_container_width=True):
            set_page("review")
            st.rerun()

    col3, col4 = st.columns(2)
    with col3:
        if st.button("📚 Lernen", use_container_width=True):
            set_page("learn")
            st.rerun()
    with col4:
        if st.button("⚙️ Einstellungen", use_container_width=True):
            set_page("settings")
            st.rerun()


# ----------------------------------------------------------------------
#  ページ: 学習
# ----------------------------------------------------------------------
ALL_CATEGORIES = "Alle Kategorien"


def render_learn_card_for(ctl: QuizController, q, key_prefix: str) -> None:
    clicks = render_learn_card(
        q,
        learned=ctl.stats.is_learned(q.id),
        flagged=ctl.stats.is_flagged(q.id),
        wrong_choice=ctl.stats.chosen_wrong_index(q.id),
        key_prefix=key_prefix,
    )
    if clicks["clicked_learned"]:
        if ctl.stats.is_learned(q.id):
            ctl.stats.unmark_learned(q.id)
        else:
            ctl.stats.mark_learned(q.id)
        st.rerun()
    if clicks["clicked_flag"]:
        ctl.stats.toggle_flag(q.id)
        st.rerun()


def render_learn_page(ctl: QuizController) -> None:
    if ctl.mode.read() != MODE_LEARN:
        ctl.set_mode(MODE_LEARN)
    st.markdown("## 📚 Lernen")
    questions = ctl.pool + ctl.region_pool

    query = st.text_input("🔍 Fragen durchsuchen", placeholder="z. B. Bundestag")
    if query.strip():
        found = search_questions(questions, query)
        if not found:
            st.info("Keine passenden Fragen gefunden.")
        for q in found:
            render_learn_card_for(ctl, q, "lid_search")
    else:
        col_cat, col_filter = st.columns(2)
        with col_cat:
            category = st.selectbox("Kategorie", [ALL_CATEGORIES] + [c.name for c in CATEGORIES])
        with col_filter:
            mode = st.selectbox("Filter", FILTERS, format_func=str.capitalize)

        groups = browse(questions, ctl.stats.stats, None if category == ALL_CATEGORIES else category, mode)
        selected = [q for group in groups.values() for q in group]
        if not selected:
            st.info("Keine Fragen für diese Auswahl.")
        else:
            pages = page_count(len(selected))
            page = int(st.number_input(f"Seite (1–{pages})", min_value=1, max_value=pages, value=1))
            shown = {q.id for q in paginate(selected, page, PAGE_SIZE)}
            for name, group in groups.items():
                visible = [q for q in group if q.id in shown]
                if not visible:
                    continue
                st.markdown(f"#### {name}")
                for q in visible:
                    render_learn_card_for(ctl, q, "lid_browse")

    if st.button("🏠 Zur Übersicht", use_container_width=True):
        ctl.set_mode(MODE_DASHBOARD)
        set_page("home")
        st.rerun()


# ----------------------------------------------------------------------
#  ページ: クイズ
# ----------------------------------------------------------------------
def render_explanation(ctl: QuizController) -> None:
    explainer = get_explainer()
    session = ctl.session
    q = session.current_question if session else None
    if q is None or not explainer.online:
        return
    chosen = session.answer_at(session.current)
    if chosen < 0:
        return
    if st.button("🤖 Erklärung anzeigen", key=f"lid_explain_{session.seed}_{session.current}"):
        with st.spinner("KI-Erklärung wird generiert..."):
            text = explainer.explain(
                q.question, q.options, q.answer_index, chosen, get_config().language
            )
        if text:
            st.info(text)
        else:
            st.warning("Erklärung konnte nicht generiert werden.")


def render_quiz_page(ctl: QuizController) -> None:
    if ctl.session is None:
        ctl.start_new_quiz()
    session = ctl.session

    if session.completed:
        render_score(session)
        if st.button("🏠 Zur Übersicht", use_container_width=True):
            ctl.leave_quiz()
            set_page("home")
            st.rerun()
        return

    remaining = ctl.timer.format_time() if ctl.timer is not None else None
    ui_result = render_question_block(
        session,
        remaining=remaining,
        flagged=session.current in session.flags,
    )

    if ui_result["selected_choice"] is not None:
        ctl.answer(ui_result["selected_choice"])
        st.rerun()
    if ui_result["clicked_next"]:
        ctl.next()
        st.rerun()
    if ui_result["clicked_prev"]:
        ctl.prev()
        st.rerun()
    if ui_result["clicked_flag"]:
        ctl.toggle_session_flag()
        st.rerun()
    if ui_result["clicked_finish"]:
        ctl.complete_quiz()
        st.rerun()

    render_explanation(ctl)


# ----------------------------------------------------------------------
#  ページ: 復習
# ----------------------------------------------------------------------
def render_review_page(ctl: QuizController) -> None:
    st.markdown("## 🔁 Wiederholen")
    by_id = {q.id: q for q in ctl.pool + ctl.region_pool}

    tab_wrong, tab_flagged, tab_correct = st.tabs(["Falsch", "Markiert", "Richtig"])
    with tab_wrong:
        ids = ctl.stats.incorrect_ids()
        if not ids:
            st.info("Noch keine falsch beantworteten Fragen.")
        for qid in ids:
            q = by_id.get(qid)
            if q is not None:
                render_learn_card_for(ctl, q, "lid_review_wrong")
    with tab_flagged:
        ids = ctl.stats.flagged_ids()
        if not ids:
            st.info("Keine markierten Fragen.")
        for qid in ids:
            q = by_id.get(qid)
            if q is not None:
                render_learn_card_for(ctl, q, "lid_review_flagged")
    with tab_correct:
        st.write(f"{len(ctl.stats.correct_ids())} Fragen richtig beantwortet.")

    if st.button("🏠 Zur Übersicht", use_container_width=True):
        set_page("home")
        st.rerun()


# ----------------------------------------------------------------------
#  ページ: 設定
# ----------------------------------------------------------------------
def render_settings_page(ctl: QuizController, dark_cell: PersistentCell) -> None:
    st.markdown("## ⚙️ Einstellungen")
    cfg = get_config()

    regions = get_available_regions()
    keys = [r["key"] for r in regions]
    current = ctl.selected_state.read()
    selected = st.selectbox(
        "Bundesland",
        keys,
        index=keys.index(current) if current in keys else 0,
        format_func=lambda k: (get_region(k) or {}).get("name", k),
    )
    if selected != current:
        if ctl.has_region_progress():
            st.warning("Der Fortschritt der Landesfragen (301–310) wird zurückgesetzt.")
        if st.button("Bundesland wechseln"):
            pool = learn_set(
                load_region_questions(selected, cfg.region_source(selected), cfg.request_timeout)
            )
            ctl.select_region(selected, region_pool=pool)
            st.rerun()

    minutes = st.number_input(
        "Zeitlimit (Minuten, 0 = kein Limit)", min_value=0, max_value=120,
        value=int(ctl.quiz_duration.read() or 0),
    )
    if minutes != ctl.quiz_duration.read():
        ctl.set_quiz_duration(int(minutes))

    exclude = st.checkbox("Richtig beantwortete Fragen ausschließen", value=bool(ctl.exclude_correct.read()))
    if exclude != ctl.exclude_correct.read():
        ctl.set_exclude_correct(exclude)

    dark = st.toggle("Dunkles Design", value=bool(dark_cell.read()))
    if dark != dark_cell.read():
        dark_cell.write(dark)
        st.rerun()

    with st.expander("Speicher"):
        adapter = get_adapter()
        st.caption(f"Browser-ID: {st.session_state.get('client_id', '-')}")
        st.json(adapter.info())
        st.json(keys_present(adapter, LEGACY_KEYS + [MIGRATION_KEY]))

    if st.button("🏠 Zur Übersicht", use_container_width=True):
        set_page("home")
        st.rerun()


# ----------------------------------------------------------------------
#  メイン
# ----------------------------------------------------------------------
def main() -> None:
    st.set_page_config(page_title="Leben in Deutschland", page_icon="🇩🇪", layout="centered")

    adapter = get_adapter()
    sync_cookies(adapter)
    consent_cell = get_consent_cell()
    consent = consent_cell.read()

    if consent == "ask":
        choice = render_consent_banner()
        if choice is not None:
            consent_cell.write(choice)
            st.rerun()

    enabled = persistence_enabled(consent)
    run_migrations_once(adapter, enabled)

    dark_cell = PersistentCell("lid.dark", False, enabled, lambda v: isinstance(v, bool), adapter if enabled else None)
    st.markdown(theme_css(bool(dark_cell.read())), unsafe_allow_html=True)

    ctl = get_controller(enabled)
    ctl.self_check()

    # 前回学習モードで終わっていれば学習ページから再開する
    if "page" not in st.session_state and ctl.mode.read() == MODE_LEARN:
        set_page("learn")

    page = get_page()
    if page == "quiz":
        render_quiz_page(ctl)
    elif page == "review":
        render_review_page(ctl)
    elif page == "learn":
        render_learn_page(ctl)
    elif page == "settings":
        render_settings_page(ctl, dark_cell)
    else:
        set_page("home")
        if ctl.mode.read() == MODE_QUIZ and ctl.session is None:
            ctl.set_mode(MODE_DASHBOARD)
        render_dashboard_page(ctl)


if __name__ == "__main__":
    main()

# app.py — Streamlit UI for TarotWhisper
# Run:  streamlit run app.py

from __future__ import annotations

import asyncio
import os
import time
from typing import List

import streamlit as st

from tarotwhisper import tarot_core
from tarotwhisper.config import ConfigurationError, configure_logging, data_file, load_default_llm_config
from tarotwhisper.history import HistoryStorageError, HistoryStore
from tarotwhisper.llm import ChatClient
from tarotwhisper.logic import get_card_image_path, perform_analysis, require_llm_config, start_reading
from tarotwhisper.session import ReadingSession, SessionStateError
from tarotwhisper.settings_store import SettingsStore, SettingsValidationError
from tarotwhisper.storage import JsonFileStorage, MemoryStorage, StorageError
from tarotwhisper.tarot_core import DrawnCard, DrawSession

configure_logging()

# -----------------------------
# Page setup
# -----------------------------
st.set_page_config(page_title="TarotWhisper", page_icon="🔮", layout="wide")

durable = JsonFileStorage(data_file())
reading = ReadingSession(MemoryStorage(st.session_state))
settings_store = SettingsStore(durable)
history = HistoryStore(durable)
default_llm = load_default_llm_config()

DRAW_DELAY_SECONDS = 0.8


def go(step: str) -> None:
    st.session_state["step"] = step
    st.rerun()


def render_card(col, dc: DrawnCard) -> None:
    caption = f"**{dc.position.name}** · {dc.card.name} ({dc.card.english_name}) · `{'逆位' if dc.is_reversed else '正位'}`"
    path = get_card_image_path(dc.card.id)
    if os.path.isfile(path):
        col.image(path, caption=caption, use_column_width=True)
    else:
        col.markdown(caption)
    col.caption(", ".join(dc.keywords[:3]))


def render_cards(cards: List[DrawnCard]) -> None:
    cols_per_row = min(5, max(1, len(cards)))
    for start in range(0, len(cards), cols_per_row):
        cols = st.columns(cols_per_row, gap="small")
        for col, dc in zip(cols, cards[start:start + cols_per_row]):
            render_card(col, dc)


# -----------------------------
# Screens
# -----------------------------
def home_screen() -> None:
    st.title("🔮 TarotWhisper")
    st.caption("State your question, choose a spread, and let the cards speak.")

    if not settings_store.is_configured() and not default_llm.available:
        st.warning("No API configured yet. Open **Settings** to add your endpoint and key.")

    question = st.text_area("Your question", placeholder="e.g. Will I change jobs?", height=100)
    spreads = tarot_core.list_spreads()
    labels = {s.id: f"{s.name} · {s.english_name} ({s.card_count} cards)" for s in spreads}
    spread_id = st.radio("Spread", [s.id for s in spreads], format_func=labels.get)
    st.caption(tarot_core.get_spread(spread_id).description)

    if st.button("✨ Start reading", use_container_width=True):
        try:
            spread = start_reading(question, spread_id, reading, settings_store.load(), default_llm)
        except ConfigurationError as e:
            st.error(str(e))
            return
        except ValueError as e:
            st.error(str(e))
            return
        st.session_state["draw_session"] = DrawSession(spread)
        go("draw")


def draw_screen() -> None:
    try:
        question, spread = reading.load_draw_state()
    except SessionStateError:
        go("home")
        return

    session: DrawSession = st.session_state.get("draw_session")
    if session is None or session.spread.id != spread.id:
        session = DrawSession(spread)
        st.session_state["draw_session"] = session

    st.title("🔮 Drawing")
    st.write(f"Your question: {question}")
    done, total = session.progress
    st.progress(done / total, text=f"{done} / {total}")

    cols = st.columns(min(5, spread.card_count))
    for i, pos in enumerate(spread.positions):
        col = cols[i % len(cols)]
        dc = session.card_at(pos.id)
        if dc is not None:
            render_card(col, dc)
            continue
        if col.button(f"Draw · {pos.name}", key=f"pos-{pos.id}", disabled=not session.can_draw_at(pos.id)):
            if session.begin_draw(pos.id):
                with st.spinner("Drawing..."):
                    time.sleep(DRAW_DELAY_SECONDS)
                session.finish_draw()
                st.rerun()
        col.caption(pos.description)

    if session.is_complete and st.button("✨ Analyse", use_container_width=True):
        reading.save_drawn_cards(session.drawn_cards)
        go("analysis")

    if st.button("← Back to start"):
        go("home")


async def _stream_analysis(question, spread, cards, placeholder):
    config = require_llm_config(settings_store.load(), default_llm)
    async with ChatClient() as client:
        return await perform_analysis(
            question, spread, cards, config, client,
            history=history,
            on_update=placeholder.markdown,
        )


def analysis_screen() -> None:
    try:
        question, spread, cards = reading.load_analysis_state()
    except SessionStateError:
        go("home")
        return

    st.title("🔮 Reading")
    st.write(f"Your question: {question}")
    st.caption(f"Spread: {spread.name}")
    render_cards(cards)
    st.markdown("---")

    placeholder = st.empty()
    result = st.session_state.get("analysis_result")
    if result is None:
        with st.spinner("The cards are being read..."):
            try:
                result = asyncio.run(_stream_analysis(question, spread, cards, placeholder))
            except ConfigurationError as e:
                st.error(str(e))
                return
        st.session_state["analysis_result"] = result

    placeholder.markdown(result.text)
    if result.error:
        st.error(result.error)
        st.caption("Check your API configuration on the **Settings** page.")

    if st.button("🔄 New reading", use_container_width=True):
        reading.clear()
        st.session_state.pop("analysis_result", None)
        st.session_state.pop("draw_session", None)
        go("home")


def history_screen() -> None:
    st.title("📜 History")
    entries = history.get_all()
    if st.button("🧹 Clear all", disabled=not entries):
        try:
            history.clear_all()
        except HistoryStorageError as e:
            st.error(str(e))
        else:
            st.rerun()

    if not entries:
        st.info("No readings yet.")
        return

    for entry in entries:
        stamp = time.strftime("%Y-%m-%d %H:%M", time.localtime(entry.timestamp / 1000))
        with st.expander(f"{stamp} · {entry.spread_name} · {entry.question}"):
            render_cards(entry.drawn_cards)
            st.markdown(entry.analysis)
            if st.button("Delete", key=f"del-{entry.id}"):
                try:
                    history.delete_reading(entry.id)
                except HistoryStorageError as e:
                    st.error(str(e))
                else:
                    st.rerun()


def settings_screen() -> None:
    st.title("⚙️ Settings")
    current = settings_store.load()
    base_url = st.text_input("API base URL", value=current.base_url or "", placeholder="https://api.openai.com/v1")
    api_key = st.text_input("API key", value=current.api_key or "", type="password")
    model = st.text_input("Model", value=current.model or "gpt-4o-mini")

    if default_llm.available:
        st.caption(f"A server default is available (model: {default_llm.model or 'gpt-4o-mini'}); it is used when these fields are empty.")

    col1, col2 = st.columns(2)
    if col1.button("💾 Save", use_container_width=True):
        try:
            settings_store.save(base_url, api_key, model)
            st.success("Settings saved.")
        except SettingsValidationError as e:
            st.error(str(e))
        except StorageError as e:
            st.error(f"Could not save settings: {e}")

    if col2.button("🔌 Test connection", use_container_width=True):
        if not base_url.strip() or not api_key.strip():
            st.error("Fill in the base URL and key first.")
        else:
            async def _probe() -> bool:
                async with ChatClient() as client:
                    return await client.test_connection(base_url.strip(), api_key.strip())

            if asyncio.run(_probe()):
                st.success("✅ Connection OK")
            else:
                st.error("❌ Connection failed, check the URL and key.")


# -----------------------------
# Navigation
# -----------------------------
page = st.sidebar.radio("Navigate", ["Reading", "History", "Settings"])

if page == "History":
    history_screen()
elif page == "Settings":
    settings_screen()
else:
    step = st.session_state.get("step", "home")
    if step == "draw":
        draw_screen()
    elif step == "analysis":
        analysis_screen()
    else:
        home_screen()

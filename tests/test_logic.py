"""
Tests for the reading flow: start, streamed analysis, history recording.
"""

from typing import List

import httpx
import pytest

from tarotwhisper import tarot_core
from tarotwhisper.config import ConfigurationError, DefaultLlmConfig, ResolvedLlmConfig, UserLlmSettings
from tarotwhisper.history import HistoryStore
from tarotwhisper.llm import ChatClient
from tarotwhisper.logic import perform_analysis, perform_reading, start_reading
from tarotwhisper.session import ReadingSession
from tarotwhisper.storage import MemoryStorage, StorageError
from tarotwhisper.tarot_core import DrawSession

CONFIG = ResolvedLlmConfig(source="user", model="m", base_url="https://llm.example/v1", api_key="k")
USER = UserLlmSettings(base_url="https://llm.example/v1", api_key="k")


def _client(mock_client, response: httpx.Response) -> ChatClient:
    return ChatClient(http_client=mock_client(lambda request: response))


def test_start_reading_stores_handoff(storage) -> None:
    session = ReadingSession(storage)
    spread = start_reading("  Will I change jobs?  ", "single_card", session, USER, DefaultLlmConfig())
    assert spread.id == "single_card"
    assert session.load_draw_state() == ("Will I change jobs?", spread)


@pytest.mark.parametrize("question, spread_id", [("   ", "single_card"), ("q", "")])
def test_start_reading_validates_input(storage, question, spread_id) -> None:
    with pytest.raises(ValueError):
        start_reading(question, spread_id, ReadingSession(storage), USER, DefaultLlmConfig())


def test_start_reading_without_credentials_is_blocked(storage) -> None:
    with pytest.raises(ConfigurationError):
        start_reading("q", "single_card", ReadingSession(storage), UserLlmSettings(), DefaultLlmConfig())
    assert storage.get("tarot_question") is None


def test_start_reading_unknown_spread(storage) -> None:
    with pytest.raises(tarot_core.InvalidSpreadError):
        start_reading("q", "nope", ReadingSession(storage), USER, DefaultLlmConfig())


@pytest.mark.asyncio
async def test_single_card_reading_end_to_end(storage, mock_client, sse_body) -> None:
    session = ReadingSession(storage)
    history = HistoryStore(storage)
    spread = start_reading("Will I change jobs?", "single_card", session, USER, DefaultLlmConfig())

    draw = DrawSession(spread, seed="e2e")
    draw.draw_at(spread.positions[0].id)
    assert len(draw.drawn_cards) == 1
    session.save_drawn_cards(draw.drawn_cards)

    question, spread, cards = session.load_analysis_state()
    updates: List[str] = []
    client = _client(mock_client, httpx.Response(200, content=sse_body("The ", "Fool ", "speaks.")))
    result = await perform_analysis(question, spread, cards, CONFIG, client, history=history, on_update=updates.append)

    assert result.ok
    assert result.text == "The Fool speaks."
    assert updates == ["The ", "The Fool ", "The Fool speaks."]
    [entry] = history.get_all()
    assert entry == result.entry
    assert len(entry.drawn_cards) == 1
    assert entry.analysis == "The Fool speaks."
    assert entry.spread_id == "single_card"


@pytest.mark.asyncio
async def test_http_failure_reports_error_and_skips_history(storage, mock_client) -> None:
    history = HistoryStore(storage)
    spread = tarot_core.get_spread("single_card")
    cards = tarot_core.draw_cards(spread.id, seed=1)
    client = _client(mock_client, httpx.Response(500, text="boom"))

    result = await perform_analysis("q", spread, cards, CONFIG, client, history=history)

    assert not result.ok
    assert "500" in result.error and "Internal Server Error" in result.error
    assert result.text == ""
    assert history.get_all() == []


@pytest.mark.asyncio
async def test_stream_cut_short_keeps_partial_text(storage, mock_client, sse_body) -> None:
    history = HistoryStore(storage)
    spread = tarot_core.get_spread("single_card")
    cards = tarot_core.draw_cards(spread.id, seed=1)
    client = _client(mock_client, httpx.Response(200, content=sse_body("half a ", "reading", done=False)))

    result = await perform_analysis("q", spread, cards, CONFIG, client, history=history)

    assert result.text == "half a reading"
    assert result.error
    assert history.get_all() == []


@pytest.mark.asyncio
async def test_empty_analysis_is_not_recorded(storage, mock_client, sse_body) -> None:
    history = HistoryStore(storage)
    spread = tarot_core.get_spread("single_card")
    client = _client(mock_client, httpx.Response(200, content=sse_body()))

    result = await perform_analysis("q", spread, tarot_core.draw_cards(spread.id), CONFIG, client, history=history)

    assert result.ok and result.text == ""
    assert result.entry is None
    assert history.get_all() == []


class ReadOnlyStorage(MemoryStorage):
    def set(self, key: str, value: str) -> None:
        raise StorageError("read only")


@pytest.mark.asyncio
async def test_history_failure_does_not_affect_analysis(mock_client, sse_body) -> None:
    spread = tarot_core.get_spread("single_card")
    client = _client(mock_client, httpx.Response(200, content=sse_body("fine")))

    result = await perform_analysis(
        "q", spread, tarot_core.draw_cards(spread.id), CONFIG, client, history=HistoryStore(ReadOnlyStorage()),
    )

    assert result.ok
    assert result.text == "fine"
    assert result.entry is None


def test_perform_reading_is_reproducible() -> None:
    a = perform_reading("three_card_time", seed="demo-seed", question="  career? ")
    b = perform_reading("three_card_time", seed="demo-seed")
    assert a["cards"] == b["cards"]
    assert a["meta"]["question"] == "career?"
    assert [c["position"]["name"] for c in a["cards"]] == ["Past", "Present", "Future"]
    assert all(c["image_path"].endswith(f"{c['card']['id']}.png") for c in a["cards"])

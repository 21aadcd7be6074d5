"""
logic.py — Orchestration layer that ties tarot_core mechanics to UI/API needs.

Responsibilities:
- `start_reading(...)`: validate the home-screen input and hand it to the draw screen.
- `perform_analysis(...)`: stream the LLM interpretation into a running buffer,
  notify the caller on every increment, and record the finished reading in history.
- `perform_reading(...)`: one-shot seeded draw returning a JSON-ready dict for
  the API and the CLI demo.

Notes:
- Image assets are expected under: ./assets/cards/{card_id}.png
- Nothing here retries; every failure ends the current operation.
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional

from . import tarot_core
from .config import ConfigurationError, DefaultLlmConfig, ResolvedLlmConfig, UserLlmSettings, resolve_llm_config
from .history import HistoryStorageError, HistoryStore, ReadingHistoryEntry
from .llm import ChatClient, LlmError, build_messages
from .session import ReadingSession
from .tarot_core import DrawnCard, Seed, Spread

logger = logging.getLogger(__name__)


# -----------------------------------------------------------------------------
# Paths & utilities
# -----------------------------------------------------------------------------

_PROJECT_ROOT = os.path.abspath(os.path.join(os.path.dirname(__file__), os.pardir))
CARD_ASSETS_DIR = os.path.join(_PROJECT_ROOT, "assets", "cards")

MISSING_CONFIG_MESSAGE = "API configuration is missing. Please configure it on the settings page."


def get_card_image_path(card_id: str, ext: str = "png") -> str:
    """
    Build a file path to a card image: ./assets/cards/{card_id}.png

    The path is returned regardless of whether the file exists.
    """
    return os.path.join(CARD_ASSETS_DIR, f"{card_id}.{ext}")


# -----------------------------------------------------------------------------
# Reading flow
# -----------------------------------------------------------------------------

def require_llm_config(user: UserLlmSettings, default: DefaultLlmConfig) -> ResolvedLlmConfig:
    resolved = resolve_llm_config(user, default)
    if resolved is None:
        raise ConfigurationError(MISSING_CONFIG_MESSAGE)
    return resolved


def start_reading(
    question: str,
    spread_id: str,
    session: ReadingSession,
    user: UserLlmSettings,
    default: DefaultLlmConfig,
) -> Spread:
    """Validate the question and spread, check credentials, and store the handoff state."""
    question = (question or "").strip()
    if not question:
        raise ValueError("Please enter your question")
    if not spread_id:
        raise ValueError("Please choose a spread")
    spread = tarot_core.get_spread(spread_id)
    require_llm_config(user, default)
    session.start(question, spread.id)
    return spread


@dataclass
class AnalysisResult:
    text: str
    error: Optional[str] = None
    entry: Optional[ReadingHistoryEntry] = None

    @property
    def ok(self) -> bool:
        return self.error is None


async def perform_analysis(
    question: str,
    spread: Spread,
    drawn_cards: List[DrawnCard],
    config: ResolvedLlmConfig,
    client: ChatClient,
    history: Optional[HistoryStore] = None,
    on_update: Optional[Callable[[str], None]] = None,
) -> AnalysisResult:
    """
    Stream an interpretation of the drawn cards.

    `on_update` receives the whole accumulated text after each increment.
    On failure the partial text is kept and `error` carries a user-facing
    message. A successful, non-empty analysis is saved to `history`; a history
    failure is logged and does not affect the returned text.
    """
    messages = build_messages(question, spread, drawn_cards)
    text = ""
    try:
        async for piece in client.stream_chat(config, messages):
            text += piece
            if on_update is not None:
                on_update(text)
    except LlmError as e:
        logger.warning("Analysis failed: %s", e)
        return AnalysisResult(text=text, error=str(e))

    result = AnalysisResult(text=text)
    if history is not None and text.strip():
        try:
            result.entry = history.save_reading(
                question=question,
                spread_name=spread.name,
                spread_id=spread.id,
                drawn_cards=drawn_cards,
                analysis=text,
            )
        except HistoryStorageError:
            logger.exception("Failed to record reading in history")
    return result


# -----------------------------------------------------------------------------
# One-shot draw (API / CLI)
# -----------------------------------------------------------------------------

def perform_reading(
    spread_id: str,
    seed: Seed = None,
    question: Optional[str] = None,
    *,
    image_ext: str = "png",
) -> Dict[str, Any]:
    """
    Draw a whole spread in position order and return a JSON-serializable dict:

        {
          "meta": {"spread": str, "spread_name": str, "seed": int|str|null, "question": str|null},
          "cards": [
            {<DrawnCard dict>, "orientation": "upright|reversed",
             "keywords": [...], "image_path": str},
            ...
          ]
        }
    """
    spread = tarot_core.get_spread(spread_id)
    drawn = tarot_core.draw_cards(spread.id, seed=seed)

    cards: List[Dict[str, Any]] = []
    for dc in drawn:
        cards.append(
            {
                **dc.to_dict(),
                "orientation": dc.orientation,
                "keywords": list(dc.keywords),
                "image_path": get_card_image_path(dc.card.id, ext=image_ext),
            }
        )

    return {
        "meta": {
            "spread": spread.id,
            "spread_name": spread.name,
            "seed": seed,
            "question": (question or "").strip() or None,
        },
        "cards": cards,
    }

"""
session.py — Hand the in-flight reading (question, spread, drawn cards) from
one screen to the next through ephemeral per-tab storage.
"""

from __future__ import annotations

import json
from typing import List, Tuple

from . import tarot_core
from .storage import Storage
from .tarot_core import DrawnCard, Spread

QUESTION_KEY = "tarot_question"
SPREAD_KEY = "tarot_spread"
DRAWN_CARDS_KEY = "tarot_drawn_cards"


class SessionStateError(Exception):
    """Expected handoff state is missing or unreadable; restart from the home screen."""


class ReadingSession:
    def __init__(self, storage: Storage) -> None:
        self._storage = storage

    def start(self, question: str, spread_id: str) -> None:
        self._storage.remove(DRAWN_CARDS_KEY)
        self._storage.set(QUESTION_KEY, question)
        self._storage.set(SPREAD_KEY, spread_id)

    def save_drawn_cards(self, cards: List[DrawnCard]) -> None:
        self._storage.set(DRAWN_CARDS_KEY, json.dumps([c.to_dict() for c in cards], ensure_ascii=False))

    def load_draw_state(self) -> Tuple[str, Spread]:
        question = self._storage.get(QUESTION_KEY)
        spread_id = self._storage.get(SPREAD_KEY)
        if not question or not spread_id:
            raise SessionStateError("No reading in progress")
        try:
            spread = tarot_core.get_spread(spread_id)
        except tarot_core.InvalidSpreadError as e:
            raise SessionStateError(str(e)) from e
        return question, spread

    def load_analysis_state(self) -> Tuple[str, Spread, List[DrawnCard]]:
        question, spread = self.load_draw_state()
        raw = self._storage.get(DRAWN_CARDS_KEY)
        if not raw:
            raise SessionStateError("No drawn cards for this reading")
        try:
            cards = [DrawnCard.from_dict(item) for item in json.loads(raw)]
        except (ValueError, TypeError, KeyError) as e:
            raise SessionStateError(f"Drawn cards could not be parsed: {e}") from e
        if not cards:
            raise SessionStateError("No drawn cards for this reading")
        return question, spread, cards

    def clear(self) -> None:
        for key in (QUESTION_KEY, SPREAD_KEY, DRAWN_CARDS_KEY):
            self._storage.remove(key)

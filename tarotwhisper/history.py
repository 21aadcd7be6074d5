"""
history.py — Past readings, kept as one bounded JSON array in durable storage.

Newest first, at most MAX_HISTORY_ITEMS entries; the oldest are dropped on save.
"""

from __future__ import annotations

import json
import logging
import random
import string
import time
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional

from .storage import Storage, StorageError
from .tarot_core import DrawnCard

logger = logging.getLogger(__name__)

HISTORY_STORAGE_KEY = "tarot_reading_history"
MAX_HISTORY_ITEMS = 50


class HistoryStorageError(Exception):
    """Raised when a history mutation cannot be persisted."""


@dataclass(frozen=True)
class ReadingHistoryEntry:
    id: str
    timestamp: int  # epoch milliseconds
    question: str
    spread_name: str
    spread_id: str
    drawn_cards: List[DrawnCard] = field(default_factory=list)
    analysis: str = ""

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "timestamp": self.timestamp,
            "question": self.question,
            "spreadName": self.spread_name,
            "spreadId": self.spread_id,
            "drawnCards": [c.to_dict() for c in self.drawn_cards],
            "analysis": self.analysis,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ReadingHistoryEntry":
        return cls(
            id=data["id"],
            timestamp=int(data["timestamp"]),
            question=data.get("question", ""),
            spread_name=data.get("spreadName", ""),
            spread_id=data.get("spreadId", ""),
            drawn_cards=[DrawnCard.from_dict(c) for c in data.get("drawnCards", [])],
            analysis=data.get("analysis", ""),
        )


def _now_ms() -> int:
    return int(time.time() * 1000)


def _random_suffix(length: int = 9) -> str:
    return "".join(random.choices(string.ascii_lowercase + string.digits, k=length))


class HistoryStore:
    def __init__(
        self,
        storage: Storage,
        clock: Callable[[], int] = _now_ms,
        max_items: int = MAX_HISTORY_ITEMS,
    ) -> None:
        self._storage = storage
        self._clock = clock
        self._max_items = max_items

    def _load(self) -> List[ReadingHistoryEntry]:
        raw = self._storage.get(HISTORY_STORAGE_KEY)
        if not raw:
            return []
        entries = [ReadingHistoryEntry.from_dict(item) for item in json.loads(raw)]
        return sorted(entries, key=lambda e: e.timestamp, reverse=True)

    def _store(self, entries: List[ReadingHistoryEntry]) -> None:
        payload = json.dumps([e.to_dict() for e in entries], ensure_ascii=False)
        self._storage.set(HISTORY_STORAGE_KEY, payload)

    def get_all(self) -> List[ReadingHistoryEntry]:
        """All entries, newest first. Unreadable history is logged and treated as empty."""
        try:
            return self._load()
        except (StorageError, ValueError, TypeError, KeyError):
            logger.exception("Failed to load history")
            return []

    def get_reading(self, reading_id: str) -> Optional[ReadingHistoryEntry]:
        for entry in self.get_all():
            if entry.id == reading_id:
                return entry
        return None

    def save_reading(
        self,
        question: str,
        spread_name: str,
        spread_id: str,
        drawn_cards: List[DrawnCard],
        analysis: str,
    ) -> ReadingHistoryEntry:
        now = self._clock()
        entry = ReadingHistoryEntry(
            id=f"reading_{now}_{_random_suffix()}",
            timestamp=now,
            question=question,
            spread_name=spread_name,
            spread_id=spread_id,
            drawn_cards=list(drawn_cards),
            analysis=analysis,
        )
        try:
            self._store([entry, *self.get_all()][: self._max_items])
        except StorageError as e:
            logger.exception("Failed to save history")
            raise HistoryStorageError("Failed to save reading history") from e
        return entry

    def delete_reading(self, reading_id: str) -> None:
        try:
            entries = self.get_all()
            remaining = [e for e in entries if e.id != reading_id]
            if len(remaining) != len(entries):
                self._store(remaining)
        except StorageError as e:
            logger.exception("Failed to delete history item %s", reading_id)
            raise HistoryStorageError("Failed to delete reading") from e

    def clear_all(self) -> None:
        try:
            self._storage.remove(HISTORY_STORAGE_KEY)
        except StorageError as e:
            logger.exception("Failed to clear history")
            raise HistoryStorageError("Failed to clear history") from e

"""
Tests for the bounded reading history.
"""

import itertools
import json

import pytest

from tarotwhisper import tarot_core
from tarotwhisper.history import HISTORY_STORAGE_KEY, MAX_HISTORY_ITEMS, HistoryStorageError, HistoryStore
from tarotwhisper.storage import MemoryStorage, StorageError


def _store(storage, start: int = 1_700_000_000_000) -> HistoryStore:
    ticks = itertools.count(start, 1000)
    return HistoryStore(storage, clock=lambda: next(ticks))


def _save(history: HistoryStore, question: str):
    cards = tarot_core.draw_cards("single_card", seed=question)
    return history.save_reading(question, "单张牌", "single_card", cards, f"analysis for {question}")


def test_save_returns_entry_with_generated_id(storage) -> None:
    history = _store(storage)
    entry = _save(history, "q1")

    assert entry.id.startswith(f"reading_{entry.timestamp}_")
    assert len(entry.id.rsplit("_", 1)[1]) == 9
    assert history.get_all() == [entry]
    assert history.get_reading(entry.id) == entry


def test_entries_listed_newest_first(storage) -> None:
    history = _store(storage)
    first = _save(history, "first")
    second = _save(history, "second")
    assert [e.id for e in history.get_all()] == [second.id, first.id]


def test_keeps_only_the_50_most_recent(storage) -> None:
    history = _store(storage)
    saved = [_save(history, f"q{i}") for i in range(MAX_HISTORY_ITEMS + 1)]

    entries = history.get_all()
    assert len(entries) == MAX_HISTORY_ITEMS
    assert [e.id for e in entries] == [e.id for e in reversed(saved[1:])]
    assert history.get_reading(saved[0].id) is None


def test_delete_one_and_unknown_id(storage) -> None:
    history = _store(storage)
    a = _save(history, "a")
    b = _save(history, "b")

    history.delete_reading("reading_does_not_exist")
    assert len(history.get_all()) == 2

    history.delete_reading(a.id)
    assert history.get_all() == [b]


def test_clear_all(storage) -> None:
    history = _store(storage)
    _save(history, "a")
    history.clear_all()
    assert history.get_all() == []
    assert storage.get(HISTORY_STORAGE_KEY) is None


def test_persisted_shape_uses_camel_case(storage) -> None:
    history = _store(storage)
    _save(history, "shape")
    [raw] = json.loads(storage.get(HISTORY_STORAGE_KEY))
    assert set(raw) == {"id", "timestamp", "question", "spreadName", "spreadId", "drawnCards", "analysis"}
    assert len(raw["drawnCards"]) == 1


def test_unreadable_history_reads_as_empty(storage) -> None:
    storage.set(HISTORY_STORAGE_KEY, "{not json")
    assert _store(storage).get_all() == []


class BrokenStorage(MemoryStorage):
    def set(self, key: str, value: str) -> None:
        raise StorageError("disk full")

    def remove(self, key: str) -> None:
        raise StorageError("disk full")


def test_storage_failures_surface_as_history_errors() -> None:
    history = _store(BrokenStorage())
    with pytest.raises(HistoryStorageError):
        _save(history, "q")
    with pytest.raises(HistoryStorageError):
        history.clear_all()

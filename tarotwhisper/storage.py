"""
storage.py — String key/value stores behind the session handoff, settings and history.

Two flavours:
- MemoryStorage: wraps any mutable mapping. A plain dict in tests,
  Streamlit's `st.session_state` for per-tab ephemeral state.
- JsonFileStorage: durable store kept in one JSON object file.
"""

from __future__ import annotations

import json
import os
import tempfile
from typing import Dict, MutableMapping, Optional, Protocol


class StorageError(Exception):
    """Raised when the backing store cannot be read or written."""


class Storage(Protocol):
    def get(self, key: str) -> Optional[str]: ...

    def set(self, key: str, value: str) -> None: ...

    def remove(self, key: str) -> None: ...


class MemoryStorage:
    def __init__(self, mapping: Optional[MutableMapping[str, str]] = None) -> None:
        self._data: MutableMapping[str, str] = mapping if mapping is not None else {}

    def get(self, key: str) -> Optional[str]:
        value = self._data.get(key)
        return value if isinstance(value, str) else None

    def set(self, key: str, value: str) -> None:
        self._data[key] = value

    def remove(self, key: str) -> None:
        self._data.pop(key, None)


class JsonFileStorage:
    """
    Durable storage in a single JSON object file.

    Each set/remove re-reads the file, applies the change and replaces the file
    atomically, so two quick successive writes never lose each other.
    """

    def __init__(self, path: str) -> None:
        self.path = os.path.abspath(os.path.expanduser(path))

    def _read(self) -> Dict[str, str]:
        if not os.path.exists(self.path):
            return {}
        try:
            with open(self.path, "r", encoding="utf-8") as fh:
                data = json.load(fh)
        except (OSError, ValueError) as e:
            raise StorageError(f"Cannot read storage file {self.path}: {e}") from e
        if not isinstance(data, dict):
            raise StorageError(f"Storage file {self.path} does not hold a JSON object")
        return data

    def _write(self, data: Dict[str, str]) -> None:
        directory = os.path.dirname(self.path)
        try:
            os.makedirs(directory, exist_ok=True)
            fd, tmp_path = tempfile.mkstemp(dir=directory, prefix=".storage-", suffix=".json")
        except OSError as e:
            raise StorageError(f"Cannot write storage file {self.path}: {e}") from e
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as fh:
                json.dump(data, fh, ensure_ascii=False)
            os.replace(tmp_path, self.path)
        except (OSError, TypeError, ValueError) as e:
            if os.path.exists(tmp_path):
                os.unlink(tmp_path)
            raise StorageError(f"Cannot write storage file {self.path}: {e}") from e

    def get(self, key: str) -> Optional[str]:
        value = self._read().get(key)
        return value if isinstance(value, str) else None

    def set(self, key: str, value: str) -> None:
        data = self._read()
        data[key] = value
        self._write(data)

    def remove(self, key: str) -> None:
        data = self._read()
        if key in data:
            del data[key]
            self._write(data)

"""User LLM settings persisted in durable storage."""

from __future__ import annotations

from typing import Optional

from .config import FALLBACK_MODEL, UserLlmSettings, normalize
from .storage import Storage

BASE_URL_KEY = "tarot_api_base_url"
API_KEY_KEY = "tarot_api_key"
MODEL_KEY = "tarot_api_model"


class SettingsValidationError(ValueError):
    """Raised when a settings form is saved incomplete."""


class SettingsStore:
    def __init__(self, storage: Storage) -> None:
        self._storage = storage

    def load(self) -> UserLlmSettings:
        return UserLlmSettings(
            base_url=normalize(self._storage.get(BASE_URL_KEY)),
            api_key=normalize(self._storage.get(API_KEY_KEY)),
            model=normalize(self._storage.get(MODEL_KEY)),
        )

    def is_configured(self) -> bool:
        s = self.load()
        return bool(s.base_url and s.api_key)

    def save(self, base_url: str, api_key: str, model: Optional[str] = None) -> UserLlmSettings:
        base_url = (base_url or "").strip()
        api_key = (api_key or "").strip()
        if not base_url or not api_key:
            raise SettingsValidationError("Both the API base URL and the API key are required")
        model = (model or "").strip() or FALLBACK_MODEL
        self._storage.set(BASE_URL_KEY, base_url)
        self._storage.set(API_KEY_KEY, api_key)
        self._storage.set(MODEL_KEY, model)
        return UserLlmSettings(base_url=base_url, api_key=api_key, model=model)

    def clear(self) -> None:
        for key in (BASE_URL_KEY, API_KEY_KEY, MODEL_KEY):
            self._storage.remove(key)

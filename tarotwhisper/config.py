"""
config.py — Environment configuration and LLM credential resolution.

Server-held defaults come from the environment (optionally a .env file):
  DEFAULT_LLM_ENABLED   true/1/yes/on to enable the proxy path
  DEFAULT_LLM_BASE_URL  e.g. https://api.openai.com/v1
  DEFAULT_LLM_API_KEY
  DEFAULT_LLM_MODEL
Local wiring:
  TAROT_PROXY_URL   where clients reach the /api/chat proxy
  TAROT_DATA_FILE   durable storage file (settings + history)
  TAROT_LOG_LEVEL
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from typing import Literal, Mapping, Optional

from dotenv import load_dotenv

load_dotenv()

FALLBACK_MODEL = "gpt-4o-mini"
DEFAULT_PROXY_URL = "http://127.0.0.1:8000/api/chat"
DEFAULT_DATA_FILE = "~/.tarotwhisper/storage.json"

_TRUTHY = {"true", "1", "yes", "on"}


class ConfigurationError(Exception):
    """No usable LLM credentials: the user must configure them in settings."""


def normalize(value: Optional[str]) -> Optional[str]:
    if not value:
        return None
    trimmed = value.strip()
    return trimmed or None


def parse_bool(value: Optional[str]) -> bool:
    if not value:
        return False
    return value.strip().lower() in _TRUTHY


@dataclass(frozen=True)
class UserLlmSettings:
    """What the user entered on the settings screen."""
    base_url: Optional[str] = None
    api_key: Optional[str] = None
    model: Optional[str] = None


@dataclass(frozen=True)
class DefaultLlmConfig:
    """Server-held default credentials (never sent to clients)."""
    enabled: bool = False
    base_url: Optional[str] = None
    api_key: Optional[str] = None
    model: Optional[str] = None

    @property
    def available(self) -> bool:
        return self.enabled and bool(self.base_url) and bool(self.api_key)

    def public_view(self) -> dict:
        return {"available": self.available, "model": self.model}


@dataclass(frozen=True)
class ResolvedLlmConfig:
    """
    Effective configuration for one analysis.

    source == "user":    call base_url directly with api_key.
    source == "default": go through the proxy; credentials stay on the server.
    """
    source: Literal["user", "default"]
    model: str
    base_url: Optional[str] = None
    api_key: Optional[str] = None


def load_default_llm_config(environ: Optional[Mapping[str, str]] = None) -> DefaultLlmConfig:
    env = os.environ if environ is None else environ
    return DefaultLlmConfig(
        enabled=parse_bool(env.get("DEFAULT_LLM_ENABLED")),
        base_url=normalize(env.get("DEFAULT_LLM_BASE_URL")),
        api_key=normalize(env.get("DEFAULT_LLM_API_KEY")),
        model=normalize(env.get("DEFAULT_LLM_MODEL")),
    )


def resolve_llm_config(
    user: UserLlmSettings,
    default: DefaultLlmConfig,
) -> Optional[ResolvedLlmConfig]:
    """
    Pick the credentials for an analysis: user settings > server default > none.
    Model falls back user -> default -> FALLBACK_MODEL independently.
    """
    model = normalize(user.model) or normalize(default.model) or FALLBACK_MODEL
    base_url = normalize(user.base_url)
    api_key = normalize(user.api_key)
    if base_url and api_key:
        return ResolvedLlmConfig(source="user", model=model, base_url=base_url.rstrip("/"), api_key=api_key)
    if default.available:
        return ResolvedLlmConfig(source="default", model=model)
    return None


def proxy_url(environ: Optional[Mapping[str, str]] = None) -> str:
    env = os.environ if environ is None else environ
    return normalize(env.get("TAROT_PROXY_URL")) or DEFAULT_PROXY_URL


def data_file(environ: Optional[Mapping[str, str]] = None) -> str:
    env = os.environ if environ is None else environ
    return normalize(env.get("TAROT_DATA_FILE")) or DEFAULT_DATA_FILE


_logging_configured = False


def configure_logging(level: Optional[str] = None) -> None:
    """Set up root logging once; httpx request lines are kept at WARNING."""
    global _logging_configured
    if _logging_configured:
        return
    level_name = (level or os.getenv("TAROT_LOG_LEVEL") or "INFO").upper()
    logging.basicConfig(
        level=getattr(logging, level_name, logging.INFO),
        format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
    )
    logging.getLogger("httpx").setLevel(logging.WARNING)
    _logging_configured = True

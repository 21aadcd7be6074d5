"""Shared fixtures: in-memory storage, fake SSE bodies and a mocked upstream."""

from __future__ import annotations

import json
from typing import Callable, List

import httpx
import pytest

from tarotwhisper.storage import MemoryStorage


def make_sse_body(*contents: str, done: bool = True) -> bytes:
    """Build a chat-completion event stream carrying the given content deltas."""
    lines: List[str] = []
    for text in contents:
        chunk = {"choices": [{"index": 0, "delta": {"content": text}}]}
        lines.append(f"data: {json.dumps(chunk)}\n\n")
    if done:
        lines.append("data: [DONE]\n\n")
    return "".join(lines).encode("utf-8")


@pytest.fixture
def storage() -> MemoryStorage:
    return MemoryStorage()


@pytest.fixture
def mock_client() -> Callable[[Callable[[httpx.Request], httpx.Response]], httpx.AsyncClient]:
    """Factory for an AsyncClient whose requests are answered by `handler`."""

    def _make(handler: Callable[[httpx.Request], httpx.Response]) -> httpx.AsyncClient:
        return httpx.AsyncClient(transport=httpx.MockTransport(handler))

    return _make


@pytest.fixture
def sse_body() -> Callable[..., bytes]:
    return make_sse_body

"""
Tests for the HTTP API and the /api/chat proxy.
"""

import gzip
import json

import httpx
import pytest
from fastapi.testclient import TestClient

from api.main import app, get_default_llm_config, get_upstream_client
from tarotwhisper.config import DefaultLlmConfig

ENABLED = DefaultLlmConfig(enabled=True, base_url="https://upstream.example/v1/", api_key="sk-server", model="srv-model")


@pytest.fixture
def client():
    yield TestClient(app)
    app.dependency_overrides.clear()


def _use_default(config: DefaultLlmConfig) -> None:
    app.dependency_overrides[get_default_llm_config] = lambda: config


def _use_upstream(handler) -> None:
    app.dependency_overrides[get_upstream_client] = lambda: httpx.AsyncClient(transport=httpx.MockTransport(handler))


def test_health_reports_default_availability(client) -> None:
    _use_default(ENABLED)
    body = client.get("/health").json()
    assert body == {"status": "ok", "version": app.version, "default_llm_available": True}


def test_spreads_and_cards(client) -> None:
    spreads = client.get("/v1/spreads").json()["spreads"]
    assert "single_card" in [s["id"] for s in spreads]
    assert client.get("/v1/spreads/celtic_cross").json()["cardCount"] == 10
    assert client.get("/v1/spreads/unknown").status_code == 404
    assert len(client.get("/v1/cards").json()["cards"]) == 78


def test_create_reading(client) -> None:
    r = client.post("/v1/readings", json={"spread_id": "three_card_time", "seed": "api-seed"})
    assert r.status_code == 200
    assert len(r.json()["cards"]) == 3
    assert r.json() == client.post("/v1/readings", json={"spread_id": "three_card_time", "seed": "api-seed"}).json()
    assert client.post("/v1/readings", json={"spread_id": "nope"}).status_code == 404


def test_default_llm_view_hides_key(client) -> None:
    _use_default(ENABLED)
    assert client.get("/v1/config/default-llm").json() == {"available": True, "model": "srv-model"}


def test_proxy_unavailable_returns_503(client) -> None:
    _use_default(DefaultLlmConfig(enabled=False, base_url="https://x", api_key="k"))
    r = client.post("/api/chat", json={"model": "m", "messages": [], "stream": True})
    assert r.status_code == 503
    assert "error" in r.json()


def test_proxy_streams_upstream_events_with_server_key(client, sse_body) -> None:
    seen = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen["url"] = str(request.url)
        seen["auth"] = request.headers["Authorization"]
        seen["body"] = json.loads(request.content)
        return httpx.Response(200, content=sse_body("A", "B"), headers={"Content-Type": "text/event-stream"})

    _use_default(ENABLED)
    _use_upstream(handler)
    payload = {"model": "m", "messages": [{"role": "user", "content": "hi"}], "stream": True}
    r = client.post("/api/chat", json=payload)

    assert r.status_code == 200
    assert r.headers["content-type"].startswith("text/event-stream")
    assert r.headers["cache-control"] == "no-cache"
    assert r.content == sse_body("A", "B")
    assert seen == {
        "url": "https://upstream.example/v1/chat/completions",
        "auth": "Bearer sk-server",
        "body": payload,
    }


def test_proxy_passes_non_streaming_json(client) -> None:
    _use_default(ENABLED)
    _use_upstream(lambda request: httpx.Response(200, json={"choices": [{"message": {"content": "hi"}}]}))
    r = client.post("/api/chat", json={"model": "m", "messages": [], "stream": False})
    assert r.status_code == 200
    assert r.json() == {"choices": [{"message": {"content": "hi"}}]}


def test_proxy_forwards_upstream_error_status(client) -> None:
    _use_default(ENABLED)
    _use_upstream(lambda request: httpx.Response(429, text="slow down"))
    r = client.post("/api/chat", json={"model": "m", "messages": [], "stream": True})
    assert r.status_code == 429
    body = r.json()
    assert "429" in body["error"] and "Too Many Requests" in body["error"]
    assert body["details"] == "slow down"


def test_proxy_network_failure_is_500(client) -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("unreachable", request=request)

    _use_default(ENABLED)
    _use_upstream(handler)
    r = client.post("/api/chat", json={"model": "m", "messages": [], "stream": True})
    assert r.status_code == 500
    assert r.json()["message"]


def test_proxy_decodes_compressed_upstream_stream(client, sse_body) -> None:
    compressed = gzip.compress(sse_body("A", "B"))

    _use_default(ENABLED)
    _use_upstream(lambda request: httpx.Response(
        200,
        content=compressed,
        headers={"Content-Type": "text/event-stream", "Content-Encoding": "gzip"},
    ))
    r = client.post("/api/chat", json={"model": "m", "messages": [], "stream": True})

    assert r.status_code == 200
    assert "content-encoding" not in r.headers
    assert r.content == sse_body("A", "B")


def test_proxy_non_json_upstream_reply_is_json_500(client) -> None:
    _use_default(ENABLED)
    _use_upstream(lambda request: httpx.Response(200, text="<html>gateway</html>"))
    r = client.post("/api/chat", json={"model": "m", "messages": [], "stream": False})

    assert r.status_code == 500
    body = r.json()
    assert body["error"] == "Internal server error"
    assert body["message"]

# api/main.py
from __future__ import annotations

import json
import logging
from typing import Optional, Union

import httpx
from fastapi import Depends, FastAPI, HTTPException, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, StreamingResponse
from pydantic import BaseModel, Field
from starlette.background import BackgroundTask

from tarotwhisper import tarot_core
from tarotwhisper.config import DefaultLlmConfig, configure_logging, load_default_llm_config
from tarotwhisper.llm import DEFAULT_TIMEOUT
from tarotwhisper.logic import perform_reading

configure_logging()
logger = logging.getLogger(__name__)


# ---------- Pydantic Schemas ----------
class ReadingRequest(BaseModel):
    spread_id: str = Field(..., description="single_card|three_card_time|three_card_mind_body_spirit|celtic_cross")
    seed: Optional[Union[int, str]] = None
    question: Optional[str] = None


class HealthResponse(BaseModel):
    status: str
    version: str
    default_llm_available: bool


class DefaultLlmResponse(BaseModel):
    available: bool
    model: Optional[str] = None


# ---------- Dependencies ----------
_upstream_client: Optional[httpx.AsyncClient] = None


def get_upstream_client() -> httpx.AsyncClient:
    global _upstream_client
    if _upstream_client is None or _upstream_client.is_closed:
        _upstream_client = httpx.AsyncClient(timeout=DEFAULT_TIMEOUT)
    return _upstream_client


def get_default_llm_config() -> DefaultLlmConfig:
    return load_default_llm_config()


# ---------- FastAPI app ----------
app = FastAPI(title="TarotWhisper API", version="0.1.0")

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"], allow_methods=["*"], allow_headers=["*"], allow_credentials=False
)


@app.get("/health", response_model=HealthResponse)
def health(default: DefaultLlmConfig = Depends(get_default_llm_config)):
    return HealthResponse(
        status="ok",
        version=app.version,
        default_llm_available=default.available,
    )


@app.get("/v1/spreads")
def list_spreads():
    return {"spreads": [s.to_dict() for s in tarot_core.list_spreads()]}


@app.get("/v1/spreads/{spread_id}")
def get_spread(spread_id: str):
    try:
        return tarot_core.get_spread(spread_id).to_dict()
    except tarot_core.InvalidSpreadError as e:
        raise HTTPException(status_code=404, detail=str(e))


@app.get("/v1/cards")
def list_cards():
    return {"cards": [c.to_dict() for c in tarot_core.build_deck()]}


@app.post("/v1/readings")
def create_reading(req: ReadingRequest):
    try:
        return perform_reading(spread_id=req.spread_id, seed=req.seed, question=req.question)
    except tarot_core.InvalidSpreadError as e:
        raise HTTPException(status_code=404, detail=str(e))
    except tarot_core.TarotCoreError as e:
        raise HTTPException(status_code=400, detail=str(e))


@app.get("/v1/config/default-llm", response_model=DefaultLlmResponse)
def default_llm(default: DefaultLlmConfig = Depends(get_default_llm_config)):
    return DefaultLlmResponse(**default.public_view())


@app.post("/api/chat")
async def chat_proxy(
    request: Request,
    default: DefaultLlmConfig = Depends(get_default_llm_config),
    client: httpx.AsyncClient = Depends(get_upstream_client),
):
    """Forward a chat-completion body upstream using the server-held default credentials."""
    if not default.available:
        return JSONResponse(
            {"error": "Default LLM configuration is disabled or incomplete"},
            status_code=503,
        )

    try:
        body = await request.json()
        upstream_request = client.build_request(
            "POST",
            f"{default.base_url.rstrip('/')}/chat/completions",
            json=body,
            headers={
                "Content-Type": "application/json",
                "Authorization": f"Bearer {default.api_key}",
            },
        )
        upstream = await client.send(upstream_request, stream=True)
    except Exception as e:
        logger.exception("Chat proxy failed before reaching upstream")
        return JSONResponse(
            {"error": "Internal server error", "message": str(e)},
            status_code=500,
        )

    if not upstream.is_success:
        details = (await upstream.aread()).decode("utf-8", errors="replace")
        await upstream.aclose()
        logger.warning("Upstream LLM answered %s: %s", upstream.status_code, details[:300])
        return JSONResponse(
            {
                "error": f"LLM API request failed: {upstream.status_code} {upstream.reason_phrase}",
                "details": details,
            },
            status_code=upstream.status_code,
        )

    if isinstance(body, dict) and body.get("stream"):
        return StreamingResponse(
            upstream.aiter_bytes(),
            media_type="text/event-stream",
            headers={"Cache-Control": "no-cache", "Connection": "keep-alive"},
            background=BackgroundTask(upstream.aclose),
        )

    try:
        data = json.loads(await upstream.aread())
    except Exception as e:
        logger.exception("Upstream LLM returned an unreadable body")
        return JSONResponse(
            {"error": "Internal server error", "message": str(e)},
            status_code=500,
        )
    finally:
        await upstream.aclose()
    return JSONResponse(data)

"""
llm.py — OpenAI-compatible chat-completion client with streamed (SSE) responses.

- Prompt construction: fixed system prompt + user prompt embedding the
  question, the spread and a compact JSON summary of the drawn cards.
- Transport: POST {base_url}/chat/completions with the user's key, or POST to
  the local /api/chat proxy when the server default credentials are used.
- Decoding: `data: <json>` lines are turned into content increments until the
  `data: [DONE]` sentinel; bad lines are skipped.
"""

from __future__ import annotations

import json
import logging
from typing import Any, AsyncIterable, AsyncIterator, Dict, List, Optional, Tuple

import httpx

from .config import ResolvedLlmConfig, proxy_url as env_proxy_url
from .tarot_core import DrawnCard, Spread

logger = logging.getLogger(__name__)

SSE_DATA_PREFIX = "data:"
SSE_DONE = "[DONE]"

# Connect/write/pool limits only; a streamed completion may legitimately take minutes.
DEFAULT_TIMEOUT = httpx.Timeout(10.0, read=None)


# -----------------------------------------------------------------------------
# Errors
# -----------------------------------------------------------------------------

class LlmError(Exception):
    """Base class for LLM call failures."""


class LlmHttpError(LlmError):
    def __init__(self, status_code: int, reason: str, body: str = "") -> None:
        self.status_code = status_code
        self.reason = reason
        self.body = body
        super().__init__(f"API request failed: {status_code} {reason}".rstrip())


class LlmStreamError(LlmError):
    """The response body could not be read as a stream."""


class LlmTransportError(LlmError):
    """Network failure before a response was received."""


class IncompleteStreamError(LlmStreamError):
    """The stream ended before the [DONE] sentinel."""


# -----------------------------------------------------------------------------
# Prompt construction
# -----------------------------------------------------------------------------

SYSTEM_PROMPT = """### ROLE
你是一位经验丰富、富有同理心与洞察力的塔罗牌占卜师。

### TASK
根据用户的问题、所选牌阵，以及每张牌所在的位置、牌名和正逆位，给出一次完整而深入的解读。

### GUIDELINES
1. 整体解读：把所有牌串联成一个完整的故事，说明牌与牌之间的相互影响，而不是逐张孤立地解释。
2. 位置含义：重点说明每张牌在其所在位置上的意义，同一张牌在不同位置的解读可以截然不同。
3. 正逆位：明确指出每张牌是正位还是逆位，并据此解读。
4. 同理心：语气积极、支持、具有建设性；即使抽到高塔、死神这类牌，也要给出成长的视角。
5. 避免宿命论：不要说“你一定会……”，改用“这可能意味着……”“这提示你……”。
6. 安全边界：不提供具体的医疗、法律或投资建议；涉及这些领域时，把解读引向心态层面，并提醒用户咨询专业人士。

### OUTPUT
结构清晰；最后给出简洁的总结与建议。
"""


def orientation_label(card: DrawnCard) -> str:
    return "逆位" if card.is_reversed else "正位"


def build_user_prompt(question: str, spread: Spread, drawn_cards: List[DrawnCard]) -> str:
    cards_data = [
        {
            "position_name": dc.position.name,
            "card_name": dc.card.name,
            "orientation": orientation_label(dc),
        }
        for dc in drawn_cards
    ]
    cards_json = json.dumps({"cards": cards_data}, ensure_ascii=False, indent=2)
    return (
        "你好，塔罗师。我需要你的指引。\n\n"
        f"[我的问题]\n{question}\n\n"
        f"[我选择的牌阵]\n{spread.name}\n\n"
        f"[我抽到的牌]\n{cards_json}\n\n"
        "请根据以上信息，为我提供详细的解读和建议。"
    )


def build_messages(question: str, spread: Spread, drawn_cards: List[DrawnCard]) -> List[Dict[str, str]]:
    return [
        {"role": "system", "content": SYSTEM_PROMPT},
        {"role": "user", "content": build_user_prompt(question, spread, drawn_cards)},
    ]


def build_chat_payload(model: str, messages: List[Dict[str, str]], stream: bool = True) -> Dict[str, Any]:
    return {"model": model, "messages": messages, "stream": stream}


# -----------------------------------------------------------------------------
# SSE decoding
# -----------------------------------------------------------------------------

def _extract_delta(payload: str) -> Optional[str]:
    """Content delta of one chat-completion chunk, or None when there is none / it is malformed."""
    try:
        parsed = json.loads(payload)
        content = parsed["choices"][0]["delta"].get("content")
    except (ValueError, KeyError, IndexError, TypeError, AttributeError):
        return None
    return content if isinstance(content, str) and content else None


class SSEDecoder:
    """
    Incremental decoder for a chat-completion event stream.

    feed() accepts arbitrary text chunks and keeps an unterminated trailing
    line until the next chunk; feed_line() takes one complete line.
    Once the [DONE] sentinel is seen, `done` is True and input is ignored.
    """

    def __init__(self) -> None:
        self.done = False
        self._pending = ""

    def feed_line(self, line: str) -> Optional[str]:
        if self.done:
            return None
        line = line.rstrip("\r")
        if not line.startswith(SSE_DATA_PREFIX):
            return None
        data = line[len(SSE_DATA_PREFIX):].strip()
        if data == SSE_DONE:
            self.done = True
            return None
        return _extract_delta(data)

    def feed(self, text: str) -> List[str]:
        self._pending += text
        *lines, self._pending = self._pending.split("\n")
        return self._decode(lines)

    def flush(self) -> List[str]:
        """Decode whatever is left once the source is exhausted."""
        rest, self._pending = self._pending, ""
        return self._decode([rest]) if rest else []

    def _decode(self, lines: List[str]) -> List[str]:
        out: List[str] = []
        for line in lines:
            delta = self.feed_line(line)
            if delta:
                out.append(delta)
        return out


async def iter_content(lines: AsyncIterable[str]) -> AsyncIterator[str]:
    """
    Yield content increments from an async source of SSE lines.

    Items may hold several newline-separated lines. Raises IncompleteStreamError
    if the source ends without the [DONE] sentinel.
    """
    decoder = SSEDecoder()
    async for item in lines:
        for line in item.split("\n"):
            delta = decoder.feed_line(line)
            if delta:
                yield delta
        if decoder.done:
            return
    raise IncompleteStreamError("The response stream ended before completion")


# -----------------------------------------------------------------------------
# HTTP client
# -----------------------------------------------------------------------------

class ChatClient:
    """
    Streams chat completions either straight from the user's endpoint or via
    the local proxy. Pass `http_client` (e.g. one built on httpx.MockTransport)
    to control the transport.
    """

    def __init__(
        self,
        proxy_url: Optional[str] = None,
        http_client: Optional[httpx.AsyncClient] = None,
    ) -> None:
        self.proxy_url = proxy_url or env_proxy_url()
        self._owns_client = http_client is None
        self._client = http_client or httpx.AsyncClient(timeout=DEFAULT_TIMEOUT)

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()

    async def __aenter__(self) -> "ChatClient":
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.aclose()

    def _target(self, config: ResolvedLlmConfig) -> Tuple[str, Dict[str, str]]:
        headers = {"Content-Type": "application/json"}
        if config.source == "user":
            headers["Authorization"] = f"Bearer {config.api_key}"
            return f"{config.base_url}/chat/completions", headers
        return self.proxy_url, headers

    async def stream_chat(
        self,
        config: ResolvedLlmConfig,
        messages: List[Dict[str, str]],
    ) -> AsyncIterator[str]:
        """Yield content increments of a streamed completion."""
        url, headers = self._target(config)
        payload = build_chat_payload(config.model, messages, stream=True)
        logger.info("Requesting analysis via %s (model=%s)", config.source, config.model)

        receiving = False
        try:
            async with self._client.stream("POST", url, json=payload, headers=headers) as response:
                if not response.is_success:
                    body = (await response.aread()).decode("utf-8", errors="replace")
                    logger.warning("LLM request failed status=%s body=%s", response.status_code, body[:300])
                    raise LlmHttpError(response.status_code, response.reason_phrase, body)
                receiving = True
                async for piece in iter_content(response.aiter_lines()):
                    yield piece
        except (httpx.StreamError, httpx.DecodingError) as e:
            raise LlmStreamError(f"Unable to read the response stream: {e}") from e
        except httpx.HTTPError as e:
            if receiving:
                raise LlmStreamError(f"Unable to read the response stream: {e}") from e
            raise LlmTransportError(f"Network error: {e}") from e

    async def test_connection(self, base_url: str, api_key: str) -> bool:
        """GET {base_url}/models with the given key; True on a 2xx answer."""
        try:
            response = await self._client.get(
                f"{base_url.rstrip('/')}/models",
                headers={"Authorization": f"Bearer {api_key}", "Content-Type": "application/json"},
            )
        except httpx.HTTPError as e:
            logger.warning("Connection test failed: %s", e)
            return False
        return response.is_success

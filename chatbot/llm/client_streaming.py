"""
Streaming client for an OpenAI-compatible chat completions endpoint (Groq by default).

The upstream speaks Server-Sent Events: `data: {json}` lines carrying
`choices[0].delta.content`, terminated by `data: [DONE]`. This module turns that into
a plain async stream of content deltas:

- deltas are yielded one by one, as soon as each line arrives (no batching)
- framing noise (comments, blank lines, role-only deltas, unparseable frames) is skipped
- HTTP and transport errors surface as `UpstreamFailure`
- the HTTP connection lives inside `async with` scopes, so closing the generator
  (client disconnect) releases it

Env:
- GROQ_API_KEY (required unless LLM_MOCK=1)
- LLM_BASE_URL (default: https://api.groq.com/openai/v1)
- LLM_DEFAULT_MODEL (default: llama-3.3-70b-versatile)
- LLM_TEMPERATURE (default: 0.7), LLM_MAX_TOKENS (default: 4096)
- LLM_TIMEOUT_SECONDS: connect/write timeout (default: 30); reads are unbounded
- LLM_MOCK=1: stream a fixed local reply (no external calls)
"""

from __future__ import annotations

import json
import logging
import os
from dataclasses import dataclass
from typing import Any, AsyncGenerator, AsyncIterator, Callable, Dict, List, Optional

import httpx

from chatbot.errors import UpstreamFailure

logger = logging.getLogger(__name__)

DONE_MARKER = "[DONE]"
MOCK_REPLY = ["LLM_MOCK ", "enabled: ", "no external ", "call was made."]

# (messages, model) -> async stream of content deltas
CompletionSource = Callable[[List[Dict[str, str]], str], AsyncIterator[str]]


def _env_bool(name: str, default: bool = False) -> bool:
    raw = (os.getenv(name) or "").strip().lower()
    if not raw:
        return default
    return raw in ("1", "true", "yes", "y", "on")


@dataclass(frozen=True)
class LLMConfig:
    api_key: Optional[str]
    base_url: str
    default_model: str
    temperature: float
    max_tokens: int
    timeout: float = 30.0
    mock: bool = False


def load_llm_config() -> LLMConfig:
    try:
        temperature = float((os.getenv("LLM_TEMPERATURE") or "").strip() or "0.7")
    except ValueError:
        temperature = 0.7
    try:
        max_tokens = int((os.getenv("LLM_MAX_TOKENS") or "").strip() or "4096")
    except ValueError:
        max_tokens = 4096
    try:
        timeout = float((os.getenv("LLM_TIMEOUT_SECONDS") or "").strip() or "30")
    except ValueError:
        timeout = 30.0

    return LLMConfig(
        api_key=(os.getenv("GROQ_API_KEY") or "").strip() or None,
        base_url=((os.getenv("LLM_BASE_URL") or "").strip() or "https://api.groq.com/openai/v1").rstrip("/"),
        default_model=(os.getenv("LLM_DEFAULT_MODEL") or "").strip() or "llama-3.3-70b-versatile",
        temperature=max(0.0, min(temperature, 2.0)),
        max_tokens=max(16, min(max_tokens, 32768)),
        timeout=max(1.0, min(timeout, 300.0)),
        mock=_env_bool("LLM_MOCK", False),
    )


def parse_data_line(line: str) -> Optional[str]:
    """
    Extract the content delta from one SSE line.

    Returns None for anything that carries no content: comments, non-data fields,
    the terminal marker, role-only deltas and frames that fail to parse.
    """
    if not line or line.startswith(":") or not line.startswith("data:"):
        return None
    data = line[len("data:") :].strip()
    if not data or data == DONE_MARKER:
        return None
    try:
        obj = json.loads(data)
    except ValueError:
        logger.debug("Skipping unparseable upstream frame")
        return None
    if not isinstance(obj, dict):
        return None
    choices = obj.get("choices")
    if not isinstance(choices, list) or not choices or not isinstance(choices[0], dict):
        return None
    delta = choices[0].get("delta")
    if not isinstance(delta, dict):
        return None
    content = delta.get("content")
    if isinstance(content, str) and content:
        return content
    return None


def _is_done_line(line: str) -> bool:
    return line.startswith("data:") and line[len("data:") :].strip() == DONE_MARKER


async def iter_content_deltas(lines: AsyncIterator[str]) -> AsyncGenerator[str, None]:
    """Yield content deltas from SSE lines in arrival order; stop at `[DONE]`."""
    async for raw in lines:
        line = raw.strip("\r")
        if _is_done_line(line):
            return
        content = parse_data_line(line)
        if content is not None:
            yield content


def build_request_body(messages: List[Dict[str, str]], model: str, cfg: LLMConfig) -> Dict[str, Any]:
    return {
        "model": model,
        "messages": messages,
        "temperature": cfg.temperature,
        "max_tokens": cfg.max_tokens,
        "stream": True,
    }


async def stream_completion(
    messages: List[Dict[str, str]],
    model: str,
    *,
    cfg: Optional[LLMConfig] = None,
    transport: Optional[httpx.AsyncBaseTransport] = None,
) -> AsyncGenerator[str, None]:
    """
    Stream content deltas for `messages` from the upstream provider.

    Raises:
        UpstreamFailure: provider not configured, non-2xx response, or a transport
            error at any point (including mid-stream).
    """
    cfg = cfg or load_llm_config()

    if cfg.mock:
        for piece in MOCK_REPLY:
            yield piece
        return

    if not cfg.api_key:
        raise UpstreamFailure("LLM provider is not configured (GROQ_API_KEY)")

    url = f"{cfg.base_url}/chat/completions"
    headers = {
        "Authorization": f"Bearer {cfg.api_key}",
        "Content-Type": "application/json",
    }
    # Long generations: bound connect/write, never the gap between tokens.
    timeout = httpx.Timeout(cfg.timeout, read=None)

    try:
        async with httpx.AsyncClient(timeout=timeout, transport=transport) as client:
            async with client.stream("POST", url, headers=headers, json=build_request_body(messages, model, cfg)) as resp:
                if resp.status_code >= 400:
                    await resp.aread()
                    logger.warning("Upstream completion request failed (status=%d)", resp.status_code)
                    raise UpstreamFailure(f"Upstream returned status {resp.status_code}")
                async for content in iter_content_deltas(resp.aiter_lines()):
                    yield content
    except httpx.HTTPError as e:
        logger.warning("Upstream stream broke: %s", type(e).__name__)
        raise UpstreamFailure("Stream error") from e

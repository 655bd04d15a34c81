"""
Completion relay: upstream token stream -> live client, with an exactly-once transcript.

Event sequence for one request:
- `token` for every upstream content delta, in arrival order, as soon as it arrives
- then exactly one terminal event: `done` after a clean end-of-stream, or `error`

The full reply is accumulated alongside. Only after a clean end-of-stream, and only if
a conversation id was supplied, is the exchange handed to the HistoryRecorder. An
errored or cancelled stream persists nothing.
"""

from __future__ import annotations

import asyncio
import logging
from contextlib import aclosing
from typing import AsyncGenerator, List, Optional

from chatbot.auth.models import AuthUser
from chatbot.chat.history import HistoryRecorder
from chatbot.chat.types import ChatMessage, ChatStreamEvent
from chatbot.errors import ServiceError, UpstreamFailure
from chatbot.llm.client_streaming import CompletionSource

logger = logging.getLogger(__name__)


class CompletionRelay:
    def __init__(self, *, source: CompletionSource, recorder: HistoryRecorder) -> None:
        self._source = source
        self._recorder = recorder

    async def run(
        self,
        *,
        user: AuthUser,
        messages: List[ChatMessage],
        model: str,
        conversation_id: Optional[str] = None,
    ) -> AsyncGenerator[ChatStreamEvent, None]:
        payload = [{"role": m.role, "content": m.content} for m in messages]
        reply_parts: List[str] = []

        try:
            async with aclosing(self._source(payload, model)) as stream:
                async for delta in stream:
                    reply_parts.append(delta)
                    yield ChatStreamEvent(event_type="token", content=delta)
        except asyncio.CancelledError:
            logger.info("Client disconnected mid-stream (user=%s, conversation=%s)", user.id, conversation_id)
            raise
        except UpstreamFailure as e:
            logger.warning("Upstream failure after %d chunk(s): %s", len(reply_parts), e.detail)
            yield ChatStreamEvent(event_type="error", content="Stream error")
            return
        except Exception:
            logger.exception("Stream error")
            yield ChatStreamEvent(event_type="error", content="Stream error")
            return

        reply = "".join(reply_parts)
        if conversation_id:
            self._record(user, conversation_id, messages[-1].content, reply, model)

        yield ChatStreamEvent(event_type="done", metadata={"reply": reply})

    def _record(self, user: AuthUser, conversation_id: str, user_text: str, reply: str, model: str) -> None:
        try:
            self._recorder.record(
                user_id=user.id,
                conversation_id=conversation_id,
                user_text=user_text,
                assistant_text=reply,
                model=model,
            )
        except ServiceError as e:
            # The client already has every token; report the loss server-side only.
            logger.error("Failed to save chat history for conversation %s: %s", conversation_id, e.detail)

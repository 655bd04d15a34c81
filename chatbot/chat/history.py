from __future__ import annotations

import logging
from datetime import datetime
from typing import Callable

from chatbot.auth.codes import utcnow
from chatbot.storage.base import Store
from chatbot.storage.models import Turn

logger = logging.getLogger(__name__)

TITLE_MAX_CHARS = 40


def derive_title(text: str) -> str:
    """First 40 characters of the opening user turn, with `...` when cut."""
    title = text[:TITLE_MAX_CHARS]
    if len(text) > TITLE_MAX_CHARS:
        title += "..."
    return title


class HistoryRecorder:
    """
    Persists one completed exchange: user turn, assistant turn, then the conversation
    title (first exchange only) or timestamp, all in one transaction.
    """

    def __init__(self, store: Store, *, clock: Callable[[], datetime] = utcnow) -> None:
        self._store = store
        self._clock = clock

    def record(
        self,
        *,
        user_id: int,
        conversation_id: str,
        user_text: str,
        assistant_text: str,
        model: str,
    ) -> bool:
        """
        Record the exchange. Returns True when this was the conversation's first user
        turn (and the title was rewritten).
        """
        now = self._clock()
        with self._store.transaction() as tx:
            # Must be counted before the insert below changes the answer.
            first_turn = tx.count_user_turns(conversation_id) == 0

            tx.insert_turn(
                Turn(
                    id=None,
                    user_id=user_id,
                    conversation_id=conversation_id,
                    role="user",
                    content=user_text,
                    model=model,
                    created_at=now,
                )
            )
            tx.insert_turn(
                Turn(
                    id=None,
                    user_id=user_id,
                    conversation_id=conversation_id,
                    role="assistant",
                    content=assistant_text,
                    model=model,
                    created_at=now,
                )
            )

            if first_turn:
                title = derive_title(user_text)
                tx.rename_conversation(conversation_id, title=title, updated_at=now)
            else:
                tx.touch_conversation(conversation_id, updated_at=now)

        if first_turn:
            logger.info("Renamed conversation %s to %r", conversation_id, title)
        return first_turn

from __future__ import annotations

import uuid
from datetime import datetime
from typing import Callable, List, Optional

from chatbot.auth.codes import utcnow
from chatbot.auth.models import AuthUser
from chatbot.errors import NotFound
from chatbot.storage.base import Store
from chatbot.storage.models import Conversation, Turn

DEFAULT_TITLE = "New Conversation"


def new_conversation_id() -> str:
    return f"conv_{uuid.uuid4().hex}"


class ConversationService:
    """Owner-scoped conversation CRUD. Titles after creation belong to HistoryRecorder."""

    def __init__(self, store: Store, *, clock: Callable[[], datetime] = utcnow) -> None:
        self._store = store
        self._clock = clock

    def create(self, user: AuthUser, title: Optional[str] = None) -> Conversation:
        now = self._clock()
        conv = Conversation(
            id=new_conversation_id(),
            user_id=user.id,
            title=(title or "").strip() or DEFAULT_TITLE,
            created_at=now,
            updated_at=now,
        )
        with self._store.transaction() as tx:
            return tx.insert_conversation(conv)

    def list(self, user: AuthUser) -> List[Conversation]:
        with self._store.transaction() as tx:
            return tx.list_conversations(user.id)

    def require_owned(self, user: AuthUser, conversation_id: str) -> Conversation:
        with self._store.transaction() as tx:
            conv = tx.get_conversation(conversation_id, user.id)
        if conv is None:
            raise NotFound("Conversation not found")
        return conv

    def history(self, user: AuthUser, conversation_id: str) -> List[Turn]:
        with self._store.transaction() as tx:
            return tx.list_turns(conversation_id, user.id)

    def delete(self, user: AuthUser, conversation_id: str) -> None:
        with self._store.transaction() as tx:
            deleted = tx.delete_conversation(conversation_id, user.id)
        if not deleted:
            raise NotFound("Conversation not found")

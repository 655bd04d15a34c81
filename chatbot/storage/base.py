from __future__ import annotations

from datetime import datetime
from typing import ContextManager, List, Optional, Protocol

from chatbot.storage.models import Conversation, Identity, OneTimeCode, Turn


class StoreSession(Protocol):
    """
    Parametrized query/command operations available inside one unit of work.

    Everything executed through a single session commits or rolls back together.
    """

    # users
    def get_identity(self, email: str) -> Optional[Identity]: ...

    def get_identity_by_id(self, user_id: int) -> Optional[Identity]: ...

    def insert_identity(self, *, email: str, password_hash: str, name: str, created_at: datetime) -> Identity:
        """Raises DuplicateIdentity if the email is already stored."""

    def mark_verified(self, email: str) -> None: ...

    # otp_codes
    def lock_address(self, email: str) -> None:
        """Serialize concurrent code issuance/consumption for one address until the unit of work ends."""

    def delete_codes(self, email: str) -> int: ...

    def insert_code(self, code: OneTimeCode) -> OneTimeCode: ...

    def latest_code(self, email: str) -> Optional[OneTimeCode]: ...

    def delete_code(self, code_id: int) -> None: ...

    # conversations
    def insert_conversation(self, conversation: Conversation) -> Conversation: ...

    def get_conversation(self, conversation_id: str, user_id: int) -> Optional[Conversation]: ...

    def list_conversations(self, user_id: int) -> List[Conversation]: ...

    def delete_conversation(self, conversation_id: str, user_id: int) -> bool: ...

    def rename_conversation(self, conversation_id: str, *, title: str, updated_at: datetime) -> None: ...

    def touch_conversation(self, conversation_id: str, *, updated_at: datetime) -> None: ...

    # chat_history
    def count_user_turns(self, conversation_id: str) -> int: ...

    def insert_turn(self, turn: Turn) -> Turn: ...

    def list_turns(self, conversation_id: str, user_id: int) -> List[Turn]: ...


class Store(Protocol):
    """
    Injected persistence handle.

    Implementations: `PostgresStore` (production) and an in-memory fake in tests.
    """

    def transaction(self) -> ContextManager[StoreSession]:
        """
        Open a unit of work. Raises StoreFailure if the backend is unreachable or a
        statement fails.
        """

"""
Pytest config.

Local imports like `import chatbot` rely on the repo root being on sys.path; pin that
here so a global `pytest` entrypoint can always import the local package.

Also provides in-memory stand-ins for Postgres, the mailer and the clock so unit tests
never touch the network.
"""

from __future__ import annotations

import copy
import sys
from contextlib import contextmanager
from dataclasses import replace
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Dict, Iterator, List, Optional, Tuple

import pytest


def _ensure_repo_root_on_syspath() -> None:
    repo_root = Path(__file__).resolve().parents[1]
    repo_root_str = str(repo_root)
    if repo_root_str not in sys.path:
        sys.path.insert(0, repo_root_str)


_ensure_repo_root_on_syspath()

from chatbot.errors import DuplicateIdentity  # noqa: E402
from chatbot.storage.models import Conversation, Identity, OneTimeCode, Turn  # noqa: E402

TEST_SECRET = "test-secret-key-for-testing-purposes-only"


class _State:
    def __init__(self) -> None:
        self.identities: Dict[str, Identity] = {}
        self.codes: List[OneTimeCode] = []
        self.conversations: Dict[str, Conversation] = {}
        self.turns: List[Turn] = []
        self.next_id = 1


class InMemorySession:
    def __init__(self, state: _State) -> None:
        self._s = state

    def _new_id(self) -> int:
        n = self._s.next_id
        self._s.next_id += 1
        return n

    # Identities
    def get_identity(self, email: str) -> Optional[Identity]:
        return self._s.identities.get(email)

    def get_identity_by_id(self, user_id: int) -> Optional[Identity]:
        for ident in self._s.identities.values():
            if ident.id == user_id:
                return ident
        return None

    def insert_identity(self, *, email: str, password_hash: str, name: str, created_at: datetime) -> Identity:
        if email in self._s.identities:
            raise DuplicateIdentity()
        ident = Identity(
            id=self._new_id(),
            email=email,
            password_hash=password_hash,
            name=name,
            is_verified=False,
            created_at=created_at,
        )
        self._s.identities[email] = ident
        return ident

    def mark_verified(self, email: str) -> None:
        ident = self._s.identities.get(email)
        if ident is not None:
            self._s.identities[email] = replace(ident, is_verified=True)

    # Codes
    def lock_address(self, email: str) -> None:
        return None

    def delete_codes(self, email: str) -> int:
        before = len(self._s.codes)
        self._s.codes = [c for c in self._s.codes if c.email != email]
        return before - len(self._s.codes)

    def insert_code(self, code: OneTimeCode) -> OneTimeCode:
        stored = replace(code, id=self._new_id())
        self._s.codes.append(stored)
        return stored

    def latest_code(self, email: str) -> Optional[OneTimeCode]:
        mine = [c for c in self._s.codes if c.email == email]
        if not mine:
            return None
        return max(mine, key=lambda c: (c.created_at, c.id))

    def delete_code(self, code_id: int) -> None:
        self._s.codes = [c for c in self._s.codes if c.id != code_id]

    # Conversations
    def insert_conversation(self, conversation: Conversation) -> Conversation:
        self._s.conversations[conversation.id] = conversation
        return conversation

    def get_conversation(self, conversation_id: str, user_id: int) -> Optional[Conversation]:
        conv = self._s.conversations.get(conversation_id)
        if conv is None or conv.user_id != user_id:
            return None
        return conv

    def list_conversations(self, user_id: int) -> List[Conversation]:
        mine = [c for c in self._s.conversations.values() if c.user_id == user_id]
        return sorted(mine, key=lambda c: c.updated_at, reverse=True)

    def delete_conversation(self, conversation_id: str, user_id: int) -> bool:
        if self.get_conversation(conversation_id, user_id) is None:
            return False
        del self._s.conversations[conversation_id]
        self._s.turns = [t for t in self._s.turns if t.conversation_id != conversation_id]
        return True

    def rename_conversation(self, conversation_id: str, *, title: str, updated_at: datetime) -> None:
        conv = self._s.conversations[conversation_id]
        self._s.conversations[conversation_id] = replace(conv, title=title, updated_at=updated_at)

    def touch_conversation(self, conversation_id: str, *, updated_at: datetime) -> None:
        conv = self._s.conversations[conversation_id]
        self._s.conversations[conversation_id] = replace(conv, updated_at=updated_at)

    # Turns
    def count_user_turns(self, conversation_id: str) -> int:
        return sum(1 for t in self._s.turns if t.conversation_id == conversation_id and t.role == "user")

    def insert_turn(self, turn: Turn) -> Turn:
        stored = replace(turn, id=self._new_id())
        self._s.turns.append(stored)
        return stored

    def list_turns(self, conversation_id: str, user_id: int) -> List[Turn]:
        mine = [t for t in self._s.turns if t.conversation_id == conversation_id and t.user_id == user_id]
        return sorted(mine, key=lambda t: (t.created_at, t.id))


class InMemoryStore:
    """Store fake: each transaction commits on success and rolls back on any exception."""

    def __init__(self) -> None:
        self.state = _State()
        self.transactions = 0
        self.fail_with: Optional[Exception] = None

    @contextmanager
    def transaction(self) -> Iterator[InMemorySession]:
        self.transactions += 1
        if self.fail_with is not None:
            raise self.fail_with
        snapshot = copy.deepcopy(self.state)
        try:
            yield InMemorySession(self.state)
        except BaseException:
            self.state = snapshot
            raise


class RecordingMailer:
    def __init__(self, *, delivered: bool = True, error: Optional[Exception] = None) -> None:
        self.sent: List[Tuple[str, str]] = []
        self.delivered = delivered
        self.error = error

    def send_code(self, email: str, code: str) -> bool:
        self.sent.append((email, code))
        if self.error is not None:
            raise self.error
        return self.delivered

    @property
    def last_code(self) -> str:
        return self.sent[-1][1]


class FakeClock:
    def __init__(self, start: Optional[datetime] = None) -> None:
        self.now = start or datetime(2025, 1, 1, 12, 0, 0, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now = self.now + timedelta(**kwargs)


@pytest.fixture
def store() -> InMemoryStore:
    return InMemoryStore()


@pytest.fixture
def mailer() -> RecordingMailer:
    return RecordingMailer()


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture(autouse=True)
def _isolated_config(monkeypatch: pytest.MonkeyPatch):
    """Every test starts from a known auth env and fresh config/limiter caches."""
    from chatbot.auth.config import load_auth_config
    from chatbot.auth.rate_limit import reset_limiters

    monkeypatch.setenv("AUTH_SESSION_SECRET", TEST_SECRET)
    for name in ("AUTH_DEV_EXPOSE_CODES", "AUTH_MAX_ATTEMPTS", "AUTH_MIN_PASSWORD_LENGTH", "LLM_MOCK", "GROQ_API_KEY"):
        monkeypatch.delenv(name, raising=False)
    load_auth_config.cache_clear()
    reset_limiters()
    yield
    load_auth_config.cache_clear()
    reset_limiters()


@pytest.fixture
def make_mailer():
    """Factory for mailers with a specific delivery outcome."""
    return RecordingMailer

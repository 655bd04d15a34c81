from __future__ import annotations

import pytest

from chatbot.auth.models import AuthUser
from chatbot.chat.conversations import DEFAULT_TITLE, ConversationService
from chatbot.chat.history import HistoryRecorder
from chatbot.errors import NotFound

ANN = AuthUser(id=1, email="ann@x.com")
BOB = AuthUser(id=2, email="bob@x.com")


def test_create_uses_placeholder_title(store, clock) -> None:
    svc = ConversationService(store, clock=clock)

    conv = svc.create(ANN)
    assert conv.id.startswith("conv_")
    assert conv.title == DEFAULT_TITLE
    assert conv.created_at == conv.updated_at == clock.now

    named = svc.create(ANN, "  Trip planning ")
    assert named.title == "Trip planning"
    assert named.id != conv.id


def test_list_is_owner_scoped_and_most_recent_first(store, clock) -> None:
    svc = ConversationService(store, clock=clock)
    older = svc.create(ANN, "older")
    clock.advance(minutes=1)
    newer = svc.create(ANN, "newer")
    svc.create(BOB, "bob's")

    assert [c.id for c in svc.list(ANN)] == [newer.id, older.id]

    # Recording into the older conversation bumps it to the top.
    clock.advance(minutes=1)
    HistoryRecorder(store, clock=clock).record(
        user_id=ANN.id, conversation_id=older.id, user_text="hi", assistant_text="hello", model="m"
    )
    assert [c.id for c in svc.list(ANN)] == [older.id, newer.id]


def test_require_owned(store, clock) -> None:
    svc = ConversationService(store, clock=clock)
    conv = svc.create(ANN)

    assert svc.require_owned(ANN, conv.id).id == conv.id
    with pytest.raises(NotFound):
        svc.require_owned(BOB, conv.id)
    with pytest.raises(NotFound):
        svc.require_owned(ANN, "conv_missing")


def test_history_is_owner_scoped(store, clock) -> None:
    svc = ConversationService(store, clock=clock)
    conv = svc.create(ANN)
    HistoryRecorder(store, clock=clock).record(
        user_id=ANN.id, conversation_id=conv.id, user_text="hi", assistant_text="hello", model="m"
    )

    assert [t.role for t in svc.history(ANN, conv.id)] == ["user", "assistant"]
    assert svc.history(BOB, conv.id) == []


def test_delete_removes_conversation_and_turns(store, clock) -> None:
    svc = ConversationService(store, clock=clock)
    conv = svc.create(ANN)
    HistoryRecorder(store, clock=clock).record(
        user_id=ANN.id, conversation_id=conv.id, user_text="hi", assistant_text="hello", model="m"
    )

    with pytest.raises(NotFound):
        svc.delete(BOB, conv.id)

    svc.delete(ANN, conv.id)
    assert svc.list(ANN) == []
    assert store.state.turns == []
    with pytest.raises(NotFound):
        svc.delete(ANN, conv.id)

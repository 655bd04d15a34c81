from __future__ import annotations

import pytest

from chatbot.auth.codes import CodeStore, generate_code
from chatbot.errors import InvalidOrExpiredCode


def test_generate_code_is_six_digits() -> None:
    for _ in range(50):
        code = generate_code()
        assert len(code) == 6
        assert code.isdigit()


def test_issue_stores_one_code_with_ten_minute_expiry(store, clock) -> None:
    codes = CodeStore(store, clock=clock)
    code = codes.issue("a@x.com")

    rows = store.state.codes
    assert len(rows) == 1
    assert rows[0].code == code
    assert (rows[0].expires_at - clock.now).total_seconds() == 600


def test_reissue_invalidates_earlier_code(store, clock, monkeypatch) -> None:
    issued = iter(["111111", "222222"])
    monkeypatch.setattr("chatbot.auth.codes.generate_code", lambda: next(issued))
    codes = CodeStore(store, clock=clock)

    first = codes.issue("a@x.com")
    clock.advance(seconds=1)
    second = codes.issue("a@x.com")

    assert len(store.state.codes) == 1
    with pytest.raises(InvalidOrExpiredCode):
        codes.consume_latest("a@x.com", first)
    codes.consume_latest("a@x.com", second)


def test_consume_is_single_use(store, clock) -> None:
    codes = CodeStore(store, clock=clock)
    code = codes.issue("a@x.com")

    codes.consume_latest("a@x.com", code)
    assert store.state.codes == []
    with pytest.raises(InvalidOrExpiredCode):
        codes.consume_latest("a@x.com", code)


def test_consume_after_expiry_fails(store, clock) -> None:
    codes = CodeStore(store, clock=clock)
    code = codes.issue("a@x.com")

    clock.advance(minutes=10, seconds=1)
    with pytest.raises(InvalidOrExpiredCode):
        codes.consume_latest("a@x.com", code)
    # Expired codes are not deleted by a failed attempt.
    assert len(store.state.codes) == 1


def test_consume_at_exact_expiry_still_succeeds(store, clock) -> None:
    codes = CodeStore(store, clock=clock)
    code = codes.issue("a@x.com")

    clock.advance(minutes=10)
    codes.consume_latest("a@x.com", code)


def test_wrong_code_keeps_the_outstanding_code(store, clock, monkeypatch) -> None:
    monkeypatch.setattr("chatbot.auth.codes.generate_code", lambda: "123456")
    codes = CodeStore(store, clock=clock)
    codes.issue("a@x.com")

    with pytest.raises(InvalidOrExpiredCode):
        codes.consume_latest("a@x.com", "654321")
    codes.consume_latest("a@x.com", " 123456 ")


def test_consume_without_code_fails(store, clock) -> None:
    codes = CodeStore(store, clock=clock)
    with pytest.raises(InvalidOrExpiredCode):
        codes.consume_latest("nobody@x.com", "123456")


def test_codes_are_scoped_per_address(store, clock, monkeypatch) -> None:
    issued = iter(["111111", "222222"])
    monkeypatch.setattr("chatbot.auth.codes.generate_code", lambda: next(issued))
    codes = CodeStore(store, clock=clock)
    codes.issue("a@x.com")
    codes.issue("b@x.com")

    with pytest.raises(InvalidOrExpiredCode):
        codes.consume_latest("a@x.com", "222222")
    codes.consume_latest("b@x.com", "222222")
    codes.consume_latest("a@x.com", "111111")

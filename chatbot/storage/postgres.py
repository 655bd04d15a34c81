"""
PostgreSQL-backed store (psycopg 3).

One connection per unit of work; every `transaction()` block is a single database
transaction, so multi-statement operations (code issuance, history recording) commit
atomically or not at all.
"""

from __future__ import annotations

import logging
import os
from contextlib import contextmanager
from datetime import datetime
from typing import Iterator, List, Optional

import psycopg
from psycopg import errors as pg_errors
from psycopg.conninfo import make_conninfo

from chatbot.errors import DuplicateIdentity, StoreFailure
from chatbot.storage.models import Conversation, Identity, OneTimeCode, Turn

logger = logging.getLogger(__name__)

_IDENTITY_COLS = "id, email, password_hash, name, is_verified, created_at"
_CODE_COLS = "id, email, otp_code, expires_at, created_at"
_CONVERSATION_COLS = "id, user_id, title, created_at, updated_at"
_TURN_COLS = "id, user_id, conversation_id, role, content, model, created_at"


def _row_to_identity(row) -> Identity:
    return Identity(
        id=int(row[0]),
        email=str(row[1]),
        password_hash=str(row[2]),
        name=str(row[3] or ""),
        is_verified=bool(row[4]),
        created_at=row[5],
    )


def _row_to_code(row) -> OneTimeCode:
    return OneTimeCode(id=int(row[0]), email=str(row[1]), code=str(row[2]), expires_at=row[3], created_at=row[4])


def _row_to_conversation(row) -> Conversation:
    return Conversation(
        id=str(row[0]),
        user_id=int(row[1]),
        title=str(row[2]),
        created_at=row[3],
        updated_at=row[4],
    )


def _row_to_turn(row) -> Turn:
    return Turn(
        id=int(row[0]),
        user_id=int(row[1]),
        conversation_id=str(row[2]),
        role=str(row[3]),
        content=str(row[4]),
        model=str(row[5]) if row[5] else None,
        created_at=row[6],
    )


class PostgresSession:
    def __init__(self, conn: psycopg.Connection) -> None:
        self._conn = conn

    def get_identity(self, email: str) -> Optional[Identity]:
        row = self._conn.execute(f"SELECT {_IDENTITY_COLS} FROM users WHERE email = %s", (email,)).fetchone()
        return _row_to_identity(row) if row else None

    def get_identity_by_id(self, user_id: int) -> Optional[Identity]:
        row = self._conn.execute(f"SELECT {_IDENTITY_COLS} FROM users WHERE id = %s", (user_id,)).fetchone()
        return _row_to_identity(row) if row else None

    def insert_identity(self, *, email: str, password_hash: str, name: str, created_at: datetime) -> Identity:
        try:
            row = self._conn.execute(
                f"""
                INSERT INTO users (email, password_hash, name, is_verified, created_at)
                VALUES (%s, %s, %s, FALSE, %s)
                RETURNING {_IDENTITY_COLS}
                """,
                (email, password_hash, name, created_at),
            ).fetchone()
        except pg_errors.UniqueViolation as e:
            raise DuplicateIdentity() from e
        if not row:
            raise StoreFailure("Failed to create user")
        return _row_to_identity(row)

    def mark_verified(self, email: str) -> None:
        self._conn.execute("UPDATE users SET is_verified = TRUE WHERE email = %s", (email,))

    def lock_address(self, email: str) -> None:
        # Released automatically at commit/rollback.
        self._conn.execute("SELECT pg_advisory_xact_lock(hashtext(%s))", (email,))

    def delete_codes(self, email: str) -> int:
        cur = self._conn.execute("DELETE FROM otp_codes WHERE email = %s", (email,))
        return int(cur.rowcount or 0)

    def insert_code(self, code: OneTimeCode) -> OneTimeCode:
        row = self._conn.execute(
            f"""
            INSERT INTO otp_codes (email, otp_code, expires_at, created_at)
            VALUES (%s, %s, %s, %s)
            RETURNING {_CODE_COLS}
            """,
            (code.email, code.code, code.expires_at, code.created_at),
        ).fetchone()
        if not row:
            raise StoreFailure("Failed to store code")
        return _row_to_code(row)

    def latest_code(self, email: str) -> Optional[OneTimeCode]:
        row = self._conn.execute(
            f"""
            SELECT {_CODE_COLS}
            FROM otp_codes
            WHERE email = %s
            ORDER BY created_at DESC, id DESC
            LIMIT 1
            FOR UPDATE
            """,
            (email,),
        ).fetchone()
        return _row_to_code(row) if row else None

    def delete_code(self, code_id: int) -> None:
        self._conn.execute("DELETE FROM otp_codes WHERE id = %s", (code_id,))

    def insert_conversation(self, conversation: Conversation) -> Conversation:
        row = self._conn.execute(
            f"""
            INSERT INTO conversations (id, user_id, title, created_at, updated_at)
            VALUES (%s, %s, %s, %s, %s)
            RETURNING {_CONVERSATION_COLS}
            """,
            (
                conversation.id,
                conversation.user_id,
                conversation.title,
                conversation.created_at,
                conversation.updated_at,
            ),
        ).fetchone()
        if not row:
            raise StoreFailure("Failed to create conversation")
        return _row_to_conversation(row)

    def get_conversation(self, conversation_id: str, user_id: int) -> Optional[Conversation]:
        row = self._conn.execute(
            f"SELECT {_CONVERSATION_COLS} FROM conversations WHERE id = %s AND user_id = %s",
            (conversation_id, user_id),
        ).fetchone()
        return _row_to_conversation(row) if row else None

    def list_conversations(self, user_id: int) -> List[Conversation]:
        rows = self._conn.execute(
            f"SELECT {_CONVERSATION_COLS} FROM conversations WHERE user_id = %s ORDER BY updated_at DESC",
            (user_id,),
        ).fetchall()
        return [_row_to_conversation(r) for r in rows or []]

    def delete_conversation(self, conversation_id: str, user_id: int) -> bool:
        # chat_history rows go with it (ON DELETE CASCADE).
        cur = self._conn.execute(
            "DELETE FROM conversations WHERE id = %s AND user_id = %s",
            (conversation_id, user_id),
        )
        return bool(cur.rowcount)

    def rename_conversation(self, conversation_id: str, *, title: str, updated_at: datetime) -> None:
        self._conn.execute(
            "UPDATE conversations SET title = %s, updated_at = %s WHERE id = %s",
            (title, updated_at, conversation_id),
        )

    def touch_conversation(self, conversation_id: str, *, updated_at: datetime) -> None:
        self._conn.execute("UPDATE conversations SET updated_at = %s WHERE id = %s", (updated_at, conversation_id))

    def count_user_turns(self, conversation_id: str) -> int:
        row = self._conn.execute(
            "SELECT COUNT(*) FROM chat_history WHERE conversation_id = %s AND role = 'user'",
            (conversation_id,),
        ).fetchone()
        return int(row[0]) if row else 0

    def insert_turn(self, turn: Turn) -> Turn:
        row = self._conn.execute(
            f"""
            INSERT INTO chat_history (user_id, conversation_id, role, content, model, created_at)
            VALUES (%s, %s, %s, %s, %s, %s)
            RETURNING {_TURN_COLS}
            """,
            (turn.user_id, turn.conversation_id, turn.role, turn.content, turn.model, turn.created_at),
        ).fetchone()
        if not row:
            raise StoreFailure("Failed to store message")
        return _row_to_turn(row)

    def list_turns(self, conversation_id: str, user_id: int) -> List[Turn]:
        rows = self._conn.execute(
            f"""
            SELECT {_TURN_COLS}
            FROM chat_history
            WHERE conversation_id = %s AND user_id = %s
            ORDER BY created_at ASC, id ASC
            """,
            (conversation_id, user_id),
        ).fetchall()
        return [_row_to_turn(r) for r in rows or []]


class PostgresStore:
    def __init__(self, dsn: str) -> None:
        self._dsn = dsn

    @contextmanager
    def transaction(self) -> Iterator[PostgresSession]:
        try:
            with psycopg.connect(self._dsn) as conn:
                with conn.transaction():
                    yield PostgresSession(conn)
        except psycopg.Error as e:
            logger.warning("Postgres unit of work failed: %s", type(e).__name__)
            raise StoreFailure() from e


def _env(name: str) -> Optional[str]:
    return (os.getenv(name) or "").strip() or None


def dsn_from_env() -> Optional[str]:
    """
    Connection string for the chatbot database.

    `POSTGRES_DSN` wins; otherwise all of POSTGRES_HOST/DB/USER/PASSWORD must be set
    (POSTGRES_PORT defaults to 5432). Returns None when the database is not configured.
    """
    dsn = _env("POSTGRES_DSN")
    if dsn:
        return dsn
    parts = {
        "host": _env("POSTGRES_HOST"),
        "dbname": _env("POSTGRES_DB"),
        "user": _env("POSTGRES_USER"),
        "password": _env("POSTGRES_PASSWORD"),
    }
    if not all(parts.values()):
        return None
    try:
        port = int(_env("POSTGRES_PORT") or 5432)
    except ValueError:
        port = 5432
    # make_conninfo quotes spaces and quotes in passwords.
    return make_conninfo(port=port, **parts)


def store_from_env() -> Optional[PostgresStore]:
    """Build a PostgresStore from POSTGRES_* env vars, or None if not configured."""
    dsn = dsn_from_env()
    if not dsn:
        return None
    return PostgresStore(dsn)

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Any, Dict


@dataclass(frozen=True)
class Identity:
    """Registered account stored in `users`."""

    id: int
    email: str
    password_hash: str
    name: str
    is_verified: bool
    created_at: datetime

    def public_dict(self) -> Dict[str, Any]:
        return {"id": self.id, "email": self.email, "name": self.name}


@dataclass(frozen=True)
class OneTimeCode:
    """Outstanding OTP row in `otp_codes`. `id` is None until inserted."""

    id: int | None
    email: str
    code: str
    expires_at: datetime
    created_at: datetime


@dataclass(frozen=True)
class Conversation:
    id: str
    user_id: int
    title: str
    created_at: datetime
    updated_at: datetime

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "user_id": self.user_id,
            "title": self.title,
            "created_at": self.created_at.isoformat(),
            "updated_at": self.updated_at.isoformat(),
        }


@dataclass(frozen=True)
class Turn:
    """One chat_history row. Append-only."""

    id: int | None
    user_id: int
    conversation_id: str
    role: str  # user|assistant
    content: str
    model: str | None
    created_at: datetime

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "user_id": self.user_id,
            "conversation_id": self.conversation_id,
            "role": self.role,
            "content": self.content,
            "model": self.model,
            "created_at": self.created_at.isoformat(),
        }

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

from chatbot.storage.models import Identity


@dataclass(frozen=True)
class AuthUser:
    """Caller identity resolved from a session credential."""

    id: int
    email: str


@dataclass(frozen=True)
class IssuedChallenge:
    """Result of a code issuance (register, resend, login)."""

    email: str
    delivered: bool
    code: str  # Only surfaced to clients via the dev-mode echo


@dataclass(frozen=True)
class AuthResult:
    """Session credential minted after a successful code consumption."""

    token: str
    identity: Identity
    message: Optional[str] = None

from __future__ import annotations

from typing import Optional

from fastapi import Request

from chatbot.auth.models import AuthUser
from chatbot.auth.session import SessionGuard


def bearer_token(authorization: Optional[str]) -> Optional[str]:
    """Extract the credential from an `Authorization: Bearer <token>` header value."""
    parts = (authorization or "").strip().split()
    if len(parts) != 2 or parts[0].lower() != "bearer":
        return None
    return parts[1]


def authenticate_request(request: Request, guard: SessionGuard) -> AuthUser:
    """
    Authenticate a request from its bearer header.

    A missing/malformed header and a bad/expired signature both raise Unauthorized;
    only the message differs.
    """
    return guard.authenticate(bearer_token(request.headers.get("authorization")))

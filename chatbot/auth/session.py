from __future__ import annotations

import json
from typing import Optional

from itsdangerous import BadSignature, BadTimeSignature, URLSafeTimedSerializer

from chatbot.auth.config import AuthConfig
from chatbot.auth.models import AuthUser
from chatbot.errors import NotConfigured, Unauthorized
from chatbot.storage.models import Identity

SESSION_SALT = "chatbot-session-v1"


class SessionGuard:
    """
    Stateless session credentials: a signed `{id, email}` claim with a fixed max age.

    There is no server-side revocation; validity is signature + age only.
    """

    def __init__(self, cfg: AuthConfig) -> None:
        self._ttl = cfg.session_ttl_seconds
        self._serializer: Optional[URLSafeTimedSerializer] = None
        if cfg.session_secret:
            self._serializer = URLSafeTimedSerializer(secret_key=cfg.session_secret, salt=SESSION_SALT)

    @property
    def enabled(self) -> bool:
        return self._serializer is not None

    def issue(self, identity: Identity) -> str:
        if self._serializer is None:
            raise NotConfigured("Session signing is not configured")
        # Keep the credential small: no name, no hash.
        raw = json.dumps({"id": identity.id, "email": identity.email}, separators=(",", ":"), sort_keys=True)
        return self._serializer.dumps(raw)

    def authenticate(self, credential: Optional[str]) -> AuthUser:
        """Resolve a bearer credential to the caller, or raise Unauthorized."""
        if not credential:
            raise Unauthorized("Access token required")
        if self._serializer is None:
            raise Unauthorized("Invalid or expired token")
        try:
            raw = self._serializer.loads(credential, max_age=self._ttl)
            data = json.loads(raw)
        except (BadSignature, BadTimeSignature, ValueError, TypeError):
            raise Unauthorized("Invalid or expired token") from None
        if not isinstance(data, dict):
            raise Unauthorized("Invalid or expired token")
        user_id = data.get("id")
        email = data.get("email")
        if not isinstance(user_id, int) or not email:
            raise Unauthorized("Invalid or expired token")
        return AuthUser(id=user_id, email=str(email))

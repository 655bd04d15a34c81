"""
Credential gate: the password + one-time-code authentication state machine.

Per address:   Unregistered -> Registered & unverified -> Registered & verified
Per login:     password checked -> awaiting code -> session issued

Both code consumption paths (registration verification and login 2FA) go through
`CodeStore.consume_latest`; only what happens after success differs. Only
`verify_registration` and `verify_login_otp` mint session credentials.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import replace
from datetime import datetime
from typing import Callable, Optional

from chatbot.auth.codes import CodeStore, utcnow
from chatbot.auth.config import AuthConfig
from chatbot.auth.models import AuthResult, IssuedChallenge
from chatbot.auth.passwords import hash_password, verify_password
from chatbot.auth.session import SessionGuard
from chatbot.errors import (
    AlreadyVerified,
    DuplicateIdentity,
    InvalidCredentials,
    InvalidOrExpiredCode,
    NotConfigured,
    NotFound,
    NotVerified,
    ValidationError,
)
from chatbot.providers.mail_provider import Mailer
from chatbot.storage.base import Store
from chatbot.storage.models import Identity

logger = logging.getLogger(__name__)


def _required(value: Optional[str], message: str) -> str:
    v = (value or "").strip()
    if not v:
        raise ValidationError(message)
    return v


class CredentialGate:
    def __init__(
        self,
        *,
        store: Store,
        codes: CodeStore,
        mailer: Mailer,
        sessions: SessionGuard,
        cfg: AuthConfig,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self._store = store
        self._codes = codes
        self._mailer = mailer
        self._sessions = sessions
        self._cfg = cfg
        self._clock = clock

    async def register(self, email: Optional[str], password: Optional[str], name: Optional[str] = None) -> IssuedChallenge:
        email = _required(email, "Email and password are required")
        if not password:
            raise ValidationError("Email and password are required")
        if len(password) < self._cfg.min_password_length:
            raise ValidationError(f"Password must be at least {self._cfg.min_password_length} characters")

        with self._store.transaction() as tx:
            existing = tx.get_identity(email)
        if existing is not None:
            raise DuplicateIdentity()

        password_hash = await asyncio.to_thread(hash_password, password)
        with self._store.transaction() as tx:
            # A concurrent registration for the same address surfaces as DuplicateIdentity here.
            tx.insert_identity(
                email=email,
                password_hash=password_hash,
                name=(name or "").strip(),
                created_at=self._clock(),
            )
        logger.info("Registered %s (unverified)", email)
        return await self._issue_and_dispatch(email)

    async def verify_registration(self, email: Optional[str], code: Optional[str]) -> AuthResult:
        email = _required(email, "Email and OTP code are required")
        code = _required(code, "Email and OTP code are required")

        self._require_sessions()
        with self._store.transaction() as tx:
            identity = tx.get_identity(email)
            if identity is None:
                raise InvalidOrExpiredCode()
            # Code deletion and the verified flag commit together.
            self._codes.consume_latest(email, code, tx=tx)
            if not identity.is_verified:
                tx.mark_verified(email)
                logger.info("Verified %s", email)
        identity = replace(identity, is_verified=True)
        return self._mint(identity, "Email verified successfully!")

    async def resend_code(self, email: Optional[str]) -> IssuedChallenge:
        email = _required(email, "Email is required")
        with self._store.transaction() as tx:
            identity = tx.get_identity(email)
        if identity is None:
            raise NotFound("User not found")
        if identity.is_verified:
            raise AlreadyVerified()
        return await self._issue_and_dispatch(email)

    async def login(self, email: Optional[str], password: Optional[str]) -> IssuedChallenge:
        """
        Check the password and start the code challenge.

        Never returns a session credential; the caller must follow up with
        `verify_login_otp`.
        """
        email = _required(email, "Email and password are required")
        if not password:
            raise ValidationError("Email and password are required")

        with self._store.transaction() as tx:
            identity = tx.get_identity(email)
        password_ok = await asyncio.to_thread(
            verify_password, password, identity.password_hash if identity is not None else None
        )
        if identity is None or not password_ok:
            raise InvalidCredentials()
        if not identity.is_verified:
            raise NotVerified()
        return await self._issue_and_dispatch(email)

    async def verify_login_otp(self, email: Optional[str], code: Optional[str]) -> AuthResult:
        email = _required(email, "Email and OTP code are required")
        code = _required(code, "Email and OTP code are required")

        self._require_sessions()
        with self._store.transaction() as tx:
            identity = tx.get_identity(email)
            # An unverified address only ever holds a registration code; leave it unconsumed.
            if identity is None or not identity.is_verified:
                raise InvalidOrExpiredCode()
            self._codes.consume_latest(email, code, tx=tx)
        logger.info("Login completed for %s", email)
        return self._mint(identity, "Login successful!")

    async def _issue_and_dispatch(self, email: str) -> IssuedChallenge:
        code = self._codes.issue(email)
        delivered = await self._dispatch(email, code)
        return IssuedChallenge(email=email, delivered=delivered, code=code)

    async def _dispatch(self, email: str, code: str) -> bool:
        # Mail transport health never blocks the code flow.
        try:
            return bool(await asyncio.to_thread(self._mailer.send_code, email, code))
        except Exception:
            logger.exception("Code dispatch failed for %s", email)
            return False

    def _require_sessions(self) -> None:
        # Must run before a code is consumed: a consumed code cannot be retried.
        if not self._sessions.enabled:
            raise NotConfigured("Session signing is not configured")

    def _mint(self, identity: Identity, message: str) -> AuthResult:
        return AuthResult(token=self._sessions.issue(identity), identity=identity, message=message)

"""
One-time code store.

Owns the `otp_codes` table: issuance purges earlier codes for the address, and every
consumption path goes through `consume_latest`, so expiry and single-use rules live in
exactly one place.
"""

from __future__ import annotations

import hmac
import logging
import secrets
from datetime import datetime, timedelta, timezone
from typing import Callable, Optional

from chatbot.errors import InvalidOrExpiredCode
from chatbot.storage.base import Store, StoreSession
from chatbot.storage.models import OneTimeCode

logger = logging.getLogger(__name__)

CODE_DIGITS = 6
DEFAULT_CODE_TTL = timedelta(minutes=10)


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def generate_code(digits: int = CODE_DIGITS) -> str:
    """Uniformly random numeric code; leading zeros allowed."""
    return f"{secrets.randbelow(10**digits):0{digits}d}"


class CodeStore:
    def __init__(
        self,
        store: Store,
        *,
        ttl: timedelta = DEFAULT_CODE_TTL,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self._store = store
        self._ttl = ttl
        self._clock = clock

    def issue(self, email: str) -> str:
        """Replace any outstanding code for `email` with a fresh one and return it."""
        code = generate_code()
        now = self._clock()
        with self._store.transaction() as tx:
            tx.lock_address(email)
            purged = tx.delete_codes(email)
            tx.insert_code(OneTimeCode(id=None, email=email, code=code, expires_at=now + self._ttl, created_at=now))
        if purged:
            logger.debug("Purged %d earlier code(s) for %s", purged, email)
        return code

    def consume_latest(self, email: str, submitted: str, *, tx: Optional[StoreSession] = None) -> None:
        """
        Consume the most recently issued code for `email`.

        Raises InvalidOrExpiredCode when there is no code, it has expired, or it does not
        match. The row is deleted only on success. Pass `tx` to consume inside the
        caller's unit of work, so the deletion commits together with whatever the caller
        writes next.
        """
        if tx is not None:
            self._consume(tx, email, submitted)
            return
        with self._store.transaction() as own:
            self._consume(own, email, submitted)

    def _consume(self, tx: StoreSession, email: str, submitted: str) -> None:
        now = self._clock()
        tx.lock_address(email)
        record = tx.latest_code(email)
        if record is None:
            raise InvalidOrExpiredCode()
        if now > record.expires_at:
            logger.info("Rejected expired code for %s", email)
            raise InvalidOrExpiredCode()
        if not hmac.compare_digest(record.code.encode("utf-8"), (submitted or "").strip().encode("utf-8")):
            raise InvalidOrExpiredCode()
        if record.id is not None:
            tx.delete_code(record.id)

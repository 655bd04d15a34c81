from __future__ import annotations

from datetime import datetime, timedelta
from typing import Callable, Dict, List, Optional, Tuple

from chatbot.auth.config import load_auth_config


class AttemptLimiter:
    """
    In-memory sliding-window limiter for password and code attempts.

    Keyed by email address. Every attempt counts; a successful authentication resets
    the key. Keys whose attempts have all aged out are dropped. State is per-process.
    """

    def __init__(
        self,
        max_attempts: int = 5,
        window_seconds: int = 300,
        clock: Callable[[], datetime] = datetime.now,
    ):
        self._attempts: Dict[str, List[datetime]] = {}
        self._max_attempts = max_attempts
        self._window = timedelta(seconds=window_seconds)
        self._clock = clock

    def check_and_increment(self, identifier: str) -> Tuple[bool, int]:
        """
        Record an attempt for `identifier`.

        Returns (is_allowed, attempts_remaining).
        """
        now = self._clock()
        self._sweep(now)
        recent = [t for t in self._attempts.get(identifier, ()) if now - t < self._window]

        if len(recent) >= self._max_attempts:
            return False, 0

        recent.append(now)
        self._attempts[identifier] = recent
        return True, self._max_attempts - len(recent)

    def reset(self, identifier: str) -> None:
        self._attempts.pop(identifier, None)

    def _sweep(self, now: datetime) -> None:
        # Attempts are appended in order, so the last one is the newest.
        stale = [k for k, attempts in self._attempts.items() if not attempts or now - attempts[-1] >= self._window]
        for k in stale:
            del self._attempts[k]


_login_limiter: Optional[AttemptLimiter] = None
_code_limiter: Optional[AttemptLimiter] = None


def get_login_limiter() -> AttemptLimiter:
    global _login_limiter
    if _login_limiter is None:
        cfg = load_auth_config()
        _login_limiter = AttemptLimiter(cfg.max_attempts, cfg.attempt_window_seconds)
    return _login_limiter


def get_code_limiter() -> AttemptLimiter:
    global _code_limiter
    if _code_limiter is None:
        cfg = load_auth_config()
        _code_limiter = AttemptLimiter(cfg.max_attempts, cfg.attempt_window_seconds)
    return _code_limiter


def reset_limiters() -> None:
    """Drop all limiter state (config reloads, tests)."""
    global _login_limiter, _code_limiter
    _login_limiter = None
    _code_limiter = None

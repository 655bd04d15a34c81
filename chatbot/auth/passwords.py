from __future__ import annotations

from typing import Optional

import bcrypt

# Compared against when the address is unknown, so both login failure paths pay for
# one bcrypt check.
_DUMMY_HASH = bcrypt.hashpw(b"not-a-real-password", bcrypt.gensalt(rounds=10)).decode("utf-8")


def hash_password(password: str) -> str:
    """
    Hash password with bcrypt (cost factor 10).

    Args:
        password: Plain text password

    Returns:
        Bcrypt hash string
    """
    return bcrypt.hashpw(password.encode("utf-8"), bcrypt.gensalt(rounds=10)).decode("utf-8")


def verify_password(password: str, password_hash: Optional[str]) -> bool:
    """
    Verify password against bcrypt hash with constant-time comparison.

    A missing hash (unknown identity) is checked against a dummy hash and always
    fails, keeping timing close to the wrong-password path.

    Args:
        password: Plain text password
        password_hash: Bcrypt hash, or None

    Returns:
        True if password matches, False otherwise
    """
    target = password_hash or _DUMMY_HASH
    try:
        ok = bcrypt.checkpw(password.encode("utf-8"), target.encode("utf-8"))
    except ValueError:
        # Invalid hash format
        return False
    return ok and password_hash is not None

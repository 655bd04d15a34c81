"""
Schema setup for the chatbot database.

Scripts in `migrations/` run in filename order. Each one is recorded in
`schema_migrations` and applied in its own transaction, under an advisory lock so
two API processes starting together do not race.
"""

from __future__ import annotations

import logging
import os
from pathlib import Path
from typing import List, Tuple

import psycopg

from chatbot.storage.postgres import dsn_from_env

logger = logging.getLogger(__name__)

MIGRATIONS_DIR = Path(__file__).parent / "migrations"

_LOCK_KEY = 471920385112


def migration_scripts() -> List[Path]:
    return sorted(MIGRATIONS_DIR.glob("*.sql"))


def apply_migrations(dsn: str) -> List[str]:
    """Run every script not yet recorded; returns the versions applied."""
    applied: List[str] = []
    with psycopg.connect(dsn, autocommit=True) as conn:
        conn.execute("SELECT pg_advisory_lock(%s)", (_LOCK_KEY,))
        try:
            conn.execute(
                "CREATE TABLE IF NOT EXISTS schema_migrations ("
                " version text PRIMARY KEY,"
                " applied_at timestamptz NOT NULL DEFAULT now())"
            )
            done = {row[0] for row in conn.execute("SELECT version FROM schema_migrations").fetchall()}
            for script in migration_scripts():
                if script.stem in done:
                    continue
                with conn.transaction():
                    conn.execute(script.read_text(encoding="utf-8"))
                    conn.execute("INSERT INTO schema_migrations (version) VALUES (%s)", (script.stem,))
                logger.info("Applied migration %s", script.stem)
                applied.append(script.stem)
        finally:
            conn.execute("SELECT pg_advisory_unlock(%s)", (_LOCK_KEY,))
    return applied


def maybe_auto_migrate() -> Tuple[bool, str]:
    """
    Startup hook: migrate when DB_AUTO_MIGRATE=1 and the database is configured.

    Returns (did_attempt, message). Failures are reported, never raised.
    """
    if (os.getenv("DB_AUTO_MIGRATE") or "").strip().lower() not in ("1", "true", "yes", "on"):
        return False, "DB_AUTO_MIGRATE is disabled"
    dsn = dsn_from_env()
    if not dsn:
        return False, "Postgres not configured"
    try:
        versions = apply_migrations(dsn)
    except psycopg.Error as e:
        return True, f"Migration failed: {type(e).__name__}"
    if versions:
        return True, f"Applied {', '.join(versions)}"
    return True, "Schema up to date"

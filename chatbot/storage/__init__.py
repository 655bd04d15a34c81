"""Persistence layer: users, one-time codes, conversations and chat history.

Components receive a `Store` (see `chatbot.storage.base`) rather than opening
connections themselves, so tests can swap in an in-memory implementation.
"""

from __future__ import annotations

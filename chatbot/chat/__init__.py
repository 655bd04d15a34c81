"""Streaming chat.

- relay upstream completion tokens to the client as they arrive
- record each completed exchange once, auto-titling a conversation from its first turn
- owner-scoped conversation management
"""

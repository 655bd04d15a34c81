from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field

ChatRole = Literal["system", "user", "assistant"]
StreamEventType = Literal["token", "done", "error"]


class ChatMessage(BaseModel):
    role: ChatRole
    content: str


class ChatStreamRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    messages: List[ChatMessage] = Field(default_factory=list)
    model: Optional[str] = None
    conversation_id: Optional[str] = Field(default=None, alias="conversationId")


class ConversationCreateRequest(BaseModel):
    title: Optional[str] = None


@dataclass
class ChatStreamEvent:
    """Single normalized event forwarded to the client."""

    event_type: StreamEventType
    content: str = ""
    metadata: Dict[str, Any] = field(default_factory=dict)

"""Conversation and message records."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Literal

from parley.events.models import NormalizedEvent

Role = Literal["user", "assistant"]


@dataclass
class Message:
    """A single display message in a conversation."""

    role: Role
    content: str
    timestamp: float | None = None
    final_agent: str | None = None
    is_mcp_message: bool = False
    mcp_question_id: str | None = None
    is_fallback: bool = False
    is_error: bool = False

    def to_dict(self) -> dict[str, Any]:
        """Convert to the camelCase shape display layers consume."""
        msg: dict[str, Any] = {"role": self.role, "content": self.content}
        if self.timestamp is not None:
            msg["timestamp"] = self.timestamp
        if self.final_agent:
            msg["finalAgent"] = self.final_agent
        if self.is_mcp_message:
            msg["isMCPMessage"] = True
            msg["mcpQuestionId"] = self.mcp_question_id
        if self.is_fallback:
            msg["isFallback"] = True
        if self.is_error:
            msg["isError"] = True
        return msg


@dataclass
class Conversation:
    """One session with an agent: its event log and the messages rebuilt from it."""

    session_id: str
    messages: list[Message] = field(default_factory=list)
    events: list[NormalizedEvent] = field(default_factory=list)
    agent_name: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "sessionId": self.session_id,
            "messages": [msg.to_dict() for msg in self.messages],
        }

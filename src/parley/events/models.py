"""Typed event records built from raw agent events."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Literal

EventType = Literal[
    "user_message",
    "agent_response",
    "tool_call",
    "tool_response",
    "system_event",
    "mcp_question",
    "mcp_answer",
]

USER_AUTHOR = "user"
SYSTEM_AUTHOR = "system"
ASK_USER_TOOL = "ask_user"

# Prefix placed in front of questions injected into a conversation.
QUESTION_MARKER = "🤖 **Agent Question:**"


@dataclass(frozen=True)
class TextPart:
    """Plain text emitted by an author."""

    text: str


@dataclass(frozen=True)
class FunctionCallPart:
    """A tool invocation requested by an agent."""

    id: str
    name: str
    args: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class FunctionResponsePart:
    """The result handed back to an agent for an earlier tool call."""

    id: str
    name: str
    response: Any = None


Part = TextPart | FunctionCallPart | FunctionResponsePart


@dataclass
class NormalizedEvent:
    """One entry of a conversation's event log."""

    id: str
    timestamp: float
    invocation_id: str
    type: EventType
    author: str
    parts: list[Part] = field(default_factory=list)
    role: str | None = None
    usage_metadata: dict[str, Any] | None = None
    actions: dict[str, Any] | None = None
    long_running_tool_ids: list[str] | None = None
    question_id: str | None = None
    kind: str | None = None
    raw: Any = None

    @property
    def is_user(self) -> bool:
        return self.author == USER_AUTHOR

    @property
    def text(self) -> str:
        """Concatenated text of all text parts."""
        return "".join(part.text for part in self.parts if isinstance(part, TextPart))

    @property
    def function_calls(self) -> list[FunctionCallPart]:
        return [part for part in self.parts if isinstance(part, FunctionCallPart)]

    @property
    def function_responses(self) -> list[FunctionResponsePart]:
        return [part for part in self.parts if isinstance(part, FunctionResponsePart)]

    def has_question_marker(self) -> bool:
        return any(
            isinstance(part, TextPart) and QUESTION_MARKER in part.text for part in self.parts
        )

"""Transport-level domain records."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Literal

ConnectionState = Literal["disconnected", "connecting", "open"]
TransportEventKind = Literal["question", "connected", "disconnected", "error"]


@dataclass(frozen=True)
class SessionContext:
    """Which agent and session a piece of traffic belongs to."""

    agent_name: str
    session_id: str


@dataclass(frozen=True)
class Question:
    """A question an agent asked the human mid-task."""

    id: str
    question: str
    session_context: SessionContext | None = None

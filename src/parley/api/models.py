"""Request records for the agent server."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any


@dataclass
class AgentRunRequest:
    """One user message addressed to an agent session."""

    app_name: str
    user_id: str
    session_id: str
    text: str
    streaming: bool = False

    def to_payload(self) -> dict[str, Any]:
        return {
            "appName": self.app_name,
            "userId": self.user_id,
            "sessionId": self.session_id,
            "newMessage": {"role": "user", "parts": [{"text": self.text}]},
            "streaming": self.streaming,
        }

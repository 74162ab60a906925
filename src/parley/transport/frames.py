"""Wire frames exchanged with the question server.

Every frame is a JSON object discriminated by ``type``:

    out     connect
    in      connect_ack
    in      ask_user        request_id, question, session_context?
    out     user_response   request_id, answer, session_context?
    in/out  ping / pong
"""

from __future__ import annotations

from typing import Annotated, Literal

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter

from parley.transport.models import Question, SessionContext


class WireSessionContext(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    agent_name: str = Field(alias="agentName")
    session_id: str = Field(alias="sessionId")

    @classmethod
    def from_context(cls, context: SessionContext) -> WireSessionContext:
        return cls(agent_name=context.agent_name, session_id=context.session_id)

    def to_context(self) -> SessionContext:
        return SessionContext(agent_name=self.agent_name, session_id=self.session_id)


class ConnectFrame(BaseModel):
    type: Literal["connect"] = "connect"


class ConnectAckFrame(BaseModel):
    type: Literal["connect_ack"] = "connect_ack"


class PingFrame(BaseModel):
    type: Literal["ping"] = "ping"


class PongFrame(BaseModel):
    type: Literal["pong"] = "pong"


class AskUserFrame(BaseModel):
    model_config = ConfigDict(coerce_numbers_to_str=True)

    type: Literal["ask_user"] = "ask_user"
    request_id: str
    question: str
    session_context: WireSessionContext | None = None

    def to_question(self, fallback: SessionContext | None = None) -> Question:
        """Build a question, using ``fallback`` when the frame carries no context."""
        context = self.session_context.to_context() if self.session_context else fallback
        return Question(id=self.request_id, question=self.question, session_context=context)


class UserResponseFrame(BaseModel):
    type: Literal["user_response"] = "user_response"
    request_id: str
    answer: str
    session_context: WireSessionContext | None = None


InboundFrame = Annotated[
    ConnectAckFrame | AskUserFrame | PingFrame | PongFrame,
    Field(discriminator="type"),
]

_inbound_adapter: TypeAdapter[InboundFrame] = TypeAdapter(InboundFrame)


def decode_frame(raw: str | bytes) -> InboundFrame:
    """Parse and validate an inbound frame. Raises ``pydantic.ValidationError``."""
    return _inbound_adapter.validate_json(raw)


def encode_frame(frame: BaseModel) -> str:
    return frame.model_dump_json(by_alias=True, exclude_none=True)

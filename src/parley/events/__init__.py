"""Event log normalization, deduplication and queries."""

from parley.events.dedup import is_protected, latest_per_invocation
from parley.events.models import (
    ASK_USER_TOOL,
    QUESTION_MARKER,
    EventType,
    FunctionCallPart,
    FunctionResponsePart,
    NormalizedEvent,
    Part,
    TextPart,
)
from parley.events.normalizer import (
    coerce_agent_response,
    create_mcp_answer_event,
    create_mcp_question_event,
    create_system_event,
    create_user_message_event,
    normalize_event,
    normalize_events,
)

__all__ = [
    "ASK_USER_TOOL",
    "EventType",
    "FunctionCallPart",
    "FunctionResponsePart",
    "NormalizedEvent",
    "Part",
    "QUESTION_MARKER",
    "TextPart",
    "coerce_agent_response",
    "create_mcp_answer_event",
    "create_mcp_question_event",
    "create_system_event",
    "create_user_message_event",
    "is_protected",
    "latest_per_invocation",
    "normalize_event",
    "normalize_events",
]

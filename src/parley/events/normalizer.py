"""Event normalizer: raw agent events to typed event records.

Raw events arrive in whatever shape the agent server produced them. The
normalizer is 1:1: every raw event yields exactly one ``NormalizedEvent`` in
the same position, with defaults filled in for anything missing. Nothing is
dropped here.
"""

from __future__ import annotations

import time
import uuid
from collections.abc import Iterable, Sequence
from typing import Any

import structlog

from parley.events.models import (
    QUESTION_MARKER,
    SYSTEM_AUTHOR,
    USER_AUTHOR,
    EventType,
    FunctionCallPart,
    FunctionResponsePart,
    NormalizedEvent,
    Part,
    TextPart,
)

logger = structlog.get_logger()

UNKNOWN_AUTHOR = "unknown"
UNKNOWN_AGENT = "unknown_agent"


def generate_event_id() -> str:
    return f"event_{uuid.uuid4().hex[:12]}"


def generate_invocation_id() -> str:
    return f"inv_{uuid.uuid4().hex[:12]}"


def _pick(raw: dict[str, Any], *keys: str) -> Any:
    for key in keys:
        value = raw.get(key)
        if value is not None:
            return value
    return None


def parse_parts(raw_parts: Any) -> list[Part]:
    """Convert raw content parts into the tagged part variants.

    A raw part may carry text, a function call and a function response at the
    same time; each present field becomes its own part, in that order.
    """
    if not isinstance(raw_parts, list):
        return []

    parts: list[Part] = []
    for raw_part in raw_parts:
        if isinstance(raw_part, str):
            parts.append(TextPart(text=raw_part))
            continue
        if not isinstance(raw_part, dict):
            continue

        text = raw_part.get("text")
        if isinstance(text, str):
            parts.append(TextPart(text=text))

        call = _pick(raw_part, "functionCall", "function_call")
        if isinstance(call, dict):
            args = call.get("args")
            parts.append(FunctionCallPart(
                id=str(call.get("id") or ""),
                name=str(call.get("name") or ""),
                args=args if isinstance(args, dict) else {},
            ))

        response = _pick(raw_part, "functionResponse", "function_response")
        if isinstance(response, dict):
            parts.append(FunctionResponsePart(
                id=str(response.get("id") or ""),
                name=str(response.get("name") or ""),
                response=response.get("response"),
            ))

    return parts


def classify(author: str, parts: Sequence[Part]) -> EventType:
    """Derive the event type from who wrote it and what it contains."""
    if any(isinstance(part, FunctionCallPart) for part in parts):
        return "tool_call"
    if any(isinstance(part, FunctionResponsePart) for part in parts):
        return "tool_response"
    if author == USER_AUTHOR:
        return "user_message"
    return "agent_response"


def normalize_event(raw: Any, invocation_id: str) -> NormalizedEvent:
    """Normalize a single raw event, defaulting its invocation id."""
    data = raw if isinstance(raw, dict) else {}

    author = data.get("author")
    if not isinstance(author, str) or not author:
        author = UNKNOWN_AUTHOR

    content = data.get("content")
    if isinstance(content, dict):
        parts = parse_parts(content.get("parts"))
        role = content.get("role") if isinstance(content.get("role"), str) else None
    else:
        parts = []
        role = None

    timestamp = data.get("timestamp")
    if isinstance(timestamp, bool) or not isinstance(timestamp, (int, float)) or not timestamp:
        timestamp = time.time()

    return NormalizedEvent(
        id=str(data.get("id") or generate_event_id()),
        timestamp=float(timestamp),
        invocation_id=str(_pick(data, "invocationId", "invocation_id") or invocation_id),
        type=classify(author, parts),
        author=author,
        parts=parts,
        role=role,
        usage_metadata=_pick(data, "usageMetadata", "usage_metadata"),
        actions=data.get("actions"),
        long_running_tool_ids=_pick(data, "longRunningToolIds", "long_running_tool_ids"),
        raw=raw,
    )


def normalize_events(raw_events: Iterable[Any], invocation_id: str) -> list[NormalizedEvent]:
    """Normalize a raw event log.

    ``invocation_id`` (usually the session id) is applied to events that do
    not carry their own.
    """
    events = [normalize_event(raw, invocation_id) for raw in raw_events]
    logger.debug("events.normalized", count=len(events), default_invocation=invocation_id)
    return events


def coerce_agent_response(response: Any) -> list[dict[str, Any]]:
    """Turn whatever the agent server returned into a list of raw events."""
    if isinstance(response, list):
        return [item for item in response if isinstance(item, dict)]

    if isinstance(response, str):
        return [_text_event(UNKNOWN_AGENT, response)] if response else []

    if not isinstance(response, dict):
        return []

    content = response.get("content")
    if isinstance(content, dict) and "parts" in content:
        return [response]

    author = response.get("author") or UNKNOWN_AGENT
    text = ""
    if isinstance(response.get("text"), str):
        text = response["text"]
    elif isinstance(content, str):
        text = content
    elif "message" in response:
        message = response["message"]
        text = message if isinstance(message, str) else str(message)

    if not text:
        logger.warning("events.unparseable_response", keys=sorted(response.keys()))
        return []

    event = _text_event(author, text)
    if response.get("timestamp"):
        event["timestamp"] = response["timestamp"]
    return [event]


def _text_event(author: str, text: str) -> dict[str, Any]:
    return {"author": author, "content": {"parts": [{"text": text}], "role": "model"}}


def create_user_message_event(
    text: str,
    session_id: str,
    timestamp: float | None = None,
) -> NormalizedEvent:
    return NormalizedEvent(
        id=generate_event_id(),
        timestamp=timestamp or time.time(),
        invocation_id=generate_invocation_id(),
        type="user_message",
        author=USER_AUTHOR,
        parts=[TextPart(text=text)],
        role="user",
        raw={"message": text, "sessionId": session_id},
    )


def create_mcp_question_event(
    question_id: str,
    question: str,
    timestamp: float | None = None,
) -> NormalizedEvent:
    """Event carrying a routed question into a conversation's log."""
    return NormalizedEvent(
        id=generate_event_id(),
        timestamp=timestamp or time.time(),
        invocation_id=generate_invocation_id(),
        type="mcp_question",
        author=SYSTEM_AUTHOR,
        parts=[TextPart(text=f"{QUESTION_MARKER}\n\n{question}")],
        role="model",
        question_id=question_id,
        raw={"questionId": question_id, "question": question},
    )


def create_mcp_answer_event(
    question_id: str,
    answer: str,
    timestamp: float | None = None,
) -> NormalizedEvent:
    return NormalizedEvent(
        id=generate_event_id(),
        timestamp=timestamp or time.time(),
        invocation_id=generate_invocation_id(),
        type="mcp_answer",
        author=USER_AUTHOR,
        parts=[TextPart(text=answer)],
        role="user",
        question_id=question_id,
        raw={"questionId": question_id, "answer": answer},
    )


def create_system_event(
    message: str,
    *,
    kind: str | None = None,
    data: dict[str, Any] | None = None,
    timestamp: float | None = None,
) -> NormalizedEvent:
    """Timeline entry for connection changes, session lifecycle and errors."""
    return NormalizedEvent(
        id=generate_event_id(),
        timestamp=timestamp or time.time(),
        invocation_id=generate_invocation_id(),
        type="system_event",
        author=SYSTEM_AUTHOR,
        parts=[TextPart(text=message)],
        role="model",
        kind=kind,
        raw={"message": message, "data": data or {}},
    )

"""Conversation reconstruction: event log to display messages.

The message list is always rebuilt from the whole event log rather than
patched incrementally, so superseded revisions and the fallback rule stay
consistent no matter how the log grew.

Order of the output:

1. User messages and agent questions, in log order, taken from the full
   log before deduplication so invocation collapsing can never drop them.
2. Agent messages from the deduplicated log, in chronological order, or a
   single fallback message when no agent message qualified.

User and agent messages are not interleaved; sorting by timestamp is left
to the display layer.
"""

from __future__ import annotations

import json
from collections.abc import Sequence
from typing import Any

import structlog

from parley.conversation.models import Conversation, Message
from parley.events.dedup import latest_per_invocation
from parley.events.models import (
    ASK_USER_TOOL,
    FunctionCallPart,
    FunctionResponsePart,
    NormalizedEvent,
)
from parley.events.normalizer import normalize_events

logger = structlog.get_logger()

CANONICAL_AUTHORS = frozenset({"assistant", "model"})
SEND_ERROR_KIND = "send_message_error"
MISSING_QUESTION = "Question content not found"


def format_agent_content(author: str, text: str) -> str:
    """Prefix text with its author unless it came from the canonical assistant."""
    if author and author not in CANONICAL_AUTHORS:
        return f"**{author}:** {text}"
    return text


def question_text(call: FunctionCallPart) -> str:
    value = call.args.get("question") or call.args.get("message")
    return str(value) if value else MISSING_QUESTION


def _ask_user_calls(event: NormalizedEvent) -> list[FunctionCallPart]:
    return [call for call in event.function_calls if call.name == ASK_USER_TOOL]


def _is_ask_user_only(event: NormalizedEvent) -> bool:
    calls = event.function_calls
    return bool(calls) and len(calls) == len(event.parts) and all(
        call.name == ASK_USER_TOOL for call in calls
    )


def _response_text(response: Any) -> str:
    # Tool servers wrap results as {"result": {"content": [{"type": "text", "text": ...}]}}
    if isinstance(response, dict):
        result = response.get("result")
        if isinstance(result, dict) and isinstance(result.get("content"), list):
            texts = [
                item.get("text", "")
                for item in result["content"]
                if isinstance(item, dict) and isinstance(item.get("text"), str)
            ]
            if any(texts):
                return "\n".join(text for text in texts if text)
    if response is None:
        return ""
    if isinstance(response, str):
        return response
    return json.dumps(response, default=str)


def describe_event(event: NormalizedEvent) -> str:
    """Best-effort readable content for any event, including tool traffic."""
    text = event.text.strip()
    if text:
        return text

    lines: list[str] = []
    for part in event.parts:
        if isinstance(part, FunctionCallPart):
            args = json.dumps(part.args, default=str) if part.args else ""
            lines.append(f"Called `{part.name}` {args}".rstrip())
        elif isinstance(part, FunctionResponsePart):
            body = _response_text(part.response)
            lines.append(f"`{part.name}` returned: {body}" if body else f"`{part.name}` returned")
    return "\n".join(lines).strip()


def extract_preserved_messages(events: Sequence[NormalizedEvent]) -> list[Message]:
    """User messages and agent questions from the undeduplicated log."""
    asked_ids = {
        call.id for event in events for call in _ask_user_calls(event) if call.id
    }
    messages: list[Message] = []

    for event in events:
        if event.is_user:
            text = event.text.strip()
            if text:
                answer = event.type == "mcp_answer"
                messages.append(Message(
                    role="user",
                    content=text,
                    timestamp=event.timestamp,
                    is_mcp_message=answer,
                    mcp_question_id=event.question_id if answer else None,
                ))

        for call in _ask_user_calls(event):
            messages.append(Message(
                role="assistant",
                content=question_text(call),
                timestamp=event.timestamp,
                is_mcp_message=True,
                mcp_question_id=call.id or f"mcp_{event.id}",
            ))

        if event.type == "mcp_question" and event.question_id not in asked_ids:
            messages.append(Message(
                role="assistant",
                content=event.text.strip(),
                timestamp=event.timestamp,
                is_mcp_message=True,
                mcp_question_id=event.question_id,
            ))

    return messages


def extract_agent_messages(events: Sequence[NormalizedEvent]) -> list[Message]:
    """Agent messages from the deduplicated log. Any non-user author qualifies."""
    messages: list[Message] = []

    for event in events:
        if event.is_user or event.type == "mcp_question":
            continue
        if event.type == "system_event":
            if event.kind == SEND_ERROR_KIND and event.text.strip():
                messages.append(Message(
                    role="assistant",
                    content=event.text.strip(),
                    timestamp=event.timestamp,
                    is_error=True,
                ))
            continue

        text = event.text.strip()
        if not text:
            continue
        messages.append(Message(
            role="assistant",
            content=format_agent_content(event.author, text),
            timestamp=event.timestamp,
            final_agent=event.author,
        ))

    return messages


def fallback_message(events: Sequence[NormalizedEvent]) -> Message | None:
    """Single message standing in for agent activity nothing else rendered."""
    candidates = [
        event
        for event in events
        if not event.is_user
        and event.type not in ("system_event", "mcp_question")
        and event.parts
        and not _is_ask_user_only(event)
        and describe_event(event)
    ]
    if not candidates:
        return None

    latest = max(candidates, key=lambda event: event.timestamp)
    return Message(
        role="assistant",
        content=describe_event(latest),
        timestamp=latest.timestamp,
        final_agent=latest.author,
        is_fallback=True,
    )


def reconstruct(events: Sequence[NormalizedEvent], session_id: str) -> Conversation:
    """Rebuild a conversation's messages from its full event log."""
    preserved = extract_preserved_messages(events)
    deduplicated = latest_per_invocation(events)
    agent_messages = extract_agent_messages(deduplicated)

    fallback = None
    if not any(not msg.is_error for msg in agent_messages):
        fallback = fallback_message(deduplicated)
        if fallback is not None:
            agent_messages.append(fallback)

    logger.debug(
        "conversation.reconstructed",
        session_id=session_id,
        events=len(events),
        deduplicated=len(deduplicated),
        messages=len(preserved) + len(agent_messages),
        fallback=fallback is not None,
    )
    return Conversation(
        session_id=session_id,
        messages=[*preserved, *agent_messages],
        events=list(events),
    )


def reconstruct_raw(raw_events: Sequence[Any], session_id: str) -> Conversation:
    """Normalize a raw log with the session id as default invocation, then rebuild."""
    return reconstruct(normalize_events(raw_events, session_id), session_id)

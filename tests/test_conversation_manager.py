from __future__ import annotations

import asyncio
from typing import Any

import pytest

from parley.api.models import AgentRunRequest
from parley.conversation.manager import (
    ConversationManager,
    SendInProgressError,
    generate_session_id,
)
from parley.transport.models import Question, SessionContext
from parley.transport.session import SessionContextRegistry


def _agent_reply(text: str, author: str = "planner") -> list[dict[str, Any]]:
    return [{"author": author, "invocationId": "reply", "content": {"parts": [{"text": text}], "role": "model"}}]


def test_generate_session_id_format() -> None:
    session_id = generate_session_id()

    assert session_id.startswith("session_")
    assert len(session_id) == len("session_") + 8


def test_start_conversation_becomes_current() -> None:
    manager = ConversationManager(send_to_agent=lambda request: None)

    first = manager.start_conversation("planner")
    second = manager.start_conversation("planner")

    assert manager.current_conversation is second
    assert [c.session_id for c in manager.conversations_for("planner")] == [second.session_id, first.session_id]
    assert first.messages == []
    assert first.events[0].kind == "session_created"


def test_current_session_context() -> None:
    manager = ConversationManager(send_to_agent=lambda request: None)
    assert manager.get_current_session_context() is None

    conv = manager.start_conversation("planner", "s1")

    assert manager.get_current_session_context() == SessionContext(agent_name="planner", session_id=conv.session_id)

    manager.set_current_agent("writer")
    assert manager.get_current_session_context() is None


@pytest.mark.asyncio
async def test_send_message_appends_user_and_agent_messages() -> None:
    requests: list[AgentRunRequest] = []

    async def send(request: AgentRunRequest) -> Any:
        requests.append(request)
        return _agent_reply("Here is the plan")

    manager = ConversationManager(send_to_agent=send, user_id="alice")
    manager.start_conversation("planner", "s1")

    conv = await manager.send_message("Plan my trip")

    assert [(m.role, m.content) for m in conv.messages] == [
        ("user", "Plan my trip"),
        ("assistant", "**planner:** Here is the plan"),
    ]
    assert requests[0].app_name == "planner"
    assert requests[0].user_id == "alice"
    assert requests[0].session_id == "s1"
    assert requests[0].to_payload()["newMessage"] == {"role": "user", "parts": [{"text": "Plan my trip"}]}


@pytest.mark.asyncio
async def test_session_context_is_set_during_send_and_cleared_after() -> None:
    registry = SessionContextRegistry()
    seen: list[SessionContext | None] = []

    async def send(request: AgentRunRequest) -> Any:
        seen.append(registry.current)
        return "done"

    manager = ConversationManager(send_to_agent=send, session_context=registry)
    manager.start_conversation("planner", "s1")

    await manager.send_message("go")

    assert seen == [SessionContext(agent_name="planner", session_id="s1")]
    assert registry.current is None


@pytest.mark.asyncio
async def test_send_failure_becomes_error_message() -> None:
    registry = SessionContextRegistry()

    async def send(request: AgentRunRequest) -> Any:
        raise RuntimeError("agent offline")

    manager = ConversationManager(send_to_agent=send, session_context=registry)
    manager.start_conversation("planner", "s1")

    conv = await manager.send_message("hello")

    assert [m.content for m in conv.messages] == [
        "hello",
        "Error: Failed to get response from agent. agent offline",
    ]
    assert conv.messages[1].is_error
    assert registry.current is None
    assert not manager.is_sending("planner", "s1")


@pytest.mark.asyncio
async def test_second_send_while_in_flight_is_rejected() -> None:
    release = asyncio.Event()

    async def send(request: AgentRunRequest) -> Any:
        await release.wait()
        return _agent_reply("ok")

    manager = ConversationManager(send_to_agent=send)
    manager.start_conversation("planner", "s1")

    first = asyncio.create_task(manager.send_message("one"))
    await asyncio.sleep(0)
    assert manager.is_sending("planner", "s1")

    with pytest.raises(SendInProgressError):
        await manager.send_message("two")

    release.set()
    conv = await first
    assert [m.content for m in conv.messages if m.role == "user"] == ["one"]


@pytest.mark.asyncio
async def test_sends_to_different_conversations_are_independent() -> None:
    release = asyncio.Event()

    async def send(request: AgentRunRequest) -> Any:
        await release.wait()
        return _agent_reply(f"reply to {request.app_name}")

    manager = ConversationManager(send_to_agent=send)
    manager.start_conversation("planner", "s1")
    first = asyncio.create_task(manager.send_message("one"))
    await asyncio.sleep(0)

    manager.start_conversation("writer", "s2")
    second = asyncio.create_task(manager.send_message("two"))
    await asyncio.sleep(0)

    assert manager.is_sending("planner", "s1")
    assert manager.is_sending("writer", "s2")
    release.set()
    await asyncio.gather(first, second)


@pytest.mark.asyncio
async def test_send_without_agent_is_noop() -> None:
    manager = ConversationManager(send_to_agent=lambda request: None)

    assert await manager.send_message("hello") is None


@pytest.mark.asyncio
async def test_send_starts_conversation_when_agent_has_none() -> None:
    async def send(request: AgentRunRequest) -> Any:
        return {"text": "hi there"}

    manager = ConversationManager(send_to_agent=send)
    manager.set_current_agent("greeter")

    conv = await manager.send_message("hello")

    assert conv.session_id.startswith("session_")
    assert manager.conversations_for("greeter") == [conv]
    assert conv.messages[-1].content == "**unknown_agent:** hi there"


def test_load_conversation_replaces_existing_session() -> None:
    manager = ConversationManager(send_to_agent=lambda request: None)
    raw = [
        {"author": "user", "timestamp": 1.0, "content": {"parts": [{"text": "hi"}]}},
        {"author": "model", "timestamp": 2.0, "invocationId": "b", "content": {"parts": [{"text": "hello"}]}},
    ]

    manager.load_conversation("planner", "s1", raw[:1])
    conv = manager.load_conversation("planner", "s1", raw)

    assert manager.conversations_for("planner") == [conv]
    assert [m.content for m in conv.messages] == ["hi", "hello"]
    assert conv.agent_name == "planner"


def test_inject_question_targets_session_or_latest() -> None:
    manager = ConversationManager(send_to_agent=lambda request: None)
    older = manager.start_conversation("planner", "s1")
    newer = manager.start_conversation("planner", "s2")

    assert manager.inject_question(Question(
        id="q1", question="Old?", session_context=SessionContext(agent_name="planner", session_id="s1"),
    ))
    assert not manager.inject_question(Question(
        id="q2", question="Lost?", session_context=SessionContext(agent_name="planner", session_id="missing"),
    ))
    assert not manager.inject_question(Question(id="q3", question="Nowhere?"))

    assert [m.mcp_question_id for m in older.messages] == ["q1"]
    assert newer.messages == []


def test_record_answer_and_event_views() -> None:
    manager = ConversationManager(send_to_agent=lambda request: None)
    conv = manager.start_conversation("planner", "s1")

    assert manager.record_answer(SessionContext(agent_name="planner", session_id="s1"), "q1", "yes")
    assert not manager.record_answer(SessionContext(agent_name="writer", session_id="s1"), "q1", "yes")

    assert [m.content for m in conv.messages] == ["yes"]
    assert [e.type for e in manager.events_for("planner")] == ["system_event", "mcp_answer"]
    assert [e.type for e in manager.filtered_events("planner", "s1", event_types=["mcp_answer"])] == ["mcp_answer"]
    assert manager.events_for("nobody") == []


def test_set_current_conversation_requires_known_session() -> None:
    manager = ConversationManager(send_to_agent=lambda request: None)
    manager.start_conversation("planner", "s1")
    manager.start_conversation("planner", "s2")

    assert manager.set_current_conversation("planner", "s1")
    assert manager.current_conversation.session_id == "s1"
    assert not manager.set_current_conversation("planner", "nope")
    assert manager.current_conversation.session_id == "s1"

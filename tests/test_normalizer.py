from __future__ import annotations

from parley.events.models import (
    QUESTION_MARKER,
    FunctionCallPart,
    FunctionResponsePart,
    TextPart,
)
from parley.events.normalizer import (
    classify,
    coerce_agent_response,
    create_mcp_answer_event,
    create_mcp_question_event,
    create_system_event,
    create_user_message_event,
    normalize_event,
    normalize_events,
    parse_parts,
)


def test_normalize_events_is_one_to_one_and_keeps_order() -> None:
    raw = [
        {"author": "user", "content": {"parts": [{"text": "hi"}]}, "timestamp": 1.0},
        {"author": "planner", "content": None, "timestamp": 2.0},
        "not-an-event",
        {"author": "writer", "content": {"parts": [{"text": "done"}]}, "timestamp": 3.0},
    ]

    events = normalize_events(raw, "session-1")

    assert len(events) == 4
    assert [e.author for e in events] == ["user", "planner", "unknown", "writer"]
    assert events[1].parts == []
    assert events[2].parts == []


def test_missing_id_and_timestamp_are_synthesized() -> None:
    event = normalize_event({"author": "planner", "content": {"parts": [{"text": "x"}]}}, "s1")

    assert event.id
    assert event.timestamp > 0
    assert event.invocation_id == "s1"


def test_own_invocation_id_wins_over_default() -> None:
    camel = normalize_event({"author": "a", "invocationId": "inv-1"}, "s1")
    snake = normalize_event({"author": "a", "invocation_id": "inv-2"}, "s1")

    assert camel.invocation_id == "inv-1"
    assert snake.invocation_id == "inv-2"


def test_event_type_derived_from_author_and_parts() -> None:
    call = {"functionCall": {"id": "c1", "name": "search", "args": {"q": "x"}}}
    response = {"functionResponse": {"id": "c1", "name": "search", "response": {"ok": True}}}

    assert normalize_event({"author": "a", "content": {"parts": [call]}}, "s").type == "tool_call"
    assert normalize_event({"author": "a", "content": {"parts": [response]}}, "s").type == "tool_response"
    assert normalize_event({"author": "user", "content": {"parts": [{"text": "hi"}]}}, "s").type == "user_message"
    assert normalize_event({"author": "a", "content": {"parts": [{"text": "hi"}]}}, "s").type == "agent_response"


def test_function_call_takes_precedence_over_user_author() -> None:
    parts = parse_parts([{"functionCall": {"name": "ask_user", "args": {}}}])

    assert classify("user", parts) == "tool_call"


def test_parse_parts_splits_combined_part() -> None:
    parts = parse_parts([
        {
            "text": "let me check",
            "functionCall": {"id": "c1", "name": "search", "args": {"q": "weather"}},
        },
        "plain string",
        42,
    ])

    assert parts == [
        TextPart(text="let me check"),
        FunctionCallPart(id="c1", name="search", args={"q": "weather"}),
        TextPart(text="plain string"),
    ]


def test_parse_parts_accepts_snake_case_keys() -> None:
    parts = parse_parts([{"function_response": {"id": "c1", "name": "search", "response": "sunny"}}])

    assert parts == [FunctionResponsePart(id="c1", name="search", response="sunny")]


def test_bool_or_zero_timestamp_is_replaced() -> None:
    assert normalize_event({"timestamp": True}, "s").timestamp > 1
    assert normalize_event({"timestamp": 0}, "s").timestamp > 1


def test_usage_metadata_and_actions_carried_over() -> None:
    event = normalize_event(
        {
            "author": "a",
            "usageMetadata": {"totalTokenCount": 10},
            "actions": {"stateDelta": {}},
            "longRunningToolIds": ["c1"],
        },
        "s",
    )

    assert event.usage_metadata == {"totalTokenCount": 10}
    assert event.actions == {"stateDelta": {}}
    assert event.long_running_tool_ids == ["c1"]


def test_coerce_agent_response_shapes() -> None:
    event = {"author": "planner", "content": {"parts": [{"text": "ok"}]}}

    assert coerce_agent_response([event, "junk"]) == [event]
    assert coerce_agent_response(event) == [event]
    assert coerce_agent_response("hello")[0]["content"]["parts"] == [{"text": "hello"}]
    assert coerce_agent_response({"text": "t"})[0]["content"]["parts"] == [{"text": "t"}]
    assert coerce_agent_response({"content": "c"})[0]["content"]["parts"] == [{"text": "c"}]
    assert coerce_agent_response({"message": "m", "author": "bot"})[0]["author"] == "bot"
    assert coerce_agent_response({"unexpected": 1}) == []
    assert coerce_agent_response(None) == []


def test_synthetic_events() -> None:
    user = create_user_message_event("hi", "s1", timestamp=5.0)
    question = create_mcp_question_event("q1", "Which file?")
    answer = create_mcp_answer_event("q1", "main.py")
    system = create_system_event("boom", kind="send_message_error")

    assert user.type == "user_message" and user.is_user and user.timestamp == 5.0
    assert question.type == "mcp_question"
    assert question.author == "system"
    assert question.text == f"{QUESTION_MARKER}\n\nWhich file?"
    assert question.question_id == "q1"
    assert answer.type == "mcp_answer" and answer.is_user and answer.question_id == "q1"
    assert system.type == "system_event" and system.kind == "send_message_error"
    assert len({user.invocation_id, question.invocation_id, answer.invocation_id, system.invocation_id}) == 4

from __future__ import annotations

from parley.events.dedup import latest_per_invocation
from parley.events.normalizer import normalize_events
from parley.events.query import (
    extract_tool_calls,
    extract_tool_responses,
    filter_events,
    token_stats,
    unique_authors,
    unique_event_types,
)


def _events():
    return normalize_events(
        [
            {"author": "user", "timestamp": 1.0, "content": {"parts": [{"text": "Find flights"}]}},
            {
                "author": "planner",
                "timestamp": 2.0,
                "invocationId": "p",
                "content": {"parts": [{"functionCall": {"id": "c1", "name": "search", "args": {}}}]},
                "usageMetadata": {"totalTokenCount": 30, "promptTokenCount": 20, "candidatesTokenCount": 10},
            },
            {
                "author": "planner",
                "timestamp": 3.0,
                "invocationId": "p",
                "content": {"parts": [{"text": "Searching FLIGHTS now"}]},
                "usageMetadata": {"totalTokenCount": 50, "promptTokenCount": 35, "candidatesTokenCount": 15},
            },
            {
                "author": "search_tool",
                "timestamp": 4.0,
                "invocationId": "t",
                "content": {"parts": [{"functionResponse": {"id": "c1", "name": "search", "response": []}}]},
            },
        ],
        "s1",
    )


def test_filter_by_author_and_type() -> None:
    events = _events()

    assert [e.timestamp for e in filter_events(events, authors=["planner"])] == [2.0, 3.0]
    assert [e.timestamp for e in filter_events(events, event_types=["tool_call", "tool_response"])] == [2.0, 4.0]
    assert [e.timestamp for e in filter_events(events, authors=["planner"], event_types=["tool_call"])] == [2.0]


def test_search_text_is_case_insensitive_over_text_author_and_type() -> None:
    events = _events()

    assert [e.timestamp for e in filter_events(events, search_text="flights")] == [1.0, 3.0]
    assert [e.timestamp for e in filter_events(events, search_text="SEARCH_TOOL")] == [4.0]
    assert [e.timestamp for e in filter_events(events, search_text="tool_call")] == [2.0]


def test_time_range_is_inclusive() -> None:
    events = _events()

    assert [e.timestamp for e in filter_events(events, time_range=(2.0, 3.0))] == [2.0, 3.0]


def test_unique_authors_and_types() -> None:
    events = _events()

    assert unique_authors(events) == ["planner", "search_tool", "user"]
    assert unique_event_types(events) == ["agent_response", "tool_call", "tool_response", "user_message"]


def test_tool_part_extraction() -> None:
    events = _events()

    assert [c.name for c in extract_tool_calls(events[1])] == ["search"]
    assert [r.id for r in extract_tool_responses(events[3])] == ["c1"]
    assert extract_tool_calls(events[0]) == []


def test_token_stats_over_deduplicated_log() -> None:
    events = _events()

    raw_stats = token_stats(events)
    stats = token_stats(latest_per_invocation(events))

    assert raw_stats.total_tokens == 80
    assert stats.total_tokens == 50
    assert stats.prompt_tokens == 35
    assert stats.candidate_tokens == 15
    assert stats.event_count == 1

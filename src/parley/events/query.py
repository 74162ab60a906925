"""Queries over event logs for timeline and debug views."""

from __future__ import annotations

from collections.abc import Iterable, Sequence
from dataclasses import dataclass
from typing import Any

from parley.events.models import FunctionCallPart, FunctionResponsePart, NormalizedEvent


@dataclass
class TokenStats:
    total_tokens: int = 0
    prompt_tokens: int = 0
    candidate_tokens: int = 0
    event_count: int = 0


def filter_events(
    events: Iterable[NormalizedEvent],
    *,
    authors: Sequence[str] | None = None,
    event_types: Sequence[str] | None = None,
    search_text: str | None = None,
    time_range: tuple[float, float] | None = None,
) -> list[NormalizedEvent]:
    """Filter events; every given criterion must match. Time range is inclusive."""
    needle = (search_text or "").strip().lower()
    matched: list[NormalizedEvent] = []

    for event in events:
        if authors and event.author not in authors:
            continue
        if event_types and event.type not in event_types:
            continue
        if needle:
            haystacks = (event.text.lower(), event.author.lower(), event.type.lower())
            if not any(needle in haystack for haystack in haystacks):
                continue
        if time_range is not None:
            start, end = time_range
            if event.timestamp < start or event.timestamp > end:
                continue
        matched.append(event)

    return matched


def unique_authors(events: Iterable[NormalizedEvent]) -> list[str]:
    return sorted({event.author for event in events})


def unique_event_types(events: Iterable[NormalizedEvent]) -> list[str]:
    return sorted({event.type for event in events})


def extract_tool_calls(event: NormalizedEvent) -> list[FunctionCallPart]:
    return event.function_calls


def extract_tool_responses(event: NormalizedEvent) -> list[FunctionResponsePart]:
    return event.function_responses


def token_stats(events: Iterable[NormalizedEvent]) -> TokenStats:
    """Sum token counters over events that report usage.

    Run this over the deduplicated log; superseded revisions would otherwise
    be counted once per revision.
    """
    stats = TokenStats()
    for event in events:
        usage: dict[str, Any] | None = event.usage_metadata
        if not usage:
            continue
        stats.total_tokens += int(usage.get("totalTokenCount") or 0)
        stats.prompt_tokens += int(usage.get("promptTokenCount") or 0)
        stats.candidate_tokens += int(usage.get("candidatesTokenCount") or 0)
        stats.event_count += 1
    return stats

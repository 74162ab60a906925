"""Invocation deduplication.

Agents revise a turn several times before settling on it, and every revision
lands in the event log under the same invocation id. Only the latest revision
of each invocation is kept:

    SELECT * FROM events WHERE timestamp = MAX(timestamp) GROUP BY invocation_id

User events and question/answer traffic are carved out of the grouping and
always survive, so one invocation can contribute several events to the
output.
"""

from __future__ import annotations

from collections.abc import Iterable

import structlog

from parley.events.models import NormalizedEvent

logger = structlog.get_logger()

_QUESTION_TYPES = frozenset({"mcp_question", "mcp_answer"})


def is_protected(event: NormalizedEvent) -> bool:
    """True for events that must never be collapsed away."""
    if event.is_user:
        return True
    if event.type in _QUESTION_TYPES:
        return True
    # Injected questions count as question traffic even when mis-typed upstream
    return event.has_question_marker()


def latest_per_invocation(events: Iterable[NormalizedEvent]) -> list[NormalizedEvent]:
    """Collapse superseded revisions, returning events in chronological order."""
    protected: list[NormalizedEvent] = []
    latest: dict[str, NormalizedEvent] = {}
    total = 0

    for event in events:
        total += 1
        if is_protected(event):
            protected.append(event)
            continue
        current = latest.get(event.invocation_id)
        # Ties keep the first event seen
        if current is None or event.timestamp > current.timestamp:
            latest[event.invocation_id] = event

    result = sorted([*protected, *latest.values()], key=lambda event: event.timestamp)
    if len(result) < total:
        logger.debug(
            "dedup.collapsed",
            input=total,
            output=len(result),
            protected=len(protected),
            invocations=len(latest),
        )
    return result

"""Notification registry for agent questions.

At most one notification exists per question id; adding a second is a
no-op. Status only moves forward: pending -> displayed -> answered, with
displayed optional. The registry is independent of which conversation is on
screen and is persisted through a host-provided key-value store on every
change.
"""

from __future__ import annotations

import json
import time
from collections.abc import Callable
from dataclasses import asdict, dataclass
from typing import Any, Literal

import structlog

from parley.notifications.store import KeyValueStore, MemoryStore
from parley.transport.models import Question

logger = structlog.get_logger()

NotificationStatus = Literal["pending", "displayed", "answered"]

_STATUS_RANK: dict[str, int] = {"pending": 0, "displayed": 1, "answered": 2}


@dataclass
class Notification:
    id: str
    question_id: str
    question: str
    status: NotificationStatus
    timestamp: float
    agent_name: str | None = None
    conversation_id: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Notification:
        status = data.get("status")
        return cls(
            id=str(data["id"]),
            question_id=str(data["question_id"]),
            question=str(data.get("question", "")),
            status=status if status in _STATUS_RANK else "pending",
            timestamp=float(data.get("timestamp") or 0.0),
            agent_name=data.get("agent_name"),
            conversation_id=data.get("conversation_id"),
        )


class NotificationRegistry:
    """Idempotent, newest-first store of question notifications."""

    def __init__(
        self,
        store: KeyValueStore | None = None,
        *,
        key: str = "mcpNotifications",
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._store = store or MemoryStore()
        self._key = key
        self._clock = clock
        self._notifications: list[Notification] = []

    def load(self) -> None:
        """Read persisted notifications; unreadable data leaves the registry empty."""
        raw = self._store.get(self._key)
        if not raw:
            return
        try:
            items = json.loads(raw)
            self._notifications = [Notification.from_dict(item) for item in items]
        except (ValueError, TypeError, KeyError, AttributeError) as e:
            logger.error("notifications.load_failed", key=self._key, error=str(e))
            return
        logger.info("notifications.loaded", count=len(self._notifications))

    def _persist(self) -> None:
        self._store.set(self._key, json.dumps([n.to_dict() for n in self._notifications]))

    @property
    def notifications(self) -> list[Notification]:
        return list(self._notifications)

    @property
    def unread_count(self) -> int:
        return sum(1 for n in self._notifications if n.status != "answered")

    def get_by_question_id(self, question_id: str) -> Notification | None:
        for notification in self._notifications:
            if notification.question_id == question_id:
                return notification
        return None

    def add(
        self,
        question: Question,
        agent_name: str | None = None,
        conversation_id: str | None = None,
    ) -> Notification | None:
        """Prepend a pending notification. Returns None if one already exists."""
        if self.get_by_question_id(question.id) is not None:
            logger.debug("notifications.duplicate", question_id=question.id)
            return None

        now = self._clock()
        notification = Notification(
            id=f"notification-{question.id}-{int(now * 1000)}",
            question_id=question.id,
            question=question.question,
            status="pending",
            timestamp=now,
            agent_name=agent_name,
            conversation_id=conversation_id,
        )
        self._notifications.insert(0, notification)
        self._persist()
        logger.info(
            "notifications.added",
            question_id=question.id,
            agent=agent_name,
            conversation_id=conversation_id,
        )
        return notification

    def _advance(self, notification: Notification, status: NotificationStatus) -> bool:
        if _STATUS_RANK[status] <= _STATUS_RANK[notification.status]:
            return False
        notification.status = status
        return True

    def mark_displayed(self, notification_id: str) -> None:
        changed = False
        for notification in self._notifications:
            if notification.id == notification_id:
                changed = self._advance(notification, "displayed") or changed
        if changed:
            self._persist()

    def mark_answered(self, question_id: str) -> None:
        changed = False
        for notification in self._notifications:
            if notification.question_id == question_id:
                changed = self._advance(notification, "answered") or changed
        if changed:
            self._persist()
            logger.info("notifications.answered", question_id=question_id)

    def remove(self, notification_id: str) -> None:
        before = len(self._notifications)
        self._notifications = [n for n in self._notifications if n.id != notification_id]
        if len(self._notifications) != before:
            self._persist()

    def clear(self) -> None:
        self._notifications = []
        self._store.delete(self._key)

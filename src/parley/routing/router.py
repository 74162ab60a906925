"""Question routing between the transport, notifications and conversations.

Every inbound question becomes a notification. It is additionally injected
into a conversation only when the human is looking at the agent that asked;
answers are echoed back into the thread under the same condition.
"""

from __future__ import annotations

from typing import Any

import structlog

from parley.conversation.manager import ConversationManager
from parley.notifications.registry import NotificationRegistry
from parley.transport.client import TransportClient
from parley.transport.models import Question, SessionContext

logger = structlog.get_logger()


def should_inject(target: SessionContext | None, active: SessionContext | None) -> bool:
    """True when the question's target agent is the one currently on screen."""
    if target is None or active is None:
        return False
    return target.agent_name == active.agent_name


class QuestionRouter:
    """Wires inbound questions to the notification registry and conversations."""

    def __init__(
        self,
        transport: TransportClient,
        notifications: NotificationRegistry,
        conversations: ConversationManager,
    ) -> None:
        self.transport = transport
        self.notifications = notifications
        self.conversations = conversations
        self.current_question: Question | None = None
        self._pending: dict[str, Question] = {}

    def attach(self) -> None:
        self.transport.add_listener("question", self._on_question)

    def detach(self) -> None:
        self.transport.remove_listener("question", self._on_question)

    def _on_question(self, data: Any) -> None:
        if isinstance(data, Question):
            self.handle_question(data)

    @property
    def pending_questions(self) -> list[Question]:
        return list(self._pending.values())

    def handle_question(self, question: Question) -> bool:
        """Record the question and inject it if its agent is active.

        Returns True if the question was injected into a conversation.
        """
        context = question.session_context
        self.notifications.add(
            question,
            agent_name=context.agent_name if context else None,
            conversation_id=context.session_id if context else None,
        )
        self._pending[question.id] = question
        self.current_question = question

        active = self.conversations.get_current_session_context()
        if not should_inject(context, active):
            logger.info(
                "routing.question.notified",
                question_id=question.id,
                target=context.agent_name if context else None,
                active=active.agent_name if active else None,
            )
            return False

        injected = self.conversations.inject_question(question)
        logger.info("routing.question.injected", question_id=question.id, injected=injected)
        return injected

    async def submit_answer(self, answer: str, question_id: str | None = None) -> bool:
        """Answer a question (the current one unless ``question_id`` is given).

        Returns False if there is no such question or the answer could not be
        sent; the question then stays pending.
        """
        question = self._pending.get(question_id) if question_id else self.current_question
        if question is None:
            logger.warning("routing.answer.no_question", question_id=question_id)
            return False

        context = question.session_context or self.conversations.get_current_session_context()
        sent = await self.transport.send_answer(question.id, answer, context)
        if not sent:
            return False

        self.notifications.mark_answered(question.id)
        if context is not None and self.conversations.current_agent == context.agent_name:
            self.conversations.record_answer(context, question.id, answer)
        else:
            logger.info(
                "routing.answer.not_echoed",
                question_id=question.id,
                target=context.agent_name if context else None,
            )

        self._pending.pop(question.id, None)
        if self.current_question is question:
            self.current_question = None
        return True

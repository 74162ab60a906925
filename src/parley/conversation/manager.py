"""Conversation state manager.

Owns every agent's conversations, the current agent/conversation selection,
and the per-conversation send guard. Messages are never edited in place:
each change appends to a conversation's event log and rebuilds its messages
through ``reconstruct``.
"""

from __future__ import annotations

import uuid
from collections.abc import Awaitable, Callable, Sequence
from typing import Any

import structlog

from parley.api.models import AgentRunRequest
from parley.conversation.models import Conversation
from parley.conversation.reconstruct import SEND_ERROR_KIND, reconstruct
from parley.events.models import NormalizedEvent
from parley.events.normalizer import (
    coerce_agent_response,
    create_mcp_answer_event,
    create_mcp_question_event,
    create_system_event,
    create_user_message_event,
    normalize_events,
)
from parley.events.query import filter_events
from parley.transport.models import Question, SessionContext
from parley.transport.session import SessionContextRegistry

logger = structlog.get_logger()

SendToAgent = Callable[[AgentRunRequest], Awaitable[Any]]


class SendInProgressError(RuntimeError):
    """A send is already in flight for this conversation."""


def generate_session_id() -> str:
    return f"session_{uuid.uuid4().hex[:8]}"


def error_text(exc: BaseException) -> str:
    detail = str(exc) or type(exc).__name__
    return f"Error: Failed to get response from agent. {detail}"


class ConversationManager:
    """Manages all conversations, keyed by agent, most recent first."""

    def __init__(
        self,
        *,
        send_to_agent: SendToAgent,
        session_context: SessionContextRegistry | None = None,
        user_id: str = "parley",
    ) -> None:
        self._send_to_agent = send_to_agent
        self._session_context = session_context
        self.user_id = user_id
        self._conversations: dict[str, list[Conversation]] = {}
        self._in_flight: set[tuple[str, str]] = set()
        self.current_agent: str | None = None
        self.current_session_id: str | None = None

    # ── Lookup ───────────────────────────────────────────────────────

    @property
    def agents(self) -> list[str]:
        return list(self._conversations)

    def conversations_for(self, agent_name: str) -> list[Conversation]:
        return list(self._conversations.get(agent_name, []))

    def get(self, agent_name: str, session_id: str) -> Conversation | None:
        for conv in self._conversations.get(agent_name, []):
            if conv.session_id == session_id:
                return conv
        return None

    @property
    def current_conversation(self) -> Conversation | None:
        if not self.current_agent or not self.current_session_id:
            return None
        return self.get(self.current_agent, self.current_session_id)

    def get_current_session_context(self) -> SessionContext | None:
        """The agent/session the human is looking at, if any."""
        if not self.current_agent:
            return None
        conversations = self._conversations.get(self.current_agent)
        if not conversations:
            return None
        target = self.current_conversation or conversations[0]
        return SessionContext(agent_name=self.current_agent, session_id=target.session_id)

    def _target(self, context: SessionContext) -> Conversation | None:
        conversations = self._conversations.get(context.agent_name, [])
        if context.session_id:
            return self.get(context.agent_name, context.session_id)
        return conversations[0] if conversations else None

    # ── Selection ────────────────────────────────────────────────────

    def set_current_agent(self, agent_name: str | None) -> None:
        if agent_name != self.current_agent:
            self.current_session_id = None
        self.current_agent = agent_name

    def set_current_conversation(self, agent_name: str, session_id: str) -> bool:
        if self.get(agent_name, session_id) is None:
            logger.warning(
                "conversation.not_found",
                agent=agent_name,
                session_id=session_id,
            )
            return False
        self.current_agent = agent_name
        self.current_session_id = session_id
        return True

    # ── Creation / loading ───────────────────────────────────────────

    def _store(self, agent_name: str, conv: Conversation) -> None:
        conversations = self._conversations.setdefault(agent_name, [])
        for index, existing in enumerate(conversations):
            if existing.session_id == conv.session_id:
                conversations[index] = conv
                return
        conversations.insert(0, conv)

    def start_conversation(self, agent_name: str, session_id: str | None = None) -> Conversation:
        """Create an empty conversation and make it current."""
        conv = Conversation(session_id=session_id or generate_session_id(), agent_name=agent_name)
        conv.events.append(create_system_event(
            f"New session created for agent {agent_name}",
            kind="session_created",
            data={"agentName": agent_name, "sessionId": conv.session_id},
        ))
        self._rebuild(conv)
        self._store(agent_name, conv)
        self.current_agent = agent_name
        self.current_session_id = conv.session_id
        logger.info("conversation.created", agent=agent_name, session_id=conv.session_id)
        return conv

    def load_conversation(
        self,
        agent_name: str,
        session_id: str,
        raw_events: Sequence[Any],
    ) -> Conversation:
        """Rebuild a stored session from its raw event log."""
        events = normalize_events(raw_events, session_id)
        conv = reconstruct(events, session_id)
        conv.agent_name = agent_name
        self._store(agent_name, conv)
        logger.info(
            "conversation.loaded",
            agent=agent_name,
            session_id=session_id,
            events=len(events),
            messages=len(conv.messages),
        )
        return conv

    def _rebuild(self, conv: Conversation) -> None:
        conv.messages = reconstruct(conv.events, conv.session_id).messages

    # ── Sending ──────────────────────────────────────────────────────

    def is_sending(self, agent_name: str, session_id: str) -> bool:
        return (agent_name, session_id) in self._in_flight

    async def send_message(self, text: str) -> Conversation | None:
        """Send a user message to the current agent and fold in its response.

        Failures of the send function become an error message in the
        conversation; the user's own message is always kept.
        """
        agent_name = self.current_agent
        if not agent_name:
            logger.warning("conversation.send_without_agent")
            return None

        conv = self.current_conversation
        if conv is None:
            existing = self._conversations.get(agent_name)
            conv = existing[0] if existing else self.start_conversation(agent_name)

        key = (agent_name, conv.session_id)
        if key in self._in_flight:
            raise SendInProgressError(
                f"A message to {agent_name} ({conv.session_id}) is already in flight"
            )
        self._in_flight.add(key)

        conv.events.append(create_user_message_event(text, conv.session_id))
        self._rebuild(conv)

        if self._session_context is not None:
            self._session_context.set(SessionContext(agent_name=agent_name, session_id=conv.session_id))

        request = AgentRunRequest(
            app_name=agent_name,
            user_id=self.user_id,
            session_id=conv.session_id,
            text=text,
        )
        try:
            response = await self._send_to_agent(request)
        except Exception as e:
            logger.error(
                "conversation.send_failed",
                agent=agent_name,
                session_id=conv.session_id,
                error=str(e),
            )
            conv.events.append(create_system_event(
                error_text(e),
                kind=SEND_ERROR_KIND,
                data={"agentName": agent_name, "error": str(e)},
            ))
        else:
            raw_events = coerce_agent_response(response)
            conv.events.extend(normalize_events(raw_events, conv.session_id))
            logger.info(
                "conversation.response_received",
                agent=agent_name,
                session_id=conv.session_id,
                events=len(raw_events),
            )
        finally:
            if self._session_context is not None:
                self._session_context.clear()
            self._in_flight.discard(key)

        self._rebuild(conv)
        return conv

    # ── Question traffic ─────────────────────────────────────────────

    def inject_question(self, question: Question) -> bool:
        """Append a routed question to its target conversation."""
        if question.session_context is None:
            return False
        conv = self._target(question.session_context)
        if conv is None:
            logger.warning(
                "conversation.question_target_missing",
                question_id=question.id,
                agent=question.session_context.agent_name,
                session_id=question.session_context.session_id,
            )
            return False
        conv.events.append(create_mcp_question_event(question.id, question.question))
        self._rebuild(conv)
        return True

    def record_answer(self, context: SessionContext, question_id: str, answer: str) -> bool:
        """Append the human's answer to the conversation that asked."""
        conv = self._target(context)
        if conv is None:
            return False
        conv.events.append(create_mcp_answer_event(question_id, answer))
        self._rebuild(conv)
        return True

    # ── Event log views ──────────────────────────────────────────────

    def events_for(self, agent_name: str, session_id: str | None = None) -> list[NormalizedEvent]:
        """Raw timeline of a conversation (most recent one if no session given)."""
        if session_id:
            conv = self.get(agent_name, session_id)
        else:
            conversations = self._conversations.get(agent_name)
            conv = conversations[0] if conversations else None
        return list(conv.events) if conv else []

    def filtered_events(
        self,
        agent_name: str,
        session_id: str | None = None,
        **filters: Any,
    ) -> list[NormalizedEvent]:
        return filter_events(self.events_for(agent_name, session_id), **filters)

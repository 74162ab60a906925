"""Active session context registry.

Holds the conversation currently receiving user input so questions that
arrive without routing data can still be attributed. A binding lives for a
fixed TTL after it is set and is read back as ``None`` once expired.
"""

from __future__ import annotations

import time
from collections.abc import Callable

import structlog

from parley.transport.models import SessionContext

logger = structlog.get_logger()


class SessionContextRegistry:
    """Last-write-wins binding with expiry."""

    def __init__(self, ttl_s: float = 30.0, *, clock: Callable[[], float] = time.monotonic) -> None:
        self.ttl_s = ttl_s
        self._clock = clock
        self._context: SessionContext | None = None
        self._expires_at: float | None = None

    def set(self, context: SessionContext) -> None:
        """Bind ``context`` and restart the expiry window."""
        self._context = context
        self._expires_at = self._clock() + self.ttl_s
        logger.debug(
            "session_context.set",
            agent=context.agent_name,
            session_id=context.session_id,
            ttl_s=self.ttl_s,
        )

    def clear(self) -> None:
        self._context = None
        self._expires_at = None

    @property
    def current(self) -> SessionContext | None:
        if self._context is None:
            return None
        if self._expires_at is not None and self._clock() >= self._expires_at:
            logger.debug("session_context.expired", agent=self._context.agent_name)
            self.clear()
            return None
        return self._context

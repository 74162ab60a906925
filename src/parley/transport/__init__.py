"""Real-time question channel: wire frames, session context and the socket client."""

from parley.transport.client import TransportClient, reconnect_delay_ms
from parley.transport.models import ConnectionState, Question, SessionContext
from parley.transport.session import SessionContextRegistry

__all__ = [
    "ConnectionState",
    "Question",
    "SessionContext",
    "SessionContextRegistry",
    "TransportClient",
    "reconnect_delay_ms",
]

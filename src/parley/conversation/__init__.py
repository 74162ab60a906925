"""Conversations rebuilt from event logs, and the manager that owns them."""

from parley.conversation.manager import (
    ConversationManager,
    SendInProgressError,
    generate_session_id,
)
from parley.conversation.models import Conversation, Message
from parley.conversation.reconstruct import reconstruct, reconstruct_raw

__all__ = [
    "Conversation",
    "ConversationManager",
    "Message",
    "SendInProgressError",
    "generate_session_id",
    "reconstruct",
    "reconstruct_raw",
]

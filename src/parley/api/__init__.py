"""Agent server access."""

from parley.api.client import AgentApiClient
from parley.api.models import AgentRunRequest

__all__ = ["AgentApiClient", "AgentRunRequest"]

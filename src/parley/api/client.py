"""HTTP client for the agent server's run endpoint."""

from __future__ import annotations

from typing import Any

import httpx
import structlog

from parley.api.models import AgentRunRequest
from parley.config import AgentApiConfig

logger = structlog.get_logger()


class AgentApiClient:
    """Sends user messages to agents and returns their raw event response."""

    def __init__(self, config: AgentApiConfig, *, client: httpx.AsyncClient | None = None) -> None:
        self.config = config
        self._client = client

    def _build_client(self) -> httpx.AsyncClient:
        headers = {"Content-Type": "application/json"}
        if self.config.api_key:
            headers["X-API-Key"] = self.config.api_key
        return httpx.AsyncClient(
            base_url=self.config.base_url,
            headers=headers,
            timeout=httpx.Timeout(self.config.timeout_s),
        )

    async def send_message_to_agent(self, request: AgentRunRequest) -> Any:
        """POST the message and return the decoded JSON (events list or single event).

        Raises ``httpx.HTTPError`` on transport failures and non-2xx responses.
        """
        if self._client is None:
            self._client = self._build_client()

        logger.info(
            "api.run.start",
            app=request.app_name,
            session_id=request.session_id,
            chars=len(request.text),
        )
        response = await self._client.post(self.config.run_path, json=request.to_payload())
        if response.status_code >= 400:
            logger.warning(
                "api.run.failed",
                status_code=response.status_code,
                session_id=request.session_id,
                body=response.text[:300],
            )
        response.raise_for_status()

        data = response.json()
        logger.info(
            "api.run.complete",
            session_id=request.session_id,
            events=len(data) if isinstance(data, list) else 1,
        )
        return data

    async def close(self) -> None:
        if self._client is not None:
            await self._client.aclose()
            self._client = None

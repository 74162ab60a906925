"""Transport client: persistent duplex connection to the question server.

State machine::

    disconnected -> connecting -> open -> disconnected

On open the client sends ``connect`` and starts a heartbeat. When the
connection drops (or a connect attempt fails) it reconnects with exponential
backoff, ``min(base * 2**attempts, max)`` ms, up to ``max_reconnect_attempts``
times; a successful open resets the counter. A manual ``disconnect()``
suppresses reconnection until the next explicit ``connect()``.
"""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable
from typing import Any

import structlog
import websockets
from pydantic import ValidationError
from websockets.exceptions import ConnectionClosed, WebSocketException

from parley.config import TransportConfig
from parley.transport.frames import (
    AskUserFrame,
    ConnectAckFrame,
    ConnectFrame,
    PingFrame,
    PongFrame,
    UserResponseFrame,
    WireSessionContext,
    decode_frame,
    encode_frame,
)
from parley.transport.models import (
    ConnectionState,
    SessionContext,
    TransportEventKind,
)
from parley.transport.session import SessionContextRegistry

logger = structlog.get_logger()

Listener = Callable[[Any], None]
Connector = Callable[[str], Awaitable[Any]]

_CONNECT_ERRORS = (OSError, asyncio.TimeoutError, WebSocketException)


def reconnect_delay_ms(attempts: int, base_ms: int = 5000, max_ms: int = 120_000) -> int:
    """Backoff before the reconnect that follows ``attempts`` earlier retries."""
    return min(base_ms * (2 ** attempts), max_ms)


async def _default_connector(url: str) -> Any:
    return await websockets.connect(url)


class TransportClient:
    """Owns the socket, the heartbeat and reconnect timers, and the session context."""

    def __init__(self, config: TransportConfig, *, connector: Connector | None = None) -> None:
        self.config = config
        self._connector = connector or _default_connector
        self.session_context = SessionContextRegistry(ttl_s=config.session_context_ttl_s)

        self.state: ConnectionState = "disconnected"
        self.reconnect_attempts = 0
        self._manual_disconnect = False

        self._ws: Any = None
        self._reader_task: asyncio.Task[None] | None = None
        self._heartbeat_task: asyncio.Task[None] | None = None
        self._reconnect_task: asyncio.Task[None] | None = None

        self._listeners: dict[TransportEventKind, list[Listener]] = {
            "question": [],
            "connected": [],
            "disconnected": [],
            "error": [],
        }

    # ── Listeners ────────────────────────────────────────────────────

    def add_listener(self, event: TransportEventKind, callback: Listener) -> None:
        self._listeners[event].append(callback)

    def remove_listener(self, event: TransportEventKind, callback: Listener) -> None:
        listeners = self._listeners[event]
        if callback in listeners:
            listeners.remove(callback)

    def _notify(self, event: TransportEventKind, data: Any) -> None:
        for listener in list(self._listeners[event]):
            try:
                listener(data)
            except Exception as exc:
                logger.error("transport.listener_failed", transport_event=event, error=str(exc))

    # ── Session context ──────────────────────────────────────────────

    def set_active_session_context(self, context: SessionContext) -> None:
        self.session_context.set(context)

    def clear_active_session_context(self) -> None:
        self.session_context.clear()

    # ── Connection lifecycle ─────────────────────────────────────────

    @property
    def is_connected(self) -> bool:
        return self.state == "open" and self._ws is not None

    @property
    def reconnect_pending(self) -> bool:
        return self._reconnect_task is not None and not self._reconnect_task.done()

    async def connect(self) -> None:
        """Open the connection. No-op while already connecting or open."""
        if self.state in ("connecting", "open"):
            return

        self._manual_disconnect = False
        self.state = "connecting"
        logger.info("transport.connecting", url=self.config.url, attempt=self.reconnect_attempts)

        try:
            ws = await self._connector(self.config.url)
        except _CONNECT_ERRORS as exc:
            logger.warning("transport.connect_failed", url=self.config.url, error=str(exc))
            self.state = "disconnected"
            self._notify("error", {"error": str(exc)})
            self._notify("disconnected", {"code": None, "reason": str(exc)})
            self._maybe_reconnect()
            return

        if self._manual_disconnect:
            # disconnect() ran while the handshake was in flight
            await ws.close()
            self.state = "disconnected"
            return

        await self._on_open(ws)

    async def _on_open(self, ws: Any) -> None:
        self._ws = ws
        self.state = "open"
        self.reconnect_attempts = 0
        logger.info("transport.connected", url=self.config.url)

        await self._send(ConnectFrame())
        self._notify("connected", {"connected": True})
        self._start_heartbeat()
        self._reader_task = asyncio.create_task(self._read_loop(ws), name="parley-transport-reader")

    async def disconnect(self) -> None:
        """Close the connection and suppress reconnection."""
        self._manual_disconnect = True
        self._stop_heartbeat()
        self.clear_active_session_context()

        if self._reconnect_task and not self._reconnect_task.done():
            self._reconnect_task.cancel()
        self._reconnect_task = None

        ws, self._ws = self._ws, None
        was_open = self.state == "open"
        self.state = "disconnected"

        if ws is not None:
            try:
                await ws.close()
            except Exception as exc:
                logger.warning("transport.close_failed", error=str(exc))

        reader = self._reader_task
        self._reader_task = None
        if reader and not reader.done() and reader is not asyncio.current_task():
            reader.cancel()
            try:
                await reader
            except asyncio.CancelledError:
                pass

        if was_open:
            self._notify("disconnected", {"code": 1000, "reason": "manual"})
        logger.info("transport.disconnected", manual=True)

    async def _read_loop(self, ws: Any) -> None:
        code: int | None = None
        reason = ""
        try:
            async for raw in ws:
                await self._handle_frame(raw)
        except ConnectionClosed as exc:
            code = exc.rcvd.code if exc.rcvd else None
            reason = exc.rcvd.reason if exc.rcvd else str(exc)
        except Exception as exc:
            logger.error("transport.read_failed", error=str(exc))
            self._notify("error", {"error": str(exc)})
            reason = str(exc)
        self._on_close(ws, code, reason)

    def _on_close(self, ws: Any, code: int | None, reason: str) -> None:
        if ws is not self._ws:
            # Already torn down by disconnect()
            return
        self._ws = None
        self._reader_task = None
        self._stop_heartbeat()
        self.state = "disconnected"
        logger.info("transport.closed", code=code, reason=reason)
        self._notify("disconnected", {"code": code, "reason": reason})
        self._maybe_reconnect()

    # ── Reconnection ─────────────────────────────────────────────────

    def _maybe_reconnect(self) -> None:
        if self._manual_disconnect:
            return
        if self.reconnect_attempts >= self.config.max_reconnect_attempts:
            logger.warning(
                "transport.reconnect.exhausted",
                attempts=self.reconnect_attempts,
                url=self.config.url,
            )
            return
        self._schedule_reconnect()

    def _schedule_reconnect(self) -> None:
        if self._reconnect_task and not self._reconnect_task.done():
            self._reconnect_task.cancel()

        delay_ms = reconnect_delay_ms(
            self.reconnect_attempts,
            self.config.reconnect_base_delay_ms,
            self.config.reconnect_max_delay_ms,
        )
        logger.info(
            "transport.reconnect.scheduled",
            delay_ms=delay_ms,
            attempt=self.reconnect_attempts + 1,
        )
        self._reconnect_task = asyncio.create_task(
            self._reconnect_after(delay_ms / 1000),
            name="parley-transport-reconnect",
        )

    async def _reconnect_after(self, delay_s: float) -> None:
        await asyncio.sleep(delay_s)
        self._reconnect_task = None
        self.reconnect_attempts += 1
        await self.connect()

    # ── Heartbeat ────────────────────────────────────────────────────

    def _start_heartbeat(self) -> None:
        self._stop_heartbeat()
        self._heartbeat_task = asyncio.create_task(
            self._heartbeat_loop(),
            name="parley-transport-heartbeat",
        )

    def _stop_heartbeat(self) -> None:
        task = self._heartbeat_task
        self._heartbeat_task = None
        if task and not task.done() and task is not asyncio.current_task():
            task.cancel()

    async def _heartbeat_loop(self) -> None:
        while True:
            await asyncio.sleep(self.config.heartbeat_interval_s)
            if not self.is_connected:
                continue
            try:
                await self._ws.send(encode_frame(PingFrame()))
            except Exception as exc:
                # Close handling belongs to the reader task
                logger.warning("transport.heartbeat_failed", error=str(exc))
                return

    # ── Frames ───────────────────────────────────────────────────────

    async def _send(self, frame: Any) -> bool:
        if self._ws is None:
            return False
        await self._ws.send(encode_frame(frame))
        return True

    async def _handle_frame(self, raw: str | bytes) -> None:
        try:
            frame = decode_frame(raw)
        except ValidationError as exc:
            logger.warning("transport.frame_invalid", error=str(exc), preview=str(raw)[:200])
            return

        if isinstance(frame, AskUserFrame):
            question = frame.to_question(fallback=self.session_context.current)
            logger.info(
                "transport.question.received",
                question_id=question.id,
                has_server_context=frame.session_context is not None,
                agent=question.session_context.agent_name if question.session_context else None,
            )
            self._notify("question", question)
        elif isinstance(frame, PingFrame):
            await self._send(PongFrame())
        elif isinstance(frame, PongFrame):
            logger.debug("transport.pong")
        elif isinstance(frame, ConnectAckFrame):
            logger.debug("transport.connect_ack")

    async def send_answer(
        self,
        question_id: str,
        answer: str,
        session_context: SessionContext | None = None,
    ) -> bool:
        """Send a ``user_response`` frame. Returns False when not connected."""
        if not self.is_connected:
            logger.error("transport.answer.not_connected", question_id=question_id)
            return False

        frame = UserResponseFrame(
            request_id=question_id,
            answer=answer,
            session_context=(
                WireSessionContext.from_context(session_context) if session_context else None
            ),
        )
        try:
            await self._send(frame)
        except _CONNECT_ERRORS as exc:
            logger.error("transport.answer.send_failed", question_id=question_id, error=str(exc))
            return False
        logger.info("transport.answer.sent", question_id=question_id)
        return True

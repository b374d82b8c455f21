from __future__ import annotations

import asyncio
import logging
from enum import Enum
from typing import Any, Awaitable, Callable

import socketio


logger = logging.getLogger(__name__)

ConnectionHandler = Callable[[str], Awaitable[None]]


class EventType(str, Enum):
    CONTAINERS = "containers"
    SYSTEM_STATS = "systemStats"
    INIT_HISTORY = "initHistory"


class SubscriptionChannel:
    """Push named events to every connected Socket.IO client.

    Delivery is fire-and-forget: failures are logged and dropped, a slow or
    vanished client only misses updates.
    """

    def __init__(self, server: socketio.AsyncServer | None = None, cors_allowed_origins: list[str] | str | None = None):
        self.server = server or socketio.AsyncServer(
            async_mode="asgi",
            cors_allowed_origins=cors_allowed_origins or [],
        )
        self.active_connections: set[str] = set()
        # Connected but still running connect handlers; skipped by publish()
        self._pending: set[str] = set()
        self._connect_handlers: list[ConnectionHandler] = []
        self._disconnect_handlers: list[ConnectionHandler] = []
        self._tasks: set[asyncio.Task] = set()

        self.server.on("connect", self._handle_connect)
        self.server.on("disconnect", self._handle_disconnect)

    @property
    def connection_count(self) -> int:
        return len(self.active_connections)

    def on_connect(self, handler: ConnectionHandler) -> None:
        self._connect_handlers.append(handler)

    def on_disconnect(self, handler: ConnectionHandler) -> None:
        self._disconnect_handlers.append(handler)

    async def publish(self, event: EventType | str, payload: Any) -> None:
        """Deliver an event to all connected subscribers."""
        name = _event_name(event)
        if not self.active_connections - self._pending:
            logger.debug("No subscribers, dropping %s", name)
            return
        try:
            await self.server.emit(name, payload, skip_sid=list(self._pending) or None)
        except Exception as e:
            logger.warning("Failed to broadcast %s: %s", name, e)

    async def send(self, sid: str, event: EventType | str, payload: Any) -> None:
        """Deliver an event to a single subscriber."""
        name = _event_name(event)
        try:
            await self.server.emit(name, payload, to=sid)
        except Exception as e:
            logger.warning("Failed to send %s to %s: %s", name, sid, e)

    async def close(self) -> None:
        for task in list(self._tasks):
            task.cancel()
        if self._tasks:
            await asyncio.gather(*self._tasks, return_exceptions=True)
        self._tasks.clear()

    # Socket.IO callbacks -------------------------------------------------

    async def _handle_connect(self, sid: str, environ: dict | None = None, auth: Any = None) -> None:
        self.active_connections.add(sid)
        self._pending.add(sid)
        logger.info("Client connected: %s. Total: %d", sid, len(self.active_connections))
        # Run handlers in the background so the handshake completes first
        task = asyncio.create_task(self._run_connect_handlers(sid))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    async def _run_connect_handlers(self, sid: str) -> None:
        try:
            for handler in self._connect_handlers:
                await self._run_handler(handler, sid)
        finally:
            self._pending.discard(sid)

    async def _handle_disconnect(self, sid: str, reason: Any = None) -> None:
        self.active_connections.discard(sid)
        self._pending.discard(sid)
        logger.info("Client disconnected: %s. Total: %d", sid, len(self.active_connections))
        for handler in self._disconnect_handlers:
            await self._run_handler(handler, sid)

    async def _run_handler(self, handler: ConnectionHandler, sid: str) -> None:
        try:
            await handler(sid)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.error("Connection handler failed for %s: %s", sid, e)


def _event_name(event: EventType | str) -> str:
    return event.value if isinstance(event, EventType) else event

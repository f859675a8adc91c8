"""Session Table - maps session identifiers to live protocol handlers."""

from __future__ import annotations

import logging
import secrets

import anyio

from mcp_streamable.handler import ProtocolHandler

logger = logging.getLogger(__name__)

SESSION_ID_BYTES = 16


class SessionTable:
    """Authoritative map from session identifier to live ProtocolHandler.

    Mutations are serialized by a single lock; lookups never wait. At most one
    live handler exists per identifier.
    """

    def __init__(self) -> None:
        self._handlers: dict[str, ProtocolHandler] = {}
        self._lock = anyio.Lock()

    def __len__(self) -> int:
        return len(self._handlers)

    def __contains__(self, session_id: object) -> bool:
        return session_id in self._handlers

    def generate_session_id(self) -> str:
        """Return an unpredictable identifier not used by any live session."""
        while True:
            session_id = secrets.token_hex(SESSION_ID_BYTES)
            if session_id not in self._handlers:
                return session_id

    def get(self, session_id: str | None) -> ProtocolHandler | None:
        if session_id is None:
            return None
        return self._handlers.get(session_id)

    async def put(self, session_id: str, handler: ProtocolHandler) -> None:
        """Register ``handler``, closing any handler previously stored under the same id."""
        async with self._lock:
            previous = self._handlers.get(session_id)
            if previous is not None and previous is not handler:
                logger.info(f"Replacing handler of session {session_id}")
                await previous.close()
            self._handlers[session_id] = handler

    async def remove(self, session_id: str, handler: ProtocolHandler | None = None) -> ProtocolHandler | None:
        """Delete the entry and return its handler for the caller to close.

        When ``handler`` is given the entry is only removed if it still holds that handler.
        """
        async with self._lock:
            if handler is not None and self._handlers.get(session_id) is not handler:
                return None
            return self._handlers.pop(session_id, None)

    async def close_all(self) -> None:
        async with self._lock:
            handlers = list(self._handlers.values())
            self._handlers.clear()
        for handler in handlers:
            await handler.close()
        if handlers:
            logger.info(f"Closed {len(handlers)} remaining session(s)")

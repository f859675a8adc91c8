"""Request Router - session lifecycle and request routing for streamable HTTP.

Framework-agnostic: the HTTP adapter passes in the session id header and the
raw body, and renders whichever result the router returns.
"""

from __future__ import annotations

import contextlib
import logging
from collections.abc import AsyncIterator
from dataclasses import dataclass
from http import HTTPStatus
from typing import Any

import anyio

from mcp_streamable.handler import NotificationStream, ProtocolHandler
from mcp_streamable.registry import ToolRegistry
from mcp_streamable.session_table import SessionTable
from mcp_streamable.types.initialize import Implementation
from mcp_streamable.types.json_rpc import (
    CONNECTION_CLOSED,
    PARSE_ERROR,
    BodyError,
    ErrorData,
    JSONRPCErrorResponse,
    JSONRPCResponse,
    ParsedBody,
    parse_body,
    serialize_message,
)

logger = logging.getLogger(__name__)

MCP_SESSION_ID_HEADER = "mcp-session-id"

DEFAULT_SERVER_INFO = Implementation(name="mcp-streamablehttp-sample-server", version="1.0.0")


# --- Router results ---


@dataclass
class JSONResult:
    """JSON-RPC response (object) or batch response (list) to return with 200."""

    body: dict[str, Any] | list[dict[str, Any]]
    session_id: str | None = None


@dataclass
class AcceptedResult:
    """The body held only notifications or responses. Acknowledge with 202."""

    session_id: str | None = None


@dataclass
class StreamResult:
    """A server-push stream was opened. Call SessionRouter.release_stream() when it ends."""

    handler: ProtocolHandler
    stream: NotificationStream
    session_id: str | None = None
    released: bool = False


@dataclass
class TerminatedResult:
    session_id: str | None = None


@dataclass
class ErrorResult:
    """A transport-level failure, reported as a JSON-RPC error envelope with ``id: null``."""

    status_code: int
    error: JSONRPCErrorResponse

    @property
    def body(self) -> dict[str, Any]:
        return serialize_message(self.error)


PostResult = JSONResult | AcceptedResult | ErrorResult
GetResult = StreamResult | ErrorResult
DeleteResult = TerminatedResult | ErrorResult


def parse_error(data: Any | None = None) -> ErrorResult:
    error = ErrorData(code=PARSE_ERROR, message="Parse error", data=data)
    return ErrorResult(status_code=HTTPStatus.BAD_REQUEST, error=JSONRPCErrorResponse(id=None, error=error))


def no_active_session() -> ErrorResult:
    error = ErrorData(code=CONNECTION_CLOSED, message="Server transport not initialized")
    return ErrorResult(
        status_code=HTTPStatus.INTERNAL_SERVER_ERROR,
        error=JSONRPCErrorResponse(id=None, error=error),
    )


def normalize_session_id(value: str | None) -> str | None:
    """Return the session id if it is usable, otherwise None.

    Session ids consist of visible ASCII characters (0x21 to 0x7E) only.
    """
    if value is None:
        return None
    value = value.strip()
    if not value or not all(0x21 <= ord(char) <= 0x7E for char in value):
        return None
    return value


class SessionRouter:
    """
    Routes POST/GET/DELETE requests to protocol handlers.

    In stateless mode every request gets a fresh ProtocolHandler that is
    released as soon as the request is answered; no session id is issued.

    In stateful mode an initialize request creates a handler under a newly
    generated session id, which is returned to the client in the
    ``mcp-session-id`` header. An initialize that names a live session replaces
    it. Later requests carrying that id reuse the handler until the client
    terminates the session with DELETE or its GET stream disconnects. Requests
    that name no live session are answered by a one-off handler and leave the
    session table untouched.

    Important: the router must be running (see run()) to handle requests, and
    run() can only be entered once per instance.

    Args:
        registry: The tools served by every handler
        stateless: If True, creates a fresh handler per request with no session tracking
        server_info: Name and version reported in the initialize handshake
    """

    def __init__(
        self,
        registry: ToolRegistry,
        *,
        stateless: bool = False,
        server_info: Implementation | None = None,
    ) -> None:
        self.registry = registry
        self.stateless = stateless
        self.server_info = server_info or DEFAULT_SERVER_INFO
        self.sessions = SessionTable()

        self._run_lock = anyio.Lock()
        self._has_started = False
        self._running = False

    @contextlib.asynccontextmanager
    async def run(self) -> AsyncIterator[None]:
        """
        Run the router. Every session still open when the context exits is closed.

        Use this in the lifespan of the ASGI application:

        @contextlib.asynccontextmanager
        async def lifespan(app: Starlette) -> AsyncIterator[None]:
            async with router.run():
                yield
        """
        async with self._run_lock:
            if self._has_started:
                raise RuntimeError(
                    "SessionRouter .run() can only be called once per instance. "
                    "Create a new instance if you need to run again."
                )
            self._has_started = True

        mode = "stateless" if self.stateless else "stateful"
        logger.info(f"Session router started in {mode} mode")
        self._running = True
        try:
            yield
        finally:
            logger.info("Session router shutting down")
            self._running = False
            with anyio.CancelScope(shield=True):
                await self.sessions.close_all()

    def _check_running(self) -> None:
        if not self._running:
            raise RuntimeError("Session router is not running. Make sure to use run().")

    def _create_handler(self, session_id: str | None = None) -> ProtocolHandler:
        return ProtocolHandler(self.registry, server_info=self.server_info, session_id=session_id)

    async def _create_session(self) -> tuple[str, ProtocolHandler]:
        session_id = self.sessions.generate_session_id()
        handler = self._create_handler(session_id)
        await self.sessions.put(session_id, handler)
        logger.info(f"Created new session {session_id}")
        return session_id, handler

    # --- POST ---

    async def handle_post(self, session_id: str | None, body: bytes | str) -> PostResult:
        """Handle a POST carrying a JSON-RPC envelope or batch."""
        self._check_running()

        parsed = parse_body(body)
        if isinstance(parsed, BodyError):
            logger.warning(f"Rejecting POST body: {parsed.message} ({parsed.data})")
            return ErrorResult(status_code=HTTPStatus.BAD_REQUEST, error=parsed.to_response())

        logger.debug(f"Is initialization request: {parsed.is_initialize}")
        if self.stateless:
            return await self._handle_stateless_post(parsed)
        return await self._handle_stateful_post(session_id, parsed)

    async def _handle_stateless_post(self, parsed: ParsedBody) -> PostResult:
        logger.debug("Stateless mode: Creating new handler for this request")
        async with self._create_handler() as handler:
            if not parsed.is_initialize:
                # No session exists to validate against, so accept the call as-is.
                handler.mark_initialized()
            responses = await handler.handle_messages(parsed.messages)
        return self._render(parsed, responses, session_id=None)

    async def _handle_stateful_post(self, session_id: str | None, parsed: ParsedBody) -> PostResult:
        existing = self.sessions.get(session_id)

        if parsed.is_initialize:
            if existing is not None and session_id is not None:
                logger.info(f"Session {session_id} superseded by a new initialize request")
                await self._discard_session(session_id, existing)
            return await self._handle_handshake(parsed)

        if existing is None or existing.closed:
            # Nothing to attach the request to; answer it without registering a session.
            logger.warning(f"No session for id {session_id!r}, handling request without a session")
            async with self._create_handler() as handler:
                handler.mark_initialized()
                responses = await handler.handle_messages(parsed.messages)
            return self._render(parsed, responses, session_id=None)

        logger.debug(f"Session {session_id} already exists, handling request directly")
        responses = await existing.handle_messages(parsed.messages)
        return self._render(parsed, responses, session_id=session_id)

    async def _handle_handshake(self, parsed: ParsedBody) -> PostResult:
        new_session_id, handler = await self._create_session()
        responses = await handler.handle_messages(parsed.messages)

        if not handler.initialized:
            # The handshake failed; do not keep a session nobody can use.
            await self._discard_session(new_session_id, handler)
            return self._render(parsed, responses, session_id=None)
        return self._render(parsed, responses, session_id=new_session_id)

    @staticmethod
    def _render(parsed: ParsedBody, responses: list[JSONRPCResponse], session_id: str | None) -> PostResult:
        if not responses:
            return AcceptedResult(session_id=session_id)
        payloads = [serialize_message(response) for response in responses]
        return JSONResult(body=payloads if parsed.is_batch else payloads[0], session_id=session_id)

    # --- GET ---

    async def handle_get(self, session_id: str | None) -> GetResult:
        """Open a server-push stream for the session."""
        self._check_running()

        if self.stateless:
            logger.debug("Stateless mode: Creating new handler for this stream")
            handler = self._create_handler()
            handler.mark_initialized()
            return StreamResult(handler=handler, stream=handler.open_stream())

        handler = self.sessions.get(session_id)
        if handler is None or handler.closed or not handler.initialized:
            logger.warning(f"GET for unknown session {session_id!r}")
            return no_active_session()
        return StreamResult(handler=handler, stream=handler.open_stream(), session_id=session_id)

    async def release_stream(self, result: StreamResult) -> None:
        """Clean up after a stream ended, e.g. because the client disconnected."""
        if result.released:
            return
        result.released = True
        handler = result.handler
        with anyio.CancelScope(shield=True):
            await handler.close_stream(result.stream)
            if result.session_id is not None:
                await self._discard_session(result.session_id, handler)
                logger.info(f"Stream of session {result.session_id} closed, session released")
            else:
                await handler.close()

    # --- DELETE ---

    async def handle_delete(self, session_id: str | None) -> DeleteResult:
        """Terminate the session."""
        self._check_running()

        if self.stateless:
            # There is no persisted session to remove; acknowledge.
            async with self._create_handler() as handler:
                handler.mark_initialized()
            logger.debug("Stateless mode: DELETE acknowledged")
            return TerminatedResult()

        handler = await self.sessions.remove(session_id) if session_id is not None else None
        if handler is None:
            logger.warning(f"DELETE for unknown session {session_id!r}")
            return no_active_session()

        await handler.close()
        logger.info(f"Session {session_id} terminated by client request")
        return TerminatedResult(session_id=session_id)

    async def _discard_session(self, session_id: str, handler: ProtocolHandler) -> None:
        """Remove ``handler`` from the table, unless another handler replaced it, and close it."""
        with anyio.CancelScope(shield=True):
            await self.sessions.remove(session_id, handler)
            await handler.close()

"""Protocol Handler - executes JSON-RPC methods against the Tool Registry.

One handler exists per session (stateful mode) or per request (stateless mode).
It owns the explicit initialization state of the session and the server-push
streams opened by GET requests.
"""

from __future__ import annotations

import enum
import logging
from collections.abc import Awaitable, Callable, Sequence
from types import TracebackType
from typing import Any

import anyio
from anyio.streams.memory import MemoryObjectReceiveStream, MemoryObjectSendStream
from pydantic import ValidationError

from mcp_streamable.exceptions import McpError
from mcp_streamable.registry import ToolRegistry
from mcp_streamable.types.base import (
    CALL_TOOL_METHOD,
    INITIALIZE_METHOD,
    INITIALIZED_NOTIFICATION,
    LATEST_PROTOCOL_VERSION,
    LIST_TOOLS_METHOD,
    PING_METHOD,
    SUPPORTED_PROTOCOL_VERSIONS,
    MCPModel,
)
from mcp_streamable.types.initialize import (
    Implementation,
    InitializeRequestParams,
    InitializeResult,
    ServerCapabilities,
)
from mcp_streamable.types.json_rpc import (
    INTERNAL_ERROR,
    INVALID_PARAMS,
    INVALID_REQUEST,
    METHOD_NOT_FOUND,
    ErrorData,
    JSONRPCErrorResponse,
    JSONRPCMessage,
    JSONRPCNotification,
    JSONRPCRequest,
    JSONRPCResponse,
    JSONRPCResultResponse,
)
from mcp_streamable.types.tools import CallToolRequestParams, CallToolResult, ListToolsResult

logger = logging.getLogger(__name__)

STREAM_BUFFER_SIZE = 16

MethodHandler = Callable[[dict[str, Any] | None], Awaitable[MCPModel | dict[str, Any]]]
NotificationStream = MemoryObjectReceiveStream[JSONRPCNotification]


class HandlerState(enum.Enum):
    UNINITIALIZED = "uninitialized"
    INITIALIZED = "initialized"


class ProtocolHandler:
    """Dispatches JSON-RPC messages of one session to the Tool Registry.

    The handler starts UNINITIALIZED. It becomes INITIALIZED exactly once, either
    by completing an ``initialize`` handshake or through :meth:`mark_initialized`,
    which the router calls for requests that arrive without a handshake.

    Messages are processed one body at a time; concurrent callers are serialized.
    """

    def __init__(
        self,
        registry: ToolRegistry,
        *,
        server_info: Implementation,
        session_id: str | None = None,
    ) -> None:
        self.registry = registry
        self.server_info = server_info
        self.session_id = session_id
        self._state = HandlerState.UNINITIALIZED
        self._closed = False
        self._lock = anyio.Lock()
        self._streams: dict[NotificationStream, MemoryObjectSendStream[JSONRPCNotification]] = {}
        self._request_handlers: dict[str, MethodHandler] = {
            INITIALIZE_METHOD: self._handle_initialize,
            PING_METHOD: self._handle_ping,
            LIST_TOOLS_METHOD: self._handle_list_tools,
            CALL_TOOL_METHOD: self._handle_call_tool,
        }

    def __repr__(self) -> str:
        return f"ProtocolHandler(session_id={self.session_id!r}, state={self._state.value}, closed={self._closed})"

    @property
    def state(self) -> HandlerState:
        return self._state

    @property
    def initialized(self) -> bool:
        return self._state is HandlerState.INITIALIZED

    @property
    def closed(self) -> bool:
        return self._closed

    @property
    def stream_count(self) -> int:
        return len(self._streams)

    def mark_initialized(self) -> None:
        """Move the handler to INITIALIZED. Later calls leave the state untouched."""
        if self._state is HandlerState.INITIALIZED:
            return
        self._state = HandlerState.INITIALIZED
        logger.debug(f"Handler for session {self.session_id} initialized")

    # --- Tool operations ---

    def list_tools(self) -> ListToolsResult:
        return ListToolsResult(tools=self.registry.list())

    async def call_tool(self, name: str, arguments: dict[str, Any] | None = None) -> CallToolResult:
        content = await self.registry.invoke(name, arguments)
        return CallToolResult(content=content)

    # --- Message dispatch ---

    async def handle_messages(self, messages: Sequence[JSONRPCMessage]) -> list[JSONRPCResponse]:
        """Process a body's messages in order.

        Returns one response per request, in request order. Notifications and
        responses sent by the client produce nothing.
        """
        if self._closed:
            raise RuntimeError("Protocol handler is closed")

        responses: list[JSONRPCResponse] = []
        async with self._lock:
            for message in messages:
                response = await self.handle_message(message)
                if response is not None:
                    responses.append(response)
        return responses

    async def handle_message(self, message: JSONRPCMessage) -> JSONRPCResponse | None:
        if isinstance(message, JSONRPCRequest):
            return await self.dispatch_request(message)
        if isinstance(message, JSONRPCNotification):
            await self._handle_notification(message)
            return None
        # Responses to server->client requests; this server never sends any.
        logger.debug(f"Ignoring client response with id {message.id}")
        return None

    async def dispatch_request(self, request: JSONRPCRequest) -> JSONRPCResponse:
        """Dispatch a request to the appropriate method handler."""
        handler = self._request_handlers.get(request.method)
        if not handler:
            return JSONRPCErrorResponse(
                id=request.id,
                error=ErrorData(code=METHOD_NOT_FOUND, message=f"Method not found: {request.method}"),
            )
        try:
            result = await handler(request.params)
        except McpError as e:
            logger.debug(f"Request {request.id} ({request.method}) failed: {e.error.message}")
            return JSONRPCErrorResponse(id=request.id, error=e.error)
        except ValidationError as e:
            return JSONRPCErrorResponse(
                id=request.id,
                error=ErrorData(
                    code=INVALID_PARAMS,
                    message=f"Invalid params for {request.method}",
                    data=e.errors(include_url=False, include_context=False),
                ),
            )
        except Exception:
            logger.exception("Handler error for %s", request.method)
            return JSONRPCErrorResponse(
                id=request.id,
                error=ErrorData(code=INTERNAL_ERROR, message="Internal error"),
            )

        if isinstance(result, MCPModel):
            result_data = result.model_dump(by_alias=True, exclude_none=True)
        else:
            result_data = result
        return JSONRPCResultResponse(id=request.id, result=result_data)

    async def _handle_notification(self, notification: JSONRPCNotification) -> None:
        if notification.method == INITIALIZED_NOTIFICATION:
            logger.debug(f"Client confirmed initialization of session {self.session_id}")
            return
        logger.debug(f"Ignoring notification {notification.method}")

    async def _handle_initialize(self, params: dict[str, Any] | None) -> InitializeResult:
        if self.initialized:
            raise McpError(ErrorData(code=INVALID_REQUEST, message="Server already initialized"))

        request_params = InitializeRequestParams.model_validate(params or {})
        if request_params.protocol_version in SUPPORTED_PROTOCOL_VERSIONS:
            protocol_version = request_params.protocol_version
        else:
            protocol_version = LATEST_PROTOCOL_VERSION

        result = InitializeResult(
            protocol_version=protocol_version,
            capabilities=ServerCapabilities(tools={}),
            server_info=self.server_info,
        )
        self.mark_initialized()
        client = request_params.client_info.name if request_params.client_info else "unknown client"
        logger.info(f"Initialized session {self.session_id} for {client} (protocol {protocol_version})")
        return result

    async def _handle_ping(self, params: dict[str, Any] | None) -> dict[str, Any]:
        return {}

    async def _handle_list_tools(self, params: dict[str, Any] | None) -> ListToolsResult:
        return self.list_tools()

    async def _handle_call_tool(self, params: dict[str, Any] | None) -> CallToolResult:
        request_params = CallToolRequestParams.model_validate(params or {})
        return await self.call_tool(request_params.name, request_params.arguments)

    # --- Server push ---

    def open_stream(self) -> NotificationStream:
        """Open a channel for server-initiated notifications."""
        if self._closed:
            raise RuntimeError("Protocol handler is closed")
        if not self.initialized:
            raise RuntimeError("Cannot open a stream before the handler is initialized")

        send_stream, receive_stream = anyio.create_memory_object_stream[JSONRPCNotification](STREAM_BUFFER_SIZE)
        self._streams[receive_stream] = send_stream
        logger.debug(f"Opened stream for session {self.session_id} ({len(self._streams)} open)")
        return receive_stream

    async def send_notification(self, method: str, params: dict[str, Any] | None = None) -> int:
        """Push a notification to every open stream. Returns how many streams got it."""
        notification = JSONRPCNotification(method=method, params=params)
        delivered = 0
        for receive_stream, send_stream in list(self._streams.items()):
            try:
                send_stream.send_nowait(notification)
                delivered += 1
            except anyio.WouldBlock:
                logger.warning(f"Stream of session {self.session_id} is full, dropping {method}")
            except (anyio.BrokenResourceError, anyio.ClosedResourceError):
                self._streams.pop(receive_stream, None)
        return delivered

    async def close_stream(self, stream: NotificationStream) -> None:
        send_stream = self._streams.pop(stream, None)
        with anyio.CancelScope(shield=True):
            if send_stream is not None:
                await send_stream.aclose()
            await stream.aclose()

    # --- Lifecycle ---

    async def close(self) -> None:
        """Release the handler. Open streams end; further messages are rejected."""
        if self._closed:
            return
        self._closed = True
        streams = list(self._streams.values())
        self._streams.clear()
        with anyio.CancelScope(shield=True):
            for send_stream in streams:
                await send_stream.aclose()
        logger.debug(f"Closed handler for session {self.session_id}")

    async def __aenter__(self) -> ProtocolHandler:
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: TracebackType | None,
    ) -> None:
        await self.close()

"""Minimum amount of base models to represent the types from JSON-RPC used by MCP.

Incoming HTTP bodies are turned into messages by :func:`parse_body`, which never
raises: a body is either a :class:`ParsedBody` (one envelope or a batch) or a
:class:`BodyError` describing why it could not be used.
"""

from __future__ import annotations

import json
from dataclasses import dataclass
from typing import Annotated, Any, Final, Literal

from pydantic import BaseModel, ConfigDict, Field

from mcp_streamable.types.base import INITIALIZE_METHOD

JSONRPC_VERSION: Final[str] = "2.0"

PARSE_ERROR: Final[int] = -32700
INVALID_REQUEST: Final[int] = -32600
METHOD_NOT_FOUND: Final[int] = -32601
INVALID_PARAMS: Final[int] = -32602
INTERNAL_ERROR: Final[int] = -32603
CONNECTION_CLOSED: Final[int] = -32000

RequestId = Annotated[int, Field(strict=True)] | str


class JSONRPCBase(BaseModel):
    """Base class for all JSON-RPC messages."""

    model_config = ConfigDict(extra="allow")

    jsonrpc: Literal["2.0"] = JSONRPC_VERSION


class JSONRPCRequest(JSONRPCBase):
    """A request that expects a response."""

    id: RequestId
    method: str
    params: dict[str, Any] | None = None


class JSONRPCNotification(JSONRPCBase):
    """A notification which does not expect a response."""

    method: str
    params: dict[str, Any] | None = None


class ErrorData(BaseModel):
    """Error information in a JSON-RPC error response."""

    model_config = ConfigDict(extra="allow")

    code: int
    message: str
    data: Any | None = None


class JSONRPCResultResponse(JSONRPCBase):
    """A successful (non-error) response to a request."""

    id: RequestId
    result: dict[str, Any]


class JSONRPCErrorResponse(JSONRPCBase):
    """A response to a request that indicates an error occurred."""

    id: RequestId | None = None
    error: ErrorData


JSONRPCResponse = JSONRPCResultResponse | JSONRPCErrorResponse
JSONRPCMessage = JSONRPCRequest | JSONRPCNotification | JSONRPCResponse


def serialize_message(message: JSONRPCMessage) -> dict[str, Any]:
    """Dump a message for the wire. Error responses always carry ``id``, even when it is null."""
    payload = message.model_dump(by_alias=True, exclude_none=True)
    if isinstance(message, JSONRPCErrorResponse):
        payload["id"] = message.id
    return payload


@dataclass(frozen=True)
class BodyError:
    """An HTTP body that could not be turned into JSON-RPC messages."""

    code: int
    message: str
    data: Any | None = None

    def to_response(self) -> JSONRPCErrorResponse:
        return JSONRPCErrorResponse(id=None, error=ErrorData(code=self.code, message=self.message, data=self.data))


@dataclass(frozen=True)
class ParsedBody:
    """A single envelope or a batch, in the order the client sent them."""

    messages: list[JSONRPCMessage]
    is_batch: bool = False

    @property
    def is_initialize(self) -> bool:
        """True when any envelope of the body is an initialize handshake."""
        return any(
            isinstance(message, JSONRPCRequest | JSONRPCNotification) and message.method == INITIALIZE_METHOD
            for message in self.messages
        )

    @property
    def has_requests(self) -> bool:
        return any(isinstance(message, JSONRPCRequest) for message in self.messages)


def _to_message(obj: Any) -> JSONRPCMessage:
    if not isinstance(obj, dict):
        raise ValueError(f"expected a JSON object, got {type(obj).__name__}")
    if "method" in obj:
        # A missing or null id makes the envelope a notification.
        if obj.get("id") is None:
            return JSONRPCNotification.model_validate(obj)
        return JSONRPCRequest.model_validate(obj)
    if "error" in obj:
        return JSONRPCErrorResponse.model_validate(obj)
    if "result" in obj:
        return JSONRPCResultResponse.model_validate(obj)
    raise ValueError("message has none of 'method', 'result' or 'error'")


def parse_body(raw: bytes | str) -> ParsedBody | BodyError:
    """Classify an HTTP request body as a single envelope, a batch, or an error."""
    try:
        data = json.loads(raw)
    except (ValueError, RecursionError) as exc:
        # RecursionError: nesting deeper than the decoder can follow
        return BodyError(code=PARSE_ERROR, message="Parse error", data=str(exc))

    is_batch = isinstance(data, list)
    items = data if is_batch else [data]
    if not items:
        return BodyError(code=INVALID_REQUEST, message="Invalid Request", data="empty batch")

    try:
        messages = [_to_message(item) for item in items]
    except ValueError as exc:
        # pydantic.ValidationError is a ValueError as well
        return BodyError(code=INVALID_REQUEST, message="Invalid Request", data=str(exc))
    return ParsedBody(messages=messages, is_batch=is_batch)

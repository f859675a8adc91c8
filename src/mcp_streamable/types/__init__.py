"""Pydantic models for the JSON-RPC envelope and the MCP tool types."""

from mcp_streamable.types.base import LATEST_PROTOCOL_VERSION, MCPModel, Result
from mcp_streamable.types.content import ContentBlock, ImageContent, TextContent
from mcp_streamable.types.initialize import Implementation, InitializeResult, ServerCapabilities
from mcp_streamable.types.json_rpc import (
    CONNECTION_CLOSED,
    INTERNAL_ERROR,
    INVALID_PARAMS,
    INVALID_REQUEST,
    METHOD_NOT_FOUND,
    PARSE_ERROR,
    BodyError,
    ErrorData,
    JSONRPCErrorResponse,
    JSONRPCMessage,
    JSONRPCNotification,
    JSONRPCRequest,
    JSONRPCResponse,
    JSONRPCResultResponse,
    ParsedBody,
    RequestId,
    parse_body,
    serialize_message,
)
from mcp_streamable.types.tools import CallToolRequestParams, CallToolResult, JsonSchema, ListToolsResult, Tool

__all__ = [
    "CONNECTION_CLOSED",
    "INTERNAL_ERROR",
    "INVALID_PARAMS",
    "INVALID_REQUEST",
    "LATEST_PROTOCOL_VERSION",
    "METHOD_NOT_FOUND",
    "PARSE_ERROR",
    "BodyError",
    "CallToolRequestParams",
    "CallToolResult",
    "ContentBlock",
    "ErrorData",
    "ImageContent",
    "Implementation",
    "InitializeResult",
    "JSONRPCErrorResponse",
    "JSONRPCMessage",
    "JSONRPCNotification",
    "JSONRPCRequest",
    "JSONRPCResponse",
    "JSONRPCResultResponse",
    "JsonSchema",
    "ListToolsResult",
    "MCPModel",
    "ParsedBody",
    "RequestId",
    "Result",
    "ServerCapabilities",
    "TextContent",
    "Tool",
    "parse_body",
    "serialize_message",
]

"""Custom exceptions for the streamable HTTP server."""

from typing import Any

from mcp_streamable.types.json_rpc import INTERNAL_ERROR, INVALID_PARAMS, ErrorData


class McpError(Exception):
    """Exception carrying a JSON-RPC error.

    Raised by the client when the peer returns an error response instead of a
    result, and inside the protocol handler for protocol violations. Wraps the
    ErrorData and provides access to the error code, message, and any
    additional data.
    """

    error: ErrorData

    def __init__(self, error: ErrorData):
        super().__init__(error.message)
        self.error = error


class ToolError(McpError):
    """Error in tool operations."""

    code: int = INTERNAL_ERROR

    def __init__(self, message: str, data: Any | None = None):
        super().__init__(ErrorData(code=self.code, message=message, data=data))


class UnknownToolError(ToolError):
    """No tool is registered under the requested name."""

    code = INVALID_PARAMS

    def __init__(self, name: str):
        super().__init__(f"Unknown tool: {name}", data={"name": name})
        self.name = name


class InvalidArgumentsError(ToolError):
    """Tool arguments do not match the tool's input schema."""

    code = INVALID_PARAMS


class ToolInvocationError(ToolError):
    """The tool function itself failed."""

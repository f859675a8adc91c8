"""Streamable HTTP transport for an MCP tool server, with stateless and stateful sessions."""

from mcp_streamable.exceptions import (
    InvalidArgumentsError,
    McpError,
    ToolError,
    ToolInvocationError,
    UnknownToolError,
)
from mcp_streamable.handler import HandlerState, ProtocolHandler
from mcp_streamable.registry import Image, ToolRegistry
from mcp_streamable.router import MCP_SESSION_ID_HEADER, SessionRouter
from mcp_streamable.session_table import SessionTable
from mcp_streamable.settings import Settings
from mcp_streamable.transport.starlette import create_starlette_app

__all__ = [
    "MCP_SESSION_ID_HEADER",
    "HandlerState",
    "Image",
    "InvalidArgumentsError",
    "McpError",
    "ProtocolHandler",
    "SessionRouter",
    "SessionTable",
    "Settings",
    "ToolError",
    "ToolInvocationError",
    "ToolRegistry",
    "UnknownToolError",
    "create_starlette_app",
]

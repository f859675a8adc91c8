"""MCP Tools Types - Types for tool listing and invocation."""

from typing import Annotated, Any, Literal

from pydantic import Field

from mcp_streamable.types.base import MCPModel, Result
from mcp_streamable.types.content import ContentBlock


class JsonSchema(MCPModel):
    """A JSON Schema object describing tool arguments."""

    type: Literal["object"] = "object"
    properties: dict[str, Any] | None = None
    required: list[str] | None = None


class Tool(MCPModel):
    """Definition of a tool the server provides."""

    name: str
    description: str | None = None
    input_schema: Annotated[JsonSchema, Field(alias="inputSchema")]


class ListToolsResult(Result):
    """Server's response to a tools/list request."""

    tools: list[Tool]


class CallToolRequestParams(MCPModel):
    """Parameters for tools/call request."""

    name: str
    arguments: dict[str, Any] | None = None


class CallToolResult(Result):
    """Server's response to a tools/call request."""

    content: list[ContentBlock]
    is_error: Annotated[bool, Field(alias="isError")] = False

"""MCP Initialize Types - Types for the initialize handshake."""

from typing import Annotated, Any

from pydantic import Field

from mcp_streamable.types.base import MCPModel, Result


class Implementation(MCPModel):
    """Describes the name and version of an MCP implementation."""

    name: str
    version: str


class ServerCapabilities(MCPModel):
    """Capabilities that a server may support."""

    logging: dict[str, Any] | None = None
    tools: dict[str, Any] | None = None


class InitializeRequestParams(MCPModel):
    """Parameters for the initialize request."""

    protocol_version: Annotated[str, Field(alias="protocolVersion")]
    capabilities: dict[str, Any] = Field(default_factory=dict)
    client_info: Annotated[Implementation | None, Field(alias="clientInfo")] = None


class InitializeResult(Result):
    """Server's response to an initialize request."""

    protocol_version: Annotated[str, Field(alias="protocolVersion")]
    capabilities: ServerCapabilities
    server_info: Annotated[Implementation, Field(alias="serverInfo")]
    instructions: str | None = None

"""MCP Base Types - Core type definitions shared by the tool types."""

from typing import Annotated, Any, Final

from pydantic import BaseModel, ConfigDict, Field

LATEST_PROTOCOL_VERSION: Final[str] = "2025-03-26"
SUPPORTED_PROTOCOL_VERSIONS: Final[tuple[str, ...]] = ("2024-11-05", LATEST_PROTOCOL_VERSION)

INITIALIZE_METHOD: Final[str] = "initialize"
INITIALIZED_NOTIFICATION: Final[str] = "notifications/initialized"
PING_METHOD: Final[str] = "ping"
LIST_TOOLS_METHOD: Final[str] = "tools/list"
CALL_TOOL_METHOD: Final[str] = "tools/call"


class MCPModel(BaseModel):
    """Base class for all MCP domain types. Allows extra fields for forward compatibility."""

    model_config = ConfigDict(extra="allow", populate_by_name=True)


class Result(MCPModel):
    """Base class for MCP results with _meta support."""

    meta: Annotated[dict[str, Any] | None, Field(alias="_meta")] = None

"""MCP Content Types - Content items carried by tool results."""

from typing import Literal

from pydantic import Field

from mcp_streamable.types.base import MCPModel


class TextContent(MCPModel):
    """Text provided to or from an LLM."""

    type: Literal["text"] = "text"
    text: str


class ImageContent(MCPModel):
    """An image provided to or from an LLM."""

    type: Literal["image"] = "image"
    data: str  # base64 encoded
    mime_type: str = Field(alias="mimeType")


ContentBlock = TextContent | ImageContent

"""HTTP adapters for the session router."""

from mcp_streamable.transport.starlette import create_starlette_app

__all__ = ["create_starlette_app"]

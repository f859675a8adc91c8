"""The sample tools served by the streamable HTTP server."""

from typing import Annotated

from pydantic import Field

from mcp_streamable.registry import ToolRegistry

# Above this magnitude floats are printed in exponent form, so they are left as-is.
_MAX_PLAIN_NUMBER = 1e21


def _format_number(value: float) -> str:
    if isinstance(value, float) and value.is_integer() and abs(value) < _MAX_PLAIN_NUMBER:
        return str(int(value))
    return str(value)


def echo(message: Annotated[str, Field(description="Message to echo")]) -> str:
    return f"Echo: {message}"


def add(
    a: Annotated[float, Field(strict=True, description="First number")],
    b: Annotated[float, Field(strict=True, description="Second number")],
) -> str:
    return f"The sum of {_format_number(a)} and {_format_number(b)} is {_format_number(a + b)}."


def build_registry() -> ToolRegistry:
    """Registry with the ``echo`` and ``add`` tools, in that order."""
    registry = ToolRegistry()
    registry.add_tool(echo, description="Echoes back the input")
    registry.add_tool(add, description="Adds two numbers")
    return registry

"""Tool Registry - the catalog of invocable tools and their argument schemas."""

from __future__ import annotations

import base64
import functools
import inspect
import logging
from collections.abc import Callable, Sequence
from dataclasses import dataclass
from typing import Any, get_type_hints

import pydantic_core
from pydantic import BaseModel, ConfigDict, Field, ValidationError, create_model

from mcp_streamable.exceptions import InvalidArgumentsError, ToolInvocationError, UnknownToolError
from mcp_streamable.types.content import ContentBlock, ImageContent, TextContent
from mcp_streamable.types.tools import JsonSchema, Tool

logger = logging.getLogger(__name__)


@dataclass
class Image:
    """Raw image bytes returned by a tool; sent to the client base64 encoded."""

    data: bytes
    mime_type: str = "image/png"

    def to_image_content(self) -> ImageContent:
        return ImageContent(data=base64.b64encode(self.data).decode(), mime_type=self.mime_type)


class RegisteredTool(BaseModel):
    """Internal tool registration info."""

    model_config = ConfigDict(arbitrary_types_allowed=True)

    fn: Callable[..., Any] = Field(exclude=True)
    name: str = Field(description="Name of the tool")
    description: str = Field(description="Description of what the tool does")
    input_model: type[BaseModel] = Field(description="Pydantic model validating the tool arguments")
    is_async: bool = Field(description="Whether the tool is async")

    @classmethod
    def from_function(
        cls,
        fn: Callable[..., Any],
        name: str | None = None,
        description: str | None = None,
        input_model: type[BaseModel] | None = None,
    ) -> RegisteredTool:
        """Create a RegisteredTool from a function."""
        func_name = name or fn.__name__
        if func_name == "<lambda>":
            raise ValueError("You must provide a name for lambda functions")

        return cls(
            fn=fn,
            name=func_name,
            description=description or inspect.getdoc(fn) or "",
            input_model=input_model or _arguments_model(fn, func_name),
            is_async=_is_async_callable(fn),
        )

    def to_tool(self) -> Tool:
        schema = self.input_model.model_json_schema(by_alias=True)
        return Tool(name=self.name, description=self.description, input_schema=JsonSchema.model_validate(schema))

    async def run(self, arguments: dict[str, Any] | None) -> list[ContentBlock]:
        """Validate the arguments, call the tool and wrap its return value as content."""
        try:
            validated = self.input_model.model_validate(arguments or {})
        except ValidationError as e:
            raise InvalidArgumentsError(
                f"Invalid arguments for tool {self.name}: {e}",
                data=e.errors(include_url=False, include_context=False),
            ) from e

        kwargs = {field: getattr(validated, field) for field in self.input_model.model_fields}
        try:
            if self.is_async:
                result = await self.fn(**kwargs)
            else:
                result = self.fn(**kwargs)
        except Exception as e:
            raise ToolInvocationError(f"Error executing tool {self.name}: {e}") from e
        return convert_to_content(result)


class ToolRegistry:
    """Maps tool names to tools, in registration order."""

    def __init__(self, *, tools: Sequence[RegisteredTool] = ()):
        self._tools: dict[str, RegisteredTool] = {}
        for tool in tools:
            self._register(tool)

    def _register(self, tool: RegisteredTool) -> None:
        if tool.name in self._tools:
            logger.warning(f"Tool already exists: {tool.name}")
            return
        self._tools[tool.name] = tool

    def add_tool(
        self,
        fn: Callable[..., Any],
        name: str | None = None,
        description: str | None = None,
        input_model: type[BaseModel] | None = None,
    ) -> RegisteredTool:
        """Add a tool to the registry."""
        tool = RegisteredTool.from_function(fn, name=name, description=description, input_model=input_model)
        self._register(tool)
        return tool

    def tool(
        self,
        name: str | None = None,
        description: str | None = None,
        input_model: type[BaseModel] | None = None,
    ) -> Callable[[Callable[..., Any]], Callable[..., Any]]:
        """Decorator to register a tool.

        Usage:
            @registry.tool(description="Echoes back the input")
            def echo(message: str) -> str:
                return f"Echo: {message}"
        """

        def decorator(fn: Callable[..., Any]) -> Callable[..., Any]:
            self.add_tool(fn, name=name, description=description, input_model=input_model)
            return fn

        return decorator

    def get_tool(self, name: str) -> RegisteredTool | None:
        return self._tools.get(name)

    def list(self) -> list[Tool]:
        """Descriptors of all registered tools, in registration order."""
        return [tool.to_tool() for tool in self._tools.values()]

    async def invoke(self, name: str, arguments: dict[str, Any] | None) -> list[ContentBlock]:
        """Run a tool by name.

        Raises:
            UnknownToolError: no tool is registered under ``name``
            InvalidArgumentsError: ``arguments`` fail the tool's input model
            ToolInvocationError: the tool raised
        """
        tool = self._tools.get(name)
        if tool is None:
            raise UnknownToolError(name)
        return await tool.run(arguments)

    def __len__(self) -> int:
        return len(self._tools)

    def __contains__(self, name: object) -> bool:
        return name in self._tools


def convert_to_content(result: Any) -> list[ContentBlock]:
    """Convert a tool return value to a list of content items."""
    if result is None:
        return []
    if isinstance(result, TextContent | ImageContent):
        return [result]
    if isinstance(result, Image):
        return [result.to_image_content()]
    if isinstance(result, list | tuple):
        return [item for chunk in result for item in convert_to_content(chunk)]
    if isinstance(result, str):
        return [TextContent(text=result)]
    return [TextContent(text=pydantic_core.to_json(result, fallback=str, indent=2).decode())]


def _arguments_model(fn: Callable[..., Any], name: str) -> type[BaseModel]:
    """Build a pydantic model from the function signature."""
    hints = get_type_hints(fn, include_extras=True)
    fields: dict[str, Any] = {}
    for param in inspect.signature(fn).parameters.values():
        if param.kind in (inspect.Parameter.VAR_POSITIONAL, inspect.Parameter.VAR_KEYWORD):
            continue
        annotation = hints.get(param.name, Any)
        default = ... if param.default is inspect.Parameter.empty else param.default
        fields[param.name] = (annotation, default)
    return create_model(f"{name}Arguments", **fields)


def _is_async_callable(obj: Any) -> bool:
    while isinstance(obj, functools.partial):
        obj = obj.func

    return inspect.iscoroutinefunction(obj) or (
        callable(obj) and inspect.iscoroutinefunction(getattr(obj, "__call__", None))
    )

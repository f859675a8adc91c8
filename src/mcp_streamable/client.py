"""Sample client for the streamable HTTP server.

Connects, lists the available tools, calls ``echo`` and ``add`` and closes the
session again.
"""

from __future__ import annotations

import logging
from types import TracebackType
from typing import Any

import anyio
import click
import httpx

from mcp_streamable.exceptions import McpError
from mcp_streamable.router import MCP_SESSION_ID_HEADER
from mcp_streamable.types.base import INITIALIZED_NOTIFICATION, LATEST_PROTOCOL_VERSION
from mcp_streamable.types.content import TextContent
from mcp_streamable.types.initialize import Implementation, InitializeResult
from mcp_streamable.types.json_rpc import (
    JSONRPCErrorResponse,
    JSONRPCNotification,
    JSONRPCRequest,
    JSONRPCResultResponse,
    serialize_message,
)
from mcp_streamable.types.tools import CallToolResult, ListToolsResult

logger = logging.getLogger(__name__)

DEFAULT_SERVER_URL = "http://localhost:3001/mcp"
DEFAULT_CLIENT_INFO = Implementation(name="mcp-streamablehttp-sample-client", version="1.0.0")


class StreamableHTTPClient:
    """Minimal JSON-RPC client speaking the streamable HTTP transport.

    The session id returned by the server (stateful mode) is echoed on every
    following request and the session is terminated with DELETE on close.

    Usage:
        async with StreamableHTTPClient("http://localhost:3001/mcp") as client:
            tools = await client.list_tools()
    """

    def __init__(
        self,
        url: str,
        *,
        http_client: httpx.AsyncClient | None = None,
        client_info: Implementation | None = None,
        timeout: float = 30,
    ) -> None:
        self.url = url
        self.client_info = client_info or DEFAULT_CLIENT_INFO
        self.session_id: str | None = None
        self.server_info: Implementation | None = None
        self._http = http_client or httpx.AsyncClient(timeout=timeout)
        self._owns_http = http_client is None
        self._request_id = 0

    async def __aenter__(self) -> StreamableHTTPClient:
        await self.initialize()
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: TracebackType | None,
    ) -> None:
        await self.close()

    def _headers(self) -> dict[str, str]:
        headers = {"Accept": "application/json, text/event-stream"}
        if self.session_id:
            headers[MCP_SESSION_ID_HEADER] = self.session_id
        return headers

    async def _post(self, payload: dict[str, Any]) -> httpx.Response:
        response = await self._http.post(self.url, json=payload, headers=self._headers())
        new_session_id = response.headers.get(MCP_SESSION_ID_HEADER)
        if new_session_id:
            logger.debug(f"Got session ID: {new_session_id}")
            self.session_id = new_session_id
        return response

    async def send_request(self, method: str, params: dict[str, Any] | None = None) -> dict[str, Any]:
        """Send a request and return its result; JSON-RPC errors are raised as McpError."""
        self._request_id += 1
        request = JSONRPCRequest(id=self._request_id, method=method, params=params)
        response = await self._post(serialize_message(request))

        data = response.json()
        if isinstance(data, dict) and "error" in data:
            raise McpError(JSONRPCErrorResponse.model_validate(data).error)
        response.raise_for_status()
        return JSONRPCResultResponse.model_validate(data).result

    async def send_notification(self, method: str, params: dict[str, Any] | None = None) -> None:
        response = await self._post(serialize_message(JSONRPCNotification(method=method, params=params)))
        response.raise_for_status()

    async def initialize(self) -> InitializeResult:
        result = await self.send_request(
            "initialize",
            {
                "protocolVersion": LATEST_PROTOCOL_VERSION,
                "capabilities": {},
                "clientInfo": self.client_info.model_dump(),
            },
        )
        initialize_result = InitializeResult.model_validate(result)
        self.server_info = initialize_result.server_info
        await self.send_notification(INITIALIZED_NOTIFICATION)
        return initialize_result

    async def list_tools(self) -> ListToolsResult:
        return ListToolsResult.model_validate(await self.send_request("tools/list"))

    async def call_tool(self, name: str, arguments: dict[str, Any] | None = None) -> CallToolResult:
        result = await self.send_request("tools/call", {"name": name, "arguments": arguments or {}})
        return CallToolResult.model_validate(result)

    async def close(self) -> None:
        """Terminate the session (if the server issued one) and release the HTTP client."""
        if self.session_id is not None:
            try:
                response = await self._http.delete(self.url, headers=self._headers())
                logger.debug(f"Session {self.session_id} terminated with status {response.status_code}")
            except httpx.HTTPError as e:
                logger.warning(f"Failed to terminate session {self.session_id}: {e}")
            self.session_id = None
        if self._owns_http:
            await self._http.aclose()


def _print_text(result: CallToolResult) -> None:
    for item in result.content:
        if isinstance(item, TextContent):
            click.echo(item.text)


async def run_client(url: str) -> None:
    click.echo(f"Connecting to MCP server at: {url}")
    async with StreamableHTTPClient(url) as client:
        click.echo("Connected to server")

        tools = await client.list_tools()
        click.echo("Available tools:")
        for tool in tools.tools:
            click.echo(f"- {tool.name}: {tool.description}")

        click.echo("\nCalling echo tool...")
        _print_text(await client.call_tool("echo", {"message": "Hello, MCP!"}))

        click.echo("\nCalling add tool...")
        _print_text(await client.call_tool("add", {"a": 5, "b": 7}))

        click.echo("\nClosing connection...")
    click.echo("Connection closed")


@click.command()
@click.option("--url", envvar="MCP_SERVER_URL", default=DEFAULT_SERVER_URL, help="URL of the MCP endpoint")
def main(url: str) -> None:
    try:
        anyio.run(run_client, url)
    except (httpx.HTTPError, McpError) as e:
        raise click.ClickException(str(e)) from e

"""Command line entry point for the streamable HTTP server."""

import logging

import click
import uvicorn
from starlette.applications import Starlette

from mcp_streamable.router import SessionRouter
from mcp_streamable.settings import Settings
from mcp_streamable.tools import build_registry
from mcp_streamable.transport.starlette import create_starlette_app
from mcp_streamable.types.initialize import Implementation
from mcp_streamable.utilities.logging import configure_logging

logger = logging.getLogger(__name__)


def create_app(settings: Settings | None = None) -> Starlette:
    """Build the ASGI application for ``settings`` with the sample tools."""
    settings = settings or Settings()
    router = SessionRouter(
        build_registry(),
        stateless=settings.stateless,
        server_info=Implementation(name=settings.server_name, version=settings.server_version),
    )
    return create_starlette_app(router, path=settings.path, debug=settings.log_level == "DEBUG")


@click.command()
@click.option("--host", default=None, help="Host to bind to [env: MCP_HOST]")
@click.option("--port", type=int, default=None, help="Port to listen on for HTTP [env: MCP_PORT or PORT]")
@click.option("--path", default=None, help="Path of the MCP endpoint [env: MCP_PATH]")
@click.option(
    "--stateless/--stateful",
    default=None,
    help="Create a new handler per request, or keep sessions keyed by mcp-session-id [env: MCP_STATELESS]",
)
@click.option(
    "--log-level",
    type=click.Choice(["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"], case_sensitive=False),
    default=None,
    help="Logging level [env: MCP_LOG_LEVEL]",
)
def main(
    host: str | None,
    port: int | None,
    path: str | None,
    stateless: bool | None,
    log_level: str | None,
) -> None:
    options = {"host": host, "port": port, "path": path, "stateless": stateless, "log_level": log_level}
    settings = Settings().model_copy(update={key: value for key, value in options.items() if value is not None})

    configure_logging(settings.log_level)
    app = create_app(settings)

    logger.info(f"Server is running on port {settings.port}")
    logger.info(f"MCP endpoint: http://{settings.host}:{settings.port}{settings.path}")
    # uvicorn stops accepting connections on SIGINT/SIGTERM and lets in-flight requests finish.
    uvicorn.run(app, host=settings.host, port=settings.port, log_level=settings.log_level.lower())

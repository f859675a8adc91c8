"""Starlette Adapter - binds the SessionRouter to POST, GET and DELETE on one path.

This is the only module with a Starlette dependency. It converts HTTP
requests/responses to and from the framework-agnostic SessionRouter.
"""

from __future__ import annotations

import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from typing import Any

from sse_starlette import EventSourceResponse
from starlette.applications import Starlette
from starlette.background import BackgroundTask
from starlette.middleware import Middleware
from starlette.middleware.cors import CORSMiddleware
from starlette.requests import Request
from starlette.responses import JSONResponse, Response
from starlette.routing import Route

from mcp_streamable.router import (
    MCP_SESSION_ID_HEADER,
    AcceptedResult,
    ErrorResult,
    JSONResult,
    SessionRouter,
    StreamResult,
    TerminatedResult,
    normalize_session_id,
    parse_error,
)

logger = logging.getLogger(__name__)

ALLOWED_METHODS = ("GET", "POST", "DELETE")


def _session_headers(session_id: str | None) -> dict[str, str] | None:
    return {MCP_SESSION_ID_HEADER: session_id} if session_id else None


def _render(result: JSONResult | AcceptedResult | ErrorResult | TerminatedResult) -> Response:
    match result:
        case JSONResult(body=body, session_id=sid):
            return JSONResponse(content=body, headers=_session_headers(sid))
        case AcceptedResult(session_id=sid):
            return Response(status_code=202, headers=_session_headers(sid))
        case ErrorResult(status_code=status):
            return JSONResponse(content=result.body, status_code=status)
        case TerminatedResult():
            return Response(status_code=200)
    raise TypeError(f"Unexpected router result: {result!r}")  # pragma: no cover


def _stream_response(router: SessionRouter, result: StreamResult) -> EventSourceResponse:
    async def events() -> AsyncIterator[dict[str, Any]]:
        try:
            async with result.stream:
                async for notification in result.stream:
                    yield {
                        "event": "message",
                        "data": notification.model_dump_json(by_alias=True, exclude_none=True),
                    }
        finally:
            # Runs on client disconnect as well as on session termination.
            await router.release_stream(result)

    # The background task covers a stream that ends before the generator ever ran.
    return EventSourceResponse(
        events(),
        headers=_session_headers(result.session_id),
        background=BackgroundTask(router.release_stream, result),
    )


def create_starlette_app(
    router: SessionRouter,
    *,
    path: str = "/mcp",
    debug: bool = False,
) -> Starlette:
    """Create a Starlette ASGI app serving the router on ``path``.

    Usage:
        router = SessionRouter(build_registry(), stateless=True)
        app = create_starlette_app(router)
        uvicorn.run(app, host="127.0.0.1", port=3001)
    """

    @asynccontextmanager
    async def lifespan(app: Starlette) -> AsyncIterator[None]:
        async with router.run():
            logger.info(f"MCP endpoint ready at {path}")
            yield

    async def handle_mcp(request: Request) -> Response:
        logger.info(f"Received {request.method} request")
        session_id = normalize_session_id(request.headers.get(MCP_SESSION_ID_HEADER))

        try:
            if request.method == "POST":
                body = await request.body()
                return _render(await router.handle_post(session_id, body))
            if request.method == "GET":
                result = await router.handle_get(session_id)
                if isinstance(result, StreamResult):
                    return _stream_response(router, result)
                return _render(result)
            if request.method == "DELETE":
                return _render(await router.handle_delete(session_id))
        except Exception as e:
            logger.exception("Error processing request")
            return _render(parse_error(str(e)))

        return Response(status_code=405, headers={"Allow": ", ".join(ALLOWED_METHODS)})

    return Starlette(
        debug=debug,
        routes=[Route(path, handle_mcp, methods=list(ALLOWED_METHODS))],
        # Expose mcp-session-id to browser-based clients
        middleware=[
            Middleware(
                CORSMiddleware,
                allow_origins=["*"],
                allow_methods=list(ALLOWED_METHODS),
                allow_headers=["*"],
                expose_headers=[MCP_SESSION_ID_HEADER],
            )
        ],
        lifespan=lifespan,
    )

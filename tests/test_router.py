"""Tests for SessionRouter session lifecycle and request routing."""

import json
from typing import Any

import anyio
import pytest

from mcp_streamable.handler import ProtocolHandler
from mcp_streamable.registry import ToolRegistry
from mcp_streamable.router import (
    AcceptedResult,
    ErrorResult,
    JSONResult,
    SessionRouter,
    StreamResult,
    TerminatedResult,
    normalize_session_id,
)
from mcp_streamable.types.base import LATEST_PROTOCOL_VERSION
from mcp_streamable.types.json_rpc import (
    CONNECTION_CLOSED,
    INTERNAL_ERROR,
    INVALID_PARAMS,
    INVALID_REQUEST,
    METHOD_NOT_FOUND,
    PARSE_ERROR,
)

pytestmark = pytest.mark.anyio


def _init_request(id: int | str = 1) -> dict[str, Any]:
    return {
        "jsonrpc": "2.0",
        "id": id,
        "method": "initialize",
        "params": {
            "protocolVersion": LATEST_PROTOCOL_VERSION,
            "capabilities": {},
            "clientInfo": {"name": "test-client", "version": "1.0"},
        },
    }


def _call(id: int, name: str, arguments: dict[str, Any]) -> dict[str, Any]:
    return {"jsonrpc": "2.0", "id": id, "method": "tools/call", "params": {"name": name, "arguments": arguments}}


def _body(payload: Any) -> bytes:
    return json.dumps(payload).encode()


class RecordingRouter(SessionRouter):
    """Keeps every handler it creates."""

    def __init__(self, *args: Any, **kwargs: Any) -> None:
        super().__init__(*args, **kwargs)
        self.created: list[ProtocolHandler] = []

    def _create_handler(self, session_id: str | None = None) -> ProtocolHandler:
        handler = super()._create_handler(session_id)
        self.created.append(handler)
        return handler


async def _initialize(router: SessionRouter) -> str:
    result = await router.handle_post(None, _body(_init_request()))
    assert isinstance(result, JSONResult)
    assert result.session_id is not None
    return result.session_id


async def test_run_can_only_be_called_once(registry: ToolRegistry):
    router = SessionRouter(registry)

    async with router.run():
        pass

    with pytest.raises(RuntimeError, match="can only be called once"):
        async with router.run():
            pass


async def test_requests_outside_run_are_rejected(registry: ToolRegistry):
    router = SessionRouter(registry)

    with pytest.raises(RuntimeError, match="not running"):
        await router.handle_post(None, _body(_init_request()))
    with pytest.raises(RuntimeError, match="not running"):
        await router.handle_get(None)
    with pytest.raises(RuntimeError, match="not running"):
        await router.handle_delete(None)


@pytest.mark.parametrize("stateless", [True, False])
async def test_malformed_body(registry: ToolRegistry, stateless: bool):
    router = SessionRouter(registry, stateless=stateless)

    async with router.run():
        result = await router.handle_post(None, b"{not json")

    assert isinstance(result, ErrorResult)
    assert result.status_code == 400
    assert result.body["id"] is None
    assert result.body["error"]["code"] == PARSE_ERROR
    assert result.body["error"]["message"] == "Parse error"
    assert len(router.sessions) == 0


async def test_invalid_envelope(registry: ToolRegistry):
    router = SessionRouter(registry)

    async with router.run():
        result = await router.handle_post(None, b"[]")

    assert isinstance(result, ErrorResult)
    assert result.status_code == 400
    assert result.body["error"]["code"] == INVALID_REQUEST


class TestStateless:
    async def test_call_without_handshake(self, registry: ToolRegistry):
        router = SessionRouter(registry, stateless=True)

        async with router.run():
            result = await router.handle_post(None, _body(_call(1, "echo", {"message": "hi"})))

        assert isinstance(result, JSONResult)
        assert result.session_id is None
        assert result.body == {
            "jsonrpc": "2.0",
            "id": 1,
            "result": {"content": [{"type": "text", "text": "Echo: hi"}], "isError": False},
        }

    async def test_initialize_issues_no_session(self, registry: ToolRegistry):
        router = SessionRouter(registry, stateless=True)

        async with router.run():
            result = await router.handle_post(None, _body(_init_request()))

        assert isinstance(result, JSONResult)
        assert result.session_id is None
        assert isinstance(result.body, dict)
        assert result.body["result"]["serverInfo"]["name"] == "mcp-streamablehttp-sample-server"

    async def test_each_request_gets_a_fresh_handler(self, registry: ToolRegistry):
        router = RecordingRouter(registry, stateless=True)

        async with router.run():
            for i in range(3):
                await router.handle_post("ignored", _body({"jsonrpc": "2.0", "id": i, "method": "tools/list"}))

        assert len(router.created) == 3
        assert len({id(handler) for handler in router.created}) == 3
        assert all(handler.closed for handler in router.created)
        assert len(router.sessions) == 0

    async def test_failed_request_does_not_leak_into_the_next(self):
        registry = ToolRegistry()

        @registry.tool()
        def explode() -> str:
            raise RuntimeError("boom")

        @registry.tool()
        def ok() -> str:
            return "fine"

        router = RecordingRouter(registry, stateless=True)
        failing = [
            {"jsonrpc": "2.0", "id": 1, "method": "initialize", "params": {}},
            {"jsonrpc": "2.0", "id": 2, "method": "tools/call", "params": {"name": "explode"}},
        ]

        async with router.run():
            first = await router.handle_post(None, _body(failing))
            second = await router.handle_post(None, _body(_call(3, "ok", {})))

        assert isinstance(first, JSONResult)
        assert isinstance(first.body, list)
        assert [response["error"]["code"] for response in first.body] == [INVALID_PARAMS, INTERNAL_ERROR]
        assert isinstance(second, JSONResult)
        assert second.body == {
            "jsonrpc": "2.0",
            "id": 3,
            "result": {"content": [{"type": "text", "text": "fine"}], "isError": False},
        }
        [poisoned, fresh] = router.created
        assert not poisoned.initialized
        assert fresh.initialized
        assert poisoned.closed and fresh.closed

    async def test_session_header_is_ignored(self, registry: ToolRegistry):
        router = SessionRouter(registry, stateless=True)

        async with router.run():
            first = await router.handle_post(None, _body(_init_request()))
            # A second initialize is not rejected because no state survives the first.
            second = await router.handle_post("whatever", _body(_init_request(2)))

        assert isinstance(first, JSONResult)
        assert isinstance(second, JSONResult)
        assert isinstance(second.body, dict)
        assert "result" in second.body

    async def test_notifications_only(self, registry: ToolRegistry):
        router = SessionRouter(registry, stateless=True)

        async with router.run():
            result = await router.handle_post(None, _body({"jsonrpc": "2.0", "method": "notifications/initialized"}))

        assert isinstance(result, AcceptedResult)
        assert result.session_id is None

    async def test_get_opens_stream(self, registry: ToolRegistry):
        router = SessionRouter(registry, stateless=True)

        async with router.run():
            result = await router.handle_get(None)
            assert isinstance(result, StreamResult)
            assert result.session_id is None

            await router.release_stream(result)

        assert result.released
        assert result.handler.closed

    async def test_delete_is_acknowledged(self, registry: ToolRegistry):
        router = SessionRouter(registry, stateless=True)

        async with router.run():
            result = await router.handle_delete(None)

        assert isinstance(result, TerminatedResult)


class TestStateful:
    async def test_initialize_creates_session(self, registry: ToolRegistry):
        router = SessionRouter(registry)

        async with router.run():
            session_id = await _initialize(router)

            assert session_id in router.sessions
            handler = router.sessions.get(session_id)
            assert handler is not None
            assert handler.initialized

    async def test_requests_reuse_the_session(self, registry: ToolRegistry):
        router = RecordingRouter(registry)

        async with router.run():
            session_id = await _initialize(router)
            listed = await router.handle_post(session_id, _body({"jsonrpc": "2.0", "id": 2, "method": "tools/list"}))
            called = await router.handle_post(session_id, _body(_call(3, "add", {"a": 5, "b": 7})))

        assert len(router.created) == 1
        assert isinstance(listed, JSONResult)
        assert listed.session_id == session_id
        assert isinstance(called, JSONResult)
        assert isinstance(called.body, dict)
        assert called.body["result"]["content"][0]["text"] == "The sum of 5 and 7 is 12."

    async def test_sessions_are_isolated(self, registry: ToolRegistry):
        router = SessionRouter(registry)

        async with router.run():
            first = await _initialize(router)
            second = await _initialize(router)

            assert first != second
            assert len(router.sessions) == 2

    async def test_initialize_supersedes_the_named_session(self, registry: ToolRegistry):
        router = SessionRouter(registry)

        async with router.run():
            first = await _initialize(router)
            old_handler = router.sessions.get(first)
            result = await router.handle_post(first, _body(_init_request(2)))

            assert isinstance(result, JSONResult)
            assert result.session_id is not None
            assert result.session_id != first
            assert first not in router.sessions
            assert result.session_id in router.sessions
            assert old_handler is not None and old_handler.closed
            assert len(router.sessions) == 1

    async def test_request_without_live_session_registers_nothing(self, registry: ToolRegistry):
        router = RecordingRouter(registry)

        async with router.run():
            for session_id in (None, "stale"):
                result = await router.handle_post(session_id, _body(_call(1, "echo", {"message": "hi"})))

                assert isinstance(result, JSONResult)
                assert result.session_id is None
                assert isinstance(result.body, dict)
                assert result.body["result"]["content"] == [{"type": "text", "text": "Echo: hi"}]

            assert len(router.sessions) == 0

        assert all(handler.initialized and handler.closed for handler in router.created)

    async def test_session_table_stays_bounded(self, registry: ToolRegistry):
        router = SessionRouter(registry)

        async with router.run():
            session_id = await _initialize(router)
            for i in range(50):
                result = await router.handle_post(session_id, _body(_init_request(i + 2)))
                assert isinstance(result, JSONResult)
                assert result.session_id is not None
                session_id = result.session_id
            for i in range(50):
                await router.handle_post(None, _body({"jsonrpc": "2.0", "id": i, "method": "tools/list"}))

            assert len(router.sessions) == 1
            assert session_id in router.sessions

    async def test_tools_list_is_idempotent(self, registry: ToolRegistry):
        router = SessionRouter(registry)
        list_request = {"jsonrpc": "2.0", "id": 2, "method": "tools/list"}

        async with router.run():
            session_id = await _initialize(router)
            handler = router.sessions.get(session_id)
            assert handler is not None
            state_before = handler.state

            results = [await router.handle_post(session_id, _body(list_request)) for _ in range(3)]

            assert handler.state is state_before
            assert handler.initialized
            assert len(router.sessions) == 1

        bodies = []
        for result in results:
            assert isinstance(result, JSONResult)
            assert isinstance(result.body, dict)
            bodies.append(result.body["result"]["tools"])
        assert bodies[0] == bodies[1] == bodies[2]
        assert [tool["name"] for tool in bodies[0]] == ["echo", "add"]

    async def test_batch_response_skips_notifications(self, registry: ToolRegistry):
        router = SessionRouter(registry)
        batch = [
            _init_request(1),
            {"jsonrpc": "2.0", "method": "notifications/initialized"},
            {"jsonrpc": "2.0", "id": 2, "method": "tools/list"},
        ]

        async with router.run():
            result = await router.handle_post(None, _body(batch))

        assert isinstance(result, JSONResult)
        assert isinstance(result.body, list)
        assert [response["id"] for response in result.body] == [1, 2]

    async def test_single_element_batch_is_a_list(self, registry: ToolRegistry):
        router = SessionRouter(registry, stateless=True)

        async with router.run():
            result = await router.handle_post(None, _body([{"jsonrpc": "2.0", "id": 9, "method": "ping"}]))

        assert isinstance(result, JSONResult)
        assert result.body == [{"jsonrpc": "2.0", "id": 9, "result": {}}]

    async def test_method_errors_keep_the_session(self, registry: ToolRegistry):
        router = SessionRouter(registry)

        async with router.run():
            session_id = await _initialize(router)
            result = await router.handle_post(session_id, _body({"jsonrpc": "2.0", "id": 2, "method": "nope"}))

            assert isinstance(result, JSONResult)
            assert isinstance(result.body, dict)
            assert result.body["error"]["code"] == METHOD_NOT_FOUND
            assert result.session_id == session_id
            assert session_id in router.sessions

    async def test_failed_handshake_is_discarded(self, registry: ToolRegistry):
        router = SessionRouter(registry)
        bad_init = {"jsonrpc": "2.0", "id": 1, "method": "initialize", "params": {}}

        async with router.run():
            result = await router.handle_post(None, _body(bad_init))

            assert isinstance(result, JSONResult)
            assert result.session_id is None
            assert isinstance(result.body, dict)
            assert "error" in result.body
            assert len(router.sessions) == 0

    async def test_get_requires_a_session(self, registry: ToolRegistry):
        router = SessionRouter(registry)

        async with router.run():
            missing = await router.handle_get(None)
            unknown = await router.handle_get("unknown")

        for result in (missing, unknown):
            assert isinstance(result, ErrorResult)
            assert result.status_code == 500
            assert result.body["error"] == {"code": CONNECTION_CLOSED, "message": "Server transport not initialized"}

    async def test_releasing_the_stream_removes_the_session(self, registry: ToolRegistry):
        router = SessionRouter(registry)

        async with router.run():
            session_id = await _initialize(router)
            result = await router.handle_get(session_id)
            assert isinstance(result, StreamResult)
            assert result.session_id == session_id

            await router.release_stream(result)
            await router.release_stream(result)

            assert session_id not in router.sessions
            assert result.handler.closed

    async def test_delete_terminates_session(self, registry: ToolRegistry):
        router = SessionRouter(registry)

        async with router.run():
            session_id = await _initialize(router)
            handler = router.sessions.get(session_id)

            deleted = await router.handle_delete(session_id)
            again = await router.handle_delete(session_id)
            missing = await router.handle_delete(None)

        assert isinstance(deleted, TerminatedResult)
        assert deleted.session_id == session_id
        assert handler is not None and handler.closed
        assert isinstance(again, ErrorResult)
        assert again.status_code == 500
        assert isinstance(missing, ErrorResult)

    async def test_delete_ends_an_open_stream(self, registry: ToolRegistry):
        router = SessionRouter(registry)

        async with router.run():
            session_id = await _initialize(router)
            result = await router.handle_get(session_id)
            assert isinstance(result, StreamResult)

            await router.handle_delete(session_id)

            with anyio.fail_after(5):
                received = [notification async for notification in result.stream]
            assert received == []
            await router.release_stream(result)

    async def test_shutdown_closes_sessions(self, registry: ToolRegistry):
        router = SessionRouter(registry)

        async with router.run():
            session_id = await _initialize(router)
            handler = router.sessions.get(session_id)

        assert handler is not None
        assert handler.closed
        assert len(router.sessions) == 0


@pytest.mark.parametrize(
    ("value", "expected"),
    [(None, None), ("", None), ("  ", None), ("abc123", "abc123"), (" abc ", "abc"), ("has space", None), ("é", None)],
)
def test_normalize_session_id(value: str | None, expected: str | None):
    assert normalize_session_id(value) == expected

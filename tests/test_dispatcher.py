from __future__ import annotations

import logging
from typing import Any, Dict, List

import pytest

from tracker_mcp.core.config import PROTOCOL_VERSION
from tracker_mcp.main import build_dispatcher
from tracker_mcp.models.json_rpc import INVALID_PARAMS, INVALID_REQUEST, METHOD_NOT_FOUND
from tracker_mcp.services.dispatcher import McpDispatcher
from tracker_mcp.tools.registry import TOOLS


class FakeStream:
    def __init__(self, *, open_: bool = True) -> None:
        self.open = open_
        self.sent: List[Any] = []

    def send(self, message: Any) -> bool:
        if not self.open:
            return False
        self.sent.append(message)
        return True


@pytest.fixture()
def dispatcher() -> McpDispatcher:
    def echo(arguments: Dict[str, Any]) -> Dict[str, Any]:
        return {"content": [{"type": "text", "text": arguments.get("text", "")}], "isError": False}

    return McpDispatcher(tools=TOOLS, handlers={"echo": echo})


def test_initialize_reports_protocol_and_capabilities(dispatcher: McpDispatcher) -> None:
    reply = dispatcher.handle_message(
        {
            "jsonrpc": "2.0",
            "id": 1,
            "method": "initialize",
            "params": {"protocolVersion": PROTOCOL_VERSION, "clientInfo": {"name": "pytest"}},
        }
    )

    assert reply["id"] == 1
    assert reply["result"]["protocolVersion"] == PROTOCOL_VERSION
    assert reply["result"]["serverInfo"]["name"] == "tracker-mcp"
    assert "tools" in reply["result"]["capabilities"]


def test_tools_list_exposes_all_jira_tools() -> None:
    reply = build_dispatcher(None).handle_message({"jsonrpc": "2.0", "id": "list", "method": "tools/list"})

    names = [tool["name"] for tool in reply["result"]["tools"]]
    assert len(names) == 19
    assert all(name.startswith("jira_") for name in names)
    assert "jira_get_issue" in names
    get_issue = next(tool for tool in reply["result"]["tools"] if tool["name"] == "jira_get_issue")
    assert get_issue["inputSchema"]["required"] == ["issue_key"]


def test_tools_call_routes_to_handler(dispatcher: McpDispatcher) -> None:
    reply = dispatcher.handle_message(
        {
            "jsonrpc": "2.0",
            "id": 7,
            "method": "tools/call",
            "params": {"name": "echo", "arguments": {"text": "hello"}},
        }
    )

    assert reply == {
        "jsonrpc": "2.0",
        "result": {"content": [{"type": "text", "text": "hello"}], "isError": False},
        "id": 7,
    }


def test_tools_call_unknown_tool(dispatcher: McpDispatcher) -> None:
    reply = dispatcher.handle_message(
        {"jsonrpc": "2.0", "id": 2, "method": "tools/call", "params": {"name": "missing"}}
    )

    assert reply["error"]["code"] == METHOD_NOT_FOUND
    assert reply["error"]["data"] == {"available": ["echo"]}
    assert reply["id"] == 2


def test_tools_call_with_invalid_params(dispatcher: McpDispatcher) -> None:
    reply = dispatcher.handle_message(
        {"jsonrpc": "2.0", "id": 3, "method": "tools/call", "params": {"name": "echo", "arguments": "oops"}}
    )

    assert reply["error"]["code"] == INVALID_PARAMS


def test_unknown_method(dispatcher: McpDispatcher) -> None:
    reply = dispatcher.handle_message({"jsonrpc": "2.0", "id": 4, "method": "resources/list"})

    assert reply["error"] == {"code": METHOD_NOT_FOUND, "message": "Method not found", "data": {"method": "resources/list"}}


def test_invalid_request_keeps_id(dispatcher: McpDispatcher) -> None:
    reply = dispatcher.handle_message({"jsonrpc": "1.0", "id": 5, "method": "ping"})

    assert reply["error"]["code"] == INVALID_REQUEST
    assert reply["id"] == 5


def test_notifications_get_no_reply(dispatcher: McpDispatcher) -> None:
    assert dispatcher.handle_message({"jsonrpc": "2.0", "method": "notifications/initialized"}) is None
    assert dispatcher.handle_message({"jsonrpc": "2.0", "method": "ping"}) is None


def test_client_responses_are_ignored(dispatcher: McpDispatcher) -> None:
    assert dispatcher.handle_message({"jsonrpc": "2.0", "id": 9, "result": {}}) is None
    assert dispatcher.handle_message({"jsonrpc": "2.0", "id": 9, "error": {"code": 1, "message": "x"}}) is None


def test_batch_replies_skip_notifications(dispatcher: McpDispatcher) -> None:
    reply = dispatcher.handle_message(
        [
            {"jsonrpc": "2.0", "id": 1, "method": "ping"},
            {"jsonrpc": "2.0", "method": "notifications/initialized"},
            {"jsonrpc": "2.0", "id": 2, "method": "ping"},
        ]
    )

    assert reply == [
        {"jsonrpc": "2.0", "result": {}, "id": 1},
        {"jsonrpc": "2.0", "result": {}, "id": 2},
    ]


def test_empty_batch_is_invalid(dispatcher: McpDispatcher) -> None:
    reply = dispatcher.handle_message([])

    assert reply["error"]["code"] == INVALID_REQUEST
    assert reply["id"] is None


def test_batch_of_notifications_has_no_reply(dispatcher: McpDispatcher) -> None:
    assert dispatcher.handle_message([{"jsonrpc": "2.0", "method": "notifications/initialized"}]) is None


def test_deliver_pushes_reply_to_stream(dispatcher: McpDispatcher) -> None:
    stream = FakeStream()

    dispatcher.deliver("session-1", stream, {"jsonrpc": "2.0", "id": 1, "method": "ping"})

    assert stream.sent == [{"jsonrpc": "2.0", "result": {}, "id": 1}]


def test_deliver_drops_reply_for_closed_stream(
    dispatcher: McpDispatcher, caplog: pytest.LogCaptureFixture
) -> None:
    stream = FakeStream(open_=False)

    with caplog.at_level(logging.INFO, logger="tracker_mcp.services.dispatcher"):
        dispatcher.deliver("gone", stream, {"jsonrpc": "2.0", "id": 1, "method": "ping"})

    assert stream.sent == []
    assert "Session gone closed before delivery" in caplog.text

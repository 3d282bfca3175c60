from __future__ import annotations

import io
import json

from tracker_mcp.main import build_dispatcher
from tracker_mcp.models.json_rpc import PARSE_ERROR
from tracker_mcp.services.stdio_transport import serve_stdio


def run_lines(*lines: str) -> list:
    stdin = io.StringIO("".join(line + "\n" for line in lines))
    stdout = io.StringIO()
    serve_stdio(build_dispatcher(None), stdin=stdin, stdout=stdout)
    return [json.loads(line) for line in stdout.getvalue().splitlines()]


def test_requests_get_one_reply_per_line() -> None:
    replies = run_lines(
        json.dumps({"jsonrpc": "2.0", "id": 1, "method": "initialize", "params": {}}),
        json.dumps({"jsonrpc": "2.0", "method": "notifications/initialized"}),
        "",
        json.dumps({"jsonrpc": "2.0", "id": 2, "method": "tools/list"}),
    )

    assert [reply["id"] for reply in replies] == [1, 2]
    assert replies[0]["result"]["serverInfo"]["name"] == "tracker-mcp"
    assert len(replies[1]["result"]["tools"]) == 19


def test_malformed_line_yields_parse_error_and_keeps_serving() -> None:
    replies = run_lines("{not json", json.dumps({"jsonrpc": "2.0", "id": 3, "method": "ping"}))

    assert replies[0] == {"jsonrpc": "2.0", "error": {"code": PARSE_ERROR, "message": "Parse error"}, "id": None}
    assert replies[1] == {"jsonrpc": "2.0", "result": {}, "id": 3}


def test_returns_number_of_handled_lines() -> None:
    stdin = io.StringIO('\n{"jsonrpc": "2.0", "id": 1, "method": "ping"}\n\n')

    assert serve_stdio(build_dispatcher(None), stdin=stdin, stdout=io.StringIO()) == 1

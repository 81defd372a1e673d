"""Wire-level integration tests for MCP transport contract."""

from __future__ import annotations

import json
import subprocess
import sys

_INITIALIZE = [
    {
        "jsonrpc": "2.0",
        "id": 1,
        "method": "initialize",
        "params": {
            "protocolVersion": "2025-11-25",
            "capabilities": {},
            "clientInfo": {"name": "pytest", "version": "0"},
        },
    },
    {"jsonrpc": "2.0", "method": "notifications/initialized"},
]


def _run_mcp_exchange(env: dict[str, str], messages: list[dict]) -> list[dict]:

    proc = subprocess.Popen(
        [sys.executable, "-m", "rfcli.server"],
        stdin=subprocess.PIPE,
        stdout=subprocess.PIPE,
        stderr=subprocess.PIPE,
        text=True,
        env=env,
    )

    assert proc.stdin is not None
    assert proc.stdout is not None
    assert proc.stderr is not None

    for message in messages:
        proc.stdin.write(json.dumps(message) + "\n")
    proc.stdin.flush()

    # Read responses line-by-line until every request ID has been answered.
    #
    # The stdio transport dispatches tool handlers concurrently and keeps
    # reading stdin. Closing stdin before the handlers finish tears down the
    # write stream and drops in-flight responses, so read first.
    expected_ids = frozenset(msg["id"] for msg in messages if "id" in msg)
    responses: list[dict] = []
    seen_ids: set = set()
    while seen_ids < expected_ids:
        line = proc.stdout.readline()
        if not line:  # server exited before answering all requests
            break
        stripped = line.strip()
        if stripped:
            resp = json.loads(stripped)
            responses.append(resp)
            rid = resp.get("id")
            if rid is not None:
                seen_ids.add(rid)

    proc.stdin.close()
    proc.stderr.read()  # drain for reliable process shutdown
    proc.wait(timeout=10)
    proc.stdout.close()
    proc.stderr.close()

    return responses


def _tool_call(request_id: int, name: str, arguments: dict) -> dict:
    return {
        "jsonrpc": "2.0",
        "id": request_id,
        "method": "tools/call",
        "params": {"name": name, "arguments": arguments},
    }


def _result(responses: list[dict], request_id: int) -> dict:
    return next(response for response in responses if response.get("id") == request_id)[
        "result"
    ]


def test_initialize_and_tools_list_contract(subprocess_env: dict[str, str]) -> None:
    responses = _run_mcp_exchange(
        subprocess_env,
        [*_INITIALIZE, {"jsonrpc": "2.0", "id": 2, "method": "tools/list", "params": {}}],
    )

    init_result = _result(responses, 1)
    assert init_result["protocolVersion"] in {"2025-11-25", "2025-06-18", "2025-03-26"}
    assert init_result["serverInfo"]["name"] == "rfcli"
    assert "tools" in init_result["capabilities"]

    tools_by_name = {tool["name"]: tool for tool in _result(responses, 2)["tools"]}
    assert set(tools_by_name) == {"search_rfcs", "get_rfc_tldr", "list_rfcs", "read_rfc"}

    search_schema = tools_by_name["search_rfcs"]["inputSchema"]
    assert search_schema["type"] == "object"
    assert "query" in search_schema["required"]

    tldr_schema = tools_by_name["get_rfc_tldr"]["inputSchema"]
    assert "number" in tldr_schema["required"]

    read_schema = tools_by_name["read_rfc"]["inputSchema"]
    assert "number" in read_schema["required"]
    assert read_schema["properties"]["offset"]["type"] == "integer"
    assert read_schema["properties"]["limit"]["type"] == "integer"


def test_search_rfcs_wire_success(subprocess_env: dict[str, str]) -> None:
    responses = _run_mcp_exchange(
        subprocess_env,
        [*_INITIALIZE, _tool_call(2, "search_rfcs", {"query": "tls13", "limit": 5})],
    )

    result = _result(responses, 2)
    assert result["isError"] is False

    payload = json.loads(result["content"][0]["text"])
    assert payload["query"] == "tls13"
    assert payload["matches"][0]["number"] == 8446


def test_get_rfc_tldr_wire_success_from_cache(subprocess_env: dict[str, str]) -> None:
    responses = _run_mcp_exchange(
        subprocess_env,
        [*_INITIALIZE, _tool_call(2, "get_rfc_tldr", {"number": 8446})],
    )

    result = _result(responses, 2)
    assert result["isError"] is False

    payload = json.loads(result["content"][0]["text"])
    assert payload == {
        "number": 8446,
        "title": "The Transport Layer Security (TLS) Protocol Version 1.3",
        "tldr": "- TLS 1.3: faster, safer handshakes",
    }


def test_list_rfcs_wire_success(subprocess_env: dict[str, str]) -> None:
    responses = _run_mcp_exchange(
        subprocess_env,
        [*_INITIALIZE, _tool_call(2, "list_rfcs", {"status": "standards track", "limit": 2})],
    )

    result = _result(responses, 2)
    assert result["isError"] is False

    payload = json.loads(result["content"][0]["text"])
    assert payload["total"] == 3
    assert [row["number"] for row in payload["records"]] == [5246, 8446]
    assert payload["records"][1]["has_tldr"] is True


def test_read_rfc_wire_error_envelope(subprocess_env: dict[str, str]) -> None:
    responses = _run_mcp_exchange(
        subprocess_env,
        [*_INITIALIZE, _tool_call(2, "read_rfc", {"number": 0})],
    )

    result = _result(responses, 2)
    assert result["isError"] is True

    payload = json.loads(result["content"][0]["text"])
    assert payload["error"]["code"] == "VALIDATION_ERROR"
    assert payload["error"]["recoverable"] is False

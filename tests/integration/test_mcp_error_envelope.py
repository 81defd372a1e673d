"""Wire-level tests: every rfcli tool reports bad input as a structured error.

One server session receives a rejected call for each tool, followed by a
valid search, so the tests also show that an error result leaves the
session usable.
"""

from __future__ import annotations

import json
import subprocess
import sys

import pytest

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

# request id -> (tool, arguments, text the handler's suggestion must contain)
_REJECTED_CALLS = {
    10: ("search_rfcs", {"query": "tls", "limit": 0}, "limit between 1 and 1000"),
    11: ("search_rfcs", {"query": "x" * 201}, "at most 200 characters"),
    12: ("get_rfc_tldr", {"number": 0}, "e.g. 8446"),
    13: ("list_rfcs", {"status": "draft"}, "Standards Track"),
    14: ("list_rfcs", {"offset": -1}, "Offset >= 0"),
    15: ("read_rfc", {"number": 8446, "offset": 0}, "offset >= 1"),
}
_VALID_SEARCH_ID = 20


def _tool_call(request_id: int, name: str, arguments: dict) -> dict:
    return {
        "jsonrpc": "2.0",
        "id": request_id,
        "method": "tools/call",
        "params": {"name": name, "arguments": arguments},
    }


@pytest.fixture()
def responses(subprocess_env: dict[str, str]) -> dict[int, dict]:
    """Responses by request id from one server session."""
    messages = [
        *_INITIALIZE,
        *(_tool_call(rid, tool, args) for rid, (tool, args, _) in _REJECTED_CALLS.items()),
        _tool_call(_VALID_SEARCH_ID, "search_rfcs", {"query": "tls13", "limit": 3}),
    ]
    expected_ids = {msg["id"] for msg in messages if "id" in msg}

    proc = subprocess.Popen(
        [sys.executable, "-m", "rfcli.server"],
        stdin=subprocess.PIPE,
        stdout=subprocess.PIPE,
        stderr=subprocess.PIPE,
        text=True,
        env=subprocess_env,
    )
    assert proc.stdin is not None
    assert proc.stdout is not None
    assert proc.stderr is not None

    for message in messages:
        proc.stdin.write(json.dumps(message) + "\n")
    proc.stdin.flush()

    # Handlers run concurrently; keep stdin open until every id is answered.
    by_id: dict[int, dict] = {}
    while set(by_id) < expected_ids:
        line = proc.stdout.readline()
        if not line:
            break
        if line.strip():
            response = json.loads(line)
            if response.get("id") is not None:
                by_id[response["id"]] = response

    proc.stdin.close()
    proc.stderr.read()
    proc.wait(timeout=10)
    proc.stdout.close()
    proc.stderr.close()
    return by_id


def _error_payload(response: dict) -> dict:
    result = response["result"]
    assert result["isError"] is True
    text = result["content"][0]["text"]
    assert "Error executing tool" not in text
    return json.loads(text)["error"]


@pytest.mark.parametrize("request_id", sorted(_REJECTED_CALLS))
def test_rejected_call_returns_validation_envelope(
    responses: dict[int, dict], request_id: int
) -> None:
    tool, _args, hint = _REJECTED_CALLS[request_id]
    error = _error_payload(responses[request_id])

    assert error["code"] == "VALIDATION_ERROR", tool
    assert error["recoverable"] is False
    assert error["message"]
    assert hint in error["suggestion"]


def test_session_keeps_serving_after_errors(responses: dict[int, dict]) -> None:
    result = responses[_VALID_SEARCH_ID]["result"]
    assert result["isError"] is False
    payload = json.loads(result["content"][0]["text"])
    assert payload["matches"][0]["number"] == 8446

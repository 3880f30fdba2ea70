import io
import json
import sys
from pathlib import Path

import pytest

from server import (
    MCPServer,
    ProcessBridge,
    ToolExecutionError,
    first_line,
)


class FakeBridge:
    def __init__(self, result=None, error=None):
        self.calls = []
        self.result = result or {"command_logs": "", "interactive_feedback": "ok"}
        self.error = error

    async def run(self, project_directory, summary):
        self.calls.append((project_directory, summary))
        if self.error is not None:
            raise self.error
        return self.result


def make_server(bridge=None):
    sent = []
    server = MCPServer(bridge=bridge or FakeBridge(), write=lambda line: sent.append(json.loads(line)))
    return server, sent


def request(method, params=None, request_id=1):
    message = {"jsonrpc": "2.0", "id": request_id, "method": method}
    if params is not None:
        message["params"] = params
    return json.dumps(message)


def test_first_line():
    assert first_line("a\nb\n") == "a"
    assert first_line("") == ""
    assert first_line("  padded  \nrest") == "padded"
    assert first_line(None) == ""


@pytest.mark.asyncio
async def test_parse_error_then_keeps_serving():
    server, sent = make_server()
    await server.handle_chunk("{not json\n")
    await server.handle_chunk(request("ping", request_id=7) + "\n")

    assert len(sent) == 2
    assert sent[0]["error"]["code"] == -32700
    assert sent[0]["id"] is None
    assert sent[1] == {"jsonrpc": "2.0", "id": 7, "result": {}}


@pytest.mark.asyncio
async def test_chunk_with_several_messages():
    server, sent = make_server()
    chunk = request("ping", request_id=1) + "\n" + request("ping", request_id=2) + "\n"
    await server.handle_chunk(chunk)
    assert [m["id"] for m in sent] == [1, 2]


@pytest.mark.asyncio
async def test_invalid_version_rejected():
    server, sent = make_server()
    await server.handle_chunk(json.dumps({"jsonrpc": "1.0", "id": 3, "method": "tools/list"}))
    assert sent[0]["error"]["code"] == -32600
    assert sent[0]["id"] == 3


@pytest.mark.asyncio
async def test_unknown_method():
    server, sent = make_server()
    await server.handle_chunk(request("resources/list"))
    assert sent[0]["error"]["code"] == -32601


@pytest.mark.asyncio
async def test_initialize_and_initialized_notification():
    server, sent = make_server()
    await server.handle_chunk(
        request("initialize", {"protocolVersion": "2024-11-05", "capabilities": {"roots": {}}})
    )
    await server.handle_chunk(json.dumps({"jsonrpc": "2.0", "method": "notifications/initialized"}))

    assert len(sent) == 1
    result = sent[0]["result"]
    assert result["protocolVersion"] == "2024-11-05"
    assert result["serverInfo"]["name"] == "interactive-feedback-mcp"
    assert result["capabilities"]["tools"]["listChanged"] is False
    assert server.client_capabilities == {"roots": {}}
    assert server.initialized is True


@pytest.mark.asyncio
async def test_tools_list():
    server, sent = make_server()
    await server.handle_chunk(request("tools/list"))
    tools = sent[0]["result"]["tools"]
    assert [t["name"] for t in tools] == ["interactive_feedback"]
    schema = tools[0]["inputSchema"]
    assert set(schema["required"]) == {"project_directory", "summary"}
    assert schema["properties"]["summary"]["type"] == "string"


@pytest.mark.asyncio
async def test_unknown_tool_is_invalid_params():
    server, sent = make_server()
    await server.handle_chunk(request("tools/call", {"name": "nope", "arguments": {}}))
    await server.handle_chunk(request("ping", request_id=2))
    assert sent[0]["error"]["code"] == -32602
    assert "nope" in sent[0]["error"]["data"]
    assert sent[1]["result"] == {}


@pytest.mark.asyncio
async def test_missing_arguments_are_invalid_params():
    server, sent = make_server()
    await server.handle_chunk(
        request("tools/call", {"name": "interactive_feedback", "arguments": {"summary": "x"}})
    )
    assert sent[0]["error"]["code"] == -32602


@pytest.mark.asyncio
async def test_tool_call_uses_first_lines():
    bridge = FakeBridge(result={"command_logs": "$ ls\n", "interactive_feedback": "fine"})
    server, sent = make_server(bridge)
    await server.handle_chunk(
        request(
            "tools/call",
            {
                "name": "interactive_feedback",
                "arguments": {"project_directory": "/tmp/proj\n--evil", "summary": "Implemented X\nDetails: ..."},
            },
        )
    )
    assert bridge.calls == [("/tmp/proj", "Implemented X")]
    content = sent[0]["result"]["content"]
    assert content[0]["type"] == "text"
    assert json.loads(content[0]["text"]) == {"command_logs": "$ ls\n", "interactive_feedback": "fine"}


@pytest.mark.asyncio
async def test_tool_failure_is_internal_error():
    server, sent = make_server(FakeBridge(error=ToolExecutionError("Feedback UI exited with code 1")))
    await server.handle_chunk(
        request("tools/call", {"name": "interactive_feedback", "arguments": {"project_directory": "/p", "summary": "s"}})
    )
    assert sent[0]["error"]["code"] == -32603
    assert "exited with code 1" in sent[0]["error"]["data"]


@pytest.mark.asyncio
async def test_unexpected_handler_exception_is_internal_error():
    server, sent = make_server(FakeBridge(error=KeyError("boom")))
    await server.handle_chunk(
        request("tools/call", {"name": "interactive_feedback", "arguments": {"project_directory": "/p", "summary": "s"}})
    )
    await server.handle_chunk(request("ping", request_id=2))
    assert sent[0]["error"]["code"] == -32603
    assert sent[1]["id"] == 2


FAKE_UI = """
import argparse
import json

parser = argparse.ArgumentParser()
parser.add_argument("--project-directory")
parser.add_argument("--prompt")
parser.add_argument("--output-file")
args = parser.parse_args()
with open(args.output_file, "w") as f:
    json.dump({"command_logs": "", "interactive_feedback": "Looks good, ship it"}, f)
"""


@pytest.mark.asyncio
async def test_end_to_end_with_stand_in_ui(tmp_path: Path):
    script = tmp_path / "fake_ui.py"
    script.write_text(FAKE_UI)
    server, sent = make_server(ProcessBridge(script_path=str(script), python_executable=sys.executable))

    await server.handle_chunk(
        request(
            "tools/call",
            {
                "name": "interactive_feedback",
                "arguments": {"project_directory": "/tmp/proj", "summary": "Implemented X\nDetails: ..."},
            },
        )
    )

    text = sent[0]["result"]["content"][0]["text"]
    assert json.loads(text) == {"command_logs": "", "interactive_feedback": "Looks good, ship it"}


def test_stdout_is_utf8_regardless_of_locale(monkeypatch):
    raw = io.BytesIO()
    monkeypatch.setattr(sys, "stdout", io.TextIOWrapper(raw, encoding="cp1252"))
    server = MCPServer(bridge=FakeBridge())

    server.send_message({"jsonrpc": "2.0", "id": 1, "result": {"text": "Läuft… ✓"}})

    line = raw.getvalue()
    assert line.endswith(b"\n")
    assert json.loads(line.decode("utf-8"))["result"]["text"] == "Läuft… ✓"

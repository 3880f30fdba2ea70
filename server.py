# Interactive Feedback MCP
# Developed by Fábio Ferreira (https://x.com/fabiomlferreira)
# Inspired by/related to dotcursorrules.com (https://dotcursorrules.com/)
import os
import sys
import json
import enum
import signal
import asyncio
import logging
import tempfile
import threading
from typing import Annotated, Any, Callable, Optional, TypedDict

from mcp.shared.version import SUPPORTED_PROTOCOL_VERSIONS
from mcp.types import (
    INTERNAL_ERROR,
    INVALID_PARAMS,
    INVALID_REQUEST,
    LATEST_PROTOCOL_VERSION,
    METHOD_NOT_FOUND,
    PARSE_ERROR,
    CallToolResult,
    ErrorData,
    Implementation,
    InitializeResult,
    ListToolsResult,
    ServerCapabilities,
    TextContent,
    Tool,
    ToolsCapability,
)
from pydantic import BaseModel, Field, ValidationError

logger = logging.getLogger(__name__)

SERVER_NAME = "interactive-feedback-mcp"
SERVER_VERSION = "1.0.0"


class FeedbackResult(TypedDict):
    command_logs: str
    interactive_feedback: str


class ToolExecutionError(RuntimeError):
    pass


def first_line(text: str) -> str:
    if not text or not isinstance(text, str):
        return ""
    return text.split("\n")[0].strip()


def _discard(path: str) -> None:
    # Cleanup never masks the outcome it follows
    try:
        if os.path.exists(path):
            os.unlink(path)
    except OSError as e:
        logger.warning("Could not remove handoff file %s: %s", path, e)


def default_python_executable() -> str:
    python_exe = sys.executable

    # Check if we're in a virtual environment and if so, use the venv python
    if hasattr(sys, "base_prefix") and sys.base_prefix != sys.prefix:
        if sys.platform == "win32":
            venv_python = os.path.join(sys.prefix, "Scripts", "python.exe")
        else:
            venv_python = os.path.join(sys.prefix, "bin", "python")
        if os.path.exists(venv_python):
            python_exe = venv_python
    return python_exe


class ProcessBridge:
    """Runs the feedback UI as a child process and collects its handoff file.

    The child is the only writer of the handoff file and this bridge the only
    reader; the file is read strictly after the child has exited.
    """

    def __init__(self, script_path: Optional[str] = None, python_executable: Optional[str] = None):
        if script_path is None:
            script_dir = os.path.dirname(os.path.abspath(__file__))
            script_path = os.path.join(script_dir, "feedback_ui.py")
        self.script_path = os.path.abspath(script_path)
        self.python_executable = python_executable or default_python_executable()

    async def run(self, project_directory: str, summary: str) -> FeedbackResult:
        # Create a temporary file for the feedback result
        with tempfile.NamedTemporaryFile(prefix="feedback-", suffix=".json", delete=False) as tmp:
            output_file = tmp.name

        try:
            if not os.path.exists(self.script_path):
                raise ToolExecutionError(f"feedback_ui.py not found at: {self.script_path}")

            args = [
                "-u",
                self.script_path,
                "--project-directory",
                project_directory,
                "--prompt",
                summary,
                "--output-file",
                output_file,
            ]
            try:
                process = await asyncio.create_subprocess_exec(
                    self.python_executable,
                    *args,
                    stdin=asyncio.subprocess.DEVNULL,
                    stdout=asyncio.subprocess.DEVNULL,
                    stderr=asyncio.subprocess.DEVNULL,
                    close_fds=True,
                )
            except OSError as e:
                raise ToolExecutionError(f"Failed to launch feedback UI: {e}") from e

            logger.info("Feedback UI started (pid %s)", process.pid)
            returncode = await process.wait()
            if returncode != 0:
                raise ToolExecutionError(f"Feedback UI exited with code {returncode}")

            # Read the result from the temporary file
            try:
                with open(output_file, "r", encoding="utf-8") as f:
                    result = json.load(f)
            except (OSError, ValueError) as e:
                raise ToolExecutionError(f"Could not read feedback result: {e}") from e
            if not isinstance(result, dict):
                raise ToolExecutionError("Feedback result is not a JSON object")

            return FeedbackResult(
                command_logs=str(result.get("command_logs", "")),
                interactive_feedback=str(result.get("interactive_feedback", "")),
            )
        finally:
            _discard(output_file)


class InteractiveFeedbackArgs(BaseModel):
    project_directory: Annotated[
        str, Field(description="Full path to the project directory")
    ]
    summary: Annotated[
        str,
        Field(description="Brief one-line summary of changes or question to ask the user"),
    ]


class ToolName(str, enum.Enum):
    INTERACTIVE_FEEDBACK = "interactive_feedback"


INTERACTIVE_FEEDBACK_DESCRIPTION = """Interactive Feedback Tool for MCP (Model Context Protocol)

This tool enables AI assistants to request real-time feedback from users during coding sessions.
It opens an interactive feedback page in the browser where users can review a summary, run
commands in the project directory, and give directions.

Parameters:
- project_directory: Full path to the project directory being worked on
- summary: Brief one-line summary of changes made, or a specific question to ask the user

Returns the collected command logs and the user's feedback as JSON."""


def tool_definitions() -> list[Tool]:
    tools = []
    for tool in ToolName:
        if tool is ToolName.INTERACTIVE_FEEDBACK:
            tools.append(
                Tool(
                    name=tool.value,
                    description=INTERACTIVE_FEEDBACK_DESCRIPTION,
                    inputSchema=InteractiveFeedbackArgs.model_json_schema(),
                )
            )
        else:
            raise AssertionError(f"Unhandled tool: {tool}")
    return tools


class JSONRPCException(Exception):
    def __init__(self, code: int, message: str, data: Any = None):
        super().__init__(message)
        self.code = code
        self.message = message
        self.data = data


def _dump(model: BaseModel) -> dict[str, Any]:
    return model.model_dump(mode="json", by_alias=True, exclude_none=True)


def error_response(request_id: Any, code: int, message: str, data: Any = None) -> dict[str, Any]:
    return {
        "jsonrpc": "2.0",
        "id": request_id,
        "error": _dump(ErrorData(code=code, message=message, data=data)),
    }


class MCPServer:
    """JSON-RPC 2.0 over newline-delimited stdio, serving one tool."""

    def __init__(
        self,
        bridge: Optional[ProcessBridge] = None,
        write: Optional[Callable[[str], None]] = None,
    ):
        self.bridge = bridge or ProcessBridge()
        self._write = write or self._write_stdout
        self.initialized = False
        self.client_capabilities: dict[str, Any] = {}
        self._tasks: set[asyncio.Task] = set()

    @staticmethod
    def _write_stdout(line: str) -> None:
        # Always UTF-8, whatever the console code page is
        sys.stdout.buffer.write(line.encode("utf-8"))
        sys.stdout.buffer.flush()

    def send_message(self, message: dict[str, Any]) -> None:
        self._write(json.dumps(message, ensure_ascii=False) + "\n")

    async def handle_chunk(self, chunk: str) -> None:
        """Handle one chunk of input, which may hold several messages.

        A line that fails to parse aborts the rest of the chunk with a single
        parse error.
        """
        for line in chunk.strip().split("\n"):
            if not line.strip():
                continue
            try:
                message = json.loads(line)
            except ValueError as e:
                self.send_message(error_response(None, PARSE_ERROR, "Parse error", str(e)))
                return
            response = await self.handle_message(message)
            if response is not None:
                self.send_message(response)

    async def handle_message(self, message: Any) -> Optional[dict[str, Any]]:
        if not isinstance(message, dict):
            return error_response(None, INVALID_REQUEST, "Invalid Request", "Message must be an object")

        request_id = message.get("id")
        is_notification = "id" not in message
        if message.get("jsonrpc") != "2.0":
            return error_response(request_id, INVALID_REQUEST, "Invalid Request", "Invalid JSON-RPC version")

        method = message.get("method")
        params = message.get("params") or {}
        try:
            if not isinstance(method, str):
                raise JSONRPCException(INVALID_REQUEST, "Invalid Request", "Missing method")
            if not isinstance(params, dict):
                raise JSONRPCException(INVALID_PARAMS, "Invalid params", "params must be an object")
            result = await self.dispatch(method, params, is_notification)
        except JSONRPCException as e:
            if is_notification:
                logger.warning("Dropping error for notification %s: %s", method, e.data)
                return None
            return error_response(request_id, e.code, e.message, e.data)
        except Exception as e:
            logger.exception("Request %s failed", method)
            if is_notification:
                return None
            return error_response(request_id, INTERNAL_ERROR, "Internal error", str(e))

        if is_notification:
            return None
        return {"jsonrpc": "2.0", "id": request_id, "result": result}

    async def dispatch(self, method: str, params: dict[str, Any], is_notification: bool) -> Any:
        if method == "initialize":
            return self.handle_initialize(params)
        if method in ("initialized", "notifications/initialized"):
            self.initialized = True
            return None
        if method == "ping":
            return {}
        if method == "tools/list":
            return _dump(ListToolsResult(tools=tool_definitions()))
        if method == "tools/call":
            return await self.handle_tools_call(params)
        if is_notification:
            logger.info("Ignoring notification %s", method)
            return None
        raise JSONRPCException(METHOD_NOT_FOUND, "Method not found", f"Unknown method: {method}")

    def handle_initialize(self, params: dict[str, Any]) -> dict[str, Any]:
        self.client_capabilities = params.get("capabilities") or {}
        requested = params.get("protocolVersion")
        version = requested if requested in SUPPORTED_PROTOCOL_VERSIONS else LATEST_PROTOCOL_VERSION
        result = InitializeResult(
            protocolVersion=version,
            capabilities=ServerCapabilities(tools=ToolsCapability(listChanged=False)),
            serverInfo=Implementation(name=SERVER_NAME, version=SERVER_VERSION),
        )
        return _dump(result)

    async def handle_tools_call(self, params: dict[str, Any]) -> dict[str, Any]:
        name = params.get("name")
        try:
            tool = ToolName(name)
        except ValueError:
            raise JSONRPCException(INVALID_PARAMS, "Invalid params", f"Unknown tool: {name}")

        arguments = params.get("arguments") or {}
        if tool is ToolName.INTERACTIVE_FEEDBACK:
            try:
                args = InteractiveFeedbackArgs.model_validate(arguments)
            except ValidationError as e:
                raise JSONRPCException(INVALID_PARAMS, "Invalid params", str(e))
            try:
                result = await self.interactive_feedback(args)
            except ToolExecutionError as e:
                raise JSONRPCException(INTERNAL_ERROR, "Internal error", f"Tool execution failed: {e}")
        else:
            raise AssertionError(f"Unhandled tool: {tool}")

        content = [TextContent(type="text", text=json.dumps(result, indent=2, ensure_ascii=False))]
        return _dump(CallToolResult(content=content))

    async def interactive_feedback(self, args: InteractiveFeedbackArgs) -> FeedbackResult:
        return await self.bridge.run(
            first_line(args.project_directory),
            first_line(args.summary),
        )

    def spawn_chunk(self, chunk: str) -> None:
        # Chunks run concurrently so a pending tool call does not block pings
        task = asyncio.create_task(self.handle_chunk(chunk))
        self._tasks.add(task)
        task.add_done_callback(self._chunk_done)

    def _chunk_done(self, task: asyncio.Task) -> None:
        self._tasks.discard(task)
        if not task.cancelled() and task.exception() is not None:
            logger.error("Handling input failed", exc_info=task.exception())

    async def run(self) -> None:
        loop = asyncio.get_running_loop()
        queue: asyncio.Queue[Optional[str]] = asyncio.Queue()

        def read_stdin():
            for raw in iter(sys.stdin.buffer.readline, b""):
                loop.call_soon_threadsafe(queue.put_nowait, raw.decode("utf-8", errors="replace"))
            loop.call_soon_threadsafe(queue.put_nowait, None)

        threading.Thread(target=read_stdin, daemon=True).start()

        while True:
            chunk = await queue.get()
            if chunk is None:
                break
            self.spawn_chunk(chunk)

        if self._tasks:
            await asyncio.gather(*self._tasks, return_exceptions=True)


def _exit_immediately(signum, frame):
    # The stdin reader thread can hold the stdin buffer lock, so skip interpreter teardown
    sys.stderr.flush()
    os._exit(0)


def main() -> None:
    logging.basicConfig(
        stream=sys.stderr,
        level=os.getenv("INTERACTIVE_FEEDBACK_LOG_LEVEL", "ERROR").upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    signal.signal(signal.SIGINT, _exit_immediately)
    signal.signal(signal.SIGTERM, _exit_immediately)
    asyncio.run(MCPServer().run())


if __name__ == "__main__":
    main()

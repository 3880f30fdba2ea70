# Interactive Feedback MCP UI
# Developed by Fábio Ferreira (https://x.com/fabiomlferreira)
# Inspired by/related to dotcursorrules.com (https://dotcursorrules.com/)
import os
import sys
import enum
import socket
import asyncio
import argparse
import logging
import webbrowser
from pathlib import Path
from typing import Any, Callable, Optional, TypedDict

import uvicorn
from fastapi import FastAPI, Request, WebSocket, WebSocketDisconnect
from fastapi.exceptions import RequestValidationError
from fastapi.responses import HTMLResponse, JSONResponse
from pydantic import BaseModel, ConfigDict
from starlette.exceptions import HTTPException as StarletteHTTPException

from command_runner import CommandRunner
from feedback_page import INDEX_HTML
from file_browser import PathOutsideProjectError, browse
from session_store import SessionStore, atomic_write_json, default_log_dir

logger = logging.getLogger(__name__)

HOST = "127.0.0.1"
DEFAULT_PORT = int(os.getenv("INTERACTIVE_FEEDBACK_PORT", "3636"))
PORT_ATTEMPTS = int(os.getenv("INTERACTIVE_FEEDBACK_PORT_ATTEMPTS", "10"))
DEFAULT_PROMPT = "I implemented the changes you requested."

# Delay between a successful submission and shutdown, so the HTTP response reaches the browser
CLOSE_DELAY_SECONDS = 1.0

# Messages buffered per WebSocket client before it is dropped
CLIENT_QUEUE_SIZE = 1000


class FeedbackResult(TypedDict):
    command_logs: str
    interactive_feedback: str


class SessionState(enum.Enum):
    STARTING = "starting"
    LISTENING = "listening"
    SUBMITTED = "submitted"
    CLOSING = "closing"
    TERMINATED = "terminated"


class PortUnavailableError(RuntimeError):
    pass


class FeedbackAlreadySubmittedError(RuntimeError):
    pass


class EmptyFeedbackError(ValueError):
    pass


class FeedbackSession:
    """One feedback session: owns the command runner and the handoff file path.

    The session only moves forward through SessionState. A submission is
    accepted once; the handoff file is written before the state changes so a
    failed write leaves the session open for another attempt.
    """

    def __init__(
        self,
        project_directory: str,
        prompt: str,
        output_file: Optional[str] = None,
        runner: Optional[CommandRunner] = None,
        store: Optional[SessionStore] = None,
        close_delay: float = CLOSE_DELAY_SECONDS,
    ):
        self.project_directory = project_directory
        self.prompt = prompt
        self.output_file = output_file
        self.runner = runner or CommandRunner()
        self.store = store or SessionStore(project_directory)
        self.close_delay = close_delay
        self.state = SessionState.STARTING
        self.feedback_result: Optional[FeedbackResult] = None
        self._close_callbacks: list[Callable[[], None]] = []
        self._close_handle: Optional[asyncio.TimerHandle] = None

    def on_close(self, callback: Callable[[], None]) -> None:
        self._close_callbacks.append(callback)

    def mark_listening(self) -> None:
        if self.state is SessionState.STARTING:
            self.state = SessionState.LISTENING

    def submit(self, feedback: str) -> FeedbackResult:
        if self.state is not SessionState.LISTENING:
            raise FeedbackAlreadySubmittedError("Feedback has already been submitted")
        if not feedback.strip():
            raise EmptyFeedbackError("Feedback must not be empty")

        result = FeedbackResult(
            command_logs=self.runner.get_logs(),
            interactive_feedback=feedback,
        )
        if self.output_file:
            atomic_write_json(Path(self.output_file), result)
        self.feedback_result = result
        self.state = SessionState.SUBMITTED
        logger.info("Feedback submitted (%d chars)", len(feedback))
        self.schedule_close()
        return result

    def schedule_close(self) -> None:
        loop = asyncio.get_running_loop()
        self._close_handle = loop.call_later(self.close_delay, self.begin_close)

    def begin_close(self) -> None:
        if self.state in (SessionState.CLOSING, SessionState.TERMINATED):
            return
        self.state = SessionState.CLOSING
        logger.info("Closing feedback session")
        for callback in self._close_callbacks:
            callback()

    async def shutdown(self) -> None:
        if self._close_handle is not None:
            self._close_handle.cancel()
        if self.state is not SessionState.TERMINATED:
            self.state = SessionState.CLOSING
        await self.runner.close()
        self.state = SessionState.TERMINATED


class ConnectionManager:
    """Fans runner events out to WebSocket clients, one bounded queue each."""

    def __init__(self):
        self.queues: dict[WebSocket, asyncio.Queue] = {}

    def register(self, websocket: WebSocket) -> asyncio.Queue:
        queue: asyncio.Queue = asyncio.Queue(maxsize=CLIENT_QUEUE_SIZE)
        self.queues[websocket] = queue
        return queue

    def unregister(self, websocket: WebSocket) -> None:
        self.queues.pop(websocket, None)

    def broadcast(self, event_type: str, data: Any) -> None:
        message = {"type": event_type, "data": data}
        for websocket, queue in list(self.queues.items()):
            try:
                queue.put_nowait(message)
            except asyncio.QueueFull:
                logger.warning("WebSocket client is not keeping up, dropping it")
                self.unregister(websocket)
                asyncio.ensure_future(websocket.close(code=1008))


class ConfigUpdate(BaseModel):
    model_config = ConfigDict(extra="allow")

    run_command: Optional[str] = None
    execute_automatically: Optional[bool] = None
    command_section_visible: Optional[bool] = None
    window_geometry: Optional[Any] = None


class RunCommandRequest(BaseModel):
    command: str


class SubmitFeedbackRequest(BaseModel):
    feedback: str


def _error(status_code: int, message: str) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"success": False, "error": message})


def create_app(session: FeedbackSession) -> FastAPI:
    app = FastAPI(title="Interactive Feedback MCP", docs_url=None, redoc_url=None, openapi_url=None)
    manager = ConnectionManager()
    session.runner.subscribe(manager.broadcast)
    background_tasks: set[asyncio.Task] = set()

    app.state.session = session
    app.state.connections = manager

    @app.exception_handler(RequestValidationError)
    async def validation_error_handler(request: Request, exc: RequestValidationError):
        return _error(400, str(exc))

    @app.exception_handler(StarletteHTTPException)
    async def http_error_handler(request: Request, exc: StarletteHTTPException):
        return _error(exc.status_code, str(exc.detail))

    @app.get("/", response_class=HTMLResponse)
    async def index():
        return HTMLResponse(INDEX_HTML)

    @app.get("/api/config")
    async def load_config():
        try:
            config = session.store.load()
        except Exception as e:
            logger.exception("Loading config failed")
            return _error(500, str(e))
        return {
            "projectDirectory": session.project_directory,
            "prompt": session.prompt,
            "config": config,
        }

    @app.post("/api/config")
    async def save_config(update: ConfigUpdate):
        try:
            config = session.store.save(update.model_dump(exclude_unset=True))
        except Exception as e:
            logger.exception("Saving config failed")
            return _error(500, str(e))
        return {"success": True, "config": config}

    @app.post("/api/run-command")
    async def run_command(body: RunCommandRequest):
        command = body.command.strip()
        if not command:
            return _error(400, "Command must not be empty")
        # Output arrives over the WebSocket; the request only starts the command
        task = asyncio.create_task(session.runner.run(command, session.project_directory))
        background_tasks.add(task)
        task.add_done_callback(background_tasks.discard)
        return {"success": True}

    @app.post("/api/stop-command")
    async def stop_command():
        try:
            await session.runner.stop()
        except Exception as e:
            logger.exception("Stopping command failed")
            return _error(500, str(e))
        return {"success": True}

    @app.post("/api/clear-logs")
    async def clear_logs():
        session.runner.clear_logs()
        return {"success": True}

    @app.post("/api/submit-feedback")
    async def submit_feedback(body: SubmitFeedbackRequest):
        try:
            session.submit(body.feedback)
        except FeedbackAlreadySubmittedError as e:
            return _error(409, str(e))
        except EmptyFeedbackError as e:
            return _error(400, str(e))
        except Exception as e:
            logger.exception("Writing feedback result failed")
            return _error(500, str(e))
        return {"success": True}

    @app.get("/api/browse-files")
    async def browse_files(path: str = ""):
        try:
            items = browse(session.project_directory, path)
        except PathOutsideProjectError as e:
            return _error(403, str(e))
        except (FileNotFoundError, NotADirectoryError) as e:
            return _error(404, str(e))
        except OSError as e:
            return _error(500, str(e))
        return {"success": True, "path": path, "items": items}

    @app.websocket("/")
    async def events(websocket: WebSocket):
        await websocket.accept()
        # Snapshot and registration happen without yielding, so no event is lost in between
        queue = manager.register(websocket)
        queue.put_nowait({"type": "logs", "data": session.runner.get_logs()})
        queue.put_nowait({"type": "processStatus", "data": session.runner.last_status})
        logger.info("WebSocket client connected")

        async def pump():
            while True:
                message = await queue.get()
                await websocket.send_json(message)

        sender = asyncio.create_task(pump())
        try:
            while True:
                await websocket.receive_text()
        except WebSocketDisconnect:
            logger.info("WebSocket client disconnected")
        finally:
            manager.unregister(websocket)
            sender.cancel()
            await asyncio.wait([sender])
            if not sender.cancelled() and sender.exception() is not None:
                logger.warning("Sending to WebSocket client failed: %s", sender.exception())

    return app


def bind_socket(host: str = HOST, port: int = DEFAULT_PORT, attempts: int = PORT_ATTEMPTS) -> socket.socket:
    """Bind the preferred port or the first free one among the next ``attempts - 1``."""
    errors = []
    for candidate in range(port, port + max(attempts, 1)):
        sock = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
        try:
            sock.bind((host, candidate))
        except OSError as e:
            sock.close()
            errors.append(f"{candidate}: {e.strerror or e}")
            continue
        sock.listen(128)
        return sock
    raise PortUnavailableError(
        f"No free port in {port}-{port + max(attempts, 1) - 1} ({'; '.join(errors)})"
    )


def open_browser(url: str) -> None:
    try:
        webbrowser.open(url)
        logger.info("Opening browser at %s", url)
    except webbrowser.Error as e:
        logger.error("Error opening browser: %s", e)


async def serve(
    session: FeedbackSession,
    port: int = DEFAULT_PORT,
    attempts: int = PORT_ATTEMPTS,
    launch_browser: bool = True,
) -> int:
    sock = bind_socket(HOST, port, attempts)
    bound_port = sock.getsockname()[1]
    url = f"http://localhost:{bound_port}"

    app = create_app(session)
    config = uvicorn.Config(
        app,
        log_config=None,
        log_level="warning",
        timeout_graceful_shutdown=2,
    )
    server = uvicorn.Server(config)

    def stop_server():
        server.should_exit = True

    session.on_close(stop_server)
    session.mark_listening()
    logger.info("Web UI Server running at %s", url)

    if launch_browser:
        open_browser(url)

    auto_run: Optional[asyncio.Task] = None
    stored = session.store.load()
    if stored.get("execute_automatically") and stored.get("run_command"):
        auto_run = asyncio.create_task(
            session.runner.run(stored["run_command"], session.project_directory)
        )

    try:
        await server.serve(sockets=[sock])
    finally:
        if auto_run is not None and not auto_run.done():
            auto_run.cancel()
        await session.shutdown()
        sock.close()

    return 0 if session.feedback_result is not None else 1


def setup_logging() -> None:
    level = os.getenv("INTERACTIVE_FEEDBACK_LOG_LEVEL", "INFO").upper()
    log_dir = default_log_dir()
    try:
        log_dir.mkdir(parents=True, exist_ok=True)
        handler: logging.Handler = logging.FileHandler(log_dir / "feedback_ui.log", encoding="utf-8")
    except OSError:
        handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(logging.Formatter("%(asctime)s %(levelname)s %(name)s: %(message)s"))
    logging.basicConfig(level=level, handlers=[handler])


def feedback_ui(
    project_directory: str,
    prompt: str,
    output_file: Optional[str] = None,
    port: int = DEFAULT_PORT,
    launch_browser: bool = True,
    attempts: int = PORT_ATTEMPTS,
) -> int:
    session = FeedbackSession(project_directory, prompt, output_file)
    try:
        return asyncio.run(serve(session, port=port, attempts=attempts, launch_browser=launch_browser))
    except PortUnavailableError as e:
        logger.error("%s", e)
        return 1


if __name__ == "__main__":
    parser = argparse.ArgumentParser(description="Run the feedback UI")
    parser.add_argument(
        "--project-directory",
        default=os.getcwd(),
        help="The project directory to run the command in",
    )
    parser.add_argument(
        "--prompt",
        default=DEFAULT_PROMPT,
        help="The prompt to show to the user",
    )
    parser.add_argument(
        "--output-file", help="Path to save the feedback result as JSON"
    )
    parser.add_argument(
        "--port",
        type=int,
        default=DEFAULT_PORT,
        help=f"Preferred port for the web UI (default: {DEFAULT_PORT})",
    )
    parser.add_argument(
        "--no-browser",
        action="store_true",
        default=bool(os.getenv("INTERACTIVE_FEEDBACK_NO_BROWSER")),
        help="Do not open the web UI in a browser",
    )
    args = parser.parse_args()

    setup_logging()
    sys.exit(
        feedback_ui(
            args.project_directory or os.getcwd(),
            args.prompt or DEFAULT_PROMPT,
            args.output_file,
            args.port,
            not args.no_browser,
        )
    )
